from __future__ import annotations

import pytest


def test_inside_band_converges_with_final_correction() -> None:
    from bots.timeline.jobs.alignment import AlignmentController

    ctl = AlignmentController(1600)
    step = ctl.step(1.5, 8.33)
    assert step.converged is True
    assert step.delta == 1.5

    step = ctl.step(0.8, 8.33)
    assert step.converged is True
    assert step.delta == 0.0

    step = ctl.step(-3.0, 8.33)
    assert step.converged is True
    assert step.delta == 0.0


def test_step_never_crosses_tolerance_band() -> None:
    from bots.timeline.jobs.alignment import AlignmentController

    ctl = AlignmentController(100_000)
    step = ctl.step(10.0, 1000.0)
    assert step.converged is False
    assert step.delta == pytest.approx(8.0)


def test_ease_slows_motion_near_target() -> None:
    from bots.timeline.jobs.alignment import AlignmentController

    ctl = AlignmentController(1600)
    far = ctl.step(1000.0, 10.0).delta
    near = ctl.step(40.0, 10.0).delta
    assert far > near > 0
    assert ctl.ease(1.0) == pytest.approx(0.35)
    assert ctl.ease(1e9) == pytest.approx(1.0)


def test_zero_elapsed_still_makes_progress() -> None:
    from bots.timeline.jobs.alignment import AlignmentController

    ctl = AlignmentController(1600)
    step = ctl.step(50.0, 0.0)
    assert step.converged is False
    assert step.delta == pytest.approx(0.25)


@pytest.mark.parametrize("start", [3.0, 13.0, 137.5, 500.0, 4321.0])
def test_closed_loop_converges_without_overshoot(start: float) -> None:
    from bots.timeline.jobs.alignment import AlignmentController, frame_elapsed_ms

    ctl = AlignmentController(1600)
    remaining = start
    for _ in range(10_000):
        step = ctl.step(remaining, frame_elapsed_ms(1000.0 / 120, 0.4))
        nxt = remaining - step.delta
        assert nxt <= remaining
        assert nxt >= 0.0
        remaining = nxt
        if step.converged:
            break
    else:
        pytest.fail("alignment did not converge")
    assert remaining <= 2.0


def test_speed_must_be_positive() -> None:
    from bots.timeline.jobs.alignment import AlignmentController

    with pytest.raises(ValueError):
        AlignmentController(0)
