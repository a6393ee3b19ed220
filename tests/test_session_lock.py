from __future__ import annotations

import asyncio

import pytest


class DummyDriver:
    def __init__(self, *, fail_detach: bool = False) -> None:
        self.calls: list[tuple[str, str]] = []
        self.fail_detach = fail_detach

    async def attach(self, unit_id: str) -> None:
        self.calls.append(("attach", unit_id))

    async def detach(self, unit_id: str) -> None:
        self.calls.append(("detach", unit_id))
        if self.fail_detach:
            raise RuntimeError("already detached")


def test_nested_holders_share_one_attach() -> None:
    from bots.timeline.session_lock import SessionLock
    from bots.timeline.work_unit import WorkUnit

    driver = DummyDriver()
    lock = SessionLock(driver)
    unit = WorkUnit("t1")

    async def _main() -> None:
        async with lock.exclusive(unit):
            assert unit.lock_count == 1
            async with lock.exclusive(unit):
                assert unit.lock_count == 2
            assert unit.attached is True
        assert unit.lock_count == 0
        assert unit.attached is False

    asyncio.run(_main())
    assert driver.calls == [("attach", "t1"), ("detach", "t1")]


def test_running_unit_stays_attached() -> None:
    from bots.timeline.session_lock import SessionLock
    from bots.timeline.work_unit import WorkUnit

    driver = DummyDriver()
    lock = SessionLock(driver)
    unit = WorkUnit("t1", running=True)

    async def _main() -> None:
        await lock.with_exclusive_session(unit, lambda: asyncio.sleep(0))

    asyncio.run(_main())
    assert unit.attached is True
    assert driver.calls == [("attach", "t1")]


def test_counter_released_when_body_raises() -> None:
    from bots.timeline.session_lock import SessionLock
    from bots.timeline.work_unit import WorkUnit

    lock = SessionLock(DummyDriver())
    unit = WorkUnit("t1")

    async def _boom() -> None:
        raise ValueError("boom")

    with pytest.raises(ValueError):
        asyncio.run(lock.with_exclusive_session(unit, _boom))
    assert unit.lock_count == 0
    assert unit.attached is False


def test_force_release_inside_holder_never_goes_negative() -> None:
    from bots.timeline.session_lock import SessionLock
    from bots.timeline.work_unit import WorkUnit

    driver = DummyDriver()
    lock = SessionLock(driver)
    unit = WorkUnit("t1", running=True)

    async def _main() -> None:
        async with lock.exclusive(unit):
            unit.running = False
            await lock.force_release(unit)
            assert unit.lock_count == 0
            assert unit.attached is False
        assert unit.lock_count == 0

    asyncio.run(_main())
    assert [c[0] for c in driver.calls] == ["attach", "detach"]


def test_detach_errors_are_suppressed() -> None:
    from bots.timeline.session_lock import SessionLock
    from bots.timeline.work_unit import WorkUnit

    lock = SessionLock(DummyDriver(fail_detach=True))
    unit = WorkUnit("t1")

    async def _main() -> None:
        async with lock.exclusive(unit):
            pass
        await lock.force_release(unit)

    asyncio.run(_main())
    assert unit.attached is False
    assert unit.lock_count == 0


def test_hold_taken_before_force_release_does_not_release_a_later_hold() -> None:
    from bots.timeline.session_lock import SessionLock
    from bots.timeline.work_unit import WorkUnit

    driver = DummyDriver()
    lock = SessionLock(driver)
    unit = WorkUnit("t1")

    async def _main() -> None:
        stale = lock.exclusive(unit)
        await stale.__aenter__()
        await lock.force_release(unit)
        async with lock.exclusive(unit):
            await stale.__aexit__(None, None, None)
            assert unit.lock_count == 1
            assert unit.attached is True
        assert unit.lock_count == 0
        assert unit.attached is False

    asyncio.run(_main())
    assert [c[0] for c in driver.calls] == ["attach", "detach", "attach", "detach"]
