#!/usr/bin/env python3
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

print(
    f"[pilot] cdp={os.environ.get('PILOT_CDP_HOST', '127.0.0.1')}:{os.environ.get('PILOT_CDP_PORT', '9222')} | "
    f"server={os.environ.get('PILOT_SERVER_URL', 'http://localhost:11000')} | "
    f"tick_hz={os.environ.get('PILOT_TICK_HZ', '120')}",
    file=sys.stderr,
)

from bots.timeline.main import main  # noqa: E402

if __name__ == "__main__":
    main()
