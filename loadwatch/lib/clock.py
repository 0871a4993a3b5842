"""Wall-clock access behind a small object so the monitor can run on simulated time."""
from __future__ import annotations

import time
from datetime import datetime


class SystemClock:
    def time(self) -> float:
        return time.time()

    def now(self) -> datetime:
        return datetime.now()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)
