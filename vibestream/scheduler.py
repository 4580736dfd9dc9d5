"""Recurring auto-fetch for the configured regions and keyword set."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

logger = logging.getLogger(__name__)


class AutoFetchScheduler:
    """Runs `job` every `interval_sec` seconds on a daemon thread.

    Runs never overlap: a trigger that fires while a run is in progress is
    skipped, not queued.
    """

    def __init__(
        self,
        job: Callable[[], Any],
        *,
        interval_sec: float = 6 * 60 * 60,
        run_on_start: bool = False,
    ):
        self.job = job
        self.interval_sec = max(1.0, float(interval_sec))
        self.run_on_start = run_on_start
        self.last_run: datetime | None = None
        self.next_run: datetime | None = None
        self.last_result: Any = None
        self.runs = 0
        self.skipped = 0
        self._run_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def busy(self) -> bool:
        return self._run_lock.locked()

    def trigger(self) -> bool:
        """Run the job now unless a run is already active. Returns True if it ran."""

        if not self._run_lock.acquire(blocking=False):
            self.skipped += 1
            logger.warning("auto fetch still running; skipping this trigger")
            return False
        try:
            self.last_run = datetime.now(timezone.utc)
            logger.info("auto fetch started")
            try:
                self.last_result = self.job()
            except Exception as e:
                # The next tick is the retry.
                logger.exception("auto fetch failed: %s", e)
                self.last_result = {"ok": False, "error": str(e)}
            self.runs += 1
            logger.info("auto fetch done")
            return True
        finally:
            self._run_lock.release()

    def _loop(self) -> None:
        logger.info("auto fetch scheduler started (interval=%ss)", int(self.interval_sec))
        if self.run_on_start and not self._stop.is_set():
            self.trigger()
        while True:
            self.next_run = datetime.now(timezone.utc) + timedelta(seconds=self.interval_sec)
            if self._stop.wait(self.interval_sec):
                break
            self.trigger()
        logger.info("auto fetch scheduler stopped")

    def start(self) -> threading.Thread:
        if self._thread is not None and self._thread.is_alive():
            return self._thread
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="autofetch", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
        self._thread = None

    def state(self) -> dict[str, Any]:
        def _iso(dt: datetime | None) -> str | None:
            return dt.isoformat(timespec="seconds") if dt else None

        return {
            "running": self.is_running,
            "busy": self.busy,
            "interval_sec": int(self.interval_sec),
            "last_run": _iso(self.last_run),
            "next_run": _iso(self.next_run) if self.is_running else None,
            "runs": self.runs,
            "skipped": self.skipped,
        }
