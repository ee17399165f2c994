"""Background scheduler threads.

Each :class:`PeriodicWorker` is a daemon thread that runs one job on a
fixed interval: the retry queue processor, the bounce monitor, or the
stale generation sweep.  When a database is given, a run only happens
while holding a ``pg_try_advisory_lock`` so that with several gunicorn
workers or hosts exactly one instance executes each job at a time.

Usage::

    worker = PeriodicWorker("retry-queue", processor.process, 300, db=db)
    worker.start()
    ...
    worker.stop()
"""

from __future__ import annotations

import contextlib
import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    from pypgkit import Database

log = logging.getLogger(__name__)

# Stable advisory lock ids, one per job.
ADVISORY_LOCK_IDS: dict[str, int] = {
    "retry-queue": 814_001,
    "bounce-monitor": 814_002,
    "generation-sweep": 814_003,
}


class PeriodicWorker:
    """Runs *job* every *interval_seconds* until stopped.

    After a failed run the next wait doubles per consecutive failure,
    capped at 8x the interval.
    """

    def __init__(
        self,
        name: str,
        job: Callable[[], object],
        interval_seconds: int,
        *,
        db: Database | None = None,
        metrics=None,
    ) -> None:
        self.name = name
        self._job = job
        self._interval = interval_seconds
        self._db = db
        self._metrics = metrics
        self._lock_id = ADVISORY_LOCK_IDS.get(name, 814_000)
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._consecutive_failures = 0

    @property
    def started(self) -> bool:
        return self._thread is not None

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_alive:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name=f"{self.name}-worker",
            daemon=True,
        )
        self._thread.start()
        log.info("%s worker started (interval=%ds)", self.name, self._interval)

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=self._interval + 5)
            log.info("%s worker stopped", self.name)

    def _try_acquire_leader(self) -> bool:
        if self._db is None:
            return True
        try:
            return bool(
                self._db.fetch_value(
                    "SELECT pg_try_advisory_lock(%s)",
                    (self._lock_id,),
                ),
            )
        except Exception:
            log.debug("Advisory lock check failed for %s, skipping this cycle", self.name)
            return False

    def _release_leader(self) -> None:
        if self._db is None:
            return
        with contextlib.suppress(Exception):
            self._db.execute("SELECT pg_advisory_unlock(%s)", (self._lock_id,))

    def run_once(self) -> bool:
        """Run the job once under leadership.  Returns ``False`` if not leader."""
        if not self._try_acquire_leader():
            return False
        try:
            self._job()
        finally:
            self._release_leader()
        return True

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_once()
                self._consecutive_failures = 0
            except Exception:
                self._consecutive_failures += 1
                log.exception(
                    "%s worker run failed (consecutive: %d)",
                    self.name,
                    self._consecutive_failures,
                )
                if self._metrics:
                    self._metrics.increment(
                        "certdesk_worker_errors_total",
                        labels={"worker": self.name},
                    )
                backoff = min(
                    self._interval * (2**self._consecutive_failures),
                    self._interval * 8,
                )
                self._stop_event.wait(timeout=backoff)
                continue
            self._stop_event.wait(timeout=self._interval)
