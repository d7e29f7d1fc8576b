"""
app/services/etl_queue.py

Coalescing trigger for upload-driven ETL runs.

At most one batch runs at a time. Ids enqueued while a batch is in flight
collect in a pending set and are drained by the same worker as one follow-up
batch once the current one finishes. Ids that are part of the in-flight batch
are marked dirty and join that follow-up batch too, so a refresh that fails
or started before the new upload landed is retried without waiting for the
backfill tick.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from typing import Any

from app.services.etl_service import normalize_file_ids

logger = logging.getLogger(__name__)

BatchRunner = Callable[[list[int]], Any]
WorkerStarter = Callable[[Callable[[], None]], None]


def _start_daemon_thread(target: Callable[[], None]) -> None:
    threading.Thread(target=target, name="analytics-etl-queue", daemon=True).start()


class AnalyticsRefreshQueue:
    """
    Parameters
    ----------
    runner:
        Called with each batch of file ids (sorted). Exceptions are logged and
        the queue keeps draining.
    start_worker:
        Launches the drain loop. Defaults to a daemon thread; tests pass a
        callable that defers or runs the loop inline.
    """

    def __init__(self, runner: BatchRunner, *, start_worker: WorkerStarter | None = None) -> None:
        self._runner = runner
        self._start_worker = start_worker or _start_daemon_thread
        self._cond = threading.Condition()
        self._pending: set[int] = set()
        self._in_flight: frozenset[int] = frozenset()
        self._dirty: set[int] = set()
        self._worker_active = False
        self._batches_run = 0

    @property
    def pending(self) -> list[int]:
        with self._cond:
            return sorted(self._pending)

    @property
    def in_flight(self) -> list[int]:
        with self._cond:
            return sorted(self._in_flight)

    @property
    def is_busy(self) -> bool:
        with self._cond:
            return self._worker_active

    @property
    def batches_run(self) -> int:
        with self._cond:
            return self._batches_run

    def enqueue(self, file_ids: Iterable[Any]) -> list[int]:
        """
        Queue ids for refresh and start a worker if none is active.

        Ids currently in flight are held back until their batch finishes.
        Returns the normalized ids accepted.
        """
        ids = normalize_file_ids(file_ids)
        with self._cond:
            for file_id in ids:
                if file_id in self._in_flight:
                    self._dirty.add(file_id)
                else:
                    self._pending.add(file_id)
            if self._worker_active or not self._pending:
                return ids
            self._worker_active = True

        try:
            self._start_worker(self._drain)
        except Exception:
            with self._cond:
                self._worker_active = False
                self._cond.notify_all()
            raise
        return ids

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no batch is running or pending. False on timeout."""
        with self._cond:
            return self._cond.wait_for(lambda: not self._worker_active, timeout=timeout)

    def _drain(self) -> None:
        while True:
            with self._cond:
                if not self._pending:
                    self._in_flight = frozenset()
                    self._worker_active = False
                    self._cond.notify_all()
                    return
                batch = sorted(self._pending)
                self._pending.clear()
                self._in_flight = frozenset(batch)

            try:
                self._runner(batch)
            except Exception:  # noqa: BLE001
                logger.exception("Analytics refresh batch failed file_ids=%s", batch)
            finally:
                with self._cond:
                    self._batches_run += 1
                    self._pending.update(self._dirty)
                    self._dirty.clear()
