"""
Progress records and batch execution shared by the bulk coordinators.
"""

import logging
from collections import Counter
from collections.abc import Callable
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import TypeVar

from gcal_notion_sync.db import StateDatabase
from gcal_notion_sync.errors import JobAlreadyRunningError
from gcal_notion_sync.models import utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_WORKERS = 4


class JobStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


BASE_PROGRESS = {
    "status": JobStatus.IDLE.value,
    "total": 0,
    "processed": 0,
    "errors": 0,
    "started_at": None,
    "completed_at": None,
    "error": None,
}


class ProgressStore:
    """Get/merge/set access to one coordinator's progress record.

    Every write goes through StateDatabase.update_json, so each change is
    applied to the latest persisted value rather than a stale copy.
    """

    def __init__(self, state_db: StateDatabase, key: str, extra_defaults: dict | None = None):
        self.state_db = state_db
        self.key = key
        self.defaults = {**BASE_PROGRESS, **(extra_defaults or {})}

    def get(self) -> dict:
        return {**self.defaults, **(self.state_db.get_json(self.key) or {})}

    def update(self, **partial) -> dict:
        return self.state_db.update_json(self.key, lambda cur: {**self.defaults, **(cur or {}), **partial})

    def increment(self, **deltas: int) -> dict:
        def apply(cur):
            merged = {**self.defaults, **(cur or {})}
            for name, delta in deltas.items():
                merged[name] = (merged.get(name) or 0) + delta
            return merged

        return self.state_db.update_json(self.key, apply)

    def begin(self, message: str, **initial) -> dict:
        """Atomically move to ``running`` with fresh counters.

        Raises JobAlreadyRunningError without writing if a job is running.
        """

        def apply(cur):
            current = {**self.defaults, **(cur or {})}
            if current["status"] == JobStatus.RUNNING.value:
                raise JobAlreadyRunningError(message)
            return {
                **self.defaults,
                **initial,
                "status": JobStatus.RUNNING.value,
                "started_at": utcnow().isoformat(),
            }

        return self.state_db.update_json(self.key, apply)

    def finish(self, status: JobStatus, error: str | None = None) -> dict:
        """Record a terminal status unless the job was cancelled meanwhile."""

        def apply(cur):
            current = {**self.defaults, **(cur or {})}
            if current["status"] == JobStatus.CANCELLED.value:
                return current
            return {
                **current,
                "status": status.value,
                "completed_at": utcnow().isoformat(),
                "error": error,
            }

        return self.state_db.update_json(self.key, apply)

    def cancel(self) -> bool:
        """Request cancellation; only a running job can be cancelled."""
        cancelled = False

        def apply(cur):
            nonlocal cancelled
            current = {**self.defaults, **(cur or {})}
            if current["status"] != JobStatus.RUNNING.value:
                return current
            cancelled = True
            return {**current, "status": JobStatus.CANCELLED.value, "completed_at": utcnow().isoformat()}

        self.state_db.update_json(self.key, apply)
        return cancelled

    def is_running(self) -> bool:
        return self.get()["status"] == JobStatus.RUNNING.value

    def is_cancelled(self) -> bool:
        return self.get()["status"] == JobStatus.CANCELLED.value

    def reset(self):
        self.state_db.set_json(self.key, dict(self.defaults))


def _run_one(handle: Callable[[T], str | None], item: T, label: Callable[[T], str]):
    try:
        return handle(item), None
    except Exception as e:
        logger.error(f"Failed to process {label(item)}: {e}")
        return None, e


def process_in_batches(
    items: Sequence[T],
    batch_size: int,
    handle: Callable[[T], str | None],
    store: ProgressStore,
    max_workers: int = DEFAULT_MAX_WORKERS,
    label: Callable[[T], str] = str,
) -> bool:
    """Run ``handle`` over ``items`` in batches, checkpointing after each batch.

    ``handle`` may return the name of a progress counter to bump for that
    item. Per-item exceptions are logged and counted in ``errors`` rather than
    ``processed``; they never abort the batch. Cancellation is checked before
    each batch; returns False if the job was cancelled.
    """
    for start in range(0, len(items), batch_size):
        if store.is_cancelled():
            logger.info(f"{store.key}: cancelled after {start} of {len(items)} items")
            return False

        batch = items[start : start + batch_size]
        workers = max(1, min(max_workers, len(batch)))
        if workers == 1:
            outcomes = [_run_one(handle, item, label) for item in batch]
        else:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                outcomes = list(pool.map(lambda item: _run_one(handle, item, label), batch))

        counters = Counter(name for name, error in outcomes if error is None and name)
        errors = sum(1 for _, error in outcomes if error is not None)
        store.increment(processed=len(batch) - errors, errors=errors, **counters)
        logger.debug(f"{store.key}: batch done ({start + len(batch)}/{len(items)}, {errors} errors)")
    return True
