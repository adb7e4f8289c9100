"""
Background task queue.

Redis-backed huey instance; with HUEY_IMMEDIATE set, tasks run inline against
in-memory storage (used by the test suite and single-process dev setups).
Run a worker with:  huey_consumer services.tasks.huey_queue
"""

import logging
import os

from huey import RedisHuey, signals

log = logging.getLogger(__name__)

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
HUEY_IMMEDIATE = os.getenv("HUEY_IMMEDIATE", "false").lower() in ("1", "true", "yes")

huey_queue = RedisHuey("exam-paper", url=REDIS_URL, immediate=HUEY_IMMEDIATE)


@huey_queue.signal(signals.SIGNAL_ERROR)
def log_task_error(signal, task, exc=None):
    log.error(f"Task {task.name} id={task.id} failed: {exc!r}")


@huey_queue.signal(signals.SIGNAL_RETRYING)
def log_task_retry(signal, task):
    log.warning(f"Task {task.name} id={task.id} retrying ({task.retries} left)")


def queue_depth():
    """Number of enqueued tasks, or None when the broker cannot be reached."""
    try:
        return huey_queue.pending_count()
    except Exception as e:
        log.warning(f"Could not read queue depth: {e}")
        return None
