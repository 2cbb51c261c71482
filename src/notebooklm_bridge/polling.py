"""Asynchronous task model shared by research and studio generation.

NotebookLM runs research and artifact generation server-side. The client
learns every status change from a poll response; it never moves a task to a
new state on its own, and a single poll never waits for completion.
"""

import enum
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from . import constants

logger = logging.getLogger("notebooklm_bridge.api")


class TaskStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


class TaskKind(str, enum.Enum):
    RESEARCH = "research"
    STUDIO = "studio"


@dataclass
class AsyncTask:
    """Snapshot of one server-tracked job."""

    task_id: str
    kind: TaskKind
    notebook_id: str
    status: TaskStatus = TaskStatus.PENDING
    result: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "kind": self.kind.value,
            "notebook_id": self.notebook_id,
            "status": self.status.value,
            **self.result,
        }


_RESEARCH_STATUS = {
    constants.RESEARCH_STATUS_RUNNING: TaskStatus.RUNNING,
    constants.RESEARCH_STATUS_COMPLETED: TaskStatus.COMPLETED,
    constants.RESEARCH_STATUS_IMPORTED: TaskStatus.COMPLETED,
    constants.RESEARCH_STATUS_FAILED: TaskStatus.FAILED,
}

_STUDIO_STATUS = {
    constants.STUDIO_STATUS_RUNNING: TaskStatus.RUNNING,
    constants.STUDIO_STATUS_COMPLETED: TaskStatus.COMPLETED,
    constants.STUDIO_STATUS_FAILED: TaskStatus.FAILED,
}


def _translate(code: Any, table: dict[int, TaskStatus], kind: TaskKind) -> TaskStatus:
    if code is None:
        return TaskStatus.PENDING
    status = table.get(code)
    if status is None:
        # No evidence of a terminal state; keep polling
        logger.warning("Unrecognised %s status code %r; treating as running", kind.value, code)
        return TaskStatus.RUNNING
    return status


def research_status(code: Any) -> TaskStatus:
    return _translate(code, _RESEARCH_STATUS, TaskKind.RESEARCH)


def studio_status(code: Any) -> TaskStatus:
    return _translate(code, _STUDIO_STATUS, TaskKind.STUDIO)


def wait_for_task(
    poll: Callable[[], AsyncTask],
    poll_interval: float = 30.0,
    max_wait: float = 300.0,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> tuple[AsyncTask, int]:
    """Poll until the task is terminal or ``max_wait`` seconds have elapsed.

    This is a convenience for callers. Deep research and long artifacts can
    outlast any deadline, so running out of time is not an error: the last
    snapshot is returned with its non-terminal status. ``max_wait=0`` makes
    exactly one poll. Giving up does not cancel the server-side job.

    Returns:
        (last snapshot, number of polls made)
    """
    start = clock()
    polls = 0
    while True:
        task = poll()
        polls += 1
        if task.is_terminal:
            return task, polls

        elapsed = clock() - start
        if max_wait <= 0 or elapsed >= max_wait:
            return task, polls

        sleep(min(poll_interval, max(max_wait - elapsed, 0)))
