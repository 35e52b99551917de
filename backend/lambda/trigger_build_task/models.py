"""models.py — Value types shared by the build-task dispatcher modules."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

__all__ = [
    "AdmissionOutcome",
    "ClusterSnapshot",
    "DISPATCHER_TRANSITIONS",
    "DeferReason",
    "LaunchResult",
    "QueueRecord",
    "RecordResult",
    "TaskDispatchRequest",
    "TaskStatus",
]


class TaskStatus(str, Enum):
    """Values of ``Task.status`` in the relational store.

    Progression is IN_QUEUE -> STARTING -> BUILDING -> COMPLETED | FAILED, with
    DEPLOYED optionally after COMPLETED. The dispatcher only ever writes
    STARTING, FAILED, and IN_QUEUE (as a deferral reset from STARTING).
    """

    IN_QUEUE = "IN_QUEUE"
    STARTING = "STARTING"
    BUILDING = "BUILDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    DEPLOYED = "DEPLOYED"


# Status the dispatcher writes -> statuses it may overwrite. Anything else
# means another invocation or the build container already moved the task on.
DISPATCHER_TRANSITIONS: Dict[TaskStatus, Tuple[TaskStatus, ...]] = {
    TaskStatus.STARTING: (TaskStatus.IN_QUEUE,),
    TaskStatus.IN_QUEUE: (TaskStatus.IN_QUEUE, TaskStatus.STARTING),
    TaskStatus.FAILED: (TaskStatus.STARTING,),
}


class AdmissionOutcome(str, Enum):
    DISPATCHED = "dispatched"
    DEFERRED = "deferred"
    FAILED = "failed"
    MALFORMED = "malformed"
    # Redelivered request whose task already left IN_QUEUE.
    DUPLICATE = "duplicate"


class DeferReason(str, Enum):
    NO_CAPACITY = "NO_CAPACITY"
    CONCURRENCY_LIMIT = "MAX_TASKS_REACHED"


@dataclass(frozen=True)
class TaskDispatchRequest:
    """One decoded build request. Every field is a non-empty string."""

    task_id: str
    project_id: str
    user_id: str
    repo_url: str
    branch: str
    root_dir: str
    preset: str
    install_command: str
    build_command: str
    output_dir: str


@dataclass(frozen=True)
class QueueRecord:
    """Transport-level view of one delivered queue message."""

    message_id: str
    receipt_handle: str
    attributes: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ClusterSnapshot:
    """Point-in-time, unlocked read of cluster capacity. Not a reservation."""

    available_compute_nodes: int
    running_task_count: int


@dataclass(frozen=True)
class LaunchResult:
    accepted: bool
    task_id: str
    task_arns: Tuple[str, ...] = ()
    reason: str = ""


@dataclass(frozen=True)
class RecordResult:
    """Per-record verdict the batch driver inspects to continue or stop."""

    outcome: AdmissionOutcome
    message_id: str
    task_id: str = ""
    reason: str = ""
    snapshot: Optional[ClusterSnapshot] = None

    @property
    def stops_batch(self) -> bool:
        return self.outcome is AdmissionOutcome.DEFERRED

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "message_id": self.message_id,
            "task_id": self.task_id,
            "outcome": self.outcome.value,
        }
        if self.reason:
            out["reason"] = self.reason
        return out
