"""errors.py — Dispatcher exception taxonomy.

Business outcomes (dispatch, defer, launch failure) are reported as
``RecordResult`` values. Exceptions here cover malformed input and
infrastructure faults, plus ``BatchDeferred`` which is raised only at the
Lambda boundary so the SQS event source leaves remaining records queued.
"""
from __future__ import annotations

from typing import Sequence

__all__ = [
    "BatchDeferred",
    "CapacityQueryError",
    "DecodeError",
    "DispatchError",
    "PersistenceError",
    "QueueControlError",
]


class DispatchError(Exception):
    """Base class for trigger_build_task errors."""


class DecodeError(DispatchError):
    """Raised when a queue record lacks mandatory attributes."""

    def __init__(self, message_id: str, missing: Sequence[str]):
        self.message_id = message_id
        self.missing = tuple(missing)
        super().__init__(
            f"Malformed build request {message_id}: missing {', '.join(self.missing)}"
        )


class CapacityQueryError(DispatchError):
    """Raised when the ECS cluster cannot be read."""


class PersistenceError(DispatchError):
    """Raised when the relational store rejects a read or write."""


class QueueControlError(DispatchError):
    """Raised when an SQS visibility or delete call fails."""


class BatchDeferred(DispatchError):
    """Raised after a batch stopped early on a deferral."""

    def __init__(self, reason: str, task_id: str, unprocessed: int):
        self.reason = reason
        self.task_id = task_id
        self.unprocessed = unprocessed
        super().__init__(
            f"{reason}: deferred task {task_id}; {unprocessed} record(s) left for redelivery"
        )
