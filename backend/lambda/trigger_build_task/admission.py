"""admission.py — Dispatch / Defer / Fail decision for one build request.

Checks run in a fixed order: compute nodes first, then the running-task
ceiling, then launch. A deferral is a batch-wide signal because capacity does
not change between records of one invocation; the caller stops iterating
when it sees one.

A status write that touches no row means the task already left IN_QUEUE
(SQS delivered the message twice); such a record is reported as DUPLICATE
and acknowledged without a second launch.
"""
from __future__ import annotations

import time

from capacity import CapacityOracle
from config import DispatcherConfig, logger
from errors import CapacityQueryError
from launcher import TaskLauncher
from models import (
    AdmissionOutcome,
    ClusterSnapshot,
    DeferReason,
    QueueRecord,
    RecordResult,
    TaskDispatchRequest,
    TaskStatus,
)
from persistence import TaskStateStore
from queue_control import BuildQueue
from serialization import _emit_structured_observability

__all__ = [
    "AdmissionController",
]


class AdmissionController:
    def __init__(
        self,
        config: DispatcherConfig,
        oracle: CapacityOracle,
        store: TaskStateStore,
        launcher: TaskLauncher,
        queue: BuildQueue,
    ):
        self.config = config
        self.oracle = oracle
        self.store = store
        self.launcher = launcher
        self.queue = queue

    def admit(self, record: QueueRecord, request: TaskDispatchRequest) -> RecordResult:
        started = time.monotonic()
        result = self._decide(record, request)
        _emit_structured_observability(
            component="trigger_build_task",
            event="admission",
            task_id=request.task_id,
            project_id=request.project_id,
            outcome=result.outcome.value,
            reason=result.reason,
            latency_ms=int((time.monotonic() - started) * 1000),
            extra={
                "max_running_tasks": self.config.max_running_tasks,
                "running_task_count": result.snapshot.running_task_count if result.snapshot else None,
            },
        )
        return result

    def _decide(self, record: QueueRecord, request: TaskDispatchRequest) -> RecordResult:
        try:
            has_capacity = self.oracle.has_compute_capacity()
        except CapacityQueryError as exc:
            logger.error("[ERROR] Cluster capacity unknown: %s", exc, exc_info=True)
            has_capacity = False
        nodes = self.oracle.last_node_count
        if not has_capacity:
            return self._defer(record, request, DeferReason.NO_CAPACITY, ClusterSnapshot(nodes, 0))

        try:
            running = self.oracle.running_task_count()
        except CapacityQueryError as exc:
            logger.error("[ERROR] Running task count unknown: %s", exc, exc_info=True)
            return self._defer(record, request, DeferReason.NO_CAPACITY, ClusterSnapshot(nodes, 0))

        snapshot = ClusterSnapshot(available_compute_nodes=nodes, running_task_count=running)
        if running >= self.config.max_running_tasks:
            if not self.store.update_status(request.task_id, TaskStatus.IN_QUEUE):
                return self._duplicate(record, request, snapshot)
            return self._defer(record, request, DeferReason.CONCURRENCY_LIMIT, snapshot)

        if not self.store.update_status(request.task_id, TaskStatus.STARTING):
            return self._duplicate(record, request, snapshot)
        launch = self.launcher.launch(request)
        if not launch.accepted:
            logger.info("[INFO] Task %s failed to start. Status set to FAILED.", request.task_id)
            return RecordResult(
                outcome=AdmissionOutcome.FAILED,
                message_id=record.message_id,
                task_id=request.task_id,
                reason=launch.reason,
                snapshot=snapshot,
            )
        return RecordResult(
            outcome=AdmissionOutcome.DISPATCHED,
            message_id=record.message_id,
            task_id=request.task_id,
            snapshot=snapshot,
        )

    def _defer(
        self,
        record: QueueRecord,
        request: TaskDispatchRequest,
        reason: DeferReason,
        snapshot: ClusterSnapshot,
    ) -> RecordResult:
        if reason is DeferReason.NO_CAPACITY:
            detail = f"No compute instances available for task {request.task_id}"
        else:
            detail = (
                f"Maximum number of running tasks ({self.config.max_running_tasks}) "
                f"reached for task {request.task_id}"
            )
        logger.warning("[DEFER] %s: %s", reason.value, detail)
        self.queue.extend_visibility(record.receipt_handle, self.config.deferral_visibility_timeout)
        return RecordResult(
            outcome=AdmissionOutcome.DEFERRED,
            message_id=record.message_id,
            task_id=request.task_id,
            reason=reason.value,
            snapshot=snapshot,
        )

    def _duplicate(
        self,
        record: QueueRecord,
        request: TaskDispatchRequest,
        snapshot: ClusterSnapshot,
    ) -> RecordResult:
        logger.info(
            "[INFO] Task %s is no longer IN_QUEUE; message %s already handled",
            request.task_id,
            record.message_id,
        )
        return RecordResult(
            outcome=AdmissionOutcome.DUPLICATE,
            message_id=record.message_id,
            task_id=request.task_id,
            reason="already dispatched",
            snapshot=snapshot,
        )
