"""trigger_build_task/lambda_function.py

SQS-triggered Lambda that turns queued build requests into running ECS build
containers.

Flow:
    SQS (build queue, message attributes TaskId..OutputDir)
    → This Lambda (records processed one at a time, never in parallel)
    → capacity check (registered container instances, RUNNING task count)
    → Task.status = STARTING → ECS RunTask (CodeHost-build-task)
    → delete the message once the outcome is resolved

Deferral:
    When the cluster has no instances or MAX_RUNNING_TASKS builds are
    running, the current message is hidden for a short backoff and the rest
    of the batch is left untouched. The handler then raises ``BatchDeferred``
    so the event source redelivers everything not yet deleted.

    The running-task ceiling is a soft limit. Concurrent invocations read the
    same cluster without coordination and can briefly overshoot it.

Environment variables:
    SQS_QUEUE_URL                          required
    CLUSTER_ARN                            required
    POSTGRES_URL                           required
    MAX_RUNNING_TASKS                      default: 2
    BUILD_TASK_DEFINITION                  default: CodeHost-build-task
    BUILD_CONTAINER_NAME                   default: codehost-build-container
    BUILD_LAUNCH_TYPE                      default: EC2
    DEFERRAL_VISIBILITY_TIMEOUT_SECONDS    default: 10
    DISPATCH_REGION                        default: $AWS_REGION
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from admission import AdmissionController
from capacity import CapacityOracle
from config import DispatcherConfig, logger
from errors import BatchDeferred, DecodeError, QueueControlError
from intake import decode, parse_record
from launcher import TaskLauncher
from models import AdmissionOutcome, QueueRecord, RecordResult
from persistence import _get_store
from queue_control import BuildQueue
from serialization import _emit_structured_observability

__all__ = [
    "BatchSummary",
    "lambda_handler",
    "process_batch",
]

_CONFIG = DispatcherConfig.from_env()


@dataclass
class BatchSummary:
    results: List[RecordResult] = field(default_factory=list)
    deferred: Optional[RecordResult] = None
    unprocessed: int = 0

    def count(self, outcome: AdmissionOutcome) -> int:
        return sum(1 for r in self.results if r.outcome is outcome)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "processed": len(self.results),
            "dispatched": self.count(AdmissionOutcome.DISPATCHED),
            "failed": self.count(AdmissionOutcome.FAILED),
            "malformed": self.count(AdmissionOutcome.MALFORMED),
            "duplicate": self.count(AdmissionOutcome.DUPLICATE),
            "deferred": self.deferred.as_dict() if self.deferred else None,
            "unprocessed": self.unprocessed,
            "results": [r.as_dict() for r in self.results],
        }


def _acknowledge(queue: BuildQueue, record: QueueRecord, result: RecordResult) -> None:
    try:
        queue.acknowledge(record.receipt_handle)
    except QueueControlError as exc:
        # Outcome is already recorded; a redelivered copy goes through admission again.
        logger.error(
            "[ERROR] Could not delete message %s (task %s, %s): %s",
            record.message_id,
            result.task_id,
            result.outcome.value,
            exc,
        )


def process_batch(
    raw_records: Sequence[Dict[str, Any]],
    controller: AdmissionController,
    queue: BuildQueue,
) -> BatchSummary:
    """Run records through admission in delivery order until one is deferred."""
    summary = BatchSummary()
    for index, raw in enumerate(raw_records):
        record = parse_record(raw)
        try:
            request = decode(record)
        except DecodeError as exc:
            logger.error("[ERROR] %s", exc)
            result = RecordResult(
                outcome=AdmissionOutcome.MALFORMED,
                message_id=record.message_id,
                task_id=record.attributes.get("TaskId", ""),
                reason=f"missing {', '.join(exc.missing)}",
            )
            _emit_structured_observability(
                component="trigger_build_task",
                event="decode_error",
                task_id=result.task_id,
                outcome=result.outcome.value,
                reason=result.reason,
                error_code="DECODE_ERROR",
            )
            summary.results.append(result)
            _acknowledge(queue, record, result)
            continue

        result = controller.admit(record, request)
        if result.stops_batch:
            summary.deferred = result
            summary.unprocessed = len(raw_records) - index - 1
            logger.warning(
                "[DEFER] Stopping batch at message %s; %d record(s) left queued",
                record.message_id,
                summary.unprocessed,
            )
            break

        summary.results.append(result)
        _acknowledge(queue, record, result)

    return summary


def _build_controller(config: DispatcherConfig) -> tuple[AdmissionController, BuildQueue]:
    store = _get_store()
    queue = BuildQueue(config.queue_url)
    controller = AdmissionController(
        config=config,
        oracle=CapacityOracle(config.cluster_arn),
        store=store,
        launcher=TaskLauncher(config, store),
        queue=queue,
    )
    return controller, queue


# ---------------------------------------------------------------------------
# Lambda handler
# ---------------------------------------------------------------------------


def lambda_handler(event: Dict[str, Any], _context: Any) -> Dict[str, Any]:
    records = event.get("Records") or []
    logger.info("trigger_build_task: received %d SQS message(s)", len(records))
    if not records:
        return {"statusCode": 200, "body": json.dumps({"processed": 0})}

    controller, queue = _build_controller(_CONFIG)
    summary = process_batch(records, controller, queue)

    if summary.deferred is not None:
        raise BatchDeferred(
            summary.deferred.reason,
            summary.deferred.task_id,
            summary.unprocessed,
        )

    logger.info(
        "[SUCCESS] All tasks processed: dispatched=%d failed=%d malformed=%d duplicate=%d",
        summary.count(AdmissionOutcome.DISPATCHED),
        summary.count(AdmissionOutcome.FAILED),
        summary.count(AdmissionOutcome.MALFORMED),
        summary.count(AdmissionOutcome.DUPLICATE),
    )
    return {"statusCode": 200, "body": json.dumps(summary.as_dict())}
