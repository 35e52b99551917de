"""launcher.py — Submit build containers to ECS.

A rejected launch is terminal: the task is marked FAILED, its OngoingJob
marker is removed, and nothing is retried. Accepted launches need no further
bookkeeping here; the build container reports BUILDING and later statuses
itself.
"""
from __future__ import annotations

import re
from typing import Any, Dict, List

from botocore.exceptions import BotoCoreError, ClientError

from aws_clients import _get_ecs
from config import DispatcherConfig, logger
from models import LaunchResult, TaskDispatchRequest, TaskStatus
from persistence import TaskStateStore
from serialization import _emit_structured_observability

__all__ = [
    "TaskLauncher",
    "build_container_environment",
]

# Container env var -> TaskDispatchRequest field. UserId is not forwarded.
_CONTAINER_ENVIRONMENT = (
    ("TASK_ID", "task_id"),
    ("PROJECT_ID", "project_id"),
    ("REPO_URL", "repo_url"),
    ("BRANCH_NAME", "branch"),
    ("ROOT_DIR", "root_dir"),
    ("PRESET", "preset"),
    ("INSTALL_COMMAND", "install_command"),
    ("BUILD_COMMAND", "build_command"),
    ("OUTPUT_DIR", "output_dir"),
)


def build_container_environment(request: TaskDispatchRequest) -> List[Dict[str, str]]:
    return [
        {"name": env_name, "value": getattr(request, field_name)}
        for env_name, field_name in _CONTAINER_ENVIRONMENT
    ]


class TaskLauncher:
    def __init__(self, config: DispatcherConfig, store: TaskStateStore, ecs=None):
        self.config = config
        self.store = store
        self._ecs = ecs

    @property
    def ecs(self):
        if self._ecs is None:
            self._ecs = _get_ecs()
        return self._ecs

    def run_task_params(self, request: TaskDispatchRequest) -> Dict[str, Any]:
        return {
            "cluster": self.config.cluster_arn,
            "taskDefinition": self.config.task_definition,
            "launchType": self.config.launch_type,
            "count": 1,
            "startedBy": re.sub(r"[^A-Za-z0-9_-]", "-", f"build-{request.task_id}")[:36],
            "overrides": {
                "containerOverrides": [
                    {
                        "name": self.config.container_name,
                        "environment": build_container_environment(request),
                    }
                ]
            },
        }

    def launch(self, request: TaskDispatchRequest) -> LaunchResult:
        logger.info(
            "[INFO] Starting build container for task %s (repo=%s preset=%s)",
            request.task_id,
            request.repo_url,
            request.preset,
        )
        try:
            resp = self.ecs.run_task(**self.run_task_params(request))
        except (BotoCoreError, ClientError) as exc:
            logger.error("[ERROR] RunTask failed for task %s: %s", request.task_id, exc, exc_info=True)
            return self._fail(request, f"run_task error: {exc}")

        task_arns = tuple(t.get("taskArn", "") for t in resp.get("tasks") or [] if t.get("taskArn"))
        if not task_arns:
            failures = resp.get("failures") or []
            reasons = "; ".join(
                f"{f.get('reason', 'UNKNOWN')}"
                + (f" ({f['detail']})" if f.get("detail") else "")
                for f in failures
            ) or "no task started"
            logger.error("[ERROR] RunTask rejected task %s: %s", request.task_id, reasons)
            return self._fail(request, reasons)

        logger.info("[SUCCESS] Build container started for task %s: %s", request.task_id, list(task_arns))
        return LaunchResult(accepted=True, task_id=request.task_id, task_arns=task_arns)

    def _fail(self, request: TaskDispatchRequest, reason: str) -> LaunchResult:
        self.store.update_status(request.task_id, TaskStatus.FAILED)
        self.store.remove_ongoing_job(request.task_id)
        _emit_structured_observability(
            component="trigger_build_task",
            event="launch_failure",
            task_id=request.task_id,
            project_id=request.project_id,
            outcome=TaskStatus.FAILED.value,
            reason=reason[:500],
            error_code="LAUNCH_FAILURE",
        )
        return LaunchResult(accepted=False, task_id=request.task_id, reason=reason)
