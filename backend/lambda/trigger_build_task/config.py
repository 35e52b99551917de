"""config.py — Environment configuration, constants and logging for trigger_build_task.

All values are read once at cold start. Tests override them with
``patch.object`` on the module that imported them.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass

__all__ = [
    "BUILD_CONTAINER_NAME",
    "BUILD_LAUNCH_TYPE",
    "BUILD_TASK_DEFINITION",
    "CLUSTER_ARN",
    "DB_CONNECT_TIMEOUT_SECONDS",
    "DB_POOL_MAX_SIZE",
    "DB_POOL_MIN_SIZE",
    "DEFERRAL_VISIBILITY_TIMEOUT_SECONDS",
    "DISPATCH_REGION",
    "DispatcherConfig",
    "MAX_RUNNING_TASKS",
    "MAX_VISIBILITY_TIMEOUT_SECONDS",
    "POSTGRES_URL",
    "SQS_QUEUE_URL",
    "logger",
]

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger("trigger_build_task")
logger.setLevel(logging.INFO)

# SQS rejects visibility timeouts above 12 hours.
MAX_VISIBILITY_TIMEOUT_SECONDS = 43200


def _env_int(name: str, default: int, *, minimum: int = 0, maximum: int | None = None) -> int:
    raw = os.environ.get(name, "")
    if not str(raw).strip():
        return default
    try:
        value = int(str(raw).strip())
    except ValueError:
        logger.warning("[WARNING] %s=%r is not an integer; using default %d", name, raw, default)
        return default
    if value < minimum:
        logger.warning("[WARNING] %s=%d below minimum %d; clamping", name, value, minimum)
        value = minimum
    if maximum is not None and value > maximum:
        logger.warning("[WARNING] %s=%d above maximum %d; clamping", name, value, maximum)
        value = maximum
    return value


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------

SQS_QUEUE_URL: str = os.environ.get("SQS_QUEUE_URL", "")
CLUSTER_ARN: str = os.environ.get("CLUSTER_ARN", "")
DISPATCH_REGION: str = os.environ.get(
    "DISPATCH_REGION", os.environ.get("AWS_REGION", "us-east-1")
)

MAX_RUNNING_TASKS: int = _env_int("MAX_RUNNING_TASKS", 2, minimum=1)

BUILD_TASK_DEFINITION: str = os.environ.get("BUILD_TASK_DEFINITION", "CodeHost-build-task")
BUILD_CONTAINER_NAME: str = os.environ.get("BUILD_CONTAINER_NAME", "codehost-build-container")
BUILD_LAUNCH_TYPE: str = os.environ.get("BUILD_LAUNCH_TYPE", "EC2")

DEFERRAL_VISIBILITY_TIMEOUT_SECONDS: int = _env_int(
    "DEFERRAL_VISIBILITY_TIMEOUT_SECONDS",
    10,
    minimum=1,
    maximum=MAX_VISIBILITY_TIMEOUT_SECONDS,
)

POSTGRES_URL: str = os.environ.get("POSTGRES_URL", "")
DB_POOL_MIN_SIZE: int = _env_int("DB_POOL_MIN_SIZE", 1, minimum=0)
DB_POOL_MAX_SIZE: int = _env_int("DB_POOL_MAX_SIZE", 2, minimum=1)
DB_CONNECT_TIMEOUT_SECONDS: int = _env_int("DB_CONNECT_TIMEOUT_SECONDS", 10, minimum=1)


@dataclass(frozen=True)
class DispatcherConfig:
    """Process-wide dispatcher settings captured at cold start."""

    queue_url: str
    cluster_arn: str
    max_running_tasks: int
    task_definition: str
    container_name: str
    launch_type: str
    deferral_visibility_timeout: int

    @classmethod
    def from_env(cls) -> "DispatcherConfig":
        return cls(
            queue_url=SQS_QUEUE_URL,
            cluster_arn=CLUSTER_ARN,
            max_running_tasks=MAX_RUNNING_TASKS,
            task_definition=BUILD_TASK_DEFINITION,
            container_name=BUILD_CONTAINER_NAME,
            launch_type=BUILD_LAUNCH_TYPE,
            deferral_visibility_timeout=DEFERRAL_VISIBILITY_TIMEOUT_SECONDS,
        )
