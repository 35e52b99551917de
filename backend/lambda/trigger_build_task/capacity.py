"""capacity.py — Read-only view of ECS cluster capacity.

Both reads are advisory. Nothing is locked or reserved between the read and
the RunTask call, and concurrent dispatcher invocations share the same
cluster, so ``MAX_RUNNING_TASKS`` is a soft ceiling that can briefly be
overshot.
"""
from __future__ import annotations

from botocore.exceptions import BotoCoreError, ClientError

from aws_clients import _get_ecs
from config import logger
from errors import CapacityQueryError

__all__ = [
    "CapacityOracle",
]


class CapacityOracle:
    def __init__(self, cluster_arn: str, ecs=None):
        self.cluster_arn = cluster_arn
        self._ecs = ecs
        # Node count seen by the last describe_clusters read; 0 if it failed.
        self.last_node_count = 0

    @property
    def ecs(self):
        if self._ecs is None:
            self._ecs = _get_ecs()
        return self._ecs

    def available_compute_nodes(self) -> int:
        self.last_node_count = 0
        try:
            resp = self.ecs.describe_clusters(
                clusters=[self.cluster_arn],
                include=["STATISTICS"],
            )
        except (BotoCoreError, ClientError) as exc:
            raise CapacityQueryError(f"describe_clusters failed for {self.cluster_arn}: {exc}") from exc

        clusters = resp.get("clusters") or []
        if not clusters:
            failures = resp.get("failures") or []
            logger.warning(
                "[WARNING] Cluster %s not found: %s",
                self.cluster_arn,
                [f.get("reason") for f in failures],
            )
            return 0
        count = int(clusters[0].get("registeredContainerInstancesCount") or 0)
        self.last_node_count = count
        logger.info("[INFO] Registered container instances: %d", count)
        return count

    def has_compute_capacity(self) -> bool:
        return self.available_compute_nodes() > 0

    def running_task_count(self) -> int:
        count = 0
        try:
            paginator = self.ecs.get_paginator("list_tasks")
            for page in paginator.paginate(cluster=self.cluster_arn, desiredStatus="RUNNING"):
                count += len(page.get("taskArns") or [])
        except (BotoCoreError, ClientError) as exc:
            raise CapacityQueryError(f"list_tasks failed for {self.cluster_arn}: {exc}") from exc
        logger.info("[INFO] Running build tasks: %d", count)
        return count
