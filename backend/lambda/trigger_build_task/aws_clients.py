"""aws_clients.py — Lazy-singleton AWS service clients (SQS, ECS).

Clients are created on first call and cached for subsequent warm
invocations, so a cold start only pays for the clients it uses.
"""
from __future__ import annotations

from typing import Optional

import boto3
from botocore.config import Config

from config import DISPATCH_REGION

__all__ = [
    "_get_ecs",
    "_get_sqs",
]

# ---------------------------------------------------------------------------
# AWS client singletons
# ---------------------------------------------------------------------------

_sqs = None
_ecs = None


def _get_sqs(region: Optional[str] = None):
    """Get (or create) the SQS client singleton."""
    global _sqs
    if _sqs is None:
        _sqs = boto3.client(
            "sqs",
            region_name=region or DISPATCH_REGION,
            config=Config(retries={"max_attempts": 3, "mode": "standard"}),
        )
    return _sqs


def _get_ecs(region: Optional[str] = None):
    """Get (or create) the ECS client singleton."""
    global _ecs
    if _ecs is None:
        _ecs = boto3.client(
            "ecs",
            region_name=region or DISPATCH_REGION,
            config=Config(retries={"max_attempts": 5, "mode": "standard"}),
        )
    return _ecs
