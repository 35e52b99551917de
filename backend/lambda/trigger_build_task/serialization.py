"""serialization.py — Timestamps, SQS attribute flattening, structured observability lines."""
from __future__ import annotations

import datetime as dt
import json
from typing import Any, Dict, Optional

from config import logger

__all__ = [
    "_emit_structured_observability",
    "_flatten_message_attributes",
    "_now_utc",
    "_now_z",
]


def _now_utc() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _now_z() -> str:
    return _now_utc().strftime("%Y-%m-%dT%H:%M:%SZ")


def _flatten_message_attributes(raw: Any) -> Dict[str, str]:
    """Reduce SQS message attributes to ``{name: string value}``.

    Accepts both the Lambda event casing (``stringValue``) and the SQS API
    casing (``StringValue``). Non-string attributes and blanks are dropped.
    """
    out: Dict[str, str] = {}
    if not isinstance(raw, dict):
        return out
    for name, attr in raw.items():
        if isinstance(attr, dict):
            value = attr.get("stringValue", attr.get("StringValue"))
        else:
            value = attr
        if isinstance(value, str) and value.strip():
            out[str(name)] = value
    return out


def _emit_structured_observability(
    *,
    component: str,
    event: str,
    task_id: Optional[str] = None,
    project_id: Optional[str] = None,
    outcome: Optional[str] = None,
    reason: Optional[str] = None,
    latency_ms: Optional[int] = None,
    error_code: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> None:
    payload: Dict[str, Any] = {
        "timestamp": _now_z(),
        "component": component,
        "event": event,
        "task_id": str(task_id or ""),
        "project_id": str(project_id or ""),
        "outcome": str(outcome or ""),
        "reason": str(reason or ""),
        "latency_ms": int(max(0, latency_ms or 0)),
        "error_code": str(error_code or ""),
    }
    if extra:
        payload.update(extra)
    logger.info("[OBSERVABILITY] %s", json.dumps(payload, sort_keys=True, default=str))
