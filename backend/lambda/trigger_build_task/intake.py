"""intake.py — Decode SQS build-request records into TaskDispatchRequest values."""
from __future__ import annotations

from typing import Any, Dict, List, Tuple

from errors import DecodeError
from models import QueueRecord, TaskDispatchRequest
from serialization import _flatten_message_attributes

__all__ = [
    "REQUIRED_ATTRIBUTES",
    "decode",
    "parse_record",
]

# Message attribute name -> TaskDispatchRequest field, in wire order.
REQUIRED_ATTRIBUTES: Tuple[Tuple[str, str], ...] = (
    ("TaskId", "task_id"),
    ("ProjectId", "project_id"),
    ("UserId", "user_id"),
    ("RepoUrl", "repo_url"),
    ("Branch", "branch"),
    ("RootDir", "root_dir"),
    ("Preset", "preset"),
    ("InstallCommand", "install_command"),
    ("BuildCommand", "build_command"),
    ("OutputDir", "output_dir"),
)


def parse_record(raw: Dict[str, Any]) -> QueueRecord:
    """Normalize one Lambda/SQS record into a QueueRecord."""
    raw = raw or {}
    message_id = str(raw.get("messageId") or raw.get("MessageId") or "unknown")
    receipt_handle = str(raw.get("receiptHandle") or raw.get("ReceiptHandle") or "")
    attributes = _flatten_message_attributes(
        raw.get("messageAttributes") or raw.get("MessageAttributes") or {}
    )
    return QueueRecord(message_id=message_id, receipt_handle=receipt_handle, attributes=attributes)


def decode(record: QueueRecord) -> TaskDispatchRequest:
    """Build a TaskDispatchRequest, or raise DecodeError naming every missing attribute."""
    missing: List[str] = []
    values: Dict[str, str] = {}
    for attr_name, field_name in REQUIRED_ATTRIBUTES:
        value = record.attributes.get(attr_name, "")
        if not value.strip():
            missing.append(attr_name)
            continue
        values[field_name] = value
    if missing:
        raise DecodeError(record.message_id, missing)
    return TaskDispatchRequest(**values)
