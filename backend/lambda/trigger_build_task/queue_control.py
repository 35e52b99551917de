"""queue_control.py — Visibility extension and acknowledgement on the build queue."""
from __future__ import annotations

from botocore.exceptions import BotoCoreError, ClientError

from aws_clients import _get_sqs
from config import MAX_VISIBILITY_TIMEOUT_SECONDS, logger
from errors import QueueControlError

__all__ = [
    "BuildQueue",
]


class BuildQueue:
    def __init__(self, queue_url: str, sqs=None):
        self.queue_url = queue_url
        self._sqs = sqs

    @property
    def sqs(self):
        if self._sqs is None:
            self._sqs = _get_sqs()
        return self._sqs

    def extend_visibility(self, receipt_handle: str, timeout_seconds: int) -> None:
        """Hide one record for ``timeout_seconds`` so it is redelivered later."""
        timeout_seconds = max(1, min(int(timeout_seconds), MAX_VISIBILITY_TIMEOUT_SECONDS))
        if not receipt_handle:
            raise QueueControlError("Cannot change visibility without a receipt handle")
        try:
            self.sqs.change_message_visibility(
                QueueUrl=self.queue_url,
                ReceiptHandle=receipt_handle,
                VisibilityTimeout=timeout_seconds,
            )
        except (BotoCoreError, ClientError) as exc:
            logger.error("[ERROR] Changing message visibility failed: %s", exc)
            raise QueueControlError(f"change_message_visibility failed: {exc}") from exc
        logger.info("[INFO] Changed message visibility to %d seconds", timeout_seconds)

    def acknowledge(self, receipt_handle: str) -> None:
        """Delete a record whose outcome has been fully resolved."""
        if not receipt_handle:
            raise QueueControlError("Cannot delete a message without a receipt handle")
        try:
            self.sqs.delete_message(QueueUrl=self.queue_url, ReceiptHandle=receipt_handle)
        except (BotoCoreError, ClientError) as exc:
            raise QueueControlError(f"delete_message failed: {exc}") from exc
