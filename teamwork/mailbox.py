"""Store-and-forward mailbox between orchestrator and workers.

Each (project, team) partition holds one JSON inbox file per participant.
Messages stay in the file after delivery and are only flagged as read, so an
orchestrator that restarts still finds notifications it never polled.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from teamwork import config
from teamwork.errors import StorageError, ValidationError
from teamwork.schemas import (
    Inbox,
    Message,
    MessageType,
    check_name,
    describe_validation_error,
)
from teamwork.storage import Partition, atomic_write_json, file_lock, read_json

logger = logging.getLogger(__name__)


def _matches(message: Message, message_type: str | None) -> bool:
    return not message.read and (message_type is None or message.type == message_type)


class Mailbox:
    """Per-partition inboxes addressed by participant name."""

    def __init__(self, base_dir: Path | str | None = None):
        """Initialize the mailbox.

        Args:
            base_dir: Storage root; falls back to TEAMWORK_BASE_DIR or ~/.teamwork
        """
        self.base_dir = config.get_base_dir(base_dir)

    def _inbox_file(self, project: str, team: str, inbox: str) -> Path:
        check_name(project, "project name")
        check_name(team, "team name")
        check_name(inbox, "inbox name")
        return Partition(self.base_dir, project, team).inbox_file(inbox)

    def _load(self, inbox_file: Path) -> Inbox:
        try:
            data = read_json(inbox_file)
        except FileNotFoundError:
            return Inbox()

        try:
            return Inbox.model_validate(data)
        except PydanticValidationError as e:
            raise StorageError(f"Invalid inbox {inbox_file}: {e}") from e

    def _save(self, inbox_file: Path, inbox: Inbox) -> None:
        atomic_write_json(inbox_file, inbox.model_dump(mode="json", by_alias=True))

    def send(
        self,
        project: str,
        team: str,
        sender: str,
        to: str,
        message_type: str,
        payload: Any = None,
    ) -> Message:
        """Append an unread message to the recipient's inbox.

        Args:
            project: Project name
            team: Team name
            sender: Sending participant
            to: Recipient inbox name
            message_type: Free-text message tag, e.g. "idle_notification"
            payload: Any JSON-serializable data

        Returns:
            The stored Message
        """
        inbox_file = self._inbox_file(project, team, to)
        try:
            message = Message(sender=sender, to=to, type=message_type, payload=payload)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid message: {describe_validation_error(e)}") from e

        with file_lock(inbox_file):
            inbox = self._load(inbox_file)
            inbox.messages.append(message)
            self._save(inbox_file, inbox)

        logger.debug(f"Sent {message_type} from {sender} to {project}/{team}/{to}")
        return message

    def read(
        self,
        project: str,
        team: str,
        inbox: str,
        unread_only: bool = False,
        message_type: str | None = None,
    ) -> list[Message]:
        """List messages without marking them read."""
        inbox_file = self._inbox_file(project, team, inbox)
        messages = self._load(inbox_file).messages
        if unread_only:
            messages = [m for m in messages if not m.read]
        if message_type is not None:
            messages = [m for m in messages if m.type == message_type]
        return messages

    def _take_unread(self, inbox_file: Path, message_type: str | None) -> list[Message]:
        """Mark every matching unread message read and return the batch."""
        if not inbox_file.exists():
            return []

        with file_lock(inbox_file):
            inbox = self._load(inbox_file)
            batch = [m for m in inbox.messages if _matches(m, message_type)]
            if not batch:
                return []
            for message in batch:
                message.read = True
            self._save(inbox_file, inbox)
        return batch

    def poll(
        self,
        project: str,
        team: str,
        inbox: str,
        timeout_ms: int = config.DEFAULT_POLL_TIMEOUT_MS,
        message_type: str | None = None,
        interval: float = config.POLL_INTERVAL,
    ) -> list[Message]:
        """Wait for unread messages and deliver them.

        Re-scans the inbox every ``interval`` seconds without holding its
        lock in between, so senders are never blocked by a waiting poller.

        Args:
            project: Project name
            team: Team name
            inbox: Inbox to poll
            timeout_ms: Maximum time to wait, in milliseconds
            message_type: Only deliver messages of this type
            interval: Seconds between scans

        Returns:
            All matching unread messages, oldest first, now marked read.
            Empty if nothing arrived before the timeout.
        """
        if timeout_ms < 0:
            raise ValidationError(f"Timeout must be non-negative, got {timeout_ms}")
        if interval <= 0:
            raise ValidationError(f"Poll interval must be positive, got {interval}")

        inbox_file = self._inbox_file(project, team, inbox)
        deadline = time.monotonic() + timeout_ms / 1000

        while True:
            batch = self._take_unread(inbox_file, message_type)
            if batch:
                logger.debug(f"Delivered {len(batch)} message(s) from {project}/{team}/{inbox}")
                return batch

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.debug(f"Poll on {project}/{team}/{inbox} timed out")
                return []
            time.sleep(min(interval, remaining))

    def notify_idle(
        self,
        project: str,
        team: str,
        worker_id: str,
        task_id: str,
        status: str,
    ) -> Message:
        """Tell the orchestrator a worker finished a task and is free."""
        return self.send(
            project,
            team,
            sender=worker_id,
            to=config.ORCHESTRATOR_INBOX,
            message_type=MessageType.IDLE_NOTIFICATION.value,
            payload={
                "worker_id": worker_id,
                "completed_task_id": task_id,
                "completed_status": status,
            },
        )
