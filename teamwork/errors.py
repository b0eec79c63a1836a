"""Exception hierarchy for teamwork operations."""

from __future__ import annotations


class TeamworkError(Exception):
    """Base class for all teamwork failures."""

    exit_code = 1


class ValidationError(TeamworkError):
    """Raised when input is malformed and nothing was persisted."""

    exit_code = 2


class ClaimConflictError(TeamworkError):
    """Raised when a task cannot be claimed by the caller."""

    exit_code = 3

    def __init__(self, task_id: str, reason: str, message: str | None = None):
        self.task_id = task_id
        self.reason = reason
        super().__init__(message or f"Task {task_id} cannot be claimed ({reason})")


class NotFoundError(TeamworkError):
    """Raised when a referenced task or project does not exist."""

    exit_code = 4


class DuplicateTaskError(TeamworkError):
    """Raised when a task ID is already taken within its partition."""

    exit_code = 5


class DuplicateProjectError(TeamworkError):
    """Raised when a (project, team) pair already exists."""

    exit_code = 5


class OwnershipError(TeamworkError):
    """Raised when a task is updated by someone other than its owner."""

    exit_code = 6


class StorageError(TeamworkError):
    """Raised when the underlying store cannot be read or written."""

    exit_code = 7
