"""Pydantic schemas for persisted teamwork records."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from teamwork.errors import ValidationError

# Identifiers double as file and directory names.
NAME_PATTERN = r"^[A-Za-z0-9_-][A-Za-z0-9_.-]*$"


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class TaskStatus(str, Enum):
    """Task lifecycle status."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    FAILED = "failed"


class Role(str, Enum):
    """Worker role a task is intended for."""

    BACKEND = "backend"
    FRONTEND = "frontend"
    TEST = "test"
    DEVOPS = "devops"
    DOCS = "docs"
    SECURITY = "security"
    REVIEW = "review"
    GENERAL = "general"


class WaveState(str, Enum):
    """Progress of a wave, derived from its tasks."""

    PLANNING = "planning"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class MessageType(str, Enum):
    """Message types understood by orchestrator and workers."""

    TEXT = "text"
    IDLE_NOTIFICATION = "idle_notification"
    SHUTDOWN_REQUEST = "shutdown_request"
    SHUTDOWN_RESPONSE = "shutdown_response"


# --- Task Records ---


class TaskCreate(BaseModel):
    """Input for creating a task."""

    id: str = Field(..., pattern=NAME_PATTERN)
    title: str = Field(..., min_length=1)
    description: str = ""
    role: Role = Role.GENERAL
    blocked_by: list[str] = Field(default_factory=list)


class Task(BaseModel):
    """A unit of work with dependency, ownership and evidence tracking."""

    id: str = Field(..., pattern=NAME_PATTERN)
    title: str
    description: str = ""
    role: Role = Role.GENERAL
    status: TaskStatus = TaskStatus.OPEN
    blocked_by: list[str] = Field(default_factory=list)
    owner: str | None = None
    evidence: list[str] = Field(default_factory=list)
    version: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    claimed_at: datetime | None = None
    completed_at: datetime | None = None


# --- Project Records ---


class Project(BaseModel):
    """Metadata for one (project, team) partition."""

    project: str = Field(..., pattern=NAME_PATTERN)
    team: str = Field(..., pattern=NAME_PATTERN)
    goal: str
    dir: str
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    cleaned_at: datetime | None = None


class RoleStats(BaseModel):
    """Task counts for one role."""

    total: int = 0
    resolved: int = 0


class ActiveWorker(BaseModel):
    """A worker currently holding an in-progress task."""

    owner: str
    task_id: str
    task_title: str
    claimed_at: datetime | None = None


class ProjectStatus(BaseModel):
    """Aggregated progress of a project partition."""

    project: Project
    total: int = 0
    open: int = 0
    in_progress: int = 0
    resolved: int = 0
    failed: int = 0
    progress: int = Field(default=0, ge=0, le=100)
    by_role: dict[str, RoleStats] = Field(default_factory=dict)
    active_workers: list[ActiveWorker] = Field(default_factory=list)


# --- Wave Records ---


class WaveTask(BaseModel):
    """A task as shown inside a wave."""

    id: str
    title: str
    role: Role
    status: TaskStatus
    owner: str | None = None


class Wave(BaseModel):
    """Tasks that can run in parallel once all earlier waves resolve."""

    id: int = Field(..., ge=1)
    status: WaveState
    tasks: list[WaveTask] = Field(default_factory=list)


class WavePlan(BaseModel):
    """Dependency waves of a partition with derived progress."""

    total_waves: int = 0
    current_wave: int | None = None
    completed: int = 0
    in_progress: int = 0
    failed: int = 0
    remaining: int = 0
    waves: list[Wave] = Field(default_factory=list)
    missing_dependencies: dict[str, list[str]] = Field(default_factory=dict)


# --- Mailbox Records ---


class Message(BaseModel):
    """A message delivered to a participant inbox."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: uuid4().hex)
    sender: str = Field(..., alias="from", min_length=1)
    to: str = Field(..., pattern=NAME_PATTERN)
    type: str = Field(..., min_length=1)
    payload: Any = None
    timestamp: datetime = Field(default_factory=utc_now)
    read: bool = False


class Inbox(BaseModel):
    """Persisted contents of one inbox file."""

    messages: list[Message] = Field(default_factory=list)


def check_name(value: str, kind: str) -> str:
    """Validate an identifier that will be used as a path component.

    Raises:
        ValidationError: If the identifier is empty or unsafe
    """
    if not value or not re.fullmatch(NAME_PATTERN, value):
        raise ValidationError(f"Invalid {kind} {value!r}: must match {NAME_PATTERN}")
    return value


def describe_validation_error(error: PydanticValidationError) -> str:
    """Flatten a pydantic error into a one-line message."""
    parts = []
    for item in error.errors():
        location = ".".join(str(loc) for loc in item["loc"]) or "input"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)
