"""Project store: one metadata record per (project, team) partition."""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from teamwork import config
from teamwork.errors import DuplicateProjectError, NotFoundError, StorageError
from teamwork.schemas import (
    ActiveWorker,
    Project,
    ProjectStatus,
    RoleStats,
    TaskStatus,
    check_name,
    utc_now,
)
from teamwork.storage import (
    Partition,
    atomic_write_json,
    ensure_dir,
    file_lock,
    read_json,
)

logger = logging.getLogger(__name__)


class ProjectStore:
    """Creates and reads project metadata."""

    def __init__(self, base_dir: Path | str | None = None):
        """Initialize the store.

        Args:
            base_dir: Storage root; falls back to TEAMWORK_BASE_DIR or ~/.teamwork
        """
        self.base_dir = config.get_base_dir(base_dir)

    def partition(self, project: str, team: str) -> Partition:
        check_name(project, "project name")
        check_name(team, "team name")
        return Partition(self.base_dir, project, team)

    def exists(self, project: str, team: str) -> bool:
        return self.partition(project, team).project_file.exists()

    def create(self, project: str, team: str, goal: str, directory: Path | str) -> Project:
        """Create the metadata record for a new partition.

        Args:
            project: Project name
            team: Team name within the project
            goal: Free-text goal of the project
            directory: Working directory the team operates on

        Returns:
            The persisted Project

        Raises:
            DuplicateProjectError: If the partition already has a project
        """
        partition = self.partition(project, team)
        record = Project(
            project=project,
            team=team,
            goal=goal,
            dir=str(Path(directory).expanduser().resolve()),
        )

        with file_lock(partition.project_file):
            if partition.project_file.exists():
                raise DuplicateProjectError(f"Project {project}/{team} already exists")
            ensure_dir(partition.tasks_dir)
            ensure_dir(partition.inboxes_dir)
            atomic_write_json(partition.project_file, record.model_dump(mode="json"))

        logger.info(f"Created project {project}/{team}")
        return record

    def read(self, project: str, team: str) -> Project:
        """Read a project's metadata.

        Raises:
            NotFoundError: If the project was never created
            StorageError: If the record is corrupt
        """
        partition = self.partition(project, team)
        try:
            data = read_json(partition.project_file)
        except FileNotFoundError:
            raise NotFoundError(f"Project not found: {project}/{team}") from None

        try:
            return Project.model_validate(data)
        except PydanticValidationError as e:
            raise StorageError(f"Invalid project record {partition.project_file}: {e}") from e

    def clean(self, project: str, team: str) -> Project:
        """Delete every task record and stamp ``cleaned_at``.

        Project metadata and inboxes are kept, so the partition can be
        reused for a fresh batch of tasks.

        Raises:
            NotFoundError: If the project was never created
        """
        partition = self.partition(project, team)
        self.read(project, team)

        removed = 0
        with file_lock(partition.tasks_dir):
            for task_id in partition.list_task_ids():
                task_file = partition.task_file(task_id)
                with file_lock(task_file):
                    try:
                        task_file.unlink()
                    except FileNotFoundError:
                        continue
                    except OSError as e:
                        raise StorageError(f"Cannot delete task {task_id}: {e}") from e
                removed += 1

        with file_lock(partition.project_file):
            record = self.read(project, team)
            record.cleaned_at = record.updated_at = utc_now()
            atomic_write_json(partition.project_file, record.model_dump(mode="json"))

        logger.info(f"Cleaned project {project}/{team}: removed {removed} task(s)")
        return record

    def status(self, project: str, team: str) -> ProjectStatus:
        """Aggregate task progress for a project."""
        from teamwork.tasks import TaskStore

        record = self.read(project, team)
        tasks = TaskStore(self.base_dir).list(project, team)

        result = ProjectStatus(project=record, total=len(tasks))
        for task in tasks:
            if task.status == TaskStatus.OPEN:
                result.open += 1
            elif task.status == TaskStatus.IN_PROGRESS:
                result.in_progress += 1
            elif task.status == TaskStatus.RESOLVED:
                result.resolved += 1
            elif task.status == TaskStatus.FAILED:
                result.failed += 1

            role_stats = result.by_role.setdefault(task.role.value, RoleStats())
            role_stats.total += 1
            if task.status == TaskStatus.RESOLVED:
                role_stats.resolved += 1

            # Resolved tasks keep their owner; only in-progress ones are active
            if task.status == TaskStatus.IN_PROGRESS and task.owner:
                result.active_workers.append(
                    ActiveWorker(
                        owner=task.owner,
                        task_id=task.id,
                        task_title=task.title,
                        claimed_at=task.claimed_at,
                    )
                )

        if result.total:
            result.progress = round(result.resolved / result.total * 100)
        return result
