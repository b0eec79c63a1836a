"""Task store: create, list, claim, update, delete and plan tasks.

Every task is its own JSON record under ``<project>/<team>/tasks/``.
Mutations of one task happen under that record's file lock; creation and
deletion additionally take a partition-wide lock on the tasks directory so
duplicate and dependency checks see a consistent set of tasks.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from teamwork import config
from teamwork.errors import (
    ClaimConflictError,
    DuplicateTaskError,
    NotFoundError,
    OwnershipError,
    StorageError,
    ValidationError,
)
from teamwork.mailbox import Mailbox
from teamwork.ordering import sort_task_ids, task_id_key
from teamwork.projects import ProjectStore
from teamwork.schemas import (
    Role,
    Task,
    TaskCreate,
    TaskStatus,
    Wave,
    WavePlan,
    WaveState,
    WaveTask,
    check_name,
    describe_validation_error,
    utc_now,
)
from teamwork.storage import Partition, atomic_write_json, file_lock, read_json

logger = logging.getLogger(__name__)


def parse_blocked_by(value: str | Iterable[str] | None) -> list[str]:
    """Normalize a comma list (or iterable) of task IDs.

    Blank entries are dropped and duplicates collapsed, keeping first order.
    """
    if value is None:
        return []
    items = value.split(",") if isinstance(value, str) else value
    result: list[str] = []
    for item in items:
        item = item.strip()
        if item and item not in result:
            result.append(item)
    return result


def find_cycle(graph: dict[str, list[str]], start: str) -> list[str] | None:
    """Find a dependency path from ``start`` back to itself.

    Args:
        graph: Task ID to the IDs it is blocked by
        start: Task to search from

    Returns:
        The cycle as a list of IDs beginning and ending with ``start``,
        or None if ``start`` is not on a cycle
    """
    stack: list[tuple[str, list[str]]] = [(start, [start])]
    visited: set[str] = set()
    while stack:
        node, path = stack.pop()
        for dep in graph.get(node, []):
            if dep == start:
                return path + [start]
            if dep not in visited:
                visited.add(dep)
                stack.append((dep, path + [dep]))
    return None


def is_available(task: Task, statuses: dict[str, TaskStatus]) -> bool:
    """Check whether a task can be claimed right now.

    Args:
        task: Task to check
        statuses: Status of every task in the partition, by ID
    """
    if task.status != TaskStatus.OPEN or task.owner:
        return False
    return all(statuses.get(dep) == TaskStatus.RESOLVED for dep in task.blocked_by)


def compute_waves(graph: dict[str, list[str]]) -> tuple[list[list[str]], dict[str, list[str]]]:
    """Group tasks into dependency waves with Kahn's algorithm.

    Wave N holds every task whose dependencies all sit in waves before N,
    so the tasks of one wave can run in parallel.

    Args:
        graph: Task ID to the IDs it is blocked by

    Returns:
        Tuple of (waves, missing). Each wave is sorted with compare_task_ids.
        ``missing`` maps task IDs to dependencies that do not exist; those
        references are ignored for layering.

    Raises:
        ValidationError: If the dependencies contain a cycle
    """
    missing: dict[str, list[str]] = {}
    in_degree: dict[str, int] = {}
    dependents: dict[str, list[str]] = {task_id: [] for task_id in graph}

    for task_id, deps in graph.items():
        known = [dep for dep in dict.fromkeys(deps) if dep in graph]
        unknown = [dep for dep in dict.fromkeys(deps) if dep not in graph]
        if unknown:
            missing[task_id] = unknown
        in_degree[task_id] = len(known)
        for dep in known:
            dependents[dep].append(task_id)

    waves: list[list[str]] = []
    ready = [task_id for task_id, degree in in_degree.items() if degree == 0]
    placed = 0
    while ready:
        wave = sort_task_ids(ready)
        waves.append(wave)
        placed += len(wave)
        ready = []
        for task_id in wave:
            for dependent in dependents[task_id]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    ready.append(dependent)

    if placed < len(graph):
        stuck = sort_task_ids(task_id for task_id, degree in in_degree.items() if degree > 0)
        raise ValidationError(f"Dependency cycle among tasks: {', '.join(stuck)}")
    return waves, missing


def wave_state(tasks: list[Task]) -> WaveState:
    """Derive a wave's progress from its tasks."""
    statuses = {task.status for task in tasks}
    if statuses == {TaskStatus.RESOLVED}:
        return WaveState.COMPLETED
    if TaskStatus.FAILED in statuses:
        return WaveState.FAILED
    if statuses & {TaskStatus.IN_PROGRESS, TaskStatus.RESOLVED}:
        return WaveState.IN_PROGRESS
    return WaveState.PLANNING


class TaskStore:
    """File-backed task collection for each (project, team) partition."""

    def __init__(self, base_dir: Path | str | None = None, mailbox: Mailbox | None = None):
        """Initialize the store.

        Args:
            base_dir: Storage root; falls back to TEAMWORK_BASE_DIR or ~/.teamwork
            mailbox: Mailbox used for idle notifications (defaults to one on the same root)
        """
        self.base_dir = config.get_base_dir(base_dir)
        self.projects = ProjectStore(self.base_dir)
        self.mailbox = mailbox or Mailbox(self.base_dir)

    # --- Record I/O ---

    def _partition(self, project: str, team: str) -> Partition:
        return self.projects.partition(project, team)

    def _existing_partition(self, project: str, team: str, task_id: str) -> Partition:
        check_name(task_id, "task id")
        partition = self._partition(project, team)
        if not partition.task_file(task_id).exists():
            raise NotFoundError(f"Task {task_id} not found in {project}/{team}")
        return partition

    def _load(self, partition: Partition, task_id: str) -> Task:
        path = partition.task_file(task_id)
        try:
            data = read_json(path)
        except FileNotFoundError:
            raise NotFoundError(
                f"Task {task_id} not found in {partition.project}/{partition.team}"
            ) from None

        try:
            return Task.model_validate(data)
        except PydanticValidationError as e:
            raise StorageError(f"Invalid task record {path}: {e}") from e

    def _save(self, partition: Partition, task: Task) -> None:
        task.version += 1
        task.updated_at = utc_now()
        atomic_write_json(partition.task_file(task.id), task.model_dump(mode="json"))

    def _load_all(self, partition: Partition) -> list[Task]:
        tasks = []
        for task_id in partition.list_task_ids():
            try:
                tasks.append(self._load(partition, task_id))
            except NotFoundError:
                # Deleted between the directory scan and the read
                logger.debug(f"Task {task_id} vanished while listing")
        return sorted(tasks, key=lambda t: task_id_key(t.id))

    # --- Operations ---

    def create(
        self,
        project: str,
        team: str,
        task_id: str,
        title: str,
        description: str = "",
        role: Role | str = Role.GENERAL,
        blocked_by: str | Iterable[str] | None = None,
    ) -> Task:
        """Create an open, unowned task.

        Args:
            project: Project name
            team: Team name
            task_id: Identifier unique within the partition
            title: Short task title
            description: Longer description; defaults to the title
            role: Worker role the task is meant for
            blocked_by: IDs of tasks that must resolve first

        Returns:
            The persisted Task

        Raises:
            ValidationError: Malformed input, self-dependency or dependency cycle
            NotFoundError: The project does not exist
            DuplicateTaskError: The ID is already taken
        """
        partition = self._partition(project, team)
        deps = parse_blocked_by(blocked_by)

        try:
            request = TaskCreate(
                id=task_id,
                title=title,
                description=description or title,
                role=role,
                blocked_by=deps,
            )
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid task: {describe_validation_error(e)}") from e

        for dep in request.blocked_by:
            check_name(dep, "blocked-by task id")
        if request.id in request.blocked_by:
            raise ValidationError(f"Task {request.id} cannot be blocked by itself")

        if not partition.project_file.exists():
            raise NotFoundError(f"Project not found: {project}/{team}")

        with file_lock(partition.tasks_dir):
            if partition.task_file(request.id).exists():
                raise DuplicateTaskError(f"Task {request.id} already exists in {project}/{team}")

            graph = {t.id: t.blocked_by for t in self._load_all(partition)}
            graph[request.id] = request.blocked_by
            cycle = find_cycle(graph, request.id)
            if cycle:
                raise ValidationError(f"Dependency cycle: {' -> '.join(cycle)}")

            task = Task(**request.model_dump())
            atomic_write_json(partition.task_file(task.id), task.model_dump(mode="json"))

        logger.info(f"Created task {project}/{team}/{task.id}")
        return task

    def get(self, project: str, team: str, task_id: str) -> Task:
        """Read a single task."""
        check_name(task_id, "task id")
        return self._load(self._partition(project, team), task_id)

    def list(
        self,
        project: str,
        team: str,
        available: bool = False,
        role: Role | str | None = None,
        status: TaskStatus | str | None = None,
    ) -> list[Task]:
        """List tasks matching all given filters, ordered by task ID.

        Args:
            project: Project name
            team: Team name
            available: Only open, unowned tasks whose dependencies are resolved
            role: Only tasks for this role
            status: Only tasks in this status

        Returns:
            Matching tasks sorted with compare_task_ids
        """
        partition = self._partition(project, team)
        try:
            role = Role(role) if role is not None else None
            status = TaskStatus(status) if status is not None else None
        except ValueError as e:
            raise ValidationError(str(e)) from e

        tasks = self._load_all(partition)
        statuses = {t.id: t.status for t in tasks}

        result = []
        for task in tasks:
            if status is not None and task.status != status:
                continue
            if role is not None and task.role != role:
                continue
            if available and not is_available(task, statuses):
                continue
            result.append(task)
        return result

    def claim(self, project: str, team: str, task_id: str, owner: str) -> Task:
        """Atomically take ownership of an available task.

        The read-check-write runs under the task's file lock, so of several
        concurrent claimers exactly one succeeds. Re-claiming a task you
        already own is a no-op success.

        Raises:
            NotFoundError: The task does not exist
            ClaimConflictError: Already owned by someone else, not open,
                or blocked by an unresolved dependency
        """
        if not owner:
            raise ValidationError("Owner is required to claim a task")
        partition = self._existing_partition(project, team, task_id)

        with file_lock(partition.task_file(task_id)):
            task = self._load(partition, task_id)

            if task.owner and task.owner != owner:
                raise ClaimConflictError(
                    task_id,
                    "already_claimed",
                    f"Task {task_id} already claimed by {task.owner}",
                )
            if task.owner == owner and task.status == TaskStatus.IN_PROGRESS:
                return task
            if task.status != TaskStatus.OPEN:
                raise ClaimConflictError(
                    task_id,
                    "not_claimable",
                    f"Task {task_id} is {task.status.value}, not open",
                )

            unresolved = []
            for dep in task.blocked_by:
                try:
                    dep_status = self._load(partition, dep).status
                except NotFoundError:
                    dep_status = None
                if dep_status != TaskStatus.RESOLVED:
                    unresolved.append(dep)
            if unresolved:
                raise ClaimConflictError(
                    task_id,
                    "blocked",
                    f"Task {task_id} is blocked by {', '.join(unresolved)}",
                )

            task.owner = owner
            task.status = TaskStatus.IN_PROGRESS
            task.claimed_at = utc_now()
            self._save(partition, task)

        logger.info(f"Task {project}/{team}/{task_id} claimed by {owner}")
        return task

    def update(
        self,
        project: str,
        team: str,
        task_id: str,
        owner: str,
        status: TaskStatus | str | None = None,
        add_evidence: str | Iterable[str] | None = None,
        release: bool = False,
        worker_id: str | None = None,
    ) -> Task:
        """Append evidence, change status or release a task.

        Evidence is appended first, in call order. ``release`` clears the
        owner and reopens the task regardless of its status; otherwise
        ``status`` is applied if given. Resolving with a ``worker_id`` sends
        an idle notification to the orchestrator inbox; a notification that
        cannot be stored is logged and does not fail the update.

        Raises:
            NotFoundError: The task does not exist
            OwnershipError: ``owner`` is not the task's current owner
        """
        partition = self._existing_partition(project, team, task_id)

        try:
            status = TaskStatus(status) if status is not None else None
        except ValueError as e:
            raise ValidationError(str(e)) from e
        if isinstance(add_evidence, str):
            add_evidence = [add_evidence]
        evidence = list(add_evidence or [])

        with file_lock(partition.task_file(task_id)):
            task = self._load(partition, task_id)
            if not owner or task.owner != owner:
                raise OwnershipError(
                    f"Task {task_id} is owned by {task.owner or 'nobody'}, not {owner or 'nobody'}"
                )

            task.evidence.extend(evidence)

            if release:
                task.owner = None
                task.claimed_at = None
                task.status = TaskStatus.OPEN
            elif status is not None:
                task.status = status
                if status == TaskStatus.RESOLVED:
                    task.completed_at = utc_now()

            self._save(partition, task)

        if release:
            logger.info(f"Task {project}/{team}/{task_id} released by {owner}")
        elif status is not None:
            logger.info(f"Task {project}/{team}/{task_id} set to {status.value} by {owner}")

        if not release and status == TaskStatus.RESOLVED and worker_id:
            try:
                self.mailbox.notify_idle(project, team, worker_id, task_id, status.value)
            except StorageError as e:
                # The resolve is already committed
                logger.warning(
                    f"Task {project}/{team}/{task_id} resolved but idle notification failed: {e}"
                )

        return task

    def delete(self, project: str, team: str, task_id: str, force: bool = False) -> list[str]:
        """Delete a task that nobody has started.

        Args:
            project: Project name
            team: Team name
            task_id: Task to delete
            force: Delete even if other tasks are blocked by it

        Returns:
            IDs of tasks left with a dangling dependency on the deleted task

        Raises:
            NotFoundError: The task does not exist
            ValidationError: The task was already started, or has dependents
                and ``force`` was not given
        """
        partition = self._existing_partition(project, team, task_id)

        with file_lock(partition.tasks_dir), file_lock(partition.task_file(task_id)):
            task = self._load(partition, task_id)
            if task.status != TaskStatus.OPEN or task.owner:
                raise ValidationError(
                    f"Cannot delete task {task_id}: work has started (status {task.status.value})"
                )

            dependents = [
                t.id for t in self._load_all(partition) if task_id in t.blocked_by
            ]
            if dependents and not force:
                raise ValidationError(
                    f"Tasks {', '.join(dependents)} depend on task {task_id}; use force to delete"
                )

            try:
                partition.task_file(task_id).unlink()
            except OSError as e:
                raise StorageError(f"Cannot delete task {task_id}: {e}") from e

        logger.info(f"Deleted task {project}/{team}/{task_id}")
        return dependents

    # --- Waves ---

    def _compute_waves(
        self, project: str, team: str
    ) -> tuple[list[Task], list[list[str]], dict[str, list[str]]]:
        tasks = self._load_all(self._partition(project, team))
        waves, missing = compute_waves({t.id: t.blocked_by for t in tasks})
        for task_id, deps in missing.items():
            logger.warning(
                f"Task {project}/{team}/{task_id} depends on missing task(s) {', '.join(deps)}"
            )
        return tasks, waves, missing

    def waves(self, project: str, team: str) -> list[list[str]]:
        """Group the partition's tasks into parallel execution waves.

        References to tasks that do not exist are logged as warnings and
        otherwise ignored.

        Returns:
            Task IDs per wave, first wave first, each sorted with compare_task_ids

        Raises:
            ValidationError: If the dependencies contain a cycle
        """
        _, waves, _ = self._compute_waves(project, team)
        return waves

    def wave_status(self, project: str, team: str) -> WavePlan:
        """Report progress of every dependency wave.

        Wave status is derived from the tasks it holds, so it never goes
        stale when tasks are claimed or resolved.
        """
        tasks, waves, missing = self._compute_waves(project, team)
        by_id = {t.id: t for t in tasks}

        plan = WavePlan(total_waves=len(waves), missing_dependencies=missing)
        for number, task_ids in enumerate(waves, start=1):
            members = [by_id[task_id] for task_id in task_ids]
            wave = Wave(
                id=number,
                status=wave_state(members),
                tasks=[
                    WaveTask(id=t.id, title=t.title, role=t.role, status=t.status, owner=t.owner)
                    for t in members
                ],
            )
            plan.waves.append(wave)

            if wave.status == WaveState.COMPLETED:
                plan.completed += 1
            elif wave.status == WaveState.FAILED:
                plan.failed += 1
            elif wave.status == WaveState.IN_PROGRESS:
                plan.in_progress += 1
            else:
                plan.remaining += 1

            if plan.current_wave is None and wave.status != WaveState.COMPLETED:
                plan.current_wave = number
        return plan
