"""Filesystem persistence primitives: partitions, atomic writes and locks."""

from __future__ import annotations

import fcntl
import json
import logging
import os
import tempfile
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from teamwork import config
from teamwork.errors import StorageError

logger = logging.getLogger(__name__)

PROJECT_FILE = "project.json"
TASKS_DIR = "tasks"
INBOXES_DIR = "inboxes"
LOCK_SUFFIX = ".lock"


@dataclass(frozen=True)
class Partition:
    """The (project, team) key resolved against a storage root.

    Layout:
      <base>/<project>/<team>/project.json
      <base>/<project>/<team>/tasks/<task_id>.json
      <base>/<project>/<team>/inboxes/<inbox>.json
    """

    base_dir: Path
    project: str
    team: str

    @property
    def root(self) -> Path:
        return self.base_dir / self.project / self.team

    @property
    def project_file(self) -> Path:
        return self.root / PROJECT_FILE

    @property
    def tasks_dir(self) -> Path:
        return self.root / TASKS_DIR

    @property
    def inboxes_dir(self) -> Path:
        return self.root / INBOXES_DIR

    def task_file(self, task_id: str) -> Path:
        return self.tasks_dir / f"{task_id}.json"

    def inbox_file(self, inbox: str) -> Path:
        return self.inboxes_dir / f"{inbox}.json"

    def list_task_ids(self) -> list[str]:
        """IDs of all task records, in directory order."""
        if not self.tasks_dir.is_dir():
            return []
        try:
            return [p.stem for p in self.tasks_dir.glob("*.json") if p.is_file()]
        except OSError as e:
            raise StorageError(f"Cannot list tasks in {self.tasks_dir}: {e}") from e


def read_json(path: Path) -> Any:
    """Read and parse a JSON file.

    Raises:
        FileNotFoundError: If the file does not exist
        StorageError: If the file is unreadable or not valid JSON
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise
    except OSError as e:
        raise StorageError(f"Cannot read {path}: {e}") from e

    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise StorageError(f"Corrupted JSON in {path}: {e}") from e


def atomic_write_json(path: Path, data: Any) -> None:
    """Write JSON so readers only ever see the old or the new content.

    The data goes to a temp file in the same directory, which is fsynced and
    then renamed over the target.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    except OSError as e:
        raise StorageError(f"Cannot write {path}: {e}") from e

    logger.debug(f"Wrote {path}")


@contextmanager
def file_lock(
    path: Path,
    timeout: float = config.LOCK_TIMEOUT,
    poll_interval: float = config.LOCK_POLL_INTERVAL,
) -> Iterator[None]:
    """Hold an exclusive inter-process lock for a record.

    The lock lives on a ``<name>.lock`` sidecar next to ``path`` so the
    record itself can be replaced atomically while the lock is held.

    Args:
        path: Record (or directory) to lock
        timeout: Seconds to wait before giving up
        poll_interval: Seconds between acquisition attempts

    Raises:
        StorageError: If the lock cannot be acquired within the timeout
    """
    lock_path = path.with_name(path.name + LOCK_SUFFIX)
    try:
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        lock_file = open(lock_path, "a+")
    except OSError as e:
        raise StorageError(f"Cannot open lock {lock_path}: {e}") from e

    try:
        deadline = time.monotonic() + timeout
        while True:
            try:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    raise StorageError(
                        f"Could not acquire lock on {path} after {timeout}s"
                    ) from None
                time.sleep(poll_interval)
            except OSError as e:
                raise StorageError(f"Cannot lock {lock_path}: {e}") from e

        logger.debug(f"Locked {path}")
        try:
            yield
        finally:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
            logger.debug(f"Unlocked {path}")
    finally:
        lock_file.close()


def ensure_dir(path: Path) -> Path:
    """Create a directory (and parents) if missing."""
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise StorageError(f"Cannot create directory {path}: {e}") from e
    return path
