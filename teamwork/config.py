"""Default settings for teamwork storage and polling."""

from __future__ import annotations

import os
from pathlib import Path

BASE_DIR_ENV = "TEAMWORK_BASE_DIR"
DEFAULT_BASE_DIR = Path.home() / ".teamwork"

# Inter-process lock acquisition
LOCK_TIMEOUT = 10.0  # seconds
LOCK_POLL_INTERVAL = 0.1  # seconds

# Mailbox polling
DEFAULT_POLL_TIMEOUT_MS = 30000
POLL_INTERVAL = 0.5  # seconds

ORCHESTRATOR_INBOX = "orchestrator"


def get_base_dir(base_dir: Path | str | None = None) -> Path:
    """Resolve the root directory holding all project partitions.

    Args:
        base_dir: Explicit directory; takes precedence over the environment

    Returns:
        Absolute path to the teamwork root
    """
    if base_dir:
        return Path(base_dir).expanduser().resolve()
    env_value = os.environ.get(BASE_DIR_ENV)
    if env_value:
        return Path(env_value).expanduser().resolve()
    return DEFAULT_BASE_DIR
