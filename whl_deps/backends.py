"""
Lock and sync collaborators.

The remove workflow only needs two things from the outside world: turn the
edited pyproject.toml into a lock, and make an environment match that lock.
Both are driven as external commands (by default `uv lock` / `uv sync`).
"""

import enum
import logging
import os
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from whl_deps.environment import PythonEnvironment

logger = logging.getLogger(__name__)


class BackendError(Exception):
    """Base class for lock/sync collaborator failures."""
    pass


class CommandFailedError(BackendError):
    """Raised when an external command exits with a non-zero status."""

    def __init__(self, command: Sequence[str], returncode: int, stderr: str = ""):
        message = f"`{' '.join(command)}` exited with status {returncode}"
        if stderr.strip():
            message += f": {stderr.strip()}"
        super().__init__(message)
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr


class Upgrade(enum.Enum):
    NONE = "none"
    ALL = "all"


class ExtrasSpecification(enum.Enum):
    NONE = "none"
    ALL = "all"


@dataclass(frozen=True)
class IndexLocations:
    """Package index and find-links locations. Empty means the tool defaults."""
    index_url: Optional[str] = None
    extra_index_urls: Tuple[str, ...] = ()
    find_links: Tuple[str, ...] = ()

    def to_args(self) -> List[str]:
        args = []
        if self.index_url:
            args += ["--index-url", self.index_url]
        for url in self.extra_index_urls:
            args += ["--extra-index-url", url]
        for location in self.find_links:
            args += ["--find-links", location]
        return args


@dataclass(frozen=True)
class Lock:
    """Opaque handle to a lock artifact."""
    path: Path


@dataclass(frozen=True)
class LockInput:
    root_project_name: Optional[str]
    workspace_root: Path
    interpreter: Path
    index_locations: IndexLocations = IndexLocations()
    upgrade: Upgrade = Upgrade.NONE
    exclude_newer: Optional[datetime] = None
    preview: bool = False


@dataclass(frozen=True)
class SyncInput:
    project_name: Optional[str]
    workspace_root: Path
    environment: PythonEnvironment
    lock: Lock
    index_locations: IndexLocations = IndexLocations()
    extras: ExtrasSpecification = ExtrasSpecification.ALL
    dev: bool = True
    preview: bool = False


class Locker(ABC):
    @abstractmethod
    def lock(self, request: LockInput) -> Lock:
        """Resolves the workspace and writes a lock. Raises BackendError on failure."""


class Syncer(ABC):
    @abstractmethod
    def sync(self, request: SyncInput) -> None:
        """Makes the environment match the lock. Raises BackendError on failure."""


def _run(command: List[str], cwd: Path, env: Optional[Dict[str, str]] = None) -> subprocess.CompletedProcess:
    logger.debug(f"Running: {' '.join(command)} (in '{cwd}')")
    try:
        completed = subprocess.run(command, cwd=cwd, env=env, capture_output=True, text=True)
    except OSError as e:
        raise BackendError(f"Failed to run '{command[0]}': {e}") from e
    if completed.returncode != 0:
        raise CommandFailedError(command, completed.returncode, completed.stderr)
    return completed


class CommandLocker(Locker):
    """Runs a lock command (default `uv lock`) in the workspace root."""

    def __init__(self, command: Sequence[str] = ("uv", "lock"), lock_file: str = "uv.lock"):
        self.command = list(command)
        self.lock_file = lock_file

    def build_command(self, request: LockInput) -> List[str]:
        command = self.command + ["--python", str(request.interpreter)]
        command += request.index_locations.to_args()
        if request.upgrade is Upgrade.ALL:
            command.append("--upgrade")
        if request.exclude_newer is not None:
            command += ["--exclude-newer", request.exclude_newer.isoformat()]
        if request.preview:
            command.append("--preview")
        return command

    def lock(self, request: LockInput) -> Lock:
        _run(self.build_command(request), cwd=request.workspace_root)
        path = request.workspace_root / self.lock_file
        if not path.is_file():
            raise BackendError(f"Lock command succeeded but '{path}' was not written.")
        logger.info(f"Resolved {request.root_project_name or 'workspace'} into '{path.name}'.")
        return Lock(path)


class CommandSyncer(Syncer):
    """Runs a sync command (default `uv sync`) against the project environment."""

    def __init__(self, command: Sequence[str] = ("uv", "sync")):
        self.command = list(command)

    def build_command(self, request: SyncInput) -> List[str]:
        command = self.command + ["--python", str(request.environment.interpreter)]
        command += request.index_locations.to_args()
        if request.extras is ExtrasSpecification.ALL:
            command.append("--all-extras")
        if not request.dev:
            command.append("--no-dev")
        if request.preview:
            command.append("--preview")
        return command

    def sync(self, request: SyncInput) -> None:
        env = dict(os.environ, VIRTUAL_ENV=str(request.environment.root))
        _run(self.build_command(request), cwd=request.workspace_root, env=env)
        logger.info(f"Synced environment at '{request.environment.root}'.")
