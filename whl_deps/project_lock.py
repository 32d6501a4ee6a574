import logging
from pathlib import Path
from typing import Union

from filelock import FileLock, Timeout


class ProjectLockError(Exception):
    """Base class for project lock errors."""
    pass


class ProjectLockTimeoutError(ProjectLockError):
    """Raised when another whl-deps process holds the project lock for too long."""

    def __init__(self, lock_file: str, timeout: float):
        message = f"Timeout ({timeout}s) occurred while waiting for another whl-deps process: {lock_file}"
        super().__init__(message)
        self.lock_file = lock_file
        self.timeout = timeout


class ProjectLock:
    """
    A cross-platform context manager serializing whl-deps runs on one project.

    The remove workflow itself does not coordinate concurrent runs against the
    same pyproject.toml; callers wrap it in this lock.
    """

    def __init__(self, project_root: Path, timeout: float = 10.0, lock_file_name: str = ".whl-deps.lock"):
        if not isinstance(project_root, Path):
            raise TypeError("project_root must be a Path object")

        self.project_root = project_root
        self.timeout = timeout
        self.lock_file_path = self.project_root.resolve() / lock_file_name
        self._lock: Union[FileLock, None] = None
        self.logger = logging.getLogger(__name__)

    def __enter__(self):
        self.logger.debug(f"Attempting to acquire lock: {self.lock_file_path}")
        self._lock = FileLock(str(self.lock_file_path), timeout=self.timeout)

        try:
            self._lock.acquire()
            self.logger.debug(f"Lock acquired: {self.lock_file_path}")
        except Timeout:
            raise ProjectLockTimeoutError(str(self.lock_file_path), self.timeout)
        except OSError as e:
            raise ProjectLockError(
                f"Failed to acquire lock {self.lock_file_path}: {e}") from e
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._lock and self._lock.is_locked:
            self._lock.release()
            self.logger.debug(f"Lock released: {self.lock_file_path}")
        # Leave the lock file: other processes may be blocked on it.
        return False
