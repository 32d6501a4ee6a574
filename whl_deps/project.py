import logging
from pathlib import Path
from typing import Optional, Union

import tomlkit
from tomlkit.exceptions import TOMLKitError

logger = logging.getLogger(__name__)

PYPROJECT_FILENAME = "pyproject.toml"


class ProjectDiscoveryError(Exception):
    """Error raised when no project can be found."""
    pass


class ProjectWorkspace:
    """A project root: the directory holding a pyproject.toml with a [project] table."""

    def __init__(self, root: Path, project_name: Optional[str] = None):
        self.root = root
        self.project_name = project_name

    @property
    def pyproject_path(self) -> Path:
        return self.root / PYPROJECT_FILENAME

    @classmethod
    def discover(cls, path: Union[str, Path]) -> "ProjectWorkspace":
        """
        Walks up from `path` to the nearest pyproject.toml that declares a project.

        A pyproject.toml that is not valid TOML still ends the search; reporting
        the syntax error is left to whoever edits the file.

        Raises:
            ProjectDiscoveryError: If no project is found.
        """
        start = Path(path).resolve()
        for directory in (start, *start.parents):
            candidate = directory / PYPROJECT_FILENAME
            if not candidate.is_file():
                continue
            try:
                data = tomlkit.parse(candidate.read_text(encoding="utf-8")).unwrap()
            except TOMLKitError:
                logger.debug(f"'{candidate}' is not valid TOML; using it as the project anyway.")
                return cls(directory)
            except OSError as e:
                raise ProjectDiscoveryError(f"Failed to read '{candidate}': {e}") from e

            project = data.get("project")
            if not isinstance(project, dict):
                logger.debug(f"Skipping '{candidate}': no [project] table.")
                continue
            logger.debug(f"Found project at '{directory}'.")
            return cls(directory, project.get("name"))

        raise ProjectDiscoveryError(
            f"No `{PYPROJECT_FILENAME}` with a [project] table found in '{start}' or any parent directory.")

    def __repr__(self) -> str:
        return f"ProjectWorkspace(root='{self.root}', name={self.project_name!r})"
