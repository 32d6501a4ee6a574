import logging
import os
import re
import shutil
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

_VERSION_REQUEST = re.compile(r"\d+(\.\d+){0,2}")


class EnvironmentInitError(Exception):
    """Error raised when the project environment cannot be found or created."""
    pass


@dataclass(frozen=True)
class PythonEnvironment:
    """A virtual environment and the interpreter inside it."""
    root: Path
    interpreter: Path


def _venv_interpreter(venv_root: Path) -> Path:
    if os.name == "nt":
        return venv_root / "Scripts" / "python.exe"
    return venv_root / "bin" / "python"


def _venv_version(venv_root: Path) -> Optional[str]:
    """Reads the Python version recorded in pyvenv.cfg."""
    try:
        lines = (venv_root / "pyvenv.cfg").read_text(encoding="utf-8").splitlines()
    except OSError:
        return None
    for line in lines:
        key, sep, value = line.partition("=")
        if sep and key.strip() in ("version", "version_info"):
            return value.strip()
    return None


def _satisfies(version: Optional[str], python: Optional[str]) -> bool:
    if python is None or not _VERSION_REQUEST.fullmatch(python):
        return True
    if version is None:
        return False
    return version == python or version.startswith(python + ".")


def find_interpreter(python: Optional[str] = None) -> Path:
    """
    Resolves an interpreter request: a path, an executable name such as
    `python3.12`, or a bare version such as `3.12`. No request means the
    interpreter running this tool.
    """
    if python is None:
        return Path(sys.executable)
    candidate = Path(python).expanduser()
    if candidate.is_file():
        return candidate
    for name in (python, f"python{python}"):
        found = shutil.which(name)
        if found:
            return Path(found)
    raise EnvironmentInitError(f"No interpreter found for Python {python}.")


def init_environment(workspace_root: Path, python: Optional[str] = None,
                     venv_dir: str = ".venv") -> PythonEnvironment:
    """
    Returns the project's virtual environment, creating it when it is missing
    or was built for a different Python version than the one requested.
    """
    venv_root = workspace_root / venv_dir
    interpreter = _venv_interpreter(venv_root)

    if interpreter.exists():
        if _satisfies(_venv_version(venv_root), python):
            logger.debug(f"Using virtual environment at '{venv_root}'.")
            return PythonEnvironment(venv_root, interpreter)
        logger.info(f"Virtual environment at '{venv_root}' does not match Python {python}; recreating it.")

    base = find_interpreter(python)
    logger.info(f"Creating virtual environment at: {venv_root}")
    command = [str(base), "-m", "venv", "--clear", "--without-pip", str(venv_root)]
    try:
        subprocess.run(command, check=True, capture_output=True, text=True)
    except subprocess.CalledProcessError as e:
        raise EnvironmentInitError(
            f"Failed to create virtual environment at '{venv_root}': {e.stderr.strip() or e}") from e
    except OSError as e:
        raise EnvironmentInitError(f"Failed to run '{base}': {e}") from e

    return PythonEnvironment(venv_root, interpreter)
