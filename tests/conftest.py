"""Shared pytest fixtures: a project on disk and fake lock/sync collaborators."""

from pathlib import Path

import pytest

from whl_deps.backends import BackendError, Lock, Locker, Syncer
from whl_deps.environment import PythonEnvironment
from whl_deps.remove import DependencyRemover
from whl_deps.settings import Settings


class FakeLocker(Locker):
    def __init__(self, error=None):
        self.requests = []
        self.error = error

    def lock(self, request):
        self.requests.append(request)
        if self.error:
            raise BackendError(self.error)
        path = request.workspace_root / "uv.lock"
        path.write_text("version = 1\n")
        return Lock(path)


class FakeSyncer(Syncer):
    def __init__(self, error=None):
        self.requests = []
        self.error = error

    def sync(self, request):
        self.requests.append(request)
        if self.error:
            raise BackendError(self.error)


class FakeEnvironments:
    def __init__(self):
        self.calls = []

    def __call__(self, root: Path, python=None, venv_dir=".venv"):
        self.calls.append((root, python, venv_dir))
        return PythonEnvironment(root / venv_dir, root / venv_dir / "bin" / "python")


@pytest.fixture
def write_project(tmp_path):
    """Writes a pyproject.toml (bytes preserved) and returns its path."""
    def _write(text: str) -> Path:
        path = tmp_path / "pyproject.toml"
        path.write_bytes(text.encode("utf-8"))
        return path
    return _write


@pytest.fixture
def locker():
    return FakeLocker()


@pytest.fixture
def syncer():
    return FakeSyncer()


@pytest.fixture
def environments():
    return FakeEnvironments()


@pytest.fixture
def make_remover(locker, syncer, environments):
    def _make(settings=None, **overrides):
        collaborators = {"locker": locker, "syncer": syncer, "init_env": environments}
        collaborators.update(overrides)
        return DependencyRemover(settings or Settings(), **collaborators)
    return _make


@pytest.fixture
def failing_locker():
    return FakeLocker(error="resolution failed: no solution")


@pytest.fixture
def failing_syncer():
    return FakeSyncer(error="install failed")
