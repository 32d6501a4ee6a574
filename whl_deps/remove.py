#!/usr/bin/env python

# Copyright 2024 daohu527 <daohu527@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import difflib
import enum
import logging
import os
import shutil
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple, Union

from whl_deps.backends import (
    BackendError,
    CommandLocker,
    CommandSyncer,
    ExtrasSpecification,
    Lock,
    LockInput,
    Locker,
    SyncInput,
    Syncer,
    Upgrade,
)
from whl_deps.environment import EnvironmentInitError, PythonEnvironment, init_environment
from whl_deps.project import ProjectDiscoveryError, ProjectWorkspace
from whl_deps.pyproject import (
    EditResult,
    PackageName,
    PyProjectEditor,
    PyProjectError,
)
from whl_deps.settings import Settings

logger = logging.getLogger(__name__)
warnings_logger = logging.getLogger("whl_deps.warnings")


def warn_user(message: str) -> None:
    """Shows an advisory to the user. Holds no state between calls."""
    warnings_logger.warning(message)


class ExitStatus(enum.IntEnum):
    SUCCESS = 0
    FAILURE = 1
    ERROR = 2


class Stage(enum.Enum):
    START = "start"
    MANIFEST_LOADED = "manifest loaded"
    EDITS_APPLIED = "edits applied"
    MANIFEST_PERSISTED = "manifest persisted"
    ENVIRONMENT_READY = "environment ready"
    LOCKED = "locked"
    SYNCED = "synced"
    DONE = "done"


_PERSISTED_STAGES = {
    Stage.MANIFEST_PERSISTED,
    Stage.ENVIRONMENT_READY,
    Stage.LOCKED,
    Stage.SYNCED,
    Stage.DONE,
}


# ==============================================================================
# Errors
# ==============================================================================


class RemoveError(Exception):
    """
    Base class for failures of the remove workflow.

    `stage` is the last stage that completed before the failure and `cause` the
    underlying exception, if any.
    """

    def __init__(self, message: str, stage: Stage, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.stage = stage
        self.cause = cause

    @property
    def manifest_persisted(self) -> bool:
        """True if pyproject.toml was already rewritten when the failure happened."""
        return self.stage in _PERSISTED_STAGES


class ProjectNotFoundError(RemoveError):
    pass


class ManifestParseError(RemoveError):
    pass


class DependencyNotFoundError(RemoveError):
    def __init__(self, name: PackageName, section: str, stage: Stage):
        super().__init__(f"The dependency `{name}` could not be found in `{section}`", stage)
        self.name = name
        self.section = section


class PersistError(RemoveError):
    pass


class EnvironmentSetupError(RemoveError):
    pass


class LockError(RemoveError):
    pass


class SyncError(RemoveError):
    pass


_ALREADY_WRITTEN = "pyproject.toml has already been updated"


# ==============================================================================
# Workflow
# ==============================================================================


class DependencyRemover:
    """
    Removes dependencies from a project and brings its environment up to date.

    The workflow is linear: load the manifest, apply every removal in memory,
    write the manifest once, then prepare the environment, lock and sync. Any
    failure stops the run. Nothing is rolled back: once the manifest is written
    it stays written and is a valid manifest on its own. Locking and syncing
    again after fixing the cause completes the remaining steps.
    """

    def __init__(self,
                 settings: Optional[Settings] = None,
                 discover: Callable[[Path], ProjectWorkspace] = ProjectWorkspace.discover,
                 init_env: Callable[..., PythonEnvironment] = init_environment,
                 locker: Optional[Locker] = None,
                 syncer: Optional[Syncer] = None):
        self.settings = settings or Settings()
        self.discover = discover
        self.init_env = init_env
        self.locker = locker or CommandLocker(self.settings.lock_command, self.settings.lock_file)
        self.syncer = syncer or CommandSyncer(self.settings.sync_command)
        self.stage = Stage.START

    def _advance(self, stage: Stage):
        logger.debug(f"Stage: {self.stage.value} -> {stage.value}")
        self.stage = stage

    def remove(self,
               requirements: Iterable[str],
               python: Optional[str] = None,
               preview: bool = False,
               dev: bool = False,
               optional: Optional[str] = None,
               dry_run: bool = False,
               directory: Optional[Union[str, Path]] = None,
               workspace: Optional[ProjectWorkspace] = None) -> ExitStatus:
        """
        Removes `requirements` from the project found at `directory`.

        Args:
            requirements: Package names, removed in the given order.
            python: Interpreter request used if the environment must be created.
            preview: Enables preview features, as does `preview` in the settings.
                Without it the experimental-command warning is shown.
            dev: Remove from the development dependencies instead.
            optional: Remove from this optional dependency group instead.
            dry_run: Only show the manifest change; write, lock and sync nothing.
            directory: Where project discovery starts (default: current directory).
            workspace: An already discovered project. Skips discovery.

        Raises:
            RemoveError: A subclass naming the failing step.
        """
        preview = preview or self.settings.preview
        if not preview:
            warn_user("`whl-deps remove` is experimental and may change without warning.")

        names = [PackageName(r) for r in requirements]
        if not names:
            raise ValueError("Must specify at least one package to remove.")

        self.stage = Stage.START
        project = workspace if workspace is not None else self._discover_project(directory)
        original, updated = self._edit_manifest(project, names, dev, optional)

        if dry_run:
            self._show_diff(project.pyproject_path, original, updated)
            return ExitStatus.SUCCESS

        self._persist(project.pyproject_path, updated)
        environment = self._init_environment(project, python)
        lock = self._lock(project, environment, preview)
        self._sync(project, environment, lock, preview)

        self._advance(Stage.DONE)
        return ExitStatus.SUCCESS

    # --- Steps ---

    def _discover_project(self, directory: Optional[Union[str, Path]]) -> ProjectWorkspace:
        try:
            return self.discover(Path(directory) if directory is not None else Path.cwd())
        except ProjectDiscoveryError as e:
            raise ProjectNotFoundError(str(e), self.stage, e) from e

    def _edit_manifest(self, project: ProjectWorkspace, names: List[PackageName],
                       dev: bool, optional: Optional[str]) -> Tuple[str, str]:
        """Returns the manifest text before and after the removals. Writes nothing."""
        path = project.pyproject_path
        try:
            with path.open('r', encoding='utf-8', newline='') as f:
                original = f.read()
        except OSError as e:
            raise ProjectNotFoundError(f"Failed to read '{path}': {e}", self.stage, e) from e

        try:
            editor = PyProjectEditor.from_toml(original)
        except PyProjectError as e:
            raise ManifestParseError(f"{e} ({path})", self.stage, e) from e
        self._advance(Stage.MANIFEST_LOADED)

        for name in names:
            try:
                if optional is not None:
                    result = editor.remove_optional_dependency(name, optional)
                elif dev:
                    result = editor.remove_dev_dependency(name)
                else:
                    result = editor.remove_dependency(name)
            except PyProjectError as e:
                raise ManifestParseError(f"{e} ({path})", self.stage, e) from e
            if not result:
                raise DependencyNotFoundError(name, result.section, self.stage)
            self._report(result)

        self._advance(Stage.EDITS_APPLIED)
        return original, editor.to_string()

    @staticmethod
    def _report(result: EditResult):
        for entry in result.removed:
            logger.info(f"Removing `{entry}` from `{result.section}`.")

    @staticmethod
    def _show_diff(path: Path, original: str, updated: str):
        diff = difflib.unified_diff(
            original.splitlines(keepends=True),
            updated.splitlines(keepends=True),
            fromfile=f"{path} (current)",
            tofile=f"{path} (after removal)",
        )
        print("--- Dry Run: pyproject.toml changes ---")
        print("".join(diff), end="")
        print("--- End of Dry Run ---")

    def _persist(self, path: Path, text: str):
        """Atomically replaces the manifest, keeping its permissions."""
        temp_path = path.with_suffix(f".tmp-{os.urandom(4).hex()}")
        try:
            with temp_path.open('w', encoding='utf-8', newline='') as f:
                f.write(text)
            shutil.copymode(path, temp_path)
            os.replace(temp_path, path)
        except OSError as e:
            temp_path.unlink(missing_ok=True)
            raise PersistError(f"Failed to write '{path}': {e}", self.stage, e) from e
        logger.debug(f"Wrote '{path}'.")
        self._advance(Stage.MANIFEST_PERSISTED)

    def _init_environment(self, project: ProjectWorkspace, python: Optional[str]) -> PythonEnvironment:
        try:
            environment = self.init_env(project.root, python, self.settings.venv_dir)
        except EnvironmentInitError as e:
            raise EnvironmentSetupError(
                f"Failed to prepare the project environment ({_ALREADY_WRITTEN}): {e}",
                self.stage, e) from e
        self._advance(Stage.ENVIRONMENT_READY)
        return environment

    def _lock(self, project: ProjectWorkspace, environment: PythonEnvironment, preview: bool) -> Lock:
        request = LockInput(
            root_project_name=project.project_name,
            workspace_root=project.root,
            interpreter=environment.interpreter,
            index_locations=self.settings.index_locations(),
            # Removing a dependency never upgrades the others.
            upgrade=Upgrade.NONE,
            exclude_newer=None,
            preview=preview,
        )
        try:
            lock = self.locker.lock(request)
        except BackendError as e:
            raise LockError(
                f"Failed to lock the project ({_ALREADY_WRITTEN}; the lock may be stale): {e}",
                self.stage, e) from e
        self._advance(Stage.LOCKED)
        return lock

    def _sync(self, project: ProjectWorkspace, environment: PythonEnvironment, lock: Lock, preview: bool):
        # A removal can affect any extra or group, so sync everything.
        request = SyncInput(
            project_name=project.project_name,
            workspace_root=project.root,
            environment=environment,
            lock=lock,
            index_locations=self.settings.index_locations(),
            extras=ExtrasSpecification.ALL,
            dev=True,
            preview=preview,
        )
        try:
            self.syncer.sync(request)
        except BackendError as e:
            raise SyncError(
                f"Failed to sync the environment ({_ALREADY_WRITTEN} and locked): {e}",
                self.stage, e) from e
        self._advance(Stage.SYNCED)
