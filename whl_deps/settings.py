import logging
import os
import shlex
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from whl_deps.backends import IndexLocations

SETTINGS_FILENAME = "whl-deps.yaml"
_TRUTHY = {"1", "true", "yes", "on"}


class SettingsError(Exception):
    "Generic settings error"


class SettingsFileNotFoundError(SettingsError):
    "Settings file not found"


class SettingsFormatError(SettingsError):
    "Settings file format error"


def _string_list(key: str, value: Any) -> List[str]:
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise SettingsFormatError(f"'{key}' must be a string or a list of strings.")
    return list(value)


def _command(key: str, value: Any) -> List[str]:
    """Commands may be written as one shell-like string or as a list."""
    command = shlex.split(value) if isinstance(value, str) else _string_list(key, value)
    if not command:
        raise SettingsFormatError(f"'{key}' must not be empty.")
    return command


@dataclass
class Settings:
    """
    User settings for whl-deps, read from `whl-deps.yaml`.
    Every field has a default, so an empty or missing file is valid.
    """
    index_url: Optional[str] = None
    extra_index_urls: List[str] = field(default_factory=list)
    find_links: List[str] = field(default_factory=list)
    venv_dir: str = ".venv"
    lock_command: List[str] = field(default_factory=lambda: ["uv", "lock"])
    sync_command: List[str] = field(default_factory=lambda: ["uv", "sync"])
    lock_file: str = "uv.lock"
    lock_timeout: float = 10.0
    preview: bool = False

    def __post_init__(self):
        """Validates and normalizes the values after initialization."""
        if self.index_url is not None and not isinstance(self.index_url, str):
            raise SettingsFormatError("'index_url' must be a string.")
        self.extra_index_urls = _string_list('extra_index_urls', self.extra_index_urls)
        self.find_links = _string_list('find_links', self.find_links)
        self.lock_command = _command('lock_command', self.lock_command)
        self.sync_command = _command('sync_command', self.sync_command)
        for key in ('venv_dir', 'lock_file'):
            value = getattr(self, key)
            if not isinstance(value, str) or not value.strip():
                raise SettingsFormatError(f"'{key}' must be a non-empty string.")
        if isinstance(self.lock_timeout, bool) or not isinstance(self.lock_timeout, (int, float)) \
                or self.lock_timeout <= 0:
            raise SettingsFormatError("'lock_timeout' must be a positive number of seconds.")
        self.lock_timeout = float(self.lock_timeout)
        if not isinstance(self.preview, bool):
            raise SettingsFormatError("'preview' must be true or false.")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        """Factory method to create a Settings instance from a dictionary."""
        if not isinstance(data, dict):
            raise SettingsFormatError(
                f"Settings must be a mapping, got {type(data).__name__}.")

        # Keys may be spelled with dashes, as in pyproject.toml.
        known_field_names = {f.name for f in fields(cls)}
        init_data = {}
        for key, value in data.items():
            name = str(key).replace('-', '_')
            if name not in known_field_names:
                logging.warning(f"Ignoring unknown settings key '{key}'.")
                continue
            init_data[name] = value
        return cls(**init_data)

    def with_environment(self, environ: Mapping[str, str]) -> "Settings":
        """Applies `WHL_DEPS_*` environment overrides, returning a new instance."""
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        if 'WHL_DEPS_PREVIEW' in environ:
            data['preview'] = environ['WHL_DEPS_PREVIEW'].strip().lower() in _TRUTHY
        if environ.get('WHL_DEPS_INDEX_URL'):
            data['index_url'] = environ['WHL_DEPS_INDEX_URL']
        return Settings(**data)

    def index_locations(self) -> IndexLocations:
        return IndexLocations(
            index_url=self.index_url,
            extra_index_urls=tuple(self.extra_index_urls),
            find_links=tuple(self.find_links),
        )


def load_settings(path: Optional[Path] = None, project_dir: Optional[Path] = None,
                  environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Loads settings from `path`, or from `whl-deps.yaml` in `project_dir` when no
    path is given, then applies environment overrides.

    Raises:
        SettingsFileNotFoundError: If an explicit `path` does not exist.
        SettingsFormatError: On YAML syntax or validation errors.
    """
    environ = os.environ if environ is None else environ
    if path is None and project_dir is not None:
        candidate = Path(project_dir) / SETTINGS_FILENAME
        path = candidate if candidate.is_file() else None
    elif path is not None and not Path(path).is_file():
        raise SettingsFileNotFoundError(f"Settings file not found: {path}")

    if path is None:
        return Settings().with_environment(environ)

    try:
        with Path(path).open('r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise SettingsFormatError(f"YAML syntax error in '{path}': {e}") from e
    except OSError as e:
        raise SettingsError(f"Failed to read settings file '{path}': {e}") from e

    try:
        settings = Settings.from_dict({} if data is None else data)
    except SettingsFormatError as e:
        raise SettingsFormatError(f"Invalid settings in '{path}': {e}") from e
    logging.debug(f"Loaded settings from '{path}'.")
    return settings.with_environment(environ)
