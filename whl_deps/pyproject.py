import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Optional, Tuple

from packaging.requirements import InvalidRequirement, Requirement
from packaging.utils import InvalidName, canonicalize_name

from whl_deps.toml_document import (
    Array,
    Document,
    KeyPath,
    ParseError,
    parse,
    remove_item,
    serialize,
)

logger = logging.getLogger(__name__)

DEPENDENCIES: KeyPath = ("project", "dependencies")
OPTIONAL_DEPENDENCIES: KeyPath = ("project", "optional-dependencies")
DEV_DEPENDENCIES: KeyPath = ("tool", "uv", "dev-dependencies")


class PyProjectError(Exception):
    """Base class for pyproject.toml editing errors."""
    pass


class PyProjectParseError(PyProjectError):
    """Error raised when pyproject.toml is not valid TOML."""
    pass


class MalformedDependenciesError(PyProjectError):
    """Error raised when a dependency list is not an array."""
    pass


class InvalidPackageName(ValueError):
    """Error raised for strings that are not valid distribution names."""
    pass


class PackageName(str):
    """
    A distribution name in normalized form.

    Names compare case-insensitively and treat runs of '-', '_' and '.' as
    equal, so `PackageName("My_Pkg") == PackageName("my-pkg")`.
    """

    def __new__(cls, name: str) -> "PackageName":
        try:
            normalized = canonicalize_name(str(name).strip(), validate=True)
        except InvalidName as e:
            raise InvalidPackageName(f"'{name}' is not a valid package name.") from e
        return super().__new__(cls, normalized)


@dataclass(frozen=True)
class DependencyEntry:
    """A requirement removed from a dependency list, as it was written."""
    raw: str
    requirement: Requirement

    @property
    def name(self) -> PackageName:
        return PackageName(self.requirement.name)

    def __str__(self) -> str:
        return str(self.requirement)


@dataclass(frozen=True)
class EditResult:
    """The entries removed for one requested name. Empty means 'not found'."""
    name: PackageName
    section: str
    removed: Tuple[DependencyEntry, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.removed)

    def __len__(self) -> int:
        return len(self.removed)


def _parse_requirement(value) -> Optional[Requirement]:
    if not isinstance(value, str):
        return None
    try:
        return Requirement(value)
    except InvalidRequirement:
        logger.debug(f"Ignoring unparsable requirement {value!r}.")
        return None


class PyProjectEditor:
    """
    Edits the dependency lists of a pyproject.toml without reformatting it.

    The editor never touches storage: build it from text, mutate it, and
    render it back with `to_string()`.
    """

    def __init__(self, document: Document):
        self.document = document

    @classmethod
    def from_toml(cls, text: str) -> "PyProjectEditor":
        """
        Raises:
            PyProjectParseError: If the text is not valid TOML.
        """
        try:
            return cls(parse(text))
        except ParseError as e:
            raise PyProjectParseError(f"Failed to parse pyproject.toml: {e}") from e

    def to_string(self) -> str:
        return serialize(self.document)

    def __str__(self) -> str:
        return self.to_string()

    def remove_dependency(self, name: str) -> EditResult:
        """Removes every `project.dependencies` entry named `name`."""
        return self._remove_from(DEPENDENCIES, PackageName(name))

    def remove_dev_dependency(self, name: str) -> EditResult:
        """Removes every `tool.uv.dev-dependencies` entry named `name`."""
        return self._remove_from(DEV_DEPENDENCIES, PackageName(name))

    def remove_optional_dependency(self, name: str, group: str) -> EditResult:
        """Removes every entry named `name` from the optional dependency `group`."""
        return self._remove_from(self._optional_group_path(group), PackageName(name))

    def _optional_group_path(self, group: str) -> KeyPath:
        # Extra names follow the same normalization rule as package names.
        wanted = canonicalize_name(group)
        groups = self.document.get(OPTIONAL_DEPENDENCIES)
        if isinstance(groups, Mapping):
            for key in groups:
                if canonicalize_name(key) == wanted:
                    return OPTIONAL_DEPENDENCIES + (key,)
        return OPTIONAL_DEPENDENCIES + (group,)

    def _remove_from(self, path: KeyPath, name: PackageName) -> EditResult:
        section = ".".join(path)
        node = self.document.get(path)
        if node is None:
            logger.debug(f"No `{section}` in pyproject.toml.")
            return EditResult(name, section)
        if not isinstance(node, Array):
            raise MalformedDependenciesError(
                f"`{section}` must be an array of requirement strings.")

        matches = []
        for index, item in enumerate(node):
            requirement = _parse_requirement(item)
            if requirement is not None and canonicalize_name(requirement.name) == name:
                matches.append((index, requirement))

        removed = []
        # Back to front so earlier indexes stay valid.
        for index, requirement in reversed(matches):
            raw = remove_item(node, index).as_string()
            removed.append(DependencyEntry(raw, requirement))
        removed.reverse()

        if removed:
            logger.debug(f"Removed {len(removed)} entr{'y' if len(removed) == 1 else 'ies'} "
                         f"for '{name}' from `{section}`.")
        return EditResult(name, section, tuple(removed))
