"""Runtime capability snapshot and version requirement matching."""

from __future__ import annotations

import collections.abc as cabc
import dataclasses
import functools
import operator
import os
import platform
import re
import shutil
import typing as typ
from importlib import metadata

import pygit2

from .errors import InvalidVersionError

ENV_SUDO_TESTS = "SPECHARNESS_SUDO_TESTS"
ENV_REALWORLD_TESTS = "SPECHARNESS_REALWORLD_TESTS"
ENV_TOOLCHAIN = "SPECHARNESS_TOOLCHAIN"
ENV_CI = "CI"
DEFAULT_PACKAGE_MANAGER = "pip"

_VERSION_PREFIX = re.compile(r"^\s*v?(\d+(?:\.\d+)*)")
_CLAUSE = re.compile(r"^\s*(~>|~=|>=|<=|==|!=|>|<)?\s*(\S+)\s*$")


@functools.total_ordering
@dataclasses.dataclass(frozen=True, slots=True)
class Version:
    """A dotted numeric version; trailing zeros do not affect ordering."""

    parts: tuple[int, ...]

    @classmethod
    def parse(cls, value: str | Version) -> Version:
        """Parse ``value``, ignoring any pre-release or build suffix."""
        if isinstance(value, Version):
            return value
        match = _VERSION_PREFIX.match(str(value))
        if match is None:
            raise InvalidVersionError(str(value))
        return cls(tuple(int(part) for part in match.group(1).split(".")))

    def _key(self) -> tuple[int, ...]:
        parts = list(self.parts)
        while len(parts) > 1 and parts[-1] == 0:
            parts.pop()
        return tuple(parts)

    def __eq__(self, other: object) -> bool:
        """Compare versions numerically."""
        if not isinstance(other, Version):
            return NotImplemented
        return self._key() == other._key()

    def __lt__(self, other: Version) -> bool:
        """Order versions numerically."""
        return self._key() < other._key()

    def __hash__(self) -> int:
        """Hash consistently with equality."""
        return hash(self._key())

    def __str__(self) -> str:
        """Render the version as dotted text."""
        return ".".join(str(part) for part in self.parts)


def _compatible(provided: Version, required: Version) -> bool:
    if provided < required:
        return False
    prefix = required.parts[:-1] if len(required.parts) > 1 else required.parts
    padded = provided.parts + (0,) * (len(prefix) - len(provided.parts))
    return padded[: len(prefix)] == prefix


_OPERATORS: dict[str, typ.Callable[[Version, Version], bool]] = {
    ">=": operator.ge,
    ">": operator.gt,
    "<=": operator.le,
    "<": operator.lt,
    "==": operator.eq,
    "!=": operator.ne,
    "~=": _compatible,
    "~>": _compatible,
}


@dataclasses.dataclass(frozen=True, slots=True)
class Requirement:
    """A conjunction of version clauses such as ``>= 3.10, < 4``.

    A bare version with no operator means "at least this version".
    """

    clauses: tuple[tuple[str, Version], ...]
    text: str

    @classmethod
    def parse(cls, value: str | Version) -> Requirement:
        """Parse a requirement string."""
        text = str(value).strip()
        if not text:
            raise InvalidVersionError(text)
        clauses = []
        for chunk in text.split(","):
            match = _CLAUSE.match(chunk)
            if match is None:
                raise InvalidVersionError(text)
            op = match.group(1) or ">="
            clauses.append((op, Version.parse(match.group(2))))
        return cls(clauses=tuple(clauses), text=text)

    def satisfied_by(self, provided: Version | str) -> bool:
        """Return True when ``provided`` satisfies every clause."""
        version = Version.parse(provided)
        return all(_OPERATORS[op](version, bound) for op, bound in self.clauses)

    def __str__(self) -> str:
        """Return the original requirement text."""
        return self.text


def env_flag(name: str, environ: cabc.Mapping[str, str] | None = None) -> bool:
    """Return True when ``name`` is set to a non-empty value."""
    source = os.environ if environ is None else environ
    return bool(source.get(name, "").strip())


@dataclasses.dataclass(frozen=True, slots=True)
class RuntimeCapabilities:
    """What the current runtime can satisfy, captured once per run."""

    python: Version
    vcs: Version
    package_manager: Version | None = None
    network: bool = False
    privileged: bool = False
    toolchain_master: bool = False
    ci: bool = False

    def describe(self) -> dict[str, str]:
        """Return a printable mapping of every capability."""
        return {
            "python": str(self.python),
            "package_manager": str(self.package_manager or "absent"),
            "vcs": str(self.vcs),
            "network": str(self.network).lower(),
            "privileged": str(self.privileged).lower(),
            "toolchain_master": str(self.toolchain_master).lower(),
            "ci": str(self.ci).lower(),
        }


def package_manager_version(distribution: str) -> Version | None:
    """Return the installed version of ``distribution`` if present."""
    try:
        return Version.parse(metadata.version(distribution))
    except metadata.PackageNotFoundError:
        return None


def sudo_available() -> bool:
    """Return True when a ``sudo`` binary is on the PATH."""
    return shutil.which("sudo") is not None


def detect_capabilities(
    *,
    environ: cabc.Mapping[str, str] | None = None,
    package_manager: str = DEFAULT_PACKAGE_MANAGER,
) -> RuntimeCapabilities:
    """Build the capability snapshot for the running interpreter."""
    source = os.environ if environ is None else environ
    return RuntimeCapabilities(
        python=Version.parse(platform.python_version()),
        vcs=Version.parse(pygit2.LIBGIT2_VERSION),
        package_manager=package_manager_version(package_manager),
        network=env_flag(ENV_REALWORLD_TESTS, source),
        privileged=env_flag(ENV_SUDO_TESTS, source) and sudo_available(),
        toolchain_master=source.get(ENV_TOOLCHAIN, "") == "master",
        ci=env_flag(ENV_CI, source),
    )
