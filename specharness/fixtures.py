"""Scratch directory layout and the fixture repository.

The fixture repository is a git repository simulating a package source. It
is removed when a run starts and rebuilt the first time an example needs it;
everything else in the scratch tree is recreated before every example.
"""

from __future__ import annotations

import dataclasses
import io
import logging
import os
import re
import shutil
import typing as typ
from pathlib import Path

import pygit2
from ruamel.yaml import YAML

from .errors import ScratchRootOverlapError, UnsafePathError

if typ.TYPE_CHECKING:
    import collections.abc as cabc

_logger = logging.getLogger(__name__)

FIXTURE_BRANCH = "main"
FIXTURE_AUTHOR = pygit2.Signature("Spec Harness", "harness@specharness.invalid")
PRESERVED_ENTRIES = frozenset({"repos", "logs"})
INDEX_FILENAME = "index.yaml"
MANIFEST_FILENAME = "package.yaml"

_SAFE_PATH = re.compile(r"[^\w/.\-]")

_yaml = YAML(typ="safe")
_yaml.version = (1, 2)
_yaml.default_flow_style = False


@dataclasses.dataclass(frozen=True, slots=True)
class FixturePackage:
    """One package published by the fixture repository."""

    name: str
    version: str
    dependencies: tuple[str, ...] = ()

    @property
    def full_name(self) -> str:
        """Return ``name-version``."""
        return f"{self.name}-{self.version}"

    def manifest(self) -> dict[str, typ.Any]:
        """Return the manifest document for the package."""
        return {
            "name": self.name,
            "version": self.version,
            "dependencies": list(self.dependencies),
        }


DEFAULT_PACKAGES: tuple[FixturePackage, ...] = (
    FixturePackage("rack", "0.9.1"),
    FixturePackage("rack", "1.0.0"),
    FixturePackage("rack-obama", "1.0", ("rack",)),
    FixturePackage("thin", "1.0", ("rack",)),
    FixturePackage("activesupport", "2.3.2"),
    FixturePackage("rails", "2.3.2", ("activesupport = 2.3.2",)),
    FixturePackage("platform_specific", "1.0"),
)


@dataclasses.dataclass(frozen=True, slots=True)
class ScratchPaths:
    """Named directories inside the scratch tree."""

    root: Path

    @property
    def repos(self) -> Path:
        """Return the directory holding fixture repositories."""
        return self.root / "repos"

    @property
    def repo1(self) -> Path:
        """Return the default fixture repository."""
        return self.repos / "repo1"

    @property
    def app(self) -> Path:
        """Return the scratch application root examples run in."""
        return self.root / "app"

    @property
    def installed(self) -> Path:
        """Return the directory standing in for installed packages."""
        return self.root / "installed"

    @property
    def home(self) -> Path:
        """Return the scratch home directory."""
        return self.root / "home"

    @property
    def tmp(self) -> Path:
        """Return the per-example temporary directory."""
        return self.root / "tmp"

    @property
    def logs(self) -> Path:
        """Return the directory for per-level log files."""
        return self.root / "logs"


def ensure_safe_path(path: Path) -> Path:
    """Reject scratch roots whose absolute path contains special characters."""
    resolved = Path(path).resolve()
    if match := _SAFE_PATH.search(resolved.as_posix()):
        raise UnsafePathError(resolved, match.group(0))
    return resolved


def ensure_separate_root(root: Path, *protected: Path) -> Path:
    """Reject a scratch root that is, or contains, any ``protected`` directory.

    Every example wipes the scratch root, so it must never hold the project.
    """
    resolved = Path(root).resolve()
    for directory in protected:
        target = Path(directory).resolve()
        if resolved == target or resolved in target.parents:
            raise ScratchRootOverlapError(resolved, target)
    return resolved


def remove_fixture_repositories(paths: ScratchPaths) -> None:
    """Delete every fixture repository so the run rebuilds them."""
    shutil.rmtree(paths.repos, ignore_errors=True)


def build_fixture_repository(
    path: Path,
    packages: cabc.Iterable[FixturePackage] = DEFAULT_PACKAGES,
) -> pygit2.Repository:
    """Create a git repository at ``path`` publishing ``packages``."""
    path.mkdir(parents=True, exist_ok=True)
    repository = pygit2.init_repository(str(path), initial_head=FIXTURE_BRANCH)
    published = list(packages)

    index = repository.index
    for package in published:
        relative = f"packages/{package.full_name}/{MANIFEST_FILENAME}"
        _write_yaml(path / relative, package.manifest())
        index.add(relative)
    _write_yaml(
        path / INDEX_FILENAME,
        {"packages": [package.full_name for package in published]},
    )
    index.add(INDEX_FILENAME)
    index.write()
    tree_oid = index.write_tree()

    repository.create_commit(
        f"refs/heads/{FIXTURE_BRANCH}",
        FIXTURE_AUTHOR,
        FIXTURE_AUTHOR,
        "Publish fixture packages",
        tree_oid,
        [],
    )
    repository.set_head(f"refs/heads/{FIXTURE_BRANCH}")
    _logger.debug("built fixture repository at %s (%d packages)", path, len(published))
    return repository


def ensure_fixture_repository(
    path: Path,
    packages: cabc.Iterable[FixturePackage] = DEFAULT_PACKAGES,
) -> Path:
    """Build the fixture repository at ``path`` unless it already exists."""
    if (path / ".git").is_dir():
        return path
    if path.exists():
        shutil.rmtree(path)
    build_fixture_repository(path, packages)
    return path


def read_index(path: Path) -> list[str]:
    """Return the package names listed by the fixture repository at ``path``."""
    loaded = _yaml.load((path / INDEX_FILENAME).read_text(encoding="utf-8")) or {}
    return [str(name) for name in loaded.get("packages", [])]


def reset_scratch(paths: ScratchPaths) -> None:
    """Remove everything but the preserved entries and recreate base dirs."""
    paths.root.mkdir(parents=True, exist_ok=True)
    for entry in paths.root.iterdir():
        if entry.name in PRESERVED_ENTRIES:
            continue
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry)
        else:
            entry.unlink()
    paths.home.mkdir(parents=True, exist_ok=True)
    paths.tmp.mkdir(parents=True, exist_ok=True)


def clear_installed(paths: ScratchPaths) -> Path:
    """Start the example with no installed packages."""
    shutil.rmtree(paths.installed, ignore_errors=True)
    paths.installed.mkdir(parents=True)
    return paths.installed


def enter_app_root(paths: ScratchPaths) -> Path:
    """Create the scratch application root and switch into it."""
    paths.app.mkdir(parents=True, exist_ok=True)
    os.chdir(paths.app)
    return paths.app


def _write_yaml(path: Path, document: dict[str, typ.Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    buffer = io.StringIO()
    _yaml.dump(document, buffer)
    path.write_text(buffer.getvalue(), encoding="utf-8")
