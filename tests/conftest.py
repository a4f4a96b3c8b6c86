"""Shared pytest fixtures for specharness tests."""

from __future__ import annotations

import dataclasses
import os
import pathlib
import typing as typ

import pygit2
import pytest

from specharness.capabilities import RuntimeCapabilities, Version
from specharness.config import HarnessConfig
from specharness.harness import SessionHarness


@dataclasses.dataclass(frozen=True, slots=True)
class ProcessSnapshot:
    """Working directory and environment saved around a test."""

    cwd: pathlib.Path
    env: dict[str, str]


@pytest.fixture
def isolated_process() -> typ.Iterator[ProcessSnapshot]:
    """Put the process cwd and environment back after the test.

    The harness mutates both directly, which ``monkeypatch`` cannot undo.
    """
    snapshot = ProcessSnapshot(cwd=pathlib.Path.cwd(), env=dict(os.environ))
    try:
        yield snapshot
    finally:
        os.chdir(snapshot.cwd)
        os.environ.clear()
        os.environ.update(snapshot.env)


@pytest.fixture
def harness_config(tmp_path: pathlib.Path) -> HarnessConfig:
    """Return a configuration rooted in the test's temporary directory."""
    return HarnessConfig(
        scratch_root=tmp_path / "scratch",
        status_file=tmp_path / "status.yaml",
    )


@pytest.fixture
def session_harness(
    harness_config: HarnessConfig,
    isolated_process: ProcessSnapshot,
) -> typ.Iterator[SessionHarness]:
    """Provide an uninitialised harness that is closed after the test."""
    harness = SessionHarness(harness_config)
    try:
        yield harness
    finally:
        harness.close()


@pytest.fixture
def capabilities() -> RuntimeCapabilities:
    """Return a fixed capability snapshot for filter tests."""
    return RuntimeCapabilities(
        python=Version.parse("3.11.4"),
        vcs=Version.parse("1.7.1"),
        package_manager=Version.parse("23.2"),
    )


@dataclasses.dataclass(slots=True)
class FixtureRepo:
    """Expose repository handle and path for tests."""

    repository: pygit2.Repository
    path: pathlib.Path

    def read_text(self, relative_path: str) -> str:
        """Read a file relative to the repository root."""
        return (self.path / relative_path).read_text(encoding="utf-8")

    def tracked_files(self) -> set[str]:
        """Return every path committed on HEAD."""
        tree = self.repository.head.peel(pygit2.Commit).tree
        return self._walk(tree, "")

    def _walk(self, tree: pygit2.Tree, prefix: str) -> set[str]:
        paths: set[str] = set()
        for entry in tree:
            name = f"{prefix}{entry.name}"
            if entry.type_str == "tree":
                subtree = typ.cast("pygit2.Tree", self.repository[entry.id])
                paths |= self._walk(subtree, f"{name}/")
            else:
                paths.add(name)
        return paths


@pytest.fixture
def open_fixture_repo() -> typ.Callable[[pathlib.Path], FixtureRepo]:
    """Return a helper opening a built fixture repository."""

    def _open(path: pathlib.Path) -> FixtureRepo:
        return FixtureRepo(repository=pygit2.Repository(str(path)), path=path)

    return _open
