"""Unit tests for version parsing and capability detection."""

from __future__ import annotations

import platform

import pygit2
import pytest
import pytest_mock

from specharness import capabilities as caps
from specharness.capabilities import Requirement, Version, detect_capabilities
from specharness.errors import InvalidVersionError


@pytest.mark.parametrize(
    ("text", "parts"),
    [
        ("3.12.0", (3, 12, 0)),
        ("3.12.0rc1", (3, 12, 0)),
        ("v1.7", (1, 7)),
        ("23", (23,)),
    ],
)
def test_version_parse(text: str, parts: tuple[int, ...]) -> None:
    """Leading numeric components are kept; suffixes are dropped."""
    assert Version.parse(text).parts == parts


def test_version_ordering_ignores_trailing_zeros() -> None:
    """1.7 and 1.7.0 compare equal and hash alike."""
    assert Version.parse("1.7") == Version.parse("1.7.0")
    assert hash(Version.parse("1.7")) == hash(Version.parse("1.7.0"))
    assert Version.parse("1.10") > Version.parse("1.9.9")


def test_version_rejects_garbage() -> None:
    """Non-numeric versions raise a configuration error."""
    with pytest.raises(InvalidVersionError):
        Version.parse("latest")


@pytest.mark.parametrize(
    ("requirement", "provided", "expected"),
    [
        ("3.11", "3.11.4", True),
        ("3.12", "3.11.4", False),
        (">= 3.10, < 3.12", "3.11.4", True),
        (">= 3.10, < 3.11", "3.11.4", False),
        ("!= 23.2", "23.2", False),
        ("== 23.2.0", "23.2", True),
        ("~> 1.7", "1.9", True),
        ("~= 1.7.0", "1.8.0", False),
        ("> 1.7", "1.7.0", False),
        ("<= 1.7", "1.7.0", True),
        ("~> 3.0.0", "3", True),
        ("~> 3.0.0", "3.0.9", True),
        ("~> 3.0.0", "3.1", False),
    ],
)
def test_requirement_matching(requirement: str, provided: str, expected: bool) -> None:
    """Requirements combine clauses conjunctively."""
    assert Requirement.parse(requirement).satisfied_by(provided) is expected


def test_empty_requirement_is_invalid() -> None:
    """An empty marker argument is rejected."""
    with pytest.raises(InvalidVersionError):
        Requirement.parse("  ")


def test_detect_capabilities_reads_runtime() -> None:
    """Interpreter and libgit2 versions come from the running process."""
    snapshot = detect_capabilities(environ={})

    assert snapshot.python == Version.parse(platform.python_version())
    assert snapshot.vcs == Version.parse(pygit2.LIBGIT2_VERSION)
    assert not snapshot.network
    assert not snapshot.privileged
    assert not snapshot.toolchain_master


def test_detect_capabilities_honours_overrides(
    mocker: pytest_mock.MockerFixture,
) -> None:
    """Override variables enable the flag capabilities."""
    mocker.patch.object(caps, "sudo_available", return_value=True)

    snapshot = detect_capabilities(
        environ={
            caps.ENV_REALWORLD_TESTS: "1",
            caps.ENV_SUDO_TESTS: "1",
            caps.ENV_TOOLCHAIN: "master",
            caps.ENV_CI: "true",
        },
    )

    assert snapshot.network
    assert snapshot.privileged
    assert snapshot.toolchain_master
    assert snapshot.ci


def test_privilege_requires_sudo_binary(mocker: pytest_mock.MockerFixture) -> None:
    """The sudo override alone is not enough without a sudo binary."""
    mocker.patch.object(caps, "sudo_available", return_value=False)

    snapshot = detect_capabilities(environ={caps.ENV_SUDO_TESTS: "1"})

    assert not snapshot.privileged


def test_missing_package_manager_is_absent() -> None:
    """An uninstalled package manager reports no version."""
    snapshot = detect_capabilities(
        environ={},
        package_manager="specharness-no-such-distribution",
    )

    assert snapshot.package_manager is None
    assert snapshot.describe()["package_manager"] == "absent"


@pytest.mark.parametrize(
    ("location", "expected"),
    [("/usr/bin/sudo", True), (None, False)],
)
def test_sudo_available_looks_on_path(
    mocker: pytest_mock.MockerFixture,
    location: str | None,
    expected: bool,
) -> None:
    """Privilege detection depends on a sudo binary being found."""
    which = mocker.patch.object(caps.shutil, "which", return_value=location)

    snapshot = detect_capabilities(environ={caps.ENV_SUDO_TESTS: "1"})

    which.assert_called_once_with("sudo")
    assert snapshot.privileged is expected
