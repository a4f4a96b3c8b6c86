"""Declarative exclusion rules keyed by runtime capability.

Each marker an example may carry maps to a typed rule. Rules are evaluated
against a single :class:`~specharness.capabilities.RuntimeCapabilities`
snapshot; the first rule an example fails decides its exclusion.
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses
import typing as typ

from .capabilities import (
    ENV_REALWORLD_TESTS,
    ENV_SUDO_TESTS,
    ENV_TOOLCHAIN,
    Requirement,
    RuntimeCapabilities,
)

if typ.TYPE_CHECKING:
    from .capabilities import Version

FOCUS_MARKER = "focus"


@dataclasses.dataclass(frozen=True, slots=True)
class Exclusion:
    """Why an example is left out of the run."""

    rule: str
    reason: str


@dataclasses.dataclass(frozen=True, slots=True)
class Marker:
    """The subset of a pytest mark the rules inspect."""

    name: str
    args: tuple[object, ...] = ()


class Rule(typ.Protocol):
    """A predicate deciding whether a tagged example may run."""

    marker: str
    description: str

    def check(
        self,
        marker: Marker,
        capabilities: RuntimeCapabilities,
    ) -> Exclusion | None:
        """Return an exclusion when ``capabilities`` do not satisfy ``marker``."""


@dataclasses.dataclass(frozen=True, slots=True)
class VersionRule:
    """Require a minimum (or ranged) version of some runtime component."""

    marker: str
    capability: str
    description: str

    def check(
        self,
        marker: Marker,
        capabilities: RuntimeCapabilities,
    ) -> Exclusion | None:
        """Exclude when the component is absent or its version does not match."""
        if not marker.args:
            return None
        requirement = Requirement.parse(str(marker.args[0]))
        provided = typ.cast(
            "Version | None",
            getattr(capabilities, self.capability),
        )
        if provided is None:
            return Exclusion(
                rule=self.marker,
                reason=f"{self.capability} is not available "
                f"(requires {requirement})",
            )
        if requirement.satisfied_by(provided):
            return None
        return Exclusion(
            rule=self.marker,
            reason=f"{self.capability} {provided} does not satisfy {requirement}",
        )


@dataclasses.dataclass(frozen=True, slots=True)
class FlagRule:
    """Require a runtime feature that is only enabled by an override.

    When ``narrows`` is set, enabling the override also restricts the run
    to examples carrying the marker.
    """

    marker: str
    capability: str
    description: str
    override: str
    narrows: bool = False

    def check(
        self,
        marker: Marker,
        capabilities: RuntimeCapabilities,
    ) -> Exclusion | None:
        """Exclude unless the capability flag is enabled."""
        if getattr(capabilities, self.capability):
            return None
        return Exclusion(
            rule=self.marker,
            reason=f"{self.capability} examples are disabled; set {self.override}",
        )


DEFAULT_RULES: tuple[Rule, ...] = (
    VersionRule(
        marker="python",
        capability="python",
        description="python(requirement): minimum interpreter version",
    ),
    VersionRule(
        marker="package_manager",
        capability="package_manager",
        description=(
            "package_manager(requirement): minimum version of the package "
            "manager under test"
        ),
    ),
    VersionRule(
        marker="git",
        capability="vcs",
        description="git(requirement): minimum embedded libgit2 version",
    ),
    FlagRule(
        marker="realworld",
        capability="network",
        description="realworld: needs network access",
        override=ENV_REALWORLD_TESTS,
        narrows=True,
    ),
    FlagRule(
        marker="sudo",
        capability="privileged",
        description="sudo: needs elevated privileges",
        override=ENV_SUDO_TESTS,
        narrows=True,
    ),
    FlagRule(
        marker="toolchain_master",
        capability="toolchain_master",
        description="toolchain_master: only runs against the development toolchain",
        override=f"{ENV_TOOLCHAIN}=master",
    ),
)


def evaluate_rules(
    markers: cabc.Iterable[Marker],
    capabilities: RuntimeCapabilities,
    rules: cabc.Sequence[Rule] = DEFAULT_RULES,
) -> Exclusion | None:
    """Return the first exclusion triggered by ``markers``, if any."""
    by_name = {rule.marker: rule for rule in rules}
    for marker in markers:
        rule = by_name.get(marker.name)
        if rule is None:
            continue
        if (exclusion := rule.check(marker, capabilities)) is not None:
            return exclusion
    return None


def narrowing_markers(
    capabilities: RuntimeCapabilities,
    rules: cabc.Sequence[Rule] = DEFAULT_RULES,
) -> frozenset[str]:
    """Return the flag markers whose enabled override narrows the run."""
    return frozenset(
        rule.marker
        for rule in rules
        if isinstance(rule, FlagRule)
        and rule.narrows
        and getattr(capabilities, rule.capability)
    )


def outside_narrowed_run(
    markers: cabc.Iterable[Marker],
    narrowing: cabc.Collection[str],
) -> bool:
    """Return True when the run is narrowed and ``markers`` match none of it."""
    if not narrowing:
        return False
    return not any(marker.name in narrowing for marker in markers)


def focus_active(
    marker_sets: cabc.Iterable[cabc.Iterable[Marker]],
    capabilities: RuntimeCapabilities,
) -> bool:
    """Return True when focused examples exist and focus filtering applies."""
    if capabilities.ci:
        return False
    return any(is_focused(markers) for markers in marker_sets)


def is_focused(markers: cabc.Iterable[Marker]) -> bool:
    """Return True when ``markers`` include the focus marker."""
    return any(marker.name == FOCUS_MARKER for marker in markers)


def marker_descriptions(rules: cabc.Sequence[Rule] = DEFAULT_RULES) -> list[str]:
    """Return ini-style marker registrations for ``rules`` and focus."""
    lines = [rule.description for rule in rules]
    lines.append(f"{FOCUS_MARKER}: run only focused examples outside CI")
    return lines

