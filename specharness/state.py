"""Session baseline and per-example execution context.

The baseline is captured once when the run starts. Each example then gets an
explicit :class:`ExecutionContext`; restoring the baseline is a diff between
the live environment and the captured one, reapplied key by key.
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses
import os
from pathlib import Path
from types import MappingProxyType

from .errors import BaselineCaptureError, BaselineRestoreError

DEFAULT_IGNORED_PREFIXES = ("PYTEST_",)


def _is_ignored(name: str, ignored_prefixes: cabc.Iterable[str]) -> bool:
    return any(name.startswith(prefix) for prefix in ignored_prefixes)


def _filtered(
    environ: cabc.Mapping[str, str],
    ignored_prefixes: cabc.Iterable[str],
) -> dict[str, str]:
    prefixes = tuple(ignored_prefixes)
    return {
        key: value
        for key, value in environ.items()
        if not _is_ignored(key, prefixes)
    }


@dataclasses.dataclass(frozen=True, slots=True)
class SessionState:
    """Working directory and environment captured before any example runs."""

    original_env: cabc.Mapping[str, str]
    original_wd: Path
    ignored_prefixes: tuple[str, ...] = DEFAULT_IGNORED_PREFIXES

    @classmethod
    def capture(
        cls,
        *,
        environ: cabc.Mapping[str, str] | None = None,
        cwd: Path | None = None,
        ignored_prefixes: cabc.Iterable[str] = DEFAULT_IGNORED_PREFIXES,
    ) -> SessionState:
        """Snapshot the process working directory and environment."""
        prefixes = tuple(ignored_prefixes)
        source = os.environ if environ is None else environ
        try:
            working_dir = Path.cwd() if cwd is None else Path(cwd)
        except OSError as error:
            raise BaselineCaptureError(str(error)) from error
        if not working_dir.is_dir():
            raise BaselineCaptureError(f"{working_dir} is not a directory")
        snapshot = MappingProxyType(_filtered(source, prefixes))
        return cls(
            original_env=snapshot,
            original_wd=working_dir,
            ignored_prefixes=prefixes,
        )


@dataclasses.dataclass(frozen=True, slots=True)
class ExecutionContext:
    """The ambient state one example runs in."""

    cwd: Path
    env: cabc.Mapping[str, str]

    def with_env(self, **overrides: str) -> ExecutionContext:
        """Return a copy of the context with extra environment variables."""
        merged = {**self.env, **overrides}
        return dataclasses.replace(self, env=MappingProxyType(merged))


@dataclasses.dataclass(frozen=True, slots=True)
class EnvironmentDiff:
    """Keys that differ between a live environment and a target one."""

    added: tuple[str, ...] = ()
    changed: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()

    def __bool__(self) -> bool:
        """Return True when any key differs."""
        return bool(self.added or self.changed or self.removed)

    def describe(self) -> str:
        """Render a compact, single-line summary of the diff."""
        parts = []
        for label, keys in (
            ("added", self.added),
            ("changed", self.changed),
            ("removed", self.removed),
        ):
            if keys:
                parts.append(f"{label}={','.join(keys)}")
        return " ".join(parts) or "no changes"


def diff_environment(
    current: cabc.Mapping[str, str],
    target: cabc.Mapping[str, str],
    *,
    ignored_prefixes: cabc.Iterable[str] = (),
) -> EnvironmentDiff:
    """Describe what must change for ``current`` to equal ``target``.

    ``added`` lists keys present in ``current`` but absent from ``target``
    (they were added during the example and must go); ``removed`` lists keys
    the example removed and which must come back.
    """
    prefixes = tuple(ignored_prefixes)
    live = _filtered(current, prefixes)
    wanted = _filtered(target, prefixes)
    added = sorted(key for key in live if key not in wanted)
    removed = sorted(key for key in wanted if key not in live)
    changed = sorted(
        key for key in wanted if key in live and live[key] != wanted[key]
    )
    return EnvironmentDiff(
        added=tuple(added),
        changed=tuple(changed),
        removed=tuple(removed),
    )


def reapply_environment(
    target: cabc.Mapping[str, str],
    environ: cabc.MutableMapping[str, str] | None = None,
    *,
    ignored_prefixes: cabc.Iterable[str] = (),
) -> EnvironmentDiff:
    """Make ``environ`` match ``target`` and return the diff that was applied."""
    live = os.environ if environ is None else environ
    diff = diff_environment(live, target, ignored_prefixes=ignored_prefixes)
    for key in diff.added:
        del live[key]
    for key in (*diff.changed, *diff.removed):
        live[key] = target[key]
    return diff


def apply_context(
    context: ExecutionContext,
    *,
    environ: cabc.MutableMapping[str, str] | None = None,
    ignored_prefixes: cabc.Iterable[str] = (),
) -> EnvironmentDiff:
    """Install ``context`` as the process environment and working directory."""
    diff = reapply_environment(
        context.env,
        environ,
        ignored_prefixes=ignored_prefixes,
    )
    os.chdir(context.cwd)
    return diff


def restore_baseline(
    state: SessionState,
    *,
    environ: cabc.MutableMapping[str, str] | None = None,
) -> EnvironmentDiff:
    """Return the process to the captured baseline.

    The working directory is restored first so a failing environment reset
    still leaves the process somewhere known.
    """
    try:
        os.chdir(state.original_wd)
    except OSError as error:
        raise BaselineRestoreError(
            f"cannot return to {state.original_wd}: {error}"
        ) from error
    try:
        return reapply_environment(
            state.original_env,
            environ,
            ignored_prefixes=state.ignored_prefixes,
        )
    except (OSError, ValueError) as error:
        raise BaselineRestoreError(f"cannot reset environment: {error}") from error


def context_from_baseline(
    state: SessionState,
    cwd: Path,
    overrides: cabc.Mapping[str, str] | None = None,
) -> ExecutionContext:
    """Build an example context from the baseline plus ``overrides``."""
    env: dict[str, str] = dict(state.original_env)
    if overrides:
        env.update(overrides)
    return ExecutionContext(cwd=cwd, env=MappingProxyType(env))

