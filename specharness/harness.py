"""The session harness: baseline capture, per-example setup and restore."""

from __future__ import annotations

import collections.abc as cabc
import logging
import os
import subprocess
import sys
import typing as typ
from pathlib import Path

import pygit2

from . import fixtures
from .commands import run_command
from .errors import (
    BaselineAlreadyCapturedError,
    FixtureSetupError,
    HarnessNotInitializedError,
)
from .logsink import LogSink, LogSinkHandler, attach_sink, detach_sink
from .output import OutputBuffer, annotate_failure
from .state import (
    EnvironmentDiff,
    ExecutionContext,
    SessionState,
    apply_context,
    context_from_baseline,
    restore_baseline,
)

if typ.TYPE_CHECKING:
    from .config import HarnessConfig

_logger = logging.getLogger(__name__)

ENV_SPEC_RUN = "SPECHARNESS_SPEC_RUN"
ENV_COLUMNS = "COLUMNS"
WIDE_COLUMNS = "10000"
PRELOAD_DIR = Path(__file__).resolve().parent / "preload"


def ambient_variables(
    environ: cabc.Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Return the variables every example and subprocess should see."""
    source = os.environ if environ is None else environ
    preload = str(PRELOAD_DIR)
    existing = [part for part in source.get("PYTHONPATH", "").split(os.pathsep) if part]
    if preload not in existing:
        existing.insert(0, preload)
    return {
        ENV_SPEC_RUN: "true",
        ENV_COLUMNS: WIDE_COLUMNS,
        "PYTHONPATH": os.pathsep.join(existing),
    }


class SessionHarness:
    """Isolate every example from the ones before it.

    ``initialize`` captures the baseline exactly once. ``before_each`` builds
    a fresh :class:`ExecutionContext` over a reset scratch tree and installs
    it; ``after_each`` annotates failures with captured output and then
    reapplies the baseline regardless of how the example ended.
    """

    def __init__(
        self,
        config: HarnessConfig,
        *,
        packages: cabc.Iterable[fixtures.FixturePackage] = fixtures.DEFAULT_PACKAGES,
    ) -> None:
        """Prepare the harness; nothing is touched until ``initialize``."""
        self.config = config
        self.paths = fixtures.ScratchPaths(config.scratch_root)
        self.packages = tuple(packages)
        self.output = OutputBuffer()
        self._state: SessionState | None = None
        self._context: ExecutionContext | None = None
        self._sink_handler: LogSinkHandler | None = None

    @property
    def state(self) -> SessionState:
        """Return the captured baseline."""
        if self._state is None:
            raise HarnessNotInitializedError
        return self._state

    @property
    def initialized(self) -> bool:
        """Return True once the baseline has been captured."""
        return self._state is not None

    @property
    def context(self) -> ExecutionContext:
        """Return the context of the running example."""
        if self._context is None:
            raise HarnessNotInitializedError
        return self._context

    @property
    def sink(self) -> LogSink | None:
        """Return the log sink when one is attached."""
        return self._sink_handler.sink if self._sink_handler else None

    def initialize(self) -> SessionState:
        """Capture the baseline and prepare the run-wide state."""
        if self._state is not None:
            raise BaselineAlreadyCapturedError
        root = fixtures.ensure_separate_root(
            fixtures.ensure_safe_path(self.paths.root),
            Path.cwd(),
        )
        self.paths = fixtures.ScratchPaths(root)
        os.environ.update(ambient_variables())
        fixtures.remove_fixture_repositories(self.paths)
        echo = sys.stdout if self.config.echo_errors else None
        self._sink_handler = attach_sink(LogSink(self.paths.logs, echo=echo))
        self._state = SessionState.capture(
            ignored_prefixes=self.config.ignored_env_prefixes,
        )
        _logger.info(
            "session baseline captured in %s (%d variables)",
            self._state.original_wd,
            len(self._state.original_env),
        )
        return self._state

    def before_each(self) -> ExecutionContext:
        """Reset the scratch tree and install a fresh example context."""
        state = self.state
        try:
            fixtures.ensure_fixture_repository(self.paths.repo1, self.packages)
            fixtures.reset_scratch(self.paths)
            fixtures.clear_installed(self.paths)
            app_root = fixtures.enter_app_root(self.paths)
        except (OSError, pygit2.GitError) as error:
            raise FixtureSetupError(str(error)) from error
        self.output = OutputBuffer()
        context = context_from_baseline(
            state,
            app_root,
            {"HOME": str(self.paths.home), "TMPDIR": str(self.paths.tmp)},
        )
        apply_context(context, ignored_prefixes=state.ignored_prefixes)
        self._context = context
        return context

    def annotate(self, message: str) -> str:
        """Return ``message`` with the example's captured output appended."""
        return annotate_failure(message, self.output.getvalue())

    def after_each(self, failure_message: str | None = None) -> str | None:
        """Restore the baseline, returning an annotated failure message.

        The annotated message is only produced when the example failed and
        captured some output; the baseline is restored either way.
        """
        annotated = None
        if failure_message is not None and self.output:
            annotated = self.annotate(failure_message)
        try:
            diff = self.restore()
        finally:
            self._context = None
            self.output = OutputBuffer()
        if diff:
            _logger.debug("example environment restored: %s", diff.describe())
        return annotated

    def restore(self) -> EnvironmentDiff:
        """Return the process to the captured working directory and env."""
        return restore_baseline(self.state)

    def run(
        self,
        *args: str | Path,
        check: bool = False,
        env: cabc.Mapping[str, str] | None = None,
        input_text: str | None = None,
        timeout: float | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run a command in the current example context.

        ``env`` adds variables for this command only.
        """
        context = self.context.with_env(**env) if env else self.context
        return run_command(
            args,
            context,
            self.output,
            check=check,
            input_text=input_text,
            timeout=timeout,
        )

    def close(self) -> None:
        """Release the log sink."""
        if self._sink_handler is not None:
            detach_sink(self._sink_handler)
            self._sink_handler = None
