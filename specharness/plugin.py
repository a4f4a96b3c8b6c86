"""pytest plugin wiring the session harness into a specification suite.

Enable it from a suite's ``conftest.py``::

    pytest_plugins = ["specharness.plugin"]
"""

from __future__ import annotations

import dataclasses
import logging
import typing as typ
from pathlib import Path

import pytest

from .capabilities import RuntimeCapabilities, detect_capabilities
from .config import load_config
from .errors import HarnessError, HarnessStateError, InvalidVersionError
from .failfast import FailFastPolicy
from .filters import (
    Marker,
    evaluate_rules,
    focus_active,
    is_focused,
    marker_descriptions,
    narrowing_markers,
    outside_narrowed_run,
)
from .harness import SessionHarness
from .status import ExampleStatus, StatusStore

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from .config import HarnessConfig
    from .state import ExecutionContext

_logger = logging.getLogger(__name__)

PLUGIN_NAME = "specharness-session"


def pytest_addoption(parser: pytest.Parser) -> None:
    """Register the harness command-line options."""
    group = parser.getgroup("specharness", "specification session harness")
    group.addoption(
        "--harness-config",
        dest="harness_config",
        default=None,
        metavar="PATH",
        help="YAML file with harness settings (default: <rootdir>/.specharness.yaml).",
    )
    group.addoption(
        "--harness-fail-fast",
        dest="harness_fail_fast",
        type=int,
        default=None,
        metavar="N",
        help="Stop scheduling examples after N failures; 0 disables.",
    )
    group.addoption(
        "--only-failures",
        dest="harness_only_failures",
        action="store_true",
        default=False,
        help="Run only examples that failed in the previous recorded run.",
    )
    group.addoption(
        "--next-failure",
        dest="harness_next_failure",
        action="store_true",
        default=False,
        help="Like --only-failures, stopping at the first failure.",
    )


def pytest_configure(config: pytest.Config) -> None:
    """Load settings, snapshot capabilities, and register the session plugin."""
    for line in marker_descriptions():
        config.addinivalue_line("markers", line)
    if config.pluginmanager.has_plugin(PLUGIN_NAME):
        return
    try:
        harness_config = _load_harness_config(config)
        capabilities = detect_capabilities(
            package_manager=harness_config.package_manager,
        )
        status = StatusStore.load(harness_config.status_file)
    except HarnessError as error:
        raise pytest.UsageError(str(error)) from error
    plugin = HarnessPlugin(config, harness_config, capabilities, status)
    config.pluginmanager.register(plugin, PLUGIN_NAME)


def _load_harness_config(config: pytest.Config) -> HarnessConfig:
    explicit = config.getoption("harness_config")
    harness_config = load_config(
        config.rootpath,
        config_path=Path(explicit) if explicit else None,
    )
    if (threshold := config.getoption("harness_fail_fast")) is not None:
        harness_config = dataclasses.replace(harness_config, fail_fast=threshold)
    return harness_config


def _fail_fast_threshold(config: pytest.Config, harness_config: HarnessConfig) -> int:
    if config.getoption("harness_next_failure"):
        return 1
    if config.getoption("maxfail"):
        # pytest's own --maxfail/-x already stops the run.
        return 0
    return harness_config.fail_fast


def _markers(item: pytest.Item) -> list[Marker]:
    return [Marker(mark.name, tuple(mark.args)) for mark in item.iter_markers()]


def _annotate_exception(error: BaseException, message: str) -> bool:
    """Rewrite a failure's message in place; return whether it now renders.

    ``pytest.fail`` failures render from ``msg``; other exceptions only
    qualify when their text is their single string argument.
    """
    if isinstance(error, pytest.fail.Exception):
        error.msg = message
        return str(error) == message
    if len(error.args) != 1 or not isinstance(error.args[0], str):
        return False
    if str(error) != error.args[0]:
        return False
    original = error.args
    error.args = (message,)
    if str(error) == message:
        return True
    error.args = original
    return False


class HarnessPlugin:
    """Session-scoped hooks driving a :class:`SessionHarness`."""

    def __init__(
        self,
        config: pytest.Config,
        harness_config: HarnessConfig,
        capabilities: RuntimeCapabilities,
        status: StatusStore,
    ) -> None:
        """Bind the harness, fail-fast policy, and status store."""
        self.config = config
        self.harness = SessionHarness(harness_config)
        self.capabilities = capabilities
        self.status = status
        self.policy = FailFastPolicy(_fail_fast_threshold(config, harness_config))
        self.only_failures = bool(
            config.getoption("harness_only_failures")
            or config.getoption("harness_next_failure")
        )
        self._session: pytest.Session | None = None

    def pytest_sessionstart(self, session: pytest.Session) -> None:
        """Capture the session baseline before anything is collected."""
        self._session = session
        try:
            self.harness.initialize()
        except HarnessError as error:
            pytest.exit(str(error), returncode=pytest.ExitCode.INTERNAL_ERROR)

    @pytest.hookimpl(trylast=True)
    def pytest_collection_modifyitems(
        self,
        config: pytest.Config,
        items: list[pytest.Item],
    ) -> None:
        """Deselect examples the runtime cannot satisfy."""
        marker_sets = [_markers(item) for item in items]
        focused = focus_active(marker_sets, self.capabilities)
        narrowing = narrowing_markers(self.capabilities)
        previously_failed = self.status.failed_examples()
        selected: list[pytest.Item] = []
        deselected: list[pytest.Item] = []
        for item, markers in zip(items, marker_sets):
            if self._excluded(
                item,
                markers,
                focused=focused,
                narrowing=narrowing,
                failed=previously_failed,
            ):
                deselected.append(item)
            else:
                selected.append(item)
        if deselected:
            config.hook.pytest_deselected(items=deselected)
            items[:] = selected

    def _excluded(
        self,
        item: pytest.Item,
        markers: cabc.Sequence[Marker],
        *,
        focused: bool,
        narrowing: frozenset[str],
        failed: set[str],
    ) -> bool:
        try:
            exclusion = evaluate_rules(markers, self.capabilities)
        except InvalidVersionError as error:
            raise pytest.UsageError(f"{item.nodeid}: {error}") from error
        if exclusion is not None:
            _logger.debug("excluding %s: %s", item.nodeid, exclusion.reason)
            return True
        if outside_narrowed_run(markers, narrowing):
            return True
        if focused and not is_focused(markers):
            return True
        return self.only_failures and item.nodeid not in failed

    @pytest.hookimpl(tryfirst=True)
    def pytest_runtest_setup(self, item: pytest.Item) -> None:
        """Install a fresh example context before any fixture runs."""
        try:
            self.harness.before_each()
        except HarnessStateError as error:
            pytest.exit(str(error), returncode=pytest.ExitCode.INTERNAL_ERROR)

    @pytest.hookimpl(hookwrapper=True)
    def pytest_runtest_makereport(
        self,
        item: pytest.Item,
        call: pytest.CallInfo[None],
    ) -> cabc.Generator[None, typ.Any, None]:
        """Append captured command output to a failing example's report."""
        output = self.harness.output.getvalue() if call.when == "call" else ""
        annotated_in_place = False
        error = call.excinfo.value if call.excinfo is not None else None
        if isinstance(error, pytest.skip.Exception):
            error = None
        if output and error is not None:
            annotated_in_place = _annotate_exception(
                error,
                self.harness.annotate(str(error)),
            )
        outcome = yield
        report = outcome.get_result()
        if not output or not report.failed:
            return
        if not annotated_in_place:
            _add_output_section(report, output)
        if item.config.getoption("verbose") > 0:
            reporter = item.config.pluginmanager.get_plugin("terminalreporter")
            if reporter is not None:
                reporter.write_line(output)

    @pytest.hookimpl(trylast=True)
    def pytest_runtest_teardown(self, item: pytest.Item) -> None:
        """Reapply the baseline once the example's fixtures are torn down."""
        try:
            self.harness.after_each()
        except HarnessStateError as error:
            pytest.exit(str(error), returncode=pytest.ExitCode.INTERNAL_ERROR)

    def pytest_runtest_logreport(self, report: pytest.TestReport) -> None:
        """Record statuses and apply the fail-fast policy."""
        if status := _status_for(report):
            self.status.record(report.nodeid, status, report.duration)
        if not report.failed or hasattr(report, "wasxfail"):
            return
        if self.policy.record_failure(report.nodeid) and self._session is not None:
            self._session.shouldstop = self.policy.reason()

    def pytest_sessionfinish(self, session: pytest.Session) -> None:
        """Persist the example statuses for selective re-runs."""
        if session.config.getoption("collectonly"):
            return
        self.status.save()

    def pytest_unconfigure(self, config: pytest.Config) -> None:
        """Close the log sink."""
        self.harness.close()


def _status_for(report: pytest.TestReport) -> ExampleStatus | None:
    if report.failed:
        return ExampleStatus.FAILED
    if report.when == "call":
        return ExampleStatus.PASSED if report.passed else ExampleStatus.SKIPPED
    if report.when == "setup" and report.skipped:
        return ExampleStatus.SKIPPED
    return None


def _add_output_section(report: pytest.TestReport, output: str) -> None:
    longrepr = report.longrepr
    if hasattr(longrepr, "addsection"):
        typ.cast("typ.Any", longrepr).addsection("Commands", output)
        return
    report.sections.append(("Commands", output))


def _plugin(request: pytest.FixtureRequest) -> HarnessPlugin:
    plugin = request.config.pluginmanager.get_plugin(PLUGIN_NAME)
    if plugin is None:  # pragma: no cover - registered in pytest_configure
        pytest.fail("specharness session plugin is not registered")
    return typ.cast("HarnessPlugin", plugin)


@pytest.fixture
def harness(request: pytest.FixtureRequest) -> SessionHarness:
    """Expose the session harness to the running example."""
    return _plugin(request).harness


@pytest.fixture
def execution_context(harness: SessionHarness) -> ExecutionContext:
    """Return the context the current example runs in."""
    return harness.context


@pytest.fixture
def fixture_repository(harness: SessionHarness) -> Path:
    """Return the path of the default fixture repository."""
    return harness.paths.repo1


@pytest.fixture(scope="session")
def runtime_capabilities(request: pytest.FixtureRequest) -> RuntimeCapabilities:
    """Return the capability snapshot used for tag filtering."""
    return _plugin(request).capabilities
