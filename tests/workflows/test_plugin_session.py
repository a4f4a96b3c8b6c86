"""End-to-end runs of a specification suite with the harness plugin loaded."""

from __future__ import annotations

from pathlib import Path

import pytest
from ruamel.yaml import YAML

_yaml = YAML(typ="safe")

HARNESS_VARIABLES = (
    "CI",
    "SPECHARNESS_FAIL_FAST",
    "SPECHARNESS_REALWORLD_TESTS",
    "SPECHARNESS_SUDO_TESTS",
    "SPECHARNESS_TOOLCHAIN",
    "SPECHARNESS_SPEC_RUN",
)


@pytest.fixture(autouse=True)
def clean_harness_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the outer environment from changing the inner run."""
    for name in HARNESS_VARIABLES:
        monkeypatch.delenv(name, raising=False)


def _run(pytester: pytest.Pytester, *args: str) -> pytest.RunResult:
    return pytester.runpytest_subprocess("-p", "specharness.plugin", *args)


def test_examples_do_not_leak_process_state(pytester: pytest.Pytester) -> None:
    """Directory and environment changes are undone between examples."""
    pytester.makepyfile(
        test_isolation="""
        import os
        from pathlib import Path

        def test_first(harness):
            os.environ["LEAKY_SETTING"] = "1"
            os.chdir(harness.paths.root)

        def test_second(harness, execution_context):
            assert "LEAKY_SETTING" not in os.environ
            assert Path.cwd() == execution_context.cwd == harness.paths.app
            assert os.environ["HOME"] == str(harness.paths.home)
            assert os.environ["SPECHARNESS_SPEC_RUN"] == "true"
            assert os.environ["COLUMNS"] == "10000"
        """
    )

    result = _run(pytester)

    result.assert_outcomes(passed=2)


def test_fixture_repository_is_available(pytester: pytest.Pytester) -> None:
    """The fixture repository is built once and offered to examples."""
    pytester.makepyfile(
        test_repository="""
        def test_repository(fixture_repository):
            assert (fixture_repository / ".git").is_dir()
            assert (fixture_repository / "index.yaml").is_file()
        """
    )

    result = _run(pytester)

    result.assert_outcomes(passed=1)


def test_failure_lists_commands(pytester: pytest.Pytester) -> None:
    """A failing example's report carries the commands it ran."""
    pytester.makepyfile(
        test_failure="""
        import sys

        def test_install(harness):
            harness.run(sys.executable, "-c", "print('fetching rack 1.0.0')")
            assert False, "install did not finish"
        """
    )

    result = _run(pytester)

    result.assert_outcomes(failed=1)
    result.stdout.fnmatch_lines(
        [
            "*install did not finish*",
            "*Commands:*",
            "*fetching rack 1.0.0*",
        ]
    )


def test_passing_example_hides_commands(pytester: pytest.Pytester) -> None:
    """Output is only shown for failures."""
    pytester.makepyfile(
        test_success="""
        import sys

        def test_install(harness):
            harness.run(sys.executable, "-c", "print('fetching rack 1.0.0')")
        """
    )

    result = _run(pytester)

    result.assert_outcomes(passed=1)
    result.stdout.no_fnmatch_line("*fetching rack*")


def test_version_requirements_deselect_examples(pytester: pytest.Pytester) -> None:
    """Examples needing an unavailable interpreter never run."""
    pytester.makepyfile(
        test_versions="""
        import pytest

        @pytest.mark.python("<3.0")
        def test_legacy():
            raise AssertionError("should have been excluded")

        @pytest.mark.python(">= 3.0")
        def test_current():
            pass
        """
    )

    result = _run(pytester)

    result.assert_outcomes(passed=1, deselected=1)


def test_invalid_requirement_is_a_usage_error(pytester: pytest.Pytester) -> None:
    """A malformed version requirement stops the run."""
    pytester.makepyfile(
        test_invalid="""
        import pytest

        @pytest.mark.python(">= banana")
        def test_anything():
            pass
        """
    )

    result = _run(pytester)

    assert result.ret == pytest.ExitCode.USAGE_ERROR
    result.stderr.fnmatch_lines(["*test_anything*banana*"])


@pytest.mark.parametrize(
    ("marker", "variable", "value", "enabled"),
    [
        (
            "realworld",
            "SPECHARNESS_REALWORLD_TESTS",
            "1",
            {"passed": 1, "deselected": 1},
        ),
        ("toolchain_master", "SPECHARNESS_TOOLCHAIN", "master", {"passed": 2}),
    ],
)
def test_flag_examples_need_override(
    pytester: pytest.Pytester,
    monkeypatch: pytest.MonkeyPatch,
    marker: str,
    variable: str,
    value: str,
    enabled: dict[str, int],
) -> None:
    """Flagged examples are excluded until their override is set.

    The realworld override also narrows the run to realworld examples.
    """
    pytester.makepyfile(
        test_flags=f"""
        import pytest

        @pytest.mark.{marker}
        def test_flagged():
            pass

        def test_plain():
            pass
        """
    )

    first = _run(pytester, "-v")
    first.assert_outcomes(passed=1, deselected=1)
    first.stdout.fnmatch_lines(["*test_plain PASSED*"])

    monkeypatch.setenv(variable, value)
    result = _run(pytester, "-v")
    result.assert_outcomes(**enabled)
    result.stdout.fnmatch_lines(["*test_flagged PASSED*"])


def test_fail_fast_stops_the_run(pytester: pytest.Pytester) -> None:
    """Scheduling stops once the failure threshold is reached."""
    pytester.makepyfile(
        test_failing="""
        import pytest

        @pytest.mark.parametrize("index", range(5))
        def test_broken(index):
            assert index < 0
        """
    )

    result = _run(pytester, "--harness-fail-fast", "2")

    result.assert_outcomes(failed=2)
    result.stdout.fnmatch_lines(["*stopping after 2 failures (fail-fast threshold 2)*"])


def test_fail_fast_threshold_from_config_file(pytester: pytest.Pytester) -> None:
    """The project settings file provides the threshold."""
    pytester.makefile(".yaml", **{".specharness": "fail_fast: 1\n"})
    pytester.makepyfile(
        test_failing="""
        def test_one():
            assert False

        def test_two():
            assert False
        """
    )

    result = _run(pytester)

    result.assert_outcomes(failed=1)


def test_fail_fast_can_be_disabled(pytester: pytest.Pytester) -> None:
    """A zero threshold runs every example."""
    pytester.makepyfile(
        test_failing="""
        import pytest

        @pytest.mark.parametrize("index", range(3))
        def test_broken(index):
            assert index < 0
        """
    )

    result = _run(pytester, "--harness-fail-fast", "0")

    result.assert_outcomes(failed=3)


def test_status_enables_only_failures(pytester: pytest.Pytester) -> None:
    """Statuses persist between runs and drive selective re-runs."""
    pytester.makepyfile(
        test_history="""
        def test_good():
            pass

        def test_bad():
            assert False
        """
    )

    _run(pytester).assert_outcomes(passed=1, failed=1)

    status_path = pytester.path / ".specharness_status.yaml"
    document = _yaml.load(status_path.read_text(encoding="utf-8"))
    examples = document["examples"]
    assert examples["test_history.py::test_good"]["status"] == "passed"
    assert examples["test_history.py::test_bad"]["status"] == "failed"

    rerun = _run(pytester, "--only-failures")
    rerun.assert_outcomes(failed=1, deselected=1)


@pytest.mark.parametrize(
    ("ci", "expected"),
    [(None, {"passed": 1, "deselected": 1}), ("true", {"passed": 2})],
)
def test_focus_outside_ci(
    pytester: pytest.Pytester,
    monkeypatch: pytest.MonkeyPatch,
    ci: str | None,
    expected: dict[str, int],
) -> None:
    """Focused examples narrow the run except on CI."""
    if ci is not None:
        monkeypatch.setenv("CI", ci)
    pytester.makepyfile(
        test_focus="""
        import pytest

        @pytest.mark.focus
        def test_focused():
            pass

        def test_other():
            pass
        """
    )

    _run(pytester).assert_outcomes(**expected)


def test_session_writes_level_logs(pytester: pytest.Pytester) -> None:
    """Every level file exists and the baseline capture is logged."""
    pytester.makepyfile(
        test_logs="""
        import logging

        def test_logs(harness):
            logging.getLogger("specharness.example").error("lockfile drifted")
        """
    )

    _run(pytester).assert_outcomes(passed=1)

    logs = pytester.path / "tmp" / "logs"
    assert {path.name for path in logs.iterdir()} >= {
        "debug.log",
        "error.log",
        "fatal.log",
        "info.log",
    }
    assert "baseline captured" in (logs / "info.log").read_text(encoding="utf-8")
    assert "lockfile drifted" in (logs / "error.log").read_text(encoding="utf-8")


def test_unsafe_scratch_root_aborts(pytester: pytest.Pytester) -> None:
    """The session refuses to start in a path with special characters."""
    pytester.makefile(".yaml", **{".specharness": "scratch_root: 'tmp dir'\n"})
    pytester.makepyfile(
        test_never="""
        def test_never():
            pass
        """
    )

    result = _run(pytester)

    assert result.ret == pytest.ExitCode.INTERNAL_ERROR
    result.stderr.fnmatch_lines(["*special characters*"])


def test_failing_example_does_not_leak_process_state(
    pytester: pytest.Pytester,
) -> None:
    """The baseline comes back even when the example that dirtied it failed."""
    pytester.makepyfile(
        test_isolation="""
        import os
        from pathlib import Path

        def test_first(harness):
            os.environ["LEAKY_SETTING"] = "1"
            os.environ.pop("COLUMNS")
            os.chdir(harness.paths.root)
            raise RuntimeError("lockfile mismatch")

        def test_second(harness, execution_context):
            assert "LEAKY_SETTING" not in os.environ
            assert os.environ["COLUMNS"] == "10000"
            assert Path.cwd() == execution_context.cwd == harness.paths.app
        """
    )

    result = _run(pytester)

    result.assert_outcomes(passed=1, failed=1)


def test_fail_outcome_lists_commands(pytester: pytest.Pytester) -> None:
    """Failures raised with ``pytest.fail`` carry the commands too."""
    pytester.makepyfile(
        test_failure="""
        import sys

        import pytest

        def test_install(harness):
            harness.run(sys.executable, "-c", "print('fetching rack 1.0.0')")
            pytest.fail("install did not finish")
        """
    )

    result = _run(pytester)

    result.assert_outcomes(failed=1)
    result.stdout.fnmatch_lines(
        [
            "*Failed: install did not finish*",
            "*Commands:*",
            "*fetching rack 1.0.0*",
        ]
    )


def test_unrewritable_failure_gets_commands_section(pytester: pytest.Pytester) -> None:
    """Errors whose message cannot be rewritten get a report section instead."""
    pytester.makepyfile(
        test_failure="""
        import sys

        def test_install(harness):
            harness.run(sys.executable, "-c", "print('fetching rack 1.0.0')")
            raise KeyError("lockfile")
        """
    )

    result = _run(pytester)

    result.assert_outcomes(failed=1)
    result.stdout.fnmatch_lines(
        [
            "*KeyError: 'lockfile'*",
            "*- Commands -*",
            "*fetching rack 1.0.0*",
        ]
    )


@pytest.mark.parametrize(
    ("has_sudo", "runs"),
    [(True, "test_privileged"), (False, "test_plain")],
)
def test_sudo_examples_need_override_and_binary(
    pytester: pytest.Pytester,
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
    has_sudo: bool,
    runs: str,
) -> None:
    """The sudo override narrows the run only where a sudo binary exists."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    if has_sudo:
        sudo = bin_dir / "sudo"
        sudo.write_text("#!/bin/sh\nexec \"$@\"\n", encoding="utf-8")
        sudo.chmod(0o755)
    monkeypatch.setenv("PATH", str(bin_dir))
    monkeypatch.setenv("SPECHARNESS_SUDO_TESTS", "1")
    pytester.makepyfile(
        test_sudo="""
        import pytest

        @pytest.mark.sudo
        def test_privileged():
            pass

        def test_plain():
            pass
        """
    )

    result = _run(pytester, "-v")

    result.assert_outcomes(passed=1, deselected=1)
    result.stdout.fnmatch_lines([f"*{runs} PASSED*"])


def test_next_failure_stops_at_first_previous_failure(
    pytester: pytest.Pytester,
) -> None:
    """``--next-failure`` re-runs old failures and stops at the first one."""
    pytester.makepyfile(
        test_history="""
        import pytest

        def test_good():
            pass

        @pytest.mark.parametrize("index", range(3))
        def test_bad(index):
            assert index < 0
        """
    )
    _run(pytester, "--harness-fail-fast", "0").assert_outcomes(passed=1, failed=3)

    result = _run(pytester, "--next-failure")

    result.assert_outcomes(failed=1, deselected=1)
    result.stdout.fnmatch_lines(["*stopping after 1 failure (fail-fast threshold 1)*"])


def test_pytest_maxfail_overrides_threshold(pytester: pytest.Pytester) -> None:
    """pytest's own ``--maxfail`` wins over the harness threshold."""
    pytester.makepyfile(
        test_failing="""
        import pytest

        @pytest.mark.parametrize("index", range(5))
        def test_broken(index):
            assert index < 0
        """
    )

    result = _run(pytester, "--maxfail", "3", "--harness-fail-fast", "2")

    result.assert_outcomes(failed=3)
    result.stdout.no_fnmatch_line("*fail-fast threshold*")


def test_scratch_root_covering_project_is_refused(pytester: pytest.Pytester) -> None:
    """A scratch root pointing at the project stops the run before any reset."""
    pytester.makefile(".yaml", **{".specharness": "scratch_root: '.'\n"})
    precious = pytester.makefile(".txt", precious="keep\n")
    pytester.makepyfile(
        test_never="""
        def test_never():
            pass
        """
    )

    result = _run(pytester)

    assert result.ret == pytest.ExitCode.USAGE_ERROR
    result.stderr.fnmatch_lines(["*dedicated directory*"])
    assert precious.read_text(encoding="utf-8").strip() == "keep"
