"""Shared exception types for the specharness harness."""

from __future__ import annotations

from pathlib import Path


class HarnessError(RuntimeError):
    """Base error for specharness operations."""


class HarnessStateError(HarnessError):
    """Raised when the session baseline cannot be captured or restored.

    These errors are fatal to a run: once the baseline is lost, later
    examples cannot be isolated from earlier ones.
    """


class BaselineCaptureError(HarnessStateError):
    """Raised when the working directory or environment cannot be captured."""

    def __init__(self, detail: str) -> None:
        """Initialise the error with the capture failure detail."""
        super().__init__(f"Failed to capture session baseline: {detail}")


class BaselineRestoreError(HarnessStateError):
    """Raised when the session baseline cannot be reapplied."""

    def __init__(self, detail: str) -> None:
        """Initialise the error with the restore failure detail."""
        super().__init__(f"Failed to restore session baseline: {detail}")


class BaselineAlreadyCapturedError(HarnessStateError):
    """Raised when Initialize runs a second time."""

    def __init__(self) -> None:
        """Initialise the error message."""
        super().__init__("Session baseline has already been captured.")


class HarnessNotInitializedError(HarnessStateError):
    """Raised when an example hook runs before the baseline is captured."""

    def __init__(self) -> None:
        """Initialise the error message."""
        super().__init__("Session harness used before initialize() was called.")


class FixtureSetupError(HarnessStateError):
    """Raised when the scratch tree or fixture repository cannot be prepared."""

    def __init__(self, detail: str) -> None:
        """Initialise the error with the setup failure detail."""
        super().__init__(f"Failed to prepare example fixtures: {detail}")


class ConfigError(HarnessError):
    """Raised when the harness configuration is invalid."""


class InvalidVersionError(ConfigError):
    """Raised when a version or requirement string cannot be parsed."""

    def __init__(self, value: str) -> None:
        """Initialise the error with the offending value."""
        super().__init__(f"Invalid version requirement {value!r}.")


class UnsafePathError(ConfigError):
    """Raised when the scratch tree lives under a path with special characters."""

    def __init__(self, path: Path, character: str) -> None:
        """Initialise the error with the path and first offending character."""
        super().__init__(
            f"The scratch tree cannot live under a path that contains special "
            f"characters (found {character!r} in {path})."
        )


class ScratchRootOverlapError(ConfigError):
    """Raised when resetting the scratch tree would delete a project directory."""

    def __init__(self, root: Path, protected: Path) -> None:
        """Initialise the error with the scratch root and the directory it holds."""
        super().__init__(
            f"The scratch root {root} is or contains {protected}; point "
            f"scratch_root at a dedicated directory such as 'tmp'."
        )


class StatusFileError(HarnessError):
    """Raised when the example status file cannot be read."""


class CommandFailedError(HarnessError):
    """Raised when a checked command exits with a non-zero status."""

    def __init__(self, command: str, returncode: int, output: str) -> None:
        """Record the command, its exit status, and the combined output."""
        self.command = command
        self.returncode = returncode
        self.output = output
        super().__init__(
            f"Command {command!r} exited with status {returncode}:\n{output}"
        )
