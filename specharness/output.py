"""Per-example capture of command output."""

from __future__ import annotations

import shlex
import typing as typ

if typ.TYPE_CHECKING:
    import collections.abc as cabc

COMMANDS_SEPARATOR = "\n\nCommands:\n"


class OutputBuffer:
    """Accumulate the output of every command an example runs."""

    def __init__(self) -> None:
        """Start with an empty buffer."""
        self._chunks: list[str] = []

    def append(self, text: str) -> None:
        """Append raw text to the buffer."""
        if text:
            self._chunks.append(text)

    def record_command(
        self,
        args: cabc.Sequence[str],
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        """Record one command invocation and whatever it printed."""
        command = shlex.join(str(arg) for arg in args)
        body = "".join(part for part in (stdout, stderr) if part)
        if body and not body.endswith("\n"):
            body += "\n"
        self.append(f"$ {command}\n{body}\n")

    def getvalue(self) -> str:
        """Return the stripped buffer contents."""
        return "".join(self._chunks).strip()

    def clear(self) -> None:
        """Discard everything recorded so far."""
        self._chunks.clear()

    def __bool__(self) -> bool:
        """Return True when the buffer holds non-whitespace output."""
        return bool(self.getvalue())

    def __str__(self) -> str:
        """Return the buffer contents."""
        return self.getvalue()


def annotate_failure(message: str, output: str) -> str:
    """Append captured command output to a failure message."""
    captured = output.strip()
    if not captured:
        return message
    return f"{message}{COMMANDS_SEPARATOR}{captured}"
