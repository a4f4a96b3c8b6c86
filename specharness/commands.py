"""Run commands inside an example's execution context."""

from __future__ import annotations

import logging
import shlex
import subprocess
import typing as typ

from .errors import CommandFailedError

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    from pathlib import Path

    from .output import OutputBuffer
    from .state import ExecutionContext

_logger = logging.getLogger(__name__)


def run_command(
    args: cabc.Sequence[str | Path],
    context: ExecutionContext,
    output: OutputBuffer,
    *,
    check: bool = False,
    input_text: str | None = None,
    timeout: float | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run ``args`` with the context's cwd and env, recording the output."""
    argv = [str(arg) for arg in args]
    _logger.debug("running %s in %s", shlex.join(argv), context.cwd)
    completed = subprocess.run(  # noqa: S603
        argv,
        cwd=context.cwd,
        env=dict(context.env),
        input=input_text,
        capture_output=True,
        text=True,
        check=False,
        timeout=timeout,
    )
    output.record_command(argv, completed.stdout, completed.stderr)
    if check and completed.returncode != 0:
        _logger.info(
            "%s exited with status %d", shlex.join(argv), completed.returncode
        )
        raise CommandFailedError(
            shlex.join(argv),
            completed.returncode,
            (completed.stdout or "") + (completed.stderr or ""),
        )
    return completed
