"""Command line entry points for inspecting a harness workspace."""

from __future__ import annotations

import shutil
from pathlib import Path

from cyclopts import App

from .capabilities import DEFAULT_PACKAGE_MANAGER, detect_capabilities
from .config import load_config
from .errors import HarnessError
from .fixtures import ensure_safe_path, ensure_separate_root
from .status import ExampleStatus, StatusStore

app = App(help="Inspect and clean specharness session state.")

ERROR_NO_STATUS = "No example status recorded at {path}."


@app.command()
def capabilities(*, package_manager: str = DEFAULT_PACKAGE_MANAGER) -> None:
    """Print the runtime capabilities used for tag filtering."""
    snapshot = detect_capabilities(package_manager=package_manager)
    for name, value in snapshot.describe().items():
        print(f"{name}\t{value}")


@app.command()
def status(
    *,
    failures: bool = False,
    status_file: Path | None = None,
    rootdir: Path = Path(),
) -> None:
    """Print the persisted pass/fail history."""
    path = status_file or load_config(rootdir.resolve()).status_file
    store = StatusStore.load(path)
    if not len(store):
        raise HarnessError(ERROR_NO_STATUS.format(path=path))
    for nodeid, record in store.items():
        if failures and record.status is not ExampleStatus.FAILED:
            continue
        print(f"{nodeid}\t{record.status.value}\t{record.run_time:.3f}s")


@app.command()
def clean(*, scratch_root: Path | None = None, rootdir: Path = Path()) -> None:
    """Remove the scratch tree, including fixture repositories and logs."""
    target = scratch_root or load_config(rootdir.resolve()).scratch_root
    resolved = ensure_separate_root(
        ensure_safe_path(target),
        Path.cwd(),
        rootdir,
    )
    if not resolved.exists():
        print(f"nothing to clean at {resolved}")
        return
    shutil.rmtree(resolved)
    print(f"removed {resolved}")


def main(argv: list[str] | tuple[str, ...] | None = None) -> int:
    """Entry point for the specharness CLI."""
    try:
        result = app(argv)
    except HarnessError as error:
        print(f"specharness: {error}")
        return 1
    return int(result or 0)


if __name__ == "__main__":
    raise SystemExit(main())
