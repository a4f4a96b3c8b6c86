"""Example-status persistence for selective re-runs."""

from __future__ import annotations

import dataclasses
import enum
import typing as typ

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from .errors import StatusFileError

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    from pathlib import Path

STATUS_SCHEMA_VERSION = 1
DEFAULT_STATUS_FILENAME = ".specharness_status.yaml"

_yaml = YAML(typ="safe")
_yaml.version = (1, 2)
_yaml.default_flow_style = False


class ExampleStatus(enum.Enum):
    """Outcome recorded for one example."""

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclasses.dataclass(frozen=True, slots=True)
class StatusRecord:
    """Last known outcome of an example."""

    status: ExampleStatus
    run_time: float = 0.0

    def to_dict(self) -> dict[str, typ.Any]:
        """Return the YAML representation of the record."""
        return {"status": self.status.value, "run_time": round(self.run_time, 6)}


class StatusStore:
    """Pass/fail history persisted between runs."""

    def __init__(
        self,
        path: Path,
        records: cabc.Mapping[str, StatusRecord] | None = None,
    ) -> None:
        """Bind the store to ``path`` with previously known ``records``."""
        self.path = path
        self._records: dict[str, StatusRecord] = dict(records or {})

    @classmethod
    def load(cls, path: Path) -> StatusStore:
        """Read the status file at ``path``; a missing file yields an empty store."""
        if not path.exists():
            return cls(path)
        try:
            loaded = _yaml.load(path.read_text(encoding="utf-8")) or {}
        except YAMLError as error:
            detail = f"Cannot parse example status file {path}: {error}"
            raise StatusFileError(detail) from error
        if not isinstance(loaded, dict):
            detail = f"Invalid example status file at {path}"
            raise StatusFileError(detail)
        try:
            schema_version = int(loaded.get("schema_version", 0))
        except (TypeError, ValueError) as error:
            detail = f"Invalid schema_version in example status file {path}: {error}"
            raise StatusFileError(detail) from error
        if schema_version > STATUS_SCHEMA_VERSION:
            detail = (
                f"Unsupported example status file schema_version={schema_version} "
                f"at {path}; maximum supported is {STATUS_SCHEMA_VERSION}"
            )
            raise StatusFileError(detail)
        return cls(path, _parse_examples(path, loaded.get("examples") or {}))

    def record(
        self,
        nodeid: str,
        status: ExampleStatus | str,
        run_time: float = 0.0,
    ) -> None:
        """Store the latest outcome for ``nodeid``."""
        self._records[nodeid] = StatusRecord(ExampleStatus(status), run_time)

    def get(self, nodeid: str) -> StatusRecord | None:
        """Return the record for ``nodeid`` if one exists."""
        return self._records.get(nodeid)

    def items(self) -> list[tuple[str, StatusRecord]]:
        """Return every record sorted by node id."""
        return sorted(self._records.items())

    def failed_examples(self) -> set[str]:
        """Return node ids whose last recorded status is a failure."""
        return {
            nodeid
            for nodeid, record in self._records.items()
            if record.status is ExampleStatus.FAILED
        }

    def save(self) -> None:
        """Write the merged history back to disk."""
        document = {
            "schema_version": STATUS_SCHEMA_VERSION,
            "examples": {
                nodeid: record.to_dict() for nodeid, record in self.items()
            },
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("w", encoding="utf-8") as handle:
            _yaml.dump(document, handle)

    def __len__(self) -> int:
        """Return the number of recorded examples."""
        return len(self._records)


def _parse_examples(path: Path, examples: object) -> dict[str, StatusRecord]:
    if not isinstance(examples, dict):
        detail = f"Invalid examples section in {path}"
        raise StatusFileError(detail)
    records: dict[str, StatusRecord] = {}
    for nodeid, entry in examples.items():
        if not isinstance(entry, dict):
            continue
        try:
            status = ExampleStatus(entry.get("status"))
        except ValueError:
            continue
        try:
            run_time = float(entry.get("run_time", 0))
        except (TypeError, ValueError) as error:
            detail = f"Invalid run_time for {nodeid} in {path}: {error}"
            raise StatusFileError(detail) from error
        records[str(nodeid)] = StatusRecord(status, run_time)
    return records
