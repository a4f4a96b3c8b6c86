"""Harness configuration loaded from YAML with environment overrides."""

from __future__ import annotations

import collections.abc as cabc
import dataclasses
import os
import typing as typ
from pathlib import Path

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from .capabilities import DEFAULT_PACKAGE_MANAGER
from .errors import ConfigError
from .failfast import DEFAULT_THRESHOLD
from .fixtures import ensure_separate_root
from .state import DEFAULT_IGNORED_PREFIXES
from .status import DEFAULT_STATUS_FILENAME

CONFIG_FILENAME = ".specharness.yaml"
ENV_FAIL_FAST = "SPECHARNESS_FAIL_FAST"
DEFAULT_SCRATCH_ROOT = "tmp"

_yaml = YAML(typ="safe")
_yaml.version = (1, 2)


@dataclasses.dataclass(frozen=True, slots=True)
class HarnessConfig:
    """Settings for one harness session."""

    fail_fast: int = DEFAULT_THRESHOLD
    scratch_root: Path = Path(DEFAULT_SCRATCH_ROOT)
    status_file: Path = Path(DEFAULT_STATUS_FILENAME)
    package_manager: str = DEFAULT_PACKAGE_MANAGER
    ignored_env_prefixes: tuple[str, ...] = DEFAULT_IGNORED_PREFIXES
    echo_errors: bool = False

    def resolve(self, rootdir: Path) -> HarnessConfig:
        """Anchor relative paths at ``rootdir``."""
        return dataclasses.replace(
            self,
            scratch_root=_anchor(self.scratch_root, rootdir),
            status_file=_anchor(self.status_file, rootdir),
        )


def _anchor(path: Path, rootdir: Path) -> Path:
    expanded = path.expanduser()
    return expanded if expanded.is_absolute() else rootdir / expanded


def _as_int(key: str, value: object) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be an integer, not {value!r}.")
    try:
        number = int(typ.cast("typ.Any", value))
    except (TypeError, ValueError) as error:
        raise ConfigError(f"{key} must be an integer, not {value!r}.") from error
    if number < 0:
        raise ConfigError(f"{key} must not be negative.")
    return number


def _as_bool(key: str, value: object) -> bool:
    if isinstance(value, bool):
        return value
    raise ConfigError(f"{key} must be true or false, not {value!r}.")


def _as_str(key: str, value: object) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    raise ConfigError(f"{key} must be a non-empty string, not {value!r}.")


def _as_prefixes(key: str, value: object) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    if isinstance(value, cabc.Sequence) and all(isinstance(v, str) for v in value):
        return tuple(typ.cast("cabc.Sequence[str]", value))
    raise ConfigError(f"{key} must be a list of strings, not {value!r}.")


_CONVERTERS: dict[str, typ.Callable[[str, object], object]] = {
    "fail_fast": _as_int,
    "scratch_root": lambda key, value: Path(_as_str(key, value)),
    "status_file": lambda key, value: Path(_as_str(key, value)),
    "package_manager": _as_str,
    "ignored_env_prefixes": _as_prefixes,
    "echo_errors": _as_bool,
}


def config_from_mapping(data: cabc.Mapping[str, object]) -> HarnessConfig:
    """Build a configuration from a plain mapping, validating every key."""
    unknown = sorted(set(data) - set(_CONVERTERS))
    if unknown:
        raise ConfigError(f"Unknown specharness settings: {', '.join(unknown)}.")
    values = {key: _CONVERTERS[key](key, value) for key, value in data.items()}
    return HarnessConfig(**typ.cast("dict[str, typ.Any]", values))


def _load_yaml(path: Path) -> dict[str, object]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            contents = _yaml.load(handle) or {}
    except YAMLError as error:
        raise ConfigError(f"Cannot parse {path}: {error}") from error
    if not isinstance(contents, dict):
        raise ConfigError(f"{path} must contain a mapping of settings.")
    return dict(contents)


def load_config(
    rootdir: Path,
    *,
    config_path: Path | None = None,
    environ: cabc.Mapping[str, str] | None = None,
) -> HarnessConfig:
    """Load settings for ``rootdir`` from YAML and the environment.

    An explicit ``config_path`` must exist; the default file is optional. A
    scratch root that is, or contains, ``rootdir`` is rejected.
    """
    source = os.environ if environ is None else environ
    path = config_path or rootdir / CONFIG_FILENAME
    if config_path is not None and not path.exists():
        raise ConfigError(f"Configuration file {path} does not exist.")
    data = _load_yaml(path) if path.exists() else {}
    if (override := source.get(ENV_FAIL_FAST)) is not None and override.strip():
        data["fail_fast"] = override.strip()
    config = config_from_mapping(data).resolve(rootdir)
    ensure_separate_root(config.scratch_root, rootdir)
    return config
