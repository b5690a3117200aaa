"""
recommendation-ledger — runtime config loader.

File: src/recommendation_ledger/config/loader.py

Purpose
- Resolve the effective config from four layers: defaults, ``ledger.toml``, ``LEDGER_*``
  environment variables and CLI overrides (later layers win).

Behavior
- The config file is optional unless a path is passed explicitly.
- Every scalar field outside ``meta`` and ``profiles`` has an env name built from its section
  and key, e.g. ``LEDGER_PERSISTENCE_FETCH_TIMEOUT_MS``. Values are coerced to the type of
  the default.
- A profile is picked from the ``profile`` argument, then a ``profile`` CLI override, then
  ``LEDGER_PROFILE``. It is applied on top of the file before env and CLI overrides.
- ``database.path`` and ``observability.log_dir`` are resolved against the config file's
  directory and stored as POSIX strings.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

from recommendation_ledger.config.schema import (
    DEFAULT_CONFIG,
    PATH_FIELDS,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "ledger.toml"
ENV_PREFIX: Final[str] = "LEDGER_"
PROFILE_ENV_VAR: Final[str] = f"{ENV_PREFIX}PROFILE"

_TRUE_WORDS: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSE_WORDS: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})
_NON_ENV_SECTIONS: Final[frozenset[str]] = frozenset({"meta", "profiles"})


class ConfigLoadError(ValueError):
    """Raised when config cannot be read or an override cannot be coerced."""


@dataclass(frozen=True, slots=True)
class EnvOverride:
    """One recognised environment variable and the field it targets."""

    name: str
    section: str
    key: str
    coerce: Callable[[str, str], object]

    @property
    def dotted(self) -> str:
        return f"{self.section}.{self.key}"


def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return the validated effective config."""

    env = os.environ if environ is None else environ
    overrides = dict(cli_overrides or {})
    path = _config_file(config_path)

    layered = assert_valid_config(
        merge_config(default_config(), _read_toml(path, required=config_path is not None))
    )
    selected = _select_profile(profile, overrides, env)
    if selected is not None:
        layered = apply_profile_overlay(layered, selected)

    layered = merge_config(layered, _env_layer(env))
    layered = merge_config(layered, _cli_layer(overrides))
    layered = normalize_paths(layered, base_dir=path.parent)
    return assert_valid_config(layered, active_profile=selected)


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Resolve relative path fields, including those inside profile overlays."""

    result = merge_config({}, config)
    targets: list[dict[str, Any]] = [result]
    profiles = result.get("profiles")
    if isinstance(profiles, dict):
        targets.extend(item for item in profiles.values() if isinstance(item, dict))

    for target in targets:
        for section, key in PATH_FIELDS:
            block = target.get(section)
            if isinstance(block, dict) and isinstance(block.get(key), str):
                block[key] = _resolve_path(block[key], base_dir)
    return result


def effective_config(config: Mapping[str, object]) -> dict[str, Any]:
    """Redacted copy of ``config`` for logs and the ``config`` command."""

    return redact_config(config)


def dump_effective_config(config: Mapping[str, object]) -> str:
    return json.dumps(
        effective_config(config), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def env_overrides() -> tuple[EnvOverride, ...]:
    """All env overrides derived from the default config, sorted by name."""

    found: list[EnvOverride] = []
    for section, block in DEFAULT_CONFIG.items():
        if section in _NON_ENV_SECTIONS or not isinstance(block, Mapping):
            continue
        for key, default in block.items():
            found.append(
                EnvOverride(
                    name=f"{ENV_PREFIX}{section.upper()}_{key.upper()}",
                    section=section,
                    key=key,
                    coerce=_coercer_for(default),
                )
            )
    return tuple(sorted(found, key=lambda item: item.name))


def env_variable_names() -> tuple[str, ...]:
    return tuple(item.name for item in env_overrides())


def _config_file(config_path: str | Path | None) -> Path:
    if config_path is None:
        return (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
    return Path(config_path).expanduser().resolve()


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.is_file():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _select_profile(
    explicit: str | None,
    overrides: Mapping[str, object],
    env: Mapping[str, str],
) -> str | None:
    candidate: object
    if explicit is not None:
        candidate = explicit
    elif "profile" in overrides:
        candidate = overrides["profile"]
        if not isinstance(candidate, str):
            raise ConfigLoadError("cli override 'profile' must be a string")
    else:
        candidate = env.get(PROFILE_ENV_VAR)
    if not isinstance(candidate, str):
        return None
    return candidate.strip() or None


def _env_layer(env: Mapping[str, str]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for override in env_overrides():
        raw = env.get(override.name)
        if raw is None:
            continue
        value = override.coerce(raw.strip(), f"{override.name} -> {override.dotted}")
        layer.setdefault(override.section, {})[override.key] = value
    return layer


def _cli_layer(overrides: Mapping[str, object]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for key, value in overrides.items():
        if key == "profile":
            continue
        parts = [part for part in key.split(".") if part]
        if not parts:
            raise ConfigLoadError(f"invalid CLI override key {key!r}")
        cursor = layer
        for part in parts[:-1]:
            cursor = cursor.setdefault(part, {})
        cursor[parts[-1]] = merge_config({}, value) if isinstance(value, Mapping) else value
    return layer


def _coercer_for(default: object) -> Callable[[str, str], object]:
    if isinstance(default, bool):
        return _to_bool
    if isinstance(default, int):
        return _to_int
    if isinstance(default, float):
        return _to_float
    return _to_str


def _to_str(raw: str, label: str) -> object:
    return raw


def _to_int(raw: str, label: str) -> object:
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigLoadError(f"{label} must be an integer") from exc


def _to_float(raw: str, label: str) -> object:
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigLoadError(f"{label} must be a number") from exc


def _to_bool(raw: str, label: str) -> object:
    lowered = raw.lower()
    if lowered in _TRUE_WORDS:
        return True
    if lowered in _FALSE_WORDS:
        return False
    raise ConfigLoadError(f"{label} must be a boolean (true/false/1/0/yes/no/on/off)")


def _resolve_path(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(candidate)).as_posix()


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "EnvOverride",
    "PROFILE_ENV_VAR",
    "dump_effective_config",
    "effective_config",
    "env_overrides",
    "env_variable_names",
    "load_config",
    "normalize_paths",
]
