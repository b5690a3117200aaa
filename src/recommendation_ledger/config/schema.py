"""
recommendation-ledger — configuration schema

File: src/recommendation_ledger/config/schema.py

Purpose
- Built-in defaults for every config section, the field rules that guard them and the
  ``diagnostic`` and ``ci`` profile overlays.

Behavior
- Validation never stops at the first problem. Each issue carries the dotted path of the
  field it concerns (``health.min_success_rate``, ``profiles.ci.database``).
- Unknown keys are rejected everywhere; profiles may set any subset of non-meta fields.
- ``meta.schema_version`` must equal this build's version; a mismatch explains which side
  to upgrade.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Collection, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from recommendation_ledger.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_DB_PATH,
    DEFAULT_LOG_DIR,
    MAX_BATCH_SIZE,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
BUILTIN_PROFILE_NAMES: Final[tuple[str, ...]] = ("diagnostic", "ci")
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")

_PROFILE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_-]*$")
_SENSITIVE_KEY_TERMS: Final[tuple[str, ...]] = ("secret", "token", "password", "credential")

# Config paths that are normalized relative to the config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("database", "path"),
    ("observability", "log_dir"),
)

_SECTIONS: Final[tuple[str, ...]] = (
    "meta",
    "database",
    "persistence",
    "health",
    "harness",
    "observability",
    "console",
)
_OVERLAY_SECTIONS: Final[tuple[str, ...]] = tuple(item for item in _SECTIONS if item != "meta")


class MetaConfig(TypedDict):
    schema_version: int


class DatabaseConfig(TypedDict):
    path: str
    busy_timeout_ms: int
    busy_retry_limit: int
    busy_retry_backoff_ms: int


class PersistenceConfig(TypedDict):
    max_batch_size: int
    fetch_timeout_ms: int
    fetch_retry_limit: int
    fetch_retry_backoff_ms: int


class HealthConfig(TypedDict):
    window_size: int
    retention_hours: float
    slow_operation_ms: float
    critical_operation_ms: float
    min_success_rate: float
    critical_success_rate: float
    consecutive_failures_threshold: int
    recent_failures_limit: int


class HarnessConfig(TypedDict):
    record_count: int
    max_duration_ms: float


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_dir: str
    log_to_stdout: bool
    redact_secrets: bool


class ConsoleConfig(TypedDict):
    refresh_seconds: float


class ProfileOverlay(TypedDict, total=False):
    database: dict[str, object]
    persistence: dict[str, object]
    health: dict[str, object]
    harness: dict[str, object]
    observability: dict[str, object]
    console: dict[str, object]


class LedgerConfig(TypedDict):
    meta: MetaConfig
    database: DatabaseConfig
    persistence: PersistenceConfig
    health: HealthConfig
    harness: HarnessConfig
    observability: ObservabilityConfig
    console: ConsoleConfig
    profiles: dict[str, ProfileOverlay]


DEFAULT_CONFIG: Final[LedgerConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "database": {
        "path": DEFAULT_DB_PATH.as_posix(),
        "busy_timeout_ms": 5000,
        "busy_retry_limit": 4,
        "busy_retry_backoff_ms": 25,
    },
    "persistence": {
        "max_batch_size": MAX_BATCH_SIZE,
        "fetch_timeout_ms": 10000,
        "fetch_retry_limit": 2,
        "fetch_retry_backoff_ms": 100,
    },
    "health": {
        "window_size": 1000,
        "retention_hours": 24.0,
        "slow_operation_ms": 5000.0,
        "critical_operation_ms": 15000.0,
        "min_success_rate": 0.95,
        "critical_success_rate": 0.5,
        "consecutive_failures_threshold": 3,
        "recent_failures_limit": 10,
    },
    "harness": {
        "record_count": 10,
        "max_duration_ms": 30000.0,
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": DEFAULT_LOG_DIR.as_posix(),
        "log_to_stdout": False,
        "redact_secrets": True,
    },
    "console": {
        "refresh_seconds": 5.0,
    },
    "profiles": {
        "diagnostic": {
            "observability": {"log_level": "DEBUG", "log_to_stdout": True},
            "harness": {"record_count": 25},
        },
        "ci": {
            "persistence": {"fetch_timeout_ms": 30000},
            "health": {"slow_operation_ms": 10000.0, "critical_operation_ms": 30000.0},
            "observability": {"log_level": "WARNING"},
        },
    },
}


_FieldKind = Literal["int", "float", "bool", "path", "enum"]


@dataclass(frozen=True, slots=True)
class _FieldRule:
    kind: _FieldKind
    minimum: float | None = None
    maximum: float | None = None
    allowed: tuple[str, ...] = ()

    def parse(self, value: object) -> tuple[object, str | None]:
        """Return the normalized value, or ``(None, message)`` when ``value`` is rejected."""

        got = type(value).__name__
        if self.kind == "bool":
            if isinstance(value, bool):
                return value, None
            return None, f"expected boolean, got {got}"

        if self.kind in ("path", "enum"):
            if not isinstance(value, str):
                return None, f"expected string, got {got}"
            text = value.strip()
            if not text:
                return None, "must not be empty"
            if self.kind == "path" and "\x00" in text:
                return None, "must not contain NUL bytes"
            if self.kind == "enum" and text not in self.allowed:
                return None, (
                    f"invalid value {text!r}; expected one of: {', '.join(sorted(self.allowed))}"
                )
            return text, None

        if isinstance(value, bool):
            return None, f"expected {'integer' if self.kind == 'int' else 'number'}, got bool"
        if self.kind == "int":
            if not isinstance(value, int):
                return None, f"expected integer, got {got}"
            number: float = value
        else:
            if not isinstance(value, (int, float)):
                return None, f"expected number, got {got}"
            number = float(value)
            if not math.isfinite(number):
                return None, "must be finite"
        if self.minimum is not None and number < self.minimum:
            return None, f"must be >= {self.minimum:g}"
        if self.maximum is not None and number > self.maximum:
            return None, f"must be <= {self.maximum:g}"
        return number, None


def _int(minimum: float | None = None, maximum: float | None = None) -> _FieldRule:
    return _FieldRule("int", minimum, maximum)


def _float(minimum: float | None = None, maximum: float | None = None) -> _FieldRule:
    return _FieldRule("float", minimum, maximum)


_PATH: Final[_FieldRule] = _FieldRule("path")
_BOOL: Final[_FieldRule] = _FieldRule("bool")

_SECTION_RULES: Final[dict[str, dict[str, _FieldRule]]] = {
    "meta": {"schema_version": _int(1)},
    "database": {
        "path": _PATH,
        "busy_timeout_ms": _int(0),
        "busy_retry_limit": _int(0),
        "busy_retry_backoff_ms": _int(0),
    },
    "persistence": {
        "max_batch_size": _int(1),
        "fetch_timeout_ms": _int(1),
        "fetch_retry_limit": _int(0),
        "fetch_retry_backoff_ms": _int(0),
    },
    "health": {
        "window_size": _int(1),
        "retention_hours": _float(0.001),
        "slow_operation_ms": _float(0.001),
        "critical_operation_ms": _float(0.001),
        "min_success_rate": _float(0.0, 1.0),
        "critical_success_rate": _float(0.0, 1.0),
        "consecutive_failures_threshold": _int(1),
        "recent_failures_limit": _int(1),
    },
    "harness": {
        "record_count": _int(1, MAX_BATCH_SIZE),
        "max_duration_ms": _float(0.001),
    },
    "observability": {
        "log_level": _FieldRule("enum", allowed=LOG_LEVELS),
        "log_dir": _PATH,
        "log_to_stdout": _BOOL,
        "redact_secrets": _BOOL,
    },
    "console": {"refresh_seconds": _float(0.1)},
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """One rejected field: dotted path plus a human-readable reason."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised by ``assert_valid_config``; ``issues`` keeps every problem found."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        lines = [f"- {issue.path}: {issue.message}" for issue in self.issues]
        super().__init__("invalid config:\n" + ("\n".join(lines) or "unknown validation failure"))


def default_config() -> LedgerConfig:
    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    """Explain how to resolve a ``meta.schema_version`` that differs from this build's."""

    if found_version == ConfigSchemaVersion:
        return "schema version is current"
    if found_version < ConfigSchemaVersion:
        relation, remedy = "older", "upgrade ledger.toml to the current schema"
    else:
        relation, remedy = "newer", "upgrade the recommendation-ledger runtime"
    return (
        f"schema version {found_version} is {relation} than supported "
        f"{ConfigSchemaVersion}; {remedy}"
    )


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto a copy of ``base``; neither input is modified."""

    merged = _copy_tree(base)
    for key in sorted(overlay):
        value = overlay[key]
        current = merged.get(key)
        if isinstance(value, Mapping):
            merged[key] = merge_config(current if isinstance(current, Mapping) else {}, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def apply_profile_overlay(config: Mapping[str, object], profile: str | None) -> dict[str, Any]:
    """Merge the named overlay from ``config["profiles"]`` and validate the outcome."""

    name = (profile or "").strip()
    if not name:
        return _copy_tree(config)

    profiles = config.get("profiles")
    if not isinstance(profiles, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", "profiles section is required"),)
        )
    overlay = profiles.get(name)
    if overlay is None:
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", f"profile {name!r} is not defined"),)
        )
    if not isinstance(overlay, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue(f"profiles.{name}", "profile overlay must be an object"),)
        )
    return assert_valid_config(merge_config(config, overlay), active_profile=name)


def validate_config(
    config: Mapping[str, object] | object,
    *,
    active_profile: str | None = None,
) -> ConfigValidationResult:
    """Check every section, field and profile; issues are reported in sorted path order."""

    checker = _Checker()
    normalized = checker.root(config)
    name = active_profile.strip() if isinstance(active_profile, str) else ""
    if normalized is not None and name:
        profiles = normalized.get("profiles", {})
        if name in profiles:
            checker.root(merge_config(normalized, profiles[name]))
        else:
            checker.flag("profiles", f"profile {name!r} is not defined")

    if normalized is None or checker.issues:
        return ConfigValidationResult(config=None, issues=tuple(checker.issues))
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(
    config: Mapping[str, object] | object,
    *,
    active_profile: str | None = None,
) -> dict[str, Any]:
    result = validate_config(config, active_profile=active_profile)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Copy of ``config`` with string values under secret-looking keys masked."""

    if not isinstance(config, Mapping):
        return {}
    return {key: _redact(key, config[key]) for key in sorted(config)}


class _Checker:
    """Walks a raw config tree and accumulates issues."""

    def __init__(self) -> None:
        self.issues: list[ConfigValidationIssue] = []

    def flag(self, path: str, message: str) -> None:
        self.issues.append(ConfigValidationIssue(path, message))

    def root(self, payload: object) -> dict[str, Any] | None:
        tree = self.mapping(payload, "<root>")
        if tree is None:
            return None
        self.keys(tree, "", allowed={*_SECTIONS, "profiles"}, required=_SECTIONS)

        out: dict[str, Any] = {}
        for section in _SECTIONS:
            block = self.mapping(tree[section], section) if section in tree else None
            if block is not None:
                out[section] = self.section(section, block, section, partial=False)

        version = out.get("meta", {}).get("schema_version")
        if isinstance(version, int) and version != ConfigSchemaVersion:
            self.flag("meta.schema_version", migration_guidance(version))
        self.health_bounds(out.get("health", {}))

        if "profiles" in tree:
            profiles = self.mapping(tree["profiles"], "profiles")
            if profiles is not None:
                out["profiles"] = self.profiles(profiles)
        return out

    def section(
        self, section: str, block: Mapping[str, object], path: str, *, partial: bool
    ) -> dict[str, Any]:
        rules = _SECTION_RULES[section]
        self.keys(block, path, allowed=rules, required=() if partial else rules)
        out: dict[str, Any] = {}
        for key in sorted(rules.keys() & block.keys()):
            value, problem = rules[key].parse(block[key])
            if problem is None:
                out[key] = value
            else:
                self.flag(f"{path}.{key}", problem)
        return out

    def health_bounds(self, health: Mapping[str, Any]) -> None:
        floor, critical = health.get("min_success_rate"), health.get("critical_success_rate")
        if isinstance(floor, float) and isinstance(critical, float) and critical > floor:
            self.flag("health.critical_success_rate", "must be <= health.min_success_rate")
        slow, very_slow = health.get("slow_operation_ms"), health.get("critical_operation_ms")
        if isinstance(slow, float) and isinstance(very_slow, float) and very_slow < slow:
            self.flag("health.critical_operation_ms", "must be >= health.slow_operation_ms")

    def profiles(self, profiles: Mapping[str, object]) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for name in sorted(profiles):
            path = f"profiles.{name}"
            if not _PROFILE_NAME_PATTERN.fullmatch(name):
                self.flag(path, "profile name must match ^[a-z][a-z0-9_-]*$")
                continue
            overlay = self.mapping(profiles[name], path)
            if overlay is None:
                continue
            self.keys(overlay, path, allowed=_OVERLAY_SECTIONS, required=())
            out[name] = {}
            for section in _OVERLAY_SECTIONS:
                if section not in overlay:
                    continue
                block = self.mapping(overlay[section], f"{path}.{section}")
                if block is not None:
                    out[name][section] = self.section(
                        section, block, f"{path}.{section}", partial=True
                    )
        return out

    def mapping(self, value: object, path: str) -> dict[str, object] | None:
        if not isinstance(value, Mapping):
            self.flag(path, f"expected object, got {type(value).__name__}")
            return None
        bad_keys = [key for key in value if not isinstance(key, str)]
        for key in bad_keys:
            self.flag(path, f"object key must be string, got {type(key).__name__}")
        return {key: item for key, item in value.items() if isinstance(key, str)}

    def keys(
        self,
        block: Mapping[str, object],
        path: str,
        *,
        allowed: Collection[str],
        required: Collection[str],
    ) -> None:
        prefix = f"{path}." if path else ""
        for key in sorted(set(block) - set(allowed)):
            self.flag(prefix + key, "unknown field")
        for key in sorted(set(required) - set(block)):
            self.flag(prefix + key, "missing required field")


def _copy_tree(value: Mapping[str, object]) -> dict[str, Any]:
    return {
        key: _copy_tree(item) if isinstance(item, Mapping) else copy.deepcopy(item)
        for key, item in sorted(value.items())
    }


def _redact(key: object, value: object) -> object:
    if isinstance(value, str) and isinstance(key, str):
        lowered = key.lower()
        if any(term in lowered for term in _SENSITIVE_KEY_TERMS):
            return "<redacted>"
    if isinstance(value, Mapping):
        return {inner: _redact(inner, value[inner]) for inner in sorted(value)}
    if isinstance(value, (list, tuple)):
        return [_redact(None, item) for item in value]
    return value


__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "LOG_LEVELS",
    "LedgerConfig",
    "PATH_FIELDS",
    "ProfileOverlay",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
