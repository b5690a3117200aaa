"""
recommendation-ledger config package public API.

File: src/recommendation_ledger/config/__init__.py

Purpose
- Export config loading/validation entrypoints and public error types.
- Support loading from ``ledger.toml`` + ``LEDGER_`` env overrides.
"""

from recommendation_ledger.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    PROFILE_ENV_VAR,
    ConfigLoadError,
    EnvOverride,
    dump_effective_config,
    effective_config,
    env_overrides,
    env_variable_names,
    load_config,
    normalize_paths,
)
from recommendation_ledger.config.schema import (
    BUILTIN_PROFILE_NAMES,
    DEFAULT_CONFIG,
    LOG_LEVELS,
    PATH_FIELDS,
    ConfigSchemaVersion,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    LedgerConfig,
    ProfileOverlay,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
    redact_config,
    validate_config,
)

__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "ConfigLoadError",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "EnvOverride",
    "LOG_LEVELS",
    "LedgerConfig",
    "PATH_FIELDS",
    "PROFILE_ENV_VAR",
    "ProfileOverlay",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "effective_config",
    "env_overrides",
    "env_variable_names",
    "load_config",
    "merge_config",
    "migration_guidance",
    "normalize_paths",
    "redact_config",
    "validate_config",
]
