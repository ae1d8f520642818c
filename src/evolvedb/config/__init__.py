"""Configuration loading and validation."""

from evolvedb.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ConfigLoadError,
    LoadedConfig,
    dump_effective_config,
    find_config_file,
    load_config,
    load_config_layers,
)
from evolvedb.config.schema import (
    ConfigValidationError,
    ConfigValidationIssue,
    assert_valid_config,
    default_config,
    validate_config,
)

__all__ = [
    "ConfigLoadError",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "LoadedConfig",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "find_config_file",
    "load_config",
    "load_config_layers",
    "validate_config",
]
