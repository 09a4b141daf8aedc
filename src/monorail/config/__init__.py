"""Configuration loading and validation for ``monorail.toml``."""

from monorail.config.loader import (
    ENV_PREFIX,
    ConfigLoadError,
    dump_effective_config,
    find_config_file,
    load_config,
    normalize_paths,
)
from monorail.config.schema import (
    DEFAULT_CONFIG,
    ConfigValidationError,
    ConfigValidationIssue,
    MonorailConfig,
    assert_valid_config,
    default_config,
    merge_config,
)

__all__ = [
    "ConfigLoadError",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "DEFAULT_CONFIG",
    "ENV_PREFIX",
    "MonorailConfig",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "find_config_file",
    "load_config",
    "merge_config",
    "normalize_paths",
]
