"""
Vectorpool configuration module.

- Project configuration (database path, plugin factory) from vectorpool.config
- Workflow configs (BULK_EMBED.*) via StepConfig/ConfigParam
"""

from vectorpool.config.base import (
    CONFIG_FILE_NAME,
    VectorpoolConfig,
    config_file_exists,
    create_config,
    get_config_file_path,
    get_config_or_default,
    load_config,
)
from vectorpool.config.model_config import ConfigParam, StepConfig

__all__ = [
    "CONFIG_FILE_NAME",
    "VectorpoolConfig",
    "config_file_exists",
    "create_config",
    "get_config_file_path",
    "get_config_or_default",
    "load_config",
    "ConfigParam",
    "StepConfig",
]
