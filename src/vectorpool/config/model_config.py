"""
Declarative configuration for workflows.

A workflow config subclasses StepConfig and declares its parameters with
ConfigParam. Values are resolved from vectorpool.config using a module
prefix:

    class BulkEmbedConfig(StepConfig):
        page_size: int = ConfigParam(default=50, ge=1, le=1000)

    config = BulkEmbedConfig.from_config("bulk_embed")
    # Looks for BULK_EMBED.PAGE_SIZE

Resolution order for each parameter:
    1. Explicit override passed to from_config()
    2. MODULE.PARAM in vectorpool.config
    3. Global key named by ConfigParam.fallback
    4. ConfigParam.default
"""

from typing import Any, ClassVar, get_type_hints

from pydantic import BaseModel

from vectorpool.config.base import config_file_exists, load_config


class ConfigParam:
    """
    Metadata for a configuration parameter.

    Args:
        default: Value used when nothing is configured
        fallback: Global config key consulted before the default
        description: Human-readable description
        ge: Lower bound (numeric params)
        le: Upper bound (numeric params)
    """

    def __init__(
        self,
        default: Any = None,
        fallback: str | None = None,
        description: str = "",
        ge: float | None = None,
        le: float | None = None,
    ):
        self.default = default
        self.fallback = fallback
        self.description = description
        self.ge = ge
        self.le = le

    def __repr__(self) -> str:
        parts = []
        if self.default is not None:
            parts.append(f"default={self.default!r}")
        if self.fallback:
            parts.append(f"fallback={self.fallback!r}")
        if self.ge is not None:
            parts.append(f"ge={self.ge}")
        if self.le is not None:
            parts.append(f"le={self.le}")
        return f"ConfigParam({', '.join(parts)})"


class StepConfig(BaseModel):
    """Base class for workflow configuration loaded from vectorpool.config."""

    _param_metadata: ClassVar[dict[str, ConfigParam]] = {}

    model_config = {"extra": "forbid"}

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)

        cls._param_metadata = {}
        for name, value in list(vars(cls).items()):
            if isinstance(value, ConfigParam):
                cls._param_metadata[name] = value
                # Pydantic sees the plain default so direct instantiation works
                setattr(cls, name, value.default)

    @classmethod
    def from_config(cls, config_name: str, **overrides) -> "StepConfig":
        """
        Load configuration for `config_name` with optional overrides.

        Example:
            BulkEmbedConfig.from_config("bulk_embed", poll_interval_seconds=0)
        """
        if not config_file_exists():
            return cls(**overrides)

        project_config = load_config()
        extra = getattr(project_config, "__pydantic_extra__", None) or {}
        module = config_name.upper()
        type_hints = get_type_hints(cls)

        values = {}
        for field_name, param in cls._param_metadata.items():
            if field_name in overrides:
                values[field_name] = overrides[field_name]
                continue

            raw_value = extra.get(f"{module}.{field_name.upper()}")

            if raw_value is None and param.fallback:
                if hasattr(project_config, param.fallback):
                    raw_value = getattr(project_config, param.fallback)
                else:
                    raw_value = extra.get(param.fallback)

            if raw_value is None:
                raw_value = param.default

            if raw_value is not None and field_name in type_hints:
                raw_value = cls._coerce_type(raw_value, type_hints[field_name], field_name, param)

            values[field_name] = raw_value

        return cls(**values)

    @classmethod
    def _coerce_type(
        cls, value: Any, target_type: type, field_name: str, param: ConfigParam
    ) -> Any:
        """Coerce a raw (usually string) config value and check bounds."""
        origin = getattr(target_type, "__origin__", None)
        if origin is not None:
            args = [a for a in getattr(target_type, "__args__", ()) if a is not type(None)]
            if args:
                target_type = args[0]

        if isinstance(target_type, type) and isinstance(value, str) and target_type is not str:
            try:
                if target_type is bool:
                    value = value.lower() in ("true", "1", "yes", "on")
                elif target_type is int:
                    value = int(value)
                elif target_type is float:
                    value = float(value)
            except (ValueError, TypeError):
                pass  # let pydantic report it

        if isinstance(value, (int, float)) and not isinstance(value, bool):
            if param.ge is not None and value < param.ge:
                raise ValueError(f"{field_name} must be >= {param.ge}, got {value}")
            if param.le is not None and value > param.le:
                raise ValueError(f"{field_name} must be <= {param.le}, got {value}")

        return value

    @classmethod
    def get_config_keys(cls, config_name: str) -> dict[str, str]:
        """Map each parameter to the config key that would be read for it."""
        module = config_name.upper()
        result = {}
        for field_name, param in cls._param_metadata.items():
            key = f"{module}.{field_name.upper()}"
            if param.fallback:
                key += f" (-> {param.fallback})"
            result[field_name] = key
        return result
