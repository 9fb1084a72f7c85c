"""
Vectorpool configuration management.

Loads configuration from a `vectorpool.config` file in the current directory.
The file stores project-level settings such as the database location and the
plugin factory used by the CLI.
"""

from pathlib import Path
from typing import Any, ClassVar, Literal, Optional

from pydantic import BaseModel, Field, field_validator

CONFIG_FILE_NAME = "vectorpool.config"


class VectorpoolConfig(BaseModel):
    """Vectorpool project configuration."""

    DEFAULT_DB_PATH: ClassVar[str] = ".vectorpool/vectorpool.sqlite"
    DEFAULT_EMBEDDING_MODEL: ClassVar[str] = "openai/text-embedding-3-small"

    PATH_DB: str = Field(
        default=DEFAULT_DB_PATH,
        description="Path to the SQLite database file (relative to vectorpool.config location)",
    )
    DATABASE_URL: Optional[str] = Field(
        default=None,
        description="SQLAlchemy URL of a PostgreSQL database (overrides PATH_DB when set)",
    )
    EMBEDDING_MODEL: str = Field(
        default=DEFAULT_EMBEDDING_MODEL,
        description="LiteLLM model used by the default realtime embedder",
    )
    PLUGIN: Optional[str] = Field(
        default=None,
        description="module:attr of a callable returning the VectorizePlugin used by the CLI",
    )
    TASK_QUEUE: Literal["inline", "dbos"] = Field(
        default="inline",
        description="Task queue backend: in-process (inline) or durable DBOS workflows",
    )

    # Dotted keys (BULK_EMBED.PAGE_SIZE=100) land in __pydantic_extra__
    model_config = {"extra": "allow"}

    @field_validator("DATABASE_URL", "PLUGIN", mode="before")
    @classmethod
    def empty_string_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def get_absolute_db_path(self) -> Path:
        """Get absolute path to the database file."""
        db_path = Path(self.PATH_DB)
        if not db_path.is_absolute():
            return get_config_file_path().parent / db_path
        return db_path


def get_config_file_path() -> Path:
    """Get the path to the vectorpool configuration file."""
    return Path.cwd() / CONFIG_FILE_NAME


def config_file_exists() -> bool:
    """Check if the vectorpool.config file exists."""
    return get_config_file_path().exists()


def load_config() -> VectorpoolConfig:
    """
    Load configuration from vectorpool.config in the current directory.

    The file contains key=value pairs:

        PATH_DB=.vectorpool/vectorpool.sqlite
        PLUGIN="myproject.vectors:build_plugin"
        BULK_EMBED.PAGE_SIZE=100

    Raises:
        FileNotFoundError: If the file doesn't exist
    """
    config_file = get_config_file_path()

    if not config_file.exists():
        raise FileNotFoundError(
            f"Vectorpool configuration file not found: {config_file}\n"
            "Run 'vectorpool init' to initialize a project."
        )

    config_data = {}
    with open(config_file, "r") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" in line:
                key, value = line.split("=", 1)
                config_data[key.strip()] = value.strip().strip('"').strip("'")

    return VectorpoolConfig(**config_data)


def get_config_or_default() -> VectorpoolConfig:
    """Get configuration, or the defaults if vectorpool.config doesn't exist."""
    if config_file_exists():
        return load_config()
    return VectorpoolConfig()


def create_config(
    db_path: str = VectorpoolConfig.DEFAULT_DB_PATH,
    plugin: Optional[str] = None,
) -> VectorpoolConfig:
    """Write a new vectorpool.config in the current directory."""
    config = VectorpoolConfig(PATH_DB=db_path, PLUGIN=plugin)

    config_file = get_config_file_path()
    config_file.parent.mkdir(parents=True, exist_ok=True)

    with open(config_file, "w") as f:
        f.write("# Vectorpool Project Configuration\n")
        f.write("# This file is auto-generated by 'vectorpool init'\n\n")
        f.write(f'PATH_DB="{config.PATH_DB}"\n')
        f.write(f'EMBEDDING_MODEL="{config.EMBEDDING_MODEL}"\n')
        if config.PLUGIN:
            f.write(f'PLUGIN="{config.PLUGIN}"\n')
        f.write(f'TASK_QUEUE="{config.TASK_QUEUE}"\n')
        f.write("\n# Bulk embedding\n")
        f.write("BULK_EMBED.PAGE_SIZE=50\n")
        f.write("BULK_EMBED.POLL_INTERVAL_SECONDS=5\n")

    return config
