"""Configuration management for zvpg."""

import json
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import toml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from zvpg.utils.name_validator import DEFAULT_BRANCH_NAME_PATTERN

DEFAULT_CONFIG_PATH = Path("~/.zvpg/config.toml")

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


class ZvpgConfig(BaseModel):
    """Settings for one zvpg installation.

    Loaded once per invocation and passed explicitly to every manager.
    """

    # camelCase aliases allow JSON config files with camelCase keys
    model_config = ConfigDict(
        frozen=True, extra="ignore", populate_by_name=True, alias_generator=to_camel
    )

    # Storage layout
    zfs_pool: str = Field(default="zvpg_pool", description="ZFS pool holding all datasets")
    mount_dir: str = Field(default="/var/lib/zvpg", description="Root of dataset mountpoints")
    data_subdir: str = Field(default="data", description="Dataset of the primary data directory")
    branches_subdir: str = Field(default="branches", description="Container dataset for branches")
    socket_subdir: str = Field(default="sockets", description="Directory for unix sockets")

    # PostgreSQL
    postgres_user: str = Field(default="postgres")
    postgres_password: str = Field(default="postgres")
    postgres_db: str = Field(default="postgres")
    postgres_version: str = Field(default="17")
    postgres_bin_path: str = Field(default="/usr/lib/postgresql/17/bin")
    postgres_image: str = Field(default="postgres:17", description="Image for container instances")
    main_port: int = Field(default=5432, description="Port of the primary instance")
    config_files: List[str] = Field(
        default_factory=list,
        description="postgresql.conf / pg_hba.conf / pg_ident.conf applied to branch instances",
    )

    # Branch instances
    branch_port_start: int = Field(default=6001)
    branch_port_end: int = Field(default=6099)
    branch_access_host: str = Field(default="127.0.0.1")
    branch_default: str = Field(default="main", description="Default parent branch label")
    branch_naming_pattern: str = Field(default=DEFAULT_BRANCH_NAME_PATTERN)
    snapshot_source_policy: Literal["latest", "explicit"] = Field(
        default="latest",
        description="How to pick the source snapshot when none is given",
    )

    # Runtime
    runtime: Literal["process", "container"] = Field(default="process")
    container_runtime: str = Field(default="docker", description="docker or podman")
    readiness_attempts: int = Field(default=30, ge=1)
    readiness_interval: float = Field(default=1.0, ge=0)
    stop_timeout: int = Field(default=30, ge=0)
    instance_os_user: Optional[str] = Field(
        default=None, description="Run pg_ctl through sudo as this OS user"
    )

    # Tools
    zfs_bin: str = Field(default="zfs")
    zpool_bin: str = Field(default="zpool")

    log_level: str = Field(default="INFO")

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> str:
        level = str(v).upper()
        if level == "WARN":
            level = "WARNING"
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return level

    @field_validator("branch_naming_pattern")
    @classmethod
    def validate_pattern(cls, v: str) -> str:
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"Invalid branch_naming_pattern: {e}")
        return v

    @model_validator(mode="after")
    def validate_port_range(self) -> "ZvpgConfig":
        for port in (self.branch_port_start, self.branch_port_end, self.main_port):
            if not 1 <= port <= 65535:
                raise ValueError(f"Port {port} is not a valid TCP port")
        if self.branch_port_start > self.branch_port_end:
            raise ValueError(
                f"branch_port_start ({self.branch_port_start}) must not exceed "
                f"branch_port_end ({self.branch_port_end})"
            )
        return self

    @property
    def data_dataset(self) -> str:
        """Full dataset path of the primary data directory."""
        return f"{self.zfs_pool}/{self.data_subdir}"

    @property
    def branches_dataset(self) -> str:
        """Full dataset path of the branches container."""
        return f"{self.zfs_pool}/{self.branches_subdir}"

    @property
    def socket_dir(self) -> Path:
        return Path(self.mount_dir) / self.socket_subdir


class Config:
    """Loads and saves the zvpg configuration file."""

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize config manager.

        Args:
            config_path: Path to the config file. If None, uses the ZVPG_CONFIG
                env var or ~/.zvpg/config.toml.
        """
        if config_path is None:
            env_path = os.environ.get("ZVPG_CONFIG")
            config_path = Path(env_path) if env_path else DEFAULT_CONFIG_PATH

        self.config_path = Path(config_path).expanduser()
        self._config: Optional[ZvpgConfig] = None

    @property
    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()

    def load(self) -> ZvpgConfig:
        """Load configuration from disk, with environment variable overrides.

        A missing file is not an error: the defaults are used instead.
        """
        data: Dict[str, Any] = {}
        if self.exists:
            with open(self.config_path, "r") as f:
                if self.config_path.suffix == ".json":
                    data = json.load(f)
                else:
                    data = toml.load(f)

        self._apply_env_overrides(data)

        self._config = ZvpgConfig(**data)
        return self._config

    def _apply_env_overrides(self, data: Dict[str, Any]) -> None:
        """Apply environment variable overrides to configuration data."""
        overrides = {
            "ZVPG_POOL": "zfs_pool",
            "ZVPG_MOUNT_DIR": "mount_dir",
            "ZVPG_LOG_LEVEL": "log_level",
            "ZVPG_RUNTIME": "runtime",
            "ZVPG_POSTGRES_PASSWORD": "postgres_password",
        }
        for env_name, key in overrides.items():
            if value := os.environ.get(env_name):
                data.pop(to_camel(key), None)
                data[key] = value

    def save(self, config: Optional[ZvpgConfig] = None) -> None:
        """Save configuration to disk.

        Args:
            config: Configuration to save. If None, saves current config.
        """
        if config:
            self._config = config

        if not self._config:
            raise ValueError("No configuration to save")

        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        config_dict = self._config.model_dump()
        with open(self.config_path, "w") as f:
            if self.config_path.suffix == ".json":
                json.dump(config_dict, f, indent=2)
            else:
                toml.dump(config_dict, f)

    def init(self, force: bool = False, **overrides: Any) -> ZvpgConfig:
        """Write a default configuration file.

        Raises:
            FileExistsError: If the file exists and ``force`` is not set
        """
        if self.exists and not force:
            raise FileExistsError(f"Config file already exists at {self.config_path}")

        config = ZvpgConfig(**overrides)
        self.save(config)
        return config
