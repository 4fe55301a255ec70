"""
Configuration loader for the checkpoint engine.

This module provides configuration management with:
- Multiple configuration sources (JSON, YAML, TOML, .env files, dicts)
- Environment variable overrides (CHECKPOINT_CMS_<SECTION>__<FIELD>)
- Schema validation with pydantic
- Configuration merging by priority
"""

import os
import json
import yaml
from pathlib import Path
from typing import Optional, Dict, Any, List, Union
import toml
from pydantic import BaseModel, Field, field_validator, ValidationError, ConfigDict
import asyncio

from .logging import get_logger
from .errors import ConfigurationError


logger = get_logger("checkpoint-cms.config")

ENV_PREFIX = "CHECKPOINT_CMS_"
ENV_NESTING = "__"

DEFAULT_FIELD_LIMITS: Dict[str, Dict[str, int]] = {
    "text": {"value": 10000},
    "team_member": {
        "name": 500,
        "position": 500,
        "image_filename": 500,
        "bio": 10000,
        "bio_paragraph_2": 10000,
        "linkedin_url": 2000,
        "email": 2000,
        "page_name": 200,
    },
    "listing": {
        "title": 500,
        "address": 500,
        "description": 10000,
    },
    "media": {
        "file_name": 500,
        "file_url": 2000,
        "alt_text": 1000,
    },
}


class ConfigSource(BaseModel):
    """Configuration source definition."""
    path: Optional[Path] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    priority: int = 0
    source_type: str = "dict"

    model_config = ConfigDict(arbitrary_types_allowed=True)


class DatabaseConfig(BaseModel):
    """Database configuration."""
    path: Path = Field(default_factory=lambda: Path.home() / ".checkpoint-cms" / "content.db")
    timeout: float = 30.0
    journal_mode: str = "WAL"
    synchronous: str = "NORMAL"

    @field_validator('path')
    @classmethod
    def validate_path(cls, v):
        """Ensure path is absolute."""
        return Path(v).expanduser().absolute()

    @field_validator('journal_mode')
    @classmethod
    def validate_journal_mode(cls, v):
        valid = ["DELETE", "TRUNCATE", "PERSIST", "MEMORY", "WAL", "OFF"]
        if v.upper() not in valid:
            raise ValueError(f"Invalid journal mode: {v}")
        return v.upper()


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    format: str = "json"
    directory: Path = Field(default_factory=lambda: Path.home() / ".checkpoint-cms" / "logs")
    max_size: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 10
    enable_console: bool = True
    enable_metrics: bool = True
    enable_sentry: bool = False
    sentry_dsn: Optional[str] = None

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()

    @field_validator('format')
    @classmethod
    def validate_format(cls, v):
        if v not in ("json", "console"):
            raise ValueError(f"Invalid log format: {v}")
        return v


class VersioningConfig(BaseModel):
    """Version retention and naming."""
    max_versions: int = Field(default=20, ge=1)
    protect_baseline: bool = False
    baseline_description: str = "Initial State"
    auto_description_template: str = "Auto-save: {count} changes - {timestamp}"


class CacheConfig(BaseModel):
    """Snapshot cache configuration."""
    enabled: bool = True
    max_entries: int = Field(default=64, ge=1)
    max_size_mb: int = Field(default=64, ge=1)


class CaptureConfig(BaseModel):
    """Retry policy for capture reads."""
    read_retries: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=0.1, ge=0)
    retry_max_delay: float = Field(default=2.0, ge=0)


class ValidationConfig(BaseModel):
    """Field-length limits applied before edits are tracked."""
    field_limits: Dict[str, Dict[str, int]] = Field(
        default_factory=lambda: {k: dict(v) for k, v in DEFAULT_FIELD_LIMITS.items()}
    )
    default_limit: int = Field(default=1000, ge=1)


class CheckpointCMSConfig(BaseModel):
    """Main configuration."""
    app_name: str = "checkpoint-cms"
    debug: bool = False

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    versioning: VersioningConfig = Field(default_factory=VersioningConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    capture: CaptureConfig = Field(default_factory=CaptureConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)

    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        validate_assignment=True
    )


class ConfigLoader:
    """Configuration loader with multiple source support."""

    def __init__(self, env_prefix: str = ENV_PREFIX):
        self._sources: List[ConfigSource] = []
        self._config: Optional[CheckpointCMSConfig] = None
        self._env_prefix = env_prefix
        self._lock = asyncio.Lock()

    def add_source(
        self,
        source: Union[str, Path, Dict[str, Any]],
        priority: int = 0,
        source_type: Optional[str] = None
    ) -> None:
        """
        Add configuration source.

        Args:
            source: Configuration source (file path or dict)
            priority: Source priority (higher wins)
            source_type: Source type (auto-detected if None)
        """
        if isinstance(source, (str, Path)):
            path = Path(source)
            if not source_type:
                source_type = self._detect_source_type(path)

            self._sources.append(ConfigSource(
                path=path,
                priority=priority,
                source_type=source_type
            ))
        else:
            self._sources.append(ConfigSource(
                data=source,
                priority=priority,
                source_type="dict"
            ))

        # Merged lowest first so higher priorities override
        self._sources.sort(key=lambda s: s.priority)

    def _detect_source_type(self, path: Path) -> str:
        """Detect configuration file type."""
        suffix = path.suffix.lower()
        if suffix == ".json":
            return "json"
        elif suffix in (".yaml", ".yml"):
            return "yaml"
        elif suffix == ".toml":
            return "toml"
        elif suffix == ".env" or path.name == ".env":
            return "env"
        else:
            raise ConfigurationError(f"Unknown config file type: {suffix}")

    async def load(self) -> CheckpointCMSConfig:
        """
        Load configuration from all sources.

        Environment variables are applied last and override every file.

        Returns:
            Merged configuration
        """
        async with self._lock:
            merged_data: Dict[str, Any] = {}

            for source in self._sources:
                try:
                    data = self._load_source(source)
                except (OSError, ValueError, yaml.YAMLError) as e:
                    raise ConfigurationError(
                        f"Failed to load config source {source.path or 'dict'}: {e}",
                        cause=e
                    ) from e
                merged_data = self._deep_merge(merged_data, data)

            env_data = self._load_env_vars()
            merged_data = self._deep_merge(merged_data, env_data)

            try:
                self._config = CheckpointCMSConfig(**merged_data)
            except ValidationError as e:
                errors = []
                for error in e.errors():
                    field = ".".join(str(x) for x in error["loc"])
                    msg = error["msg"]
                    errors.append(f"{field}: {msg}")

                raise ConfigurationError(
                    f"Configuration validation failed: {'; '.join(errors)}"
                ) from e

            logger.info("configuration_loaded", sources=len(self._sources))
            return self._config

    def _load_source(self, source: ConfigSource) -> Dict[str, Any]:
        """Load data from a configuration source."""
        if source.path is None:
            return source.data

        if not source.path.exists():
            logger.warning("config_file_not_found", path=str(source.path))
            return {}

        content = source.path.read_text()

        if source.source_type == "json":
            return json.loads(content)
        elif source.source_type == "yaml":
            return yaml.safe_load(content) or {}
        elif source.source_type == "toml":
            return toml.loads(content)
        elif source.source_type == "env":
            return self._parse_env_file(content)
        else:
            raise ConfigurationError(f"Unknown source type: {source.source_type}")

    def _parse_env_file(self, content: str) -> Dict[str, Any]:
        """Parse .env file format using the same key scheme as the environment."""
        result: Dict[str, Any] = {}

        for line in content.splitlines():
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue

            key, value = line.split("=", 1)
            key = key.strip()
            if key.startswith(self._env_prefix):
                key = key[len(self._env_prefix):]
            value = value.strip().strip('"').strip("'")
            self._assign_nested(result, key, self._convert_value(value))

        return result

    def _load_env_vars(self) -> Dict[str, Any]:
        """Load configuration from environment variables."""
        result: Dict[str, Any] = {}

        for key, value in os.environ.items():
            if key.startswith(self._env_prefix):
                self._assign_nested(
                    result, key[len(self._env_prefix):], self._convert_value(value)
                )

        return result

    @staticmethod
    def _assign_nested(target: Dict[str, Any], key: str, value: Any) -> None:
        parts = [p for p in key.lower().split(ENV_NESTING) if p]
        if not parts:
            return
        current = target
        for part in parts[:-1]:
            current = current.setdefault(part, {})
        current[parts[-1]] = value

    def _convert_value(self, value: str) -> Any:
        """Convert string value to appropriate type."""
        if value.lower() in ("true", "yes", "on"):
            return True
        elif value.lower() in ("false", "no", "off"):
            return False

        try:
            if "." in value:
                return float(value)
            else:
                return int(value)
        except ValueError:
            pass

        if value.startswith("/") or value.startswith("~"):
            return Path(value).expanduser()

        return value

    def _deep_merge(self, base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()

        for key, value in update.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def get_config(self) -> CheckpointCMSConfig:
        """Get current configuration."""
        if self._config is None:
            raise ConfigurationError("Configuration not loaded")
        return self._config


# Global configuration instance
_config_loader: Optional[ConfigLoader] = None


def get_config_loader() -> ConfigLoader:
    """Get global configuration loader."""
    global _config_loader
    if _config_loader is None:
        _config_loader = ConfigLoader()
    return _config_loader


def reset_config_loader() -> None:
    """Drop the global loader so the next load starts clean."""
    global _config_loader
    _config_loader = None


async def load_config(
    config_paths: Optional[List[Union[str, Path]]] = None,
    extra_config: Optional[Dict[str, Any]] = None,
    search_defaults: bool = True
) -> CheckpointCMSConfig:
    """
    Load configuration from standard locations.

    Args:
        config_paths: Additional configuration paths
        extra_config: Extra configuration to merge
        search_defaults: Also look in the default locations

    Returns:
        Loaded configuration
    """
    loader = get_config_loader()

    if search_defaults:
        default_paths = [
            Path.home() / ".checkpoint-cms" / "config.yaml",
            Path.home() / ".checkpoint-cms" / "config.json",
            Path("./checkpoint-cms.yaml"),
            Path("./checkpoint-cms.toml"),
        ]
        for path in default_paths:
            if path.exists():
                loader.add_source(path, priority=10)

    if config_paths:
        for i, path in enumerate(config_paths):
            loader.add_source(path, priority=20 + i)

    if extra_config:
        loader.add_source(extra_config, priority=100)

    return await loader.load()


def get_config() -> CheckpointCMSConfig:
    """Get current configuration."""
    return get_config_loader().get_config()


__all__ = [
    'CheckpointCMSConfig',
    'DatabaseConfig',
    'LoggingConfig',
    'VersioningConfig',
    'CacheConfig',
    'CaptureConfig',
    'ValidationConfig',
    'ConfigLoader',
    'DEFAULT_FIELD_LIMITS',
    'get_config_loader',
    'reset_config_loader',
    'load_config',
    'get_config',
]
