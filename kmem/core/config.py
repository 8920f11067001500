"""
Configuration system for kmem.

Loads YAML configuration files and provides typed access to settings.
Uses Pydantic v2 for validation and immutable config objects.

Configuration Hierarchy (highest priority first):
1. CLI arguments (passed to load_config)
2. Environment variables (KMEM_*)
3. YAML configuration file
4. Pydantic field defaults
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator


DEFAULT_STORAGE_PATH = Path("~/.kmem")


class StorageConfig(BaseModel):
    """Where graphs are persisted."""

    model_config = ConfigDict(frozen=True)

    backend: Literal["file", "sqlite", "memory"] = Field(default="file", description="Storage backend")
    path: Path = Field(default=DEFAULT_STORAGE_PATH, description="Root directory for stored graphs")

    @field_validator("path")
    @classmethod
    def expand_path(cls, v: Path) -> Path:
        return Path(v).expanduser()


class DefaultsConfig(BaseModel):
    """Values used when a call leaves them out."""

    model_config = ConfigDict(frozen=True)

    workspace_id: str = Field(default="default", pattern=r"^[A-Za-z0-9_.-]{1,64}$")
    user_id: Optional[str] = Field(default=None, description="Acting user when none is given")
    relation_strength: float = Field(default=0.8, ge=0.0, le=1.0)
    duplicate_threshold: float = Field(default=0.8, ge=0.0, le=1.0)

    @field_validator("workspace_id", "user_id", mode="before")
    @classmethod
    def coerce_str(cls, v: Any) -> Any:
        # YAML values like `user_id: 42` arrive as ints
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v


class MatchingConfig(BaseModel):
    """Configuration for duplicate detection."""

    model_config = ConfigDict(frozen=True)

    strategy: str = Field(default="weighted", description="Similarity strategy name")

    @field_validator("strategy")
    @classmethod
    def validate_strategy(cls, v: str) -> str:
        valid = {"weighted", "sequence"}
        if v not in valid:
            raise ValueError(f"Invalid strategy: {v}. Valid: {sorted(valid)}")
        return v


class LoggingConfig(BaseModel):
    """Configuration for the SQLite operation log."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(default=True)
    db_path: Optional[Path] = Field(default=None, description="Defaults to <storage.path>/logs.db")


class KmemConfig(BaseModel):
    """Central configuration object for kmem."""

    model_config = ConfigDict(frozen=True)

    storage: StorageConfig = Field(default_factory=StorageConfig)
    defaults: DefaultsConfig = Field(default_factory=DefaultsConfig)
    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, path: Path) -> "KmemConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data, base_path=path.parent)

    @classmethod
    def from_dict(cls, data: dict, base_path: Optional[Path] = None) -> "KmemConfig":
        """Create from dictionary, resolving relative paths against base_path."""
        base_path = base_path or Path(".")
        storage = dict(data.get("storage") or {})
        logging_data = dict(data.get("logging") or {})

        if storage.get("path"):
            storage["path"] = _resolve(base_path, storage["path"])
        if logging_data.get("db_path"):
            logging_data["db_path"] = _resolve(base_path, logging_data["db_path"])

        return cls.model_validate({
            "storage": storage,
            "defaults": data.get("defaults") or {},
            "matching": data.get("matching") or {},
            "logging": logging_data,
        })

    @property
    def log_db_path(self) -> Path:
        return self.logging.db_path or self.storage.path / "logs.db"


def _resolve(base_path: Path, value: Any) -> Path:
    path = Path(str(value)).expanduser()
    return path if path.is_absolute() else base_path / path


def load_config(
    path: Optional[Path] = None,
    env_prefix: str = "KMEM_",
    cli_overrides: Optional[Dict[str, Any]] = None,
    use_env: bool = True,
) -> KmemConfig:
    """Load configuration with hierarchy: defaults → YAML → env vars → CLI args.

    Args:
        path: Optional explicit path to YAML config file
        env_prefix: Prefix for environment variables (default: "KMEM_")
        cli_overrides: Optional dictionary of CLI argument overrides
        use_env: Whether to load environment variables (default: True)

    Returns:
        Merged KmemConfig

    Examples:
        # Environment variable: KMEM_STORAGE_BACKEND=sqlite
        config = load_config()  # config.storage.backend == "sqlite"

        config = load_config(cli_overrides={"defaults": {"workspace_id": "team"}})
    """
    yaml_path = _find_config_file(path)
    base_path = yaml_path.parent if yaml_path else Path(".")

    if yaml_path:
        with open(yaml_path) as f:
            config_dict = yaml.safe_load(f) or {}
    else:
        config_dict = {}

    if use_env:
        _deep_merge(config_dict, _extract_env_config(env_prefix))

    if cli_overrides:
        _deep_merge(config_dict, cli_overrides)

    return KmemConfig.from_dict(config_dict, base_path=base_path)


def _find_config_file(path: Optional[Path] = None) -> Optional[Path]:
    """Find configuration file.

    Searches in this order:
    1. Provided path
    2. ./kmem.yaml
    3. ./.kmem.yaml

    Returns:
        Path to config file or None if not found
    """
    if path and path.exists():
        return path

    for filename in ["kmem.yaml", ".kmem.yaml"]:
        config_path = Path(filename)
        if config_path.exists():
            return config_path

    return None


SECTIONS = {"storage", "defaults", "matching", "logging"}

# Passed through as raw strings, never converted
STRING_ENV_FIELDS = {
    ("storage", "path"),
    ("defaults", "workspace_id"),
    ("defaults", "user_id"),
    ("matching", "strategy"),
    ("logging", "db_path"),
}


def _extract_env_config(prefix: str = "KMEM_") -> Dict[str, Any]:
    """Extract configuration from environment variables.

    - KMEM_STORAGE_BACKEND=sqlite → {"storage": {"backend": "sqlite"}}
    - KMEM_DEFAULTS_DUPLICATE_THRESHOLD=0.9 → {"defaults": {"duplicate_threshold": 0.9}}
    - KMEM_LOGGING_ENABLED=false → {"logging": {"enabled": False}}

    Variables whose first segment is not a known section are ignored. Fields
    in STRING_ENV_FIELDS skip type conversion.
    """
    config: Dict[str, Any] = {}

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        parts = key[len(prefix):].lower().split("_")
        if len(parts) < 2 or parts[0] not in SECTIONS:
            continue

        section = parts[0]
        field = "_".join(parts[1:])
        if (section, field) in STRING_ENV_FIELDS:
            config.setdefault(section, {})[field] = value
        else:
            config.setdefault(section, {})[field] = _convert_env_value(value)

    return config


def _convert_env_value(value: str) -> Union[str, int, float, bool, List[str]]:
    """Convert environment variable string to appropriate type."""
    if not value:
        return value

    if value.lower() in ("true", "yes", "on"):
        return True
    if value.lower() in ("false", "no", "off"):
        return False

    if "," in value:
        return [v.strip() for v in value.split(",") if v.strip()]

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    return value


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> None:
    """Deep merge override into base dictionary (mutates base).

    Examples:
        >>> base = {"a": {"b": 1, "c": 2}, "d": 3}
        >>> _deep_merge(base, {"a": {"b": 10}, "e": 5})
        >>> base
        {"a": {"b": 10, "c": 2}, "d": 3, "e": 5}
    """
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
