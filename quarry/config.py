"""
Config system - layered configuration for the database layer.

Sources, later overriding earlier:
1. Config files (``quarry.yaml`` / ``quarry.yml`` / ``quarry.json`` auto-detected)
2. A ``.env`` file
3. Environment variables (``QUARRY_`` prefix, ``__`` nests keys)
4. Manual overrides

    loader = ConfigLoader.load(env_file=".env")
    loader.get("database.url")
    db = configure_from(loader)
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from glob import glob
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import dotenv_values

from .faults.domains import ConfigFault

logger = logging.getLogger("quarry.config")

__all__ = ["ConfigLoader", "DatabaseConfig", "configure_from", "DEFAULT_CONFIG_FILES"]

DEFAULT_CONFIG_FILES = ("quarry.yaml", "quarry.yml", "quarry.json")


@dataclass
class DatabaseConfig:
    """Database settings, read from the ``database`` section."""

    url: str = "sqlite:///db.sqlite3"
    migrations_path: Optional[str] = "database/migrations"
    migrations_table: str = "migrations"
    connect_retries: int = 3
    connect_retry_delay: float = 0.5

    def engine_options(self) -> Dict[str, Any]:
        return {
            "connect_retries": self.connect_retries,
            "connect_retry_delay": self.connect_retry_delay,
        }


class ConfigLoader:
    """
    Loads and merges configuration from multiple sources with precedence:
    overrides > environment variables > .env file > config files
    """

    def __init__(self, env_prefix: str = "QUARRY_"):
        self.env_prefix = env_prefix
        self.config_data: Dict[str, Any] = {}

    @classmethod
    def load(
        cls,
        paths: Optional[List[str]] = None,
        env_prefix: str = "QUARRY_",
        env_file: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> "ConfigLoader":
        """
        Load configuration from every source and merge it.

        Args:
            paths: Config file paths (glob patterns supported). When omitted,
                the first existing default file in the working directory is used.
            env_prefix: Prefix for environment variables
            env_file: Path to a .env file
            overrides: Manual overrides (highest precedence)

        Returns:
            Configured ConfigLoader instance
        """
        loader = cls(env_prefix=env_prefix)

        if not paths:
            paths = [name for name in DEFAULT_CONFIG_FILES if Path(name).exists()][:1]

        for pattern in paths:
            loader._load_from_files(pattern)

        if env_file:
            loader._load_env_file(env_file)

        loader._load_from_env()

        if overrides:
            loader._merge_dict(loader.config_data, overrides)

        return loader

    def _load_from_files(self, pattern: str):
        """Load config from JSON or YAML files."""
        matches = sorted(glob(pattern))
        if not matches and not any(ch in pattern for ch in "*?["):
            raise ConfigFault(pattern, "config file not found")

        for path_str in matches:
            path = Path(path_str)
            if path.suffix == ".json":
                self._load_json_file(path)
            elif path.suffix in (".yaml", ".yml"):
                self._load_yaml_file(path)
            else:
                raise ConfigFault(path_str, f"unsupported config file type {path.suffix!r}")

    def _load_json_file(self, path: Path):
        """Load config from JSON file."""
        with open(path) as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as exc:
                raise ConfigFault(str(path), f"invalid JSON: {exc}") from exc
        self._merge_mapping(path, data)

    def _load_yaml_file(self, path: Path):
        """Load config from YAML file."""
        with open(path) as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as exc:
                raise ConfigFault(str(path), f"invalid YAML: {exc}") from exc
        self._merge_mapping(path, data)

    def _merge_mapping(self, path: Path, data: Any):
        if data is None:
            return
        if not isinstance(data, dict):
            raise ConfigFault(str(path), "top level must be a mapping")
        self._merge_dict(self.config_data, data)
        logger.debug(f"Loaded config from {path}")

    def _load_env_file(self, path: str):
        """Load prefixed keys from a .env file."""
        env_path = Path(path)
        if not env_path.exists():
            logger.debug(f"No .env file at {env_path}")
            return

        for key, value in dotenv_values(env_path).items():
            if key.startswith(self.env_prefix) and value is not None:
                self._set_nested(key, value)

    def _load_from_env(self):
        """Load config from environment variables."""
        for key, value in os.environ.items():
            if key.startswith(self.env_prefix):
                self._set_nested(key, value)

    def _set_nested(self, key: str, value: str):
        """Convert QUARRY_DATABASE__URL to {"database": {"url": ...}}."""
        key = key[len(self.env_prefix):]
        parts = key.lower().split("__")

        current = self.config_data
        for part in parts[:-1]:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]

        current[parts[-1]] = self._parse_value(value)

    def _parse_value(self, value: str) -> Any:
        """Parse string value to appropriate type."""
        lowered = value.lower()
        if lowered in ("true", "yes"):
            return True
        if lowered in ("false", "no"):
            return False

        try:
            if "." in value:
                return float(value)
            return int(value)
        except ValueError:
            pass

        if value.startswith(("{", "[")):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                pass

        return value

    def _merge_dict(self, target: dict, source: dict):
        """Deep merge source into target."""
        for key, value in source.items():
            if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                self._merge_dict(target[key], value)
            else:
                target[key] = value

    def get(self, path: str, default: Any = None) -> Any:
        """Get config value by dot-separated path."""
        current: Any = self.config_data
        for part in path.split("."):
            if isinstance(current, dict) and part in current:
                current = current[part]
            else:
                return default
        return current

    def database_config(self) -> DatabaseConfig:
        """The ``database`` section as a validated ``DatabaseConfig``."""
        section = self.get("database", {})
        if not isinstance(section, dict):
            raise ConfigFault("database", "must be a mapping")

        defaults = DatabaseConfig()
        url = section.get("url", defaults.url)
        if not isinstance(url, str) or "://" not in url:
            raise ConfigFault("database.url", f"expected a database URL, got {url!r}")

        try:
            retries = int(section.get("connect_retries", defaults.connect_retries))
            delay = float(section.get("connect_retry_delay", defaults.connect_retry_delay))
        except (TypeError, ValueError) as exc:
            raise ConfigFault("database.connect_retries", str(exc)) from exc
        if retries < 1:
            raise ConfigFault("database.connect_retries", "must be at least 1")
        if delay < 0:
            raise ConfigFault("database.connect_retry_delay", "must not be negative")

        migrations = section.get("migrations", {}) or {}
        if not isinstance(migrations, dict):
            raise ConfigFault("database.migrations", "must be a mapping")

        return DatabaseConfig(
            url=url,
            migrations_path=migrations.get("path", defaults.migrations_path),
            migrations_table=str(migrations.get("table", defaults.migrations_table)),
            connect_retries=retries,
            connect_retry_delay=delay,
        )

    def to_dict(self) -> dict:
        """Export merged configuration."""
        return self.config_data.copy()


def configure_from(loader: ConfigLoader):
    """Build, connect and install the process-wide ``Database`` from ``loader``."""
    from .db.engine import configure_database

    config = loader.database_config()
    return configure_database(config.url, **config.engine_options())
