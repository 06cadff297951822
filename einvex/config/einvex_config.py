"""
EInvEx Configuration Management

This module provides configuration management for EInvEx.
"""

import os
import logging
from copy import deepcopy
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from einvex.exceptions import ConfigurationError

# Configure logging
logger = logging.getLogger(__name__)


class EinvexConfig:
    """
    Manages system-wide configuration for EInvEx

    This class follows the singleton pattern to ensure only one configuration instance exists.
    Defaults come from the packaged default_config.yaml and are overlaid with the user's
    configuration file (``$EINVEX_CONFIG`` or ``~/.einvex/config.yaml``) when present.
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if not hasattr(self, 'initialized'):
            # Load default configuration from file
            default_config_path = Path(__file__).parent / 'default_config.yaml'
            with open(default_config_path, 'r') as f:
                self.config: Dict[str, Any] = yaml.safe_load(f)

            # Load configuration from file if it exists
            env_path = os.environ.get('EINVEX_CONFIG')
            self.config_file = Path(env_path) if env_path else Path.home() / '.einvex' / 'config.yaml'
            if self.config_file.exists():
                self._load_config(self.config_file)

            self.initialized = True

    @classmethod
    def from_file(cls, config_path: str) -> 'EinvexConfig':
        """Load configuration from file

        Args:
            config_path: Path to a YAML configuration file

        Returns:
            EinvexConfig instance with the file merged over the defaults
        """
        instance = cls()
        instance._load_config(Path(config_path))
        return instance

    @classmethod
    def from_dict(cls, overrides: Dict[str, Any]) -> 'EinvexConfig':
        """Merge a configuration mapping over the current configuration

        Args:
            overrides: Nested configuration values

        Returns:
            EinvexConfig instance
        """
        instance = cls()
        instance._update_config_recursive(instance.config, deepcopy(overrides))
        return instance

    @classmethod
    def reset(cls) -> None:
        """Drop the singleton so the next instantiation reloads defaults."""
        cls._instance = None

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value

        Args:
            key: Configuration key (dot notation)
            default: Default value if key not found

        Returns:
            Configuration value
        """
        try:
            value = self.config
            for k in key.split('.'):
                value = value[k]
            return value
        except (KeyError, TypeError):
            return default

    def get_decimal(self, key: str, default: Any = 0) -> Decimal:
        """Get a numeric configuration value as a Decimal"""
        value = self.get(key, default)
        if value is None:
            value = default
        return Decimal(str(value))

    def set(self, key: str, value: Any) -> None:
        """Set configuration value

        Args:
            key: Configuration key (dot notation)
            value: Configuration value
        """
        keys = key.split('.')
        config = self.config
        for k in keys[:-1]:
            if k not in config or not isinstance(config[k], dict):
                config[k] = {}
            config = config[k]
        config[keys[-1]] = value

    def _load_config(self, path: Path) -> None:
        """Load configuration from file"""
        if not path.exists():
            raise ConfigurationError(f"Configuration file not found: {path}")

        try:
            with open(path, 'r') as f:
                file_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file: {path}", {'reason': str(e)})

        if file_config is None:
            raise ConfigurationError(f"Configuration file is empty: {path}")
        if not isinstance(file_config, dict):
            raise ConfigurationError(f"Configuration must be a mapping: {path}")

        self._update_config_recursive(self.config, file_config)
        self._validate_config()
        logger.info(f"Configuration loaded from {path}")

    def _validate_config(self) -> None:
        """Validate configuration structure and values"""
        db_config = self.config.get('database')
        if not isinstance(db_config, dict):
            raise ConfigurationError("Missing required configuration section: database")

        db_type = db_config.get('type')
        if db_type not in ['sqlite', 'postgresql', 'postgres']:
            raise ConfigurationError(f"Unsupported database type: {db_type}")

        if db_type == 'sqlite':
            if not db_config.get('path'):
                raise ConfigurationError("SQLite database path not specified")
        else:
            postgres_config = db_config.get('postgres', {}) or {}
            for field in ['host', 'port', 'database', 'user']:
                if not postgres_config.get(field):
                    raise ConfigurationError(f"PostgreSQL {field} not specified")

    def _update_config_recursive(self, base: Dict[str, Any], update: Dict[str, Any]) -> None:
        """Update configuration recursively"""
        for key, value in update.items():
            if isinstance(value, dict) and key in base and isinstance(base[key], dict):
                self._update_config_recursive(base[key], value)
            else:
                base[key] = value

    def get_database_config(self) -> Dict[str, Any]:
        """Get database configuration"""
        return self.config.get('database', {})

    def get_logging_config(self) -> Dict[str, Any]:
        """Get logging configuration"""
        return self.config.get('logging', {})

    def validate(self) -> bool:
        """Validate configuration"""
        try:
            self._validate_config()
            return True
        except ConfigurationError as e:
            logger.error(f"Configuration validation failed: {e}")
            return False

    def get_all(self) -> Dict[str, Any]:
        """Get all configuration"""
        return deepcopy(self.config)
