"""
Configuration Management for SchoolStore

🔧 Unified Configuration System:
Dataclass-based configuration with loaders for environments, dictionaries,
JSON/YAML files and environment variables, plus logging setup.

    config = ApplicationConfig.from_environment()
    set_config(config)
    configure_logging(config)
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union
from logging.handlers import RotatingFileHandler
import json
import logging
import os

import yaml


class Environment(Enum):
    """Application environments"""
    DEVELOPMENT = "development"
    TESTING = "testing"
    PRODUCTION = "production"


@dataclass
class PersistenceConfig:
    """Persistence layer configuration"""
    default_backend: str = "memory"
    identity_seed: int = 1
    # Include entity field values in log output
    sensitive_data_logging: bool = False


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file_path: Optional[str] = None
    max_file_size: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5


@dataclass
class ApplicationConfig:
    """Complete application configuration"""
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = False

    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def for_environment(cls, environment: Environment) -> 'ApplicationConfig':
        """Create configuration for specific environment"""
        config = cls(environment=environment)

        if environment == Environment.DEVELOPMENT:
            config.debug = True
            config.logging.level = "DEBUG"

        elif environment == Environment.TESTING:
            config.persistence.sensitive_data_logging = True
            config.logging.level = "WARNING"

        elif environment == Environment.PRODUCTION:
            config.debug = False
            config.logging.level = "INFO"

        return config

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'ApplicationConfig':
        """Create configuration from dictionary"""
        if "environment" in config_dict:
            config = cls.for_environment(Environment(config_dict["environment"]))
        else:
            config = cls()

        if "debug" in config_dict:
            config.debug = bool(config_dict["debug"])

        for section in ("persistence", "logging"):
            target = getattr(config, section)
            for key, value in (config_dict.get(section) or {}).items():
                if not hasattr(target, key):
                    raise ValueError(f"Unknown {section} setting: {key}")
                setattr(target, key, value)

        return config

    @classmethod
    def from_file(cls, config_path: Union[str, Path]) -> 'ApplicationConfig':
        """Load configuration from a JSON or YAML file"""
        config_path = Path(config_path)

        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        if config_path.suffix == '.json':
            with open(config_path) as f:
                config_dict = json.load(f)
        elif config_path.suffix in ('.yml', '.yaml'):
            with open(config_path) as f:
                config_dict = yaml.safe_load(f) or {}
        else:
            raise ValueError(f"Unsupported configuration file format: {config_path.suffix}")

        return cls.from_dict(config_dict)

    @classmethod
    def from_environment(cls) -> 'ApplicationConfig':
        """Create configuration from environment variables"""
        env_name = os.getenv('SCHOOLSTORE_ENV', 'development')
        config = cls.for_environment(Environment(env_name))

        if os.getenv('SCHOOLSTORE_DEBUG'):
            config.debug = os.getenv('SCHOOLSTORE_DEBUG').lower() == 'true'

        if os.getenv('SCHOOLSTORE_BACKEND'):
            config.persistence.default_backend = os.getenv('SCHOOLSTORE_BACKEND')

        if os.getenv('SCHOOLSTORE_SENSITIVE_LOGGING'):
            config.persistence.sensitive_data_logging = (
                os.getenv('SCHOOLSTORE_SENSITIVE_LOGGING').lower() == 'true'
            )

        if os.getenv('SCHOOLSTORE_LOG_LEVEL'):
            config.logging.level = os.getenv('SCHOOLSTORE_LOG_LEVEL').upper()

        return config

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary"""
        return {
            "environment": self.environment.value,
            "debug": self.debug,
            "persistence": {
                "default_backend": self.persistence.default_backend,
                "identity_seed": self.persistence.identity_seed,
                "sensitive_data_logging": self.persistence.sensitive_data_logging
            },
            "logging": {
                "level": self.logging.level,
                "format": self.logging.format,
                "file_path": self.logging.file_path,
                "max_file_size": self.logging.max_file_size,
                "backup_count": self.logging.backup_count
            }
        }


# Global configuration management
_current_config: Optional[ApplicationConfig] = None


def set_config(config: ApplicationConfig):
    """Set the global configuration"""
    global _current_config
    _current_config = config


def get_config() -> ApplicationConfig:
    """Get the current global configuration"""
    global _current_config
    if _current_config is None:
        _current_config = ApplicationConfig.from_environment()
    return _current_config


def reset_config():
    """Drop the global configuration so the next get_config reloads it"""
    global _current_config
    _current_config = None


def configure_logging(config: Optional[ApplicationConfig] = None) -> logging.Logger:
    """Attach handlers to the package logger according to the config"""
    config = config or get_config()
    package_logger = logging.getLogger("schoolstore")
    package_logger.setLevel(config.logging.level)

    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(config.logging.format)
    if config.logging.file_path:
        handler = RotatingFileHandler(
            config.logging.file_path,
            maxBytes=config.logging.max_file_size,
            backupCount=config.logging.backup_count
        )
    else:
        handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    package_logger.addHandler(handler)

    return package_logger


__all__ = [
    "Environment", "PersistenceConfig", "LoggingConfig", "ApplicationConfig",
    "set_config", "get_config", "reset_config", "configure_logging"
]
