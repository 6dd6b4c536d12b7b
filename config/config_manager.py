"""Configuration manager for the forum core.

This module handles loading, validating, and persisting application configuration.
"""

import os
import yaml
from pathlib import Path
from typing import Any, Dict, Optional
from dataclasses import dataclass


@dataclass
class ForumConfig:
    """Forum behaviour settings."""
    posts_per_page: int = 8
    content_parser: str = "bbcode"
    notify_moderators: bool = False
    popular_threads_limit: int = 20
    recent_posts_limit: int = 50
    admin_email: str = ""


@dataclass
class StorageConfig:
    """Storage configuration settings."""
    db_path: str = "~/.forum_core/data/forum.db"
    attachments_folder: str = "~/.forum_core/attachments"
    max_attachment_size: int = 10485760  # 10 MB


@dataclass
class NotificationConfig:
    """Notification delivery settings."""
    transport: str = "log"
    from_address: str = "forum@example.com"
    base_url: str = "http://localhost"
    sendgrid_api_key: str = ""
    delivery_workers: int = 1


PLACEHOLDER_SECRET_KEY = "change-me"


@dataclass
class SecurityConfig:
    """Security configuration settings."""
    secret_key: str = PLACEHOLDER_SECRET_KEY

    def uses_placeholder(self) -> bool:
        """True while the secret is empty or still the shipped placeholder."""
        return not self.secret_key.strip() or self.secret_key == PLACEHOLDER_SECRET_KEY


@dataclass
class LoggingConfig:
    """Logging configuration settings."""
    level: str = "INFO"
    log_path: str = "~/.forum_core/logs/forum.log"
    max_log_size: int = 10485760  # 10 MB
    backup_count: int = 5


VALID_PARSERS = ("bbcode", "markdown")
VALID_TRANSPORTS = ("log", "sendgrid")


class ConfigManager:
    """Manages application configuration with validation and persistence."""

    DEFAULT_CONFIG_PATH = Path.home() / ".forum_core" / "config" / "settings.yaml"
    BUNDLED_CONFIG_PATH = Path(__file__).parent / "settings.yaml"
    ENV_PREFIX = "FORUM_"

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize configuration manager.

        Args:
            config_path: Optional custom path to configuration file.
                        If None, uses default user config path.
        """
        self.config_path = Path(config_path) if config_path else self.DEFAULT_CONFIG_PATH
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from file with fallback to defaults."""
        # First, load bundled default config
        default_config = self._load_yaml(self.BUNDLED_CONFIG_PATH)

        # Then try to load user config
        if self.config_path.exists():
            user_config = self._load_yaml(self.config_path)
            self._config = self._merge_configs(default_config, user_config)
        else:
            # Use defaults and save to user config location
            self._config = default_config
            self.save_config()

        self._apply_env_overrides()
        self._validate_config()

    def _load_yaml(self, path: Path) -> Dict[str, Any]:
        """Load YAML configuration file.

        Args:
            path: Path to YAML file

        Returns:
            Dictionary containing configuration
        """
        try:
            with open(path, 'r', encoding='utf-8') as f:
                config = yaml.safe_load(f)
                return config if config else {}
        except FileNotFoundError:
            return {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in config file {path}: {e}")

    def _merge_configs(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge two configuration dictionaries.

        Args:
            base: Base configuration dictionary
            override: Override configuration dictionary

        Returns:
            Merged configuration dictionary
        """
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides to configuration.

        Environment variables should be prefixed with FORUM_ and use
        double underscores for nested keys. For example:
        FORUM_FORUM__POSTS_PER_PAGE=10
        """
        for env_key, env_value in os.environ.items():
            if not env_key.startswith(self.ENV_PREFIX):
                continue

            config_key = env_key[len(self.ENV_PREFIX):].lower()
            parts = config_key.split("__")

            if len(parts) != 2:
                continue

            section, key = parts

            if section not in self._config:
                continue

            self._config[section][key] = self._convert_env_value(env_value)

    def _convert_env_value(self, value: str) -> Any:
        """Convert environment variable string to appropriate type.

        Args:
            value: String value from environment variable

        Returns:
            Converted value (int, bool, or str)
        """
        if value.lower() in ('true', 'yes'):
            return True
        if value.lower() in ('false', 'no'):
            return False

        try:
            return int(value)
        except ValueError:
            pass

        return value

    def _validate_config(self) -> None:
        """Validate configuration has all required fields and correct types."""
        required_sections = ['forum', 'storage', 'notification', 'security', 'logging']

        for section in required_sections:
            if section not in self._config:
                raise ValueError(f"Missing required configuration section: {section}")

        forum = self._config['forum']
        self._validate_field(forum, 'posts_per_page', int, 1, 500)
        self._validate_field(forum, 'content_parser', str)
        self._validate_field(forum, 'notify_moderators', bool)
        self._validate_field(forum, 'popular_threads_limit', int, 1, 1000)
        self._validate_field(forum, 'recent_posts_limit', int, 1, 1000)
        self._validate_field(forum, 'admin_email', str)
        if forum['content_parser'] not in VALID_PARSERS:
            raise ValueError(
                f"Field content_parser must be one of {', '.join(VALID_PARSERS)}, "
                f"got {forum['content_parser']}"
            )

        storage = self._config['storage']
        self._validate_field(storage, 'db_path', str)
        self._validate_field(storage, 'attachments_folder', str)
        self._validate_field(storage, 'max_attachment_size', int, 1, 1073741824)

        notification = self._config['notification']
        self._validate_field(notification, 'transport', str)
        self._validate_field(notification, 'from_address', str)
        self._validate_field(notification, 'base_url', str)
        self._validate_field(notification, 'sendgrid_api_key', str)
        self._validate_field(notification, 'delivery_workers', int, 1, 64)
        if notification['transport'] not in VALID_TRANSPORTS:
            raise ValueError(
                f"Field transport must be one of {', '.join(VALID_TRANSPORTS)}, "
                f"got {notification['transport']}"
            )

        security = self._config['security']
        self._validate_field(security, 'secret_key', str)

        logging = self._config['logging']
        self._validate_field(logging, 'level', str)
        self._validate_field(logging, 'log_path', str)
        self._validate_field(logging, 'max_log_size', int, 1024, 104857600)
        self._validate_field(logging, 'backup_count', int, 0, 100)

    def _validate_field(self, section: Dict[str, Any], field: str,
                       expected_type: type, min_val: Optional[int] = None,
                       max_val: Optional[int] = None) -> None:
        """Validate a configuration field.

        Args:
            section: Configuration section dictionary
            field: Field name to validate
            expected_type: Expected type of the field
            min_val: Optional minimum value for numeric fields
            max_val: Optional maximum value for numeric fields

        Raises:
            ValueError: If validation fails
        """
        if field not in section:
            raise ValueError(f"Missing required field: {field}")

        value = section[field]

        # bool is a subclass of int
        if expected_type is int and isinstance(value, bool):
            raise ValueError(f"Field {field} must be of type int, got bool")

        if not isinstance(value, expected_type):
            raise ValueError(
                f"Field {field} must be of type {expected_type.__name__}, "
                f"got {type(value).__name__}"
            )

        if expected_type in (int, float) and min_val is not None and value < min_val:
            raise ValueError(f"Field {field} must be >= {min_val}, got {value}")

        if expected_type in (int, float) and max_val is not None and value > max_val:
            raise ValueError(f"Field {field} must be <= {max_val}, got {value}")

    def save_config(self) -> None:
        """Save current configuration to file."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(self.config_path, 'w', encoding='utf-8') as f:
            yaml.dump(self._config, f, default_flow_style=False, sort_keys=False)

    def get_config(self, section: str, key: Optional[str] = None) -> Any:
        """Get configuration value.

        Args:
            section: Configuration section name
            key: Optional key within section. If None, returns entire section.

        Returns:
            Configuration value

        Raises:
            KeyError: If section or key doesn't exist
        """
        if section not in self._config:
            raise KeyError(f"Configuration section not found: {section}")

        if key is None:
            return self._config[section]

        if key not in self._config[section]:
            raise KeyError(f"Configuration key not found: {section}.{key}")

        return self._config[section][key]

    def set_config(self, section: str, key: str, value: Any) -> None:
        """Set configuration value.

        Args:
            section: Configuration section name
            key: Key within section
            value: Value to set

        Raises:
            KeyError: If section doesn't exist
        """
        if section not in self._config:
            raise KeyError(f"Configuration section not found: {section}")

        self._config[section][key] = value

    def get_forum_config(self) -> ForumConfig:
        """Get forum configuration as dataclass."""
        return ForumConfig(**self._config['forum'])

    def get_storage_config(self) -> StorageConfig:
        """Get storage configuration as dataclass."""
        return StorageConfig(**self._config['storage'])

    def get_notification_config(self) -> NotificationConfig:
        """Get notification configuration as dataclass."""
        return NotificationConfig(**self._config['notification'])

    def get_security_config(self) -> SecurityConfig:
        """Get security configuration as dataclass."""
        return SecurityConfig(**self._config['security'])

    def get_logging_config(self) -> LoggingConfig:
        """Get logging configuration as dataclass."""
        return LoggingConfig(**self._config['logging'])

    def expand_path(self, path: str) -> Path:
        """Expand user home directory and environment variables in path.

        Args:
            path: Path string potentially containing ~ or environment variables

        Returns:
            Expanded Path object
        """
        return Path(os.path.expanduser(os.path.expandvars(path)))


# Global configuration manager instance
_config_manager: Optional[ConfigManager] = None


def get_config_manager(config_path: Optional[Path] = None) -> ConfigManager:
    """Get or create global configuration manager instance.

    Args:
        config_path: Optional custom path to configuration file

    Returns:
        ConfigManager instance
    """
    global _config_manager

    if _config_manager is None:
        _config_manager = ConfigManager(config_path)

    return _config_manager
