"""
Configuration Management for the AuctionZ session client.

This module handles client configuration including the API server URL,
session lifecycle policy, credential storage and logging settings, with
support for configuration files and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from typing import Optional, Dict, Any
from configparser import ConfigParser

from auctionz_shared.exceptions import ConfigurationError, ErrorCode
from auctionz_shared.models import LifecycleConfig

logger = logging.getLogger(__name__)

_DEFAULT_LIFECYCLE = LifecycleConfig()

DEFAULT_CONFIG_TEMPLATE = """# AuctionZ Session Client Configuration
# Configuration file: {config_path}

[server]
# API base URL
url = http://localhost:5000/api

# Request timeout in seconds
timeout = 10

# Retry attempts for requests that fail at the network level
retry_attempts = 3
retry_delay = 1.0

[session]
# Validation triggers
validate_on_route_change = true
validate_on_page_focus = true
validate_on_interval = true
validation_interval = 300

# Clear the session and redirect to login for each failure class
auto_logout_on_expiry = true
auto_logout_on_invalid_session = true
auto_logout_on_network_error = true

# Redirect policy
redirect_to_login_on_logout = true
redirect_to_home_on_logout = false
preserve_current_route = true

# Seconds before session expiry that count as "expiring soon"
show_expiry_warning = true
warning_time_before_expiry = 600

# Refresh the access token this many seconds before it expires
token_refresh_lookahead = 300

enable_debug_logging = false

[storage]
# Credential backend: auto, keyring, file or memory
backend = auto

[logging]
# Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL
level = INFO
format = standard
"""


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ('1', 'true', 'yes', 'on'):
        return True
    if text in ('0', 'false', 'no', 'off'):
        return False
    raise ValueError(f"not a boolean: {value!r}")


class ClientConfiguration:
    """
    Configuration manager for the AuctionZ session client.

    Supports configuration from:
    1. Command line arguments (highest priority)
    2. Environment variables
    3. Configuration file
    4. Default values (lowest priority)
    """

    ENV_MAPPINGS = {
        'AUCTIONZ_SERVER_URL': ('server', 'url'),
        'AUCTIONZ_SERVER_TIMEOUT': ('server', 'timeout'),
        'AUCTIONZ_RETRY_ATTEMPTS': ('server', 'retry_attempts'),
        'AUCTIONZ_VALIDATION_INTERVAL': ('session', 'validation_interval'),
        'AUCTIONZ_AUTO_LOGOUT_ON_NETWORK_ERROR': ('session', 'auto_logout_on_network_error'),
        'AUCTIONZ_DEBUG_LOGGING': ('session', 'enable_debug_logging'),
        'AUCTIONZ_STORAGE_BACKEND': ('storage', 'backend'),
        'AUCTIONZ_STORAGE_FILE': ('storage', 'file'),
        'AUCTIONZ_LOG_LEVEL': ('logging', 'level'),
        'AUCTIONZ_LOG_FILE': ('logging', 'file'),
        'AUCTIONZ_LOG_FORMAT': ('logging', 'format'),
    }

    def __init__(self, config_file: Optional[str] = None):
        self._config_file = config_file or self._get_default_config_path()
        self._config_data: Dict[str, Dict[str, Any]] = {}
        self._overrides: Dict[str, Any] = {}

        self._load_configuration()

    def _get_default_config_path(self) -> str:
        """Get default configuration file path, creating it when missing."""
        config_dir = Path.home() / '.auctionz'
        user_config_path = str(config_dir / 'client.conf')

        if not os.path.exists(user_config_path):
            try:
                config_dir.mkdir(parents=True, exist_ok=True)
                self._create_default_config(user_config_path)
            except OSError as e:
                logger.warning(f"Failed to create default configuration: {e}")

        return user_config_path

    def _create_default_config(self, config_path: str) -> None:
        with open(config_path, 'w') as f:
            f.write(DEFAULT_CONFIG_TEMPLATE.format(config_path=config_path))
        logger.info(f"Created default configuration file: {config_path}")

    def _load_configuration(self) -> None:
        """Load configuration from file and environment variables."""
        if os.path.exists(self._config_file):
            try:
                self._load_from_file()
                logger.info(f"Configuration loaded from: {self._config_file}")
            except Exception as e:
                logger.warning(f"Failed to load configuration file: {e}")
        else:
            logger.info(f"Configuration file not found: {self._config_file}")

        self._load_from_environment()
        self._set_defaults()

    def _load_from_file(self) -> None:
        """Load configuration from INI file."""
        config = ConfigParser()
        config.read(self._config_file)

        for section_name in config.sections():
            section_data = {}
            for key, value in config[section_name].items():
                try:
                    section_data[key] = json.loads(value)
                except (json.JSONDecodeError, ValueError):
                    section_data[key] = value

            self._config_data[section_name] = section_data

    def _load_from_environment(self) -> None:
        """Load configuration from environment variables."""
        for env_var, (section, key) in self.ENV_MAPPINGS.items():
            value = os.environ.get(env_var)
            if value is None:
                continue

            section_data = self._config_data.setdefault(section, {})
            if value.lower() in ('true', 'false'):
                section_data[key] = value.lower() == 'true'
            elif value.isdigit():
                section_data[key] = int(value)
            else:
                section_data[key] = value

    def _set_defaults(self) -> None:
        """Set default configuration values."""
        defaults = {
            'server': {
                'url': 'http://localhost:5000/api',
                'timeout': 10.0,
                'retry_attempts': 3,
                'retry_delay': 1.0
            },
            'session': _DEFAULT_LIFECYCLE.to_dict(),
            'storage': {
                'backend': 'auto',
                'file': None
            },
            'logging': {
                'level': 'INFO',
                'file': None,
                'format': 'standard',
                'max_size': 10485760,
                'backup_count': 3
            }
        }

        for section, section_defaults in defaults.items():
            section_data = self._config_data.setdefault(section, {})
            for key, default_value in section_defaults.items():
                if key not in section_data:
                    section_data[key] = default_value

    def get_config(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key: Configuration key in format 'section.key'
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        if key in self._overrides:
            return self._overrides[key]

        if '.' not in key:
            return self._config_data.get(key, default)

        section, config_key = key.split('.', 1)
        return self._config_data.get(section, {}).get(config_key, default)

    def set_config(self, key: str, value: Any) -> None:
        """
        Set configuration value using dot notation.

        Args:
            key: Configuration key in format 'section.key'
            value: Value to set
        """
        if '.' not in key:
            raise ConfigurationError(f"Configuration key must be 'section.key': {key}",
                                     ErrorCode.CONFIG_UNKNOWN_KEY, config_key=key)

        section, config_key = key.split('.', 1)
        self._config_data.setdefault(section, {})[config_key] = value

    def set_override(self, key: str, value: Any) -> None:
        """
        Set configuration override (highest priority).

        Args:
            key: Configuration key in format 'section.key'
            value: Override value
        """
        self._overrides[key] = value

    def save_configuration(self) -> None:
        """Save current configuration to file."""
        config = ConfigParser()

        for section_name, section_data in self._config_data.items():
            config.add_section(section_name)
            for key, value in section_data.items():
                if value is None:
                    continue
                if isinstance(value, (dict, list, bool)):
                    config.set(section_name, key, json.dumps(value))
                else:
                    config.set(section_name, key, str(value))

        try:
            config_path = Path(self._config_file)
            config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._config_file, 'w') as f:
                config.write(f)
        except OSError as e:
            logger.error(f"Failed to save configuration: {e}")
            raise ConfigurationError(f"Failed to save configuration: {e}", cause=e)

        logger.info(f"Configuration saved to: {self._config_file}")

    def reload_configuration(self) -> None:
        """Reload configuration from file and environment."""
        self._config_data.clear()
        self._load_configuration()
        logger.info("Configuration reloaded")

    def get_config_file_path(self) -> str:
        return self._config_file

    def get_all_config(self) -> Dict[str, Any]:
        return {section: dict(values) for section, values in self._config_data.items()}

    # Convenience methods for common configuration values

    def get_server_url(self) -> str:
        return self.get_config('server.url')

    def get_server_timeout(self) -> float:
        return self._number('server.timeout', float)

    def get_retry_attempts(self) -> int:
        return self._number('server.retry_attempts', int)

    def get_retry_delay(self) -> float:
        return self._number('server.retry_delay', float)

    def get_storage_backend(self) -> str:
        backend = str(self.get_config('storage.backend', 'auto')).lower()
        if backend not in ('auto', 'keyring', 'file', 'memory'):
            raise ConfigurationError(f"Unknown storage backend: {backend}", config_key='storage.backend')
        return backend

    def get_storage_file(self) -> Optional[str]:
        return self.get_config('storage.file')

    def get_log_level(self) -> str:
        return str(self.get_config('logging.level', 'INFO')).upper()

    def get_log_file(self) -> Optional[str]:
        return self.get_config('logging.file')

    def get_log_format(self) -> str:
        return str(self.get_config('logging.format', 'standard')).lower()

    def _number(self, key: str, kind):
        value = self.get_config(key)
        try:
            return kind(value)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Invalid value for {key}: {value!r}", config_key=key)

    def get_lifecycle_config(self) -> LifecycleConfig:
        """
        Build the session lifecycle policy from the [session] section.

        Returns:
            Validated LifecycleConfig

        Raises:
            ConfigurationError: On unparsable or out-of-range values
        """
        values = {}
        for name, default in _DEFAULT_LIFECYCLE.to_dict().items():
            key = f'session.{name}'
            raw = self.get_config(key, default)
            try:
                if isinstance(default, bool):
                    values[name] = _parse_bool(raw)
                else:
                    values[name] = float(raw)
            except (TypeError, ValueError):
                raise ConfigurationError(f"Invalid value for {key}: {raw!r}", config_key=key)

        try:
            return LifecycleConfig(**values)
        except ValueError as e:
            raise ConfigurationError(str(e), cause=e)
