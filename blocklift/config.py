"""
Configuration management for blocklift.

This module handles loading and accessing configuration values from config.yaml.
It provides a centralized way to manage API, migration and logging settings
without changing code.
"""

import yaml
from pathlib import Path
from typing import Any, Dict
import logging


class ConfigManager:
    """
    Manages configuration loading and access for blocklift.
    """

    def __init__(self, config_path: str = "config.yaml"):
        """
        Initialize the configuration manager.

        Args:
            config_path: Path to the configuration file
        """
        self.config_path = Path(config_path)
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from YAML file."""
        try:
            if not self.config_path.exists():
                raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._config = yaml.safe_load(f) or {}

            logging.info(f"Configuration loaded from {self.config_path}")

        except (OSError, yaml.YAMLError) as e:
            logging.warning(f"Failed to load configuration: {e}")
            # Fall back to default configuration
            self._config = self._get_default_config()

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration values as fallback."""
        return {
            "api": {
                "base_url": "https://site-api.datocms.com",
                "api_version": "3",
                "timeout": 30.0,
                "token_env": "DATOCMS_API_TOKEN",
                "job_poll_interval": 1.0,
                "job_max_polls": 120
            },
            "migration": {
                "page_size": 100,
                "publish_batch_size": 10,
                "max_identifier_attempts": 100,
                "api_key_max_length": 40
            },
            "paths": {
                "log_file": "blocklift.log"
            },
            "logging": {
                "level": "INFO",
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            }
        }

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get a configuration value using dot notation.

        Args:
            key_path: Dot-separated path to the configuration value (e.g., "api.timeout")
            default: Default value if key is not found

        Returns:
            The configuration value

        Examples:
            config.get("api.base_url")  # Returns "https://site-api.datocms.com"
            config.get("migration.page_size")  # Returns 100
        """
        keys = key_path.split('.')
        value = self._config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def get_section(self, section: str) -> Dict[str, Any]:
        """
        Get an entire configuration section.

        Args:
            section: Name of the configuration section

        Returns:
            Dictionary containing the section configuration
        """
        return self._config.get(section, {})

    def reload(self) -> None:
        """Reload configuration from file."""
        self._load_config()

    # Convenience properties for commonly used values

    @property
    def api_base_url(self) -> str:
        """Get the Content Management API base URL."""
        return self.get("api.base_url", "https://site-api.datocms.com")

    @property
    def api_version(self) -> str:
        """Get the API version header value."""
        return str(self.get("api.api_version", "3"))

    @property
    def api_timeout(self) -> float:
        """Get the HTTP timeout."""
        return self.get("api.timeout", 30.0)

    @property
    def api_token_env(self) -> str:
        """Get the name of the environment variable holding the API token."""
        return self.get("api.token_env", "DATOCMS_API_TOKEN")

    @property
    def page_size(self) -> int:
        """Get the page size used when scanning records."""
        return self.get("migration.page_size", 100)

    @property
    def publish_batch_size(self) -> int:
        """Get how many records are published between progress updates."""
        return self.get("migration.publish_batch_size", 10)

    @property
    def max_identifier_attempts(self) -> int:
        """Get the number of suffixes tried before giving up on a unique api_key."""
        return self.get("migration.max_identifier_attempts", 100)

    @property
    def api_key_max_length(self) -> int:
        """Get the maximum length of a model api_key."""
        return self.get("migration.api_key_max_length", 40)

    @property
    def log_filename(self) -> str:
        """Get log file name."""
        return self.get("paths.log_file", "blocklift.log")


# Global configuration instance
config = ConfigManager()


def get_config() -> ConfigManager:
    """
    Get the global configuration instance.

    Returns:
        The global ConfigManager instance
    """
    return config
