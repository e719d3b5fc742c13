"""
Configuration management for grocy-sync

Loads, validates and stores the server connection and sync settings in a
single YAML file in the user's config directory. GROCY_SERVER_URL and
GROCY_API_KEY from the environment (or a .env file) override the file.
"""

import base64
import binascii
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import platformdirs
import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


@dataclass
class GrocySyncConfig:
    """Main grocy-sync configuration"""

    server_url: str = ""
    api_key: str = ""

    # Sync behavior
    sync_interval_seconds: int = 60
    multiple_shopping_lists: bool = True
    request_timeout_seconds: float = 10.0
    max_workers: int = 4
    verify_ssl: bool = True

    # Paths (relative to user config directory)
    database_path: str = "grocy_sync.db"
    log_file: str = "grocy_sync.log"

    # Logging
    logging_level: str = "INFO"
    log_max_bytes: int = 10 * 1024 * 1024  # 10MB
    log_backup_count: int = 3


class ConfigManager:
    """Manages configuration loading, validation, and storage in the user config directory"""

    CONFIG_FILE_NAME = "config.yaml"
    APP_NAME = "grocy-sync"

    def __init__(self, config_dir: Optional[Path] = None):
        """
        Initialize ConfigManager

        Args:
            config_dir: Custom config directory (defaults to user config directory)
        """
        if config_dir:
            self.config_dir = Path(config_dir)
        else:
            self.config_dir = Path(platformdirs.user_config_dir(self.APP_NAME))

        self.config_file = self.config_dir / self.CONFIG_FILE_NAME

    def get_config_location(self) -> Path:
        return self.config_file

    def get_resource_path(self, filename: str) -> Path:
        """Get path for a resource file in the config directory"""
        return self.config_dir / filename

    def config_exists(self) -> bool:
        return self.config_file.exists()

    def load_config(self) -> GrocySyncConfig:
        """
        Load configuration from the config file and the environment

        Returns:
            GrocySyncConfig instance with all settings loaded

        Raises:
            FileNotFoundError: If neither a config file nor environment settings exist
            ValueError: If configuration is invalid
        """
        load_dotenv()
        yaml_data: Dict[str, Any] = {}

        if self.config_file.exists():
            try:
                with open(self.config_file, 'r') as f:
                    yaml_data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in {self.config_file}: {e}")
        elif not os.getenv("GROCY_SERVER_URL"):
            raise FileNotFoundError(
                f"Configuration file not found: {self.config_file}\n"
                f"Run 'grocy-sync config init' to create initial configuration."
            )

        defaults = GrocySyncConfig()
        config = GrocySyncConfig(
            server_url=yaml_data.get('server_url', ''),
            api_key=self._decode_api_key(yaml_data.get('api_key', '')),
            sync_interval_seconds=int(yaml_data.get('sync_interval_seconds', defaults.sync_interval_seconds)),
            multiple_shopping_lists=bool(yaml_data.get('multiple_shopping_lists', defaults.multiple_shopping_lists)),
            request_timeout_seconds=float(yaml_data.get('request_timeout_seconds', defaults.request_timeout_seconds)),
            max_workers=int(yaml_data.get('max_workers', defaults.max_workers)),
            verify_ssl=bool(yaml_data.get('verify_ssl', defaults.verify_ssl)),
            logging_level=str(yaml_data.get('logging_level', defaults.logging_level)),
        )

        # Environment overrides
        if os.getenv("GROCY_SERVER_URL"):
            config.server_url = os.environ["GROCY_SERVER_URL"]
        if os.getenv("GROCY_API_KEY"):
            config.api_key = os.environ["GROCY_API_KEY"]

        self._validate_config(config)
        return config

    def save_config(self, config: GrocySyncConfig) -> None:
        """
        Save configuration to user config directory

        Args:
            config: GrocySyncConfig instance to save
        """
        self.config_dir.mkdir(parents=True, exist_ok=True)

        yaml_data = {
            'server_url': config.server_url,
            'api_key': base64.b64encode(config.api_key.encode()).decode(),
            'sync_interval_seconds': config.sync_interval_seconds,
            'multiple_shopping_lists': config.multiple_shopping_lists,
            'request_timeout_seconds': config.request_timeout_seconds,
            'max_workers': config.max_workers,
            'verify_ssl': config.verify_ssl,
            'logging_level': config.logging_level,
        }

        with open(self.config_file, 'w') as f:
            f.write("# grocy-sync configuration\n")
            f.write(f"# Stored in: {self.config_file}\n")
            f.write("# This file contains an encoded API key - keep it secure!\n\n")
            yaml.dump(yaml_data, f, default_flow_style=False, sort_keys=False)

        # Owner only
        os.chmod(self.config_file, 0o600)
        logger.info(f"Configuration saved to {self.config_file}")

    def _decode_api_key(self, encoded: str) -> str:
        """Decode the base64-obfuscated API key"""
        if not encoded:
            return ""
        try:
            return base64.b64decode(encoded, validate=True).decode()
        except (binascii.Error, UnicodeDecodeError) as e:
            raise ValueError(f"Failed to decode API key: {e}")

    def _validate_config(self, config: GrocySyncConfig) -> None:
        """Validate configuration for common issues"""
        errors = []

        if not config.server_url:
            errors.append("server_url is required")
        elif not config.server_url.startswith(("http://", "https://")):
            errors.append("server_url must start with http:// or https://")

        if not config.api_key:
            errors.append("api_key is required")

        if config.sync_interval_seconds < 30:
            errors.append("sync_interval_seconds must be at least 30 seconds")

        if config.request_timeout_seconds <= 0:
            errors.append("request_timeout_seconds must be positive")

        if config.max_workers < 1:
            errors.append("max_workers must be at least 1")

        if errors:
            raise ValueError(
                "Configuration validation failed:\n" +
                "\n".join(f"  - {error}" for error in errors) +
                "\n\nRun 'grocy-sync config init' to fix configuration issues."
            )

    def remove_config(self) -> bool:
        """Remove configuration file (for cleanup/reset)"""
        if self.config_file.exists():
            self.config_file.unlink()
            return True
        return False


def load_config(config_dir: Optional[Path] = None) -> GrocySyncConfig:
    """
    Convenience function to load configuration

    Args:
        config_dir: Custom config directory

    Returns:
        GrocySyncConfig instance
    """
    return ConfigManager(config_dir).load_config()
