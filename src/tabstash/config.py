"""Configuration management."""

import logging
import os
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

import yaml
from dotenv import load_dotenv

from .models.config import AppConfig, EnvSettings
from .utils.url_utils import NormalizationFlags

logger = logging.getLogger(__name__)

DEFAULT_STORE_FILENAME = "bookmarks.yaml"
DEFAULT_COLORS_FILENAME = "folder_colors.yaml"


class ConfigError(Exception):
    """Configuration-related error."""

    pass


class SettingsProvider(Protocol):
    """Source of the URL comparison settings, asked once per operation."""

    def load_normalization_flags(self) -> NormalizationFlags:
        ...


@dataclass
class StaticSettings:
    """Fixed settings, for embedding and tests."""

    flags: NormalizationFlags = NormalizationFlags()

    def load_normalization_flags(self) -> NormalizationFlags:
        return self.flags


class ConfigManager:
    """Manages application configuration from .env and config.yaml."""

    def __init__(self, config_dir: Optional[Path] = None):
        """Initialize configuration manager.

        Args:
            config_dir: Configuration directory path. Defaults to ~/.tabstash
        """
        if config_dir is None:
            env_config_dir = os.environ.get("TABSTASH_CONFIG_DIR")
            if env_config_dir:
                config_dir = Path(env_config_dir)
            else:
                config_dir = Path.home() / '.tabstash'

        self.config_dir = config_dir
        self.config_file = config_dir / 'config.yaml'
        self.env_file = config_dir / '.env'

    def load_env_settings(self) -> EnvSettings:
        """Load environment settings from .env file.

        A missing .env file is not an error; the token is optional.

        Raises:
            ConfigError: If the .env file is invalid
        """
        if self.env_file.exists():
            load_dotenv(self.env_file)

        try:
            return EnvSettings()
        except Exception as e:
            raise ConfigError(f"Invalid .env file: {e}") from e

    def load_app_config(self) -> AppConfig:
        """Load application configuration from config.yaml.

        Returns:
            AppConfig instance

        Raises:
            ConfigError: If config file is missing or invalid
        """
        if not self.config_file.exists():
            raise ConfigError(
                f"Config file not found at {self.config_file}. "
                f"Run 'tabstash init' to create configuration."
            )

        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)

            if data is None:
                data = {}

            return AppConfig(**data)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in config file: {e}") from e
        except Exception as e:
            raise ConfigError(f"Failed to load config: {e}") from e

    def save_app_config(self, config: AppConfig) -> None:
        """Save application configuration to config.yaml.

        Raises:
            ConfigError: If save fails
        """
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)

            data = config.model_dump(mode='json')

            with open(self.config_file, 'w', encoding='utf-8') as f:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)

        except Exception as e:
            raise ConfigError(f"Failed to save config: {e}") from e

    def load_normalization_flags(self) -> NormalizationFlags:
        """Read the URL comparison settings fresh from config.yaml.

        Falls back to the defaults when the file is missing or unreadable, so a
        broken config never blocks stash operations.
        """
        try:
            config = self.load_app_config()
        except ConfigError as e:
            logger.warning(f"Using default URL normalization settings: {e}")
            return NormalizationFlags()

        return NormalizationFlags(
            strip_all_params=config.strip_all_params,
            strip_tracking=config.strip_tracking_params,
        )

    def create_env_file(self, api_token: Optional[str] = None) -> str:
        """Create .env file holding the command endpoint token.

        Args:
            api_token: Token to write (a random one is generated when omitted)

        Returns:
            The token written

        Raises:
            ConfigError: If file creation fails
        """
        token = api_token or secrets.token_urlsafe(32)
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)

            env_content = f"""# Tab Stash local API token
# Sent by the extension as "Authorization: Bearer <token>" or X-Extension-Token.
TABSTASH_API_TOKEN={token}
"""

            with open(self.env_file, 'w', encoding='utf-8') as f:
                f.write(env_content)

            # Set restrictive permissions on Unix-like systems
            if os.name != 'nt':  # Not Windows
                os.chmod(self.env_file, 0o600)

        except Exception as e:
            raise ConfigError(f"Failed to create .env file: {e}") from e

        return token

    def get_store_path(self, config: AppConfig) -> Path:
        """Path of the YAML bookmark tree."""
        if config.store_path:
            return Path(config.store_path).expanduser()
        return self.config_dir / DEFAULT_STORE_FILENAME

    def get_folder_colors_path(self, config: AppConfig) -> Path:
        """Path of the YAML folder color mapping."""
        if config.folder_colors_path:
            return Path(config.folder_colors_path).expanduser()
        return self.config_dir / DEFAULT_COLORS_FILENAME

    def validate_store_access(self, store_path: Path) -> None:
        """Validate the bookmark tree file can be created or written.

        Raises:
            ConfigError: If the file or its directory is not accessible
        """
        directory = store_path.parent

        if not directory.exists():
            raise ConfigError(f"Store directory does not exist: {directory}")

        if not directory.is_dir():
            raise ConfigError(f"Store directory is not a directory: {directory}")

        if not os.access(directory, os.W_OK):
            raise ConfigError(f"Store directory is not writable: {directory}")

        if store_path.exists() and not os.access(store_path, os.R_OK | os.W_OK):
            raise ConfigError(f"Store file is not readable and writable: {store_path}")
