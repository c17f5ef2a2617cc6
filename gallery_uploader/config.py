"""
Configuration management for Gallery Uploader.
Handles loading, validation, and persistence of configuration.
"""

import json
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .utils import restrict_permissions


class Config(BaseModel):
    """Configuration model with validation."""

    model_config = ConfigDict(validate_assignment=True)

    # API settings
    api_endpoint: str = Field(..., description="Gallery service base URL")
    api_key: str = Field(..., min_length=1, description="API key issued by the gallery service")
    event_code: str = Field(..., min_length=1, description="Event gallery receiving uploads")
    request_timeout: Optional[float] = Field(None, gt=0, description="HTTP timeout in seconds (None waits indefinitely)")
    verify_ssl: bool = Field(True, description="Verify SSL certificates")

    # Watch settings
    watch_folder: Optional[str] = Field(None, description="Folder watched for new photos")

    # Upload settings
    max_concurrent_uploads: int = Field(3, ge=1, le=10, description="Maximum concurrent uploads")
    tick_interval_seconds: float = Field(1.0, gt=0, le=60, description="Seconds between dispatch ticks")
    thumbnail_size: int = Field(100, ge=16, le=512, description="Longest edge of queue thumbnails")

    # Logging settings
    log_dir: Optional[str] = Field(None, description="Log file directory (console only if unset)")
    log_level: str = Field("INFO", description="Logging level: DEBUG, INFO, WARNING, ERROR")

    @field_validator('api_endpoint')
    @classmethod
    def validate_api_endpoint(cls, v):
        """Ensure API endpoint is an HTTP(S) URL."""
        if not v.startswith('http://') and not v.startswith('https://'):
            raise ValueError('API endpoint must start with http:// or https://')
        if not v.startswith('https://'):
            warnings.warn('Using HTTP instead of HTTPS is insecure!')
        return v.rstrip('/')

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        allowed = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in allowed:
            raise ValueError(f'Log level must be one of: {", ".join(allowed)}')
        return v.upper()

    @property
    def watch_path(self) -> Optional[Path]:
        return Path(self.watch_folder).expanduser() if self.watch_folder else None


class ConfigManager:
    """Manages configuration file loading and saving."""

    DEFAULT_CONFIG_NAME = "config.json"

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize config manager.

        Args:
            config_path: Optional custom config path (default: ./config.json)
        """
        self.config_path = Path(config_path) if config_path else Path.cwd() / self.DEFAULT_CONFIG_NAME
        self._config: Optional[Config] = None

    def exists(self) -> bool:
        return self.config_path.exists()

    def load(self) -> Config:
        """Load configuration from file.

        Returns:
            Config object

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not self.config_path.exists():
            raise FileNotFoundError(
                f"Configuration file not found: {self.config_path}\n"
                "Run 'gallery-uploader setup' or create config manually."
            )

        with open(self.config_path, 'r') as f:
            data = json.load(f)

        self._config = Config(**data)
        return self._config

    def save(self, config: Config) -> None:
        """Save configuration to file.

        Args:
            config: Config object to save
        """
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(self.config_path, 'w') as f:
            json.dump(
                config.model_dump(exclude_none=True),
                f,
                indent=2,
                sort_keys=True
            )

        # The file holds the API key
        restrict_permissions(self.config_path)

        self._config = config

    def get(self) -> Config:
        """Get current configuration (load if not cached)."""
        if self._config is None:
            self._config = self.load()
        return self._config

    def update(self, updates: Dict[str, Any]) -> Config:
        """Update configuration fields.

        Args:
            updates: Dictionary of fields to update

        Returns:
            Updated Config object
        """
        updated_data = self.get().model_dump()
        updated_data.update(updates)

        new_config = Config(**updated_data)
        self.save(new_config)

        return new_config

    def reset(self) -> None:
        """Delete configuration file."""
        if self.config_path.exists():
            self.config_path.unlink()
        self._config = None
