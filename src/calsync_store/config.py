"""Configuration management using Pydantic Settings."""

import os
from pathlib import Path
from typing import List, Optional

import pytz
from pydantic import Field, validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application Configuration
    app_name: str = Field(default="calsync-store", description="Application name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format string"
    )

    # Storage Configuration
    data_dir: Path = Field(
        default_factory=lambda: Path.home() / ".calsync-store",
        description="Application data directory"
    )
    database_url: str = Field(
        default="",
        description="Database URL (defaults to SQLite in data_dir)"
    )
    max_operations_per_commit: Optional[int] = Field(
        default=None,
        ge=1,
        description="Maximum number of row operations the storage accepts per commit (unlimited if empty)"
    )
    strict_status_updates: bool = Field(
        default=True,
        description="Reject row updates that clear a non-empty event status (like the Android calendar provider)"
    )

    # Mapping Configuration
    default_timezone: str = Field(
        default_factory=lambda: os.getenv("TZ") or "UTC",
        description="Timezone used for floating times and unknown timezone IDs"
    )
    account_name: Optional[str] = Field(
        default=None,
        description="Account name (email address) used for EMAIL reminders"
    )
    owner_account: Optional[str] = Field(
        default=None,
        description="Email address of the calendar owner (used to detect whether we are the organizer)"
    )
    prodid: str = Field(
        default="-//calsync-store//calsync-store 1.0//EN",
        description="PRODID of generated iCalendars"
    )

    @validator('data_dir', pre=True)
    def expand_path(cls, v):
        """Expand user paths and convert to Path objects."""
        if v is None:
            return v
        if isinstance(v, str):
            return Path(v).expanduser().absolute()
        return v.expanduser().absolute()

    @validator('database_url', always=True)
    def set_default_database_url(cls, v, values):
        """Set default SQLite database URL if not provided."""
        if not v and 'data_dir' in values:
            data_dir = values['data_dir']
            return f"sqlite:///{data_dir}/calsync-store.db"
        return v

    @validator('log_level')
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    @validator('default_timezone')
    def validate_default_timezone(cls, v):
        """Make sure the default timezone is known to the timezone database."""
        try:
            pytz.timezone(v)
        except pytz.UnknownTimeZoneError:
            raise ValueError(f"Unknown timezone: {v}")
        return v

    def ensure_directories(self):
        """Create necessary directories with proper permissions."""
        self.data_dir.mkdir(parents=True, exist_ok=True, mode=0o700)  # Owner only

    def validate_required_settings(self) -> List[str]:
        """Validate settings that are needed for full functionality and return list of missing fields."""
        missing = []

        if not self.database_url:
            missing.append('DATABASE_URL')
        if not self.owner_account:
            missing.append('OWNER_ACCOUNT')

        return missing


def load_settings(config_file: Optional[str] = None) -> Settings:
    """Load application settings.

    Args:
        config_file: Optional path to an env file overriding `.env`

    Returns:
        Settings instance
    """
    if config_file:
        settings = Settings(_env_file=config_file)
    else:
        settings = Settings()
    settings.ensure_directories()
    return settings


def create_example_config(path: Path) -> None:
    """Create an example configuration file.

    Args:
        path: Path to create the example config file
    """
    example_content = '''# calsync-store configuration
# Copy this file to .env and adapt it

# Application Configuration
DEBUG=false
LOG_LEVEL=INFO

# Storage Configuration (optional)
# DATA_DIR=~/.calsync-store
# DATABASE_URL=sqlite:///~/.calsync-store/calsync-store.db

# Maximum number of row operations per storage commit (empty = unlimited)
# MAX_OPERATIONS_PER_COMMIT=500

# Reject updates that clear a non-empty event status (rebuilds rows instead)
STRICT_STATUS_UPDATES=true

# Mapping Configuration
DEFAULT_TIMEZONE=UTC
# ACCOUNT_NAME=you@example.com
# OWNER_ACCOUNT=you@example.com
'''

    with open(path, 'w') as f:
        f.write(example_content)
