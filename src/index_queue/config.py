"""Configuration for the index queue.

Usage:
    from index_queue.config import Config, FailurePolicySettings

    # Access config values
    database_url = Config.DATABASE_URL

    # Failure policy handed to the store at construction
    settings = FailurePolicySettings.from_config()
"""

import os

from pydantic import BaseModel, Field


class Config:
    """Centralized configuration for the index queue.

    All configuration values are class variables that can be accessed directly.
    Values are loaded from environment variables with sensible defaults.

    Example:
        from index_queue.config import Config

        print(Config.DATABASE_URL)
        print(Config.MAX_ATTEMPTS)
    """

    # ========================================================================
    # Helper methods (static)
    # ========================================================================

    @staticmethod
    def _get_value(key: str, default: str) -> str:
        """Get configuration value from environment with optional default."""
        return os.getenv(key, default)

    @staticmethod
    def _get_int(key: str, default: int) -> int:
        """Get integer configuration value."""
        return int(os.getenv(key, str(default)))

    @staticmethod
    def _get_list(key: str, default: str = "", separator: str = ",") -> list[str]:
        """Get list configuration value, skipping empty items."""
        return [item.strip() for item in os.getenv(key, default).split(separator) if item.strip()]

    # ========================================================================
    # Database Configuration
    # ========================================================================

    DATABASE_URL: str = _get_value("INDEX_QUEUE_DATABASE_URL", "sqlite:///index_queue.db")

    LOG_LEVEL: str = _get_value("LOG_LEVEL", "INFO")

    # ========================================================================
    # Failure Policy
    # ========================================================================

    MAX_ATTEMPTS: int = _get_int("INDEX_QUEUE_MAX_ATTEMPTS", 5)
    DEADLY_ERRORS: list[str] = _get_list("INDEX_QUEUE_DEADLY_ERRORS")
    UNDELETABLE_CLASSES: list[str] = _get_list("INDEX_QUEUE_UNDELETABLE_CLASSES")


class FailurePolicySettings(BaseModel):
    """Settings deciding when a failing entry is discarded.

    Attributes:
        max_attempts: Entries failing more often than this are discarded
        deadly_errors: Error substrings that force a discard
        undeletable_class_names: Record classes whose entries are never discarded
    """

    max_attempts: int = Field(default=5, ge=0)
    deadly_errors: list[str] = Field(default_factory=list)
    undeletable_class_names: list[str] = Field(default_factory=list)

    @classmethod
    def from_config(cls) -> "FailurePolicySettings":
        """Build settings from the Config class values."""
        return cls(
            max_attempts=Config.MAX_ATTEMPTS,
            deadly_errors=list(Config.DEADLY_ERRORS),
            undeletable_class_names=list(Config.UNDELETABLE_CLASSES),
        )
