"""
Configuration management with three-tier precedence system:
1. Default values from codebase
2. Environment variables from .env
3. Explicit overrides passed by the caller (app factory, tests)

Precedence: Override > Environment Variables > Defaults
"""

import os
from typing import Any, Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class ConfigManager:
    """Manages configuration with three-tier precedence."""

    # Default values (Tier 1 - Codebase defaults)
    DEFAULTS = {
        "API_BASE_URL": "http://localhost:5001",
        "OPENAI_API_KEY": "",
        "LLM_API_BASE_URL": "",
        "TRANSCRIPTION_MODEL": "whisper-1",
        "TRANSCRIPTION_LANGUAGE": "pt",
        "SPEAKER_MODEL": "gpt-4o-mini",
        "MAX_CHUNK_DURATION": "600",
        "FFMPEG_BINARY": "ffmpeg",
        "FFPROBE_BINARY": "ffprobe",
        "FFMPEG_TIMEOUT": "600",
        "FFPROBE_TIMEOUT": "30",
        "TRANSCRIPTION_TIMEOUT": "300",
        "SPEAKER_TIMEOUT": "120",
        "JOBS_DIR": "server_jobs",
        "USERS_FILE": "server_jobs/users.json",
        "MAX_WORKERS": "2",
        "LOG_LEVEL": "INFO",
    }

    @staticmethod
    def get(key: str, override: Optional[Any] = None) -> Any:
        """
        Get configuration value with three-tier precedence.

        Args:
            key: Configuration key
            override: Explicit value (highest priority)

        Returns:
            Configuration value from highest priority source
        """
        if override is not None and override != "":
            return override

        env_value = os.getenv(key)
        if env_value is not None and env_value != "":
            return env_value

        return ConfigManager.DEFAULTS.get(key, "")

    @staticmethod
    def get_int(key: str, override: Optional[Any] = None) -> int:
        """Get a configuration value as an integer."""
        return int(ConfigManager.get(key, override))

    @staticmethod
    def get_float(key: str, override: Optional[Any] = None) -> float:
        """Get a configuration value as a float."""
        return float(ConfigManager.get(key, override))

    @staticmethod
    def get_display_value(key: str, override: Optional[Any] = None) -> tuple[Any, str]:
        """
        Get configuration value and its source.

        Returns:
            Tuple of (value, source) where source is 'override', 'env', or 'default'
        """
        if override is not None and override != "":
            return override, "override"

        env_value = os.getenv(key)
        if env_value is not None and env_value != "":
            return env_value, "env"

        default_value = ConfigManager.DEFAULTS.get(key, "")
        return default_value, "default"

    @staticmethod
    def is_using_default(key: str, override: Optional[Any] = None) -> bool:
        """Check if configuration is using default value."""
        _, source = ConfigManager.get_display_value(key, override)
        return source == "default"
