"""Environment variable validation and management."""

import os
import logging
from typing import Dict, Optional

logger = logging.getLogger(__name__)

class EnvironmentError(Exception):
    """Raised when required environment variables are missing or invalid."""
    pass

_DEFAULTS: Dict[str, str] = {
    "DB_PATH": "cognify.db",
    "LLM_API_URL": "http://localhost:11434/api/chat",
    "LLM_STREAM_URL": "http://localhost:11434/api/generate",
    "LLM_MODEL": "kimi-k2.5:cloud",
    "CODE_EXEC_URL": "https://emkc.org/api/v2/piston",
}

_URL_VARS = ("LLM_API_URL", "LLM_STREAM_URL", "CODE_EXEC_URL")

_OPTIONAL_VARS = {
    "LLM_API_KEY": "Bearer token for the non-streaming LLM endpoint",
    "LLM_STREAM_TIMEOUT": "Read timeout for streamed generations (unset = none)",
}


def validate_environment() -> None:
    """Validate critical environment variables.

    Raises EnvironmentError if validation fails.
    """
    for var, value in _DEFAULTS.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    for var in _URL_VARS:
        value = os.getenv(var, "")
        if not (value.startswith("http://") or value.startswith("https://")):
            raise EnvironmentError(f"Invalid URL format for {var}: {value}")

    for var in ("LLM_TIMEOUT", "LLM_STREAM_TIMEOUT", "CODE_EXEC_TIMEOUT"):
        value = os.getenv(var)
        if value:
            try:
                if float(value) <= 0:
                    raise ValueError(value)
            except ValueError:
                raise EnvironmentError(f"{var} must be a positive number of seconds: {value}")

    for var, description in _OPTIONAL_VARS.items():
        if not os.getenv(var):
            logger.warning("Optional environment variable not set: %s (%s)", var, description)

def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on", "enabled"}

def get_env_float(name: str, default: Optional[float]) -> Optional[float]:
    """Parse a float; unset, empty or malformed values give ``default``."""
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return default

def get_env_int(name: str, default: int) -> int:
    """Parse an int; unset, empty or malformed values give ``default``."""
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default
