"""
Remote configuration for the key pool.

The delivery mechanism is a flat JSON document (a file, or the process
settings) carrying three parameters:

    {
        "api_keys_json": "[\"key-a\", \"key-b\"]",
        "api_key_selection_mode": "round_robin",
        "api_key_reset_interval_hours": 0.25
    }

Malformed values never empty the pool: parsing raises ConfigurationError and
apply_remote_config() logs it and leaves the pool as it was.
"""

import json
import math
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator

from scorehub.services.errors import ConfigurationError
from scorehub.services.key_pool import KeyPool, SelectionMode
from scorehub.settings import Settings

KEY_API_KEYS = "api_keys_json"
KEY_SELECTION_MODE = "api_key_selection_mode"
KEY_RESET_INTERVAL = "api_key_reset_interval_hours"


class KeyPoolConfig(BaseModel):
    """Validated key pool parameters."""

    api_keys: list[str] = Field(min_length=1)
    selection_mode: SelectionMode = SelectionMode.RANDOM
    reset_interval_hours: float = 0.25

    @field_validator("api_keys")
    @classmethod
    def _strip_keys(cls, value: list[str]) -> list[str]:
        keys = [k.strip() for k in value if k and k.strip()]
        if not keys:
            raise ValueError("no non-empty API keys")
        return keys

    @field_validator("selection_mode", mode="before")
    @classmethod
    def _parse_mode(cls, value: Any) -> SelectionMode:
        if value is None or value == "":
            return SelectionMode.RANDOM
        return SelectionMode.parse(value)

    @field_validator("reset_interval_hours")
    @classmethod
    def _positive_interval(cls, value: float) -> float:
        if not math.isfinite(value) or value <= 0:
            raise ValueError("reset interval must be a positive number of hours")
        return value


def parse_api_keys(raw: str | list[str]) -> list[str]:
    """Parse the JSON array of API keys."""
    if isinstance(raw, list):
        return raw
    try:
        keys = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"API keys are not valid JSON: {e}") from e
    if not isinstance(keys, list) or not all(isinstance(k, str) for k in keys):
        raise ConfigurationError("API keys must be a JSON array of strings")
    return keys


def parse_remote_config(values: dict[str, Any]) -> KeyPoolConfig:
    """
    Validate raw remote configuration values.

    Raises:
        ConfigurationError: If any parameter is missing or malformed
    """
    try:
        return KeyPoolConfig(
            api_keys=parse_api_keys(values.get(KEY_API_KEYS, "")),
            selection_mode=values.get(KEY_SELECTION_MODE),
            reset_interval_hours=values.get(KEY_RESET_INTERVAL, 0.25),
        )
    except ValidationError as e:
        raise ConfigurationError(f"Invalid key pool configuration: {e}") from e


def settings_values(settings: Settings) -> dict[str, Any]:
    """Remote configuration values held in process settings."""
    return {
        KEY_API_KEYS: settings.api_keys_json,
        KEY_SELECTION_MODE: settings.api_key_selection_mode,
        KEY_RESET_INTERVAL: settings.api_key_reset_interval_hours,
    }


def load_remote_config_file(path: str | Path) -> dict[str, Any]:
    """
    Read a remote configuration document.

    Raises:
        ConfigurationError: If the file is missing or not a JSON object
    """
    try:
        document = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read remote config {path}: {e}") from e
    if not isinstance(document, dict):
        raise ConfigurationError(f"Remote config {path} must be a JSON object")
    return document


def apply_remote_config(pool: KeyPool, values: dict[str, Any]) -> bool:
    """
    Apply remote configuration values to a pool.

    Returns:
        True if the pool was re-initialized, False if the values were rejected
    """
    try:
        config = parse_remote_config(values)
    except ConfigurationError as e:
        logger.warning(f"Ignoring remote config, keeping current key pool: {e}")
        return False

    return pool.reload_from_remote_config(
        keys=config.api_keys,
        reset_interval_hours=config.reset_interval_hours,
        selection_mode=config.selection_mode,
    )
