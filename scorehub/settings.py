import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


class Settings(BaseModel):
    # API key pool (initial values, overridden by remote config)
    api_keys_json: str = Field(default="[]", alias="API_KEYS_JSON")
    api_key_selection_mode: str = Field(
        default="random", alias="API_KEY_SELECTION_MODE"
    )
    api_key_reset_interval_hours: float = Field(
        default=0.25, alias="API_KEY_RESET_INTERVAL_HOURS"
    )

    # Upstream request configuration
    api_key_header: str = Field(default="x-rapidapi-key", alias="API_KEY_HEADER")
    api_host_header: str = Field(default="x-rapidapi-host", alias="API_HOST_HEADER")
    request_timeout: float = Field(default=30.0, alias="REQUEST_TIMEOUT")
    max_retries: int = Field(default=3, alias="MAX_RETRIES")
    retry_delay_seconds: float = Field(default=1.0, alias="RETRY_DELAY_SECONDS")

    # Database Configuration
    database_url: str = Field(
        default="sqlite+aiosqlite:///./scorehub.db", alias="DATABASE_URL"
    )
    database_echo: bool = Field(default=False, alias="DATABASE_ECHO")

    # Cache maintenance
    cache_batch_size: int = Field(default=500, alias="CACHE_BATCH_SIZE")
    cache_sweep_interval_minutes: int = Field(
        default=15, alias="CACHE_SWEEP_INTERVAL"
    )
    cache_debug: bool = Field(default=False, alias="CACHE_DEBUG")

    # Remote configuration
    remote_config_path: str | None = Field(default=None, alias="REMOTE_CONFIG_PATH")
    remote_config_refresh_minutes: int = Field(
        default=60, alias="REMOTE_CONFIG_REFRESH_INTERVAL"
    )


global_settings = Settings.model_validate(dict(os.environ))
