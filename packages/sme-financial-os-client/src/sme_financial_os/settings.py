"""Client configuration via environment variables."""

from pathlib import Path

from pydantic_settings import BaseSettings

DEFAULT_APP_URL = "http://localhost:3000"


class Settings(BaseSettings):
    # Externally reachable application URL, only used outside a same-origin context
    app_url: str | None = None

    # Transport
    request_timeout: float = 30.0
    batch_window: float = 0.0
    max_batch_size: int | None = None

    # Query cache
    query_stale_time: float = 5.0

    # Credential storage
    storage_dir: Path | None = None
    storage_origin: str = DEFAULT_APP_URL

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}
