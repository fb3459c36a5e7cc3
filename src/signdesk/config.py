"""Runtime settings for SignDesk.

Defaults suit a single-user install under ``~/.signdesk``. Every value
can be overridden from the environment (or a ``.env`` file)::

    SIGNDESK_DATA_DIR        data directory
    SIGNDESK_RETRY_ATTEMPTS  bounded retries for saves and bakes
    SIGNDESK_RETRY_BACKOFF   base backoff between retries (seconds)
    SIGNDESK_PAGE_WIDTH      default page raster width (px)
    SIGNDESK_PAGE_HEIGHT     default page raster height (px)
    SIGNDESK_HOST            API bind address
    SIGNDESK_PORT            API port

Explicit keyword arguments (e.g. CLI flags) win over the environment.
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_DIR = Path.home() / ".signdesk"


class SignDeskSettings(BaseSettings):
    """Configuration shared by the service, the API and the CLI.

    Attributes:
        data_dir: Root of the filesystem store.
        retry_attempts: Attempts for persistence and bake calls (>= 1).
        retry_backoff_seconds: Linear backoff base between attempts.
        page_width: Raster width used for pages created without metadata.
        page_height: Raster height used for pages created without metadata.
        host: API bind address.
        port: API port.
    """

    model_config = SettingsConfigDict(
        env_prefix="SIGNDESK_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="ignore",
        populate_by_name=True,
    )

    data_dir: Path = DEFAULT_DATA_DIR
    retry_attempts: int = Field(3, ge=1)
    retry_backoff_seconds: float = Field(
        0.2, ge=0, validation_alias="SIGNDESK_RETRY_BACKOFF"
    )
    page_width: float = Field(612.0, gt=0)
    page_height: float = Field(792.0, gt=0)
    host: str = "127.0.0.1"
    port: int = Field(8400, ge=1, le=65535)
