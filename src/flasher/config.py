"""Application settings for the flasher service."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MANIFEST_BASE_URL = "https://raw.githubusercontent.com/commaai/openpilot"


class Settings(BaseSettings):
    """Flasher settings, overridable via FLASHER_* environment variables or .env."""

    model_config = SettingsConfigDict(
        env_prefix="FLASHER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Release channel → manifest URL
    channel: str = "release"
    manifests: dict[str, str] = Field(
        default_factory=lambda: {
            "release": f"{MANIFEST_BASE_URL}/release3/system/hardware/tici/all-partitions.json",
            "master": f"{MANIFEST_BASE_URL}/master/system/hardware/tici/all-partitions.json",
        }
    )

    # Storage
    cache_dir: Path = Path("./cache")

    # Device transport
    fastboot_path: str = "fastboot"
    command_timeout: float = 60.0
    flash_timeout: float = 600.0
    connect_poll_interval: float = 1.0
    connect_timeout: float = 60.0

    # Network
    http_timeout: float = 30.0
    chunk_size: int = 64 * 1024

    # Logging
    log_file: str = "./logs/flasher.log"
    log_level: str = "INFO"

    # Server
    host: str = "127.0.0.1"
    port: int = 12316

    @field_validator("log_level")
    @classmethod
    def upper_log_level(cls, v: str) -> str:
        return v.upper()

    @property
    def manifest_url(self) -> str:
        """Manifest URL for the configured channel.

        Raises:
            KeyError: If the channel has no manifest configured
        """
        return self.manifests[self.channel]


@lru_cache
def get_settings() -> Settings:
    return Settings()
