"""Runtime configuration.

Loaded once at the edge (CLI, app factory, tests) and passed to the
components that need it. Nothing below the edge reads the environment.
"""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class StudioSettings(BaseSettings):
    """QR Studio settings, overridable via ``QRSTUDIO_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="QRSTUDIO_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Stores
    database_url: str = "sqlite:///qrstudio.db"
    storage_root: Path = Path("storage")
    public_base_url: str = "http://localhost:8080"
    signing_secret: str = "dev-only-signing-secret"

    # Buckets
    logo_bucket: str = "qr-logos"
    print_pack_bucket: str = "qr-print-pack"

    # External fetch bounds
    signed_url_ttl_s: int = 60
    fetch_timeout_s: float = 5.0
    max_logo_bytes: int = 2 * 1024 * 1024

    # Raster sizes
    download_width_px: int = 1024
    preview_width_px: int = 320

    # Logging
    log_level: str = "INFO"
    log_file: str | None = None
