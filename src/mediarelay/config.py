"""Centralised configuration via Pydantic Settings."""

from __future__ import annotations

from pydantic_settings import BaseSettings

_MIB = 1024 * 1024


class Settings(BaseSettings):
    """Application-wide configuration loaded from environment variables."""

    model_config = {"env_prefix": "MEDIARELAY_", "frozen": True}

    # Origin site
    base_url: str = "https://prehrajto.cz"
    login_path: str = "/prihlaseni"
    profile_path: str = "/profil"
    user_agent: str = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko)"

    # Storage
    data_dir: str = "./DATA"
    video_dir: str = "./VIDEOS"

    # Redis (queue persistence + processed URLs)
    redis_url: str = "redis://localhost:6379/0"
    queue_state_key: str = "mediarelay:queue"
    processed_urls_key: str = "mediarelay:processed"

    # Session
    session_ttl_days: int = 30
    # Text shown after a successful login form submit.
    login_success_marker: str = "Přihlášení proběhlo úspěšně"
    # Any of these in the profile page body means the cookies are authenticated.
    session_valid_markers: str = "Můj profil,function getCookie"
    session_required_cookies: str = "access_token,refresh_token"
    session_validate_timeout: int = 10
    login_settle_seconds: float = 5.0
    # Commission page holding the account's point balance.
    credits_path: str = "/provize/"
    credits_label: str = "Aktuální stav vašich bodů"

    # Discovery
    # Listing views, each paginated with ``listing_page_param``.
    discovery_listing_urls: str = (
        "/nejsledovanejsi-online-videa,"
        "/nejsledovanejsi-online-videa?filteredPastTime=7days,"
        "/nejsledovanejsi-online-videa?filteredPastTime=14days"
    )
    listing_page_param: str = "currentViewingVideoListing-visualPaginator-page"
    discovery_pages_per_listing: int = 10
    discovery_rate_limit_seconds: float = 0.5
    discovery_buffer_multiplier: int = 6
    discovery_target_count: int = 20
    discovery_timeout: int = 15

    # Uploaded-videos listing of the logged-in account
    uploaded_videos_path: str = "/profil/nahrana-videa"
    uploaded_page_param: str = "uploadedVideoListing-visualPaginator-page"
    uploaded_videos_per_page: int = 20

    # Download
    # Modes:
    # - chunks: parallel HTTP range requests (default)
    # - curl / wget: external downloader subprocess
    download_mode: str = "chunks"
    hq_processing: bool = True
    chunk_size: int = _MIB
    download_concurrency: int = 2
    chunk_retries: int = 2
    chunk_timeout: int = 120
    streaming_timeout: int = 600
    metadata_timeout: int = 15
    min_video_size: int = 300 * _MIB
    max_video_size: int = 20 * 1024 * _MIB
    add_watermark: bool = False
    watermark_text: str = "prehrajto.cz"
    ffmpeg_bin: str = "ffmpeg"
    curl_bin: str = "curl"
    wget_bin: str = "wget"
    watermark_timeout: int = 3600

    # Upload
    upload_prepare_url: str = "https://prehrajto.cz/profil/nahrat-soubor?do=prepareUpload"
    upload_cdn_url: str = "https://upload.prehrajto.cz/upload"
    upload_max_attempts: int = 5
    upload_retry_delay: float = 5.0
    upload_read_size: int = 256 * 1024
    upload_read_delay: float = 0.005
    upload_sample_interval: float = 1.0
    upload_ema_alpha: float = 0.3
    upload_timeout: int = 3600

    # Units / RPC
    rpc_timeout: float = 30.0
    session_call_timeout: float = 120.0
    unit_grace_seconds: float = 1.0

    @property
    def session_ttl_seconds(self) -> int:
        return self.session_ttl_days * 24 * 60 * 60

    def absolute_url(self, path_or_url: str) -> str:
        """Resolve a configured path against ``base_url``."""
        if path_or_url.startswith(("http://", "https://")):
            return path_or_url
        return f"{self.base_url.rstrip('/')}/{path_or_url.lstrip('/')}"


def get_settings() -> Settings:
    """Build settings from the environment; tests call it after monkeypatching env vars."""
    return Settings()


def split_csv(raw: str) -> list[str]:
    """Split comma-separated string into a list."""
    if not raw or not raw.strip():
        return []
    return [x.strip() for x in raw.split(",") if x.strip()]
