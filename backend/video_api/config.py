import json
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "Video Export API"
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    host: str = "127.0.0.1"
    port: int = 3100
    log_level: str = "info"

    # CORS - stored as string, parsed via computed property
    cors_origins_raw: str = "https://blog.beatpass.ca,http://localhost:5173,http://localhost:4173"

    @computed_field
    @property
    def cors_origins(self) -> list[str]:
        """Parse CORS origins from pipe/comma-separated string or JSON array."""
        v = self.cors_origins_raw
        if v.startswith("["):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        if "|" in v:
            return [origin.strip() for origin in v.split("|") if origin.strip()]
        return [origin.strip() for origin in v.split(",") if origin.strip()]

    # External tools
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    yt_dlp_path: str = "yt-dlp"
    timer_font_path: str = "/usr/share/fonts/truetype/dejavu/DejaVuSansMono.ttf"
    source_url_template: str = "https://www.youtube.com/watch?v={source_id}"
    downloader_timeout_s: float = 180.0

    # Asset areas
    data_dir: str = "/tmp/video-api"
    output_url_prefix: str = "/videos"
    serve_outputs: bool = True

    @property
    def cache_dir(self) -> Path:
        return Path(self.data_dir) / "video-cache"

    @property
    def temp_dir(self) -> Path:
        return Path(self.data_dir) / "video-tmp"

    @property
    def output_dir(self) -> Path:
        return Path(self.data_dir) / "videos"

    # Limits
    max_cached_sources: int = 5
    max_json_body_bytes: int = 30 * 1024 * 1024  # two full-frame PNGs for podcast wipe
    max_chunk_bytes: int = 5 * 1024 * 1024
    max_upload_bytes: int = 200 * 1024 * 1024
    default_overlay_duration_s: float = 10
    max_overlay_duration_s: float = 120
    default_podcast_duration_s: float = 900
    max_podcast_duration_s: float = 7200
    default_gif_duration_s: float = 10
    max_gif_duration_s: float = 30
    # 0 = unbounded; podcast renders always use a single slot
    overlay_max_concurrency: int = 0

    # Retention / housekeeping (seconds)
    output_retention_s: float = 10 * 60
    podcast_output_retention_s: float = 15 * 60
    temp_retention_s: float = 30 * 60
    abandon_timeout_s: float = 2 * 60
    downloaded_delete_delay_s: float = 2 * 60
    sweep_interval_s: float = 60

    # Encoder presets
    overlay_fps: int = 30
    overlay_crf: int = 23
    overlay_audio_bitrate: str = "128k"
    podcast_fps: int = 24
    podcast_crf: int = 22
    podcast_audio_bitrate: str = "192k"
    gif_fps: int = 24

    # Outbound HTTP
    image_proxy_timeout_s: float = 10.0
    gif_fetch_timeout_s: float = 15.0
    user_agent: str = "Mozilla/5.0"


@lru_cache
def get_settings() -> Settings:
    return Settings()
