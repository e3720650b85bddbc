import json
from functools import lru_cache

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "Mockify Render API"
    app_version: str = "0.1.0"

    # CORS - stored as string, parsed via computed property
    cors_origins_raw: str = "http://localhost:5173,http://localhost:8080,http://localhost:3000"

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

    # File Upload
    max_upload_size_mb: int = 200
    allowed_image_types: list[str] = ["image/png", "image/jpeg", "image/gif", "image/webp"]
    allowed_video_types: list[str] = ["video/mp4", "video/webm", "video/quicktime"]

    # Local storage
    upload_dir: str = "/tmp/mockify/uploads"
    render_output_dir: str = "/tmp/mockify/renders"

    # FFmpeg
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    # Render loop
    render_fps: int = 30
    render_default_duration_s: float = 5.0
    render_preview_duration_s: float = 3.0  # 90 frames at 30fps
    # Wall-clock ceiling for one encode, regardless of source length
    render_safety_timeout_s: float = 20.0

    # Job retention (in-memory store)
    job_retention_seconds: int = 86400

    # Remote render backend. Empty = local rendering only.
    remote_render_url: str = ""
    remote_submit_timeout_s: float = 10.0
    remote_status_timeout_s: float = 5.0
    remote_health_timeout_s: float = 3.0

    # Caller-side polling defaults (see client.polling.PollPolicy)
    poll_interval_s: float = 2.0
    poll_max_attempts: int = 120
    poll_max_transient_errors: int = 3


@lru_cache
def get_settings() -> Settings:
    return Settings()
