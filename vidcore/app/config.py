from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "VideoCore"
    app_env: str = "dev"
    log_level: str = "INFO"
    engine_log_level: str = ""  # e.g. DEBUG to see search rebuilds; empty = same as log_level

    database_url: str = "sqlite:///./data/app.db"
    # seconds a connection waits on a locked database before giving up
    sqlite_timeout: float = 30.0

    # engine tuning
    hotspot_bucket_width: int = 10
    related_limit: int = 5
    search_max_sessions: int = 1024  # per-viewer search sessions kept in memory
    first_video_id: int = 10001  # high-water mark; first issued id is this + 1

    # catalog / danmu validation
    max_danmu_length: int = 300
    min_video_duration: float = 10.0
    duration_epsilon: float = 1e-6


settings = Settings()
