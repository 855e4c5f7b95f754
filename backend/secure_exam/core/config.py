from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    port: int = 8000
    environment: str = "development"

    database_url: str = "sqlite+aiosqlite:///./secure_exam.db"
    database_echo: bool = False

    secret_key: str = "dev-jwt-secret-change-me"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24 * 7

    cors_origins_str: str = "http://localhost:5173,http://localhost:5174,http://localhost:3000"

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]

    # Anti-cheat
    default_tab_switch_limit: int = 3
    snapshot_interval_seconds: int = 30

    # Snapshot storage
    upload_base_dir: str = "./uploads"
    max_snapshot_size: int = 5 * 1024 * 1024

    redis_url: str = "redis://localhost:6379/0"
    redis_socket_timeout: float = 5.0

    # Rate limiting, per client over the window
    default_rate_limit: int = 200
    rate_limit_window_seconds: int = 15 * 60

    slow_request_threshold: float = 1.0

    # Live notifications
    live_queue_size: int = 256

    display_timezone: str = "UTC"
    timezone_display_format: str = "%d.%m.%Y, %H:%M:%S"

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
