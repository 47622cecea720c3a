from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    APP_NAME: str = "savepast-offline"
    APP_ENV: str = "local"
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str = "sqlite+pysqlite:///./savepast.db"
    # Production databases are migrated with alembic instead.
    DB_CREATE_ALL: bool = True

    # Origin the gateway proxies to, and where the remote functions live.
    UPSTREAM_BASE_URL: str = "http://localhost:5173"
    FUNCTIONS_BASE_URL: str = "http://localhost:8888/.netlify/functions"

    # Partition names are f"{CACHE_PREFIX}{role}-{CACHE_VERSION}".
    # Bump CACHE_VERSION whenever STATIC_ASSETS changes.
    CACHE_PREFIX: str = "savethepast-"
    CACHE_VERSION: str = "v1.0.0"

    STATIC_ASSETS: list[str] = [
        "/",
        "/index.html",
        "/manifest.json",
        "/logo-32.png",
        "/logo-64.png",
        "/logo-192.png",
        "/logo-512.png",
        "/offline.html",
    ]
    API_PREFIXES: list[str] = ["/api/", "/.netlify/functions/"]
    STATIC_EXTENSIONS: list[str] = [
        ".js",
        ".css",
        ".png",
        ".jpg",
        ".jpeg",
        ".gif",
        ".svg",
        ".webp",
        ".woff",
        ".woff2",
        ".ttf",
        ".eot",
    ]
    SHELL_PATH: str = "/index.html"
    OFFLINE_PAGE_PATH: str = "/offline.html"

    # None means no deadline beyond the transport's own handling.
    NETWORK_TIMEOUT_S: float | None = None
    FUNCTIONS_TIMEOUT_S: float | None = None

    SKIP_WAITING_ON_INSTALL: bool = True

    QUEUE_MAX_RETRIES: int = 3

    WAS_OFFLINE_WINDOW_S: float = 5.0
    CONNECTIVITY_PROBE_URL: str | None = None  # defaults to UPSTREAM_BASE_URL
    CONNECTIVITY_PROBE_TIMEOUT_S: float = 3.0
    # 0 disables the polling loop; transitions then only come from clients.
    CONNECTIVITY_POLL_INTERVAL_S: float = 15.0

    CONTROL_TOKEN: str = "change-me-control-token"
    AUTH_DISABLED: bool = False

    REDIS_URL: str = "redis://localhost:6379/0"
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"
    CELERY_TASK_ALWAYS_EAGER: bool = False

    MINIO_ENDPOINT: str = "localhost:9000"
    MINIO_ACCESS_KEY: str = "minioadmin"
    MINIO_SECRET_KEY: str = "minioadmin"
    MINIO_BUCKET: str = "savepast"
    MINIO_SECURE: bool = False
    LOCAL_OBJECT_STORE_DIR: str = "./.object_store"

    class Config:
        env_file = ".env"
        extra = "ignore"

    def partition_name(self, role: str) -> str:
        return f"{self.CACHE_PREFIX}{role}-{self.CACHE_VERSION}"


settings = Settings()
