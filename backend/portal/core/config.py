from pydantic_settings import BaseSettings
from typing import List, Any
import json


def parse_cors_origins(v: Any) -> List[str]:
    """Parse CORS origins from string or list"""
    if isinstance(v, list):
        return v
    if isinstance(v, str):
        # Try JSON parsing first
        if v.startswith('['):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        # Fall back to comma-separated
        return [origin.strip() for origin in v.split(',') if origin.strip()]
    return []


class Settings(BaseSettings):
    """Application settings - all configurable via environment variables"""

    # ==========================================
    # Application
    # ==========================================
    APP_NAME: str = "PVM BCA"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    API_VERSION: str = "v1"

    # Server Configuration
    SERVER_HOST: str = "0.0.0.0"
    SERVER_PORT: int = 8000

    # ==========================================
    # Database (document store)
    # ==========================================
    DATABASE_URL: str = "sqlite+aiosqlite:///./portal.db"
    DB_ECHO: bool = False

    # ==========================================
    # Redis
    # ==========================================
    REDIS_URL: str = ""  # Empty means rate limits and guard cache stay in process memory

    # ==========================================
    # CORS (stored as comma-separated string, parsed to list)
    # ==========================================
    CORS_ORIGINS_STR: str = "http://localhost:3000,http://localhost:5173,http://127.0.0.1:5173"

    @property
    def CORS_ORIGINS(self) -> List[str]:
        """Parse CORS origins from comma-separated string"""
        return parse_cors_origins(self.CORS_ORIGINS_STR)

    # ==========================================
    # Rate Limiting (slowapi, per client)
    # ==========================================
    RATE_LIMIT_PER_MINUTE: int = 120
    BACKUP_RATE_LIMIT: str = "5/minute"
    GUARD_ACTIVITY_RATE_LIMIT: str = "120/minute"

    # ==========================================
    # Access Guard
    # ==========================================
    GUARD_ENABLED: bool = True
    GUARD_CACHE_BACKEND: str = "memory"  # "memory" or "redis"
    GUARD_CACHE_PREFIX: str = "guard:"
    GUARD_CACHE_TTL_SECONDS: int = 86400  # 24 hours
    GUARD_SESSION_COOKIE: str = "portal_guard_sid"
    GUARD_SESSION_IDLE_SECONDS: int = 1800  # 30 minutes without a request
    GUARD_SWEEP_INTERVAL_SECONDS: int = 60
    ADMIN_PATH_PREFIX: str = "/admin"

    # ==========================================
    # Admin access
    # ==========================================
    ADMIN_API_TOKEN: str = ""  # Empty disables the token check (development)

    # ==========================================
    # Backup / Restore
    # ==========================================
    BACKUP_FILENAME_PREFIX: str = "pvm-backup"
    MAX_UPLOAD_SIZE: int = 52428800  # 50MB

    # ==========================================
    # Logging
    # ==========================================
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields in .env that aren't defined in Settings

    @property
    def guard_uses_redis(self) -> bool:
        """Redis-backed guard cache is only used when a Redis URL is configured"""
        return self.GUARD_CACHE_BACKEND == "redis" and bool(self.REDIS_URL)


# Create settings instance
settings = Settings()
