"""
Application configuration with environment variables.
"""
from pydantic_settings import BaseSettings
from pydantic import ConfigDict, Field, field_validator
from typing import Optional, List


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "Pendamping Care API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    SECRET_KEY: str = "your-secret-key-change-in-production"

    # Database
    POSTGRES_USER: str = "pendamping"
    POSTGRES_PASSWORD: str = "pendamping"
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: str = "5432"
    POSTGRES_DB: str = "pendamping"
    DATABASE_URL: Optional[str] = Field(default=None, validate_default=True)

    # Redis
    REDIS_URL: str = "redis://redis:6379/0"

    # JWT Settings
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:5173", "http://localhost:3000"]

    # =========================================
    # Routing
    # =========================================

    # Version tag stored in routing_metadata so decisions can be replayed
    ROUTING_VERSION: str = "1.0"
    # Consultant schedules are entered in local wall-clock time
    ROUTING_TIMEZONE: str = "UTC"
    # Row-lock candidate consultants while routing (Postgres only)
    ROUTING_LOCK_CANDIDATES: bool = False
    RESPONSE_TIME_WINDOW_DAYS: int = 30
    DEFAULT_RESPONSE_HOURS: float = 24.0

    # =========================================
    # Crisis handling
    # =========================================

    CRISIS_KEYWORDS: List[str] = [
        "bunuh diri",
        "ingin mati",
        "mengakhiri hidup",
        "tidak ingin hidup",
    ]
    CRISIS_HOTLINE_NAME: str = "Hotline Kesehatan Jiwa"
    CRISIS_HOTLINE_NUMBER: str = "119"
    # Critical keyword alerts are acknowledged by the first admin automatically
    CRISIS_AUTO_ESCALATE: bool = True

    # Demo seeding - MUST be false in production
    SEED_DEMO: bool = False

    @field_validator('DATABASE_URL', mode='before')
    @classmethod
    def assemble_db_url(cls, v: Optional[str], info) -> str:
        if isinstance(v, str) and v:
            return v

        data = info.data
        user = data.get("POSTGRES_USER", "pendamping")
        password = data.get("POSTGRES_PASSWORD", "pendamping")
        host = data.get("POSTGRES_HOST", "postgres")
        port = data.get("POSTGRES_PORT", "5432")
        db = data.get("POSTGRES_DB", "pendamping")

        return f"postgresql://{user}:{password}@{host}:{port}/{db}"

    @field_validator('SECRET_KEY')
    @classmethod
    def validate_secret_key(cls, v: str, info) -> str:
        """Reject weak SECRET_KEY in production, warn in development."""
        weak_keys = {
            "your-secret-key-change-in-production",
            "change-me-in-production",
            "secret",
            "changeme",
        }
        is_weak = v in weak_keys or len(v) < 32
        if is_weak:
            debug = info.data.get("DEBUG", False)
            if not debug:
                raise ValueError(
                    "SECRET_KEY is weak or default. "
                    "Generate a strong key with: openssl rand -hex 32"
                )
            import warnings
            warnings.warn(
                "SECRET_KEY is weak or default! Set a strong key before deploying.",
                UserWarning,
                stacklevel=2,
            )
        return v

    @field_validator('SEED_DEMO')
    @classmethod
    def validate_seed_demo(cls, v: bool, info) -> bool:
        """Prevent demo seeding in production."""
        if v and not info.data.get("DEBUG", False):
            raise ValueError(
                "SEED_DEMO=true is not allowed when DEBUG=false. "
                "Demo seeding creates predictable accounts."
            )
        return v

    @field_validator('ROUTING_TIMEZONE')
    @classmethod
    def validate_routing_timezone(cls, v: str) -> str:
        """Fail at startup rather than on the first routing call."""
        from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown ROUTING_TIMEZONE: {v}")
        return v


settings = Settings()
