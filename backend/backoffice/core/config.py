"""
Application Configuration

Everything is read from environment variables (or a local ``.env``) once at
import time; ``settings`` is the shared instance.
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List
import warnings

INSECURE_SECRET_KEYS = {
    "dev-only-secret-key-replace-before-deploying-anywhere",
    "secret-key",
    "change-me",
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Application
    APP_NAME: str = "Back-office API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./backoffice.db"

    # Auth
    SECRET_KEY: str = "dev-only-secret-key-replace-before-deploying-anywhere"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 1440

    # Rate limiting, requests per window per client
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_LOGIN: int = 5
    RATE_LIMIT_REGISTER: int = 3
    RATE_LIMIT_LIFECYCLE: int = 60
    RATE_LIMIT_DEFAULT: int = 100

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000"

    # Invoicing
    INVOICE_DUE_DAYS: int = 30

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        value = value.upper()
        if value not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level '{value}'")
        return value

    @field_validator("INVOICE_DUE_DAYS")
    @classmethod
    def non_negative_due_days(cls, value: int) -> int:
        if value < 0:
            raise ValueError("INVOICE_DUE_DAYS cannot be negative")
        return value

    @property
    def cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def database_url(self) -> str:
        """DATABASE_URL, accepting ``file:<path>`` as shorthand for SQLite"""
        if self.DATABASE_URL.startswith("file:"):
            return f"sqlite:///{self.DATABASE_URL[5:]}"
        return self.DATABASE_URL

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    def validate_security_settings(self):
        """Refuse to start in production with a weak key or DEBUG on; warn elsewhere."""
        problems = []
        if self.SECRET_KEY in INSECURE_SECRET_KEYS:
            problems.append("SECRET_KEY is a placeholder value")
        elif len(self.SECRET_KEY) < 32:
            problems.append("SECRET_KEY is shorter than 32 characters")
        if self.DEBUG and self.is_production:
            problems.append("DEBUG is enabled")

        if problems and self.is_production:
            raise ValueError("Insecure production configuration: " + "; ".join(problems))
        for problem in problems:
            warnings.warn(problem, UserWarning)
        return not problems


settings = Settings()
