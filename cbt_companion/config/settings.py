"""
Application settings and configuration management.
"""
from pydantic_settings import BaseSettings
from typing import Optional
from pydantic import model_validator


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Identity provider (Firebase Identity Toolkit REST API)
    FIREBASE_API_KEY: Optional[str] = None
    IDENTITY_BASE_URL: str = "https://identitytoolkit.googleapis.com/v1"
    SECURE_TOKEN_URL: str = "https://securetoken.googleapis.com/v1/token"
    IDENTITY_TIMEOUT: float = 10.0  # seconds

    # Claude API
    # Either CLAUDE_API_KEY, or ANTHROPIC_AUTH_TOKEN + ANTHROPIC_BASE_URL
    CLAUDE_API_KEY: Optional[str] = None
    ANTHROPIC_AUTH_TOKEN: Optional[str] = None
    ANTHROPIC_BASE_URL: Optional[str] = None
    MODEL_NAME: Optional[str] = None

    # Verification email resend
    RESEND_COOLDOWN_SECONDS: int = 60

    # Service
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"
    DEBUG: bool = False

    # CORS
    ALLOWED_ORIGINS: list = ["http://localhost:3000", "http://localhost:5173", "http://localhost"]

    @model_validator(mode='after')
    def validate_api_key(self):
        """At least one model credential must be configured"""
        if not self.CLAUDE_API_KEY and not self.ANTHROPIC_AUTH_TOKEN:
            raise ValueError(
                "One of CLAUDE_API_KEY or ANTHROPIC_AUTH_TOKEN must be configured"
            )
        return self

    class Config:
        env_file = ".env"
        case_sensitive = True


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the settings instance (created on first use)

    Returns:
        Settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
