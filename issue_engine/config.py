"""Application configuration."""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://localhost:5432/issue_engine"

    # Application
    APP_ENV: str = "development"
    API_V1_PREFIX: str = "/api"
    LOG_LEVEL: str = "INFO"

    # Frontend
    FRONTEND_URL: str = "http://localhost:3000"

    # OpenAI
    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-4o"
    OPENAI_MAX_TOKENS: int = 1000
    OPENAI_TEMPERATURE: float = 0.3

    # AI pattern detection
    AI_DETECTION_ENABLED: bool = True
    AI_TIMEOUT_SECONDS: float = 10.0
    AI_SAMPLE_SIZE: int = 5  # Records per collection sent to the model

    # Detection scheduler
    ENABLE_ISSUE_DETECTION: bool = True
    DETECTION_INTERVAL_MINUTES: int = 15
    DETECTION_PASS_TIMEOUT_SECONDS: float = 300.0

    # "redetect": resolved/dismissed alerts may be raised again
    # "suppress": resolved/dismissed alerts block re-detection permanently
    REDETECTION_POLICY: str = "redetect"

    # CORS
    @property
    def ALLOWED_ORIGINS(self) -> List[str]:
        if self.APP_ENV == "development":
            return ["*"]
        return [self.FRONTEND_URL]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True
    )


settings = Settings()
