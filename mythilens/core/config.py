from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional

class Settings(BaseSettings):
    PROJECT_NAME: str = "MythiLens"
    VERSION: str = "0.3.0"
    BRIEF_DESCRIPTION: str = "Heritage discovery, contribution moderation and reputation service for MythiLens."

    ENV: str = Field("development", description="Application environment (e.g., production, development)")
    LOG_LEVEL: str = Field("INFO", description="Root log level")

    # --- Profile store ---
    ENABLE_REDIS: bool = Field(False, description="Use Redis for user profiles instead of process memory")
    REDIS_URL: Optional[str] = Field(None, description="Redis URL for the profile store")

    # --- External model API ---
    LLM_API_URL: Optional[str] = Field(None, description="Endpoint of the structured-output model API")
    LLM_API_KEY: Optional[str] = Field(None, description="Bearer key for the model API")
    LLM_TIMEOUT: float = 30.0  # seconds
    LLM_MAX_RETRIES: int = 2
    LLM_INITIAL_BACKOFF: float = 1.0  # seconds

    # --- Discovery ---
    DEFAULT_SEARCH_RADIUS_KM: float = 5.0
    MAX_SEARCH_RADIUS_KM: float = 500.0
    MAX_RECOMMENDATIONS: int = 20

    # --- Reputation ---
    DEFAULT_REPUTATION_SCORE: int = 50
    LEADERBOARD_SIZE: int = 50
    CONTRIBUTION_HISTORY_SIZE: int = Field(50, description="Submissions kept per user, newest first")
    ADMIN_TOKEN: Optional[str] = Field(None, description="Shared secret for reputation adjustments")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore"
    )

settings = Settings()
