from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Proof-of-Listening policy
    POL_THRESHOLD: float = Field(0.9, gt=0, le=1)
    POL_CHEAT_GAP_SECONDS: float = Field(5.0, gt=0)
    POL_PER_SAMPLE_CAP_SECONDS: float = Field(1.0, gt=0)
    POL_CAP_TOLERANCE_SECONDS: float = Field(0.5, ge=0)

    # Claim relay
    CLAIM_BASE_URL: Optional[str] = None
    CLAIM_TOKEN: Optional[str] = None
    AUTO_CLAIM_ENABLED: bool = False

    # Adapters
    POLL_INTERVAL_SECONDS: float = Field(0.25, gt=0)

    # System
    LOG_LEVEL: str = "INFO"
    DRY_RUN: bool = False
    HTTP_SERVER_HOST: str = "0.0.0.0"
    HTTP_SERVER_PORT: int = 8080
    HTTP_SERVER_TOKEN: Optional[str] = None
    REQUEST_TIMEOUT_SECONDS: int = 30

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

settings = Settings()
