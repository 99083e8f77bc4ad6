# flagengine/config.py
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Logging configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level for application (INFO, DEBUG, ERROR)"
    )

    # Feature payload loaded at startup
    features_path: Optional[str] = Field(
        default=None,
        description="Path to a JSON feature payload published on startup"
    )

    # Key for encrypted payloads
    decryption_key: Optional[str] = Field(
        default=None,
        description="Base64 AES-128 key used to decrypt encryptedFeatures / encryptedSavedGroups"
    )

    # Evaluation switches
    enabled: bool = Field(
        default=True,
        description="When false, no subject is ever enrolled in an experiment"
    )
    qa_mode: bool = Field(
        default=False,
        description="Suppress experiment assignment (forced variations still apply)"
    )
    sticky_bucketing: bool = Field(
        default=True,
        description="Persist and honor previous experiment assignments"
    )

    class Config:
        env_file = ".env"
        case_sensitive = False

# Instantiate settings once
settings: Settings = Settings()
