import os
from typing import Optional


class Settings:

    MONGODB_URL: Optional[str] = os.getenv("MONGODB_URL")
    MONGODB_DB: str = os.getenv("MONGODB_DB", "property_chat")
    REDIS_URL: Optional[str] = os.getenv("REDIS_URL")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # seconds a scope waits before re-establishing after both query paths failed
    RESUBSCRIBE_DELAY_SECONDS: float = float(os.getenv("RESUBSCRIBE_DELAY_SECONDS", "2.0"))
    MAX_SNAPSHOT_SIZE: int = int(os.getenv("MAX_SNAPSHOT_SIZE", "5000"))
    SUMMARY_PREVIEW_LENGTH: int = int(os.getenv("SUMMARY_PREVIEW_LENGTH", "200"))


settings = Settings()
