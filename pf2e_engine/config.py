"""Application configuration using environment variables."""
import os
from functools import lru_cache
from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Application settings loaded from environment variables."""

    # Catalog directory; empty means the bundled sample catalog
    CATALOG_PATH: str = os.getenv("CATALOG_PATH", "")

    # Ruleset preset applied at startup (see core.rules_config.PRESET_CONFIGS)
    RULESET_PRESET: str = os.getenv("RULESET_PRESET", "remaster")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # Server
    HOST: str = os.getenv("HOST", "127.0.0.1")
    PORT: int = int(os.getenv("PORT", "8000"))
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"

    # CORS - Frontend URL
    FRONTEND_URL: str = os.getenv("FRONTEND_URL", "http://localhost:3000")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
