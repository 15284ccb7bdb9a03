"""
Configuration Settings
======================
Centralized configuration for the pipeline using environment variables.
"""

import os
from typing import List
from pathlib import Path
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Try multiple locations for .env file
env_paths = [
    Path(__file__).parent.parent.parent / ".env",  # Root of project
    Path.cwd() / ".env",  # Current working directory
]

env_loaded = False
for env_path in env_paths:
    if env_path.exists():
        load_dotenv(dotenv_path=env_path, override=True)
        print(f"[OK] Loaded .env from: {env_path}")
        env_loaded = True
        break

if not env_loaded:
    print("[WARNING] No .env file found, using environment variables from system")


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application Info
    APP_NAME: str = "CoverCompass Document-to-Decision API"
    APP_DESCRIPTION: str = "AI extraction, comparison and ranking of insurance quotes and policy wordings"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"

    # OpenAI Configuration
    OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
    AI_MODEL: str = os.getenv("AI_MODEL", "gpt-4o-mini")
    # Comma separated, tried in order once retries on the primary model are exhausted
    AI_FALLBACK_MODELS: str = os.getenv("AI_FALLBACK_MODELS", "gpt-4o")
    AI_TIMEOUT_SECONDS: float = float(os.getenv("AI_TIMEOUT_SECONDS", "90"))
    AI_MAX_RETRIES: int = int(os.getenv("AI_MAX_RETRIES", "3"))
    AI_RETRY_BASE_DELAY: float = float(os.getenv("AI_RETRY_BASE_DELAY", "1.0"))

    # AI Processing Settings
    MAX_TOKENS: int = 4096
    COMPARISON_MAX_TOKENS: int = 8192
    TEMPERATURE: float = 0.1  # Low temperature for consistent extraction
    MAX_DOCUMENT_CHARS: int = int(os.getenv("MAX_DOCUMENT_CHARS", "120000"))
    EXTRACTION_SCHEMA_VERSION: str = os.getenv("EXTRACTION_SCHEMA_VERSION", "v3")

    # Document Fetch Settings
    MAX_FILE_SIZE: int = 20 * 1024 * 1024  # 20MB
    MAX_FILE_SIZE_MB: int = 20  # 20MB for display
    SIGNED_URL_TTL_SECONDS: int = int(os.getenv("SIGNED_URL_TTL_SECONDS", "300"))
    FETCH_TIMEOUT_SECONDS: float = float(os.getenv("FETCH_TIMEOUT_SECONDS", "60"))

    # Object Storage (Supabase)
    SUPABASE_URL: str = os.getenv("SUPABASE_URL", "")
    SUPABASE_SERVICE_ROLE_KEY: str = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
    STORAGE_BUCKET: str = os.getenv("STORAGE_BUCKET", "documents")

    # Comparison Settings
    REQUIRE_COVERAGE_SECTIONS: bool = os.getenv("REQUIRE_COVERAGE_SECTIONS", "true").lower() == "true"

    # CORS Settings
    CORS_ORIGINS: List[str] = ["*"]

    # Persistence Settings
    ENABLE_STORAGE: bool = os.getenv("ENABLE_STORAGE", "false").lower() == "true"
    # Try MONGO_URI first, then MONGODB_URL
    MONGODB_URL: str = os.getenv("MONGO_URI") or os.getenv("MONGODB_URL", "mongodb://localhost:27017")
    MONGODB_DATABASE: str = os.getenv("MONGODB_DATABASE") or os.getenv("MONGO_DB_NAME", "covercompass")

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"

    @property
    def model_chain(self) -> List[str]:
        """Primary model followed by the configured fallbacks, without duplicates."""
        chain = [self.AI_MODEL]
        for model in self.AI_FALLBACK_MODELS.split(","):
            model = model.strip()
            if model and model not in chain:
                chain.append(model)
        return chain


# Create global settings instance
settings = Settings()

if settings.DEBUG:
    print("\n" + "=" * 60)
    print("CONFIGURATION DEBUG INFO:")
    print("=" * 60)
    print(f"MONGODB_DATABASE: {settings.MONGODB_DATABASE}")
    print(f"SUPABASE_URL: {settings.SUPABASE_URL or 'NOT SET'}")
    print(f"OPENAI_API_KEY: {'SET' if settings.OPENAI_API_KEY else 'NOT SET'}")
    print(f"AI_MODEL: {settings.AI_MODEL} (chain: {' -> '.join(settings.model_chain)})")
    print("=" * 60 + "\n")
