from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # -------------------------
    # App core settings
    # -------------------------
    APP_NAME: str = "Loan Desk Assistant"
    ENV: str = "dev"
    BANK_NAME: str = "TechBank Financial Services"
    FRONTEND_URL: str = "http://localhost:5173"

    # -------------------------
    # Session storage
    # -------------------------
    SESSION_BACKEND: str = "memory"  # "memory" | "sql"
    DATABASE_URL: str = "sqlite://"
    MAX_SESSIONS: Optional[int] = None
    SESSION_TTL_SECONDS: Optional[int] = None

    # -------------------------
    # Sanction letters
    # -------------------------
    DOWNLOADS_DIR: str = "downloads"
    PDF_TIMEOUT_SECONDS: float = 10.0

    # -------------------------
    # External integrations
    # -------------------------
    OPENROUTER_API_KEY: Optional[str] = None
    OPENROUTER_MODELS: List[str] = [
        "meta-llama/llama-3.3-70b-instruct:free",
        "mistralai/mistral-7b-instruct:free",
    ]
    LLM_PHRASING_ENABLED: bool = False
    LLM_TIMEOUT_SECONDS: float = 8.0

    # -------------------------
    # Pydantic v2 config
    # -------------------------
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )


# Singleton
settings = Settings()
