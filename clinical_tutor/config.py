"""Configuration from .env file."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Oracle. Without a key the tutor still runs, evaluation reports "AI unavailable".
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o"
    ORACLE_TIMEOUT_SECONDS: float = 60.0

    # Remote store (Supabase REST). Both must be set, else local-only operation.
    SUPABASE_URL: str | None = None
    SUPABASE_KEY: str | None = None
    REMOTE_TIMEOUT_SECONDS: float = 15.0

    # Local store
    LOCAL_DATA_DIR: str = "data"
    STORAGE_NAMESPACE: str = "tutoroftalmo"

    STUDENT_REGISTRATION_CODE: str = "2026"
    ADMIN_REGISTRATION_CODE: str = "2317"

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def remote_configured(self) -> bool:
        url = (self.SUPABASE_URL or "").strip()
        key = (self.SUPABASE_KEY or "").strip()
        return bool(key) and url.startswith(("http://", "https://"))

    @property
    def oracle_configured(self) -> bool:
        return bool((self.OPENAI_API_KEY or "").strip())


settings = Settings()
