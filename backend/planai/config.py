from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///planai.db"
    encryption_key: str = "change-me-in-production"
    log_level: str = "INFO"

    # Entity store slot
    store_slot: str = "devtracker-storage"
    store_version: int = 1

    # AI collaborators
    ai_provider: str = "openai"  # "openai" | "anthropic" | "local" | "custom"
    ai_model: str = "gpt-4o-mini"
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    custom_endpoint: str = ""
    local_endpoint: str = "http://localhost:11434/v1"
    analysis_endpoint: str = ""
    transcription_model: str = "whisper-1"
    ai_timeout: float = 20.0
    ai_max_attempts: int = 3
    ai_retry_backoff: float = 0.5

    class Config:
        env_prefix = "PLANAI_"


settings = Settings()
