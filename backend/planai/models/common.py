from datetime import datetime

from sqlmodel import Field, SQLModel


class StoreSlot(SQLModel, table=True):
    __tablename__ = "store_slots"

    name: str = Field(primary_key=True)
    version: int
    payload: str = Field(default="{}")  # JSON
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class AISettingsRecord(SQLModel, table=True):
    __tablename__ = "ai_settings"

    id: int | None = Field(default=None, primary_key=True)
    provider: str  # "openai" | "anthropic" | "local" | "custom"
    model: str
    custom_endpoint: str = Field(default="")
    analysis_endpoint: str = Field(default="")
    analysis_frequency: str = Field(default="weekly")
    enabled_features: str = Field(default="{}")  # JSON
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class ApiKey(SQLModel, table=True):
    __tablename__ = "api_keys"

    id: int | None = Field(default=None, primary_key=True)
    provider: str = Field(unique=True, index=True)
    encrypted_key: str
    created_at: datetime = Field(default_factory=datetime.utcnow)
