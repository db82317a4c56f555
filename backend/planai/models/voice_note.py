from datetime import datetime
from uuid import uuid4

from sqlmodel import Field, SQLModel


class VoiceNote(SQLModel, table=True):
    __tablename__ = "voice_notes"

    id: str = Field(default_factory=lambda: uuid4().hex, primary_key=True)
    transcription: str
    ai_analysis: str | None = Field(default=None)  # JSON
    processed: bool = Field(default=False)
    audio_filename: str = Field(default="")
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
