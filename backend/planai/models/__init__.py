from planai.models.common import AISettingsRecord, ApiKey, StoreSlot
from planai.models.voice_note import VoiceNote

__all__ = [
    "AISettingsRecord",
    "ApiKey",
    "StoreSlot",
    "VoiceNote",
]
