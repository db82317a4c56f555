"""Settings API endpoints: AI provider selection and API key management."""

import base64
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

from cryptography.fernet import Fernet, InvalidToken
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlmodel import Session, select

from planai.config import settings
from planai.database import get_session
from planai.models.common import AISettingsRecord, ApiKey
from planai.services.analysis import DEFAULT_FEATURES
from planai.services.providers import ProviderKind

router = APIRouter(prefix="/settings", tags=["settings"])

PROVIDERS = {kind.value for kind in ProviderKind}

AnalysisFrequency = Literal["manual", "daily", "weekly", "on-milestone"]


# --- Encryption helpers ---


def _get_fernet() -> Fernet | None:
    """Return Fernet instance if encryption_key is configured, else None."""
    key = settings.encryption_key
    if not key or key == "change-me-in-production":
        return None
    try:
        return Fernet(key.encode())
    except ValueError:
        return None


def encrypt_key(raw_key: str) -> str:
    """Encrypt an API key. Uses Fernet if available, else base64."""
    f = _get_fernet()
    if f:
        return f.encrypt(raw_key.encode()).decode()
    return base64.b64encode(raw_key.encode()).decode()


def decrypt_key(encrypted: str) -> str:
    """Decrypt an API key. Uses Fernet if available, else base64."""
    f = _get_fernet()
    if f:
        try:
            return f.decrypt(encrypted.encode()).decode()
        except InvalidToken:
            # stored before an encryption key was configured
            pass
    return base64.b64decode(encrypted.encode()).decode()


def mask_key(raw_key: str) -> str:
    """Mask an API key, showing only last 4 chars."""
    if len(raw_key) <= 4:
        return "****"
    return "*" * (len(raw_key) - 4) + raw_key[-4:]


# --- Runtime configuration ---


@dataclass
class AIConfig:
    provider: ProviderKind
    model: str
    custom_endpoint: str = ""
    analysis_endpoint: str = ""
    analysis_frequency: str = "weekly"
    enabled_features: dict = field(default_factory=lambda: dict(DEFAULT_FEATURES))
    api_keys: dict[str, str] = field(default_factory=dict)

    def api_key(self, provider: str | ProviderKind) -> str:
        return self.api_keys.get(ProviderKind(provider).value, "")


def _get_record(db: Session) -> AISettingsRecord | None:
    return db.exec(select(AISettingsRecord)).first()


def load_ai_config(db: Session) -> AIConfig:
    """Stored settings and keys, falling back to the environment."""
    api_keys = {
        ProviderKind.OPENAI.value: settings.openai_api_key,
        ProviderKind.ANTHROPIC.value: settings.anthropic_api_key,
    }
    for k in db.exec(select(ApiKey)).all():
        api_keys[k.provider] = decrypt_key(k.encrypted_key)

    record = _get_record(db)
    if record is None:
        return AIConfig(
            provider=ProviderKind(settings.ai_provider),
            model=settings.ai_model,
            custom_endpoint=settings.custom_endpoint,
            analysis_endpoint=settings.analysis_endpoint,
            api_keys=api_keys,
        )
    return AIConfig(
        provider=ProviderKind(record.provider),
        model=record.model,
        custom_endpoint=record.custom_endpoint or settings.custom_endpoint,
        analysis_endpoint=record.analysis_endpoint or settings.analysis_endpoint,
        analysis_frequency=record.analysis_frequency,
        enabled_features={**DEFAULT_FEATURES, **json.loads(record.enabled_features)},
        api_keys=api_keys,
    )


# --- Pydantic models ---


class FeatureToggles(BaseModel):
    projectOptimization: bool = True
    codeAnalysis: bool = True
    learningRecommendations: bool = True
    riskAssessment: bool = True
    predictiveAnalytics: bool = False


class AISettingsUpdate(BaseModel):
    provider: ProviderKind | None = None
    model: str | None = Field(default=None, min_length=1, max_length=100)
    custom_endpoint: str | None = None
    analysis_endpoint: str | None = None
    analysis_frequency: AnalysisFrequency | None = None
    enabled_features: FeatureToggles | None = None


class AISettingsResponse(BaseModel):
    provider: ProviderKind
    model: str
    custom_endpoint: str
    analysis_endpoint: str
    analysis_frequency: str
    enabled_features: dict


class ApiKeyCreate(BaseModel):
    provider: str
    key: str


class ApiKeyResponse(BaseModel):
    id: int
    provider: str
    masked_key: str
    created_at: datetime


def _settings_response(config: AIConfig) -> AISettingsResponse:
    return AISettingsResponse(
        provider=config.provider,
        model=config.model,
        custom_endpoint=config.custom_endpoint,
        analysis_endpoint=config.analysis_endpoint,
        analysis_frequency=config.analysis_frequency,
        enabled_features=config.enabled_features,
    )


# --- Endpoints ---


@router.get("/ai", response_model=AISettingsResponse)
async def get_ai_settings(db: Session = Depends(get_session)):
    return _settings_response(load_ai_config(db))


@router.put("/ai", response_model=AISettingsResponse)
async def update_ai_settings(body: AISettingsUpdate, db: Session = Depends(get_session)):
    """Partially update the AI settings; unset fields keep their value."""
    record = _get_record(db)
    if record is None:
        current = load_ai_config(db)
        record = AISettingsRecord(
            provider=current.provider.value,
            model=current.model,
            custom_endpoint=current.custom_endpoint,
            analysis_endpoint=current.analysis_endpoint,
            enabled_features=json.dumps(current.enabled_features),
        )

    changes = body.model_dump(exclude_unset=True)
    if changes.get("provider") is not None:
        record.provider = ProviderKind(changes["provider"]).value
    for name in ("model", "custom_endpoint", "analysis_endpoint", "analysis_frequency"):
        if changes.get(name) is not None:
            setattr(record, name, changes[name].strip() if name.endswith("endpoint") else changes[name])
    if body.enabled_features is not None:
        record.enabled_features = json.dumps(body.enabled_features.model_dump())
    record.updated_at = datetime.utcnow()

    db.add(record)
    db.commit()
    return _settings_response(load_ai_config(db))


@router.get("/api-keys", response_model=list[ApiKeyResponse])
async def list_api_keys(db: Session = Depends(get_session)):
    """List all stored API keys with masked values."""
    keys = db.exec(select(ApiKey)).all()
    result = []
    for k in keys:
        raw = decrypt_key(k.encrypted_key)
        result.append(
            ApiKeyResponse(
                id=k.id,
                provider=k.provider,
                masked_key=mask_key(raw),
                created_at=k.created_at,
            )
        )
    return result


@router.post("/api-keys", response_model=ApiKeyResponse, status_code=201)
async def add_or_update_api_key(body: ApiKeyCreate, db: Session = Depends(get_session)):
    """Add or update the API key for a provider."""
    if body.provider not in PROVIDERS:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported provider. Must be one of: {', '.join(sorted(PROVIDERS))}",
        )
    if not body.key or not body.key.strip():
        raise HTTPException(status_code=400, detail="API key cannot be empty")

    existing = db.exec(select(ApiKey).where(ApiKey.provider == body.provider)).first()
    encrypted = encrypt_key(body.key.strip())

    if existing:
        existing.encrypted_key = encrypted
        existing.created_at = datetime.utcnow()
        api_key = existing
    else:
        api_key = ApiKey(provider=body.provider, encrypted_key=encrypted)
    db.add(api_key)
    db.commit()
    db.refresh(api_key)

    raw = decrypt_key(api_key.encrypted_key)
    return ApiKeyResponse(
        id=api_key.id,
        provider=api_key.provider,
        masked_key=mask_key(raw),
        created_at=api_key.created_at,
    )


@router.delete("/api-keys/{key_id}")
async def delete_api_key(key_id: int, db: Session = Depends(get_session)):
    """Delete an API key."""
    api_key = db.get(ApiKey, key_id)
    if not api_key:
        raise HTTPException(status_code=404, detail="API key not found")
    db.delete(api_key)
    db.commit()
    return {"detail": "API key deleted"}
