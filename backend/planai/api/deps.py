from fastapi import Depends
from sqlmodel import Session
from starlette.requests import HTTPConnection

from planai.api.settings import AIConfig, load_ai_config
from planai.database import get_session
from planai.services.analysis import AnalysisRunner
from planai.services.classifier import ClassificationAdapter
from planai.services.ingestion import IngestionOrchestrator, VoiceNoteRepository
from planai.services.providers import ChatProvider, ProviderKind, build_chat_provider
from planai.services.transcription import OpenAITranscriber
from planai.store.entity_store import EntityStore


def get_store(conn: HTTPConnection) -> EntityStore:
    """The process-wide entity store created at startup."""
    return conn.app.state.store


def get_ai_config(db: Session = Depends(get_session)) -> AIConfig:
    return load_ai_config(db)


def get_chat_provider(config: AIConfig = Depends(get_ai_config)) -> ChatProvider:
    endpoint = config.custom_endpoint if config.provider == ProviderKind.CUSTOM else ""
    return build_chat_provider(
        config.provider,
        config.model,
        api_key=config.api_key(config.provider),
        endpoint=endpoint,
    )


def get_transcriber(config: AIConfig = Depends(get_ai_config)) -> OpenAITranscriber | None:
    key = config.api_key(ProviderKind.OPENAI)
    if not key:
        return None
    return OpenAITranscriber(api_key=key)


def get_orchestrator(
    store: EntityStore = Depends(get_store),
    db: Session = Depends(get_session),
    provider: ChatProvider = Depends(get_chat_provider),
    transcriber: OpenAITranscriber | None = Depends(get_transcriber),
) -> IngestionOrchestrator:
    return IngestionOrchestrator(
        store=store,
        voice_notes=VoiceNoteRepository(db),
        classifier=ClassificationAdapter(provider),
        transcriber=transcriber,
    )


def get_analysis_runner(
    store: EntityStore = Depends(get_store),
    config: AIConfig = Depends(get_ai_config),
) -> AnalysisRunner:
    return AnalysisRunner(
        store,
        provider=config.provider.value,
        model=config.model,
        endpoint=config.analysis_endpoint,
        features=config.enabled_features,
    )
