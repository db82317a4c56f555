from datetime import datetime

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from pydantic import BaseModel, Field
from sqlmodel import Session

from planai.api.deps import get_orchestrator
from planai.api.errors import failure_exception
from planai.database import get_session
from planai.models.voice_note import VoiceNote
from planai.services.classifier import Classification
from planai.services.ingestion import (
    IngestionOrchestrator,
    IngestionResult,
    VoiceNoteRepository,
    decode_analysis,
)
from planai.store.entities import Project, Task

router = APIRouter(prefix="/voice-notes", tags=["voice-notes"])


# --- Pydantic models ---


class TranscriptionRequest(BaseModel):
    transcription: str = Field(min_length=1, max_length=10000)


class VoiceNoteResponse(BaseModel):
    id: str
    transcription: str
    ai_analysis: dict | None
    processed: bool
    audio_filename: str
    created_at: datetime


class FailureResponse(BaseModel):
    stage: str
    reason: str
    message: str
    retry_after: float | None = None


class TaskErrorResponse(BaseModel):
    title: str
    message: str


class IngestionResponse(BaseModel):
    stage: str
    transcription: str
    voice_note_id: str | None = None
    classification: Classification | None = None
    project: Project | None = None
    tasks: list[Task] = []
    task_errors: list[TaskErrorResponse] = []
    failure: FailureResponse | None = None


def note_response(note: VoiceNote) -> VoiceNoteResponse:
    return VoiceNoteResponse(
        id=note.id,
        transcription=note.transcription,
        ai_analysis=decode_analysis(note),
        processed=note.processed,
        audio_filename=note.audio_filename,
        created_at=note.created_at,
    )


def ingestion_response(result: IngestionResult) -> IngestionResponse:
    failure = None
    if result.failure:
        failure = FailureResponse(
            stage=result.failure.stage.value,
            reason=result.failure.reason,
            message=result.failure.message,
            retry_after=result.failure.retry_after,
        )
    return IngestionResponse(
        stage=result.stage.value,
        transcription=result.transcription,
        voice_note_id=result.voice_note_id,
        classification=result.classification,
        project=result.project,
        tasks=result.tasks,
        task_errors=[TaskErrorResponse(title=e.title, message=e.message) for e in result.task_errors],
        failure=failure,
    )


def _finish(result: IngestionResult) -> IngestionResponse:
    if result.failure:
        raise failure_exception(
            result.failure.reason,
            result.failure.message,
            result.failure.retry_after,
            stage=result.failure.stage.value,
        )
    return ingestion_response(result)


# --- Endpoints ---


@router.post("", response_model=IngestionResponse, status_code=201)
async def upload_voice_note(
    audio: UploadFile = File(...),
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
):
    """Transcribe an uploaded recording and turn it into a task or project."""
    data = await audio.read()
    result = await orchestrator.ingest_audio(
        data,
        filename=audio.filename or "recording.webm",
        content_type=audio.content_type or "audio/webm",
    )
    return _finish(result)


@router.post("/transcription", response_model=IngestionResponse, status_code=201)
async def submit_transcription(
    body: TranscriptionRequest,
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
):
    """Classify text that was transcribed on the client."""
    return _finish(await orchestrator.ingest_transcription(body.transcription))


@router.get("", response_model=list[VoiceNoteResponse])
async def list_voice_notes(db: Session = Depends(get_session)):
    """The ten most recent voice notes."""
    return [note_response(note) for note in VoiceNoteRepository(db).list_recent()]


@router.get("/{note_id}", response_model=VoiceNoteResponse)
async def get_voice_note(note_id: str, db: Session = Depends(get_session)):
    note = VoiceNoteRepository(db).get(note_id)
    if not note:
        raise HTTPException(status_code=404, detail="Voice note not found")
    return note_response(note)
