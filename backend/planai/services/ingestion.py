"""Voice note ingestion: capture, transcribe, classify, persist, fan out.

Each submission runs its own ``IngestionOrchestrator`` call and walks

    capturing -> transcribing -> classifying -> persisting -> done

Any stage can end in ``failed``, which is terminal: nothing is retried
across stages and a new recording has to be submitted. Failures come back
as an ``IngestionFailure`` on the result, never as a raised exception.
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from planai.models.voice_note import VoiceNote
from planai.services.classifier import Classification, ClassificationAdapter
from planai.services.errors import AIServiceError, ProviderNotConfiguredError, RateLimitError
from planai.store.entities import Project, Task
from planai.store.entity_store import EntityStore

logger = logging.getLogger(__name__)

RECENT_NOTES_LIMIT = 10


class IngestionStage(str, Enum):
    CAPTURING = "capturing"
    TRANSCRIBING = "transcribing"
    CLASSIFYING = "classifying"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


@dataclass
class IngestionFailure:
    stage: IngestionStage
    reason: str
    message: str
    retry_after: float | None = None


@dataclass
class TaskWriteError:
    title: str
    message: str


@dataclass
class IngestionResult:
    stage: IngestionStage = IngestionStage.CAPTURING
    transcription: str = ""
    voice_note_id: str | None = None
    classification: Classification | None = None
    project: Project | None = None
    tasks: list[Task] = field(default_factory=list)
    task_errors: list[TaskWriteError] = field(default_factory=list)
    failure: IngestionFailure | None = None

    @property
    def ok(self) -> bool:
        return self.stage == IngestionStage.DONE


class CaptureCancelled(Exception):
    pass


class AudioCapture:
    """Accumulates audio chunks until the recording is stopped or cancelled."""

    def __init__(self, filename: str = "recording.webm", content_type: str = "audio/webm"):
        self.filename = filename
        self.content_type = content_type
        self.cancelled = False
        self._chunks: list[bytes] = []
        self._finished = asyncio.Event()

    @property
    def finished(self) -> bool:
        return self._finished.is_set()

    @property
    def size(self) -> int:
        return sum(len(chunk) for chunk in self._chunks)

    def feed(self, chunk: bytes) -> None:
        if self.finished:
            raise RuntimeError("Recording already finished")
        self._chunks.append(chunk)

    def stop(self) -> None:
        self._finished.set()

    def cancel(self) -> None:
        self.cancelled = True
        self._chunks.clear()
        self._finished.set()

    async def wait(self) -> bytes:
        """Block until the stop event, then return the whole recording."""
        await self._finished.wait()
        if self.cancelled:
            raise CaptureCancelled("Recording cancelled")
        return b"".join(self._chunks)


class Transcriber(Protocol):
    async def transcribe(self, audio: bytes, filename: str, content_type: str) -> str: ...


class VoiceNoteRepository:
    def __init__(self, session: Session):
        self.session = session

    def record(
        self,
        transcription: str,
        classification: Classification | None,
        audio_filename: str = "",
    ) -> VoiceNote:
        """Write a processed note with its classification in one commit."""
        note = VoiceNote(
            transcription=transcription,
            ai_analysis=classification.model_dump_json() if classification else None,
            processed=classification is not None,
            audio_filename=audio_filename,
        )
        self.session.add(note)
        try:
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        self.session.refresh(note)
        return note

    def list_recent(self, limit: int = RECENT_NOTES_LIMIT) -> list[VoiceNote]:
        return list(
            self.session.exec(
                select(VoiceNote).order_by(VoiceNote.created_at.desc()).limit(limit)
            ).all()
        )

    def get(self, note_id: str) -> VoiceNote | None:
        return self.session.get(VoiceNote, note_id)


def decode_analysis(note: VoiceNote) -> dict | None:
    return json.loads(note.ai_analysis) if note.ai_analysis else None


StageListener = Callable[[IngestionStage], Awaitable[None]]


class IngestionOrchestrator:
    def __init__(
        self,
        store: EntityStore,
        voice_notes: VoiceNoteRepository,
        classifier: ClassificationAdapter,
        transcriber: Transcriber | None = None,
        on_stage: StageListener | None = None,
    ):
        self.store = store
        self.voice_notes = voice_notes
        self.classifier = classifier
        self.transcriber = transcriber
        self.on_stage = on_stage

    async def _enter(self, result: IngestionResult, stage: IngestionStage) -> None:
        result.stage = stage
        logger.info(f"Voice note ingestion: {stage.value}")
        if self.on_stage is None:
            return
        try:
            await self.on_stage(stage)
        except Exception:
            # the listener is a side channel; the submission still runs to the end
            logger.warning(f"Stage listener failed on {stage.value}, detaching it", exc_info=True)
            self.on_stage = None

    async def _fail(
        self,
        result: IngestionResult,
        reason: str,
        message: str,
        retry_after: float | None = None,
    ) -> IngestionResult:
        result.failure = IngestionFailure(result.stage, reason, message, retry_after)
        logger.warning(f"Voice note ingestion failed while {result.stage.value}: {reason}")
        await self._enter(result, IngestionStage.FAILED)
        return result

    async def _fail_upstream(self, result: IngestionResult, exc: AIServiceError) -> IngestionResult:
        retry_after = exc.retry_after if isinstance(exc, RateLimitError) else None
        return await self._fail(result, exc.reason, exc.user_message, retry_after)

    async def ingest_capture(self, capture: AudioCapture) -> IngestionResult:
        result = IngestionResult()
        await self._enter(result, IngestionStage.CAPTURING)
        try:
            audio = await capture.wait()
        except CaptureCancelled:
            return await self._fail(result, "cancelled", "The recording was cancelled.")
        return await self._transcribe(result, audio, capture.filename, capture.content_type)

    async def ingest_audio(
        self,
        audio: bytes,
        filename: str = "recording.webm",
        content_type: str = "audio/webm",
    ) -> IngestionResult:
        """Run an already stopped recording through the pipeline."""
        return await self._transcribe(IngestionResult(), audio, filename, content_type)

    async def ingest_transcription(self, text: str, audio_filename: str = "") -> IngestionResult:
        """Enter the pipeline with text that is already transcribed."""
        result = IngestionResult(stage=IngestionStage.CLASSIFYING, transcription=text.strip())
        return await self._classify(result, audio_filename)

    async def _transcribe(
        self, result: IngestionResult, audio: bytes, filename: str, content_type: str
    ) -> IngestionResult:
        await self._enter(result, IngestionStage.TRANSCRIBING)
        if self.transcriber is None:
            return await self._fail_upstream(
                result, ProviderNotConfiguredError("No transcription service configured")
            )
        if not audio:
            return await self._fail(result, "empty_recording", "The recording contains no audio.")
        try:
            text = await self.transcriber.transcribe(audio, filename, content_type)
        except AIServiceError as exc:
            return await self._fail_upstream(result, exc)
        result.transcription = text.strip()
        return await self._classify(result, filename)

    async def _classify(self, result: IngestionResult, audio_filename: str) -> IngestionResult:
        if not result.transcription:
            return await self._fail(
                result, "empty_transcription", "Nothing was said in the recording."
            )
        await self._enter(result, IngestionStage.CLASSIFYING)
        try:
            result.classification = await self.classifier.classify(result.transcription)
        except AIServiceError as exc:
            return await self._fail_upstream(result, exc)
        return await self._persist(result, audio_filename)

    async def _persist(self, result: IngestionResult, audio_filename: str) -> IngestionResult:
        await self._enter(result, IngestionStage.PERSISTING)
        classification = result.classification
        try:
            note = self.voice_notes.record(result.transcription, classification, audio_filename)
        except SQLAlchemyError:
            logger.exception("Could not save voice note")
            return await self._fail(result, "persistence_error", "The voice note could not be saved.")
        result.voice_note_id = note.id

        if classification.type == "task":
            try:
                result.tasks.append(self.store.add_task(self._task_fields(result, classification)))
            except (ValidationError, SQLAlchemyError):
                logger.exception(f"Could not create task for voice note {note.id}")
                return await self._fail(result, "persistence_error", "The task could not be saved.")
        else:
            try:
                result.project = self.store.add_project(self._project_fields(classification))
            except (ValidationError, SQLAlchemyError):
                logger.exception(f"Could not create project for voice note {note.id}")
                return await self._fail(result, "persistence_error", "The project could not be saved.")
            self._fan_out(result, classification)

        await self._enter(result, IngestionStage.DONE)
        return result

    def _fan_out(self, result: IngestionResult, classification: Classification) -> None:
        # A failed child write is reported, the project stays
        for title in classification.work_items:
            fields = {
                "title": title,
                "priority": classification.priority,
                "tags": classification.tags,
                "project_id": result.project.id,
                "created_from_voice": True,
                "original_note": result.transcription,
            }
            try:
                result.tasks.append(self.store.add_task(fields))
            except (ValidationError, SQLAlchemyError) as exc:
                logger.warning(f"Could not create task {title!r} for project {result.project.id}: {exc}")
                result.task_errors.append(TaskWriteError(title=title, message=str(exc)))

    @staticmethod
    def _task_fields(result: IngestionResult, classification: Classification) -> dict:
        return {
            "title": classification.title,
            "description": classification.description,
            "priority": classification.priority,
            "due_date": classification.due_date,
            "tags": classification.tags,
            "created_from_voice": True,
            "original_note": result.transcription,
        }

    @staticmethod
    def _project_fields(classification: Classification) -> dict:
        return {
            "title": classification.title,
            "description": classification.description,
            "priority": classification.priority,
            "status": "planning",
            "category": classification.category or "general",
            "due_date": classification.due_date.isoformat() if classification.due_date else "",
        }
