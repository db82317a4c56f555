import asyncio
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from planai.api.deps import get_orchestrator
from planai.api.voice_notes import ingestion_response
from planai.services.ingestion import AudioCapture, IngestionOrchestrator, IngestionStage

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws/voice-notes")
async def voice_note_stream(
    websocket: WebSocket,
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
):
    """Record a voice note over a socket.

    Binary frames are audio chunks. The text frame ``stop`` ends the
    recording and runs the pipeline, ``cancel`` discards it. Every stage
    transition is pushed as ``{"type": "stage"}`` and the outcome as
    ``{"type": "result"}``.
    """
    await websocket.accept()
    capture = AudioCapture(
        filename=websocket.query_params.get("filename", "recording.webm"),
        content_type=websocket.query_params.get("content_type", "audio/webm"),
    )

    async def push_stage(stage: IngestionStage) -> None:
        await websocket.send_json({"type": "stage", "stage": stage.value})

    orchestrator.on_stage = push_stage
    pipeline = asyncio.create_task(orchestrator.ingest_capture(capture))

    while not capture.finished:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            logger.info("Voice note socket closed while recording")
            orchestrator.on_stage = None
            capture.cancel()
            await pipeline
            return
        if message.get("bytes"):
            capture.feed(message["bytes"])
        elif message.get("text") == "stop":
            capture.stop()
        elif message.get("text") == "cancel":
            capture.cancel()

    result = await pipeline
    payload = ingestion_response(result).model_dump(mode="json")
    try:
        await websocket.send_json({"type": "result", **payload})
        await websocket.close()
    except WebSocketDisconnect:
        logger.info(f"Voice note socket closed before the result was sent (stage {result.stage.value})")
