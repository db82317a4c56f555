"""Speech-to-text through the OpenAI audio transcription endpoint."""

import logging

import openai
from openai import AsyncOpenAI

from planai.config import settings
from planai.services.errors import (
    AIServiceError,
    ProviderNotConfiguredError,
    TranscriptionError,
    UpstreamResponseError,
    translate_openai_error,
)
from planai.services.providers import with_retries

logger = logging.getLogger(__name__)


class OpenAITranscriber:
    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        timeout: float | None = None,
        base_url: str | None = None,
    ):
        self.api_key = api_key
        self.model = model or settings.transcription_model
        self.timeout = timeout if timeout is not None else settings.ai_timeout
        self.base_url = base_url

    def _client(self) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=self.api_key,
            base_url=self.base_url,
            timeout=self.timeout,
            max_retries=0,
        )

    async def _transcribe_once(self, audio: bytes, filename: str, content_type: str) -> str:
        try:
            result = await self._client().audio.transcriptions.create(
                model=self.model,
                file=(filename, audio, content_type),
            )
        except openai.OpenAIError as exc:
            error = translate_openai_error(exc)
            # 429, 402 and 401 keep their own reason
            if isinstance(error, UpstreamResponseError):
                error = TranscriptionError(f"Transcription rejected: {error.detail}")
            raise error from exc
        return (result.text or "").strip()

    async def transcribe(
        self,
        audio: bytes,
        filename: str = "recording.webm",
        content_type: str = "audio/webm",
    ) -> str:
        if not self.api_key:
            raise ProviderNotConfiguredError("OpenAI API key not configured for transcription")
        if not audio:
            raise TranscriptionError("No audio captured")
        logger.info(f"Transcribing {len(audio)} bytes with {self.model}")
        try:
            return await with_retries(
                lambda: self._transcribe_once(audio, filename, content_type),
                operation="transcription",
            )
        except AIServiceError:
            logger.warning(f"Transcription of {filename} failed")
            raise
