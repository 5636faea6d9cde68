"""
Speech-to-text for audio cards.

Downloads the audio file from its (storage) URL with httpx and hands the
bytes to the AI gateway's transcription endpoint.
"""

from urllib.parse import urlparse

import httpx
import structlog

from cardflow.core.config import settings
from cardflow.services.ai.gateway import AIGateway
from cardflow.services.retry_utils import with_retries

logger = structlog.get_logger()

# Whisper-style endpoints reject uploads above 25 MB
MAX_AUDIO_BYTES = 25 * 1024 * 1024


class TranscriptionError(Exception):
    """Audio could not be downloaded or transcribed."""

    pass


class TranscriptionService:
    def __init__(
        self,
        gateway: AIGateway,
        client: httpx.AsyncClient | None = None,
        max_bytes: int = MAX_AUDIO_BYTES,
    ):
        self.gateway = gateway
        self._client = client
        self.max_bytes = max_bytes
        self.log = logger.bind(service="TranscriptionService")

    async def _download(self, url: str) -> bytes:
        client = self._client or httpx.AsyncClient(timeout=settings.fetch_timeout)
        try:
            async with client.stream("GET", url, follow_redirects=True) as response:
                response.raise_for_status()

                declared = response.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > self.max_bytes:
                    raise TranscriptionError(f"Audio too large ({declared} bytes)")

                chunks: list[bytes] = []
                received = 0
                async for chunk in response.aiter_bytes():
                    received += len(chunk)
                    if received > self.max_bytes:
                        raise TranscriptionError(f"Audio exceeds {self.max_bytes} bytes")
                    chunks.append(chunk)
                return b"".join(chunks)
        finally:
            if self._client is None:
                await client.aclose()

    async def transcribe(self, url: str, mime_type: str | None = None) -> str:
        """
        Transcribe the audio at ``url``.

        Raises:
            TranscriptionError: On download failure or an empty transcript
            NoProviderAvailableError: If every AI provider failed
        """
        try:
            audio = await with_retries(self._download, url, max_attempts=3)
        except httpx.HTTPError as e:
            raise TranscriptionError(f"Audio download failed: {e}") from e

        filename = urlparse(url).path.rsplit("/", 1)[-1] or "audio"
        generation = await self.gateway.transcribe(audio, filename, mime_type)
        transcript = generation.value.strip()
        if not transcript:
            raise TranscriptionError("Empty transcript")

        self.log.info("audio_transcribed", chars=len(transcript), provider=generation.provider)
        return transcript
