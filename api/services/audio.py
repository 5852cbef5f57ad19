import logging
from enum import Enum
from typing import Iterable, NamedTuple, Optional, Tuple

import aiohttp

from lib.error_handler import ProviderUnavailableError

logger = logging.getLogger(__name__)

class TranscriptionStatus(str, Enum):
    OK = 'ok'
    TOO_LARGE = 'too_large'
    UNSUPPORTED = 'unsupported'
    FAILED = 'failed'

class TranscriptionResult(NamedTuple):
    status: TranscriptionStatus
    text: str = ''

TOO_LARGE_SENTINEL = "audio too large"

class _TooLarge(Exception):
    pass

class AudioService:
    """Downloads an attached recording and turns it into text."""

    CHUNK_SIZE = 64 * 1024

    def __init__(
        self,
        transcriber,
        supported_types: Iterable[str],
        max_bytes: int = 25 * 1024 * 1024,
        timeout_seconds: float = 30.0,
        auth: Optional[Tuple[str, str]] = None
    ):
        self.transcriber = transcriber
        self.supported_types = {t.lower() for t in supported_types}
        self.max_bytes = max_bytes
        self.timeout_seconds = timeout_seconds
        self.auth = auth
        logger.info(f"Audio service initialized, ceiling {max_bytes} bytes, {len(self.supported_types)} types")

    def is_supported(self, content_type: Optional[str]) -> bool:
        if not content_type:
            return False
        return content_type.split(';')[0].strip().lower() in self.supported_types

    async def transcribe(self, url: str, content_type: Optional[str]) -> TranscriptionResult:
        """Download and transcribe one attachment"""
        if not self.is_supported(content_type):
            logger.warning(f"Rejecting attachment with unsupported content type: {content_type}")
            return TranscriptionResult(TranscriptionStatus.UNSUPPORTED)

        try:
            audio_data = await self._download_audio(url)
        except _TooLarge:
            logger.warning(f"Audio at {url} exceeds {self.max_bytes} bytes")
            return TranscriptionResult(TranscriptionStatus.TOO_LARGE, TOO_LARGE_SENTINEL)
        except Exception as e:
            logger.error(f"Error downloading audio: {str(e)}")
            return TranscriptionResult(TranscriptionStatus.FAILED)

        try:
            text = await self.transcriber.transcribe(
                audio_data,
                extension=self._get_extension_from_content_type(content_type)
            )
        except ProviderUnavailableError as e:
            logger.error(f"Error transcribing audio: {str(e)}")
            return TranscriptionResult(TranscriptionStatus.FAILED)

        if not text:
            logger.warning("Transcription came back empty")
            return TranscriptionResult(TranscriptionStatus.FAILED)
        return TranscriptionResult(TranscriptionStatus.OK, text)

    async def _download_audio(self, url: str) -> bytes:
        logger.info("Downloading audio file...")
        auth = None
        if self.auth and all(self.auth):
            auth = aiohttp.BasicAuth(login=self.auth[0], password=self.auth[1])

        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url, auth=auth) as response:
                if response.status != 200:
                    raise ProviderUnavailableError(f"Audio download returned {response.status}")
                if response.content_length is not None and response.content_length > self.max_bytes:
                    raise _TooLarge()
                audio_data = await self._read_limited(response)

        logger.info(f"Audio file downloaded: {len(audio_data)} bytes")
        return audio_data

    async def _read_limited(self, response) -> bytes:
        """Read the body, stopping as soon as the ceiling is passed"""
        buffer = bytearray()
        async for chunk in response.content.iter_chunked(self.CHUNK_SIZE):
            buffer.extend(chunk)
            if len(buffer) > self.max_bytes:
                raise _TooLarge()
        return bytes(buffer)

    def _get_extension_from_content_type(self, content_type: str) -> str:
        """Convert content type to file extension"""
        content_type_map = {
            'audio/wav': 'wav',
            'audio/x-wav': 'wav',
            'audio/mp3': 'mp3',
            'audio/mpeg': 'mp3',
            'audio/mpga': 'mpga',
            'audio/mp4': 'mp4',
            'audio/m4a': 'm4a',
            'audio/ogg': 'ogg',
            'audio/webm': 'webm',
        }
        extension = content_type_map.get(content_type.split(';')[0].strip().lower())
        if not extension:
            logger.warning(f"Unknown content type: {content_type}, defaulting to wav")
            return 'wav'
        return extension
