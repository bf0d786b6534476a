"""
Speech-to-Text Service
One adapter per transcription provider. Every adapter returns plain text and
raises TranscriptionBackendError on failure; classification happens upstream.
"""

import asyncio
import io
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Sequence
import httpx
import assemblyai as aai
from openai import AsyncOpenAI, APIConnectionError, APIStatusError
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from ent_scribe.config import Settings, TranscriptionProvider, settings
from ent_scribe.core.errors import ConfigurationError, TranscriptionBackendError
from ent_scribe.core.logging import get_logger, audit_logger
from ent_scribe.services.audio_processor import audio_processor

logger = get_logger(__name__)

# Transport-level failures worth another attempt; status errors are never retried
RETRYABLE_EXCEPTIONS = (httpx.TimeoutException, httpx.NetworkError)


def normalize_vocabulary(terms: Optional[Iterable[str]], limit: int = 100) -> List[str]:
    """Strips, de-duplicates (case-insensitive, first wins) and caps vocabulary hints."""
    seen = set()
    normalized = []
    for term in terms or []:
        cleaned = (term or "").strip()
        key = cleaned.lower()
        if not cleaned or key in seen:
            continue
        seen.add(key)
        normalized.append(cleaned)
        if len(normalized) >= limit:
            break
    return normalized


def join_utterances(texts: Iterable[Optional[str]]) -> str:
    return " ".join(text.strip() for text in texts if text and text.strip())


def normalize_deepgram_response(payload: Dict[str, Any]) -> str:
    """Primary alternative when non-blank, otherwise the utterance transcripts."""
    results = payload.get("results") or {}
    primary = ""
    channels = results.get("channels") or []
    if channels:
        alternatives = channels[0].get("alternatives") or []
        if alternatives:
            primary = (alternatives[0].get("transcript") or "").strip()
    if primary:
        return primary
    return join_utterances(u.get("transcript") for u in results.get("utterances") or [])


def _log_retry(retry_state):
    logger.warning(f"Retrying transcription request, attempt {retry_state.attempt_number}...")


class TranscriptionAdapter(ABC):
    """Provider-specific request/response handling behind one contract."""

    provider: str = "unknown"
    model: str = ""

    @abstractmethod
    async def transcribe(
        self,
        audio: bytes,
        mime_type: str,
        language: str,
        vocabulary: Sequence[str] = (),
    ) -> str:
        """Returns the transcript text, or raises TranscriptionBackendError."""


class OpenAITranscriptionAdapter(TranscriptionAdapter):
    """Whisper transcription through the OpenAI audio API."""

    provider = "openai"

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "whisper-1",
        timeout: int = 60,
        max_retries: int = 3,
        client: Optional[AsyncOpenAI] = None,
    ):
        if client is None and not api_key:
            raise ConfigurationError("OpenAI API key is not configured (OPENAI_API_KEY).")
        self.model = model
        self.client = client or AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=max_retries)

    async def transcribe(self, audio, mime_type, language, vocabulary=()):
        request: Dict[str, Any] = {
            "file": (audio_processor.filename_for(mime_type), audio, mime_type),
            "model": self.model,
            "language": language,
        }
        if vocabulary:
            # Whisper has no keyword boosting; a prompt biases spelling instead
            request["prompt"] = ", ".join(vocabulary)

        start = time.time()
        try:
            response = await self.client.audio.transcriptions.create(**request)
        except APIStatusError as e:
            self._audit(e.status_code, start)
            raise TranscriptionBackendError(
                _openai_error_message(e), status_code=e.status_code, provider=self.provider
            ) from e
        except APIConnectionError as e:
            self._audit(None, start)
            raise TranscriptionBackendError(f"OpenAI connection failed: {e}", provider=self.provider) from e

        self._audit(200, start)
        return (response.text or "").strip()

    def _audit(self, status: Optional[int], start: float):
        audit_logger.log_external_api_call(
            service=self.provider,
            endpoint="audio/transcriptions",
            response_status=status,
            response_time_ms=int((time.time() - start) * 1000),
        )


def _openai_error_message(exc: APIStatusError) -> str:
    body = exc.body
    if isinstance(body, dict):
        inner = body.get("error", body)
        if isinstance(inner, dict) and inner.get("message"):
            return str(inner["message"])
    return exc.message


class DeepgramTranscriptionAdapter(TranscriptionAdapter):
    """Deepgram pre-recorded transcription over its REST API."""

    provider = "deepgram"

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "nova-3",
        base_url: str = "https://api.deepgram.com",
        timeout: int = 60,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        if not api_key:
            raise ConfigurationError("Deepgram API key is not configured (DEEPGRAM_API_KEY).")
        self.api_key = api_key
        self.model = model
        self.endpoint = f"{base_url.rstrip('/')}/v1/listen"
        self.timeout = timeout
        self._client = http_client

    @retry(
        wait=wait_exponential(multiplier=1, min=1, max=8),
        stop=stop_after_attempt(3),
        retry=retry_if_exception_type(RETRYABLE_EXCEPTIONS),
        reraise=True,
        before_sleep=_log_retry,
    )
    async def _post(self, audio: bytes, mime_type: str, params: List[tuple]) -> httpx.Response:
        headers = {
            "Authorization": f"Token {self.api_key}",
            "Content-Type": audio_processor.base_content_type(mime_type) or "application/octet-stream",
        }
        if self._client is not None:
            return await self._client.post(self.endpoint, params=params, headers=headers, content=audio)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(self.endpoint, params=params, headers=headers, content=audio)

    async def transcribe(self, audio, mime_type, language, vocabulary=()):
        params = [
            ("model", self.model),
            ("language", language),
            ("smart_format", "true"),
            ("punctuate", "true"),
            ("utterances", "true"),
        ]
        params.extend(("keyterm", term) for term in vocabulary)

        start = time.time()
        try:
            response = await self._post(audio, mime_type, params)
        except httpx.HTTPError as e:
            self._audit(None, start)
            raise TranscriptionBackendError(f"Deepgram request failed: {e}", provider=self.provider) from e

        self._audit(response.status_code, start)
        if response.status_code >= 400:
            raise TranscriptionBackendError(
                _deepgram_error_message(response), status_code=response.status_code, provider=self.provider
            )
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            raise TranscriptionBackendError(
                "Malformed Deepgram response", status_code=response.status_code, provider=self.provider
            )
        return normalize_deepgram_response(payload)

    def _audit(self, status: Optional[int], start: float):
        audit_logger.log_external_api_call(
            service=self.provider,
            endpoint="v1/listen",
            response_status=status,
            response_time_ms=int((time.time() - start) * 1000),
        )


def _deepgram_error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"Deepgram returned status {response.status_code}"
    if isinstance(body, dict):
        for key in ("err_msg", "message", "error"):
            if body.get(key):
                return str(body[key])
    return f"Deepgram returned status {response.status_code}"


class AssemblyAITranscriptionAdapter(TranscriptionAdapter):
    """AssemblyAI transcription through its (synchronous) SDK."""

    provider = "assemblyai"
    model = "universal"

    def __init__(self, api_key: Optional[str], base_url: str = "https://api.assemblyai.com"):
        if not api_key:
            raise ConfigurationError("AssemblyAI API key is not configured (ASSEMBLYAI_API_KEY).")
        aai.settings.api_key = api_key
        aai.settings.base_url = base_url
        logger.info(f"Configured AssemblyAI client to use base URL: {base_url}")

    def _transcribe_sync(self, audio: bytes, language: str, vocabulary: Sequence[str]) -> aai.Transcript:
        config_params: Dict[str, Any] = {"language_code": language, "punctuate": True, "format_text": True}
        if vocabulary:
            config_params["word_boost"] = list(vocabulary)
        transcriber = aai.Transcriber(config=aai.TranscriptionConfig(**config_params))
        return transcriber.transcribe(io.BytesIO(audio))

    async def transcribe(self, audio, mime_type, language, vocabulary=()):
        start = time.time()
        try:
            # The SDK blocks while polling; keep it off the event loop
            transcript = await asyncio.to_thread(self._transcribe_sync, audio, language, vocabulary)
        except (aai.types.AssemblyAIError, httpx.HTTPError) as e:
            self._audit(None, start)
            raise TranscriptionBackendError(f"AssemblyAI request failed: {e}", provider=self.provider) from e

        if transcript.status == aai.TranscriptStatus.error:
            self._audit(400, start)
            # A failed transcript job means the submitted audio was rejected
            raise TranscriptionBackendError(
                transcript.error or "AssemblyAI transcription failed", status_code=400, provider=self.provider
            )

        self._audit(200, start)
        logger.info(f"AssemblyAI transcript created with ID: {transcript.id}")
        text = (transcript.text or "").strip()
        if text:
            return text
        return join_utterances(utt.text for utt in transcript.utterances or [])

    def _audit(self, status: Optional[int], start: float):
        audit_logger.log_external_api_call(
            service=self.provider,
            endpoint="v2/transcript",
            response_status=status,
            response_time_ms=int((time.time() - start) * 1000),
        )


def build_transcription_adapter(config: Settings = settings) -> TranscriptionAdapter:
    """Selects the adapter for the configured provider. Raises ConfigurationError before any network call."""
    try:
        provider = TranscriptionProvider(config.transcription_provider)
    except ValueError as e:
        raise ConfigurationError(f"Unknown transcription provider: {config.transcription_provider}") from e

    if provider == TranscriptionProvider.OPENAI:
        return OpenAITranscriptionAdapter(
            api_key=config.openai_api_key,
            model=config.openai_transcription_model,
            timeout=config.stt_timeout,
            max_retries=config.max_retries,
        )
    if provider == TranscriptionProvider.DEEPGRAM:
        return DeepgramTranscriptionAdapter(
            api_key=config.deepgram_api_key,
            model=config.deepgram_model,
            base_url=config.deepgram_base_url,
            timeout=config.stt_timeout,
        )
    if provider == TranscriptionProvider.ASSEMBLYAI:
        return AssemblyAITranscriptionAdapter(
            api_key=config.assemblyai_api_key,
            base_url=config.assemblyai_base_url,
        )

    from ent_scribe.client import RemoteTranscriptionAdapter, ScribeApiClient
    return RemoteTranscriptionAdapter(ScribeApiClient(config.scribe_api_base_url, timeout=config.stt_timeout))
