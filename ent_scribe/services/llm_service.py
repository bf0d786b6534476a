"""
LLM Service for clinical note generation
"""
import time
from abc import ABC, abstractmethod
from typing import Optional
import httpx
from openai import AsyncOpenAI, APIConnectionError, APIStatusError, APITimeoutError, OpenAIError
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception

from ent_scribe.config import Settings, ModelName, settings
from ent_scribe.core.errors import ConfigurationError, GenerationFailure
from ent_scribe.core.logging import get_logger, audit_logger
from ent_scribe.models.domain import NoteRequest
from ent_scribe.services.prompts import SCRIBE_SYSTEM_PROMPT, build_user_message

logger = get_logger(__name__)

# Define which exceptions should trigger a retry
retryable_exceptions = (
    APITimeoutError,
    APIConnectionError,
)


def is_server_error(exception):
    """Return True if the exception is an OpenAI 5xx error"""
    return isinstance(exception, APIStatusError) and exception.status_code >= 500


def is_retryable(exception):
    """Timeouts, dropped connections and 5xx responses are worth another attempt"""
    return isinstance(exception, retryable_exceptions) or is_server_error(exception)


class NoteGenerator(ABC):
    """The note-generation collaborator: NoteRequest in, plain text note out."""

    @abstractmethod
    async def generate(self, request: NoteRequest) -> str:
        """Returns the note, or raises GenerationFailure."""


class OpenAINoteGenerator(NoteGenerator):
    """Generates notes with OpenAI chat completions."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = ModelName.GPT_4O.value,
        temperature: float = 0.2,
        max_tokens: int = 2000,
        timeout: int = 60,
        client: Optional[AsyncOpenAI] = None,
    ):
        if client is None and not api_key:
            raise ConfigurationError("OpenAI API key is not configured (OPENAI_API_KEY).")
        self.openai_client = client or AsyncOpenAI(api_key=api_key, timeout=timeout)
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "OpenAINoteGenerator":
        return cls(
            api_key=config.openai_api_key,
            model=config.default_llm_model,
            temperature=config.llm_temperature,
            max_tokens=config.llm_max_tokens,
            timeout=config.llm_timeout,
        )

    @retry(
        wait=wait_exponential(multiplier=1, min=2, max=60),
        stop=stop_after_attempt(3),
        retry=retry_if_exception(is_retryable),
        reraise=True,
    )
    async def _complete(self, messages) -> str:
        completion = await self.openai_client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        if not completion.choices:
            return ""
        return completion.choices[0].message.content or ""

    async def generate(self, request: NoteRequest) -> str:
        """
        Fill the template from the transcript with the LLM
        """
        logger.info(f"Starting note generation with model: {self.model}")
        messages = [
            {"role": "system", "content": SCRIBE_SYSTEM_PROMPT},
            {"role": "user", "content": build_user_message(request)},
        ]

        start = time.time()
        try:
            note = await self._complete(messages)
        except (OpenAIError, httpx.HTTPError) as e:
            self._audit(request, start, success=False)
            logger.error(f"Note generation failed: {e}", exc_info=True)
            raise GenerationFailure("Note generation failed", request=request) from e

        note = note.strip()
        self._audit(request, start, success=bool(note))
        if not note:
            logger.warning("Note backend returned an empty note")
            raise GenerationFailure("Note generation returned an empty note", request=request)

        logger.info("Note generation completed successfully.")
        return note

    def _audit(self, request: NoteRequest, start: float, success: bool):
        audit_logger.log_note_generation(
            model=self.model,
            transcript_chars=len(request.transcript),
            processing_time_ms=int((time.time() - start) * 1000),
            success=success,
        )
