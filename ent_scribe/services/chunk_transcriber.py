"""
Chunk transcription: one audio segment in, one classified outcome out
"""

from typing import Iterable, Optional, Sequence
import httpx

from ent_scribe.config import Settings, settings
from ent_scribe.core.errors import TranscriptionBackendError
from ent_scribe.core.logging import get_logger, audit_logger
from ent_scribe.models.domain import (
    AudioSegment, Empty, Fatal, Ignorable, Text, TranscriptionOutcome,
)
from ent_scribe.services.stt_service import (
    TranscriptionAdapter, build_transcription_adapter, normalize_vocabulary,
)

logger = get_logger(__name__)

MIN_CHUNK_BYTES = 1000

# Providers answer trailing audio slivers with one of these
IGNORABLE_STATUS_CODES = frozenset({400, 415, 422})
IGNORABLE_MESSAGE_PATTERNS = (
    "too short",
    "empty",
    "decode",
    "undecodable",
    "unsupported",
    "invalid file format",
    "invalid duration",
)


def classify_failure(status_code: Optional[int], message: str) -> TranscriptionOutcome:
    """Ignorable only when both the status and the message say the audio itself was unusable."""
    reason = message or "transcription failed"
    lowered = reason.lower()
    if status_code in IGNORABLE_STATUS_CODES and any(p in lowered for p in IGNORABLE_MESSAGE_PATTERNS):
        return Ignorable(reason)
    return Fatal(reason, status_code)


class ChunkTranscriber:
    """Sends segments to the configured backend and normalizes every result into an outcome.

    Never raises for backend trouble: failures come back as Ignorable or Fatal.
    Safe to call concurrently; it keeps no per-segment state.
    """

    def __init__(
        self,
        adapter: TranscriptionAdapter,
        language: str = "en",
        vocabulary: Optional[Iterable[str]] = None,
        min_chunk_bytes: int = MIN_CHUNK_BYTES,
        max_vocabulary_terms: int = 100,
    ):
        self.adapter = adapter
        self.language = language
        self.min_chunk_bytes = min_chunk_bytes
        self.vocabulary: Sequence[str] = normalize_vocabulary(vocabulary, limit=max_vocabulary_terms)

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "ChunkTranscriber":
        return cls(
            adapter=build_transcription_adapter(config),
            language=config.transcription_language,
            vocabulary=config.vocabulary_terms,
            min_chunk_bytes=config.min_chunk_bytes,
            max_vocabulary_terms=config.max_vocabulary_terms,
        )

    async def transcribe(self, segment: AudioSegment) -> TranscriptionOutcome:
        outcome = await self._transcribe(segment)
        audit_logger.log_chunk_outcome(sequence=segment.sequence, outcome=outcome.kind.value)
        return outcome

    async def _transcribe(self, segment: AudioSegment) -> TranscriptionOutcome:
        if segment.size == 0:
            return Empty()
        if segment.size < self.min_chunk_bytes:
            logger.debug(f"Skipping chunk {segment.sequence}: {segment.size} bytes is below threshold")
            return Empty()

        audit_logger.log_transcription_request(
            provider=self.adapter.provider,
            model=self.adapter.model,
            audio_size_bytes=segment.size,
            sequence=segment.sequence,
        )
        try:
            text = await self.adapter.transcribe(
                segment.data, segment.mime_type, self.language, self.vocabulary
            )
        except TranscriptionBackendError as e:
            outcome = classify_failure(e.status_code, e.message)
            if isinstance(outcome, Fatal):
                logger.error(
                    f"Chunk {segment.sequence} transcription failed",
                    provider=e.provider,
                    status=e.status_code,
                    reason=e.message,
                )
            else:
                logger.info(f"Chunk {segment.sequence} ignored: {e.message}")
            return outcome
        except httpx.HTTPError as e:
            logger.error(f"Chunk {segment.sequence} transport error: {e}")
            return Fatal(str(e))

        text = (text or "").strip()
        if not text:
            return Empty()
        return Text(text)
