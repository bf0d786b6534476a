import httpx
import pytest

from ent_scribe.core.errors import TranscriptionBackendError
from ent_scribe.models.domain import AudioSegment, Empty, Fatal, Ignorable, Text
from ent_scribe.services.chunk_transcriber import ChunkTranscriber, classify_failure
from tests.fakes import FakeAdapter


def segment(size: int, sequence: int = 0) -> AudioSegment:
    return AudioSegment(data=b"\x00" * size, mime_type="audio/webm", sequence=sequence)


async def test_zero_byte_chunk_is_empty_without_a_backend_call():
    adapter = FakeAdapter(text="should not be used")
    outcome = await ChunkTranscriber(adapter).transcribe(segment(0))

    assert outcome == Empty()
    assert adapter.calls == []


async def test_chunk_below_threshold_is_empty_without_a_backend_call():
    adapter = FakeAdapter(text="should not be used")
    outcome = await ChunkTranscriber(adapter).transcribe(segment(999))

    assert outcome == Empty()
    assert adapter.calls == []


async def test_chunk_at_threshold_is_sent():
    adapter = FakeAdapter(text="  Patient reports left ear pain. ")
    outcome = await ChunkTranscriber(adapter, language="en").transcribe(segment(1000))

    assert outcome == Text("Patient reports left ear pain.")
    assert adapter.calls[0]["mime_type"] == "audio/webm"
    assert adapter.calls[0]["language"] == "en"
    assert len(adapter.calls[0]["audio"]) == 1000


async def test_whitespace_only_text_is_empty():
    outcome = await ChunkTranscriber(FakeAdapter(text="  \n ")).transcribe(segment(5000))
    assert outcome == Empty()


async def test_short_audio_rejection_is_ignorable():
    error = TranscriptionBackendError("Audio too short to transcribe", status_code=422, provider="fake")
    outcome = await ChunkTranscriber(FakeAdapter(error=error)).transcribe(segment(5000))

    assert isinstance(outcome, Ignorable)
    assert outcome.reason == "Audio too short to transcribe"


async def test_server_error_is_fatal_with_status():
    error = TranscriptionBackendError("internal error", status_code=500, provider="fake")
    outcome = await ChunkTranscriber(FakeAdapter(error=error)).transcribe(segment(5000))

    assert outcome == Fatal("internal error", 500)


async def test_transport_error_is_fatal():
    error = httpx.ConnectError("connection refused")
    outcome = await ChunkTranscriber(FakeAdapter(error=error)).transcribe(segment(5000))

    assert isinstance(outcome, Fatal)
    assert outcome.provider_status is None


@pytest.mark.parametrize(
    "status, message, expected",
    [
        (422, "Audio too short to transcribe", Ignorable),
        (415, "Unsupported file format", Ignorable),
        (400, "Could not decode audio file", Ignorable),
        (400, "Invalid file format. Supported formats: flac, m4a, mp3", Ignorable),
        (400, "invalid api key", Fatal),
        (400, "No audio provided", Fatal),
        (401, "audio too short", Fatal),
        (500, "empty response", Fatal),
        (None, "audio too short", Fatal),
    ],
)
def test_classify_failure(status, message, expected):
    assert isinstance(classify_failure(status, message), expected)


def test_classify_failure_is_case_insensitive():
    assert isinstance(classify_failure(400, "AUDIO FILE IS EMPTY"), Ignorable)


async def test_vocabulary_is_deduplicated_and_capped():
    terms = ["tympanostomy", "Tympanostomy", "  septoplasty ", ""] + [f"term-{i}" for i in range(200)]
    adapter = FakeAdapter(text="ok")
    transcriber = ChunkTranscriber(adapter, vocabulary=terms, max_vocabulary_terms=100)

    await transcriber.transcribe(segment(5000))

    sent = adapter.calls[0]["vocabulary"]
    assert len(sent) == 100
    assert sent[:2] == ["tympanostomy", "septoplasty"]
