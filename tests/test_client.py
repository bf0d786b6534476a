import json

import httpx
import pytest

from ent_scribe.client import RemoteNoteGenerator, RemoteTranscriptionAdapter, ScribeApiClient
from ent_scribe.core.errors import GenerationFailure, TranscriptionBackendError
from ent_scribe.models.domain import AudioSegment, Fatal, Ignorable, PatientInfo
from ent_scribe.services.chunk_transcriber import ChunkTranscriber
from ent_scribe.services.note_builder import NoteRequestBuilder
from tests.fakes import TEMPLATE


def api_client(handler) -> ScribeApiClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ScribeApiClient("http://scribe.local/", http_client=http_client)


async def test_transcribe_posts_multipart_audio():
    seen = {}

    def handler(request: httpx.Request):
        seen["request"] = request
        return httpx.Response(200, json={"text": " Throat is red. "})

    adapter = RemoteTranscriptionAdapter(api_client(handler))
    text = await adapter.transcribe(b"wav-bytes", "audio/wav", "en")

    request = seen["request"]
    assert text == "Throat is red."
    assert str(request.url) == "http://scribe.local/v1/transcribe"
    assert request.headers["Content-Type"].startswith("multipart/form-data")
    body = request.read()
    assert b'name="audio"; filename="audio.wav"' in body
    assert b"wav-bytes" in body


async def test_server_rejection_keeps_status_for_classification():
    def handler(request):
        return httpx.Response(422, json={"error": "Transcription failed", "details": "Audio too short"})

    adapter = RemoteTranscriptionAdapter(api_client(handler))
    with pytest.raises(TranscriptionBackendError) as excinfo:
        await adapter.transcribe(b"x", "audio/wav", "en")
    assert excinfo.value.status_code == 422
    assert excinfo.value.message == "Transcription failed: Audio too short"

    outcome = await ChunkTranscriber(adapter, min_chunk_bytes=1).transcribe(
        AudioSegment(data=b"x", mime_type="audio/wav", sequence=3)
    )
    assert isinstance(outcome, Ignorable)


async def test_unreachable_server_is_a_backend_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TranscriptionBackendError) as excinfo:
        await RemoteTranscriptionAdapter(api_client(handler)).transcribe(b"x", "audio/wav", "en")
    assert excinfo.value.status_code is None


async def test_generate_sends_camel_case_patient_fields():
    seen = {}

    def handler(request: httpx.Request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"note": "ASSESSMENT:\nAcute sinusitis."})

    request = NoteRequestBuilder().build("pressure over the cheeks", TEMPLATE, PatientInfo(name="Jane Doe", dob="1980"))
    note = await RemoteNoteGenerator(api_client(handler)).generate(request)

    assert note == "ASSESSMENT:\nAcute sinusitis."
    assert seen["body"] == {
        "transcript": "pressure over the cheeks",
        "template": TEMPLATE.content,
        "patientName": "Jane Doe",
        "patientDob": "1980",
    }


async def test_generate_failure_carries_request():
    def handler(request):
        return httpx.Response(500, json={"error": "Note generation failed"})

    request = NoteRequestBuilder().build("ok", TEMPLATE)
    with pytest.raises(GenerationFailure) as excinfo:
        await RemoteNoteGenerator(api_client(handler)).generate(request)
    assert excinfo.value.message == "Note generation failed"
    assert excinfo.value.request == request


async def test_generate_empty_note_is_a_failure():
    def handler(request):
        return httpx.Response(200, json={"note": ""})

    with pytest.raises(GenerationFailure):
        await RemoteNoteGenerator(api_client(handler)).generate(NoteRequestBuilder().build("ok", TEMPLATE))


async def test_missing_audio_rejection_is_fatal():
    def handler(request):
        return httpx.Response(400, json={"error": "No audio provided"})

    adapter = RemoteTranscriptionAdapter(api_client(handler))
    outcome = await ChunkTranscriber(adapter, min_chunk_bytes=1).transcribe(
        AudioSegment(data=b"x", mime_type="audio/wav", sequence=0)
    )
    assert outcome == Fatal("No audio provided", 400)


async def test_transcribe_non_json_success_is_a_backend_error():
    def handler(request):
        return httpx.Response(200, text="<html>proxy login</html>")

    with pytest.raises(TranscriptionBackendError) as excinfo:
        await RemoteTranscriptionAdapter(api_client(handler)).transcribe(b"x", "audio/wav", "en")
    assert excinfo.value.status_code == 200
    assert excinfo.value.message == "Malformed scribe server response"


async def test_generate_non_json_success_is_a_failure():
    def handler(request):
        return httpx.Response(200, json=["ASSESSMENT:"])

    request = NoteRequestBuilder().build("ok", TEMPLATE)
    with pytest.raises(GenerationFailure) as excinfo:
        await RemoteNoteGenerator(api_client(handler)).generate(request)
    assert excinfo.value.message == "Malformed scribe server response"
    assert excinfo.value.request == request
