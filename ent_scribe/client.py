"""
HTTP client for a remote ENT Scribe server

Lets a recorder on a workstation hand chunks and notes to a scribe server the
same way the browser recorder talks to the API.
"""

import time
from typing import Any, Dict, Optional, Sequence
import httpx

from ent_scribe.core.errors import GenerationFailure, TranscriptionBackendError
from ent_scribe.core.logging import get_logger, audit_logger
from ent_scribe.models.domain import NoteRequest
from ent_scribe.services.audio_processor import audio_processor
from ent_scribe.services.llm_service import NoteGenerator
from ent_scribe.services.stt_service import TranscriptionAdapter

logger = get_logger(__name__)


def _error_text(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if not isinstance(body, dict):
        return f"HTTP {response.status_code}"
    error = body.get("error") or f"HTTP {response.status_code}"
    details = body.get("details")
    return f"{error}: {details}" if details else str(error)


def _json_object(response: httpx.Response) -> Optional[Dict[str, Any]]:
    try:
        body = response.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


class ScribeApiClient:
    """Thin async wrapper around POST /v1/transcribe and POST /v1/generate."""

    def __init__(self, base_url: str, timeout: float = 60, http_client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = http_client

    async def _post(self, path: str, **kwargs) -> httpx.Response:
        url = f"{self.base_url}{path}"
        start = time.time()
        if self._client is not None:
            response = await self._client.post(url, **kwargs)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, **kwargs)
        audit_logger.log_external_api_call(
            service="ent-scribe",
            endpoint=path,
            response_status=response.status_code,
            response_time_ms=int((time.time() - start) * 1000),
        )
        return response

    async def transcribe(self, audio: bytes, mime_type: str) -> Dict[str, Any]:
        files = {"audio": (audio_processor.filename_for(mime_type), audio, mime_type)}
        response = await self._post("/v1/transcribe", files=files)
        if response.status_code >= 400:
            raise TranscriptionBackendError(_error_text(response), status_code=response.status_code, provider="remote")
        data = _json_object(response)
        if data is None or not isinstance(data.get("text") or "", str):
            raise TranscriptionBackendError(
                "Malformed scribe server response", status_code=response.status_code, provider="remote"
            )
        return data

    async def generate(
        self,
        transcript: str,
        template: str,
        patient_name: Optional[str] = None,
        patient_dob: Optional[str] = None,
    ) -> Dict[str, Any]:
        payload = {"transcript": transcript, "template": template}
        if patient_name:
            payload["patientName"] = patient_name
        if patient_dob:
            payload["patientDob"] = patient_dob
        response = await self._post("/v1/generate", json=payload)
        if response.status_code >= 400:
            raise GenerationFailure(_error_text(response))
        data = _json_object(response)
        if data is None or not isinstance(data.get("note") or "", str):
            raise GenerationFailure("Malformed scribe server response")
        return data


class RemoteTranscriptionAdapter(TranscriptionAdapter):
    """Sends chunks to a scribe server, which applies its own provider and classification."""

    provider = "remote"
    model = "ent-scribe"

    def __init__(self, client: ScribeApiClient):
        self.client = client

    async def transcribe(self, audio, mime_type, language, vocabulary: Sequence[str] = ()):
        try:
            data = await self.client.transcribe(audio, mime_type)
        except httpx.HTTPError as e:
            raise TranscriptionBackendError(f"Scribe server unreachable: {e}", provider=self.provider) from e
        return (data.get("text") or "").strip()


class RemoteNoteGenerator(NoteGenerator):
    def __init__(self, client: ScribeApiClient):
        self.client = client

    async def generate(self, request: NoteRequest) -> str:
        try:
            data = await self.client.generate(
                transcript=request.transcript,
                template=request.template_body,
                patient_name=request.patient_name,
                patient_dob=request.patient_dob,
            )
        except GenerationFailure as e:
            raise GenerationFailure(e.message, request=request) from e
        except httpx.HTTPError as e:
            raise GenerationFailure(f"Scribe server unreachable: {e}", request=request) from e

        note = (data.get("note") or "").strip()
        if not note:
            raise GenerationFailure("Note generation returned an empty note", request=request)
        return note
