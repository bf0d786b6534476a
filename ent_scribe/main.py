"""
ENT Scribe - FastAPI Main Application
"""

import secrets
import time
import traceback
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Request, Depends, status, UploadFile, File
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from ent_scribe.config import Settings, TranscriptionProvider, settings
from ent_scribe.core.errors import ConfigurationError, GenerationFailure
from ent_scribe.core.logging import setup_logging, get_logger, audit_logger
from ent_scribe.models.domain import AudioSegment, Fatal, PatientInfo, Text
from ent_scribe.models.requests import GenerateRequest
from ent_scribe.models.responses import (
    TranscribeResponse, GenerateResponse, ErrorResponse, HealthCheckResponse, RateLimitResponse,
)
from ent_scribe.services.audio_processor import audio_processor
from ent_scribe.services.chunk_transcriber import ChunkTranscriber
from ent_scribe.services.llm_service import NoteGenerator, OpenAINoteGenerator
from ent_scribe.services.note_builder import NoteRequestBuilder

# Initialize logging
setup_logging()
logger = get_logger(__name__)

# Prometheus metrics
request_count = Counter('http_requests_total', 'Total HTTP requests', ['method', 'endpoint', 'status'])
request_duration = Histogram('http_request_duration_seconds', 'HTTP request duration')
chunk_outcomes = Counter('chunk_outcomes_total', 'Chunk transcription outcomes', ['outcome'])
note_generations = Counter('note_generations_total', 'Note generation attempts', ['status'])

# Rate limiter
limiter = Limiter(key_func=get_remote_address)

started_at = time.time()


class ServiceProvider:
    """Builds backend services on first use, so missing credentials only fail the calls that need them."""

    def __init__(
        self,
        config: Settings = settings,
        transcriber: Optional[ChunkTranscriber] = None,
        note_generator: Optional[NoteGenerator] = None,
    ):
        self.config = config
        self._transcriber = transcriber
        self._note_generator = note_generator
        self.builder = NoteRequestBuilder()

    def transcriber(self) -> ChunkTranscriber:
        if self._transcriber is None:
            if self.config.transcription_provider == TranscriptionProvider.REMOTE:
                raise ConfigurationError("The 'remote' transcription provider is for clients, not the server.")
            self._transcriber = ChunkTranscriber.from_settings(self.config)
        return self._transcriber

    def note_generator(self) -> NoteGenerator:
        if self._note_generator is None:
            self._note_generator = OpenAINoteGenerator.from_settings(self.config)
        return self._note_generator


services = ServiceProvider()


def get_services() -> ServiceProvider:
    return services


def error_response(status_code: int, error: str, details: Optional[str] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, details=details).model_dump(exclude_none=True),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info("ENT Scribe starting...")
    logger.info(f"Environment: {settings.environment.value}")
    logger.info(f"Transcription provider: {settings.transcription_provider.value}")

    yield

    logger.info("ENT Scribe shutting down...")


# Create FastAPI app
app = FastAPI(
    title=settings.api_title,
    description=settings.api_description,
    version=settings.api_version,
    lifespan=lifespan,
    docs_url="/docs" if settings.environment == "development" else None,
    redoc_url="/redoc" if settings.environment == "development" else None,
    debug=settings.debug,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Rate limiting
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """Add security headers to all responses."""
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response


@app.middleware("http")
async def track_requests(request: Request, call_next):
    """Request tracking and Prometheus metrics"""

    start_time = time.time()
    request_id = secrets.token_urlsafe(16)
    request.state.request_id = request_id

    try:
        response = await call_next(request)
    except Exception as e:
        request_count.labels(method=request.method, endpoint=request.url.path, status=500).inc()
        logger.error(f"Request {request_id} failed: {e}")
        return JSONResponse(
            status_code=500,
            content={"error": "An internal error occurred", "details": request_id},
            headers={"X-Request-ID": request_id},
        )

    duration = time.time() - start_time
    request_count.labels(method=request.method, endpoint=request.url.path, status=response.status_code).inc()
    request_duration.observe(duration)
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Processing-Time"] = f"{duration:.3f}s"
    return response


@app.get("/health", response_model=HealthCheckResponse)
async def health_check():
    """Service health check"""
    return HealthCheckResponse(
        status="healthy",
        timestamp=datetime.utcnow(),
        version=settings.api_version,
        uptime_seconds=int(time.time() - started_at),
    )


@app.get("/ready")
async def readiness_check(provider: ServiceProvider = Depends(get_services)):
    """
    Reports whether the configured backends can be built (credentials present).
    Returns 200 when they can, otherwise 503.
    """
    details = {}
    for name, build in (("transcription", provider.transcriber), ("note_generation", provider.note_generator)):
        try:
            build()
            details[name] = {"status": "ok"}
        except ConfigurationError as e:
            details[name] = {"status": "error", "message": str(e)}

    all_ok = all(item["status"] == "ok" for item in details.values())
    content = {
        "status": "ready" if all_ok else "unavailable",
        "timestamp": datetime.utcnow().isoformat(),
        "version": settings.api_version,
        "details": details,
    }
    if not all_ok:
        logger.warning(f"Readiness check failed: {details}")
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=content)
    return JSONResponse(status_code=status.HTTP_200_OK, content=content)


@app.get(settings.metrics_path)
async def metrics():
    """Prometheus metrics"""
    if not settings.enable_metrics:
        return error_response(status.HTTP_404_NOT_FOUND, "Metrics disabled")
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.post(
    "/v1/transcribe",
    response_model=TranscribeResponse,
    responses={400: {"model": ErrorResponse}, 429: {"model": RateLimitResponse}, 500: {"model": ErrorResponse}},
)
@limiter.limit(f"{settings.rate_limit_requests}/minute")
async def transcribe_chunk(
    request: Request,
    audio: Optional[UploadFile] = File(None),
    provider: ServiceProvider = Depends(get_services),
):
    """
    Transcribes one recording chunk. Chunks that are too small, silent or rejected
    by the provider as unusable audio come back as empty text rather than an error.
    """
    if audio is None:
        return error_response(status.HTTP_400_BAD_REQUEST, "No audio provided")

    audio_data = await audio.read()
    content_type = audio_processor.resolve_content_type(audio.content_type, audio_data)
    transcriber = provider.transcriber()

    outcome = await transcriber.transcribe(AudioSegment(data=audio_data, mime_type=content_type, sequence=0))
    chunk_outcomes.labels(outcome=outcome.kind.value).inc()

    if isinstance(outcome, Fatal):
        audit_logger.log_error(
            request_id=request.state.request_id,
            error_type="transcription_failed",
            error_message=outcome.reason,
            provider_status=outcome.provider_status,
        )
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Transcription failed", outcome.reason)
    if isinstance(outcome, Text):
        return TranscribeResponse(text=outcome.content)
    return TranscribeResponse(text="")


@app.post(
    "/v1/generate",
    response_model=GenerateResponse,
    responses={400: {"model": ErrorResponse}, 429: {"model": RateLimitResponse}, 500: {"model": ErrorResponse}},
)
@limiter.limit(f"{settings.rate_limit_requests}/minute")
async def generate_note(request: Request, provider: ServiceProvider = Depends(get_services)):
    """
    Fills a template from a finished transcript.
    Body: {transcript, template, patientName?, patientDob?}
    """
    try:
        payload = await request.json()
    except ValueError:
        payload = None
    try:
        body = GenerateRequest.model_validate(payload if isinstance(payload, dict) else {})
    except ValidationError:
        return error_response(status.HTTP_400_BAD_REQUEST, "transcript and template are required")

    note_request = provider.builder.build(
        body.transcript,
        body.template,
        PatientInfo(name=body.patient_name, dob=body.patient_dob),
    )
    generator = provider.note_generator()

    try:
        note = await generator.generate(note_request)
    except GenerationFailure as e:
        note_generations.labels(status="failed").inc()
        audit_logger.log_error(
            request_id=request.state.request_id,
            error_type="generation_failed",
            error_message=e.message,
        )
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Note generation failed")

    note_generations.labels(status="ok").inc()
    return GenerateResponse(note=note)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    """Custom rate limit error handler"""

    response = RateLimitResponse(
        message="Too many requests. Please try again later.",
        retry_after=settings.rate_limit_window,
        limit=settings.rate_limit_requests,
        window=settings.rate_limit_window,
        timestamp=datetime.utcnow(),
    )

    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=response.model_dump(mode="json"),
        headers={"Retry-After": str(settings.rate_limit_window)},
    )


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    request_id = getattr(request.state, "request_id", "unknown")
    logger.error(f"Configuration error in request {request_id}: {exc}")
    audit_logger.log_error(request_id=request_id, error_type="configuration_error", error_message=str(exc))
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors"""

    request_id = getattr(request.state, 'request_id', 'unknown')

    logger.error(f"Unhandled error in request {request_id}: {exc}")
    logger.error(f"Stacktrace: {traceback.format_exc()}")

    return JSONResponse(
        status_code=500,
        content={"error": "An unexpected error occurred", "details": request_id},
        headers={"X-Request-ID": request_id},
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "ent_scribe.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.environment == "development",
    )
