"""
Structured logging setup for ENT Scribe
"""

import logging
import structlog
from datetime import datetime
from typing import Optional
from ent_scribe.config import settings, Environment


def setup_logging():
    """Configures structured logging"""

    # Consistent timestamps across services
    timestamper = structlog.processors.TimeStamper(fmt="ISO")

    processors = [
        structlog.processors.add_log_level,
        timestamper,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.environment == Environment.DEVELOPMENT:
        # Development: Colored console output
        processors.extend([
            structlog.dev.ConsoleRenderer(colors=True)
        ])
    else:
        # Production: JSON output
        processors.extend([
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer()
        ])

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level.upper(), logging.INFO)
        ),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = None):
    """Returns a configured logger"""
    return structlog.get_logger(name or __name__)


class AuditLogger:
    """Dedicated logger for audit events. Never receives transcript or note text."""

    def __init__(self):
        self.logger = get_logger("audit")

    def _emit(self, event: str, **kwargs):
        if not settings.audit_log_enabled:
            return
        self.logger.info(event, timestamp=datetime.utcnow().isoformat(), **kwargs)

    def log_transcription_request(
        self,
        provider: str,
        model: str,
        audio_size_bytes: int,
        sequence: Optional[int] = None,
        **kwargs
    ):
        """Logs a chunk handed to a transcription backend"""
        self._emit(
            "transcription_request",
            provider=provider,
            model=model,
            audio_size_bytes=audio_size_bytes,
            sequence=sequence,
            **kwargs
        )

    def log_chunk_outcome(self, sequence: int, outcome: str, **kwargs):
        """Logs how a chunk transcription was classified"""
        self._emit("chunk_outcome", sequence=sequence, outcome=outcome, **kwargs)

    def log_external_api_call(
        self,
        service: str,
        endpoint: str,
        response_status: Optional[int],
        response_time_ms: int,
        **kwargs
    ):
        """Logs calls to external APIs"""
        self._emit(
            "external_api_call",
            service=service,
            endpoint=endpoint,
            response_status=response_status,
            response_time_ms=response_time_ms,
            **kwargs
        )

    def log_note_generation(
        self,
        model: str,
        transcript_chars: int,
        processing_time_ms: int,
        success: bool,
        **kwargs
    ):
        """Logs a note generation attempt"""
        self._emit(
            "note_generation",
            model=model,
            transcript_chars=transcript_chars,
            processing_time_ms=processing_time_ms,
            success=success,
            **kwargs
        )

    def log_error(
        self,
        error_type: str,
        error_message: str,
        request_id: Optional[str] = None,
        **kwargs
    ):
        """Logs error events"""
        if not settings.audit_log_enabled:
            return
        self.logger.error(
            "error_event",
            request_id=request_id,
            error_type=error_type,
            error_message=error_message,
            timestamp=datetime.utcnow().isoformat(),
            **kwargs
        )


# Global audit logger instance
audit_logger = AuditLogger()
