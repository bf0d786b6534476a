"""
Pydantic Models for API Responses
"""

from typing import Optional, Dict, Any
from datetime import datetime
from pydantic import BaseModel, Field


class TranscribeResponse(BaseModel):
    """Transcript of a single audio chunk"""
    text: str = Field(description="Transcribed text, empty for silent or unusable chunks")


class GenerateResponse(BaseModel):
    """Generated clinical note"""
    note: str = Field(description="Note text following the template")


class ErrorResponse(BaseModel):
    """Standardized error response"""
    error: str = Field(description="Error message")
    details: Optional[str] = Field(default=None, description="Provider detail, when available")


class HealthCheckResponse(BaseModel):
    """Health Check Response"""
    status: str = Field(description="Service status (healthy/unhealthy)")
    timestamp: datetime = Field(description="Check time")
    version: str = Field(description="Service version")
    uptime_seconds: int = Field(description="Uptime in seconds")

    details: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Detailed health information"
    )


class RateLimitResponse(BaseModel):
    """Rate Limit Exceeded Response"""
    error: str = Field(default="rate_limit_exceeded")
    message: str = Field(description="Rate limit message")
    retry_after: int = Field(description="Seconds until the next attempt")
    limit: int = Field(description="Request limit")
    window: int = Field(description="Window in seconds")
    timestamp: datetime = Field(description="Time of the error")
