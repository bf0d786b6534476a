"""
Central configuration for the ENT Scribe service and recorder
"""

from pathlib import Path
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from enum import Enum


class Environment(str, Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class TranscriptionProvider(str, Enum):
    OPENAI = "openai"
    DEEPGRAM = "deepgram"
    ASSEMBLYAI = "assemblyai"
    # Chunks are forwarded to another ENT Scribe server
    REMOTE = "remote"


class ModelName(str, Enum):
    GPT_4O = "gpt-4o"
    GPT_4O_MINI = "gpt-4o-mini"
    GPT_4_1 = "gpt-4.1"


class Settings(BaseSettings):
    # Environment
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # API Configuration
    api_title: str = Field(default="ENT Scribe API")
    api_description: str = Field(default="Chunked encounter transcription and clinical note generation")
    api_version: str = Field(default="1.0.0")
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=3001)

    # External Service APIs
    openai_api_key: Optional[str] = Field(default=None)
    deepgram_api_key: Optional[str] = Field(default=None)
    assemblyai_api_key: Optional[str] = Field(default=None)
    deepgram_base_url: str = Field(default="https://api.deepgram.com")
    assemblyai_base_url: str = Field(default="https://api.assemblyai.com")

    # Client side: where the "remote" adapters send chunks and notes
    scribe_api_base_url: str = Field(default="http://localhost:3001")

    # Rate Limiting
    rate_limit_requests: int = Field(default=60)
    rate_limit_window: int = Field(default=60)  # seconds

    # Timeouts and Retries
    stt_timeout: int = Field(default=60)
    llm_timeout: int = Field(default=60)
    max_retries: int = Field(default=3)

    # STT Configuration
    transcription_provider: TranscriptionProvider = TranscriptionProvider.OPENAI
    openai_transcription_model: str = Field(default="whisper-1")
    deepgram_model: str = Field(default="nova-3")
    transcription_language: str = Field(default="en")
    min_chunk_bytes: int = Field(default=1000)
    max_vocabulary_terms: int = Field(default=100)
    vocabulary_terms: List[str] = Field(default=[])

    # Recording
    segment_seconds: int = Field(default=30)
    sample_rate: int = Field(default=16000)
    channels: int = Field(default=1)
    input_device: Optional[str] = Field(default=None)

    # LLM Configuration
    llm_temperature: float = Field(default=0.2)
    llm_max_tokens: int = Field(default=2000)
    default_llm_model: str = Field(default=ModelName.GPT_4O.value)

    # Local storage for templates and visits
    data_dir: Path = Field(default=Path.home() / ".ent-scribe")
    max_visits: int = Field(default=50)

    # CORS Configuration
    cors_origins: List[str] = Field(
        default=[
            "http://localhost:3000",
            "http://localhost:8080",
        ]
    )
    cors_allow_credentials: bool = Field(default=True)
    cors_allow_methods: List[str] = Field(default=["GET", "POST"])
    cors_allow_headers: List[str] = Field(default=["*"])

    # Monitoring
    enable_metrics: bool = Field(default=True)
    metrics_path: str = Field(default="/metrics")

    # Audit Logging
    audit_log_enabled: bool = Field(default=True)

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)


# Global settings instance
settings = Settings()
