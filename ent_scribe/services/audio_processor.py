"""
Audio format helpers: signature sniffing, file naming and WAV encoding
"""

import io
import wave
from typing import Optional
from ent_scribe.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CONTENT_TYPE = "audio/webm"


class AudioProcessor:
    """Audio format detection and encoding"""

    @staticmethod
    def base_content_type(content_type: Optional[str]) -> str:
        """Strips codec parameters, e.g. 'audio/webm;codecs=opus' -> 'audio/webm'."""
        if not content_type:
            return ""
        return content_type.split(";", 1)[0].strip().lower()

    def extension_for(self, content_type: Optional[str]) -> str:
        """Maps content type to file extension."""
        return {
            "audio/mpeg": ".mp3",
            "audio/wav": ".wav",
            "audio/x-wav": ".wav",
            "audio/mp4": ".mp4",
            "audio/m4a": ".m4a",
            "audio/ogg": ".ogg",
            "audio/webm": ".webm",
        }.get(self.base_content_type(content_type), ".webm")

    def filename_for(self, content_type: Optional[str]) -> str:
        return f"audio{self.extension_for(content_type)}"

    def resolve_content_type(self, declared: Optional[str], audio_data: bytes) -> str:
        """Uses the declared type unless it is missing or generic, then sniffs the bytes."""
        base = self.base_content_type(declared)
        if base and base != "application/octet-stream":
            return declared
        detected = self.detect_content_type(audio_data)
        logger.info(f"Declared content type '{declared}' unusable, detected {detected}")
        return detected

    @staticmethod
    def detect_content_type(audio_data: bytes) -> str:
        """Detects Content-Type based on file signature"""

        # MP4/M4A carries 'ftyp' a few bytes in
        if b'ftyp' in audio_data[4:12]:
            return "audio/mp4"

        signatures = {
            b'\x1a\x45\xdf\xa3': "audio/webm",  # EBML header (WebM/Matroska)
            b'ID3': "audio/mpeg",      # MP3 with ID3 Tag
            b'\xff\xfb': "audio/mpeg",  # MP3 frame
            b'\xff\xf3': "audio/mpeg",  # MP3 frame
            b'\xff\xf2': "audio/mpeg",  # MP3 frame
            b'RIFF': "audio/wav",      # WAV
            b'OggS': "audio/ogg",      # OGG
        }

        for signature, content_type in signatures.items():
            if audio_data.startswith(signature):
                return content_type

        # Browser recorders default to WebM
        return DEFAULT_CONTENT_TYPE

    @staticmethod
    def encode_wav(pcm: bytes, sample_rate: int, channels: int, sample_width: int = 2) -> bytes:
        """Wraps raw little-endian PCM into a standalone WAV container."""
        if not pcm:
            return b""
        buffer = io.BytesIO()
        with wave.open(buffer, "wb") as wav:
            wav.setnchannels(channels)
            wav.setsampwidth(sample_width)
            wav.setframerate(sample_rate)
            wav.writeframes(pcm)
        return buffer.getvalue()


audio_processor = AudioProcessor()
