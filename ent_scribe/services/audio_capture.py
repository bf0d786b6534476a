"""
Microphone capture and time-bounded segmentation

Frames arrive on the audio driver's thread and are handed to the event loop;
segments are cut by counting recorded frames, so paused time never counts
towards a segment and pausing never forces a boundary.
"""

import asyncio
import threading
from abc import ABC, abstractmethod
from enum import Enum
from typing import AsyncIterator, Callable, Hashable, Optional, Set

from ent_scribe.config import Settings, settings
from ent_scribe.core.errors import InvalidStateTransition, PermissionDenied
from ent_scribe.core.logging import get_logger
from ent_scribe.models.domain import AudioSegment
from ent_scribe.services.audio_processor import audio_processor

logger = get_logger(__name__)

FrameCallback = Callable[[bytes], None]

_held_devices: Set[Hashable] = set()
_held_devices_lock = threading.Lock()


class AudioInputDevice(ABC):
    """A PCM input device that at most one capture may hold at a time."""

    sample_width = 2  # 16-bit PCM

    def __init__(self, sample_rate: int = 16000, channels: int = 1):
        self.sample_rate = sample_rate
        self.channels = channels
        self._held = False
        self._key = object()

    @property
    def device_key(self) -> Hashable:
        return self._key

    @property
    def in_use(self) -> bool:
        return self._held

    def acquire(self, on_frames: FrameCallback) -> None:
        """Opens the device for exclusive use. Raises PermissionDenied when unavailable."""
        with _held_devices_lock:
            if self.device_key in _held_devices:
                raise PermissionDenied("Microphone is already in use by another session.")
            _held_devices.add(self.device_key)
        try:
            self._open(on_frames)
        except BaseException:
            with _held_devices_lock:
                _held_devices.discard(self.device_key)
            raise
        self._held = True

    def release(self) -> None:
        """Closes the device. Safe to call more than once."""
        if not self._held:
            return
        self._held = False
        try:
            self._close()
        finally:
            with _held_devices_lock:
                _held_devices.discard(self.device_key)

    @abstractmethod
    def _open(self, on_frames: FrameCallback) -> None: ...

    @abstractmethod
    def _close(self) -> None: ...


class SoundDeviceMicrophone(AudioInputDevice):
    """System microphone through PortAudio (sounddevice)."""

    def __init__(self, sample_rate: int = 16000, channels: int = 1, device: Optional[str] = None):
        super().__init__(sample_rate=sample_rate, channels=channels)
        self.device = device
        self._stream = None

    @property
    def device_key(self) -> Hashable:
        return ("sounddevice", self.device)

    def _open(self, on_frames: FrameCallback) -> None:
        try:
            # Loaded on demand: importing fails on hosts without PortAudio
            import sounddevice as sd
        except OSError as e:
            raise PermissionDenied(f"Audio input is unavailable: {e}") from e

        def callback(indata, frames, time_info, status):
            if status:
                logger.warning(f"Audio input status: {status}")
            on_frames(bytes(indata))

        try:
            stream = sd.RawInputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="int16",
                device=self.device,
                callback=callback,
            )
            stream.start()
        except (sd.PortAudioError, ValueError) as e:
            raise PermissionDenied(f"Could not open microphone: {e}") from e
        self._stream = stream

    def _close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()


class CaptureState(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    PAUSED = "paused"
    CLOSED = "closed"


class AudioCapture:
    """Turns a device's PCM stream into numbered WAV segments of `segment_seconds` each.

    Usage:
        await capture.start()
        async for segment in capture.segments():
            ...
        # elsewhere
        await capture.stop()   # flushes the tail segment, then ends the stream
    """

    mime_type = "audio/wav"

    def __init__(self, device: AudioInputDevice, segment_seconds: float = 30):
        self.device = device
        self.segment_seconds = segment_seconds
        frames_per_segment = max(1, int(segment_seconds * device.sample_rate))
        self._segment_bytes = frames_per_segment * device.channels * device.sample_width
        self._state = CaptureState.IDLE
        self._accepting = False
        self._buffer = bytearray()
        self._next_sequence = 0
        self._queue: Optional[asyncio.Queue] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "AudioCapture":
        microphone = SoundDeviceMicrophone(
            sample_rate=config.sample_rate,
            channels=config.channels,
            device=config.input_device,
        )
        return cls(microphone, segment_seconds=config.segment_seconds)

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def segments_emitted(self) -> int:
        return self._next_sequence

    async def start(self) -> None:
        if self._state != CaptureState.IDLE:
            raise InvalidStateTransition("start capture", self._state.value)
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._accepting = True
        try:
            self.device.acquire(self._on_frames)
        except BaseException:
            self._accepting = False
            raise
        self._state = CaptureState.CAPTURING
        logger.info(f"Audio capture started ({self.segment_seconds}s segments)")

    def pause(self) -> None:
        if self._state == CaptureState.PAUSED:
            return
        if self._state != CaptureState.CAPTURING:
            raise InvalidStateTransition("pause capture", self._state.value)
        self._accepting = False
        self._state = CaptureState.PAUSED

    def resume(self) -> None:
        if self._state == CaptureState.CAPTURING:
            return
        if self._state != CaptureState.PAUSED:
            raise InvalidStateTransition("resume capture", self._state.value)
        self._accepting = True
        self._state = CaptureState.CAPTURING

    async def stop(self) -> None:
        """Releases the device, emits the tail segment (even a short or empty one) and ends the stream."""
        if self._state in (CaptureState.IDLE, CaptureState.CLOSED):
            self._state = CaptureState.CLOSED
            return
        self._accepting = False
        try:
            # Closing a PortAudio stream blocks while it drains
            await asyncio.to_thread(self.device.release)
        finally:
            # Frames already handed to the loop belong to the tail
            await asyncio.sleep(0)
            # cancel() may have ended the stream while the device was closing
            if self._state != CaptureState.CLOSED:
                tail = bytes(self._buffer)
                self._buffer.clear()
                self._emit(tail)
                self._queue.put_nowait(None)
                self._state = CaptureState.CLOSED
                logger.info(f"Audio capture stopped after {self._next_sequence} segments")

    def cancel(self) -> None:
        """Releases the device immediately and drops buffered audio."""
        if self._state == CaptureState.CLOSED:
            return
        was_started = self._state != CaptureState.IDLE
        self._accepting = False
        self._buffer.clear()
        self._state = CaptureState.CLOSED
        try:
            self.device.release()
        finally:
            if was_started:
                self._queue.put_nowait(None)

    async def segments(self) -> AsyncIterator[AudioSegment]:
        """Yields segments in capture order until the stream ends."""
        if self._queue is None:
            raise InvalidStateTransition("read segments", self._state.value)
        while True:
            segment = await self._queue.get()
            if segment is None:
                return
            yield segment

    async def __aenter__(self) -> "AudioCapture":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is None:
            await self.stop()
        else:
            self.cancel()

    def _on_frames(self, data: bytes) -> None:
        # Audio thread
        if not self._accepting:
            return
        self._loop.call_soon_threadsafe(self._ingest, data)

    def _ingest(self, data: bytes) -> None:
        if self._state == CaptureState.CLOSED:
            return
        self._buffer.extend(data)
        while len(self._buffer) >= self._segment_bytes:
            pcm = bytes(self._buffer[:self._segment_bytes])
            del self._buffer[:self._segment_bytes]
            self._emit(pcm)

    def _emit(self, pcm: bytes) -> None:
        segment = AudioSegment(
            data=audio_processor.encode_wav(pcm, self.device.sample_rate, self.device.channels, self.device.sample_width),
            mime_type=self.mime_type,
            sequence=self._next_sequence,
        )
        self._next_sequence += 1
        self._queue.put_nowait(segment)
