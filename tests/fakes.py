import asyncio
import threading
from typing import Dict, List, Optional

from ent_scribe.core.errors import GenerationFailure
from ent_scribe.models.domain import AudioSegment, NoteRequest, Template, TranscriptionOutcome
from ent_scribe.services.audio_capture import AudioInputDevice
from ent_scribe.services.llm_service import NoteGenerator
from ent_scribe.services.stt_service import TranscriptionAdapter

TEMPLATE = Template(
    id="sinus-rhinitis",
    name="Sinus / Rhinitis",
    content="CHIEF COMPLAINT:\n\nASSESSMENT:\n\nPLAN:",
    is_default=True,
)


class FakeMicrophone(AudioInputDevice):
    """Device that produces PCM only when the test calls speak()."""

    def __init__(self, sample_rate: int = 100, channels: int = 1, fail_with: Optional[BaseException] = None):
        super().__init__(sample_rate=sample_rate, channels=channels)
        self.fail_with = fail_with
        self.on_frames = None
        self.open_count = 0
        self.close_count = 0
        self.close_thread = None

    def _open(self, on_frames):
        if self.fail_with is not None:
            raise self.fail_with
        self.on_frames = on_frames
        self.open_count += 1

    def _close(self):
        self.on_frames = None
        self.close_count += 1
        self.close_thread = threading.get_ident()

    def speak(self, seconds: float) -> None:
        if self.on_frames is None:
            return
        frames = int(seconds * self.sample_rate)
        self.on_frames(b"\x01\x00" * frames * self.channels)


class ScriptedTranscriber:
    """Chunk transcriber whose results the test releases one sequence at a time."""

    def __init__(self):
        self.calls: List[AudioSegment] = []
        self._futures: Dict[int, asyncio.Future] = {}

    def _future(self, sequence: int) -> asyncio.Future:
        if sequence not in self._futures:
            self._futures[sequence] = asyncio.get_running_loop().create_future()
        return self._futures[sequence]

    async def transcribe(self, segment: AudioSegment) -> TranscriptionOutcome:
        self.calls.append(segment)
        return await self._future(segment.sequence)

    def resolve(self, sequence: int, outcome: TranscriptionOutcome) -> None:
        future = self._future(sequence)
        if not future.done():
            future.set_result(outcome)

    @property
    def sequences(self) -> List[int]:
        return [segment.sequence for segment in self.calls]


class FakeAdapter(TranscriptionAdapter):
    provider = "fake"
    model = "fake-1"

    def __init__(self, text: str = "", error: Optional[Exception] = None):
        self.text = text
        self.error = error
        self.calls = []

    async def transcribe(self, audio, mime_type, language, vocabulary=()):
        self.calls.append(
            {"audio": audio, "mime_type": mime_type, "language": language, "vocabulary": list(vocabulary)}
        )
        if self.error is not None:
            raise self.error
        return self.text


class FakeNoteGenerator(NoteGenerator):
    def __init__(self, note: str = "CHIEF COMPLAINT:\nSore throat.", failures: int = 0):
        self.note = note
        self.failures = failures
        self.requests: List[NoteRequest] = []

    async def generate(self, request: NoteRequest) -> str:
        self.requests.append(request)
        if self.failures:
            self.failures -= 1
            raise GenerationFailure("note backend unavailable", request=request)
        return self.note


async def wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition was not met in time")
        await asyncio.sleep(0.001)
