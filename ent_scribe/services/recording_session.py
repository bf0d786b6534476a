"""
Recording session lifecycle

    Idle -> Recording <-> Paused -> Stopping -> Finalizing -> Complete
    any non-terminal state -> Cancelled

Chunk transcriptions run as tasks collected in a pending set; stop() waits for
every one of them, including the tail segment flushed by the capture, before
the transcript is read. Completions that land after cancel() are dropped.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Set

from ent_scribe.config import Settings, TranscriptionProvider, settings
from ent_scribe.core.errors import GenerationFailure, InvalidStateTransition, PermissionDenied
from ent_scribe.core.logging import get_logger, audit_logger
from ent_scribe.models.domain import (
    AudioSegment, Fatal, NoteRequest, PatientInfo, Template, TranscriptionOutcome, Visit,
)
from ent_scribe.services.audio_capture import AudioCapture
from ent_scribe.services.chunk_transcriber import ChunkTranscriber
from ent_scribe.services.llm_service import NoteGenerator, OpenAINoteGenerator
from ent_scribe.services.note_builder import NoteRequestBuilder
from ent_scribe.services.storage import VisitStore
from ent_scribe.services.transcript_assembler import TranscriptAssembler

logger = get_logger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PAUSED = "paused"
    STOPPING = "stopping"
    FINALIZING = "finalizing"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


class SessionOutcome(str, Enum):
    NOTE_GENERATED = "note_generated"
    NO_TRANSCRIPT = "no_transcript"
    GENERATION_FAILED = "generation_failed"
    CANCELLED = "cancelled"


@dataclass
class SessionResult:
    outcome: SessionOutcome
    transcript: str = ""
    note: Optional[str] = None
    note_request: Optional[NoteRequest] = None
    visit: Optional[Visit] = None
    error: Optional[str] = None


class RecordingSession:
    """One encounter: owns its capture and assembler until it completes or is cancelled."""

    def __init__(
        self,
        capture: AudioCapture,
        transcriber: ChunkTranscriber,
        note_generator: NoteGenerator,
        template: Template,
        patient: Optional[PatientInfo] = None,
        visit_store: Optional[VisitStore] = None,
        builder: Optional[NoteRequestBuilder] = None,
        on_transcript: Optional[Callable[[str], None]] = None,
        on_chunk_error: Optional[Callable[[int, Fatal], None]] = None,
        tick_seconds: float = 1.0,
    ):
        self._capture: Optional[AudioCapture] = capture
        self._assembler: Optional[TranscriptAssembler] = TranscriptAssembler()
        self.transcriber = transcriber
        self.note_generator = note_generator
        self.template = template
        self.patient = patient
        self.visit_store = visit_store
        self.builder = builder or NoteRequestBuilder()
        self.on_transcript = on_transcript
        self.on_chunk_error = on_chunk_error
        self.tick_seconds = tick_seconds

        self._state = SessionState.IDLE
        self._pending: Set[asyncio.Task] = set()
        self._pump_task: Optional[asyncio.Task] = None
        self._clock_task: Optional[asyncio.Task] = None
        self._elapsed = 0
        self._final_transcript = ""
        self._result: Optional[SessionResult] = None
        self.chunk_failures = 0

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def elapsed_seconds(self) -> int:
        return self._elapsed

    @property
    def result(self) -> Optional[SessionResult]:
        return self._result

    @property
    def pending_transcriptions(self) -> int:
        return len(self._pending)

    @property
    def live_transcript(self) -> str:
        if self._assembler is None:
            return self._final_transcript
        return self._assembler.live_text()

    async def start(self) -> None:
        if self._state != SessionState.IDLE:
            raise InvalidStateTransition("start", self._state.value)
        try:
            await self._capture.start()
        except PermissionDenied as e:
            logger.warning(f"Could not start recording: {e}")
            raise
        self._state = SessionState.RECORDING
        self._pump_task = asyncio.create_task(self._pump())
        self._start_clock()
        logger.info("Recording started", template=self.template.name)

    def pause(self) -> None:
        if self._state == SessionState.PAUSED:
            return
        if self._state != SessionState.RECORDING:
            raise InvalidStateTransition("pause", self._state.value)
        self._capture.pause()
        self._stop_clock()
        self._state = SessionState.PAUSED

    def resume(self) -> None:
        if self._state == SessionState.RECORDING:
            return
        if self._state != SessionState.PAUSED:
            raise InvalidStateTransition("resume", self._state.value)
        self._capture.resume()
        self._state = SessionState.RECORDING
        self._start_clock()

    async def stop(self) -> SessionResult:
        """Flushes the tail, waits for every transcription, then generates the note."""
        if self._state not in (SessionState.RECORDING, SessionState.PAUSED):
            raise InvalidStateTransition("stop", self._state.value)
        self._state = SessionState.STOPPING
        self._stop_clock()

        capture = self._capture
        try:
            await capture.stop()
            if self._pump_task is not None:
                await asyncio.gather(self._pump_task, return_exceptions=True)
            while self._pending:
                await asyncio.gather(*list(self._pending), return_exceptions=True)
        finally:
            # No-op after a clean stop; releases the microphone on any other exit
            capture.cancel()

        if self._state == SessionState.CANCELLED:
            return self._result

        self._state = SessionState.FINALIZING
        self._final_transcript = self._assembler.final_text()
        self._capture = None
        self._assembler = None
        logger.info(
            "Recording finalized",
            elapsed_seconds=self._elapsed,
            transcript_chars=len(self._final_transcript),
            chunk_failures=self.chunk_failures,
        )

        if not self._final_transcript:
            logger.info("No speech was transcribed; skipping note generation")
            return self._complete(SessionResult(SessionOutcome.NO_TRANSCRIPT))

        request = self.builder.build(self._final_transcript, self.template, self.patient)
        return await self._generate(request)

    async def retry_generation(self) -> SessionResult:
        """Re-runs note generation on the finalized transcript after a GENERATION_FAILED outcome."""
        if (
            self._state != SessionState.COMPLETE
            or self._result is None
            or self._result.outcome != SessionOutcome.GENERATION_FAILED
        ):
            raise InvalidStateTransition("retry generation", self._state.value)
        self._state = SessionState.FINALIZING
        return await self._generate(self._result.note_request)

    def cancel(self) -> Optional[SessionResult]:
        """Releases the microphone now and discards everything in flight. Terminal states are left as-is."""
        if self._state in (SessionState.COMPLETE, SessionState.CANCELLED):
            return self._result
        previous = self._state
        self._state = SessionState.CANCELLED
        self._stop_clock()
        if self._capture is not None:
            self._capture.cancel()
        if self._pump_task is not None:
            self._pump_task.cancel()
        for task in list(self._pending):
            task.cancel()
        self._pending.clear()
        self._capture = None
        self._assembler = None
        self._result = SessionResult(SessionOutcome.CANCELLED)
        logger.info(f"Recording cancelled while {previous.value}")
        return self._result

    async def __aenter__(self) -> "RecordingSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if self._state not in (SessionState.COMPLETE, SessionState.CANCELLED):
            self.cancel()

    async def _generate(self, request: NoteRequest) -> SessionResult:
        try:
            note = await self.note_generator.generate(request)
        except GenerationFailure as e:
            if self._state == SessionState.CANCELLED:
                return self._result
            logger.error(f"Note generation failed: {e.message}")
            return self._complete(SessionResult(
                SessionOutcome.GENERATION_FAILED,
                transcript=request.transcript,
                note_request=request,
                error=e.message,
            ))

        if self._state == SessionState.CANCELLED:
            return self._result

        visit = None
        error = None
        if self.visit_store is not None:
            try:
                visit = self.visit_store.save_visit(
                    template_name=self.template.name,
                    note=note,
                    transcript=request.transcript,
                    patient_name=request.patient_name,
                    patient_dob=request.patient_dob,
                )
            except OSError as e:
                # The note is still returned to the caller
                error = f"Visit could not be saved: {e}"
                logger.error(error, exc_info=True)
                audit_logger.log_error(error_type="visit_save_failed", error_message=str(e))
        return self._complete(SessionResult(
            SessionOutcome.NOTE_GENERATED,
            transcript=request.transcript,
            note=note,
            note_request=request,
            visit=visit,
            error=error,
        ))

    def _complete(self, result: SessionResult) -> SessionResult:
        self._state = SessionState.COMPLETE
        self._result = result
        return result

    async def _pump(self) -> None:
        async for segment in self._capture.segments():
            if self._state == SessionState.CANCELLED:
                return
            task = asyncio.create_task(self._transcribe(segment))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _transcribe(self, segment: AudioSegment) -> None:
        sequence = segment.sequence
        try:
            outcome: TranscriptionOutcome = await self.transcriber.transcribe(segment)
        except Exception as e:
            logger.error(f"Chunk {sequence} transcription raised unexpectedly: {e}", exc_info=True)
            outcome = Fatal(str(e))

        if self._state == SessionState.CANCELLED or self._assembler is None:
            return

        self._assembler.append(sequence, outcome)
        if isinstance(outcome, Fatal):
            self.chunk_failures += 1
            logger.warning(f"Chunk {sequence} dropped from transcript: {outcome.reason}")
            if self.on_chunk_error is not None:
                self.on_chunk_error(sequence, outcome)
        elif self.on_transcript is not None:
            self.on_transcript(self._assembler.live_text())

    def _start_clock(self) -> None:
        if self._clock_task is None or self._clock_task.done():
            self._clock_task = asyncio.create_task(self._tick())

    def _stop_clock(self) -> None:
        if self._clock_task is not None:
            self._clock_task.cancel()
            self._clock_task = None

    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(self.tick_seconds)
            if self._state == SessionState.RECORDING:
                self._elapsed += 1


def create_session(
    template: Template,
    patient: Optional[PatientInfo] = None,
    visit_store: Optional[VisitStore] = None,
    config: Settings = settings,
    **kwargs,
) -> RecordingSession:
    """Wires a session to the system microphone and the configured backends."""
    if config.transcription_provider == TranscriptionProvider.REMOTE:
        from ent_scribe.client import RemoteNoteGenerator, ScribeApiClient
        note_generator = RemoteNoteGenerator(ScribeApiClient(config.scribe_api_base_url, timeout=config.llm_timeout))
    else:
        note_generator = OpenAINoteGenerator.from_settings(config)
    return RecordingSession(
        capture=AudioCapture.from_settings(config),
        transcriber=ChunkTranscriber.from_settings(config),
        note_generator=note_generator,
        template=template,
        patient=patient,
        visit_store=visit_store,
        **kwargs,
    )
