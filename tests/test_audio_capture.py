import asyncio
import io
import threading
import wave

import pytest

from ent_scribe.core.errors import InvalidStateTransition, PermissionDenied
from ent_scribe.services.audio_capture import AudioCapture, CaptureState
from tests.fakes import FakeMicrophone, wait_until


async def drain(capture: AudioCapture):
    return [segment async for segment in capture.segments()]


def frame_count(data: bytes) -> int:
    with wave.open(io.BytesIO(data), "rb") as wav:
        return wav.getnframes()


async def test_segments_are_cut_every_segment_seconds():
    mic = FakeMicrophone(sample_rate=100)
    capture = AudioCapture(mic, segment_seconds=1)
    await capture.start()

    mic.speak(2.5)
    await wait_until(lambda: capture.segments_emitted == 2)
    await capture.stop()
    segments = await drain(capture)

    assert [s.sequence for s in segments] == [0, 1, 2]
    assert [frame_count(s.data) for s in segments] == [100, 100, 50]
    assert all(s.mime_type == "audio/wav" for s in segments)


async def test_each_segment_is_a_standalone_wav():
    mic = FakeMicrophone(sample_rate=100, channels=2)
    capture = AudioCapture(mic, segment_seconds=1)
    await capture.start()

    mic.speak(1)
    await wait_until(lambda: capture.segments_emitted == 1)
    await capture.stop()
    first = (await drain(capture))[0]

    with wave.open(io.BytesIO(first.data), "rb") as wav:
        assert wav.getframerate() == 100
        assert wav.getnchannels() == 2
        assert wav.getsampwidth() == 2


async def test_paused_audio_is_dropped_and_pause_forces_no_boundary():
    mic = FakeMicrophone(sample_rate=100)
    capture = AudioCapture(mic, segment_seconds=1)
    await capture.start()

    mic.speak(0.6)
    capture.pause()
    capture.pause()
    assert capture.state == CaptureState.PAUSED
    mic.speak(5)
    capture.resume()
    mic.speak(0.4)
    await wait_until(lambda: capture.segments_emitted == 1)
    await capture.stop()
    segments = await drain(capture)

    assert frame_count(segments[0].data) == 100
    # Tail after an exact boundary is an empty segment
    assert segments[1].sequence == 1
    assert segments[1].size == 0


async def test_stop_flushes_tail_and_releases_device():
    mic = FakeMicrophone(sample_rate=100)
    capture = AudioCapture(mic, segment_seconds=30)
    await capture.start()

    mic.speak(0.2)
    await capture.stop()

    assert capture.state == CaptureState.CLOSED
    assert mic.close_count == 1
    assert not mic.in_use
    segments = await drain(capture)
    assert len(segments) == 1
    assert frame_count(segments[0].data) == 20


async def test_stop_closes_device_off_the_event_loop():
    mic = FakeMicrophone(sample_rate=100)
    capture = AudioCapture(mic, segment_seconds=1)
    await capture.start()

    await capture.stop()

    assert mic.close_count == 1
    assert mic.close_thread is not None
    assert mic.close_thread != threading.get_ident()


async def test_cancel_while_stopping_ends_stream_without_tail():
    mic = FakeMicrophone(sample_rate=100)
    capture = AudioCapture(mic, segment_seconds=1)
    await capture.start()
    mic.speak(0.5)

    stopping = asyncio.create_task(capture.stop())
    await asyncio.sleep(0)
    capture.cancel()
    await stopping

    assert await drain(capture) == []
    assert capture.state == CaptureState.CLOSED
    assert not mic.in_use


async def test_microphone_is_exclusive():
    mic = FakeMicrophone()
    first = AudioCapture(mic)
    second = AudioCapture(mic)
    await first.start()

    with pytest.raises(PermissionDenied):
        await second.start()
    assert second.state == CaptureState.IDLE

    await first.stop()
    await second.start()
    assert mic.open_count == 2
    second.cancel()


async def test_denied_device_leaves_capture_idle():
    mic = FakeMicrophone(fail_with=PermissionDenied("Permission denied by user"))
    capture = AudioCapture(mic)

    with pytest.raises(PermissionDenied):
        await capture.start()
    assert capture.state == CaptureState.IDLE
    assert not mic.in_use

    mic.fail_with = None
    await capture.start()
    assert capture.state == CaptureState.CAPTURING
    capture.cancel()


async def test_cancel_drops_buffered_audio():
    mic = FakeMicrophone(sample_rate=100)
    capture = AudioCapture(mic, segment_seconds=1)
    await capture.start()

    mic.speak(0.5)
    capture.cancel()
    capture.cancel()

    assert await drain(capture) == []
    assert capture.state == CaptureState.CLOSED
    assert mic.close_count == 1


async def test_context_manager_releases_device_on_error():
    mic = FakeMicrophone()
    with pytest.raises(RuntimeError):
        async with AudioCapture(mic):
            assert mic.in_use
            raise RuntimeError("boom")
    assert not mic.in_use


async def test_lifecycle_calls_out_of_order():
    capture = AudioCapture(FakeMicrophone())
    with pytest.raises(InvalidStateTransition):
        capture.pause()
    with pytest.raises(InvalidStateTransition):
        await drain(capture)

    await capture.start()
    with pytest.raises(InvalidStateTransition):
        await capture.start()
    capture.cancel()
