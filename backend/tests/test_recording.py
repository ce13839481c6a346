import asyncio

import pytest

from fakes import FakeRecorder, FakeSpeech, finals
from interview_coach.capabilities import TranscriptEvent
from interview_coach.recording import (
    RecordingError,
    RecordingSession,
    RecordingState,
    TranscriptAccumulator,
)


def test_accumulator_keeps_final_segments_in_order():
    acc = TranscriptAccumulator()
    acc.add(TranscriptEvent("I have", is_final=False))
    assert acc.preview == "I have"
    assert not acc.has_final

    acc.add(TranscriptEvent("I have five years", is_final=True))
    acc.add(TranscriptEvent("of experience", is_final=False))
    assert acc.final_text == "I have five years"
    assert acc.preview == "I have five years of experience"

    acc.add(TranscriptEvent(" of experience in Python ", is_final=True))
    acc.add(TranscriptEvent("", is_final=True))
    assert acc.final_text == "I have five years of experience in Python"
    assert acc.interim == ""


@pytest.mark.asyncio
async def test_start_and_stop_collects_transcript_and_releases():
    recorder = FakeRecorder(audio=b"\x01" * 2048)
    speech = FakeSpeech(scripts=[finals("Hello", "world")])
    recording = RecordingSession(recorder, speech)

    await recording.start()
    assert recording.state is RecordingState.RECORDING
    await asyncio.sleep(0.01)

    audio = await recording.stop()
    assert len(audio) == 2048
    assert recording.transcript.final_text == "Hello world"
    assert recording.released
    assert recorder.active == 0


@pytest.mark.asyncio
async def test_start_failure_releases_stream():
    recorder = FakeRecorder(fail_start_times=1)
    recording = RecordingSession(recorder, FakeSpeech())

    with pytest.raises(RecordingError):
        await recording.start()
    assert recording.released
    assert recording.state is RecordingState.STOPPED
    assert recorder.active == 0


@pytest.mark.asyncio
async def test_transcript_stream_error_does_not_stop_capture():
    recorder = FakeRecorder()
    speech = FakeSpeech(scripts=[finals("Partial answer")], stream_error=RuntimeError("network"))
    recording = RecordingSession(recorder, speech)

    await recording.start()
    await asyncio.sleep(0.01)
    assert isinstance(recording.stream_error, RuntimeError)
    assert recording.state is RecordingState.RECORDING

    audio = await recording.stop()
    assert audio == recorder.audio
    assert recording.transcript.final_text == "Partial answer"


@pytest.mark.asyncio
async def test_recorder_stop_failure_still_releases():
    recorder = FakeRecorder(fail_stop=True)
    recording = RecordingSession(recorder, FakeSpeech())

    await recording.start()
    assert await recording.stop() == b""
    assert recording.released
    assert recorder.active == 0


@pytest.mark.asyncio
async def test_abort_discards_audio_and_is_idempotent():
    recorder = FakeRecorder()
    recording = RecordingSession(recorder, FakeSpeech())

    await recording.start()
    await recording.abort()
    await recording.abort()
    assert recording.audio == b""
    assert recorder.stops == 1
    assert recorder.releases == 1


@pytest.mark.asyncio
async def test_session_cannot_start_twice():
    recording = RecordingSession(FakeRecorder(), FakeSpeech())
    await recording.start()
    with pytest.raises(RecordingError):
        await recording.start()
    await recording.stop()
