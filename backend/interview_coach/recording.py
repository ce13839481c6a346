"""Per-question capture lifecycle and incremental transcript accumulation."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import List, Optional

from interview_coach.capabilities import Recorder, SpeechEngine, TranscriptEvent

LOG = logging.getLogger("interview.controller")

TRANSCRIPT_DRAIN_TIMEOUT = 2.0


class RecordingError(Exception):
    """The recorder could not be started."""


class RecordingState(str, Enum):
    IDLE = "idle"
    ARMED = "armed"
    RECORDING = "recording"
    STOPPED = "stopped"


class TranscriptAccumulator:
    """Final segments are appended in arrival order; interim text is only a preview."""

    def __init__(self) -> None:
        self._final: List[str] = []
        self.interim = ""

    def add(self, event: TranscriptEvent) -> None:
        text = (event.text or "").strip()
        if event.is_final:
            if text:
                self._final.append(text)
            self.interim = ""
        else:
            self.interim = text

    @property
    def has_final(self) -> bool:
        return bool(self._final)

    @property
    def final_text(self) -> str:
        return " ".join(self._final).strip()

    @property
    def preview(self) -> str:
        parts = list(self._final)
        if self.interim:
            parts.append(self.interim)
        return " ".join(parts)


class RecordingSession:
    """
    Owns the capture stream for one answer: idle -> armed -> recording -> stopped.

    The stream is released on every exit path. Transcript stream errors are
    logged and absorbed so that audio capture continues.
    """

    def __init__(
        self,
        recorder: Recorder,
        speech: SpeechEngine,
        drain_timeout: float = TRANSCRIPT_DRAIN_TIMEOUT,
    ) -> None:
        self._recorder = recorder
        self._speech = speech
        self._drain_timeout = drain_timeout
        self._listener: Optional[asyncio.Task] = None
        self.state = RecordingState.IDLE
        self.transcript = TranscriptAccumulator()
        self.stream_error: Optional[Exception] = None
        self.audio: bytes = b""
        self.released = False

    async def start(self) -> None:
        if self.state is not RecordingState.IDLE:
            raise RecordingError(f"Recording session already {self.state.value}")
        self.state = RecordingState.ARMED
        try:
            await self._recorder.start()
        except Exception as exc:
            await self._release()
            raise RecordingError(f"Failed to start recording: {exc}") from exc
        self.state = RecordingState.RECORDING
        self._listener = asyncio.create_task(self._consume_transcript())

    async def _consume_transcript(self) -> None:
        try:
            async for event in self._speech.listen():
                self.transcript.add(event)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.stream_error = exc
            LOG.warning("Transcript stream failed; audio recording continues: %s", exc)

    async def _stop_transcript(self) -> None:
        try:
            await self._speech.stop_listening()
        except Exception as exc:
            LOG.warning("Error stopping speech recognition: %s", exc)
        if self._listener is None:
            return
        try:
            await asyncio.wait_for(self._listener, timeout=self._drain_timeout)
        except asyncio.TimeoutError:
            LOG.warning("Transcript stream did not close within %ss; dropping it", self._drain_timeout)
        finally:
            self._listener = None

    async def _release(self) -> None:
        try:
            await self._recorder.release()
        except Exception as exc:
            LOG.warning("Error releasing capture stream: %s", exc)
        finally:
            self.released = True
            self.state = RecordingState.STOPPED

    async def stop(self) -> bytes:
        """Stop capture and transcription, release the stream and return the audio."""
        if self.state is not RecordingState.RECORDING:
            if not self.released:
                await self._release()
            return self.audio
        try:
            self.audio = await self._recorder.stop()
        except Exception as exc:
            LOG.warning("Error stopping recorder: %s", exc)
            self.audio = b""
        finally:
            try:
                await self._stop_transcript()
            finally:
                await self._release()
        return self.audio

    async def abort(self) -> None:
        """Discard the recording; the stream is still released."""
        await self.stop()
        self.audio = b""
