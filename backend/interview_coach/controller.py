"""
Drives one candidate through the interview.

The controller owns the only ``ControllerState``. Public actions turn into
events for ``machine.transition``; the returned effects run here against the
injected speech engine, recorder and backend, and may feed follow-up events
back in. Applying a transition is synchronous, so each event is atomic with
respect to the countdown task and concurrent user actions.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional, Sequence

from interview_coach.capabilities import InterviewBackend, Recorder, SpeechEngine
from interview_coach.evaluator import fallback_evaluation
from interview_coach.machine import (
    DEFAULT_QUESTIONS,
    RECORDING_SECONDS,
    SETTLE_DELAY_SECONDS,
    AbandonSession,
    BeginRecording,
    CancelRequested,
    CompleteSession,
    ControllerState,
    CreateSession,
    EndRequested,
    EvaluationReceived,
    NextRequested,
    PermissionResolved,
    Phase,
    QuestionSpoken,
    ReRecordRequested,
    RecordingFailed,
    RecordingStarted,
    RecordingStopped,
    RequestEvaluation,
    SessionCreated,
    SessionCreateFailed,
    SpeakQuestion,
    StartCountdown,
    StartRequested,
    StopRecording,
    StopRequested,
    SubmitRequested,
    Tick,
    initial_state,
    transition,
)
from interview_coach.recording import RecordingError, RecordingSession

LOG = logging.getLogger("interview.controller")


class InterviewController:
    def __init__(
        self,
        backend: InterviewBackend,
        speech: SpeechEngine,
        recorder: Recorder,
        questions: Sequence[str] = DEFAULT_QUESTIONS,
        *,
        user_email: Optional[str] = None,
        user_name: Optional[str] = None,
        recording_seconds: int = RECORDING_SECONDS,
        settle_delay: float = SETTLE_DELAY_SECONDS,
        tick_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._backend = backend
        self._speech = speech
        self._recorder = recorder
        self._user_email = user_email
        self._user_name = user_name
        self._settle_delay = settle_delay
        self._tick_interval = tick_interval
        self._clock = clock
        self._recording: Optional[RecordingSession] = None
        self._timer: Optional[asyncio.Task] = None
        self.state: ControllerState = initial_state(tuple(questions), recording_seconds)
        self.summary: Optional[Dict[str, Any]] = None

    @property
    def phase(self) -> Phase:
        return self.state.phase

    @property
    def live_transcript(self) -> str:
        """Accumulated final text followed by the current interim preview."""
        if self._recording is None:
            return ""
        return self._recording.transcript.preview

    async def dispatch(self, event: object) -> ControllerState:
        self.state, effects = transition(self.state, event)
        for effect in effects:
            await self._execute(effect)
        return self.state

    # Public actions

    async def check_permissions(self) -> ControllerState:
        """Ask the recorder for capture access once; denial keeps the controller in WELCOME."""
        try:
            granted = await self._recorder.request_access()
        except Exception as exc:
            LOG.warning("Media access error: %s", exc)
            granted = False
        return await self.dispatch(PermissionResolved(bool(granted)))

    async def start(self) -> ControllerState:
        """Create the session, speak the first question and begin recording.

        Resolves once recording is running (or the start was refused).
        """
        return await self.dispatch(StartRequested())

    async def stop(self) -> ControllerState:
        return await self.dispatch(StopRequested())

    async def submit(self) -> ControllerState:
        return await self.dispatch(SubmitRequested(at=self._clock()))

    async def next_question(self) -> ControllerState:
        return await self.dispatch(NextRequested(at=self._clock()))

    async def re_record(self) -> ControllerState:
        return await self.dispatch(ReRecordRequested())

    async def end_interview(self) -> ControllerState:
        return await self.dispatch(EndRequested())

    async def cancel(self) -> ControllerState:
        return await self.dispatch(CancelRequested())

    async def close(self) -> None:
        self._cancel_timer()
        await self._discard_recording()

    # Effects

    async def _execute(self, effect: object) -> None:
        if isinstance(effect, CreateSession):
            await self._create_session()
        elif isinstance(effect, SpeakQuestion):
            await self._speak(effect.text)
        elif isinstance(effect, BeginRecording):
            await self._begin_recording()
        elif isinstance(effect, StartCountdown):
            self._start_countdown()
        elif isinstance(effect, StopRecording):
            await self._stop_recording(effect.discard)
        elif isinstance(effect, RequestEvaluation):
            await self._request_evaluation(effect)
        elif isinstance(effect, CompleteSession):
            await self._finish_session(effect.session_id, abandon=False)
        elif isinstance(effect, AbandonSession):
            await self._finish_session(effect.session_id, abandon=True)
        else:
            raise TypeError(f"Unrecognized interview effect: {type(effect).__name__}")

    async def _create_session(self) -> None:
        try:
            started = await self._backend.start_session(self._user_email, self._user_name)
        except Exception as exc:
            LOG.warning("Error starting interview: %s", exc)
            await self.dispatch(SessionCreateFailed(str(exc)))
            return
        LOG.info("Interview session started: %s", started.session_id)
        await self.dispatch(SessionCreated(session_id=started.session_id, at=self._clock()))

    async def _speak(self, text: str) -> None:
        try:
            await self._speech.speak(text)
        except Exception as exc:
            LOG.warning("Speech synthesis failed; continuing to recording: %s", exc)
        await self.dispatch(QuestionSpoken())

    async def _begin_recording(self) -> None:
        if self._settle_delay > 0:
            await asyncio.sleep(self._settle_delay)
        if self.state.phase is not Phase.QUESTION or not self.state.arming:
            return
        # The capture device is held by one recording at a time.
        await self._discard_recording()
        recording = RecordingSession(self._recorder, self._speech)
        try:
            await recording.start()
        except RecordingError as exc:
            LOG.warning("Recording failed: %s", exc)
            await self.dispatch(RecordingFailed(str(exc)))
            return
        self._recording = recording
        state = await self.dispatch(RecordingStarted())
        if state.phase is not Phase.RECORDING and self._recording is recording:
            # The interview moved on while the recorder was starting.
            self._recording = None
            await recording.abort()

    def _start_countdown(self) -> None:
        self._cancel_timer()
        self._timer = asyncio.create_task(self._run_countdown())

    async def _run_countdown(self) -> None:
        while True:
            await asyncio.sleep(self._tick_interval)
            state = await self.dispatch(Tick())
            if state.phase is not Phase.RECORDING or state.stopping:
                return

    def _cancel_timer(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None and timer is not asyncio.current_task() and not timer.done():
            timer.cancel()

    async def _discard_recording(self) -> None:
        recording, self._recording = self._recording, None
        if recording is not None:
            await recording.abort()

    async def _stop_recording(self, discard: bool) -> None:
        self._cancel_timer()
        if discard:
            await self._discard_recording()
            return
        recording, self._recording = self._recording, None
        if recording is None:
            await self.dispatch(RecordingStopped(transcript="", audio_bytes=0))
            return
        audio = await recording.stop()
        await self.dispatch(RecordingStopped(transcript=recording.transcript.final_text, audio_bytes=len(audio)))

    async def _request_evaluation(self, effect: RequestEvaluation) -> None:
        try:
            evaluation = await self._backend.evaluate(
                effect.question,
                effect.answer,
                session_id=effect.session_id,
                question_index=effect.question_index,
                transcript_text=effect.transcript_text,
                audio_duration=effect.audio_duration,
                response_time=effect.response_time,
            )
        except Exception as exc:
            LOG.warning("Evaluation failed; using fallback evaluation: %s", exc)
            evaluation = fallback_evaluation(effect.answer)
        await self.dispatch(EvaluationReceived(evaluation))

    async def _finish_session(self, session_id: str, abandon: bool) -> None:
        self._cancel_timer()
        try:
            if abandon:
                result = await self._backend.abandon_session(session_id)
            else:
                result = await self._backend.complete_session(session_id)
        except Exception as exc:
            LOG.error("Error finalizing interview session %s: %s", session_id, exc)
            return
        self.summary = result.get("session") if isinstance(result, dict) else None
