"""
Interview state machine.

``transition`` is a pure function from (state, event) to (state, effects).
The controller applies it and executes the returned effects; nothing here
touches the speech engine, the recorder or the network.

Per question the phases run QUESTION -> RECORDING -> REVIEW -> EVALUATING ->
RESULTS, then either the next QUESTION or COMPLETE after the last one.
Events that do not apply to the current phase are ignored.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Tuple, Type

from interview_coach.schemas import EMPTY_SPEECH_SENTINEL, Evaluation

RECORDING_SECONDS = 30
SETTLE_DELAY_SECONDS = 1.0
AUDIO_BYTES_PER_SECOND = 1000  # rough size-based duration estimate, not a measurement

DEFAULT_QUESTIONS: Tuple[str, ...] = (
    "Tell me about yourself and your background in software development.",
    "What are your key technical skills and areas of expertise?",
    "Can you describe your most recent work experience and role?",
    "Tell me about a challenging project you've worked on recently.",
    "What are you looking for in your next opportunity and career goals?",
)

PERMISSION_DENIED_MESSAGE = "Microphone permission denied. The microphone is required for the interview."
PERMISSION_REQUIRED_MESSAGE = (
    "Microphone permission is required to start the interview. Please allow access and try again."
)


class Phase(str, Enum):
    WELCOME = "welcome"
    QUESTION = "question"
    RECORDING = "recording"
    REVIEW = "review"
    EVALUATING = "evaluating"
    RESULTS = "results"
    COMPLETE = "complete"


class SessionStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


@dataclass(frozen=True)
class QuestionResponse:
    question_index: int
    question_text: str
    user_answer: str
    transcript_text: str
    audio_duration_seconds: int
    response_time_seconds: int
    evaluation: Optional[Evaluation] = None


@dataclass(frozen=True)
class InterviewSession:
    id: str
    questions: Tuple[str, ...]
    current_index: int = 0
    responses: Mapping[int, QuestionResponse] = field(default_factory=dict)
    status: SessionStatus = SessionStatus.IN_PROGRESS

    @property
    def current_question(self) -> str:
        return self.questions[self.current_index]

    @property
    def is_last_question(self) -> bool:
        return self.current_index >= len(self.questions) - 1

    @property
    def is_terminal(self) -> bool:
        return self.status is not SessionStatus.IN_PROGRESS


@dataclass(frozen=True)
class ControllerState:
    phase: Phase = Phase.WELCOME
    questions: Tuple[str, ...] = DEFAULT_QUESTIONS
    recording_seconds: int = RECORDING_SECONDS
    session: Optional[InterviewSession] = None
    permission_granted: bool = False
    starting: bool = False
    arming: bool = False
    stopping: bool = False
    time_left: int = RECORDING_SECONDS
    question_shown_at: Optional[float] = None
    answer: str = ""
    transcript_text: str = ""
    audio_bytes: int = 0
    draft: Optional[QuestionResponse] = None
    evaluation: Optional[Evaluation] = None
    error: Optional[str] = None


# Events


@dataclass(frozen=True)
class PermissionResolved:
    granted: bool


@dataclass(frozen=True)
class StartRequested:
    pass


@dataclass(frozen=True)
class SessionCreated:
    session_id: str
    at: float


@dataclass(frozen=True)
class SessionCreateFailed:
    message: str


@dataclass(frozen=True)
class QuestionSpoken:
    """Speech output finished, successfully or not."""


@dataclass(frozen=True)
class RecordingStarted:
    pass


@dataclass(frozen=True)
class RecordingFailed:
    message: str


@dataclass(frozen=True)
class Tick:
    pass


@dataclass(frozen=True)
class StopRequested:
    pass


@dataclass(frozen=True)
class RecordingStopped:
    transcript: str
    audio_bytes: int


@dataclass(frozen=True)
class SubmitRequested:
    at: float


@dataclass(frozen=True)
class EvaluationReceived:
    evaluation: Evaluation


@dataclass(frozen=True)
class NextRequested:
    at: float


@dataclass(frozen=True)
class ReRecordRequested:
    pass


@dataclass(frozen=True)
class EndRequested:
    pass


@dataclass(frozen=True)
class CancelRequested:
    pass


# Effects


@dataclass(frozen=True)
class CreateSession:
    pass


@dataclass(frozen=True)
class SpeakQuestion:
    text: str


@dataclass(frozen=True)
class BeginRecording:
    settle_delay: float = SETTLE_DELAY_SECONDS


@dataclass(frozen=True)
class StartCountdown:
    seconds: int


@dataclass(frozen=True)
class StopRecording:
    discard: bool = False


@dataclass(frozen=True)
class RequestEvaluation:
    session_id: str
    question_index: int
    question: str
    answer: str
    transcript_text: str
    audio_duration: int
    response_time: int


@dataclass(frozen=True)
class CompleteSession:
    session_id: str


@dataclass(frozen=True)
class AbandonSession:
    session_id: str


Effects = List[object]
Result = Tuple[ControllerState, Effects]


def initial_state(
    questions: Tuple[str, ...] = DEFAULT_QUESTIONS, recording_seconds: int = RECORDING_SECONDS
) -> ControllerState:
    if not questions:
        raise ValueError("An interview needs at least one question")
    return ControllerState(
        questions=tuple(questions),
        recording_seconds=recording_seconds,
        time_left=recording_seconds,
    )


def _fresh_answer(state: ControllerState, **changes) -> ControllerState:
    """Clear per-answer fields before (re)asking a question."""
    return replace(
        state,
        answer="",
        transcript_text="",
        audio_bytes=0,
        draft=None,
        evaluation=None,
        arming=False,
        stopping=False,
        time_left=state.recording_seconds,
        **changes,
    )


def _on_permission(state: ControllerState, event: PermissionResolved) -> Result:
    if state.phase is not Phase.WELCOME:
        return state, []
    if event.granted:
        return replace(state, permission_granted=True, error=None), []
    return replace(state, permission_granted=False, error=PERMISSION_DENIED_MESSAGE), []


def _on_start(state: ControllerState, event: StartRequested) -> Result:
    if state.phase is not Phase.WELCOME or state.starting:
        return state, []
    if not state.permission_granted:
        return replace(state, error=PERMISSION_REQUIRED_MESSAGE), []
    return replace(state, starting=True, error=None), [CreateSession()]


def _on_session_created(state: ControllerState, event: SessionCreated) -> Result:
    if state.phase is not Phase.WELCOME or not state.starting:
        return state, []
    session = InterviewSession(id=event.session_id, questions=state.questions)
    new_state = _fresh_answer(
        state,
        phase=Phase.QUESTION,
        session=session,
        starting=False,
        question_shown_at=event.at,
        error=None,
    )
    return new_state, [SpeakQuestion(session.current_question)]


def _on_session_create_failed(state: ControllerState, event: SessionCreateFailed) -> Result:
    if state.phase is not Phase.WELCOME:
        return state, []
    return replace(state, starting=False, error=f"Failed to start interview session: {event.message}"), []


def _on_question_spoken(state: ControllerState, event: QuestionSpoken) -> Result:
    if state.phase is not Phase.QUESTION or state.arming:
        return state, []
    return replace(state, arming=True), [BeginRecording()]


def _on_recording_started(state: ControllerState, event: RecordingStarted) -> Result:
    if state.phase is not Phase.QUESTION or not state.arming:
        return state, []
    new_state = replace(
        state,
        phase=Phase.RECORDING,
        arming=False,
        stopping=False,
        time_left=state.recording_seconds,
        error=None,
    )
    return new_state, [StartCountdown(state.recording_seconds)]


def _on_recording_failed(state: ControllerState, event: RecordingFailed) -> Result:
    if state.phase is not Phase.QUESTION:
        return state, []
    return replace(state, arming=False, error=event.message), []


def _on_tick(state: ControllerState, event: Tick) -> Result:
    if state.phase is not Phase.RECORDING or state.stopping:
        return state, []
    time_left = state.time_left - 1
    if time_left <= 0:
        return replace(state, time_left=0, stopping=True), [StopRecording()]
    return replace(state, time_left=time_left), []


def _on_stop(state: ControllerState, event: StopRequested) -> Result:
    if state.phase is not Phase.RECORDING or state.stopping:
        return state, []
    return replace(state, stopping=True), [StopRecording()]


def _on_recording_stopped(state: ControllerState, event: RecordingStopped) -> Result:
    if state.phase is not Phase.RECORDING:
        return state, []
    transcript = (event.transcript or "").strip()
    new_state = replace(
        state,
        phase=Phase.REVIEW,
        stopping=False,
        transcript_text=transcript,
        answer=transcript or EMPTY_SPEECH_SENTINEL,
        audio_bytes=max(0, event.audio_bytes),
    )
    return new_state, []


def _on_submit(state: ControllerState, event: SubmitRequested) -> Result:
    if state.phase is not Phase.REVIEW or state.session is None:
        return state, []
    session = state.session
    elapsed = event.at - state.question_shown_at if state.question_shown_at is not None else 0
    draft = QuestionResponse(
        question_index=session.current_index,
        question_text=session.current_question,
        user_answer=state.answer,
        transcript_text=state.transcript_text,
        audio_duration_seconds=state.audio_bytes // AUDIO_BYTES_PER_SECOND,
        response_time_seconds=max(0, int(elapsed)),
    )
    effect = RequestEvaluation(
        session_id=session.id,
        question_index=draft.question_index,
        question=draft.question_text,
        answer=draft.user_answer,
        transcript_text=draft.transcript_text,
        audio_duration=draft.audio_duration_seconds,
        response_time=draft.response_time_seconds,
    )
    return replace(state, phase=Phase.EVALUATING, draft=draft), [effect]


def _on_evaluation(state: ControllerState, event: EvaluationReceived) -> Result:
    if state.phase is not Phase.EVALUATING or state.session is None or state.draft is None:
        return state, []
    response = replace(state.draft, evaluation=event.evaluation)
    responses: Dict[int, QuestionResponse] = dict(state.session.responses)
    responses[response.question_index] = response
    session = replace(state.session, responses=responses)
    return replace(state, phase=Phase.RESULTS, session=session, draft=None, evaluation=event.evaluation), []


def _on_next(state: ControllerState, event: NextRequested) -> Result:
    if state.phase is not Phase.RESULTS or state.session is None:
        return state, []
    session = state.session
    if session.is_last_question:
        finished = replace(session, status=SessionStatus.COMPLETED)
        return replace(state, phase=Phase.COMPLETE, session=finished), [CompleteSession(session.id)]
    advanced = replace(session, current_index=session.current_index + 1)
    new_state = _fresh_answer(state, phase=Phase.QUESTION, session=advanced, question_shown_at=event.at)
    return new_state, [SpeakQuestion(advanced.current_question)]


def _on_re_record(state: ControllerState, event: ReRecordRequested) -> Result:
    if state.session is None:
        return state, []
    # From QUESTION only as a retry after the recorder failed to start.
    retry = state.phase is Phase.QUESTION and not state.arming and state.error is not None
    if state.phase not in (Phase.RECORDING, Phase.REVIEW, Phase.RESULTS) and not retry:
        return state, []
    effects: Effects = []
    if state.phase is Phase.RECORDING:
        effects.append(StopRecording(discard=True))
    session = state.session
    if session.current_index in session.responses:
        responses = {k: v for k, v in session.responses.items() if k != session.current_index}
        session = replace(session, responses=responses)
    effects.append(SpeakQuestion(session.current_question))
    return _fresh_answer(state, phase=Phase.QUESTION, session=session, error=None), effects


def _close_session(state: ControllerState, status: SessionStatus, closing_effect: object) -> Result:
    if state.session is None or state.phase is Phase.COMPLETE:
        return state, []
    effects: Effects = []
    if state.phase is Phase.RECORDING or state.arming:
        effects.append(StopRecording(discard=True))
    effects.append(closing_effect)
    session = replace(state.session, status=status)
    return replace(state, phase=Phase.COMPLETE, session=session, arming=False, stopping=False), effects


def _on_end(state: ControllerState, event: EndRequested) -> Result:
    session_id = state.session.id if state.session else ""
    return _close_session(state, SessionStatus.COMPLETED, CompleteSession(session_id))


def _on_cancel(state: ControllerState, event: CancelRequested) -> Result:
    session_id = state.session.id if state.session else ""
    return _close_session(state, SessionStatus.ABANDONED, AbandonSession(session_id))


_HANDLERS: Dict[Type, Callable[[ControllerState, object], Result]] = {
    PermissionResolved: _on_permission,
    StartRequested: _on_start,
    SessionCreated: _on_session_created,
    SessionCreateFailed: _on_session_create_failed,
    QuestionSpoken: _on_question_spoken,
    RecordingStarted: _on_recording_started,
    RecordingFailed: _on_recording_failed,
    Tick: _on_tick,
    StopRequested: _on_stop,
    RecordingStopped: _on_recording_stopped,
    SubmitRequested: _on_submit,
    EvaluationReceived: _on_evaluation,
    NextRequested: _on_next,
    ReRecordRequested: _on_re_record,
    EndRequested: _on_end,
    CancelRequested: _on_cancel,
}


def transition(state: ControllerState, event: object) -> Result:
    handler = _HANDLERS.get(type(event))
    if handler is None:
        raise TypeError(f"Unrecognized interview event: {type(event).__name__}")
    return handler(state, event)
