"""Interfaces of the collaborators the interview controller drives."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Optional, Protocol

from interview_coach.schemas import Evaluation


@dataclass(frozen=True)
class TranscriptEvent:
    """One partial recognition result. Final segments are kept, interim ones only previewed."""

    text: str
    is_final: bool


@dataclass(frozen=True)
class StartedSession:
    session_id: str
    session_token: Optional[str] = None
    user_id: Optional[str] = None


class SpeechEngine(Protocol):
    async def speak(self, text: str) -> None:
        """Resolve once the text has been spoken. May raise on synthesis failure."""

    def listen(self) -> AsyncIterator[TranscriptEvent]:
        """Stream recognition results until ``stop_listening`` is called."""

    async def stop_listening(self) -> None:
        ...


class Recorder(Protocol):
    async def request_access(self) -> bool:
        """Return whether the capture device may be used."""

    async def start(self) -> None:
        """Acquire the capture stream and begin recording."""

    async def stop(self) -> bytes:
        """Stop recording and return the encoded audio artifact."""

    async def release(self) -> None:
        """Release the capture stream. Must be safe to call more than once."""


class InterviewBackend(Protocol):
    async def start_session(self, user_email: Optional[str] = None, user_name: Optional[str] = None) -> StartedSession:
        ...

    async def evaluate(self, question: str, answer: str, **metadata: Any) -> Evaluation:
        """Must not raise; implementations substitute a fallback evaluation."""

    async def complete_session(self, session_id: str) -> Dict[str, Any]:
        ...

    async def abandon_session(self, session_id: str) -> Dict[str, Any]:
        ...
