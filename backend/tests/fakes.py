import asyncio
from typing import Any, Dict, List, Optional

from interview_coach.capabilities import StartedSession, TranscriptEvent
from interview_coach.schemas import Evaluation


def finals(*texts: str) -> List[TranscriptEvent]:
    return [TranscriptEvent(text=t, is_final=True) for t in texts]


class FakeSpeech:
    """Speaks instantly and replays one scripted transcript per recording."""

    def __init__(self, scripts: Optional[List[List[TranscriptEvent]]] = None, fail_speak: bool = False,
                 stream_error: Optional[Exception] = None):
        self.scripts = list(scripts or [])
        self.fail_speak = fail_speak
        self.stream_error = stream_error
        self.spoken: List[str] = []
        self.listen_calls = 0
        self._stop = asyncio.Event()

    async def speak(self, text: str) -> None:
        self._stop = asyncio.Event()
        self.spoken.append(text)
        if self.fail_speak:
            raise RuntimeError("synthesis-failed")

    async def listen(self):
        self.listen_calls += 1
        script = self.scripts.pop(0) if self.scripts else []
        for event in script:
            await asyncio.sleep(0)
            yield event
        if self.stream_error is not None:
            raise self.stream_error
        await self._stop.wait()

    async def stop_listening(self) -> None:
        self._stop.set()


class FakeRecorder:
    def __init__(self, access: bool = True, audio: bytes = b"\x00" * 4500, fail_start_times: int = 0,
                 fail_stop: bool = False):
        self.access = access
        self.audio = audio
        self.fail_start_times = fail_start_times
        self.fail_stop = fail_stop
        self.starts = 0
        self.stops = 0
        self.releases = 0
        self.active = 0
        self.max_active = 0

    async def request_access(self) -> bool:
        return self.access

    async def start(self) -> None:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        if self.fail_start_times:
            self.fail_start_times -= 1
            raise RuntimeError("recorder-busy")
        self.starts += 1

    async def stop(self) -> bytes:
        self.stops += 1
        if self.fail_stop:
            raise RuntimeError("recorder-stop-failed")
        return self.audio

    async def release(self) -> None:
        if self.active:
            self.active -= 1
        self.releases += 1


class FakeBackend:
    def __init__(self, fail_start: bool = False, fail_evaluate: bool = False):
        self.fail_start = fail_start
        self.fail_evaluate = fail_evaluate
        self.evaluations: List[Dict[str, Any]] = []
        self.completed: List[str] = []
        self.abandoned: List[str] = []
        self.score = 4.0

    async def start_session(self, user_email=None, user_name=None) -> StartedSession:
        if self.fail_start:
            raise RuntimeError("backend-down")
        return StartedSession(session_id="sess-1", session_token="tok-1", user_id="user-1")

    async def evaluate(self, question: str, answer: str, **metadata: Any) -> Evaluation:
        self.evaluations.append({"question": question, "answer": answer, **metadata})
        if self.fail_evaluate:
            raise RuntimeError("evaluate-down")
        return Evaluation(
            overall=self.score,
            feedback="Clear and specific.",
            strengths=["Specific examples"],
            improvements=["Quantify impact"],
        )

    async def complete_session(self, session_id: str) -> Dict[str, Any]:
        self.completed.append(session_id)
        return {"success": True, "session": {"id": session_id, "status": "completed"}}

    async def abandon_session(self, session_id: str) -> Dict[str, Any]:
        self.abandoned.append(session_id)
        return {"success": True, "session": {"id": session_id, "status": "abandoned"}}


class StepClock:
    def __init__(self, start: float = 100.0, step: float = 7.5):
        self.now = start
        self.step = step

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        return value


async def wait_for_phase(controller, phase, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while controller.phase is not phase:
        if loop.time() > deadline:
            raise AssertionError(f"controller stuck in {controller.phase}, expected {phase}")
        await asyncio.sleep(0.005)
