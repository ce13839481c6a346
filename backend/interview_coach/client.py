"""HTTP adapter that lets the interview controller talk to the backend API."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from interview_coach.capabilities import StartedSession
from interview_coach.evaluator import fallback_evaluation
from interview_coach.schemas import Evaluation

LOG = logging.getLogger("interview.controller")

INTERVIEW_API_URL = os.getenv("INTERVIEW_API_URL", "http://localhost:3000")
INTERVIEW_API_TIMEOUT = float(os.getenv("INTERVIEW_API_TIMEOUT", "30"))


class BackendError(Exception):
    def __init__(self, action: str, status_code: Optional[int] = None, detail: str = "") -> None:
        self.action = action
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"Failed to {action}: {status_code} {detail}".strip())


class InterviewApiClient:
    def __init__(
        self,
        base_url: str = INTERVIEW_API_URL,
        timeout: float = INTERVIEW_API_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "InterviewApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    @staticmethod
    def _json_or_raise(resp: httpx.Response, action: str) -> Dict[str, Any]:
        if resp.status_code >= 400:
            try:
                body = resp.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                detail = body.get("message") or body.get("error") or ""
            else:
                detail = resp.text[:200]
            raise BackendError(action, resp.status_code, str(detail))
        return resp.json()

    async def start_session(self, user_email: Optional[str] = None, user_name: Optional[str] = None) -> StartedSession:
        resp = await self._client.post(
            "/api/interview/start",
            json={"userEmail": user_email, "userName": user_name or "Anonymous User"},
        )
        data = self._json_or_raise(resp, "start interview session")
        return StartedSession(
            session_id=data["sessionId"],
            session_token=data.get("sessionToken"),
            user_id=data.get("userId"),
        )

    async def evaluate(
        self,
        question: str,
        answer: str,
        *,
        session_id: Optional[str] = None,
        question_index: Optional[int] = None,
        transcript_text: Optional[str] = None,
        audio_duration: Optional[int] = None,
        response_time: Optional[int] = None,
    ) -> Evaluation:
        """Evaluate through the backend; any failure yields the local fallback evaluation."""
        payload = {
            "question": question,
            "answer": answer,
            "sessionId": session_id,
            "questionIndex": question_index,
            "transcriptText": transcript_text,
            "audioDuration": audio_duration,
            "responseTime": response_time,
        }
        try:
            resp = await self._client.post("/api/evaluate", json=payload)
        except httpx.HTTPError as exc:
            LOG.warning("Evaluation request failed: %s", exc)
            return fallback_evaluation(answer)
        if resp.status_code != 200:
            LOG.warning("Evaluation API responded with %s: %s", resp.status_code, resp.text[:200])
            return fallback_evaluation(answer)
        try:
            return Evaluation.model_validate(resp.json())
        except (ValueError, ValidationError) as exc:
            LOG.warning("Invalid evaluation structure from backend: %s", exc)
            return fallback_evaluation(answer)

    async def complete_session(self, session_id: str) -> Dict[str, Any]:
        resp = await self._client.post("/api/interview/complete", json={"sessionId": session_id})
        return self._json_or_raise(resp, "complete interview session")

    async def abandon_session(self, session_id: str) -> Dict[str, Any]:
        resp = await self._client.post("/api/interview/abandon", json={"sessionId": session_id})
        return self._json_or_raise(resp, "abandon interview session")
