from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

# Substituted when no transcript was captured; the evaluator matches on it.
EMPTY_SPEECH_SENTINEL = "No speech was detected in the response."

MIN_SCORE = 1.0
MAX_SCORE = 5.0


class Evaluation(BaseModel):
    """Structured evaluation of one answer. Every field is required and non-empty."""

    overall: float = Field(ge=MIN_SCORE, le=MAX_SCORE)
    feedback: str = Field(min_length=1)
    strengths: List[str] = Field(min_length=1)
    improvements: List[str] = Field(min_length=1)


class StartInterviewPayload(BaseModel):
    user_email: Optional[str] = Field(default=None, alias="userEmail")
    user_name: Optional[str] = Field(default=None, alias="userName")


class EvaluatePayload(BaseModel):
    question: Optional[str] = None
    answer: Optional[str] = None
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    question_index: Optional[int] = Field(default=None, alias="questionIndex")
    transcript_text: Optional[str] = Field(default=None, alias="transcriptText")
    audio_duration: Optional[int] = Field(default=None, alias="audioDuration")
    response_time: Optional[int] = Field(default=None, alias="responseTime")


class SessionActionPayload(BaseModel):
    session_id: Optional[str] = Field(default=None, alias="sessionId")


class MetricPayload(BaseModel):
    user_id: Optional[str] = Field(default=None, alias="userId")
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    metric_name: str = Field(..., alias="metricName")
    metric_value: Optional[float] = Field(default=None, alias="metricValue")
    metric_data: Dict[str, Any] = Field(default_factory=dict, alias="metricData")
