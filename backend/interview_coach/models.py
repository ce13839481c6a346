from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel


def _new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRecord(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=_new_id, primary_key=True)
    email: str = Field(index=True, unique=True)
    name: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    total_interviews: int = Field(default=0)
    average_score: float = Field(default=0.0)


class InterviewSessionRecord(SQLModel, table=True):
    __tablename__ = "interview_sessions"

    id: str = Field(default_factory=_new_id, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    session_token: str = Field(default_factory=_new_id, unique=True)
    status: str = Field(default="in_progress", index=True)  # in_progress | completed | abandoned
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = Field(default=None)
    total_questions: int = Field(default=0)
    questions_answered: int = Field(default=0)
    overall_score: Optional[float] = Field(default=None)
    session_metadata: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))


class QuestionResponseRecord(SQLModel, table=True):
    __tablename__ = "question_responses"
    __table_args__ = (UniqueConstraint("session_id", "question_index", name="uq_response_session_question"),)

    id: str = Field(default_factory=_new_id, primary_key=True)
    session_id: str = Field(foreign_key="interview_sessions.id", index=True)
    question_index: int
    question_text: str
    user_answer: Optional[str] = Field(default=None)
    transcript_text: Optional[str] = Field(default=None)
    audio_duration: Optional[int] = Field(default=None)  # seconds, estimated from blob size
    response_time: Optional[int] = Field(default=None)  # seconds
    evaluation_score: Optional[float] = Field(default=None)
    evaluation_feedback: Optional[str] = Field(default=None)
    evaluation_strengths: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    evaluation_improvements: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow)


class PerformanceMetricRecord(SQLModel, table=True):
    __tablename__ = "performance_analytics"

    id: str = Field(default_factory=_new_id, primary_key=True)
    user_id: Optional[str] = Field(default=None, foreign_key="users.id", index=True)
    session_id: Optional[str] = Field(default=None, foreign_key="interview_sessions.id", index=True)
    metric_name: str
    metric_value: Optional[float] = Field(default=None)
    metric_data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    recorded_at: datetime = Field(default_factory=utcnow)
