"""
Persistence for users, interview sessions, question responses and metrics.

Session score bookkeeping that a database would do with triggers lives here:
saving a response refreshes the running session score, and completing a
session refreshes the owning user's totals.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from interview_coach.models import (
    InterviewSessionRecord,
    PerformanceMetricRecord,
    QuestionResponseRecord,
    UserRecord,
    utcnow,
)
from interview_coach.schemas import Evaluation

LOG = logging.getLogger("interview.store")

STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"
STATUS_ABANDONED = "abandoned"

DEFAULT_USER_NAME = "Anonymous User"
HIGH_SCORE_THRESHOLD = 4.0
LOW_SCORE_THRESHOLD = 2.0


class StoreError(Exception):
    """Base class for persistence failures surfaced to HTTP callers."""


class RecordNotFound(StoreError):
    pass


class SessionClosed(StoreError):
    """The session already reached a terminal status."""


def _mean(values: Sequence[Optional[float]]) -> Optional[float]:
    vals = [v for v in values if v is not None]
    return sum(vals) / len(vals) if vals else None


def _round_score(value: Optional[float]) -> Optional[float]:
    return round(value, 2) if value is not None else None


async def create_or_get_user(session: AsyncSession, email: str, name: Optional[str] = None) -> UserRecord:
    user = (await session.exec(select(UserRecord).where(UserRecord.email == email))).first()
    if user is not None:
        return user
    user = UserRecord(email=email, name=name or DEFAULT_USER_NAME)
    session.add(user)
    try:
        await session.commit()
    except IntegrityError:
        # Another request created the same email first.
        await session.rollback()
        existing = (await session.exec(select(UserRecord).where(UserRecord.email == email))).first()
        if existing is None:
            raise StoreError(f"Could not create user {email}")
        return existing
    await session.refresh(user)
    return user


async def create_interview_session(
    session: AsyncSession, user_id: str, metadata: Optional[Dict[str, Any]] = None
) -> InterviewSessionRecord:
    if await session.get(UserRecord, user_id) is None:
        raise RecordNotFound(f"User {user_id} not found")
    row = InterviewSessionRecord(
        user_id=user_id,
        status=STATUS_IN_PROGRESS,
        session_metadata=dict(metadata or {}),
    )
    session.add(row)
    await session.commit()
    await session.refresh(row)
    return row


async def _get_session_row(session: AsyncSession, session_id: str) -> InterviewSessionRecord:
    row = await session.get(InterviewSessionRecord, session_id)
    if row is None:
        raise RecordNotFound(f"Interview session {session_id} not found")
    return row


async def update_interview_session(
    session: AsyncSession, session_id: str, **updates: Any
) -> InterviewSessionRecord:
    row = await _get_session_row(session, session_id)
    for key, value in updates.items():
        if key == "id" or key not in InterviewSessionRecord.model_fields:
            raise StoreError(f"Unknown session field: {key}")
        setattr(row, key, value)
    session.add(row)
    await session.commit()
    await session.refresh(row)
    return row


async def get_interview_session(session: AsyncSession, session_id: str) -> Dict[str, Any]:
    row = await _get_session_row(session, session_id)
    user = await session.get(UserRecord, row.user_id)
    payload = row.model_dump()
    payload["user"] = (
        {"id": user.id, "name": user.name, "email": user.email} if user is not None else None
    )
    return payload


async def get_session_responses(session: AsyncSession, session_id: str) -> List[QuestionResponseRecord]:
    result = await session.exec(
        select(QuestionResponseRecord)
        .where(QuestionResponseRecord.session_id == session_id)
        .order_by(QuestionResponseRecord.question_index)
    )
    return list(result.all())


async def _refresh_running_score(session: AsyncSession, session_id: str) -> None:
    row = await _get_session_row(session, session_id)
    if row.status != STATUS_IN_PROGRESS:
        return
    responses = await get_session_responses(session, session_id)
    running = _mean([r.evaluation_score for r in responses])
    row.overall_score = _round_score(running if running is not None else 0.0)
    session.add(row)
    await session.commit()


async def save_question_response(
    session: AsyncSession,
    *,
    session_id: str,
    question_index: int,
    question_text: str,
    user_answer: Optional[str] = None,
    transcript_text: Optional[str] = None,
    audio_duration: Optional[int] = None,
    response_time: Optional[int] = None,
    evaluation: Optional[Evaluation] = None,
) -> QuestionResponseRecord:
    """Insert or overwrite the response keyed on (session_id, question_index)."""
    row = await _get_session_row(session, session_id)
    if row.status != STATUS_IN_PROGRESS:
        raise SessionClosed(f"Interview session {session_id} is {row.status}")
    values: Dict[str, Any] = {
        "question_text": question_text,
        "user_answer": user_answer,
        "transcript_text": transcript_text,
        "audio_duration": audio_duration,
        "response_time": response_time,
        "evaluation_score": evaluation.overall if evaluation else None,
        "evaluation_feedback": evaluation.feedback if evaluation else None,
        "evaluation_strengths": list(evaluation.strengths) if evaluation else [],
        "evaluation_improvements": list(evaluation.improvements) if evaluation else [],
    }

    for attempt in range(2):
        existing = (
            await session.exec(
                select(QuestionResponseRecord).where(
                    QuestionResponseRecord.session_id == session_id,
                    QuestionResponseRecord.question_index == question_index,
                )
            )
        ).first()
        if existing is None:
            record = QuestionResponseRecord(session_id=session_id, question_index=question_index, **values)
        else:
            record = existing
            for key, value in values.items():
                setattr(record, key, value)
        session.add(record)
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            if attempt:
                raise StoreError(
                    f"Could not save response {question_index} for session {session_id}"
                )
            LOG.info("Concurrent insert for session=%s index=%s; retrying as update", session_id, question_index)
            continue
        await session.refresh(record)
        break

    await _refresh_running_score(session, session_id)
    await session.refresh(record)
    return record


async def _refresh_user_stats(session: AsyncSession, user_id: str) -> None:
    user = await session.get(UserRecord, user_id)
    if user is None:
        return
    completed = (
        await session.exec(
            select(InterviewSessionRecord).where(
                InterviewSessionRecord.user_id == user_id,
                InterviewSessionRecord.status == STATUS_COMPLETED,
            )
        )
    ).all()
    user.total_interviews = len(completed)
    user.average_score = _round_score(_mean([s.overall_score for s in completed])) or 0.0
    user.updated_at = utcnow()
    session.add(user)
    await session.commit()


async def complete_interview_session(session: AsyncSession, session_id: str) -> InterviewSessionRecord:
    """Finalize a session. Missing scores count as zero in the overall average."""
    row = await _get_session_row(session, session_id)
    if row.status == STATUS_ABANDONED:
        raise SessionClosed(f"Interview session {session_id} was abandoned")
    if row.status == STATUS_COMPLETED:
        return row

    responses = await get_session_responses(session, session_id)
    total = len(responses)
    answered = sum(1 for r in responses if r.user_answer and r.user_answer.strip())
    overall = sum((r.evaluation_score or 0.0) for r in responses) / total if total else 0.0

    row.status = STATUS_COMPLETED
    row.completed_at = utcnow()
    row.total_questions = total
    row.questions_answered = answered
    row.overall_score = _round_score(overall)
    session.add(row)
    await session.commit()

    await _refresh_user_stats(session, row.user_id)
    await session.refresh(row)
    return row


async def abandon_interview_session(session: AsyncSession, session_id: str) -> InterviewSessionRecord:
    row = await _get_session_row(session, session_id)
    if row.status == STATUS_COMPLETED:
        raise SessionClosed(f"Interview session {session_id} is already completed")
    if row.status != STATUS_ABANDONED:
        row.status = STATUS_ABANDONED
        session.add(row)
        await session.commit()
        await session.refresh(row)
    return row


async def record_performance_metric(
    session: AsyncSession,
    user_id: Optional[str],
    session_id: Optional[str],
    metric_name: str,
    metric_value: Optional[float] = None,
    metric_data: Optional[Dict[str, Any]] = None,
) -> PerformanceMetricRecord:
    metric = PerformanceMetricRecord(
        user_id=user_id,
        session_id=session_id,
        metric_name=metric_name,
        metric_value=metric_value,
        metric_data=dict(metric_data or {}),
    )
    session.add(metric)
    await session.commit()
    await session.refresh(metric)
    return metric


async def get_user_performance(session: AsyncSession, user_id: str) -> Dict[str, Any]:
    user = await session.get(UserRecord, user_id)
    if user is None:
        raise RecordNotFound(f"User {user_id} not found")
    sessions = (
        await session.exec(select(InterviewSessionRecord).where(InterviewSessionRecord.user_id == user_id))
    ).all()
    completed = [s for s in sessions if s.status == STATUS_COMPLETED]
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "total_interviews": user.total_interviews,
        "average_score": user.average_score,
        "completed_interviews": len(completed),
        "abandoned_interviews": sum(1 for s in sessions if s.status == STATUS_ABANDONED),
        "calculated_avg_score": _mean([s.overall_score for s in completed]),
        "last_interview_date": max((s.completed_at for s in completed if s.completed_at), default=None),
    }


async def get_question_analytics(session: AsyncSession) -> List[Dict[str, Any]]:
    scored = (
        await session.exec(
            select(QuestionResponseRecord).where(QuestionResponseRecord.evaluation_score.is_not(None))
        )
    ).all()
    grouped: Dict[str, List[QuestionResponseRecord]] = {}
    for response in scored:
        grouped.setdefault(response.question_text, []).append(response)

    items: List[Dict[str, Any]] = []
    for question_text in sorted(grouped):
        rows = grouped[question_text]
        items.append(
            {
                "question_text": question_text,
                "total_responses": len(rows),
                "average_score": _mean([r.evaluation_score for r in rows]),
                "average_response_time": _mean([float(r.response_time) if r.response_time is not None else None for r in rows]),
                "average_audio_duration": _mean([float(r.audio_duration) if r.audio_duration is not None else None for r in rows]),
                "high_scores": sum(1 for r in rows if r.evaluation_score >= HIGH_SCORE_THRESHOLD),
                "low_scores": sum(1 for r in rows if r.evaluation_score < LOW_SCORE_THRESHOLD),
            }
        )
    return items


async def get_user_interview_history(session: AsyncSession, user_id: str, limit: int = 10) -> List[Dict[str, Any]]:
    limit = max(1, min(int(limit), 100))
    sessions = (
        await session.exec(
            select(InterviewSessionRecord)
            .where(InterviewSessionRecord.user_id == user_id)
            .order_by(InterviewSessionRecord.started_at.desc())
            .limit(limit)
        )
    ).all()

    items: List[Dict[str, Any]] = []
    for row in sessions:
        responses = await get_session_responses(session, row.id)
        items.append(
            {
                **row.model_dump(),
                "question_responses": [
                    {
                        "id": r.id,
                        "question_index": r.question_index,
                        "evaluation_score": r.evaluation_score,
                        "created_at": r.created_at,
                    }
                    for r in responses
                ],
            }
        )
    return items
