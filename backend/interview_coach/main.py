"""
FastAPI backend for the voice mock interview coach.
Scores answers with an LLM (falling back to a deterministic evaluation),
persists sessions and responses, and serves the single-page client.
"""

from __future__ import annotations

import logging
import os
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response
from sqlalchemy.exc import SQLAlchemyError

from interview_coach import evaluator, store
from interview_coach.db import get_session, init_db
from interview_coach.schemas import (
    EvaluatePayload,
    MetricPayload,
    SessionActionPayload,
    StartInterviewPayload,
)

APP_ENV = os.getenv("APP_ENV", "development")
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if origin.strip()
]
STATIC_DIR = Path(__file__).resolve().parent / "static"
PERMISSIONS_POLICY = "microphone=*, camera=*, geolocation=()"
CONTENT_SECURITY_POLICY = (
    "default-src 'self'; "
    "style-src 'self' 'unsafe-inline'; "
    "script-src 'self' 'unsafe-inline'; "
    "connect-src 'self' https://api.groq.com https://speech.googleapis.com wss://speech.googleapis.com "
    "https://*.googleapis.com https://www.google.com; "
    "media-src 'self' blob: data:; "
    "img-src 'self' data: blob:; "
    "font-src 'self' data:; "
    "object-src 'none'; "
    "frame-src 'none'"
)
STARTED_AT = time.monotonic()
LOG = logging.getLogger("interview")

app = FastAPI(title="Voice Interview Coach")


def configure_logging() -> None:
    logging.basicConfig(
        level=LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _public_message(exc: Exception) -> str:
    return str(exc) if APP_ENV == "development" else "Internal server error"


def _error(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "message": message})


@app.on_event("startup")
async def on_startup() -> None:
    await init_db()
    LOG.info("Interview backend ready (env=%s)", APP_ENV)


# CORS for local dev; set CORS_ORIGINS in production.
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def media_permissions_headers(request: Request, call_next) -> Response:
    response = await call_next(request)
    response.headers["Permissions-Policy"] = PERMISSIONS_POLICY
    if APP_ENV == "production":
        response.headers["Content-Security-Policy"] = CONTENT_SECURITY_POLICY
    return response


@app.exception_handler(store.RecordNotFound)
async def not_found_handler(request: Request, exc: store.RecordNotFound) -> JSONResponse:
    return _error(404, "Not found", str(exc))


@app.exception_handler(store.SessionClosed)
async def session_closed_handler(request: Request, exc: store.SessionClosed) -> JSONResponse:
    return _error(409, "Session closed", str(exc))


@app.exception_handler(store.StoreError)
async def store_error_handler(request: Request, exc: store.StoreError) -> JSONResponse:
    LOG.error("Store error on %s: %s", request.url.path, exc)
    return _error(500, "Database operation failed", _public_message(exc))


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    LOG.error("Database error on %s: %s", request.url.path, exc)
    return _error(500, "Database operation failed", _public_message(exc))


@app.get("/health")
async def health(request: Request) -> Dict[str, Any]:
    return {
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.monotonic() - STARTED_AT, 3),
        "environment": APP_ENV,
        "port": PORT,
        "speechRecognitionSupport": {
            "requiresHTTPS": True,
            "currentProtocol": request.url.scheme,
            "isSecure": request.url.scheme == "https" or request.headers.get("x-forwarded-proto") == "https",
        },
    }


@app.post("/api/interview/start")
async def start_interview(payload: StartInterviewPayload, request: Request) -> Dict[str, Any]:
    email = (payload.user_email or "").strip() or f"anonymous_{int(time.time() * 1000)}@temp.com"
    name = (payload.user_name or "").strip() or store.DEFAULT_USER_NAME
    async with get_session() as session:
        user = await store.create_or_get_user(session, email, name)
        row = await store.create_interview_session(
            session,
            user.id,
            {"user_agent": request.headers.get("user-agent")},
        )
    LOG.info("Interview session started: session=%s user=%s", row.id, user.id)
    return {"sessionId": row.id, "sessionToken": row.session_token, "userId": user.id}


@app.post("/api/evaluate")
async def evaluate(payload: EvaluatePayload) -> Response:
    question = payload.question or ""
    answer = payload.answer or ""
    if not question or not answer:
        return JSONResponse(status_code=400, content={"error": "Missing required fields: question and answer"})

    try:
        evaluation = await evaluator.evaluate_answer(question, answer)
    except Exception as exc:
        LOG.error("Evaluation error: %s", exc)
        return _error(500, "Failed to evaluate response", _public_message(exc))

    if payload.session_id and payload.question_index is not None:
        try:
            async with get_session() as session:
                await store.save_question_response(
                    session,
                    session_id=payload.session_id,
                    question_index=payload.question_index,
                    question_text=question,
                    user_answer=answer,
                    transcript_text=payload.transcript_text,
                    audio_duration=payload.audio_duration,
                    response_time=payload.response_time,
                    evaluation=evaluation,
                )
        except (store.StoreError, SQLAlchemyError) as exc:
            # The candidate still gets their evaluation.
            LOG.warning(
                "Failed to save response (session=%s index=%s): %s",
                payload.session_id,
                payload.question_index,
                exc,
            )

    return JSONResponse(content=evaluation.model_dump())


@app.post("/api/interview/complete")
async def complete_interview(payload: SessionActionPayload) -> Response:
    if not payload.session_id:
        return JSONResponse(status_code=400, content={"error": "Missing required field: sessionId"})
    async with get_session() as session:
        row = await store.complete_interview_session(session, payload.session_id)
    LOG.info(
        "Interview session completed: session=%s score=%s answered=%s/%s",
        row.id,
        row.overall_score,
        row.questions_answered,
        row.total_questions,
    )
    return JSONResponse(content={"success": True, "session": jsonable_encoder(row)})


@app.post("/api/interview/abandon")
async def abandon_interview(payload: SessionActionPayload) -> Response:
    if not payload.session_id:
        return JSONResponse(status_code=400, content={"error": "Missing required field: sessionId"})
    async with get_session() as session:
        row = await store.abandon_interview_session(session, payload.session_id)
    return JSONResponse(content={"success": True, "session": jsonable_encoder(row)})


@app.get("/api/session/{session_id}")
async def get_session_details(session_id: str) -> Dict[str, Any]:
    async with get_session() as session:
        details = await store.get_interview_session(session, session_id)
        responses = await store.get_session_responses(session, session_id)
    return {"session": details, "responses": [r.model_dump() for r in responses]}


@app.get("/api/user/{user_id}/performance")
async def user_performance(user_id: str) -> Dict[str, Any]:
    async with get_session() as session:
        return await store.get_user_performance(session, user_id)


@app.get("/api/user/{user_id}/history")
async def user_history(user_id: str, limit: int = 10) -> Dict[str, Any]:
    async with get_session() as session:
        items = await store.get_user_interview_history(session, user_id, limit)
    return {"items": items}


@app.get("/api/analytics/questions")
async def question_analytics() -> Dict[str, List[Dict[str, Any]]]:
    async with get_session() as session:
        return {"items": await store.get_question_analytics(session)}


@app.post("/api/analytics/metric")
async def record_metric(payload: MetricPayload) -> Dict[str, Any]:
    async with get_session() as session:
        metric = await store.record_performance_metric(
            session,
            user_id=payload.user_id,
            session_id=payload.session_id,
            metric_name=payload.metric_name,
            metric_value=payload.metric_value,
            metric_data=payload.metric_data,
        )
    return {"success": True, "metric": metric.model_dump()}


@app.api_route("/api/{path:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE"], include_in_schema=False)
async def api_not_found(path: str) -> JSONResponse:
    return _error(404, "API endpoint not found", "This API endpoint has not been implemented yet")


@app.get("/{full_path:path}", include_in_schema=False)
async def spa_shell(full_path: str) -> FileResponse:
    """Serve static assets when they exist, otherwise the SPA entry point."""
    root = STATIC_DIR.resolve()
    if full_path:
        candidate = (root / full_path).resolve()
        if candidate.is_file() and root in candidate.parents:
            return FileResponse(candidate)
    return FileResponse(root / "index.html")


def run() -> None:
    configure_logging()
    uvicorn.run("interview_coach.main:app", host=HOST, port=PORT, log_level=LOG_LEVEL.lower())


if __name__ == "__main__":
    run()
