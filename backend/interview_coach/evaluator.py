"""
Answer evaluation: LLM scoring with a deterministic fallback.

``evaluate_answer`` never raises. A missing API key, a transport error, a
non-200 status, unparseable output or a response missing any required key all
resolve to ``fallback_evaluation``.
"""

from __future__ import annotations

import json
import logging
import math
import os
import re
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from interview_coach.schemas import EMPTY_SPEECH_SENTINEL, MAX_SCORE, MIN_SCORE, Evaluation

LOG = logging.getLogger("interview")

GROQ_API_KEY = os.getenv("GROQ_API_KEY")
GROQ_API_URL = os.getenv("GROQ_API_URL", "https://api.groq.com/openai/v1/chat/completions")
GROQ_MODEL = os.getenv("GROQ_MODEL", "llama-3.1-70b-versatile")
GROQ_TIMEOUT = float(os.getenv("GROQ_TIMEOUT", "20"))
GROQ_TEMPERATURE = float(os.getenv("GROQ_TEMPERATURE", "0.3"))
GROQ_MAX_TOKENS = int(os.getenv("GROQ_MAX_TOKENS", "1000"))

REQUIRED_KEYS = ("overall", "feedback", "strengths", "improvements")

NON_ANSWER_SCORE = 1.2
GENERIC_FALLBACK_SCORE = 1.5

EVALUATION_PROMPT = """You are a strict professional interview evaluator. Evaluate this interview response honestly and provide accurate scoring.

Interview Question: "{question}"

Candidate's Answer: "{answer}"

IMPORTANT EVALUATION RULES:
- If the answer is "I don't know" or similar non-answers, score should be 1.0-2.0
- If the answer is irrelevant or off-topic, score should be 1.5-2.5
- If the answer lacks substance or detail, score should be 2.0-3.0
- Only give high scores (4.0+) for genuinely good, detailed, relevant answers
- Be honest and critical in your evaluation

Please provide your evaluation in the following JSON format:
{{
    "overall": [score from 1.0 to 5.0],
    "feedback": "[detailed honest feedback paragraph]",
    "strengths": ["strength1", "strength2", "strength3"],
    "improvements": ["improvement1", "improvement2", "improvement3"]
}}

Evaluation Criteria:
- Relevance to the question (25%) - Does it actually answer what was asked?
- Communication clarity (25%) - Is it clear and well-articulated?
- Technical depth/examples (25%) - Are there specific details and examples?
- Professional presentation (25%) - Is it professional and well-structured?

Be honest and constructive. Poor answers should receive low scores."""


def build_evaluation_prompt(question: str, answer: str) -> str:
    return EVALUATION_PROMPT.format(question=question, answer=answer)


def extract_json_candidate(text: str) -> str:
    """Return the first-``{``-to-last-``}`` span, or the whole text when there is none."""
    match = re.search(r"\{.*\}", text or "", flags=re.DOTALL)
    return match.group(0) if match else (text or "")


def clamp_score(value: float) -> float:
    return max(MIN_SCORE, min(MAX_SCORE, value))


def _coerce_score(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(score):
        return None
    return score


def _coerce_items(value: Any) -> List[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    items: List[str] = []
    for item in value:
        text = str(item).strip() if item is not None else ""
        if text:
            items.append(text)
    return items


def parse_evaluation(text: str) -> Optional[Evaluation]:
    """Parse raw scorer output into a valid Evaluation, or None if anything is missing."""
    try:
        data = json.loads(extract_json_candidate(text))
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    if not all(data.get(key) for key in REQUIRED_KEYS):
        return None

    score = _coerce_score(data["overall"])
    if score is None:
        return None
    try:
        return Evaluation(
            overall=clamp_score(score),
            feedback=str(data["feedback"]).strip(),
            strengths=_coerce_items(data["strengths"]),
            improvements=_coerce_items(data["improvements"]),
        )
    except ValidationError:
        return None


def _is_non_answer(answer: str) -> bool:
    if answer == EMPTY_SPEECH_SENTINEL:
        return True
    lower = (answer or "").lower().replace("’", "'")
    return "i don't know" in lower or "i dont know" in lower


def fallback_evaluation(answer: str) -> Evaluation:
    """Deterministic evaluation used whenever the scorer cannot be trusted."""
    if _is_non_answer(answer):
        return Evaluation(
            overall=NON_ANSWER_SCORE,
            feedback=(
                "The response indicates a lack of knowledge about the topic or no speech was detected. "
                "This is not suitable for an interview setting."
            ),
            strengths=["Honest about knowledge gaps"],
            improvements=[
                "Prepare better for the interview",
                "Research common interview questions",
                "Provide alternative approaches or related experience",
            ],
        )
    return Evaluation(
        overall=GENERIC_FALLBACK_SCORE,
        feedback="Unable to properly evaluate the response due to technical issues.",
        strengths=["Attempted to provide a response"],
        improvements=[
            "Provide more detailed and relevant information",
            "Structure your answer more clearly",
        ],
    )


async def request_llm_evaluation(
    question: str, answer: str, client: Optional[httpx.AsyncClient] = None
) -> Optional[str]:
    """Call the scorer and return its raw message content, or None on any call failure."""
    api_key = GROQ_API_KEY or os.getenv("GROQ_API_KEY")
    if not api_key:
        LOG.warning("GROQ_API_KEY missing; evaluation fallback engaged (question_len=%s)", len(question))
        return None
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Accept": "application/json",
        "Content-Type": "application/json",
    }
    payload: Dict[str, Any] = {
        "model": GROQ_MODEL,
        "messages": [{"role": "user", "content": build_evaluation_prompt(question, answer)}],
        "temperature": GROQ_TEMPERATURE,
        "max_tokens": GROQ_MAX_TOKENS,
    }
    try:
        LOG.info("Calling scorer: question_len=%s answer_len=%s", len(question), len(answer))
        if client is None:
            async with httpx.AsyncClient(timeout=GROQ_TIMEOUT) as owned:
                resp = await owned.post(GROQ_API_URL, headers=headers, json=payload)
        else:
            resp = await client.post(GROQ_API_URL, headers=headers, json=payload)
    except Exception as exc:
        LOG.warning("Scorer request failed: %s", exc)
        return None

    if resp.status_code != 200:
        LOG.warning("Scorer responded with %s: %s", resp.status_code, resp.text[:200])
        return None

    try:
        data = resp.json()
        choices = data.get("choices") or []
        content = choices[0].get("message", {}).get("content", "").strip() if choices else ""
    except Exception:
        content = ""
    if not content:
        LOG.warning("Scorer returned empty content")
        return None
    return content


async def evaluate_answer(
    question: str, answer: str, client: Optional[httpx.AsyncClient] = None
) -> Evaluation:
    content = await request_llm_evaluation(question, answer, client=client)
    if content is None:
        return fallback_evaluation(answer)
    evaluation = parse_evaluation(content)
    if evaluation is None:
        LOG.warning("Scorer output failed validation; raw content: %s", content[:200])
        return fallback_evaluation(answer)
    return evaluation
