import json

import httpx
import pytest

from interview_coach import evaluator
from interview_coach.schemas import EMPTY_SPEECH_SENTINEL


def _scorer_reply(content: str, status_code: int = 200) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json={"choices": [{"message": {"content": content}}]})

    return httpx.MockTransport(handler)


VALID = {
    "overall": 4.5,
    "feedback": "Well structured answer with concrete examples.",
    "strengths": ["Clear structure", "Concrete examples"],
    "improvements": ["Mention measurable outcomes"],
}


def test_parse_markdown_wrapped_json():
    text = "```json\n" + json.dumps(VALID) + "\n```"
    evaluation = evaluator.parse_evaluation(text)
    assert evaluation is not None
    assert evaluation.overall == 4.5
    assert evaluation.strengths == ["Clear structure", "Concrete examples"]


def test_parse_json_surrounded_by_prose():
    text = "Here is my evaluation:\n" + json.dumps(VALID) + "\nGood luck!"
    evaluation = evaluator.parse_evaluation(text)
    assert evaluation is not None
    assert evaluation.feedback.startswith("Well structured")


@pytest.mark.parametrize("raw,expected", [(7.2, 5.0), (0.3, 1.0), ("3.5", 3.5), (-2, 1.0)])
def test_parse_clamps_overall(raw, expected):
    evaluation = evaluator.parse_evaluation(json.dumps({**VALID, "overall": raw}))
    assert evaluation is not None
    assert evaluation.overall == expected


@pytest.mark.parametrize("key", ["overall", "feedback", "strengths", "improvements"])
def test_parse_rejects_missing_key(key):
    data = dict(VALID)
    del data[key]
    assert evaluator.parse_evaluation(json.dumps(data)) is None


@pytest.mark.parametrize("key,value", [("overall", 0), ("feedback", ""), ("strengths", []), ("improvements", [])])
def test_parse_rejects_falsy_value(key, value):
    assert evaluator.parse_evaluation(json.dumps({**VALID, key: value})) is None


@pytest.mark.parametrize("overall", ["excellent", True, [4]])
def test_parse_rejects_non_numeric_overall(overall):
    assert evaluator.parse_evaluation(json.dumps({**VALID, "overall": overall})) is None


def test_parse_rejects_multiple_objects_and_garbage():
    # First-brace-to-last-brace spans both objects, which is not valid JSON.
    text = json.dumps(VALID) + " and also " + json.dumps(VALID)
    assert evaluator.parse_evaluation(text) is None
    assert evaluator.parse_evaluation("no json here") is None
    assert evaluator.parse_evaluation("[1, 2, 3]") is None


def test_extract_json_candidate_without_braces_returns_text():
    assert evaluator.extract_json_candidate("plain") == "plain"
    assert evaluator.extract_json_candidate('x {"a": 1} y') == '{"a": 1}'


@pytest.mark.parametrize(
    "answer",
    ["I don't know", "I DON'T KNOW", "Honestly, I dont know.", "i don’t know the answer", EMPTY_SPEECH_SENTINEL],
)
def test_fallback_for_non_answers(answer):
    evaluation = evaluator.fallback_evaluation(answer)
    assert evaluation.overall == 1.2
    assert evaluation.strengths == ["Honest about knowledge gaps"]
    assert len(evaluation.improvements) == 3


def test_sentinel_must_match_exactly():
    assert evaluator.fallback_evaluation("  " + EMPTY_SPEECH_SENTINEL).overall == 1.5
    assert evaluator.fallback_evaluation(EMPTY_SPEECH_SENTINEL.upper()).overall == 1.5


def test_fallback_for_generic_answer():
    evaluation = evaluator.fallback_evaluation("I built a payments platform in Go.")
    assert evaluation.overall == 1.5
    assert evaluation.feedback
    assert evaluation.strengths == ["Attempted to provide a response"]


def test_prompt_contains_question_answer_and_rules():
    prompt = evaluator.build_evaluation_prompt("Why us?", "Because of the mission.")
    assert 'Interview Question: "Why us?"' in prompt
    assert "Candidate's Answer: \"Because of the mission.\"" in prompt
    assert '"overall": [score from 1.0 to 5.0]' in prompt
    assert "Poor answers should receive low scores." in prompt


@pytest.mark.asyncio
async def test_evaluate_without_key_uses_fallback():
    evaluation = await evaluator.evaluate_answer("Q", "I don't know")
    assert evaluation.overall == 1.2


@pytest.mark.asyncio
async def test_evaluate_uses_scorer_output(monkeypatch):
    monkeypatch.setattr(evaluator, "GROQ_API_KEY", "test-key")
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": "```json\n" + json.dumps(VALID) + "\n```"}}]})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        evaluation = await evaluator.evaluate_answer("Tell me about yourself", "I lead a platform team.", client=client)

    assert evaluation.overall == 4.5
    assert seen["auth"] == "Bearer test-key"
    assert seen["body"]["model"] == evaluator.GROQ_MODEL
    assert seen["body"]["temperature"] == evaluator.GROQ_TEMPERATURE
    assert seen["body"]["max_tokens"] == evaluator.GROQ_MAX_TOKENS
    assert "I lead a platform team." in seen["body"]["messages"][0]["content"]


@pytest.mark.asyncio
async def test_evaluate_falls_back_on_error_status(monkeypatch):
    monkeypatch.setattr(evaluator, "GROQ_API_KEY", "test-key")
    async with httpx.AsyncClient(transport=_scorer_reply(json.dumps(VALID), status_code=500)) as client:
        evaluation = await evaluator.evaluate_answer("Q", "A thoughtful answer", client=client)
    assert evaluation.overall == 1.5


@pytest.mark.asyncio
async def test_evaluate_falls_back_on_transport_error(monkeypatch):
    monkeypatch.setattr(evaluator, "GROQ_API_KEY", "test-key")

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        evaluation = await evaluator.evaluate_answer("Q", "I don't know", client=client)
    assert evaluation.overall == 1.2


@pytest.mark.asyncio
async def test_evaluate_falls_back_on_incomplete_output(monkeypatch):
    monkeypatch.setattr(evaluator, "GROQ_API_KEY", "test-key")
    partial = json.dumps({"overall": 4, "feedback": "ok"})
    async with httpx.AsyncClient(transport=_scorer_reply(partial)) as client:
        evaluation = await evaluator.evaluate_answer("Q", "Some answer", client=client)
    assert evaluation.overall == 1.5


@pytest.mark.asyncio
async def test_evaluate_falls_back_on_empty_content(monkeypatch):
    monkeypatch.setattr(evaluator, "GROQ_API_KEY", "test-key")
    async with httpx.AsyncClient(transport=_scorer_reply("   ")) as client:
        assert await evaluator.request_llm_evaluation("Q", "A", client=client) is None
