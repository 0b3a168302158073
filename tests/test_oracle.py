import json
import sys
from pathlib import Path

import pytest
import requests

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import oracle as oracle_mod  # noqa: E402
from oracle import OracleGateway, normalize_oracle_text  # noqa: E402
from errors import GenerationError, JudgeError, EvaluationError, ValidationError  # noqa: E402


def _mcq(n, correct=0):
    return {"question": f"Q{n}?", "options": ["a", "b", "c"], "correctAnswer": correct}


def _coding(n):
    return {"title": f"P{n}", "problem": "Do it.", "starterCodes": {"python": "pass", "java": None}}


def _assessment(**extra):
    body = {
        "sections": {
            "technical": [_mcq(i) for i in range(5)],
            "coding": [_coding(i) for i in range(2)],
            "quantitative": [_mcq(i, 2) for i in range(5)],
            "reasoning": [_mcq(i, 1) for i in range(5)],
        },
        "inference": {"vibe": "fast", "predictedTopics": ["Graphs"], "confidence": "High"},
    }
    body.update(extra)
    return body


class ScriptedChat:
    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []

    def __call__(self, messages, model, temperature, max_tokens):
        self.calls.append({"messages": messages, "model": model})
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.mark.parametrize("raw", [
    '{"a": 1}',
    '```json\n{"a": 1}\n```',
    'Sure! Here you go:\n{"a": 1}\nHope that helps.',
    '"{\\"a\\": 1}"',
    '{"a": 1,}',
    'Result: {\\"a\\": 1}',
])
def test_normalize_repairs_common_damage(raw):
    assert normalize_oracle_text(raw) == {"a": 1}


def test_normalize_keeps_arrays_and_rejects_garbage():
    assert normalize_oracle_text("noise [1, 2, 3,] trailing") == [1, 2, 3]
    with pytest.raises(ValueError):
        normalize_oracle_text("no json here")
    with pytest.raises(ValueError):
        normalize_oracle_text("   ")


def test_generate_assessment_stamps_ids_and_sections():
    chat = ScriptedChat(json.dumps(_assessment()))
    gw = OracleGateway(api_key="k", chat=chat)
    exam = gw.generate_assessment("Google", "SWE", "Fresher / Graduate")

    all_qs = [q for key in exam["sections"] for q in exam["sections"][key]]
    assert len(all_qs) == 17
    assert len({q["id"] for q in all_qs}) == 17
    assert {q["section"] for q in exam["sections"]["coding"]} == {"Coding"}
    assert exam["sections"]["coding"][0]["starterCodes"] == {"python": "pass"}
    assert exam["timeMinutes"] == 108
    assert exam["inference"]["company"] == "Google"
    assert exam["createdAt"] > 0
    assert "KNOWN PATTERNS FOR GOOGLE" in chat.calls[0]["messages"][1]["content"]


def test_generate_assessment_uses_model_time_when_given():
    gw = OracleGateway(api_key="k", chat=ScriptedChat(json.dumps(_assessment(timeMinutes=45))))
    assert gw.generate_assessment("Acme", "SWE", "SDE-1 / Junior")["timeMinutes"] == 45


def test_generate_assessment_rejects_bad_shapes():
    bad = _assessment()
    bad["sections"]["technical"][0]["correctAnswer"] = 9
    gw = OracleGateway(api_key="k", chat=ScriptedChat(json.dumps(bad), "not json at all"))
    with pytest.raises(GenerationError):
        gw.generate_assessment("Acme", "SWE", "SDE-1 / Junior")
    with pytest.raises(GenerationError):
        gw.generate_assessment("Acme", "SWE", "SDE-1 / Junior")


def test_unknown_level_fails_before_any_call():
    chat = ScriptedChat()
    with pytest.raises(ValidationError):
        OracleGateway(api_key="k", chat=chat).generate_assessment("Acme", "SWE", "Wizard")
    assert chat.calls == []


def test_missing_api_key_is_a_generation_error(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    def no_network(*args, **kwargs):
        raise AssertionError("network must not be used")

    monkeypatch.setattr(oracle_mod.requests, "post", no_network)
    with pytest.raises(GenerationError):
        OracleGateway(api_key="").generate_assessment("Acme", "SWE", "SDE-1 / Junior")


def test_practice_set_needs_five_questions():
    short = ScriptedChat(json.dumps({"questions": [_coding(i) for i in range(4)]}))
    with pytest.raises(GenerationError):
        OracleGateway(api_key="k", chat=short).generate_practice_set("Graphs", "Hard")

    extra = ScriptedChat(json.dumps([_coding(i) for i in range(7)]))
    qs = OracleGateway(api_key="k", chat=extra).generate_practice_set("Graphs", "Hard")
    assert len(qs) == 5
    assert all(q["topic"] == "Graphs" and q["difficulty"] == "Hard" for q in qs)


def test_judge_clamps_score_and_degrades_safely():
    question = {"id": "q1", "title": "T", "problem": "P", "samples": [], "hidden_tests": []}
    ok = ScriptedChat('{"passed": true, "score": 140, "testCaseResults": []}')
    assert OracleGateway(api_key="k", chat=ok).judge_code(question, "x", "python")["score"] == 100

    down = ScriptedChat(requests.ConnectionError("down"), requests.ConnectionError("down"))
    gw = OracleGateway(api_key="k", chat=down)
    assert gw.judge_code(question, "x", "python") == {"passed": False, "score": 0, "testCaseResults": []}
    with pytest.raises(JudgeError):
        gw.judge_code_strict(question, "x", "python")


def test_evaluate_drops_unknown_and_fills_missing():
    exam = {"id": "e1", "sections": {
        "technical": [{"id": "t1"}], "coding": [{"id": "c1"}],
        "quantitative": [{"id": "q1"}], "reasoning": [],
    }}
    reply = {
        "totalScore": 70, "readinessScore": 65, "overallFeedback": "ok",
        "evaluations": [
            {"questionId": "c1", "score": 90},
            {"questionId": "ghost", "score": 100},
            {"questionId": "t1", "score": -5},
            {"questionId": "t1", "score": 50},
        ],
    }
    report = OracleGateway(api_key="k", chat=ScriptedChat(json.dumps(reply))).evaluate(exam, {})

    assert [e["questionId"] for e in report["evaluations"]] == ["t1", "c1", "q1"]
    assert report["evaluations"][0]["score"] == 0
    assert report["evaluations"][2]["feedback"] == "Not evaluated."
    assert report["readinessScore"] == 65


def test_evaluate_failure_raises():
    exam = {"id": "e1", "sections": {}}
    with pytest.raises(EvaluationError):
        OracleGateway(api_key="k", chat=ScriptedChat('{"evaluations": []}')).evaluate(exam, {})


class _BodyResponse:
    def __init__(self, body):
        self.body = body

    def raise_for_status(self):
        return None

    def json(self):
        return self.body


@pytest.mark.parametrize("body", [
    {"error": {"message": "overloaded"}},
    {"choices": []},
    {"choices": [{"message": None}]},
    {"choices": [{"message": {"content": {"passed": True}}}]},
])
def test_unexpected_chat_body_maps_to_domain_errors(monkeypatch, body):
    monkeypatch.setattr(oracle_mod.requests, "post", lambda *a, **kw: _BodyResponse(body))
    gw = OracleGateway(api_key="k")
    question = {"id": "q1", "title": "T", "problem": "P", "samples": [], "hidden_tests": []}

    assert gw.judge_code(question, "x", "python") == {"passed": False, "score": 0, "testCaseResults": []}
    with pytest.raises(JudgeError):
        gw.judge_code_strict(question, "x", "python")
    with pytest.raises(GenerationError):
        gw.generate_assessment("Acme", "SWE", "SDE-1 / Junior")
    with pytest.raises(GenerationError):
        gw.generate_practice_set("Graphs", "Hard")
    with pytest.raises(EvaluationError):
        gw.evaluate({"id": "e1", "sections": {}}, {})
