# oracle.py
# -----------------------------------------------------------------------------
# Oracle gateway: exam synthesis, practice sets, code judging and final grading
# through an OpenAI-compatible chat endpoint returning JSON.
# - One normalization function holds every repair heuristic for model output
# - Responses are validated with pydantic right after parsing
# - Shape errors become GenerationError / EvaluationError; judging degrades to a
#   zero result unless the strict variant is used
# -----------------------------------------------------------------------------

import os, json, re, time, uuid
from typing import Any, Callable, Dict, List, Optional

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError as SchemaError, field_validator, model_validator

from constants import (
    LEVEL_DNA, SECTION_KEYS, SECTION_COUNTS, DEFAULT_EXAM_MINUTES, PRACTICE_SET_SIZE,
    company_profile,
)
from errors import GenerationError, JudgeError, EvaluationError, ValidationError

OPENAI_URL = "https://api.openai.com/v1/chat/completions"

# =============================================================================
# Normalization
# =============================================================================
_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)\s*```", re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")

def normalize_oracle_text(text: Optional[str]) -> Any:
    """Parse model output into JSON, repairing the usual damage. Raises ValueError."""
    if text is None or not str(text).strip():
        raise ValueError("empty response")
    s = str(text).strip()

    m = _FENCE_RE.search(s)
    if m:
        s = m.group(1).strip()

    # Whole document delivered as a JSON string literal ("{\"a\": 1}")
    if s.startswith('"') and s.endswith('"'):
        try:
            inner = json.loads(s)
            if isinstance(inner, str):
                s = inner.strip()
        except json.JSONDecodeError:
            s = s[1:-1].replace('\\"', '"').strip()

    try:
        return json.loads(s)
    except json.JSONDecodeError:
        pass

    # Prose around the payload: keep the outermost object/array
    starts = [i for i in (s.find("{"), s.find("[")) if i >= 0]
    if not starts:
        raise ValueError("no JSON object in response")
    start = min(starts)
    closer = "}" if s[start] == "{" else "]"
    end = s.rfind(closer)
    if end <= start:
        raise ValueError("unterminated JSON in response")
    body = s[start:end + 1]
    body = _TRAILING_COMMA_RE.sub(r"\1", body)
    if '\\"' in body and '"' not in body.replace('\\"', ""):
        body = body.replace('\\"', '"')
    try:
        return json.loads(body)
    except json.JSONDecodeError as e:
        raise ValueError(f"malformed JSON: {e}") from e

# =============================================================================
# Response schemas
# =============================================================================
class _Shape(BaseModel):
    model_config = ConfigDict(extra="ignore")


class SampleCase(_Shape):
    input: str = ""
    output: str = ""
    explanation: str = ""


class HiddenTest(_Shape):
    input: str = ""
    output: str = ""


class CodingQuestionShape(_Shape):
    title: str
    problem: str
    constraints: str = ""
    samples: List[SampleCase] = Field(default_factory=list)
    hidden_tests: List[HiddenTest] = Field(default_factory=list)
    solution_code: str = ""
    solution_explanation: str = ""
    difficulty: str = "Medium"
    topic: str = ""
    starterCodes: Dict[str, str] = Field(default_factory=dict)

    @field_validator("starterCodes", mode="before")
    @classmethod
    def drop_null_templates(cls, v):
        if isinstance(v, dict):
            return {k: t for k, t in v.items() if isinstance(t, str)}
        return v or {}


class MCQShape(_Shape):
    question: str
    options: List[str] = Field(min_length=2)
    correctAnswer: int
    explanation: str = ""
    topic: str = ""

    @model_validator(mode="after")
    def answer_in_range(self):
        if not (0 <= self.correctAnswer < len(self.options)):
            raise ValueError("correctAnswer does not index into options")
        return self


class SectionsShape(_Shape):
    technical: List[MCQShape]
    coding: List[CodingQuestionShape]
    quantitative: List[MCQShape]
    reasoning: List[MCQShape]


class InferenceShape(_Shape):
    vibe: str = ""
    predictedTopics: List[str] = Field(default_factory=list)
    confidence: str = "Medium"
    category: str = ""
    assumptions: List[str] = Field(default_factory=list)
    includesAptitude: bool = True


class AssessmentShape(_Shape):
    sections: SectionsShape
    timeMinutes: Optional[float] = None
    inference: Optional[InferenceShape] = None


class PracticeSetShape(_Shape):
    questions: List[CodingQuestionShape]


class TestCaseResultShape(_Shape):
    input: str = ""
    expectedOutput: str = ""
    actualOutput: str = ""
    passed: bool = False
    isHidden: bool = False
    category: str = ""


def _clamp_score(v: Any) -> float:
    try:
        f = float(v)
    except (TypeError, ValueError):
        raise ValueError("score must be a number")
    return max(0.0, min(100.0, f))


class RunResultShape(_Shape):
    passed: bool
    score: float
    testCaseResults: List[TestCaseResultShape] = Field(default_factory=list)

    @field_validator("score", mode="before")
    @classmethod
    def clamp_score(cls, v):
        return _clamp_score(v)


class EvaluationShape(_Shape):
    questionId: str
    score: float = 0.0
    feedback: str = ""
    correctSolution: str = ""
    passedCount: int = 0
    totalCount: int = 0

    @field_validator("score", mode="before")
    @classmethod
    def clamp_score(cls, v):
        return _clamp_score(v)


class EvaluationReportShape(_Shape):
    totalScore: float
    readinessScore: float
    overallFeedback: str = ""
    sectionScores: Dict[str, float] = Field(default_factory=dict)
    evaluations: List[EvaluationShape] = Field(default_factory=list)

    @field_validator("totalScore", "readinessScore", mode="before")
    @classmethod
    def clamp_scores(cls, v):
        return _clamp_score(v)


def safe_run_result() -> Dict[str, Any]:
    return {"passed": False, "score": 0, "testCaseResults": []}


def _now_ms() -> int:
    return int(time.time() * 1000)

# =============================================================================
# Gateway
# =============================================================================
class OracleGateway:
    """
    Thin client over a JSON chat endpoint. `chat` may be injected (tests); it
    receives (messages, model, temperature, max_tokens) and returns raw text.
    """

    def __init__(self, api_key: Optional[str] = None, chat: Optional[Callable[..., str]] = None,
                 models: Optional[Dict[str, str]] = None, timeout: Optional[float] = None):
        self.api_key = (api_key if api_key is not None else os.getenv("OPENAI_API_KEY") or "").strip()
        default_model = "gpt-4o-mini"
        self.models = {
            "exam":     (os.getenv("OPENAI_EXAM_MODEL") or default_model).strip(),
            "practice": (os.getenv("OPENAI_PRACTICE_MODEL") or default_model).strip(),
            "judge":    (os.getenv("OPENAI_JUDGE_MODEL") or default_model).strip(),
            "grader":   (os.getenv("OPENAI_GRADER_MODEL") or default_model).strip(),
        }
        self.models.update(models or {})
        self.timeout = float(timeout or os.getenv("ORACLE_TIMEOUT_SEC") or 90)
        self._chat = chat or self._openai_chat

    # ------------------------------- transport --------------------------------
    def _openai_chat(self, messages: List[Dict[str, str]], model: str, temperature: float, max_tokens: int) -> str:
        if not self.api_key:
            raise RuntimeError("OPENAI_API_KEY is not set.")
        r = requests.post(
            OPENAI_URL,
            headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
            json={
                "model": model,
                "messages": messages,
                "temperature": temperature,
                "max_tokens": max_tokens,
                "response_format": {"type": "json_object"},
            },
            timeout=self.timeout,
        )
        r.raise_for_status()
        data = r.json()
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ValueError(f"unexpected chat response body: {e!r}") from e
        if content is not None and not isinstance(content, str):
            raise ValueError("chat response content is not text")
        return (content or "").strip()

    def _ask(self, op: str, sys_prompt: str, usr_prompt: str, temperature: float, max_tokens: int) -> Any:
        """Transport + normalization. Raises RuntimeError, requests.RequestException or ValueError."""
        text = self._chat(
            [{"role": "system", "content": sys_prompt}, {"role": "user", "content": usr_prompt}],
            model=self.models[op], temperature=temperature, max_tokens=max_tokens,
        )
        return normalize_oracle_text(text)

    # ------------------------------- exams ------------------------------------
    def generate_assessment(self, company: str, role: str, level: str) -> Dict[str, Any]:
        dna = LEVEL_DNA.get(level)
        if dna is None:
            raise ValidationError(f"Unknown position level: {level}")
        d = dna["difficulty"]
        profile = company_profile(company)
        profile_block = ""
        if profile:
            profile_block = (
                f"\nKNOWN PATTERNS FOR {profile['name'].upper()}:\n"
                f"- Common topics: {', '.join(profile['common_topics'])}\n"
                f"- Interview vibe: {profile['vibe']}\n"
            )
        sys_prompt = (
            f"You are a senior recruitment architect for {company}. "
            "You design realistic multi-section hiring assessments. Return ONLY JSON."
        )
        usr_prompt = f"""
COMPANY: {company}
ROLE: {role}
LEVEL: {level}
LEVEL FOCUS: {dna['focus']}
LEVEL TOPICS: {', '.join(dna['topics'])}
{profile_block}
DIFFICULTY TARGETS (DNA SCALING):
- Very Easy: {d['veryEasy']}%
- Easy: {d['easy']}%
- Medium: {d['medium']}%
- Hard: {d['hard']}%
- Very Hard: {d['veryHard']}%
- Ultra Hard: {d['ultraHard']}%

MANDATORY REQUIREMENTS:
- EXACTLY {SECTION_COUNTS['coding']} coding questions.
- {SECTION_COUNTS['technical']} technical MCQs, {SECTION_COUNTS['quantitative']} quantitative MCQs, {SECTION_COUNTS['reasoning']} reasoning MCQs.
- MCQ item: {{"question": str, "options": [str, ...], "correctAnswer": <0-based index>, "explanation": str, "topic": str}}
- Coding item: {{"title", "problem", "constraints", "starterCodes": {{"javascript","python","java","cpp"}},
  "samples": [{{"input","output","explanation"}}], "hidden_tests": [{{"input","output"}}],
  "solution_code", "solution_explanation", "difficulty", "topic"}}

Return ONLY JSON:
{{
  "sections": {{"technical": [...], "coding": [...], "quantitative": [...], "reasoning": [...]}},
  "timeMinutes": number,
  "inference": {{"vibe": str, "predictedTopics": [str], "confidence": "High|Medium|Low",
                 "category": str, "assumptions": [str], "includesAptitude": bool}}
}}
"""
        try:
            raw = self._ask("exam", sys_prompt, usr_prompt, temperature=0.4, max_tokens=8000)
            shape = AssessmentShape.model_validate(raw)
        except (RuntimeError, requests.RequestException, ValueError, SchemaError) as e:
            print(f"[oracle] exam synthesis failed for {company!r}: {e}", flush=True)
            raise GenerationError(f"Exam synthesis failed: {e}") from e

        sections: Dict[str, List[Dict[str, Any]]] = {}
        for section_name, key in SECTION_KEYS.items():
            items = getattr(shape.sections, key)
            sections[key] = [
                {**item.model_dump(), "id": uuid.uuid4().hex, "section": section_name}
                for item in items
            ]
        if not any(sections.values()):
            raise GenerationError("Exam synthesis returned no questions.")

        minutes = shape.timeMinutes or DEFAULT_EXAM_MINUTES * float(dna.get("time_multiplier") or 1.0)
        inference = (shape.inference or InferenceShape()).model_dump()
        inference.update({"company": company, "role": role, "level": level})
        return {
            "id": uuid.uuid4().hex,
            "company": company,
            "role": role,
            "level": level,
            "sections": sections,
            "timeMinutes": int(round(minutes)),
            "createdAt": _now_ms(),
            "inference": inference,
        }

    # ------------------------------- practice ---------------------------------
    def generate_practice_set(self, topic: str, difficulty: str) -> List[Dict[str, Any]]:
        sys_prompt = "You write original competitive-programming problems. Return ONLY JSON."
        usr_prompt = f"""
Generate a set of EXACTLY {PRACTICE_SET_SIZE} unique problems for topic "{topic}" at {difficulty} level.

Each item:
{{"title", "problem", "constraints", "starterCodes": {{"javascript","python","java","cpp"}},
  "samples": [{{"input","output","explanation"}}], "hidden_tests": [{{"input","output"}}],
  "solution_code", "solution_explanation", "difficulty", "topic"}}

Return ONLY JSON: {{"questions": [ ... ]}}
"""
        try:
            raw = self._ask("practice", sys_prompt, usr_prompt, temperature=0.5, max_tokens=8000)
            if isinstance(raw, list):
                raw = {"questions": raw}
            shape = PracticeSetShape.model_validate(raw)
        except (RuntimeError, requests.RequestException, ValueError, SchemaError) as e:
            print(f"[oracle] practice synthesis failed for {topic!r}: {e}", flush=True)
            raise GenerationError(f"Practice set synthesis failed: {e}") from e

        if len(shape.questions) < PRACTICE_SET_SIZE:
            raise GenerationError(
                f"Practice set synthesis returned {len(shape.questions)} of {PRACTICE_SET_SIZE} questions."
            )
        return [
            {**q.model_dump(), "id": uuid.uuid4().hex, "topic": topic, "difficulty": difficulty}
            for q in shape.questions[:PRACTICE_SET_SIZE]
        ]

    # ------------------------------- judging ----------------------------------
    def judge_code_strict(self, question: Dict[str, Any], code: str, language: str) -> Dict[str, Any]:
        sys_prompt = (
            "You are a strict online judge. Mentally execute the submitted program against the "
            "problem's samples and hidden tests and report each outcome. Return ONLY JSON."
        )
        tests = [{"input": s.get("input"), "output": s.get("output"), "isHidden": False}
                 for s in (question.get("samples") or [])]
        tests += [{"input": t.get("input"), "output": t.get("output"), "isHidden": True}
                  for t in (question.get("hidden_tests") or [])]
        usr_prompt = f"""
PROBLEM: {question.get('title') or ''}
---
{question.get('problem') or ''}
---
CONSTRAINTS: {question.get('constraints') or ''}

TEST CASES:
{json.dumps(tests, ensure_ascii=False)}

LANGUAGE: {language}
CODE:
---
{code or ''}
---

Return ONLY JSON:
{{"passed": bool, "score": 0-100,
  "testCaseResults": [{{"input", "expectedOutput", "actualOutput", "passed": bool, "isHidden": bool, "category"}}]}}
"""
        try:
            raw = self._ask("judge", sys_prompt, usr_prompt, temperature=0.0, max_tokens=3000)
            return RunResultShape.model_validate(raw).model_dump()
        except (RuntimeError, requests.RequestException, ValueError, SchemaError) as e:
            print(f"[oracle] judge failed for {question.get('id')}: {e}", flush=True)
            raise JudgeError(f"Code judging failed: {e}") from e

    def judge_code(self, question: Dict[str, Any], code: str, language: str) -> Dict[str, Any]:
        try:
            return self.judge_code_strict(question, code, language)
        except JudgeError:
            return safe_run_result()

    # ------------------------------- grading ----------------------------------
    def evaluate(self, exam: Dict[str, Any], answers: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
        question_ids: List[str] = []
        for key in SECTION_KEYS.values():
            question_ids += [str(q.get("id")) for q in (exam.get("sections") or {}).get(key) or []]

        sys_prompt = (
            "You grade technical hiring assessments. Score every question 0-100, give section scores, "
            "a total score and a holistic readiness score. Return ONLY JSON."
        )
        usr_prompt = f"""
EXAM:
{json.dumps(exam, ensure_ascii=False)}

ANSWERS (keyed by questionId; MCQ answers are option indices as strings):
{json.dumps(answers, ensure_ascii=False)}

Return ONLY JSON:
{{"totalScore": number, "readinessScore": number, "overallFeedback": str,
  "sectionScores": {{"technical": number, "coding": number, "quantitative": number, "reasoning": number}},
  "evaluations": [{{"questionId", "score", "feedback", "correctSolution", "passedCount", "totalCount"}}]}}
One evaluation per questionId: {json.dumps(question_ids)}
"""
        try:
            raw = self._ask("grader", sys_prompt, usr_prompt, temperature=0.0, max_tokens=6000)
            report = EvaluationReportShape.model_validate(raw).model_dump()
        except (RuntimeError, requests.RequestException, ValueError, SchemaError) as e:
            print(f"[oracle] evaluation failed for exam {exam.get('id')}: {e}", flush=True)
            raise EvaluationError(f"Evaluation failed: {e}") from e

        by_id: Dict[str, Dict[str, Any]] = {}
        for ev in report["evaluations"]:
            qid = str(ev["questionId"])
            if qid in by_id:
                continue
            if qid not in question_ids:
                print(f"[oracle] dropping evaluation for unknown question {qid}", flush=True)
                continue
            by_id[qid] = ev
        report["evaluations"] = [
            by_id.get(qid) or {"questionId": qid, "score": 0.0, "feedback": "Not evaluated.",
                               "correctSolution": "", "passedCount": 0, "totalCount": 0}
            for qid in question_ids
        ]
        return report
