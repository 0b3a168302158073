import copy
import sys
import uuid
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from errors import GenerationError, JudgeError, EvaluationError, PersistenceError  # noqa: E402
from oracle import safe_run_result  # noqa: E402


def make_mcq(section, n, correct=1):
    return {
        "id": uuid.uuid4().hex,
        "section": section,
        "question": f"{section} question {n}?",
        "options": ["A", "B", "C", "D"],
        "correctAnswer": correct,
        "explanation": "",
        "topic": "General",
    }


def make_coding(n, difficulty="Medium", topic="Arrays"):
    return {
        "id": uuid.uuid4().hex,
        "section": "Coding",
        "title": f"Problem {n}",
        "problem": "Sum two numbers.",
        "constraints": "",
        "samples": [{"input": "1 2", "output": "3", "explanation": ""}],
        "hidden_tests": [{"input": "2 2", "output": "4"}],
        "solution_code": "print(sum(map(int, input().split())))",
        "solution_explanation": "",
        "difficulty": difficulty,
        "topic": topic,
        "starterCodes": {"python": "# python starter\n"},
    }


def make_exam(company="Acme", minutes=90):
    return {
        "id": uuid.uuid4().hex,
        "company": company,
        "role": "Backend Engineer",
        "level": "SDE-1 / Junior",
        "sections": {
            "technical": [make_mcq("Technical", i) for i in range(5)],
            "coding": [make_coding(i) for i in range(2)],
            "quantitative": [make_mcq("Quantitative", i) for i in range(5)],
            "reasoning": [make_mcq("Reasoning", i) for i in range(5)],
        },
        "timeMinutes": minutes,
        "createdAt": 1_700_000_000_000,
        "inference": {"vibe": "pragmatic", "company": company},
    }


class FakeOracle:
    def __init__(self, minutes=90):
        self.minutes = minutes
        self.fail_generate = False
        self.fail_judge = False
        self.fail_evaluate = False
        self.evaluate_error = None
        self.judge_result = {"passed": True, "score": 100, "testCaseResults": []}
        self.on_judge = None
        self.judge_calls = []
        self.evaluate_calls = []
        self.last_exam = None

    def generate_assessment(self, company, role, level):
        if self.fail_generate:
            raise GenerationError("Exam synthesis failed: boom")
        self.last_exam = make_exam(company, self.minutes)
        return copy.deepcopy(self.last_exam)

    def generate_practice_set(self, topic, difficulty):
        if self.fail_generate:
            raise GenerationError("Practice set synthesis failed: boom")
        return [dict(make_coding(i, difficulty, topic)) for i in range(5)]

    def judge_code_strict(self, question, code, language):
        self.judge_calls.append((question["id"], code, language))
        if self.on_judge:
            self.on_judge()
        if self.fail_judge:
            raise JudgeError("Code judging failed: boom")
        return copy.deepcopy(self.judge_result)

    def judge_code(self, question, code, language):
        try:
            return self.judge_code_strict(question, code, language)
        except JudgeError:
            return safe_run_result()

    def evaluate(self, exam, answers):
        self.evaluate_calls.append(copy.deepcopy(answers))
        if self.fail_evaluate:
            raise EvaluationError("Evaluation failed: boom")
        if self.evaluate_error is not None:
            raise self.evaluate_error
        ids = [q["id"] for key in ("technical", "coding", "quantitative", "reasoning")
               for q in exam["sections"][key]]
        return {
            "totalScore": 75.0,
            "readinessScore": 80.0,
            "overallFeedback": "Solid.",
            "sectionScores": {"technical": 80, "coding": 60, "quantitative": 80, "reasoning": 80},
            "evaluations": [
                {"questionId": qid, "score": 75.0, "feedback": "", "correctSolution": "",
                 "passedCount": 0, "totalCount": 0}
                for qid in ids
            ],
        }


class FakeStore:
    def __init__(self):
        self.sessions = []
        self.attempts = []
        self.checkpoints = {}
        self.cleared = []
        self.fail_saves = False
        self.fail_checkpoints = False
        self.save_error = None

    def save_exam_session(self, session, user_id=None):
        if self.fail_saves:
            raise PersistenceError("Could not save the exam session. Please try again.")
        if self.save_error is not None:
            raise self.save_error
        self.sessions.append((user_id, copy.deepcopy(session)))

    def save_practice_attempt(self, attempt, user_id=None):
        if self.fail_saves:
            raise PersistenceError("Could not save the practice attempt. Please try again.")
        if self.save_error is not None:
            raise self.save_error
        self.attempts.append((user_id, copy.deepcopy(attempt)))

    def save_checkpoint(self, user_id, session):
        if self.fail_checkpoints:
            raise PersistenceError("Could not save progress. Please try again.")
        self.checkpoints[user_id] = copy.deepcopy(session)

    def load_checkpoint(self, user_id):
        return copy.deepcopy(self.checkpoints.get(user_id))

    def clear_checkpoint(self, user_id):
        self.cleared.append(user_id)
        self.checkpoints.pop(user_id, None)

    def load_sessions_for_user(self, user_id):
        return [dict(s, userId=u) for u, s in self.sessions if u == user_id]

    def load_attempts_for_user(self, user_id):
        return [dict(a, userId=u) for u, a in self.attempts if u == user_id]

    def load_session(self, user_id, session_id):
        for s in self.load_sessions_for_user(user_id):
            if s["id"] == session_id:
                return s
        return None


class FakeClock:
    def __init__(self, start=1_700_000_000_000):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += int(seconds * 1000)


@pytest.fixture
def oracle():
    return FakeOracle()


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def clock():
    return FakeClock()
