# sessions.py
# -----------------------------------------------------------------------------
# Exam and practice session lifecycles.
#   Exam:     setup -> generating -> intro -> in_progress -> grading -> completed
#             (generation/grading failure returns to setup)
#   Practice: setup -> generating -> in_progress -> archiving -> completed
# One flow object per user. Collaborators (oracle, store, clock) are injected.
# -----------------------------------------------------------------------------

import copy
import threading
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple

from constants import (
    SECTIONS, SECTION_KEYS, CODING_SECTION, DEFAULT_LANGUAGE, DEFAULT_LEVEL, LANGUAGE_IDS, starter_code,
)
from errors import (
    ValidationError, ConfirmationRequired, InvalidTransition,
    GenerationError, JudgeError, EvaluationError, PersistenceError,
)
from ledger import AnswerLedger
from oracle import safe_run_result

SETUP = "setup"
GENERATING = "generating"
INTRO = "intro"
IN_PROGRESS = "in_progress"
GRADING = "grading"
ARCHIVING = "archiving"
COMPLETED = "completed"

def _clock_ms() -> int:
    return int(time.time() * 1000)


def section_questions(exam: Dict[str, Any], section: str) -> List[Dict[str, Any]]:
    return list(((exam or {}).get("sections") or {}).get(SECTION_KEYS[section]) or [])


def question_index(exam: Dict[str, Any]) -> Dict[str, Tuple[str, Dict[str, Any]]]:
    """questionId -> (section name, question)"""
    out: Dict[str, Tuple[str, Dict[str, Any]]] = {}
    for section in SECTIONS:
        for q in section_questions(exam, section):
            out[str(q.get("id"))] = (section, q)
    return out


def _as_index(idx) -> int:
    try:
        return int(idx)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid question index: {idx}")


def _check_language(language: Optional[str]) -> str:
    lang = (language or "").strip().lower()
    if lang not in LANGUAGE_IDS:
        raise ValidationError(f"Unsupported language: {language}")
    return lang

# =============================================================================
# Exam flow
# =============================================================================
class ExamFlow:
    def __init__(self, oracle, store, user_id: str, clock: Optional[Callable[[], int]] = None):
        self.oracle = oracle
        self.store = store
        self.user_id = user_id
        self.clock = clock or _clock_ms
        self.state = SETUP
        self.session: Optional[Dict[str, Any]] = None
        self.ledger = AnswerLedger()
        self.error: Optional[str] = None
        self._questions: Dict[str, Tuple[str, Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    # ------------------------------- helpers ----------------------------------
    def _require(self, *states: str):
        if self.state not in states:
            raise InvalidTransition(f"Not allowed while exam is {self.state}.")

    def _question(self, question_id: str) -> Tuple[str, Dict[str, Any]]:
        hit = self._questions.get(str(question_id))
        if hit is None:
            raise ValidationError(f"Question {question_id} is not part of this exam.")
        return hit

    def _coding_question(self, question_id: str) -> Dict[str, Any]:
        section, q = self._question(question_id)
        if section != CODING_SECTION:
            raise ValidationError(f"Question {question_id} is not a coding question.")
        return q

    def _reset(self):
        self.session = None
        self.ledger = AnswerLedger()
        self._questions = {}

    def _adopt(self, session: Dict[str, Any]):
        self.session = session
        self.ledger = AnswerLedger(session.get("answers") or {})
        self._questions = question_index(session["exam"])

    # ------------------------------- lifecycle --------------------------------
    def start_exam(self, company: str, role: str, level: str) -> Dict[str, Any]:
        self._require(SETUP, INTRO, COMPLETED)
        company = (company or "").strip()
        if not company:
            raise ValidationError("Enter a target company.")
        role = (role or "").strip()
        if not role:
            raise ValidationError("Enter a target role.")
        level = (level or "").strip() or DEFAULT_LEVEL

        self.state = GENERATING
        self.error = None
        try:
            exam = self.oracle.generate_assessment(company, role, level)
        except (GenerationError, ValidationError) as e:
            self.state = SETUP
            self.error = e.message
            raise

        self._adopt({
            "id": uuid.uuid4().hex,
            "exam": exam,
            "answers": {},
            "startTime": self.clock(),
            "isCompleted": False,
            "currentSection": SECTIONS[0],
            "currentIdx": 0,
        })
        self.state = INTRO
        print(f"[exam] user {self.user_id} generated exam {exam['id']} for {company!r}", flush=True)
        return self.snapshot()

    def begin_exam(self) -> Dict[str, Any]:
        self._require(INTRO)
        self.state = IN_PROGRESS
        self.checkpoint()
        return self.snapshot()

    def remaining_seconds(self) -> int:
        if not self.session:
            return 0
        total = int(self.session["exam"].get("timeMinutes") or 0) * 60
        elapsed = (self.clock() - int(self.session["startTime"])) // 1000
        return max(0, total - elapsed)

    def tick(self) -> int:
        """Countdown hook (1 Hz). Completes the exam once time is up."""
        if self.state != IN_PROGRESS:
            return self.remaining_seconds() if self.state == INTRO else 0
        left = self.remaining_seconds()
        if left == 0:
            print(f"[exam] time up for session {self.session['id']}; auto-completing", flush=True)
            self.complete_exam()
        return left

    # ------------------------------- navigation -------------------------------
    def navigate(self, section: str, idx: Optional[int] = None) -> Dict[str, Any]:
        self._require(IN_PROGRESS)
        if section not in SECTIONS:
            raise ValidationError(f"Unknown section: {section}")
        if idx is None:
            idx = self.session["currentIdx"] if section == self.session["currentSection"] else 0
        count = len(section_questions(self.session["exam"], section))
        idx = max(0, min(_as_index(idx), max(0, count - 1)))
        self.session["currentSection"] = section
        self.session["currentIdx"] = idx
        self.checkpoint()
        return {"currentSection": section, "currentIdx": idx}

    # ------------------------------- answers ----------------------------------
    def record_answer(self, question_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        self._require(IN_PROGRESS)
        section, q = self._question(question_id)
        patch = patch or {}
        if section == CODING_SECTION:
            language = _check_language(patch.get("language") or self._current_language(question_id))
            code = patch.get("answer")
            if code is None:
                code = patch.get("code")
            if code is None:
                raise ValidationError("Missing code.")
            return self.ledger.record_code(question_id, str(code), language)
        if "answer" not in patch:
            raise ValidationError("Missing answer.")
        choice = patch.get("answer")
        if choice is not None and str(choice) != "":
            try:
                n = int(choice)
            except (TypeError, ValueError):
                raise ValidationError("MCQ answer must be an option index.")
            if not (0 <= n < len(q.get("options") or [])):
                raise ValidationError("MCQ answer is out of range.")
        return self.ledger.record_choice(question_id, choice)

    def _current_language(self, question_id: str) -> str:
        ans = self.ledger.get(question_id) or {}
        return ans.get("language") or DEFAULT_LANGUAGE

    def select_language(self, question_id: str, language: str) -> str:
        self._require(IN_PROGRESS)
        q = self._coding_question(question_id)
        language = _check_language(language)
        return self.ledger.seed_language(question_id, language, starter_code(q, language))

    def run_code(self, question_id: str, code: Optional[str] = None,
                 language: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Judge code for one question. Returns None when the result was dropped or failed."""
        self._require(IN_PROGRESS)
        q = self._coding_question(question_id)
        language = _check_language(language or self._current_language(question_id))
        if code is None:
            code = self.ledger.code_for(question_id, language) or ""
        else:
            self.ledger.record_code(question_id, code, language)
        session_id = self.session["id"]
        self.error = None

        try:
            result = self.oracle.judge_code_strict(q, code, language)
        except JudgeError as e:
            self.error = e.message
            return None

        if self.state != IN_PROGRESS or not self.session or self.session["id"] != session_id:
            print(f"[exam] dropping stale judge result for {question_id}", flush=True)
            return None
        if not self.ledger.attach_run_result(question_id, result, code=code, language=language):
            print(f"[exam] dropping judge result for edited code on {question_id}", flush=True)
            return None
        self.checkpoint()
        return result

    # ------------------------------- completion -------------------------------
    def _coerce_answers(self, answers: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
        """Accept {qid: UserAnswer} or the bare choice form {qid: "1"}."""
        if not isinstance(answers, dict):
            raise ValidationError("Answers must be an object keyed by question id.")
        unknown = [qid for qid in answers if str(qid) not in self._questions]
        if unknown:
            raise ValidationError(f"Unknown question ids: {', '.join(map(str, unknown))}")
        out: Dict[str, Dict[str, Any]] = {}
        for qid, value in answers.items():
            if value is None:
                value = {"answer": ""}
            elif isinstance(value, bool) or not isinstance(value, (dict, str, int, float)):
                raise ValidationError(f"Answer for {qid} must be an object or a string.")
            elif not isinstance(value, dict):
                value = {"answer": str(value)}
            out[str(qid)] = value
        return out

    def complete_exam(self, answers: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Grade and freeze. A second call after completion returns the frozen session."""
        with self._lock:
            if self.state == COMPLETED and self.session and self.session.get("isCompleted"):
                return self.snapshot()
            self._require(IN_PROGRESS)

            if answers is not None:
                self.ledger.replace_all(self._coerce_answers(answers))
            final_answers = self.ledger.snapshot()

            self.state = GRADING
            try:
                results = self.oracle.evaluate(self.session["exam"], final_answers)
            except EvaluationError as e:
                print(f"[exam] grading failed for session {self.session['id']}: {e.message}", flush=True)
                self.error = e.message
                self._discard_checkpoint()
                self._reset()
                self.state = SETUP
                raise
            except Exception as e:
                print(f"[exam] grading crashed for session {self.session['id']}: {e!r}", flush=True)
                self.error = "Grading failed unexpectedly. Please submit again."
                self.state = IN_PROGRESS
                raise

            completed = copy.deepcopy(self.session)
            completed.update({"answers": final_answers, "isCompleted": True, "results": results})
            try:
                self.store.save_exam_session(completed, user_id=self.user_id)
            except PersistenceError as e:
                self.error = e.message
                self.state = IN_PROGRESS
                raise
            except Exception as e:
                print(f"[exam] saving session {completed['id']} crashed: {e!r}", flush=True)
                self.error = "Could not save the exam session. Please try again."
                self.state = IN_PROGRESS
                raise

            self.session = completed
            self.state = COMPLETED
            self.error = None
            self._discard_checkpoint()
            print(f"[exam] session {completed['id']} completed; readiness {results.get('readinessScore')}", flush=True)
            return self.snapshot()

    # ------------------------------- checkpoints ------------------------------
    def checkpoint(self):
        if self.state != IN_PROGRESS or not self.session:
            return
        snap = copy.deepcopy(self.session)
        snap["answers"] = self.ledger.snapshot()
        try:
            self.store.save_checkpoint(self.user_id, snap)
        except PersistenceError as e:
            # Checkpoints are best effort; the completion write is the commit point.
            print(f"[exam] checkpoint failed for {self.user_id}: {e.message}", flush=True)

    def _discard_checkpoint(self):
        try:
            self.store.clear_checkpoint(self.user_id)
        except PersistenceError as e:
            print(f"[exam] checkpoint clear failed for {self.user_id}: {e.message}", flush=True)

    def resume(self) -> Optional[Dict[str, Any]]:
        """Rebuild an in-progress exam from the last checkpoint, if any."""
        if self.state in (IN_PROGRESS, GRADING):
            return self.snapshot()
        snap = self.store.load_checkpoint(self.user_id)
        if not snap or snap.get("isCompleted") or not snap.get("exam"):
            return None
        self._adopt(snap)
        self.state = IN_PROGRESS
        self.error = None
        return self.snapshot()

    # ------------------------------- views ------------------------------------
    def snapshot(self) -> Dict[str, Any]:
        session = None
        if self.session:
            session = copy.deepcopy(self.session)
            if not session.get("isCompleted"):
                session["answers"] = self.ledger.snapshot()
        return {
            "state": self.state,
            "session": session,
            "remainingSeconds": self.remaining_seconds() if self.state in (INTRO, IN_PROGRESS) else 0,
            "error": self.error,
        }

# =============================================================================
# Practice flow
# =============================================================================
class PracticeFlow:
    def __init__(self, oracle, store, user_id: str, clock: Optional[Callable[[], int]] = None):
        self.oracle = oracle
        self.store = store
        self.user_id = user_id
        self.clock = clock or _clock_ms
        self.state = SETUP
        self.session: Optional[Dict[str, Any]] = None
        self.current_idx = 0
        self.language = DEFAULT_LANGUAGE
        self.error: Optional[str] = None
        self._attempt_ids: Dict[str, str] = {}
        self._lock = threading.Lock()

    def _require(self, *states: str):
        if self.state not in states:
            raise InvalidTransition(f"Not allowed while practice sprint is {self.state}.")

    def _question(self, question_id: str) -> Dict[str, Any]:
        for q in self.session["questions"]:
            if str(q.get("id")) == str(question_id):
                return q
        raise ValidationError(f"Question {question_id} is not part of this sprint.")

    def _attempt_id(self, question_id: str) -> str:
        # One row per question per sprint; archive retries upsert the same ids.
        return self._attempt_ids.setdefault(str(question_id), uuid.uuid4().hex)

    def start_practice(self, topic: str, difficulty: str) -> Dict[str, Any]:
        self._require(SETUP, IN_PROGRESS, COMPLETED)
        topic = (topic or "").strip()
        difficulty = (difficulty or "").strip()
        if not topic:
            raise ValidationError("Choose a practice topic.")
        if not difficulty:
            raise ValidationError("Choose a difficulty.")

        self.state = GENERATING
        self.error = None
        try:
            questions = self.oracle.generate_practice_set(topic, difficulty)
        except GenerationError as e:
            self.state = SETUP
            self.error = e.message
            raise

        self.session = {
            "id": uuid.uuid4().hex,
            "topic": topic,
            "difficulty": difficulty,
            "questions": questions,
            "attempts": {},
            "startTime": self.clock(),
            "isCompleted": False,
        }
        self.current_idx = 0
        self.language = DEFAULT_LANGUAGE
        self._attempt_ids = {}
        self.state = IN_PROGRESS
        return self.snapshot()

    def navigate(self, idx: int) -> int:
        self._require(IN_PROGRESS)
        self.current_idx = max(0, min(_as_index(idx), len(self.session["questions"]) - 1))
        return self.current_idx

    def editor_code(self, question_id: str, language: Optional[str] = None) -> str:
        self._require(IN_PROGRESS, COMPLETED)
        q = self._question(question_id)
        language = _check_language(language or self.language)
        attempt = self.session["attempts"].get(str(question_id))
        if attempt and attempt.get("language") == language:
            return attempt.get("answer") or ""
        return starter_code(q, language)

    def run(self, question_id: str, code: str, language: Optional[str] = None) -> Optional[Dict[str, Any]]:
        self._require(IN_PROGRESS)
        q = self._question(question_id)
        language = _check_language(language or self.language)
        self.language = language
        session_id = self.session["id"]

        result = self.oracle.judge_code(q, code or "", language)

        if self.state != IN_PROGRESS or not self.session or self.session["id"] != session_id:
            print(f"[practice] dropping stale judge result for {question_id}", flush=True)
            return None
        attempt = {
            "id": self._attempt_id(q["id"]),
            "question": copy.deepcopy(q),
            "answer": code or "",
            "language": language,
            "runResult": result,
            "timestamp": self.clock(),
            "score": result.get("score") or 0,
        }
        self.session["attempts"][str(q["id"])] = attempt
        return copy.deepcopy(attempt)

    def _normalize_attempt(self, q: Dict[str, Any], raw: Any) -> Dict[str, Any]:
        """Fill a caller-supplied attempt out to a full record for question q."""
        if not isinstance(raw, dict):
            raise ValidationError(f"Attempt for {q['id']} must be an object.")
        run_result = raw.get("runResult") if isinstance(raw.get("runResult"), dict) else safe_run_result()
        score = raw.get("score", run_result.get("score"))
        if isinstance(score, bool):
            raise ValidationError(f"Invalid score for {q['id']}.")
        try:
            score = float(score or 0)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid score for {q['id']}.")
        timestamp = raw.get("timestamp")
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            timestamp = self.clock()
        return {
            "id": str(raw.get("id") or self._attempt_id(q["id"])),
            "question": copy.deepcopy(q),
            "answer": str(raw.get("answer") or ""),
            "language": _check_language(raw.get("language") or self.language),
            "runResult": copy.deepcopy(run_result),
            "timestamp": int(timestamp),
            "score": max(0.0, min(100.0, score)),
        }

    def finalize_sprint(self, attempts: Optional[Dict[str, Any]] = None,
                        confirm_partial: bool = False) -> Dict[str, Any]:
        with self._lock:
            if self.state == COMPLETED and self.session and self.session.get("isCompleted"):
                return self.snapshot()
            self._require(IN_PROGRESS)

            current = dict(self.session["attempts"])
            if attempts is not None:
                if not isinstance(attempts, dict):
                    raise ValidationError("Attempts must be an object keyed by question id.")
                current = {}
                for qid, raw in attempts.items():
                    q = self._question(qid)
                    if raw is not None:
                        current[str(q["id"])] = self._normalize_attempt(q, raw)

            total = len(self.session["questions"])
            answered = sum(1 for q in self.session["questions"] if str(q["id"]) in current)
            if answered < total and not confirm_partial:
                raise ConfirmationRequired(answered, total)

            final: Dict[str, Dict[str, Any]] = {}
            for q in self.session["questions"]:
                qid = str(q["id"])
                final[qid] = current.get(qid) or {
                    "id": self._attempt_id(qid),
                    "question": copy.deepcopy(q),
                    "answer": "",
                    "language": self.language,
                    "runResult": safe_run_result(),
                    "timestamp": self.clock(),
                    "score": 0,
                }

            self.state = ARCHIVING
            try:
                for attempt in final.values():
                    self.store.save_practice_attempt(attempt, user_id=self.user_id)
            except PersistenceError as e:
                # Attempts upsert by id, so retrying the finalize is safe.
                print(f"[practice] archiving failed for sprint {self.session['id']}: {e.message}", flush=True)
                self.error = e.message
                self.state = IN_PROGRESS
                raise
            except Exception as e:
                print(f"[practice] archiving crashed for sprint {self.session['id']}: {e!r}", flush=True)
                self.error = "Could not archive the sprint. Please try again."
                self.state = IN_PROGRESS
                raise

            self.session["attempts"] = final
            self.session["isCompleted"] = True
            self.state = COMPLETED
            self.error = None
            print(f"[practice] sprint {self.session['id']} archived ({answered}/{total} submitted)", flush=True)
            return self.snapshot()

    def snapshot(self) -> Dict[str, Any]:
        return {
            "state": self.state,
            "session": copy.deepcopy(self.session),
            "currentIdx": self.current_idx,
            "language": self.language,
            "error": self.error,
        }

# =============================================================================
# Per-process flow registry
# =============================================================================
BUSY_STATES = (GENERATING, GRADING, ARCHIVING)

class FlowRegistry:
    """
    user id -> flow, for one worker process.
    Flows idle longer than idle_sec are dropped unless mid-operation; an exam
    flow rebuilt afterwards picks its checkpoint back up through on_create.
    """

    def __init__(self, factory: Callable[[str], Any], idle_sec: int = 3600,
                 clock: Optional[Callable[[], int]] = None,
                 on_create: Optional[Callable[[Any], None]] = None,
                 sweep_every_sec: int = 60):
        self.factory = factory
        self.idle_ms = int(idle_sec) * 1000
        self.sweep_every_ms = int(sweep_every_sec) * 1000
        self.clock = clock or _clock_ms
        self.on_create = on_create
        self._flows: Dict[str, Any] = {}
        self._touched: Dict[str, int] = {}
        self._last_sweep = 0
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._flows)

    def __contains__(self, user_id: str) -> bool:
        return str(user_id) in self._flows

    def get(self, user_id: str):
        uid = str(user_id)
        now = self.clock()
        with self._lock:
            if now - self._last_sweep >= self.sweep_every_ms:
                self._sweep(now)
            flow = self._flows.get(uid)
            created = flow is None
            if created:
                flow = self._flows[uid] = self.factory(uid)
            self._touched[uid] = now
        if created and self.on_create:
            self.on_create(flow)
        return flow

    def _sweep(self, now: int):
        self._last_sweep = now
        for uid in [u for u, t in self._touched.items() if now - t > self.idle_ms]:
            if self._flows[uid].state in BUSY_STATES:
                continue
            print(f"[flows] evicting idle flow for {uid} ({self._flows[uid].state})", flush=True)
            del self._flows[uid]
            del self._touched[uid]
