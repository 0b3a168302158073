# ledger.py
# In-memory answer ledger for the active exam session (questionId -> UserAnswer dict).
# Pure mapping operations; no I/O.

import copy
from typing import Any, Dict, Optional


class AnswerLedger:
    def __init__(self, answers: Optional[Dict[str, Dict[str, Any]]] = None):
        self._answers: Dict[str, Dict[str, Any]] = {}
        for qid, ans in (answers or {}).items():
            self._answers[str(qid)] = copy.deepcopy(ans)

    def __contains__(self, question_id: str) -> bool:
        return str(question_id) in self._answers

    def __len__(self) -> int:
        return len(self._answers)

    def get(self, question_id: str) -> Optional[Dict[str, Any]]:
        ans = self._answers.get(str(question_id))
        return copy.deepcopy(ans) if ans is not None else None

    def set(self, question_id: str, answer: Dict[str, Any]) -> Dict[str, Any]:
        qid = str(question_id)
        rec = copy.deepcopy(answer)
        rec["questionId"] = qid
        self._answers[qid] = rec
        return copy.deepcopy(rec)

    def merge(self, question_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        """Shallow merge; codeStates is merged per language instead of replaced."""
        qid = str(question_id)
        rec = self._answers.get(qid) or {"questionId": qid}
        patch = copy.deepcopy(patch)
        states = patch.pop("codeStates", None)
        rec.update(patch)
        if states:
            merged = dict(rec.get("codeStates") or {})
            merged.update(states)
            rec["codeStates"] = merged
        rec["questionId"] = qid
        self._answers[qid] = rec
        return copy.deepcopy(rec)

    # ---- typed helpers ------------------------------------------------------
    def record_choice(self, question_id: str, choice: Any) -> Dict[str, Any]:
        return self.set(question_id, {"answer": "" if choice is None else str(choice)})

    def record_code(self, question_id: str, code: str, language: str) -> Dict[str, Any]:
        """Editor change. A run result for older code in this language is dropped."""
        qid = str(question_id)
        rec = self._answers.get(qid) or {"questionId": qid}
        states = dict(rec.get("codeStates") or {})
        changed = states.get(language) != code
        states[language] = code
        rec.update({"answer": code, "language": language, "codeStates": states})
        if changed:
            rec.pop("runResult", None)
        self._answers[qid] = rec
        return copy.deepcopy(rec)

    def seed_language(self, question_id: str, language: str, starter: str) -> str:
        """Switch the editor language; keeps any non-empty saved code for it."""
        qid = str(question_id)
        rec = self._answers.get(qid) or {"questionId": qid}
        states = dict(rec.get("codeStates") or {})
        code = states.get(language) or starter
        states[language] = code
        rec.update({"answer": code, "language": language, "codeStates": states})
        self._answers[qid] = rec
        return code

    def code_for(self, question_id: str, language: str) -> Optional[str]:
        rec = self._answers.get(str(question_id)) or {}
        return (rec.get("codeStates") or {}).get(language)

    def attach_run_result(self, question_id: str, result: Dict[str, Any],
                          code: Optional[str] = None, language: Optional[str] = None) -> bool:
        """Attach a judge result. Rejected when `code` no longer matches the saved code."""
        qid = str(question_id)
        rec = self._answers.get(qid)
        if rec is None:
            return False
        if code is not None and language is not None:
            if (rec.get("codeStates") or {}).get(language, rec.get("answer")) != code:
                return False
        rec["runResult"] = copy.deepcopy(result)
        return True

    def replace_all(self, answers: Dict[str, Dict[str, Any]]):
        self._answers = {}
        for qid, ans in (answers or {}).items():
            self.set(qid, ans or {})

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return copy.deepcopy(self._answers)
