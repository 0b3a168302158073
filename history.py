# history.py
# Derived, read-only views over a user's stored exam sessions and practice attempts.
# Pure folds: no I/O, nothing here is persisted.

import math
from decimal import Decimal
from typing import Any, Dict, List, Optional

BUCKETS = ("Easy", "Medium", "Hard")

def _as_float(x) -> Optional[float]:
    if x is None: return None
    if isinstance(x, Decimal): return float(x)
    try: return float(x)
    except (TypeError, ValueError): return None

def _as_int(x) -> int:
    try: return int(x or 0)
    except (TypeError, ValueError): return 0

def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))

def normalize_difficulty(value: Optional[str]) -> str:
    """Fold free-form difficulty labels into Easy / Medium / Hard (default Medium)."""
    s = " ".join((value or "").replace("-", " ").replace("_", " ").lower().split())
    if not s:
        return "Medium"
    if s in ("easy", "very easy", "trivial", "beginner"):
        return "Easy"
    if s in ("hard", "very hard", "ultra hard", "expert"):
        return "Hard"
    if s in ("medium", "moderate", "intermediate"):
        return "Medium"
    if s.endswith("easy"):
        return "Easy"
    if s.endswith("hard"):
        return "Hard"
    return "Medium"

def _readiness(session: Dict[str, Any]) -> Optional[float]:
    return _as_float((session.get("results") or {}).get("readinessScore"))

def average_readiness(sessions: List[Dict[str, Any]]) -> int:
    scores = [_readiness(s) for s in sessions if s.get("isCompleted")]
    scores = [s for s in scores if s is not None]
    if not scores:
        return 0
    return _round_half_up(sum(scores) / len(scores))

def compute_history(sessions: List[Dict[str, Any]], attempts: List[Dict[str, Any]],
                    user_id: Optional[str] = None) -> Dict[str, Any]:
    if user_id is not None:
        sessions = [s for s in sessions if str(s.get("userId", user_id)) == str(user_id)]
        attempts = [a for a in attempts if str(a.get("userId", user_id)) == str(user_id)]

    sessions = sorted(sessions, key=lambda s: _as_int(s.get("startTime")), reverse=True)
    attempts = sorted(attempts, key=lambda a: _as_int(a.get("timestamp")), reverse=True)

    # newest first, so the first inference seen per company wins
    discovered: Dict[str, Dict[str, Any]] = {}
    for s in sessions:
        exam = s.get("exam") or {}
        company = (exam.get("company") or "").strip()
        inference = exam.get("inference")
        if company and inference and company not in discovered:
            discovered[company] = inference

    return {
        "sessions": sessions,
        "practiceAttempts": attempts,
        "averageReadiness": average_readiness(sessions),
        "discoveredCompanies": discovered,
    }

def _attempt_question(attempt: Dict[str, Any]) -> Dict[str, Any]:
    return attempt.get("question") or {}

def compute_practice_stats(attempts: List[Dict[str, Any]]) -> Dict[str, Any]:
    breakdown = {b: 0 for b in BUCKETS}
    topics: Dict[str, int] = {}
    for a in attempts:
        q = _attempt_question(a)
        breakdown[normalize_difficulty(q.get("difficulty") or a.get("difficulty"))] += 1
        topic = (q.get("topic") or a.get("topic") or "").strip() or "General"
        topics[topic] = topics.get(topic, 0) + 1
    return {
        "totalSolved": len(attempts),
        "difficultyBreakdown": breakdown,
        "topicsSolved": topics,
    }
