# store.py: Postgres-backed session store
# Consumes the fetch/execute helpers from db.create_db(); every write is one
# upsert statement. Driver and pool failures surface as PersistenceError.

import json
import time
import uuid
from functools import wraps
from typing import Any, Callable, Dict, List, Optional

import psycopg

from errors import PersistenceError

SCHEMA_SQL = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id            TEXT PRIMARY KEY,
        email         TEXT NOT NULL UNIQUE,
        username      TEXT NOT NULL,
        password_hash TEXT,
        created_at    BIGINT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS exam_sessions (
        id           TEXT PRIMARY KEY,
        user_id      TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        exam_id      TEXT NOT NULL,
        exam_data    JSONB NOT NULL,
        answers      JSONB NOT NULL DEFAULT '{}'::jsonb,
        is_completed BOOLEAN NOT NULL DEFAULT FALSE,
        results      JSONB,
        start_time   BIGINT NOT NULL,
        updated_at   BIGINT NOT NULL,
        UNIQUE (user_id, exam_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS practice_attempts (
        id            TEXT PRIMARY KEY,
        user_id       TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        question_data JSONB NOT NULL,
        answer        TEXT NOT NULL DEFAULT '',
        language      TEXT NOT NULL,
        run_result    JSONB,
        score         DOUBLE PRECISION NOT NULL DEFAULT 0,
        "timestamp"   BIGINT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS session_checkpoints (
        user_id    TEXT PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
        session    JSONB NOT NULL,
        updated_at BIGINT NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS exam_sessions_user_idx ON exam_sessions (user_id, start_time DESC);",
    "CREATE INDEX IF NOT EXISTS practice_attempts_user_idx ON practice_attempts (user_id, \"timestamp\" DESC);",
]

def _now_ms() -> int:
    return int(time.time() * 1000)

def _json(raw: Any, default: Any = None) -> Any:
    if raw is None:
        return default
    if isinstance(raw, (dict, list)):
        return raw
    if isinstance(raw, str) and raw.strip():
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return default
    return default

def _guarded(op: str):
    def deco(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                return fn(*args, **kwargs)
            except (psycopg.Error, RuntimeError) as e:
                print(f"[store] {op} failed: {e}", flush=True)
                raise PersistenceError(f"Could not {op}. Please try again.") from e
        return wrapper
    return deco

def _user_row(row: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not row:
        return None
    return {
        "id": row["id"],
        "email": row["email"],
        "username": row["username"],
        "createdAt": int(row.get("created_at") or 0),
    }

def _session_row(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "userId": row["user_id"],
        "exam": _json(row.get("exam_data"), {}),
        "answers": _json(row.get("answers"), {}),
        "isCompleted": bool(row.get("is_completed")),
        "results": _json(row.get("results")),
        "startTime": int(row.get("start_time") or 0),
        "updatedAt": int(row.get("updated_at") or 0),
    }

def _attempt_row(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "userId": row["user_id"],
        "question": _json(row.get("question_data"), {}),
        "answer": row.get("answer") or "",
        "language": row.get("language"),
        "runResult": _json(row.get("run_result")),
        "score": float(row.get("score") or 0),
        "timestamp": int(row.get("timestamp") or 0),
    }


class SessionStore:
    """
    deps: {"fetch_one", "fetch_all", "execute"} from db.create_db().
    current_user: zero-arg callable returning the signed-in user id (or None).
    """

    def __init__(self, deps: Dict[str, Callable], current_user: Optional[Callable[[], Optional[str]]] = None):
        self._fetch_one = deps["fetch_one"]
        self._fetch_all = deps["fetch_all"]
        self._execute = deps["execute"]
        self._current_user = current_user or (lambda: None)

    @_guarded("prepare the database")
    def ensure_schema(self):
        for stmt in SCHEMA_SQL:
            self._execute(stmt)

    @_guarded("reach the database")
    def ping(self) -> bool:
        row = self._fetch_one("SELECT 1 AS ok;")
        return bool(row and row.get("ok") == 1)

    # ------------------------------- users ------------------------------------
    @_guarded("create the account")
    def create_user(self, email: str, password_hash: Optional[str] = None) -> Dict[str, Any]:
        email = email.strip().lower()
        user_id = uuid.uuid4().hex
        self._execute("""
            INSERT INTO users (id, email, username, password_hash, created_at)
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (email) DO NOTHING;
        """, (user_id, email, email.split("@", 1)[0], password_hash, _now_ms()))
        return self._user_by_email(email)

    def _user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return _user_row(self._fetch_one("""
            SELECT id, email, username, created_at
              FROM users
             WHERE lower(email) = lower(%s)
             LIMIT 1;
        """, (email.strip(),)))

    @_guarded("look up the account")
    def find_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return self._user_by_email(email)

    @_guarded("look up the account")
    def password_hash_for(self, email: str) -> Optional[str]:
        row = self._fetch_one(
            "SELECT password_hash FROM users WHERE lower(email) = lower(%s) LIMIT 1;",
            (email.strip(),),
        )
        return (row or {}).get("password_hash")

    @_guarded("look up the account")
    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        return _user_row(self._fetch_one(
            "SELECT id, email, username, created_at FROM users WHERE id = %s;", (user_id,)
        ))

    def get_current_user(self) -> Optional[Dict[str, Any]]:
        user_id = self._current_user()
        return self.get_user(user_id) if user_id else None

    def _owner(self, user_id: Optional[str]) -> str:
        if user_id:
            return user_id
        user = self.get_current_user()
        if not user:
            raise PersistenceError("No signed-in user to save for.")
        return user["id"]

    # ------------------------------- exam sessions ----------------------------
    @_guarded("save the exam session")
    def save_exam_session(self, session: Dict[str, Any], user_id: Optional[str] = None):
        owner = self._owner(user_id)
        exam = session["exam"]
        # exam ids are minted once per generated exam, so (user_id, exam_id) and id name the same row
        self._execute("""
            INSERT INTO exam_sessions
                (id, user_id, exam_id, exam_data, answers, is_completed, results, start_time, updated_at)
            VALUES (%s, %s, %s, %s::jsonb, %s::jsonb, %s, %s::jsonb, %s, %s)
            ON CONFLICT (user_id, exam_id) DO UPDATE
               SET answers      = EXCLUDED.answers,
                   is_completed = EXCLUDED.is_completed,
                   results      = EXCLUDED.results,
                   updated_at   = EXCLUDED.updated_at;
        """, (
            session["id"], owner, exam["id"],
            json.dumps(exam), json.dumps(session.get("answers") or {}),
            bool(session.get("isCompleted")),
            json.dumps(session["results"]) if session.get("results") is not None else None,
            int(session.get("startTime") or _now_ms()), _now_ms(),
        ))
        print(f"[store] saved exam session {session['id']} for {owner}", flush=True)

    @_guarded("load exam history")
    def load_sessions_for_user(self, user_id: str) -> List[Dict[str, Any]]:
        rows = self._fetch_all("""
            SELECT id, user_id, exam_data, answers, is_completed, results, start_time, updated_at
              FROM exam_sessions
             WHERE user_id = %s
             ORDER BY start_time DESC;
        """, (user_id,))
        return [_session_row(r) for r in rows]

    @_guarded("load the exam session")
    def load_session(self, user_id: str, session_id: str) -> Optional[Dict[str, Any]]:
        row = self._fetch_one("""
            SELECT id, user_id, exam_data, answers, is_completed, results, start_time, updated_at
              FROM exam_sessions
             WHERE user_id = %s AND id = %s;
        """, (user_id, session_id))
        return _session_row(row) if row else None

    # ------------------------------- practice ---------------------------------
    @_guarded("save the practice attempt")
    def save_practice_attempt(self, attempt: Dict[str, Any], user_id: Optional[str] = None):
        owner = self._owner(user_id)
        if not attempt.get("id"):
            raise PersistenceError("Practice attempt has no id.")
        self._execute("""
            INSERT INTO practice_attempts
                (id, user_id, question_data, answer, language, run_result, score, "timestamp")
            VALUES (%s, %s, %s::jsonb, %s, %s, %s::jsonb, %s, %s)
            ON CONFLICT (id) DO UPDATE
               SET answer     = EXCLUDED.answer,
                   language   = EXCLUDED.language,
                   run_result = EXCLUDED.run_result,
                   score      = EXCLUDED.score;
        """, (
            attempt["id"], owner, json.dumps(attempt.get("question") or {}),
            attempt.get("answer") or "", attempt.get("language") or "",
            json.dumps(attempt.get("runResult")) if attempt.get("runResult") is not None else None,
            float(attempt.get("score") or 0), int(attempt.get("timestamp") or _now_ms()),
        ))

    @_guarded("load practice history")
    def load_attempts_for_user(self, user_id: str) -> List[Dict[str, Any]]:
        rows = self._fetch_all("""
            SELECT id, user_id, question_data, answer, language, run_result, score, "timestamp"
              FROM practice_attempts
             WHERE user_id = %s
             ORDER BY "timestamp" DESC;
        """, (user_id,))
        return [_attempt_row(r) for r in rows]

    # ------------------------------- checkpoints ------------------------------
    @_guarded("save progress")
    def save_checkpoint(self, user_id: str, session: Dict[str, Any]):
        self._execute("""
            INSERT INTO session_checkpoints (user_id, session, updated_at)
            VALUES (%s, %s::jsonb, %s)
            ON CONFLICT (user_id) DO UPDATE
               SET session = EXCLUDED.session, updated_at = EXCLUDED.updated_at;
        """, (user_id, json.dumps(session), _now_ms()))

    @_guarded("load saved progress")
    def load_checkpoint(self, user_id: str) -> Optional[Dict[str, Any]]:
        row = self._fetch_one("SELECT session FROM session_checkpoints WHERE user_id = %s;", (user_id,))
        return _json((row or {}).get("session"))

    @_guarded("clear saved progress")
    def clear_checkpoint(self, user_id: str):
        self._execute("DELETE FROM session_checkpoints WHERE user_id = %s;", (user_id,))
