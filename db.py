# db.py: Postgres connection target + pooled query helpers (psycopg3)
# The target is resolved once at startup; create_db() hands out fetch/execute
# helpers bound to a lazily opened pool. No module-level pool.

import os
import threading
from contextlib import contextmanager
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlparse, parse_qs, unquote

from psycopg import conninfo
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

SA_PREFIXES = (
    "postgresql+psycopg://",
    "postgres+psycopg://",
    "postgresql+psycopg2://",
    "postgres+psycopg2://",
)

def _truthy(v: Optional[str]) -> bool:
    return (v or "").lower() in {"1", "true", "yes"}

def _on_managed_runtime(env: Mapping[str, str]) -> bool:
    # GAE or Cloud Run
    return (env.get("GAE_ENV") or "").startswith("standard") or bool(env.get("K_SERVICE"))

def _log_choice(kwargs: dict, origin: str):
    host = kwargs.get("host", "localhost")
    if isinstance(host, str) and host.startswith("/cloudsql/"):
        print(f"[db] {origin}: Unix socket -> {host}", flush=True)
    else:
        print(f"[db] {origin}: TCP -> {host}:{kwargs.get('port', 5432)}", flush=True)

def parse_database_url(url: str) -> dict:
    if not url:
        raise ValueError("Empty DATABASE_URL")
    for pref in SA_PREFIXES:
        if url.startswith(pref):
            url = "postgresql://" + url.split("://", 1)[1]
            break

    p = urlparse(url)
    if p.scheme not in ("postgresql", "postgres"):
        raise ValueError(f"Unsupported scheme '{p.scheme}'")
    qs = parse_qs(p.query or "", keep_blank_values=True)
    host = qs["host"][0] if qs.get("host") else p.hostname
    dbname = (p.path or "").lstrip("/") or (qs["dbname"][0] if qs.get("dbname") else "")
    if not dbname:
        raise ValueError("DATABASE_URL missing dbname")
    kwargs = {
        "dbname": dbname,
        "user": unquote(p.username or ""),
        "password": unquote(p.password or ""),
        "connect_timeout": 10,
    }
    if host:
        kwargs["host"] = host
    if p.port and not (isinstance(host, str) and host.startswith("/")):
        kwargs["port"] = p.port
    if qs.get("sslmode"):
        kwargs["sslmode"] = qs["sslmode"][0]
    return kwargs

def _tcp_kwargs(env: Mapping[str, str]) -> dict:
    name, user, password = env.get("DB_NAME"), env.get("DB_USER"), env.get("DB_PASS") or env.get("DB_PASSWORD")
    if not all([name, user, password]):
        raise RuntimeError("DB_NAME, DB_USER, DB_PASS must be set for TCP mode.")
    return {
        "host": env.get("DB_HOST") or "127.0.0.1",
        "port": int(env.get("DB_PORT") or "5432"),
        "dbname": name,
        "user": user,
        "password": password,
        "sslmode": "disable",
        "connect_timeout": 10,
    }

def _socket_kwargs(env: Mapping[str, str]) -> dict:
    instance = env.get("INSTANCE_CONNECTION_NAME")
    name, user, password = env.get("DB_NAME"), env.get("DB_USER"), env.get("DB_PASS") or env.get("DB_PASSWORD")
    if not all([instance, name, user, password]):
        raise RuntimeError("INSTANCE_CONNECTION_NAME, DB_NAME, DB_USER, DB_PASS must be set for socket mode.")
    return {
        "host": f"/cloudsql/{instance}",
        "dbname": name,
        "user": user,
        "password": password,
        "connect_timeout": 10,
    }

def connection_kwargs(env: Optional[Mapping[str, str]] = None) -> dict:
    """Pick the connection target: FORCE_TCP, DATABASE_URL_LOCAL, DATABASE_URL, socket, TCP."""
    env = os.environ if env is None else env
    managed = _on_managed_runtime(env)

    if _truthy(env.get("FORCE_TCP")) and not managed:
        kwargs = _tcp_kwargs(env); _log_choice(kwargs, "FORCE_TCP"); return kwargs

    if not managed and env.get("DATABASE_URL_LOCAL"):
        try:
            kwargs = parse_database_url(env["DATABASE_URL_LOCAL"])
            _log_choice(kwargs, "Using DATABASE_URL_LOCAL")
            return kwargs
        except ValueError as e:
            print(f"[db] Ignoring DATABASE_URL_LOCAL: {e}", flush=True)

    if env.get("DATABASE_URL"):
        try:
            parsed = parse_database_url(env["DATABASE_URL"])
            host = parsed.get("host")
            if (not managed) and isinstance(host, str) and host.startswith("/cloudsql/"):
                print("[db] DATABASE_URL targets /cloudsql/ but we are local; ignoring.", flush=True)
            else:
                _log_choice(parsed, "Using DATABASE_URL")
                return parsed
        except ValueError as e:
            print(f"[db] Ignoring DATABASE_URL: {e}", flush=True)

    if managed:
        kwargs = _socket_kwargs(env); _log_choice(kwargs, "Managed runtime"); return kwargs

    kwargs = _tcp_kwargs(env); _log_choice(kwargs, "Local dev"); return kwargs

def resolve_conninfo(env: Optional[Mapping[str, str]] = None) -> str:
    return conninfo.make_conninfo(**connection_kwargs(env))

# =============================================================================
# Pool + helpers
# =============================================================================
def create_db(conn_str: str, max_size: Optional[int] = None) -> Dict[str, Any]:
    """Returns {fetch_all, fetch_one, execute} over one lazily opened pool."""
    max_size = int(max_size or os.getenv("DB_POOL_MAX") or 6)
    state: Dict[str, Optional[ConnectionPool]] = {"pool": None}
    lock = threading.Lock()

    def _pool() -> ConnectionPool:
        with lock:
            if state["pool"] is None:
                state["pool"] = ConnectionPool(conninfo=conn_str, min_size=1, max_size=max_size, open=True)
            return state["pool"]

    @contextmanager
    def get_conn():
        with _pool().connection() as conn:
            yield conn

    def fetch_all(q, params=None):
        with get_conn() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(q, params or ())
                return cur.fetchall()

    def fetch_one(q, params=None):
        rows = fetch_all(q, params)
        return rows[0] if rows else None

    def execute(q, params=None):
        with get_conn() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(q, params or ())
            conn.commit()

    return {
        "fetch_all": fetch_all,
        "fetch_one": fetch_one,
        "execute": execute,
    }
