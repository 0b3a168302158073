# main.py: app factory, BASE_PATH-aware (psycopg3 + pooling)
# Serve with: gunicorn -w 1 --threads 8 'main:create_app()'
# Exam and practice flows live in one process; scale with threads, not workers.

import os
from typing import Any, Callable, Dict, Optional

from flask import Flask, request, redirect, jsonify, g, session, abort
from werkzeug.security import generate_password_hash, check_password_hash

# OAuth (Google via Authlib)
from authlib.integrations.flask_client import OAuth

from db import create_db, resolve_conninfo
from errors import AssessError, ValidationError, PersistenceError
from oracle import OracleGateway
from store import SessionStore
from exam import create_exam_blueprint
from practice import create_practice_blueprint
from dashboard import create_dashboard_blueprint

BASE_PATH = (os.getenv("BASE_PATH", "") or "").rstrip("/")
MIN_PASSWORD_LEN = 6

def _bp(path: str = "") -> str:
    """Prefix a path with BASE_PATH (if set)."""
    p = path or "/"
    if not p.startswith("/"):
        p = "/" + p
    if BASE_PATH and (p == BASE_PATH or p.startswith(BASE_PATH + "/")):
        return p
    return (BASE_PATH + p) if BASE_PATH else p

def _session_user_id() -> Optional[str]:
    u = session.get("user") or {}
    return u.get("id") or None

def _register_google(app: Flask) -> Optional[OAuth]:
    client_id = os.getenv("GOOGLE_CLIENT_ID")
    client_secret = os.getenv("GOOGLE_CLIENT_SECRET")
    if not (client_id and client_secret):
        return None
    oauth = OAuth(app)
    oauth.register(
        "google",
        client_id=client_id,
        client_secret=client_secret,
        server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
        client_kwargs={"scope": "openid email profile"},
    )
    return oauth

# =============================================================================
# App factory
# =============================================================================
def create_app(store: Optional[SessionStore] = None, oracle: Optional[OracleGateway] = None,
               clock: Optional[Callable[[], int]] = None) -> Flask:
    """
    Wire store, oracle and blueprints. Without an explicit store the database
    target is resolved from the environment once, here.
    """
    app = Flask(__name__)
    app.url_map.strict_slashes = False
    app.secret_key = os.getenv("SECRET_KEY", "dev-secret")
    app.config.update(
        SESSION_COOKIE_SAMESITE="Lax",
        SESSION_COOKIE_SECURE=os.getenv("SESSION_COOKIE_SECURE", "1").lower() in {"1", "true", "yes"},
    )

    if store is None:
        store = SessionStore(create_db(resolve_conninfo()), current_user=lambda: getattr(g, "user_id", None))
        try:
            store.ensure_schema()
        except PersistenceError as e:
            print(f"[db] schema setup failed: {e.message}", flush=True)
    oracle = oracle or OracleGateway()
    oauth = _register_google(app)

    # ------------------------------- identity ---------------------------------
    @app.before_request
    def attach_identity():
        g.user_id = _session_user_id()

    @app.errorhandler(AssessError)
    def assess_error(e: AssessError):
        return jsonify(e.to_dict()), e.status_code

    def _sign_in(user: Dict[str, Any]):
        session["user"] = {"id": user["id"], "email": user["email"]}

    @app.get(_bp("/healthz"))
    def healthz():
        try:
            ok = store.ping()
        except PersistenceError as e:
            return (f"error: {e.message}", 500)
        return ("ok" if ok else "db-fail", 200 if ok else 500)

    @app.post(_bp("/auth/signup"))
    def auth_signup():
        data = request.get_json(silent=True) or {}
        email = (data.get("email") or "").strip().lower()
        password = data.get("password") or ""
        if "@" not in email:
            raise ValidationError("Enter a valid email address.")
        if len(password) < MIN_PASSWORD_LEN:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LEN} characters.")
        if store.find_user_by_email(email):
            raise ValidationError("An account with this email already exists.")
        user = store.create_user(email, generate_password_hash(password))
        _sign_in(user)
        print(f"[auth] signup {user['id']}", flush=True)
        return jsonify({"ok": True, "user": user}), 201

    @app.post(_bp("/auth/login"))
    def auth_login():
        data = request.get_json(silent=True) or {}
        email = (data.get("email") or "").strip().lower()
        password = data.get("password") or ""
        user = store.find_user_by_email(email) if email else None
        pw_hash = store.password_hash_for(email) if user else None
        if not user or not pw_hash or not check_password_hash(pw_hash, password):
            return jsonify({"ok": False, "error": "Incorrect email or password."}), 401
        _sign_in(user)
        return jsonify({"ok": True, "user": user})

    @app.post(_bp("/auth/logout"))
    def auth_logout():
        session.clear()
        return jsonify({"ok": True})

    @app.get(_bp("/auth/me"))
    def auth_me():
        if not g.user_id:
            return jsonify({"ok": False, "error": "unauthorized"}), 401
        user = store.get_user(g.user_id)
        if not user:
            session.clear()
            return jsonify({"ok": False, "error": "unauthorized"}), 401
        return jsonify({"ok": True, "user": user})

    # ------------------------------- Google -----------------------------------
    @app.get(_bp("/auth/google"))
    def auth_google():
        if oauth is None:
            abort(503, description="Google OAuth is not configured.")
        callback = request.url_root.rstrip("/") + _bp("/auth/google/callback")
        return oauth.google.authorize_redirect(callback)

    @app.get(_bp("/auth/google/callback"))
    def auth_google_callback():
        if oauth is None:
            abort(503, description="Google OAuth is not configured.")
        token = oauth.google.authorize_access_token()
        claims = token.get("userinfo") or oauth.google.userinfo(token=token)
        email = (claims.get("email") or "").strip().lower()
        if not email:
            abort(400, description="Google authentication failed (no email).")
        user = store.find_user_by_email(email) or store.create_user(email)
        _sign_in(user)
        return redirect(_bp("/"))

    # ------------------------------- blueprints -------------------------------
    deps = {"store": store, "oracle": oracle, "clock": clock}
    app.register_blueprint(create_exam_blueprint(BASE_PATH, deps))
    app.register_blueprint(create_practice_blueprint(BASE_PATH, deps))
    app.register_blueprint(create_dashboard_blueprint(BASE_PATH, deps))
    return app

# =============================================================================
# Local dev entry
# =============================================================================
if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    create_app().run(host="0.0.0.0", port=port, debug=True)
