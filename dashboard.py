# dashboard.py: history hub plus practice stats and the setup catalog
from typing import Any, Dict

from flask import Blueprint, jsonify, g

from constants import (
    POSITION_LEVELS, DEFAULT_LEVEL, DEFAULT_ROLE, LEVEL_DNA, COMPANIES,
    DSA_TOPICS, PRACTICE_DIFFICULTIES, SUPPORTED_LANGUAGES, DEFAULT_LANGUAGE, SECTIONS,
)
from errors import AssessError
from history import compute_history, compute_practice_stats


def create_dashboard_blueprint(base_path: str, deps: Dict[str, Any], name: str = "dashboard") -> Blueprint:
    """Required deps: store"""
    bp = Blueprint(name, __name__, url_prefix=base_path or None)
    store = deps["store"]

    def _unauthorized():
        return jsonify({"ok": False, "error": "unauthorized"}), 401

    @bp.errorhandler(AssessError)
    def _assess_error(e: AssessError):
        return jsonify(e.to_dict()), e.status_code

    @bp.get("/history")
    def history_view():
        if not getattr(g, "user_id", None):
            return _unauthorized()
        uid = str(g.user_id)
        view = compute_history(
            store.load_sessions_for_user(uid),
            store.load_attempts_for_user(uid),
            user_id=uid,
        )
        return jsonify({"ok": True, **view})

    @bp.get("/history/sessions/<session_id>")
    def history_session(session_id: str):
        if not getattr(g, "user_id", None):
            return _unauthorized()
        s = store.load_session(str(g.user_id), session_id)
        if not s:
            return jsonify({"ok": False, "error": "session not found"}), 404
        return jsonify({"ok": True, "session": s})

    @bp.get("/practice/stats")
    def practice_stats():
        if not getattr(g, "user_id", None):
            return _unauthorized()
        stats = compute_practice_stats(store.load_attempts_for_user(str(g.user_id)))
        return jsonify({"ok": True, **stats})

    @bp.get("/catalog")
    def catalog():
        return jsonify({
            "ok": True,
            "sections": SECTIONS,
            "levels": [{"name": lvl, "focus": LEVEL_DNA[lvl]["focus"]} for lvl in POSITION_LEVELS],
            "defaultLevel": DEFAULT_LEVEL,
            "defaultRole": DEFAULT_ROLE,
            "companies": [{"name": c["name"], "vibe": c["vibe"]} for c in COMPANIES],
            "topics": DSA_TOPICS,
            "difficulties": PRACTICE_DIFFICULTIES,
            "languages": SUPPORTED_LANGUAGES,
            "defaultLanguage": DEFAULT_LANGUAGE,
        })

    return bp
