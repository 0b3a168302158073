# practice.py
# -----------------------------------------------------------------------------
# Practice-sprint JSON API: five coding problems on one topic, judged per run,
# archived attempt-by-attempt on finalize.
# -----------------------------------------------------------------------------

import os
from typing import Any, Callable, Dict, Optional

from flask import Blueprint, request, jsonify, g

from errors import AssessError
from sessions import PracticeFlow, FlowRegistry

FLOW_IDLE_SEC = int(os.getenv("FLOW_IDLE_SEC") or 3600)


def create_practice_blueprint(base_path: str, deps: Dict[str, Any], name: str = "practice") -> Blueprint:
    """
    Required deps: store, oracle
    Optional deps: clock, practice_flows (FlowRegistry), flow_idle_sec
    """
    bp = Blueprint(name, __name__, url_prefix=base_path or None)

    store = deps["store"]
    oracle = deps["oracle"]
    clock: Optional[Callable[[], int]] = deps.get("clock")
    flows: Optional[FlowRegistry] = deps.get("practice_flows")
    if flows is None:
        flows = FlowRegistry(
            lambda uid: PracticeFlow(oracle, store, uid, clock=clock),
            idle_sec=deps.get("flow_idle_sec") or FLOW_IDLE_SEC,
            clock=clock,
        )

    def _flow() -> PracticeFlow:
        return flows.get(g.user_id)

    def _body() -> Dict[str, Any]:
        return request.get_json(silent=True) or {}

    @bp.before_request
    def _require_user():
        if not getattr(g, "user_id", None):
            return jsonify({"ok": False, "error": "unauthorized"}), 401

    @bp.errorhandler(AssessError)
    def _assess_error(e: AssessError):
        return jsonify(e.to_dict()), e.status_code

    @bp.post("/practice/start")
    def practice_start():
        data = _body()
        return jsonify({"ok": True, **_flow().start_practice(data.get("topic"), data.get("difficulty"))})

    @bp.get("/practice/state")
    def practice_state():
        return jsonify({"ok": True, **_flow().snapshot()})

    @bp.post("/practice/navigate")
    def practice_navigate():
        idx = _flow().navigate(_body().get("idx", 0))
        return jsonify({"ok": True, "currentIdx": idx})

    @bp.get("/practice/editor")
    def practice_editor():
        qid = request.args.get("questionId")
        language = request.args.get("language")
        code = _flow().editor_code(qid, language)
        return jsonify({"ok": True, "code": code})

    @bp.post("/practice/run")
    def practice_run():
        data = _body()
        attempt = _flow().run(data.get("questionId"), data.get("code") or "", data.get("language"))
        if attempt is None:
            return jsonify({"ok": False, "error": "result discarded", "attempt": None})
        return jsonify({"ok": True, "attempt": attempt})

    @bp.post("/practice/finalize")
    def practice_finalize():
        data = _body()
        confirm = str(data.get("confirm") or "").lower() in ("1", "true", "yes")
        snap = _flow().finalize_sprint(data.get("attempts"), confirm_partial=confirm)
        return jsonify({"ok": True, **snap})

    return bp
