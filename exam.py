# exam.py
# -----------------------------------------------------------------------------
# Mock-exam JSON API.
# - One ExamFlow per signed-in user in a per-process FlowRegistry; idle flows
#   are evicted and rebuilt from the stored checkpoint on next access
# - Oracle/store come in through deps; nothing global
# - Countdown is client-driven: POST /exam/tick once a second
# - Complete is idempotent; a second submit returns the frozen session
# -----------------------------------------------------------------------------

import os
from typing import Any, Callable, Dict, Optional

from flask import Blueprint, request, jsonify, g

from errors import AssessError, PersistenceError
from sessions import ExamFlow, FlowRegistry

FLOW_IDLE_SEC = int(os.getenv("FLOW_IDLE_SEC") or 3600)

# -----------------------------------------------------------------------------
# Blueprint factory
# -----------------------------------------------------------------------------
def create_exam_blueprint(base_path: str, deps: Dict[str, Any], name: str = "exam") -> Blueprint:
    """
    Factory that returns a Blueprint mounted at base_path (e.g. "/api").
    Required deps: store, oracle
    Optional deps: clock (epoch-ms callable), exam_flows (FlowRegistry), flow_idle_sec
    """
    bp = Blueprint(name, __name__, url_prefix=base_path or None)

    store = deps["store"]
    oracle = deps["oracle"]
    clock: Optional[Callable[[], int]] = deps.get("clock")

    def _resume_checkpoint(flow: ExamFlow):
        try:
            if flow.resume():
                print(f"[exam] resumed checkpoint for {flow.user_id}", flush=True)
        except PersistenceError as e:
            print(f"[exam] could not load checkpoint for {flow.user_id}: {e.message}", flush=True)

    flows: Optional[FlowRegistry] = deps.get("exam_flows")
    if flows is None:
        flows = FlowRegistry(
            lambda uid: ExamFlow(oracle, store, uid, clock=clock),
            idle_sec=deps.get("flow_idle_sec") or FLOW_IDLE_SEC,
            clock=clock,
            on_create=_resume_checkpoint,
        )

    def _flow() -> ExamFlow:
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

    # ------------------------------- lifecycle --------------------------------
    @bp.post("/exam/start")
    def exam_start():
        data = _body()
        snap = _flow().start_exam(data.get("company"), data.get("role"), data.get("level"))
        return jsonify({"ok": True, **snap})

    @bp.post("/exam/begin")
    def exam_begin():
        return jsonify({"ok": True, **_flow().begin_exam()})

    @bp.get("/exam/state")
    def exam_state():
        return jsonify({"ok": True, **_flow().snapshot()})

    @bp.post("/exam/tick")
    def exam_tick():
        flow = _flow()
        remaining = flow.tick()
        return jsonify({"ok": True, "remainingSeconds": remaining, "state": flow.state})

    @bp.post("/exam/resume")
    def exam_resume():
        snap = _flow().resume()
        if snap is None:
            return jsonify({"ok": False, "error": "no exam in progress"}), 404
        return jsonify({"ok": True, **snap})

    # ------------------------------- in progress ------------------------------
    @bp.post("/exam/navigate")
    def exam_navigate():
        data = _body()
        pos = _flow().navigate(data.get("section"), data.get("idx"))
        return jsonify({"ok": True, **pos})

    @bp.post("/exam/answer")
    def exam_answer():
        data = _body()
        qid = data.get("questionId")
        patch = {k: v for k, v in data.items() if k != "questionId"}
        answer = _flow().record_answer(qid, patch)
        return jsonify({"ok": True, "answer": answer})

    @bp.post("/exam/language")
    def exam_language():
        data = _body()
        code = _flow().select_language(data.get("questionId"), data.get("language"))
        return jsonify({"ok": True, "code": code, "language": data.get("language")})

    @bp.post("/exam/run")
    def exam_run():
        data = _body()
        flow = _flow()
        result = flow.run_code(data.get("questionId"), data.get("code"), data.get("language"))
        if result is None:
            return jsonify({"ok": False, "error": flow.error or "result discarded", "runResult": None}), 200
        return jsonify({"ok": True, "runResult": result})

    @bp.post("/exam/complete")
    def exam_complete():
        data = _body()
        snap = _flow().complete_exam(data.get("answers"))
        return jsonify({"ok": True, **snap})

    return bp
