import sys
from pathlib import Path

import pytest
from flask import Flask, g

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import main  # noqa: E402
import sessions  # noqa: E402
from exam import create_exam_blueprint  # noqa: E402
from practice import create_practice_blueprint  # noqa: E402
from dashboard import create_dashboard_blueprint  # noqa: E402


@pytest.fixture
def client(oracle, store, clock):
    app = Flask(__name__)
    app.testing = True
    deps = {"store": store, "oracle": oracle, "clock": clock}
    app.register_blueprint(create_exam_blueprint("/api", deps))
    app.register_blueprint(create_practice_blueprint("/api", deps))
    app.register_blueprint(create_dashboard_blueprint("/api", deps))

    @app.before_request
    def _set_user():
        g.user_id = "user-1"

    return app.test_client()


def test_routes_require_a_user(oracle, store):
    app = Flask(__name__)
    app.register_blueprint(create_exam_blueprint("", {"store": store, "oracle": oracle}))
    app.register_blueprint(create_dashboard_blueprint("", {"store": store}))
    c = app.test_client()
    assert c.post("/exam/start", json={"company": "Acme"}).status_code == 401
    assert c.get("/history").status_code == 401
    assert c.get("/catalog").status_code == 200


def test_exam_lifecycle_over_http(client, oracle, store, clock):
    resp = client.post("/api/exam/start", json={"company": "Acme", "role": "SWE", "level": "SDE-1 / Junior"})
    assert resp.status_code == 200
    assert resp.get_json()["state"] == "intro"

    assert client.post("/api/exam/begin").get_json()["state"] == "in_progress"

    exam = oracle.last_exam
    mcq = exam["sections"]["technical"][0]["id"]
    coding = exam["sections"]["coding"][0]["id"]

    assert client.post("/api/exam/answer", json={"questionId": mcq, "answer": "1"}).get_json()["ok"]
    lang = client.post("/api/exam/language", json={"questionId": coding, "language": "cpp"}).get_json()
    assert "int main()" in lang["code"]
    run = client.post("/api/exam/run", json={"questionId": coding, "code": "int main(){}", "language": "cpp"})
    assert run.get_json()["runResult"]["passed"] is True

    nav = client.post("/api/exam/navigate", json={"section": "Coding", "idx": 5}).get_json()
    assert nav["currentIdx"] == 1

    clock.advance(30)
    assert client.post("/api/exam/tick").get_json()["remainingSeconds"] == 90 * 60 - 30

    done = client.post("/api/exam/complete").get_json()
    again = client.post("/api/exam/complete").get_json()
    assert done["state"] == "completed"
    assert again["session"]["id"] == done["session"]["id"]
    assert len(store.sessions) == 1

    history = client.get("/api/history").get_json()
    assert history["averageReadiness"] == 80
    assert "Acme" in history["discoveredCompanies"]
    sid = done["session"]["id"]
    assert client.get(f"/api/history/sessions/{sid}").get_json()["session"]["id"] == sid
    assert client.get("/api/history/sessions/missing").status_code == 404


def test_errors_map_to_status_codes(client, oracle):
    assert client.post("/api/exam/start", json={"company": "", "role": "SWE"}).status_code == 400
    assert client.post("/api/exam/begin").status_code == 409

    oracle.fail_generate = True
    resp = client.post("/api/exam/start", json={"company": "Acme", "role": "SWE", "level": "SDE-1 / Junior"})
    assert resp.status_code == 502
    assert resp.get_json() == {"ok": False, "error": "Exam synthesis failed: boom"}


def test_grading_failure_is_502_and_resets(client, oracle):
    client.post("/api/exam/start", json={"company": "Acme", "role": "SWE", "level": "SDE-1 / Junior"})
    client.post("/api/exam/begin")
    oracle.fail_evaluate = True
    assert client.post("/api/exam/complete").status_code == 502
    assert client.get("/api/exam/state").get_json()["state"] == "setup"


def test_practice_sprint_over_http(client, store):
    start = client.post("/api/practice/start", json={"topic": "Graphs", "difficulty": "Very Hard"}).get_json()
    qids = [q["id"] for q in start["session"]["questions"]]
    assert len(qids) == 5

    for qid in qids[:3]:
        client.post("/api/practice/run", json={"questionId": qid, "code": "print(1)", "language": "python"})
    editor = client.get("/api/practice/editor", query_string={"questionId": qids[0], "language": "python"})
    assert editor.get_json()["code"] == "print(1)"

    partial = client.post("/api/practice/finalize", json={})
    assert partial.status_code == 400
    assert partial.get_json()["needsConfirmation"] is True
    assert (partial.get_json()["answered"], partial.get_json()["total"]) == (3, 5)

    done = client.post("/api/practice/finalize", json={"confirm": True}).get_json()
    assert done["state"] == "completed"
    assert len(store.attempts) == 5

    stats = client.get("/api/practice/stats").get_json()
    assert stats["totalSolved"] == 5
    assert stats["difficultyBreakdown"] == {"Easy": 0, "Medium": 0, "Hard": 5}
    assert stats["topicsSolved"] == {"Graphs": 5}


def test_catalog_lists_reference_data(client):
    data = client.get("/api/catalog").get_json()
    assert "SDE-1 / Junior" in [lvl["name"] for lvl in data["levels"]]
    assert {l["id"] for l in data["languages"]} == {"javascript", "typescript", "python", "java", "cpp"}
    assert data["defaultLanguage"] == "python"


# ------------------------------- auth ----------------------------------------
class FakeUserStore:
    def __init__(self):
        self.users = {}
        self.hashes = {}

    def find_user_by_email(self, email):
        return self.users.get(email.lower())

    def password_hash_for(self, email):
        return self.hashes.get(email.lower())

    def create_user(self, email, password_hash=None):
        user = {"id": f"id-{len(self.users) + 1}", "email": email, "username": email.split("@")[0], "createdAt": 1}
        self.users[email] = user
        self.hashes[email] = password_hash
        return user

    def get_user(self, user_id):
        return next((u for u in self.users.values() if u["id"] == user_id), None)

    def ping(self):
        return True


def test_signup_login_and_me(monkeypatch, oracle):
    monkeypatch.setenv("SESSION_COOKIE_SECURE", "0")
    monkeypatch.delenv("GOOGLE_CLIENT_ID", raising=False)
    app = main.create_app(store=FakeUserStore(), oracle=oracle)
    app.testing = True
    c = app.test_client()

    assert c.get("/auth/me").status_code == 401
    assert c.post("/auth/signup", json={"email": "ada@example.com", "password": "123"}).status_code == 400

    signup = c.post("/auth/signup", json={"email": "Ada@Example.com", "password": "s3cret!"})
    assert signup.status_code == 201
    assert signup.get_json()["user"]["username"] == "ada"
    assert c.post("/auth/signup", json={"email": "ada@example.com", "password": "s3cret!"}).status_code == 400

    c.post("/auth/logout")
    assert c.get("/auth/me").status_code == 401
    assert c.post("/auth/login", json={"email": "ada@example.com", "password": "wrong"}).status_code == 401
    assert c.post("/auth/login", json={"email": "ADA@example.com", "password": "s3cret!"}).status_code == 200
    assert c.get("/auth/me").get_json()["user"]["email"] == "ada@example.com"

    assert c.get("/healthz").get_data(as_text=True) == "ok"
    assert c.get("/auth/google").status_code == 503


def test_complete_over_http_accepts_choice_strings_and_rejects_lists(client, store):
    start = client.post("/api/exam/start", json={"company": "Acme", "role": "SWE", "level": "SDE-1 / Junior"})
    client.post("/api/exam/begin")
    qid = start.get_json()["session"]["exam"]["sections"]["technical"][0]["id"]

    bad = client.post("/api/exam/complete", json={"answers": {qid: ["1"]}})
    assert bad.status_code == 400
    assert client.get("/api/exam/state").get_json()["state"] == "in_progress"

    done = client.post("/api/exam/complete", json={"answers": {qid: "1"}})
    assert done.status_code == 200
    assert store.sessions[0][1]["answers"][qid]["answer"] == "1"


def test_finalize_over_http_fills_in_attempt_ids(client, store):
    start = client.post("/api/practice/start", json={"topic": "Graphs", "difficulty": "Easy"}).get_json()
    qids = [q["id"] for q in start["session"]["questions"]]
    attempts = {qid: {"answer": "print(1)", "language": "python", "score": 50} for qid in qids}

    done = client.post("/api/practice/finalize", json={"attempts": attempts})
    assert done.status_code == 200
    assert done.get_json()["state"] == "completed"
    assert all(a["id"] and a["question"]["id"] in qids for _, a in store.attempts)

    bad = client.post("/api/practice/start", json={"topic": "Graphs", "difficulty": "Easy"}).get_json()
    malformed = client.post("/api/practice/finalize", json={"attempts": {bad["session"]["questions"][0]["id"]: 7}})
    assert malformed.status_code == 400
    assert client.get("/api/practice/state").get_json()["state"] == "in_progress"


def _user_app(deps):
    app = Flask(__name__)
    app.testing = True
    app.register_blueprint(create_exam_blueprint("/api", deps))
    app.register_blueprint(create_practice_blueprint("/api", deps))

    @app.before_request
    def _set_user():
        g.user_id = "user-1"

    return app.test_client()


def test_fresh_worker_resumes_exam_from_checkpoint(oracle, store, clock):
    first = _user_app({"store": store, "oracle": oracle, "clock": clock})
    first.post("/api/exam/start", json={"company": "Acme", "role": "SWE", "level": "SDE-1 / Junior"})
    first.post("/api/exam/begin")
    first.post("/api/exam/navigate", json={"section": "Quantitative", "idx": 2})

    second = _user_app({"store": store, "oracle": oracle, "clock": clock})
    state = second.get("/api/exam/state").get_json()
    assert state["state"] == "in_progress"
    assert state["session"]["currentSection"] == "Quantitative"
    assert state["session"]["currentIdx"] == 2


def test_idle_flows_are_evicted(oracle, store, clock):
    exam_flows = sessions.FlowRegistry(
        lambda uid: sessions.ExamFlow(oracle, store, uid, clock=clock), idle_sec=60, clock=clock,
    )
    c = _user_app({"store": store, "oracle": oracle, "clock": clock, "exam_flows": exam_flows})
    assert c.get("/api/exam/state").get_json()["state"] == "setup"
    assert "user-1" in exam_flows

    exam_flows.get("user-2")
    clock.advance(120)
    exam_flows.get("user-2")
    assert "user-1" not in exam_flows
    assert len(exam_flows) == 1
