import json
import sqlite3
from unittest.mock import patch

import pytest

import db
from llm import LLMError

ROADMAP_REPLY = json.dumps(
    [{"title": f"Step {i}", "description": f"d{i}", "xpReward": 100 + 50 * i} for i in range(6)]
)
QUIZ = [
    {"id": "level-1-q0", "question": "a?", "options": ["x", "y", "z", "w"], "correctIndex": 2},
    {"id": "level-1-q1", "question": "b?", "options": ["x", "y", "z", "w"], "correctIndex": 0},
]


def _fake_stream(pieces):
    def _stream(messages, on_token=None, *, on_delta=None, **kwargs):
        text = ""
        for piece in pieces:
            text += piece
            if on_delta:
                on_delta(piece)
            if on_token:
                on_token(text)
        return text

    return _stream


@pytest.fixture
def user(temp_db):
    return db.upsert_user("g-1", "Alice")


def test_generate_roadmap_persists_levels(user, api):
    with patch("tutor.llm_chat", return_value="Sure!\n" + ROADMAP_REPLY) as llm_chat:
        created = api("POST", "/ai/roadmap", {"topic": "Python", "user_id": user["id"]}).json()
        again = api("POST", "/ai/roadmap", {"topic": "python", "user_id": user["id"]}).json()

    assert llm_chat.call_count == 1
    assert created["existing"] is False
    assert [level["id"] for level in created["levels"]] == [f"level-{i}" for i in range(1, 7)]
    assert created["levels"][5]["xpReward"] == 350
    assert again["existing"] is True and again["id"] == created["id"]


def test_generate_roadmap_parse_failure_is_500(temp_db, api):
    with patch("tutor.llm_chat", return_value="I'd rather not."):
        response = api("POST", "/ai/roadmap", {"topic": "Python"})
    assert response.status == 500
    assert response.json()["detail"] == "Failed to generate roadmap."


def test_llm_outage_is_502(temp_db, api):
    with patch("tutor.llm_chat", side_effect=LLMError("connection refused")):
        response = api("POST", "/ai/explain", {"code": "print(1)", "language": "python"})
    assert response.status == 502


def test_level_view_materializes_once(user, api):
    roadmap, _ = db.create_roadmap(
        user["id"], None, "Python", [{"id": "level-1", "title": "Intro", "description": "", "theoryContent": "",
                                      "subtopics": [], "quiz": [], "xpReward": 100}]
    )
    replies = iter(
        [
            "# Intro theory",
            '[{"title": "Variables", "description": "names"}]',
            json.dumps([{k: v for k, v in q.items() if k != "id"} for q in QUIZ]),
        ]
    )
    with patch("tutor.llm_chat", side_effect=lambda *a, **k: next(replies)):
        level = api("GET", f"/ai/roadmaps/{roadmap['id']}/levels/level-1").json()

    assert level["theoryContent"] == "# Intro theory"
    assert level["subtopics"][0]["id"] == "level-1-sub0"
    assert [q["id"] for q in level["quiz"]] == ["level-1-q0", "level-1-q1"]

    with patch("tutor.llm_chat", side_effect=AssertionError("already generated")):
        cached = api("GET", f"/ai/roadmaps/{roadmap['id']}/levels/level-1").json()
    assert cached == level


def test_quiz_submission_awards_xp_once(user, api):
    roadmap, _ = db.create_roadmap(
        user["id"], None, "Python", [{"id": "level-1", "title": "Intro", "quiz": QUIZ, "xpReward": 150}]
    )
    path = f"/ai/roadmaps/{roadmap['id']}/levels/level-1/quiz"

    first = api("POST", path, {"user_id": user["id"], "answers": [2, 0]}).json()
    assert first["result"]["score"] == first["result"]["total"] == 2
    assert first["result"]["perfect"] is True
    assert first["progress"]["totalXp"] == 150
    assert {"first-quiz", "perfect-quiz"} <= set(first["progress"]["rewards"])

    second = api("POST", path, {"user_id": user["id"], "answers": [1, 0]}).json()
    assert second["result"]["score"] == 1
    assert second["progress"]["totalXp"] == 150

    stored = db.get_progress(user["id"], roadmap["id"])
    assert stored["completed_levels"] == ["level-1"]
    assert [r["score"] for r in stored["quiz_results"]] == [1]
    assert db.get_user(user["id"])["xp"] == 150


def test_quiz_submission_requires_generated_quiz(user, api):
    roadmap, _ = db.create_roadmap(user["id"], None, "Go", [{"id": "level-1", "quiz": []}])
    response = api("POST", f"/ai/roadmaps/{roadmap['id']}/levels/level-1/quiz", {"user_id": user["id"]})
    assert response.status == 400


def test_theory_stream_relays_deltas_and_persists(user, api):
    roadmap, _ = db.create_roadmap(user["id"], None, "Python", [{"id": "level-1", "theoryContent": ""}])
    body = {
        "topic": "Python",
        "level_title": "Intro",
        "roadmap_id": roadmap["id"],
        "level_id": "level-1",
    }
    with patch("tutor.llm_chat_stream", side_effect=_fake_stream(["# Ti", "tle", "\nBody"])):
        response = api("POST", "/ai/stream/theory", body)

    assert response.status == 200
    assert response.headers["content-type"].startswith("application/x-ndjson")
    lines = response.ndjson()
    assert [line["delta"] for line in lines[:-1]] == ["# Ti", "tle", "\nBody"]
    assert all(line["done"] is False for line in lines[:-1])
    assert lines[-1] == {"done": True, "text": "# Title\nBody"}
    assert db.get_roadmap(roadmap["id"])["levels"][0]["theoryContent"] == "# Title\nBody"


def test_stream_failure_ends_with_error_line(temp_db, api):
    def _broken(messages, on_token=None, *, on_delta=None, **kwargs):
        on_delta("partial")
        raise LLMError("Stream interrupted")

    with patch("tutor.llm_chat_stream", side_effect=_broken):
        lines = api("POST", "/ai/stream/code", {"prompt": "fizzbuzz", "language": "python"}).ndjson()

    assert lines[0] == {"delta": "partial", "done": False}
    assert lines[-1]["done"] is True
    assert "error" in lines[-1]


def test_theory_stream_storage_failure_still_ends_stream(user, api):
    roadmap, _ = db.create_roadmap(user["id"], None, "Python", [{"id": "level-1", "theoryContent": ""}])
    body = {"topic": "Python", "level_title": "Intro", "roadmap_id": roadmap["id"], "level_id": "level-1"}

    with patch("tutor.llm_chat_stream", side_effect=_fake_stream(["abc"])), patch(
        "db.update_roadmap_level", side_effect=sqlite3.OperationalError("database is locked")
    ):
        lines = api("POST", "/ai/stream/theory", body).ndjson()

    assert lines == [{"delta": "abc", "done": False}, {"done": True, "error": "Internal server error"}]


def test_chat_stream_uses_persona_prompt(temp_db, api):
    captured = {}

    def _stream(messages, on_token=None, *, on_delta=None, **kwargs):
        captured["messages"] = messages
        on_delta("Why?")
        return "Why?"

    with patch("tutor.llm_chat_stream", side_effect=_stream):
        lines = api(
            "POST", "/ai/stream/chat", {"persona": "Socrates", "messages": [{"role": "user", "content": "Tell me"}]}
        ).ndjson()

    assert lines[-1]["text"] == "Why?"
    assert captured["messages"][0]["role"] == "system"
    assert "Socrates" in captured["messages"][0]["content"]


def test_unknown_persona_is_400(temp_db, api):
    response = api("POST", "/ai/chat", {"persona": "Nobody", "messages": [{"role": "user", "content": "hi"}]})
    assert response.status == 400


def test_subtopic_content_one_shot(temp_db, api):
    with patch("tutor.llm_chat", return_value="## Variables\nNames for values.") as llm_chat:
        response = api(
            "POST",
            "/ai/subtopic",
            {"topic": "Python", "level_title": "Intro", "subtopic_title": "Variables", "subtopic_description": "names"},
        )

    assert response.json() == {"text": "## Variables\nNames for values."}
    assert '"Variables"' in llm_chat.call_args.args[0][1]["content"]
    assert api("POST", "/ai/subtopic", {"topic": "Python"}).status == 400


def test_personas_listing(api):
    names = [p["name"] for p in api("GET", "/ai/personas").json()]
    assert names == ["Cognify", "Socrates", "Ada", "Feynman", "Quizzy"]


def test_code_languages_and_execute(user, api):
    languages = api("GET", "/code/languages").json()
    assert {lang["id"] for lang in languages} >= {"python", "java", "html"}

    class _Response:
        status_code = 200
        text = ""

        def json(self):
            return {"language": "python", "version": "3.10.0", "run": {"stdout": "3\n", "stderr": "", "code": 0}}

    with patch("code_execution.requests.post", return_value=_Response()):
        result = api(
            "POST", "/code/execute", {"language": "python", "code": "print(1+2)", "user_id": user["id"]}
        ).json()

    assert result["stdout"] == "3\n"
    assert result["exitCode"] == 0
    assert db.list_code_history(user["id"])[0]["output"] == "3\n"

    unsupported = api("POST", "/code/execute", {"language": "cobol", "code": "x"})
    assert unsupported.status == 400
