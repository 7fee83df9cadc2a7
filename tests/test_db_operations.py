"""Test cases for db operations."""

import sqlite3

import pytest

import db


def _user(google_id="g-1", name="Alice"):
    return db.upsert_user(google_id, name, f"{google_id}@example.com")


def test_upsert_user_updates_in_place(temp_db):
    first = _user()
    second = db.upsert_user("g-1", "Alice B", "new@example.com")
    assert first["id"] == second["id"]
    assert second["name"] == "Alice B"
    assert second["rewards"] == []


def test_roadmap_dedupes_per_user_case_insensitively(temp_db):
    user = _user()
    created, existing = db.create_roadmap(user["id"], "c-1", "Python", [{"id": "level-1"}])
    assert existing is False
    assert created["levels"] == [{"id": "level-1"}]

    again, existing = db.create_roadmap(user["id"], "c-2", "python", [])
    assert existing is True
    assert again["id"] == created["id"]
    assert again["levels"] == [{"id": "level-1"}]


def test_anonymous_roadmaps_are_never_deduped(temp_db):
    first, _ = db.create_roadmap(None, None, "Go", [])
    second, existing = db.create_roadmap(None, None, "Go", [])
    assert existing is False
    assert first["id"] != second["id"]


def test_delete_roadmap_cascades_to_progress(temp_db):
    user = _user()
    roadmap, _ = db.create_roadmap(user["id"], None, "Rust", [])
    db.upsert_progress(user["id"], roadmap["id"], ["level-1"], [])
    assert db.get_progress(user["id"], roadmap["id"]) is not None

    db.delete_roadmap(roadmap["id"])

    assert db.get_roadmap(roadmap["id"]) is None
    assert db.get_progress(user["id"], roadmap["id"]) is None


def test_update_roadmap_level_merges_fields(temp_db):
    roadmap, _ = db.create_roadmap(None, None, "SQL", [{"id": "level-1", "title": "Intro", "quiz": []}])

    level = db.update_roadmap_level(roadmap["id"], "level-1", {"theoryContent": "text", "quiz": None})

    assert level["theoryContent"] == "text"
    assert level["title"] == "Intro"
    assert db.get_roadmap(roadmap["id"])["levels"][0]["theoryContent"] == "text"
    assert db.update_roadmap_level(roadmap["id"], "level-9", {"theoryContent": "x"}) is None
    assert db.update_roadmap_level(999, "level-1", {"theoryContent": "x"}) is None


def test_chat_session_auto_title_from_first_user_message(temp_db):
    user = _user()
    session = db.create_chat_session(user["id"])
    assert session["title"] == db.NEW_CHAT_TITLE

    db.save_chat_message(user["id"], "assistant", "Hi! How can I help?", session["id"])
    long_question = "How do Python generators work? " * 5
    db.save_chat_message(user["id"], "user", long_question, session["id"])
    db.save_chat_message(user["id"], "user", "second question", session["id"])

    stored = db.get_chat_session(session["id"])
    assert stored["title"] == long_question[:80]

    listed = db.list_chat_sessions(user["id"])
    assert listed[0]["message_count"] == 3
    assert listed[0]["first_message"] == long_question


def test_deleting_session_removes_its_messages(temp_db):
    user = _user()
    session = db.create_chat_session(user["id"])
    db.save_chat_batch(
        user["id"],
        [{"role": "user", "content": "a"}, {"role": "assistant", "content": "b"}],
        session["id"],
    )
    assert len(db.list_session_messages(session["id"])) == 2

    db.delete_chat_session(session["id"])
    assert db.list_session_messages(session["id"]) == []


def test_code_history_newest_first_with_limit(temp_db):
    user = _user()
    for index in range(3):
        db.save_code_run(user["id"], "python", f"print({index})", output=str(index))
    rows = db.list_code_history(user["id"], limit=2)
    assert [row["code"] for row in rows] == ["print(2)", "print(1)"]


def test_join_room_posts_system_message(temp_db):
    owner = _user()
    guest = _user("g-2", "Bob")
    room = db.create_room(owner["id"], "Study")
    assert len(room["invite_code"]) == 8
    assert room["invite_code"] == room["invite_code"].upper()

    joined = db.join_room(guest["id"], room["invite_code"].lower())
    assert joined["id"] == room["id"]

    messages = db.list_room_messages(room["id"])
    assert messages[-1]["role"] == "system"
    assert messages[-1]["content"] == "Bob joined the room"

    details = db.get_room(room["id"])
    assert [m["name"] for m in details["members"]] == ["Alice", "Bob"]
    assert db.list_user_rooms(guest["id"])[0]["member_count"] == 2


def test_join_with_unknown_code_returns_none(temp_db):
    user = _user()
    assert db.join_room(user["id"], "NOPE0000") is None


def test_room_messages_after_cursor(temp_db):
    user = _user()
    room = db.create_room(user["id"], "Study")
    first = db.post_room_message(room["id"], "one", user_id=user["id"], sender_name="Alice")
    db.post_room_message(room["id"], "two", user_id=user["id"], sender_name="Alice")
    db.post_room_message(room["id"], "three", sender_name="Ada", role="assistant", persona="Ada")

    newer = db.list_room_messages(room["id"], after=first["id"])
    assert [m["content"] for m in newer] == ["two", "three"]
    assert newer[-1]["persona"] == "Ada"
    assert [m["content"] for m in db.list_recent_room_messages(room["id"], 2)] == ["two", "three"]


def test_regenerate_invite_code(temp_db):
    user = _user()
    room = db.create_room(user["id"], "Study")
    updated = db.regenerate_invite_code(room["id"])
    assert updated["id"] == room["id"]
    assert len(updated["invite_code"]) == 8
    assert db.regenerate_invite_code(404) is None


def test_leaderboard_orders_by_xp(temp_db):
    alice = _user()
    bob = _user("g-2", "Bob")
    db.update_user_xp(alice["id"], 150, ["first-quiz"])
    db.update_user_xp(bob["id"], 900, [])
    board = db.list_leaderboard(10)
    assert [row["name"] for row in board] == ["Bob", "Alice"]
    assert board[1]["rewards"] == ["first-quiz"]


def test_close_pool_releases_idle_connections(temp_db):
    with db._conn() as con:
        pass
    db.close_pool()

    with pytest.raises(sqlite3.ProgrammingError):
        con.execute("SELECT 1")
    # the pool reopens on demand
    assert db.upsert_user("g-9", "Zoe")["name"] == "Zoe"
