import pytest

import db
import group_chat
from llm import LLMError
from prompts.personas import get_persona, load_personas


def _room(temp_db):
    user = db.upsert_user("g-1", "Alice")
    return user, db.create_room(user["id"], "Study group")


def test_personas_load_in_declared_order():
    names = [p.name for p in load_personas()]
    assert names == ["Cognify", "Socrates", "Ada", "Feynman", "Quizzy"]
    assert get_persona("@socrates").title == "Socratic Questioner"
    with pytest.raises(KeyError):
        get_persona("Nobody")


def test_mentions_follow_declaration_order_and_dedupe():
    found = group_chat.parse_mentions("@Ada hi @socrates and again @ADA, email me at bob@ada.org")
    assert [p.name for p in found] == ["Socrates", "Ada"]


def test_unknown_mentions_are_ignored():
    assert group_chat.parse_mentions("@Nobody hello") == []


def test_two_mentions_post_two_replies_in_order(temp_db):
    user, room = _room(temp_db)
    seen_systems = []

    def fake_generate(messages):
        seen_systems.append(messages[0]["content"])
        return f"reply {len(seen_systems)}"

    db.post_room_message(room["id"], "@Ada @Socrates explain recursion", user_id=user["id"], sender_name="Alice")
    posted = group_chat.dispatch_mentions(room["id"], "@Ada @Socrates explain recursion", generate=fake_generate)

    assert [m["persona"] for m in posted] == ["Socrates", "Ada"]
    assert [m["content"] for m in posted] == ["reply 1", "reply 2"]
    assert all(m["role"] == "assistant" for m in posted)
    assert seen_systems[0] == get_persona("Socrates").system_prompt

    stored = db.list_room_messages(room["id"])
    assert [m["sender_name"] for m in stored][-2:] == ["Socrates", "Ada"]


def test_failed_persona_gets_placeholder_and_loop_continues(temp_db):
    user, room = _room(temp_db)

    def flaky_generate(messages):
        if messages[0]["content"] == get_persona("Socrates").system_prompt:
            raise LLMError("backend down")
        return "Here is some code."

    posted = group_chat.dispatch_mentions(room["id"], "@Socrates @Ada help", generate=flaky_generate)

    assert [m["content"] for m in posted] == ["Socrates is unavailable right now.", "Here is some code."]


def test_unexpected_persona_error_does_not_stop_dispatch(temp_db):
    user, room = _room(temp_db)

    def broken_generate(messages):
        if messages[0]["content"] == get_persona("Socrates").system_prompt:
            raise ValueError("bad payload")
        return "Ada here."

    posted = group_chat.dispatch_mentions(room["id"], "@Socrates @Ada hi", generate=broken_generate)

    assert [m["persona"] for m in posted] == ["Socrates", "Ada"]
    assert posted[0]["content"] == "Socrates is unavailable right now."
    assert posted[1]["content"] == "Ada here."


def test_second_persona_sees_first_reply():
    socrates = get_persona("Socrates")
    ada = get_persona("Ada")
    history = [
        {"role": "system", "content": "Bob joined the room", "sender_name": "System"},
        {"role": "user", "content": "@Socrates @Ada why?", "sender_name": "Bob"},
        {"role": "assistant", "content": "Why do you ask?", "sender_name": "Socrates", "persona": "Socrates"},
    ]

    as_ada = group_chat.build_persona_messages(ada, history)
    assert as_ada[0] == {"role": "system", "content": ada.system_prompt}
    assert as_ada[1:] == [
        {"role": "user", "content": "Bob: @Socrates @Ada why?"},
        {"role": "user", "content": "Socrates: Why do you ask?"},
    ]

    as_socrates = group_chat.build_persona_messages(socrates, history)
    assert as_socrates[-1] == {"role": "assistant", "content": "Why do you ask?"}
