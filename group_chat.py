"""Persona mentions in group-chat rooms.

A room message such as ``"@Socrates @Ada how do closures work?"`` gets one
reply per mentioned persona. Replies are generated one after another, in
the order the personas are declared (not the order they are mentioned),
and each reply is stored as its own room message tagged with the persona.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

import db
from llm import LLMError, llm_chat_stream
from prompts.personas import Persona, load_personas

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 20
_MENTION = re.compile(r"(?<![\w@])@([A-Za-z][A-Za-z0-9_]*)\b")

Generate = Callable[[List[Dict[str, str]]], str]


def unavailable_message(persona: Persona) -> str:
    return f"{persona.name} is unavailable right now."


def parse_mentions(text: str, personas: Optional[Sequence[Persona]] = None) -> List[Persona]:
    """Return the personas mentioned in ``text``, in declaration order, once each."""
    candidates = tuple(personas) if personas is not None else load_personas()
    mentioned = {match.group(1).lower() for match in _MENTION.finditer(text or "")}
    return [persona for persona in candidates if persona.key in mentioned]


def build_persona_messages(persona: Persona, history: Iterable[Mapping[str, Any]]) -> List[Dict[str, str]]:
    """Turn room history into a chat transcript seen from ``persona``'s side."""
    messages = [{"role": "system", "content": persona.system_prompt}]
    for entry in history:
        content = entry.get("content") or ""
        if not content or entry.get("role") == "system":
            continue
        if entry.get("persona") and str(entry["persona"]).lower() == persona.key:
            messages.append({"role": "assistant", "content": content})
        else:
            sender = entry.get("persona") or entry.get("sender_name") or "Someone"
            messages.append({"role": "user", "content": f"{sender}: {content}"})
    return messages


def _stream_generate(messages: List[Dict[str, str]]) -> str:
    return llm_chat_stream(messages, temperature=0.7)


def dispatch_mentions(
    room_id: int,
    text: str,
    *,
    history: Optional[Sequence[Mapping[str, Any]]] = None,
    personas: Optional[Sequence[Persona]] = None,
    generate: Optional[Generate] = None,
) -> List[Dict[str, Any]]:
    """Answer every persona mentioned in ``text`` and store the replies.

    A persona whose generation fails gets a placeholder reply and the loop
    moves on to the next persona. Returns the stored reply rows in order.
    """
    matched = parse_mentions(text, personas)
    if not matched:
        return []

    generate = generate or _stream_generate
    transcript: List[Mapping[str, Any]] = list(
        history if history is not None else db.list_recent_room_messages(room_id, HISTORY_WINDOW)
    )
    posted: List[Dict[str, Any]] = []
    for persona in matched:
        logger.info("Room %s: generating reply as %s", room_id, persona.name)
        try:
            reply = generate(build_persona_messages(persona, transcript)).strip()
        except LLMError as exc:
            logger.warning("Persona %s failed in room %s: %s", persona.name, room_id, exc)
            reply = ""
        except Exception:
            logger.exception("Persona %s crashed in room %s", persona.name, room_id)
            reply = ""
        if not reply:
            reply = unavailable_message(persona)
        message = db.post_room_message(
            room_id,
            reply,
            sender_name=persona.name,
            role="assistant",
            persona=persona.name,
        )
        posted.append(message)
        transcript.append(message)
    return posted
