"""Prompt templates and content generation for roadmaps, levels and code help.

Structured generations (roadmap, subtopics, quiz, submission analysis) ask
the model for "ONLY valid JSON" and then pull the first bracketed span out
of the reply, since models routinely wrap JSON in prose or code fences.
Parsed content is not schema-checked: syntactically valid JSON with odd
field names flows through as-is.
"""

import json
import logging
import re
from typing import Any, Dict, List, Literal, Mapping, Optional, Sequence

from llm import LLMError, TokenCallback, llm_chat, llm_chat_stream

logger = logging.getLogger(__name__)

ROADMAP_LEVEL_COUNT = 6
BASE_LEVEL_XP = 100
LEVEL_XP_STEP = 50

TUTOR_SYSTEM_PROMPT = (
    "You are Cognify, a friendly AI learning tutor. Explain concepts simply, use analogies, "
    "and encourage learners to experiment."
)

_ARRAY_SPAN = re.compile(r"\[[\s\S]*\]")
_OBJECT_SPAN = re.compile(r"\{[\s\S]*\}")

_LEVEL_CONTENT_SYSTEM = (
    "Write educational content with markdown (##, bullets, bold, code). 300-500 words with examples."
)
_SUBTOPIC_CONTENT_SYSTEM = "Write detailed educational content with markdown. 400-600 words with examples."

CODE_INSIGHTS_SYSTEM_TEMPLATE = """You are a senior software engineer and expert code reviewer. Provide a thorough, detailed analysis of the given code. Structure your response with these sections using markdown headers:

## Overview
Brief summary of what the code does.

## Line-by-Line Explanation
Walk through the key parts of the code explaining the logic.

## Complexity Analysis
- **Time Complexity**: Big-O analysis
- **Space Complexity**: Big-O analysis

## Strengths
What the code does well (list 2-4 points).

## Issues & Improvements
Bugs, edge cases, or improvements (list 2-4 points with suggested fixes).

## Best Practices
Relevant best practices for this {language} code.

## Readability Score: X/10
## Efficiency Score: X/10

Be specific, reference actual lines/variables, and provide actionable suggestions."""

CODE_GENERATION_SYSTEM_TEMPLATE = (
    "You are an expert {language} programmer. Generate clean, well-commented, production-quality code. "
    "Return ONLY the code - no explanations, no markdown fences, no extra text. "
    "The code should be complete and runnable."
)


class GenerationError(RuntimeError):
    """Raised when a structured generation cannot be parsed."""


def extract_json(text: str, kind: Literal["array", "object"], what: str) -> Any:
    """Parse the first ``[...]`` (or ``{...}``) span of ``text``.

    Falls back to parsing the whole reply when no span is found. Raises
    :class:`GenerationError` with a generic message on failure.
    """
    pattern = _ARRAY_SPAN if kind == "array" else _OBJECT_SPAN
    match = pattern.search(text or "")
    candidate = match.group(0) if match else (text or "")
    try:
        return json.loads(candidate)
    except (TypeError, ValueError):
        logger.error("Failed to parse %s: %r", what, (text or "")[:500])
        raise GenerationError(f"Failed to generate {what}.")


def _messages(system: str, user: str) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]


def _with_system(messages: Sequence[Mapping[str, str]], system_prompt: Optional[str]) -> List[Dict[str, str]]:
    combined: List[Dict[str, str]] = []
    if system_prompt:
        combined.append({"role": "system", "content": system_prompt})
    combined.extend({"role": m["role"], "content": m["content"]} for m in messages)
    return combined


# ---------- Roadmap ----------
def generate_roadmap(topic: str) -> List[Dict[str, Any]]:
    response = llm_chat(
        _messages(
            "You are an expert curriculum designer. Return ONLY a valid JSON array, no markdown.",
            f'Create a {ROADMAP_LEVEL_COUNT}-level roadmap for "{topic}" (beginner→advanced). '
            'JSON: [{"title":"...","description":"...","xpReward":100}]. '
            f"XP: {BASE_LEVEL_XP}, +{LEVEL_XP_STEP}/level. ONLY JSON.",
        ),
        temperature=0.7,
        max_tokens=2048,
    )
    return extract_json(response, "array", "roadmap")


def build_levels(raw_levels: Sequence[Any]) -> List[Dict[str, Any]]:
    """Turn the model's level list into stored Level records."""
    levels = []
    for index, raw in enumerate(raw_levels):
        entry = raw if isinstance(raw, dict) else {"title": str(raw)}
        order = index + 1
        xp = entry.get("xpReward")
        if not isinstance(xp, (int, float)) or isinstance(xp, bool):
            xp = BASE_LEVEL_XP + LEVEL_XP_STEP * index
        levels.append(
            {
                "id": f"level-{order}",
                "order": order,
                "title": str(entry.get("title") or f"Level {order}"),
                "description": str(entry.get("description") or ""),
                "theoryContent": "",
                "subtopics": [],
                "quiz": [],
                "xpReward": int(xp),
            }
        )
    return levels


# ---------- Level theory ----------
def _level_content_messages(topic: str, level_title: str, level_description: str) -> List[Dict[str, str]]:
    return _messages(
        _LEVEL_CONTENT_SYSTEM,
        f'Theory for "{level_title}" (topic: "{topic}"). Context: {level_description}. '
        "Include: explanation, key points, example, fun fact.",
    )


def generate_level_content(topic: str, level_title: str, level_description: str) -> str:
    return llm_chat(
        _level_content_messages(topic, level_title, level_description),
        temperature=0.6,
        max_tokens=2048,
    )


def stream_level_content(
    topic: str,
    level_title: str,
    level_description: str,
    on_token: Optional[TokenCallback] = None,
    *,
    on_delta: Optional[TokenCallback] = None,
) -> str:
    return llm_chat_stream(
        _level_content_messages(topic, level_title, level_description),
        on_token,
        on_delta=on_delta,
        temperature=0.6,
        max_tokens=2048,
    )


# ---------- Subtopics ----------
def generate_subtopics(topic: str, level_title: str, level_description: str) -> List[Dict[str, Any]]:
    response = llm_chat(
        _messages(
            "Break down a topic into subtopics. Return ONLY a valid JSON array.",
            f'Break "{level_title}" (course: "{topic}") into 4-6 subtopics. Context: {level_description}. '
            'JSON: [{"title":"...","description":"..."}]. ONLY JSON.',
        ),
        temperature=0.6,
        max_tokens=1024,
    )
    return extract_json(response, "array", "subtopics")


def map_subtopics(level_id: str, raw_subtopics: Sequence[Any]) -> List[Dict[str, Any]]:
    mapped = []
    for index, raw in enumerate(raw_subtopics):
        entry = raw if isinstance(raw, dict) else {"title": str(raw)}
        mapped.append(
            {
                "id": f"{level_id}-sub{index}",
                "title": entry.get("title", ""),
                "description": entry.get("description", ""),
                "content": "",
            }
        )
    return mapped


def _subtopic_messages(topic: str, level_title: str, subtopic_title: str, subtopic_description: str) -> List[Dict[str, str]]:
    return _messages(
        _SUBTOPIC_CONTENT_SYSTEM,
        f'Content for "{subtopic_title}" (level: "{level_title}", course: "{topic}"). Context: {subtopic_description}.',
    )


def generate_subtopic_content(topic: str, level_title: str, subtopic_title: str, subtopic_description: str) -> str:
    return llm_chat(
        _subtopic_messages(topic, level_title, subtopic_title, subtopic_description),
        temperature=0.6,
        max_tokens=2048,
    )


def stream_subtopic_content(
    topic: str,
    level_title: str,
    subtopic_title: str,
    subtopic_description: str,
    on_token: Optional[TokenCallback] = None,
    *,
    on_delta: Optional[TokenCallback] = None,
) -> str:
    return llm_chat_stream(
        _subtopic_messages(topic, level_title, subtopic_title, subtopic_description),
        on_token,
        on_delta=on_delta,
        temperature=0.6,
        max_tokens=2048,
    )


# ---------- Quiz ----------
def generate_quiz(topic: str, level_title: str) -> List[Dict[str, Any]]:
    response = llm_chat(
        _messages(
            "Generate quiz questions. Return ONLY a valid JSON array.",
            f'5 quiz questions about "{level_title}" (topic: "{topic}"). '
            'JSON: [{"question":"...","options":["a","b","c","d"],"correctIndex":0,"explanation":"..."}]. ONLY JSON.',
        ),
        temperature=0.5,
        max_tokens=2048,
    )
    return extract_json(response, "array", "quiz")


def map_quiz(level_id: str, raw_questions: Sequence[Any]) -> List[Dict[str, Any]]:
    mapped = []
    for index, raw in enumerate(raw_questions):
        entry = dict(raw) if isinstance(raw, dict) else {"question": str(raw)}
        mapped.append({"id": f"{level_id}-q{index}", **entry})
    return mapped


def ensure_level_materialized(topic: str, level: Dict[str, Any]) -> Dict[str, Any]:
    """Fill whatever a level is still missing: theory, subtopics, quiz.

    Returns only the fields that were generated. A failed theory generation
    propagates; failed subtopic or quiz generations are logged and left
    empty so the level can still be shown.
    """
    generated: Dict[str, Any] = {}
    level_id = level["id"]
    title = level.get("title", "")
    description = level.get("description", "")

    if not level.get("theoryContent"):
        generated["theoryContent"] = generate_level_content(topic, title, description)

    if not level.get("subtopics"):
        try:
            generated["subtopics"] = map_subtopics(level_id, generate_subtopics(topic, title, description))
        except (GenerationError, LLMError) as exc:
            logger.warning("Failed to load subtopics for %s: %s", level_id, exc)

    if not level.get("quiz"):
        try:
            generated["quiz"] = map_quiz(level_id, generate_quiz(topic, title))
        except (GenerationError, LLMError) as exc:
            logger.warning("Failed to load quiz for %s: %s", level_id, exc)

    return generated


# ---------- Chat ----------
def _chat_messages(messages: Sequence[Mapping[str, str]], system_prompt: Optional[str]) -> List[Dict[str, str]]:
    # fall back to the tutor voice unless the caller brought its own system turn
    if not system_prompt and not any(m["role"] == "system" for m in messages):
        system_prompt = TUTOR_SYSTEM_PROMPT
    return _with_system(messages, system_prompt)


def chat(messages: Sequence[Mapping[str, str]], system_prompt: Optional[str] = None) -> str:
    return llm_chat(_chat_messages(messages, system_prompt), temperature=0.7)


def stream_chat(
    messages: Sequence[Mapping[str, str]],
    on_token: Optional[TokenCallback] = None,
    system_prompt: Optional[str] = None,
    *,
    on_delta: Optional[TokenCallback] = None,
) -> str:
    return llm_chat_stream(_chat_messages(messages, system_prompt), on_token, on_delta=on_delta, temperature=0.7)


# ---------- Code help ----------
def explain_code(code: str, language: str) -> str:
    return llm_chat(
        _messages(
            "You are an expert programming tutor. Explain code clearly and concisely.",
            f"Explain this {language} code:\n\n```{language}\n{code}\n```",
        ),
        temperature=0.5,
    )


def code_hint(code: str, error: str) -> str:
    return llm_chat(
        _messages(
            "Provide hints without giving full answers. Be encouraging.",
            f'Error: "{error}"\nCode:\n{code}\n\nProvide a hint only.',
        ),
        temperature=0.6,
    )


def learning_recommendation(xp: int, completed_topics: Sequence[str]) -> str:
    return llm_chat(
        _messages(
            "You are an AI learning advisor.",
            f"Student has {xp} XP, finished: [{', '.join(completed_topics)}]. Suggest 3 next topics.",
        ),
        temperature=0.7,
    )


def analyze_submission(code: str) -> Dict[str, Any]:
    response = llm_chat(
        _messages(
            'Return a JSON object: { readability: 0-100, efficiency: 0-100, explanation: "..." }. ONLY valid JSON.',
            f"Analyze:\n\n{code}",
        ),
        temperature=0.3,
    )
    try:
        return extract_json(response, "object", "analysis")
    except GenerationError:
        return {"readability": 0, "efficiency": 0, "explanation": "Could not parse AI response."}


def stream_generated_code(
    prompt: str,
    language: str,
    on_token: Optional[TokenCallback] = None,
    *,
    on_delta: Optional[TokenCallback] = None,
) -> str:
    return llm_chat_stream(
        _messages(
            CODE_GENERATION_SYSTEM_TEMPLATE.format(language=language),
            f"Write {language} code for: {prompt}",
        ),
        on_token,
        on_delta=on_delta,
        temperature=0.4,
        max_tokens=4096,
    )


def stream_code_insights(
    code: str,
    language: str,
    on_token: Optional[TokenCallback] = None,
    *,
    on_delta: Optional[TokenCallback] = None,
) -> str:
    return llm_chat_stream(
        _messages(
            CODE_INSIGHTS_SYSTEM_TEMPLATE.format(language=language),
            f"Analyze this {language} code in complete detail:\n\n```{language}\n{code}\n```",
        ),
        on_token,
        on_delta=on_delta,
        temperature=0.4,
        max_tokens=4096,
    )
