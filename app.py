# app.py - Cognify API
# - REST persistence under /api (users, roadmaps, progress, chat, rooms)
# - LLM generation under /ai, streamed to the browser as NDJSON
# - Code playground under /code (Piston)

import json
import logging
import os
import queue
import sqlite3
import threading
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

import db, group_chat, tutor
from code_execution import LANGUAGES, CodeExecutionError, execute_code, get_language_by_id
from engines.progression import (
    ProgressLedger,
    ProgressStore,
    load_user_progress,
    mirror_to_db,
    score_quiz,
)
from env_validation import get_env_int, validate_environment
from llm import LLMError
from prompts.personas import get_persona, load_personas
from schemas import ChatMessage, QuizResult
from tutor import GenerationError

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

ROOM_MESSAGE_LIMIT = get_env_int("ROOM_MESSAGE_LIMIT", 100)
PROGRESS_STORE = ProgressStore(os.getenv("PROGRESS_DIR", "progress"))


@asynccontextmanager
async def _lifespan(_: FastAPI):
    try:
        validate_environment()

        db.init()
        logger.info("Cognify API ready (db=%s, personas=%s)", db.DB_PATH,
                    ", ".join(p.name for p in load_personas()))
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise
    yield
    db.close_pool()


app = FastAPI(title="Cognify", version="1.0.0", lifespan=_lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


def _log(tag: str, message: str) -> None:
    logger.info("[%s] %s", tag, message)


def _require(body: BaseModel, *fields: str) -> None:
    missing = [name for name in fields if getattr(body, name, None) in (None, "", [])]
    if missing:
        joiner = " and " if len(fields) == 2 else ", "
        raise HTTPException(status_code=400, detail=f"{joiner.join(fields)} required")


# ---------- Error mapping ----------
@app.exception_handler(RequestValidationError)
async def _validation_error(_: Request, exc: RequestValidationError):
    missing = [str(err["loc"][-1]) for err in exc.errors() if err.get("type") == "missing"]
    if missing:
        detail = f"{', '.join(missing)} required"
    else:
        detail = "Invalid request: " + "; ".join(err.get("msg", "") for err in exc.errors())
    return JSONResponse(status_code=400, content={"detail": detail})


@app.exception_handler(LLMError)
async def _llm_error(_: Request, exc: LLMError):
    logger.warning("LLM backend error: %s", exc)
    return JSONResponse(status_code=502, content={"detail": "AI service unavailable"})


@app.exception_handler(GenerationError)
async def _generation_error(_: Request, exc: GenerationError):
    return JSONResponse(status_code=500, content={"detail": str(exc)})


@app.exception_handler(CodeExecutionError)
async def _code_execution_error(_: Request, exc: CodeExecutionError):
    status = 400 if str(exc).startswith("Unsupported language") else 502
    return JSONResponse(status_code=status, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def _unhandled_error(_: Request, exc: Exception):
    logger.error("Unhandled error: %s", exc, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# ---------- Schemas ----------
class UserUpsertBody(BaseModel):
    google_id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    picture: Optional[str] = None

class XpBody(BaseModel):
    xp: int = 0
    rewards: List[str] = Field(default_factory=list)

class RoadmapBody(BaseModel):
    user_id: Optional[int] = None
    client_id: Optional[str] = None
    topic: Optional[str] = None
    levels: Optional[List[Dict[str, Any]]] = None

class LevelUpdateBody(BaseModel):
    level_id: Optional[str] = None
    theoryContent: Optional[str] = None
    subtopics: Optional[List[Dict[str, Any]]] = None
    quiz: Optional[List[Dict[str, Any]]] = None

class ProgressBody(BaseModel):
    user_id: Optional[int] = None
    roadmap_id: Optional[int] = None
    completed_levels: List[str] = Field(default_factory=list)
    quiz_results: List[Dict[str, Any]] = Field(default_factory=list)

class ChatSessionBody(BaseModel):
    user_id: Optional[int] = None
    title: Optional[str] = None

class RenameSessionBody(BaseModel):
    title: Optional[str] = None

class ChatMessageBody(BaseModel):
    user_id: Optional[int] = None
    session_id: Optional[int] = None
    role: Optional[str] = None
    content: Optional[str] = None

class ChatBatchBody(BaseModel):
    user_id: Optional[int] = None
    session_id: Optional[int] = None
    messages: List[ChatMessage] = Field(default_factory=list)

class CodeHistoryBody(BaseModel):
    user_id: Optional[int] = None
    language: Optional[str] = None
    code: Optional[str] = None
    stdin: str = ""
    output: str = ""

class RoomBody(BaseModel):
    user_id: Optional[int] = None
    name: Optional[str] = None

class JoinRoomBody(BaseModel):
    user_id: Optional[int] = None
    invite_code: Optional[str] = None

class RoomMessageBody(BaseModel):
    user_id: Optional[int] = None
    sender_name: Optional[str] = None
    content: Optional[str] = None
    role: Optional[str] = None
    persona: Optional[str] = None

class LedgerLevelBody(BaseModel):
    roadmap_id: Optional[str] = None
    topic: str = ""
    level_id: Optional[str] = None
    xp_reward: int = 0

class LedgerQuizBody(BaseModel):
    roadmap_id: Optional[str] = None
    topic: str = ""
    result: QuizResult

class GenerateRoadmapBody(BaseModel):
    topic: Optional[str] = None
    user_id: Optional[int] = None
    client_id: Optional[str] = None

class QuizSubmitBody(BaseModel):
    answers: List[int] = Field(default_factory=list)
    user_id: Optional[int] = None
    visitor_id: Optional[str] = None

class TheoryStreamBody(BaseModel):
    topic: Optional[str] = None
    level_title: Optional[str] = None
    level_description: str = ""
    roadmap_id: Optional[int] = None
    level_id: Optional[str] = None

class SubtopicBody(BaseModel):
    topic: Optional[str] = None
    level_title: str = ""
    subtopic_title: Optional[str] = None
    subtopic_description: str = ""

class AIChatBody(BaseModel):
    messages: List[ChatMessage] = Field(default_factory=list)
    system_prompt: Optional[str] = None
    persona: Optional[str] = None

class CodeGenBody(BaseModel):
    prompt: Optional[str] = None
    language: str = "python"

class CodeBody(BaseModel):
    code: Optional[str] = None
    language: str = "python"
    error: str = ""

class RecommendationBody(BaseModel):
    xp: int = 0
    completed_topics: List[str] = Field(default_factory=list)

class ExecuteBody(BaseModel):
    language: Optional[str] = None
    code: Optional[str] = None
    stdin: str = ""
    user_id: Optional[int] = None


# ---------- Streaming relay ----------
_STREAM_END = object()


def _ndjson_relay(tag: str, produce: Callable[[Callable[[str], None]], str]) -> StreamingResponse:
    """Run ``produce`` on a worker thread and relay its deltas as NDJSON lines.

    ``produce`` receives an ``on_delta`` callback and returns the full text.
    The last line is ``{"done": true, "text": ...}`` or, when generation
    fails mid-way, ``{"done": true, "error": ...}``.
    """
    items: "queue.Queue[Any]" = queue.Queue()

    def _worker() -> None:
        try:
            text = produce(items.put)
            items.put({"done": True, "text": text})
        except (LLMError, GenerationError) as exc:
            logger.warning("[%s] stream failed: %s", tag, exc)
            items.put({"done": True, "error": str(exc)})
        except Exception:
            logger.error("[%s] stream crashed", tag, exc_info=True)
            items.put({"done": True, "error": "Internal server error"})
        finally:
            items.put(_STREAM_END)

    def _lines():
        threading.Thread(target=_worker, name=f"stream-{tag}", daemon=True).start()
        while True:
            item = items.get()
            if item is _STREAM_END:
                break
            payload = {"delta": item, "done": False} if isinstance(item, str) else item
            yield json.dumps(payload, ensure_ascii=False) + "\n"

    _log(tag, "stream started")
    return StreamingResponse(_lines(), media_type="application/x-ndjson")


# ---------- Health ----------
@app.get("/health")
def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


# ---------- Users ----------
@app.post("/api/users/upsert")
def upsert_user(body: UserUpsertBody):
    _require(body, "google_id", "name")
    _log("Users", f"Upsert: {body.name} ({body.email})")
    user = db.upsert_user(body.google_id, body.name, body.email, body.picture)
    _log("Users", f"Upserted user id={user['id']}")
    return user


@app.get("/api/users/{google_id}")
def get_user(google_id: str):
    user = db.get_user_by_google_id(google_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@app.put("/api/users/{user_id}/xp")
def update_user_xp(user_id: int, body: XpBody):
    _log("Users", f"Update XP: user={user_id} xp={body.xp}")
    user = db.update_user_xp(user_id, body.xp, body.rewards)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@app.get("/api/leaderboard")
def leaderboard(limit: int = 10):
    return db.list_leaderboard(max(1, min(limit, 100)))


# ---------- Roadmaps ----------
@app.post("/api/roadmaps")
def create_roadmap(body: RoadmapBody):
    _require(body, "topic", "levels")
    _log("Roadmaps", f'Create: "{body.topic}" for user={body.user_id}')
    row, existing = db.create_roadmap(body.user_id, body.client_id, body.topic, body.levels)
    return {**row, "existing": existing}


@app.get("/api/roadmaps/user/{user_id}")
def list_user_roadmaps(user_id: int):
    rows = db.list_user_roadmaps(user_id)
    _log("Roadmaps", f"Fetched {len(rows)} roadmaps for user={user_id}")
    return rows


@app.get("/api/roadmaps/{roadmap_id}")
def get_roadmap(roadmap_id: int):
    roadmap = db.get_roadmap(roadmap_id)
    if not roadmap:
        raise HTTPException(status_code=404, detail="Roadmap not found")
    return roadmap


@app.delete("/api/roadmaps/{roadmap_id}")
def delete_roadmap(roadmap_id: int):
    _log("Roadmaps", f"Delete roadmap id={roadmap_id}")
    db.delete_roadmap(roadmap_id)
    return {"success": True}


@app.put("/api/roadmaps/{roadmap_id}/levels")
def update_roadmap_level(roadmap_id: int, body: LevelUpdateBody):
    _require(body, "level_id")
    fields = body.model_dump(exclude={"level_id"}, exclude_none=True)
    _log("Roadmaps", f"Update level {body.level_id} of roadmap={roadmap_id}: {', '.join(fields) or 'nothing'}")
    level = db.update_roadmap_level(roadmap_id, body.level_id, fields)
    if level is None:
        raise HTTPException(status_code=404, detail="Level not found")
    return level


# ---------- Progress ----------
@app.put("/api/progress")
def upsert_progress(body: ProgressBody):
    _require(body, "user_id", "roadmap_id")
    _log("Progress", f"Upsert: user={body.user_id} roadmap={body.roadmap_id}")
    return db.upsert_progress(body.user_id, body.roadmap_id, body.completed_levels, body.quiz_results)


@app.get("/api/progress/{user_id}/{roadmap_id}")
def get_progress(user_id: int, roadmap_id: int):
    return db.get_progress(user_id, roadmap_id)


@app.get("/api/progress/{user_id}")
def list_progress(user_id: int):
    return db.list_progress(user_id)


# ---------- Chat sessions ----------
@app.post("/api/chat/sessions")
def create_chat_session(body: ChatSessionBody):
    _require(body, "user_id")
    session = db.create_chat_session(body.user_id, body.title)
    _log("Chat", f"New session id={session['id']} user={body.user_id}")
    return session


@app.get("/api/chat/sessions/{user_id}")
def list_chat_sessions(user_id: int):
    rows = db.list_chat_sessions(user_id)
    _log("Chat", f"Fetched {len(rows)} sessions for user={user_id}")
    return rows


@app.put("/api/chat/sessions/{session_id}")
def rename_chat_session(session_id: int, body: RenameSessionBody):
    _require(body, "title")
    session = db.rename_chat_session(session_id, body.title)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


@app.delete("/api/chat/sessions/{session_id}")
def delete_chat_session(session_id: int):
    _log("Chat", f"Delete session id={session_id}")
    db.delete_chat_session(session_id)
    return {"success": True}


@app.post("/api/chat/messages")
def save_chat_message(body: ChatMessageBody):
    _require(body, "user_id", "session_id", "role", "content")
    _log("Chat", f"Save: session={body.session_id} role={body.role} len={len(body.content)}")
    return db.save_chat_message(body.user_id, body.role, body.content, body.session_id)


@app.get("/api/chat/messages/{session_id}")
def list_session_messages(session_id: int):
    rows = db.list_session_messages(session_id)
    _log("Chat", f"Loaded {len(rows)} messages for session={session_id}")
    return rows


@app.post("/api/chat/batch")
def save_chat_batch(body: ChatBatchBody):
    _require(body, "user_id", "messages")
    saved = db.save_chat_batch(body.user_id, [m.model_dump() for m in body.messages], body.session_id)
    _log("Chat", f"Batch: user={body.user_id} saved={saved}")
    return {"success": True, "saved": saved}


@app.delete("/api/chat/{user_id}")
def clear_user_chat(user_id: int):
    _log("Chat", f"Clear all: user={user_id}")
    db.clear_user_chat(user_id)
    return {"success": True}


@app.get("/api/chat/{user_id}")
def list_user_messages(user_id: int, limit: int = 100):
    return db.list_user_messages(user_id, limit)


# ---------- Code history ----------
@app.post("/api/code-history")
def save_code_run(body: CodeHistoryBody):
    _require(body, "user_id", "language", "code")
    _log("Code", f"Save: user={body.user_id} lang={body.language}")
    return db.save_code_run(body.user_id, body.language, body.code, body.stdin, body.output)


@app.get("/api/code-history/{user_id}")
def list_code_history(user_id: int, limit: int = 20):
    return db.list_code_history(user_id, limit)


# ---------- Rooms ----------
@app.post("/api/rooms")
def create_room(body: RoomBody):
    _require(body, "user_id", "name")
    room = db.create_room(body.user_id, body.name)
    _log("Rooms", f'Create: "{body.name}" by user={body.user_id} code={room["invite_code"]} id={room["id"]}')
    return room


@app.post("/api/rooms/join")
def join_room(body: JoinRoomBody):
    _require(body, "user_id", "invite_code")
    _log("Rooms", f"Join attempt: user={body.user_id} code={body.invite_code}")
    room = db.join_room(body.user_id, body.invite_code)
    if room is None:
        raise HTTPException(status_code=404, detail="Invalid invite code")
    _log("Rooms", f"User {body.user_id} joined room {room['id']}")
    return room


@app.post("/api/rooms/{room_id}/regenerate-code")
def regenerate_invite_code(room_id: int):
    room = db.regenerate_invite_code(room_id)
    if room is None:
        raise HTTPException(status_code=404, detail="Room not found")
    _log("Rooms", f"Regenerated code for room={room_id}")
    return room


@app.get("/api/rooms/user/{user_id}")
def list_user_rooms(user_id: int):
    rows = db.list_user_rooms(user_id)
    _log("Rooms", f"Fetched {len(rows)} rooms for user={user_id}")
    return rows


@app.get("/api/rooms/{room_id}")
def get_room(room_id: int):
    room = db.get_room(room_id)
    if room is None:
        raise HTTPException(status_code=404, detail="Room not found")
    return room


@app.get("/api/rooms/{room_id}/messages")
def list_room_messages(room_id: int, after: Optional[int] = None, limit: Optional[int] = None):
    return db.list_room_messages(room_id, after=after, limit=limit or ROOM_MESSAGE_LIMIT)


@app.post("/api/rooms/{room_id}/messages")
def post_room_message(room_id: int, body: RoomMessageBody, background_tasks: BackgroundTasks):
    _require(body, "content")
    if db.get_room_row(room_id) is None:
        raise HTTPException(status_code=404, detail="Room not found")
    role = body.role or "user"
    _log("Rooms", f"Message in room={room_id} from={body.sender_name or 'bot'} role={role}")
    message = db.post_room_message(
        room_id,
        body.content,
        user_id=body.user_id,
        sender_name=body.sender_name,
        role=role,
        persona=body.persona,
    )
    if role == "user" and group_chat.parse_mentions(body.content):
        background_tasks.add_task(group_chat.dispatch_mentions, room_id, body.content)
    return message


# ---------- Guest ledger ----------
def _load_ledger(visitor_id: str) -> ProgressLedger:
    try:
        return PROGRESS_STORE.load(visitor_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/ledger/{visitor_id}")
def get_ledger(visitor_id: str):
    return _load_ledger(visitor_id).summary()


@app.post("/api/ledger/{visitor_id}/levels/complete")
def ledger_complete_level(visitor_id: str, body: LedgerLevelBody):
    _require(body, "roadmap_id", "level_id")
    ledger = _load_ledger(visitor_id)
    if ledger.complete_level(body.roadmap_id, body.topic, body.level_id, body.xp_reward):
        _log("Progress", f"Guest {visitor_id} completed {body.level_id} (+{body.xp_reward} XP)")
    PROGRESS_STORE.save(ledger)
    return ledger.summary()


@app.post("/api/ledger/{visitor_id}/quiz")
def ledger_save_quiz(visitor_id: str, body: LedgerQuizBody):
    _require(body, "roadmap_id")
    ledger = _load_ledger(visitor_id)
    ledger.save_quiz_result(body.roadmap_id, body.topic, body.result)
    PROGRESS_STORE.save(ledger)
    return ledger.summary()


# ---------- AI: roadmaps & levels ----------
def _find_level(roadmap: Dict[str, Any], level_id: str) -> Dict[str, Any]:
    for level in roadmap.get("levels") or []:
        if isinstance(level, dict) and level.get("id") == level_id:
            return level
    raise HTTPException(status_code=404, detail="Level not found")


def _load_roadmap(roadmap_id: int) -> Dict[str, Any]:
    roadmap = db.get_roadmap(roadmap_id)
    if not roadmap:
        raise HTTPException(status_code=404, detail="Roadmap not found")
    return roadmap


@app.post("/ai/roadmap")
def generate_roadmap(body: GenerateRoadmapBody):
    _require(body, "topic")
    topic = body.topic.strip()
    if body.user_id:
        stored = db.find_user_roadmap(body.user_id, topic)
        if stored:
            _log("Roadmaps", f'Reusing "{topic}" for user={body.user_id}')
            return {**stored, "existing": True}
    _log("AI", f'Generating roadmap for "{topic}"')
    levels = tutor.build_levels(tutor.generate_roadmap(topic))
    row, existing = db.create_roadmap(body.user_id, body.client_id, topic, levels)
    return {**row, "existing": existing}


@app.get("/ai/roadmaps/{roadmap_id}/levels/{level_id}")
def view_level(roadmap_id: int, level_id: str):
    roadmap = _load_roadmap(roadmap_id)
    level = _find_level(roadmap, level_id)
    generated = tutor.ensure_level_materialized(roadmap["topic"], level)
    if not generated:
        return level
    _log("AI", f"Materialized {', '.join(generated)} for {level_id} of roadmap={roadmap_id}")
    return db.update_roadmap_level(roadmap_id, level_id, generated) or {**level, **generated}


@app.post("/ai/roadmaps/{roadmap_id}/levels/{level_id}/quiz")
def submit_quiz(roadmap_id: int, level_id: str, body: QuizSubmitBody):
    roadmap = _load_roadmap(roadmap_id)
    level = _find_level(roadmap, level_id)
    questions = level.get("quiz") or []
    if not questions:
        raise HTTPException(status_code=400, detail="Quiz not generated yet")
    result = score_quiz(questions, body.answers, level_id)
    _log("Quiz", f"{level_id} of roadmap={roadmap_id}: {result.score}/{result.total}")

    if body.user_id:
        try:
            ledger = load_user_progress(body.user_id)
        except LookupError as exc:
            raise HTTPException(status_code=404, detail="User not found") from exc
    elif body.visitor_id:
        ledger = _load_ledger(body.visitor_id)
    else:
        raise HTTPException(status_code=400, detail="user_id or visitor_id required")

    key = str(roadmap_id)
    ledger.save_quiz_result(key, roadmap["topic"], result)
    ledger.complete_level(key, roadmap["topic"], level_id, int(level.get("xpReward") or 0))
    if body.user_id:
        mirror_to_db(body.user_id, ledger, roadmap_id)
    else:
        PROGRESS_STORE.save(ledger)
    return {
        "result": {**result.model_dump(by_alias=True), "perfect": result.perfect},
        "progress": ledger.summary(),
    }


# ---------- AI: streaming relays ----------
@app.post("/ai/stream/theory")
def stream_theory(body: TheoryStreamBody):
    _require(body, "topic", "level_title")

    def produce(on_delta):
        text = tutor.stream_level_content(body.topic, body.level_title, body.level_description, on_delta=on_delta)
        if body.roadmap_id and body.level_id and text:
            db.update_roadmap_level(body.roadmap_id, body.level_id, {"theoryContent": text})
        return text

    return _ndjson_relay("Theory", produce)


@app.post("/ai/stream/subtopic")
def stream_subtopic(body: SubtopicBody):
    _require(body, "topic", "subtopic_title")
    return _ndjson_relay(
        "Subtopic",
        lambda on_delta: tutor.stream_subtopic_content(
            body.topic, body.level_title, body.subtopic_title, body.subtopic_description, on_delta=on_delta
        ),
    )


def _system_prompt_for(body: AIChatBody) -> Optional[str]:
    if body.persona:
        try:
            return get_persona(body.persona).system_prompt
        except KeyError as exc:
            raise HTTPException(status_code=400, detail=str(exc).strip("'\"")) from exc
    return body.system_prompt


@app.post("/ai/stream/chat")
def stream_chat(body: AIChatBody):
    _require(body, "messages")
    system_prompt = _system_prompt_for(body)
    messages = [m.model_dump() for m in body.messages]
    return _ndjson_relay(
        "Chat", lambda on_delta: tutor.stream_chat(messages, system_prompt=system_prompt, on_delta=on_delta)
    )


@app.post("/ai/stream/code")
def stream_code_generation(body: CodeGenBody):
    _require(body, "prompt")
    return _ndjson_relay(
        "CodeGen", lambda on_delta: tutor.stream_generated_code(body.prompt, body.language, on_delta=on_delta)
    )


@app.post("/ai/stream/code-insights")
def stream_code_insights(body: CodeBody):
    _require(body, "code")
    return _ndjson_relay(
        "Insights", lambda on_delta: tutor.stream_code_insights(body.code, body.language, on_delta=on_delta)
    )


# ---------- AI: one-shot helpers ----------
@app.get("/ai/personas")
def list_personas():
    return [{"name": p.name, "title": p.title} for p in load_personas()]


@app.post("/ai/chat")
def ai_chat(body: AIChatBody):
    _require(body, "messages")
    system_prompt = _system_prompt_for(body)
    return {"text": tutor.chat([m.model_dump() for m in body.messages], system_prompt)}


@app.post("/ai/subtopic")
def ai_subtopic(body: SubtopicBody):
    _require(body, "topic", "subtopic_title")
    return {
        "text": tutor.generate_subtopic_content(
            body.topic, body.level_title, body.subtopic_title, body.subtopic_description
        )
    }


@app.post("/ai/explain")
def ai_explain(body: CodeBody):
    _require(body, "code")
    return {"text": tutor.explain_code(body.code, body.language)}


@app.post("/ai/hint")
def ai_hint(body: CodeBody):
    _require(body, "code")
    return {"text": tutor.code_hint(body.code, body.error)}


@app.post("/ai/analyze")
def ai_analyze(body: CodeBody):
    _require(body, "code")
    return tutor.analyze_submission(body.code)


@app.post("/ai/recommendation")
def ai_recommendation(body: RecommendationBody):
    return {"text": tutor.learning_recommendation(body.xp, body.completed_topics)}


# ---------- Code playground ----------
@app.get("/code/languages")
def list_languages():
    return [language.as_dict() for language in LANGUAGES]


@app.post("/code/execute")
def run_code(body: ExecuteBody):
    _require(body, "language", "code")
    result = execute_code(body.language, body.code, body.stdin)
    language = get_language_by_id(body.language)
    if body.user_id and language is not None and not language.is_web:
        try:
            db.save_code_run(body.user_id, body.language, body.code, body.stdin, result.combined_output())
        except sqlite3.Error as exc:
            logger.warning("Could not save code run for user %s: %s", body.user_id, exc)
    return result.model_dump(by_alias=True)
