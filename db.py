import json
import os
import secrets
import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple

from db_pool import SQLiteConnectionPool

DB_PATH = os.getenv("DB_PATH", "cognify.db")

# Initialize connection pool
_pool = SQLiteConnectionPool(DB_PATH, max_connections=10)

NEW_CHAT_TITLE = "New Chat"
_AUTO_TITLE_CHARS = 80

_USER_JSON = {"rewards": []}
_ROADMAP_JSON = {"levels": []}
_PROGRESS_JSON = {"completed_levels": [], "quiz_results": []}


def _conn():
    """Return a context manager for acquiring a pooled SQLite connection."""
    return _pool.get_connection()


def close_pool() -> None:
    _pool.close_all()


def _exec(sql: str, params: Iterable = ()):
    with _pool.get_connection() as con:
        cur = con.execute(sql, params)
        con.commit()
        return cur

def _query(sql: str, params: Iterable = ()) -> list[sqlite3.Row]:
    with _pool.get_connection() as con:
        cur = con.execute(sql, params)
        return cur.fetchall()


def json_dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"))


def _decode_json_field(value: Optional[str], default: Any = None) -> Any:
    if value is None or value == "":
        return default
    try:
        return json.loads(value)
    except (TypeError, json.JSONDecodeError):
        return default


def _to_dict(row: Optional[sqlite3.Row], json_fields: Optional[Mapping[str, Any]] = None) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    data = dict(row)
    for field, default in (json_fields or {}).items():
        if field in data:
            data[field] = _decode_json_field(data[field], default)
    return data


def _to_dicts(rows: Sequence[sqlite3.Row], json_fields: Optional[Mapping[str, Any]] = None) -> list[Dict[str, Any]]:
    return [_to_dict(row, json_fields) for row in rows]  # type: ignore[misc]


def init():
    Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    with _conn() as con:
        con.executescript(
            """
            PRAGMA foreign_keys = ON;
            PRAGMA journal_mode=WAL;

            CREATE TABLE IF NOT EXISTS users (
              id          INTEGER PRIMARY KEY AUTOINCREMENT,
              google_id   TEXT UNIQUE NOT NULL,
              name        TEXT NOT NULL,
              email       TEXT,
              picture     TEXT,
              xp          INTEGER DEFAULT 0,
              streak      INTEGER DEFAULT 0,
              rewards     TEXT DEFAULT '[]',
              created_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
              updated_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS roadmaps (
              id          INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id     INTEGER,
              client_id   TEXT,
              topic       TEXT NOT NULL COLLATE NOCASE,
              levels      TEXT NOT NULL DEFAULT '[]',
              created_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
              UNIQUE(user_id, topic),
              FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_roadmaps_user ON roadmaps(user_id);

            CREATE TABLE IF NOT EXISTS user_progress (
              id               INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id          INTEGER NOT NULL,
              roadmap_id       INTEGER NOT NULL,
              completed_levels TEXT DEFAULT '[]',
              quiz_results     TEXT DEFAULT '[]',
              updated_at       TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
              UNIQUE(user_id, roadmap_id),
              FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE,
              FOREIGN KEY(roadmap_id) REFERENCES roadmaps(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_progress_user ON user_progress(user_id);

            CREATE TABLE IF NOT EXISTS chat_sessions (
              id          INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id     INTEGER NOT NULL,
              title       TEXT NOT NULL DEFAULT 'New Chat',
              created_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
              updated_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
              FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS chat_messages (
              id          INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id     INTEGER NOT NULL,
              session_id  INTEGER,
              role        TEXT NOT NULL,
              content     TEXT NOT NULL,
              created_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
              FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE,
              FOREIGN KEY(session_id) REFERENCES chat_sessions(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_chat_user ON chat_messages(user_id, created_at);
            CREATE INDEX IF NOT EXISTS idx_chat_session ON chat_messages(session_id, id);

            CREATE TABLE IF NOT EXISTS code_history (
              id          INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id     INTEGER NOT NULL,
              language    TEXT NOT NULL,
              code        TEXT NOT NULL,
              stdin       TEXT DEFAULT '',
              output      TEXT DEFAULT '',
              created_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
              FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS chat_rooms (
              id           INTEGER PRIMARY KEY AUTOINCREMENT,
              name         TEXT NOT NULL,
              created_by   INTEGER,
              invite_code  TEXT UNIQUE NOT NULL,
              created_at   TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
              FOREIGN KEY(created_by) REFERENCES users(id) ON DELETE SET NULL
            );

            CREATE TABLE IF NOT EXISTS room_members (
              room_id    INTEGER NOT NULL,
              user_id    INTEGER NOT NULL,
              joined_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
              PRIMARY KEY(room_id, user_id),
              FOREIGN KEY(room_id) REFERENCES chat_rooms(id) ON DELETE CASCADE,
              FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS room_messages (
              id           INTEGER PRIMARY KEY AUTOINCREMENT,
              room_id      INTEGER NOT NULL,
              user_id      INTEGER,
              sender_name  TEXT NOT NULL DEFAULT 'Unknown',
              role         TEXT NOT NULL DEFAULT 'user',
              content      TEXT NOT NULL,
              persona      TEXT,
              created_at   TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
              FOREIGN KEY(room_id) REFERENCES chat_rooms(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_room_messages_room ON room_messages(room_id, id);
            """
        )


# -------------- users --------------
def upsert_user(google_id: str, name: str, email: Optional[str] = None, picture: Optional[str] = None) -> Dict[str, Any]:
    _exec(
        """
        INSERT INTO users(google_id, name, email, picture)
        VALUES (?,?,?,?)
        ON CONFLICT(google_id) DO UPDATE SET
          name=excluded.name,
          email=excluded.email,
          picture=excluded.picture,
          updated_at=CURRENT_TIMESTAMP
        """,
        (google_id, name, email, picture),
    )
    return get_user_by_google_id(google_id)  # type: ignore[return-value]


def get_user_by_google_id(google_id: str) -> Optional[Dict[str, Any]]:
    rows = _query("SELECT * FROM users WHERE google_id = ?", (google_id,))
    return _to_dict(rows[0], _USER_JSON) if rows else None


def get_user(user_id: int) -> Optional[Dict[str, Any]]:
    rows = _query("SELECT * FROM users WHERE id = ?", (user_id,))
    return _to_dict(rows[0], _USER_JSON) if rows else None


def update_user_xp(user_id: int, xp: int, rewards: Optional[Sequence[str]] = None) -> Optional[Dict[str, Any]]:
    _exec(
        "UPDATE users SET xp = ?, rewards = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
        (int(xp), json_dumps(list(rewards or [])), user_id),
    )
    return get_user(user_id)


def list_leaderboard(limit: int = 10) -> list[Dict[str, Any]]:
    rows = _query(
        "SELECT id, name, picture, xp, streak, rewards FROM users ORDER BY xp DESC, id ASC LIMIT ?",
        (int(limit),),
    )
    return _to_dicts(rows, _USER_JSON)


# -------------- roadmaps --------------
def find_user_roadmap(user_id: int, topic: str) -> Optional[Dict[str, Any]]:
    rows = _query(
        "SELECT * FROM roadmaps WHERE user_id = ? AND LOWER(topic) = LOWER(?)",
        (user_id, topic),
    )
    return _to_dict(rows[0], _ROADMAP_JSON) if rows else None


def create_roadmap(
    user_id: Optional[int],
    client_id: Optional[str],
    topic: str,
    levels: Sequence[Dict[str, Any]],
) -> Tuple[Dict[str, Any], bool]:
    """Insert a roadmap unless the user already owns one for ``topic``.

    Returns ``(row, existing)``; ``existing`` is True when the stored row was
    returned instead of inserting a new one.
    """
    if user_id:
        existing = find_user_roadmap(user_id, topic)
        if existing:
            return existing, True
    try:
        cur = _exec(
            "INSERT INTO roadmaps(user_id, client_id, topic, levels) VALUES (?,?,?,?)",
            (user_id or None, client_id or None, topic, json_dumps(list(levels))),
        )
    except sqlite3.IntegrityError:
        # lost a race against a concurrent create for the same (user, topic)
        existing = find_user_roadmap(user_id, topic) if user_id else None
        if existing is None:
            raise
        return existing, True
    return get_roadmap(cur.lastrowid), False  # type: ignore[return-value]


def get_roadmap(roadmap_id: int) -> Optional[Dict[str, Any]]:
    rows = _query("SELECT * FROM roadmaps WHERE id = ?", (roadmap_id,))
    return _to_dict(rows[0], _ROADMAP_JSON) if rows else None


def list_user_roadmaps(user_id: int) -> list[Dict[str, Any]]:
    rows = _query(
        "SELECT * FROM roadmaps WHERE user_id = ? ORDER BY created_at DESC, id DESC",
        (user_id,),
    )
    return _to_dicts(rows, _ROADMAP_JSON)


def delete_roadmap(roadmap_id: int) -> None:
    _exec("DELETE FROM roadmaps WHERE id = ?", (roadmap_id,))


def update_roadmap_level(roadmap_id: int, level_id: str, fields: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    """Merge ``fields`` into one level of the roadmap's levels blob.

    Plain read-modify-write: two concurrent updates to the same roadmap
    race and the last writer wins. Returns the updated level, or None when
    the roadmap or level does not exist.
    """
    roadmap = get_roadmap(roadmap_id)
    if roadmap is None:
        return None
    levels = roadmap["levels"] or []
    updated = None
    for level in levels:
        if isinstance(level, dict) and level.get("id") == level_id:
            level.update({key: value for key, value in fields.items() if value is not None})
            updated = level
            break
    if updated is None:
        return None
    _exec("UPDATE roadmaps SET levels = ? WHERE id = ?", (json_dumps(levels), roadmap_id))
    return updated


# -------------- progress --------------
def upsert_progress(
    user_id: int,
    roadmap_id: int,
    completed_levels: Optional[Sequence[str]] = None,
    quiz_results: Optional[Sequence[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    _exec(
        """
        INSERT INTO user_progress(user_id, roadmap_id, completed_levels, quiz_results, updated_at)
        VALUES (?,?,?,?,CURRENT_TIMESTAMP)
        ON CONFLICT(user_id, roadmap_id) DO UPDATE SET
          completed_levels=excluded.completed_levels,
          quiz_results=excluded.quiz_results,
          updated_at=CURRENT_TIMESTAMP
        """,
        (
            user_id,
            roadmap_id,
            json_dumps(list(completed_levels or [])),
            json_dumps(list(quiz_results or [])),
        ),
    )
    return get_progress(user_id, roadmap_id)  # type: ignore[return-value]


def get_progress(user_id: int, roadmap_id: int) -> Optional[Dict[str, Any]]:
    rows = _query(
        "SELECT * FROM user_progress WHERE user_id = ? AND roadmap_id = ?",
        (user_id, roadmap_id),
    )
    return _to_dict(rows[0], _PROGRESS_JSON) if rows else None


def list_progress(user_id: int) -> list[Dict[str, Any]]:
    rows = _query("SELECT * FROM user_progress WHERE user_id = ? ORDER BY id", (user_id,))
    return _to_dicts(rows, _PROGRESS_JSON)


# -------------- chat sessions / messages --------------
def create_chat_session(user_id: int, title: Optional[str] = None) -> Dict[str, Any]:
    cur = _exec(
        "INSERT INTO chat_sessions(user_id, title) VALUES (?,?)",
        (user_id, title or NEW_CHAT_TITLE),
    )
    return get_chat_session(cur.lastrowid)  # type: ignore[return-value]


def get_chat_session(session_id: int) -> Optional[Dict[str, Any]]:
    rows = _query("SELECT * FROM chat_sessions WHERE id = ?", (session_id,))
    return _to_dict(rows[0]) if rows else None


def list_chat_sessions(user_id: int) -> list[Dict[str, Any]]:
    rows = _query(
        """
        SELECT s.*,
          (SELECT COUNT(*) FROM chat_messages WHERE session_id = s.id) AS message_count,
          (SELECT content FROM chat_messages
             WHERE session_id = s.id AND role = 'user'
             ORDER BY id ASC LIMIT 1) AS first_message
        FROM chat_sessions s
        WHERE s.user_id = ?
        ORDER BY s.updated_at DESC, s.id DESC
        """,
        (user_id,),
    )
    return _to_dicts(rows)


def rename_chat_session(session_id: int, title: str) -> Optional[Dict[str, Any]]:
    _exec(
        "UPDATE chat_sessions SET title = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
        (title, session_id),
    )
    return get_chat_session(session_id)


def delete_chat_session(session_id: int) -> None:
    _exec("DELETE FROM chat_sessions WHERE id = ?", (session_id,))


def save_chat_message(user_id: int, role: str, content: str, session_id: Optional[int] = None) -> Dict[str, Any]:
    with _conn() as con:
        cur = con.execute(
            "INSERT INTO chat_messages(user_id, session_id, role, content) VALUES (?,?,?,?)",
            (user_id, session_id, role, content),
        )
        message_id = cur.lastrowid
        if session_id is not None:
            con.execute(
                "UPDATE chat_sessions SET updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (session_id,),
            )
            if role == "user":
                con.execute(
                    "UPDATE chat_sessions SET title = ? WHERE id = ? AND title = ?",
                    (content[:_AUTO_TITLE_CHARS], session_id, NEW_CHAT_TITLE),
                )
        con.commit()
        row = con.execute("SELECT * FROM chat_messages WHERE id = ?", (message_id,)).fetchone()
    return _to_dict(row)  # type: ignore[return-value]


def save_chat_batch(user_id: int, messages: Sequence[Mapping[str, str]], session_id: Optional[int] = None) -> int:
    with _conn() as con:
        con.executemany(
            "INSERT INTO chat_messages(user_id, session_id, role, content) VALUES (?,?,?,?)",
            [(user_id, session_id, m["role"], m["content"]) for m in messages],
        )
        con.commit()
    return len(messages)


def list_session_messages(session_id: int) -> list[Dict[str, Any]]:
    rows = _query(
        "SELECT * FROM chat_messages WHERE session_id = ? ORDER BY created_at ASC, id ASC",
        (session_id,),
    )
    return _to_dicts(rows)


def list_user_messages(user_id: int, limit: int = 100) -> list[Dict[str, Any]]:
    rows = _query(
        "SELECT * FROM chat_messages WHERE user_id = ? ORDER BY created_at ASC, id ASC LIMIT ?",
        (user_id, int(limit)),
    )
    return _to_dicts(rows)


def clear_user_chat(user_id: int) -> None:
    with _conn() as con:
        con.execute("DELETE FROM chat_sessions WHERE user_id = ?", (user_id,))
        con.execute("DELETE FROM chat_messages WHERE user_id = ?", (user_id,))
        con.commit()


# -------------- code history --------------
def save_code_run(user_id: int, language: str, code: str, stdin: str = "", output: str = "") -> Dict[str, Any]:
    cur = _exec(
        "INSERT INTO code_history(user_id, language, code, stdin, output) VALUES (?,?,?,?,?)",
        (user_id, language, code, stdin or "", output or ""),
    )
    rows = _query("SELECT * FROM code_history WHERE id = ?", (cur.lastrowid,))
    return _to_dict(rows[0])  # type: ignore[return-value]


def list_code_history(user_id: int, limit: int = 20) -> list[Dict[str, Any]]:
    rows = _query(
        "SELECT * FROM code_history WHERE user_id = ? ORDER BY created_at DESC, id DESC LIMIT ?",
        (user_id, int(limit)),
    )
    return _to_dicts(rows)


# -------------- rooms --------------
def generate_invite_code() -> str:
    return secrets.token_hex(4).upper()


def create_room(user_id: int, name: str) -> Dict[str, Any]:
    invite_code = generate_invite_code()
    with _conn() as con:
        cur = con.execute(
            "INSERT INTO chat_rooms(name, created_by, invite_code) VALUES (?,?,?)",
            (name, user_id, invite_code),
        )
        room_id = cur.lastrowid
        con.execute(
            "INSERT OR IGNORE INTO room_members(room_id, user_id) VALUES (?,?)",
            (room_id, user_id),
        )
        con.commit()
    return get_room_row(room_id)  # type: ignore[return-value]


def get_room_row(room_id: int) -> Optional[Dict[str, Any]]:
    rows = _query("SELECT * FROM chat_rooms WHERE id = ?", (room_id,))
    return _to_dict(rows[0]) if rows else None


def join_room(user_id: int, invite_code: str) -> Optional[Dict[str, Any]]:
    """Add ``user_id`` to the room behind ``invite_code`` and announce it.

    Returns the room row, or None for an unknown code.
    """
    rows = _query("SELECT * FROM chat_rooms WHERE invite_code = ?", (invite_code.strip().upper(),))
    if not rows:
        return None
    room = _to_dict(rows[0])
    user = get_user(user_id)
    user_name = (user or {}).get("name") or "Someone"
    with _conn() as con:
        con.execute(
            "INSERT OR IGNORE INTO room_members(room_id, user_id) VALUES (?,?)",
            (room["id"], user_id),
        )
        con.execute(
            "INSERT INTO room_messages(room_id, user_id, sender_name, role, content) VALUES (?,?,?,?,?)",
            (room["id"], user_id, "System", "system", f"{user_name} joined the room"),
        )
        con.commit()
    return room


def regenerate_invite_code(room_id: int) -> Optional[Dict[str, Any]]:
    _exec("UPDATE chat_rooms SET invite_code = ? WHERE id = ?", (generate_invite_code(), room_id))
    return get_room_row(room_id)


def list_user_rooms(user_id: int) -> list[Dict[str, Any]]:
    rows = _query(
        """
        SELECT r.*, rm.joined_at,
          (SELECT COUNT(*) FROM room_members WHERE room_id = r.id) AS member_count,
          (SELECT content FROM room_messages WHERE room_id = r.id ORDER BY id DESC LIMIT 1) AS last_message
        FROM chat_rooms r
        JOIN room_members rm ON rm.room_id = r.id
        WHERE rm.user_id = ?
        ORDER BY r.created_at DESC, r.id DESC
        """,
        (user_id,),
    )
    return _to_dicts(rows)


def get_room(room_id: int) -> Optional[Dict[str, Any]]:
    room = get_room_row(room_id)
    if room is None:
        return None
    members = _query(
        """
        SELECT u.id, u.name, u.picture, rm.joined_at
        FROM room_members rm JOIN users u ON u.id = rm.user_id
        WHERE rm.room_id = ?
        ORDER BY rm.joined_at ASC, u.id ASC
        """,
        (room_id,),
    )
    room["members"] = _to_dicts(members)
    return room


def list_room_messages(room_id: int, after: Optional[int] = None, limit: int = 100) -> list[Dict[str, Any]]:
    if after is not None:
        rows = _query(
            "SELECT * FROM room_messages WHERE room_id = ? AND id > ? ORDER BY id ASC LIMIT ?",
            (room_id, int(after), int(limit)),
        )
    else:
        rows = _query(
            "SELECT * FROM room_messages WHERE room_id = ? ORDER BY id ASC LIMIT ?",
            (room_id, int(limit)),
        )
    return _to_dicts(rows)


def post_room_message(
    room_id: int,
    content: str,
    *,
    user_id: Optional[int] = None,
    sender_name: Optional[str] = None,
    role: Optional[str] = None,
    persona: Optional[str] = None,
) -> Dict[str, Any]:
    cur = _exec(
        """
        INSERT INTO room_messages(room_id, user_id, sender_name, role, content, persona)
        VALUES (?,?,?,?,?,?)
        """,
        (room_id, user_id, sender_name or "Unknown", role or "user", content, persona),
    )
    rows = _query("SELECT * FROM room_messages WHERE id = ?", (cur.lastrowid,))
    return _to_dict(rows[0])  # type: ignore[return-value]


def list_recent_room_messages(room_id: int, limit: int = 20) -> list[Dict[str, Any]]:
    rows = _query(
        "SELECT * FROM room_messages WHERE room_id = ? ORDER BY id DESC LIMIT ?",
        (room_id, int(limit)),
    )
    return list(reversed(_to_dicts(rows)))
