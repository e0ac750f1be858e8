"""
SESSION STORE MODULE
====================

Durable, ordered message log per consultation. Each session is kept in memory
and mirrored to database/chats_data/<session_id>.json; the id of the active
session is kept next to them in a small marker file so it survives restarts.

The chat service only uses get_active(), append() and list_recent(); the rest
(create, rename, delete, list) backs the session endpoints in app.main.

Writes are serialised with a lock because FastAPI runs sync endpoints on a
thread pool.
"""

import logging
import threading
import uuid
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError

from app.models import DEFAULT_SESSION_TITLE, ChatMessage, ChatSession, LanguageMode
from config import CHATS_DATA_DIR

logger = logging.getLogger("GURUJI")

ACTIVE_MARKER = ".active_session"
MAX_SESSION_ID_LENGTH = 64
TITLE_LENGTH = 32


def validate_session_id(session_id: str) -> str:
    """Reject ids that could escape the data directory or are unreasonably long."""
    if not session_id or len(session_id) > MAX_SESSION_ID_LENGTH:
        raise ValueError("Invalid session_id: empty or too long")
    if ".." in session_id or "/" in session_id or "\\" in session_id:
        raise ValueError("Invalid session_id: path characters are not allowed")
    return session_id


class SessionNotFoundError(LookupError):
    """No session with this id."""


def title_from_text(text: str) -> str:
    text = text.strip()
    return text[:TITLE_LENGTH] + ("…" if len(text) > TITLE_LENGTH else "")


class SessionStore:

    def __init__(self, data_dir: Path = CHATS_DATA_DIR):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.sessions: Dict[str, ChatSession] = {}
        self.active_session_id: Optional[str] = None
        self._lock = threading.RLock()
        self.load_sessions()

    # ------------------------------------------------------------------------------
    # DISK
    # ------------------------------------------------------------------------------

    def _path(self, session_id: str) -> Path:
        return self.data_dir / f"{session_id}.json"

    def load_sessions(self):
        """Load every session file; unreadable files are skipped with a warning."""
        for file_path in sorted(self.data_dir.glob("*.json")):
            try:
                session = ChatSession.model_validate_json(file_path.read_text(encoding="utf-8"))
            except (OSError, ValidationError) as e:
                logger.warning("Could not load chat session file %s: %s", file_path, e)
                continue
            self.sessions[session.id] = session

        marker = self.data_dir / ACTIVE_MARKER
        if marker.exists():
            active = marker.read_text(encoding="utf-8").strip()
            self.active_session_id = active if active in self.sessions else None
        logger.info("Loaded %s chat session(s) from %s", len(self.sessions), self.data_dir)

    def save_session(self, session: ChatSession):
        """Write one session file atomically (temp file, then rename)."""
        path = self._path(session.id)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(session.model_dump_json(indent=2), encoding="utf-8")
        tmp.replace(path)

    def _commit(self, session: ChatSession):
        """Persist, then publish. A failed write leaves the in-memory session untouched."""
        self.save_session(session)
        self.sessions[session.id] = session

    def _save_active_marker(self):
        (self.data_dir / ACTIVE_MARKER).write_text(self.active_session_id or "", encoding="utf-8")

    # ------------------------------------------------------------------------------
    # SESSIONS
    # ------------------------------------------------------------------------------

    def create_session(self, language: LanguageMode = LanguageMode.MARATHI, title: str = "") -> ChatSession:
        """Start a new consultation and make it the active one."""
        with self._lock:
            session = ChatSession(
                id=str(uuid.uuid4()),
                title=title or DEFAULT_SESSION_TITLE,
                language=language,
            )
            self._commit(session)
            self.active_session_id = session.id
            self._save_active_marker()
            logger.info("Created session %s (%s)", session.id, language.value)
            return session

    def get_session(self, session_id: str) -> ChatSession:
        validate_session_id(session_id)
        session = self.sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def get_active(self) -> Optional[ChatSession]:
        if self.active_session_id is None:
            return None
        return self.sessions.get(self.active_session_id)

    def set_active(self, session_id: str) -> ChatSession:
        with self._lock:
            session = self.get_session(session_id)
            self.active_session_id = session.id
            self._save_active_marker()
            return session

    def list_sessions(self) -> List[ChatSession]:
        """All sessions, most recently updated first."""
        return sorted(self.sessions.values(), key=lambda s: s.updated_at, reverse=True)

    def rename(self, session_id: str, title: str) -> ChatSession:
        with self._lock:
            session = self.get_session(session_id).model_copy(
                update={"title": title.strip() or DEFAULT_SESSION_TITLE}
            )
            self._commit(session)
            return session

    def delete(self, session_id: str):
        """Remove a session; if it was active, the most recent remaining one becomes active."""
        with self._lock:
            self.get_session(session_id)
            del self.sessions[session_id]
            self._path(session_id).unlink(missing_ok=True)
            if self.active_session_id == session_id:
                remaining = self.list_sessions()
                self.active_session_id = remaining[0].id if remaining else None
                self._save_active_marker()

    # ------------------------------------------------------------------------------
    # MESSAGES
    # ------------------------------------------------------------------------------

    def append(self, session_id: str, message: ChatMessage):
        """
        Append one message and persist. The first user message also names the session.

        The message only becomes visible once the file is written; if the write
        raises, the stored log is exactly what it was before the call.
        """
        with self._lock:
            current = self.get_session(session_id)
            messages = [*current.messages, message]
            update = {"messages": messages, "updated_at": message.timestamp}
            if (
                message.role == "user"
                and current.title == DEFAULT_SESSION_TITLE
                and sum(1 for m in messages if m.role == "user") == 1
            ):
                update["title"] = title_from_text(message.content)
            self._commit(current.model_copy(update=update))

    def list_recent(self, session_id: str, limit: int) -> List[ChatMessage]:
        """The last `limit` messages in append order, as a new list."""
        session = self.get_session(session_id)
        if limit <= 0:
            return []
        return list(session.messages[-limit:])

