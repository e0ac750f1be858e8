"""
DATA MODELS MODULE
==================

This file defines the Pydantic models used for API requests, responses, and
internal chat storage. FastAPI uses these to validate incoming JSON and to
serialize responses; the session store uses them when saving/loading sessions,
and the chat service uses them to describe a turn's inputs and outcome.

MODELS:
  LanguageMode    - "mr" (Marathi) or "en" (English).
  ChatMessage     - One message in a consultation (role + content + timestamp).
  ChatSession     - Full consultation: id, title, timestamps, list of ChatMessage.
  TurnSettings    - Language, credential and connectivity captured at the start of a turn.
  PendingRetry    - The single deferred retry created by a rate-limit response.
  FailureKind     - Why a turn failed (rate limited, invalid key, offline, ...).
  TurnResult      - Outcome of one turn: reply text, or a failure kind.
  ChatRequest / ChatResponse and the settings/session bodies used by app.main.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from config import MAX_MESSAGE_LENGTH

DEFAULT_SESSION_TITLE = "New Consultation"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ==============================================================================
# DOMAIN MODELS
# ==============================================================================

class LanguageMode(str, Enum):
    MARATHI = "mr"
    ENGLISH = "en"

    @property
    def label(self) -> str:
        return "Marathi" if self is LanguageMode.MARATHI else "English"


class ChatMessage(BaseModel):
    """
    A single message in a consultation (user or assistant).
    Immutable once appended; order in the session defines chronology.
    """
    model_config = ConfigDict(frozen=True)

    role: str       # Either "user" or "assistant" (Guruji).
    content: str
    timestamp: datetime = Field(default_factory=utc_now)


class ChatSession(BaseModel):
    """One consultation, saved to disk as a JSON file by the session store."""
    id: str
    title: str = DEFAULT_SESSION_TITLE
    language: LanguageMode = LanguageMode.MARATHI
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    messages: List[ChatMessage] = Field(default_factory=list)


class TurnSettings(BaseModel):
    """
    Snapshot of the process-wide settings taken when a turn starts.

    The whole pipeline reads only this snapshot, so a language change made while
    a turn is in flight affects the next turn, never the current one.
    """
    model_config = ConfigDict(frozen=True)

    language: LanguageMode
    credential: str = ""
    online: bool = True


class PendingRetry(BaseModel):
    model_config = ConfigDict(frozen=True)

    session_id: str
    original_text: str
    retry_at: datetime


class FailureKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    INVALID_CREDENTIAL = "invalid_credential"
    BAD_REQUEST = "bad_request"
    NOT_FOUND = "not_found"
    TRANSIENT = "transient"
    OFFLINE = "offline"
    NO_CREDENTIAL = "no_credential"


class TurnResult(BaseModel):
    """
    What a turn reports back to its caller.

    ok=True carries reply_text; ok=False carries kind, plus retry_at when a
    rate-limit retry was scheduled.
    """
    ok: bool
    reply_text: Optional[str] = None
    kind: Optional[FailureKind] = None
    retry_at: Optional[datetime] = None
    detail: str = ""

    @classmethod
    def success(cls, reply_text: str) -> "TurnResult":
        return cls(ok=True, reply_text=reply_text)

    @classmethod
    def failure(cls, kind: FailureKind, retry_at: Optional[datetime] = None, detail: str = "") -> "TurnResult":
        return cls(ok=False, kind=kind, retry_at=retry_at, detail=detail)


# ==============================================================================
# API REQUEST/RESPONSE MODELS
# ==============================================================================

class ChatRequest(BaseModel):
    """
    Request body for POST /chat.

    - message: Required, 1-MAX_MESSAGE_LENGTH characters.
    - session_id: Optional. If omitted, the active consultation is used (one is
      created if there is none).
    """
    message: str = Field(..., min_length=1, max_length=MAX_MESSAGE_LENGTH)
    session_id: Optional[str] = None


class ChatResponse(BaseModel):
    response: str
    session_id: str


class LanguageRequest(BaseModel):
    language: LanguageMode


class CredentialRequest(BaseModel):
    api_key: str = Field(..., min_length=1)


class ConnectivityRequest(BaseModel):
    online: bool


class RenameRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=120)


class SettingsResponse(BaseModel):
    language: LanguageMode
    api_key: str            # Masked; the raw key is never returned.
    has_api_key: bool
    online: bool
    active_session_id: Optional[str] = None


class SessionSummary(BaseModel):
    id: str
    title: str
    language: LanguageMode
    updated_at: datetime
    message_count: int
    active: bool = False
