"""
CHAT SERVICE MODULE
===================

Runs one consultation turn through the Gemini pipeline and owns everything that
can go wrong along the way.

FLOW (per turn):
  1. Guard:          no API key or offline -> fail at once, no network call.
  2. Interpreting:   rewrite the raw message into a date-grounded, expanded query
                     (interpreter model, low temperature). Any failure here falls
                     back to the raw message.
  3. Generating:     last MAX_HISTORY stored messages + the rewritten query, sent
                     with the persona instruction. Failures end the turn and are
                     classified (rate limit, bad key, bad request, not found,
                     transient).
  4. TranslationCheck (Marathi mode only): if the reply looks English, ask once
                     for a Marathi translation; if that fails keep the original.
  5. Done:           append the assistant message. This is the only place the
                     assistant side of the log is written.

RATE LIMITS:
  A 429 carrying a RetryInfo delay leaves one PendingRetry. It is consumed by
  consume_pending_retry() (connectivity restored, or the background watcher)
  once it is due and its session is still active; it is cleared before the
  retry runs, so a retried turn never schedules another. A new user message or
  a later successful turn discards it.

CONCURRENCY:
  At most one turn per session. A second send while one is in flight raises
  TurnInProgressError and appends nothing.
"""

import logging
import threading
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage

from app.models import ChatMessage, FailureKind, PendingRetry, TurnResult, TurnSettings
from app.services.gemini_client import GeminiClient, GenerationResult, build_request, user_turn
from app.services.prompts import (
    build_interpreter_instruction,
    build_persona_instruction,
    build_translation_instruction,
)
from app.services.session_store import SessionNotFoundError, SessionStore
from app.utils.language import LanguageDetector, ScriptRatioDetector, requires_script_check
from app.utils.retry import parse_retry_delay
from app.utils.time_info import GroundedDates, ground_dates
from config import (
    EMPTY_REPLY_PLACEHOLDER,
    GURUJI_GENERATION_CONFIG,
    GURUJI_TIMEOUT_SECONDS,
    GURUJI_URL,
    INTERPRETER_GENERATION_CONFIG,
    INTERPRETER_TIMEOUT_SECONDS,
    INTERPRETER_URL,
    MAX_HISTORY,
    TRANSLATION_GENERATION_CONFIG,
    TRANSLATION_TIMEOUT_SECONDS,
)

logger = logging.getLogger("GURUJI")


class TurnStage(str, Enum):
    IDLE = "idle"
    INTERPRETING = "interpreting"
    GENERATING = "generating"
    TRANSLATION_CHECK = "translation_check"
    DONE = "done"
    FAILED = "failed"


# ==============================================================================
# ERRORS
# ==============================================================================

class GenerationError(Exception):
    """A turn-level failure; `kind` is what the caller sees in TurnResult."""
    kind: FailureKind = FailureKind.TRANSIENT

    def __init__(self, message: str = "", status: int = 0):
        super().__init__(message or self.kind.value)
        self.status = status


class ConfigError(GenerationError):
    kind = FailureKind.NO_CREDENTIAL


class OfflineError(GenerationError):
    kind = FailureKind.OFFLINE


class AuthError(GenerationError):
    kind = FailureKind.INVALID_CREDENTIAL


class MalformedRequestError(GenerationError):
    kind = FailureKind.BAD_REQUEST


class NotFoundError(GenerationError):
    kind = FailureKind.NOT_FOUND


class TransientError(GenerationError):
    kind = FailureKind.TRANSIENT


class RateLimitError(GenerationError):
    kind = FailureKind.RATE_LIMITED

    def __init__(self, message: str = "", status: int = 429, retry_at: Optional[datetime] = None):
        super().__init__(message, status)
        self.retry_at = retry_at


class InterpreterError(Exception):
    """Stage 1 failed; the turn continues with the raw message."""


class TranslationCorrectionError(Exception):
    """Stage 3 failed; the turn keeps the untranslated reply."""


class TurnInProgressError(RuntimeError):
    """A turn is already running for this session."""


def classify_failure(result: GenerationResult, now: datetime) -> GenerationError:
    """Map a failed persona call to the error the caller should see."""
    status = result.status
    if status == 429:
        delay = parse_retry_delay(result.text)
        if delay.found:
            return RateLimitError(f"Rate limited, retry after {delay.seconds:g}s", retry_at=now + delay.as_timedelta())
        return RateLimitError(f"Rate limited ({delay.status.value} retry delay)")
    if status in (401, 403):
        return AuthError("Invalid or unauthorized API key", status)
    if status == 400:
        return MalformedRequestError("Bad request (payload/model mismatch)", status)
    if status == 404:
        return NotFoundError("Model not found for this key", status)
    if result.timed_out:
        return TransientError("Request timed out")
    if status == 0:
        return TransientError(f"Network error: {result.text}")
    return TransientError(f"API error {status}", status)


# ==============================================================================
# CONVERSATION WINDOW
# ==============================================================================

def build_window(messages: Sequence[ChatMessage], limit: int = MAX_HISTORY) -> List[BaseMessage]:
    """The trailing `limit` messages as chat messages. Does not touch `messages`."""
    if limit <= 0:
        return []
    return [
        AIMessage(content=m.content) if m.role == "assistant" else HumanMessage(content=m.content)
        for m in messages[-limit:]
    ]


def window_to_contents(window: Sequence[BaseMessage]) -> List[dict]:
    """Gemini `contents`: assistant turns become role "model"."""
    return [
        {"role": "model" if isinstance(m, AIMessage) else "user", "parts": [{"text": m.content}]}
        for m in window
    ]


# ==============================================================================
# CHAT SERVICE CLASS
# ==============================================================================

class ChatService:

    def __init__(
        self,
        store: SessionStore,
        client: GeminiClient,
        detector: Optional[LanguageDetector] = None,
        clock: Optional[Callable[[], datetime]] = None,
        max_history: int = MAX_HISTORY,
    ):
        self.store = store
        self.client = client
        self.detector = detector or ScriptRatioDetector()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.max_history = max_history
        self.pending_retry: Optional[PendingRetry] = None
        self._in_flight: Dict[str, TurnStage] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------------------
    # TURN BOOKKEEPING
    # ------------------------------------------------------------------------------

    def _begin_turn(self, session_id: str):
        with self._lock:
            if session_id in self._in_flight:
                raise TurnInProgressError(f"A reply is still being prepared for session {session_id}")
            self._in_flight[session_id] = TurnStage.IDLE

    def _end_turn(self, session_id: str):
        with self._lock:
            self._in_flight.pop(session_id, None)

    def _set_stage(self, session_id: str, stage: TurnStage):
        with self._lock:
            self._in_flight[session_id] = stage
        logger.info("Session %s: %s", session_id, stage.value)

    def current_stage(self, session_id: str) -> TurnStage:
        return self._in_flight.get(session_id, TurnStage.IDLE)

    def is_busy(self, session_id: str) -> bool:
        return session_id in self._in_flight

    # ------------------------------------------------------------------------------
    # PUBLIC ENTRY POINTS
    # ------------------------------------------------------------------------------

    def send_message(self, session_id: str, text: str, settings: TurnSettings) -> TurnResult:
        """
        Append the user's message and run a full turn for it.

        Raises ValueError for empty text, SessionNotFoundError for an unknown
        session and TurnInProgressError if the session already has a turn running.
        Everything that goes wrong after the user message is stored comes back as
        a failed TurnResult, except a failed write of the log: that OSError
        propagates and the log keeps only what was written before it.
        """
        text = (text or "").strip()
        if not text:
            raise ValueError("Message is empty")
        self.store.get_session(session_id)

        self._begin_turn(session_id)
        try:
            self.store.append(session_id, ChatMessage(role="user", content=text, timestamp=self.clock()))
            if self.pending_retry is not None:
                logger.info("Discarding pending retry for session %s: superseded by a new message",
                            self.pending_retry.session_id)
                self.pending_retry = None
            return self._run_turn(session_id, text, settings, allow_retry_schedule=True)
        finally:
            self._end_turn(session_id)

    def consume_pending_retry(
        self,
        active_session_id: Optional[str],
        settings: TurnSettings,
        now: Optional[datetime] = None,
    ) -> Optional[TurnResult]:
        """
        Re-run the rate-limited turn if it is due and its session is still active.
        Returns None when nothing was retried.
        """
        now = now or self.clock()
        with self._lock:
            token = self.pending_retry
            if token is None or now < token.retry_at:
                return None
            if token.session_id != active_session_id or token.session_id in self._in_flight:
                return None
            try:
                self.store.get_session(token.session_id)
            except SessionNotFoundError:
                logger.info("Dropping pending retry for deleted session %s", token.session_id)
                self.pending_retry = None
                return None
            self.pending_retry = None
            self._in_flight[token.session_id] = TurnStage.IDLE

        logger.info("Retrying rate-limited turn for session %s", token.session_id)
        try:
            return self._run_turn(token.session_id, token.original_text, settings, allow_retry_schedule=False)
        finally:
            self._end_turn(token.session_id)

    # ------------------------------------------------------------------------------
    # PIPELINE
    # ------------------------------------------------------------------------------

    def _run_turn(
        self,
        session_id: str,
        raw_text: str,
        settings: TurnSettings,
        allow_retry_schedule: bool,
    ) -> TurnResult:
        dates = ground_dates(self.clock())
        try:
            self._guard(settings)

            self._set_stage(session_id, TurnStage.INTERPRETING)
            try:
                query = self.interpret_query(raw_text, settings, dates)
            except InterpreterError as e:
                logger.warning("Interpreter failed (%s); using the raw message", e)
                query = raw_text

            self._set_stage(session_id, TurnStage.GENERATING)
            reply = self.generate_reply(session_id, query, settings, dates)

            if requires_script_check(settings.language):
                self._set_stage(session_id, TurnStage.TRANSLATION_CHECK)
                reply = self.enforce_language(reply, settings)

        except RateLimitError as e:
            self._set_stage(session_id, TurnStage.FAILED)
            retry_at = None
            if e.retry_at is not None and allow_retry_schedule:
                retry_at = e.retry_at
                self.pending_retry = PendingRetry(session_id=session_id, original_text=raw_text, retry_at=retry_at)
                logger.warning("Rate limited; retry scheduled for %s", retry_at.isoformat())
            else:
                logger.warning("Rate limited; no retry scheduled (%s)", e)
            return TurnResult.failure(e.kind, retry_at=retry_at, detail=str(e))
        except GenerationError as e:
            self._set_stage(session_id, TurnStage.FAILED)
            logger.warning("Turn failed for session %s: %s (%s)", session_id, e.kind.value, e)
            return TurnResult.failure(e.kind, detail=str(e))

        self.store.append(session_id, ChatMessage(role="assistant", content=reply, timestamp=self.clock()))
        self._set_stage(session_id, TurnStage.DONE)
        self.pending_retry = None
        return TurnResult.success(reply)

    @staticmethod
    def _guard(settings: TurnSettings):
        if not settings.credential:
            raise ConfigError("API key not set")
        if not settings.online:
            raise OfflineError("Offline; message saved locally")

    def interpret_query(self, raw_text: str, settings: TurnSettings, dates: GroundedDates) -> str:
        """Stage 1. Raises InterpreterError on a failed call or empty output."""
        body = build_request(
            build_interpreter_instruction(settings.language, dates),
            [user_turn(raw_text)],
            INTERPRETER_GENERATION_CONFIG,
        )
        result = self.client.invoke(INTERPRETER_URL, settings.credential, body, INTERPRETER_TIMEOUT_SECONDS)
        if not result.ok:
            raise InterpreterError("timed out" if result.timed_out else f"status {result.status}")
        rewritten = result.reply_text.strip()
        if not rewritten:
            raise InterpreterError("empty output")
        return rewritten

    def generate_reply(self, session_id: str, query: str, settings: TurnSettings, dates: GroundedDates) -> str:
        """Stage 2. Raises a GenerationError subclass on failure."""
        window = build_window(self.store.list_recent(session_id, self.max_history), self.max_history)
        contents = window_to_contents(window)
        contents.append(user_turn(query))
        body = build_request(build_persona_instruction(settings.language, dates), contents, GURUJI_GENERATION_CONFIG)

        result = self.client.invoke(GURUJI_URL, settings.credential, body, GURUJI_TIMEOUT_SECONDS)
        if not result.ok:
            raise classify_failure(result, self.clock())
        return result.reply_text.strip() or EMPTY_REPLY_PLACEHOLDER

    def enforce_language(self, reply: str, settings: TurnSettings) -> str:
        """Stage 3. Returns the reply, translated when it is in the wrong language."""
        if not self.detector.looks_wrong_language(reply, settings.language):
            return reply
        logger.info("Reply is not in %s; requesting translation", settings.language.label)
        try:
            return self.translate_reply(reply, settings)
        except TranslationCorrectionError as e:
            logger.warning("Translation failed (%s); keeping the original reply", e)
            return reply

    def translate_reply(self, reply: str, settings: TurnSettings) -> str:
        body = build_request(
            build_translation_instruction(),
            [user_turn(reply)],
            TRANSLATION_GENERATION_CONFIG,
        )
        result = self.client.invoke(INTERPRETER_URL, settings.credential, body, TRANSLATION_TIMEOUT_SECONDS)
        if not result.ok:
            raise TranslationCorrectionError("timed out" if result.timed_out else f"status {result.status}")
        translated = result.reply_text.strip()
        if not translated:
            raise TranslationCorrectionError("empty output")
        return translated
