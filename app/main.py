"""
GURUJI MAIN API
===============

This module defines the FastAPI application and all HTTP endpoints. It is
designed for single-user use: one person runs one server (python run.py) with
their own Gemini API key and talks to Barve Guruji through it.

ENDPOINTS:
  GET    /                         - API name and list of endpoints.
  GET    /health                   - Service status and any pending rate-limit retry.
  POST   /chat                     - Send a message; runs interpreter -> Guruji -> translation check.
  GET    /chat/history/{id}        - All messages of a consultation.
  GET    /sessions                 - Consultations, most recent first.
  POST   /sessions                 - Start a new consultation (becomes active).
  PUT    /sessions/{id}/active     - Make a consultation the active one.
  PATCH  /sessions/{id}            - Rename a consultation.
  DELETE /sessions/{id}            - Delete a consultation.
  GET    /settings                 - Language, masked API key, connectivity, active session.
  PUT    /settings/language        - Switch Marathi/English (starts a fresh consultation).
  PUT    /settings/credential      - Set the API key for this process.
  DELETE /settings/credential      - Forget the API key.
  POST   /connectivity             - Client reports online/offline; coming back online
                                     runs a due rate-limit retry.
  GET    /quick-actions            - One-tap prompts grounded on today's date.

ONE TURN AT A TIME:
  While a reply is being prepared for a consultation, another POST /chat for the
  same consultation gets 409; the client should keep its send button disabled
  until the first call returns.

STARTUP:
  The lifespan function builds the settings, session store, Gemini client and
  chat service, and starts a background task that runs a due rate-limit retry.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware

from app.models import (
    ChatRequest,
    ChatResponse,
    ConnectivityRequest,
    CredentialRequest,
    FailureKind,
    LanguageRequest,
    RenameRequest,
    SessionSummary,
    SettingsResponse,
    TurnResult,
)
from app.services.chat_service import ChatService, TurnInProgressError
from app.services.gemini_client import GeminiClient
from app.services.prompts import quick_action_prompts
from app.services.session_store import SessionNotFoundError, SessionStore
from app.services.settings_service import SettingsService
from app.utils.time_info import ground_dates
from config import GURUJI_MODEL, INTERPRETER_MODEL, RETRY_POLL_SECONDS


# -----------------------------------------------------------------------------
# LOGGING
# -----------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger("GURUJI")


# -----------------------------------------------------------------------------
# USER-FACING FAILURE MESSAGES
# -----------------------------------------------------------------------------
# (HTTP status, message) per failure kind of a turn.
FAILURE_RESPONSES = {
    FailureKind.NO_CREDENTIAL: (400, "API key not set. Save it with PUT /settings/credential."),
    FailureKind.OFFLINE: (503, "You are offline. Message saved locally."),
    FailureKind.RATE_LIMITED: (429, "Rate limit. Please retry in a minute."),
    FailureKind.INVALID_CREDENTIAL: (401, "Invalid/unauthorized API key. Update it in Settings."),
    FailureKind.BAD_REQUEST: (500, "Bad request (payload/model mismatch). Check the server log."),
    FailureKind.NOT_FOUND: (502, "Model not found for your key. Check model name."),
    FailureKind.TRANSIENT: (504, "Guruji could not be reached. Please send your message again."),
}


def _failure_exception(result: TurnResult) -> HTTPException:
    status_code, message = FAILURE_RESPONSES[result.kind]
    headers = {"X-Failure-Kind": result.kind.value}
    if result.kind is FailureKind.RATE_LIMITED and result.retry_at is not None:
        seconds = max(1, round((result.retry_at - chat_service.clock()).total_seconds()))
        message = f"Rate limit. Retry after {seconds}s."
        headers["Retry-After"] = str(seconds)
    return HTTPException(status_code=status_code, detail=message, headers=headers)


# -----------------------------------------------------------------------------
# GLOBAL SERVICE REFERENCES
# -----------------------------------------------------------------------------
# Set during startup (lifespan) and used by all route handlers.
settings_service: SettingsService = None
session_store: SessionStore = None
gemini_client: GeminiClient = None
chat_service: ChatService = None


def print_title():
    """Print the banner to the console when the server starts."""
    SAFFRON = "\033[93m"
    MAROON  = "\033[91m"
    BOLD    = "\033[1m"
    RESET   = "\033[0m"
    print(f"\n{BOLD}{SAFFRON}  ॐ  Barve Guruji AI{RESET}\n{MAROON}  Jyotish consultations on Gemini{RESET}\n")


# -------------------------------------------------------------------------
# RETRY WATCHER
# -------------------------------------------------------------------------

def _consume_retry() -> Optional[TurnResult]:
    """Run the pending rate-limit retry if it is due for the active consultation."""
    if chat_service is None or chat_service.pending_retry is None:
        return None
    active = session_store.get_active()
    result = chat_service.consume_pending_retry(active.id if active else None, settings_service.snapshot())
    if result is not None:
        logger.info("Automatic retry finished: %s", "ok" if result.ok else result.kind.value)
    return result


async def _retry_watcher():
    while True:
        await asyncio.sleep(RETRY_POLL_SECONDS)
        try:
            await run_in_threadpool(_consume_retry)
        except Exception as e:
            logger.error(f"Automatic retry failed: {e}", exc_info=True)


# -------------------------------------------------------------------------
# LIFESPAN (STARTUP / SHUTDOWN)
# -------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Build the services in dependency order (settings, session store, Gemini
    client, chat service), start the retry watcher, and tear both down on exit.
    """
    global settings_service, session_store, gemini_client, chat_service

    print_title()
    logger.info("=" * 60)
    logger.info("Guruji - Starting Up...")
    logger.info("=" * 60)

    try:
        settings_service = SettingsService()
        session_store = SessionStore()
        gemini_client = GeminiClient()
        chat_service = ChatService(session_store, gemini_client)

        logger.info("Language: %s", settings_service.get_language_mode().label)
        logger.info("API key: %s", "set" if settings_service.get_credential() else "NOT SET")
        logger.info("Models: %s (Guruji), %s (interpreter)", GURUJI_MODEL, INTERPRETER_MODEL)
        logger.info("Guruji is ready. API: http://localhost:8000  Docs: http://localhost:8000/docs")
        logger.info("=" * 60)
    except Exception as e:
        logger.error(f"Fatal error during startup: {e}", exc_info=True)
        raise

    watcher = asyncio.create_task(_retry_watcher())
    yield

    logger.info("Shutting down Guruji...")
    watcher.cancel()
    gemini_client.close()
    logger.info("Goodbye!")


# -------------------------------------------------------------------------
# FASTAPI APP AND CORS
# -------------------------------------------------------------------------
app = FastAPI(
    title="Barve Guruji API",
    description="Persona chat over Gemini with date grounding and Marathi enforcement",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _require_services():
    if not chat_service:
        raise HTTPException(status_code=503, detail="Chat service not initialized")


def _settings_response() -> SettingsResponse:
    active = session_store.get_active()
    return SettingsResponse(
        language=settings_service.get_language_mode(),
        api_key=settings_service.masked_credential(),
        has_api_key=bool(settings_service.get_credential()),
        online=settings_service.is_online(),
        active_session_id=active.id if active else None,
    )


def _summary(session) -> SessionSummary:
    return SessionSummary(
        id=session.id,
        title=session.title,
        language=session.language,
        updated_at=session.updated_at,
        message_count=len(session.messages),
        active=session.id == session_store.active_session_id,
    )


def _get_session_or_404(session_id: str):
    try:
        return session_store.get_session(session_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")


# =========================================================================
# API ENDPOINTS
# =========================================================================

@app.get("/")
async def root():
    return {
        "message": "Barve Guruji API",
        "endpoints": {
            "/chat": "Send a message to Guruji",
            "/chat/history/{session_id}": "Get a consultation's messages",
            "/sessions": "List or start consultations",
            "/settings": "Language, API key and connectivity",
            "/connectivity": "Report online/offline",
            "/quick-actions": "One-tap prompts",
            "/health": "System health check"
        }
    }


@app.get("/health")
async def health():
    pending = chat_service.pending_retry if chat_service else None
    return {
        "status": "healthy",
        "chat_service": chat_service is not None,
        "api_key_set": bool(settings_service and settings_service.get_credential()),
        "online": bool(settings_service and settings_service.is_online()),
        "pending_retry_at": pending.retry_at.isoformat() if pending else None,
    }


@app.post("/chat", response_model=ChatResponse)
def chat(request: ChatRequest):
    """
    Send one message to Guruji.

    HOW IT WORKS:
    1. Uses session_id (which becomes the active consultation), or the active
       consultation (created if there is none)
    2. Stores the user's message
    3. Interpreter rewrites it (dates, shorthand); falls back to the raw text
    4. Guruji answers with the last MAX_HISTORY messages as context
    5. In Marathi mode an English reply is translated once (best effort)
    6. Stores and returns the reply

    On failure the user's message stays stored and the status code tells why
    (429 rate limit with Retry-After when an automatic retry is scheduled,
    401 bad key, 503 offline, 409 a reply is already being prepared, ...).
    """
    _require_services()

    if request.session_id:
        session_id = _get_session_or_404(request.session_id).id
        # A send always targets the active consultation; a pending retry only fires there.
        if session_id != session_store.active_session_id:
            session_store.set_active(session_id)
    else:
        active = session_store.get_active()
        session_id = active.id if active else session_store.create_session(settings_service.get_language_mode()).id

    try:
        result = chat_service.send_message(session_id, request.message, settings_service.snapshot())
    except TurnInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error processing chat: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error processing chat: {str(e)}")

    if not result.ok:
        raise _failure_exception(result)
    return ChatResponse(response=result.reply_text, session_id=session_id)


@app.get("/chat/history/{session_id}")
def get_chat_history(session_id: str):
    _require_services()
    session = _get_session_or_404(session_id)
    return {
        "session_id": session.id,
        "title": session.title,
        "messages": [m.model_dump(mode="json") for m in session.messages],
    }


# -------------------------------------------------------------------------
# SESSIONS
# -------------------------------------------------------------------------

@app.get("/sessions")
def list_sessions():
    _require_services()
    return [_summary(s) for s in session_store.list_sessions()]


@app.post("/sessions", response_model=SessionSummary)
def new_session():
    _require_services()
    return _summary(session_store.create_session(settings_service.get_language_mode()))


@app.put("/sessions/{session_id}/active", response_model=SessionSummary)
def activate_session(session_id: str):
    _require_services()
    _get_session_or_404(session_id)
    return _summary(session_store.set_active(session_id))


@app.patch("/sessions/{session_id}", response_model=SessionSummary)
def rename_session(session_id: str, request: RenameRequest):
    _require_services()
    _get_session_or_404(session_id)
    return _summary(session_store.rename(session_id, request.title))


@app.delete("/sessions/{session_id}")
def delete_session(session_id: str):
    _require_services()
    _get_session_or_404(session_id)
    if chat_service.is_busy(session_id):
        raise HTTPException(status_code=409, detail="A reply is still being prepared for this session")
    session_store.delete(session_id)
    return {"deleted": session_id, "active_session_id": session_store.active_session_id}


# -------------------------------------------------------------------------
# SETTINGS AND CONNECTIVITY
# -------------------------------------------------------------------------

@app.get("/settings", response_model=SettingsResponse)
def get_settings():
    _require_services()
    return _settings_response()


@app.put("/settings/language", response_model=SettingsResponse)
def set_language(request: LanguageRequest):
    """Switching language starts a fresh consultation so the context never mixes languages."""
    _require_services()
    if settings_service.set_language_mode(request.language):
        session_store.create_session(request.language)
    return _settings_response()


@app.put("/settings/credential", response_model=SettingsResponse)
def set_credential(request: CredentialRequest):
    _require_services()
    settings_service.set_credential(request.api_key)
    return _settings_response()


@app.delete("/settings/credential", response_model=SettingsResponse)
def forget_credential():
    _require_services()
    settings_service.clear_credential()
    return _settings_response()


@app.post("/connectivity")
def connectivity(request: ConnectivityRequest):
    _require_services()
    retried = None
    if settings_service.set_online(request.online):
        retried = _consume_retry()
    return {
        "online": settings_service.is_online(),
        "retried": retried is not None,
        "result": retried.model_dump(mode="json") if retried else None,
    }


@app.get("/quick-actions")
async def quick_actions():
    return {"actions": quick_action_prompts(ground_dates())}


# -------------------------------------------------------------------------
# STANDALONE RUN (python -m app.main)
# -------------------------------------------------------------------------
def run():
    """Start the uvicorn server (same as run.py); used if someone does python -m app.main"""
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )

if __name__ == "__main__":
    run()
