"""
GURUJI APPLICATION PACKAGE
==========================

Main Python package for the Barve Guruji backend.

  from app.main import app
  from app.models import ChatRequest, TurnResult
  from app.services.chat_service import ChatService

FILE STRUCTURE:
  app/
    __init__.py   - This file; marks 'app' as a package.
    main.py       - FastAPI app and all HTTP endpoints (/chat, /sessions, /settings, ...).
    models.py     - Pydantic models for API bodies, stored sessions and turn results.
    services/     - Chat pipeline, Gemini client, prompts, session store, settings.
    utils/        - Helpers: date grounding, retry-delay parsing, language check.
"""
