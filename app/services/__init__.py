"""
SERVICES PACKAGE
================

Business logic lives here. The API layer (app.main) calls these services;
they don't handle HTTP, only the chat pipeline, Gemini calls and data.

MODULES:
    chat_service     - Turn pipeline: interpreter -> Guruji -> translation check, retries
    gemini_client    - One bounded generateContent call
    prompts          - Interpreter, persona and translation instructions
    session_store    - Consultations saved as JSON files
    settings_service - Language mode, API key, connectivity
"""
