"""
RUN SCRIPT - Start the Guruji server
====================================

PURPOSE:
  Single entry point to start the backend. Run this once per user/machine;
  the server then handles every consultation for that instance.

WHAT IT DOES:
  - Imports the FastAPI app from app.main.
  - Runs it with uvicorn on host 0.0.0.0 and port 8000.
  - reload=True restarts the server when a Python file changes (handy for development).

USAGE:
  python run.py

  Then use the API from a client, or the terminal client: python test.py
  API docs: http://localhost:8000/docs

NOTE:
  Set GEMINI_API_KEY in .env before running, or send it later with
  PUT /settings/credential.
"""

import uvicorn

# ------------------------------------------------------------------------------
# ENTRY POINT
# ------------------------------------------------------------------------------
if __name__ == "__main__":
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
