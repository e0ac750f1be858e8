"""
GEMINI CLIENT MODULE
====================

One bounded HTTP call to a Gemini generateContent endpoint. This module knows
the wire format and nothing about the pipeline: it never classifies failures
(that is ChatService's job), it only reports what happened.

WIRE FORMAT:
  Request:  {systemInstruction?: {parts: [{text}]},
             contents: [{role: "user"|"model", parts: [{text}]}, ...],
             generationConfig: {temperature, topP, topK?, maxOutputTokens}}
  Response: {candidates: [{content: {parts: [{text}, ...]}}, ...]}

TIMEOUT:
  The POST runs on a worker thread and the caller waits at most `timeout`
  seconds of wall-clock time. On expiry the call is abandoned: its HTTP session is
  closed, whatever it returns later is discarded, and a timeout result is
  returned, distinct from a server error. The requests timeout applies per
  socket operation, not to the whole call, so an abandoned worker can stay busy
  past the deadline while the server keeps trickling bytes.

  The deadline counts from submission, including time spent queued. When every
  worker is held by abandoned calls, a new call can time out without ever being
  sent; the pool is sized by GEMINI_MAX_WORKERS to leave room for that.

The API key travels only in the X-goog-api-key header and is never logged.
"""

import json
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from config import GEMINI_MAX_WORKERS

logger = logging.getLogger("GURUJI")


# ==============================================================================
# WIRE HELPERS
# ==============================================================================

def build_request(
    system_text: Optional[str],
    contents: List[Dict[str, Any]],
    generation_config: Dict[str, Any],
) -> Dict[str, Any]:
    """Assemble a generateContent body. `contents` is a list of {role, parts} turns."""
    body: Dict[str, Any] = {}
    if system_text:
        body["systemInstruction"] = {"parts": [{"text": system_text}]}
    body["contents"] = contents
    body["generationConfig"] = dict(generation_config)
    return body


def user_turn(text: str) -> Dict[str, Any]:
    return {"role": "user", "parts": [{"text": text}]}


def extract_text(data: Any) -> str:
    """
    Concatenate the text parts of the first candidate.
    Any missing or oddly shaped field yields "" instead of an error.
    """
    if not isinstance(data, dict):
        return ""
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return ""
    first = candidates[0]
    content = first.get("content") if isinstance(first, dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return ""
    return "".join(
        p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)
    )


def _safe_json(text: str) -> Optional[Any]:
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return None


def _model_name(endpoint: str) -> str:
    """Short label for logs: the model segment of the URL."""
    tail = endpoint.rsplit("/", 1)[-1]
    return tail.split(":", 1)[0]


# ==============================================================================
# RESULT
# ==============================================================================

@dataclass(frozen=True)
class GenerationResult:
    """
    Outcome of one call.

    ok=True: `data` holds the parsed envelope (None if the body was not JSON).
    ok=False: `status` is the HTTP status, or 0 when no response arrived
    (`timed_out` tells a timeout apart from a network error); `text` is the raw
    body or the error description.
    """
    ok: bool
    status: int
    text: str = ""
    data: Optional[Any] = None
    timed_out: bool = False

    @property
    def reply_text(self) -> str:
        return extract_text(self.data) if self.ok else ""


# ==============================================================================
# CLIENT
# ==============================================================================

class GeminiClient:
    """Performs generateContent calls with a hard per-call timeout."""

    def __init__(self, max_workers: int = GEMINI_MAX_WORKERS):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="gemini")

    def invoke(
        self,
        endpoint: str,
        credential: str,
        request_body: Dict[str, Any],
        timeout: float,
    ) -> GenerationResult:
        session = requests.Session()
        future = self._executor.submit(self._post, session, endpoint, credential, request_body, timeout)
        try:
            result = future.result(timeout=timeout)
        except FutureTimeoutError:
            future.cancel()
            result = GenerationResult(ok=False, status=0, text=f"Timed out after {timeout:.1f}s", timed_out=True)
        finally:
            session.close()

        if result.ok:
            logger.info("Gemini call to %s succeeded (%s)", _model_name(endpoint), result.status)
        elif result.timed_out:
            logger.warning("Gemini call to %s timed out after %.1fs", _model_name(endpoint), timeout)
        else:
            logger.warning("Gemini call to %s failed with status %s", _model_name(endpoint), result.status)
        return result

    @staticmethod
    def _post(
        session: requests.Session,
        endpoint: str,
        credential: str,
        request_body: Dict[str, Any],
        timeout: float,
    ) -> GenerationResult:
        headers = {
            "Content-Type": "application/json",
            "X-goog-api-key": credential,
        }
        try:
            response = session.post(endpoint, headers=headers, json=request_body, timeout=timeout)
        except requests.exceptions.Timeout as e:
            return GenerationResult(ok=False, status=0, text=str(e), timed_out=True)
        except requests.exceptions.RequestException as e:
            return GenerationResult(ok=False, status=0, text=str(e))

        text = response.text
        if not response.ok:
            return GenerationResult(ok=False, status=response.status_code, text=text)
        return GenerationResult(ok=True, status=response.status_code, text=text, data=_safe_json(text))

    def close(self):
        self._executor.shutdown(wait=False, cancel_futures=True)
