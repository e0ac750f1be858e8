"""
Shared pytest configuration.

Puts the project root on sys.path so `import app` and `import config` work,
points the data directory at a temporary folder before config is imported,
and provides a scripted stand-in for the Gemini client.
"""

import os
import sys
import tempfile
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List

import pytest


ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

os.environ["GURUJI_DATA_DIR"] = tempfile.mkdtemp(prefix="guruji-tests-")

from app.models import LanguageMode, TurnSettings  # noqa: E402
from app.services.chat_service import ChatService  # noqa: E402
from app.services.gemini_client import GenerationResult  # noqa: E402
from app.services.session_store import SessionStore  # noqa: E402


API_KEY = "test-key-1234"


def gemini_ok(text: str) -> GenerationResult:
    data = {"candidates": [{"content": {"parts": [{"text": text}]}}]}
    return GenerationResult(ok=True, status=200, text="", data=data)


def gemini_error(status: int, body: str = "") -> GenerationResult:
    return GenerationResult(ok=False, status=status, text=body)


def gemini_timeout() -> GenerationResult:
    return GenerationResult(ok=False, status=0, text="Timed out", timed_out=True)


RETRY_BODY_30S = (
    '{"error":{"details":[{"@type":"type.googleapis.com/google.rpc.RetryInfo","retryDelay":"30s"}]}}'
)


@dataclass
class RecordedCall:
    endpoint: str
    credential: str
    body: Dict[str, Any]
    timeout: float

    @property
    def system_text(self) -> str:
        return self.body.get("systemInstruction", {}).get("parts", [{}])[0].get("text", "")

    @property
    def contents(self) -> List[Dict[str, Any]]:
        return self.body["contents"]

    @property
    def last_user_text(self) -> str:
        return self.contents[-1]["parts"][0]["text"]


class FakeGeminiClient:
    """
    Returns scripted results in call order and records every call.
    A callable entry is invoked with the RecordedCall and its return value used.
    """

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls: List[RecordedCall] = []

    def invoke(self, endpoint, credential, request_body, timeout):
        call = RecordedCall(endpoint, credential, request_body, timeout)
        self.calls.append(call)
        if not self.responses:
            raise AssertionError(f"Unexpected Gemini call to {endpoint}")
        response = self.responses.pop(0)
        return response(call) if callable(response) else response

    def close(self):
        pass


class FakeClock:
    def __init__(self, now: datetime = datetime(2026, 2, 8, 6, 30, tzinfo=timezone.utc)):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path):
    return SessionStore(tmp_path / "chats_data")


@pytest.fixture
def marathi():
    return TurnSettings(language=LanguageMode.MARATHI, credential=API_KEY, online=True)


@pytest.fixture
def english():
    return TurnSettings(language=LanguageMode.ENGLISH, credential=API_KEY, online=True)


@pytest.fixture
def make_service(store, clock):
    def _make(*responses):
        client = FakeGeminiClient(*responses)
        return ChatService(store, client, clock=clock), client
    return _make
