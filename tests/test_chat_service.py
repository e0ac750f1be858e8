import threading
from datetime import timedelta

import pytest

from app.models import ChatMessage, FailureKind, LanguageMode, TurnSettings
from app.services.chat_service import (
    ChatService,
    TurnInProgressError,
    TurnStage,
    build_window,
    window_to_contents,
)
from config import (
    EMPTY_REPLY_PLACEHOLDER,
    GURUJI_URL,
    INTERPRETER_URL,
    MAX_HISTORY,
)
from conftest import (
    API_KEY,
    RETRY_BODY_30S,
    FakeGeminiClient,
    gemini_error,
    gemini_ok,
    gemini_timeout,
)

ENGLISH_REPLY = (
    "Namaskar Bal. Tomorrow is **not** auspicious for Griha Pravesh because of Bhadra. "
    "Recite Ram Raksha and offer durva to Ganpati."
)
MARATHI_REPLY = "नमस्कार बाळ. उद्या **गृहप्रवेशासाठी** शुभ दिवस नाही. रामरक्षा म्हणा."


def messages(store, session_id):
    return [(m.role, m.content) for m in store.get_session(session_id).messages]


# ------------------------------------------------------------------------------
# CONVERSATION WINDOW
# ------------------------------------------------------------------------------

def test_window_is_bounded_and_ends_with_latest_message():
    log = [ChatMessage(role="user" if i % 2 == 0 else "assistant", content=f"m{i}") for i in range(30)]
    snapshot = list(log)

    window = build_window(log, MAX_HISTORY)

    assert len(window) == MAX_HISTORY
    assert window[-1].content == "m29"
    assert window[0].content == f"m{30 - MAX_HISTORY}"
    assert log == snapshot


def test_window_shorter_log_and_roles():
    log = [ChatMessage(role="user", content="q"), ChatMessage(role="assistant", content="a")]
    contents = window_to_contents(build_window(log, MAX_HISTORY))
    assert contents == [
        {"role": "user", "parts": [{"text": "q"}]},
        {"role": "model", "parts": [{"text": "a"}]},
    ]


def test_persona_call_receives_window_plus_query(store, make_service, marathi):
    session = store.create_session()
    for i in range(25):
        store.append(session.id, ChatMessage(role="user" if i % 2 == 0 else "assistant", content=f"m{i}"))
    service, client = make_service(gemini_ok("rewritten"), gemini_ok(MARATHI_REPLY))

    service.send_message(session.id, "udya?", marathi)

    contents = client.calls[1].contents
    assert len(contents) == MAX_HISTORY + 1
    assert contents[-2]["parts"][0]["text"] == "udya?"
    assert contents[-1] == {"role": "user", "parts": [{"text": "rewritten"}]}


# ------------------------------------------------------------------------------
# HAPPY PATH
# ------------------------------------------------------------------------------

def test_full_turn_in_marathi(store, make_service, marathi):
    session = store.create_session()
    service, client = make_service(gemini_ok("Is tomorrow 2026-02-09 good for Griha Pravesh?"), gemini_ok(MARATHI_REPLY))

    result = service.send_message(session.id, "udya griha pravesh?", marathi)

    assert result.ok
    assert result.reply_text == MARATHI_REPLY
    assert messages(store, session.id) == [("user", "udya griha pravesh?"), ("assistant", MARATHI_REPLY)]
    assert len(client.calls) == 2

    interpreter, persona = client.calls
    assert interpreter.endpoint == INTERPRETER_URL
    assert interpreter.credential == API_KEY
    assert interpreter.contents == [{"role": "user", "parts": [{"text": "udya griha pravesh?"}]}]
    assert interpreter.body["generationConfig"]["temperature"] == 0.15
    assert "query interpreter" in interpreter.system_text

    assert persona.endpoint == GURUJI_URL
    assert persona.last_user_text == "Is tomorrow 2026-02-09 good for Griha Pravesh?"
    assert persona.body["generationConfig"] == {"temperature": 0.45, "topP": 0.9, "topK": 32, "maxOutputTokens": 2048}
    assert "Respond ONLY in Marathi" in persona.system_text
    assert service.current_stage(session.id) is TurnStage.IDLE


def test_empty_persona_reply_is_stored_as_placeholder(store, make_service, english):
    session = store.create_session()
    service, _ = make_service(gemini_ok("q"), gemini_ok("   "))
    result = service.send_message(session.id, "hello", english)
    assert result.reply_text == EMPTY_REPLY_PLACEHOLDER
    assert messages(store, session.id)[-1] == ("assistant", EMPTY_REPLY_PLACEHOLDER)


def test_empty_message_is_rejected(store, make_service, marathi):
    session = store.create_session()
    service, client = make_service()
    with pytest.raises(ValueError):
        service.send_message(session.id, "   ", marathi)
    assert messages(store, session.id) == []
    assert client.calls == []


# ------------------------------------------------------------------------------
# INTERPRETER FALLBACK
# ------------------------------------------------------------------------------

@pytest.mark.parametrize("interpreter_result", [gemini_error(500, "boom"), gemini_timeout(), gemini_ok("  ")])
def test_interpreter_failure_falls_back_to_raw_text(store, make_service, english, interpreter_result):
    session = store.create_session()
    service, client = make_service(interpreter_result, gemini_ok("Hari Om. Yes."))

    result = service.send_message(session.id, "aaj agnivas?", english)

    assert result.ok
    assert client.calls[1].endpoint == GURUJI_URL
    assert client.calls[1].last_user_text == "aaj agnivas?"


# ------------------------------------------------------------------------------
# TRANSLATION CHECK
# ------------------------------------------------------------------------------

def test_english_reply_in_marathi_mode_is_translated(store, make_service, marathi):
    session = store.create_session()
    service, client = make_service(gemini_ok("q"), gemini_ok(ENGLISH_REPLY), gemini_ok(MARATHI_REPLY))

    result = service.send_message(session.id, "udya?", marathi)

    assert result.reply_text == MARATHI_REPLY
    assert len(client.calls) == 3
    translation = client.calls[2]
    assert translation.endpoint == INTERPRETER_URL
    assert translation.contents == [{"role": "user", "parts": [{"text": ENGLISH_REPLY}]}]
    assert "Translate the assistant response" in translation.system_text
    assert messages(store, session.id)[-1] == ("assistant", MARATHI_REPLY)


@pytest.mark.parametrize("translation_result", [gemini_error(503, "unavailable"), gemini_timeout(), gemini_ok("")])
def test_failed_translation_keeps_original_reply(store, make_service, marathi, translation_result):
    session = store.create_session()
    service, client = make_service(gemini_ok("q"), gemini_ok(ENGLISH_REPLY), translation_result)

    result = service.send_message(session.id, "udya?", marathi)

    assert result.ok
    assert result.reply_text == ENGLISH_REPLY
    assert len(client.calls) == 3
    assert messages(store, session.id)[-1] == ("assistant", ENGLISH_REPLY)


def test_marathi_reply_needs_no_translation(store, make_service, marathi):
    session = store.create_session()
    service, client = make_service(gemini_ok("q"), gemini_ok(MARATHI_REPLY))
    service.send_message(session.id, "udya?", marathi)
    assert len(client.calls) == 2


def test_english_mode_never_translates(store, make_service, english):
    session = store.create_session()
    service, client = make_service(gemini_ok("q"), gemini_ok(ENGLISH_REPLY))
    result = service.send_message(session.id, "tomorrow?", english)
    assert result.reply_text == ENGLISH_REPLY
    assert len(client.calls) == 2


# ------------------------------------------------------------------------------
# GUARD AND FAILURES
# ------------------------------------------------------------------------------

def test_missing_credential_fails_before_any_call(store, make_service):
    session = store.create_session()
    service, client = make_service()
    result = service.send_message(session.id, "hello", TurnSettings(language=LanguageMode.MARATHI, credential=""))
    assert not result.ok
    assert result.kind is FailureKind.NO_CREDENTIAL
    assert client.calls == []
    assert messages(store, session.id) == [("user", "hello")]


def test_offline_fails_before_any_call(store, make_service):
    session = store.create_session()
    service, client = make_service()
    settings = TurnSettings(language=LanguageMode.MARATHI, credential=API_KEY, online=False)
    result = service.send_message(session.id, "hello", settings)
    assert result.kind is FailureKind.OFFLINE
    assert client.calls == []
    assert messages(store, session.id) == [("user", "hello")]


@pytest.mark.parametrize(
    "persona_result, kind",
    [
        (gemini_error(401, "unauthorized"), FailureKind.INVALID_CREDENTIAL),
        (gemini_error(403, "forbidden"), FailureKind.INVALID_CREDENTIAL),
        (gemini_error(400, "bad"), FailureKind.BAD_REQUEST),
        (gemini_error(404, "no model"), FailureKind.NOT_FOUND),
        (gemini_error(500, "server"), FailureKind.TRANSIENT),
        (gemini_error(0, "connection refused"), FailureKind.TRANSIENT),
        (gemini_timeout(), FailureKind.TRANSIENT),
    ],
)
def test_generation_failures_are_classified(store, make_service, english, persona_result, kind):
    session = store.create_session()
    service, _ = make_service(gemini_ok("q"), persona_result)

    result = service.send_message(session.id, "hello", english)

    assert not result.ok
    assert result.kind is kind
    assert result.retry_at is None
    assert service.pending_retry is None
    assert messages(store, session.id) == [("user", "hello")]


def test_rate_limit_with_delay_schedules_one_retry(store, make_service, english, clock):
    session = store.create_session()
    service, _ = make_service(gemini_ok("q"), gemini_error(429, RETRY_BODY_30S))

    result = service.send_message(session.id, "hello", english)

    assert result.kind is FailureKind.RATE_LIMITED
    assert result.retry_at == clock.now + timedelta(seconds=30)
    token = service.pending_retry
    assert token.session_id == session.id
    assert token.original_text == "hello"
    assert token.retry_at == clock.now + timedelta(seconds=30)
    assert messages(store, session.id) == [("user", "hello")]


def test_rate_limit_without_delay_schedules_nothing(store, make_service, english):
    session = store.create_session()
    service, _ = make_service(gemini_ok("q"), gemini_error(429, '{"error":{"message":"quota"}}'))
    result = service.send_message(session.id, "hello", english)
    assert result.kind is FailureKind.RATE_LIMITED
    assert result.retry_at is None
    assert service.pending_retry is None


# ------------------------------------------------------------------------------
# PENDING RETRY LIFECYCLE
# ------------------------------------------------------------------------------

@pytest.fixture
def rate_limited(store, clock, english):
    """A service holding a 30s retry token for the active session."""
    session = store.create_session()
    client = FakeGeminiClient(gemini_ok("q"), gemini_error(429, RETRY_BODY_30S))
    service = ChatService(store, client, clock=clock)
    service.send_message(session.id, "hello", english)
    assert service.pending_retry is not None
    return service, client, session


def test_retry_is_not_run_before_it_is_due(rate_limited, english, clock):
    service, client, session = rate_limited
    clock.advance(29)
    assert service.consume_pending_retry(session.id, english) is None
    assert service.pending_retry is not None
    assert len(client.calls) == 2


def test_due_retry_reruns_original_text_once(rate_limited, store, english, clock):
    service, client, session = rate_limited
    clock.advance(30)
    client.responses = [gemini_ok("q2"), gemini_ok("Hari Om. Yes, Bal.")]

    result = service.consume_pending_retry(session.id, english)

    assert result.ok
    assert client.calls[2].last_user_text == "hello"
    assert service.pending_retry is None
    assert messages(store, session.id) == [("user", "hello"), ("assistant", "Hari Om. Yes, Bal.")]
    assert service.consume_pending_retry(session.id, english) is None


def test_retry_that_is_rate_limited_again_does_not_chain(rate_limited, english, clock):
    service, client, session = rate_limited
    clock.advance(31)
    client.responses = [gemini_ok("q2"), gemini_error(429, RETRY_BODY_30S)]

    result = service.consume_pending_retry(session.id, english)

    assert result.kind is FailureKind.RATE_LIMITED
    assert result.retry_at is None
    assert service.pending_retry is None


def test_retry_waits_while_another_session_is_active(rate_limited, store, english, clock):
    service, client, session = rate_limited
    other = store.create_session()
    clock.advance(60)
    assert service.consume_pending_retry(other.id, english) is None
    assert service.pending_retry is not None
    assert len(client.calls) == 2


def test_new_message_supersedes_pending_retry(rate_limited, store, english):
    service, client, session = rate_limited
    client.responses = [gemini_ok("q"), gemini_error(500, "server")]
    service.send_message(session.id, "a different question", english)
    assert service.pending_retry is None


def test_retry_for_deleted_session_is_dropped(rate_limited, store, english, clock):
    service, client, session = rate_limited
    store.delete(session.id)
    clock.advance(60)
    assert service.consume_pending_retry(session.id, english) is None
    assert service.pending_retry is None


# ------------------------------------------------------------------------------
# ONE TURN AT A TIME
# ------------------------------------------------------------------------------

def test_second_send_while_turn_in_flight_is_rejected(store, clock, english):
    session = store.create_session()
    release = threading.Event()
    entered = threading.Event()

    def slow_interpreter(call):
        entered.set()
        release.wait(5)
        return gemini_ok("first rewritten")

    client = FakeGeminiClient(slow_interpreter, gemini_ok("first reply"))
    service = ChatService(store, client, clock=clock)
    results = []
    worker = threading.Thread(target=lambda: results.append(service.send_message(session.id, "first", english)))
    worker.start()
    try:
        assert entered.wait(5)
        assert service.is_busy(session.id)
        assert service.current_stage(session.id) is TurnStage.INTERPRETING

        with pytest.raises(TurnInProgressError):
            service.send_message(session.id, "second", english)
        assert messages(store, session.id) == [("user", "first")]
    finally:
        release.set()
        worker.join(5)

    assert results[0].ok
    assert messages(store, session.id) == [("user", "first"), ("assistant", "first reply")]
    assert [c["parts"][0]["text"] for c in client.calls[1].contents] == ["first", "first rewritten"]
    assert not service.is_busy(session.id)


def test_other_sessions_are_not_blocked(store, clock, english):
    busy = store.create_session()
    free = store.create_session()
    release = threading.Event()
    entered = threading.Event()

    def slow(call):
        entered.set()
        release.wait(5)
        return gemini_ok("q")

    client = FakeGeminiClient(slow, gemini_ok("a"))
    service = ChatService(store, client, clock=clock)
    worker = threading.Thread(target=service.send_message, args=(busy.id, "first", english))
    worker.start()
    try:
        assert entered.wait(5)
        result = service.send_message(free.id, "hello", TurnSettings(language=LanguageMode.ENGLISH, credential=""))
        assert result.kind is FailureKind.NO_CREDENTIAL
    finally:
        release.set()
        worker.join(5)


# ------------------------------------------------------------------------------
# LANGUAGE MODE
# ------------------------------------------------------------------------------

def test_mode_switch_keeps_stored_messages_and_changes_next_persona(store, make_service, marathi, english):
    old = store.create_session(LanguageMode.MARATHI)
    service, client = make_service(gemini_ok("q"), gemini_ok(MARATHI_REPLY), gemini_ok("q"), gemini_ok(ENGLISH_REPLY))
    service.send_message(old.id, "udya?", marathi)
    before = messages(store, old.id)

    new = store.create_session(LanguageMode.ENGLISH)
    service.send_message(new.id, "tomorrow?", english)

    assert messages(store, old.id) == before
    assert "Respond ONLY in Marathi" in client.calls[1].system_text
    assert "Respond ONLY in English" in client.calls[3].system_text
    assert client.calls[3].contents == [
        {"role": "user", "parts": [{"text": "tomorrow?"}]},
        {"role": "user", "parts": [{"text": "q"}]},
    ]


# ------------------------------------------------------------------------------
# PERSISTENCE AND STAGES
# ------------------------------------------------------------------------------

def test_failed_reply_write_leaves_only_the_user_message(store, make_service, english, monkeypatch):
    session = store.create_session()
    service, _ = make_service(gemini_ok("q"), gemini_ok("Hari Om. Yes."))
    real_save = store.save_session

    def save(s):
        if any(m.role == "assistant" for m in s.messages):
            raise OSError("disk full")
        real_save(s)

    monkeypatch.setattr(store, "save_session", save)
    with pytest.raises(OSError):
        service.send_message(session.id, "hello", english)

    assert messages(store, session.id) == [("user", "hello")]
    assert not service.is_busy(session.id)


def test_stage_is_visible_while_each_call_runs(store, clock, marathi):
    session = store.create_session()
    seen = []

    def record(result):
        def respond(call):
            seen.append(service.current_stage(session.id))
            return result
        return respond

    client = FakeGeminiClient(record(gemini_ok("q")), record(gemini_ok(ENGLISH_REPLY)), record(gemini_ok(MARATHI_REPLY)))
    service = ChatService(store, client, clock=clock)

    assert service.send_message(session.id, "udya?", marathi).ok
    assert seen == [TurnStage.INTERPRETING, TurnStage.GENERATING, TurnStage.TRANSLATION_CHECK]
    assert service.current_stage(session.id) is TurnStage.IDLE
