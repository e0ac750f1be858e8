"""
GURUJI TEST SCRIPT - Terminal client
====================================

PURPOSE:
Command-line interface for talking to the Guruji API without a frontend.
Lets you switch between Marathi and English mode, start new consultations and
look at the history of the current one.

USAGE:
    python test.py

    Make sure the server is running first: python run.py

COMMANDS:
    1 - Switch to Marathi mode (the server starts a fresh consultation)
    2 - Switch to English mode (the server starts a fresh consultation)
    /new - Start a new consultation
    /history - View the current consultation
    /sessions - List consultations
    /quit or /exit - Exit

HOW IT WORKS:
Every message goes to POST /chat with the current session_id. The call blocks
until Guruji has answered, so a second message can never overlap the first.
"""

import requests


# -----------------------------------------------------------------------------
# CONFIGURATION
# -----------------------------------------------------------------------------
BASE_URL = "http://localhost:8000"
SESSION_ID = None

# Interpreter + Guruji + translation can take three model calls.
CHAT_TIMEOUT = 90


# -----------------------------------------------------------------------------
# UI HELPERS
# -----------------------------------------------------------------------------

def print_header():
    print("\n" + "="*60)
    print("ॐ Barve Guruji - Terminal Client")
    print("="*60)
    print("\nLanguage:")
    print("  1 = मराठी (Marathi)")
    print("  2 = English")
    print("\nCommands:")
    print("  /new - New consultation")
    print("  /history - See this consultation")
    print("  /sessions - List consultations")
    print("  /quit - Exit")
    print("="*60 + "\n")


def get_user_input():
    try:
        return input("\nYou: ").strip()
    except (KeyboardInterrupt, EOFError):
        return None


def _error_text(response):
    try:
        err = response.json()
        if isinstance(err.get("detail"), str):
            return f"❌ {err['detail']}"
    except ValueError:
        pass
    return f"❌ Error: {response.status_code} - {response.text}"


# -----------------------------------------------------------------------------
# API CALLS
# -----------------------------------------------------------------------------

def send_message(message):
    """POST /chat; returns Guruji's reply or an error line."""
    global SESSION_ID
    try:
        response = requests.post(
            f"{BASE_URL}/chat",
            json={"message": message, "session_id": SESSION_ID},
            timeout=CHAT_TIMEOUT,
        )
    except requests.exceptions.ConnectionError:
        return "❌ Cannot connect to backend. Start it with: python run.py"
    except requests.exceptions.Timeout:
        return "❌ Request timed out."

    if response.status_code == 200:
        data = response.json()
        SESSION_ID = data.get("session_id", SESSION_ID)
        return data.get("response", "No response")
    return _error_text(response)


def set_language(language):
    """PUT /settings/language; the server opens a fresh consultation when the mode changes."""
    global SESSION_ID
    try:
        response = requests.put(f"{BASE_URL}/settings/language", json={"language": language}, timeout=10)
    except requests.exceptions.RequestException as e:
        return f"❌ Error: {e}"
    if response.status_code != 200:
        return _error_text(response)
    SESSION_ID = response.json().get("active_session_id")
    return "✅ मराठी mode" if language == "mr" else "✅ English mode"


def new_session():
    global SESSION_ID
    try:
        response = requests.post(f"{BASE_URL}/sessions", timeout=10)
    except requests.exceptions.RequestException as e:
        return f"❌ Error: {e}"
    if response.status_code != 200:
        return _error_text(response)
    SESSION_ID = response.json()["id"]
    return "🔄 New consultation started"


def get_chat_history():
    if not SESSION_ID:
        return "No active consultation"
    try:
        response = requests.get(f"{BASE_URL}/chat/history/{SESSION_ID}", timeout=10)
    except requests.exceptions.RequestException as e:
        return f"Error retrieving history: {e}"
    if response.status_code != 200:
        return "Could not retrieve history"

    messages = response.json().get("messages", [])
    if not messages:
        return "No messages in this consultation"
    output = f"\n📜 History ({len(messages)} messages):\n" + "-" * 60 + "\n"
    for i, msg in enumerate(messages, 1):
        role = "You" if msg.get("role") == "user" else "Guruji"
        output += f"{i}. {role}: {msg.get('content', '')}\n"
    return output + "-" * 60 + "\n"


def list_sessions():
    try:
        response = requests.get(f"{BASE_URL}/sessions", timeout=10)
    except requests.exceptions.RequestException as e:
        return f"Error listing consultations: {e}"
    if response.status_code != 200:
        return _error_text(response)
    lines = [
        f"{'*' if s['active'] else ' '} {s['id'][:8]}  {s['language']}  {s['title']} ({s['message_count']})"
        for s in response.json()
    ]
    return "\n".join(lines) or "No consultations yet"


# -----------------------------------------------------------------------------
# MAIN LOOP
# -----------------------------------------------------------------------------

COMMANDS = {
    "1": lambda: set_language("mr"),
    "2": lambda: set_language("en"),
    "/new": new_session,
    "/history": get_chat_history,
    "/sessions": list_sessions,
}


def main():
    print_header()
    while True:
        user_input = get_user_input()
        if user_input is None or user_input in ("/quit", "/exit"):
            print("\n🙏 Hari Om!")
            break
        if not user_input:
            continue
        if user_input in COMMANDS:
            print(COMMANDS[user_input]())
            continue
        if user_input.startswith("/"):
            print(f"❌ Unknown command: {user_input}")
            continue
        print("🕉  Guruji: ", end="", flush=True)
        print(send_message(user_input))


if __name__ == "__main__":
    main()
