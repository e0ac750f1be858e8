"""
CONFIGURATION MODULE
====================

PURPOSE:
  Central place for all Guruji settings: API key, model names, endpoint URLs,
  generation parameters, paths, and the Barve Guruji persona document.
  Designed for single-user use: each person runs their own copy of this
  backend with their own .env and database/ folder.

WHAT THIS FILE DOES:
  - Loads environment variables from .env (so the API key stays out of code).
  - Defines paths to database/chats_data and database/settings.json.
  - Creates those directories if they don't exist (so the app can run immediately).
  - Exposes GEMINI_API_KEY, the two model names and their generateContent URLs.
  - Defines per-stage generation parameters (interpreter, persona, translation),
    the conversation window size and the language-detection thresholds.
  - Holds the persona document that defines Guruji's personality and rules.

USAGE:
  Import what you need: `from config import GURUJI_URL, MAX_HISTORY, GURUJI_SYSTEM_PROMPT`
  All services import from here so behaviour is consistent.
"""

import os
from pathlib import Path
from urllib.parse import quote
from dotenv import load_dotenv


# -----------------------------------------------------------------------------
# ENVIRONMENT
# -----------------------------------------------------------------------------
# Load environment variables from .env file (if it exists).
load_dotenv()


# -----------------------------------------------------------------------------
# BASE PATH
# -----------------------------------------------------------------------------
BASE_DIR = Path(__file__).parent

# ============================================================================
# DATABASE PATHS
# ============================================================================
# - chats_data: one JSON file per consultation (session)
# - settings.json: persisted language mode

DATA_DIR = Path(os.getenv("GURUJI_DATA_DIR", "") or BASE_DIR / "database")
CHATS_DATA_DIR = DATA_DIR / "chats_data"
SETTINGS_FILE = DATA_DIR / "settings.json"

CHATS_DATA_DIR.mkdir(parents=True, exist_ok=True)

# ============================================================================
# GEMINI API CONFIGURATION
# ============================================================================
# The key may be left empty here and set at runtime through PUT /settings/credential.
# It is sent in the X-goog-api-key header, never in the URL.

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "").strip()

GURUJI_MODEL = os.getenv("GURUJI_MODEL", "gemini-2.5-flash")
INTERPRETER_MODEL = os.getenv("INTERPRETER_MODEL", "gemini-flash-lite-latest")
GEMINI_API_BASE = os.getenv(
    "GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta/models"
).rstrip("/")


def model_url(model: str) -> str:
    """Return the generateContent URL for a model name."""
    return f"{GEMINI_API_BASE}/{quote(model, safe='')}:generateContent"


GURUJI_URL = model_url(GURUJI_MODEL)
INTERPRETER_URL = model_url(INTERPRETER_MODEL)

# Worker threads for Gemini calls. A call abandoned on timeout keeps its worker
# until its socket gives up, so this must cover abandoned calls plus live ones
# (a turn makes at most 3 calls).
GEMINI_MAX_WORKERS = int(os.getenv("GEMINI_MAX_WORKERS", "16"))

# ============================================================================
# TIME AND LANGUAGE
# ============================================================================
# All "today/tomorrow" arithmetic happens in this zone, not in the host's zone.
GURUJI_TIMEZONE = os.getenv("GURUJI_TIMEZONE", "Asia/Kolkata")

# "mr" (Marathi) or "en" (English).
DEFAULT_LANGUAGE = os.getenv("DEFAULT_LANGUAGE", "mr").strip().lower() or "mr"

# A Marathi-mode reply with more than LATIN_LETTER_THRESHOLD Latin letters and fewer
# than SCRIPT_CHAR_THRESHOLD Devanagari characters is treated as English.
LATIN_LETTER_THRESHOLD = 40
SCRIPT_CHAR_THRESHOLD = 10

# ============================================================================
# PIPELINE PARAMETERS
# ============================================================================
# Number of stored messages sent as context with every persona call.
MAX_HISTORY = 18

# Maximum length (characters) for a single user message.
MAX_MESSAGE_LENGTH = 8_000

# Stage 1: interpreter. Near-deterministic, short output.
INTERPRETER_GENERATION_CONFIG = {"temperature": 0.15, "topP": 0.9, "maxOutputTokens": 240}
INTERPRETER_TIMEOUT_SECONDS = 20.0

# Stage 2: persona. Natural but consistent.
GURUJI_GENERATION_CONFIG = {"temperature": 0.45, "topP": 0.9, "topK": 32, "maxOutputTokens": 2048}
GURUJI_TIMEOUT_SECONDS = 30.0

# Stage 3: corrective translation (runs on the interpreter model).
TRANSLATION_GENERATION_CONFIG = {"temperature": 0.2, "maxOutputTokens": 1400}
TRANSLATION_TIMEOUT_SECONDS = 25.0

# Stored when the persona call succeeds but returns no text.
EMPTY_REPLY_PLACEHOLDER = "[No response]"

# How often the background watcher checks whether a rate-limit retry is due.
RETRY_POLL_SECONDS = 5.0

# ============================================================================
# GURUJI PERSONALITY CONFIGURATION
# ============================================================================
# The fixed persona document. The date, language lock and behaviour clauses are
# appended per request by app.services.prompts.build_persona_instruction().

GURUJI_SYSTEM_PROMPT = """
Role: You are Barve Guruji (बर्वे गुरुजी), an 85-year-old Vedic Astrologer (Jyotish Ratna) and spiritual guide based in Sadashiv Peth, Pune, Maharashtra.

CORE IDENTITY & MANNERISMS:

Voice: You speak with the authority of a Rishi and the affection of a Grandfather (Ajoba).

Phrasing: Start interactions with "Namaskar Bal" (Child) or "Hari Om". Use Maharashtrian mannerisms.

Language:

Marathi Mode: Use pure, formal "Pramaan" Marathi.

English Mode: Speak English but use Vedic terms (e.g., "Your Grahaman is weak," "Do this Upay").

KNOWLEDGE BASE (STRICT):

Panchang: You strictly follow the Ruikar and Date Panchang methodologies. Always acknowledge the current Tithi/Nakshatra before answering.

Astrology: You use Brihat Parashara Hora Shastra. You calculate Lagna, Rashi, and Shadbala.

Prashna & Tarot: Uniquely, you use Tarot cards as a form of "Prashna Kundali" to clarify doubts when Vedic charts are ambiguous, blending them seamlessly.

INTERACTION PROTOCOL:

Honesty with Empathy:

If a Muhurta or prediction is NEGATIVE (e.g., Mrityu Yoga, Bhadra, Kantaka Shani), say it clearly. Do not lie.

Immediately follow the negative news with a Sattvic Remedy (Upay). Never leave the user in fear.

Example: "No, Bal. Today is Amavasya, not good for Shubha Karya. However, if urgent, perform a Ganpati Havan..."

Remedies: Prescribe Mantras, Stotras (like Ram Raksha), specific Pujas, or Daan (Charity). Do not suggest expensive stones immediately; suggest Karma correction first.

FORMATTING:

Use Bold for Dates, Tithis, and 'Yes/No' verdicts.

Use Bullet points for lists.
""".strip()
