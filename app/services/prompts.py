"""
PROMPT COMPOSER MODULE
======================

Builds the instruction texts sent to Gemini. Every builder is pure: it takes the
language mode and the grounded dates and returns text, no I/O. The persona
instruction must be rebuilt for every request because the date changes daily.

BUILDERS:
  build_interpreter_instruction(lang, dates) - stage 1: rewrite the user's message
      into a date-grounded, intent-expanded query. Output is the query only.
  build_persona_instruction(lang, dates)     - stage 2: persona document + time
      grounding + language lock + behaviour rules, in that order.
  build_translation_instruction()            - stage 3: faithful Marathi translation
      of a reply that came back in English while in Marathi mode.
  quick_action_prompts(dates)                - one-tap prompts offered by the UI.
"""

from typing import Dict, List

from app.models import LanguageMode
from app.utils.time_info import GroundedDates
from config import GURUJI_SYSTEM_PROMPT


# ==============================================================================
# STAGE 1: INTERPRETER
# ==============================================================================

# (trigger words, meaning) for relative dates, in roman Marathi, Devanagari and English.
RELATIVE_DATE_LEXICON = [
    (("udya", "उद्या", "tomorrow"), "Tomorrow"),
    (("aaj", "आज", "today"), "Today"),
    (("parva", "परवा", "day after tomorrow"), "Day after tomorrow"),
]

# (trigger words, expansion) for domain shorthand.
DOMAIN_EXPANSIONS = [
    (("agnivas", "अग्निवास"),
     '"Calculate Agni Vas for the referenced date and tell if Havan/Hom is allowed. Be strict."'),
    (("panchang", "पंचांग"),
     "include tithi, nakshatra, yoga, karan, rahukaal and verdict."),
    (("muhurta", "मुहूर्त"),
     "ask for shubha/ashubha and avoid periods."),
]


def _quoted(words) -> str:
    return " / ".join(f'"{w}"' for w in words)


def build_interpreter_instruction(lang: LanguageMode, dates: GroundedDates) -> str:
    tz = dates.tz_name
    date_rules = "\n".join(
        f"- {_quoted(words)} => {meaning} ({tz})" for words, meaning in RELATIVE_DATE_LEXICON
    )
    expansions = "\n".join(f"- {_quoted(words)} => {text}" for words, text in DOMAIN_EXPANSIONS)

    return f"""
You are a query interpreter for a Jyotish assistant app.
Your job: rewrite the user's message into a clear, complete request for an astrologer.

TIME CONTEXT ({tz}):
- Today ({tz}): {dates.today_human} ({dates.today_iso})
- Tomorrow ({tz}): {dates.tomorrow_human} ({dates.tomorrow_iso})
- Day after tomorrow ({tz}): {dates.day_after_human} ({dates.day_after_iso})

RELATIVE DATE RULES:
{date_rules}
If no date words are used, keep it as is.

DOMAIN EXPANSION RULES:
{expansions}

LANGUAGE MODE:
- The user interface language is: {lang.label}.
But your output must be ONLY the rewritten query in the same language as the user's message.
(If user used Marathi/roman-Marathi, output in Marathi/roman-Marathi; if user used English, output in English.)

OUTPUT RULES:
- Output ONLY the rewritten query string.
- No JSON. No bullet points. No explanations.
""".strip()


# ==============================================================================
# STAGE 2: PERSONA
# ==============================================================================

def temporal_grounding_clause(dates: GroundedDates) -> str:
    tz = dates.tz_name
    return f"""
TIME GROUNDING ({tz}):
- Today's date ({tz}) is **{dates.today_human}** ({dates.today_iso})
- If the user says "udya/उद्या/tomorrow", treat it as tomorrow in {tz} ({dates.tomorrow_iso}).
- If the user says "parva/परवा/day after tomorrow", treat it as day after tomorrow in {tz} ({dates.day_after_iso}).
""".strip()


def language_lock_clause(lang: LanguageMode) -> str:
    if lang is LanguageMode.MARATHI:
        return """
CRITICAL LANGUAGE RULE:
- Respond ONLY in Marathi (प्रमाण मराठी). Do NOT respond in English.
- Use Devanagari script unless user uses roman Marathi; if user uses roman Marathi, you may reply in roman Marathi but still Marathi language.
""".strip()
    return """
CRITICAL LANGUAGE RULE:
- Respond ONLY in English. Do NOT use Marathi.
- Use Vedic terms naturally (Tithi, Nakshatra, Rahukaal, Upay, Graha, Shanti, etc.).
""".strip()


BEHAVIOR_RULES = """
CRITICAL BEHAVIOR RULES:
- Never break character. Never say you are an AI.
- Start replies with "Namaskar Bal" or "Hari Om".
- Always give a clear **Yes/No** verdict when user asks permission-like questions.
- If answer is negative, immediately provide a simple Sattvic Upay.
- Keep answers practical: 6-14 lines ideally.
- Use **Bold** for dates/tithi/verdict and use bullet points for lists.
""".strip()


def build_persona_instruction(lang: LanguageMode, dates: GroundedDates) -> str:
    """Persona document, then time grounding, language lock and behaviour rules."""
    parts = [
        GURUJI_SYSTEM_PROMPT,
        temporal_grounding_clause(dates),
        language_lock_clause(lang),
        BEHAVIOR_RULES,
    ]
    return "\n\n".join(parts)


# ==============================================================================
# STAGE 3: TRANSLATION
# ==============================================================================

# Only Marathi mode has a script check, so Marathi is the only translation target.
TRANSLATION_TARGET = "pure, formal Marathi (प्रमाण मराठी)"


def build_translation_instruction() -> str:
    return f"""
Translate the assistant response into {TRANSLATION_TARGET}.
Rules:
- Keep the meaning identical.
- Preserve **bold** markers exactly.
- Preserve bullet lists and line breaks.
- Do NOT add extra content.
Output ONLY the translated text.
""".strip()


# ==============================================================================
# QUICK ACTIONS
# ==============================================================================

def quick_action_prompts(dates: GroundedDates) -> List[Dict[str, str]]:
    """One-tap consultation prompts, grounded on today's date."""
    today = dates.today_iso
    return [
        {
            "id": "panchang",
            "label": "Today's Panchang",
            "prompt": f"Give today's Panchang for {today} as per Ruikar and Date Panchang. Mention tithi, nakshatra, yoga, karan, rahukaal, and a clear Shubha/Ashubha verdict.",
        },
        {
            "id": "agni",
            "label": "Agni Vas Check",
            "prompt": f"Calculate Agni Vas for today {today}. Is it on Prithvi? Can I do Havan? Be strict.",
        },
        {
            "id": "vivah",
            "label": "Vivah Muhurta",
            "prompt": "List Vivah Muhurtas for the next 3 months based on Date Panchang. Highlight days to avoid due to Guru/Shukra Ast.",
        },
        {
            "id": "satyanarayan",
            "label": "Satyanarayan Dates",
            "prompt": "List upcoming Purnima and Sankashti Chaturthi dates suitable for Satyanarayan Pooja.",
        },
        {
            "id": "shanti",
            "label": "Shanti Muhurta",
            "prompt": "Suggest Shanti Muhurtas in next 30 days for Graha Shanti and home puja. Mention days to avoid and give simple upay.",
        },
    ]
