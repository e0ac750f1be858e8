"""
LANGUAGE CHECK UTILITY
======================

Cheap heuristic that tells whether a reply is in the wrong language for the
active mode. Used after the persona call: in Marathi mode a reply made almost
entirely of Latin letters is treated as English and sent for translation.

The check is a small strategy object so the thresholds can be swapped or tested
on their own. Only Marathi mode has a script expectation; English replies are
never flagged.
"""

import re
from typing import Protocol

from app.models import LanguageMode
from config import LATIN_LETTER_THRESHOLD, SCRIPT_CHAR_THRESHOLD

DEVANAGARI_RE = re.compile(r"[\u0900-\u097F]")
LATIN_RE = re.compile(r"[A-Za-z]")


class LanguageDetector(Protocol):
    def looks_wrong_language(self, text: str, mode: LanguageMode) -> bool:
        ...


class ScriptRatioDetector:
    """
    Flags a Marathi-mode reply when Latin letters exceed `max_latin` and
    Devanagari characters stay below `min_script`.
    """

    def __init__(self, max_latin: int = LATIN_LETTER_THRESHOLD, min_script: int = SCRIPT_CHAR_THRESHOLD):
        self.max_latin = max_latin
        self.min_script = min_script

    def looks_wrong_language(self, text: str, mode: LanguageMode) -> bool:
        if mode is not LanguageMode.MARATHI:
            return False
        s = text or ""
        script_count = len(DEVANAGARI_RE.findall(s))
        latin_count = len(LATIN_RE.findall(s))
        return latin_count > self.max_latin and script_count < self.min_script


def requires_script_check(mode: LanguageMode) -> bool:
    return mode is LanguageMode.MARATHI
