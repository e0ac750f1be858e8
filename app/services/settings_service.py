"""
SETTINGS SERVICE MODULE
=======================

Process-wide settings read at the start of every turn:

  - language mode: persisted to database/settings.json so it survives restarts.
  - API key: taken from GEMINI_API_KEY, or set at runtime; kept in memory only
    and only ever shown masked.
  - online flag: reported by the client through POST /connectivity.

The chat service never reads these mid-turn; it receives a TurnSettings
snapshot from snapshot().
"""

import json
import logging
import threading
from pathlib import Path

from app.models import LanguageMode, TurnSettings
from config import DEFAULT_LANGUAGE, GEMINI_API_KEY, SETTINGS_FILE

logger = logging.getLogger("GURUJI")


def mask_key(key: str) -> str:
    """Hide all but the last 4 characters of an API key."""
    if not key:
        return ""
    if len(key) <= 4:
        return "••••"
    return "••••••••••••••••" + key[-4:]


def _default_language() -> LanguageMode:
    try:
        return LanguageMode(DEFAULT_LANGUAGE)
    except ValueError:
        logger.warning("Unknown DEFAULT_LANGUAGE %r, using Marathi", DEFAULT_LANGUAGE)
        return LanguageMode.MARATHI


class SettingsService:

    def __init__(self, settings_file: Path = SETTINGS_FILE, api_key: str = GEMINI_API_KEY):
        self.settings_file = Path(settings_file)
        self._api_key = (api_key or "").strip()
        self._online = True
        self._language = self._load_language()
        self._lock = threading.Lock()

    def _load_language(self) -> LanguageMode:
        if not self.settings_file.exists():
            return _default_language()
        try:
            data = json.loads(self.settings_file.read_text(encoding="utf-8"))
            return LanguageMode(data.get("language", DEFAULT_LANGUAGE))
        except (OSError, ValueError, AttributeError) as e:
            logger.warning("Could not read settings file %s: %s", self.settings_file, e)
            return _default_language()

    def _save(self):
        self.settings_file.parent.mkdir(parents=True, exist_ok=True)
        self.settings_file.write_text(json.dumps({"language": self._language.value}, indent=2), encoding="utf-8")

    # ------------------------------------------------------------------------------
    # LANGUAGE
    # ------------------------------------------------------------------------------

    def get_language_mode(self) -> LanguageMode:
        return self._language

    def set_language_mode(self, mode: LanguageMode) -> bool:
        """Persist the mode. Returns True if it actually changed."""
        with self._lock:
            if mode == self._language:
                return False
            self._language = mode
            self._save()
        logger.info("Language mode set to %s", mode.label)
        return True

    # ------------------------------------------------------------------------------
    # CREDENTIAL
    # ------------------------------------------------------------------------------

    def get_credential(self) -> str:
        return self._api_key

    def set_credential(self, api_key: str):
        self._api_key = (api_key or "").strip()
        logger.info("API key updated (%s)", mask_key(self._api_key) or "cleared")

    def clear_credential(self):
        self.set_credential("")

    def masked_credential(self) -> str:
        return mask_key(self._api_key)

    # ------------------------------------------------------------------------------
    # CONNECTIVITY
    # ------------------------------------------------------------------------------

    def is_online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> bool:
        """Record connectivity. Returns True on an offline -> online transition."""
        came_online = online and not self._online
        self._online = online
        if came_online:
            logger.info("Connectivity restored")
        elif not online:
            logger.warning("Client reported offline")
        return came_online

    def snapshot(self) -> TurnSettings:
        return TurnSettings(language=self._language, credential=self._api_key, online=self._online)
