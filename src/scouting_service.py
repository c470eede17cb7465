# --- scouting_service.py ---
import json
import logging
import os
import threading

import requests

logger = logging.getLogger(__name__)

FALLBACK_REPORT = "Scout unavailable - but data suggests this player is a game changer."
EMPTY_REPORT = "No scouting report available."

DEFAULT_MODEL = "gemini-1.5-flash"
DEFAULT_TIMEOUT_SECONDS = 10
API_URL_TEMPLATE = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"


def build_prompt(player):
    stats = dict(player.stats)
    return (
        f"Provide a brief, witty, 2-sentence scouting report for the player {player.name}. "
        f"Stats: {json.dumps(stats)}. Role: {player.role.value}. "
        "Keep it energetic and professional for a cricket auction."
    )


class ScoutingService:
    """Text-generation client for player scouting blurbs.

    Never raises to the caller: every failure turns into FALLBACK_REPORT.
    Reports are cached per player id for the session.
    """

    def __init__(self, api_key=None, model=None, timeout=None, session=None):
        self.api_key = api_key if api_key is not None else (os.environ.get("SCOUT_API_KEY") or os.environ.get("API_KEY", ""))
        self.model = model or os.environ.get("SCOUT_MODEL", DEFAULT_MODEL)
        if timeout is None:
            try:
                timeout = float(os.environ.get("SCOUT_TIMEOUT", DEFAULT_TIMEOUT_SECONDS))
            except ValueError:
                timeout = DEFAULT_TIMEOUT_SECONDS
        self.timeout = timeout
        self.http = session or requests
        self._cache = {}
        self._cache_lock = threading.Lock()

    def generate_report(self, player):
        with self._cache_lock:
            cached = self._cache.get(player.id)
        if cached is not None:
            return cached

        if not self.api_key:
            logger.warning("No scouting API key configured; using fallback report for %s", player.name)
            return FALLBACK_REPORT

        try:
            response = self.http.post(
                API_URL_TEMPLATE.format(model=self.model),
                params={"key": self.api_key},
                json={
                    "contents": [{"parts": [{"text": build_prompt(player)}]}],
                    "generationConfig": {"temperature": 0.7},
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
            text = _extract_text(response.json())
        except (requests.exceptions.RequestException, ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
            logger.error("Scouting report failed for %s: %s", player.name, e)
            return FALLBACK_REPORT

        report = text.strip() or EMPTY_REPORT
        if text.strip():
            with self._cache_lock:
                self._cache[player.id] = report
        return report

    def request_report(self, player, callback):
        """Fire-and-forget: runs generate_report on a daemon thread and hands the text to callback."""
        def worker():
            report = self.generate_report(player)
            try:
                callback(player, report)
            except Exception as e:
                logger.exception("Scouting callback failed for %s: %s", player.name, e)

        thread = threading.Thread(target=worker, name=f"scout-{player.id}", daemon=True)
        thread.start()
        return thread


def _extract_text(payload):
    if not isinstance(payload, dict):
        raise ValueError(f"Unexpected scouting reply: {type(payload).__name__}")
    candidates = payload.get("candidates") or []
    if not isinstance(candidates, list):
        raise ValueError("Scouting reply 'candidates' is not a list")
    if not candidates:
        return ""
    content = candidates[0]["content"] if isinstance(candidates[0], dict) else None
    if not isinstance(content, dict):
        raise ValueError("Scouting reply has no content object")
    parts = content.get("parts") or []
    if not isinstance(parts, list) or not all(isinstance(part, dict) for part in parts):
        raise ValueError("Scouting reply parts are malformed")
    return "".join(str(part.get("text", "")) for part in parts)
