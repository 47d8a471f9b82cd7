"""
Poll generator credential, kept on the host's machine.

The key is opaque: the format check only warns, it never rejects.
"""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional

from livepoll.core.config import get_settings
from livepoll.core.errors import ValidationError
from livepoll.services.notifications import NotificationCenter

logger = logging.getLogger(__name__)

_KNOWN_PREFIXES = ("sk-or-", "sk-", "gsk_")


def looks_like_api_key(key: str) -> bool:
    return key.startswith(_KNOWN_PREFIXES) and len(key) > 20


class CredentialStore:
    def __init__(self, path: Optional[str] = None, *, notifications: Optional[NotificationCenter] = None) -> None:
        self.path = Path(path or get_settings().credential_path).expanduser()
        self.notices = notifications

    def _notify(self, level: str, message: str) -> None:
        if self.notices is not None:
            self.notices.notify(level, message)  # type: ignore[arg-type]

    def load(self) -> Optional[str]:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("credential_load_failed path=%s", self.path, exc_info=True)
            return None
        key = str(data.get("api_key") or "").strip() if isinstance(data, dict) else ""
        return key or None

    def is_configured(self) -> bool:
        return self.load() is not None

    def save(self, api_key: str) -> str:
        key = (api_key or "").strip()
        if not key:
            self._notify("error", "Please enter a valid API key")
            raise ValidationError("API key is empty")
        if not looks_like_api_key(key):
            logger.warning("credential_format_unrecognized prefix=%s", key[:4])
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps({"api_key": key}), encoding="utf-8")
        try:
            os.chmod(self.path, 0o600)
        except OSError:
            logger.debug("credential_chmod_failed path=%s", self.path)
        self._notify("success", "API key configured successfully")
        return key

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()
        self._notify("info", "API key cleared")
