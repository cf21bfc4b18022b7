# tools/credentials.py
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)

STORAGE_KEY = "timemachine_api_key"


def _default_path() -> Path:
    override = os.getenv("TIMEMACHINE_CREDENTIALS", "").strip()
    if override:
        return Path(override).expanduser()
    return Path.home() / ".timemachine" / "credentials.json"


class CredentialStore:
    """
    Holds the single Gemini API key under STORAGE_KEY in a small JSON file.
    get() falls back to GEMINI_API_KEY from the environment / .env.
    """

    def __init__(self, path: Optional[Path] = None, env_var: str = "GEMINI_API_KEY"):
        self.path = Path(path) if path else _default_path()
        self.env_var = env_var

    def _read(self) -> Dict[str, str]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning("credential file %s unreadable: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data), encoding="utf-8")
        try:
            os.chmod(self.path, 0o600)
        except OSError:
            pass

    def get(self) -> Optional[str]:
        key = (self._read().get(STORAGE_KEY) or "").strip()
        if key:
            return key
        return (os.getenv(self.env_var) or "").strip() or None

    def set(self, key: str) -> None:
        key = (key or "").strip()
        if not key:
            raise ValueError("empty API key")
        data = self._read()
        data[STORAGE_KEY] = key
        self._write(data)

    def clear(self) -> None:
        data = self._read()
        if data.pop(STORAGE_KEY, None) is not None:
            self._write(data)
        # a rejected key from the environment must not come back on the next get()
        os.environ.pop(self.env_var, None)
