"""
Locally persisted user preferences (API keys, endpoints, test-mode flags)
"""

import json
import os
from pathlib import Path
from typing import Dict, Optional

from consult_assist.core.logging import get_logger

logger = get_logger(__name__)

# Preference keys
OPENAI_API_KEY = "OPENAI_API_KEY"
LLM_BASE_URL = "LLM_BASE_URL"
LLM_MODEL = "LLM_MODEL"
AUDIO_MODEL = "AUDIO_MODEL"
DASHSCOPE_API_KEY = "DASHSCOPE_API_KEY"
SPEECH_TEST_MODE = "SPEECH_TEST_MODE"


class UserPreferences:
    """Small JSON-file key/value store for values the user sets in the client."""

    def __init__(self, path: Optional[str] = None, values: Optional[Dict[str, str]] = None):
        self.path = Path(path).expanduser() if path else None
        if values is not None:
            self._values = dict(values)
        else:
            self._values = self._load()

    def _load(self) -> Dict[str, str]:
        if self.path is None or not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable preferences file {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring preferences file {self.path}: top level is not an object")
            return {}
        return {str(k): str(v) for k, v in data.items() if v is not None}

    def _save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(self._values, ensure_ascii=False, indent=2), encoding="utf-8")
        os.replace(tmp_path, self.path)

    def get(self, key: str) -> Optional[str]:
        value = self._values.get(key)
        return value if value else None

    def set(self, key: str, value: str) -> None:
        self._values[key] = value
        self._save()

    def remove(self, key: str) -> None:
        if self._values.pop(key, None) is not None:
            self._save()
