"""Prompt template loading."""
from __future__ import annotations

from pathlib import Path
from typing import Dict
import threading

from carfinder.errors import TemplateNotFoundError

JSON_GUARD = "json-guard.md"


class PromptLibrary:
    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)
        self._cache: Dict[str, str] = {}
        self._lock = threading.Lock()

    def load(self, name: str) -> str:
        with self._lock:
            if name in self._cache:
                return self._cache[name]
        path = self.directory / name
        try:
            text = path.read_text(encoding="utf-8").lstrip("\ufeff")
        except OSError as exc:
            raise TemplateNotFoundError(f"Unable to load prompt template: {name}") from exc
        with self._lock:
            self._cache[name] = text
        return text

    def render(self, name: str, **values: object) -> str:
        """Load ``name`` and substitute ``${key}`` placeholders."""
        text = self.load(name)
        for key, value in values.items():
            text = text.replace("${" + key + "}", str(value))
        return text

    def json_guard(self) -> str:
        return self.load(JSON_GUARD)
