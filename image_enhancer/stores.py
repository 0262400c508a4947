"""
Small persisted user preferences: the enhancement credit counter and the
UI language. Each store loads once and writes only when its value changes.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Literal

import structlog

log = structlog.get_logger()

Language = Literal["en", "ar"]
LANGUAGES = ("en", "ar")


class _JsonValueStore:
    def __init__(self, path: Path | str):
        self.path = Path(path)

    def _read(self) -> Any:
        if not self.path.exists():
            return None
        try:
            return json.loads(self.path.read_text(encoding="utf-8") or "null")
        except (OSError, ValueError) as exc:
            log.warning("store_unreadable", path=str(self.path), err=str(exc))
            return None

    def _write(self, value: Any) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(value), encoding="utf-8")


class TokenStore(_JsonValueStore):
    DEFAULT = 1

    def __init__(self, path: Path | str):
        super().__init__(path)
        self._value = self.load()

    @property
    def value(self) -> int:
        return self._value

    def load(self) -> int:
        raw = self._read()
        if isinstance(raw, bool) or not isinstance(raw, (int, str)):
            return self.DEFAULT
        try:
            return max(0, int(raw))
        except ValueError:
            return self.DEFAULT

    def save(self, value: int) -> None:
        value = max(0, int(value))
        if value == self._value and self.path.exists():
            return
        self._value = value
        self._write(value)
        log.debug("tokens_saved", tokens=value)

    def increment(self, amount: int = 1) -> int:
        self.save(self._value + amount)
        return self._value

    def decrement(self, amount: int = 1) -> int:
        self.save(self._value - amount)
        return self._value


class LanguageStore(_JsonValueStore):
    DEFAULT: Language = "en"

    def __init__(self, path: Path | str):
        super().__init__(path)
        self._value: Language = self.load()

    @property
    def value(self) -> Language:
        return self._value

    def load(self) -> Language:
        raw = self._read()
        return raw if raw in LANGUAGES else self.DEFAULT

    def save(self, value: Language) -> None:
        if value not in LANGUAGES:
            raise ValueError(f"unsupported language: {value!r}")
        if value == self._value and self.path.exists():
            return
        self._value = value
        self._write(value)
        log.debug("language_saved", language=value)

    def toggle(self) -> Language:
        self.save("ar" if self._value == "en" else "en")
        return self._value
