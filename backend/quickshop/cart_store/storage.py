# Overview: Local durable cache for the guest cart.

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from .items import CartItem

logger = logging.getLogger(__name__)


class MemoryCartStorage:
    """Process-local storage; used in tests and for throwaway sessions."""

    def __init__(self, items: list[CartItem] | None = None):
        self._data = [item.to_dict() for item in (items or [])]

    def load(self) -> list[CartItem]:
        return [CartItem.from_dict(d) for d in self._data]

    def save(self, items: list[CartItem]) -> None:
        self._data = [item.to_dict() for item in items]


class JsonFileCartStorage:
    """
    Guest cart persisted as a JSON file so it survives restarts.

    Writes go to a temp file in the same directory and are moved into
    place, so a crash mid-write never leaves a truncated cart behind.
    An unreadable file is treated as an empty cart.
    """

    def __init__(self, path: str | os.PathLike):
        self.path = Path(path)

    def load(self) -> list[CartItem]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []

        try:
            data = json.loads(raw)
            return [CartItem.from_dict(d) for d in data.get("items", [])]
        except (ValueError, KeyError, TypeError, AttributeError):
            logger.warning("Ignoring unreadable cart cache at %s", self.path)
            return []

    def save(self, items: list[CartItem]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps({"items": [item.to_dict() for item in items]})
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".cart-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp, self.path)
        except OSError:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
