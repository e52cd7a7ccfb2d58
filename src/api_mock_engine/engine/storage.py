"""Durable-storage hooks for the Resource Store.

A backend only has to ``load()`` the whole map once and ``save()`` a full
snapshot after each mutation.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol

from api_mock_engine.errors import StorageFailure

logger = logging.getLogger(__name__)


class StorageBackend(Protocol):
    def load(self) -> dict: ...

    def save(self, data: dict) -> None: ...


class MemoryStorage:
    """Keeps the last snapshot in process; handy for tests and dry runs."""

    def __init__(self, initial: dict | None = None):
        self.snapshot: dict = dict(initial or {})
        self.saves = 0

    def load(self) -> dict:
        return json.loads(json.dumps(self.snapshot))

    def save(self, data: dict) -> None:
        self.snapshot = json.loads(json.dumps(data))
        self.saves += 1


class JsonFileStorage:
    """One JSON file holding every storage key."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> dict:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise StorageFailure(f"Cannot read {self.path}: {e}") from e

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning("Ignoring corrupt state file %s: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring state file %s: top level is not an object", self.path)
            return {}
        return data

    def save(self, data: dict) -> None:
        try:
            payload = json.dumps(data, indent=2, ensure_ascii=False)
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp_name, self.path)
        except (OSError, TypeError, ValueError) as e:
            raise StorageFailure(f"Cannot write {self.path}: {e}") from e
