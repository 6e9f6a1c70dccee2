"""Persisted game history.

Finished games are stored as a JSON array of GameRecord dicts in
data/history.json, newest last. Writes are atomic (temp file +
os.replace()). A missing or corrupt file reads as an empty history.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict
from pathlib import Path

from pgchess.models import GameRecord

logger = logging.getLogger(__name__)

_RECORD_KEYS = ("pgn", "date", "white", "black", "result")


class HistoryStore:
    """JSON-file store of finished games."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> list[GameRecord]:
        """Read all records.

        Returns:
            List of GameRecords; empty if the file is missing or unreadable.
        """
        if not self._path.exists():
            return []
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Could not read game history %s: %s", self._path, exc)
            return []
        if not isinstance(data, list):
            logger.warning("Game history %s is not a JSON array, ignoring", self._path)
            return []

        records = []
        for entry in data:
            if isinstance(entry, dict) and all(k in entry for k in _RECORD_KEYS):
                records.append(GameRecord(**{k: str(entry[k]) for k in _RECORD_KEYS}))
        return records

    def append(self, record: GameRecord) -> list[GameRecord]:
        """Add a record and persist.

        Returns:
            The full history after appending.
        """
        records = self.load()
        records.append(record)
        self._write(records)
        return records

    def get(self, index: int) -> GameRecord:
        """Return a record by index (negative indices count from the end).

        Raises:
            IndexError: If there is no such record.
        """
        records = self.load()
        try:
            return records[index]
        except IndexError:
            raise IndexError(f"No game at history index {index}") from None

    def clear(self) -> None:
        """Delete the whole history."""
        if self._path.exists():
            self._path.unlink()

    def _write(self, records: list[GameRecord]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(".json.tmp")
        tmp.write_text(
            json.dumps([asdict(r) for r in records], indent=2, ensure_ascii=False),
            encoding="utf-8",
        )
        os.replace(tmp, self._path)
