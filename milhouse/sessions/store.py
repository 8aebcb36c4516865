import json
import os
from collections.abc import Callable
from pathlib import Path

from pydantic import ValidationError

from milhouse.logging import get_logger
from milhouse.sessions.models import SessionRecord

_logger = get_logger(__name__)


class SessionRegistry:
    """Flat JSON list of session records, oldest first.

    Every mutation re-reads the whole document, applies the change and writes
    it back. The supervisor is the only writer.
    """

    def __init__(self, path: Path):
        self.path = path

    def _load(self) -> list[SessionRecord]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(raw, list):
                raise ValueError(f"expected a list, got {type(raw).__name__}")
            return [SessionRecord.model_validate(item) for item in raw]
        except (OSError, ValueError, ValidationError):
            _logger.warning("Session registry unreadable, treating as empty", path=str(self.path), exc_info=True)
            return []

    def _save(self, records: list[SessionRecord]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps([r.to_dict() for r in records], indent=2), encoding="utf-8")
        os.replace(tmp, self.path)

    def _mutate(self, update: Callable[[list[SessionRecord]], list[SessionRecord]]) -> None:
        self._save(update(self._load()))

    def append(self, record: SessionRecord) -> None:
        self._mutate(lambda records: [*records, record])

    def update_by_id(self, session_id: str, record: SessionRecord) -> None:
        self._mutate(lambda records: [record if r.id == session_id else r for r in records])

    def list_all(self) -> list[SessionRecord]:
        return self._load()
