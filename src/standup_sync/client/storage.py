"""Local persistence for the client reconciler."""

import logging
from dataclasses import dataclass
from pathlib import Path

from pydantic import ValidationError

from standup_sync.client.reconciler import ReconcilerState

_logger = logging.getLogger(__name__)


@dataclass
class JsonFileClientStorage:
    """Keeps the reconciler state in a JSON file."""

    path: Path

    def load(self) -> ReconcilerState | None:
        """Return the saved state; unreadable files count as empty."""
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            return ReconcilerState.model_validate_json(raw)
        except ValidationError:
            _logger.warning("Discarding unreadable client state at %s", self.path)
            return None

    def save(self, state: ReconcilerState) -> None:
        """Write the state, replacing any previous file."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(state.model_dump_json(by_alias=True), encoding="utf-8")
        tmp_path.replace(self.path)

    def clear(self) -> None:
        """Delete the saved state."""
        self.path.unlink(missing_ok=True)
