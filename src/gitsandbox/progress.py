"""Key-value persistence for completed challenge identifiers."""

from __future__ import annotations

import logging
from pathlib import Path

from .constants import PROGRESS_KEY
from .file_manager import FileManager

logger = logging.getLogger(__name__)


class ProgressStore:
    """Flat YAML key-value file holding the completed challenge id set."""

    def __init__(
        self,
        path: Path | str,
        key: str = PROGRESS_KEY,
        file_manager: FileManager | None = None,
    ) -> None:
        self.path = Path(path).expanduser()
        self.key = key
        self.file_manager = file_manager or FileManager()

    def load(self) -> set[str]:
        values = self.file_manager.read_mapping(self.path).get(self.key)
        if not isinstance(values, list):
            if values is not None:
                logger.warning("Ignoring malformed progress entry in %s", self.path)
            return set()
        return {str(item) for item in values}

    def save(self, completed: set[str]) -> None:
        payload = self.file_manager.read_mapping(self.path)
        payload[self.key] = sorted(completed)
        self.file_manager.write_yaml(self.path, payload)
