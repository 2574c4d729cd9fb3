"""Low-level file system helpers used for progress and scenario files."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from .errors import ErrorCode, SandboxError

logger = logging.getLogger(__name__)


class FileManager:
    """Wrapper around common text/YAML file operations."""

    def read_text(self, path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ""
        except PermissionError as exc:
            raise SandboxError(
                ErrorCode.INVALID_INPUT,
                f"Permission denied while reading {path}",
                "Check file permissions and try again.",
            ) from exc

    def write_yaml(self, path: Path, payload: dict[str, Any]) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("w", encoding="utf-8") as handle:
                yaml.safe_dump(payload, handle, sort_keys=False, allow_unicode=False)
        except PermissionError as exc:
            raise SandboxError(
                ErrorCode.INVALID_INPUT,
                f"Permission denied while writing {path}",
                "Check directory permissions and try again.",
            ) from exc

    def read_yaml(self, path: Path) -> Any:
        """Load a YAML document; missing files yield ``None``."""
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as handle:
                return yaml.safe_load(handle)
        except PermissionError as exc:
            raise SandboxError(
                ErrorCode.INVALID_INPUT,
                f"Permission denied while reading {path}",
                "Check file permissions and try again.",
            ) from exc
        except yaml.YAMLError as exc:
            raise SandboxError(
                ErrorCode.INVALID_INPUT,
                f"Invalid YAML in {path}",
                "Fix the file syntax and try again.",
                {"error": str(exc)},
            ) from exc

    def read_mapping(self, path: Path) -> dict[str, Any]:
        """Load a YAML mapping, treating anything else as empty."""
        try:
            loaded = self.read_yaml(path)
        except SandboxError as exc:
            logger.warning("Ignoring unreadable file %s: %s", path, exc.message)
            return {}
        if isinstance(loaded, dict):
            return loaded
        return {}
