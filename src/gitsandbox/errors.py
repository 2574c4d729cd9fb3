"""Domain-specific error types for sandbox operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Closed set of failure kinds reported by the sandbox."""

    EMPTY_INPUT = "EMPTY_INPUT"
    DUPLICATE_NAME = "DUPLICATE_NAME"
    NOT_FOUND = "NOT_FOUND"
    NO_OP = "NO_OP"
    PROTECTED_BRANCH = "PROTECTED_BRANCH"
    STASH_CONFLICT = "STASH_CONFLICT"
    INVALID_INPUT = "INVALID_INPUT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


@dataclass
class SandboxError(Exception):
    """Structured exception carrying a stable error contract."""

    code: ErrorCode
    message: str
    suggestion: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.message

    def to_payload(self) -> dict[str, Any]:
        return {
            "status": "error",
            "error_code": self.code.value,
            "message": self.message,
            "suggestion": self.suggestion or "",
            "details": self.details,
        }
