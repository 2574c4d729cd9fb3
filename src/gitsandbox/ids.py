"""Commit and entity identifier generation."""

from __future__ import annotations

import uuid
from itertools import count
from typing import Callable

from .constants import SHORT_HASH_LENGTH

IdFactory = Callable[[], str]


def make_id() -> str:
    """Return a fresh 32-char lowercase hex identifier."""
    return uuid.uuid4().hex


def short_hash(commit_id: str) -> str:
    return commit_id[:SHORT_HASH_LENGTH]


class SequentialIds:
    """Deterministic id factory whose short hash is the hex counter.

    Useful for scripted sandboxes and tests where stable ids are wanted.
    """

    def __init__(self, start: int = 1, width: int = 40) -> None:
        self._counter = count(start)
        self._width = width

    def __call__(self) -> str:
        return format(next(self._counter), "07x").ljust(self._width, "0")
