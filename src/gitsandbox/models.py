"""Pydantic models for the sandbox graph, history log, and operation results."""

from __future__ import annotations

import shlex
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from .constants import REMOTE_NAME, SHORT_HASH_LENGTH


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _double_quote(text: str) -> str:
    """Wrap ``text`` in double quotes so ``shlex.split`` reads it back unchanged."""
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class Commit(BaseModel):
    """Commit node. Content is fixed; position fields are recomputed by layout."""

    id: str
    message: str
    parent_ids: list[str] = Field(default_factory=list)
    branch_name: str
    timestamp: datetime = Field(default_factory=_utcnow)
    lane_index: int = 0
    row: int = 0

    @property
    def short_hash(self) -> str:
        return self.id[:SHORT_HASH_LENGTH]

    @property
    def is_merge(self) -> bool:
        return len(self.parent_ids) > 1


class Branch(BaseModel):
    id: str
    name: str
    head_commit_id: str
    color: str
    lane_index: int
    is_remote: bool = False


class Tag(BaseModel):
    id: str
    name: str
    commit_id: str


class OperationKind(str, Enum):
    COMMIT = "commit"
    BRANCH = "branch"
    CHECKOUT = "checkout"
    MERGE = "merge"
    REBASE = "rebase"
    RESET = "reset"
    CHERRY_PICK = "cherryPick"
    TAG = "tag"
    DELETE_BRANCH = "deleteBranch"
    STASH = "stash"
    STASH_POP = "stashPop"
    FETCH = "fetch"
    PUSH = "push"
    PULL = "pull"


class Feedback(str, Enum):
    """Presentation feedback hint attached to each operation outcome."""

    LIGHT = "light"
    MEDIUM = "medium"
    HEAVY = "heavy"
    SOFT = "soft"
    RIGID = "rigid"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class Operation(BaseModel):
    """One entry of the command history log."""

    kind: OperationKind
    argument: str = ""
    remote: str = ""

    @property
    def command(self) -> str:
        """Render the equivalent git command line."""
        kind = self.kind
        if kind == OperationKind.COMMIT:
            return f"git commit -m {_double_quote(self.argument)}"
        if kind == OperationKind.BRANCH:
            return f"git branch {shlex.quote(self.argument)}"
        if kind == OperationKind.CHECKOUT:
            return f"git checkout {shlex.quote(self.argument)}"
        if kind == OperationKind.MERGE:
            return f"git merge {shlex.quote(self.argument)}"
        if kind == OperationKind.REBASE:
            return f"git rebase {shlex.quote(self.argument)}"
        if kind == OperationKind.RESET:
            return f"git reset --hard {self.argument[:SHORT_HASH_LENGTH]}"
        if kind == OperationKind.CHERRY_PICK:
            return f"git cherry-pick {self.argument[:SHORT_HASH_LENGTH]}"
        if kind == OperationKind.TAG:
            return f"git tag {shlex.quote(self.argument)}"
        if kind == OperationKind.DELETE_BRANCH:
            return f"git branch -d {shlex.quote(self.argument)}"
        if kind == OperationKind.STASH:
            return "git stash"
        if kind == OperationKind.STASH_POP:
            return "git stash pop"
        if kind == OperationKind.FETCH:
            return f"git fetch {self.remote or REMOTE_NAME}"
        if kind == OperationKind.PUSH:
            return f"git push {self.remote or REMOTE_NAME} {shlex.quote(self.argument)}"
        return f"git pull {self.remote or REMOTE_NAME} {shlex.quote(self.argument)}"


class RemoteState(BaseModel):
    """Simulated remote: per-branch tracking pointers plus sync counters."""

    name: str = REMOTE_NAME
    branches: dict[str, str] = Field(default_factory=dict)
    ahead: int = 0
    behind: int = 0
    has_fetched: bool = False


class Point(BaseModel):
    x: float
    y: float


class OperationResult(BaseModel):
    """Outcome of one engine call, broadcast to subscribers."""

    status: Literal["success", "error"]
    message: str = ""
    error_code: str = ""
    operation: Operation | None = None
    command: str = ""
    commit_id: str = ""
    head_branch: str = ""
    feedback: tuple[Feedback, ...] = ()
    details: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "success"


class CommitView(BaseModel):
    id: str
    short_hash: str
    message: str
    parent_ids: list[str]
    branch_name: str
    timestamp: datetime
    lane_index: int
    row: int
    position: Point
    color: str


class RepositorySnapshot(BaseModel):
    """Read-only export of everything a presentation layer observes."""

    head_branch: str
    commits: list[CommitView] = Field(default_factory=list)
    branches: list[Branch] = Field(default_factory=list)
    tags: list[Tag] = Field(default_factory=list)
    history: list[str] = Field(default_factory=list)
    error_message: str | None = None
    error_code: str | None = None
    newly_added_commit_id: str | None = None
    stashed_work: str | None = None
    remote: RemoteState = Field(default_factory=RemoteState)
    graph_width: float = 0
    graph_height: float = 0
