"""Challenge goals, goal evaluation and progress tracking."""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from .commands import execute_command
from .engine import SandboxEngine
from .errors import ErrorCode, SandboxError
from .file_manager import FileManager
from .models import OperationKind, OperationResult
from .progress import ProgressStore

logger = logging.getLogger(__name__)

DEFAULT_COMMIT_COUNT = 3


class GoalKind(str, Enum):
    MAKE_COMMIT = "make_commit"
    HAS_BRANCH = "has_branch"
    HEAD_ON_BRANCH = "head_on_branch"
    COMMIT_COUNT = "commit_count"
    BRANCH_COUNT = "branch_count"
    MERGED_BRANCH = "merged_branch"
    HAS_TAG = "has_tag"
    HAS_TAG_CONTAINING = "has_tag_containing"
    CHERRY_PICKED_COMMIT = "cherry_picked_commit"
    REBASED_BRANCH = "rebased_branch"


class Difficulty(str, Enum):
    EASY = "Easy"
    MEDIUM = "Medium"
    HARD = "Hard"


class ChallengeGoal(BaseModel):
    kind: GoalKind
    name: str = ""
    target: str = ""
    count: int = 0

    @property
    def description(self) -> str:
        kind = self.kind
        if kind == GoalKind.MAKE_COMMIT:
            return "Make at least one new commit"
        if kind == GoalKind.HAS_BRANCH:
            return f"Create a branch named '{self.name}'"
        if kind == GoalKind.HEAD_ON_BRANCH:
            return f"Checkout the '{self.name}' branch"
        if kind == GoalKind.COMMIT_COUNT:
            return f"Have at least {self.count} commits in the repo"
        if kind == GoalKind.BRANCH_COUNT:
            return f"Have at least {self.count} branches"
        if kind == GoalKind.MERGED_BRANCH:
            return f"Merge '{self.name}' into '{self.target}'"
        if kind == GoalKind.HAS_TAG:
            return f"Create a tag named '{self.name}'"
        if kind == GoalKind.HAS_TAG_CONTAINING:
            return f"Create a tag containing '{self.name}'"
        if kind == GoalKind.CHERRY_PICKED_COMMIT:
            return "Cherry-pick a commit onto the current branch"
        return "Rebase any branch onto another"


class Challenge(BaseModel):
    id: str
    title: str
    description: str = ""
    difficulty: Difficulty = Difficulty.EASY
    goal: ChallengeGoal
    hints: list[str] = Field(default_factory=list)
    operations: list[str] = Field(default_factory=list)
    setup: list[str] = Field(default_factory=list)


def is_satisfied(goal: ChallengeGoal, engine: SandboxEngine) -> bool:
    """Evaluate ``goal`` against the current engine state."""
    kind = goal.kind
    if kind == GoalKind.MAKE_COMMIT:
        return len(engine.commits) > DEFAULT_COMMIT_COUNT
    if kind == GoalKind.HAS_BRANCH:
        return engine.get_branch(goal.name) is not None
    if kind == GoalKind.HEAD_ON_BRANCH:
        return engine.head_branch_name == goal.name
    if kind == GoalKind.COMMIT_COUNT:
        return len(engine.commits) >= goal.count
    if kind == GoalKind.BRANCH_COUNT:
        return len(engine.branches) >= goal.count
    if kind == GoalKind.MERGED_BRANCH:
        # Any merge commit naming the source counts, whatever its destination.
        return any(commit.is_merge and goal.name in commit.message for commit in engine.commits)
    if kind == GoalKind.HAS_TAG:
        return any(tag.name == goal.name for tag in engine.tags)
    if kind == GoalKind.HAS_TAG_CONTAINING:
        return any(goal.name in tag.name for tag in engine.tags)
    if kind == GoalKind.CHERRY_PICKED_COMMIT:
        return any("cherry-picked" in commit.message for commit in engine.commits)
    return any(operation.kind == OperationKind.REBASE for operation in engine.history)


def load_challenges(path: Path | str, file_manager: FileManager | None = None) -> list[Challenge]:
    """Load challenge definitions from a YAML list (or a ``challenges:`` mapping)."""
    manager = file_manager or FileManager()
    source = Path(path).expanduser()
    loaded: Any = manager.read_yaml(source)
    if loaded is None:
        raise SandboxError(
            ErrorCode.NOT_FOUND,
            f"Challenge file not found: {source}",
            "Pass an existing YAML file with challenge definitions.",
        )
    if isinstance(loaded, dict):
        loaded = loaded.get("challenges", [])
    if not isinstance(loaded, list):
        raise SandboxError(
            ErrorCode.INVALID_INPUT,
            f"Challenge file {source} must contain a list of challenges",
        )
    try:
        challenges = [Challenge.model_validate(item) for item in loaded]
    except ValidationError as exc:
        raise SandboxError(
            ErrorCode.INVALID_INPUT,
            f"Invalid challenge definition in {source}",
            "Each challenge needs id, title and goal.kind.",
            {"errors": exc.errors(include_context=False, include_input=False)},
        ) from exc
    ids = [challenge.id for challenge in challenges]
    if len(ids) != len(set(ids)):
        raise SandboxError(
            ErrorCode.DUPLICATE_NAME,
            f"Duplicate challenge ids in {source}",
        )
    return challenges


class ChallengeTracker:
    """Runs challenges on a dedicated sandbox and records completions."""

    def __init__(
        self,
        challenges: list[Challenge],
        store: ProgressStore | None = None,
        engine: SandboxEngine | None = None,
    ) -> None:
        self.challenges = list(challenges)
        self.store = store
        self.engine = engine or SandboxEngine()
        self.current: Challenge | None = None
        self.is_complete = False
        self.hints_revealed = 0
        self.completed_ids: set[str] = store.load() if store else set()
        self.engine.subscribe(self._on_result)

    def get(self, challenge_id: str) -> Challenge:
        for challenge in self.challenges:
            if challenge.id == challenge_id:
                return challenge
        raise SandboxError(
            ErrorCode.NOT_FOUND,
            f"Challenge '{challenge_id}' not found",
            "List challenges to see available ids.",
        )

    def is_unlocked(self, challenge: Challenge) -> bool:
        ids = [item.id for item in self.challenges]
        if challenge.id not in ids:
            return False
        index = ids.index(challenge.id)
        if index == 0:
            return True
        return ids[index - 1] in self.completed_ids

    def start(self, challenge: Challenge) -> None:
        """Reset the sandbox and replay the challenge's starting commands."""
        self.current = None
        self.engine.reset_to_default()
        for line in challenge.setup:
            result = execute_command(self.engine, line)
            if not result.ok:
                logger.warning(
                    "Setup command %r for challenge %s failed: %s",
                    line,
                    challenge.id,
                    result.message,
                )
        self.current = challenge
        self.is_complete = False
        self.hints_revealed = 0

    def check_goal(self) -> bool:
        """Mark the running challenge complete once its goal holds."""
        challenge = self.current
        if challenge is None or self.is_complete:
            return self.is_complete
        if is_satisfied(challenge.goal, self.engine):
            self.is_complete = True
            self.completed_ids.add(challenge.id)
            if self.store:
                self.store.save(self.completed_ids)
        return self.is_complete

    def _on_result(self, result: OperationResult) -> None:
        if result.ok and result.operation is not None:
            self.check_goal()

    def reveal_next_hint(self) -> str | None:
        challenge = self.current
        if challenge is None or self.hints_revealed >= len(challenge.hints):
            return None
        self.hints_revealed += 1
        return challenge.hints[self.hints_revealed - 1]

    def next_challenge(self) -> Challenge | None:
        if self.current is None:
            return None
        ids = [item.id for item in self.challenges]
        index = ids.index(self.current.id)
        if index + 1 < len(self.challenges):
            return self.challenges[index + 1]
        return None

    def reset(self) -> None:
        self.current = None
        self.is_complete = False
        self.hints_revealed = 0
        self.engine.reset_to_default()
