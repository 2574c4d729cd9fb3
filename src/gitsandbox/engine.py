"""Core sandbox engine implementing all repository operations."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from threading import RLock
from typing import Any, Callable

from .ancestry import ancestor_ids, unique_ancestors
from .constants import (
    ACCENT_COLOR,
    BRANCH_COLORS,
    CHERRY_PICK_SUFFIX,
    DEFAULT_BRANCH,
    MIN_ID_PREFIX_LENGTH,
    REMOTE_NAME,
    SEED_COMMIT_MESSAGES,
    STASH_FALLBACK_MESSAGE,
    STASH_PREFIX,
)
from .errors import ErrorCode, SandboxError
from .ids import IdFactory, make_id, short_hash
from .layout import DEFAULT_METRICS, LayoutMetrics, assign_rows, max_row
from .models import (
    Branch,
    Commit,
    CommitView,
    Feedback,
    Operation,
    OperationKind,
    OperationResult,
    Point,
    RepositorySnapshot,
    Tag,
)
from .remote import RemoteTracker

logger = logging.getLogger(__name__)

Listener = Callable[[OperationResult], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SandboxEngine:
    """One simulated repository: commit graph, branches, tags, log and remote.

    Every public operation validates its preconditions before touching any
    state. A rejected call only updates ``error_message``/``error_code`` and
    returns an error :class:`OperationResult`; it never raises.
    """

    def __init__(
        self,
        id_factory: IdFactory | None = None,
        clock: Callable[[], datetime] | None = None,
        metrics: LayoutMetrics | None = None,
        remote_name: str = REMOTE_NAME,
    ) -> None:
        self._lock = RLock()
        self._make_commit_id = id_factory or make_id
        self._now = clock or _utcnow
        self.metrics = metrics or DEFAULT_METRICS
        self.remote = RemoteTracker(remote_name)
        self._listeners: list[Listener] = []

        self.commits: list[Commit] = []
        self.branches: list[Branch] = []
        self.tags: list[Tag] = []
        self.head_branch_name = DEFAULT_BRANCH
        self.history: list[Operation] = []
        self.last_operation: Operation | None = None
        self.error_message: str | None = None
        self.error_code: ErrorCode | None = None
        self.newly_added_commit_id: str | None = None
        self.stashed_work: str | None = None
        self._next_color_index = 1
        self._next_lane_index = 1
        self.reset_to_default()

    # ------------------------------------------------------------------
    # Lifecycle and observation

    def reset_to_default(self) -> OperationResult:
        """Discard everything and rebuild the canonical three-commit repository."""
        with self._lock:
            commits: list[Commit] = []
            parent_ids: list[str] = []
            for row, message in enumerate(SEED_COMMIT_MESSAGES):
                commit = Commit(
                    id=self._make_commit_id(),
                    message=message,
                    parent_ids=parent_ids,
                    branch_name=DEFAULT_BRANCH,
                    timestamp=self._now(),
                    lane_index=0,
                    row=row,
                )
                commits.append(commit)
                parent_ids = [commit.id]

            head_id = commits[-1].id
            self.commits = commits
            self.branches = [
                Branch(
                    id=make_id(),
                    name=DEFAULT_BRANCH,
                    head_commit_id=head_id,
                    color=BRANCH_COLORS[0],
                    lane_index=0,
                )
            ]
            self.tags = []
            self.head_branch_name = DEFAULT_BRANCH
            self.history = []
            self.last_operation = None
            self.error_message = None
            self.error_code = None
            self.newly_added_commit_id = None
            self.stashed_work = None
            self._next_color_index = 1
            self._next_lane_index = 1
            self.remote.reset(head_id)
            result = OperationResult(
                status="success",
                message="Repository reset to default state",
                head_branch=self.head_branch_name,
                commit_id=head_id,
            )
            self._notify(result)
            return result

    def subscribe(self, listener: Listener) -> None:
        """Register a callback receiving every operation result."""
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def dismiss_error(self) -> None:
        with self._lock:
            self.error_message = None
            self.error_code = None

    @property
    def current_branch(self) -> Branch | None:
        return self.get_branch(self.head_branch_name)

    @property
    def head_commit(self) -> Commit | None:
        branch = self.current_branch
        if branch is None:
            return None
        return self.get_commit(branch.head_commit_id)

    @property
    def remote_name(self) -> str:
        return self.remote.name

    def get_commit(self, commit_id: str) -> Commit | None:
        return next((commit for commit in self.commits if commit.id == commit_id), None)

    def get_branch(self, name: str) -> Branch | None:
        return next((branch for branch in self.branches if branch.name == name), None)

    def tags_for(self, commit_id: str) -> list[Tag]:
        return [tag for tag in self.tags if tag.commit_id == commit_id]

    def branches_at(self, commit_id: str) -> list[Branch]:
        return [branch for branch in self.branches if branch.head_commit_id == commit_id]

    def is_head(self, commit_id: str) -> bool:
        branch = self.current_branch
        return branch is not None and branch.head_commit_id == commit_id

    def is_remote_head(self, commit_id: str, branch_name: str) -> bool:
        return self.remote.is_remote_head(commit_id, branch_name)

    def color_for(self, commit: Commit) -> str:
        branch = self.get_branch(commit.branch_name)
        return branch.color if branch else ACCENT_COLOR

    def ancestor_ids(self, commit_id: str) -> list[str]:
        with self._lock:
            return ancestor_ids(self._commit_index(), commit_id)

    def compute_ahead(self) -> int:
        """Count commits on the current branch the remote has not seen."""
        with self._lock:
            branch = self.current_branch
            if branch is None:
                return 0
            return self.remote.compute_ahead(
                self._commit_index(), branch.name, branch.head_commit_id
            )

    def resolve_commit_ref(self, ref: str) -> str | None:
        """Resolve a full id, a unique id prefix, or a branch name to a commit id."""
        ref = ref.strip()
        if not ref:
            return None
        if self.get_commit(ref) is not None:
            return ref
        branch = self.get_branch(ref)
        if branch is not None:
            return branch.head_commit_id
        if len(ref) < MIN_ID_PREFIX_LENGTH:
            return None
        matches = [commit.id for commit in self.commits if commit.id.startswith(ref)]
        if len(matches) == 1:
            return matches[0]
        return None

    def position(self, commit: Commit, canvas_width: float | None = None) -> Point:
        return self.metrics.position(commit, canvas_width)

    @property
    def graph_width(self) -> float:
        return self.metrics.graph_width(self.commits)

    @property
    def graph_height(self) -> float:
        return self.metrics.graph_height(self.commits)

    def snapshot(self) -> RepositorySnapshot:
        """Return a detached copy of all observable state."""
        with self._lock:
            return RepositorySnapshot(
                head_branch=self.head_branch_name,
                commits=[
                    CommitView(
                        id=commit.id,
                        short_hash=commit.short_hash,
                        message=commit.message,
                        parent_ids=list(commit.parent_ids),
                        branch_name=commit.branch_name,
                        timestamp=commit.timestamp,
                        lane_index=commit.lane_index,
                        row=commit.row,
                        position=self.position(commit),
                        color=self.color_for(commit),
                    )
                    for commit in self.commits
                ],
                branches=[branch.model_copy() for branch in self.branches],
                tags=[tag.model_copy() for tag in self.tags],
                history=[operation.command for operation in self.history],
                error_message=self.error_message,
                error_code=self.error_code.value if self.error_code else None,
                newly_added_commit_id=self.newly_added_commit_id,
                stashed_work=self.stashed_work,
                remote=self.remote.state.model_copy(deep=True),
                graph_width=self.graph_width,
                graph_height=self.graph_height,
            )

    # ------------------------------------------------------------------
    # Operations

    def commit(self, message: str) -> OperationResult:
        return self._execute(self._commit, message)

    def create_branch(self, name: str) -> OperationResult:
        return self._execute(self._create_branch, name)

    def checkout(self, name: str) -> OperationResult:
        return self._execute(self._checkout, name)

    def merge(self, source: str) -> OperationResult:
        return self._execute(self._merge, source)

    def rebase(self, onto: str) -> OperationResult:
        return self._execute(self._rebase, onto)

    def reset(self, commit_id: str) -> OperationResult:
        return self._execute(self._reset, commit_id)

    def cherry_pick(self, commit_id: str) -> OperationResult:
        return self._execute(self._cherry_pick, commit_id)

    def add_tag(self, name: str) -> OperationResult:
        return self._execute(self._add_tag, name)

    def delete_branch(self, name: str) -> OperationResult:
        return self._execute(self._delete_branch, name)

    def stash(self) -> OperationResult:
        return self._execute(self._stash)

    def stash_pop(self) -> OperationResult:
        return self._execute(self._stash_pop)

    def fetch(self) -> OperationResult:
        return self._execute(self._fetch)

    def push(self, branch_name: str | None = None) -> OperationResult:
        return self._execute(self._push, branch_name)

    def pull(self, branch_name: str | None = None) -> OperationResult:
        return self._execute(self._pull, branch_name)

    # ------------------------------------------------------------------
    # Operation bodies: validate first, then mutate.

    def _commit(self, message: str) -> OperationResult:
        if not message.strip():
            raise SandboxError(
                ErrorCode.EMPTY_INPUT,
                "Commit message cannot be empty.",
                "Type a short description of the change.",
            )
        branch = self._require_current_branch()
        new_commit = self._append_commit(message, [branch.head_commit_id], branch)
        return self._record(
            Operation(kind=OperationKind.COMMIT, argument=message),
            f"Committed {new_commit.short_hash} on '{branch.name}'",
            (Feedback.MEDIUM,),
            commit_id=new_commit.id,
            relayout=True,
        )

    def _create_branch(self, name: str) -> OperationResult:
        name = name.strip()
        if not name:
            raise SandboxError(
                ErrorCode.EMPTY_INPUT,
                "Branch name cannot be empty.",
                "Provide a branch name.",
            )
        if self.get_branch(name) is not None:
            raise SandboxError(
                ErrorCode.DUPLICATE_NAME,
                f"Branch '{name}' already exists.",
                "Use a different branch name or check out the existing one.",
                {"branch": name},
            )
        current = self._require_current_branch()
        color = BRANCH_COLORS[self._next_color_index % len(BRANCH_COLORS)]
        self._next_color_index += 1
        lane_index = max(
            self._next_lane_index,
            max((branch.lane_index for branch in self.branches), default=0) + 1,
        )
        self._next_lane_index = lane_index + 1
        self.branches.append(
            Branch(
                id=make_id(),
                name=name,
                head_commit_id=current.head_commit_id,
                color=color,
                lane_index=lane_index,
            )
        )
        return self._record(
            Operation(kind=OperationKind.BRANCH, argument=name),
            f"Branch '{name}' created at {short_hash(current.head_commit_id)}",
            (Feedback.LIGHT,),
            commit_id=current.head_commit_id,
        )

    def _checkout(self, name: str) -> OperationResult:
        name = name.strip()
        if self.get_branch(name) is None:
            raise SandboxError(
                ErrorCode.NOT_FOUND,
                f"Branch '{name}' does not exist.",
                "Create the branch first or choose an existing branch.",
                {"branch": name},
            )
        self.head_branch_name = name
        return self._record(
            Operation(kind=OperationKind.CHECKOUT, argument=name),
            f"Switched to branch '{name}'",
            (Feedback.SOFT,),
        )

    def _merge(self, source_name: str) -> OperationResult:
        source_name = source_name.strip()
        if source_name == self.head_branch_name:
            raise SandboxError(
                ErrorCode.NO_OP,
                "Cannot merge a branch into itself.",
                "Check out the destination branch before merging.",
            )
        source = self._require_branch(source_name)
        dest = self._require_current_branch()
        if source.head_commit_id == dest.head_commit_id:
            raise SandboxError(ErrorCode.NO_OP, "Already up-to-date.")
        merge_commit = self._append_commit(
            f"Merge '{source_name}' into {dest.name}",
            [dest.head_commit_id, source.head_commit_id],
            dest,
        )
        return self._record(
            Operation(kind=OperationKind.MERGE, argument=source_name),
            f"Merged '{source_name}' into '{dest.name}'",
            (Feedback.HEAVY, Feedback.SUCCESS),
            commit_id=merge_commit.id,
            relayout=True,
        )

    def _rebase(self, target_name: str) -> OperationResult:
        target_name = target_name.strip()
        if target_name == self.head_branch_name:
            raise SandboxError(
                ErrorCode.NO_OP,
                "Cannot rebase onto the same branch.",
                "Pick a different branch to rebase onto.",
            )
        target = self._require_branch(target_name)
        current = self._require_current_branch()
        unique_ids = unique_ancestors(
            self._commit_index(), current.head_commit_id, target.head_commit_id
        )
        if not unique_ids:
            raise SandboxError(ErrorCode.NO_OP, "Nothing to rebase.")

        # Replay oldest first. Commits keep their ids; only links and lanes move.
        previous_id = target.head_commit_id
        row = max_row(self.commits)
        replayed: list[str] = []
        for commit_id in reversed(unique_ids):
            commit = self.get_commit(commit_id)
            if commit is None:
                continue
            row += 1
            commit.parent_ids = [previous_id]
            commit.lane_index = target.lane_index
            commit.row = row
            commit.branch_name = current.name
            previous_id = commit.id
            replayed.append(commit.id)

        current.head_commit_id = previous_id
        current.lane_index = target.lane_index
        return self._record(
            Operation(kind=OperationKind.REBASE, argument=target_name),
            f"Rebased '{current.name}' onto '{target_name}'",
            (Feedback.RIGID,),
            commit_id=previous_id,
            relayout=True,
            details={"replayed": replayed},
        )

    def _reset(self, commit_id: str) -> OperationResult:
        commit_id = commit_id.strip()
        current = self._require_current_branch()
        if self.get_commit(commit_id) is None:
            raise SandboxError(
                ErrorCode.NOT_FOUND,
                "Commit not found.",
                "Pick a commit from the graph.",
                {"commit_id": commit_id},
            )
        current.head_commit_id = commit_id
        return self._record(
            Operation(kind=OperationKind.RESET, argument=commit_id),
            f"'{current.name}' reset to {short_hash(commit_id)}",
            (Feedback.WARNING,),
            commit_id=commit_id,
        )

    def _cherry_pick(self, commit_id: str) -> OperationResult:
        commit_id = commit_id.strip()
        source = self.get_commit(commit_id)
        if source is None:
            raise SandboxError(
                ErrorCode.NOT_FOUND,
                "Commit not found.",
                "Pick a commit from the graph.",
                {"commit_id": commit_id},
            )
        current = self._require_current_branch()
        picked = self._append_commit(
            source.message + CHERRY_PICK_SUFFIX, [current.head_commit_id], current
        )
        return self._record(
            Operation(kind=OperationKind.CHERRY_PICK, argument=commit_id),
            f"Cherry-picked {source.short_hash} onto '{current.name}'",
            (Feedback.MEDIUM, Feedback.SUCCESS),
            commit_id=picked.id,
            relayout=True,
        )

    def _add_tag(self, name: str) -> OperationResult:
        name = name.strip()
        if not name:
            raise SandboxError(
                ErrorCode.EMPTY_INPUT,
                "Tag name cannot be empty.",
                "Provide a tag name such as v1.0.0.",
            )
        head = self._require_head_commit()
        self.tags.append(Tag(id=make_id(), name=name, commit_id=head.id))
        details: dict[str, Any] = {}
        if sum(1 for tag in self.tags if tag.name == name) > 1:
            details["duplicate_name"] = True
        return self._record(
            Operation(kind=OperationKind.TAG, argument=name),
            f"Tagged {head.short_hash} as '{name}'",
            (Feedback.LIGHT,),
            commit_id=head.id,
            details=details,
        )

    def _delete_branch(self, name: str) -> OperationResult:
        name = name.strip()
        if name == DEFAULT_BRANCH:
            raise SandboxError(
                ErrorCode.PROTECTED_BRANCH,
                f"Cannot delete the {DEFAULT_BRANCH} branch.",
            )
        if name == self.head_branch_name:
            raise SandboxError(
                ErrorCode.PROTECTED_BRANCH,
                "Cannot delete the currently checked-out branch.",
                "Checkout a different branch first.",
            )
        branch = self._require_branch(name)
        self.branches.remove(branch)
        return self._record(
            Operation(kind=OperationKind.DELETE_BRANCH, argument=name),
            f"Deleted branch '{name}'",
            (Feedback.WARNING,),
        )

    def _stash(self) -> OperationResult:
        if self.stashed_work is not None:
            raise SandboxError(
                ErrorCode.STASH_CONFLICT,
                "Already have stashed work. Run git stash pop first.",
            )
        head = self.head_commit
        head_message = head.message if head else "work in progress"
        self.stashed_work = f"{STASH_PREFIX}{self.head_branch_name}: {head_message}"
        return self._record(
            Operation(kind=OperationKind.STASH),
            f"Saved working directory: {self.stashed_work}",
            (Feedback.MEDIUM,),
        )

    def _stash_pop(self) -> OperationResult:
        if self.stashed_work is None:
            raise SandboxError(ErrorCode.STASH_CONFLICT, "No stash entries found.")
        branch = self._require_current_branch()
        message = _parse_stash_message(self.stashed_work)
        popped = self._append_commit(message, [branch.head_commit_id], branch)
        self.stashed_work = None
        return self._record(
            Operation(kind=OperationKind.STASH_POP),
            f"Applied stash as {popped.short_hash}",
            (Feedback.SUCCESS,),
            commit_id=popped.id,
            relayout=True,
        )

    def _fetch(self) -> OperationResult:
        branch = self._require_current_branch()
        self.remote.fetch(branch.name, branch.head_commit_id)
        return self._record(
            Operation(kind=OperationKind.FETCH, remote=self.remote.name),
            f"Fetched from {self.remote.name}",
            (Feedback.LIGHT,),
            details={"behind": self.remote.state.behind},
        )

    def _push(self, branch_name: str | None) -> OperationResult:
        branch = self._require_branch(self._target_branch_name(branch_name))
        self.remote.push(branch.name, branch.head_commit_id)
        return self._record(
            Operation(kind=OperationKind.PUSH, argument=branch.name, remote=self.remote.name),
            f"Pushed '{branch.name}' to {self.remote.name}",
            (Feedback.MEDIUM, Feedback.SUCCESS),
            commit_id=branch.head_commit_id,
            refresh_ahead=False,
        )

    def _pull(self, branch_name: str | None) -> OperationResult:
        branch = self._require_branch(self._target_branch_name(branch_name))
        remote_commit = self._append_commit(
            f"chore: sync from {self.remote.name}/{branch.name}",
            [branch.head_commit_id],
            branch,
        )
        self.remote.record_pull(branch.name, remote_commit.id)
        return self._record(
            Operation(kind=OperationKind.PULL, argument=branch.name, remote=self.remote.name),
            f"Pulled {self.remote.name}/{branch.name}",
            (Feedback.MEDIUM, Feedback.SUCCESS),
            commit_id=remote_commit.id,
            relayout=True,
            refresh_ahead=False,
        )

    # ------------------------------------------------------------------
    # Helpers

    def _execute(self, operation: Callable[..., OperationResult], *args: Any) -> OperationResult:
        with self._lock:
            try:
                result = operation(*args)
            except SandboxError as exc:
                self.error_message = exc.message
                self.error_code = exc.code
                logger.info("sandbox operation rejected: %s %s", exc.code.value, exc.message)
                result = OperationResult(
                    status="error",
                    message=exc.message,
                    error_code=exc.code.value,
                    head_branch=self.head_branch_name,
                    feedback=(Feedback.ERROR,),
                    details={**exc.details, "suggestion": exc.suggestion or ""},
                )
            self._notify(result)
            return result

    def _record(
        self,
        operation: Operation,
        message: str,
        feedback: Sequence[Feedback],
        commit_id: str = "",
        relayout: bool = False,
        details: dict[str, Any] | None = None,
        refresh_ahead: bool = True,
    ) -> OperationResult:
        if relayout:
            self.recalculate_layout()
        self.history.insert(0, operation)
        self.last_operation = operation
        self.error_message = None
        self.error_code = None
        if refresh_ahead:
            self.remote.state.ahead = self.compute_ahead()
        logger.debug("sandbox operation applied: %s", operation.command)
        return OperationResult(
            status="success",
            message=message,
            operation=operation,
            command=operation.command,
            commit_id=commit_id,
            head_branch=self.head_branch_name,
            feedback=tuple(feedback),
            details=details or {},
        )

    def recalculate_layout(self) -> None:
        """Reassign rows for the whole graph; lanes are sticky."""
        with self._lock:
            assign_rows(self.commits)

    def _append_commit(self, message: str, parent_ids: list[str], branch: Branch) -> Commit:
        commit = Commit(
            id=self._make_commit_id(),
            message=message,
            parent_ids=list(parent_ids),
            branch_name=branch.name,
            timestamp=self._now(),
            lane_index=branch.lane_index,
            row=max_row(self.commits) + 1,
        )
        self.commits.append(commit)
        branch.head_commit_id = commit.id
        self.newly_added_commit_id = commit.id
        return commit

    def _commit_index(self) -> dict[str, Commit]:
        return {commit.id: commit for commit in self.commits}

    def _target_branch_name(self, branch_name: str | None) -> str:
        if branch_name is None or not branch_name.strip():
            return self.head_branch_name
        return branch_name.strip()

    def _require_branch(self, name: str) -> Branch:
        branch = self.get_branch(name)
        if branch is None:
            raise SandboxError(
                ErrorCode.NOT_FOUND,
                f"Branch '{name}' not found.",
                "Check the branch list for available names.",
                {"branch": name},
            )
        return branch

    def _require_current_branch(self) -> Branch:
        branch = self.current_branch
        if branch is None:
            raise SandboxError(
                ErrorCode.INTERNAL_ERROR,
                "No current branch.",
                "Reset the sandbox.",
            )
        return branch

    def _require_head_commit(self) -> Commit:
        head = self.head_commit
        if head is None:
            raise SandboxError(
                ErrorCode.INTERNAL_ERROR,
                "No current branch.",
                "Reset the sandbox.",
            )
        return head

    def _notify(self, result: OperationResult) -> None:
        for listener in list(self._listeners):
            try:
                listener(result)
            except Exception:  # noqa: BLE001
                logger.exception("Sandbox listener failed")


def _parse_stash_message(description: str) -> str:
    """Recover the head message stored in a ``WIP on <branch>: <message>`` entry."""
    body = description[len(STASH_PREFIX):] if description.startswith(STASH_PREFIX) else description
    _, separator, message = body.partition(": ")
    if not separator:
        return STASH_FALLBACK_MESSAGE
    return message or STASH_FALLBACK_MESSAGE
