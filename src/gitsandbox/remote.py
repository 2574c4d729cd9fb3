"""In-memory model of a single remote with per-branch tracking pointers."""

from __future__ import annotations

from collections.abc import Mapping

from .ancestry import ancestor_ids
from .constants import DEFAULT_BRANCH, REMOTE_NAME
from .models import Commit, RemoteState


class RemoteTracker:
    """Tracks what ``origin`` holds for each branch without any network I/O.

    The tracker only records pointers and counters; the engine owns commit
    creation and calls into the tracker after it has validated a request.
    """

    def __init__(self, name: str = REMOTE_NAME) -> None:
        self.state = RemoteState(name=name)

    @property
    def name(self) -> str:
        return self.state.name

    def reset(self, default_head: str) -> None:
        """Start in sync: ``origin/main`` on the given commit, nothing fetched."""
        self.state = RemoteState(name=self.state.name, branches={DEFAULT_BRANCH: default_head})

    def tracking(self, branch_name: str) -> str | None:
        return self.state.branches.get(branch_name)

    def fetch(self, branch_name: str, local_head: str) -> None:
        self.state.has_fetched = True
        if self.state.branches.get(branch_name, "") == local_head:
            # Nothing real to fetch; pretend the remote gained one commit.
            self.state.behind = 1

    def push(self, branch_name: str, local_head: str) -> None:
        self.state.branches[branch_name] = local_head
        self.state.ahead = 0
        self.state.behind = 0

    def record_pull(self, branch_name: str, commit_id: str) -> None:
        self.state.branches[branch_name] = commit_id
        self.state.ahead = 0
        self.state.behind = 0

    def compute_ahead(
        self,
        commits: Mapping[str, Commit],
        branch_name: str,
        local_head: str,
    ) -> int:
        """Count local commits not reachable from the remote pointer."""
        remote_id = self.state.branches.get(branch_name)
        if remote_id is None:
            return 0
        remote_ancestors = set(ancestor_ids(commits, remote_id))
        return sum(1 for item in ancestor_ids(commits, local_head) if item not in remote_ancestors)

    def is_remote_head(self, commit_id: str, branch_name: str) -> bool:
        return self.state.branches.get(branch_name) == commit_id
