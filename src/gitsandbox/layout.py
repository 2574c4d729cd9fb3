"""Row assignment and canvas geometry for the commit graph."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from .constants import CANVAS_MARGIN, LANE_WIDTH, ROW_HEIGHT
from .models import Commit, Point


@dataclass(frozen=True)
class LayoutMetrics:
    """Fixed pixel metrics shared by every renderer."""

    lane_width: float = LANE_WIDTH
    row_height: float = ROW_HEIGHT
    margin: float = CANVAS_MARGIN

    def position(self, commit: Commit, canvas_width: float | None = None) -> Point:
        """Return the node centre for ``commit``.

        ``canvas_width`` is accepted for renderer parity; lanes are laid out
        from the left edge regardless of it.
        """
        x = self.lane_width * commit.lane_index + self.lane_width / 2 + self.margin
        y = self.row_height * commit.row + self.row_height / 2 + self.margin
        return Point(x=x, y=y)

    def graph_width(self, commits: Sequence[Commit]) -> float:
        max_lane = max((commit.lane_index for commit in commits), default=0)
        return (max_lane + 1) * self.lane_width + 4 * self.margin

    def graph_height(self, commits: Sequence[Commit]) -> float:
        max_row = max((commit.row for commit in commits), default=0)
        return (max_row + 1) * self.row_height + 4 * self.margin


DEFAULT_METRICS = LayoutMetrics()


def assign_rows(commits: Sequence[Commit]) -> None:
    """Recompute ``row`` for every commit by topological waves.

    All commits with no unprocessed parents form one wave and share a row;
    each wave is one row below the previous. Lanes are left untouched.
    Parent ids not present in ``commits`` are ignored.
    """
    by_id = {commit.id: commit for commit in commits}
    children: dict[str, list[str]] = {}
    in_degree: dict[str, int] = {}
    for commit in commits:
        known_parents = [pid for pid in commit.parent_ids if pid in by_id]
        in_degree[commit.id] = len(known_parents)
        for parent_id in known_parents:
            children.setdefault(parent_id, []).append(commit.id)

    wave = [commit.id for commit in commits if in_degree[commit.id] == 0]
    visited: set[str] = set()
    row = 0
    while wave:
        next_wave: list[str] = []
        for node_id in wave:
            if node_id in visited:
                continue
            visited.add(node_id)
            by_id[node_id].row = row
            for child_id in children.get(node_id, []):
                in_degree[child_id] -= 1
                if in_degree[child_id] == 0 and child_id not in visited:
                    next_wave.append(child_id)
        wave = next_wave
        row += 1


def max_row(commits: Sequence[Commit]) -> int:
    return max((commit.row for commit in commits), default=0)
