from __future__ import annotations

from datetime import datetime, timezone

from gitsandbox.ancestry import ancestor_ids, unique_ancestors
from gitsandbox.ids import SequentialIds, make_id, short_hash
from gitsandbox.layout import DEFAULT_METRICS, LayoutMetrics, assign_rows, max_row
from gitsandbox.models import Commit

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _commit(commit_id: str, *parents: str, lane: int = 0) -> Commit:
    return Commit(
        id=commit_id,
        message=commit_id,
        parent_ids=list(parents),
        branch_name="main",
        timestamp=NOW,
        lane_index=lane,
    )


def _diamond() -> list[Commit]:
    return [
        _commit("a"),
        _commit("b", "a"),
        _commit("c", "a", lane=1),
        _commit("d", "b", "c"),
    ]


def test_ancestor_ids_visits_each_commit_once_in_bfs_order() -> None:
    commits = {commit.id: commit for commit in _diamond()}

    assert ancestor_ids(commits, "d") == ["d", "b", "c", "a"]
    assert ancestor_ids(commits, "a") == ["a"]


def test_ancestor_ids_reports_unknown_parent_without_expanding() -> None:
    commits = {"x": _commit("x", "missing")}

    assert ancestor_ids(commits, "x") == ["x", "missing"]


def test_unique_ancestors_excludes_shared_history() -> None:
    commits = {commit.id: commit for commit in _diamond()}

    assert unique_ancestors(commits, "d", "b") == ["d", "c"]
    assert unique_ancestors(commits, "b", "d") == []


def test_assign_rows_uses_topological_waves() -> None:
    commits = _diamond()

    assign_rows(commits)

    assert {commit.id: commit.row for commit in commits} == {"a": 0, "b": 1, "c": 1, "d": 2}
    assert [commit.lane_index for commit in commits] == [0, 0, 1, 0]
    assert max_row(commits) == 2


def test_assign_rows_ignores_parents_outside_the_graph() -> None:
    commits = [_commit("orphan", "gone"), _commit("child", "orphan")]

    assign_rows(commits)

    assert [commit.row for commit in commits] == [0, 1]


def test_assign_rows_places_parents_above_children() -> None:
    commits = [_commit("m", "b", "f"), _commit("f", "b"), _commit("b", "a"), _commit("a")]

    assign_rows(commits)

    rows = {commit.id: commit.row for commit in commits}
    for commit in commits:
        for parent_id in commit.parent_ids:
            assert rows[parent_id] < rows[commit.id]


def test_position_and_canvas_size() -> None:
    commits = _diamond()
    assign_rows(commits)

    origin = DEFAULT_METRICS.position(commits[0])
    side = DEFAULT_METRICS.position(commits[2])

    assert (origin.x, origin.y) == (44, 54)
    assert (side.x, side.y) == (100, 130)
    assert DEFAULT_METRICS.graph_width(commits) == 2 * 56 + 64
    assert DEFAULT_METRICS.graph_height(commits) == 3 * 76 + 64


def test_custom_metrics() -> None:
    metrics = LayoutMetrics(lane_width=10, row_height=20, margin=0)

    point = metrics.position(_commit("z", lane=2))

    assert (point.x, point.y) == (25, 10)
    assert metrics.graph_width([]) == 10


def test_id_helpers() -> None:
    ids = SequentialIds()
    first, second = ids(), ids()

    assert first == "0000001" + "0" * 33
    assert short_hash(second) == "0000002"
    assert len(make_id()) == 32
    assert make_id() != make_id()
    assert _commit(first).short_hash == "0000001"
