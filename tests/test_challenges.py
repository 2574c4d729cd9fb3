from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from gitsandbox.challenges import (
    Challenge,
    ChallengeGoal,
    ChallengeTracker,
    GoalKind,
    is_satisfied,
    load_challenges,
)
from gitsandbox.engine import SandboxEngine
from gitsandbox.errors import ErrorCode, SandboxError
from gitsandbox.progress import ProgressStore

CHALLENGES = [
    {
        "id": "first-commit",
        "title": "Your First Commit",
        "difficulty": "Easy",
        "goal": {"kind": "make_commit"},
        "hints": ["Type a message", "Press commit"],
        "operations": ["commit"],
    },
    {
        "id": "branch-out",
        "title": "Branch Out",
        "difficulty": "Medium",
        "goal": {"kind": "has_branch", "name": "feature"},
        "setup": ['git commit -m "prep work"'],
    },
]


def _write_challenges(path: Path, data: object = None) -> Path:
    path.write_text(yaml.safe_dump(CHALLENGES if data is None else data), encoding="utf-8")
    return path


def test_load_challenges_accepts_list_and_mapping(tmp_path: Path) -> None:
    as_list = load_challenges(_write_challenges(tmp_path / "list.yaml"))
    as_mapping = load_challenges(
        _write_challenges(tmp_path / "map.yaml", {"challenges": CHALLENGES})
    )

    assert [challenge.id for challenge in as_list] == ["first-commit", "branch-out"]
    assert as_list == as_mapping
    assert as_list[1].goal.kind == GoalKind.HAS_BRANCH
    assert as_list[1].goal.description == "Create a branch named 'feature'"


def test_load_challenges_errors(tmp_path: Path) -> None:
    with pytest.raises(SandboxError) as missing:
        load_challenges(tmp_path / "nope.yaml")
    assert missing.value.code == ErrorCode.NOT_FOUND

    with pytest.raises(SandboxError) as invalid:
        load_challenges(_write_challenges(tmp_path / "bad.yaml", [{"id": "x"}]))
    assert invalid.value.code == ErrorCode.INVALID_INPUT
    assert invalid.value.details["errors"]

    with pytest.raises(SandboxError) as duplicate:
        load_challenges(_write_challenges(tmp_path / "dup.yaml", CHALLENGES + CHALLENGES[:1]))
    assert duplicate.value.code == ErrorCode.DUPLICATE_NAME

    broken = tmp_path / "broken.yaml"
    broken.write_text("challenges: [unclosed", encoding="utf-8")
    with pytest.raises(SandboxError) as syntax:
        load_challenges(broken)
    assert syntax.value.code == ErrorCode.INVALID_INPUT


@pytest.mark.parametrize(
    ("goal", "steps", "expected"),
    [
        (ChallengeGoal(kind=GoalKind.MAKE_COMMIT), [], False),
        (ChallengeGoal(kind=GoalKind.MAKE_COMMIT), [("commit", "x")], True),
        (ChallengeGoal(kind=GoalKind.HEAD_ON_BRANCH, name="main"), [], True),
        (ChallengeGoal(kind=GoalKind.COMMIT_COUNT, count=4), [("commit", "x")], True),
        (ChallengeGoal(kind=GoalKind.BRANCH_COUNT, count=2), [("create_branch", "b")], True),
        (ChallengeGoal(kind=GoalKind.HAS_TAG, name="v1"), [("add_tag", "v1.0")], False),
        (ChallengeGoal(kind=GoalKind.HAS_TAG_CONTAINING, name="v1"), [("add_tag", "v1.0")], True),
        (
            ChallengeGoal(kind=GoalKind.MERGED_BRANCH, name="feature", target="main"),
            [("create_branch", "feature"), ("checkout", "feature"), ("commit", "f"),
             ("checkout", "main"), ("merge", "feature")],
            True,
        ),
        (
            ChallengeGoal(kind=GoalKind.REBASED_BRANCH),
            [("create_branch", "feature"), ("checkout", "feature"), ("commit", "f"),
             ("checkout", "main"), ("commit", "m"), ("checkout", "feature"), ("rebase", "main")],
            True,
        ),
    ],
)
def test_is_satisfied(goal: ChallengeGoal, steps: list[tuple[str, str]], expected: bool) -> None:
    engine = SandboxEngine()
    for method, argument in steps:
        assert getattr(engine, method)(argument).ok

    assert is_satisfied(goal, engine) is expected


def test_cherry_pick_goal() -> None:
    engine = SandboxEngine()
    goal = ChallengeGoal(kind=GoalKind.CHERRY_PICKED_COMMIT)
    assert not is_satisfied(goal, engine)

    engine.cherry_pick(engine.commits[0].id)

    assert is_satisfied(goal, engine)


def test_tracker_completes_on_matching_operation(tmp_path: Path) -> None:
    store = ProgressStore(tmp_path / "progress.yaml")
    tracker = ChallengeTracker(load_challenges(_write_challenges(tmp_path / "c.yaml")), store)
    first = tracker.get("first-commit")

    tracker.start(first)
    assert tracker.is_complete is False

    tracker.engine.commit("hello")

    assert tracker.is_complete is True
    assert store.load() == {"first-commit"}
    assert tracker.next_challenge().id == "branch-out"
    assert tracker.is_unlocked(tracker.get("branch-out"))


def test_tracker_setup_does_not_complete_goal(tmp_path: Path) -> None:
    challenges = load_challenges(_write_challenges(tmp_path / "c.yaml"))
    tracker = ChallengeTracker(challenges)
    tracker.start(challenges[0])
    tracker.engine.commit("done")
    assert tracker.is_complete

    tracker.start(challenges[1])

    assert tracker.current is challenges[1]
    assert tracker.is_complete is False
    assert tracker.engine.commits[-1].message == "prep work"
    assert len(tracker.engine.commits) == 4

    tracker.engine.create_branch("feature")
    assert tracker.is_complete


def test_tracker_locking_and_hints(tmp_path: Path) -> None:
    challenges = load_challenges(_write_challenges(tmp_path / "c.yaml"))
    tracker = ChallengeTracker(challenges)

    assert tracker.is_unlocked(challenges[0])
    assert not tracker.is_unlocked(challenges[1])
    assert not tracker.is_unlocked(Challenge(id="other", title="x", goal={"kind": "make_commit"}))

    assert tracker.reveal_next_hint() is None
    tracker.start(challenges[0])
    assert tracker.reveal_next_hint() == "Type a message"
    assert tracker.reveal_next_hint() == "Press commit"
    assert tracker.reveal_next_hint() is None

    tracker.reset()
    assert tracker.current is None
    assert tracker.hints_revealed == 0

    with pytest.raises(SandboxError) as exc_info:
        tracker.get("ghost")
    assert exc_info.value.code == ErrorCode.NOT_FOUND


def test_failed_operations_do_not_complete(tmp_path: Path) -> None:
    tracker = ChallengeTracker(load_challenges(_write_challenges(tmp_path / "c.yaml")))
    tracker.start(tracker.get("first-commit"))

    tracker.engine.commit("")

    assert tracker.is_complete is False


def test_progress_store_round_trip_keeps_other_keys(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "progress.yaml"
    path.parent.mkdir()
    path.write_text("theme: dark\n", encoding="utf-8")
    store = ProgressStore(path)

    assert store.load() == set()
    store.save({"b", "a"})

    saved = yaml.safe_load(path.read_text(encoding="utf-8"))
    assert saved == {"theme": "dark", "completedChallengeIds_v1": ["a", "b"]}
    assert ProgressStore(path).load() == {"a", "b"}


def test_progress_store_ignores_malformed_content(tmp_path: Path) -> None:
    path = tmp_path / "progress.yaml"
    path.write_text("completedChallengeIds_v1: oops\n", encoding="utf-8")
    assert ProgressStore(path).load() == set()

    path.write_text("- not\n- a mapping\n", encoding="utf-8")
    assert ProgressStore(path).load() == set()

    path.write_text("key: [unclosed\n", encoding="utf-8")
    assert ProgressStore(path).load() == set()
