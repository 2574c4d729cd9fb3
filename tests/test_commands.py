from __future__ import annotations

import pytest

from gitsandbox.commands import execute_command, tokenize
from gitsandbox.engine import SandboxEngine
from gitsandbox.errors import ErrorCode, SandboxError
from gitsandbox.ids import SequentialIds


@pytest.fixture()
def engine() -> SandboxEngine:
    return SandboxEngine(id_factory=SequentialIds())


def test_tokenize_drops_git_prefix_and_honours_quotes() -> None:
    assert tokenize('git commit -m "hello world"') == ["commit", "-m", "hello world"]
    assert tokenize("checkout main") == ["checkout", "main"]


@pytest.mark.parametrize("line", ["", "git", "   ", 'commit -m "unterminated'])
def test_tokenize_rejects_empty_and_malformed_lines(line: str) -> None:
    with pytest.raises(SandboxError) as exc_info:
        tokenize(line)

    assert exc_info.value.code == ErrorCode.INVALID_INPUT


def test_commit_and_branch_commands(engine: SandboxEngine) -> None:
    execute_command(engine, 'git commit -m "Add docs"')
    execute_command(engine, "git branch feature")
    result = execute_command(engine, "git switch feature")

    assert result.ok
    assert engine.commits[-1].message == "Add docs"
    assert engine.head_branch_name == "feature"
    assert engine.snapshot().history == [
        "git checkout feature",
        "git branch feature",
        'git commit -m "Add docs"',
    ]


def test_checkout_dash_b_creates_then_switches(engine: SandboxEngine) -> None:
    result = execute_command(engine, "git checkout -b topic")

    assert result.ok
    assert engine.head_branch_name == "topic"

    again = execute_command(engine, "git checkout -b topic")
    assert again.error_code == ErrorCode.DUPLICATE_NAME.value


def test_branch_delete_flags(engine: SandboxEngine) -> None:
    execute_command(engine, "git branch old")

    result = execute_command(engine, "git branch -D old")

    assert result.ok
    assert engine.get_branch("old") is None


def test_reset_and_cherry_pick_accept_short_hashes(engine: SandboxEngine) -> None:
    first = engine.commits[0].id

    reset = execute_command(engine, f"git reset --hard {first[:7]}")
    assert reset.ok
    assert engine.current_branch.head_commit_id == first

    picked = execute_command(engine, f"git cherry-pick {engine.commits[2].id[:7]}")
    assert picked.ok
    assert engine.commits[-1].message == "Setup project structure (cherry-picked)"

    missing = execute_command(engine, "git reset ffffffff")
    assert missing.error_code == ErrorCode.NOT_FOUND.value


def test_remote_commands(engine: SandboxEngine) -> None:
    assert execute_command(engine, "git fetch").ok
    assert execute_command(engine, "git fetch origin").ok
    assert execute_command(engine, "git commit -m local").ok
    assert engine.compute_ahead() == 1
    assert execute_command(engine, "git push origin main").ok
    assert engine.compute_ahead() == 0
    assert execute_command(engine, "git pull").ok
    assert engine.commits[-1].message == "chore: sync from origin/main"


def test_stash_commands(engine: SandboxEngine) -> None:
    assert execute_command(engine, "git stash push").ok
    assert engine.stashed_work is not None
    assert execute_command(engine, "git stash pop").ok
    assert engine.stashed_work is None


@pytest.mark.parametrize(
    "line",
    [
        "git frobnicate",
        "git commit hello",
        "git merge",
        "git rebase a b",
        "git stash drop",
        "git fetch upstream",
        "git push upstream main",
        "git push origin main extra",
    ],
)
def test_unparseable_commands_raise_invalid_input(engine: SandboxEngine, line: str) -> None:
    with pytest.raises(SandboxError) as exc_info:
        execute_command(engine, line)

    assert exc_info.value.code == ErrorCode.INVALID_INPUT
    assert exc_info.value.details == {"line": line}
    assert engine.history == []


def test_engine_rejections_come_back_as_results(engine: SandboxEngine) -> None:
    result = execute_command(engine, "git merge main")

    assert result.status == "error"
    assert result.error_code == ErrorCode.NO_OP.value
    assert engine.error_message == "Cannot merge a branch into itself."


@pytest.mark.parametrize(
    "message",
    ['say "hi" now', "path\\to\\file", "it's done", 'mix "\\" end'],
)
def test_rendered_commit_command_parses_back(engine: SandboxEngine, message: str) -> None:
    engine.commit(message)
    line = engine.history[0].command

    replayed = SandboxEngine(id_factory=SequentialIds())
    result = execute_command(replayed, line)

    assert result.ok
    assert replayed.commits[-1].message == message
    assert replayed.history[0].command == line


def test_history_replays_onto_fresh_engine(engine: SandboxEngine) -> None:
    steps = [
        lambda: engine.commit('say "hi" now'),
        lambda: engine.commit("path\\to \"x\""),
        lambda: engine.create_branch("feature"),
        lambda: engine.checkout("feature"),
        lambda: engine.commit("f1"),
        lambda: engine.checkout("main"),
        lambda: engine.merge("feature"),
        lambda: engine.add_tag("v1.0"),
        lambda: engine.cherry_pick(engine.commits[0].id),
        lambda: engine.create_branch("topic"),
        lambda: engine.checkout("topic"),
        lambda: engine.commit("t1"),
        lambda: engine.checkout("main"),
        lambda: engine.commit("m2"),
        lambda: engine.checkout("topic"),
        lambda: engine.rebase("main"),
        lambda: engine.checkout("main"),
        lambda: engine.stash(),
        lambda: engine.stash_pop(),
        lambda: engine.push("feature"),
        lambda: engine.fetch(),
        lambda: engine.pull(),
        lambda: engine.reset(engine.commits[1].id),
        lambda: engine.delete_branch("feature"),
    ]
    for step in steps:
        assert step().ok

    replayed = SandboxEngine(id_factory=SequentialIds())
    for line in reversed(engine.snapshot().history):
        assert execute_command(replayed, line).ok, line

    assert [(c.id, c.message, c.parent_ids) for c in replayed.commits] == [
        (c.id, c.message, c.parent_ids) for c in engine.commits
    ]
    assert [(b.name, b.head_commit_id) for b in replayed.branches] == [
        (b.name, b.head_commit_id) for b in engine.branches
    ]
    assert [(t.name, t.commit_id) for t in replayed.tags] == [
        (t.name, t.commit_id) for t in engine.tags
    ]
    assert replayed.snapshot().history == engine.snapshot().history
    assert replayed.remote.state == engine.remote.state
