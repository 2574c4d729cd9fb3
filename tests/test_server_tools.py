from __future__ import annotations

import pytest

pytest.importorskip("mcp")

from gitsandbox import server


@pytest.fixture(autouse=True)
def _fresh_registry():
    server.registry.configure(32)
    server.registry.clear()
    yield
    server.registry.clear()


def test_server_tool_round_trip() -> None:
    branch = server.sandbox_branch(name="feature")
    assert branch["status"] == "success"
    assert branch["command"] == "git branch feature"
    assert branch["sandbox"] == "default"
    assert branch["correlation_id"]

    assert server.sandbox_checkout(branch="feature")["status"] == "success"
    commit = server.sandbox_commit(message="work")
    assert commit["status"] == "success"
    assert commit["feedback"] == ["medium"]
    assert commit["ahead"] == 0
    assert server.sandbox_checkout(branch="main")["status"] == "success"

    merge = server.sandbox_merge(source_branch="feature")
    assert merge["status"] == "success"
    assert merge["feedback"] == ["heavy", "success"]

    state = server.sandbox_state()
    assert state["status"] == "success"
    assert len(state["commits"]) == 5
    assert len(state["commits"][-1]["parent_ids"]) == 2
    assert state["history"][0] == "git merge feature"


def test_server_tool_errors_are_payloads() -> None:
    duplicate = server.sandbox_branch(name="main")
    assert duplicate["status"] == "error"
    assert duplicate["error_code"] == "DUPLICATE_NAME"
    assert duplicate["message"] == "Branch 'main' already exists."

    stash_pop = server.sandbox_stash_pop()
    assert stash_pop["error_code"] == "STASH_CONFLICT"

    protected = server.sandbox_delete_branch(branch="main")
    assert protected["error_code"] == "PROTECTED_BRANCH"

    missing = server.sandbox_ancestors(commit="zzzzzzz")
    assert missing["status"] == "error"
    assert missing["error_code"] == "NOT_FOUND"


def test_server_sandboxes_are_isolated() -> None:
    server.sandbox_commit(message="only here", sandbox="alpha")

    alpha = server.sandbox_state(sandbox="alpha")
    beta = server.sandbox_state(sandbox="beta")

    assert len(alpha["commits"]) == 4
    assert len(beta["commits"]) == 3
    assert "alpha" in server.registry and "beta" in server.registry


def test_server_remote_tools_report_ahead_and_behind() -> None:
    fetched = server.sandbox_fetch()
    assert fetched["behind"] == 1

    server.sandbox_commit(message="local")
    pushed = server.sandbox_push()
    assert pushed["command"] == "git push origin main"
    assert pushed["ahead"] == 0

    pulled = server.sandbox_pull(branch="main")
    assert pulled["status"] == "success"
    assert pulled["behind"] == 0

    assert server.sandbox_push(branch="ghost")["error_code"] == "NOT_FOUND"


def test_server_reset_and_cherry_pick_accept_short_refs() -> None:
    state = server.sandbox_state()
    first = state["commits"][0]

    reset = server.sandbox_reset(commit=first["short_hash"])
    assert reset["status"] == "success"
    assert reset["commit_id"] == first["id"]

    picked = server.sandbox_cherry_pick(commit=state["commits"][2]["id"])
    assert picked["status"] == "success"

    ancestors = server.sandbox_ancestors(commit="main")
    assert ancestors["count"] == 2
    assert ancestors["ancestors"][-1] == first["id"]


def test_server_run_and_reset_repository() -> None:
    run = server.sandbox_run(
        commands=["git tag v1", "git stash", "git bogus", "git stash pop"],
    )
    assert run["status"] == "error"
    assert run["message"] == "3 of 4 commands applied"
    assert [entry["line"] for entry in run["results"]][2] == "git bogus"
    assert run["results"][2]["error_code"] == "INVALID_INPUT"

    stopped = server.sandbox_run(commands=["git merge main", "git tag v2"], stop_on_error=True)
    assert len(stopped["results"]) == 1

    reset = server.sandbox_reset_repository()
    assert reset["status"] == "success"
    state = server.sandbox_state()
    assert len(state["commits"]) == 3
    assert state["tags"] == []


def test_registry_evicts_least_recently_used() -> None:
    server.registry.configure(2)

    server.sandbox_state(sandbox="a")
    server.sandbox_state(sandbox="b")
    server.sandbox_state(sandbox="a")
    server.sandbox_state(sandbox="c")

    assert "a" in server.registry
    assert "c" in server.registry
    assert "b" not in server.registry
    assert len(server.registry) == 2
    assert server.registry.discard("a") is True
    assert server.registry.discard("a") is False
