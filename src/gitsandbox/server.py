"""MCP server entrypoint and tool definitions for the Git sandbox."""

from __future__ import annotations

import argparse
import json
import logging
import time
import uuid
from collections import OrderedDict
from threading import Lock
from typing import Annotated, Any, Callable

from mcp.server.fastmcp import FastMCP
from pydantic import Field, ValidationError

from .commands import execute_command
from .engine import SandboxEngine
from .errors import ErrorCode, SandboxError
from .models import OperationResult
from .runtime import (
    TRANSPORTS,
    configure_logging,
    get_runtime_settings,
    validate_streamable_http_binding,
)

logger = logging.getLogger(__name__)

DEFAULT_SANDBOX = "default"

SandboxId = Annotated[
    str,
    Field(min_length=1, max_length=64, description="Sandbox identifier; created on first use"),
]


def _build_fastmcp() -> FastMCP:
    """Instantiate FastMCP with compatibility fallbacks for older SDK versions."""
    kwargs: dict[str, Any] = {
        "name": "git-sandbox",
        "instructions": (
            "Simulated Git commit graph for teaching. Use sandbox_commit, sandbox_branch, "
            "sandbox_checkout, sandbox_merge, sandbox_rebase, sandbox_reset, "
            "sandbox_cherry_pick, sandbox_tag, sandbox_delete_branch, sandbox_stash, "
            "sandbox_stash_pop, sandbox_fetch, sandbox_push, sandbox_pull or sandbox_run "
            "to change the graph, and sandbox_state to inspect it."
        ),
        "json_response": True,
    }
    optional_keys = ("json_response",)

    while True:
        try:
            return FastMCP(**kwargs)
        except TypeError as exc:
            message = str(exc).lower()
            if "unexpected keyword argument" not in message:
                raise

            removed_key = next((key for key in optional_keys if key in message and key in kwargs), None)
            if removed_key is None:
                raise
            kwargs.pop(removed_key, None)
            logger.debug(
                "FastMCP constructor does not support '%s'; using compatibility fallback.",
                removed_key,
            )


class SandboxRegistry:
    """Bounded map of live sandboxes, evicting the least recently used."""

    def __init__(self, max_sandboxes: int = 32) -> None:
        self._lock = Lock()
        self._engines: OrderedDict[str, SandboxEngine] = OrderedDict()
        self.max_sandboxes = max(1, int(max_sandboxes))

    def configure(self, max_sandboxes: int) -> None:
        with self._lock:
            self.max_sandboxes = max(1, int(max_sandboxes))
            self._evict()

    def get(self, sandbox_id: str) -> SandboxEngine:
        with self._lock:
            engine = self._engines.get(sandbox_id)
            if engine is None:
                engine = SandboxEngine()
                self._engines[sandbox_id] = engine
                logger.info("Created sandbox '%s'", sandbox_id)
            self._engines.move_to_end(sandbox_id)
            self._evict()
            return engine

    def discard(self, sandbox_id: str) -> bool:
        with self._lock:
            return self._engines.pop(sandbox_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._engines.clear()

    def __contains__(self, sandbox_id: str) -> bool:
        with self._lock:
            return sandbox_id in self._engines

    def __len__(self) -> int:
        with self._lock:
            return len(self._engines)

    def _evict(self) -> None:
        while len(self._engines) > self.max_sandboxes:
            evicted, _ = self._engines.popitem(last=False)
            logger.info("Evicted sandbox '%s'", evicted)


mcp = _build_fastmcp()
registry = SandboxRegistry()

READ_ONLY_TOOL_ANNOTATIONS = {
    "readOnlyHint": True,
    "idempotentHint": True,
    "destructiveHint": False,
    "openWorldHint": False,
}

WRITE_TOOL_ANNOTATIONS = {
    "readOnlyHint": False,
    "idempotentHint": False,
    "destructiveHint": False,
    "openWorldHint": False,
}

DESTRUCTIVE_WRITE_TOOL_ANNOTATIONS = {
    "readOnlyHint": False,
    "idempotentHint": False,
    "destructiveHint": True,
    "openWorldHint": False,
}


def _register_tool(annotations: dict[str, bool]):
    """Register tool with annotations, falling back when the SDK lacks support."""

    def decorator(func):
        try:
            return mcp.tool(annotations=annotations)(func)
        except TypeError as exc:
            message = str(exc).lower()
            if "annotations" not in message and "unexpected keyword argument" not in message:
                raise
            logger.debug("FastMCP tool annotations not supported in this SDK version; using fallback.")
            return mcp.tool()(func)

    return decorator


def _error_payload_from_exception(exc: Exception) -> dict[str, Any]:
    """Convert internal exceptions into stable MCP error payloads."""
    if isinstance(exc, SandboxError):
        return exc.to_payload()
    if isinstance(exc, ValidationError):
        return {
            "status": "error",
            "error_code": ErrorCode.INVALID_INPUT.value,
            "message": "Input validation failed",
            "suggestion": "Check field constraints and request schema.",
            "details": {"errors": exc.errors(include_context=False, include_input=False)},
        }
    logger.exception("Unhandled server exception", exc_info=exc)
    return {
        "status": "error",
        "error_code": ErrorCode.INTERNAL_ERROR.value,
        "message": str(exc),
        "suggestion": "Check server logs and retry the operation.",
        "details": {},
    }


def _build_correlation_id() -> str:
    """Generate short operation correlation IDs for diagnostics."""
    return uuid.uuid4().hex[:12]


def _log_tool_phase(
    *,
    correlation_id: str,
    tool_name: str,
    status: str,
    elapsed_seconds: float,
    details: dict[str, Any] | None = None,
) -> None:
    """Emit one structured diagnostics line per tool call."""
    payload: dict[str, Any] = {
        "event_type": "sandbox_tool_phase",
        "correlation_id": correlation_id,
        "tool_name": tool_name,
        "status": status,
        "elapsed_ms": round(elapsed_seconds * 1000, 3),
    }
    if details:
        payload["details"] = details
    logger.info("sandbox_tool_phase %s", json.dumps(payload, ensure_ascii=True, sort_keys=True))


def _result_payload(result: OperationResult, engine: SandboxEngine) -> dict[str, Any]:
    payload = result.model_dump(mode="json")
    payload["ahead"] = engine.remote.state.ahead
    payload["behind"] = engine.remote.state.behind
    return payload


def _run_tool(
    tool_name: str,
    sandbox: str,
    operation: Callable[[SandboxEngine], dict[str, Any]],
) -> dict[str, Any]:
    """Execute a tool against one sandbox and log its outcome."""
    start = time.perf_counter()
    correlation_id = _build_correlation_id()
    try:
        engine = registry.get(sandbox)
        payload = dict(operation(engine))
    except Exception as exc:  # noqa: BLE001
        payload = _error_payload_from_exception(exc)
    payload["correlation_id"] = correlation_id
    payload["sandbox"] = sandbox
    _log_tool_phase(
        correlation_id=correlation_id,
        tool_name=tool_name,
        status=str(payload.get("status", "unknown")),
        elapsed_seconds=time.perf_counter() - start,
        details={"error_code": payload["error_code"]} if payload.get("error_code") else None,
    )
    return payload


@_register_tool(WRITE_TOOL_ANNOTATIONS)
def sandbox_commit(
    message: Annotated[str, Field(description="Commit message")],
    sandbox: SandboxId = DEFAULT_SANDBOX,
) -> dict[str, Any]:
    """Create a commit on the checked-out branch."""
    return _run_tool(
        "sandbox_commit", sandbox, lambda engine: _result_payload(engine.commit(message), engine)
    )


@_register_tool(WRITE_TOOL_ANNOTATIONS)
def sandbox_branch(
    name: Annotated[str, Field(description="New branch name")],
    sandbox: SandboxId = DEFAULT_SANDBOX,
) -> dict[str, Any]:
    """Create a branch at the current HEAD commit."""
    return _run_tool(
        "sandbox_branch", sandbox, lambda engine: _result_payload(engine.create_branch(name), engine)
    )


@_register_tool(WRITE_TOOL_ANNOTATIONS)
def sandbox_checkout(
    branch: Annotated[str, Field(description="Branch to check out")],
    sandbox: SandboxId = DEFAULT_SANDBOX,
) -> dict[str, Any]:
    """Switch HEAD to another branch."""
    return _run_tool(
        "sandbox_checkout", sandbox, lambda engine: _result_payload(engine.checkout(branch), engine)
    )


@_register_tool(WRITE_TOOL_ANNOTATIONS)
def sandbox_merge(
    source_branch: Annotated[str, Field(description="Branch merged into the current one")],
    sandbox: SandboxId = DEFAULT_SANDBOX,
) -> dict[str, Any]:
    """Merge a branch into the checked-out branch with a two-parent commit."""
    return _run_tool(
        "sandbox_merge",
        sandbox,
        lambda engine: _result_payload(engine.merge(source_branch), engine),
    )


@_register_tool(WRITE_TOOL_ANNOTATIONS)
def sandbox_rebase(
    onto: Annotated[str, Field(description="Branch to replay the current branch onto")],
    sandbox: SandboxId = DEFAULT_SANDBOX,
) -> dict[str, Any]:
    """Replay commits unique to the current branch on top of another branch."""
    return _run_tool(
        "sandbox_rebase", sandbox, lambda engine: _result_payload(engine.rebase(onto), engine)
    )


@_register_tool(DESTRUCTIVE_WRITE_TOOL_ANNOTATIONS)
def sandbox_reset(
    commit: Annotated[str, Field(description="Commit id, unique id prefix or branch name")],
    sandbox: SandboxId = DEFAULT_SANDBOX,
) -> dict[str, Any]:
    """Move the current branch head to a commit (hard reset)."""

    def _operation(engine: SandboxEngine) -> dict[str, Any]:
        commit_id = engine.resolve_commit_ref(commit) or commit
        return _result_payload(engine.reset(commit_id), engine)

    return _run_tool("sandbox_reset", sandbox, _operation)


@_register_tool(WRITE_TOOL_ANNOTATIONS)
def sandbox_cherry_pick(
    commit: Annotated[str, Field(description="Commit id, unique id prefix or branch name")],
    sandbox: SandboxId = DEFAULT_SANDBOX,
) -> dict[str, Any]:
    """Copy a commit onto the current branch."""

    def _operation(engine: SandboxEngine) -> dict[str, Any]:
        commit_id = engine.resolve_commit_ref(commit) or commit
        return _result_payload(engine.cherry_pick(commit_id), engine)

    return _run_tool("sandbox_cherry_pick", sandbox, _operation)


@_register_tool(WRITE_TOOL_ANNOTATIONS)
def sandbox_tag(
    name: Annotated[str, Field(description="Tag name")],
    sandbox: SandboxId = DEFAULT_SANDBOX,
) -> dict[str, Any]:
    """Tag the current HEAD commit."""
    return _run_tool(
        "sandbox_tag", sandbox, lambda engine: _result_payload(engine.add_tag(name), engine)
    )


@_register_tool(DESTRUCTIVE_WRITE_TOOL_ANNOTATIONS)
def sandbox_delete_branch(
    branch: Annotated[str, Field(description="Branch to delete")],
    sandbox: SandboxId = DEFAULT_SANDBOX,
) -> dict[str, Any]:
    """Delete a branch pointer; its commits stay in the graph."""
    return _run_tool(
        "sandbox_delete_branch",
        sandbox,
        lambda engine: _result_payload(engine.delete_branch(branch), engine),
    )


@_register_tool(WRITE_TOOL_ANNOTATIONS)
def sandbox_stash(sandbox: SandboxId = DEFAULT_SANDBOX) -> dict[str, Any]:
    """Save simulated work in progress into the single stash slot."""
    return _run_tool("sandbox_stash", sandbox, lambda engine: _result_payload(engine.stash(), engine))


@_register_tool(WRITE_TOOL_ANNOTATIONS)
def sandbox_stash_pop(sandbox: SandboxId = DEFAULT_SANDBOX) -> dict[str, Any]:
    """Apply the stashed work as a new commit and clear the slot."""
    return _run_tool(
        "sandbox_stash_pop", sandbox, lambda engine: _result_payload(engine.stash_pop(), engine)
    )


@_register_tool(WRITE_TOOL_ANNOTATIONS)
def sandbox_fetch(sandbox: SandboxId = DEFAULT_SANDBOX) -> dict[str, Any]:
    """Refresh knowledge of the simulated remote."""
    return _run_tool("sandbox_fetch", sandbox, lambda engine: _result_payload(engine.fetch(), engine))


@_register_tool(WRITE_TOOL_ANNOTATIONS)
def sandbox_push(
    branch: Annotated[str, Field(description="Branch to push (default: current)")] = "",
    sandbox: SandboxId = DEFAULT_SANDBOX,
) -> dict[str, Any]:
    """Move the remote tracking pointer to the local branch head."""
    return _run_tool(
        "sandbox_push", sandbox, lambda engine: _result_payload(engine.push(branch or None), engine)
    )


@_register_tool(WRITE_TOOL_ANNOTATIONS)
def sandbox_pull(
    branch: Annotated[str, Field(description="Branch to pull (default: current)")] = "",
    sandbox: SandboxId = DEFAULT_SANDBOX,
) -> dict[str, Any]:
    """Bring a simulated remote commit into the branch."""
    return _run_tool(
        "sandbox_pull", sandbox, lambda engine: _result_payload(engine.pull(branch or None), engine)
    )


@_register_tool(DESTRUCTIVE_WRITE_TOOL_ANNOTATIONS)
def sandbox_reset_repository(sandbox: SandboxId = DEFAULT_SANDBOX) -> dict[str, Any]:
    """Discard the sandbox and restore the canonical three-commit repository."""
    return _run_tool(
        "sandbox_reset_repository",
        sandbox,
        lambda engine: _result_payload(engine.reset_to_default(), engine),
    )


@_register_tool(WRITE_TOOL_ANNOTATIONS)
def sandbox_run(
    commands: Annotated[
        list[str],
        Field(min_length=1, max_length=100, description='Git command lines, e.g. "git commit -m x"'),
    ],
    stop_on_error: Annotated[bool, Field(description="Stop at the first rejected command")] = False,
    sandbox: SandboxId = DEFAULT_SANDBOX,
) -> dict[str, Any]:
    """Replay git-style command lines against the sandbox."""

    def _operation(engine: SandboxEngine) -> dict[str, Any]:
        results: list[dict[str, Any]] = []
        for line in commands:
            try:
                entry = execute_command(engine, line).model_dump(mode="json")
            except SandboxError as exc:
                entry = exc.to_payload()
            entry["line"] = line
            results.append(entry)
            if stop_on_error and entry["status"] == "error":
                break
        failed = sum(1 for entry in results if entry["status"] == "error")
        return {
            "status": "error" if failed else "success",
            "message": f"{len(results) - failed} of {len(results)} commands applied",
            "results": results,
            "head_branch": engine.head_branch_name,
        }

    return _run_tool("sandbox_run", sandbox, _operation)


@_register_tool(READ_ONLY_TOOL_ANNOTATIONS)
def sandbox_state(sandbox: SandboxId = DEFAULT_SANDBOX) -> dict[str, Any]:
    """Return commits with positions, branches, tags, log and remote state."""

    def _operation(engine: SandboxEngine) -> dict[str, Any]:
        return {
            "status": "success",
            "message": "State retrieved",
            **engine.snapshot().model_dump(mode="json"),
        }

    return _run_tool("sandbox_state", sandbox, _operation)


@_register_tool(READ_ONLY_TOOL_ANNOTATIONS)
def sandbox_ancestors(
    commit: Annotated[str, Field(description="Commit id, unique id prefix or branch name")],
    sandbox: SandboxId = DEFAULT_SANDBOX,
) -> dict[str, Any]:
    """List commits reachable from a commit, including itself."""

    def _operation(engine: SandboxEngine) -> dict[str, Any]:
        commit_id = engine.resolve_commit_ref(commit)
        if commit_id is None:
            raise SandboxError(
                ErrorCode.NOT_FOUND,
                "Commit not found.",
                "Pass a commit id, unique prefix or branch name.",
                {"commit": commit},
            )
        ancestors = engine.ancestor_ids(commit_id)
        return {
            "status": "success",
            "message": f"{len(ancestors)} commits reachable",
            "commit_id": commit_id,
            "ancestors": ancestors,
            "count": len(ancestors),
        }

    return _run_tool("sandbox_ancestors", sandbox, _operation)


def main() -> None:
    try:
        settings = get_runtime_settings()
    except ValueError as exc:
        raise SystemExit(f"Invalid runtime configuration: {exc}") from exc

    parser = argparse.ArgumentParser(prog="gitsandbox-mcp", description="Git sandbox MCP server")
    parser.add_argument("--transport", choices=sorted(TRANSPORTS), default=settings.transport)
    parser.add_argument("--host", default=settings.host)
    parser.add_argument("--port", type=int, default=settings.port)
    parser.add_argument(
        "--allow-public-http",
        action="store_true",
        default=settings.allow_public_http,
        help="Allow streamable HTTP on non-loopback hosts.",
    )
    parser.add_argument("--max-sandboxes", type=int, default=settings.max_sandboxes)
    parser.add_argument("--log-level", default=settings.log_level)
    args = parser.parse_args()

    try:
        validate_streamable_http_binding(
            transport=args.transport,
            host=args.host,
            allow_public_http=args.allow_public_http,
        )
        configure_logging(args.log_level)
    except ValueError as exc:
        parser.error(str(exc))
    if args.max_sandboxes < 1:
        parser.error("--max-sandboxes must be at least 1")

    registry.configure(args.max_sandboxes)
    mcp.settings.host = args.host
    mcp.settings.port = int(args.port)

    if args.transport == "stdio":
        mcp.run()
        return
    mcp.run(transport="streamable-http")


if __name__ == "__main__":
    main()
