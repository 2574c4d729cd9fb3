"""Parse git-style command lines and dispatch them to a sandbox engine."""

from __future__ import annotations

import shlex

from .engine import SandboxEngine
from .errors import ErrorCode, SandboxError
from .models import OperationResult

SUPPORTED_COMMANDS = (
    'commit -m "<message>"',
    "branch <name>",
    "branch -d <name>",
    "checkout <name>",
    "checkout -b <name>",
    "switch <name>",
    "merge <branch>",
    "rebase <branch>",
    "reset [--hard] <commit>",
    "cherry-pick <commit>",
    "tag <name>",
    "stash",
    "stash pop",
    "fetch [remote]",
    "push [remote] [branch]",
    "pull [remote] [branch]",
)


def _invalid(line: str, reason: str) -> SandboxError:
    return SandboxError(
        ErrorCode.INVALID_INPUT,
        f"Cannot run '{line}': {reason}",
        "Supported commands: " + "; ".join(SUPPORTED_COMMANDS),
        {"line": line},
    )


def tokenize(line: str) -> list[str]:
    """Split a command line, dropping a leading ``git``."""
    try:
        tokens = shlex.split(line)
    except ValueError as exc:
        raise _invalid(line, str(exc)) from exc
    if tokens and tokens[0] == "git":
        tokens = tokens[1:]
    if not tokens:
        raise _invalid(line, "empty command")
    return tokens


def execute_command(engine: SandboxEngine, line: str) -> OperationResult:
    """Run one command line against ``engine``.

    Raises :class:`SandboxError` with ``INVALID_INPUT`` when the line cannot
    be parsed; engine-level rejections are returned as error results.
    """
    tokens = tokenize(line)
    verb, args = tokens[0], tokens[1:]

    if verb == "commit":
        if len(args) != 2 or args[0] not in {"-m", "--message"}:
            raise _invalid(line, 'expected commit -m "<message>"')
        return engine.commit(args[1])

    if verb == "branch":
        if len(args) == 2 and args[0] in {"-d", "-D", "--delete"}:
            return engine.delete_branch(args[1])
        if len(args) != 1:
            raise _invalid(line, "expected branch <name> or branch -d <name>")
        return engine.create_branch(args[0])

    if verb in {"checkout", "switch"}:
        if len(args) == 2 and args[0] in {"-b", "-c"}:
            created = engine.create_branch(args[1])
            if not created.ok:
                return created
            return engine.checkout(args[1])
        if len(args) != 1:
            raise _invalid(line, f"expected {verb} <branch>")
        return engine.checkout(args[0])

    if verb == "merge":
        return engine.merge(_single(line, args, "merge <branch>"))

    if verb == "rebase":
        return engine.rebase(_single(line, args, "rebase <branch>"))

    if verb == "reset":
        args = [arg for arg in args if arg not in {"--hard", "--mixed", "--soft"}]
        ref = _single(line, args, "reset [--hard] <commit>")
        return engine.reset(engine.resolve_commit_ref(ref) or ref)

    if verb == "cherry-pick":
        ref = _single(line, args, "cherry-pick <commit>")
        return engine.cherry_pick(engine.resolve_commit_ref(ref) or ref)

    if verb == "tag":
        return engine.add_tag(_single(line, args, "tag <name>"))

    if verb == "stash":
        if not args or args == ["push"]:
            return engine.stash()
        if args == ["pop"]:
            return engine.stash_pop()
        raise _invalid(line, "expected stash or stash pop")

    if verb == "fetch":
        _remote_and_branch(engine, line, args, allow_branch=False)
        return engine.fetch()

    if verb in {"push", "pull"}:
        branch = _remote_and_branch(engine, line, args, allow_branch=True)
        if verb == "push":
            return engine.push(branch)
        return engine.pull(branch)

    raise _invalid(line, f"unknown command '{verb}'")


def _single(line: str, args: list[str], usage: str) -> str:
    if len(args) != 1:
        raise _invalid(line, f"expected {usage}")
    return args[0]


def _remote_and_branch(
    engine: SandboxEngine,
    line: str,
    args: list[str],
    allow_branch: bool,
) -> str | None:
    if args and args[0] == engine.remote_name:
        args = args[1:]
    elif len(args) == 2:
        raise _invalid(line, f"unknown remote '{args[0]}'")
    if not args:
        return None
    if allow_branch and len(args) == 1:
        return args[0]
    raise _invalid(line, "unexpected arguments")
