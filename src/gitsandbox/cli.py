"""Command line interface for replaying sandbox sessions and challenges."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .challenges import ChallengeTracker, load_challenges
from .commands import execute_command
from .engine import SandboxEngine
from .errors import ErrorCode, SandboxError
from .file_manager import FileManager
from .progress import ProgressStore
from .runtime import configure_logging, get_runtime_settings

file_manager = FileManager()


def _load_script(path_value: str) -> list[str]:
    """Read command lines from a YAML list or a plain text file."""
    path = Path(path_value).expanduser()
    if not path.exists():
        raise SandboxError(
            ErrorCode.NOT_FOUND,
            f"Script file not found: {path}",
            "Pass an existing file to --script.",
        )
    if path.suffix in {".yaml", ".yml"}:
        loaded = file_manager.read_yaml(path)
        if isinstance(loaded, dict):
            loaded = loaded.get("commands")
        if not isinstance(loaded, list):
            raise SandboxError(
                ErrorCode.INVALID_INPUT,
                f"Script {path} must contain a list of commands.",
                "Use a YAML list or a `commands:` key.",
            )
        return [str(item) for item in loaded]

    lines = []
    for raw_line in file_manager.read_text(path).splitlines():
        line = raw_line.strip()
        if line and not line.startswith("#"):
            lines.append(line)
    return lines


def _replay(
    engine: SandboxEngine,
    lines: list[str],
    stop_on_error: bool = False,
) -> list[dict[str, Any]]:
    results: list[dict[str, Any]] = []
    for line in lines:
        try:
            result = execute_command(engine, line)
        except SandboxError as exc:
            entry = {"line": line, **exc.to_payload()}
        else:
            entry = {
                "line": line,
                "status": result.status,
                "message": result.message,
                "error_code": result.error_code,
                "command": result.command,
                "commit_id": result.commit_id,
            }
        results.append(entry)
        if stop_on_error and entry["status"] == "error":
            break
    return results


def _state_payload(engine: SandboxEngine) -> dict[str, Any]:
    return engine.snapshot().model_dump(mode="json")


def _print_state(state: dict[str, Any]) -> None:
    print(f"HEAD -> {state['head_branch']}")
    heads: dict[str, list[str]] = {}
    for branch in state["branches"]:
        heads.setdefault(branch["head_commit_id"], []).append(branch["name"])
    tags: dict[str, list[str]] = {}
    for tag in state["tags"]:
        tags.setdefault(tag["commit_id"], []).append(f"tag: {tag['name']}")
    remote = state["remote"]
    for branch_name, commit_id in remote["branches"].items():
        heads.setdefault(commit_id, []).append(f"{remote['name']}/{branch_name}")

    for commit in sorted(state["commits"], key=lambda item: (-item["row"], item["lane_index"])):
        labels = heads.get(commit["id"], []) + tags.get(commit["id"], [])
        decoration = f" ({', '.join(labels)})" if labels else ""
        indent = "  " * commit["lane_index"]
        print(f"{indent}* {commit['short_hash']}{decoration} {commit['message']}")

    print(f"ahead: {remote['ahead']} behind: {remote['behind']}")
    if state.get("stashed_work"):
        print(f"stash: {state['stashed_work']}")


def _print_payload(payload: dict[str, Any], as_json: bool) -> None:
    if as_json:
        print(json.dumps(payload, indent=2))
        return

    status = payload.get("status", "unknown").upper()
    message = payload.get("message", "")
    print(f"[{status}] {message}")

    if payload.get("status") == "error" and "results" not in payload:
        error_code = payload.get("error_code", "")
        suggestion = payload.get("suggestion", "")
        if error_code:
            print(f"error_code: {error_code}")
        if suggestion:
            print(f"suggestion: {suggestion}")
        return

    for entry in payload.get("results", []):
        marker = "ok " if entry.get("status") == "success" else "err"
        print(f"{marker} {entry.get('line', '')}: {entry.get('message', '')}")

    if "challenges" in payload:
        for challenge in payload["challenges"]:
            marker = "x" if challenge.get("completed") else ("-" if challenge.get("unlocked") else " ")
            print(
                f"[{marker}] {challenge.get('id')} {challenge.get('title')} "
                f"({challenge.get('difficulty')}): {challenge.get('goal')}"
            )

    if "goal" in payload:
        print(f"goal: {payload['goal']}")

    if "state" in payload:
        _print_state(payload["state"])


def _error_payload(exc: Exception) -> dict[str, Any]:
    if isinstance(exc, SandboxError):
        return exc.to_payload()
    if isinstance(exc, ValidationError):
        return {
            "status": "error",
            "error_code": ErrorCode.INVALID_INPUT.value,
            "message": "Input validation failed",
            "suggestion": "Check command arguments and constraints.",
            "details": {"errors": exc.errors(include_context=False, include_input=False)},
        }
    return {
        "status": "error",
        "error_code": ErrorCode.INTERNAL_ERROR.value,
        "message": str(exc),
        "suggestion": "Retry with --log-level DEBUG and inspect logs.",
        "details": {},
    }


def _progress_store(path_value: str) -> ProgressStore:
    if path_value:
        return ProgressStore(path_value)
    return ProgressStore(get_runtime_settings().progress_file)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gitsandbox", description="Git commit graph sandbox")
    parser.add_argument(
        "--log-level",
        default="",
        help="Logging level (default: GITSANDBOX_LOG_LEVEL or WARNING)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Replay git commands on a fresh sandbox")
    run.add_argument("lines", nargs="*", help='Commands, e.g. "git commit -m fix"')
    run.add_argument("--script", default="", help="YAML list or text file of commands")
    run.add_argument(
        "--stop-on-error",
        action="store_true",
        help="Stop at the first rejected command",
    )
    run.add_argument("--json", action="store_true", help="Output machine-readable JSON")

    state = subparsers.add_parser("state", help="Show the default sandbox state")
    state.add_argument("--json", action="store_true", help="Output machine-readable JSON")

    challenges = subparsers.add_parser("challenges", help="Work with challenge definitions")
    challenge_commands = challenges.add_subparsers(dest="challenge_command", required=True)

    list_cmd = challenge_commands.add_parser("list", help="List challenges and progress")
    list_cmd.add_argument("--file", required=True, help="YAML file with challenge definitions")
    list_cmd.add_argument("--progress", default="", help="Progress file (default from env)")
    list_cmd.add_argument("--json", action="store_true", help="Output machine-readable JSON")

    check = challenge_commands.add_parser("check", help="Attempt a challenge with commands")
    check.add_argument("challenge_id", help="Challenge id")
    check.add_argument("lines", nargs="*", help="Commands to replay after setup")
    check.add_argument("--file", required=True, help="YAML file with challenge definitions")
    check.add_argument("--progress", default="", help="Progress file (default from env)")
    check.add_argument("--script", default="", help="YAML list or text file of commands")
    check.add_argument("--json", action="store_true", help="Output machine-readable JSON")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    as_json = bool(getattr(args, "json", False))

    try:
        if args.log_level:
            configure_logging(args.log_level)
        else:
            configure_logging(get_runtime_settings().log_level)

        exit_code = 0
        if args.command == "run":
            lines = list(args.lines)
            if args.script:
                lines = _load_script(args.script) + lines
            engine = SandboxEngine()
            results = _replay(engine, lines, stop_on_error=args.stop_on_error)
            failed = sum(1 for entry in results if entry["status"] == "error")
            response = {
                "status": "error" if failed else "success",
                "message": f"{len(results) - failed} of {len(results)} commands applied",
                "results": results,
                "state": _state_payload(engine),
            }
            exit_code = 1 if failed else 0
        elif args.command == "challenges" and args.challenge_command == "list":
            tracker = ChallengeTracker(load_challenges(args.file), _progress_store(args.progress))
            response = {
                "status": "success",
                "message": (
                    f"{len(tracker.completed_ids & {c.id for c in tracker.challenges})} of "
                    f"{len(tracker.challenges)} challenges completed"
                ),
                "challenges": [
                    {
                        "id": challenge.id,
                        "title": challenge.title,
                        "difficulty": challenge.difficulty.value,
                        "goal": challenge.goal.description,
                        "unlocked": tracker.is_unlocked(challenge),
                        "completed": challenge.id in tracker.completed_ids,
                    }
                    for challenge in tracker.challenges
                ],
            }
        elif args.command == "challenges":
            tracker = ChallengeTracker(load_challenges(args.file), _progress_store(args.progress))
            challenge = tracker.get(args.challenge_id)
            if not tracker.is_unlocked(challenge):
                raise SandboxError(
                    ErrorCode.INVALID_INPUT,
                    f"Challenge '{challenge.id}' is locked",
                    "Complete the previous challenge first.",
                )
            lines = list(args.lines)
            if args.script:
                lines = _load_script(args.script) + lines
            tracker.start(challenge)
            results = _replay(tracker.engine, lines)
            complete = tracker.check_goal()
            response = {
                "status": "success" if complete else "error",
                "message": (
                    f"Challenge '{challenge.id}' complete"
                    if complete
                    else f"Challenge '{challenge.id}' goal not reached"
                ),
                "challenge_id": challenge.id,
                "complete": complete,
                "goal": challenge.goal.description,
                "results": results,
                "state": _state_payload(tracker.engine),
            }
            exit_code = 0 if complete else 1
        else:
            engine = SandboxEngine()
            response = {
                "status": "success",
                "message": "Default sandbox state",
                "state": _state_payload(engine),
            }

        _print_payload(response, as_json=as_json)
        return exit_code
    except Exception as exc:  # noqa: BLE001
        payload = _error_payload(exc)
        _print_payload(payload, as_json=as_json)
        return 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
