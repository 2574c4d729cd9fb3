"""Runtime configuration helpers."""

from __future__ import annotations

import ipaddress
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from .constants import DEFAULT_PROGRESS_FILE

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}
TRANSPORTS = {"stdio", "streamable-http"}
LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR"}


@dataclass(frozen=True)
class RuntimeSettings:
    """Validated settings sourced from environment variables or CLI."""

    transport: str = "stdio"
    host: str = "127.0.0.1"
    port: int = 8000
    allow_public_http: bool = False
    progress_file: Path = Path(DEFAULT_PROGRESS_FILE).expanduser()
    log_level: str = "WARNING"
    max_sandboxes: int = 32


def get_runtime_settings(env: Mapping[str, str] | None = None) -> RuntimeSettings:
    """Validate and return runtime settings from environment variables."""
    source = os.environ if env is None else env

    transport = source.get("GITSANDBOX_TRANSPORT", "stdio").strip()
    if transport not in TRANSPORTS:
        raise ValueError("GITSANDBOX_TRANSPORT must be 'stdio' or 'streamable-http'.")

    host = source.get("GITSANDBOX_HOST", "127.0.0.1").strip()

    port_env = source.get("GITSANDBOX_PORT", "8000")
    try:
        port = int(port_env)
    except ValueError as exc:
        raise ValueError("GITSANDBOX_PORT must be an integer.") from exc
    if not (1 <= port <= 65535):
        raise ValueError("GITSANDBOX_PORT must be between 1 and 65535.")

    allow_public_http = _parse_bool_env(source, "GITSANDBOX_ALLOW_PUBLIC_HTTP", default=False)
    validate_streamable_http_binding(
        transport=transport,
        host=host,
        allow_public_http=allow_public_http,
    )

    progress_file = Path(
        source.get("GITSANDBOX_PROGRESS_FILE", "").strip() or DEFAULT_PROGRESS_FILE
    ).expanduser()

    log_level = parse_log_level(source.get("GITSANDBOX_LOG_LEVEL", "WARNING"))

    max_sandboxes_env = source.get("GITSANDBOX_MAX_SANDBOXES", "32")
    try:
        max_sandboxes = int(max_sandboxes_env)
    except ValueError as exc:
        raise ValueError("GITSANDBOX_MAX_SANDBOXES must be an integer.") from exc
    if max_sandboxes < 1:
        raise ValueError("GITSANDBOX_MAX_SANDBOXES must be at least 1.")

    return RuntimeSettings(
        transport=transport,
        host=host,
        port=port,
        allow_public_http=allow_public_http,
        progress_file=progress_file,
        log_level=log_level,
        max_sandboxes=max_sandboxes,
    )


def parse_log_level(value: str) -> str:
    level = value.strip().upper()
    if level not in LOG_LEVELS:
        allowed = ", ".join(sorted(LOG_LEVELS))
        raise ValueError(f"Log level must be one of: {allowed}.")
    return level


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, parse_log_level(level)),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def is_loopback_host(host: str) -> bool:
    """Return whether host resolves to a loopback literal/name."""
    normalized = host.strip().lower()
    if normalized in {"localhost", "localhost.localdomain"}:
        return True
    try:
        return ipaddress.ip_address(normalized).is_loopback
    except ValueError:
        return False


def validate_streamable_http_binding(transport: str, host: str, allow_public_http: bool) -> None:
    """Reject non-loopback HTTP binding unless explicitly allowed."""
    if transport != "streamable-http":
        return
    if allow_public_http:
        return
    if not is_loopback_host(host):
        raise ValueError(
            "Refusing non-loopback streamable-http binding without explicit opt-in. "
            "Set GITSANDBOX_ALLOW_PUBLIC_HTTP=true or use --allow-public-http."
        )


def _parse_bool_env(source: Mapping[str, str], key: str, default: bool) -> bool:
    raw = source.get(key)
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    raise ValueError(f"{key} must be a boolean value (true/false).")
