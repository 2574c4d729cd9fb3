"""Ancestor reachability over the commit DAG."""

from __future__ import annotations

from collections import deque
from collections.abc import Mapping

from .models import Commit


def ancestor_ids(commits: Mapping[str, Commit], commit_id: str) -> list[str]:
    """Return ids reachable from ``commit_id`` via parent links, inclusive.

    Breadth-first, each id visited once, in discovery order. Parent ids
    missing from ``commits`` are still reported but not expanded.
    """
    result: list[str] = []
    visited: set[str] = set()
    queue: deque[str] = deque([commit_id])
    while queue:
        current = queue.popleft()
        if current in visited:
            continue
        visited.add(current)
        result.append(current)
        node = commits.get(current)
        if node is not None:
            queue.extend(node.parent_ids)
    return result


def unique_ancestors(
    commits: Mapping[str, Commit],
    commit_id: str,
    excluded_from: str,
) -> list[str]:
    """Ancestors of ``commit_id`` that are not ancestors of ``excluded_from``.

    Order follows discovery from ``commit_id`` (newest first along parents).
    """
    excluded = set(ancestor_ids(commits, excluded_from))
    return [item for item in ancestor_ids(commits, commit_id) if item not in excluded]
