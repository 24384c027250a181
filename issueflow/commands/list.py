"""
issueflow list-open / list-resolved - List issues by lifecycle position.
"""

import sys

from issueflow.lib.config import Settings
from issueflow.lib.errors import StoreIOError
from issueflow.store.artifacts import ArtifactStore
from issueflow.store.registry import IssueRegistry


def _print_ids(ids: list[str]) -> None:
    for issue_id in ids:
        print(issue_id)


def cmd_list_open(args, settings: Settings) -> int:
    """Print issues that have a definition and no resolution."""
    registry = IssueRegistry(ArtifactStore(settings.issues_dir, settings.lock_timeout))
    try:
        ids = registry.list_open()
    except StoreIOError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    _print_ids(ids)
    return 0


def cmd_list_resolved(args, settings: Settings) -> int:
    """Print issues that have a resolution and are not yet archived."""
    registry = IssueRegistry(ArtifactStore(settings.issues_dir, settings.lock_timeout))
    try:
        ids = registry.list_resolved()
    except StoreIOError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    _print_ids(ids)
    return 0
