"""
issueflow new - Create an issue from a problem statement.

Reads the definition from --file or stdin and writes it as the issue's
definition artifact. The issue starts out open.
"""

import sys
from pathlib import Path

from issueflow.lib.config import Settings
from issueflow.lib.constants import ArtifactKind, check_issue_id
from issueflow.lib.errors import DuplicateArtifactError, StoreIOError
from issueflow.runner.locking import LockTimeout
from issueflow.store.artifacts import ArtifactStore


def cmd_new(args, settings: Settings) -> int:
    """Create a new issue."""
    issue_id = args.id

    try:
        check_issue_id(issue_id)
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    store = ArtifactStore(settings.issues_dir, settings.lock_timeout)
    if store.exists(issue_id):
        print(f"ERROR: Issue '{issue_id}' already exists", file=sys.stderr)
        return 2

    try:
        if args.file:
            content = Path(args.file).read_text(encoding="utf-8")
        else:
            content = sys.stdin.read()
    except OSError as e:
        print(f"ERROR: Cannot read definition: {e}", file=sys.stderr)
        return 3

    if not content.strip():
        print("ERROR: Definition is empty", file=sys.stderr)
        return 2

    try:
        store.put(issue_id, ArtifactKind.DEFINITION, content)
    except DuplicateArtifactError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    except (StoreIOError, LockTimeout) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 3

    print(f"Created issue {issue_id}")
    print(f"  Directory: {store.issue_dir(issue_id)}")
    return 0
