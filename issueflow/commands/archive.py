"""
issueflow archive - Move a resolved or rejected issue into the archive.
"""

import sys

from issueflow.lib.config import Settings
from issueflow.lib.errors import IssueNotFoundError, NotArchivableError, StoreIOError
from issueflow.runner.locking import LockTimeout
from issueflow.store.artifacts import ArtifactStore
from issueflow.workflow.archive import ArchiveManager


def cmd_archive(args, settings: Settings) -> int:
    """Archive one issue and print the ID it was archived under."""
    store = ArtifactStore(settings.issues_dir, settings.lock_timeout)
    manager = ArchiveManager(store, settings.archive_dir)

    try:
        archived_id = manager.archive(args.id)
    except (ValueError, NotArchivableError, IssueNotFoundError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    except (StoreIOError, LockTimeout, OSError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 3

    print(archived_id)
    return 0
