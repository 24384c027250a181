"""
Lock management for issueflow.

Uses flock for per-issue write locking in the issues store and per-name
locking of the archive check-then-move.
"""

import atexit
import fcntl
import os
import signal
import sys
import threading
import time
from contextlib import contextmanager
from pathlib import Path

from issueflow.lib.constants import LOCKS_DIR
from issueflow.lib.errors import IssueFlowError

POLL_INTERVAL_SECONDS = 0.05

# Lock files held by the current thread. flock locks belong to the open file
# description, so re-acquiring the same path on a fresh fd would self-deadlock.
_held = threading.local()


class LockTimeout(IssueFlowError):
    """Lock acquisition timed out."""

    def __init__(self, lock_name: str, timeout: float, issue_id: str = ""):
        self.lock_name = lock_name
        self.timeout = timeout
        super().__init__(f"Could not acquire {lock_name} within {timeout}s", issue_id)


def _held_paths() -> set:
    if not hasattr(_held, "paths"):
        _held.paths = set()
    return _held.paths


def count_held_locks(root: Path) -> int:
    """Count how many lock files under root are currently held by anyone."""
    lock_dir = root / LOCKS_DIR
    if not lock_dir.exists():
        return 0

    count = 0
    for lock_file in lock_dir.glob("*.lock"):
        try:
            fd = open(lock_file, 'r')
        except OSError:
            continue
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            fcntl.flock(fd, fcntl.LOCK_UN)
        except BlockingIOError:
            count += 1
        finally:
            fd.close()
    return count


@contextmanager
def _acquire_lock(lock_file: Path, timeout: float, lock_name: str, issue_id: str = ""):
    """
    Internal helper to acquire a file lock.

    Re-entrant within one thread. Signal handlers that release the lock on
    SIGTERM/SIGINT are only installed from the main thread.

    Args:
        lock_file: Path to the lock file
        timeout: Seconds to wait for lock
        lock_name: Human-readable name for error messages
        issue_id: Issue the lock protects, for error context
    """
    key = str(lock_file.absolute())
    held = _held_paths()
    if key in held:
        yield
        return

    lock_file.parent.mkdir(parents=True, exist_ok=True)
    fd = open(lock_file, 'w')
    start = time.monotonic()

    while True:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            break
        except BlockingIOError:
            if time.monotonic() - start > timeout:
                fd.close()
                raise LockTimeout(lock_name, timeout, issue_id)
            time.sleep(POLL_INTERVAL_SECONDS)

    def cleanup():
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
            fd.close()
        except (OSError, ValueError):
            pass

    atexit.register(cleanup)
    in_main = threading.current_thread() is threading.main_thread()
    if in_main:
        original_sigterm = signal.signal(signal.SIGTERM, lambda *_: sys.exit(1))
        original_sigint = signal.signal(signal.SIGINT, lambda *_: sys.exit(1))

    held.add(key)
    try:
        fd.write(f"{os.getpid()}\n")
        fd.flush()
        yield
    finally:
        held.discard(key)
        atexit.unregister(cleanup)
        if in_main:
            signal.signal(signal.SIGTERM, original_sigterm)
            signal.signal(signal.SIGINT, original_sigint)
        cleanup()


@contextmanager
def issue_lock(root: Path, issue_id: str, timeout: float = 60):
    """
    Acquire per-issue lock under a store root, yield, release on exit.

    Different issues never contend; all writes to one issue are serialized.
    """
    lock_file = root / LOCKS_DIR / f"{issue_id}.lock"
    with _acquire_lock(lock_file, timeout, f"lock for {issue_id}", issue_id):
        yield


@contextmanager
def run_lock(root: Path, issue_id: str, timeout: float = 0):
    """
    Acquire the per-issue run lock, held for a whole controller run.

    Separate from issue_lock so stage writes inside the run don't contend
    with it. Default timeout 0: a second run of the same issue fails fast.
    """
    lock_file = root / LOCKS_DIR / "runs" / f"{issue_id}.lock"
    with _acquire_lock(lock_file, timeout, f"run lock for {issue_id}", issue_id):
        yield
