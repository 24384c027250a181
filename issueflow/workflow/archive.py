"""Archive manager: relocate finished issues into the archive store.

The archive store is a second ArtifactStore with the same layout. An issue
keeps its ID when the archive has no entry of that name; otherwise it gets
`<id>-YYYYMMDD-HHMMSS` (local wall clock) and the older entry is untouched.

Retry safety: before anything moves, the issue's meta.env gets an
ARCHIVE_TOKEN and ORIGINAL_ID. A retry after a crash finds the entry
carrying its token (or, once the source is gone, the not-yet-archived entry
with its ORIGINAL_ID) and finishes that attempt instead of starting another.
"""

import errno
import logging
import os
import shutil
import uuid
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Union

from issueflow.lib.constants import ARCHIVE_SUFFIX_FORMAT, STAGING_DIR, check_issue_id
from issueflow.lib.errors import IssueNotFoundError, NotArchivableError, StoreIOError
from issueflow.runner.locking import issue_lock
from issueflow.store.artifacts import ArtifactStore, utc_now
from issueflow.workflow.state_machine import ARCHIVABLE, IssueStatus, parse_status, transition

logger = logging.getLogger(__name__)


class ArchiveManager:
    """Moves resolved/rejected issues from the issues store to the archive store."""

    def __init__(
        self,
        store: ArtifactStore,
        archive: Union[ArtifactStore, Path],
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        if isinstance(archive, ArtifactStore):
            self.archive_store = archive
        else:
            self.archive_store = ArtifactStore(archive, store.lock_timeout)
        self.clock = clock

    @property
    def root(self) -> Path:
        return self.archive_store.root

    def archive(self, issue_id: str) -> str:
        """Archive an issue. Returns the ID it was stored under.

        Raises:
            NotArchivableError: status is not rejected/resolved
            IssueNotFoundError: no such issue and no unfinished archive of it
            StoreIOError / LockTimeout: filesystem failure
        """
        check_issue_id(issue_id)
        # Archive-namespace lock first: serializes every archive name derived from issue_id
        with issue_lock(self.root, issue_id, self.archive_store.lock_timeout):
            with self.store.lock(issue_id):
                try:
                    return self._archive_locked(issue_id)
                except OSError as e:
                    raise StoreIOError(f"Archive failed: {e}", issue_id, path=self.store.issue_dir(issue_id)) from e

    def _archive_locked(self, issue_id: str) -> str:
        source = self.store.issue_dir(issue_id)

        if not self.store.exists(issue_id):
            pending = self._find_unfinished(issue_id)
            if pending is None:
                raise IssueNotFoundError(issue_id, self.store.root)
            logger.info(f"[ARCHIVE] {issue_id}: completing earlier archive as {pending}")
            if source.exists():
                shutil.rmtree(source)
            self._finalize(pending, issue_id)
            return pending

        meta = self.store.read_meta(issue_id)
        raw_status = self.store.status(issue_id)
        if parse_status(raw_status) not in ARCHIVABLE:
            raise NotArchivableError(issue_id, raw_status)

        token = meta.get("ARCHIVE_TOKEN")
        if token:
            landed = self._find_by_token(issue_id, token)
            if landed is not None:
                logger.info(f"[ARCHIVE] {issue_id}: copy already landed as {landed}, removing source")
                shutil.rmtree(source)
                self._finalize(landed, issue_id)
                return landed
        else:
            token = uuid.uuid4().hex
            self.store.update_meta(issue_id, {"ARCHIVE_TOKEN": token, "ORIGINAL_ID": issue_id})

        self._discard_staging(token)
        target = self._target_name(issue_id)
        self._move(source, self.root / target, token)
        self._finalize(target, issue_id)

        if target == issue_id:
            logger.info(f"[ARCHIVE] {issue_id}: archived")
        else:
            logger.info(f"[ARCHIVE] {issue_id}: name taken in archive, archived as {target}")
        return target

    def _target_name(self, issue_id: str) -> str:
        """issue_id if free in the archive, else issue_id-<timestamp>[-n]."""
        if not (self.root / issue_id).exists():
            return issue_id
        base = f"{issue_id}-{self.clock().strftime(ARCHIVE_SUFFIX_FORMAT)}"
        name = base
        n = 2
        while (self.root / name).exists():
            name = f"{base}-{n}"
            n += 1
        return name

    def _move(self, source: Path, dest: Path, token: str) -> None:
        """Move source to dest; across filesystems via a staging copy."""
        dest.parent.mkdir(parents=True, exist_ok=True)
        try:
            os.rename(source, dest)
            return
        except OSError as e:
            if e.errno != errno.EXDEV:
                raise

        staging = self.root / STAGING_DIR / token
        logger.debug(f"[ARCHIVE] {source.name}: cross-device move via {staging}")
        staging.parent.mkdir(parents=True, exist_ok=True)
        shutil.copytree(source, staging)
        os.rename(staging, dest)
        shutil.rmtree(source)

    def _discard_staging(self, token: str) -> None:
        staging = self.root / STAGING_DIR / token
        if staging.exists():
            logger.warning(f"[ARCHIVE] discarding partial copy {staging}")
            shutil.rmtree(staging)

    def _candidates(self, issue_id: str) -> list[str]:
        """Archive entries that could have been produced from issue_id."""
        prefix = f"{issue_id}-"
        return [
            name for name in self.archive_store.issue_ids()
            if name == issue_id or name.startswith(prefix)
        ]

    def _find_by_token(self, issue_id: str, token: str) -> Optional[str]:
        for name in self._candidates(issue_id):
            if self.archive_store.read_meta(name).get("ARCHIVE_TOKEN") == token:
                return name
        return None

    def _find_unfinished(self, issue_id: str) -> Optional[str]:
        """Entry moved from issue_id whose status update never happened."""
        for name in reversed(self._candidates(issue_id)):
            meta = self.archive_store.read_meta(name)
            if meta.get("ORIGINAL_ID") != issue_id:
                continue
            if parse_status(meta.get("STATUS")) in ARCHIVABLE:
                return name
        return None

    def _finalize(self, name: str, original_id: str) -> None:
        self.archive_store.update_meta(name, {
            "ID": name,
            "ORIGINAL_ID": original_id,
            "ARCHIVED_AS": name,
            "ARCHIVED_AT": utc_now().isoformat(),
        })
        transition(self.archive_store, name, IssueStatus.ARCHIVED, reason=f"archived from {original_id}")
