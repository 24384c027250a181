"""
Artifact store: one directory per issue, one file per artifact kind.

Layout of an issue directory:
    problem.md, validation.md, ...   artifact content (see ARTIFACT_FILES)
    meta.env                         ID, STATUS, CREATED_AT, ...
    manifest.json                    who produced each artifact and when
    history/                         superseded artifact versions

Artifacts are append-only. put() refuses to replace an existing kind unless
allow_supersede is set, in which case the prior version moves to history/
and the overwrite is logged. All writes for one issue happen under that
issue's flock and land on disk (fsync + rename) before put() returns.

A problem.md dropped in by hand, without meta.env or manifest.json, is a
valid issue; its metadata is derived from the files. It is open, or
resolved if a hand-written solution.md sits beside it.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from issueflow.lib import envparse
from issueflow.lib.constants import (
    ARTIFACT_FILES,
    EXTERNAL_PRODUCER,
    HISTORY_DIR,
    ISSUE_ID_PATTERN,
    KIND_ORDER,
    MANIFEST_FILE,
    MAX_STORED_ID_LEN,
    META_FILE,
    ArtifactKind,
    check_issue_id,
    is_reserved_name,
    parse_kind,
)
from issueflow.lib.errors import DuplicateArtifactError, IssueNotFoundError, StoreIOError
from issueflow.lib.fileio import atomic_write_json, atomic_write_text
from issueflow.lib.validate import ValidationError, validate, validate_before_write
from issueflow.runner.locking import issue_lock

logger = logging.getLogger(__name__)

STATUS_OPEN = "open"
STATUS_RESOLVED = "resolved"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(value: str) -> datetime:
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass(frozen=True)
class Artifact:
    """One immutable unit of stage output."""
    issue_id: str
    kind: ArtifactKind
    content: str
    produced_by: str
    produced_at: datetime
    decision: Optional[str] = None  # "continue" / "short_circuit" recorded by the stage
    reason: str = ""
    superseded_at: Optional[datetime] = None  # Set only on history entries


@dataclass
class Issue:
    """An issue as currently persisted."""
    id: str
    status: str
    created_at: datetime
    dir: Path
    artifacts: list[Artifact] = field(default_factory=list)

    @property
    def kinds(self) -> list[ArtifactKind]:
        return [a.kind for a in self.artifacts]


class ArtifactStore:
    """Filesystem-backed map of (issue ID, artifact kind) -> content.

    The root is injected by the caller; nothing here reads global state.
    """

    def __init__(self, root: Path, lock_timeout: float = 60):
        self.root = Path(root)
        self.lock_timeout = lock_timeout

    # -- paths ---------------------------------------------------------------

    def issue_dir(self, issue_id: str) -> Path:
        return self.root / check_issue_id(issue_id, MAX_STORED_ID_LEN)

    def artifact_path(self, issue_id: str, kind) -> Path:
        return self.issue_dir(issue_id) / ARTIFACT_FILES[parse_kind(kind)]

    def lock(self, issue_id: str):
        """Per-issue write lock (context manager)."""
        return issue_lock(self.root, check_issue_id(issue_id, MAX_STORED_ID_LEN), self.lock_timeout)

    # -- issues --------------------------------------------------------------

    def exists(self, issue_id: str) -> bool:
        """An issue exists once its definition artifact exists."""
        return self.has(issue_id, ArtifactKind.DEFINITION)

    def has(self, issue_id: str, kind) -> bool:
        return self.artifact_path(issue_id, kind).is_file()

    def issue_ids(self) -> list[str]:
        """IDs of every issue under the root, sorted.

        A missing root is an empty store. An unreadable root raises.
        """
        if not self.root.exists():
            return []
        try:
            entries = sorted(self.root.iterdir())
        except OSError as e:
            raise StoreIOError(f"Cannot list issues: {e}", path=self.root) from e

        definition_file = ARTIFACT_FILES[ArtifactKind.DEFINITION]
        ids = []
        for d in entries:
            if is_reserved_name(d.name) or not ISSUE_ID_PATTERN.match(d.name):
                continue
            if d.is_dir() and (d / definition_file).is_file():
                ids.append(d.name)
        return ids

    def status(self, issue_id: str) -> str:
        if not self.exists(issue_id):
            raise IssueNotFoundError(issue_id, self.root)
        return self.read_meta(issue_id).get("STATUS") or self._implied_status(issue_id)

    def _implied_status(self, issue_id: str) -> str:
        """Status of an issue without meta.env: resolved once it has a resolution."""
        if self.has(issue_id, ArtifactKind.RESOLUTION):
            return STATUS_RESOLVED
        return STATUS_OPEN

    def load_issue(self, issue_id: str) -> Issue:
        if not self.exists(issue_id):
            raise IssueNotFoundError(issue_id, self.root)

        meta = self.read_meta(issue_id)
        artifacts = self.list(issue_id)
        created_raw = meta.get("CREATED_AT")
        if created_raw:
            created_at = _parse_time(created_raw)
        else:
            created_at = next(a.produced_at for a in artifacts if a.kind is ArtifactKind.DEFINITION)

        return Issue(
            id=issue_id,
            status=meta.get("STATUS") or self._implied_status(issue_id),
            created_at=created_at,
            dir=self.issue_dir(issue_id),
            artifacts=artifacts,
        )

    # -- metadata ------------------------------------------------------------

    def read_meta(self, issue_id: str) -> dict[str, str]:
        """Return meta.env contents, or {} if the issue has none yet."""
        meta_path = self.issue_dir(issue_id) / META_FILE
        if not meta_path.exists():
            return {}
        try:
            env = envparse.load_env(meta_path)
        except OSError as e:
            raise StoreIOError(f"Cannot read metadata: {e}", issue_id, path=meta_path) from e
        except ValueError as e:
            raise StoreIOError(f"Corrupt metadata: {e}", issue_id, path=meta_path) from e
        try:
            validate(env, "meta")
        except ValidationError as e:
            raise StoreIOError(f"Invalid metadata: {e}", issue_id, path=meta_path) from e
        return env

    def update_meta(self, issue_id: str, updates: dict) -> dict[str, str]:
        """Apply updates to meta.env (None removes a key). Returns the new metadata."""
        meta_path = self.issue_dir(issue_id) / META_FILE
        with self.lock(issue_id):
            if not self.exists(issue_id):
                raise IssueNotFoundError(issue_id, self.root)
            meta = self.read_meta(issue_id)
            meta.setdefault("ID", issue_id)
            if "STATUS" not in meta:
                meta["STATUS"] = self._implied_status(issue_id)
            for key, value in updates.items():
                if value is None:
                    meta.pop(key, None)
                else:
                    meta[key] = str(value)
            meta["UPDATED_AT"] = utc_now().isoformat()
            self._write_meta(meta_path, meta)
        return meta

    def _write_meta(self, meta_path: Path, meta: dict) -> None:
        validate_before_write(meta, "meta", meta_path)
        try:
            atomic_write_text(meta_path, envparse.format_env(meta))
        except OSError as e:
            raise StoreIOError(f"Cannot write metadata: {e}", meta.get("ID", ""), path=meta_path) from e

    # -- manifest ------------------------------------------------------------

    def _read_manifest(self, issue_id: str) -> dict:
        path = self.issue_dir(issue_id) / MANIFEST_FILE
        if not path.exists():
            return {"version": 1, "issue": issue_id, "artifacts": {}, "history": []}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except OSError as e:
            raise StoreIOError(f"Cannot read manifest: {e}", issue_id, path=path) from e
        except json.JSONDecodeError as e:
            raise StoreIOError(f"Corrupt manifest: {e}", issue_id, path=path) from e
        try:
            validate(data, "manifest")
        except ValidationError as e:
            raise StoreIOError(f"Invalid manifest: {e}", issue_id, path=path) from e
        return data

    def _write_manifest(self, issue_id: str, manifest: dict) -> None:
        path = self.issue_dir(issue_id) / MANIFEST_FILE
        validate_before_write(manifest, "manifest", path)
        atomic_write_json(path, manifest)

    def _entry_for(self, manifest: dict, path: Path, kind: ArtifactKind) -> dict:
        """Manifest entry for kind, or one derived from the file if it was written by hand."""
        entry = manifest["artifacts"].get(kind.value)
        if entry is not None:
            return entry
        mtime = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
        return {
            "kind": kind.value,
            "file": path.name,
            "produced_by": EXTERNAL_PRODUCER,
            "produced_at": mtime.isoformat(),
        }

    def _to_artifact(self, issue_id: str, entry: dict, content: str) -> Artifact:
        superseded = entry.get("superseded_at")
        return Artifact(
            issue_id=issue_id,
            kind=ArtifactKind(entry["kind"]),
            content=content,
            produced_by=entry["produced_by"],
            produced_at=_parse_time(entry["produced_at"]),
            decision=entry.get("decision"),
            reason=entry.get("reason", ""),
            superseded_at=_parse_time(superseded) if superseded else None,
        )

    # -- artifacts -----------------------------------------------------------

    def put(
        self,
        issue_id: str,
        kind,
        content: str,
        produced_by: str = EXTERNAL_PRODUCER,
        allow_supersede: bool = False,
        decision: Optional[str] = None,
        reason: str = "",
    ) -> Artifact:
        """Write a new artifact.

        Args:
            issue_id: Issue to write to. Writing the definition creates it.
            kind: ArtifactKind or its name
            content: Opaque text payload
            produced_by: Stage name recorded in the manifest
            allow_supersede: Replace an existing artifact, keeping the old one in history/
            decision: Decision the producing stage returned, for resumed runs
            reason: Reason attached to that decision

        Raises:
            DuplicateArtifactError: kind exists and allow_supersede is False
            IssueNotFoundError: non-definition write to an issue that doesn't exist
            StoreIOError: filesystem failure
        """
        kind = parse_kind(kind)
        if not isinstance(content, str):
            raise TypeError(f"Artifact content must be str, got {type(content).__name__}")

        issue_dir = self.issue_dir(issue_id)
        path = issue_dir / ARTIFACT_FILES[kind]

        with self.lock(issue_id):
            if kind is not ArtifactKind.DEFINITION and not self.exists(issue_id):
                raise IssueNotFoundError(issue_id, self.root)
            if kind is ArtifactKind.DEFINITION and not self.exists(issue_id):
                check_issue_id(issue_id)

            try:
                manifest = self._read_manifest(issue_id)
                now = utc_now()

                retired = None
                if path.exists():
                    if not allow_supersede:
                        raise DuplicateArtifactError(issue_id, kind.value, produced_by)
                    retired = self._retire(issue_id, kind, path, manifest, now)

                creating = kind is ArtifactKind.DEFINITION and not (issue_dir / META_FILE).exists()
                issue_dir.mkdir(parents=True, exist_ok=True)

                entry = {
                    "kind": kind.value,
                    "file": path.name,
                    "produced_by": produced_by,
                    "produced_at": now.isoformat(),
                }
                if decision is not None:
                    entry["decision"] = decision
                if reason:
                    entry["reason"] = reason
                manifest["artifacts"][kind.value] = entry
                # Manifest first: a content file on disk always has its entry
                try:
                    self._write_manifest(issue_id, manifest)
                except (OSError, ValidationError):
                    if retired is not None:
                        retired.replace(path)
                    raise
                atomic_write_text(path, content)

                if creating:
                    self._write_meta(issue_dir / META_FILE, {
                        "ID": issue_id,
                        "STATUS": self._implied_status(issue_id),
                        "CREATED_AT": now.isoformat(),
                    })
                    logger.info(f"[STORE] {issue_id}: created issue")
            except OSError as e:
                raise StoreIOError(f"Cannot write artifact: {e}", issue_id, kind.value, path) from e

        logger.debug(f"[STORE] {issue_id}: wrote {kind.value} ({len(content)} chars, by {produced_by})")
        return self._to_artifact(issue_id, entry, content)

    def _retire(self, issue_id: str, kind: ArtifactKind, path: Path, manifest: dict, now: datetime) -> Path:
        """Move the current version of kind into history/ and record it. Returns its new path."""
        old = dict(self._entry_for(manifest, path, kind))
        stamp = _parse_time(old["produced_at"]).strftime("%Y%m%dT%H%M%S%fZ")

        history_dir = path.parent / HISTORY_DIR
        history_dir.mkdir(exist_ok=True)
        target = history_dir / f"{path.stem}.{stamp}{path.suffix}"
        n = 2
        while target.exists():
            target = history_dir / f"{path.stem}.{stamp}-{n}{path.suffix}"
            n += 1

        path.replace(target)
        old["file"] = f"{HISTORY_DIR}/{target.name}"
        old["superseded_at"] = now.isoformat()
        manifest["history"].append(old)

        logger.warning(
            f"[STORE] {issue_id}: superseding '{kind.value}' "
            f"(produced by {old['produced_by']} at {old['produced_at']}), prior version kept as {old['file']}"
        )
        return target

    def get(self, issue_id: str, kind) -> Optional[Artifact]:
        """Return the current artifact of kind, or None if absent."""
        kind = parse_kind(kind)
        path = self.artifact_path(issue_id, kind)
        if not path.is_file():
            return None
        try:
            entry = self._entry_for(self._read_manifest(issue_id), path, kind)
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            raise StoreIOError(f"Cannot read artifact: {e}", issue_id, kind.value, path) from e
        return self._to_artifact(issue_id, entry, content)

    def history(self, issue_id: str, kind=None) -> list[Artifact]:
        """Superseded versions, oldest supersede first, optionally for one kind."""
        wanted = parse_kind(kind) if kind is not None else None
        issue_dir = self.issue_dir(issue_id)

        versions = []
        for entry in self._read_manifest(issue_id)["history"]:
            if wanted is not None and entry["kind"] != wanted.value:
                continue
            path = issue_dir / entry["file"]
            try:
                content = path.read_text(encoding="utf-8")
            except OSError as e:
                raise StoreIOError(f"Cannot read superseded artifact: {e}", issue_id, entry["kind"], path) from e
            versions.append(self._to_artifact(issue_id, entry, content))
        return versions

    def list(self, issue_id: str) -> list[Artifact]:
        """All current artifacts for the issue, oldest first."""
        issue_dir = self.issue_dir(issue_id)
        manifest = self._read_manifest(issue_id)

        artifacts = []
        for kind, filename in ARTIFACT_FILES.items():
            path = issue_dir / filename
            if not path.is_file():
                continue
            try:
                entry = self._entry_for(manifest, path, kind)
                content = path.read_text(encoding="utf-8")
            except OSError as e:
                raise StoreIOError(f"Cannot read artifact: {e}", issue_id, kind.value, path) from e
            artifacts.append(self._to_artifact(issue_id, entry, content))

        return sorted(artifacts, key=lambda a: (a.produced_at, KIND_ORDER[a.kind]))
