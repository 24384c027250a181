"""
Issue registry: a read-only view over an ArtifactStore.

An issue is open while it has a definition but no resolution, and resolved
once it has a resolution but has not been archived. Nothing is cached; every
call rescans the store.
"""

import logging

from issueflow.lib.constants import ArtifactKind
from issueflow.store.artifacts import ArtifactStore

logger = logging.getLogger(__name__)

STATUS_ARCHIVED = "archived"


class IssueRegistry:
    """Lists issues by scanning the store for well-known artifacts."""

    def __init__(self, store: ArtifactStore):
        self.store = store

    def list_open(self) -> list[str]:
        """Issues with a definition and no resolution, sorted by ID."""
        return [
            issue_id for issue_id in self.store.issue_ids()
            if not self.store.has(issue_id, ArtifactKind.RESOLUTION)
        ]

    def list_resolved(self) -> list[str]:
        """Issues with a resolution that are not yet archived, sorted by ID."""
        resolved = []
        for issue_id in self.store.issue_ids():
            if not self.store.has(issue_id, ArtifactKind.RESOLUTION):
                continue
            status = self.store.read_meta(issue_id).get("STATUS")
            if status == STATUS_ARCHIVED:
                logger.debug(f"[REGISTRY] {issue_id}: archived but still in {self.store.root}, skipping")
                continue
            resolved.append(issue_id)
        return resolved
