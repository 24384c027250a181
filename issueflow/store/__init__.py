"""Persistence for issues and their artifacts."""

from issueflow.store.artifacts import Artifact, ArtifactStore, Issue
from issueflow.store.registry import IssueRegistry

__all__ = [
    "Artifact",
    "ArtifactStore",
    "Issue",
    "IssueRegistry",
]
