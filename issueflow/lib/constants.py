"""Shared constants for issueflow."""

import re
from enum import Enum


class ArtifactKind(Enum):
    """Every artifact an issue can carry, in pipeline order."""
    DEFINITION = "definition"
    VALIDATION = "validation"
    PROPOSAL = "proposal"
    REVIEW = "review"
    IMPLEMENTATION_REPORT = "implementation-report"
    TEST_REPORT = "test-report"
    RESOLUTION = "resolution"


# One file per kind inside the issue directory.
# problem.md / solution.md are the names hand-written issues already use.
ARTIFACT_FILES = {
    ArtifactKind.DEFINITION: "problem.md",
    ArtifactKind.VALIDATION: "validation.md",
    ArtifactKind.PROPOSAL: "proposal.md",
    ArtifactKind.REVIEW: "review.md",
    ArtifactKind.IMPLEMENTATION_REPORT: "implementation.md",
    ArtifactKind.TEST_REPORT: "test-report.md",
    ArtifactKind.RESOLUTION: "solution.md",
}

KIND_ORDER = {kind: i for i, kind in enumerate(ArtifactKind)}

META_FILE = "meta.env"
MANIFEST_FILE = "manifest.json"
HISTORY_DIR = "history"
RUNS_DIR = "runs"
LOCKS_DIR = ".locks"
STAGING_DIR = ".incoming"

# Issue ID validation
ISSUE_ID_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9._-]*$')
MAX_ISSUE_ID_LEN = 128
# Stored names may carry an archive collision suffix on top
MAX_STORED_ID_LEN = MAX_ISSUE_ID_LEN + 32

# Archive collision suffix, local wall clock at second granularity
ARCHIVE_SUFFIX_FORMAT = "%Y%m%d-%H%M%S"

# Producer recorded for artifacts not written through the store
EXTERNAL_PRODUCER = "external"


def parse_kind(value) -> ArtifactKind:
    """Coerce a kind name (or an ArtifactKind) to ArtifactKind.

    Raises:
        ValueError: if the name is not a known kind
    """
    if isinstance(value, ArtifactKind):
        return value
    try:
        return ArtifactKind(value)
    except ValueError:
        raise ValueError(f"Unknown artifact kind '{value}'") from None


def is_reserved_name(name: str) -> bool:
    """Directories starting with '_' or '.' belong to the store, not to issues."""
    return name.startswith("_") or name.startswith(".")


def check_issue_id(issue_id: str, max_len: int = MAX_ISSUE_ID_LEN) -> str:
    """Validate an issue ID, returning it unchanged.

    Raises:
        ValueError: if the ID is empty, too long, or contains path characters
    """
    if not issue_id or len(issue_id) > max_len or not ISSUE_ID_PATTERN.match(issue_id):
        raise ValueError(
            f"Invalid issue ID '{issue_id}': must start with a letter or digit, "
            f"then letters/digits/'.'/'_'/'-' (max {max_len} chars)"
        )
    return issue_id
