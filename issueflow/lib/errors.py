"""
Error taxonomy for issueflow.

Every error carries the issue, stage and artifact kind it concerns (where
known) so callers can diagnose a failure without re-reading logs.
"""


class IssueFlowError(Exception):
    """Base class for all issueflow errors."""

    def __init__(self, message: str, issue_id: str = "", stage: str = "", kind: str = ""):
        self.issue_id = issue_id
        self.stage = stage
        self.kind = kind
        context = []
        if issue_id:
            context.append(f"issue={issue_id}")
        if stage:
            context.append(f"stage={stage}")
        if kind:
            context.append(f"kind={kind}")
        super().__init__(message + (f" ({', '.join(context)})" if context else ""))


class MissingPrerequisiteError(IssueFlowError):
    """A stage was invoked before its required input artifact existed."""

    def __init__(self, issue_id: str, stage: str, kind: str):
        super().__init__(f"Missing required input '{kind}'", issue_id, stage, kind)


class DuplicateArtifactError(IssueFlowError):
    """An artifact of this kind already exists and supersede was not requested."""

    def __init__(self, issue_id: str, kind: str, stage: str = ""):
        super().__init__(f"Artifact '{kind}' already exists", issue_id, stage, kind)


class NotArchivableError(IssueFlowError):
    """Archive requested for an issue that has not reached rejected/resolved."""

    def __init__(self, issue_id: str, status: str):
        self.status = status
        super().__init__(f"Issue is '{status}', only rejected or resolved issues can be archived", issue_id)


class IssueNotFoundError(IssueFlowError):
    """No issue directory exists for this ID."""

    def __init__(self, issue_id: str, root=None):
        self.root = root
        where = f" under {root}" if root else ""
        super().__init__(f"Issue not found{where}", issue_id)


class StoreIOError(IssueFlowError):
    """The underlying filesystem failed. Always fatal to the current operation."""

    def __init__(self, message: str, issue_id: str = "", kind: str = "", path=None):
        self.path = path
        super().__init__(message + (f" at {path}" if path else ""), issue_id, kind=kind)


class CollaboratorError(IssueFlowError):
    """An external content producer could not produce a usable response."""

    def __init__(self, message: str, issue_id: str = "", stage: str = ""):
        super().__init__(message, issue_id, stage)
