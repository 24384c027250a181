"""Workflow controller for issue resolution runs.

Drives one issue through the fixed stage order:

    validation -> proposal -> review -> implementation -> verification -> finalization

Transition rule, per stage decision:
    CONTINUE       advance to the next stage
    SHORT_CIRCUIT  skip straight to finalization (issue ends rejected)
    FAIL           halt; status stays where it was; no retry

A stage whose output artifact already exists is not re-run; the decision
recorded when it was produced is reused. Re-invoking after a FAIL therefore
picks up at the stage that failed.
"""

import logging
from dataclasses import dataclass, field
from typing import Mapping, Optional

from issueflow.lib.constants import ArtifactKind
from issueflow.lib.errors import IssueFlowError
from issueflow.lib.validate import ValidationError
from issueflow.runner.context import RunContext
from issueflow.runner.locking import run_lock
from issueflow.runner.stages import (
    CollaboratorLike,
    Decision,
    DecisionKind,
    StageExecutor,
    StageSpec,
    run_stage,
)
from issueflow.store.artifacts import ArtifactStore
from issueflow.workflow.state_machine import TERMINAL, IssueStatus, get_status, transition

logger = logging.getLogger(__name__)

VALIDATION = "validation"
PROPOSAL = "proposal"
REVIEW = "review"
IMPLEMENTATION = "implementation"
VERIFICATION = "verification"
FINALIZATION = "finalization"

K = ArtifactKind

# The branch table. Order is execution order; finalization must be last.
STAGES: tuple[StageSpec, ...] = (
    StageSpec(VALIDATION, K.VALIDATION, inputs=(K.DEFINITION,), may_short_circuit=True),
    StageSpec(PROPOSAL, K.PROPOSAL, inputs=(K.DEFINITION, K.VALIDATION)),
    StageSpec(REVIEW, K.REVIEW, inputs=(K.PROPOSAL,)),
    StageSpec(IMPLEMENTATION, K.IMPLEMENTATION_REPORT, inputs=(K.REVIEW,)),
    StageSpec(VERIFICATION, K.TEST_REPORT, inputs=(K.IMPLEMENTATION_REPORT,)),
    StageSpec(
        FINALIZATION,
        K.RESOLUTION,
        inputs=(K.DEFINITION, K.VALIDATION),
        optional_inputs=(K.PROPOSAL, K.REVIEW, K.IMPLEMENTATION_REPORT, K.TEST_REPORT),
    ),
)

STAGE_ORDER = [s.name for s in STAGES]

# Run outcomes. "failed" is never persisted as an issue status.
OUTCOME_RESOLVED = "resolved"
OUTCOME_REJECTED = "rejected"
OUTCOME_FAILED = "failed"
OUTCOME_NOOP = "noop"


@dataclass
class RunResult:
    """Outcome of one controller run."""
    issue_id: str
    outcome: str
    status: str
    failed_stage: Optional[str] = None
    reason: str = ""
    stages_run: list[str] = field(default_factory=list)
    run_id: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.outcome == OUTCOME_FAILED


class WorkflowController:
    """Runs the stage pipeline for one issue at a time.

    collaborators maps stage name -> collaborator; every stage in the
    branch table needs one.
    """

    def __init__(
        self,
        store: ArtifactStore,
        collaborators: Mapping[str, CollaboratorLike],
        stages: tuple[StageSpec, ...] = STAGES,
    ):
        missing = [s.name for s in stages if s.name not in collaborators]
        if missing:
            raise ValueError(f"No collaborator for stage(s): {', '.join(missing)}")
        if not stages or stages[-1].name != FINALIZATION:
            raise ValueError(f"Last stage must be '{FINALIZATION}'")

        self.store = store
        self.stages = stages
        self.executors = {s.name: StageExecutor(s, collaborators[s.name], store) for s in stages}

    def run(self, issue_id: str) -> RunResult:
        """Drive the issue to a terminal status, or halt on the first FAIL.

        Raises:
            IssueNotFoundError: no definition for issue_id
            MissingPrerequisiteError: a stage's inputs were not persisted
            InvalidTransition: persisted status doesn't fit the pipeline position
            StoreIOError / LockTimeout: store access failed
        """
        with run_lock(self.store.root, issue_id):
            status = get_status(self.store, issue_id)
            if status in TERMINAL:
                logger.info(f"[RUN] {issue_id}: already {status.value}, nothing to do")
                return RunResult(issue_id, OUTCOME_NOOP, status.value)

            ctx = RunContext.create(self.store.issue_dir(issue_id), issue_id)
            ctx.log(f"Starting run: {ctx.run_id} (status {status.value})")
            logger.info(f"[RUN] {issue_id}: starting run {ctx.run_id}")

            try:
                return self._run(ctx, status)
            except IssueFlowError as e:
                self._record_abort(ctx, e)
                raise

    def _record_abort(self, ctx: RunContext, error: IssueFlowError) -> None:
        """Write the failed result.json for an aborted run.

        The original error is what propagates; a failure here is only logged.
        """
        try:
            current = self.store.status(ctx.issue_id)
            ctx.log(f"Run aborted: {error}")
            ctx.write_result(OUTCOME_FAILED, current, failed_stage=error.stage or None, reason=str(error))
        except (IssueFlowError, ValidationError, OSError) as e:
            logger.error(f"[RUN] {ctx.issue_id}: could not record aborted run: {e}")

    def _run(self, ctx: RunContext, status: IssueStatus) -> RunResult:
        issue_id = ctx.issue_id
        if status is IssueStatus.OPEN:
            transition(self.store, issue_id, IssueStatus.VALIDATING, reason="run started")

        stages_run = []
        short_circuited = False
        i = 0
        while i < len(self.stages):
            spec = self.stages[i]
            decision = self._reuse(ctx, spec)
            if decision is None:
                decision = run_stage(ctx, self.executors[spec.name])
                stages_run.append(spec.name)

            if decision.kind is DecisionKind.FAIL:
                current = self.store.status(issue_id)
                logger.warning(f"[RUN] {issue_id}: stage {spec.name} failed: {decision.reason}")
                ctx.write_result(OUTCOME_FAILED, current, failed_stage=spec.name, reason=decision.reason)
                return RunResult(issue_id, OUTCOME_FAILED, current, spec.name,
                                 decision.reason, stages_run, ctx.run_id)

            if decision.kind is DecisionKind.SHORT_CIRCUIT and spec.name != FINALIZATION:
                short_circuited = True
                skipped = self.stages[i + 1:-1]
                for s in skipped:
                    ctx.record_stage(s.name, "skipped", 0.0, "short-circuit")
                logger.info(f"[RUN] {issue_id}: {spec.name} short-circuited ({decision.reason}), "
                            f"skipping {', '.join(s.name for s in skipped) or 'nothing'}")
                i = len(self.stages) - 1
                continue

            if spec.name == VALIDATION:
                transition(self.store, issue_id, IssueStatus.IN_PROGRESS, reason="validation passed")
            i += 1

        final = IssueStatus.REJECTED if short_circuited else IssueStatus.RESOLVED
        transition(self.store, issue_id, final, reason="resolution written")

        ctx.write_result(final.value, final.value)
        ctx.log(f"Run complete: {final.value}")
        logger.info(f"[RUN] {issue_id}: {final.value}")
        return RunResult(issue_id, final.value, final.value, stages_run=stages_run, run_id=ctx.run_id)

    def _reuse(self, ctx: RunContext, spec: StageSpec) -> Optional[Decision]:
        """Decision recorded for an already-produced output, or None if the stage must run."""
        artifact = self.store.get(ctx.issue_id, spec.output)
        if artifact is None:
            return None
        decision = Decision.from_value(artifact.decision, artifact.reason)
        if decision.kind is DecisionKind.SHORT_CIRCUIT and not spec.may_short_circuit:
            decision = Decision(DecisionKind.CONTINUE)
        ctx.record_stage(spec.name, "reused", 0.0, str(decision))
        ctx.log(f"Stage {spec.name}: reusing existing {spec.output.value} ({decision})")
        logger.debug(f"[RUN] {ctx.issue_id}: {spec.name} output exists, reusing ({decision})")
        return decision
