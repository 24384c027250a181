"""
Stage execution framework for issueflow.

A stage wraps one external collaborator: it declares which artifacts it
needs, which artifact it produces, and whether it may cut the pipeline
short. The collaborator sees only artifact content and answers with new
content plus a Decision.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Protocol, Union

from issueflow.lib.constants import ArtifactKind
from issueflow.lib.errors import DuplicateArtifactError, MissingPrerequisiteError
from issueflow.runner.context import RunContext
from issueflow.store.artifacts import ArtifactStore

logger = logging.getLogger(__name__)


class DecisionKind(Enum):
    CONTINUE = "continue"
    SHORT_CIRCUIT = "short_circuit"
    FAIL = "fail"


@dataclass(frozen=True)
class Decision:
    """What a stage tells the controller to do next."""
    kind: DecisionKind
    reason: str = ""

    @classmethod
    def from_value(cls, value: str | None, reason: str = "") -> "Decision":
        """Build from a stored/serialized value. None means CONTINUE."""
        if value is None:
            return cls(DecisionKind.CONTINUE, reason)
        try:
            return cls(DecisionKind(value), reason)
        except ValueError:
            raise ValueError(f"Unknown decision '{value}'") from None

    def __str__(self):
        return self.kind.value + (f"({self.reason})" if self.reason else "")


CONTINUE = Decision(DecisionKind.CONTINUE)


def short_circuit(reason: str) -> Decision:
    return Decision(DecisionKind.SHORT_CIRCUIT, reason)


def fail(reason: str) -> Decision:
    return Decision(DecisionKind.FAIL, reason)


class Collaborator(Protocol):
    """External content producer for one stage.

    inputs maps artifact kind names to content. The returned content is
    opaque to issueflow.
    """

    def execute(self, issue_id: str, inputs: dict[str, str]) -> tuple[str, Decision]:
        ...


CollaboratorLike = Union[Collaborator, Callable[[str, dict[str, str]], tuple[str, Decision]]]


@dataclass(frozen=True)
class StageSpec:
    """Static description of one pipeline stage."""
    name: str
    output: ArtifactKind
    inputs: tuple[ArtifactKind, ...] = ()
    optional_inputs: tuple[ArtifactKind, ...] = ()
    may_short_circuit: bool = False


class StageExecutor:
    """Runs one stage for one issue against the store.

    Contract:
    1. All required inputs must exist, else MissingPrerequisiteError
       (the collaborator is never called with partial inputs).
    2. The collaborator gets {kind: content} for required inputs plus any
       optional inputs present.
    3. The output artifact is written only for a well-formed CONTINUE or
       permitted SHORT_CIRCUIT response.
    4. Anything else (collaborator raised, malformed response, FAIL,
       unpermitted SHORT_CIRCUIT) comes back as FAIL and writes nothing.
    """

    def __init__(self, spec: StageSpec, collaborator: CollaboratorLike, store: ArtifactStore):
        self.spec = spec
        self.collaborator = collaborator
        self.store = store

    @property
    def name(self) -> str:
        return self.spec.name

    def check_inputs(self, issue_id: str) -> None:
        """Raise MissingPrerequisiteError naming the first absent input."""
        for kind in self.spec.inputs:
            if not self.store.has(issue_id, kind):
                raise MissingPrerequisiteError(issue_id, self.spec.name, kind.value)

    def gather_inputs(self, issue_id: str) -> dict[str, str]:
        inputs = {}
        for kind in self.spec.inputs + self.spec.optional_inputs:
            artifact = self.store.get(issue_id, kind)
            if artifact is not None:
                inputs[kind.value] = artifact.content
        return inputs

    def _call(self, issue_id: str, inputs: dict[str, str]):
        fn = getattr(self.collaborator, "execute", self.collaborator)
        return fn(issue_id, inputs)

    def execute(self, issue_id: str) -> Decision:
        """Run the stage. Returns the Decision for the controller.

        Raises:
            MissingPrerequisiteError: a required input is absent
            DuplicateArtifactError: the output already exists
        """
        self.check_inputs(issue_id)
        if self.store.has(issue_id, self.spec.output):
            raise DuplicateArtifactError(issue_id, self.spec.output.value, self.spec.name)

        inputs = self.gather_inputs(issue_id)

        try:
            response = self._call(issue_id, inputs)
        except Exception as e:
            logger.warning(f"[STAGE] {issue_id}/{self.spec.name}: collaborator raised {type(e).__name__}: {e}")
            return fail(f"collaborator error: {e}")

        if not (isinstance(response, tuple) and len(response) == 2):
            return self._malformed(issue_id, "expected (content, Decision)")
        content, decision = response
        if not isinstance(decision, Decision):
            return self._malformed(issue_id, f"decision is {type(decision).__name__}, not Decision")

        if decision.kind is DecisionKind.FAIL:
            logger.warning(f"[STAGE] {issue_id}/{self.spec.name}: collaborator failed: {decision.reason}")
            return decision
        if not isinstance(content, str):
            return self._malformed(issue_id, f"content is {type(content).__name__}, not str")
        if decision.kind is DecisionKind.SHORT_CIRCUIT and not self.spec.may_short_circuit:
            logger.warning(f"[STAGE] {issue_id}/{self.spec.name}: short-circuit not permitted here")
            return fail(f"stage '{self.spec.name}' may not short-circuit ({decision.reason})")

        self.store.put(
            issue_id,
            self.spec.output,
            content,
            produced_by=self.spec.name,
            decision=decision.kind.value,
            reason=decision.reason,
        )
        return decision

    def _malformed(self, issue_id: str, detail: str) -> Decision:
        logger.warning(f"[STAGE] {issue_id}/{self.spec.name}: malformed collaborator response: {detail}")
        return fail(f"malformed response: {detail}")


def run_stage(ctx: RunContext, executor: StageExecutor) -> Decision:
    """
    Run a single stage with timing and run-log bookkeeping.

    Returns the Decision and updates ctx.stages. Prerequisite and store
    errors are recorded, then re-raised.
    """
    stage_name = executor.name
    ctx.log(f"Starting stage: {stage_name}")
    start = time.monotonic()

    try:
        decision = executor.execute(ctx.issue_id)
    except Exception as e:
        duration = time.monotonic() - start
        ctx.record_stage(stage_name, "failed", duration, str(e))
        ctx.log(f"Stage {stage_name} error: {e}")
        raise

    duration = time.monotonic() - start
    if decision.kind is DecisionKind.FAIL:
        ctx.record_stage(stage_name, "failed", duration, decision.reason)
        ctx.log(f"Stage {stage_name} failed: {decision.reason}")
    elif decision.kind is DecisionKind.SHORT_CIRCUIT:
        ctx.record_stage(stage_name, "short_circuit", duration, decision.reason)
        ctx.log(f"Stage {stage_name} short-circuited: {decision.reason}")
    else:
        ctx.record_stage(stage_name, "passed", duration)
        ctx.log(f"Stage {stage_name} passed ({duration:.2f}s)")
    return decision
