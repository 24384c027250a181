"""
issueflow run - Drive issues through the resolution pipeline.

Collaborators are shell commands configured in pipeline.env (see
issueflow.lib.config.load_pipeline_config). `run --all` processes every
open issue in registry order, one after another.
"""

import sys

from issueflow.agents.command import CommandCollaborator
from issueflow.lib.config import Settings, load_pipeline_config
from issueflow.lib.errors import (
    DuplicateArtifactError,
    IssueNotFoundError,
    MissingPrerequisiteError,
    StoreIOError,
)
from issueflow.lib.validate import ValidationError
from issueflow.runner.locking import LockTimeout
from issueflow.store.artifacts import ArtifactStore
from issueflow.store.registry import IssueRegistry
from issueflow.workflow.engine import STAGE_ORDER, WorkflowController
from issueflow.workflow.state_machine import InvalidTransition


def build_controller(settings: Settings, store: ArtifactStore) -> WorkflowController:
    """Controller with one CommandCollaborator per stage from pipeline.env.

    Raises:
        FileNotFoundError: pipeline.env missing
        ValueError: bad syntax, or a stage has no command
    """
    pipeline = load_pipeline_config(settings.pipeline_file, STAGE_ORDER)

    collaborators = {}
    missing = []
    for name in STAGE_ORDER:
        command = pipeline.command_for(name)
        if not command:
            missing.append(name)
            continue
        collaborators[name] = CommandCollaborator(command, name, settings.issues_dir)

    if missing:
        raise ValueError(
            f"No command for stage(s) {', '.join(missing)} in {settings.pipeline_file} "
            f"(set STAGE_COMMAND or <STAGE>_COMMAND)"
        )
    return WorkflowController(store, collaborators)


def run_issue(controller: WorkflowController, issue_id: str) -> int:
    """Run one issue and report. Returns the exit code for it."""
    try:
        result = controller.run(issue_id)
    except (ValueError, IssueNotFoundError, MissingPrerequisiteError,
            DuplicateArtifactError, InvalidTransition) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    except LockTimeout as e:
        print(f"ERROR: {e}", file=sys.stderr)
        print("Another run may be active for this issue", file=sys.stderr)
        return 3
    except (StoreIOError, ValidationError, OSError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 3

    if result.failed:
        print("Result: failed")
        print(f"Failed at stage: {result.failed_stage}")
        if result.reason:
            print(f"  Reason: {result.reason}")
        print(f"  Re-run to resume: issueflow run {issue_id}")
        return 1

    print(f"Result: {result.status}")
    if result.run_id:
        print(f"Run ID: {result.run_id}")
    return 0


def run_all(controller: WorkflowController, store: ArtifactStore) -> int:
    """Run every open issue in order. Exit 1 if any run did not succeed."""
    try:
        issue_ids = IssueRegistry(store).list_open()
    except StoreIOError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 3

    if not issue_ids:
        print("No open issues")
        return 0

    failed = []
    for issue_id in issue_ids:
        print(f"\n{'=' * 60}")
        print(f"=== {issue_id} ===")
        print(f"{'=' * 60}")
        if run_issue(controller, issue_id) != 0:
            failed.append(issue_id)

    print()
    print(f"{len(issue_ids)} issue(s) processed, {len(failed)} failed")
    for issue_id in failed:
        print(f"  {issue_id}")
    return 1 if failed else 0


def cmd_run(args, settings: Settings) -> int:
    """Run the pipeline for one issue, or for all open issues with --all."""
    if args.all == bool(args.id):
        print("ERROR: Give exactly one of <id> or --all", file=sys.stderr)
        return 2

    store = ArtifactStore(settings.issues_dir, settings.lock_timeout)
    try:
        controller = build_controller(settings, store)
    except FileNotFoundError:
        print(f"ERROR: No pipeline configuration at {settings.pipeline_file}", file=sys.stderr)
        return 2
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    if args.all:
        return run_all(controller, store)
    return run_issue(controller, args.id)
