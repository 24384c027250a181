"""
issueflow show - Show an issue's status, artifacts and last run.
"""

import json
import sys

from issueflow.lib.config import Settings
from issueflow.lib.constants import RUNS_DIR
from issueflow.lib.errors import IssueNotFoundError, StoreIOError
from issueflow.store.artifacts import ArtifactStore


def cmd_show(args, settings: Settings) -> int:
    """Show issue details."""
    store = ArtifactStore(settings.issues_dir, settings.lock_timeout)
    try:
        issue = store.load_issue(args.id)
    except (ValueError, IssueNotFoundError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    except StoreIOError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 3

    print(f"Issue: {issue.id}")
    print("=" * 60)
    print(f"Status:     {issue.status}")
    print(f"Created:    {issue.created_at.isoformat()}")
    print()

    print("Artifacts")
    print("-" * 40)
    for a in issue.artifacts:
        decision = f" [{a.decision}]" if a.decision and a.decision != "continue" else ""
        print(f"  {a.kind.value:<22} {a.produced_by:<15} {a.produced_at.isoformat()}{decision}")
    print()

    # Last run, if any
    runs_dir = issue.dir / RUNS_DIR
    runs = sorted(runs_dir.iterdir(), reverse=True) if runs_dir.exists() else []
    for run_dir in runs:
        result_file = run_dir / "result.json"
        if not result_file.exists():
            continue
        result = json.loads(result_file.read_text(encoding="utf-8"))
        print("Last Run")
        print("-" * 40)
        print(f"  Run ID:      {run_dir.name}")
        print(f"  Outcome:     {result.get('outcome', 'unknown')}")
        if result.get("failed_stage"):
            print(f"  Failed at:   {result['failed_stage']}")
        if result.get("reason"):
            print(f"  Reason:      {result['reason']}")
        print(f"  Duration:    {result['timestamps'].get('duration_seconds', 0):.1f}s")
        print("  Stages:")
        symbol = {"passed": "+", "failed": "x", "skipped": "-", "reused": "=", "short_circuit": ">"}
        for stage, info in result.get("stages", {}).items():
            status = info.get("status", "?")
            notes = info.get("notes", "")
            note_preview = f" - {notes[:50]}" if notes else ""
            print(f"    [{symbol.get(status, '?')}] {stage}: {status}{note_preview}")
        print()
        break

    return 0
