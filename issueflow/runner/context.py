"""
Run context and run-record directory management.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from issueflow.lib.constants import RUNS_DIR
from issueflow.lib.fileio import atomic_write_json
from issueflow.lib.validate import validate_before_write


@dataclass
class RunContext:
    """Context for a single controller run over one issue."""
    run_id: str
    run_dir: Path
    issue_id: str
    start_time: datetime = field(default_factory=datetime.now)
    stages: dict = field(default_factory=dict)

    @classmethod
    def create(cls, issue_dir: Path, issue_id: str) -> 'RunContext':
        """Create a new run context with a fresh run directory under the issue."""
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        runs_dir = issue_dir / RUNS_DIR
        run_id = f"{timestamp}_{issue_id}"
        n = 2
        while (runs_dir / run_id).exists():
            run_id = f"{timestamp}_{issue_id}-{n}"
            n += 1

        run_dir = runs_dir / run_id
        run_dir.mkdir(parents=True, exist_ok=True)

        return cls(run_id=run_id, run_dir=run_dir, issue_id=issue_id)

    def log(self, message: str):
        """Append to run log."""
        timestamp = datetime.now().isoformat()
        with open(self.run_dir / "run.log", "a", encoding="utf-8") as f:
            f.write(f"[{timestamp}] {message}\n")

    def record_stage(self, stage: str, status: str, duration: float, notes: str = ""):
        """Record stage result."""
        self.stages[stage] = {
            "status": status,
            "duration_seconds": duration,
            "notes": notes,
        }

    def write_result(self, outcome: str, status: str, failed_stage: str = None, reason: str = None) -> dict:
        """Write result.json and return it."""
        end_time = datetime.now()
        duration = (end_time - self.start_time).total_seconds()

        result = {
            "version": 1,
            "issue": self.issue_id,
            "run_id": self.run_id,
            "outcome": outcome,
            "status": status,
            "timestamps": {
                "started": self.start_time.isoformat(),
                "ended": end_time.isoformat(),
                "duration_seconds": max(duration, 0.0),
            },
            "stages": self.stages,
        }

        if failed_stage:
            result["failed_stage"] = failed_stage
        if reason:
            result["reason"] = reason

        path = self.run_dir / "result.json"
        validate_before_write(result, "result", path)
        atomic_write_json(path, result)
        return result
