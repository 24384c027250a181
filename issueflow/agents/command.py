"""
Shell-command collaborator for issueflow.

Runs one configured command per stage invocation. The request goes to the
command's stdin as JSON:

    {"issue": "...", "stage": "...", "issue_dir": "...", "inputs": {kind: content}}

and the command must print JSON on stdout:

    {"content": "...", "decision": "continue" | "short_circuit" | "fail", "reason": "..."}

Agent CLIs that wrap their answer as {"type": "result", "result": "<text>"}
are unwrapped; the inner text may sit in a ```json block.
"""

import json
import logging
import shlex
import subprocess
from pathlib import Path
from typing import Optional

from issueflow.lib.errors import CollaboratorError
from issueflow.lib.validate import ValidationError, validate
from issueflow.runner.stages import Decision

logger = logging.getLogger(__name__)


def extract_json_block(text: str) -> str:
    """Return the body of the first ``` fence in text, or text unchanged."""
    text = text.strip()
    if "```" not in text:
        return text

    start = text.find("```json")
    if start == -1:
        start = text.find("```")
    newline_after_open = text.find("\n", start)
    if newline_after_open == -1:
        return text
    close = text.find("\n```", newline_after_open)
    if close == -1:
        return text
    return text[newline_after_open + 1:close].strip()


def parse_response(stdout: str) -> dict:
    """Parse command output into a stage response dict.

    Raises:
        ValueError: output is not JSON or not an object
        ValidationError: object doesn't match the stage_response schema
    """
    data = json.loads(stdout.strip())

    # Agent CLI wrapper: {"type": "result", "result": "..."}
    if isinstance(data, dict) and data.get("type") == "result" and isinstance(data.get("result"), str):
        data = json.loads(extract_json_block(data["result"]))

    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    validate(data, "stage_response")
    return data


class CommandCollaborator:
    """Collaborator backed by an external command.

    template is a command line; {issue}, {stage} and {issue_dir} are
    substituted after shlex splitting, so substituted values never
    introduce extra arguments.
    """

    def __init__(self, template: str, stage: str, issues_dir: Path, cwd: Optional[Path] = None):
        if not template.strip():
            raise ValueError(f"Empty command for stage '{stage}'")
        self.template = template
        self.stage = stage
        self.issues_dir = Path(issues_dir)
        self.cwd = cwd

    def build_command(self, issue_id: str) -> list[str]:
        values = {
            "issue": issue_id,
            "stage": self.stage,
            "issue_dir": str(self.issues_dir / issue_id),
        }
        try:
            return [part.format(**values) for part in shlex.split(self.template)]
        except (KeyError, IndexError) as e:
            raise CollaboratorError(f"Bad placeholder {e} in command '{self.template}'", issue_id, self.stage) from e

    def execute(self, issue_id: str, inputs: dict[str, str]) -> tuple[str, Decision]:
        """Run the command. Raises CollaboratorError on any failure."""
        cmd = self.build_command(issue_id)
        request = json.dumps({
            "issue": issue_id,
            "stage": self.stage,
            "issue_dir": str(self.issues_dir / issue_id),
            "inputs": inputs,
        })

        logger.debug(f"[STAGE] {issue_id}/{self.stage}: running {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                cwd=str(self.cwd) if self.cwd else None,
                input=request,
                capture_output=True,
                text=True,
            )
        except OSError as e:
            raise CollaboratorError(f"Cannot run '{cmd[0]}': {e}", issue_id, self.stage) from e

        if result.returncode != 0:
            stderr = result.stderr.strip()[-500:]
            raise CollaboratorError(
                f"Command exited {result.returncode}" + (f": {stderr}" if stderr else ""),
                issue_id, self.stage,
            )

        try:
            data = parse_response(result.stdout)
        except (ValueError, TypeError) as e:
            raise CollaboratorError(f"Invalid JSON output: {e}", issue_id, self.stage) from e
        except ValidationError as e:
            raise CollaboratorError(f"Schema validation failed: {e}", issue_id, self.stage) from e

        return data["content"], Decision.from_value(data["decision"], data.get("reason", ""))
