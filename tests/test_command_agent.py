"""Tests for issueflow.agents.command module."""

import json
import shlex
import sys
import textwrap

import pytest

from issueflow.agents.command import (
    CommandCollaborator,
    extract_json_block,
    parse_response,
)
from issueflow.lib.errors import CollaboratorError
from issueflow.lib.validate import ValidationError
from issueflow.runner.stages import CONTINUE, DecisionKind


def write_script(tmp_path, body: str, name: str = "agent.py") -> str:
    """Write a python script and return a command template that runs it."""
    script = tmp_path / name
    script.write_text(textwrap.dedent(body))
    return f"{shlex.quote(sys.executable)} {shlex.quote(str(script))}"


ECHO_AGENT = """
    import json, sys
    request = json.load(sys.stdin)
    print(json.dumps({
        "content": f"{request['stage']} for {request['issue']}: " + ",".join(sorted(request["inputs"])),
        "decision": "continue",
    }))
"""


class TestExtractJsonBlock:
    """Tests for extract_json_block()."""

    def test_plain_text(self):
        assert extract_json_block('  {"a": 1} ') == '{"a": 1}'

    def test_json_fence(self):
        text = 'Here you go:\n```json\n{"a": 1}\n```\nbye'
        assert extract_json_block(text) == '{"a": 1}'

    def test_bare_fence(self):
        assert extract_json_block('```\n{"a": 2}\n```') == '{"a": 2}'

    def test_unclosed_fence(self):
        text = '```json\n{"a": 1}'
        assert extract_json_block(text) == text


class TestParseResponse:
    """Tests for parse_response()."""

    def test_direct(self):
        data = parse_response('{"content": "ok", "decision": "continue"}')
        assert data["content"] == "ok"

    def test_agent_wrapper(self):
        inner = '```json\n{"content": "dup", "decision": "short_circuit", "reason": "duplicate"}\n```'
        data = parse_response(json.dumps({"type": "result", "result": inner}))
        assert data["decision"] == "short_circuit"
        assert data["reason"] == "duplicate"

    def test_not_json(self):
        with pytest.raises(ValueError):
            parse_response("I think this is a valid bug.")

    def test_not_object(self):
        with pytest.raises(ValueError, match="JSON object"):
            parse_response("[1, 2]")

    def test_schema(self):
        with pytest.raises(ValidationError):
            parse_response('{"content": "x", "decision": "maybe"}')


class TestBuildCommand:
    """Tests for CommandCollaborator.build_command()."""

    def test_placeholders(self, tmp_path):
        c = CommandCollaborator("agent --stage {stage} --dir {issue_dir} {issue}", "review", tmp_path)
        assert c.build_command("foo") == [
            "agent", "--stage", "review", "--dir", str(tmp_path / "foo"), "foo",
        ]

    def test_values_stay_single_arguments(self, tmp_path):
        c = CommandCollaborator("agent {issue_dir}", "review", tmp_path / "my issues")
        assert c.build_command("foo") == ["agent", str(tmp_path / "my issues" / "foo")]

    def test_unknown_placeholder(self, tmp_path):
        c = CommandCollaborator("agent {nope}", "review", tmp_path)
        with pytest.raises(CollaboratorError, match="placeholder"):
            c.build_command("foo")

    def test_empty_template(self, tmp_path):
        with pytest.raises(ValueError, match="Empty command"):
            CommandCollaborator("  ", "review", tmp_path)


class TestExecute:
    """Tests for CommandCollaborator.execute() against real subprocesses."""

    def test_success(self, tmp_path):
        c = CommandCollaborator(write_script(tmp_path, ECHO_AGENT), "proposal", tmp_path)
        content, decision = c.execute("foo", {"definition": "bug", "validation": "ok"})

        assert content == "proposal for foo: definition,validation"
        assert decision == CONTINUE

    def test_wrapped_short_circuit(self, tmp_path):
        template = write_script(tmp_path, """
            import json
            inner = '```json\\n{"content": "dup", "decision": "short_circuit", "reason": "see #1"}\\n```'
            print(json.dumps({"type": "result", "result": inner}))
        """)
        content, decision = CommandCollaborator(template, "validation", tmp_path).execute("foo", {})

        assert content == "dup"
        assert decision.kind is DecisionKind.SHORT_CIRCUIT
        assert decision.reason == "see #1"

    def test_nonzero_exit(self, tmp_path):
        template = write_script(tmp_path, """
            import sys
            sys.stderr.write("rate limited")
            sys.exit(4)
        """)
        with pytest.raises(CollaboratorError) as exc:
            CommandCollaborator(template, "review", tmp_path).execute("foo", {})

        assert "exited 4" in str(exc.value)
        assert "rate limited" in str(exc.value)
        assert exc.value.stage == "review"

    def test_bad_json(self, tmp_path):
        template = write_script(tmp_path, 'print("looks good to me")\n')
        with pytest.raises(CollaboratorError, match="Invalid JSON"):
            CommandCollaborator(template, "review", tmp_path).execute("foo", {})

    def test_schema_failure(self, tmp_path):
        template = write_script(tmp_path, 'print(\'{"decision": "continue"}\')\n')
        with pytest.raises(CollaboratorError, match="Schema validation failed"):
            CommandCollaborator(template, "review", tmp_path).execute("foo", {})

    def test_missing_executable(self, tmp_path):
        c = CommandCollaborator(str(tmp_path / "no-such-agent"), "review", tmp_path)
        with pytest.raises(CollaboratorError, match="Cannot run"):
            c.execute("foo", {})
