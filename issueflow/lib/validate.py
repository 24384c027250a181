"""
JSON Schema checks for the documents issueflow reads and writes.

Schemas live in issueflow/schemas/<name>.schema.json:
    meta            meta.env of an issue (parsed to a dict)
    manifest        manifest.json of an issue
    result          runs/<run_id>/result.json
    stage_response  stdout of a collaborator command
"""

import json
from pathlib import Path

import jsonschema
from jsonschema.exceptions import best_match

SCHEMAS_DIR = Path(__file__).resolve().parent.parent / "schemas"


class ValidationError(Exception):
    """A document does not match its schema."""

    def __init__(self, schema_name: str, message: str, path: str = None):
        self.schema_name = schema_name
        self.path = path
        super().__init__(f"[{schema_name}] {message}" + (f" at {path}" if path else ""))


_validators: dict[str, jsonschema.Draft7Validator] = {}


def _validator(schema_name: str) -> jsonschema.Draft7Validator:
    validator = _validators.get(schema_name)
    if validator is None:
        schema_path = SCHEMAS_DIR / f"{schema_name}.schema.json"
        if not schema_path.is_file():
            raise ValidationError(schema_name, f"No schema at {schema_path}")
        schema = json.loads(schema_path.read_text(encoding="utf-8"))
        validator = _validators[schema_name] = jsonschema.Draft7Validator(schema)
    return validator


def validate(data: dict, schema_name: str) -> None:
    """Check data against a named schema.

    Reports the most relevant violation with its location in the document.

    Raises:
        ValidationError: data does not match
    """
    error = best_match(_validator(schema_name).iter_errors(data))
    if error is None:
        return
    where = ".".join(str(p) for p in error.absolute_path) or "(root)"
    raise ValidationError(schema_name, error.message, where)


def validate_before_write(data: dict, schema_name: str, filepath: Path) -> None:
    """Like validate(), for a document about to be written to filepath."""
    try:
        validate(data, schema_name)
    except ValidationError as e:
        raise ValidationError(schema_name, f"Refusing to write {filepath}: {e}") from None
