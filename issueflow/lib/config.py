"""
Configuration loaders for issueflow.

Store locations come from the environment; collaborator commands come from
pipeline.env inside the issues directory.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from . import envparse

logger = logging.getLogger(__name__)

DEFAULT_ISSUES_DIR = "issues"
DEFAULT_ARCHIVE_DIR = "issues/_archive"
DEFAULT_LOCK_TIMEOUT = 60
PIPELINE_FILE = "pipeline.env"

ENV_ISSUES_DIR = "ISSUEFLOW_ISSUES_DIR"
ENV_ARCHIVE_DIR = "ISSUEFLOW_ARCHIVE_DIR"
ENV_LOCK_TIMEOUT = "ISSUEFLOW_LOCK_TIMEOUT"
ENV_PIPELINE_FILE = "ISSUEFLOW_PIPELINE_FILE"


@dataclass
class Settings:
    """Process-level configuration from the environment."""
    issues_dir: Path
    archive_dir: Path
    lock_timeout: int
    pipeline_file: Path


@dataclass
class PipelineConfig:
    """Collaborator commands from pipeline.env.

    default_command applies to every stage without an override in
    stage_commands (keyed by lowercase stage name).
    """
    default_command: str = ""
    stage_commands: dict[str, str] = field(default_factory=dict)

    def command_for(self, stage: str) -> str:
        return self.stage_commands.get(stage, self.default_command)


def _resolve(value: str, base_dir: Path) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else base_dir / path


def load_settings(environ=None, base_dir: Path = None,
                  issues_dir: str = None, archive_dir: str = None) -> Settings:
    """Build Settings from environment variables.

    Explicit issues_dir/archive_dir arguments (CLI flags) win over the
    environment. Relative paths resolve against base_dir (default: cwd).
    """
    env = os.environ if environ is None else environ
    base = Path.cwd() if base_dir is None else Path(base_dir)

    issues = _resolve(issues_dir or env.get(ENV_ISSUES_DIR) or DEFAULT_ISSUES_DIR, base)
    archive = _resolve(archive_dir or env.get(ENV_ARCHIVE_DIR) or DEFAULT_ARCHIVE_DIR, base)

    raw_timeout = env.get(ENV_LOCK_TIMEOUT, "")
    lock_timeout = DEFAULT_LOCK_TIMEOUT
    if raw_timeout:
        try:
            lock_timeout = int(raw_timeout)
        except ValueError:
            logger.warning(f"Invalid {ENV_LOCK_TIMEOUT} '{raw_timeout}', using {DEFAULT_LOCK_TIMEOUT}")
        else:
            if lock_timeout < 0:
                logger.warning(f"Negative {ENV_LOCK_TIMEOUT} '{raw_timeout}', using {DEFAULT_LOCK_TIMEOUT}")
                lock_timeout = DEFAULT_LOCK_TIMEOUT

    pipeline_raw = env.get(ENV_PIPELINE_FILE)
    pipeline_file = _resolve(pipeline_raw, base) if pipeline_raw else issues / PIPELINE_FILE

    return Settings(
        issues_dir=issues,
        archive_dir=archive,
        lock_timeout=lock_timeout,
        pipeline_file=pipeline_file,
    )


def load_pipeline_config(path: Path, stage_names=None) -> PipelineConfig:
    """Load pipeline.env and return PipelineConfig.

    Recognizes STAGE_COMMAND plus <STAGE>_COMMAND for each name in
    stage_names. Unknown keys are logged and ignored.

    Raises:
        FileNotFoundError: if the file doesn't exist
        ValueError: if the file has invalid syntax
    """
    env = envparse.load_env(path)
    names = list(stage_names or [])
    config = PipelineConfig(default_command=env.get("STAGE_COMMAND", ""))

    known = {"STAGE_COMMAND"}
    for name in names:
        key = f"{name.upper()}_COMMAND"
        known.add(key)
        if env.get(key):
            config.stage_commands[name] = env[key]

    for key in env:
        if key not in known:
            logger.warning(f"Ignoring unknown pipeline setting '{key}' in {path}")

    return config
