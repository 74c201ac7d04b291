"""Load and validate agentwire.yaml session options."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from agentwire.config.models import AgentOptions

DEFAULT_CONFIG_NAME = "agentwire.yaml"


class ConfigError(Exception):
    """User-facing configuration error."""


def load_options(path: Path | None = None) -> AgentOptions:
    """Load and validate an agentwire.yaml file.

    Args:
        path: Explicit config file path. If None, looks for
              agentwire.yaml in the current directory.

    Returns:
        A validated AgentOptions instance.  Relative ``cwd`` and
        ``add_dirs`` entries are resolved against the config file's
        directory.

    Raises:
        ConfigError: On missing file, bad YAML, or validation failure.
    """
    config_path = _resolve_path(path)
    raw = _read_yaml(config_path)
    _resolve_relative_dirs(raw, config_path.parent)
    _load_env(config_path.parent)
    return _validate(raw)


def _resolve_path(path: Path | None) -> Path:
    if path is not None:
        resolved = Path(path)
        if not resolved.is_file():
            msg = f"Config file not found: {resolved}"
            raise ConfigError(msg)
        return resolved

    default = Path.cwd() / DEFAULT_CONFIG_NAME
    if not default.is_file():
        msg = (
            f"No {DEFAULT_CONFIG_NAME} found in {Path.cwd()}. "
            "Run `agentwire init` to create one."
        )
        raise ConfigError(msg)
    return default


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"Cannot read config file: {exc}"
        raise ConfigError(msg) from exc

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        detail = ""
        if hasattr(exc, "problem_mark") and exc.problem_mark is not None:
            mark = exc.problem_mark
            detail = f" (line {mark.line + 1}, column {mark.column + 1})"
        msg = f"Invalid YAML in {path.name}{detail}"
        raise ConfigError(msg) from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"Expected a YAML mapping in {path.name}, got {type(data).__name__}"
        raise ConfigError(msg)

    return data


def _resolve_relative_dirs(raw: dict[str, Any], base_dir: Path) -> None:
    cwd = raw.get("cwd")
    if isinstance(cwd, str) and not Path(cwd).is_absolute():
        raw["cwd"] = str((base_dir / cwd).resolve())

    add_dirs = raw.get("add_dirs")
    if isinstance(add_dirs, list):
        raw["add_dirs"] = [
            str((base_dir / d).resolve())
            if isinstance(d, str) and not Path(d).is_absolute()
            else d
            for d in add_dirs
        ]


def _load_env(config_dir: Path) -> None:
    env_path = config_dir / ".env"
    if env_path.is_file():
        load_dotenv(env_path)


def _validate(raw: dict[str, Any]) -> AgentOptions:
    try:
        return AgentOptions.model_validate(raw)
    except ValidationError as exc:
        lines = "\n".join(_describe(err) for err in exc.errors())
        msg = f"Config validation failed:\n{lines}"
        raise ConfigError(msg) from exc


def _describe(err: Any) -> str:
    """One ``  option.path: problem`` line per pydantic error."""
    loc = ".".join(str(part) for part in err["loc"]) or "(root)"
    if err["type"] == "extra_forbidden":
        return f"  {loc}: Unknown option"
    return f"  {loc}: Invalid value: {err['msg']}"
