"""YAML, ``.env`` and environment variable config loader."""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any, cast

import yaml
from pydantic import ValidationError

from bedrock_accelerator.config.models import AcceleratorConfig

# Matches ${VAR} or ${VAR:-default}
_ENV_PATTERN = re.compile(r"\$\{([^}:]+)(?::-((?:[^}\\]|\\.)*))?}")

# .env key -> config field
ENV_KEYS = {
    "VPC_ID": "vpc_id",
    "PUBLIC_SUBNET_IDS": "public_subnet_ids",
    "ENABLE_GLOBAL_ACCELERATOR": "enable_global_accelerator",
    "AWS_REGION": "region",
    "NLB_SECURITY_GROUP": "nlb_security_group",
}
REQUIRED_ENV_KEYS = ("VPC_ID", "PUBLIC_SUBNET_IDS", "AWS_REGION", "NLB_SECURITY_GROUP")


def _resolve_env_str(value: str) -> str:
    """Replace all ${VAR} / ${VAR:-default} references in a string."""

    def _replace(match: re.Match[str]) -> str:
        var_name = match.group(1)
        default = match.group(2)
        env_val = os.environ.get(var_name)
        if env_val is not None:
            return env_val
        if default is not None:
            return default.replace("\\}", "}")
        msg = f"Environment variable '{var_name}' is not set and no default provided"
        raise ValueError(msg)

    return _ENV_PATTERN.sub(_replace, value)


def resolve_env_vars(data: Any) -> Any:
    """Recursively resolve ${VAR} and ${VAR:-default} in parsed YAML data."""
    if isinstance(data, str):
        return _resolve_env_str(data)
    if isinstance(data, dict):
        return {k: resolve_env_vars(v) for k, v in data.items()}
    if isinstance(data, list):
        return [resolve_env_vars(item) for item in data]
    return data


def load_yaml(path: str | Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict."""
    p = Path(path)
    if not p.exists():
        msg = f"Config file not found: {p}"
        raise FileNotFoundError(msg)
    try:
        with p.open() as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        msg = f"Failed to parse YAML in {p}"
        if hasattr(exc, "problem_mark") and exc.problem_mark is not None:
            mark = exc.problem_mark
            msg += f" at line {mark.line + 1}, column {mark.column + 1}"
        msg += f": {exc}"
        raise ValueError(msg) from exc
    if not isinstance(data, dict):
        msg = f"Expected a YAML mapping at top level in {p}, got {type(data).__name__}"
        raise TypeError(msg)
    return cast(dict[str, Any], resolve_env_vars(data))


def parse_env_file(path: str | Path) -> dict[str, str]:
    """Parse ``KEY=VALUE`` lines; blank lines and ``#`` comments are skipped."""
    p = Path(path)
    if not p.exists():
        msg = f"{p} not found. Create one based on .env.example."
        raise FileNotFoundError(msg)
    env: dict[str, str] = {}
    for line in p.read_text().splitlines():
        if line.startswith("#") or not line.strip():
            continue
        key, sep, value = line.partition("=")
        if key.strip() and sep:
            env[key.strip()] = value.strip()
    return env


def config_from_env(env: Mapping[str, str]) -> dict[str, Any]:
    """Translate ``.env``-style keys into config overrides.

    ``AWS_REGION`` falls back to ``AWS_DEFAULT_REGION``; the accelerator is
    only enabled by a literal ``true`` (case-insensitive).
    """
    values = dict(env)
    if not values.get("AWS_REGION") and values.get("AWS_DEFAULT_REGION"):
        values["AWS_REGION"] = values["AWS_DEFAULT_REGION"]
    for key in REQUIRED_ENV_KEYS:
        if not values.get(key, "").strip():
            msg = f"{key} must be provided"
            raise ValueError(msg)

    overrides: dict[str, Any] = {}
    for key, field_name in ENV_KEYS.items():
        if key not in values:
            continue
        raw = values[key]
        if key == "PUBLIC_SUBNET_IDS":
            overrides[field_name] = [s.strip() for s in raw.split(",") if s.strip()]
        elif key == "ENABLE_GLOBAL_ACCELERATOR":
            overrides[field_name] = raw.strip().lower() == "true"
        else:
            overrides[field_name] = raw
    return overrides


def _validate(overrides: dict[str, Any], source: str | Path) -> AcceleratorConfig:
    try:
        return AcceleratorConfig.model_validate(overrides)
    except ValidationError as exc:
        msg = f"Invalid accelerator config ({source}):\n{exc}"
        raise ValueError(msg) from exc


def load_config(
    path: str | Path | None = None,
    *,
    env_file: str | Path | None = None,
) -> AcceleratorConfig:
    """Load the deployment config.

    A YAML file wins when given; otherwise ``env_file`` is parsed (process
    environment variables override its entries). With neither, the process
    environment alone is used.
    """
    if path is not None:
        return _validate(load_yaml(path), path)
    env: dict[str, str] = {}
    if env_file is not None:
        env.update(parse_env_file(env_file))
    env.update({k: v for k, v in os.environ.items() if k in ENV_KEYS})
    if "AWS_DEFAULT_REGION" in os.environ:
        env.setdefault("AWS_DEFAULT_REGION", os.environ["AWS_DEFAULT_REGION"])
    return _validate(config_from_env(env), env_file or "environment")
