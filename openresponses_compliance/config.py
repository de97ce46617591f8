"""Resolution of the run configuration from CLI values and the environment."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from .models import TestConfig

BASE_URL_ENV = "OPENRESPONSES_BASE_URL"
API_KEY_ENV = "OPENRESPONSES_API_KEY"
MODEL_ENV = "OPENRESPONSES_MODEL"

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_AUTH_HEADER = "Authorization"


FILE_KEYS = {"base_url", "api_key", "model", "auth_header", "no_bearer", "filter"}


class ConfigError(ValueError):
    """Raised when a required setting is missing or invalid."""


def load_config_file(path: Path) -> dict[str, Any]:
    """Load a YAML/JSON target profile (keys: base_url, api_key, model, auth_header, no_bearer, filter)."""

    if not path.exists():
        raise ConfigError(f"Config file {path} does not exist")
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() == ".json":
            payload = json.loads(text)
        else:
            payload = yaml.safe_load(text) or {}
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigError(f"Config file {path} could not be parsed: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigError("Config file must deserialize into a mapping")
    unknown = sorted(set(payload) - FILE_KEYS)
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")
    return payload


def resolve_config(
    *,
    base_url: Optional[str] = None,
    api_key: Optional[str] = None,
    model: Optional[str] = None,
    auth_header: Optional[str] = None,
    no_bearer: bool = False,
    file_values: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> TestConfig:
    """Build a TestConfig with priority: CLI value > config file > environment variable > default."""

    env = os.environ if environ is None else environ
    file_values = file_values or {}
    base_url = base_url or file_values.get("base_url")
    api_key = api_key or file_values.get("api_key")
    model = model or file_values.get("model")
    auth_header = auth_header or file_values.get("auth_header")
    no_bearer = no_bearer or bool(file_values.get("no_bearer", False))

    resolved_url = base_url or env.get(BASE_URL_ENV)
    if not resolved_url:
        raise ConfigError(f"--base-url is required (or set {BASE_URL_ENV})")
    if not resolved_url.startswith(("http://", "https://")):
        raise ConfigError(f"Base URL must start with http:// or https://, got {resolved_url!r}")
    resolved_key = api_key or env.get(API_KEY_ENV)
    if not resolved_key:
        raise ConfigError(f"--api-key is required (or set {API_KEY_ENV})")
    header = (auth_header or DEFAULT_AUTH_HEADER).strip()
    if not header:
        raise ConfigError("Auth header name cannot be empty")

    return TestConfig(
        base_url=resolved_url,
        api_key=resolved_key,
        model=model or env.get(MODEL_ENV) or DEFAULT_MODEL,
        auth_header_name=header,
        use_bearer_prefix=not no_bearer,
    )


def parse_filter(values: list[str] | str | None) -> Optional[list[str]]:
    """Flatten repeated/comma-separated ``--filter`` values, keeping first-seen order."""

    if values is None:
        return None
    if isinstance(values, str):
        values = [values]
    ids: list[str] = []
    for value in values:
        for part in str(value).split(","):
            part = part.strip()
            if part and part not in ids:
                ids.append(part)
    return ids or None
