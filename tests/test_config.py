from __future__ import annotations

import json
from pathlib import Path

import pytest

from openresponses_compliance.config import (
    API_KEY_ENV,
    BASE_URL_ENV,
    MODEL_ENV,
    ConfigError,
    load_config_file,
    parse_filter,
    resolve_config,
)
from openresponses_compliance.models import ResultStateError, TestResult, TestStatus, summarize
from openresponses_compliance.output_config import ENV_VAR_NAME, OutputFormat, get_output_format, log_format_for


def test_cli_values_win_over_file_and_environment() -> None:
    config = resolve_config(
        base_url="http://cli/v1",
        api_key="cli-key",
        file_values={"base_url": "http://file/v1", "api_key": "file-key", "model": "file-model"},
        environ={BASE_URL_ENV: "http://env/v1", API_KEY_ENV: "env-key", MODEL_ENV: "env-model"},
    )

    assert config.base_url == "http://cli/v1"
    assert config.api_key == "cli-key"
    assert config.model == "file-model"


def test_environment_fills_missing_values() -> None:
    config = resolve_config(environ={BASE_URL_ENV: "https://env.example/v1/", API_KEY_ENV: "env-key"})

    assert config.base_url == "https://env.example/v1"
    assert config.api_key == "env-key"
    assert config.model == "gpt-4o-mini"
    assert config.auth_headers() == {"Authorization": "Bearer env-key"}


def test_custom_header_without_bearer_prefix() -> None:
    config = resolve_config(
        base_url="http://localhost:8080/v1",
        api_key="k",
        auth_header="X-API-Key",
        no_bearer=True,
        environ={},
    )

    assert config.auth_headers() == {"X-API-Key": "k"}
    assert config.auth_headers("bogus") == {"X-API-Key": "bogus"}


@pytest.mark.parametrize(
    "kwargs, message",
    [
        ({"api_key": "k"}, "--base-url is required"),
        ({"base_url": "http://x"}, "--api-key is required"),
        ({"base_url": "ftp://x", "api_key": "k"}, "http:// or https://"),
        ({"base_url": "http://x", "api_key": "k", "auth_header": "  "}, "cannot be empty"),
    ],
)
def test_invalid_configuration_is_rejected(kwargs: dict, message: str) -> None:
    with pytest.raises(ConfigError, match=message):
        resolve_config(environ={}, **kwargs)


def test_load_yaml_and_json_profiles(tmp_path: Path) -> None:
    yaml_path = tmp_path / "target.yaml"
    yaml_path.write_text("base_url: http://yaml/v1\nmodel: m1\nfilter: [basic-response]\n", encoding="utf-8")
    json_path = tmp_path / "target.json"
    json_path.write_text(json.dumps({"api_key": "k", "no_bearer": True}), encoding="utf-8")

    assert load_config_file(yaml_path) == {"base_url": "http://yaml/v1", "model": "m1", "filter": ["basic-response"]}
    assert load_config_file(json_path) == {"api_key": "k", "no_bearer": True}


def test_load_config_rejects_bad_files(tmp_path: Path) -> None:
    unknown = tmp_path / "unknown.yaml"
    unknown.write_text("base_url: http://x\nretries: 3\n", encoding="utf-8")
    listing = tmp_path / "list.yaml"
    listing.write_text("- a\n- b\n", encoding="utf-8")
    broken = tmp_path / "broken.json"
    broken.write_text("{", encoding="utf-8")

    with pytest.raises(ConfigError, match="retries"):
        load_config_file(unknown)
    with pytest.raises(ConfigError, match="mapping"):
        load_config_file(listing)
    with pytest.raises(ConfigError, match="could not be parsed"):
        load_config_file(broken)
    with pytest.raises(ConfigError, match="does not exist"):
        load_config_file(tmp_path / "missing.yaml")


def test_parse_filter_flattens_and_dedupes() -> None:
    assert parse_filter(None) is None
    assert parse_filter([]) is None
    assert parse_filter("a, b,a") == ["a", "b"]
    assert parse_filter(["a,b", "c", "b"]) == ["a", "b", "c"]


def test_result_transitions_are_one_way() -> None:
    result = TestResult(id="basic-response", name="Basic")

    with pytest.raises(ResultStateError):
        result.finish(errors=[], duration_ms=1.0)
    result.mark_running()
    with pytest.raises(ResultStateError):
        result.mark_running()
    result.finish(errors=["[x] broken"], duration_ms=1.23456)

    assert result.status is TestStatus.FAILED
    assert result.duration_ms == 1.235
    with pytest.raises(ResultStateError):
        result.finish(errors=[], duration_ms=1.0)


def test_summary_counts_terminal_results_only() -> None:
    passed = TestResult(id="a", name="A")
    passed.mark_running()
    passed.finish(errors=[], duration_ms=1.0)
    running = TestResult(id="b", name="B")
    running.mark_running()

    summary = summarize([passed, running, TestResult(id="c", name="C")])

    assert (summary.passed, summary.failed, summary.total) == (1, 0, 1)
    assert not summary.any_failed


def test_output_format_priority(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(ENV_VAR_NAME, "plain")

    assert get_output_format("JSON") is OutputFormat.JSON
    assert get_output_format(None) is OutputFormat.PLAIN
    assert get_output_format("sparkles") is OutputFormat.PLAIN

    monkeypatch.setenv(ENV_VAR_NAME, "nonsense")
    assert get_output_format() is OutputFormat.AUTO


def test_log_format_follows_console_mode() -> None:
    assert log_format_for(OutputFormat.JSON) == "json"
    assert log_format_for(OutputFormat.PLAIN) == "plain"
    assert log_format_for(OutputFormat.RICH) == "console"
    assert log_format_for(OutputFormat.AUTO) == "console"
