"""Shared fixtures for the compliance engine tests."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

TESTS_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = TESTS_DIR.parent
for path in (PROJECT_ROOT, TESTS_DIR):
    path_str = str(path)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)

from openresponses_compliance.models import TestConfig  # noqa: E402


@pytest.fixture
def config() -> TestConfig:
    return TestConfig(base_url="http://test/v1/", api_key="sk-test-123", model="gpt-4o-mini")
