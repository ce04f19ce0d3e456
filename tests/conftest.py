"""Pytest configuration and fixtures."""

import os

import pytest

from copilot.core.config import get_settings


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    os.environ["SUPABASE_URL"] = "https://test.supabase.co"
    os.environ["SUPABASE_SERVICE_ROLE_KEY"] = "test-key"
    os.environ["ANTHROPIC_API_KEY"] = "test-anthropic-key"
    os.environ["PERPLEXITY_API_KEY"] = "test-perplexity-key"
    os.environ["COPILOT_ENV"] = "test"
    get_settings.cache_clear()


@pytest.fixture
def override_settings(monkeypatch):
    """Set settings fields through the environment for one test."""

    def _override(**fields):
        for key, value in fields.items():
            monkeypatch.setenv(key, str(value))
        get_settings.cache_clear()
        return get_settings()

    yield _override
    get_settings.cache_clear()
