"""Tests for environment-driven settings."""
import logging
from pathlib import Path

import pytest

from handbook_qa.config import Settings, mask_value
from handbook_qa.errors import ConfigurationError
from handbook_qa.log_config import configure_logging

ENV_VARS = (
    "OPENAI_API_KEY", "SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY", "VECTOR_BACKEND",
    "RETRIEVAL_TOP_K", "CHAT_MODEL", "DATA_DIR", "OPENAI_BASE_URL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = Settings.from_env()

    assert settings.embedding_model == "text-embedding-3-small"
    assert settings.chat_model == "gpt-4o-mini"
    assert settings.temperature == 0.3
    assert settings.top_k == 5
    assert settings.vector_backend == "supabase"


def test_values_from_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-123")
    monkeypatch.setenv("SUPABASE_URL", "https://project.supabase.co/")
    monkeypatch.setenv("VECTOR_BACKEND", "FAISS")
    monkeypatch.setenv("RETRIEVAL_TOP_K", "8")
    monkeypatch.setenv("DATA_DIR", str(tmp_path))

    settings = Settings.from_env()

    assert settings.openai_api_key == "sk-123"
    assert settings.supabase_url == "https://project.supabase.co"
    assert settings.vector_backend == "faiss"
    assert settings.top_k == 8
    assert settings.db_path == Path(tmp_path) / "handbook.sqlite"


def test_supabase_backend_needs_all_credentials():
    with pytest.raises(ConfigurationError) as exc_info:
        Settings(openai_api_key="sk-1").validate()

    assert "SUPABASE_URL" in str(exc_info.value)
    assert "SUPABASE_SERVICE_ROLE_KEY" in str(exc_info.value)


def test_faiss_backend_needs_only_openai_key():
    settings = Settings(openai_api_key="sk-1", vector_backend="faiss")

    assert settings.validate() is settings
    assert Settings(vector_backend="faiss").missing_credentials() == ["OPENAI_API_KEY"]


def test_unknown_backend():
    with pytest.raises(ConfigurationError):
        Settings(openai_api_key="sk-1", vector_backend="pinecone").validate()


def test_top_k_must_be_positive():
    with pytest.raises(ConfigurationError):
        Settings(openai_api_key="sk-1", vector_backend="faiss", top_k=0).validate()


@pytest.mark.parametrize(
    "value, masked",
    [
        (None, "NOT SET"),
        ("", "NOT SET"),
        ("short", "set (too short to mask)"),
        ("sk-abcdefghijklmnop", "set (sk-abcdefg***)"),
    ],
)
def test_mask_value(value, masked):
    assert mask_value(value) == masked


def test_log_level_setting_reaches_logging(monkeypatch):
    root = logging.getLogger()
    previous = root.level
    monkeypatch.setenv("LOG_LEVEL", "debug")
    try:
        configure_logging(level=Settings.from_env().log_level)
        assert root.level == logging.DEBUG
    finally:
        root.setLevel(previous)
