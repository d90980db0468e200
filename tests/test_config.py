"""Tests for YAML/env configuration and the logging helpers."""
import logging

import pytest

from common.logging_utils import Timer, configure_logging, extra_context, redact, safe_url
from constants import Constants, apply_env_overrides, load_settings


@pytest.fixture(autouse=True)
def isolated(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for var in ("LOCKWRIGHT_CONFIG", "LOCKWRIGHT_INDEX_URL", "LOCKWRIGHT_TIMEOUT", "LOCKWRIGHT_MAX_STEPS"):
        monkeypatch.delenv(var, raising=False)


def test_yaml_file_applies(tmp_path):
    path = tmp_path / "custom.yml"
    path.write_text(
        "index:\n  url: https://mirror.test/pypi/\n"
        "resolver:\n  max_steps: 500\n  extras_policy: strict\n"
        "cache:\n  dir: ~/lw-cache\n",
        encoding="utf-8",
    )
    load_settings(str(path))
    assert Constants.INDEX_URL == "https://mirror.test/pypi/"
    assert Constants.RESOLVER_MAX_STEPS == 500
    assert Constants.EXTRAS_POLICY == "strict"
    assert not Constants.CACHE_DIR.startswith("~")


def test_default_file_in_working_directory(tmp_path):
    (tmp_path / "lockwright.yml").write_text("http:\n  timeout: 4\n", encoding="utf-8")
    load_settings()
    assert Constants.REQUEST_TIMEOUT == 4


def test_env_overrides_file(tmp_path, monkeypatch):
    path = tmp_path / "c.yml"
    path.write_text("http:\n  timeout: 4\n", encoding="utf-8")
    monkeypatch.setenv("LOCKWRIGHT_CONFIG", str(path))
    monkeypatch.setenv("LOCKWRIGHT_TIMEOUT", "9.5")
    load_settings()
    assert Constants.REQUEST_TIMEOUT == 9.5


def test_invalid_inputs_ignored(tmp_path):
    path = tmp_path / "bad.yml"
    path.write_text("index: [unclosed\n", encoding="utf-8")
    before = Constants.INDEX_URL
    load_settings(str(path))
    apply_env_overrides({"LOCKWRIGHT_MAX_STEPS": "lots"})
    assert Constants.INDEX_URL == before
    assert Constants.RESOLVER_MAX_STEPS == 100000


def test_configure_logging_level(monkeypatch):
    monkeypatch.setenv("LOCKWRIGHT_LOG_LEVEL", "debug")
    configure_logging()
    assert logging.getLogger().level == logging.DEBUG
    configure_logging("WARNING")
    assert logging.getLogger().level == logging.WARNING


def test_safe_url_and_redact():
    assert safe_url("https://u:p@host/simple?api_key=abc&x=1") == "https://***@host/simple?api_key=***&x=1"
    assert redact("password=hunter2 rest") == "password=*** rest"


def test_extra_context_drops_none():
    assert extra_context(event="e", target=None) == {"event": "e"}


def test_timer():
    with Timer() as t:
        pass
    assert t.duration_ms() >= 0
