import os
import subprocess
import sys
from pathlib import Path

import pytest

from config import Settings
from pairing import DEFAULT_GREETING


def test_defaults(monkeypatch):
    for name in ("HOST", "PORT", "CORS_ORIGINS", "CHAT_MAX_LENGTH", "REAPER_INTERVAL",
                 "WAITING_TTL", "STRICT_SIGNALING", "GREETING", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    s = Settings.from_env()
    assert s == Settings()
    assert s.port == 4000
    assert s.cors_origins == ["*"]
    assert s.chat_max_length == 2000
    assert s.greeting == DEFAULT_GREETING
    assert not s.strict_signaling


def test_from_env(monkeypatch):
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("CORS_ORIGINS", "http://a.test, http://b.test,")
    monkeypatch.setenv("WAITING_TTL", "30")
    monkeypatch.setenv("STRICT_SIGNALING", "yes")
    monkeypatch.setenv("GREETING", "")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    s = Settings.from_env()
    assert s.port == 8080
    assert s.cors_origins == ["http://a.test", "http://b.test"]
    assert s.waiting_ttl == 30.0
    assert s.strict_signaling
    assert s.greeting == ""
    assert s.log_level == "DEBUG"


def test_invalid_port(monkeypatch):
    monkeypatch.setenv("PORT", "eighty")
    with pytest.raises(ValueError):
        Settings.from_env()


@pytest.mark.parametrize("name, value", [
    ("CHAT_MAX_LENGTH", "0"),
    ("CHAT_MAX_LENGTH", "-3"),
    ("REAPER_INTERVAL", "-1"),
    ("WAITING_TTL", "-30"),
    ("PORT", "0"),
    ("PORT", "70000"),
])
def test_out_of_range_values(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError):
        Settings.from_env()


def test_zero_disables_reaper_and_ttl(monkeypatch):
    monkeypatch.setenv("REAPER_INTERVAL", "0")
    monkeypatch.setenv("WAITING_TTL", "0")
    s = Settings.from_env()
    assert s.reaper_interval == 0
    assert s.waiting_ttl == 0


def test_pairing_imports_without_reading_environment():
    root = Path(__file__).resolve().parent.parent
    env = dict(os.environ, PORT="eighty", PYTHONPATH=str(root))
    result = subprocess.run(
        [sys.executable, "-c", "import pairing; print(pairing.DEFAULT_GREETING)"],
        cwd=str(root), env=env, capture_output=True, text=True,
    )
    assert result.returncode == 0, result.stderr
    assert result.stdout.strip() == DEFAULT_GREETING
