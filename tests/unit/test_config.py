from pathlib import Path

import pytest

from doc_gateway.config import DEFAULT_ALLOWED_MIME, Settings

ENV_VARS = [
    "HOST",
    "PORT",
    "AUTH_TOKEN",
    "AUTH_TOKEN_HASH",
    "MAX_UPLOAD_MB",
    "CONVERT_TIMEOUT_SEC",
    "CONVERTER_BIN",
    "SCRATCH_DIR",
    "ALLOWED_MIME",
    "LOG_LEVEL",
    "RELOAD",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    # setenv first so values loaded from .env files are rolled back too
    for name in ENV_VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


def test_defaults():
    settings = Settings.from_env(dotenv=False)
    assert settings.port == 3000
    assert settings.auth_token is None
    assert settings.max_upload_mb == 50
    assert settings.max_upload_bytes == 50 * 1024 * 1024
    assert settings.convert_timeout_sec == 60
    assert settings.converter_bin == "soffice"
    assert settings.allowed_mime == frozenset(DEFAULT_ALLOWED_MIME)
    assert settings.reload is False


def test_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("PORT", "8081")
    monkeypatch.setenv("AUTH_TOKEN", "abc")
    monkeypatch.setenv("MAX_UPLOAD_MB", "5")
    monkeypatch.setenv("SCRATCH_DIR", str(tmp_path))
    monkeypatch.setenv("ALLOWED_MIME", " application/rtf , Text/RTF ,")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("RELOAD", "yes")
    settings = Settings.from_env(dotenv=False)
    assert settings.port == 8081
    assert settings.auth_token == "abc"
    assert settings.max_upload_bytes == 5 * 1024 * 1024
    assert settings.scratch_dir == tmp_path.resolve()
    assert settings.allowed_mime == frozenset({"application/rtf", "text/rtf"})
    assert settings.log_level == "DEBUG"
    assert settings.reload is True


@pytest.mark.parametrize("value", ["abc", "0", "-3"])
def test_invalid_numbers(monkeypatch, value):
    monkeypatch.setenv("PORT", value)
    with pytest.raises(ValueError, match="PORT"):
        Settings.from_env(dotenv=False)


def test_dotenv_file(monkeypatch, tmp_path):
    (tmp_path / ".env").write_text("AUTH_TOKEN=from-file\nPORT=4000\n")
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("PORT", "5000")
    settings = Settings.from_env()
    assert settings.auth_token == "from-file"
    assert settings.port == 5000


def test_settings_are_immutable():
    settings = Settings()
    with pytest.raises(AttributeError):
        settings.port = 1  # type: ignore[misc]
    assert isinstance(settings.scratch_dir, Path)
