import os
from pathlib import Path

import pytest

from rectrac_export.config import DEFAULT_FAC_TERMS, Settings, parse_terms
from rectrac_export.errors import ConfigError

BASE_ENV = {
    "RECTRAC_LOGIN_URL": "https://rectrac.example.org/RecTrac/app#/login",
    "RECTRAC_USER": "frontdesk",
    "RECTRAC_PASS": "s3cret",
}


def test_from_env_defaults():
    settings = Settings.from_env(dict(BASE_ENV))

    assert settings.username == "frontdesk"
    assert settings.fac_terms == DEFAULT_FAC_TERMS
    assert settings.output_path == Path("gmcc-week.csv")
    assert settings.headless is True
    assert settings.timezone == "America/Detroit"
    assert settings.timeouts.login_deadline == 90
    assert settings.timeouts.capture_deadline == 120


def test_missing_variables_are_all_named():
    with pytest.raises(ConfigError) as exc_info:
        Settings.from_env({"RECTRAC_USER": "frontdesk", "RECTRAC_PASS": "  "})

    message = str(exc_info.value)
    assert "RECTRAC_LOGIN_URL" in message
    assert "RECTRAC_PASS" in message
    assert "RECTRAC_USER" not in message


def test_optional_overrides():
    env = dict(
        BASE_ENV,
        RECTRAC_FACILITY_GRID_URL="https://rectrac.example.org/RecTrac/app#/facility",
        RECTRAC_FAC_TERMS="Pickleball, Full A+B ,",
        RECTRAC_OUTPUT_PATH="out/week.csv",
        RECTRAC_ARTIFACT_DIR="diag",
        RECTRAC_HEADLESS="false",
        RECTRAC_TIMEZONE="America/Chicago",
    )
    settings = Settings.from_env(env)

    assert settings.grid_url.endswith("#/facility")
    assert settings.fac_terms == ["Pickleball", "Full A+B"]
    assert settings.output_path == Path("out/week.csv")
    assert settings.artifact_dir == Path("diag")
    assert settings.headless is False
    assert settings.timezone == "America/Chicago"


def test_from_env_reads_dotenv(tmp_path, monkeypatch):
    for name in BASE_ENV:
        monkeypatch.delenv(name, raising=False)
    (tmp_path / ".env").write_text("\n".join(f"{k}={v}" for k, v in BASE_ENV.items()))
    monkeypatch.chdir(tmp_path)

    try:
        settings = Settings.from_env()
    finally:
        for name in BASE_ENV:
            os.environ.pop(name, None)

    assert settings.password == "s3cret"


@pytest.mark.parametrize("login_url, home_url", [
    ("https://rt.example/app#/login", "https://rt.example/app#/home"),
    ("https://rt.example/app", "https://rt.example/app#/home"),
    ("https://rt.example/app#/other", "https://rt.example/app#/home"),
])
def test_home_url_derived_from_login_url(login_url, home_url):
    settings = Settings(login_url=login_url, username="u", password="p")
    assert settings.home_url == home_url


def test_parse_terms_rejects_empty():
    with pytest.raises(ConfigError):
        parse_terms(" , ,")
