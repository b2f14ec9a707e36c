"""
Pytest configuration and fixtures for the export engine.
"""
from pathlib import Path

import pytest

from rectrac_export.config import Settings, Timeouts
from rectrac_export.engine.diagnostics import DiagnosticsRecorder
from rectrac_export.engine.locators import load_locators
from rectrac_export.engine.resolver import ElementResolver

LOGIN_URL = "https://rectrac.example.org/RecTrac/app#/login"
HOME_URL = "https://rectrac.example.org/RecTrac/app#/home"


def pytest_addoption(parser):
    parser.addoption(
        "--live",
        action="store_true",
        default=False,
        help="Run tests against a live RecTrac tenant (requires RECTRAC_* credentials)",
    )


@pytest.fixture(scope="session")
def live_mode(request) -> bool:
    return request.config.getoption("--live")


@pytest.fixture(autouse=True)
def skip_e2e_without_live(request, live_mode: bool):
    """Auto-skip E2E tests that require --live flag."""
    if request.node.get_closest_marker("e2e") and not live_mode:
        pytest.skip("E2E test requires --live flag")


@pytest.fixture
def fast_timeouts() -> Timeouts:
    """Budgets small enough that a failing poll loop ends in well under a second."""
    return Timeouts(
        navigation=1.0,
        operation=1.0,
        login_deadline=0.4,
        login_goto_attempts=3,
        login_goto_backoff=0.0,
        login_poll_interval=0.01,
        spinner=0.05,
        prompt_settle=0.0,
        grid_deadline=0.15,
        grid_poll_interval=0.01,
        popup_load=0.05,
        candidate_probe=0.005,
        resolve_budget=0.05,
        click=0.05,
        ack_wait=0.03,
        dialog_settle=0.0,
        capture_deadline=0.4,
        direct_download_window=0.02,
        link_download=0.05,
        notification_download=0.05,
        sniff_window=0.02,
        sniff_poll_interval=0.01,
    )


@pytest.fixture
def settings(tmp_path: Path, fast_timeouts: Timeouts) -> Settings:
    return Settings(
        login_url=LOGIN_URL,
        username="frontdesk",
        password="s3cret",
        output_path=tmp_path / "gmcc-week.csv",
        artifact_dir=tmp_path / "artifacts",
        timeouts=fast_timeouts,
    )


@pytest.fixture(scope="session")
def locators():
    return load_locators()


@pytest.fixture
def diagnostics(settings: Settings) -> DiagnosticsRecorder:
    return DiagnosticsRecorder(settings.artifact_dir)


@pytest.fixture
def resolver(locators, settings: Settings, diagnostics: DiagnosticsRecorder) -> ElementResolver:
    t = settings.timeouts
    return ElementResolver(
        locators,
        probe_timeout=t.candidate_probe,
        budget=t.resolve_budget,
        poll_interval=t.grid_poll_interval,
        diagnostics=diagnostics,
    )
