"""
E2E export against a live RecTrac tenant.

Run with: pytest --live tests/test_live_export.py
Needs RECTRAC_LOGIN_URL, RECTRAC_USER and RECTRAC_PASS (a .env file works).
"""
import pytest
from playwright.async_api import async_playwright

from rectrac_export.config import Settings
from rectrac_export.engine.orchestrator import ExportOrchestrator
from rectrac_export.engine.session_controller import Credentials
from rectrac_export.engine.surface import AuthState, Session
from rectrac_export.extract import OUTPUT_HEADER


@pytest.mark.e2e
@pytest.mark.asyncio
async def test_live_export_writes_artifact(tmp_path):
    settings = Settings.from_env().model_copy(update={
        "output_path": tmp_path / "gmcc-week.csv",
        "artifact_dir": tmp_path / "artifacts",
    })
    orchestrator = ExportOrchestrator(settings)

    result = await orchestrator.run()

    lines = result.output_path.read_text(encoding="utf-8").splitlines()
    assert lines[0] == ",".join(OUTPUT_HEADER)
    assert len(lines) >= 2
    assert result.channel is not None
    assert result.report_path.exists()
    print(f"Captured via {result.channel.value}: {len(result.rows)} matching rows")


@pytest.mark.e2e
@pytest.mark.asyncio
async def test_live_login_reaches_home(tmp_path):
    settings = Settings.from_env().model_copy(update={"artifact_dir": tmp_path})
    orchestrator = ExportOrchestrator(settings)

    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=settings.headless)
        context = await browser.new_context(accept_downloads=True, timezone_id=settings.timezone)
        page = await context.new_page()
        session = Session(context=context, page=page)

        await orchestrator.session_controller.ensure_authenticated(
            session, Credentials(settings.username, settings.password))

        assert session.state == AuthState.AUTHENTICATED_HOME
        await browser.close()
