"""
End-to-end runs of the orchestrator against a fake RecTrac tenant.
"""
import json
from datetime import date

import pytest
from playwright.async_api import Error as PlaywrightError

from rectrac_export.engine.capture import CaptureChannel
from rectrac_export.engine.export_protocol import ExportCriteria
from rectrac_export.engine.orchestrator import ExportOrchestrator
from rectrac_export.errors import AutomationError, FormatFailure
from tests.conftest import HOME_URL
from tests.utils import FakeElement
from tests.utils.screens import ReportPanel

CRITERIA = ExportCriteria(date(2024, 5, 1), date(2024, 5, 7))


def tenant(tmp_path, payload: bytes | None = None) -> ReportPanel:
    """Login form, Facility DataGrid and report panel on one page."""
    panel = ReportPanel(tmp_path / "browser-downloads", url="about:blank")
    submit = FakeElement('button[type="submit"]', text="Sign In")
    submit.on_click = lambda el: setattr(panel.page, "url", HOME_URL)
    panel.page.add(
        FakeElement('input[name="username"]'),
        FakeElement('input[name="password"]'),
        submit,
        FakeElement(text="Facility DataGrid"),
        FakeElement("table"),
    )
    if payload is not None:
        panel.deliver(payload)
    return panel


def read_report(directory) -> dict:
    reports = sorted(directory.glob("run-report-*.json"))
    assert len(reports) == 1
    return json.loads(reports[0].read_text())


@pytest.mark.asyncio
async def test_full_run_writes_filtered_artifact(settings, tmp_path):
    panel = tenant(tmp_path)
    panel.deliver(
        b"FacClass,FacLocation,FacCode,FacShortDescription,Status\r\n"
        b'A,North,101,"Community Lounge",Active\r\n'
        b"B,Gym,301,Gymnasium,Active\r\n"
    )
    orchestrator = ExportOrchestrator(settings)

    result = await orchestrator.run(CRITERIA, context=panel.context, page=panel.page)

    assert result.output_path.read_text(encoding="utf-8") == (
        "facClass,facLocation,facCode,facShortDesc,status\n"
        '"A","North","101","Community Lounge","Active"\n'
    )
    assert result.channel == CaptureChannel.DIRECT
    assert [row.fac_code for row in result.rows] == ["101"]
    assert panel.begin_input.value == "05/01/2024"

    report = read_report(settings.artifact_dir)
    assert report["status"] == "completed"
    assert result.report_path.name.startswith("run-report-")
    event_types = [event["type"] for event in report["events"]]
    assert event_types[0] == "run_start"
    assert event_types[-1] == "run_end"
    assert {"auth_states", "resolution", "surface", "capture", "extraction"} <= set(event_types)

    # listeners are torn down with the run
    assert panel.page.listeners("download") == []
    assert panel.context.listeners("response") == []
    assert not panel.context.closed


@pytest.mark.asyncio
async def test_zero_matches_still_writes_placeholder(settings, tmp_path):
    panel = tenant(tmp_path, b"FacShortDescription,FacCode\r\nGymnasium,301\r\n")

    result = await ExportOrchestrator(settings).run(CRITERIA, context=panel.context, page=panel.page)

    assert result.rows == []
    assert result.output_path.read_text().splitlines() == [
        "facClass,facLocation,facCode,facShortDesc,status",
        '"","","","",""',
    ]


@pytest.mark.asyncio
async def test_publisher_receives_artifact(settings, tmp_path):
    panel = tenant(tmp_path, b"FacShortDescription\r\nFull A+B\r\n")
    published = []

    async def publisher(data, path):
        published.append((data, path))

    result = await ExportOrchestrator(settings, publisher=publisher).run(
        CRITERIA, context=panel.context, page=panel.page)

    assert published == [(result.artifact, result.output_path)]


@pytest.mark.asyncio
async def test_publisher_failure_does_not_fail_run(settings, tmp_path):
    panel = tenant(tmp_path, b"FacShortDescription\r\nFull A+B\r\n")

    async def publisher(data, path):
        raise RuntimeError("bucket unavailable")

    result = await ExportOrchestrator(settings, publisher=publisher).run(
        CRITERIA, context=panel.context, page=panel.page)

    assert result.output_path.exists()
    assert len(result.rows) == 1


@pytest.mark.asyncio
async def test_html_payload_is_a_format_failure(settings, tmp_path):
    payload = b"<!DOCTYPE html><html><body>Session expired</body></html>"
    panel = tenant(tmp_path, payload)

    with pytest.raises(FormatFailure) as exc_info:
        await ExportOrchestrator(settings).run(CRITERIA, context=panel.context, page=panel.page)

    assert exc_info.value.phase == "format"
    assert (settings.artifact_dir / "playwright-format.payload").read_bytes() == payload
    assert (settings.artifact_dir / "playwright-format.png").exists()
    assert not settings.output_path.exists()

    report = read_report(settings.artifact_dir)
    assert report["status"] == "failed"
    errors = [event for event in report["events"] if event["type"] == "error"]
    assert errors[0]["kind"] == "FormatFailure"
    assert errors[0]["phase"] == "format"


@pytest.mark.asyncio
async def test_missing_description_column_is_a_format_failure(settings, tmp_path):
    panel = tenant(tmp_path, b"FacClass,FacCode,Status\r\nA,101,Active\r\n")

    with pytest.raises(FormatFailure) as exc_info:
        await ExportOrchestrator(settings).run(CRITERIA, context=panel.context, page=panel.page)

    assert exc_info.value.phase == "format-no-description"
    assert (settings.artifact_dir / "playwright-format-no-description.payload").exists()


@pytest.mark.asyncio
async def test_stray_driver_error_is_typed_and_diagnosed(settings, tmp_path):
    panel = tenant(tmp_path, b"FacShortDescription\r\nFull A+B\r\n")
    orchestrator = ExportOrchestrator(settings)

    async def target_closed(surface, criteria):
        raise PlaywrightError("Target page, context or browser has been closed")

    orchestrator.exporter.export_report = target_closed

    with pytest.raises(AutomationError) as exc_info:
        await orchestrator.run(CRITERIA, context=panel.context, page=panel.page)

    assert exc_info.value.phase == "driver-error"
    assert isinstance(exc_info.value.__cause__, PlaywrightError)
    assert (settings.artifact_dir / "playwright-driver-error.png").exists()

    report = read_report(settings.artifact_dir)
    assert report["status"] == "failed"
    errors = [event for event in report["events"] if event["type"] == "error"]
    assert errors[0]["phase"] == "driver-error"
    assert panel.page.listeners("download") == []
