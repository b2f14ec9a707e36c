from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable

from playwright.async_api import BrowserContext, Page, async_playwright
from playwright.async_api import Error as PlaywrightError

from rectrac_export.config import Settings
from rectrac_export.engine.capture import CaptureChannel, Channel, DownloadWatcher, ResponseSniffer
from rectrac_export.engine.diagnostics import DiagnosticsRecorder
from rectrac_export.engine.export_protocol import ExportCriteria, ExportProtocol
from rectrac_export.engine.locators import Locators, load_locators
from rectrac_export.engine.navigator import PanelNavigator
from rectrac_export.engine.resolver import ElementResolver
from rectrac_export.engine.run_report import RunReport
from rectrac_export.engine.session_controller import Credentials, SessionController
from rectrac_export.engine.surface import Session
from rectrac_export.errors import AutomationError, FormatFailure
from rectrac_export.extract import ExtractionResult, ReportRow, extract_and_filter, write_artifact
from rectrac_export.utils.logger import get_logger, run_context

Publisher = Callable[[bytes, Path], Awaitable[None]]


@dataclass
class RunResult:
    output_path: Path
    rows: list[ReportRow] = field(default_factory=list)
    channel: CaptureChannel | None = None
    artifact: bytes = b""
    report_path: Path | None = None


class ExportOrchestrator:
    """Login, panel navigation, export capture and extraction for one run.

    The browser context belongs to this run alone; pass ``context`` and
    ``page`` to drive one that the caller owns.
    """

    def __init__(self, settings: Settings, locators: Locators | None = None,
                 publisher: Publisher | None = None, channels: list[Channel] | None = None):
        self.settings = settings
        t = settings.timeouts
        self.locators = locators or load_locators(settings.locators_path)
        self.diagnostics = DiagnosticsRecorder(settings.artifact_dir)
        self.report = RunReport()
        self.resolver = ElementResolver(
            self.locators,
            probe_timeout=t.candidate_probe,
            budget=t.resolve_budget,
            poll_interval=t.grid_poll_interval,
            diagnostics=self.diagnostics,
            report=self.report,
        )
        self.watcher = DownloadWatcher()
        self.sniffer = ResponseSniffer()
        self.session_controller = SessionController(settings, self.resolver, self.diagnostics)
        self.navigator = PanelNavigator(settings, self.resolver, self.diagnostics)
        self.exporter = ExportProtocol(settings, self.resolver, self.diagnostics, self.watcher, self.sniffer,
                                       channels=channels)
        self.publisher = publisher
        self.log = get_logger("ExportOrchestrator")

    async def _publish(self, data: bytes, path: Path) -> None:
        if self.publisher is None:
            return
        try:
            await self.publisher(data, path)
            self.log.info("☁️  Artifact handed to publisher", output=str(path))
        except Exception as e:
            self.log.warning("⚠️  Publisher failed, artifact kept locally", error=str(e), exc_info=True)

    async def _extract(self, session: Session, raw: bytes) -> ExtractionResult:
        try:
            result = extract_and_filter(raw, self.settings.fac_terms)
        except FormatFailure as e:
            self.diagnostics.save_payload(raw, e.phase)
            await self.diagnostics.capture(session.active.page, e.phase)
            raise

        if not result.shape_recognized:
            phase = "format-no-description"
            self.diagnostics.save_payload(raw, phase)
            await self.diagnostics.capture(session.active.page, phase)
            raise FormatFailure("Report header has no recognizable short description column", phase=phase)

        self.log.info("🔎 Filtered report", data_rows=result.data_rows, kept=len(result))
        return result

    async def _run_phases(self, session: Session, criteria: ExportCriteria) -> RunResult:
        credentials = Credentials(self.settings.username, self.settings.password)

        self.report.log_phase("login", "started")
        await self.session_controller.ensure_authenticated(session, credentials)
        self.report.log_phase("login", "completed")

        self.report.log_phase("navigate", "started")
        surface = await self.navigator.open_report_surface(session)
        self.report.log_surface(surface.describe())
        self.report.log_phase("navigate", "completed")

        self.report.log_phase("export", "started", {"begin": criteria.begin.isoformat(),
                                                   "end": criteria.end.isoformat()})
        raw = await self.exporter.export_report(surface, criteria)
        job = self.exporter.last_job
        self.report.log_capture(job.trigger, job.channel.value if job.channel else None, job.source,
                                len(raw), job.attempts)
        self.report.log_phase("export", "completed")

        extracted = await self._extract(session, raw)
        rows = extracted.rows
        output_path = Path(self.settings.output_path)
        data = write_artifact(rows, output_path)
        self.report.log_extraction(extracted.data_rows, len(rows), str(output_path))
        self.log.info("💾 Artifact written", output=str(output_path), rows=len(rows))

        await self._publish(data, output_path)
        return RunResult(output_path=output_path, rows=rows, channel=job.channel, artifact=data)

    async def _record_failure(self, session: Session, e: AutomationError) -> None:
        if e.phase not in self.diagnostics.captured:
            await self.diagnostics.capture(session.active.page, e.phase)
        self.report.log_error(e.phase, str(e), type(e).__name__, list(self.diagnostics.captured))
        self.log.error("❌ Export run failed", phase=e.phase, error=str(e), kind=type(e).__name__)

    async def run(self, criteria: ExportCriteria | None = None, context: BrowserContext | None = None,
                  page: Page | None = None) -> RunResult:
        criteria = criteria or ExportCriteria.today(self.settings.timezone)
        with run_context(begin=criteria.begin.isoformat(), end=criteria.end.isoformat()):
            return await self._run(criteria, context, page)

    async def _run(self, criteria: ExportCriteria, context: BrowserContext | None, page: Page | None) -> RunResult:
        t = self.settings.timeouts
        self.report.start_run(self.settings.login_url, self.settings.fac_terms)

        own_context = context is None
        playwright = browser = None
        if own_context:
            playwright = await async_playwright().start()
            browser = await playwright.chromium.launch(headless=self.settings.headless)
            context = await browser.new_context(
                accept_downloads=True,
                locale=self.settings.locale,
                timezone_id=self.settings.timezone,
                user_agent=self.settings.user_agent,
            )
            context.set_default_navigation_timeout(t.navigation * 1000)
            context.set_default_timeout(t.operation * 1000)
            page = await context.new_page()
        elif page is None:
            page = context.pages[0] if context.pages else await context.new_page()

        self.watcher.attach(context)
        self.sniffer.attach(context)
        session = Session(context=context, page=page)
        status = "failed"
        result = None

        try:
            result = await self._run_phases(session, criteria)
            status = "completed"
            return result
        except AutomationError as e:
            await self._record_failure(session, e)
            raise
        except PlaywrightError as e:
            failure = AutomationError(f"Browser driver error: {e}", phase="driver-error")
            await self._record_failure(session, failure)
            raise failure from e
        finally:
            self.watcher.detach()
            self.sniffer.detach()
            self.report.log_states([s.value for s in session.transitions])
            self.report.end_run(status)
            report_path = self.report.write_json(self.settings.artifact_dir)
            self.log.info("📊 Run report written", path=str(report_path), status=status)
            if result is not None:
                result.report_path = report_path
            if own_context:
                await context.close()
                await browser.close()
                await playwright.stop()


async def run_export(settings: Settings, criteria: ExportCriteria | None = None,
                     publisher: Publisher | None = None) -> RunResult:
    orchestrator = ExportOrchestrator(settings, publisher=publisher)
    return await orchestrator.run(criteria)
