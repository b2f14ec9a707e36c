import asyncio
import time
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from zoneinfo import ZoneInfo

from playwright.async_api import Error as PlaywrightError

from rectrac_export.config import Settings
from rectrac_export.engine.capture import (
    CaptureContext,
    Channel,
    DownloadWatcher,
    ExportJob,
    ResponseSniffer,
    default_channels,
)
from rectrac_export.engine.diagnostics import DiagnosticsRecorder
from rectrac_export.engine.locators import Target
from rectrac_export.engine.resolver import ElementResolver
from rectrac_export.engine.surface import Surface
from rectrac_export.errors import ExportFailure, ResolutionFailure
from rectrac_export.utils.logger import get_logger

DATE_FORMAT = "%m/%d/%Y"
EXPLICIT_MODE_TEXT = "actual date"


@dataclass(frozen=True)
class ExportCriteria:
    begin: date
    end: date

    @classmethod
    def today(cls, timezone: str | None = None) -> "ExportCriteria":
        now = datetime.now(ZoneInfo(timezone)) if timezone else datetime.now()
        return cls(begin=now.date(), end=now.date())

    def __post_init__(self):
        if self.end < self.begin:
            raise ValueError(f"End date {self.end} is before begin date {self.begin}")


class ExportProtocol:
    """Sets the date range, triggers processing and captures the finished file.

    Capture channels run one after another in fixed priority order under a
    single deadline; the first one that yields bytes ends the job.
    """

    def __init__(self, settings: Settings, resolver: ElementResolver, diagnostics: DiagnosticsRecorder,
                 watcher: DownloadWatcher, sniffer: ResponseSniffer, channels: list[Channel] | None = None):
        self.settings = settings
        self.timeouts = settings.timeouts
        self.resolver = resolver
        self.diagnostics = diagnostics
        self.watcher = watcher
        self.sniffer = sniffer
        self.channels = channels if channels is not None else default_channels()
        self.last_job: ExportJob | None = None
        self.log = get_logger("ExportProtocol")

    async def set_date_field(self, surface: Surface, field: str, value: date, attempts: int = 2) -> None:
        """Force the field into explicit-date mode, then type the date.

        A driver error on any of these controls (covered, detached, outside
        the viewport) re-resolves and retries; once ``attempts`` are spent
        the field fails as unresolved after diagnostics are captured.
        """
        for attempt in range(1, attempts + 1):
            try:
                await self._write_date_field(surface, field, value)
                return
            except PlaywrightError as e:
                self.log.warning("⚠️  Date field interaction failed", field=field, attempt=attempt, error=str(e))

        phase = f"{field}-date-mode"
        await self.diagnostics.capture(surface.page, phase)
        tried = self.resolver.target(f"{field}_date_mode").labels + self.resolver.target(f"{field}_date_input").labels
        raise ResolutionFailure(f"{field}_date_mode", tried, phase=phase)

    async def _write_date_field(self, surface: Surface, field: str, value: date) -> None:
        budget = self.timeouts.resolve_budget
        click_timeout = self.timeouts.click * 1000
        mode = await self.resolver.require(f"{field}_date_mode", surface, budget=budget,
                                           phase=f"{field}-date-mode")
        current = (await mode.locator.text_content() or "").strip()
        if EXPLICIT_MODE_TEXT not in current.lower():
            await mode.locator.click(timeout=click_timeout)
            option = await self.resolver.require("explicit_mode_option", surface, budget=budget,
                                                 phase=f"{field}-date-explicit-mode")
            await option.locator.click(timeout=click_timeout)
            self.log.info("📅 Switched date field to explicit value", field=field, previous_mode=current)

        field_input = await self.resolver.require(f"{field}_date_input", surface, budget=budget,
                                                  phase=f"{field}-date-input")
        text = value.strftime(DATE_FORMAT)
        await field_input.locator.fill(text, timeout=click_timeout)
        await field_input.locator.press("Tab", timeout=click_timeout)

        written = await field_input.locator.input_value()
        if written != text:
            self.log.warning("⚠️  Date field shows a different value", field=field, expected=text, actual=written)
        else:
            self.log.info("📅 Date set", field=field, value=text)

    async def set_criteria(self, surface: Surface, criteria: ExportCriteria) -> None:
        await self.set_date_field(surface, "begin", criteria.begin)
        await self.set_date_field(surface, "end", criteria.end)

    async def _acknowledged(self, surface: Surface) -> bool:
        return await self.resolver.is_present("process_ack", surface, budget=self.timeouts.ack_wait)

    async def trigger(self, surface: Surface) -> str:
        """Click the first Process candidate the server acknowledges.

        Falls back to the grid settings menu when no Process control exists.
        """
        process = self.resolver.target("process_button")
        clicked = []
        for candidate in process:
            single = Target(process.name, (candidate,))
            result = await self.resolver.resolve(single, surface, budget=0)
            if not result.found:
                continue
            try:
                await result.locator.click(timeout=self.timeouts.click * 1000)
            except PlaywrightError as e:
                self.log.warning("⚠️  Process click failed", candidate=candidate.label, error=str(e))
                continue
            clicked.append(candidate.label)
            if await self._acknowledged(surface):
                self.log.info("🚀 Process acknowledged by server", candidate=candidate.label)
                return f"process:{candidate.label}"
            self.log.warning("⚠️  Process clicked but not acknowledged", candidate=candidate.label)

        if not clicked:
            gear = await self.resolver.click_first("grid_settings", surface, budget=0,
                                                   timeout=self.timeouts.click)
            if gear.found:
                item = await self.resolver.click_first("export_menu_item", surface,
                                                       budget=self.timeouts.resolve_budget,
                                                       timeout=self.timeouts.click)
                if item.found:
                    self.log.info("🚀 Export requested from grid settings menu", candidate=item.candidate.label)
                    return f"settings-menu:{item.candidate.label}"

            await self.diagnostics.capture(surface.page, "no-process-button")
            tried = process.labels + self.resolver.target("grid_settings").labels
            raise ResolutionFailure("process_button", tried, phase="no-process-button")

        await self.diagnostics.capture(surface.page, "process-not-acknowledged")
        raise ExportFailure(
            f"Process was clicked ({', '.join(clicked)}) but never acknowledged",
            phase="process-not-acknowledged",
        )

    async def dismiss_dialog(self, surface: Surface) -> bool:
        closed = await self.resolver.click_first("dialog_close", surface, budget=0, timeout=self.timeouts.click)
        if not closed.found:
            self.log.info("No dialog close button, pressing Escape")
            try:
                await surface.page.keyboard.press("Escape")
            except PlaywrightError:
                pass
        await asyncio.sleep(self.timeouts.dialog_settle)
        return closed.found

    async def capture(self, surface: Surface, job: ExportJob, sniff_mark: int) -> bytes:
        ctx = CaptureContext(
            surface=surface,
            resolver=self.resolver,
            watcher=self.watcher,
            sniffer=self.sniffer,
            timeouts=self.timeouts,
            download_dir=Path(self.settings.artifact_dir) / "downloads",
            sniff_mark=sniff_mark,
        )
        deadline = time.monotonic() + self.timeouts.capture_deadline

        while True:
            for channel in self.channels:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                job.attempts.append(channel.kind.value)
                self.log.info("📥 Trying capture channel", channel=channel.kind.value,
                              remaining=round(remaining, 1))
                try:
                    captured = await channel.attempt(ctx, remaining)
                except PlaywrightError as e:
                    self.log.warning("⚠️  Capture channel errored", channel=channel.kind.value, error=str(e))
                    captured = None
                if captured is not None:
                    job.payload, job.source = captured
                    job.channel = channel.kind
                    self.log.info("✅ Report captured", channel=channel.kind.value,
                                  source=job.source, size=len(job.payload))
                    return job.payload

            if deadline - time.monotonic() <= 0:
                break
            await asyncio.sleep(min(self.timeouts.sniff_poll_interval, max(deadline - time.monotonic(), 0)))

        await self.diagnostics.capture(surface.page, "no-download")
        raise ExportFailure(
            f"No capture channel produced the report within {self.timeouts.capture_deadline:g}s "
            f"(tried: {', '.join(dict.fromkeys(job.attempts))})",
            phase="no-download",
        )

    async def export_report(self, surface: Surface, criteria: ExportCriteria) -> bytes:
        job = ExportJob()
        self.last_job = job

        await self.set_criteria(surface, criteria)

        self.watcher.arm()
        sniff_mark = self.sniffer.mark()
        job.trigger = await self.trigger(surface)
        await self.dismiss_dialog(surface)

        return await self.capture(surface, job, sniff_mark)
