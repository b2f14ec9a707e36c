import asyncio
import time

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from rectrac_export.config import Settings
from rectrac_export.engine.diagnostics import DiagnosticsRecorder
from rectrac_export.engine.resolver import ElementResolver
from rectrac_export.engine.session_controller import dismiss_resume_prompt, wait_out_spinner
from rectrac_export.engine.surface import Session, Surface, SurfaceKind
from rectrac_export.errors import NavigationFailure
from rectrac_export.utils.logger import get_logger


class PanelNavigator:
    """Reaches the Facility DataGrid from the authenticated home state.

    The same launcher click can render the grid in the current document,
    inside a frame, or in a new window, so all three are checked on every
    poll.
    """

    def __init__(self, settings: Settings, resolver: ElementResolver, diagnostics: DiagnosticsRecorder):
        self.settings = settings
        self.timeouts = settings.timeouts
        self.resolver = resolver
        self.diagnostics = diagnostics
        self.log = get_logger("PanelNavigator")

    async def confirm_grid(self, root) -> bool:
        """Both a heading and a data table must be visible; headings alone show on blank shells."""
        await wait_out_spinner(self.resolver, root, self.timeouts)
        await dismiss_resume_prompt(self.resolver, [root], self.timeouts)
        probe = self.timeouts.candidate_probe
        if not await self.resolver.is_present("grid_header", root, probe_timeout=probe):
            return False
        return await self.resolver.is_present("grid_table", root, probe_timeout=probe)

    async def _adopt_window(self, session: Session, popup: Page) -> None:
        try:
            await popup.wait_for_load_state("domcontentloaded", timeout=self.timeouts.popup_load * 1000)
        except PlaywrightError as e:
            self.log.warning("⚠️  Popup did not finish loading", error=str(e))
        await dismiss_resume_prompt(self.resolver, [popup], self.timeouts)
        session.switch_to(Surface(SurfaceKind.WINDOW, popup, popup, "popup"))

    def _candidate_surfaces(self, window: Surface) -> list[Surface]:
        frames = [Surface(SurfaceKind.FRAME, window.page, f, getattr(f, "name", "") or f.url)
                  for f in window.nested()]
        return [*frames, window]

    async def _race(self, session: Session, popups: list) -> Surface | None:
        deadline = time.monotonic() + self.timeouts.grid_deadline
        tool_tried: set[int] = set()

        while True:
            if popups:
                popup = popups.pop()
                popups.clear()
                self.log.info("🪟 Report opened in a new window", url=popup.url)
                await self._adopt_window(session, popup)

            for surface in self._candidate_surfaces(session.active):
                if await self.confirm_grid(surface.root):
                    self.log.info("✅ Report grid confirmed", surface=surface.describe())
                    return surface
                if id(surface.root) not in tool_tried:
                    tool_tried.add(id(surface.root))
                    opened = await self.resolver.click_first("datagrid_tool", surface.root, budget=0)
                    if opened.found:
                        await wait_out_spinner(self.resolver, surface.root, self.timeouts)
                        if await self.confirm_grid(surface.root):
                            self.log.info("✅ Report grid confirmed", surface=surface.describe())
                            return surface

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(self.timeouts.grid_poll_interval, remaining))

    async def _soft_reload(self, page: Page) -> None:
        self.log.warning("🔄 Grid not confirmed, reloading once")
        try:
            await page.reload(wait_until="domcontentloaded", timeout=self.timeouts.navigation * 1000)
        except PlaywrightError as e:
            self.log.warning("⚠️  Reload failed", error=str(e))

    async def open_report_surface(self, session: Session) -> Surface:
        page = session.page
        target_url = self.settings.grid_url or self.settings.home_url
        self.log.info("🌐 Opening report panel", url=target_url)
        try:
            await page.goto(target_url, wait_until="domcontentloaded", timeout=self.timeouts.navigation * 1000)
        except PlaywrightError as e:
            self.log.warning("⚠️  Panel navigation failed, continuing on current page", error=str(e))

        await dismiss_resume_prompt(self.resolver, session.main_surface.roots(), self.timeouts)

        popups: list[Page] = []
        on_page = popups.append
        session.context.on("page", on_page)
        try:
            launcher = await self.resolver.click_first("panel_launcher", session.main_surface, budget=0)
            if not launcher.found:
                self.log.info("No panel launcher visible, expecting the grid on the current page")

            surface = await self._race(session, popups)
            if surface is None:
                await self._soft_reload(session.active.page)
                surface = await self._race(session, popups)
        finally:
            session.context.remove_listener("page", on_page)

        if surface is None:
            await self.diagnostics.capture(session.active.page, "no-grid")
            raise NavigationFailure(
                "Could not find the Facilities grid (panel loaded but DataGrid never appeared)", phase="no-grid"
            )

        return session.switch_to(surface)
