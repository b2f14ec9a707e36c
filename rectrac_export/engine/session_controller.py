import asyncio
import time
from dataclasses import dataclass

from playwright.async_api import Error as PlaywrightError

from rectrac_export.config import Settings, Timeouts
from rectrac_export.engine.diagnostics import DiagnosticsRecorder
from rectrac_export.engine.resolver import ElementResolver
from rectrac_export.engine.surface import AuthState, Session
from rectrac_export.errors import AuthFailure
from rectrac_export.utils.logger import get_logger


@dataclass(frozen=True)
class Credentials:
    username: str
    password: str

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='***')"


async def settle(root, timeout: float) -> None:
    try:
        await root.wait_for_load_state("networkidle", timeout=timeout * 1000)
    except PlaywrightError:
        pass


async def dismiss_resume_prompt(resolver: ElementResolver, roots: list, timeouts: Timeouts) -> bool:
    """Click through the "Login Prompts" interstitial in any of ``roots``."""
    dismissed = False
    for root in roots:
        if not await resolver.is_present("resume_prompt", root, probe_timeout=timeouts.candidate_probe):
            continue
        result = await resolver.click_first("resume_continue", root, budget=0, timeout=8.0)
        if result.found:
            dismissed = True
            await settle(root, 15.0)
            await asyncio.sleep(timeouts.prompt_settle)
    return dismissed


async def wait_out_spinner(resolver: ElementResolver, root, timeouts: Timeouts) -> bool:
    """Wait for the "Please Wait" overlay to go away, bounded by the spinner timeout."""
    result = await resolver.resolve("busy_spinner", root, budget=0, probe_timeout=timeouts.candidate_probe)
    if not result.found:
        return False
    try:
        await result.locator.wait_for(state="hidden", timeout=timeouts.spinner * 1000)
    except PlaywrightError:
        resolver.log.warning("⏳ Spinner still visible after wait", timeout=timeouts.spinner)
    return True


class SessionController:
    """Drives the login state machine to the authenticated home state.

    Every iteration re-probes all sub-states because the application shows
    the resume prompt, the spinner and the form in no fixed order.
    """

    def __init__(self, settings: Settings, resolver: ElementResolver, diagnostics: DiagnosticsRecorder,
                 max_submissions: int = 3):
        self.settings = settings
        self.timeouts = settings.timeouts
        self.resolver = resolver
        self.diagnostics = diagnostics
        self.max_submissions = max_submissions
        self.log = get_logger("SessionController")

    def on_login_surface(self, session: Session) -> bool:
        return self.settings.login_marker in (session.page.url or "")

    async def _goto_login(self, session: Session) -> None:
        page = session.page
        attempts = self.timeouts.login_goto_attempts
        for attempt in range(1, attempts + 1):
            try:
                self.log.info("🌐 Opening login page", attempt=attempt)
                await page.goto(self.settings.login_url, wait_until="commit",
                                timeout=self.timeouts.navigation * 1000)
                try:
                    await page.wait_for_load_state("domcontentloaded", timeout=20_000)
                except PlaywrightError:
                    pass
                return
            except PlaywrightError as e:
                self.log.warning("⚠️  Login navigation failed", attempt=attempt, error=str(e))
                await self.diagnostics.capture(page, f"login-goto-{attempt}")
                if attempt == attempts:
                    raise AuthFailure(f"Could not open login page: {e}", phase=f"login-goto-{attempt}") from e
                await asyncio.sleep(self.timeouts.login_goto_backoff)

    async def _submit(self, session: Session, credentials: Credentials, username_locator) -> bool:
        page = session.page
        session.enter(AuthState.SUBMITTING)
        try:
            await username_locator.fill(credentials.username)
            password = await self.resolver.resolve("login_password", page, budget=0)
            if not password.found:
                self.log.warning("⚠️  Password field not visible next to username")
                return False
            await password.locator.fill(credentials.password)

            submit = await self.resolver.resolve("login_submit", page, budget=0)
            if submit.found:
                await submit.locator.click(timeout=self.timeouts.click * 1000)
            else:
                await password.locator.press("Enter")
        except PlaywrightError as e:
            self.log.warning("⚠️  Credential submission failed", error=str(e))
            return False

        await settle(page, 15.0)
        self.log.info("🔐 Credentials submitted")
        return True

    async def ensure_authenticated(self, session: Session, credentials: Credentials) -> Session:
        await self._goto_login(session)

        page = session.page
        deadline = time.monotonic() + self.timeouts.login_deadline
        submissions = 0

        while time.monotonic() < deadline:
            roots = session.main_surface.roots()
            if await dismiss_resume_prompt(self.resolver, roots, self.timeouts):
                session.enter(AuthState.RESUME_PROMPT)
                self.log.info("▶️  Resume prompt dismissed")
            if await wait_out_spinner(self.resolver, page, self.timeouts):
                session.enter(AuthState.SPINNER)

            if not self.on_login_surface(session):
                session.enter(AuthState.AUTHENTICATED_HOME)
                self.log.info("✅ Authenticated", url=page.url, submissions=submissions)
                return session

            username = await self.resolver.resolve("login_username", page, budget=0,
                                                   probe_timeout=self.timeouts.candidate_probe)
            if username.found:
                session.enter(AuthState.LOGIN_FORM_VISIBLE)
                if submissions >= self.max_submissions:
                    session.enter(AuthState.STUCK)
                    await self.diagnostics.capture(page, "login-rejected")
                    raise AuthFailure(
                        f"Login form still shown after {submissions} submissions", phase="login-rejected"
                    )
                if await self._submit(session, credentials, username.locator):
                    submissions += 1
                continue

            session.enter(AuthState.UNAUTHENTICATED)
            await asyncio.sleep(self.timeouts.login_poll_interval)

        session.enter(AuthState.STUCK)
        await self.diagnostics.capture(page, "login-stuck")
        if submissions == 0:
            raise AuthFailure("Login form never appeared before the deadline", phase="login-stuck")
        raise AuthFailure("Login did not complete before the deadline", phase="login-stuck")
