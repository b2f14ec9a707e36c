import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Sequence

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Locator

from rectrac_export.engine.locators import DESCRIPTOR_ATTRIBUTES, Candidate, Locators, Target
from rectrac_export.engine.surface import Surface
from rectrac_export.errors import ResolutionFailure
from rectrac_export.utils.logger import get_logger


async def probe_visible(locator: Locator, timeout: float) -> bool:
    """Wait up to ``timeout`` seconds for ``locator`` to become visible."""
    try:
        await locator.wait_for(state="visible", timeout=timeout * 1000)
        return True
    except PlaywrightError:
        return False


async def describe_element(locator: Locator) -> str:
    parts = []
    for attr in DESCRIPTOR_ATTRIBUTES:
        try:
            value = await locator.get_attribute(attr)
        except PlaywrightError:
            value = None
        if value:
            parts.append(f"{attr}={value}")
    try:
        text = await locator.text_content()
    except PlaywrightError:
        text = None
    if text and text.strip():
        parts.append(f"text={' '.join(text.split())[:120]}")
    return " ".join(parts)


@dataclass(frozen=True)
class ResolutionResult:
    target: str
    locator: Locator | None = None
    candidate: Candidate | None = None
    root: Any = None
    tried: tuple[str, ...] = field(default_factory=tuple)

    @property
    def found(self) -> bool:
        return self.locator is not None

    def __bool__(self) -> bool:
        return self.found


class ElementResolver:
    """First-visible-match resolution over ordered candidates.

    Candidates are tried in declaration order; each one is probed in the
    primary document and then in every nested document before moving on.
    Passes repeat until ``budget`` runs out, and the result is a definitive
    not-found after that.
    """

    def __init__(self, locators: Locators, probe_timeout: float = 0.8, budget: float = 5.0,
                 poll_interval: float = 0.5, max_matches: int = 10, match_poll_interval: float = 0.05,
                 diagnostics=None, report=None):
        self.locators = locators
        self.probe_timeout = probe_timeout
        self.budget = budget
        self.poll_interval = poll_interval
        self.max_matches = max_matches
        self.match_poll_interval = match_poll_interval
        self.diagnostics = diagnostics
        self.report = report
        self.log = get_logger("ElementResolver")

    def target(self, target: str | Target) -> Target:
        if isinstance(target, Target):
            return target
        return self.locators[target]

    @staticmethod
    def _roots(scope: Any) -> list:
        if isinstance(scope, Surface):
            return scope.roots()
        if isinstance(scope, (list, tuple)):
            return list(scope)
        return [scope]

    async def _first_visible(self, candidate: Candidate, base: Locator) -> Locator | None:
        count = min(await base.count(), self.max_matches)
        for i in range(count):
            loc = base.nth(i)
            if not await loc.is_visible():
                continue
            if candidate.filtered:
                descriptor = await describe_element(loc)
                if candidate.rejects(descriptor):
                    self.log.debug("Candidate rejected by filter", candidate=candidate.label,
                                   element=descriptor)
                    continue
            return loc
        return None

    async def _match(self, candidate: Candidate, root: Any, probe_timeout: float) -> Locator | None:
        try:
            base = candidate.locate(root)
            if candidate.nth is not None:
                loc = base.nth(candidate.nth)
                if not await probe_visible(loc, probe_timeout):
                    return None
                if candidate.filtered and candidate.rejects(await describe_element(loc)):
                    self.log.debug("Candidate rejected by filter", candidate=candidate.label)
                    return None
                return loc

            # any visible match counts, not only the first one in document order
            deadline = time.monotonic() + probe_timeout
            while True:
                loc = await self._first_visible(candidate, base)
                remaining = deadline - time.monotonic()
                if loc is not None or remaining <= 0:
                    return loc
                await asyncio.sleep(min(self.match_poll_interval, remaining))
        except PlaywrightError as e:
            self.log.debug("Candidate probe errored", candidate=candidate.label, error=str(e))
            return None

    async def resolve(self, target: str | Target, scope: Any, budget: float | None = None,
                      probe_timeout: float | None = None) -> ResolutionResult:
        target = self.target(target)
        budget = self.budget if budget is None else budget
        probe_timeout = self.probe_timeout if probe_timeout is None else probe_timeout
        deadline = time.monotonic() + budget
        first_pass = True

        while True:
            for candidate in target:
                if not first_pass and time.monotonic() >= deadline:
                    break
                for root in self._roots(scope):
                    locator = await self._match(candidate, root, probe_timeout)
                    if locator is not None:
                        self.log.info("🎯 Resolved control", target=target.name, candidate=candidate.label)
                        if self.report is not None:
                            self.report.log_resolution(target.name, candidate.label, getattr(root, "url", ""))
                        return ResolutionResult(target.name, locator, candidate, root, tuple(target.labels))

            first_pass = False
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            await asyncio.sleep(min(self.poll_interval, remaining))

        self.log.debug("No candidate matched", target=target.name, budget=budget)
        return ResolutionResult(target.name, tried=tuple(target.labels))

    async def require(self, target: str | Target, scope: Any, budget: float | None = None,
                      phase: str | None = None, page=None) -> ResolutionResult:
        """Resolve or fail with a typed error after capturing diagnostics."""
        result = await self.resolve(target, scope, budget=budget)
        if result.found:
            return result

        failure = ResolutionFailure(result.target, list(result.tried), phase)
        self.log.error("❌ Required control not found", target=result.target, tried=list(result.tried))
        if self.diagnostics is not None:
            if page is None and isinstance(scope, Surface):
                page = scope.page
            if page is not None:
                await self.diagnostics.capture(page, failure.phase)
        raise failure

    async def is_present(self, target: str | Target, scope: Any, budget: float = 0.0,
                         probe_timeout: float | None = None) -> bool:
        result = await self.resolve(target, scope, budget=budget, probe_timeout=probe_timeout)
        return result.found

    async def click_first(self, target: str | Target, scope: Sequence | Any, budget: float | None = None,
                          timeout: float = 3.0) -> ResolutionResult:
        """Resolve and click; a click that fails leaves the result unresolved."""
        result = await self.resolve(target, scope, budget=budget)
        if not result.found:
            return result
        try:
            await result.locator.click(timeout=timeout * 1000)
        except PlaywrightError as e:
            self.log.warning("⚠️  Click failed", target=result.target, candidate=result.candidate.label,
                             error=str(e))
            return ResolutionResult(result.target, tried=result.tried)
        return result
