import asyncio
import re
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

from playwright.async_api import BrowserContext, Download, Page, Response
from playwright.async_api import Error as PlaywrightError

from rectrac_export.config import Timeouts
from rectrac_export.engine.resolver import ElementResolver
from rectrac_export.engine.surface import Surface, SurfaceKind
from rectrac_export.extract import looks_like_delimited
from rectrac_export.utils.logger import get_logger

CSV_CONTENT_TYPES = ("text/csv", "application/csv", "text/comma-separated-values")
LOOSE_CONTENT_TYPES = ("application/octet-stream", "text/plain", "application/vnd.ms-excel")


class CaptureChannel(str, Enum):
    DIRECT = "direct"
    LINK = "link"
    NOTIFICATION = "notification"
    NETWORK = "network"


@dataclass
class ExportJob:
    """One trigger-and-capture cycle."""

    trigger: str | None = None
    channel: CaptureChannel | None = None
    payload: bytes | None = None
    source: str | None = None
    attempts: list[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)

    @property
    def captured(self) -> bool:
        return self.payload is not None


class DownloadWatcher:
    """Collects download events from every page of a context.

    Each download is handed out once; ``arm`` skips whatever fired before it.
    """

    def __init__(self):
        self.downloads: list[Download] = []
        self._cursor = 0
        self._pages: list[Page] = []
        self._context: BrowserContext | None = None

    def _on_download(self, download: Download) -> None:
        self.downloads.append(download)

    def _watch_page(self, page: Page) -> None:
        page.on("download", self._on_download)
        self._pages.append(page)

    def attach(self, context: BrowserContext) -> None:
        self._context = context
        for page in context.pages:
            self._watch_page(page)
        context.on("page", self._watch_page)

    def detach(self) -> None:
        for page in self._pages:
            page.remove_listener("download", self._on_download)
        if self._context is not None:
            self._context.remove_listener("page", self._watch_page)
        self._pages.clear()
        self._context = None

    def arm(self) -> None:
        self._cursor = len(self.downloads)

    async def next_download(self, timeout: float, poll_interval: float = 0.25) -> Download | None:
        deadline = time.monotonic() + timeout
        while True:
            if self._cursor < len(self.downloads):
                download = self.downloads[self._cursor]
                self._cursor += 1
                return download
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(poll_interval, remaining))


@dataclass(frozen=True)
class SniffedPayload:
    url: str
    content_type: str
    body: bytes
    sequence: int


class ResponseSniffer:
    """Bounded append log of response bodies that look like the exported CSV.

    The event handler is the only writer and the capture channel the only
    reader; the log lives for one run.
    """

    def __init__(self, max_payloads: int = 16):
        self._log: deque[SniffedPayload] = deque(maxlen=max_payloads)
        self._sequence = 0
        self._context: BrowserContext | None = None
        self.log = get_logger("ResponseSniffer")

    def attach(self, context: BrowserContext) -> None:
        self._context = context
        context.on("response", self.on_response)

    def detach(self) -> None:
        if self._context is not None:
            self._context.remove_listener("response", self.on_response)
            self._context = None

    @staticmethod
    def matches(url: str, headers: dict[str, str]) -> bool:
        content_type = (headers.get("content-type") or "").lower()
        disposition = (headers.get("content-disposition") or "").lower()

        if any(t in content_type for t in CSV_CONTENT_TYPES):
            return True
        if "attachment" in disposition and ".csv" in disposition:
            return True
        if re.search(r"\.csv(\?|$)", url, re.IGNORECASE):
            return True
        if re.search(r"export|download", url, re.IGNORECASE):
            return any(t in content_type for t in LOOSE_CONTENT_TYPES)
        return False

    async def on_response(self, response: Response) -> None:
        headers = {k.lower(): v for k, v in (response.headers or {}).items()}
        if not self.matches(response.url, headers):
            return
        try:
            body = await response.body()
        except PlaywrightError:
            return
        if not looks_like_delimited(body):
            return
        self._sequence += 1
        self._log.append(SniffedPayload(response.url, headers.get("content-type", ""), body, self._sequence))
        self.log.debug("Sniffed candidate payload", url=response.url, size=len(body))

    def mark(self) -> int:
        return self._sequence

    def latest(self, after: int = 0) -> SniffedPayload | None:
        if not self._log:
            return None
        newest = self._log[-1]
        return newest if newest.sequence > after else None

    def __len__(self) -> int:
        return len(self._log)


async def read_download(download: Download, fallback_dir: Path, log=None, settle_polls: int = 10,
                        settle_interval: float = 0.5) -> bytes | None:
    """Bytes of a finished download, or None when it failed or is empty.

    The file may still be flushing when the event fires, so its size is
    polled up to ``settle_polls`` times before it counts as empty.
    """
    log = log or get_logger("Capture")
    failure = await download.failure()
    if failure:
        log.warning("⚠️  Download failed", failure=failure)
        return None

    try:
        temp_path = await download.path()
    except PlaywrightError:
        temp_path = None

    if not temp_path:
        fallback_dir.mkdir(parents=True, exist_ok=True)
        temp_path = fallback_dir / (download.suggested_filename or "rectrac-export.csv")
        await download.save_as(str(temp_path))

    size = 0
    for _ in range(settle_polls):
        if Path(temp_path).exists():
            size = Path(temp_path).stat().st_size
            if size > 0:
                break
        await asyncio.sleep(settle_interval)

    if size == 0:
        log.warning("⚠️  Download is 0 bytes", file=download.suggested_filename)
        return None

    log.info("📦 Download read", file=download.suggested_filename, size=size)
    return Path(temp_path).read_bytes()


@dataclass
class CaptureContext:
    surface: Surface
    resolver: ElementResolver
    watcher: DownloadWatcher
    sniffer: ResponseSniffer
    timeouts: Timeouts
    download_dir: Path
    sniff_mark: int = 0

    @property
    def window(self) -> Surface:
        return Surface(SurfaceKind.WINDOW, self.surface.page, self.surface.page, "window")


class Channel:
    kind: CaptureChannel

    def __init__(self):
        self.log = get_logger(type(self).__name__)

    async def attempt(self, ctx: CaptureContext, remaining: float) -> tuple[bytes, str] | None:
        raise NotImplementedError

    async def _download_bytes(self, ctx: CaptureContext, timeout: float) -> tuple[bytes, str] | None:
        download = await ctx.watcher.next_download(timeout)
        if download is None:
            return None
        data = await read_download(download, ctx.download_dir, self.log)
        if data is None:
            return None
        return data, download.suggested_filename


class DirectDownloadChannel(Channel):
    kind = CaptureChannel.DIRECT

    async def attempt(self, ctx, remaining):
        return await self._download_bytes(ctx, min(ctx.timeouts.direct_download_window, remaining))


class DownloadLinkChannel(Channel):
    kind = CaptureChannel.LINK

    async def attempt(self, ctx, remaining):
        link = await ctx.resolver.click_first("download_link", ctx.surface, budget=0)
        if not link.found:
            return None
        self.log.info("🔗 Clicked download link", candidate=link.candidate.label)
        return await self._download_bytes(ctx, min(ctx.timeouts.link_download, remaining))


class NotificationCenterChannel(Channel):
    """Opens the notification centre and previews the newest finished job."""

    kind = CaptureChannel.NOTIFICATION

    async def _open_panel(self, ctx: CaptureContext):
        resolver = ctx.resolver
        panel = await resolver.resolve("notification_panel", ctx.window, budget=0)
        if panel.found:
            return panel
        button = await resolver.click_first("notification_button", ctx.window, budget=0)
        if not button.found:
            self.log.info("No notification centre button visible")
            return None
        await asyncio.sleep(ctx.timeouts.dialog_settle)
        return await resolver.resolve("notification_panel", ctx.window, budget=ctx.timeouts.ack_wait)

    async def attempt(self, ctx, remaining):
        resolver = ctx.resolver
        panel = await self._open_panel(ctx)
        if panel is None or not panel.found:
            return None

        entry = await resolver.resolve("notification_entry", panel.locator, budget=0)
        if not entry.found:
            self.log.info("No finished job in the notification centre")
            return None

        preview = await resolver.resolve("notification_preview", entry.locator, budget=0)
        if not preview.found:
            try:
                await entry.locator.click(timeout=ctx.timeouts.click * 1000)
            except PlaywrightError:
                return None
            await asyncio.sleep(ctx.timeouts.dialog_settle)
            preview = await resolver.resolve("notification_preview", ctx.window, budget=0)
            if not preview.found:
                return None

        try:
            await preview.locator.click(timeout=ctx.timeouts.click * 1000)
        except PlaywrightError as e:
            self.log.warning("⚠️  Preview Document click failed", error=str(e))
            return None
        self.log.info("🔔 Opened document from notification centre")
        return await self._download_bytes(ctx, min(ctx.timeouts.notification_download, remaining))


class NetworkSniffChannel(Channel):
    kind = CaptureChannel.NETWORK

    async def attempt(self, ctx, remaining):
        deadline = time.monotonic() + min(ctx.timeouts.sniff_window, remaining)
        while True:
            payload = ctx.sniffer.latest(after=ctx.sniff_mark)
            if payload is not None:
                return payload.body, payload.url
            left = deadline - time.monotonic()
            if left <= 0:
                return None
            await asyncio.sleep(min(ctx.timeouts.sniff_poll_interval, left))


def default_channels() -> list[Channel]:
    return [DirectDownloadChannel(), DownloadLinkChannel(), NotificationCenterChannel(), NetworkSniffChannel()]

