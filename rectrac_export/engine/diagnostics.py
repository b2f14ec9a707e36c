import re
from pathlib import Path

from playwright.async_api import Error as PlaywrightError

from rectrac_export.utils.logger import get_logger


class DiagnosticsRecorder:
    """Screenshot, markup and location dump for a failing phase.

    Purely advisory: nothing reads these files back, and a capture that
    fails is logged instead of raised.
    """

    def __init__(self, directory: Path | str = "artifacts"):
        self.directory = Path(directory)
        self.captured: list[str] = []
        self.log = get_logger("Diagnostics")

    def _stem(self, label: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9_.-]+", "-", label).strip("-") or "error"
        return self.directory / f"playwright-{safe}"

    async def capture(self, page, label: str) -> list[Path]:
        self.directory.mkdir(parents=True, exist_ok=True)
        stem = self._stem(label)
        written = []

        screenshot = stem.with_suffix(".png")
        try:
            await page.screenshot(path=str(screenshot), full_page=True)
            written.append(screenshot)
        except PlaywrightError as e:
            self.log.warning("⚠️  Screenshot failed", label=label, error=str(e))

        html = stem.with_suffix(".html")
        try:
            html.write_text(await page.content(), encoding="utf-8")
            written.append(html)
        except PlaywrightError as e:
            self.log.warning("⚠️  Markup dump failed", label=label, error=str(e))

        url_file = Path(f"{stem}.url.txt")
        url_file.write_text(getattr(page, "url", "") or "", encoding="utf-8")
        written.append(url_file)

        self.captured.append(label)
        self.log.warning("📸 Diagnostics captured", label=label, files=[str(p) for p in written])
        return written

    def save_payload(self, data: bytes, label: str) -> Path:
        """Keep the captured bytes that failed to parse."""
        self.directory.mkdir(parents=True, exist_ok=True)
        path = Path(f"{self._stem(label)}.payload")
        path.write_bytes(data)
        self.log.warning("📸 Payload saved", label=label, file=str(path), size=len(data))
        return path
