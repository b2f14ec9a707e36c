import pytest

from rectrac_export.engine.capture import DownloadWatcher, ResponseSniffer, read_download
from tests.utils import FakeContext, FakeDownload, FakePage, FakeResponse

CSV = b"FacShortDescription,Status\nCommunity Lounge,Active\n"


class TestReadDownload:
    @pytest.mark.asyncio
    async def test_reads_temporary_path(self, tmp_path):
        download = FakeDownload(CSV, directory=tmp_path / "tmp")

        assert await read_download(download, tmp_path / "fallback") == CSV
        assert download.saved_to == []

    @pytest.mark.asyncio
    async def test_saves_when_path_unavailable(self, tmp_path):
        download = FakeDownload(CSV, suggested_filename="facility.csv", path_available=False)

        data = await read_download(download, tmp_path / "fallback")

        assert data == CSV
        assert (tmp_path / "fallback" / "facility.csv").read_bytes() == CSV

    @pytest.mark.asyncio
    async def test_zero_bytes_rejected(self, tmp_path):
        download = FakeDownload(b"", directory=tmp_path / "tmp")

        assert await read_download(download, tmp_path, settle_polls=2, settle_interval=0.01) is None

    @pytest.mark.asyncio
    async def test_failed_download_rejected(self, tmp_path):
        download = FakeDownload(CSV, directory=tmp_path / "tmp", failure="canceled")

        assert await read_download(download, tmp_path) is None


class TestDownloadWatcher:
    @pytest.mark.asyncio
    async def test_arm_skips_earlier_downloads(self):
        page = FakePage()
        context = FakeContext([page])
        watcher = DownloadWatcher()
        watcher.attach(context)

        stale, fresh = FakeDownload(b"old"), FakeDownload(b"new")
        await page.emit("download", stale)
        watcher.arm()
        await page.emit("download", fresh)

        assert await watcher.next_download(0.01) is fresh
        assert await watcher.next_download(0.01) is None

    @pytest.mark.asyncio
    async def test_pages_opened_later_are_watched(self):
        context = FakeContext([FakePage()])
        watcher = DownloadWatcher()
        watcher.attach(context)

        popup = await context.new_page()
        download = FakeDownload(b"x")
        await popup.emit("download", download)

        assert await watcher.next_download(0.01) is download

    @pytest.mark.asyncio
    async def test_detach_removes_listeners(self):
        page = FakePage()
        context = FakeContext([page])
        watcher = DownloadWatcher()
        watcher.attach(context)
        watcher.detach()

        assert page.listeners("download") == []
        assert context.listeners("page") == []


class TestResponseSniffer:
    @pytest.mark.parametrize("url, headers, expected", [
        ("https://rt.example/x", {"content-type": "text/csv; charset=utf-8"}, True),
        ("https://rt.example/x", {"content-disposition": 'attachment; filename="a.csv"'}, True),
        ("https://rt.example/report.CSV?v=2", {}, True),
        ("https://rt.example/export/7", {"content-type": "application/octet-stream"}, True),
        ("https://rt.example/export/7", {"content-type": "application/json"}, False),
        ("https://rt.example/app.js", {"content-type": "text/plain"}, False),
    ])
    def test_matches(self, url, headers, expected):
        assert ResponseSniffer.matches(url, headers) is expected

    @pytest.mark.asyncio
    async def test_html_bodies_ignored(self):
        sniffer = ResponseSniffer()
        await sniffer.on_response(FakeResponse("https://rt.example/a.csv", b"<html><body>Sign in</body></html>"))

        assert len(sniffer) == 0
        assert sniffer.latest() is None

    @pytest.mark.asyncio
    async def test_log_is_bounded_and_marked(self):
        sniffer = ResponseSniffer(max_payloads=16)
        for i in range(20):
            await sniffer.on_response(FakeResponse(f"https://rt.example/{i}.csv", CSV))

        assert len(sniffer) == 16
        mark = sniffer.mark()
        assert sniffer.latest(after=mark) is None
        assert sniffer.latest(after=mark - 1).url == "https://rt.example/19.csv"

    @pytest.mark.asyncio
    async def test_attach_and_detach(self):
        context = FakeContext()
        sniffer = ResponseSniffer()
        sniffer.attach(context)
        await context.emit("response", FakeResponse("https://rt.example/a.csv", CSV))
        sniffer.detach()
        await context.emit("response", FakeResponse("https://rt.example/b.csv", CSV))

        assert len(sniffer) == 1
        assert context.listeners("response") == []
