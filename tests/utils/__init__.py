from .fake_browser import (
    FakeContext,
    FakeDownload,
    FakeElement,
    FakeFrame,
    FakeLocator,
    FakePage,
    FakeResponse,
)

__all__ = [
    "FakeContext",
    "FakeDownload",
    "FakeElement",
    "FakeFrame",
    "FakeLocator",
    "FakePage",
    "FakeResponse",
]
