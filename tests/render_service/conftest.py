"""
Pytest fixtures for render service tests.

Playwright is replaced by small in-memory fakes that honour the same
call signatures (launch / new_context / new_page / goto / set_content /
wait_for_function / pdf / close), so the engine, session and HTTP layers
run for real without a browser.
"""

import asyncio
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional
from urllib.parse import unquote, urlparse

# IMPORTANT: Set environment variables BEFORE any imports from render_service
# so RenderSettings picks up fast timings when first loaded.
os.environ["ENVIRONMENT"] = "development"
os.environ["SETTLE_TIME_MS"] = "0"
os.environ["CHART_TIMEOUT_MS"] = "100"

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from render_service.config import RenderSettings, get_settings
from render_service.engine import RenderEngineManager


@dataclass
class FakeBehavior:
    """Knobs that make fake pages misbehave."""
    hang_navigation: bool = False
    navigation_delay: float = 0.0
    charts_never_ready: bool = False
    fail_fonts: bool = False
    hang_fonts: bool = False
    fail_export: bool = False
    export_exception: Optional[BaseException] = None
    fail_new_page: bool = False


class FakePage:
    """Stand-in for playwright.async_api.Page."""

    def __init__(self, context: "FakeContext", behavior: FakeBehavior):
        self.context = context
        self.behavior = behavior
        self.markup: Optional[str] = None
        self.url: Optional[str] = None
        self.wait_until: Optional[str] = None
        self.media: Optional[str] = None
        self.pdf_calls: List[Dict] = []
        self.wait_for_function_calls: List[Dict] = []
        self.evaluate_calls: List[str] = []

    async def _navigate(self, wait_until, timeout):
        self.wait_until = wait_until
        if self.behavior.hang_navigation:
            await asyncio.sleep(timeout / 1000)
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded.")
        if self.behavior.navigation_delay:
            await asyncio.sleep(self.behavior.navigation_delay)

    async def goto(self, url, wait_until=None, timeout=None):
        await self._navigate(wait_until, timeout)
        self.url = url
        self.markup = Path(unquote(urlparse(url).path)).read_text()

    async def set_content(self, html, wait_until=None, timeout=None):
        await self._navigate(wait_until, timeout)
        self.markup = html

    async def evaluate(self, script):
        self.evaluate_calls.append(script)
        if self.behavior.hang_fonts:
            # A font set that never settles
            await asyncio.sleep(30)
        if self.behavior.fail_fonts:
            raise PlaywrightError("Execution context was destroyed")
        return True

    async def wait_for_function(self, script, arg=None, timeout=None, polling=None):
        self.wait_for_function_calls.append({"arg": arg, "timeout": timeout, "polling": polling})
        if self.behavior.charts_never_ready:
            await asyncio.sleep(timeout / 1000)
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded.")
        return True

    async def emulate_media(self, media=None):
        self.media = media

    async def pdf(self, **kwargs):
        if self.behavior.export_exception is not None:
            raise self.behavior.export_exception
        if self.behavior.fail_export:
            raise PlaywrightError("Printing failed")
        self.pdf_calls.append(kwargs)
        return b"%PDF-1.4\n" + (self.markup or "").encode() + b"\n%%EOF"


class FakeContext:
    """Stand-in for playwright.async_api.BrowserContext."""

    def __init__(self, browser: "FakeBrowser", **kwargs):
        self.browser = browser
        self.kwargs = kwargs
        self.pages: List[FakePage] = []
        self.close_calls = 0

    @property
    def closed(self) -> bool:
        return self.close_calls > 0

    async def new_page(self):
        if self.browser.behavior.fail_new_page:
            raise PlaywrightError("Target crashed")
        page = FakePage(self, self.browser.behavior)
        self.pages.append(page)
        return page

    async def close(self):
        self.close_calls += 1


class FakeBrowser:
    """Stand-in for playwright.async_api.Browser."""

    version = "120.0.6099.28"

    def __init__(self, behavior: FakeBehavior):
        self.behavior = behavior
        self.contexts: List[FakeContext] = []
        self.close_calls = 0
        self._connected = True
        self._handlers: Dict[str, list] = {}

    def on(self, event, handler):
        self._handlers.setdefault(event, []).append(handler)

    def is_connected(self) -> bool:
        return self._connected

    async def new_context(self, **kwargs):
        if not self._connected:
            raise PlaywrightError("Target page, context or browser has been closed")
        context = FakeContext(self, **kwargs)
        self.contexts.append(context)
        return context

    async def close(self):
        self.close_calls += 1
        self._disconnect()

    def crash(self):
        """Simulate the Chromium process dying."""
        self._disconnect()

    def _disconnect(self):
        if not self._connected:
            return
        self._connected = False
        for handler in self._handlers.get("disconnected", []):
            handler(self)


class FakeChromium:
    """Stand-in for ``playwright.chromium``."""

    def __init__(self, behavior: FakeBehavior):
        self.behavior = behavior
        self.launch_calls: List[Dict] = []
        self.browsers: List[FakeBrowser] = []
        self.fail_launches = 0

    async def launch(self, **kwargs):
        self.launch_calls.append(kwargs)
        # Yield so concurrent callers interleave like a real launch would
        await asyncio.sleep(0)
        if self.fail_launches:
            self.fail_launches -= 1
            raise PlaywrightError("Executable doesn't exist at /ms-playwright/chromium/chrome")
        browser = FakeBrowser(self.behavior)
        self.browsers.append(browser)
        return browser

    @property
    def browser(self) -> Optional[FakeBrowser]:
        """Most recently launched browser."""
        return self.browsers[-1] if self.browsers else None


class FakePlaywright:
    def __init__(self, chromium: FakeChromium):
        self.chromium = chromium
        self.stopped = False

    async def stop(self):
        self.stopped = True


class FakePlaywrightFactory:
    """Replaces ``async_playwright``: calling it returns an object with ``start()``."""

    def __init__(self, behavior: Optional[FakeBehavior] = None):
        self.behavior = behavior or FakeBehavior()
        self.chromium = FakeChromium(self.behavior)
        self.instances: List[FakePlaywright] = []

    def __call__(self):
        return self

    async def start(self):
        playwright = FakePlaywright(self.chromium)
        self.instances.append(playwright)
        return playwright


@pytest.fixture(autouse=True)
def clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def documents_dir(tmp_path):
    path = tmp_path / "documents"
    path.mkdir()
    return path


@pytest.fixture
def settings(documents_dir):
    """Settings with short bounds so timeout paths finish quickly."""
    return RenderSettings(
        max_concurrent_pdfs=2,
        slot_wait_timeout_seconds=0.2,
        navigation_timeout_ms=200,
        chart_timeout_ms=100,
        settle_time_ms=0,
        request_timeout_seconds=5,
        shutdown_grace_seconds=0.2,
        engine_relaunch_attempts=2,
        engine_relaunch_backoff_max=0,
        health_probe_timeout_ms=500,
        documents_dir=documents_dir,
    )


@pytest.fixture
def behavior():
    return FakeBehavior()


@pytest.fixture
def fake_playwright(behavior):
    return FakePlaywrightFactory(behavior)


@pytest.fixture
def engine(settings, fake_playwright):
    return RenderEngineManager(settings, playwright_factory=fake_playwright)


@pytest.fixture
def two_page_html(documents_dir):
    """Static two-page HTML document on disk."""
    path = documents_dir / "report.html"
    path.write_text(
        "<!DOCTYPE html><html><body>"
        "<section style='page-break-after: always'><h1>Page one</h1></section>"
        "<section><h1>Page two</h1></section>"
        "</body></html>"
    )
    return path
