"""
Ownership of the single shared Chromium process.

``RenderEngineManager`` is the only component that starts or stops the
browser. It launches Chromium lazily on first use, hands out isolated
per-request sessions (one BrowserContext each), caps how many renders run
at once, relaunches the browser if it died, and tears everything down on
shutdown. The composition root (FastAPI app or CLI) owns the instance.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Set

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import RenderSettings, get_settings
from .errors import (
    ConversionError,
    EngineLaunchError,
    EngineShutdownError,
    RenderCapacityError,
)
from .options import DEFAULT_RENDER_OPTIONS, RenderOptions
from .readiness import ReadinessDetector
from .session import USER_AGENT, VIEWPORT, RenderingSession

logger = logging.getLogger(__name__)

# Sandboxing is unnecessary for trusted server-side rendering and breaks
# inside most containers.
CHROMIUM_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
    "--disable-web-security",  # allow external resources from file:// pages
    "--allow-running-insecure-content",
]


@dataclass
class EngineHealth:
    """Snapshot of the engine for health checks."""
    launched: bool
    connected: bool
    responsive: Optional[bool]
    browser_version: Optional[str]
    launch_count: int
    relaunch_count: int
    active_sessions: int
    active_renders: int
    waiting_requests: int
    max_concurrent: int
    last_error: Optional[str] = None

    @property
    def healthy(self) -> bool:
        if self.launched:
            return self.connected and self.responsive is not False
        # Not launched yet is fine unless the last launch failed
        return self.last_error is None


class RenderEngineManager:
    """
    Lazily launched, shared Chromium instance plus per-request sessions.

    Usage:
        engine = RenderEngineManager(settings)
        async with engine.slot():
            async with await engine.new_session(options) as session:
                result = await session.render_content(html)
        await engine.shutdown()
    """

    def __init__(
        self,
        settings: Optional[RenderSettings] = None,
        *,
        playwright_factory=None,
        detector: Optional[ReadinessDetector] = None,
    ):
        """
        Args:
            settings: Service settings (defaults to get_settings())
            playwright_factory: Callable returning an object with an async
                ``start()``, i.e. ``async_playwright``. Tests inject fakes.
            detector: Readiness detector shared by all sessions
        """
        self.settings = settings or get_settings()
        self._playwright_factory = playwright_factory or async_playwright
        self.detector = detector or ReadinessDetector.from_settings(self.settings)

        self._playwright = None
        self._browser = None
        self._launch_lock = asyncio.Lock()
        self._shutdown_lock = asyncio.Lock()
        self._semaphore = asyncio.Semaphore(self.settings.max_concurrent_pdfs)
        self._sessions: Set[RenderingSession] = set()
        self._drained = asyncio.Event()
        self._drained.set()
        self._closing = False

        self.launch_count = 0
        self.relaunch_count = 0
        self.last_error: Optional[str] = None
        self._active_renders = 0
        self._waiting = 0

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def launched(self) -> bool:
        return self._browser is not None

    @property
    def max_concurrent(self) -> int:
        return self.settings.max_concurrent_pdfs

    @property
    def active_sessions(self) -> int:
        return len(self._sessions)

    @property
    def active_renders(self) -> int:
        return self._active_renders

    @property
    def waiting_requests(self) -> int:
        return self._waiting

    # ------------------------------------------------------------------
    # Launch
    # ------------------------------------------------------------------

    async def acquire_engine(self):
        """
        Return the running browser, launching it if needed.

        Concurrent callers share a single launch. A browser that has
        disconnected since the last call is discarded and relaunched with
        backoff.

        Raises:
            EngineLaunchError: Chromium could not be started
            EngineShutdownError: The manager is shutting down
        """
        if self._closing:
            raise EngineShutdownError("Render service is shutting down")

        browser = self._browser
        if browser is not None and browser.is_connected():
            return browser

        async with self._launch_lock:
            if self._closing:
                raise EngineShutdownError("Render service is shutting down")
            if self._browser is None:
                self._browser = await self._launch()
            elif not self._browser.is_connected():
                logger.warning("⚠️ Chromium is no longer connected, relaunching...")
                await self._discard_engine()
                self._browser = await self._relaunch()
                self.relaunch_count += 1
            return self._browser

    async def _launch(self):
        logger.info("🌐 Launching Chromium...")
        try:
            if self._playwright is None:
                self._playwright = await self._playwright_factory().start()
            browser = await self._playwright.chromium.launch(
                headless=self.settings.playwright_headless,
                args=CHROMIUM_ARGS,
                timeout=self.settings.engine_launch_timeout_ms,
            )
        except Exception as e:
            self.last_error = str(e)
            logger.error(f"❌ Failed to launch Chromium: {e}")
            await self._discard_engine()
            raise EngineLaunchError("Failed to launch the browser", str(e)) from e

        browser.on("disconnected", self._on_disconnected)
        self.launch_count += 1
        self.last_error = None
        logger.info(f"✅ Chromium launched (version {browser.version})")
        return browser

    async def _relaunch(self):
        """Launch again after a crash, retrying with exponential backoff."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.settings.engine_relaunch_attempts),
            wait=wait_exponential(multiplier=0.5, min=0, max=self.settings.engine_relaunch_backoff_max),
            retry=retry_if_exception_type(EngineLaunchError),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(f"Relaunch attempt {attempt.retry_state.attempt_number}")
                return await self._launch()

    def _on_disconnected(self, browser) -> None:
        if browser is self._browser and not self._closing:
            self.last_error = "Chromium disconnected unexpectedly"
            logger.error("💥 Chromium disconnected unexpectedly; it will be relaunched on next use")

    async def _discard_engine(self) -> None:
        """Close the browser and stop the driver, tolerating a dead process."""
        browser, self._browser = self._browser, None
        playwright, self._playwright = self._playwright, None

        if browser is not None:
            try:
                await browser.close()
            except PlaywrightError as e:
                logger.warning(f"Error while closing Chromium: {e}")
        if playwright is not None:
            try:
                await playwright.stop()
            except Exception as e:
                logger.warning(f"Error while stopping Playwright: {e}")

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def new_session(
        self,
        options: Optional[RenderOptions] = None,
        *,
        request_id: Optional[str] = None,
    ) -> RenderingSession:
        """
        Open an isolated rendering session against the shared browser.

        Each session gets its own BrowserContext, so navigation, storage and
        page crashes never leak between requests.
        """
        browser = await self.acquire_engine()

        try:
            context = await browser.new_context(viewport=VIEWPORT, user_agent=USER_AGENT)
        except PlaywrightError as e:
            raise ConversionError("Failed to open a rendering session", str(e)) from e

        try:
            if self._closing:
                raise EngineShutdownError("Render service is shutting down")
            page = await context.new_page()
        except BaseException as e:
            await self._close_context(context)
            if isinstance(e, PlaywrightError):
                raise ConversionError("Failed to open a rendering session", str(e)) from e
            raise

        session = RenderingSession(
            context,
            page,
            options=options or DEFAULT_RENDER_OPTIONS,
            detector=self.detector,
            navigation_timeout_ms=self.settings.navigation_timeout_ms,
            request_id=request_id,
            on_close=self._forget_session,
        )
        self._sessions.add(session)
        self._drained.clear()
        return session

    async def _close_context(self, context) -> None:
        try:
            await context.close()
        except PlaywrightError as e:
            logger.warning(f"Failed to close browser context: {e}")

    def _forget_session(self, session: RenderingSession) -> None:
        self._sessions.discard(session)
        if not self._sessions:
            self._drained.set()

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        """
        Hold one of the ``max_concurrent_pdfs`` render slots.

        Waits up to ``slot_wait_timeout_seconds`` for a slot to free up.

        Raises:
            RenderCapacityError: No slot became free in time
        """
        timeout = self.settings.slot_wait_timeout_seconds
        self._waiting += 1
        try:
            if not self._semaphore.locked():
                await self._semaphore.acquire()
            elif timeout <= 0:
                raise RenderCapacityError(self.max_concurrent, timeout)
            else:
                try:
                    await asyncio.wait_for(self._semaphore.acquire(), timeout=timeout)
                except asyncio.TimeoutError:
                    raise RenderCapacityError(self.max_concurrent, timeout) from None
        except RenderCapacityError:
            logger.warning("PDF service overloaded, rejecting request")
            raise
        finally:
            self._waiting -= 1

        self._active_renders += 1
        try:
            yield
        finally:
            self._active_renders -= 1
            self._semaphore.release()

    # ------------------------------------------------------------------
    # Shutdown and health
    # ------------------------------------------------------------------

    async def shutdown(self, grace_seconds: Optional[float] = None) -> None:
        """
        Close the browser, letting in-flight sessions drain first.

        No-op when nothing is running. Concurrent calls share one shutdown.
        After it returns, the next ``acquire_engine()`` launches a fresh
        browser.
        """
        async with self._shutdown_lock:
            if self._browser is None and self._playwright is None and not self._sessions:
                return

            grace = self.settings.shutdown_grace_seconds if grace_seconds is None else grace_seconds
            self._closing = True
            try:
                if self._sessions:
                    logger.info(f"Waiting up to {grace:g}s for {len(self._sessions)} in-flight sessions")
                    try:
                        await asyncio.wait_for(self._drained.wait(), timeout=grace)
                    except asyncio.TimeoutError:
                        logger.warning(f"Force-closing {len(self._sessions)} sessions still running")
                        for session in list(self._sessions):
                            await session.close()

                logger.info("🛑 Closing browser...")
                async with self._launch_lock:
                    await self._discard_engine()
                    # Idle again; the next acquire launches a fresh browser
                    self.last_error = None
                logger.info("✅ Browser closed")
            finally:
                self._closing = False

    async def health(self, probe: bool = True) -> EngineHealth:
        """
        Report whether the engine is launched and responsive.

        Args:
            probe: Open and close a throw-away context to prove the
                browser still answers (only when it is launched)
        """
        browser = self._browser
        connected = browser is not None and browser.is_connected()
        responsive = None
        if connected and probe:
            responsive = await self._probe(browser)

        return EngineHealth(
            launched=browser is not None,
            connected=connected,
            responsive=responsive,
            browser_version=browser.version if connected else None,
            launch_count=self.launch_count,
            relaunch_count=self.relaunch_count,
            active_sessions=self.active_sessions,
            active_renders=self.active_renders,
            waiting_requests=self.waiting_requests,
            max_concurrent=self.max_concurrent,
            last_error=self.last_error,
        )

    async def _probe(self, browser) -> bool:
        timeout = self.settings.health_probe_timeout_ms / 1000
        try:
            context = await asyncio.wait_for(browser.new_context(), timeout=timeout)
            await self._close_context(context)
            return True
        except (PlaywrightError, asyncio.TimeoutError) as e:
            self.last_error = f"Health probe failed: {str(e) or 'timed out'}"
            logger.error(self.last_error)
            return False

    async def __aenter__(self) -> "RenderEngineManager":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        await self.shutdown()
        return False
