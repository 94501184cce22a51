"""
One isolated rendering session: load a document, wait for it, export a PDF.

A session owns a Playwright BrowserContext (its isolation boundary) and the
single page inside it. Sessions are created by ``RenderEngineManager`` and
must always be closed; use them as async context managers:

    async with await engine.new_session(options) as session:
        result = await session.render_file(path)
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .errors import (
    ConversionError,
    EmptySourceError,
    NavigationTimeoutError,
    SessionClosedError,
    SourceNotFoundError,
)
from .logger import get_logger
from .options import DEFAULT_RENDER_OPTIONS, RenderOptions
from .readiness import ReadinessDetector, ReadinessReport

# Large fixed canvas so chart layout does not depend on the final page size
VIEWPORT = {"width": 1920, "height": 1080}
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class SessionState(str, Enum):
    """Lifecycle of a rendering session. CLOSED is terminal."""
    CREATED = "created"
    LOADING = "loading"
    AWAITING_READINESS = "awaiting_readiness"
    EXPORTING = "exporting"
    CLOSED = "closed"


class SourceKind(str, Enum):
    FILE_PATH = "file_path"
    INLINE_MARKUP = "inline_markup"


# state -> states it may be entered from
_ALLOWED_TRANSITIONS = {
    SessionState.LOADING: {SessionState.CREATED},
    SessionState.AWAITING_READINESS: {SessionState.LOADING},
    SessionState.EXPORTING: {SessionState.LOADING, SessionState.AWAITING_READINESS},
}


@dataclass(frozen=True)
class ConversionResult:
    """PDF bytes produced by a successful export."""
    data: bytes

    @property
    def byte_length(self) -> int:
        return len(self.data)


class RenderingSession:
    """
    Drives one document through load -> readiness wait -> export.

    The session never closes itself when a step fails; the caller's
    ``async with`` (or try/finally around ``close()``) does, whichever
    state the failure happened in.
    """

    def __init__(
        self,
        context,
        page,
        *,
        options: RenderOptions = DEFAULT_RENDER_OPTIONS,
        detector: Optional[ReadinessDetector] = None,
        navigation_timeout_ms: int = 60000,
        request_id: Optional[str] = None,
        on_close: Optional[Callable[["RenderingSession"], None]] = None,
    ):
        """
        Args:
            context: Playwright BrowserContext owned exclusively by this session
            page: The page inside ``context`` used for rendering
            options: Layout options used by load and export
            detector: Readiness detector (defaults to a stock ReadinessDetector)
            navigation_timeout_ms: Bound on loading the document
            request_id: Identifier used to tag log lines
            on_close: Called once with this session after it is closed
        """
        self.context = context
        self.page = page
        self.options = options
        self.detector = detector or ReadinessDetector()
        self.navigation_timeout_ms = navigation_timeout_ms
        self.request_id = request_id
        self.logger = get_logger(__name__, request_id)

        self.source_kind: Optional[SourceKind] = None
        self.source: Optional[str] = None
        self.readiness_report: Optional[ReadinessReport] = None
        self.result: Optional[ConversionResult] = None

        self._state = SessionState.CREATED
        self._loaded = False
        self._on_close = on_close

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._state == SessionState.CLOSED

    def _transition(self, new_state: SessionState) -> None:
        if self._state == SessionState.CLOSED:
            raise SessionClosedError("Rendering session is closed", new_state.value)
        if self._state not in _ALLOWED_TRANSITIONS[new_state]:
            raise ConversionError(
                "Invalid session step",
                f"cannot enter {new_state.value} from {self._state.value}",
            )
        if new_state != SessionState.LOADING and not self._loaded:
            raise ConversionError("Invalid session step", "no document has been loaded")
        self._state = new_state

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def _navigate(self, action, target: str) -> None:
        wait_until = self.options.readiness_condition.value
        self.logger.info(f"🔗 Loading {target} (wait_until={wait_until})")
        try:
            await action(wait_until=wait_until, timeout=self.navigation_timeout_ms)
        except PlaywrightTimeoutError as e:
            raise NavigationTimeoutError(self.navigation_timeout_ms, str(e)) from e
        except PlaywrightError as e:
            raise ConversionError("Failed to load HTML document", str(e)) from e
        self._loaded = True

    async def load_file(self, path) -> None:
        """
        Navigate to an HTML file on local storage.

        Raises:
            SourceNotFoundError: ``path`` is not an existing file
            NavigationTimeoutError: Loading exceeded the navigation bound
        """
        self._transition(SessionState.LOADING)
        file_path = Path(path).resolve()
        if not file_path.is_file():
            raise SourceNotFoundError(str(path))

        self.source_kind = SourceKind.FILE_PATH
        self.source = str(file_path)
        file_url = file_path.as_uri()
        await self._navigate(
            lambda **kw: self.page.goto(file_url, **kw),
            file_url,
        )

    async def load_content(self, markup: str) -> None:
        """
        Set inline HTML markup as the page content.

        Raises:
            EmptySourceError: ``markup`` is empty
            NavigationTimeoutError: Loading exceeded the navigation bound
        """
        self._transition(SessionState.LOADING)
        if not markup or not markup.strip():
            raise EmptySourceError("No HTML content provided")

        self.source_kind = SourceKind.INLINE_MARKUP
        self.source = markup
        await self._navigate(
            lambda **kw: self.page.set_content(markup, **kw),
            f"inline HTML ({len(markup)} chars)",
        )

    # ------------------------------------------------------------------
    # Readiness and export
    # ------------------------------------------------------------------

    async def await_readiness(self) -> ReadinessReport:
        """
        Wait for fonts and charts.

        The font wait shares the navigation bound and fails the session with
        NavigationTimeoutError; a chart timeout is recorded, not raised.
        """
        self._transition(SessionState.AWAITING_READINESS)
        try:
            report = await self.detector.wait(
                self.page,
                wait_for_fonts=self.options.wait_for_fonts,
                font_timeout_ms=self.navigation_timeout_ms,
            )
        except asyncio.TimeoutError:
            raise NavigationTimeoutError(
                self.navigation_timeout_ms, "web fonts did not finish loading"
            ) from None
        except PlaywrightError as e:
            raise ConversionError("Readiness check failed", str(e)) from e

        if report.charts_timed_out:
            self.logger.warning("Exporting with charts possibly unfinished")
        self.readiness_report = report
        return report

    async def export(self, options: Optional[RenderOptions] = None) -> ConversionResult:
        """
        Export the loaded page as a paginated PDF.

        Media emulation is switched to "screen" first; several chart
        libraries draw incorrectly (or not at all) under print media.
        """
        if self.result is not None:
            raise ConversionError("PDF already exported for this session")
        self._transition(SessionState.EXPORTING)
        options = options or self.options

        self.logger.info("🔄 Generating PDF...")
        try:
            await self.page.emulate_media(media="screen")
            data = await self.page.pdf(**options.to_pdf_kwargs())
        except PlaywrightError as e:
            raise ConversionError("PDF export failed", str(e)) from e

        if not data:
            raise ConversionError("PDF export failed", "engine returned an empty document")

        self.result = ConversionResult(data=data)
        self.logger.info(f"📄 PDF generated: {self.result.byte_length} bytes")
        return self.result

    async def render_file(self, path) -> ConversionResult:
        await self.load_file(path)
        await self.await_readiness()
        return await self.export()

    async def render_content(self, markup: str) -> ConversionResult:
        await self.load_content(markup)
        await self.await_readiness()
        return await self.export()

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Release the browser context. Safe to call more than once."""
        if self._state == SessionState.CLOSED:
            return
        previous = self._state
        self._state = SessionState.CLOSED
        try:
            await self.context.close()
        except PlaywrightError as e:
            # The browser may already be gone
            self.logger.warning(f"Failed to close browser context cleanly: {e}")
        finally:
            if self._on_close is not None:
                self._on_close(self)
        self.logger.debug(f"Session closed (was {previous.value})")

    async def __aenter__(self) -> "RenderingSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        await self.close()
        return False
