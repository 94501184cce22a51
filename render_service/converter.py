"""
HTML to PDF conversion entry points used by the HTTP layer and the CLI.

Ties the pieces together for one request: merge options, take a render
slot, open a session, load / wait / export under an overall deadline, and
close the session on every exit path.
"""

import asyncio
import time
import uuid
from typing import Any, Mapping, Optional

from .engine import RenderEngineManager
from .errors import ConversionError, ConversionTimeoutError
from .logger import get_logger
from .options import DEFAULT_RENDER_OPTIONS, RenderOptions, build_render_options
from .session import ConversionResult, SourceKind


class HtmlToPdfConverter:
    """Converts HTML files or inline markup to PDF through a shared engine."""

    def __init__(
        self,
        engine: RenderEngineManager,
        *,
        defaults: RenderOptions = DEFAULT_RENDER_OPTIONS,
        request_timeout_seconds: Optional[float] = None,
    ):
        self.engine = engine
        self.defaults = defaults
        if request_timeout_seconds is None:
            request_timeout_seconds = engine.settings.request_timeout_seconds
        self.request_timeout_seconds = request_timeout_seconds

    async def convert_file(
        self,
        path,
        options: Optional[Mapping[str, Any]] = None,
        *,
        request_id: Optional[str] = None,
    ) -> ConversionResult:
        """
        Convert an HTML file already on local storage.

        Args:
            path: Path to the HTML file
            options: Caller options bag (format, landscape, marginTop, ...)
            request_id: Identifier for log correlation

        Returns:
            ConversionResult with the PDF bytes

        Raises:
            ConversionError: Or one of its subclasses
        """
        return await self._convert(SourceKind.FILE_PATH, str(path), options, request_id)

    async def convert_content(
        self,
        markup: str,
        options: Optional[Mapping[str, Any]] = None,
        *,
        request_id: Optional[str] = None,
    ) -> ConversionResult:
        """Convert inline HTML markup. Same contract as ``convert_file``."""
        return await self._convert(SourceKind.INLINE_MARKUP, markup, options, request_id)

    async def _convert(
        self,
        kind: SourceKind,
        source: str,
        overrides: Optional[Mapping[str, Any]],
        request_id: Optional[str],
    ) -> ConversionResult:
        request_id = request_id or uuid.uuid4().hex
        logger = get_logger(__name__, request_id)
        render_options = build_render_options(self.defaults, overrides)

        started = time.monotonic()
        async with self.engine.slot():
            try:
                result = await asyncio.wait_for(
                    self._run_session(kind, source, render_options, request_id),
                    timeout=self.request_timeout_seconds,
                )
            except asyncio.TimeoutError:
                logger.error(f"❌ Conversion exceeded {self.request_timeout_seconds:g}s deadline")
                raise ConversionTimeoutError(self.request_timeout_seconds) from None
            except ConversionError as e:
                logger.error(f"❌ Conversion failed: {e}")
                raise
            except Exception as e:
                logger.exception(f"❌ Unexpected conversion failure: {e}")
                raise ConversionError("Error converting HTML to PDF", str(e)) from e

        elapsed = time.monotonic() - started
        logger.info(f"✅ Converted {kind.value} in {elapsed:.2f}s ({result.byte_length} bytes)")
        return result

    async def _run_session(
        self,
        kind: SourceKind,
        source: str,
        options: RenderOptions,
        request_id: str,
    ) -> ConversionResult:
        session = await self.engine.new_session(options, request_id=request_id)
        async with session:
            if kind == SourceKind.FILE_PATH:
                return await session.render_file(source)
            return await session.render_content(source)
