"""
Tests for RenderingSession lifecycle and cleanup.

Sessions are opened through a RenderEngineManager backed by the fake
Playwright from conftest, so context creation and close are observable.
"""

import time

import pytest

from render_service.errors import (
    ConversionError,
    EmptySourceError,
    NavigationTimeoutError,
    SessionClosedError,
    SourceNotFoundError,
)
from render_service.options import ReadinessCondition, build_render_options
from render_service.session import USER_AGENT, VIEWPORT, SessionState, SourceKind


class TestSessionRendering:
    """Happy path load -> readiness -> export."""

    @pytest.mark.asyncio
    async def test_render_content(self, engine):
        """Inline markup produces a PDF and the session closes its context."""
        session = await engine.new_session()
        async with session:
            result = await session.render_content("<html><body>Hola</body></html>")

        assert result.data.startswith(b"%PDF")
        assert result.byte_length == len(result.data)
        assert session.source_kind == SourceKind.INLINE_MARKUP
        assert session.state == SessionState.CLOSED
        assert session.context.close_calls == 1
        assert engine.active_sessions == 0

    @pytest.mark.asyncio
    async def test_render_file(self, engine, two_page_html):
        """Files are loaded through a file:// URL."""
        session = await engine.new_session()
        async with session:
            result = await session.render_file(two_page_html)

        assert session.page.url == two_page_html.resolve().as_uri()
        assert session.source_kind == SourceKind.FILE_PATH
        assert b"Page two" in result.data

    @pytest.mark.asyncio
    async def test_context_uses_fixed_viewport_and_user_agent(self, engine):
        session = await engine.new_session()
        async with session:
            assert session.context.kwargs == {"viewport": VIEWPORT, "user_agent": USER_AGENT}

    @pytest.mark.asyncio
    async def test_export_uses_screen_media_and_options(self, engine):
        """Export switches to screen media and passes layout options through."""
        options = build_render_options(overrides={"landscape": True, "marginTop": "5px"})
        session = await engine.new_session(options)
        async with session:
            await session.render_content("<p>x</p>")
            page = session.page

        assert page.media == "screen"
        pdf_kwargs = page.pdf_calls[0]
        assert pdf_kwargs["landscape"] is True
        assert pdf_kwargs["margin"]["top"] == "5px"
        assert pdf_kwargs["print_background"] is True

    @pytest.mark.asyncio
    async def test_readiness_condition_passed_to_navigation(self, engine):
        options = build_render_options(overrides={"waitUntil": "domcontentloaded"})
        session = await engine.new_session(options)
        async with session:
            await session.load_content("<p>x</p>")
            assert session.page.wait_until == ReadinessCondition.DOM_CONTENT_LOADED.value

    @pytest.mark.asyncio
    async def test_export_without_readiness_wait(self, engine):
        """Readiness waiting may be skipped between load and export."""
        session = await engine.new_session()
        async with session:
            await session.load_content("<p>x</p>")
            result = await session.export()

        assert result.byte_length > 0
        assert session.readiness_report is None


class TestSessionFailures:
    """Failures in each state still close the session exactly once."""

    @pytest.mark.asyncio
    async def test_failure_before_load(self, engine):
        session = await engine.new_session()
        with pytest.raises(RuntimeError):
            async with session:
                raise RuntimeError("caller gave up")

        assert session.context.close_calls == 1
        assert engine.active_sessions == 0

    @pytest.mark.asyncio
    async def test_failure_while_loading(self, engine, documents_dir):
        """A missing file fails in LOADING and the context is released."""
        session = await engine.new_session()
        with pytest.raises(SourceNotFoundError) as exc_info:
            async with session:
                await session.render_file(documents_dir / "missing.html")

        assert exc_info.value.status_code == 404
        assert session.context.close_calls == 1
        assert session.context.pages[0].markup is None
        assert engine.active_sessions == 0

    @pytest.mark.asyncio
    async def test_failure_while_awaiting_readiness(self, engine, behavior):
        """A font check failure is fatal and still cleans up."""
        behavior.fail_fonts = True
        session = await engine.new_session()
        with pytest.raises(ConversionError, match="Readiness check failed"):
            async with session:
                await session.render_content("<p>x</p>")

        assert session.context.close_calls == 1
        assert engine.active_sessions == 0

    @pytest.mark.asyncio
    async def test_failure_while_exporting(self, engine, behavior):
        behavior.fail_export = True
        session = await engine.new_session()
        with pytest.raises(ConversionError, match="PDF export failed"):
            async with session:
                await session.render_content("<p>x</p>")

        assert session.context.close_calls == 1
        assert engine.active_sessions == 0

    @pytest.mark.asyncio
    async def test_empty_markup_rejected(self, engine):
        session = await engine.new_session()
        async with session:
            with pytest.raises(EmptySourceError):
                await session.load_content("   ")

    @pytest.mark.asyncio
    async def test_navigation_timeout_is_fatal_and_bounded(self, engine, behavior, settings):
        """A hung load fails with NavigationTimeoutError within the bound."""
        behavior.hang_navigation = True
        session = await engine.new_session()

        started = time.monotonic()
        with pytest.raises(NavigationTimeoutError) as exc_info:
            async with session:
                await session.render_content("<p>never loads</p>")
        elapsed_ms = (time.monotonic() - started) * 1000

        assert exc_info.value.status_code == 504
        assert exc_info.value.timeout_ms == settings.navigation_timeout_ms
        assert elapsed_ms < settings.navigation_timeout_ms + 1000
        assert session.context.close_calls == 1

    @pytest.mark.asyncio
    async def test_font_wait_bounded_by_navigation_timeout(self, engine, behavior, settings):
        """Fonts that never settle fail with NavigationTimeoutError within the navigation bound."""
        behavior.hang_fonts = True
        session = await engine.new_session()

        started = time.monotonic()
        with pytest.raises(NavigationTimeoutError) as exc_info:
            async with session:
                await session.render_content("<p>fonts never load</p>")
        elapsed_ms = (time.monotonic() - started) * 1000

        assert exc_info.value.timeout_ms == settings.navigation_timeout_ms
        assert "web fonts" in exc_info.value.details
        assert elapsed_ms < settings.navigation_timeout_ms + 1000
        assert session.context.close_calls == 1
        assert engine.active_sessions == 0

    @pytest.mark.asyncio
    async def test_chart_timeout_still_exports(self, engine, behavior, settings):
        """Charts that never finish delay the export but do not fail it."""
        behavior.charts_never_ready = True
        session = await engine.new_session()

        started = time.monotonic()
        async with session:
            result = await session.render_content("<canvas></canvas>")
        elapsed_ms = (time.monotonic() - started) * 1000

        assert result.byte_length > 0
        assert session.readiness_report.charts_timed_out is True
        assert elapsed_ms < settings.chart_timeout_ms + settings.settle_time_ms + 1000


class TestSessionStateMachine:
    """Ordering and terminal-state rules."""

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, engine):
        session = await engine.new_session()
        await session.close()
        await session.close()

        assert session.closed is True
        assert session.context.close_calls == 1

    @pytest.mark.asyncio
    async def test_operations_after_close_rejected(self, engine):
        session = await engine.new_session()
        await session.close()

        with pytest.raises(SessionClosedError):
            await session.load_content("<p>x</p>")

    @pytest.mark.asyncio
    async def test_export_before_load_rejected(self, engine):
        session = await engine.new_session()
        async with session:
            with pytest.raises(ConversionError, match="Invalid session step"):
                await session.export()

    @pytest.mark.asyncio
    async def test_second_export_rejected(self, engine):
        session = await engine.new_session()
        async with session:
            await session.render_content("<p>x</p>")
            with pytest.raises(ConversionError, match="already exported"):
                await session.export()

    @pytest.mark.asyncio
    async def test_second_load_rejected(self, engine):
        session = await engine.new_session()
        async with session:
            await session.load_content("<p>one</p>")
            with pytest.raises(ConversionError, match="Invalid session step"):
                await session.load_content("<p>two</p>")
