"""
Best-effort detection of asynchronous visual completion.

Page "load" only tells us the network went quiet. Web fonts may still be
swapping in and chart libraries draw on <canvas> after their script runs.
The detector waits for both, bounded, and never fails a conversion because
a chart was slow.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional, Sequence, Union

from playwright.async_api import Error as PlaywrightError

logger = logging.getLogger(__name__)

FONTS_READY_SCRIPT = "() => document.fonts.ready.then(() => true)"

# Ready when no charting runtime is loaded, when there are no canvases, or
# when every canvas has at least one pixel with a non-zero alpha channel.
# Zero-sized canvases and canvases without a 2D context cannot be sampled
# and count as ready.
CHARTS_READY_SCRIPT = """
(chartGlobals) => {
    const hasRuntime = chartGlobals.some((name) => typeof window[name] !== 'undefined');
    if (!hasRuntime) {
        return true;
    }
    const canvases = document.querySelectorAll('canvas');
    if (canvases.length === 0) {
        return true;
    }
    for (const canvas of canvases) {
        if (!canvas.width || !canvas.height) {
            continue;
        }
        const ctx = canvas.getContext('2d');
        if (!ctx) {
            continue;
        }
        const data = ctx.getImageData(0, 0, canvas.width, canvas.height).data;
        let painted = false;
        for (let i = 3; i < data.length; i += 4) {
            if (data[i] > 0) {
                painted = true;
                break;
            }
        }
        if (!painted) {
            return false;
        }
    }
    return true;
}
"""


@dataclass
class ReadinessReport:
    """Outcome of one readiness wait."""
    fonts_ready: bool = False
    charts_checked: bool = False
    charts_ready: bool = False
    charts_timed_out: bool = False
    elapsed_ms: float = 0.0


class ReadinessDetector:
    """
    Waits for fonts and chart canvases before a page is exported.

    Both checks are individually toggleable. The chart check is bounded by
    ``chart_timeout_ms``; running out of time is logged and recorded in the
    report, never raised. A fixed settle delay follows either way.
    """

    def __init__(
        self,
        chart_timeout_ms: int = 10000,
        poll_interval_ms: Optional[int] = None,
        settle_time_ms: int = 2000,
        wait_for_charts: bool = True,
        chart_globals: Sequence[str] = ("Chart",),
    ):
        self.chart_timeout_ms = chart_timeout_ms
        self.poll_interval_ms = poll_interval_ms
        self.settle_time_ms = settle_time_ms
        self.wait_for_charts = wait_for_charts
        self.chart_globals = list(chart_globals)

    @classmethod
    def from_settings(cls, settings) -> "ReadinessDetector":
        return cls(
            chart_timeout_ms=settings.chart_timeout_ms,
            poll_interval_ms=settings.chart_poll_interval_ms,
            settle_time_ms=settings.settle_time_ms,
            wait_for_charts=settings.wait_for_charts,
        )

    @property
    def polling(self) -> Union[int, str]:
        return self.poll_interval_ms if self.poll_interval_ms else "raf"

    async def wait_for_fonts(self, page, timeout_ms: Optional[int] = None) -> bool:
        """
        Resolve once the document's font set reports every font loaded.

        Raises:
            asyncio.TimeoutError: Fonts were still loading after ``timeout_ms``
        """
        logger.debug("Waiting for web fonts...")
        fonts_ready = page.evaluate(FONTS_READY_SCRIPT)
        if timeout_ms:
            await asyncio.wait_for(fonts_ready, timeout=timeout_ms / 1000)
        else:
            await fonts_ready
        return True

    async def wait_for_chart_canvases(self, page) -> bool:
        """
        Poll until every chart canvas has painted pixels.

        Returns:
            True if the charts (or their absence) were confirmed in time,
            False if polling timed out or the page could not be inspected
        """
        logger.debug("Checking chart canvases...")
        try:
            await page.wait_for_function(
                CHARTS_READY_SCRIPT,
                arg=self.chart_globals,
                timeout=self.chart_timeout_ms,
                polling=self.polling,
            )
            return True
        except PlaywrightError as e:
            # Includes TimeoutError
            logger.warning(f"⚠️ Charts not ready after {self.chart_timeout_ms}ms, continuing: {e}")
            return False

    async def wait(
        self,
        page,
        *,
        wait_for_fonts: bool = True,
        font_timeout_ms: Optional[int] = None,
    ) -> ReadinessReport:
        """
        Run the enabled readiness checks against ``page``.

        Args:
            page: Playwright page that has finished navigating
            wait_for_fonts: Whether to wait on ``document.fonts.ready``
            font_timeout_ms: Bound on the font wait (unbounded when None)

        Returns:
            ReadinessReport describing what was checked and how it went
        """
        started = time.monotonic()
        report = ReadinessReport()

        if wait_for_fonts:
            report.fonts_ready = await self.wait_for_fonts(page, font_timeout_ms)

        if self.wait_for_charts:
            report.charts_checked = True
            report.charts_ready = await self.wait_for_chart_canvases(page)
            report.charts_timed_out = not report.charts_ready

        if self.settle_time_ms > 0:
            await asyncio.sleep(self.settle_time_ms / 1000)

        report.elapsed_ms = (time.monotonic() - started) * 1000
        return report
