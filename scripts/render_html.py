"""
Render an HTML file or inline markup to PDF from the command line.

Runs the same engine, session and readiness logic as the HTTP service,
prints the PDF size and conversion time, and always shuts Chromium down.

Usage:
    python scripts/render_html.py --file report.html --output report.pdf
    python scripts/render_html.py --content "<html><body>Hola</body></html>" -o hola.pdf
    python scripts/render_html.py --file report.html --landscape --format Letter --margin-top 40px
"""

import argparse
import asyncio
import signal
import sys
import time
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from render_service.config import get_settings  # noqa: E402
from render_service.converter import HtmlToPdfConverter  # noqa: E402
from render_service.engine import RenderEngineManager  # noqa: E402
from render_service.errors import ConversionError  # noqa: E402
from render_service.logger import setup_logging  # noqa: E402


def build_options(args: argparse.Namespace) -> dict:
    """Options bag from command line flags (unset flags keep the defaults)."""
    options = {
        "format": args.format,
        "landscape": True if args.landscape else None,
        "marginTop": args.margin_top,
        "marginBottom": args.margin_bottom,
        "marginLeft": args.margin_left,
        "marginRight": args.margin_right,
        "waitUntil": args.wait_until,
    }
    if args.no_wait_fonts:
        options["waitForFonts"] = False
    return {key: value for key, value in options.items() if value is not None}


async def render(args: argparse.Namespace) -> int:
    settings = get_settings()
    engine = RenderEngineManager(settings)
    converter = HtmlToPdfConverter(engine)

    # Shut the browser down on Ctrl+C / SIGTERM instead of leaking it
    current = asyncio.current_task()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, current.cancel)
        except NotImplementedError:
            # Windows event loops do not support signal handlers
            pass

    options = build_options(args)
    started = time.monotonic()
    try:
        if args.file:
            result = await converter.convert_file(args.file, options)
        else:
            result = await converter.convert_content(args.content, options)
    except ConversionError as e:
        print(f"❌ Conversion failed: {e}", file=sys.stderr)
        return 1
    except asyncio.CancelledError:
        print("🛑 Interrupted", file=sys.stderr)
        return 130
    finally:
        await engine.shutdown()

    output = Path(args.output)
    output.write_bytes(result.data)
    elapsed = time.monotonic() - started
    print(f"✅ PDF generated: {result.byte_length} bytes in {elapsed:.2f}s")
    print(f"💾 Saved to: {output.resolve()}")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Render HTML to PDF with headless Chromium")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--file", "-f", help="Path to an HTML file")
    source.add_argument("--content", "-c", help="Inline HTML markup")
    parser.add_argument("--output", "-o", default="output.pdf", help="Output PDF path")
    parser.add_argument("--format", help="Page size, e.g. A4 or Letter")
    parser.add_argument("--landscape", action="store_true", help="Landscape orientation")
    parser.add_argument("--margin-top", help="Top margin (CSS length)")
    parser.add_argument("--margin-bottom", help="Bottom margin (CSS length)")
    parser.add_argument("--margin-left", help="Left margin (CSS length)")
    parser.add_argument("--margin-right", help="Right margin (CSS length)")
    parser.add_argument(
        "--wait-until",
        choices=["networkidle", "load", "domcontentloaded", "commit"],
        help="Load condition before readiness checks",
    )
    parser.add_argument("--no-wait-fonts", action="store_true", help="Skip waiting for web fonts")
    parser.add_argument("--log-level", default="INFO", help="DEBUG, INFO, WARNING or ERROR")
    args = parser.parse_args()

    setup_logging(args.log_level)
    return asyncio.run(render(args))


if __name__ == "__main__":
    sys.exit(main())
