"""
Document layout options and the merge of caller overrides onto defaults.

Callers send a loose options bag (``format``, ``landscape``,
``marginTop`` ...). ``build_render_options`` turns it into a complete,
immutable ``RenderOptions`` without ever mutating the defaults.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from .errors import InvalidOptionsError


class Orientation(str, Enum):
    """Page orientation."""
    PORTRAIT = "portrait"
    LANDSCAPE = "landscape"


class ReadinessCondition(str, Enum):
    """What counts as "page loaded" (Playwright ``wait_until`` values)."""
    NETWORK_IDLE = "networkidle"  # no network connections for 500ms
    LOAD = "load"
    DOM_CONTENT_LOADED = "domcontentloaded"
    COMMIT = "commit"


MARGIN_SIDES = ("top", "bottom", "left", "right")

# Flat option-bag keys for each margin side
_FLAT_MARGIN_KEYS = {
    "marginTop": "top",
    "marginBottom": "bottom",
    "marginLeft": "left",
    "marginRight": "right",
}

_KNOWN_KEYS = frozenset(
    {"format", "landscape", "margin", "printBackground", "waitForFonts", "waitUntil"}
    | set(_FLAT_MARGIN_KEYS)
)


@dataclass(frozen=True)
class Margins:
    """Page margins as CSS length strings."""
    top: str = "20px"
    bottom: str = "20px"
    left: str = "20px"
    right: str = "20px"

    def to_dict(self) -> Dict[str, str]:
        return {side: getattr(self, side) for side in MARGIN_SIDES}


@dataclass(frozen=True)
class RenderOptions:
    """Complete layout configuration for one PDF export."""
    page_format: str = "A4"
    orientation: Orientation = Orientation.PORTRAIT
    margins: Margins = field(default_factory=Margins)
    print_background: bool = True
    wait_for_fonts: bool = True
    readiness_condition: ReadinessCondition = ReadinessCondition.NETWORK_IDLE

    @property
    def landscape(self) -> bool:
        return self.orientation == Orientation.LANDSCAPE

    def to_pdf_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for Playwright's ``Page.pdf``."""
        return {
            "format": self.page_format,
            "landscape": self.landscape,
            "print_background": self.print_background,
            "prefer_css_page_size": False,
            "display_header_footer": False,
            "margin": self.margins.to_dict(),
        }


DEFAULT_RENDER_OPTIONS = RenderOptions()


def _is_absent(value: Any) -> bool:
    """None and blank strings mean "use the default"."""
    return value is None or (isinstance(value, str) and not value.strip())


def _as_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        # Form posts send booleans as strings
        return value.strip().lower() == "true"
    raise InvalidOptionsError("Invalid option value", f"{key} must be a boolean, got {value!r}")


def _as_length(key: str, value: Any) -> str:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return f"{value}px"
    if isinstance(value, str):
        return value.strip()
    raise InvalidOptionsError("Invalid option value", f"{key} must be a CSS length, got {value!r}")


def _merge_margins(base: Margins, overrides: Mapping[str, Any]) -> Margins:
    """Merge margin overrides side by side; sides not supplied keep ``base``."""
    sides: Dict[str, str] = {}

    nested = overrides.get("margin")
    if not _is_absent(nested):
        if not isinstance(nested, Mapping):
            raise InvalidOptionsError("Invalid option value", "margin must be an object")
        unknown = set(nested) - set(MARGIN_SIDES)
        if unknown:
            raise InvalidOptionsError("Unknown margin side", ", ".join(sorted(unknown)))
        for side in MARGIN_SIDES:
            if not _is_absent(nested.get(side)):
                sides[side] = _as_length(f"margin.{side}", nested[side])

    # Flat keys win over the nested object for the same side
    for key, side in _FLAT_MARGIN_KEYS.items():
        if not _is_absent(overrides.get(key)):
            sides[side] = _as_length(key, overrides[key])

    return replace(base, **sides) if sides else base


def build_render_options(
    defaults: RenderOptions = DEFAULT_RENDER_OPTIONS,
    overrides: Optional[Mapping[str, Any]] = None,
) -> RenderOptions:
    """
    Merge a caller options bag onto ``defaults``.

    Every top-level field follows "override wins if present, else default".
    Margins merge per side, so ``{"marginTop": "5px"}`` changes only the
    top margin.

    Args:
        defaults: Base options (never mutated)
        overrides: Caller options bag, or None

    Returns:
        A new RenderOptions (or ``defaults`` itself when nothing overrides it)

    Raises:
        InvalidOptionsError: Unknown keys or invalid values
    """
    if not overrides:
        return defaults

    unknown = set(overrides) - _KNOWN_KEYS
    if unknown:
        raise InvalidOptionsError("Unknown option", ", ".join(sorted(unknown)))

    changes: Dict[str, Any] = {}

    page_format = overrides.get("format")
    if not _is_absent(page_format):
        if not isinstance(page_format, str):
            raise InvalidOptionsError("Invalid option value", f"format must be a string, got {page_format!r}")
        changes["page_format"] = page_format.strip()

    landscape = overrides.get("landscape")
    if not _is_absent(landscape):
        is_landscape = _as_bool("landscape", landscape)
        changes["orientation"] = Orientation.LANDSCAPE if is_landscape else Orientation.PORTRAIT

    if not _is_absent(overrides.get("printBackground")):
        changes["print_background"] = _as_bool("printBackground", overrides["printBackground"])

    if not _is_absent(overrides.get("waitForFonts")):
        changes["wait_for_fonts"] = _as_bool("waitForFonts", overrides["waitForFonts"])

    wait_until = overrides.get("waitUntil")
    if not _is_absent(wait_until):
        try:
            changes["readiness_condition"] = ReadinessCondition(wait_until)
        except ValueError:
            allowed = ", ".join(c.value for c in ReadinessCondition)
            raise InvalidOptionsError(
                "Invalid option value", f"waitUntil must be one of: {allowed}"
            ) from None

    margins = _merge_margins(defaults.margins, overrides)
    if margins is not defaults.margins:
        changes["margins"] = margins

    return replace(defaults, **changes) if changes else defaults
