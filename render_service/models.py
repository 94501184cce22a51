"""
Pydantic models for the render service API.
"""

from datetime import datetime
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

# Plain numbers are pixels
CssLength = Union[str, int, float]


class ConversionOptions(BaseModel):
    """Layout options accepted from callers. Every field is optional; unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid")

    format: Optional[str] = Field(None, description="Page size name, e.g. 'A4' or 'Letter'")
    landscape: Optional[bool] = Field(None, description="Landscape orientation")
    marginTop: Optional[CssLength] = Field(None, description="Top margin as a CSS length")
    marginBottom: Optional[CssLength] = Field(None, description="Bottom margin as a CSS length")
    marginLeft: Optional[CssLength] = Field(None, description="Left margin as a CSS length")
    marginRight: Optional[CssLength] = Field(None, description="Right margin as a CSS length")
    margin: Optional[Dict[str, CssLength]] = Field(
        None, description="Margins by side (top, bottom, left, right); flat margin keys win"
    )
    printBackground: Optional[bool] = Field(None, description="Print background colors/images")
    waitForFonts: Optional[bool] = Field(None, description="Wait for web fonts before export")
    waitUntil: Optional[str] = Field(
        None, description="Load condition: networkidle, load, domcontentloaded or commit"
    )

    def to_overrides(self) -> Dict[str, Any]:
        """Options bag for build_render_options (unset fields omitted)."""
        return self.model_dump(exclude_none=True)


class ContentConversionRequest(BaseModel):
    """Inline HTML to PDF request."""

    htmlContent: Optional[str] = Field(None, description="HTML markup to render")
    options: ConversionOptions = Field(default_factory=ConversionOptions)


class FileConversionRequest(BaseModel):
    """Request to convert an HTML file already stored under the documents directory."""

    path: str = Field(..., description="Path relative to the documents directory")
    options: ConversionOptions = Field(default_factory=ConversionOptions)


class ErrorResponse(BaseModel):
    """Error body returned for failed conversions."""

    error: str
    details: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "healthy"
    service: str
    version: str
    timestamp: datetime
    engine_launched: bool
    engine_connected: bool
    engine_responsive: Optional[bool] = None
    browser_version: Optional[str] = None
    launch_count: int
    relaunch_count: int
    active_sessions: int
    active_renders: int
    waiting_requests: int
    max_concurrent: int
    last_error: Optional[str] = None
