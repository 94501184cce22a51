"""
Helper functions for the HTTP boundary: download filenames and resolving
conversion-by-reference paths.
"""

import re
from pathlib import Path
from typing import Optional


def sanitize_for_path(text: str) -> str:
    """
    Sanitize text for use in filesystem paths and download filenames.

    Removes special characters (except word chars, spaces, hyphens)
    and replaces spaces with underscores.

    Example:
        >>> sanitize_for_path("Informe (Q3) final")
        'Informe__Q3__final'
    """
    cleaned = re.sub(r'[^\w\s-]', '_', text)
    return cleaned.replace(" ", "_")


def pdf_filename(source_name: Optional[str], fallback: str = "converted") -> str:
    """
    Build the attachment filename for a converted document.

    ``report.html`` becomes ``report.pdf``; a missing or unusable name
    falls back to ``converted.pdf``.
    """
    stem = Path(source_name).stem if source_name else ""
    stem = sanitize_for_path(stem).strip("_")
    return f"{stem or fallback}.pdf"


def resolve_document_path(documents_dir: Path, relative_path: str) -> Path:
    """
    Resolve a caller-supplied path inside ``documents_dir``.

    Args:
        documents_dir: Directory conversion-by-reference is confined to
        relative_path: Path as sent by the caller

    Returns:
        Absolute path inside ``documents_dir`` (it may not exist)

    Raises:
        ValueError: The path is empty or points outside ``documents_dir``
    """
    if not relative_path or not relative_path.strip():
        raise ValueError("path is required")

    root = Path(documents_dir).resolve()
    candidate = (root / relative_path.strip()).resolve()
    if candidate != root and root not in candidate.parents:
        raise ValueError(f"path escapes the documents directory: {relative_path}")
    return candidate
