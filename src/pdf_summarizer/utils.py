"""
Utility functions for filenames, identifiers and timestamps.

This module provides helper functions for:
- Sanitizing user-provided filenames before they become storage keys
- Ensuring directory creation for local state (the SQLite file)
- Validating user identifiers passed in by the upstream auth layer
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from pathlib import Path

# Characters allowed in storage key segments: alphanumerics, dots, underscores, hyphens
SANITIZE_PATTERN = re.compile(r"[^a-zA-Z0-9._-]+")

USER_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.@|:-]{1,128}$")

PDF_EXTENSIONS = (".pdf",)


def sanitize_filename(filename: str, fallback: str = "document") -> str:
    """
    Generate a storage-safe PDF filename from user input.

    Args:
        filename: The original filename, possibly including a client path
        fallback: Stem used when nothing safe remains

    Returns:
        A lowercase filename that always ends in ``.pdf``

    Example:
        >>> sanitize_filename("Q3 Report (final).PDF")
        "q3-report-final.pdf"
        >>> sanitize_filename("@#$.pdf")
        "document.pdf"
    """
    stem = Path(filename.replace("\\", "/")).stem
    cleaned = SANITIZE_PATTERN.sub("-", stem.strip()).strip("-_.").lower()
    return f"{cleaned or fallback}.pdf"


def display_title(filename: str) -> str:
    """Human readable title derived from a filename."""
    stem = Path(filename.replace("\\", "/")).stem
    title = re.sub(r"[_-]+", " ", stem).strip()
    return title or "Untitled document"


def is_pdf_filename(filename: str) -> bool:
    return filename.lower().endswith(PDF_EXTENSIONS)


def is_valid_user_id(user_id: str) -> bool:
    return bool(USER_ID_PATTERN.match(user_id))


def ensure_directory(path: Path) -> Path:
    """
    Create a directory if it doesn't exist, including parent directories.

    Returns:
        The same path object for chaining
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def month_start(moment: datetime) -> datetime:
    """First instant of the calendar month containing ``moment``."""
    return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def count_words(text: str) -> int:
    return len(text.split())
