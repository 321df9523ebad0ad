"""
Utility functions for paths, signatures and MIME strings.

This module provides helper functions for:
- Rejecting filesystem paths that could reach the host shell unsafely
- Building unique temporary file names for the external raster tool
- Sniffing file formats from their leading magic bytes
- Normalizing declared MIME types
"""

from __future__ import annotations

import re
import secrets
import tempfile
import time
from pathlib import Path
from typing import Optional

from .exceptions import UnsafePathError

# Path traversal, shell metacharacters and control characters
DANGEROUS_PATH_PATTERNS = (
    re.compile(r"\.\."),
    re.compile(r"[;&|`$(){}\[\]]"),
    re.compile(r"[\x00-\x1f\x7f-\x9f]"),
)

# Allows: alphanumeric characters, dots, underscores and hyphens
SAFE_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")

PDF_SIGNATURE = b"%PDF"


def sanitize_path(path: str | Path) -> str:
    """
    Validate a path before it is handed to an external process.

    The path is rejected outright rather than escaped: any match against
    :data:`DANGEROUS_PATH_PATTERNS` raises.

    Args:
        path: The candidate filesystem path

    Returns:
        The path as a string, unchanged

    Raises:
        UnsafePathError: If the path contains a forbidden pattern

    Example:
        >>> sanitize_path("/tmp/pdf_1700000000000_ab12cd.pdf")
        '/tmp/pdf_1700000000000_ab12cd.pdf'
        >>> sanitize_path("/tmp/../etc/passwd")
        Traceback (most recent call last):
        ...
        UnsafePathError: Path contains forbidden characters: '/tmp/../etc/passwd'
    """
    candidate = str(path)
    for pattern in DANGEROUS_PATH_PATTERNS:
        if pattern.search(candidate):
            raise UnsafePathError(f"Path contains forbidden characters: {candidate!r}")
    return candidate


def make_temp_path(prefix: str, suffix: str, directory: Path | None = None) -> Path:
    """
    Build a unique, not yet existing temp file path.

    Names follow ``<prefix>_<epoch millis>_<random hex><suffix>`` so that
    concurrent requests never collide.

    Args:
        prefix: Leading name component (e.g. ``"pdf"``)
        suffix: File extension including the dot
        directory: Parent directory (default: the system temp dir)

    Returns:
        The resolved path; nothing is created on disk
    """
    base = directory or Path(tempfile.gettempdir())
    name = f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(6)}{suffix}"
    return (base / name).resolve()


def ensure_directory(path: Path) -> Path:
    """
    Create a directory if it doesn't exist, including parent directories.

    Args:
        path: The directory path to create

    Returns:
        The same path object for chaining
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def is_pdf(data: bytes) -> bool:
    return data[:4] == PDF_SIGNATURE


def sniff_image_format(data: bytes) -> Optional[str]:
    """
    Identify a raster format from its magic bytes.

    Args:
        data: Raw file bytes

    Returns:
        One of ``jpeg``, ``png``, ``gif``, ``webp``, ``bmp``, ``tiff``,
        ``ico``, or None when no signature matches
    """
    if len(data) < 8:
        return None
    if data[:3] == b"\xff\xd8\xff":
        return "jpeg"
    if data[:8] == b"\x89PNG\r\n\x1a\n":
        return "png"
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return "gif"
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "webp"
    if data[:2] == b"BM":
        return "bmp"
    if data[:4] in (b"II*\x00", b"MM\x00*"):
        return "tiff"
    if data[:4] == b"\x00\x00\x01\x00":
        return "ico"
    return None


def content_type_for(data: bytes, fallback: str) -> str:
    """Return the MIME type matching the encoded bytes."""
    fmt = sniff_image_format(data)
    return f"image/{fmt}" if fmt else fallback


def normalize_mime(mime_type: str | None) -> str:
    """
    Lowercase a declared MIME type and drop its parameters.

    Example:
        >>> normalize_mime("Application/PDF; charset=binary")
        'application/pdf'
    """
    if not mime_type:
        return ""
    return mime_type.split(";", 1)[0].strip().lower()


def is_safe_identifier(value: str) -> bool:
    return bool(value) and len(value) <= 128 and bool(SAFE_IDENTIFIER_PATTERN.match(value)) and ".." not in value
