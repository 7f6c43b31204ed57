"""Sidecar path building utilities.

This module provides the single point of logic for naming files stored
next to a book. All sidecar paths go through build_sidecar_path().

Path Invariant:
    - book "/books/dune.epub" -> "/books/dune.toc"
    - book without extension "/books/dune" -> "/books/dune.toc"
"""

from pathlib import Path

from folio.config import get_settings


def build_sidecar_path(book_path: str | Path, suffix: str) -> Path:
    """Replace the book's extension with suffix.

    Args:
        book_path: Path of the EPUB file.
        suffix: New suffix, including the leading dot.

    Raises:
        ValueError: If suffix does not start with a dot.
    """
    if not suffix.startswith("."):
        raise ValueError(f"Suffix '{suffix}' must start with '.'")
    return Path(book_path).with_suffix(suffix)


def build_toc_path(book_path: str | Path) -> Path:
    """Path of the persisted table of contents for a book."""
    return build_sidecar_path(book_path, get_settings().toc_suffix)
