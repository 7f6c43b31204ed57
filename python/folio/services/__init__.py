"""Ingestion services.

The Book session is the entry point; the other modules implement the
package model, content loading, style and font aggregation, image
decoding, deobfuscation and the table of contents it is built from.
"""

from folio.services.book import Book
from folio.services.content import ContentItem, ContentLoader
from folio.services.toc import Toc, TocItem

__all__ = [
    "Book",
    "ContentItem",
    "ContentLoader",
    "Toc",
    "TocItem",
]
