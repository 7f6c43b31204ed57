"""Background computation of page locations.

Walks every spine index through the lock-protected side-channel loader,
hands each document to a paginator and forwards the offsets it reports
into the table of contents. Runs alongside the reader task; it never
touches the foreground current item.

The paginator is supplied by the rendering layer. It receives a loaded
ContentItem and yields (fragment_id, offset) pairs: fragment_id is the id
of an element whose position was just determined, or None to report the
offset of the document start.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable

from folio.logging import clear_task_context, configure_task_logging, get_logger
from folio.services.book import Book
from folio.services.content import ContentItem
from folio.services.toc import Toc

logger = get_logger(__name__)

TASK_NAME = "page_locations"

Paginator = Callable[[ContentItem], Iterable[tuple[str | None, int]]]


class PageLocationsTask:
    """One pass over the book. No cancellation: once started it runs to the end."""

    def __init__(self, book: Book, toc: Toc, paginator: Paginator):
        self.book = book
        self.toc = toc
        self.paginator = paginator
        self.completed = False
        self.failed_index: int | None = None
        self.documents_done = 0
        self.bound = 0
        self.error: Exception | None = None
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError("Page locations task already started")
        self._thread = threading.Thread(target=self._target, name=TASK_NAME, daemon=True)
        self._thread.start()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the pass to end. Returns True if it completed."""
        if self._thread is not None:
            self._thread.join(timeout)
        return self.completed

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _target(self) -> None:
        try:
            self.run()
        except Exception as e:
            self.error = e
            logger.exception("page_locations_unexpected_error", error=str(e))

    def run(self) -> None:
        """Run the pass in the calling thread."""
        configure_task_logging(task_name=TASK_NAME, book_path=self.book.path)
        try:
            spine_length = self.book.spine_length()
            logger.info("page_locations_started", spine_length=spine_length)

            item = ContentItem()
            for spine_index in range(spine_length):
                if not self.book.load_into(spine_index, item):
                    self.failed_index = spine_index
                    logger.warning("page_locations_aborted", spine_index=spine_index)
                    return
                try:
                    self._paginate(spine_index, item)
                finally:
                    item.release()
                self.documents_done += 1

            self.completed = True
            logger.info(
                "page_locations_completed",
                documents=self.documents_done,
                bound=self.bound,
            )
        finally:
            clear_task_context()

    def _paginate(self, spine_index: int, item: ContentItem) -> None:
        for fragment_id, offset in self.paginator(item):
            if fragment_id is None:
                updated = self.toc.bind(offset, spine_index=spine_index)
            else:
                updated = self.toc.bind(offset, fragment_id=fragment_id, spine_index=spine_index)
            if updated:
                self.bound += 1
