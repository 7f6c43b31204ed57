"""Background tasks for an open book.

Usage:
    from folio.tasks import PageLocationsTask
    task = PageLocationsTask(book, book.toc(), paginator)
    task.start()
    ...
    task.join()
"""

from folio.tasks.page_locations import PageLocationsTask

__all__ = ["PageLocationsTask"]
