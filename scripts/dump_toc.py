#!/usr/bin/env python
"""Print the table of contents of an EPUB.

Opens the book, loads the persisted TOC next to it (or builds one from the
navigation document when the store is missing or stale) and prints one
"label : [spine, offset]" line per entry, indented by level.

Constraints:
- Read-only: never writes the TOC store unless --save is given
- Exits 1 when the book cannot be opened or has no usable TOC

Usage:
    cd python && uv run python ../scripts/dump_toc.py path/to/book.epub [--save]
"""

import sys


def main():
    args = [arg for arg in sys.argv[1:] if not arg.startswith("--")]
    save = "--save" in sys.argv[1:]
    if len(args) != 1:
        print("Usage: dump_toc.py BOOK.epub [--save]")
        sys.exit(1)

    from folio.config import get_settings
    from folio.errors import FatalFormatError
    from folio.logging import configure_logging
    from folio.services import Book
    from folio.storage import build_toc_path

    settings = get_settings()
    configure_logging(json_format=settings.log_json, level=settings.log_level)

    book = Book(settings)
    try:
        book.open(args[0])
    except FatalFormatError as exc:
        print(f"ERROR: {exc.code.value}: {exc.message}")
        sys.exit(1)

    with book:
        print(f"Title: {book.metadata('dc:title') or '(untitled)'}")
        print(f"Cover: {book.cover_filename() or '(none)'}")
        print(f"Spine: {book.spine_length()} documents")

        toc = book.toc()
        if len(toc) == 0:
            print("ERROR: no usable table of contents")
            sys.exit(1)

        for line in toc.describe():
            print(line)

        if save:
            if toc.save():
                print(f"Saved: {build_toc_path(args[0])}")
            else:
                print("ERROR: TOC store could not be written")
                sys.exit(1)


if __name__ == "__main__":
    main()
