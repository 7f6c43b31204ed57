"""Pytest configuration and fixtures for folio tests.

Test isolation strategy:
- Settings are cached process-wide; the cache is cleared around every test
  so environment overrides made with monkeypatch never leak
- Logging context variables are reset after every test
- Books are built in memory; tests that need a file write it under tmp_path
"""

from collections.abc import Generator
from pathlib import Path

import pytest

from folio.config import Settings, clear_settings_cache
from folio.logging import clear_task_context
from folio.storage.archive import FakeArchive
from tests.epub_fixtures import make_archive, make_epub


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch) -> Generator[None, None, None]:
    """Run every test against default settings."""
    for name in (
        "FOLIO_ENV",
        "FOLIO_FONTS_BUDGET_BYTES",
        "FOLIO_USE_BOOK_FONTS",
        "FOLIO_SCREEN_WIDTH",
        "FOLIO_SCREEN_HEIGHT",
        "FOLIO_TOC_SUFFIX",
        "FOLIO_ARENA_BLOCK_SIZE",
    ):
        monkeypatch.delenv(name, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()
    clear_task_context()


@pytest.fixture
def settings() -> Settings:
    return Settings(FOLIO_ENV="test")


@pytest.fixture
def archive() -> FakeArchive:
    """The default book as an in-memory archive."""
    return make_archive()


@pytest.fixture
def epub_path(tmp_path: Path) -> Path:
    """The default book written to disk."""
    path = tmp_path / "book.epub"
    path.write_bytes(make_epub())
    return path
