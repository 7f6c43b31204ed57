"""Application settings loaded from environment variables.

Environment Configuration:
    FOLIO_ENV: Deployment environment (local | test | device)
    FOLIO_LOG_JSON: JSON log output (default true)
    FOLIO_LOG_LEVEL: Root log level (default INFO)

Ingestion Configuration:
    FOLIO_FONTS_BUDGET_BYTES: Total size cap for fonts embedded in a book
    FOLIO_USE_BOOK_FONTS: Load @font-face fonts from the book
    FOLIO_SCREEN_WIDTH / FOLIO_SCREEN_HEIGHT: Target box for decoded images
    FOLIO_TOC_SUFFIX: Suffix of the TOC store written next to the book
    FOLIO_ARENA_BLOCK_SIZE: Block size of the TOC label arena
"""

from enum import Enum
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

# Largest screen dimension any supported panel reports
MAX_SCREEN_DIMENSION = 4096


class Environment(str, Enum):
    """Valid deployment environments."""

    LOCAL = "local"
    TEST = "test"
    DEVICE = "device"


class Settings(BaseSettings):
    """Application configuration.

    Settings are loaded from environment variables.
    Validation rules:
    - FOLIO_FONTS_BUDGET_BYTES and FOLIO_ARENA_BLOCK_SIZE must be positive
    - Screen dimensions must be in 1..4096
    - FOLIO_TOC_SUFFIX must start with a dot
    """

    folio_env: Environment = Field(default=Environment.LOCAL, alias="FOLIO_ENV")
    log_json: bool = Field(default=True, alias="FOLIO_LOG_JSON")
    log_level: str = Field(default="INFO", alias="FOLIO_LOG_LEVEL")

    fonts_budget_bytes: int = Field(default=800_000, alias="FOLIO_FONTS_BUDGET_BYTES")
    use_book_fonts: bool = Field(default=True, alias="FOLIO_USE_BOOK_FONTS")

    screen_width: int = Field(default=600, alias="FOLIO_SCREEN_WIDTH")
    screen_height: int = Field(default=800, alias="FOLIO_SCREEN_HEIGHT")

    toc_suffix: str = Field(default=".toc", alias="FOLIO_TOC_SUFFIX")
    arena_block_size: int = Field(default=4096, alias="FOLIO_ARENA_BLOCK_SIZE")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "populate_by_name": True,
    }

    @model_validator(mode="after")
    def validate_limits(self) -> "Settings":
        """Reject limits that would disable ingestion silently."""
        if self.fonts_budget_bytes <= 0:
            raise ValueError("FOLIO_FONTS_BUDGET_BYTES must be positive")
        if self.arena_block_size <= 0:
            raise ValueError("FOLIO_ARENA_BLOCK_SIZE must be positive")

        for name, value in (
            ("FOLIO_SCREEN_WIDTH", self.screen_width),
            ("FOLIO_SCREEN_HEIGHT", self.screen_height),
        ):
            if not 0 < value <= MAX_SCREEN_DIMENSION:
                raise ValueError(f"{name} must be between 1 and {MAX_SCREEN_DIMENSION}, got {value}")

        if not self.toc_suffix.startswith("."):
            raise ValueError("FOLIO_TOC_SUFFIX must start with '.'")

        return self

    @property
    def screen_box(self) -> tuple[int, int]:
        """Target (width, height) for decoded images."""
        return (self.screen_width, self.screen_height)


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If settings are invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    get_settings.cache_clear()
