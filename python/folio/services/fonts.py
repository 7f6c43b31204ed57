"""Registry of fonts embedded in the open book.

Fonts are keyed by (family, face style) and bounded by a total-size budget.
Once a load would push the total past the budget the registry is flagged
too large: the fonts already loaded are kept and no further font is
accepted until the book is reopened.
"""

from dataclasses import dataclass
from enum import Enum

from folio.errors import BudgetExceededError
from folio.logging import get_logger

logger = get_logger(__name__)


class FaceStyle(str, Enum):
    NORMAL = "normal"
    BOLD = "bold"
    ITALIC = "italic"
    BOLD_ITALIC = "bold_italic"


def combine_face_style(font_weight: str | None, font_style: str | None) -> FaceStyle:
    """Derive the face style from CSS font-weight and font-style values."""
    bold = False
    if font_weight:
        weight = font_weight.strip().lower()
        if weight in ("bold", "bolder"):
            bold = True
        elif weight.isdigit():
            bold = int(weight) >= 600

    italic = bool(font_style) and font_style.strip().lower() in ("italic", "oblique")

    if bold and italic:
        return FaceStyle.BOLD_ITALIC
    if bold:
        return FaceStyle.BOLD
    if italic:
        return FaceStyle.ITALIC
    return FaceStyle.NORMAL


@dataclass(frozen=True)
class RegisteredFont:
    family: str
    style: FaceStyle
    path: str
    data: bytes


class FontRegistry:
    """Fonts loaded for the open file, bounded by budget_bytes."""

    def __init__(self, budget_bytes: int):
        self.budget_bytes = budget_bytes
        self._fonts: dict[tuple[str, FaceStyle], RegisteredFont] = {}
        self.total_bytes = 0
        self.too_large = False

    def __len__(self) -> int:
        return len(self._fonts)

    def __contains__(self, key: tuple[str, FaceStyle]) -> bool:
        return key in self._fonts

    def get(self, family: str, style: FaceStyle) -> RegisteredFont | None:
        return self._fonts.get((family, style))

    def fonts(self) -> list[RegisteredFont]:
        return list(self._fonts.values())

    def reserve(self, size: int) -> None:
        """Check that size more bytes fit.

        Raises:
            BudgetExceededError: If the registry is already flagged, or if
                size would exceed the budget (which flags it).
        """
        if self.too_large:
            raise BudgetExceededError("Font budget already exhausted")
        if self.total_bytes + size > self.budget_bytes:
            self.too_large = True
            logger.error(
                "fonts_too_large",
                budget=self.budget_bytes,
                total=self.total_bytes,
                requested=size,
            )
            raise BudgetExceededError(
                f"Fonts are using too much space (max {self.budget_bytes} bytes)"
            )

    def add(self, family: str, style: FaceStyle, path: str, data: bytes) -> RegisteredFont:
        """Register a font after reserve() accepted its size.

        Raises:
            BudgetExceededError: See reserve().
        """
        self.reserve(len(data))
        font = RegisteredFont(family=family, style=style, path=path, data=bytes(data))
        self._fonts[(family, style)] = font
        self.total_bytes += len(data)
        logger.debug("font_registered", family=family, style=style.value, size=len(data))
        return font

    def clear(self) -> None:
        self._fonts.clear()
        self.total_bytes = 0
        self.too_large = False
