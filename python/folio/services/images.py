"""Image decoding for content documents and the cover.

Decodes archive image bytes into a grayscale bitmap that fits the screen
box, using Pillow. The decoder only shrinks; smaller images keep their size.

Per device constraints:
- Output is 8-bit grayscale ("L"), one byte per pixel, row-major
- Images larger than 4096x4096 are rejected as decompression bombs
- Undecodable or zero-dimension images decode to None
"""

import io
import warnings
from dataclasses import dataclass

from PIL import Image

from folio.logging import get_logger

logger = get_logger(__name__)

# Max decoded dimensions before scaling
MAX_IMAGE_DIMENSION = 4096


@dataclass(frozen=True)
class Bitmap:
    """Decoded image. pixels is None when only dimensions were probed."""

    width: int
    height: int
    pixels: bytes | None = None


def fit_dimensions(width: int, height: int, box: tuple[int, int]) -> tuple[int, int]:
    """Scale (width, height) down to fit box, preserving aspect ratio."""
    box_w, box_h = box
    if width <= box_w and height <= box_h:
        return width, height
    ratio = min(box_w / width, box_h / height)
    return max(1, int(width * ratio)), max(1, int(height * ratio))


def decode_image(data: bytes, box: tuple[int, int], *, load: bool = True) -> Bitmap | None:
    """Decode image bytes to a bitmap fitting box.

    Args:
        data: Encoded image (JPEG, PNG, BMP, GIF).
        box: Target (width, height).
        load: When False, only probe dimensions.

    Returns:
        The bitmap, or None if the image cannot be used.
    """
    Image.MAX_IMAGE_PIXELS = MAX_IMAGE_DIMENSION * MAX_IMAGE_DIMENSION

    try:
        with warnings.catch_warnings():
            warnings.simplefilter("error", Image.DecompressionBombWarning)
            img = Image.open(io.BytesIO(data))
            width, height = img.size
            if width == 0 or height == 0:
                return None

            if not load:
                width, height = fit_dimensions(width, height, box)
                return Bitmap(width=width, height=height)

            img = img.convert("L")
            img.thumbnail(box)
    except (Image.DecompressionBombWarning, Image.DecompressionBombError):
        logger.warning("image_too_large", size=len(data))
        return None
    except (OSError, ValueError, SyntaxError) as e:
        # UnidentifiedImageError subclasses OSError; truncated files raise OSError
        logger.warning("image_decode_failed", error=str(e))
        return None

    width, height = img.size
    if width == 0 or height == 0:
        return None
    return Bitmap(width=width, height=height, pixels=img.tobytes())
