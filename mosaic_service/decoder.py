import io
import logging
from enum import Enum

import numpy as np
from PIL import Image, UnidentifiedImageError

from mosaic_service.errors import DecodeError, DecodeErrorKind
from mosaic_service.models import SourceImage

logger = logging.getLogger(__name__)

MAX_SOURCE_DIMENSION = 8192


class SourceFormat(str, Enum):
    """Input formats accepted from the image host (Pillow format names)."""

    JPEG = "JPEG"
    PNG = "PNG"
    WEBP = "WEBP"
    GIF = "GIF"


def decode(data: bytes, ref: str = "", max_dimension: int = MAX_SOURCE_DIMENSION) -> SourceImage:
    """
    Decode raw image bytes into an RGBA SourceImage.

    The format is detected from the content. Animated sources contribute
    their first frame only. Dimensions are checked from the header before
    any pixel data is decoded.

    Args:
        data: Raw bytes as downloaded.
        ref: Image reference, used for error reporting and logging.
        max_dimension: Largest width or height accepted.

    Raises:
        DecodeError: UNSUPPORTED_FORMAT, CORRUPT or DIMENSION_TOO_LARGE.
    """
    try:
        image = Image.open(io.BytesIO(data), formats=[f.value for f in SourceFormat])
    except UnidentifiedImageError:
        raise DecodeError(DecodeErrorKind.UNSUPPORTED_FORMAT, ref) from None
    except Image.DecompressionBombError:
        raise DecodeError(DecodeErrorKind.DIMENSION_TOO_LARGE, ref) from None
    except (OSError, SyntaxError, ValueError, EOFError):
        raise DecodeError(DecodeErrorKind.CORRUPT, ref) from None

    with image:
        width, height = image.size
        if width <= 0 or height <= 0:
            raise DecodeError(DecodeErrorKind.CORRUPT, ref)
        if width > max_dimension or height > max_dimension:
            logger.warning(f"Image {ref} is {width}x{height}, above the {max_dimension}px ceiling")
            raise DecodeError(DecodeErrorKind.DIMENSION_TOO_LARGE, ref)

        try:
            # only the first frame of animated images is used
            image.seek(0)
            rgba = image.convert("RGBA")
        except (OSError, SyntaxError, ValueError, EOFError):
            raise DecodeError(DecodeErrorKind.CORRUPT, ref) from None

        logger.debug(f"Decoded image {ref}: {image.format} {width}x{height}, mode {image.mode}")

    return SourceImage(ref=ref, pixels=np.array(rgba, dtype=np.uint8))
