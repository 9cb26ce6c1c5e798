import io
import logging

import numpy as np
from PIL import Image

from mosaic_service.errors import EncodeError
from mosaic_service.models import EncodedOutput, OutputFormat

logger = logging.getLogger(__name__)

JPEG_QUALITY = 85
WEBP_QUALITY = 80
WEBP_METHOD = 4


def encode(
    canvas: np.ndarray,
    output_format: OutputFormat,
    jpeg_quality: int = JPEG_QUALITY,
    webp_quality: int = WEBP_QUALITY,
    webp_method: int = WEBP_METHOD,
) -> EncodedOutput:
    """
    Serialize an RGBA canvas as JPEG or lossy WebP.

    The canvas is opaque, so both formats are written without an alpha
    channel and show the same picture.

    JPEG is the fast default. WebP is noticeably slower to encode but gives
    smaller files; ``webp_method`` trades speed (0) for size (6).

    Raises:
        EncodeError: Pillow could not encode the canvas.
    """
    buffer = io.BytesIO()
    try:
        image = Image.fromarray(canvas).convert("RGB")
        if output_format is OutputFormat.JPEG:
            image.save(buffer, format="JPEG", quality=jpeg_quality)
        elif output_format is OutputFormat.WEBP:
            image.save(buffer, format="WEBP", quality=webp_quality, method=webp_method)
        else:
            raise EncodeError(f"Unsupported output format {output_format}")
    except EncodeError:
        raise
    except (OSError, ValueError, KeyError, TypeError) as e:
        logger.error(f"Encoding {output_format.value} failed: {e}")
        raise EncodeError() from e

    return EncodedOutput(content_type=output_format.content_type, data=buffer.getvalue())
