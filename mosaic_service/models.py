"""Request-scoped data types shared by the pipeline stages."""

from dataclasses import dataclass
from enum import Enum

import numpy as np

from mosaic_service.errors import ValidationError

MIN_IMAGES = 2
MAX_IMAGES = 4


class OutputFormat(str, Enum):
    JPEG = "jpeg"
    WEBP = "webp"

    @property
    def content_type(self) -> str:
        return f"image/{self.value}"


@dataclass(frozen=True)
class MosaicRequest:
    """Parsed request path. ``image_refs`` order decides slot assignment."""

    format: OutputFormat
    context_id: str
    image_refs: tuple[str, ...]


@dataclass
class SourceImage:
    """A decoded source image as an RGBA ``(height, width, 4)`` uint8 array."""

    ref: str
    pixels: np.ndarray

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height


@dataclass(frozen=True)
class EncodedOutput:
    content_type: str
    data: bytes


def parse_request(format_token: str, context_id: str, image_refs_path: str) -> MosaicRequest:
    """Validate the raw path pieces and build a MosaicRequest.

    Empty segments in ``image_refs_path`` (double or trailing slashes) are
    ignored. Raises ValidationError for an unknown format or a bad image count.
    """
    try:
        output_format = OutputFormat(format_token)
    except ValueError:
        raise ValidationError(
            f"Unsupported format '{format_token}', expected one of: "
            + ", ".join(f.value for f in OutputFormat)
        ) from None

    if not context_id:
        raise ValidationError("Missing context identifier")

    refs = tuple(ref for ref in image_refs_path.split("/") if ref)
    if not (MIN_IMAGES <= len(refs) <= MAX_IMAGES):
        raise ValidationError(
            f"Expected between {MIN_IMAGES} and {MAX_IMAGES} images, got {len(refs)}"
        )

    return MosaicRequest(format=output_format, context_id=context_id, image_refs=refs)
