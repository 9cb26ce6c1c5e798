"""Error taxonomy for the mosaic pipeline.

Each error knows the HTTP status it maps to and a short reason that is safe
to show to clients (no URLs, no upstream bodies, no tracebacks).
"""

from enum import Enum


class MosaicError(Exception):
    """Base class for every failure the pipeline reports to the caller."""

    http_status = 500

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ValidationError(MosaicError):
    """Malformed request path. No upstream work is attempted."""

    http_status = 400


class FetchErrorKind(str, Enum):
    TIMEOUT = "timeout"
    UNREACHABLE = "unreachable"
    HTTP_STATUS = "http_status"
    TOO_LARGE = "too_large"


class FetchError(MosaicError):
    """A source image could not be downloaded."""

    def __init__(self, kind: FetchErrorKind, image_ref: str, status_code: int | None = None):
        self.kind = kind
        self.image_ref = image_ref
        self.status_code = status_code
        if kind is FetchErrorKind.TIMEOUT:
            reason = "Timed out downloading a source image"
        elif kind is FetchErrorKind.HTTP_STATUS:
            reason = f"Image host responded with status {status_code}"
        elif kind is FetchErrorKind.TOO_LARGE:
            reason = "Source image exceeds the size limit"
        else:
            reason = "Image host could not be reached"
        super().__init__(reason)

    @property
    def http_status(self) -> int:
        return 504 if self.kind is FetchErrorKind.TIMEOUT else 502


class DecodeErrorKind(str, Enum):
    UNSUPPORTED_FORMAT = "unsupported_format"
    CORRUPT = "corrupt"
    DIMENSION_TOO_LARGE = "dimension_too_large"


class DecodeError(MosaicError):
    """Downloaded bytes were not a usable image.

    Reported like a fetch failure: the upstream source was unusable.
    """

    http_status = 502

    _REASONS = {
        DecodeErrorKind.UNSUPPORTED_FORMAT: "Source image format is not supported",
        DecodeErrorKind.CORRUPT: "Source image could not be decoded",
        DecodeErrorKind.DIMENSION_TOO_LARGE: "Source image dimensions are too large",
    }

    def __init__(self, kind: DecodeErrorKind, image_ref: str = ""):
        self.kind = kind
        self.image_ref = image_ref
        super().__init__(self._REASONS[kind])


class EncodeError(MosaicError):
    http_status = 500

    def __init__(self, reason: str = "Image could not be encoded"):
        super().__init__(reason)


class OverloadedError(MosaicError):
    """The process-wide limiter had no free permit in time."""

    http_status = 503

    def __init__(self, reason: str = "Server is busy, try again later"):
        super().__init__(reason)
