from __future__ import annotations

from pathlib import Path
from typing import Optional, Union


class ImageServerError(Exception):
    """Base class for every error raised by the asset server."""


class RequestError(ImageServerError):
    """
    The caller asked for something the server does not support
    (e.g. an output format outside the closed enumeration).
    """

    def __init__(self, value: Optional[str], reason: str = "Invalid image type"):
        self.value = value
        self.reason = reason
        super().__init__(f"{reason}: {value!r}")


class ProcessingError(ImageServerError):
    """Re-encoding or writing a derivative failed."""

    def __init__(self, source: Union[str, Path], detail: str):
        self.source = Path(source)
        self.detail = detail
        super().__init__(f"failed processing {self.source}: {detail}")


class EncodeError(ProcessingError):
    """Raised by an encoder when source bytes cannot be re-encoded."""


class AuthorizationError(ImageServerError):
    """Missing or mismatched bearer token on a destructive operation."""


class PathViolation(ImageServerError):
    """A path built from untrusted segments escapes its declared root."""

    def __init__(self, root: Union[str, Path], candidate: Union[str, Path]):
        self.root = Path(root)
        self.candidate = Path(candidate)
        super().__init__(f"{self.candidate} is outside {self.root}")
