"""
Comic Strip - Error taxonomy.

Every failure the pipeline can surface derives from ComicStripError so the
web layer can turn it into a single user-facing message.
"""

from typing import Optional


class ComicStripError(Exception):
    """Base class for all comic generation failures."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ComicStripError):
    """Malformed or missing request fields. Raised before any model call."""


class SchemaMismatchError(ComicStripError):
    """The text model's structured output was unusable."""


class ImageGenerationError(ComicStripError):
    """An image call for one panel came back with no images."""

    def __init__(self, message: str, panel_index: Optional[int] = None):
        super().__init__(message)
        self.panel_index = panel_index


class UpstreamError(ComicStripError):
    """The provider call itself failed (network, quota, auth)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
