"""Exceptions raised by blobview."""


class BlobviewError(Exception):
    """Base exception for blobview errors."""

    pass


class RenderError(BlobviewError):
    """A viewer document could not be built or written into a surface."""

    pass


class SurfaceError(BlobviewError):
    """A display surface could not be obtained or has gone away."""

    pass
