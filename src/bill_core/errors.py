"""
Exception types raised by the bill scanning core.
"""


class BillScanError(Exception):
    """Base class for bill scanning errors."""


class DecodeError(BillScanError, ValueError):
    """Source image cannot be interpreted as a raster."""


class UnsupportedFileError(BillScanError, ValueError):
    """Uploaded file has an unsupported type or is too large."""


class OCRUnavailableError(BillScanError, RuntimeError):
    """Tesseract is not installed or cannot be started."""
