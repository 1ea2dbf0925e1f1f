"""
Image normalization for bill OCR.
Converts arbitrary color photos and scans into two-level rasters that Tesseract reads reliably.
"""

import io
import logging
from typing import Any

import cv2
import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from .errors import DecodeError

logger = logging.getLogger(__name__)

# ITU-R BT.601 luma weights
LUMA_WEIGHTS = (0.299, 0.587, 0.114)

# Median denoising only runs on images larger than this in both dimensions
MIN_DENOISE_SIZE = 10


def decode_image(data: bytes) -> np.ndarray:
    """Decode encoded image bytes (PNG, JPEG, ...) into an RGB raster.

    Args:
        data: Encoded image file content

    Returns:
        Array of shape (height, width, 3), dtype uint8

    Raises:
        DecodeError: If the bytes are not a readable image
    """
    if not data:
        raise DecodeError("Image data is empty")

    try:
        with Image.open(io.BytesIO(data)) as img:
            img = ImageOps.exif_transpose(img)
            array = np.array(img.convert("RGB"))
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
        raise DecodeError(f"Could not decode image: {e}") from e

    return as_raster(array)


def encode_png(image: np.ndarray) -> bytes:
    """Encode a raster as PNG bytes."""
    buffer = io.BytesIO()
    Image.fromarray(as_raster(image)).save(buffer, format="PNG")
    return buffer.getvalue()


def as_raster(image: Any) -> np.ndarray:
    """Coerce an array-like into a (height, width, 3) uint8 raster.

    Grayscale input is broadcast to three channels and an alpha channel is dropped.

    Raises:
        DecodeError: If the input has no usable raster shape or a zero dimension
    """
    try:
        array = np.asarray(image)
    except (TypeError, ValueError) as e:
        raise DecodeError(f"Not a raster image: {e}") from e

    if array.dtype == np.bool_ or not np.issubdtype(array.dtype, np.number):
        raise DecodeError(f"Unsupported pixel type: {array.dtype}")

    if array.ndim == 2:
        array = np.stack([array] * 3, axis=-1)
    elif array.ndim == 3 and array.shape[2] == 1:
        array = np.concatenate([array] * 3, axis=-1)
    elif array.ndim == 3 and array.shape[2] in (3, 4):
        array = array[:, :, :3]
    else:
        raise DecodeError(f"Unsupported raster shape: {array.shape}")

    if array.shape[0] == 0 or array.shape[1] == 0:
        raise DecodeError("Image has zero width or height")

    if array.dtype != np.uint8:
        array = np.clip(array, 0, 255).astype(np.uint8)

    return array


class ImageNormalizer:
    """Grayscale, Otsu binarization and median denoising for OCR input."""

    def __init__(self, min_denoise_size: int = MIN_DENOISE_SIZE):
        """Initialize the normalizer.

        Args:
            min_denoise_size: Width and height must both exceed this for the median pass
        """
        self.min_denoise_size = min_denoise_size
        self.logger = logger

    def normalize(self, image: Any) -> np.ndarray:
        """Binarize a raster for character recognition.

        Args:
            image: RGB raster of shape (height, width, 3)

        Returns:
            New raster of identical dimensions where every channel is 0 or 255

        Raises:
            DecodeError: If the input is not a usable raster
        """
        raster = as_raster(image)
        height, width = raster.shape[:2]

        gray = self.to_grayscale(raster)
        threshold = self.otsu_threshold(self.build_histogram(gray))
        binary = self.binarize(gray, threshold)
        cleaned = self.median_denoise(binary)

        self.logger.debug(f"Normalized {width}x{height} image with Otsu threshold {threshold}")
        return np.stack([cleaned] * 3, axis=-1)

    def to_grayscale(self, image: np.ndarray) -> np.ndarray:
        """Weighted luminance per pixel, rounded to the nearest level.

        Args:
            image: RGB raster

        Returns:
            Single-channel uint8 array
        """
        rgb = image.astype(np.float64)
        r_weight, g_weight, b_weight = LUMA_WEIGHTS
        luminance = r_weight * rgb[:, :, 0] + g_weight * rgb[:, :, 1] + b_weight * rgb[:, :, 2]
        return np.clip(np.rint(luminance), 0, 255).astype(np.uint8)

    def build_histogram(self, gray: np.ndarray) -> np.ndarray:
        """Count pixels per intensity level (256 bins)."""
        return np.bincount(gray.ravel(), minlength=256).astype(np.int64)

    def otsu_threshold(self, histogram: np.ndarray) -> int:
        """Select the threshold maximizing between-class variance.

        Background is every level <= t. Candidates where either class is empty
        score zero, and the earliest maximum wins.

        Args:
            histogram: 256 pixel counts

        Returns:
            Threshold level in [0, 255]
        """
        hist = np.asarray(histogram, dtype=np.float64)
        total = hist.sum()
        if total == 0:
            return 0

        levels = np.arange(hist.size, dtype=np.float64)
        weight_b = np.cumsum(hist)
        weight_f = total - weight_b
        sum_b = np.cumsum(hist * levels)
        sum_total = sum_b[-1]

        with np.errstate(divide='ignore', invalid='ignore'):
            mean_b = sum_b / weight_b
            mean_f = (sum_total - sum_b) / weight_f
            variance = (weight_b / total) * (weight_f / total) * (mean_b - mean_f) ** 2

        variance = np.where((weight_b > 0) & (weight_f > 0), variance, 0.0)
        return int(np.argmax(variance))

    def binarize(self, gray: np.ndarray, threshold: int) -> np.ndarray:
        """Pixels brighter than the threshold become white, the rest black."""
        return np.where(gray > threshold, 255, 0).astype(np.uint8)

    def median_denoise(self, gray: np.ndarray) -> np.ndarray:
        """3x3 median filter on interior pixels that are not already 0 or 255.

        All samples are read from a snapshot taken before the pass. Images not
        larger than ``min_denoise_size`` in both dimensions are returned unchanged.

        Args:
            gray: Single-channel uint8 array

        Returns:
            New single-channel array
        """
        height, width = gray.shape
        snapshot = np.ascontiguousarray(gray, dtype=np.uint8).copy()

        if width <= self.min_denoise_size or height <= self.min_denoise_size:
            return snapshot

        medians = cv2.medianBlur(snapshot, 3)

        mask = np.zeros(snapshot.shape, dtype=bool)
        mask[1:-1, 1:-1] = True
        mask &= (snapshot != 0) & (snapshot != 255)

        return np.where(mask, medians, snapshot).astype(np.uint8)


_default_normalizer = ImageNormalizer()


def normalize(image: Any) -> np.ndarray:
    """Binarize a raster with the default normalizer."""
    return _default_normalizer.normalize(image)
