"""
Tesseract OCR adapter.
Runs pytesseract with the fixed bill recognition configuration.
"""

import logging
from typing import Optional

import numpy as np
import pytesseract
from PIL import Image

from .errors import OCRUnavailableError
from .imaging import as_raster
from .models import OCRConfig

logger = logging.getLogger(__name__)


class OCREngine:
    """Thin wrapper around the Tesseract command line engine."""

    def __init__(self, config: Optional[OCRConfig] = None, tesseract_cmd: Optional[str] = None):
        """Initialize the OCR engine.

        Args:
            config: Recognition settings, defaults to the bill configuration
            tesseract_cmd: Explicit path to the tesseract binary
        """
        self.config = config or OCRConfig()
        self.logger = logger
        self._available: Optional[bool] = None

        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    def is_available(self) -> bool:
        """Check whether Tesseract can be started. The result is cached."""
        if self._available is None:
            try:
                version = pytesseract.get_tesseract_version()
                self._available = True
                self.logger.info(f"Tesseract OCR {version} is available")
            except (pytesseract.TesseractNotFoundError, OSError) as e:
                self._available = False
                self.logger.warning(f"Tesseract OCR not available: {e}")
        return self._available

    def recognize(self, image: np.ndarray) -> str:
        """Recognize text in a normalized raster.

        Args:
            image: Binarized RGB raster

        Returns:
            Recognized text, possibly empty

        Raises:
            OCRUnavailableError: If Tesseract is not installed
        """
        if not self.is_available():
            raise OCRUnavailableError("OCR not available - Tesseract not installed")

        pil_image = Image.fromarray(as_raster(image))

        try:
            text = pytesseract.image_to_string(
                pil_image,
                lang=self.config.language,
                config=self.config.to_tesseract_args()
            )
        except pytesseract.TesseractNotFoundError as e:
            self._available = False
            raise OCRUnavailableError(str(e)) from e

        self.logger.info(f"OCR completed, {len(text)} characters recognized")
        return text
