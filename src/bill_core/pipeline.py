"""
End-to-end bill processing.
Routes uploaded files through decoding, normalization, OCR and field extraction.
"""

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Tuple

import fitz  # PyMuPDF
import numpy as np

from .config import Settings, get_settings
from .errors import BillScanError, DecodeError, UnsupportedFileError
from .extraction import FieldExtractor
from .imaging import ImageNormalizer, decode_image, encode_png
from .models import ExtractionResult, OCRConfig, ProcessingResult
from .ocr import OCREngine

logger = logging.getLogger(__name__)

# progress(stage, fraction) with fraction in [0, 1]
ProgressCallback = Callable[[str, float], None]


class BillProcessor:
    """Handles bill files from upload to structured fields."""

    # Supported file extensions
    SUPPORTED_EXTENSIONS = {'.png', '.jpg', '.jpeg', '.bmp', '.tiff', '.tif', '.webp', '.pdf'}

    def __init__(
        self,
        settings: Optional[Settings] = None,
        normalizer: Optional[ImageNormalizer] = None,
        extractor: Optional[FieldExtractor] = None,
        ocr_engine: Optional[OCREngine] = None
    ):
        """Initialize the bill processor.

        Args:
            settings: Application settings, defaults to the environment
            normalizer: Image normalizer
            extractor: Field extractor
            ocr_engine: OCR engine, built from settings when omitted
        """
        self.settings = settings or get_settings()
        self.logger = logger
        self.normalizer = normalizer or ImageNormalizer()
        self.extractor = extractor or FieldExtractor()
        self.ocr_engine = ocr_engine or OCREngine(
            OCRConfig(language=self.settings.ocr_language),
            tesseract_cmd=self.settings.tesseract_cmd
        )

    def validate_file(self, filename: str, size: int) -> None:
        """Reject files with an unsupported type or size.

        Args:
            filename: Original filename
            size: File size in bytes

        Raises:
            UnsupportedFileError: If the file cannot be processed
        """
        suffix = Path(filename).suffix.lower()
        if suffix not in self.SUPPORTED_EXTENSIONS:
            raise UnsupportedFileError(f"Unsupported file type: {suffix or filename}")
        if size == 0:
            raise UnsupportedFileError("File is empty")
        if size > self.settings.max_upload_bytes:
            raise UnsupportedFileError(
                f"File is too large ({size / (1024 * 1024):.1f} MB, "
                f"max. {self.settings.max_upload_mb:g} MB)"
            )

    def process_text(self, text: str) -> ExtractionResult:
        """Extract fields from already recognized text."""
        return self.extractor.extract(text)

    def process_image(self, image: np.ndarray, progress: Optional[ProgressCallback] = None) -> ExtractionResult:
        """Normalize a raster, run OCR and extract fields.

        Args:
            image: Decoded RGB raster
            progress: Optional stage callback

        Returns:
            ExtractionResult for the recognized text

        Raises:
            DecodeError: If the raster is malformed
            OCRUnavailableError: If Tesseract is not installed
        """
        _, result = self._recognize(image, progress)
        return result

    def process_file(
        self,
        file_content: bytes,
        filename: str,
        progress: Optional[ProgressCallback] = None
    ) -> ProcessingResult:
        """Process an uploaded file and extract bill data.

        Errors are reported in the returned result rather than raised.

        Args:
            file_content: Raw file content as bytes
            filename: Original filename
            progress: Optional stage callback

        Returns:
            ProcessingResult with extraction results
        """
        start_time = datetime.now()

        try:
            self.validate_file(filename, len(file_content))

            if Path(filename).suffix.lower() == '.pdf':
                result = self._process_pdf(file_content, filename, progress)
            else:
                result = self._process_encoded_image(file_content, filename, progress)

        except BillScanError as e:
            self.logger.error(f"Failed to process file {filename}: {e}")
            result = ProcessingResult(success=False, filename=filename, errors=[str(e)])

        except Exception as e:
            self.logger.exception(f"Unexpected error processing file {filename}")
            result = ProcessingResult(
                success=False,
                filename=filename,
                errors=[f"Processing failed: {e}"]
            )

        result.processing_time = (datetime.now() - start_time).total_seconds()
        self.logger.info(f"Processed {filename} in {result.processing_time:.2f} seconds")
        return result

    async def process_file_async(
        self,
        file_content: bytes,
        filename: str,
        progress: Optional[ProgressCallback] = None
    ) -> ProcessingResult:
        """Run :meth:`process_file` in a worker thread.

        Progress callbacks are scheduled on the calling event loop, so they run
        on the loop thread, not on the worker. Cancelling the awaiting task
        abandons the result; the OCR subprocess itself runs to completion.
        """
        loop = asyncio.get_running_loop()

        def report_on_loop(stage: str, fraction: float) -> None:
            loop.call_soon_threadsafe(progress, stage, fraction)

        return await asyncio.to_thread(
            self.process_file, file_content, filename,
            report_on_loop if progress is not None else None
        )

    def _process_encoded_image(
        self,
        file_content: bytes,
        filename: str,
        progress: Optional[ProgressCallback]
    ) -> ProcessingResult:
        image = decode_image(file_content)
        normalized, extraction = self._recognize(image, progress)
        return self._build_result(
            extraction, filename, source="ocr", normalized_image=encode_png(normalized)
        )

    def _recognize(
        self,
        image: np.ndarray,
        progress: Optional[ProgressCallback]
    ) -> Tuple[np.ndarray, ExtractionResult]:
        self._report(progress, "normalizing", 0.0)
        normalized = self.normalizer.normalize(image)

        self._report(progress, "recognizing", 0.25)
        text = self.ocr_engine.recognize(normalized)

        self._report(progress, "extracting", 0.9)
        result = self.extractor.extract(text)

        self._report(progress, "done", 1.0)
        return normalized, result

    def _process_pdf(
        self,
        file_content: bytes,
        filename: str,
        progress: Optional[ProgressCallback]
    ) -> ProcessingResult:
        """Use the PDF text layer when present, otherwise OCR the first page."""
        try:
            pdf_document = fitz.open(stream=file_content, filetype="pdf")
        except (fitz.FileDataError, RuntimeError, ValueError) as e:
            raise DecodeError(f"Could not open PDF: {e}") from e

        try:
            if pdf_document.page_count == 0:
                raise DecodeError("PDF file is empty")

            # Bills are usually single page
            page = pdf_document[0]
            text = page.get_text()

            if text.strip():
                self._report(progress, "extracting", 0.9)
                extraction = self.extractor.extract(text)
                self._report(progress, "done", 1.0)
                return self._build_result(extraction, filename, source="pdf_text")

            self.logger.info("No text layer found in PDF, rendering first page for OCR")
            scale = self.settings.pdf_render_scale
            pixmap = page.get_pixmap(matrix=fitz.Matrix(scale, scale))
            image_data = pixmap.tobytes("png")
        finally:
            pdf_document.close()

        return self._process_encoded_image(image_data, filename, progress)

    def _build_result(
        self,
        extraction: ExtractionResult,
        filename: str,
        source: str,
        normalized_image: Optional[bytes] = None
    ) -> ProcessingResult:
        warnings = []
        if not extraction.full_text.strip():
            warnings.append("No text could be recognized")
        for field in ('merchant', 'date', 'total'):
            if getattr(extraction, field) is None:
                warnings.append(f"No {field} found")

        return ProcessingResult(
            success=True,
            result=extraction,
            filename=filename,
            source=source,
            warnings=warnings,
            normalized_image=normalized_image
        )

    def _report(self, progress: Optional[ProgressCallback], stage: str, fraction: float) -> None:
        self.logger.debug(f"Stage {stage} ({fraction:.0%})")
        if progress is not None:
            progress(stage, fraction)
