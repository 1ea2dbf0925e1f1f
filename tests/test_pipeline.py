"""
Unit tests for the bill processing pipeline and OCR adapter.
Tests file validation, routing, PDF handling and progress reporting.
"""

import asyncio
import io
import shlex
import threading

import numpy as np
import pytest
import pytesseract
from unittest.mock import Mock, patch
from PIL import Image

from bill_core.config import Settings
from bill_core.errors import OCRUnavailableError, UnsupportedFileError
from bill_core.imaging import decode_image
from bill_core.models import OCRConfig, ProcessingResult, OCR_CHAR_WHITELIST
from bill_core.ocr import OCREngine
from bill_core.pipeline import BillProcessor


@pytest.fixture
def settings():
    """Settings isolated from the environment."""
    return Settings(_env_file=None, tesseract_cmd=None, max_upload_mb=1, log_file=None)


@pytest.fixture
def sample_bill_text():
    """Sample OCR output for testing extraction."""
    return (
        "RIVERSIDE CAFE\n"
        "Tel 555 0100\n"
        "Date: 01/15/2024\n"
        "Latte                $4.85\n"
        "Muffin               $2.95\n"
        "Total:               $7.80\n"
    )


@pytest.fixture
def ocr_engine(sample_bill_text):
    """OCR engine double returning the sample text."""
    engine = Mock(spec=OCREngine)
    engine.recognize.return_value = sample_bill_text
    engine.is_available.return_value = True
    return engine


@pytest.fixture
def processor(settings, ocr_engine):
    """Create BillProcessor instance for testing."""
    return BillProcessor(settings=settings, ocr_engine=ocr_engine)


@pytest.fixture
def sample_image_content():
    """A small PNG as bytes."""
    image = Image.new("RGB", (40, 30), (230, 230, 230))
    for x in range(5, 35):
        image.putpixel((x, 15), (20, 20, 20))
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


class TestBillProcessor:
    """Test cases for BillProcessor class."""

    def test_supported_extensions(self, processor):
        """Test supported file extensions."""
        expected_extensions = {'.png', '.jpg', '.jpeg', '.bmp', '.tiff', '.tif', '.webp', '.pdf'}
        assert processor.SUPPORTED_EXTENSIONS == expected_extensions

    def test_validate_file_valid(self, processor):
        """Test file validation with valid files."""
        for filename in ["bill.png", "scan.JPG", "photo.jpeg", "doc.pdf", "img.tif"]:
            processor.validate_file(filename, 1024)

    def test_validate_file_invalid_extension(self, processor):
        """Test file validation with invalid extensions."""
        for filename in ["document.doc", "text.txt", "archive.zip", "noextension"]:
            with pytest.raises(UnsupportedFileError) as exc_info:
                processor.validate_file(filename, 1024)
            assert "Unsupported file type" in str(exc_info.value)

    def test_validate_file_size(self, processor):
        """Test empty and oversized files are rejected."""
        with pytest.raises(UnsupportedFileError, match="empty"):
            processor.validate_file("bill.png", 0)

        with pytest.raises(UnsupportedFileError, match="too large"):
            processor.validate_file("bill.png", 2 * 1024 * 1024)

    def test_process_text(self, processor, sample_bill_text):
        """Test extraction from already recognized text."""
        result = processor.process_text(sample_bill_text)

        assert result.merchant == "RIVERSIDE CAFE"
        assert result.date == "01/15/2024"
        assert result.total == "7.80"

    def test_process_image_pipeline(self, processor, ocr_engine, sample_bill_text):
        """Test normalize, OCR and extraction run in order."""
        image = np.full((20, 20, 3), 200, dtype=np.uint8)
        image[5:8, 2:18] = 10
        stages = []

        result = processor.process_image(image, progress=lambda stage, fraction: stages.append((stage, fraction)))

        normalized = ocr_engine.recognize.call_args[0][0]
        assert set(np.unique(normalized).tolist()) <= {0, 255}
        assert result.full_text == sample_bill_text
        assert [stage for stage, _ in stages] == ["normalizing", "recognizing", "extracting", "done"]
        assert stages[-1][1] == 1.0

    def test_process_file_image(self, processor, sample_image_content):
        """Test successful image processing."""
        result = processor.process_file(sample_image_content, "bill.png")

        assert result.success is True
        assert result.source == "ocr"
        assert result.filename == "bill.png"
        assert result.result.total == "7.80"
        assert result.errors == []

    def test_process_file_keeps_normalized_image(self, processor, ocr_engine, sample_image_content):
        """Test the binarized raster sent to OCR is returned as PNG."""
        result = processor.process_file(sample_image_content, "bill.png")

        preview = decode_image(result.normalized_image)
        assert preview.shape == (30, 40, 3)
        assert set(np.unique(preview).tolist()) <= {0, 255}
        assert np.array_equal(preview, ocr_engine.recognize.call_args[0][0])

    def test_process_file_partial_fields_warn(self, processor, ocr_engine, sample_image_content):
        """Test missing fields produce warnings, not failure."""
        ocr_engine.recognize.return_value = "thank you"

        result = processor.process_file(sample_image_content, "bill.png")

        assert result.success is True
        assert result.result.full_text == "thank you"
        assert "No date found" in result.warnings
        assert "No total found" in result.warnings

    def test_process_file_empty_text_warns(self, processor, ocr_engine, sample_image_content):
        """Test empty OCR output is reported as a warning."""
        ocr_engine.recognize.return_value = ""

        result = processor.process_file(sample_image_content, "bill.png")

        assert result.success is True
        assert "No text could be recognized" in result.warnings

    def test_process_file_unsupported_format(self, processor):
        """Test processing unsupported file format."""
        result = processor.process_file(b"content", "document.docx")

        assert result.success is False
        assert "Unsupported file type" in result.errors[0]

    def test_process_file_undecodable_image(self, processor, ocr_engine):
        """Test corrupt image bytes fail with a decode error."""
        result = processor.process_file(b"\x89PNG\r\n\x1a\n mock image content", "bill.png")

        assert result.success is False
        assert "Could not decode image" in result.errors[0]
        ocr_engine.recognize.assert_not_called()

    def test_process_file_ocr_unavailable(self, processor, ocr_engine, sample_image_content):
        """Test a missing Tesseract install is reported."""
        ocr_engine.recognize.side_effect = OCRUnavailableError("OCR not available - Tesseract not installed")

        result = processor.process_file(sample_image_content, "bill.png")

        assert result.success is False
        assert "OCR not available" in result.errors[0]

    def test_process_file_unexpected_error(self, processor, ocr_engine, sample_image_content):
        """Test unexpected OCR failures are reported, not raised."""
        ocr_engine.recognize.side_effect = RuntimeError("engine crashed")

        result = processor.process_file(sample_image_content, "bill.png")

        assert result.success is False
        assert "Processing failed: engine crashed" in result.errors[0]

    def test_process_file_timing(self, processor, sample_image_content):
        """Test that processing time is recorded."""
        result = processor.process_file(sample_image_content, "bill.png")

        assert result.processing_time is not None
        assert result.processing_time >= 0

    def test_process_file_pdf_routing(self, processor):
        """Test file processing routes PDF to PDF processor."""
        with patch.object(processor, '_process_pdf') as mock_process_pdf:
            mock_process_pdf.return_value = ProcessingResult(success=True)

            processor.process_file(b"pdf content", "bill.pdf")

            mock_process_pdf.assert_called_once_with(b"pdf content", "bill.pdf", None)

    @patch('fitz.open')
    def test_process_pdf_text_layer(self, mock_fitz_open, processor, ocr_engine, sample_bill_text):
        """Test PDFs with a text layer skip OCR."""
        mock_page = Mock()
        mock_page.get_text.return_value = sample_bill_text

        mock_doc = Mock()
        mock_doc.page_count = 1
        mock_doc.__getitem__ = Mock(return_value=mock_page)
        mock_fitz_open.return_value = mock_doc

        result = processor.process_file(b"mock pdf content", "bill.pdf")

        assert result.success is True
        assert result.source == "pdf_text"
        assert result.result.merchant == "RIVERSIDE CAFE"
        assert result.normalized_image is None
        ocr_engine.recognize.assert_not_called()
        mock_doc.close.assert_called_once()

    @patch('fitz.open')
    def test_process_pdf_empty(self, mock_fitz_open, processor):
        """Test PDF processing with empty document."""
        mock_doc = Mock()
        mock_doc.page_count = 0
        mock_fitz_open.return_value = mock_doc

        result = processor.process_file(b"mock pdf content", "bill.pdf")

        assert result.success is False
        assert "PDF file is empty" in result.errors
        mock_doc.close.assert_called_once()

    @patch('fitz.open')
    def test_process_pdf_scanned_fallback(self, mock_fitz_open, processor, sample_image_content):
        """Test PDFs without text are rendered and OCRed."""
        mock_page = Mock()
        mock_page.get_text.return_value = "  \n"
        mock_page.get_pixmap.return_value.tobytes.return_value = sample_image_content

        mock_doc = Mock()
        mock_doc.page_count = 1
        mock_doc.__getitem__ = Mock(return_value=mock_page)
        mock_fitz_open.return_value = mock_doc

        result = processor.process_file(b"mock pdf content", "scan.pdf")

        assert result.success is True
        assert result.source == "ocr"
        assert result.result.total == "7.80"
        mock_page.get_pixmap.assert_called_once()

    def test_process_file_async(self, processor, sample_image_content):
        """Test the async wrapper returns the same result."""
        stages = []

        result = asyncio.run(
            processor.process_file_async(
                sample_image_content, "bill.png",
                progress=lambda stage, fraction: stages.append(stage)
            )
        )

        assert result.success is True
        assert result.result.merchant == "RIVERSIDE CAFE"
        assert stages[-1] == "done"

    def test_process_file_async_reports_on_loop_thread(self, processor, sample_image_content):
        """Test progress callbacks run on the event loop thread, not the worker."""
        calls = []

        async def run():
            loop_thread = threading.get_ident()
            result = await processor.process_file_async(
                sample_image_content, "bill.png",
                progress=lambda stage, fraction: calls.append((stage, threading.get_ident()))
            )
            return loop_thread, result

        loop_thread, result = asyncio.run(run())

        assert result.success is True
        assert [stage for stage, _ in calls] == ["normalizing", "recognizing", "extracting", "done"]
        assert all(thread == loop_thread for _, thread in calls)

    def test_process_file_async_without_progress(self, processor, sample_image_content):
        """Test the async wrapper works without a callback."""
        result = asyncio.run(processor.process_file_async(sample_image_content, "bill.png"))

        assert result.success is True


class TestOCREngine:
    """Test cases for the Tesseract adapter."""

    @pytest.fixture
    def binary_image(self):
        """A normalized raster."""
        image = np.full((20, 30, 3), 255, dtype=np.uint8)
        image[8:12, 3:27] = 0
        return image

    @patch('pytesseract.get_tesseract_version')
    def test_is_available(self, mock_version):
        """Test availability probing is cached."""
        mock_version.return_value = "5.3.0"
        engine = OCREngine()

        assert engine.is_available() is True
        assert engine.is_available() is True
        mock_version.assert_called_once()

    @patch('pytesseract.get_tesseract_version')
    def test_not_available(self, mock_version, binary_image):
        """Test recognition fails cleanly without Tesseract."""
        mock_version.side_effect = pytesseract.TesseractNotFoundError()
        engine = OCREngine()

        assert engine.is_available() is False
        with pytest.raises(OCRUnavailableError):
            engine.recognize(binary_image)

    @patch('pytesseract.image_to_string')
    @patch('pytesseract.get_tesseract_version')
    def test_recognize_uses_bill_config(self, mock_version, mock_image_to_string, binary_image):
        """Test Tesseract runs with the fixed bill configuration."""
        mock_version.return_value = "5.3.0"
        mock_image_to_string.return_value = "Total: $1.00"
        engine = OCREngine()

        text = engine.recognize(binary_image)

        assert text == "Total: $1.00"
        args, kwargs = mock_image_to_string.call_args
        assert isinstance(args[0], Image.Image)
        assert args[0].size == (30, 20)
        assert kwargs['lang'] == "eng"
        config_args = shlex.split(kwargs['config'])
        assert "--psm" in config_args and "6" in config_args
        assert "--oem" in config_args and "1" in config_args
        assert f"tessedit_char_whitelist={OCR_CHAR_WHITELIST}" in config_args

    @patch('pytesseract.image_to_string')
    @patch('pytesseract.get_tesseract_version')
    def test_recognize_custom_language(self, mock_version, mock_image_to_string, binary_image):
        """Test the configured language is passed through."""
        mock_version.return_value = "5.3.0"
        mock_image_to_string.return_value = ""
        engine = OCREngine(OCRConfig(language="deu"))

        engine.recognize(binary_image)

        assert mock_image_to_string.call_args[1]['lang'] == "deu"
