"""
Core functionality modules for bill scanning.
"""

from .models import ExtractionResult, OCRConfig, ProcessingResult
from .errors import BillScanError, DecodeError, UnsupportedFileError, OCRUnavailableError
from .imaging import ImageNormalizer, normalize, decode_image, encode_png
from .extraction import FieldExtractor, extract
from .ocr import OCREngine
from .pipeline import BillProcessor

__all__ = [
    'ExtractionResult',
    'OCRConfig',
    'ProcessingResult',
    'BillScanError',
    'DecodeError',
    'UnsupportedFileError',
    'OCRUnavailableError',
    'ImageNormalizer',
    'normalize',
    'decode_image',
    'encode_png',
    'FieldExtractor',
    'extract',
    'OCREngine',
    'BillProcessor'
]
