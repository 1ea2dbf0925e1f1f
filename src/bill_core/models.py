"""
Data models using Pydantic for bill scanning.
Provides validation and type checking for extraction results and OCR settings.
"""

import re
import shlex
from decimal import Decimal, InvalidOperation
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, field_validator

# Characters Tesseract is allowed to emit. The extraction patterns assume this alphabet.
OCR_CHAR_WHITELIST = (
    "0123456789"
    "abcdefghijklmnopqrstuvwxyz"
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    "$,.:/\\-& "
)


class ExtractionResult(BaseModel):
    """Structured fields recognized on a single bill."""

    full_text: str = Field(..., alias="fullText", description="Verbatim OCR text")
    date: Optional[str] = Field(None, description="First matched date literal, unnormalized")
    total: Optional[str] = Field(None, description="Total amount as a decimal string")
    merchant: Optional[str] = Field(None, description="Merchant name (single line)")

    @field_validator('total')
    @classmethod
    def validate_total(cls, v):
        """Total must be a positive decimal using '.' as separator."""
        if v is None:
            return v
        if ',' in v:
            raise ValueError('Total must use "." as decimal separator')
        try:
            value = Decimal(v)
        except InvalidOperation:
            raise ValueError(f'Total is not a decimal number: {v!r}')
        if not value.is_finite() or value <= 0:
            raise ValueError('Total must be positive')
        return v

    @field_validator('merchant')
    @classmethod
    def validate_merchant(cls, v):
        """Merchant is a single trimmed line."""
        if v is None:
            return v
        cleaned = v.strip()
        if not cleaned:
            raise ValueError('Merchant name cannot be empty')
        if '\n' in cleaned or '\r' in cleaned:
            raise ValueError('Merchant name must be a single line')
        return cleaned

    @property
    def has_fields(self) -> bool:
        """Whether any structured field was recognized."""
        return any(value is not None for value in (self.date, self.total, self.merchant))

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the four-field wire object."""
        return self.model_dump(by_alias=True)

    model_config = {
        "frozen": True,
        "populate_by_name": True,
        "json_schema_extra": {
            "example": {
                "fullText": "ACME HARDWARE\n123 Main Street\n03/14/2024\nTotal: $11.00",
                "date": "03/14/2024",
                "total": "11.00",
                "merchant": "ACME HARDWARE"
            }
        }
    }


class OCRConfig(BaseModel):
    """Fixed Tesseract configuration used for bill recognition."""

    char_whitelist: str = Field(OCR_CHAR_WHITELIST, min_length=1)
    page_segmentation_mode: int = Field(6, ge=0, le=13, description="6 = single uniform block of text")
    engine_mode: int = Field(1, ge=0, le=3, description="1 = LSTM only")
    preserve_interword_spaces: bool = Field(True)
    language: str = Field("eng", min_length=1)

    @field_validator('language')
    @classmethod
    def validate_language(cls, v):
        """Only a single language pack is supported."""
        if not re.match(r'^[a-z_]{3,}$', v):
            raise ValueError('Language must be a single Tesseract language code (e.g., eng)')
        return v

    def to_tesseract_args(self) -> str:
        """Render the config string passed to pytesseract.

        The whitelist contains a space and a backslash, so it is shell-quoted;
        pytesseract splits the string with shlex.
        """
        whitelist = shlex.quote(f"tessedit_char_whitelist={self.char_whitelist}")
        parts = [
            f"--oem {self.engine_mode}",
            f"--psm {self.page_segmentation_mode}",
            f"-c {whitelist}",
            f"-c preserve_interword_spaces={int(self.preserve_interword_spaces)}",
        ]
        return " ".join(parts)

    model_config = {"frozen": True}


class ProcessingResult(BaseModel):
    """Model for file processing results."""

    success: bool = Field(..., description="Whether processing was successful")
    result: Optional[ExtractionResult] = Field(None, description="Extracted bill fields")
    filename: Optional[str] = Field(None, description="Original filename")
    source: Optional[str] = Field(None, description="'ocr' or 'pdf_text'")
    errors: List[str] = Field(default_factory=list, description="Processing errors")
    warnings: List[str] = Field(default_factory=list, description="Processing warnings")
    processing_time: Optional[float] = Field(None, description="Processing time in seconds")
    normalized_image: Optional[bytes] = Field(None, description="PNG of the binarized image sent to OCR")

    model_config = {
        "json_schema_extra": {
            "example": {
                "success": True,
                "result": {
                    "fullText": "Sold by: Riverside Cafe\nTotal: $8.65",
                    "date": None,
                    "total": "8.65",
                    "merchant": "Riverside Cafe"
                },
                "filename": "bill_001.jpg",
                "source": "ocr",
                "errors": [],
                "warnings": ["No date found"],
                "processing_time": 2.45
            }
        }
    }
