"""
Structured field extraction from OCR text of bills and receipts.
Pattern-based date, total and merchant recognition over noisy, unstructured text.
"""

import re
import logging
from decimal import Decimal, InvalidOperation
from typing import Optional, List, Tuple, Pattern

from .models import ExtractionResult

logger = logging.getLogger(__name__)

MONTH_NAMES = (
    r'(?:Jan(?:uary)?|Feb(?:ruary)?|Mar(?:ch)?|Apr(?:il)?|May|Jun(?:e)?|Jul(?:y)?|'
    r'Aug(?:ust)?|Sep(?:t(?:ember)?)?|Oct(?:ober)?|Nov(?:ember)?|Dec(?:ember)?)'
)

CURRENCY = r'[\$€£]'
# Grouped thousands (1,234.56) first; the guard stops a match inside a date or a longer number
AMOUNT_GUARD = r'(?![\d/.\-]*\d)'
AMOUNT = rf'(\d{{1,3}}(?:,\d{{3}})+(?:\.\d{{1,2}})?|\d+(?:[.,]\d{{1,2}})?){AMOUNT_GUARD}'
GROUPED_AMOUNT = re.compile(r'\d{1,3}(?:,\d{3})+(?:\.\d{1,2})?')


class FieldExtractor:
    """Extracts date, total and merchant from recognized bill text."""

    # Tried in order, first family with a match wins
    DATE_PATTERNS = [
        re.compile(r'\b\d{1,2}[/.\-]\d{1,2}[/.\-]\d{2,4}\b'),  # MM/DD/YYYY, DD.MM.YY
        re.compile(rf'\b{MONTH_NAMES}\.?\s+\d{{1,2}}(?:st|nd|rd|th)?,?\s+\d{{4}}\b', re.IGNORECASE),  # January 5th, 2023
        re.compile(r'\b\d{4}[/.\-]\d{1,2}[/.\-]\d{1,2}\b'),  # YYYY-MM-DD
    ]

    # Runs per line on the uncollapsed text so that double spaces still end the value
    DATE_KEYWORD_PATTERN = re.compile(
        r'\b(?:(?:invoice|transaction|purchase)[ \t]+)?date\b[ \t]*:?[ \t]*'
        r'(?P<value>\S.*?)(?=[ \t]{2,}|[ \t]*$)',
        re.IGNORECASE | re.MULTILINE
    )

    # Labeled totals, most specific first
    TOTAL_PATTERNS = [
        re.compile(
            rf'\b(?:total\s+amount|grand\s+total|amount\s+due|balance\s+due|total\s+due|total\s+to\s+pay)\b'
            rf'\s*:?\s*{CURRENCY}?\s*{AMOUNT}',
            re.IGNORECASE
        ),
        re.compile(
            rf'\b(?:total|amount|due|balance|sum|charge)\b(?:\s*:|\s*due|\s*payment)?\s*{CURRENCY}?\s*{AMOUNT}',
            re.IGNORECASE
        ),
        re.compile(rf'{CURRENCY}\s*{AMOUNT}\s*(?:total|amount|due|balance)\b', re.IGNORECASE),
    ]

    CURRENCY_AMOUNT_PATTERN = re.compile(
        rf'{CURRENCY}\s*(\d{{1,3}}(?:,\d{{3}})+(?:\.\d{{1,2}})?|\d+[.,]\d{{1,2}}){AMOUNT_GUARD}'
    )

    # Amounts at or above this are account or reference numbers, not totals
    MAX_PLAUSIBLE_TOTAL = Decimal('100000')

    MERCHANT_LABEL_PATTERN = re.compile(
        r'\b(?:'
        r'(?:merchant|vendor|store|business|retailer|seller|company)(?:\s+name)?\s*[:\-]'
        r'|(?:invoice\s+from|receipt\s+from|sold\s+by)\s*:?'
        r')\s*(?P<name>[A-Za-z0-9&,.\'\- ]+)',
        re.IGNORECASE
    )

    # Receipts print the merchant at the top
    MERCHANT_HEADER_LINES = 6

    MERCHANT_EXCLUDE_PATTERNS = [
        re.compile(r'\d{1,2}[/.\-]\d{1,2}[/.\-]\d{2,4}'),  # dates
        re.compile(rf'{MONTH_NAMES}\.?\s+\d{{1,2}}(?:st|nd|rd|th)?,?\s+\d{{4}}', re.IGNORECASE),
        re.compile(rf'{CURRENCY}\s*\d+[.,]\d{{2}}'),  # amounts
        re.compile(
            r'^\d+\s+[A-Za-z]+\s+(?:street|st|avenue|ave|road|rd|boulevard|blvd|lane|ln|drive|dr|'
            r'way|court|ct|place|pl|highway|hwy)\b',
            re.IGNORECASE
        ),  # street addresses
        re.compile(r'^(?:tel|phone|fax|www|http)', re.IGNORECASE),  # contact info
    ]

    def __init__(self):
        """Initialize the field extractor."""
        self.logger = logger

    def extract(self, text: str) -> ExtractionResult:
        """Extract structured fields from OCR text.

        Missing fields are left unset; this never fails for string input.

        Args:
            text: Raw recognized text, possibly empty

        Returns:
            ExtractionResult carrying the text verbatim
        """
        result = ExtractionResult(
            full_text=text,
            date=self.extract_date(text),
            total=self.extract_total(text),
            merchant=self.extract_merchant(text)
        )

        self.logger.debug(
            f"Extracted date={result.date!r} total={result.total!r} merchant={result.merchant!r}"
        )
        return result

    def extract_date(self, text: str) -> Optional[str]:
        """Return the first date literal found, unmodified.

        Args:
            text: Raw text content

        Returns:
            Matched date substring or None
        """
        collapsed = re.sub(r'\s+', ' ', text)

        for pattern in self.DATE_PATTERNS:
            match = pattern.search(collapsed)
            if match:
                return match.group(0)

        for match in self.DATE_KEYWORD_PATTERN.finditer(text):
            value = match.group('value').strip()
            if re.search(r'\d', value) and re.search(r'[/.\-]', value):
                return value

        return None

    def extract_total(self, text: str) -> Optional[str]:
        """Return the bill total as a decimal string.

        Labeled totals are tried first; otherwise the largest plausible
        currency amount in the text is used.

        Args:
            text: Raw text content

        Returns:
            Total with '.' as decimal separator, or None
        """
        labeled = self._extract_labeled_total(text)
        if labeled is not None:
            return labeled

        return self._extract_largest_amount(text)

    def _extract_labeled_total(self, text: str) -> Optional[str]:
        for pattern in self.TOTAL_PATTERNS:
            for match in pattern.finditer(text):
                amount_str = self._normalize_amount(match.group(1))
                value = self._parse_amount(amount_str)
                if value is not None and value > 0:
                    return amount_str
        return None

    def _extract_largest_amount(self, text: str) -> Optional[str]:
        amounts = []

        for match in self.CURRENCY_AMOUNT_PATTERN.finditer(text):
            value = self._parse_amount(self._normalize_amount(match.group(1)))
            if value is None or value <= 0:
                continue
            if value >= self.MAX_PLAUSIBLE_TOTAL:
                self.logger.debug(f"Ignoring implausible amount {value}")
                continue
            amounts.append(value)

        if not amounts:
            return None

        amounts.sort(reverse=True)
        return f"{amounts[0]:.2f}"

    @staticmethod
    def _normalize_amount(amount_str: str) -> str:
        """Drop thousands separators, otherwise read ',' as the decimal point."""
        if GROUPED_AMOUNT.fullmatch(amount_str):
            return amount_str.replace(',', '')
        return amount_str.replace(',', '.')

    @staticmethod
    def _parse_amount(amount_str: str) -> Optional[Decimal]:
        try:
            value = Decimal(amount_str)
        except InvalidOperation:
            return None
        return value if value.is_finite() else None

    def extract_merchant(self, text: str) -> Optional[str]:
        """Return the merchant name line.

        An explicit label anywhere in the text wins; otherwise the best scoring
        header line is used.

        Args:
            text: Raw text content

        Returns:
            Merchant name or None
        """
        lines = [line.strip() for line in text.splitlines() if line.strip()]

        labeled = self._extract_labeled_merchant(lines)
        if labeled:
            return labeled

        return self._extract_header_merchant(lines[:self.MERCHANT_HEADER_LINES])

    def _extract_labeled_merchant(self, lines: List[str]) -> Optional[str]:
        for line in lines:
            if len(line) <= 2:
                continue
            match = self.MERCHANT_LABEL_PATTERN.search(line)
            if match:
                name = match.group('name').strip()
                if len(name) > 2:
                    return name
        return None

    def _extract_header_merchant(self, lines: List[str]) -> Optional[str]:
        candidates: List[Tuple[int, str]] = []

        for line in lines:
            if self._matches_any(line, self.MERCHANT_EXCLUDE_PATTERNS):
                continue
            candidates.append((self._score_merchant_line(line), line))

        if not candidates:
            return None

        # sorted() is stable, so equal scores keep line order
        ranked = sorted(candidates, key=lambda item: item[0], reverse=True)
        return ranked[0][1]

    @staticmethod
    def _matches_any(line: str, patterns: List[Pattern]) -> bool:
        return any(pattern.search(line) for pattern in patterns)

    @staticmethod
    def _score_merchant_line(line: str) -> int:
        """Heuristic score for a header line being the merchant name."""
        score = 0
        if line.isupper():
            score += 4
        if re.match(r'[A-Z][a-z]', line):
            score += 3
        if len(line) > 7:
            score += 2
        if len(line) < 30:
            score += 1
        if re.search(r'\d{3,}', line):
            score -= 3
        return score


_default_extractor = FieldExtractor()


def extract(text: str) -> ExtractionResult:
    """Extract bill fields with the default extractor."""
    return _default_extractor.extract(text)
