"""
Pattern-based extraction strategies for contract / purchase-order PDFs.

Each strategy is a self-contained recogniser for one document template:

    name               : label stored on the contract (extraction_strategy)
    applies(text)      : cheap marker check
    extract(text)      : field-by-field regex extraction with self-reported
                         confidence (template-specific patterns score higher
                         than the generic fallback)

Strategies share small parsing helpers but never each other's results.
Priority order lives in DEFAULT_STRATEGIES; see contract_extraction.py.
"""

import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional

# ---------- Result ----------


@dataclass
class ExtractionResult:
    strategy: str
    po_number: Optional[str] = None
    vendor_name: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    contract_value: Optional[Decimal] = None
    description: Optional[str] = None
    confidence: float = 0.0
    raw_text: Optional[str] = None

    def add_confidence(self, amount: float) -> None:
        self.confidence = round(min(1.0, self.confidence + amount), 2)

    def to_payload(self) -> dict:
        """JSON-safe representation, stored as raw_extracted_data."""
        return {
            "strategy": self.strategy,
            "confidence": self.confidence,
            "po_number": self.po_number,
            "vendor_name": self.vendor_name,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "contract_value": str(self.contract_value) if self.contract_value is not None else None,
            "description": self.description,
            "raw_text": self.raw_text,
        }


# ---------- Shared parsing helpers ----------

MONTHS = {
    "januari": 1, "january": 1, "jan": 1,
    "februari": 2, "february": 2, "feb": 2, "pebruari": 2,
    "maret": 3, "march": 3, "mar": 3,
    "april": 4, "apr": 4,
    "mei": 5, "may": 5,
    "juni": 6, "june": 6, "jun": 6,
    "juli": 7, "july": 7, "jul": 7,
    "agustus": 8, "august": 8, "agu": 8, "agt": 8, "aug": 8,
    "september": 9, "sept": 9, "sep": 9,
    "oktober": 10, "october": 10, "okt": 10, "oct": 10,
    "november": 11, "nov": 11, "nop": 11,
    "desember": 12, "december": 12, "des": 12, "dec": 12,
}

# "1 November 2024", "31 Okt. 2025"
TEXT_DATE = r"\d{1,2}\s+[A-Za-z]+\.?\s+\d{4}"
_TEXT_DATE_PARTS = re.compile(r"(\d{1,2})\s+([A-Za-z]+)\.?\s+(\d{4})")

# PO identifiers must contain at least one digit so labels like "No" are never captured
PO_VALUE = r"((?=[A-Z0-9\-/]*\d)[A-Z0-9][A-Z0-9\-/]*)"

_VENDOR_PREFIX_RE = re.compile(r"(?:PT\.|CV\.)\s*([A-Za-z\s.]+?)(?:\n|,|$)", re.IGNORECASE)
_VALUE_RE = re.compile(
    r"(?:Nilai\s+Kontrak|Contract\s+Value|Total\s+Amount|Total)\s*[:.]?\s*"
    r"(?:Rp\.?|IDR|USD|US\$|\$)?\s*(\d[\d.,]*)",
    re.IGNORECASE,
)
_MAX_CONTRACT_VALUE = Decimal("9999999999999.99")  # Numeric(15, 2)


def parse_text_date(raw: str) -> Optional[date]:
    """Parse day-month-year with an English or Indonesian month name."""
    match = _TEXT_DATE_PARTS.search(raw or "")
    if not match:
        return None
    day, month_name, year = match.groups()
    month = MONTHS.get(month_name.lower())
    if month is None:
        return None
    try:
        return date(int(year), month, int(day))
    except ValueError:
        return None


def parse_amount(raw: str) -> Optional[Decimal]:
    """Parse '1.234.567,89' (Indonesian) or '1,234,567.89' (English) notation."""
    raw = (raw or "").strip().rstrip(".,")
    if not raw:
        return None

    if "." in raw and "," in raw:
        decimal_sep = "," if raw.rfind(",") > raw.rfind(".") else "."
        thousands_sep = "." if decimal_sep == "," else ","
        normalized = raw.replace(thousands_sep, "").replace(decimal_sep, ".")
    elif "." in raw or "," in raw:
        sep = "." if "." in raw else ","
        head, _, tail = raw.rpartition(sep)
        if raw.count(sep) > 1 or len(tail) == 3:
            normalized = raw.replace(sep, "")
        else:
            normalized = f"{head.replace(sep, '')}.{tail}"
    else:
        normalized = raw

    try:
        value = Decimal(normalized).quantize(Decimal("0.01"))
    except InvalidOperation:
        return None
    if value < 0 or value > _MAX_CONTRACT_VALUE:
        return None
    return value


def find_contract_value(text: str) -> Optional[Decimal]:
    match = _VALUE_RE.search(text)
    return parse_amount(match.group(1)) if match else None


def find_prefixed_vendor(text: str) -> Optional[str]:
    match = _VENDOR_PREFIX_RE.search(text)
    if not match:
        return None
    return match.group(1).strip() or None


def _search(pattern: str, text: str, flags: int = re.IGNORECASE) -> Optional[re.Match]:
    return re.search(pattern, text, flags)


# ---------- Strategies (priority order: most specific first) ----------


class AdobePatternStrategy:
    """Adobe licence POs: "Kontrak Purchase Order ... Periode: <from> - <to>"."""

    name = "ADOBE"

    def applies(self, text: str) -> bool:
        return (
            "Kontrak Purchase Order" in text
            or "Adobe" in text
            or _search(r"Periode\s*:", text) is not None
        )

    def extract(self, text: str) -> ExtractionResult:
        result = ExtractionResult(strategy=self.name)

        po = _search(
            r"(?:Kontrak\s+)?Purchase\s+Order\s*\(?PO\)?\s*(?:No\.?|Nomor|Number|#)?\s*[:.]?\s*" + PO_VALUE,
            text,
        )
        if po:
            result.po_number = po.group(1).strip()
            result.add_confidence(0.25)

        period = _search(
            rf"Periode\s*:\s*({TEXT_DATE})\s*(?:-|–|s\.?d\.?|sampai(?:\s+dengan)?)\s*({TEXT_DATE})",
            text,
        )
        if period:
            result.start_date = parse_text_date(period.group(1))
            result.end_date = parse_text_date(period.group(2))
            if result.start_date:
                result.add_confidence(0.25)
            if result.end_date:
                result.add_confidence(0.25)

        vendor = _search(r"(?:PT\.|CV\.|Vendor:?)\s*([A-Za-z\s.]+?)(?:\n|,|$)", text)
        if vendor and vendor.group(1).strip():
            result.vendor_name = vendor.group(1).strip()
            result.add_confidence(0.25)

        if "Adobe" in text:
            result.description = "Adobe Software License"

        result.contract_value = find_contract_value(text)
        return result


class AlliedPatternStrategy:
    """Allied POs: "NO. PO : P251580", "Start date : ...", "End Date : ..."."""

    name = "ALLIED"

    def applies(self, text: str) -> bool:
        return (
            "NO. PO" in text
            or "Allied" in text
            or _search(r"Start\s+date", text) is not None
        )

    def extract(self, text: str) -> ExtractionResult:
        result = ExtractionResult(strategy=self.name)

        po = _search(r"NO\.\s*PO\s*[:.]?\s*" + PO_VALUE, text)
        if po:
            result.po_number = po.group(1).strip()
            result.add_confidence(0.25)

        start = _search(rf"Start\s+date\s*[:.]?\s*({TEXT_DATE})", text)
        if start:
            result.start_date = parse_text_date(start.group(1))
            if result.start_date:
                result.add_confidence(0.25)

        end = _search(rf"End\s+Date\s*[:.]?\s*({TEXT_DATE})", text)
        if end:
            result.end_date = parse_text_date(end.group(1))
            if result.end_date:
                result.add_confidence(0.25)

        if "Allied" in text:
            result.vendor_name = "Allied"
            result.add_confidence(0.25)

        result.contract_value = find_contract_value(text)
        return result


class PoDateStrategy:
    """Label dictionary: "no. po", "start date", "end date" in any casing."""

    name = "PO_DATE_DICTIONARY"

    def applies(self, text: str) -> bool:
        lower = text.lower()
        return "no. po" in lower or ("start date" in lower and "end date" in lower)

    def extract(self, text: str) -> ExtractionResult:
        result = ExtractionResult(strategy=self.name)

        po = _search(r"NO\.?\s*PO\s*[:.]?\s*" + PO_VALUE, text)
        if po:
            result.po_number = po.group(1).strip()
            result.add_confidence(0.3)

        start = _search(rf"start\s+date\s*[:.]?\s*({TEXT_DATE})", text)
        if start:
            result.start_date = parse_text_date(start.group(1))
            if result.start_date:
                result.add_confidence(0.3)

        end = _search(rf"end\s+date\s*[:.]?\s*({TEXT_DATE})", text)
        if end:
            result.end_date = parse_text_date(end.group(1))
            if result.end_date:
                result.add_confidence(0.3)

        result.contract_value = find_contract_value(text)
        return result


class GenericPatternStrategy:
    """Fallback for any text: loose PO label, first two numeric dates, PT./CV. vendor."""

    name = "GENERIC"

    _PO_PATTERNS = (
        r"\bPO\s*(?:No\.?|Number|#)?\s*[:.]?\s*" + PO_VALUE,
        r"Purchase\s+Order\s*(?:No\.?|Number|#)?\s*[:.]?\s*" + PO_VALUE,
    )
    _NUMERIC_DATE = re.compile(r"\b(\d{1,2})[/\-](\d{1,2})[/\-](\d{4})\b")
    _DESCRIPTION = re.compile(
        r"^\s*(?:Perihal|Subject|Description|Deskripsi|Keterangan)\s*[:.]\s*(.+?)\s*$",
        re.IGNORECASE | re.MULTILINE,
    )

    def applies(self, text: str) -> bool:
        return True

    def extract(self, text: str) -> ExtractionResult:
        result = ExtractionResult(strategy=self.name)

        for pattern in self._PO_PATTERNS:
            po = _search(pattern, text)
            if po:
                result.po_number = po.group(1).strip()
                result.add_confidence(0.15)
                break

        # DD/MM/YYYY or DD-MM-YYYY; first is the start, second the end
        dates = self._NUMERIC_DATE.findall(text)
        if len(dates) >= 2:
            try:
                start = date(int(dates[0][2]), int(dates[0][1]), int(dates[0][0]))
                end = date(int(dates[1][2]), int(dates[1][1]), int(dates[1][0]))
            except ValueError:
                pass
            else:
                result.start_date, result.end_date = start, end
                result.add_confidence(0.3)

        vendor = find_prefixed_vendor(text)
        if vendor:
            result.vendor_name = vendor
            result.add_confidence(0.1)

        description = self._DESCRIPTION.search(text)
        if description:
            result.description = description.group(1)[:500]

        result.contract_value = find_contract_value(text)
        return result


DEFAULT_STRATEGIES = (
    AdobePatternStrategy(),
    AlliedPatternStrategy(),
    PoDateStrategy(),
    GenericPatternStrategy(),
)
