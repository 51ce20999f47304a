"""Workbook loading and cell value parsing for spend sheets."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from io import BytesIO
from zipfile import BadZipFile

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

EXCEL_EPOCH = date(1899, 12, 30)
MAX_AMOUNT = Decimal("999999999999.99")

_AMOUNT_STRIP_RE = re.compile(r"[^0-9.\-]")
_PAREN_NEGATIVE_RE = re.compile(r"^\((.*)\)$")
_YY_MON_RE = re.compile(r"^(\d{2})-([A-Za-z]{3})$")
_DMY_NUMERIC_RE = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{4})$")
_DMY_MONTH_NAME_RE = re.compile(r"^(\d{1,2})[-/ ]([A-Za-z]{3,9})[-/ ](\d{4})$")
_SERIAL_RE = re.compile(r"^\d+(\.\d+)?$")
_MONTHS = {
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "apr": 4,
    "may": 5,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sep": 9,
    "oct": 10,
    "nov": 11,
    "dec": 12,
}


class WorkbookError(ValueError):
    """Raised when workbook bytes cannot be parsed."""


@dataclass(slots=True)
class Sheet:
    name: str
    rows: list[list[object]] = field(default_factory=list)

    @property
    def header(self) -> list[object]:
        return self.rows[0] if self.rows else []


@dataclass(slots=True)
class Workbook:
    sheets: list[Sheet] = field(default_factory=list)

    def sheet(self, name: str) -> Sheet | None:
        wanted = name.strip().lower()
        for sheet in self.sheets:
            if sheet.name.strip().lower() == wanted:
                return sheet
        return None


def load_workbook_bytes(data: bytes) -> Workbook:
    """Parse xlsx bytes into plain rows of cell values."""

    try:
        book = load_workbook(BytesIO(data), read_only=True, data_only=True)
    except (InvalidFileException, BadZipFile, KeyError, OSError) as exc:
        raise WorkbookError(f"Unreadable workbook: {exc}") from exc
    try:
        sheets = [
            Sheet(name=worksheet.title, rows=[list(row) for row in worksheet.iter_rows(values_only=True)])
            for worksheet in book.worksheets
        ]
    finally:
        book.close()
    return Workbook(sheets=sheets)


def clean_cell(value: object) -> str:
    """Cell value as a single-spaced, trimmed string."""

    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return " ".join(str(value).split())


def raw_cell(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def is_blank_row(row: list[object]) -> bool:
    return all(clean_cell(value) == "" for value in row)


def parse_amount(value: object) -> Decimal | None:
    """Parse a money cell; None when unparseable or beyond storage precision."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        try:
            amount = Decimal(str(value))
        except InvalidOperation:
            return None
    else:
        text = str(value).strip().replace("£", "").replace(",", "")
        negative = False
        paren = _PAREN_NEGATIVE_RE.match(text)
        if paren:
            negative = True
            text = paren.group(1)
        text = _AMOUNT_STRIP_RE.sub("", text)
        if not text or text in {"-", ".", "-."}:
            return None
        try:
            amount = Decimal(text)
        except InvalidOperation:
            return None
        if negative:
            amount = -abs(amount)
    if not amount.is_finite() or abs(amount) > MAX_AMOUNT:
        return None
    return amount.quantize(Decimal("0.01"))


def parse_payment_date(value: object) -> date | None:
    """Parse a payment date cell into a calendar date; None when unrecognised."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        return _from_serial(float(value))

    text = str(value).strip()
    if not text:
        return None

    match = _YY_MON_RE.match(text)
    if match:
        month = _MONTHS.get(match.group(2).lower())
        return date(2000 + int(match.group(1)), month, 1) if month else None

    match = _DMY_NUMERIC_RE.match(text)
    if match:
        return _safe_date(int(match.group(3)), int(match.group(2)), int(match.group(1)))

    match = _DMY_MONTH_NAME_RE.match(text)
    if match:
        month = _MONTHS.get(match.group(2)[:3].lower())
        return _safe_date(int(match.group(3)), month, int(match.group(1))) if month else None

    if _SERIAL_RE.match(text):
        return _from_serial(float(text))
    return None


def _from_serial(serial: float) -> date | None:
    if serial <= 0 or serial > 2_958_465:
        return None
    return EXCEL_EPOCH + timedelta(days=int(serial))


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None
