"""Unit tests for workbook loading and spend cell parsing."""

from __future__ import annotations

import unittest
from datetime import date, datetime
from decimal import Decimal
from io import BytesIO

from openpyxl import Workbook as OpenpyxlWorkbook

from spendpipe.pipeline.workbook import (
    WorkbookError,
    clean_cell,
    is_blank_row,
    load_workbook_bytes,
    parse_amount,
    parse_payment_date,
    raw_cell,
)


class ParseAmountTests(unittest.TestCase):
    def test_currency_strings_are_cleaned(self) -> None:
        self.assertEqual(parse_amount("£1,234.56"), Decimal("1234.56"))
        self.assertEqual(parse_amount(" 2,000 "), Decimal("2000.00"))

    def test_parenthesised_amounts_are_negative(self) -> None:
        self.assertEqual(parse_amount("(100.00)"), Decimal("-100.00"))
        self.assertEqual(parse_amount("(£5)"), Decimal("-5.00"))

    def test_numeric_cells_are_quantized(self) -> None:
        self.assertEqual(parse_amount(12.5), Decimal("12.50"))
        self.assertEqual(parse_amount(7), Decimal("7.00"))
        self.assertEqual(parse_amount(-0.456), Decimal("-0.46"))

    def test_unparseable_and_out_of_range_values_are_rejected(self) -> None:
        self.assertIsNone(parse_amount(None))
        self.assertIsNone(parse_amount(""))
        self.assertIsNone(parse_amount("abc"))
        self.assertIsNone(parse_amount("-"))
        self.assertIsNone(parse_amount(True))
        self.assertIsNone(parse_amount("1000000000000"))
        self.assertIsNone(parse_amount(float("nan")))


class ParsePaymentDateTests(unittest.TestCase):
    def test_native_dates(self) -> None:
        self.assertEqual(parse_payment_date(datetime(2023, 3, 15, 10, 30)), date(2023, 3, 15))
        self.assertEqual(parse_payment_date(date(2023, 3, 15)), date(2023, 3, 15))

    def test_excel_serials(self) -> None:
        self.assertEqual(parse_payment_date(45000), date(2023, 3, 15))
        self.assertEqual(parse_payment_date(45000.75), date(2023, 3, 15))
        self.assertEqual(parse_payment_date("45000"), date(2023, 3, 15))
        self.assertIsNone(parse_payment_date(0))
        self.assertIsNone(parse_payment_date(-3))

    def test_day_first_text_formats(self) -> None:
        self.assertEqual(parse_payment_date("15/03/2023"), date(2023, 3, 15))
        self.assertEqual(parse_payment_date("5-3-2023"), date(2023, 3, 5))
        self.assertEqual(parse_payment_date("15-Mar-2023"), date(2023, 3, 15))
        self.assertEqual(parse_payment_date("15 March 2023"), date(2023, 3, 15))

    def test_year_month_shorthand_is_first_of_month(self) -> None:
        self.assertEqual(parse_payment_date("23-Mar"), date(2023, 3, 1))
        self.assertIsNone(parse_payment_date("23-Foo"))

    def test_invalid_dates(self) -> None:
        self.assertIsNone(parse_payment_date("31/02/2023"))
        self.assertIsNone(parse_payment_date("not a date"))
        self.assertIsNone(parse_payment_date(""))
        self.assertIsNone(parse_payment_date(None))
        self.assertIsNone(parse_payment_date(False))


class CellHelperTests(unittest.TestCase):
    def test_clean_cell(self) -> None:
        self.assertEqual(clean_cell(None), "")
        self.assertEqual(clean_cell(12.0), "12")
        self.assertEqual(clean_cell("  Acme   Supplies\tLtd "), "Acme Supplies Ltd")

    def test_raw_cell_and_blank_rows(self) -> None:
        self.assertIsNone(raw_cell(None))
        self.assertEqual(raw_cell(date(2023, 3, 15)), "2023-03-15")
        self.assertEqual(raw_cell(1.5), "1.5")
        self.assertTrue(is_blank_row([None, "  ", ""]))
        self.assertFalse(is_blank_row([None, "x"]))


class LoadWorkbookTests(unittest.TestCase):
    def test_rows_are_read_from_every_sheet(self) -> None:
        book = OpenpyxlWorkbook()
        first = book.active
        first.title = "Spend"
        first.append(["Trust", "Payment Date", "Supplier", "Amount"])
        first.append(["Leeds Teaching Hospitals NHS Trust", 45000, "Acme Supplies Ltd", 10.5])
        second = book.create_sheet("Trusts")
        second.append(["Trust Name", "ODS Code"])
        buffer = BytesIO()
        book.save(buffer)

        workbook = load_workbook_bytes(buffer.getvalue())

        self.assertEqual([sheet.name for sheet in workbook.sheets], ["Spend", "Trusts"])
        spend = workbook.sheet(" spend ")
        self.assertIsNotNone(spend)
        self.assertEqual(clean_cell(spend.header[0]), "Trust")
        self.assertEqual(spend.rows[1][2], "Acme Supplies Ltd")
        self.assertIsNone(workbook.sheet("missing"))

    def test_unreadable_bytes_raise_workbook_error(self) -> None:
        with self.assertRaises(WorkbookError):
            load_workbook_bytes(b"definitely not a spreadsheet")


if __name__ == "__main__":
    unittest.main()
