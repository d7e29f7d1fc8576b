"""
tests/test_values.py

Pytest unit tests for cell coercion helpers.

All tests are pure Python, no database.
"""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from app.mappers.values import parse_date, parse_number, to_text


class TestParseNumber:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            (42, 42.0),
            (3.5, 3.5),
            ("1,234.50", 1234.5),
            ("$ 99.10", 99.1),
            ("(120.00)", -120.0),
            ("  7 ", 7.0),
            ("12.5 MB", 12.5),
        ],
    )
    def test_parses_common_formats(self, raw: object, expected: float) -> None:
        assert parse_number(raw) == pytest.approx(expected)

    @pytest.mark.parametrize("raw", [None, "", "   ", "n/a", "-", True, False, float("nan"), float("inf")])
    def test_uninterpretable_cells_return_none(self, raw: object) -> None:
        assert parse_number(raw) is None


class TestParseDate:
    def test_iso_date(self) -> None:
        assert parse_date("2024-03-15") == date(2024, 3, 15)

    def test_iso_datetime_keeps_calendar_day(self) -> None:
        assert parse_date("2024-03-15T22:10:00") == date(2024, 3, 15)

    def test_compact_date(self) -> None:
        assert parse_date("20240315") == date(2024, 3, 15)

    def test_slash_date_is_month_first(self) -> None:
        assert parse_date("03/04/2024") == date(2024, 3, 4)

    def test_slash_date_falls_back_to_day_first(self) -> None:
        assert parse_date("13/04/2024") == date(2024, 4, 13)

    def test_text_month(self) -> None:
        assert parse_date("5 Mar 2024") == date(2024, 3, 5)

    def test_native_values(self) -> None:
        assert parse_date(date(2024, 1, 2)) == date(2024, 1, 2)
        assert parse_date(datetime(2024, 1, 2, 8, tzinfo=timezone.utc)) == date(2024, 1, 2)

    def test_spreadsheet_serial(self) -> None:
        # 45366 days after 1899-12-30
        assert parse_date(45366) == date(2024, 3, 15)

    def test_epoch_milliseconds(self) -> None:
        assert parse_date(1710460800000) == date(2024, 3, 15)

    @pytest.mark.parametrize("raw", [None, "", "hello", True, "1850-01-01", "2150-06-01"])
    def test_rejects_garbage_and_out_of_range_years(self, raw: object) -> None:
        assert parse_date(raw) is None


def test_to_text_trims_and_handles_none() -> None:
    assert to_text(None) == ""
    assert to_text("  Acme ") == "Acme"
    assert to_text(12) == "12"
