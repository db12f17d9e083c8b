from __future__ import annotations

from datetime import date

from data_providers.parsing import ZERO_DATE, is_iso_date, parse_float, parse_int, parse_iso_date


def test_parse_float_reads_numbers():
    result = parse_float(" 143.6499939 ")
    assert result.ok is True
    assert result.value == 143.6499939


def test_parse_float_recovers_default():
    for raw in (None, "", "null", "abc", "1_000"):
        result = parse_float(raw)
        assert result.ok is False
        assert result.value == 0.0


def test_parse_int_rejects_decimal_notation():
    assert parse_int("20350000").value == 20350000
    assert parse_int("2.5").ok is False
    assert parse_int("2.5").value == 0
    assert parse_int("n/a", default=-1).value == -1


def test_parse_iso_date():
    assert parse_iso_date("2017-06-01").value == date(2017, 6, 1)

    invalid = parse_iso_date("2017-02-30")
    assert invalid.ok is False
    assert invalid.value == ZERO_DATE == date.min

    assert parse_iso_date("2017-6-1").ok is False
    assert parse_iso_date(None).value == ZERO_DATE


def test_is_iso_date_checks_shape_only():
    assert is_iso_date("2017-06-07")
    assert is_iso_date("2017-99-99")
    assert not is_iso_date("17-06-07")
    assert not is_iso_date("")
