"""Tests for the X12 segment tokenizer and value coercions."""

from __future__ import annotations

from datetime import date, datetime

import pytest

from era_posting.edi.segments import (
    DEFAULT_DELIMITERS,
    Delimiters,
    Segment,
    detect_delimiters,
    normalize_line_endings,
    parse_amount,
    parse_edi_date,
    parse_edi_datetime,
    split_segments,
)


class TestSegmentAccessors:
    def test_positions_are_one_based(self) -> None:
        seg = Segment(tag="CLP", elements=["PCN1", "1", "100.00"])
        assert seg.element(1) == "PCN1"
        assert seg.element(3) == "100.00"

    def test_out_of_range_reads_default(self) -> None:
        seg = Segment(tag="CLP", elements=["PCN1"])
        assert seg.element(0) == ""
        assert seg.element(9) == ""
        assert seg.element(9, default="x") == "x"

    def test_optional_empty_is_none(self) -> None:
        seg = Segment(tag="NM1", elements=["QC", "", "DOE"])
        assert seg.optional(2) is None
        assert seg.optional(3) == "DOE"
        assert seg.optional(12) is None

    def test_components(self) -> None:
        seg = Segment(tag="SVC", elements=["HC:99213:25"])
        assert seg.components(1) == ["HC", "99213", "25"]
        assert seg.components(2) == []

    def test_amount_is_lenient(self) -> None:
        seg = Segment(tag="CLP", elements=["x", "1", "abc", "12.50"])
        assert seg.amount(3) == 0.0
        assert seg.amount(4) == 12.50
        assert seg.amount(10) == 0.0


class TestParseAmount:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("500", 500.0),
            ("450.25", 450.25),
            ("-12.5", -12.5),
            (".75", 0.75),
            ("12abc", 12.0),
            ("abc", 0.0),
            ("", 0.0),
            (None, 0.0),
            ("inf", 0.0),
        ],
    )
    def test_parse_amount(self, raw: str | None, expected: float) -> None:
        assert parse_amount(raw) == pytest.approx(expected)


class TestParseEdiDate:
    def test_eight_digit(self) -> None:
        assert parse_edi_date("20251011") == date(2025, 10, 11)

    def test_six_digit(self) -> None:
        assert parse_edi_date("251011") == date(2025, 10, 11)

    def test_six_digit_pivot(self) -> None:
        assert parse_edi_date("991231") == date(1999, 12, 31)
        assert parse_edi_date("500101") == date(2050, 1, 1)
        assert parse_edi_date("510101") == date(1951, 1, 1)

    @pytest.mark.parametrize("raw", ["", None, "2025-10-11", "20251341", "abc", "2025101"])
    def test_malformed_yields_a_date(self, raw: str | None) -> None:
        assert isinstance(parse_edi_date(raw), date)

    def test_datetime_with_time(self) -> None:
        assert parse_edi_datetime("251011", "1230") == datetime(2025, 10, 11, 12, 30)

    def test_datetime_without_time(self) -> None:
        assert parse_edi_datetime("20251011") == datetime(2025, 10, 11)


class TestDelimiters:
    def test_detects_from_isa(self) -> None:
        isa = (
            "ISA|00|          |00|          |ZZ|SENDER         |ZZ|RECEIVER       "
            "|251011|1230|^|00501|000000001|0|P|>!GS|HP!"
        )
        delimiters = detect_delimiters(isa)
        assert delimiters == Delimiters(element="|", segment="!", component=">")

    def test_newline_terminator(self) -> None:
        isa = (
            "ISA*00*          *00*          *ZZ*SENDER         *ZZ*RECEIVER       "
            "*251011*1230*^*00501*000000001*0*P*:\nGS*HP\n"
        )
        assert detect_delimiters(isa).segment == "\n"

    def test_short_header_falls_back(self) -> None:
        assert detect_delimiters("ISA~GS~ST~") == DEFAULT_DELIMITERS
        assert detect_delimiters("ISA*00*01~GS*HP~") == DEFAULT_DELIMITERS

    def test_not_an_interchange_falls_back(self) -> None:
        assert detect_delimiters("GS*HP~") == DEFAULT_DELIMITERS
        assert detect_delimiters("") == DEFAULT_DELIMITERS


class TestSplitSegments:
    def test_splits_and_drops_empties(self) -> None:
        segments = split_segments("ST*835*0001~\n\nBPR*I*10~~SE*2~")
        assert [s.tag for s in segments] == ["ST", "BPR", "SE"]
        assert segments[0].elements == ["835", "0001"]

    def test_normalize_line_endings(self) -> None:
        assert normalize_line_endings("A~\r\nB~\rC~") == "A~\nB~\nC~"
