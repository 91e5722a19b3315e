"""
Unit tests for the TabularParser and its CSV / spreadsheet sources.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest

from recon_ingest.config import ParserConfig
from recon_ingest.errors import ParseError, UnsupportedFormatError
from recon_ingest.schema import FileFormat, RawFile
from recon_ingest.tabular_parser import (
    EMPTY_COLUMN,
    EXTRA_FIELDS,
    CsvSource,
    SpreadsheetSource,
    TabularParser,
)

from conftest import make_xlsx


@pytest.fixture
def parser() -> TabularParser:
    return TabularParser(ParserConfig())


def _csv(text: str, name: str = "data.csv") -> RawFile:
    return RawFile.from_bytes(name, text.encode("utf-8"))


# ======================================================================
# File format boundary
# ======================================================================

class TestFileFormat:
    @pytest.mark.parametrize("name, fmt", [
        ("data.csv", FileFormat.CSV),
        ("Ledger.XLSX", FileFormat.XLSX),
        ("old.xls", FileFormat.XLS),
    ])
    def test_format_from_extension(self, name: str, fmt: FileFormat) -> None:
        assert RawFile.from_bytes(name, b"").format is fmt

    @pytest.mark.parametrize("name", ["data.json", "report.pdf", "noextension", "data.csv.txt"])
    def test_other_extensions_rejected(self, name: str) -> None:
        with pytest.raises(UnsupportedFormatError):
            RawFile.from_bytes(name, b"a,b\n1,2\n")

    def test_size_is_byte_length(self) -> None:
        raw = RawFile.from_bytes("data.csv", b"x" * 2048)
        assert raw.size == 2048

    def test_source_variant_chosen_by_format(self, parser: TabularParser) -> None:
        assert isinstance(parser.open_source(_csv("a\n1\n")), CsvSource)
        xlsx = RawFile.from_bytes("a.xlsx", make_xlsx([["a"], [1]]))
        assert isinstance(parser.open_source(xlsx), SpreadsheetSource)


# ======================================================================
# CSV
# ======================================================================

class TestCsvHeaders:
    def test_headers_in_file_order(self, parser: TabularParser, sample_csv: bytes) -> None:
        raw = RawFile.from_bytes("data.csv", sample_csv)
        assert parser.extract_headers(raw) == ["TxnID", "Amt", "Ref"]

    def test_headers_match_first_record_keys(self, parser: TabularParser) -> None:
        raw = _csv("Date,,Amount,Memo\n2024-01-01,x,5,lunch\n")
        headers = parser.extract_headers(raw)
        first = parser.extract_rows(raw, 1)[0]
        assert headers == [k for k in first if k != EMPTY_COLUMN]
        assert headers == ["Date", "Amount", "Memo"]

    def test_bom_is_stripped(self, parser: TabularParser) -> None:
        raw = RawFile.from_bytes("data.csv", b"\xef\xbb\xbfTxnID,Amt\nT1,1\n")
        assert parser.extract_headers(raw) == ["TxnID", "Amt"]

    def test_header_only_file_has_no_headers(self, parser: TabularParser) -> None:
        assert parser.extract_headers(_csv("TxnID,Amt\n")) == []

    def test_empty_file(self, parser: TabularParser) -> None:
        assert parser.extract_headers(_csv("")) == []
        assert parser.extract_rows(_csv("")) == []

    def test_duplicate_names_made_distinct(self, parser: TabularParser) -> None:
        raw = _csv("Amt,Amt,Ref\n1,2,R\n")
        assert parser.extract_headers(raw) == ["Amt", "Amt_1", "Ref"]

    def test_quoted_headers(self, parser: TabularParser) -> None:
        raw = _csv('"Txn, ID",Amt\nT1,1\n')
        assert parser.extract_headers(raw) == ["Txn, ID", "Amt"]


class TestCsvRows:
    def test_rows_keyed_by_headers(self, parser: TabularParser, sample_csv: bytes) -> None:
        rows = parser.extract_rows(RawFile.from_bytes("data.csv", sample_csv))
        assert rows[0] == {"TxnID": "T1", "Amt": "10.50", "Ref": "R1"}

    def test_blank_records_skipped_and_not_counted(self, parser: TabularParser) -> None:
        raw = _csv("a,b\n\n1,2\n\n\n3,4\n")
        assert parser.extract_rows(raw) == [{"a": "1", "b": "2"}, {"a": "3", "b": "4"}]

    def test_small_file_returns_all_rows(self, parser: TabularParser, sample_csv: bytes) -> None:
        assert len(parser.extract_rows(RawFile.from_bytes("data.csv", sample_csv))) == 3

    def test_large_file_capped_at_ten(self, parser: TabularParser) -> None:
        body = "\n".join(f"T{i},{i}" for i in range(10_000))
        rows = parser.extract_rows(_csv("TxnID,Amt\n" + body))
        assert len(rows) == 10
        assert rows[-1] == {"TxnID": "T9", "Amt": "9"}

    def test_explicit_limit(self, parser: TabularParser) -> None:
        raw = _csv("a\n1\n2\n3\n")
        assert len(parser.extract_rows(raw, max_rows=2)) == 2
        assert parser.extract_rows(raw, max_rows=0) == []

    def test_configured_preview_size(self) -> None:
        parser = TabularParser(ParserConfig(preview_rows=3))
        raw = _csv("a\n" + "\n".join(str(i) for i in range(20)))
        assert len(parser.extract_rows(raw)) == 3

    def test_short_record_carries_only_present_fields(self, parser: TabularParser) -> None:
        rows = parser.extract_rows(_csv("a,b,c\n1\n"))
        assert rows == [{"a": "1"}]

    def test_short_first_record_limits_headers(self, parser: TabularParser) -> None:
        raw = _csv("a,b,c\n1\n")
        assert parser.extract_headers(raw) == ["a"]
        assert parser.extract_headers(raw) == list(parser.extract_rows(raw, 1)[0])

    def test_surplus_fields_kept_aside(self, parser: TabularParser) -> None:
        rows = parser.extract_rows(_csv("a,b\n1,2,3,4\n"))
        assert rows == [{"a": "1", "b": "2", EXTRA_FIELDS: ["3", "4"]}]

    def test_empty_header_cells_remain_visible(self, parser: TabularParser) -> None:
        rows = parser.extract_rows(_csv("TxnID,,Amt\nT1,note,5\n"))
        assert rows == [{"TxnID": "T1", EMPTY_COLUMN: "note", "Amt": "5"}]


class TestCsvErrors:
    def test_undecodable_bytes(self, parser: TabularParser) -> None:
        raw = RawFile.from_bytes("data.csv", b"TxnID,Amt\n\xff\xfe\xfa,1\n")
        with pytest.raises(ParseError) as info:
            parser.extract_headers(raw)
        assert isinstance(info.value.__cause__, UnicodeDecodeError)

    def test_rows_raise_too(self, parser: TabularParser) -> None:
        raw = RawFile.from_bytes("data.csv", b"\xff\xfe\xfa")
        with pytest.raises(ParseError):
            parser.extract_rows(raw)


# ======================================================================
# Spreadsheets
# ======================================================================

class TestXlsx:
    def test_headers_and_raw_values(self, parser: TabularParser) -> None:
        raw = RawFile.from_bytes("ledger.xlsx", make_xlsx([
            ["TxnID", "Amt", "Ref"],
            ["T1", 10.5, "R1"],
            ["T2", 20, "R2"],
        ]))
        assert parser.extract_headers(raw) == ["TxnID", "Amt", "Ref"]
        rows = parser.extract_rows(raw)
        assert rows == [
            {"TxnID": "T1", "Amt": 10.5, "Ref": "R1"},
            {"TxnID": "T2", "Amt": 20, "Ref": "R2"},
        ]

    def test_empty_header_column_hidden_but_previewed(self, parser: TabularParser) -> None:
        raw = RawFile.from_bytes("ledger.xlsx", make_xlsx([
            ["TxnID", None, "Amt"],
            ["T1", "memo", 5],
        ]))
        assert parser.extract_headers(raw) == ["TxnID", "Amt"]
        assert parser.extract_rows(raw) == [{"TxnID": "T1", EMPTY_COLUMN: "memo", "Amt": 5}]

    def test_non_string_headers_rendered(self, parser: TabularParser) -> None:
        raw = RawFile.from_bytes("ledger.xlsx", make_xlsx([["Account", 2024], ["A", 1]]))
        assert parser.extract_headers(raw) == ["Account", "2024"]

    def test_integral_float_headers_drop_the_fraction(self, parser: TabularParser) -> None:
        raw = RawFile.from_bytes("ledger.xlsx", make_xlsx([["Account", 1001.0, 2.5], ["A", 1, 2]]))
        assert parser.extract_headers(raw) == ["Account", "1001", "2.5"]

    def test_missing_cells_default_to_empty_string(self, parser: TabularParser) -> None:
        raw = RawFile.from_bytes("ledger.xlsx", make_xlsx([
            ["TxnID", "Amt", "Ref"],
            ["T1", None, "R1"],
        ]))
        assert parser.extract_rows(raw) == [{"TxnID": "T1", "Amt": "", "Ref": "R1"}]

    def test_blank_rows_skipped(self, parser: TabularParser) -> None:
        raw = RawFile.from_bytes("ledger.xlsx", make_xlsx([
            ["TxnID", "Amt"],
            ["T1", 1],
            [None, None],
            ["T2", 2],
        ]))
        assert [r["TxnID"] for r in parser.extract_rows(raw)] == ["T1", "T2"]

    def test_dates_left_as_stored(self, parser: TabularParser) -> None:
        when = datetime(2024, 3, 31, 0, 0)
        raw = RawFile.from_bytes("ledger.xlsx", make_xlsx([["Date", "Amt"], [when, 1]]))
        assert parser.extract_rows(raw)[0]["Date"] == when

    def test_first_sheet_only(self, parser: TabularParser) -> None:
        raw = RawFile.from_bytes("ledger.xlsx", make_xlsx(
            [["TxnID", "Amt"], ["T1", 1]],
            extra_sheets={"Summary": [["Total"], [1]]},
        ))
        assert parser.extract_headers(raw) == ["TxnID", "Amt"]

    def test_capped_at_ten(self, parser: TabularParser) -> None:
        rows = [["TxnID", "Amt"]] + [[f"T{i}", i] for i in range(40)]
        raw = RawFile.from_bytes("ledger.xlsx", make_xlsx(rows))
        assert len(parser.extract_rows(raw)) == 10

    def test_header_row_without_data_still_has_headers(self, parser: TabularParser) -> None:
        raw = RawFile.from_bytes("ledger.xlsx", make_xlsx([["TxnID", "Amt"]]))
        assert parser.extract_headers(raw) == ["TxnID", "Amt"]
        assert parser.extract_rows(raw) == []

    def test_not_a_workbook(self, parser: TabularParser) -> None:
        raw = RawFile.from_bytes("ledger.xlsx", b"TxnID,Amt\nT1,1\n")
        with pytest.raises(ParseError):
            parser.extract_headers(raw)


class TestXls:
    def test_not_a_workbook(self, parser: TabularParser) -> None:
        raw = RawFile.from_bytes("ledger.xls", b"this is plainly not a BIFF workbook")
        with pytest.raises(ParseError):
            parser.extract_headers(raw)

    # ledger.xls: BIFF2 sheet with a header row, an unnamed third column, a
    # blank row after T2 and twelve data rows in all.
    @pytest.fixture
    def ledger(self) -> RawFile:
        path = Path(__file__).parent / "fixtures" / "ledger.xls"
        return RawFile.from_bytes("ledger.xls", path.read_bytes())

    def test_headers(self, parser: TabularParser, ledger: RawFile) -> None:
        assert parser.extract_headers(ledger) == ["TxnID", "Amt", "Ref", "2024"]

    def test_preview_rows(self, parser: TabularParser, ledger: RawFile) -> None:
        rows = parser.extract_rows(ledger)
        assert rows[0] == {"TxnID": "T1", "Amt": 10.5, EMPTY_COLUMN: "memo", "Ref": "R1", "2024": 1}
        assert rows[1] == {"TxnID": "T2", "Amt": 20.25, EMPTY_COLUMN: "", "Ref": "", "2024": 2}
        assert rows[2]["TxnID"] == "T3"

    def test_capped_at_ten(self, parser: TabularParser, ledger: RawFile) -> None:
        rows = parser.extract_rows(ledger)
        assert len(rows) == 10
        assert rows[-1]["TxnID"] == "T10"

    def test_larger_limit_reads_every_row(self, parser: TabularParser, ledger: RawFile) -> None:
        rows = parser.extract_rows(ledger, max_rows=50)
        assert len(rows) == 12
        assert rows[-1]["TxnID"] == "T12"
