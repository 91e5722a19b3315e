"""
Tabular File Parser.

Decodes an operator-selected file, held in memory, into header names and
row records keyed by those headers.

Two source variants sit behind the ``TabularSource`` capability:

- ``CsvSource``: UTF-8 text, first record is the header record, blank
  records skipped.
- ``SpreadsheetSource``: first sheet only, first non-blank row is the
  header row, stored cell values (not formulas, not display text).
  ``.xlsx`` goes through openpyxl, legacy ``.xls`` through pandas/xlrd.

Columns without a header name never appear in ``headers()`` (so they cannot
be mapped) but their cells stay visible in ``rows()`` under ``__EMPTY``,
``__EMPTY_1``, ... Duplicate names get ``_1``, ``_2`` suffixes so the header
set stays distinct.
"""

from __future__ import annotations

import csv
import zipfile
from io import BytesIO, StringIO
from typing import Any, Dict, Iterator, List, Optional, Sequence

import openpyxl
import pandas as pd
from openpyxl.utils.exceptions import InvalidFileException
from xlrd import XLRDError

from recon_ingest.config import ParserConfig
from recon_ingest.errors import ParseError
from recon_ingest.logging_setup import get_logger
from recon_ingest.schema import FileFormat, RawFile

logger = get_logger("tabular_parser")

EMPTY_COLUMN = "__EMPTY"
EXTRA_FIELDS = "__parsed_extra"

Row = Dict[str, Any]

# Exceptions the decoding libraries raise for content that is not what the
# extension claims it is.
_DECODE_ERRORS = (
    csv.Error,
    UnicodeDecodeError,
    zipfile.BadZipFile,
    InvalidFileException,
    XLRDError,
    KeyError,
    ValueError,
    IndexError,
    OSError,
)


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        # Spreadsheet engines may hand back 1001.0 for a cell typed as 1001
        return str(int(value))
    return value if isinstance(value, str) else str(value)


def _is_blank(cells: Sequence[Any]) -> bool:
    return all(c is None or c == "" for c in cells)


def _row_keys(raw_headers: Sequence[Any]) -> List[str]:
    """Turn a header record into distinct dictionary keys."""
    keys: List[str] = []
    used: set[str] = set()
    for raw in raw_headers:
        base = _cell_text(raw) or EMPTY_COLUMN
        key, n = base, 0
        while key in used:
            n += 1
            key = f"{base}_{n}"
        used.add(key)
        keys.append(key)
    return keys


def _named(raw_headers: Sequence[Any], keys: Sequence[str]) -> List[str]:
    return [k for raw, k in zip(raw_headers, keys) if _cell_text(raw) != ""]


class TabularSource:
    """A decoded view over one ``RawFile``.

    Subclasses supply ``_records``; each call re-reads the in-memory bytes so
    a source holds no parsed state between calls.
    """

    def __init__(self, raw_file: RawFile, config: Optional[ParserConfig] = None) -> None:
        self.raw_file = raw_file
        self._config = config or ParserConfig()

    def headers(self) -> List[str]:
        raise NotImplementedError

    def rows(self, limit: int) -> List[Row]:
        raise NotImplementedError

    def _records(self) -> Iterator[List[Any]]:
        raise NotImplementedError

    def _guarded(self, operation: str, fn, *args):  # noqa: ANN001, ANN202
        try:
            return fn(*args)
        except _DECODE_ERRORS as exc:
            logger.warning(
                "Could not %s from %r (%s): %s",
                operation, self.raw_file.name, self.raw_file.format.value, exc,
            )
            raise ParseError(
                f"Cannot read '{self.raw_file.name}' as "
                f"{self.raw_file.format.value.upper()}: {exc}"
            ) from exc


class CsvSource(TabularSource):
    """Comma-separated text; the first non-blank record names the columns."""

    def headers(self) -> List[str]:
        return self._guarded("read headers", self._headers)

    def rows(self, limit: int) -> List[Row]:
        return self._guarded("read rows", self._rows, limit)

    def _records(self) -> Iterator[List[Any]]:
        text = self.raw_file.data.decode(self._config.csv_encoding)
        for record in csv.reader(StringIO(text, newline="")):
            # A blank line is an empty record, never a row
            if record:
                yield record

    def _headers(self) -> List[str]:
        # Headers are the named keys of the first data record, so a header
        # record alone, or a short first record, yields fewer columns.
        first = self._rows(1)
        if not first:
            return []
        raw_headers = next(self._records())
        named = set(_named(raw_headers, _row_keys(raw_headers)))
        return [key for key in first[0] if key in named]

    def _rows(self, limit: int) -> List[Row]:
        records = self._records()
        raw_headers = next(records, None)
        if raw_headers is None or limit <= 0:
            return []
        keys = _row_keys(raw_headers)

        rows: List[Row] = []
        for record in records:
            row: Row = dict(zip(keys, record))
            if len(record) > len(keys):
                row[EXTRA_FIELDS] = record[len(keys):]
            rows.append(row)
            if len(rows) >= limit:
                break
        return rows


class SpreadsheetSource(TabularSource):
    """First worksheet of an XLSX or XLS workbook."""

    def headers(self) -> List[str]:
        return self._guarded("read headers", self._headers)

    def rows(self, limit: int) -> List[Row]:
        return self._guarded("read rows", self._rows, limit)

    def _records(self) -> Iterator[List[Any]]:
        if self.raw_file.format is FileFormat.XLSX:
            yield from self._xlsx_records()
        else:
            yield from self._xls_records()

    def _xlsx_records(self) -> Iterator[List[Any]]:
        wb = openpyxl.load_workbook(
            BytesIO(self.raw_file.data), read_only=True, data_only=True
        )
        try:
            ws = wb.worksheets[0]
            logger.debug("Reading sheet %r of %r", ws.title, self.raw_file.name)
            for row in ws.iter_rows(values_only=True):
                yield list(row)
        finally:
            wb.close()

    def _xls_records(self) -> Iterator[List[Any]]:
        frame = pd.read_excel(
            BytesIO(self.raw_file.data),
            sheet_name=0,
            header=None,
            dtype=object,
            engine="xlrd",
        )
        for row in frame.itertuples(index=False, name=None):
            yield [None if pd.isna(v) else v for v in row]

    def _non_blank(self) -> Iterator[List[Any]]:
        return (r for r in self._records() if not _is_blank(r))

    def _headers(self) -> List[str]:
        raw_headers = next(self._non_blank(), None)
        if raw_headers is None:
            return []
        return _named(raw_headers, _row_keys(raw_headers))

    def _rows(self, limit: int) -> List[Row]:
        records = self._non_blank()
        raw_headers = next(records, None)
        if raw_headers is None or limit <= 0:
            return []
        keys = _row_keys(raw_headers)

        rows: List[Row] = []
        for record in records:
            rows.append({
                key: ("" if i >= len(record) or record[i] is None else record[i])
                for i, key in enumerate(keys)
            })
            if len(rows) >= limit:
                break
        return rows


class TabularParser:
    """Entry point used by the workflow.

    Parameters
    ----------
    config:
        Preview size and CSV encoding.
    """

    def __init__(self, config: Optional[ParserConfig] = None) -> None:
        self._config = config or ParserConfig()

    @property
    def preview_rows(self) -> int:
        return self._config.preview_rows

    def open_source(self, raw_file: RawFile) -> TabularSource:
        """Pick the source variant once, from the file's format tag."""
        if raw_file.format.is_spreadsheet:
            return SpreadsheetSource(raw_file, self._config)
        return CsvSource(raw_file, self._config)

    def extract_headers(self, raw_file: RawFile) -> List[str]:
        """Return the mappable column names of *raw_file*, in file order.

        Raises
        ------
        ParseError
            If the content cannot be decoded as the declared format.
        """
        headers = self.open_source(raw_file).headers()
        logger.info("Extracted %d headers from %r: %s", len(headers), raw_file.name, headers)
        return headers

    def extract_rows(self, raw_file: RawFile, max_rows: Optional[int] = None) -> List[Row]:
        """Return at most *max_rows* data records for display.

        The result is for preview only; submissions always send the original
        bytes.
        """
        limit = self._config.preview_rows if max_rows is None else max_rows
        rows = self.open_source(raw_file).rows(limit)
        logger.info("Extracted %d preview rows from %r (limit=%d)", len(rows), raw_file.name, limit)
        return rows
