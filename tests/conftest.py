"""Shared fixtures: a hand-cranked scheduler, a scripted backend, sample files."""

from __future__ import annotations

from collections import deque
from io import BytesIO
from typing import Any, Callable, List, Optional, Sequence

import openpyxl
import pytest

from recon_ingest.schema import JobStatus, JobStatusReport, RawFile, SubmissionResult


class ManualCall:
    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Collects timer requests; tests fire them explicitly."""

    def __init__(self) -> None:
        self.calls: List[ManualCall] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualCall:
        call = ManualCall(delay, callback)
        self.calls.append(call)
        return call

    @property
    def pending(self) -> List[ManualCall]:
        return [c for c in self.calls if not c.cancelled and not c.fired]

    def fire_next(self) -> bool:
        pending = self.pending
        if not pending:
            return False
        call = pending[0]
        call.fired = True
        call.callback()
        return True

    def run_until_idle(self, limit: int = 100) -> int:
        fired = 0
        while fired < limit and self.fire_next():
            fired += 1
        return fired


class FakeClient:
    """Scripted backend.

    ``statuses`` holds what successive ``job_status`` calls return: a
    ``JobStatusReport``, an exception to raise, or a zero-argument callable
    producing either.
    """

    def __init__(self) -> None:
        self.submissions: List[tuple] = []
        self.submit_result: Any = SubmissionResult(job_id="J1")
        self.statuses: deque = deque()
        self.status_calls: List[str] = []

    def submit_upload(self, raw_file: RawFile, mapping: dict) -> SubmissionResult:
        self.submissions.append((raw_file, dict(mapping)))
        result = self.submit_result
        if callable(result):
            result = result()
        if isinstance(result, Exception):
            raise result
        return result

    def job_status(self, job_id: str) -> JobStatusReport:
        self.status_calls.append(job_id)
        item = self.statuses.popleft()
        if callable(item):
            item = item()
        if isinstance(item, Exception):
            raise item
        return item


def report(status: str, progress: int, error: Optional[str] = None) -> JobStatusReport:
    return JobStatusReport(status=JobStatus(status), progress=progress, error_message=error)


def make_xlsx(rows: Sequence[Sequence[Any]], extra_sheets: Optional[dict] = None) -> bytes:
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Transactions"
    for row in rows:
        ws.append(list(row))
    for title, sheet_rows in (extra_sheets or {}).items():
        other = wb.create_sheet(title)
        for row in sheet_rows:
            other.append(list(row))
    buf = BytesIO()
    wb.save(buf)
    return buf.getvalue()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def sample_csv() -> bytes:
    return b"TxnID,Amt,Ref\nT1,10.50,R1\nT2,20.00,R2\nT3,30.25,R3\n"
