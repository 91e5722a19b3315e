"""
Job Progress Tracker.

A polling state machine for one upload job at a time::

    IDLE --SUBMIT--> SUBMITTING --ACCEPTED--> POLLING --COMPLETED--> COMPLETED
                         |    \\                  \\
                     REJECTED  DUPLICATE           FAILED --> FAILED
                         |         \\
                        IDLE     COMPLETED

    RESET: any state --> IDLE

Polling is a chain rather than an interval: each poll schedules the next one
only after its own answer was applied, so requests never overlap and answers
apply in the order they were requested. Every polling session has a
generation number; an answer carrying an old generation, or arriving once
the session is terminal, is discarded.

There is no polling deadline. A job is polled until it reports a terminal
status or the tracker is reset.
"""

from __future__ import annotations

import functools
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol

from recon_ingest.client import PROGRESS_UNAVAILABLE
from recon_ingest.config import TrackerConfig
from recon_ingest.errors import InvalidTransitionError, PollingFailure, TrackerBusyError
from recon_ingest.logging_setup import get_logger
from recon_ingest.schema import JobStatus, JobStatusReport

logger = get_logger("tracker")

PROCESSING_FAILED = "Upload processing failed."


# ---------------------------------------------------------------------------
# States and transitions
# ---------------------------------------------------------------------------

class TrackerState(str, Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TrackerState.COMPLETED, TrackerState.FAILED)

    @property
    def is_busy(self) -> bool:
        return self in (TrackerState.SUBMITTING, TrackerState.POLLING)


class TrackerEvent(str, Enum):
    SUBMIT = "submit"
    REJECTED = "rejected"
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    COMPLETED = "completed"
    FAILED = "failed"
    RESET = "reset"


_TRANSITIONS: Dict[tuple, TrackerState] = {
    (TrackerState.IDLE, TrackerEvent.SUBMIT): TrackerState.SUBMITTING,
    (TrackerState.SUBMITTING, TrackerEvent.REJECTED): TrackerState.IDLE,
    (TrackerState.SUBMITTING, TrackerEvent.ACCEPTED): TrackerState.POLLING,
    (TrackerState.SUBMITTING, TrackerEvent.DUPLICATE): TrackerState.COMPLETED,
    (TrackerState.POLLING, TrackerEvent.COMPLETED): TrackerState.COMPLETED,
    (TrackerState.POLLING, TrackerEvent.FAILED): TrackerState.FAILED,
}


def next_state(state: TrackerState, event: TrackerEvent) -> TrackerState:
    """Pure transition function.

    Raises
    ------
    TrackerBusyError
        ``SUBMIT`` while a submission or poll session is in flight.
    InvalidTransitionError
        Any other pair missing from the table.
    """
    if event is TrackerEvent.RESET:
        return TrackerState.IDLE
    try:
        return _TRANSITIONS[(state, event)]
    except KeyError:
        if event is TrackerEvent.SUBMIT and state.is_busy:
            raise TrackerBusyError(
                "An upload is already in progress. Reset before submitting again."
            ) from None
        if event is TrackerEvent.SUBMIT and state.is_terminal:
            raise InvalidTransitionError(
                f"The previous upload is {state.value}. Reset before submitting again."
            ) from None
        raise InvalidTransitionError(
            f"Cannot apply '{event.value}' while {state.value}"
        ) from None


@dataclass(frozen=True)
class TrackerSnapshot:
    state: TrackerState
    job_id: Optional[str]
    progress: int
    message: Optional[str]
    duplicate: bool
    generation: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "job_id": self.job_id,
            "progress": self.progress,
            "message": self.message,
            "duplicate": self.duplicate,
        }


# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------

class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class ThreadScheduler:
    """Runs each callback once on a daemon ``threading.Timer``."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.name = "job-poll"
        timer.start()
        return timer


class StatusSource(Protocol):
    def job_status(self, job_id: str) -> JobStatusReport: ...


Listener = Callable[[TrackerSnapshot], None]


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------

class JobProgressTracker:
    """Owns the single polling timer of one workflow.

    Parameters
    ----------
    client:
        Anything with ``job_status(job_id) -> JobStatusReport``.
    config:
        Poll period.
    scheduler:
        Timer factory; ``ThreadScheduler`` when omitted.
    """

    def __init__(
        self,
        client: StatusSource,
        config: Optional[TrackerConfig] = None,
        scheduler: Optional[Scheduler] = None,
    ) -> None:
        self._client = client
        self._config = config or TrackerConfig()
        self._scheduler = scheduler or ThreadScheduler()
        self._lock = threading.RLock()
        self._listeners: List[Listener] = []

        self._state = TrackerState.IDLE
        self._job_id: Optional[str] = None
        self._progress = 0
        self._message: Optional[str] = None
        self._duplicate = False
        self._timer: Optional[TimerHandle] = None
        self._generation = 0

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    @property
    def state(self) -> TrackerState:
        return self._state

    @property
    def has_active_timer(self) -> bool:
        return self._timer is not None

    def snapshot(self) -> TrackerSnapshot:
        with self._lock:
            return TrackerSnapshot(
                state=self._state,
                job_id=self._job_id,
                progress=self._progress,
                message=self._message,
                duplicate=self._duplicate,
                generation=self._generation,
            )

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _notify(self, snap: TrackerSnapshot) -> None:
        for listener in list(self._listeners):
            listener(snap)

    # ------------------------------------------------------------------ #
    # Transitions
    # ------------------------------------------------------------------ #

    def transition(self, event: TrackerEvent) -> TrackerState:
        """Move the machine along *event*; see ``next_state``."""
        with self._lock:
            previous = self._state
            self._state = next_state(previous, event)
            logger.info("Tracker %s --%s--> %s", previous.value, event.value, self._state.value)
            return self._state

    def begin_submission(self) -> None:
        with self._lock:
            self.transition(TrackerEvent.SUBMIT)
            self._message = None
            self._duplicate = False
            self._progress = 0
            snap = self.snapshot()
        self._notify(snap)

    def submission_rejected(self, message: str) -> None:
        with self._lock:
            self.transition(TrackerEvent.REJECTED)
            self._message = message
            snap = self.snapshot()
        self._notify(snap)

    def finish_duplicate(self, job_id: Optional[str], notice: str) -> None:
        """Treat an already-processed file as a completed job."""
        with self._lock:
            self.transition(TrackerEvent.DUPLICATE)
            self._job_id = job_id
            self._progress = 100
            self._message = notice
            self._duplicate = True
            snap = self.snapshot()
        self._notify(snap)

    def start(self, job_id: str) -> None:
        """Begin polling *job_id* from 0%."""
        with self._lock:
            self.transition(TrackerEvent.ACCEPTED)
            self._job_id = job_id
            self._progress = 0
            self._generation += 1
            self._schedule(self._generation)
            snap = self.snapshot()
        logger.info("Polling job %s every %.1fs", job_id, self._config.poll_interval)
        self._notify(snap)

    def reset(self) -> None:
        """Stop any timer and return to IDLE, whatever the current state."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._generation += 1
            self.transition(TrackerEvent.RESET)
            self._job_id = None
            self._progress = 0
            self._message = None
            self._duplicate = False
            snap = self.snapshot()
        self._notify(snap)

    close = reset

    # ------------------------------------------------------------------ #
    # Polling
    # ------------------------------------------------------------------ #

    def _schedule(self, generation: int) -> None:
        self._timer = self._scheduler.call_later(
            self._config.poll_interval, functools.partial(self.poll, generation)
        )

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and self._state is TrackerState.POLLING

    def poll(self, generation: int) -> None:
        """One status request for session *generation*; timer callback."""
        with self._lock:
            if not self._is_current(generation):
                logger.debug("Skipping poll for stale session %d", generation)
                return
            self._timer = None
            job_id = self._job_id

        try:
            report = self._client.job_status(job_id)
        except PollingFailure as exc:
            self._fail(generation, exc.message)
        except Exception:  # noqa: BLE001
            logger.exception("Progress polling error for job %s", job_id)
            self._fail(generation, PROGRESS_UNAVAILABLE)
        else:
            self._apply(generation, report)

    def _apply(self, generation: int, report: JobStatusReport) -> None:
        with self._lock:
            if not self._is_current(generation):
                logger.info(
                    "Discarding late status %s (%d%%) for session %d",
                    report.status.value, report.progress, generation,
                )
                return

            # The server is the source of truth; a lower figure is shown as-is
            self._progress = report.progress

            if report.status is JobStatus.COMPLETED:
                self.transition(TrackerEvent.COMPLETED)
                self._message = None
                logger.info("Job %s completed", self._job_id)
            elif report.status is JobStatus.FAILED:
                self.transition(TrackerEvent.FAILED)
                self._message = report.error_message or PROCESSING_FAILED
                logger.warning("Job %s failed: %s", self._job_id, self._message)
            else:
                self._schedule(generation)
            snap = self.snapshot()
        self._notify(snap)

    def _fail(self, generation: int, message: str) -> None:
        with self._lock:
            if not self._is_current(generation):
                logger.info("Discarding late polling error for session %d: %s", generation, message)
                return
            self.transition(TrackerEvent.FAILED)
            self._message = message
            snap = self.snapshot()
        self._notify(snap)
