"""
History/Audit Log for workflow runs.

Every transition of a run is recorded as an ordered, append-only
HistoryEntry. Entries are never mutated or deleted by the engine; the log is
used for observability and post-hoc debugging.
"""

from typing import Any, Dict, Iterator, List, Optional, Tuple
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum


class EventKind(str, Enum):
    """Kinds of event recorded in a run's history."""
    RUN_STARTED = "run_started"
    STEP_SUCCEEDED = "step_succeeded"
    STEP_FAILED = "step_failed"
    STEP_ABANDONED = "step_abandoned"
    RUN_SUCCEEDED = "run_succeeded"
    RUN_FAILED = "run_failed"
    RUN_TIMED_OUT = "run_timed_out"
    RUN_CANCELLED = "run_cancelled"


STEP_EVENTS = frozenset({
    EventKind.STEP_SUCCEEDED,
    EventKind.STEP_FAILED,
    EventKind.STEP_ABANDONED,
})


class HistoryEntry(BaseModel):
    """
    A single record in a run's audit trail.

    Attributes:
        run_id: The run this entry belongs to
        seq: Position in the run's history, starting at 1
        step_name: Step the event concerns
        event_kind: What happened
        timestamp: Wall-clock time the entry was recorded
        payload: Event data (step output, next step, policy decision...)
        error: Error record for failures
    """

    run_id: str
    seq: int = Field(..., ge=1)
    step_name: Optional[str]
    event_kind: EventKind
    timestamp: datetime = Field(default_factory=datetime.now)
    payload: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[Dict[str, Any]] = None

    class Config:
        frozen = True

    @property
    def is_step_event(self) -> bool:
        return self.event_kind in STEP_EVENTS


class RunHistory:
    """
    Append-only history of one run.

    Only the run's executor appends; readers get immutable snapshots.
    """

    def __init__(self, run_id: str):
        self.run_id = run_id
        self._entries: List[HistoryEntry] = []

    def append(
        self,
        event_kind: EventKind,
        step_name: Optional[str],
        payload: Optional[Dict[str, Any]] = None,
        error: Optional[Dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> HistoryEntry:
        """Record a new entry and return it."""
        entry = HistoryEntry(
            run_id=self.run_id,
            seq=len(self._entries) + 1,
            step_name=step_name,
            event_kind=event_kind,
            timestamp=timestamp or datetime.now(),
            payload=payload or {},
            error=error,
        )
        self._entries.append(entry)
        return entry

    @property
    def entries(self) -> Tuple[HistoryEntry, ...]:
        """Snapshot of all entries in order."""
        return tuple(self._entries)

    @property
    def last(self) -> Optional[HistoryEntry]:
        return self._entries[-1] if self._entries else None

    def transitions(self) -> List[HistoryEntry]:
        """Step-level entries (succeeded, failed, abandoned) in order."""
        return [entry for entry in self._entries if entry.is_step_event]

    def to_list(self) -> List[Dict[str, Any]]:
        """Serialize the history to a list of dictionaries."""
        return [entry.model_dump(mode="json") for entry in self._entries]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[HistoryEntry]:
        return iter(tuple(self._entries))
