"""
Aggregation Recalculator
========================
Dashboard statistics over the whole students table (never a filtered
view). Every change notification triggers a full re-fetch and a
from-scratch recompute; counts are never patched incrementally.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional

import pandas as pd
from pydantic import BaseModel, Field

from config.logging_config import logger
from livesync.backend import QuerySpec, RemoteBackend
from livesync.change_stream import ChangeStreamClient, ConnectionStatus, Subscription
from livesync.events import ChangeEvent, EventType
from livesync.models import StudentStatus

STATS_COLUMNS = ["status", "gpa", "current_semester"]


class SemesterCount(BaseModel):
    semester: int
    count:    int


class DashboardStats(BaseModel):
    total_students:        int
    count_by_status:       dict[str, int]
    active_students:       int
    graduated_students:    int
    dropout_students:      int
    on_leave_students:     int
    average_gpa:           float
    graduation_rate:       float
    dropout_rate:          float
    semester_distribution: list[SemesterCount] = Field(default_factory=list)
    computed_at:           datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def _ratio(count: int, total: int) -> float:
    return count / total if total > 0 else 0.0


def compute_stats(records: Iterable[Mapping[str, Any]]) -> DashboardStats:
    """
    Derive dashboard statistics from raw student rows.

    Rates are fractions of the total (0.0-1.0) and are 0.0 for an empty
    table. The GPA average only counts students with a GPA above zero.
    """
    df = pd.DataFrame(list(records), columns=STATS_COLUMNS)
    total = len(df)

    statuses = df["status"].map(lambda s: getattr(s, "value", s))
    counts = {status.value: 0 for status in StudentStatus}
    for status, count in statuses.value_counts().items():
        counts[str(status)] = int(count)

    gpa = pd.to_numeric(df["gpa"], errors="coerce")
    graded = gpa[gpa > 0]
    average_gpa = float(graded.mean()) if not graded.empty else 0.0

    semesters = pd.to_numeric(df["current_semester"], errors="coerce").dropna().astype(int)
    distribution = [
        SemesterCount(semester=int(semester), count=int(count))
        for semester, count in semesters.value_counts().sort_index().items()
    ]

    return DashboardStats(
        total_students        = total,
        count_by_status       = counts,
        active_students       = counts[StudentStatus.ACTIVE.value],
        graduated_students    = counts[StudentStatus.GRADUATED.value],
        dropout_students      = counts[StudentStatus.DROPOUT.value],
        on_leave_students     = counts[StudentStatus.ON_LEAVE.value],
        average_gpa           = average_gpa,
        graduation_rate       = _ratio(counts[StudentStatus.GRADUATED.value], total),
        dropout_rate          = _ratio(counts[StudentStatus.DROPOUT.value], total),
        semester_distribution = distribution,
    )


class AggregationRecalculator:
    """Owns its own fetch + subscription pair on the students table."""

    collection = "students"

    def __init__(self, backend: RemoteBackend, stream: ChangeStreamClient) -> None:
        self._backend    = backend
        self._stream     = stream
        self._handle: Subscription | None = None
        self._generation = 0
        self._closed     = False

        self.stats: Optional[DashboardStats] = None
        self.loading: bool = False
        self.error: str | None = None

    @property
    def status(self) -> ConnectionStatus:
        return self._handle.status if self._handle else ConnectionStatus()

    async def start(self) -> None:
        self._handle = await self._stream.open(
            self.collection, self._on_change, event_mask=EventType.ALL
        )
        await self.refresh()

    async def close(self) -> None:
        self._closed = True
        self._generation += 1
        if self._handle is not None:
            await self._stream.close(self._handle)

    async def reconnect(self) -> None:
        if self._handle is None or self._closed:
            return
        await self._stream.reconnect(self._handle)
        await self.refresh()

    async def _on_change(self, event: ChangeEvent) -> None:
        logger.debug(f"📊 {self.collection} changed ({event.event_type.value}), recalculating statistics …")
        await self.refresh()

    async def refresh(self) -> None:
        """Re-fetch every row and swap in a new snapshot; keep the old one on failure."""
        if self._closed:
            return
        self._generation += 1
        generation = self._generation
        self.loading = True

        try:
            rows = await self._backend.query(
                self.collection, QuerySpec(select=", ".join(STATS_COLUMNS))
            )
            snapshot = compute_stats(rows)
        except Exception as exc:
            if self._closed or generation != self._generation:
                return
            logger.error(f"Error fetching dashboard stats: {exc}")
            self.error   = str(exc) or "Failed to load dashboard statistics"
            self.loading = False
            return

        if self._closed or generation != self._generation:
            return
        self.stats   = snapshot
        self.error   = None
        self.loading = False
        logger.info(
            f"Dashboard stats refreshed: {snapshot.total_students:,} students, "
            f"avg GPA {snapshot.average_gpa:.2f}"
        )
