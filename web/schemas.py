from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field


class ClassificationModel(BaseModel):
    label: str = Field(..., description="Gesture name, or 'None'/'error'")
    confidence: float = Field(..., ge=0.0, le=1.0)
    description: str
    glyph: str
    suggested_action: str | None = None


class HistoryEntryModel(ClassificationModel):
    timestamp_ms: int = Field(..., description="Capture time in epoch milliseconds")


class SchedulerStatsModel(BaseModel):
    ticks: int = 0
    dropped: int = 0
    unavailable: int = 0
    completed: int = 0
    failed: int = 0


class StateResponse(BaseModel):
    phase: str
    error: str | None = None
    in_flight: bool = False
    current: ClassificationModel | None = None
    history_size: int = 0
    consecutive_errors: int = 0
    stats: SchedulerStatsModel = Field(default_factory=SchedulerStatsModel)


class HistoryResponse(BaseModel):
    capacity: int
    entries: List[HistoryEntryModel] = Field(default_factory=list)


__all__ = [
    "ClassificationModel",
    "HistoryEntryModel",
    "HistoryResponse",
    "SchedulerStatsModel",
    "StateResponse",
]
