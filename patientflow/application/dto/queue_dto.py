from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class QueueEntryResponse(BaseModel):
    id: int
    visit_id: int
    station: str
    priority: str
    status: str
    enqueued_at: datetime
    started_at: datetime | None = None
    held_at: datetime | None = None
    completed_at: datetime | None = None
    left_at: datetime | None = None
    assigned_to: str | None = None
    wait_minutes: int = 0


class StationQueueStats(BaseModel):
    station: str
    waiting: int = 0
    in_progress: int = 0
    on_hold: int = 0
