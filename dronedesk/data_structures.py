from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from .errors import InvalidRangeError
from .utils import format_duration, to_iso, to_utc


@dataclass(frozen=True)
class TimeWindow:
    """Half-open interval [start, end) in UTC."""

    start: datetime
    end: datetime

    def __post_init__(self):
        start = to_utc(self.start)
        end = to_utc(self.end)
        if end <= start:
            raise InvalidRangeError()
        object.__setattr__(self, "start", start)
        object.__setattr__(self, "end", end)

    def overlaps(self, other: "TimeWindow") -> bool:
        return self.start < other.end and other.start < self.end

    def contains(self, instant: datetime) -> bool:
        instant = to_utc(instant)
        return self.start <= instant < self.end

    def overlap_duration(self, other: "TimeWindow") -> timedelta:
        if not self.overlaps(other):
            return timedelta(0)
        return min(self.end, other.end) - max(self.start, other.start)

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def __str__(self):
        return f"{self.start.strftime('%Y-%m-%d %H:%M')} → {self.end.strftime('%Y-%m-%d %H:%M')} UTC ({format_duration(self.duration)})"


def overlaps(a: TimeWindow, b: TimeWindow) -> bool:
    return a.overlaps(b)


@dataclass
class AvailabilitySnapshot:
    window: TimeWindow
    available_pilots: List[object] = field(default_factory=list)
    available_drones: List[object] = field(default_factory=list)
    busy_pilots: List[str] = field(default_factory=list)
    busy_drones: List[str] = field(default_factory=list)

    def is_pilot_available(self, pilot_id: str) -> bool:
        return pilot_id not in self.busy_pilots

    def is_drone_available(self, drone_id: str) -> bool:
        return drone_id not in self.busy_drones


@dataclass
class ScheduleConflict:
    resource: str
    schedule_id: str
    job_id: str
    window: TimeWindow
    overlap: Optional[timedelta] = None

    def as_payload(self) -> dict:
        return {
            "id": self.schedule_id,
            "startAt": to_iso(self.window.start),
            "endAt": to_iso(self.window.end),
            "jobId": self.job_id,
        }

    def __str__(self):
        return (f"{self.resource.capitalize()} is blocked by schedule {self.schedule_id}, "
                f"from {to_iso(self.window.start)} to {to_iso(self.window.end)}")
