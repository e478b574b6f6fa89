from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, List, Optional, Sequence, Tuple, Union

from dayplan.core.timeutils import ensure_utc

Location = Union[str, Tuple[float, float]]

HOME_LABEL = "From Home"
NEXT_STOP_LABEL = "Next Stop"


class ScheduleStatus(str, Enum):
    EMPTY = "empty"
    ON_TRACK = "on_track"
    RUNNING_LATE = "running_late"
    COMPLETED = "completed"


STATUS_MESSAGES = {
    ScheduleStatus.EMPTY: "No events planned",
    ScheduleStatus.ON_TRACK: "You're on track",
    ScheduleStatus.RUNNING_LATE: "You're running behind schedule",
    ScheduleStatus.COMPLETED: "All done for the day",
}


@dataclass
class ScheduleReport:
    status: ScheduleStatus
    now: datetime
    current_event_id: Optional[Any] = None
    next_event_id: Optional[Any] = None
    minutes_behind: int = 0
    minutes_until_next: Optional[int] = None
    travel_seconds: Optional[int] = None

    @property
    def message(self) -> str:
        return STATUS_MESSAGES[self.status]

    @property
    def is_late(self) -> bool:
        return self.status == ScheduleStatus.RUNNING_LATE


@dataclass
class Leg:
    """One hop of the day: from home or the previous event to the next event"""
    destination: Location
    to_event: Any
    origin: Optional[Location] = None
    from_event: Any = None
    is_first: bool = False

    @property
    def label(self) -> str:
        return HOME_LABEL if self.is_first and self.from_event is None else NEXT_STOP_LABEL


def _minutes(delta: timedelta) -> int:
    return int(delta.total_seconds() // 60)


def _ordered(events: Sequence[Any]) -> List[Any]:
    return sorted(events, key=lambda e: ensure_utc(e.start_utc))


def evaluate_schedule(
    events: Sequence[Any],
    now: datetime,
    travel_seconds: Optional[int] = None,
    grace_minutes: int = 5,
) -> ScheduleReport:
    """
    Decide whether the user is keeping up with the day.

    ``events`` only need ``id``, ``start_utc``, ``end_utc`` and ``completed``.
    ``travel_seconds`` is the time needed to reach the next upcoming event
    from where the user is now.
    """
    now = ensure_utc(now)
    report = ScheduleReport(status=ScheduleStatus.EMPTY, now=now, travel_seconds=travel_seconds)
    if not events:
        return report

    pending = [e for e in _ordered(events) if not e.completed]
    if not pending:
        report.status = ScheduleStatus.COMPLETED
        return report

    behind = timedelta(0)

    overdue = [e for e in pending if ensure_utc(e.end_utc) <= now]
    if overdue:
        behind = max(behind, now - ensure_utc(overdue[0].end_utc))

    current = next(
        (e for e in pending if ensure_utc(e.start_utc) <= now < ensure_utc(e.end_utc)),
        None,
    )
    upcoming = next((e for e in pending if ensure_utc(e.start_utc) > now), None)

    if current is not None:
        report.current_event_id = current.id

    if upcoming is not None:
        start = ensure_utc(upcoming.start_utc)
        report.next_event_id = upcoming.id
        report.minutes_until_next = _minutes(start - now)
        arrival = now + timedelta(seconds=travel_seconds or 0)
        slack = start + timedelta(minutes=grace_minutes)
        if arrival > slack:
            behind = max(behind, arrival - start)

    report.minutes_behind = _minutes(behind)
    report.status = ScheduleStatus.RUNNING_LATE if report.minutes_behind > 0 else ScheduleStatus.ON_TRACK
    return report


def event_location(event: Any) -> Location:
    """Coordinates when the place was resolved, else the free-text location"""
    if getattr(event, "latitude", None) is not None and getattr(event, "longitude", None) is not None:
        return (event.latitude, event.longitude)
    return event.location


def build_legs(events: Sequence[Any], home: Optional[Location] = None) -> List[Leg]:
    ordered = _ordered(events)
    legs: List[Leg] = []
    if not ordered:
        return legs

    if home:
        legs.append(Leg(origin=home, destination=event_location(ordered[0]), to_event=ordered[0], is_first=True))

    for prev, nxt in zip(ordered, ordered[1:]):
        legs.append(Leg(
            origin=event_location(prev),
            destination=event_location(nxt),
            from_event=prev,
            to_event=nxt,
            is_first=not legs,
        ))
    return legs


def leave_by(next_start: datetime, travel_seconds: Optional[int]) -> Optional[datetime]:
    if travel_seconds is None:
        return None
    return ensure_utc(next_start) - timedelta(seconds=travel_seconds)


def buffer_minutes(prev_end: Optional[datetime], next_start: datetime, travel_seconds: Optional[int]) -> Optional[int]:
    """Free minutes between events after travelling; negative means a conflict"""
    if prev_end is None or travel_seconds is None:
        return None
    gap = ensure_utc(next_start) - ensure_utc(prev_end) - timedelta(seconds=travel_seconds)
    return _minutes(gap)
