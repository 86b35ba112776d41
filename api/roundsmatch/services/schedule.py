from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


@dataclass(frozen=True)
class WeeklySlot:
    weekday: int
    at: time

    def __str__(self) -> str:
        return f"{WEEKDAYS[self.weekday]} {self.at.strftime('%H:%M')}"


def get_week_start_date(now: datetime, tz: str = "America/New_York") -> date:
    local_now = now.astimezone(ZoneInfo(tz))
    return local_now.date() - timedelta(days=local_now.weekday())


def parse_week_identifier(value: str) -> date:
    """Accepts `YYYY-MM-DD` (any day of the week) or ISO week `YYYY-Www`."""
    raw = value.strip()
    if "-W" in raw.upper():
        year_s, week_s = raw.upper().split("-W", 1)
        return date.fromisocalendar(int(year_s), int(week_s), 1)
    d = date.fromisoformat(raw)
    return d - timedelta(days=d.weekday())


def parse_schedule(value: str) -> WeeklySlot:
    parts = value.strip().lower().split()
    if len(parts) != 2 or parts[0] not in WEEKDAYS:
        raise ValueError(f"schedule must look like 'thursday 16:00', got {value!r}")
    hh, _, mm = parts[1].partition(":")
    return WeeklySlot(weekday=WEEKDAYS.index(parts[0]), at=time(int(hh), int(mm or 0)))


def slot_for_week(week_start_date: date, slot: WeeklySlot, tz: str) -> datetime:
    day = week_start_date + timedelta(days=slot.weekday)
    return datetime.combine(day, slot.at, tzinfo=ZoneInfo(tz))


def is_schedule_due(now: datetime, slot: WeeklySlot, tz: str) -> bool:
    week_start = get_week_start_date(now, tz)
    return now >= slot_for_week(week_start, slot, tz)


def next_scheduled_run(now: datetime, slot: WeeklySlot, tz: str) -> datetime:
    week_start = get_week_start_date(now, tz)
    at = slot_for_week(week_start, slot, tz)
    if now >= at:
        at = slot_for_week(week_start + timedelta(days=7), slot, tz)
    return at
