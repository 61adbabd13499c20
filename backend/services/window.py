from datetime import datetime, timezone
from typing import Literal

from database.db import ClassSessionRow, get_live_sessions, parse_ts, to_utc

WindowState = Literal["live", "not_started", "ended", "missing"]


def utc_now() -> datetime:
    """The only clock marking decisions are made against."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def is_live(start: datetime, end: datetime, now: datetime) -> bool:
    return to_utc(start) <= to_utc(now) <= to_utc(end)


def evaluate_window(session: ClassSessionRow | None, now: datetime) -> WindowState:
    if session is None:
        return "missing"
    start = parse_ts(session["start_time"])
    end = parse_ts(session["end_time"])
    if is_live(start, end, now):
        return "live"
    if to_utc(now) < start:
        return "not_started"
    return "ended"


def list_live_sessions(course_ids: list[int], now: datetime | None = None) -> list[ClassSessionRow]:
    return get_live_sessions(course_ids, now or utc_now())
