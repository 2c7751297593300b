from datetime import date, datetime, time


def parse_date(value) -> date:
    # Expect ISO format like "2026-01-20" (a full datetime is truncated to its day)
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.fromisoformat(str(value).strip()).date()


def parse_hhmm(value) -> time:
    if isinstance(value, time):
        return value
    hour, minute = str(value).strip().split(":")
    return time(int(hour), int(minute))


def minutes_of(t: time) -> int:
    return t.hour * 60 + t.minute


def time_of(minutes: int) -> time:
    return time(minutes // 60, minutes % 60)


def parse_int(value, field: str):
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"{field} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{field} must be an integer")
