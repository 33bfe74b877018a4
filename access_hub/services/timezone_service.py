from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from access_hub.config import settings


def get_facility_timezone() -> ZoneInfo:
    try:
        return ZoneInfo(settings.FACILITY_TIMEZONE)
    except ZoneInfoNotFoundError:
        return ZoneInfo("UTC")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_aware(value: datetime) -> datetime:
    """Naive values read back from SQLite are stored as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def localize(value: datetime) -> datetime:
    """Interpret a naive caller-supplied datetime as facility-local time."""
    if value.tzinfo is None:
        return value.replace(tzinfo=get_facility_timezone())
    return value


def local_date(value: datetime) -> date:
    return as_aware(value).astimezone(get_facility_timezone()).date()


def local_time_of_day(value: datetime) -> time:
    return as_aware(value).astimezone(get_facility_timezone()).time()


def local_midnight(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=get_facility_timezone())


def to_utc(value: datetime) -> datetime:
    """Normalize caller input for storage; every persisted datetime is UTC."""
    return localize(value).astimezone(timezone.utc)
