"""ffa_calendar_etl.timezones

Date/timezone resolution for scraped competitions.

The FFA calendar only publishes local calendar days and optional "HH:MM"
race times.  These helpers turn them into aware UTC timestamps using the
IANA zone of the competition's ligue, or of its department for overseas
collectivities without a ligue zone.  DST arithmetic is left to zoneinfo.

Start rule: earliest calendar day across the competition date and explicit
race sub-dates; the first non-midnight race time on that day (input order)
wins; otherwise local midnight.  End is the start of the last race.
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

from ffa_calendar_etl.models import ScrapedCompetition, ScrapedSubEvent
from ffa_calendar_etl.normalize import parse_clock_time, parse_day_month, trim

METROPOLITAN_ZONE = "Europe/Paris"

REGION_TIME_ZONES: dict[str, str] = {
    "GUA": "America/Guadeloupe",
    "GUY": "America/Cayenne",
    "MAR": "America/Martinique",
    "MAY": "Indian/Mayotte",
    "N-C": "Pacific/Noumea",
    "P-F": "Pacific/Tahiti",
    "REU": "Indian/Reunion",
    "W-F": "Pacific/Wallis",
}

DEPARTMENT_TIME_ZONES: dict[str, str] = {
    "971": "America/Guadeloupe",
    "972": "America/Martinique",
    "973": "America/Cayenne",
    "974": "Indian/Reunion",
    "975": "America/Miquelon",
    "976": "Indian/Mayotte",
    "977": "America/St_Barthelemy",
    "978": "America/Marigot",
    "986": "Pacific/Wallis",
    "987": "Pacific/Tahiti",
    "988": "Pacific/Noumea",
}


# ---------------------------------------------------------------------------
# Zone lookup
# ---------------------------------------------------------------------------

def resolve_zone(region: str | None, department: str | None = None) -> str:
    """IANA zone for a ligue code; metropolitan ligues share Europe/Paris.

    A ligue without a zone of its own defers to the department, so overseas
    collectivities (975, 977, 978) keep their local zone.
    """
    zone = REGION_TIME_ZONES.get(region or "")
    if zone is not None:
        return zone
    return zone_for_department(department)


def zone_for_department(code: str | None) -> str:
    v = trim(code)
    if v is None:
        return METROPOLITAN_ZONE
    return DEPARTMENT_TIME_ZONES.get(v, METROPOLITAN_ZONE)


# ---------------------------------------------------------------------------
# Conversion primitives
# ---------------------------------------------------------------------------

def local_to_utc(day: date, clock: str | None, zone: str) -> datetime:
    """Combine a local day and optional "HH:MM" in zone, return aware UTC."""
    hours, minutes = 0, 0
    parsed = parse_clock_time(clock)
    if parsed is not None:
        hours, minutes = (int(p) for p in parsed.split(":"))
    local = datetime.combine(day, time(hours, minutes), tzinfo=ZoneInfo(zone))
    return local.astimezone(timezone.utc)


def to_local(ts: datetime, zone: str) -> datetime:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(ZoneInfo(zone))


def local_day(ts: datetime, zone: str) -> date:
    return to_local(ts, zone).date()


def is_local_midnight(ts: datetime, zone: str) -> bool:
    local = to_local(ts, zone)
    return local.hour == 0 and local.minute == 0 and local.second == 0


def same_local_day(a: datetime, b: datetime, zone: str) -> bool:
    return local_day(a, zone) == local_day(b, zone)


def realign_keeping_time(ts: datetime, new_start: datetime, zone: str) -> datetime:
    """Move ts to new_start's local day, keeping ts's local time unless midnight."""
    if is_local_midnight(ts, zone):
        return new_start
    local = to_local(ts, zone)
    moved = datetime.combine(local_day(new_start, zone), local.time(), tzinfo=ZoneInfo(zone))
    return moved.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Record resolution
# ---------------------------------------------------------------------------

def _has_precise_time(sub_event: ScrapedSubEvent) -> bool:
    clock = parse_clock_time(sub_event.start_time)
    return clock is not None and clock != "00:00"


def sub_event_day(record: ScrapedCompetition, sub_event: ScrapedSubEvent) -> date:
    """Calendar day of a race: explicit "DD/MM" sub-date or the competition day.

    The sub-date borrows the competition's year, rolling over to the next year
    for a January race of a competition starting in December.
    """
    parsed = parse_day_month(sub_event.race_date)
    if parsed is None:
        return record.date
    day, month = parsed
    year = record.date.year
    if month == 1 and record.date.month == 12:
        year += 1
    try:
        return date(year, month, day)
    except ValueError:
        return record.date


def resolve_sub_event_start(record: ScrapedCompetition, sub_event: ScrapedSubEvent) -> datetime:
    zone = resolve_zone(record.region, record.department)
    return local_to_utc(sub_event_day(record, sub_event), sub_event.start_time, zone)


def resolve_start(record: ScrapedCompetition) -> datetime:
    zone = resolve_zone(record.region, record.department)
    days = [record.date] + [sub_event_day(record, s) for s in record.sub_events]
    first_day = min(days)
    for sub_event in record.sub_events:
        if sub_event_day(record, sub_event) == first_day and _has_precise_time(sub_event):
            return local_to_utc(first_day, sub_event.start_time, zone)
    return local_to_utc(first_day, None, zone)


def resolve_end(record: ScrapedCompetition) -> datetime:
    if not record.sub_events:
        return resolve_start(record)
    return resolve_sub_event_start(record, record.sub_events[-1])
