"""ffa_calendar_etl.races

Sub-event reconciler: aligns scraped races with the races of a catalog
edition, never assigning one catalog race twice.

Per scraped race, in input order:
  1. infer its category and resolve its calendar day / start
  2. distance-compatible catalog races (|catalog - scraped| <= tolerance x scraped)
     that are not consumed yet are eligible, except:
       - a category mismatch is rejected only when the catalog race sits on
         another known calendar day
       - a race on another day loses to any other eligible race on the scraped day
  3. the preferred eligible race (same day, then same category, then closest
     distance) is consumed
  4. without a scraped distance, a case-insensitive "name contains" match is used

Unmatched scraped races become RaceAddition entries; matched ones produce a
RaceUpdate only when something actually changed.  Unconsumed catalog races
are returned for the date-realignment pass.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime

from ffa_calendar_etl.categories import distance_fields, infer_categories, normalize_race_name
from ffa_calendar_etl.models import (
    CatalogRace,
    FieldChange,
    RaceAddition,
    RaceUpdate,
    ScrapedCompetition,
    ScrapedSubEvent,
)
from ffa_calendar_etl.normalize import parse_clock_time
from ffa_calendar_etl.timezones import (
    is_local_midnight,
    local_day,
    realign_keeping_time,
    resolve_sub_event_start,
    resolve_zone,
    same_local_day,
    sub_event_day,
)

log = logging.getLogger(__name__)

ELEVATION_TOLERANCE_M = 10


@dataclass
class RaceReconciliation:
    to_add: list[RaceAddition] = field(default_factory=list)
    to_update: list[RaceUpdate] = field(default_factory=list)
    unmatched: list[CatalogRace] = field(default_factory=list)
    pairs: list[tuple[ScrapedSubEvent, CatalogRace]] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Candidate selection
# ---------------------------------------------------------------------------

def _race_day(race: CatalogRace, zone: str) -> date | None:
    if race.start_date is None:
        return None
    return local_day(race.start_date, race.time_zone or zone)


def _category_compatible(race: CatalogRace, level_1: str) -> bool:
    return not race.category_level_1 or race.category_level_1 == level_1


def _select_by_distance(
    distance_m: int,
    level_1: str,
    day: date,
    available: list[CatalogRace],
    tolerance: float,
    zone: str,
) -> CatalogRace | None:
    compatible = [
        r for r in available
        if abs(r.total_distance_m - distance_m) <= tolerance * distance_m
    ]
    same_day_exists = any(
        _race_day(r, zone) == day and _category_compatible(r, level_1)
        for r in compatible
    )
    eligible = []
    for race in compatible:
        race_day = _race_day(race, zone)
        if (not _category_compatible(race, level_1)
                and race_day is not None and race_day != day):
            continue
        if race_day is not None and race_day != day and same_day_exists:
            continue
        eligible.append(race)
    if not eligible:
        return None
    return min(
        eligible,
        key=lambda r: (
            _race_day(r, zone) != day,
            not _category_compatible(r, level_1),
            abs(r.total_distance_m - distance_m),
        ),
    )


def _select_by_name(name: str, available: list[CatalogRace]) -> CatalogRace | None:
    lowered = name.lower().strip()
    if not lowered:
        return None
    for race in available:
        other = (race.name or "").lower().strip()
        if other and (lowered in other or other in lowered):
            return race
    return None


# ---------------------------------------------------------------------------
# Per-race updates
# ---------------------------------------------------------------------------

def start_time_updates(
    race: CatalogRace,
    scraped_start: datetime,
    has_time: bool,
    zone: str,
    confidence: float,
) -> dict[str, FieldChange]:
    """Start date/time reconciliation between a catalog race and a scraped one.

    A stored local midnight is always replaced by a scraped time; a precise
    stored time is never downgraded by a bare scraped date; two precise times
    that differ at all are proposed.
    """
    updates: dict[str, FieldChange] = {}
    if race.start_date is None:
        updates["startDate"] = FieldChange(None, scraped_start, confidence)
        if race.time_zone != zone:
            updates["timeZone"] = FieldChange(race.time_zone, zone, confidence)
        return updates

    stored_zone = race.time_zone or zone
    stored_midnight = is_local_midnight(race.start_date, stored_zone)
    if has_time:
        if race.start_date != scraped_start:
            updates["startDate"] = FieldChange(race.start_date, scraped_start, confidence)
    elif stored_midnight and not same_local_day(race.start_date, scraped_start, stored_zone):
        updates["startDate"] = FieldChange(race.start_date, scraped_start, confidence)
    return updates


def race_addition(
    record: ScrapedCompetition,
    sub_event: ScrapedSubEvent,
    zone: str,
) -> RaceAddition:
    distance_km = sub_event.distance_m / 1000 if sub_event.distance_m else None
    level_1, level_2 = infer_categories(sub_event.name, distance_km, event_name=record.name)
    return RaceAddition(
        name=normalize_race_name(sub_event.name, level_1, level_2, distance_km),
        start_date=resolve_sub_event_start(record, sub_event),
        time_zone=zone,
        category_level_1=level_1,
        category_level_2=level_2,
        distances=distance_fields(level_1, distance_km, sub_event.positive_elevation_m),
        categories=sub_event.categories,
    )


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------

def reconcile_races(
    record: ScrapedCompetition,
    catalog_races: list[CatalogRace] | tuple[CatalogRace, ...],
    tolerance: float,
    confidence: float = 1.0,
) -> RaceReconciliation:
    """Align record.sub_events with catalog_races; see module docstring."""
    zone = resolve_zone(record.region, record.department)
    result = RaceReconciliation()
    consumed: set[str] = set()

    for sub_event in record.sub_events:
        available = [r for r in catalog_races if r.id not in consumed]
        distance_km = sub_event.distance_m / 1000 if sub_event.distance_m else None
        level_1, _ = infer_categories(sub_event.name, distance_km, event_name=record.name)
        day = sub_event_day(record, sub_event)

        if sub_event.distance_m:
            match = _select_by_distance(
                sub_event.distance_m, level_1, day, available, tolerance, zone
            )
        else:
            match = _select_by_name(sub_event.name, available)

        if match is None:
            log.debug("race %r (%s m) unmatched; proposing addition",
                      sub_event.name, sub_event.distance_m)
            result.to_add.append(race_addition(record, sub_event, zone))
            continue

        consumed.add(match.id)
        result.pairs.append((sub_event, match))
        log.debug("race %r matched catalog race %s (%r)", sub_event.name, match.id, match.name)

        updates: dict[str, FieldChange] = {}
        elevation = sub_event.positive_elevation_m
        if elevation and (
            match.run_positive_elevation is None
            or abs(match.run_positive_elevation - elevation) > ELEVATION_TOLERANCE_M
        ):
            updates["runPositiveElevation"] = FieldChange(
                match.run_positive_elevation, elevation, confidence
            )

        updates.update(start_time_updates(
            match,
            resolve_sub_event_start(record, sub_event),
            parse_clock_time(sub_event.start_time) is not None,
            zone,
            confidence,
        ))
        if updates and "timeZone" not in updates and match.time_zone != zone:
            updates["timeZone"] = FieldChange(match.time_zone, zone, confidence)
        if updates:
            result.to_update.append(RaceUpdate(match.id, match.name, updates))

    result.unmatched = [r for r in catalog_races if r.id not in consumed]
    return result


def realign_unmatched(
    unmatched: list[CatalogRace],
    new_start: datetime,
    zone: str,
    confidence: float = 1.0,
) -> list[RaceUpdate]:
    """Propose moving unconsumed catalog races onto the new edition start day.

    A precise local time-of-day is kept; midnight races take new_start as is.
    """
    realigned: list[RaceUpdate] = []
    for race in unmatched:
        if race.start_date is None:
            realigned.append(RaceUpdate(
                race.id, race.name,
                {"startDate": FieldChange(None, new_start, confidence)},
            ))
            continue
        race_zone = race.time_zone or zone
        if same_local_day(race.start_date, new_start, race_zone):
            continue
        moved = realign_keeping_time(race.start_date, new_start, race_zone)
        realigned.append(RaceUpdate(
            race.id, race.name,
            {"startDate": FieldChange(race.start_date, moved, confidence)},
        ))
    return realigned
