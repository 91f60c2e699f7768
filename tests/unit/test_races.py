"""Unit tests for ffa_calendar_etl.races (sub-event reconciler)."""

from __future__ import annotations

from datetime import date, datetime, timezone

from ffa_calendar_etl.models import CatalogRace, ScrapedCompetition, ScrapedSubEvent
from ffa_calendar_etl.races import (
    race_addition,
    realign_unmatched,
    reconcile_races,
    start_time_updates,
)

UTC = timezone.utc
PARIS = "Europe/Paris"
TOLERANCE = 0.1


def _competition(sub_events, **overrides) -> ScrapedCompetition:
    fields = dict(
        external_id="307001",
        name="Foulées Annéciennes",
        city="Annecy",
        region="ARA",
        department="074",
        date=date(2025, 6, 14),
        level="Départemental",
        detail_url="https://www.athle.fr/competitions/307001",
        sub_events=tuple(sub_events),
    )
    fields.update(overrides)
    return ScrapedCompetition(**fields)


def _race(race_id, km, start, name=None, category="RUNNING", elevation=None,
          time_zone=PARIS) -> CatalogRace:
    return CatalogRace(
        id=race_id,
        name=name or f"Course {km} km",
        start_date=start,
        time_zone=time_zone,
        run_distance_km=km,
        run_positive_elevation=elevation,
        category_level_1=category,
    )


# 2025-06-14 local times in UTC (Paris is UTC+2 in June)
MIDNIGHT_14 = datetime(2025, 6, 13, 22, 0, tzinfo=UTC)
NINE_14 = datetime(2025, 6, 14, 7, 0, tzinfo=UTC)
NINE_15 = datetime(2025, 6, 15, 7, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Distance matching
# ---------------------------------------------------------------------------

class TestReconcileByDistance:
    def test_catalog_race_never_assigned_twice(self):
        record = _competition([
            ScrapedSubEvent("Course 10 km", distance_m=10000, start_time="09:00"),
            ScrapedSubEvent("Course 10 km open", distance_m=10000, start_time="10:00"),
        ])
        result = reconcile_races(record, [_race("r1", 10.0, NINE_14)], TOLERANCE)
        assert len(result.pairs) == 1
        assert result.pairs[0][1].id == "r1"
        assert len(result.to_add) == 1
        assert result.to_add[0].start_date == datetime(2025, 6, 14, 8, 0, tzinfo=UTC)
        assert result.unmatched == []

    def test_identical_race_produces_no_update(self):
        record = _competition([ScrapedSubEvent("Course 10 km", distance_m=10000, start_time="09:00")])
        result = reconcile_races(record, [_race("r1", 10.0, NINE_14)], TOLERANCE)
        assert result.to_update == []
        assert result.to_add == []

    def test_out_of_tolerance_is_added(self):
        record = _competition([ScrapedSubEvent("Course 15 km", distance_m=15000)])
        result = reconcile_races(record, [_race("r1", 10.0, NINE_14)], TOLERANCE)
        assert len(result.to_add) == 1
        assert [r.id for r in result.unmatched] == ["r1"]

    def test_same_day_preferred_over_closer_distance(self):
        record = _competition([ScrapedSubEvent("Course 10 km", distance_m=10000, start_time="09:00")])
        races = [
            _race("other-day", 10.0, NINE_15),
            _race("same-day", 10.5, NINE_14),
        ]
        result = reconcile_races(record, races, TOLERANCE)
        assert result.pairs[0][1].id == "same-day"
        assert [r.id for r in result.unmatched] == ["other-day"]

    def test_category_mismatch_on_other_day_rejected(self):
        record = _competition([ScrapedSubEvent("Course 10 km", distance_m=10000)])
        result = reconcile_races(
            record, [_race("walk", 10.0, NINE_15, category="WALK")], TOLERANCE
        )
        assert result.pairs == []
        assert len(result.to_add) == 1

    def test_category_mismatch_tolerated_on_same_day(self):
        record = _competition([ScrapedSubEvent("Course 10 km", distance_m=10000, start_time="09:00")])
        result = reconcile_races(
            record, [_race("walk", 10.0, NINE_14, category="WALK")], TOLERANCE
        )
        assert result.pairs[0][1].id == "walk"

    def test_category_mismatch_tolerated_without_catalog_date(self):
        record = _competition([ScrapedSubEvent("Marche nordique 9 km", distance_m=9000)])
        result = reconcile_races(
            record, [_race("undated", 9.0, None, category="TRAIL")], TOLERANCE
        )
        assert len(result.pairs) == 1
        assert result.pairs[0][1].id == "undated"
        assert result.to_add == []

    def test_elevation_update(self):
        record = _competition([
            ScrapedSubEvent("Trail 24 km", distance_m=24000, positive_elevation_m=1200, start_time="09:00"),
        ], name="Trail des Loups")
        race = _race("t24", 24.0, NINE_14, category="TRAIL", elevation=1000)
        result = reconcile_races(record, [race], TOLERANCE, confidence=0.8)
        assert len(result.to_update) == 1
        update = result.to_update[0]
        assert update.race_id == "t24"
        assert update.updates["runPositiveElevation"].old == 1000
        assert update.updates["runPositiveElevation"].new == 1200
        assert update.updates["runPositiveElevation"].confidence == 0.8

    def test_elevation_within_tolerance_ignored(self):
        record = _competition([
            ScrapedSubEvent("Trail 24 km", distance_m=24000, positive_elevation_m=1005, start_time="09:00"),
        ], name="Trail des Loups")
        race = _race("t24", 24.0, NINE_14, category="TRAIL", elevation=1000)
        assert reconcile_races(record, [race], TOLERANCE).to_update == []


class TestReconcileByName:
    def test_name_containment_without_distance(self):
        record = _competition([ScrapedSubEvent("Marche nordique", start_time="09:00")])
        race = _race("mn", 8.0, NINE_14, name="Marche nordique 8 km", category="WALK")
        result = reconcile_races(record, [race], TOLERANCE)
        assert result.pairs[0][1].id == "mn"

    def test_no_name_match_is_added(self):
        record = _competition([ScrapedSubEvent("Canicross")])
        result = reconcile_races(record, [_race("r1", 10.0, NINE_14)], TOLERANCE)
        assert result.pairs == []
        assert result.to_add[0].category_level_1 == "OTHER"


# ---------------------------------------------------------------------------
# Start times
# ---------------------------------------------------------------------------

class TestStartTimeUpdates:
    def test_stored_midnight_replaced_by_scraped_time(self):
        race = _race("r1", 10.0, MIDNIGHT_14)
        scraped = datetime(2025, 6, 14, 12, 0, tzinfo=UTC)  # 14:00 local
        updates = start_time_updates(race, scraped, True, PARIS, 0.9)
        assert updates["startDate"].old == MIDNIGHT_14
        assert updates["startDate"].new == scraped

    def test_precise_time_not_downgraded_by_bare_date(self):
        race = _race("r1", 10.0, NINE_14)
        assert start_time_updates(race, MIDNIGHT_14, False, PARIS, 0.9) == {}

    def test_bare_date_on_another_day_moves_midnight_race(self):
        race = _race("r1", 10.0, MIDNIGHT_14)
        new_day = datetime(2025, 6, 20, 22, 0, tzinfo=UTC)
        updates = start_time_updates(race, new_day, False, PARIS, 0.9)
        assert updates["startDate"].new == new_day

    def test_different_precise_times_proposed(self):
        race = _race("r1", 10.0, NINE_14)
        scraped = datetime(2025, 6, 14, 7, 30, tzinfo=UTC)
        assert start_time_updates(race, scraped, True, PARIS, 0.9)["startDate"].new == scraped

    def test_missing_start_sets_date_and_zone(self):
        race = _race("r1", 10.0, None, time_zone=None)
        updates = start_time_updates(race, NINE_14, True, PARIS, 0.9)
        assert updates["startDate"].new == NINE_14
        assert updates["timeZone"].new == PARIS

    def test_midnight_vs_afternoon_through_reconciler(self):
        record = _competition([ScrapedSubEvent("Course 10 km", distance_m=10000, start_time="14:00")])
        result = reconcile_races(record, [_race("r1", 10.0, MIDNIGHT_14)], TOLERANCE)
        change = result.to_update[0].updates["startDate"]
        assert change.new == datetime(2025, 6, 14, 12, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Additions and realignment
# ---------------------------------------------------------------------------

class TestRaceAddition:
    def test_trail_from_event_context(self):
        record = _competition([], name="Trail de la Raye")
        sub = ScrapedSubEvent("14 km", distance_m=14000, positive_elevation_m=450,
                              start_time="09:00", categories="TCF / TCM")
        addition = race_addition(record, sub, PARIS)
        assert addition.name == "Trail 14 km"
        assert addition.category_level_1 == "TRAIL"
        assert addition.category_level_2 == "DISCOVERY_TRAIL"
        assert addition.distances == {"runDistance": 14.0, "runPositiveElevation": 450}
        assert addition.start_date == NINE_14
        assert addition.time_zone == PARIS
        assert addition.to_dict()["categories"] == "TCF / TCM"


class TestRealignUnmatched:
    NEW_START = datetime(2025, 6, 20, 22, 0, tzinfo=UTC)  # 21 June, local midnight

    def test_precise_time_kept_on_new_day(self):
        updates = realign_unmatched([_race("r1", 10.0, NINE_14)], self.NEW_START, PARIS)
        assert updates[0].updates["startDate"].new == datetime(2025, 6, 21, 7, 0, tzinfo=UTC)

    def test_midnight_race_takes_new_start(self):
        updates = realign_unmatched([_race("r1", 10.0, MIDNIGHT_14)], self.NEW_START, PARIS)
        assert updates[0].updates["startDate"].new == self.NEW_START

    def test_race_already_on_new_day_skipped(self):
        on_day = _race("r1", 10.0, datetime(2025, 6, 21, 7, 0, tzinfo=UTC))
        assert realign_unmatched([on_day], self.NEW_START, PARIS) == []

    def test_race_without_start(self):
        updates = realign_unmatched([_race("r1", 10.0, None)], self.NEW_START, PARIS)
        assert updates[0].updates["startDate"].old is None
        assert updates[0].updates["startDate"].new == self.NEW_START
