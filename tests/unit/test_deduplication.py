"""Unit tests for ffa_calendar_etl.deduplication."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from ffa_calendar_etl.deduplication import (
    RunProposalCache,
    filter_new_changes,
    get_nested_value,
    has_identical_pending_proposal,
    hash_changes,
    normalize_for_hashing,
    values_equal,
)
from ffa_calendar_etl.models import FieldChange, PendingProposal, changes_to_dict

UTC = timezone.utc
PARIS_SUMMER = timezone(timedelta(hours=2))

NINE_14 = datetime(2025, 6, 14, 7, 0, tzinfo=UTC)


def _pending(changes, proposal_id="p-1") -> PendingProposal:
    return PendingProposal(id=proposal_id, kind="EDITION_UPDATE", changes=changes, edition_id="ed-1")


# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------

class TestHashChanges:
    def test_key_order_irrelevant(self):
        a = {"startDate": FieldChange(None, NINE_14, 0.9), "timeZone": FieldChange(None, "Europe/Paris", 0.9)}
        b = {"timeZone": FieldChange(None, "Europe/Paris", 0.9), "startDate": FieldChange(None, NINE_14, 0.9)}
        assert hash_changes(a) == hash_changes(b)

    def test_list_order_irrelevant(self):
        a = {"services": FieldChange(None, ["Parking", "Douches"], 0.7)}
        b = {"services": FieldChange(None, ["Douches", "Parking"], 0.7)}
        assert hash_changes(a) == hash_changes(b)

    def test_confidence_ignored(self):
        a = {"calendarStatus": FieldChange("TO_BE_CONFIRMED", "CONFIRMED", 0.9)}
        b = {"calendarStatus": FieldChange("TO_BE_CONFIRMED", "CONFIRMED", 0.5)}
        assert hash_changes(a) == hash_changes(b)

    def test_same_instant_in_other_zone(self):
        local = datetime(2025, 6, 14, 9, 0, tzinfo=PARIS_SUMMER)
        a = {"startDate": FieldChange(None, NINE_14, 0.9)}
        b = {"startDate": FieldChange(None, local, 0.9)}
        assert hash_changes(a) == hash_changes(b)

    def test_different_values_differ(self):
        a = {"calendarStatus": FieldChange(None, "CONFIRMED", 0.9)}
        b = {"calendarStatus": FieldChange(None, "CANCELED", 0.9)}
        assert hash_changes(a) != hash_changes(b)

    def test_stored_json_matches_typed_changes(self):
        typed = {"startDate": FieldChange(None, NINE_14, 0.9)}
        assert hash_changes(changes_to_dict(typed)) == hash_changes(typed)

    def test_normalize_strips_timestamps(self):
        assert normalize_for_hashing({"b": 1, "updatedAt": "x", "a": [2, 1]}) == {"a": [1, 2], "b": 1}

    def test_identical_pending(self):
        typed = {"calendarStatus": FieldChange(None, "CONFIRMED", 0.9)}
        pending = [_pending(changes_to_dict(typed))]
        assert has_identical_pending_proposal(typed, pending)
        assert not has_identical_pending_proposal(typed, [])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestHelpers:
    def test_values_equal_collections(self):
        assert values_equal(["a", "b"], ("b", "a"))
        assert not values_equal(["a"], ["a", "b"])

    def test_values_equal_datetime_and_iso(self):
        assert values_equal(NINE_14, "2025-06-14T07:00:00+00:00")

    def test_get_nested_value(self):
        state = {"organizer": {"name": "AC Annecy"}, "timeZone": "Europe/Paris"}
        assert get_nested_value(state, "organizer.name") == "AC Annecy"
        assert get_nested_value(state, "timeZone") == "Europe/Paris"
        assert get_nested_value(state, "organizer.email") is None
        assert get_nested_value(state, "timeZone.name") is None
        assert get_nested_value(None, "timeZone") is None


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------

class TestFilterNewChanges:
    def test_empty(self):
        assert filter_new_changes({}, {}, []) == {}

    def test_stored_value_dropped(self):
        changes = {
            "timeZone": FieldChange(None, "Europe/Paris", 0.9),
            "calendarStatus": FieldChange("TO_BE_CONFIRMED", "CONFIRMED", 0.9),
        }
        state = {"timeZone": "Europe/Paris", "calendarStatus": "TO_BE_CONFIRMED"}
        assert list(filter_new_changes(changes, state, [])) == ["calendarStatus"]

    def test_pending_value_suppressed(self):
        changes = {
            "registrantsNumber": FieldChange(None, 250, 0.8),
            "calendarStatus": FieldChange("TO_BE_CONFIRMED", "CONFIRMED", 0.9),
        }
        pending = [_pending({"registrantsNumber": {"old": None, "new": 250, "confidence": 0.7}})]
        kept = filter_new_changes(changes, {"calendarStatus": "TO_BE_CONFIRMED"}, pending)
        assert list(kept) == ["calendarStatus"]

    def test_pending_with_other_value_kept(self):
        changes = {"registrantsNumber": FieldChange(None, 300, 0.8)}
        pending = [_pending({"registrantsNumber": {"old": None, "new": 250}})]
        assert list(filter_new_changes(changes, None, pending)) == ["registrantsNumber"]

    def test_identical_pending_suppresses_everything(self):
        changes = {
            "startDate": FieldChange(None, NINE_14, 0.9),
            "timeZone": FieldChange(None, "Europe/Paris", 0.9),
        }
        pending = [_pending(changes_to_dict(changes))]
        assert filter_new_changes(changes, None, pending) == {}

    def test_pending_datetime_string_matches(self):
        changes = {"startDate": FieldChange(None, NINE_14, 0.9)}
        pending = [_pending({
            "startDate": {"old": None, "new": "2025-06-14T07:00:00+00:00"},
            "timeZone": {"old": None, "new": "Europe/Paris"},
        })]
        assert filter_new_changes(changes, None, pending) == {}


# ---------------------------------------------------------------------------
# Same-run cache
# ---------------------------------------------------------------------------

class TestRunProposalCache:
    def test_second_identical_emission_seen(self):
        cache = RunProposalCache()
        changes = {"calendarStatus": FieldChange(None, "CONFIRMED", 0.9)}
        assert cache.seen_or_add("edition:ed-1", changes) is False
        assert cache.seen_or_add("edition:ed-1", changes) is True
        assert len(cache) == 1

    def test_targets_are_independent(self):
        cache = RunProposalCache()
        changes = {"calendarStatus": FieldChange(None, "CONFIRMED", 0.9)}
        cache.seen_or_add("edition:ed-1", changes)
        assert cache.seen_or_add("edition:ed-2", changes) is False
        assert len(cache) == 2
