"""ffa_calendar_etl.models

Record types shared by the harvester:

  - Scraped records (ScrapedCompetition, ScrapedSubEvent), immutable once fetched
  - Catalog views (CandidateEvent, CatalogEdition, CatalogRace, ...) read from the store
  - MatchOutcome, the tagged result of matching one competition
  - FieldChange / RaceAddition / RaceUpdate, the typed Changes map
  - Proposal / PendingProposal, what gets queued for human review

Change keys use the catalog's camelCase field names (startDate, timeZone,
racesToAdd, ...) because they are stored verbatim in proposal rows.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from enum import StrEnum
from typing import Any

# ---------------------------------------------------------------------------
# Scraped records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ScrapedSubEvent:
    name: str
    distance_m: int | None = None
    positive_elevation_m: int | None = None
    start_time: str | None = None   # "HH:MM", local to the competition zone
    race_date: str | None = None    # "DD/MM", multi-day competitions only
    categories: str | None = None   # age categories, passthrough


@dataclass(frozen=True)
class ScrapedCompetition:
    external_id: str
    name: str
    city: str
    region: str                     # ligue code, e.g. "ARA"
    department: str                 # raw FFA code, e.g. "074"
    date: date
    level: str
    detail_url: str
    kind: str | None = None
    organizer_name: str | None = None
    organizer_email: str | None = None
    organizer_phone: str | None = None
    organizer_website: str | None = None
    registration_closing_date: datetime | None = None
    services: tuple[str, ...] = ()
    additional_info: str | None = None
    sub_events: tuple[ScrapedSubEvent, ...] = ()

    @property
    def has_organizer_info(self) -> bool:
        return bool(self.organizer_email or self.organizer_website)

    def with_details(self, **details: Any) -> ScrapedCompetition:
        return replace(self, **details)


# ---------------------------------------------------------------------------
# Catalog views
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CatalogEditionRef:
    id: str
    year: int
    start_date: datetime | None = None


@dataclass(frozen=True)
class CandidateEvent:
    id: str
    name: str
    city: str | None
    department: str | None = None
    is_featured: bool = False
    editions: tuple[CatalogEditionRef, ...] = ()


@dataclass(frozen=True)
class CatalogRace:
    id: str
    name: str
    start_date: datetime | None = None
    time_zone: str | None = None
    run_distance_km: float | None = None
    walk_distance_km: float | None = None
    swim_distance_km: float | None = None
    bike_distance_km: float | None = None
    run_positive_elevation: float | None = None
    category_level_1: str | None = None
    category_level_2: str | None = None

    @property
    def total_distance_m(self) -> float:
        """Sum of all discipline distances, converted from km to meters."""
        km = (
            (self.run_distance_km or 0)
            + (self.walk_distance_km or 0)
            + (self.swim_distance_km or 0)
            + (self.bike_distance_km or 0)
        )
        return km * 1000

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "startDate": self.start_date,
            "timeZone": self.time_zone,
            "runDistance": self.run_distance_km,
            "walkDistance": self.walk_distance_km,
            "swimDistance": self.swim_distance_km,
            "bikeDistance": self.bike_distance_km,
            "runPositiveElevation": self.run_positive_elevation,
            "categoryLevel1": self.category_level_1,
            "categoryLevel2": self.category_level_2,
        }


@dataclass(frozen=True)
class CatalogOrganizer:
    name: str | None
    website_url: str | None = None
    facebook_url: str | None = None
    instagram_url: str | None = None
    email: str | None = None
    phone: str | None = None

    def url_for(self, field_name: str) -> str | None:
        return {
            "websiteUrl": self.website_url,
            "facebookUrl": self.facebook_url,
            "instagramUrl": self.instagram_url,
        }.get(field_name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "websiteUrl": self.website_url,
            "facebookUrl": self.facebook_url,
            "instagramUrl": self.instagram_url,
            "email": self.email,
            "phone": self.phone,
        }


@dataclass(frozen=True)
class CatalogEdition:
    id: str
    event_id: str
    year: int
    start_date: datetime | None = None
    end_date: datetime | None = None
    time_zone: str | None = None
    calendar_status: str | None = None
    registration_closing_date: datetime | None = None
    organizer: CatalogOrganizer | None = None
    races: tuple[CatalogRace, ...] = ()
    services: tuple[str, ...] = ()
    additional_info: str | None = None
    registrants_number: int | None = None

    def to_state(self) -> dict[str, Any]:
        """Current stored values keyed like the Changes map, for dotted lookups."""
        return {
            "startDate": self.start_date,
            "endDate": self.end_date,
            "timeZone": self.time_zone,
            "calendarStatus": self.calendar_status,
            "registrationClosingDate": self.registration_closing_date,
            "organizer": self.organizer.to_dict() if self.organizer else None,
            "races": [r.to_dict() for r in self.races],
            "services": list(self.services),
            "additionalInfo": self.additional_info,
            "registrantsNumber": self.registrants_number,
        }


# ---------------------------------------------------------------------------
# Match outcome
# ---------------------------------------------------------------------------

class MatchKind(StrEnum):
    NO_MATCH = "NO_MATCH"
    FUZZY_MATCH = "FUZZY_MATCH"
    EXACT_MATCH = "EXACT_MATCH"


@dataclass(frozen=True)
class RejectedCandidate:
    event_id: str
    event_name: str
    event_city: str | None
    event_department: str | None
    edition_id: str | None
    edition_year: int | None
    match_score: float
    name_score: float
    city_score: float
    department_match: bool
    date_proximity: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "eventId": self.event_id,
            "eventName": self.event_name,
            "eventCity": self.event_city,
            "eventDepartment": self.event_department,
            "editionId": self.edition_id,
            "editionYear": self.edition_year,
            "matchScore": self.match_score,
            "nameScore": self.name_score,
            "cityScore": self.city_score,
            "departmentMatch": self.department_match,
            "dateProximity": self.date_proximity,
        }


@dataclass(frozen=True)
class MatchOutcome:
    """Result of matching one scraped competition; never raised."""

    kind: MatchKind
    confidence: float
    event_id: str | None = None
    event_name: str | None = None
    event_city: str | None = None
    edition_id: str | None = None
    edition_year: int | None = None
    auto_actionable: bool = False
    city_score: float | None = None
    rejected_matches: tuple[RejectedCandidate, ...] = ()

    @property
    def is_match(self) -> bool:
        return self.kind is not MatchKind.NO_MATCH


# ---------------------------------------------------------------------------
# Changes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FieldChange:
    old: Any
    new: Any
    confidence: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "old": to_jsonable(self.old),
            "new": to_jsonable(self.new),
            "confidence": round(self.confidence, 4),
        }


@dataclass(frozen=True)
class RaceAddition:
    name: str
    start_date: datetime
    time_zone: str
    category_level_1: str
    category_level_2: str | None
    distances: dict[str, float] = field(default_factory=dict)
    categories: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "name": self.name,
            "startDate": self.start_date,
            "timeZone": self.time_zone,
            "categoryLevel1": self.category_level_1,
            "categoryLevel2": self.category_level_2,
            **self.distances,
        }
        if self.categories:
            d["categories"] = self.categories
        return d


@dataclass(frozen=True)
class RaceUpdate:
    """Field updates for one catalog race, keyed by its stable id."""

    race_id: str
    race_name: str
    updates: dict[str, FieldChange]

    def to_dict(self) -> dict[str, Any]:
        return {
            "raceId": self.race_id,
            "raceName": self.race_name,
            "updates": {
                k: {"old": to_jsonable(v.old), "new": to_jsonable(v.new)}
                for k, v in self.updates.items()
            },
        }


Changes = dict[str, FieldChange]


def changes_to_dict(changes: Changes) -> dict[str, Any]:
    return {k: v.to_dict() for k, v in changes.items()}


def to_jsonable(value: Any) -> Any:
    """Convert change values to JSON-compatible data.

    Aware datetimes are rendered in UTC so equal instants compare equal.
    """
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if hasattr(value, "to_dict"):
        return to_jsonable(value.to_dict())
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(v) for v in value]
    return str(value)


# ---------------------------------------------------------------------------
# Proposals
# ---------------------------------------------------------------------------

class ProposalKind(StrEnum):
    NEW_EVENT = "NEW_EVENT"
    EDITION_UPDATE = "EDITION_UPDATE"


@dataclass
class Justification:
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    type: str = "text"
    # Change keys this entry explains; empty for run-level entries.
    fields: tuple[str, ...] = ()

    def explains_any(self, changes: Changes) -> bool:
        return not self.fields or any(f in changes for f in self.fields)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "content": self.content,
            "metadata": to_jsonable(self.metadata),
        }


@dataclass
class Proposal:
    kind: ProposalKind
    changes: Changes
    justification: list[Justification]
    confidence: float
    event_id: str | None = None
    edition_id: str | None = None
    source_url: str | None = None

    @property
    def target(self) -> str:
        """Logical target used by the same-run cache."""
        if self.edition_id:
            return f"edition:{self.edition_id}"
        return f"new:{self.source_url or ''}"


@dataclass(frozen=True)
class PendingProposal:
    id: str
    kind: str
    changes: dict[str, Any]
    event_id: str | None = None
    edition_id: str | None = None
    status: str = "PENDING"
    created_at: datetime | None = None
