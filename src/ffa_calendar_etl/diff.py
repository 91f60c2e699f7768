"""ffa_calendar_etl.diff

Diff & confidence builder.

  - build_edition_changes(): field-level Changes between a catalog edition and
    a scraped competition, with justification entries
  - build_update_proposal(): EDITION_UPDATE proposal for a matched edition
  - build_creation_proposal(): NEW_EVENT proposal for an unmatched competition

Confidence weights relative to the proposal confidence:
  organizer x0.85, racesToAdd x0.85, racesToUpdate x0.9,
  services x0.7, additionalInfo x0.6, everything else x1.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from ffa_calendar_etl.config import HarvestConfig
from ffa_calendar_etl.matching import adjusted_confidence, new_event_confidence
from ffa_calendar_etl.models import (
    CatalogEdition,
    Changes,
    FieldChange,
    Justification,
    MatchOutcome,
    Proposal,
    ProposalKind,
    ScrapedCompetition,
)
from ffa_calendar_etl.normalize import (
    classify_organizer_url,
    normalize_department_code,
    parse_clock_time,
)
from ffa_calendar_etl.races import race_addition, realign_unmatched, reconcile_races
from ffa_calendar_etl.regions import department_name, region_subdivision
from ffa_calendar_etl.timezones import resolve_end, resolve_start, resolve_zone, same_local_day

log = logging.getLogger(__name__)

EXTRACTION_METHOD = "ffa_calendar_scrape"
START_DATE_TOLERANCE_SECONDS = 6 * 3600
CLOSING_DATE_TOLERANCE_SECONDS = 3600
CONFIRMED = "CONFIRMED"

ORGANIZER_WEIGHT = 0.85
RACES_TO_ADD_WEIGHT = 0.85
RACES_TO_UPDATE_WEIGHT = 0.9
SERVICES_WEIGHT = 0.7
ADDITIONAL_INFO_WEIGHT = 0.6


def _justify(
    record: ScrapedCompetition,
    content: str,
    fields: tuple[str, ...] = (),
    **metadata: Any,
) -> Justification:
    return Justification(
        content=content,
        metadata={**metadata, "source": record.detail_url, "extraction": EXTRACTION_METHOD},
        fields=fields,
    )


def _iso(ts: datetime | None) -> str | None:
    return ts.isoformat() if ts else None


# ---------------------------------------------------------------------------
# Edition-level comparison
# ---------------------------------------------------------------------------

def _start_gap_seconds(record: ScrapedCompetition, edition: CatalogEdition,
                       scraped_start: datetime, zone: str) -> float:
    if edition.start_date is None:
        return float("inf")
    has_time = bool(record.sub_events) and (
        parse_clock_time(record.sub_events[0].start_time) is not None
    )
    if has_time:
        return abs((scraped_start - edition.start_date).total_seconds())
    # Bare dates only compare calendar days
    return 0.0 if same_local_day(scraped_start, edition.start_date, zone) else 86400.0


def _organizer_change(
    record: ScrapedCompetition,
    edition: CatalogEdition,
    confidence: float,
) -> tuple[FieldChange, Justification] | None:
    if not record.organizer_name:
        return None
    existing = edition.organizer
    classified = classify_organizer_url(record.organizer_website)

    reasons: list[str] = []
    if existing is None:
        reasons.append("organisateur manquant")
    elif existing.name != record.organizer_name:
        reasons.append("nom différent")
    if classified is not None:
        url_field, url = classified
        if existing is None or existing.url_for(url_field) != url:
            reasons.append(f"nouveau {url_field}")
    if not reasons:
        return None

    new_value: dict[str, Any] = {"name": record.organizer_name}
    if classified is not None:
        new_value[classified[0]] = classified[1]
    new_value["email"] = record.organizer_email
    new_value["phone"] = record.organizer_phone

    old_value = None
    if existing is not None:
        old_value = {
            "name": existing.name,
            "websiteUrl": existing.website_url,
            "facebookUrl": existing.facebook_url,
            "instagramUrl": existing.instagram_url,
        }
    change = FieldChange(old_value, new_value, confidence * ORGANIZER_WEIGHT)
    justification = _justify(
        record,
        f"Organisateur FFA: {record.organizer_name} ({', '.join(reasons)})",
        fields=("organizer",),
        oldOrganizer=existing.name if existing else None,
        newOrganizer=record.organizer_name,
        reasons=reasons,
    )
    return change, justification


def build_edition_changes(
    record: ScrapedCompetition,
    edition: CatalogEdition,
    confidence: float,
    tolerance: float,
) -> tuple[Changes, list[Justification]]:
    """Compare a matched catalog edition with the scraped competition.

    Returns (changes, justifications); both empty when nothing differs.
    """
    changes: Changes = {}
    justifications: list[Justification] = []
    zone = resolve_zone(record.region, record.department)
    scraped_start = resolve_start(record)

    # 1. Start / end
    gap = _start_gap_seconds(record, edition, scraped_start, edition.time_zone or zone)
    if gap > START_DATE_TOLERANCE_SECONDS:
        scraped_end = resolve_end(record)
        changes["startDate"] = FieldChange(edition.start_date, scraped_start, confidence)
        changes["endDate"] = FieldChange(edition.end_date, scraped_end, confidence)
        justifications.append(_justify(
            record,
            f"Date FFA différente: {scraped_start.isoformat()} vs {_iso(edition.start_date)}",
            fields=("startDate", "endDate"),
            ffaDate=scraped_start.isoformat(),
            dbDate=_iso(edition.start_date),
            diffHours=None if gap == float("inf") else round(gap / 3600),
        ))

    # 2. Time zone
    if edition.time_zone != zone:
        changes["timeZone"] = FieldChange(edition.time_zone, zone, confidence)
        justifications.append(_justify(
            record, f"TimeZone FFA: {zone} (ligue {record.region})",
            fields=("timeZone",),
            oldTimeZone=edition.time_zone, newTimeZone=zone, ligue=record.region,
        ))

    # 3. Calendar status
    if edition.calendar_status != CONFIRMED:
        changes["calendarStatus"] = FieldChange(edition.calendar_status, CONFIRMED, confidence)
        justifications.append(_justify(
            record, "Confirmation depuis FFA (source officielle)",
            fields=("calendarStatus",),
            oldStatus=edition.calendar_status,
        ))

    # 4. Registration closing date
    closing = record.registration_closing_date
    if closing is not None:
        existing_closing = edition.registration_closing_date
        if (existing_closing is None
                or abs((closing - existing_closing).total_seconds()) > CLOSING_DATE_TOLERANCE_SECONDS):
            changes["registrationClosingDate"] = FieldChange(existing_closing, closing, confidence)
            justifications.append(_justify(
                record, f"Date de clôture FFA: {closing.isoformat()}",
                fields=("registrationClosingDate",),
                oldDate=_iso(existing_closing), newDate=closing.isoformat(),
            ))

    # 5. Organizer
    organizer = _organizer_change(record, edition, confidence)
    if organizer is not None:
        changes["organizer"], organizer_justification = organizer
        justifications.append(organizer_justification)

    # 6. Races
    if record.sub_events:
        update_confidence = confidence * RACES_TO_UPDATE_WEIGHT
        reconciliation = reconcile_races(record, edition.races, tolerance, update_confidence)
        if reconciliation.to_add:
            changes["racesToAdd"] = FieldChange(
                None, reconciliation.to_add, confidence * RACES_TO_ADD_WEIGHT
            )
            justifications.append(_justify(
                record, f"{len(reconciliation.to_add)} nouvelle(s) course(s) FFA détectée(s)",
                fields=("racesToAdd",),
                races=[r.name for r in reconciliation.to_add],
            ))
        races_to_update = list(reconciliation.to_update)
        if "startDate" in changes and reconciliation.unmatched:
            realigned = realign_unmatched(
                reconciliation.unmatched, scraped_start, zone, update_confidence
            )
            races_to_update.extend(realigned)
            if realigned:
                justifications.append(_justify(
                    record,
                    f"{len(realigned)} course(s) existante(s) non matchée(s) "
                    "alignée(s) sur la nouvelle date d'édition",
                    fields=("racesToUpdate",),
                    unmatchedRaces=[r.race_name for r in realigned],
                    newDate=scraped_start.isoformat(),
                ))
        if races_to_update:
            changes["racesToUpdate"] = FieldChange(None, races_to_update, update_confidence)
            justifications.append(_justify(
                record, f"{len(races_to_update)} course(s) à mettre à jour",
                fields=("racesToUpdate",),
                races=[r.race_name for r in races_to_update],
            ))

    # 7. Services
    if record.services and sorted(record.services) != sorted(edition.services):
        changes["services"] = FieldChange(
            list(edition.services), list(record.services), confidence * SERVICES_WEIGHT
        )
        justifications.append(_justify(
            record, f"Services FFA: {', '.join(record.services)}",
            fields=("services",),
            services=list(record.services),
        ))

    # 8. Additional info
    info = record.additional_info
    if info and len(info) > 10 and len(info) > len(edition.additional_info or ""):
        changes["additionalInfo"] = FieldChange(
            edition.additional_info, info, confidence * ADDITIONAL_INFO_WEIGHT
        )
        justifications.append(_justify(
            record, "Informations complémentaires FFA", fields=("additionalInfo",),
        ))

    return changes, justifications


# ---------------------------------------------------------------------------
# Proposals
# ---------------------------------------------------------------------------

def _match_metadata(record: ScrapedCompetition, outcome: MatchOutcome) -> dict[str, Any]:
    return {
        "ffaId": record.external_id,
        "eventName": record.name,
        "eventCity": record.city,
        "level": record.level,
        "matchKind": str(outcome.kind),
        "matchScore": outcome.confidence,
        "autoActionable": outcome.auto_actionable,
        "rejectedMatches": [r.to_dict() for r in outcome.rejected_matches],
    }


def build_update_proposal(
    record: ScrapedCompetition,
    edition: CatalogEdition,
    outcome: MatchOutcome,
    config: HarvestConfig,
) -> Proposal | None:
    """EDITION_UPDATE proposal, or None when the edition already agrees."""
    confidence = adjusted_confidence(config.confidence_base, record, outcome)
    changes, justifications = build_edition_changes(
        record, edition, confidence, config.distance_tolerance_percent
    )
    if not changes:
        log.info("%s: edition %s already up to date", record.name, edition.id)
        return None
    summary = _justify(
        record,
        f"Correspondance FFA {outcome.kind} avec {outcome.event_name} "
        f"(score {outcome.confidence:.2f})",
        **_match_metadata(record, outcome),
    )
    return Proposal(
        kind=ProposalKind.EDITION_UPDATE,
        changes=changes,
        justification=[summary, *justifications],
        confidence=confidence,
        event_id=edition.event_id,
        edition_id=edition.id,
        source_url=record.detail_url,
    )


def build_creation_proposal(
    record: ScrapedCompetition,
    outcome: MatchOutcome,
    config: HarvestConfig,
) -> Proposal:
    """NEW_EVENT proposal carrying the event, its edition and its races."""
    confidence = new_event_confidence(config.confidence_base, record, outcome)
    zone = resolve_zone(record.region, record.department)
    region = region_subdivision(record.region)

    changes: Changes = {
        "name": FieldChange(None, record.name, confidence),
        "city": FieldChange(None, record.city, confidence),
        "country": FieldChange(None, "France", confidence),
        "countrySubdivisionNameLevel1": FieldChange(None, region.name, confidence),
        "countrySubdivisionDisplayCodeLevel1": FieldChange(None, region.display_code, confidence),
        "countrySubdivisionNameLevel2": FieldChange(
            None, department_name(record.department), confidence
        ),
        "countrySubdivisionDisplayCodeLevel2": FieldChange(
            None, normalize_department_code(record.department), confidence
        ),
    }
    classified = classify_organizer_url(record.organizer_website)
    if classified is not None:
        changes[classified[0]] = FieldChange(None, classified[1], confidence)
    changes["dataSource"] = FieldChange(None, "FEDERATION", confidence)

    edition: dict[str, Any] = {
        "startDate": resolve_start(record),
        "endDate": resolve_end(record),
        "year": record.date.year,
        "timeZone": zone,
        "calendarStatus": CONFIRMED,
    }
    if record.organizer_name:
        organizer: dict[str, Any] = {"name": record.organizer_name}
        if classified is not None:
            organizer[classified[0]] = classified[1]
        organizer["email"] = record.organizer_email
        organizer["phone"] = record.organizer_phone
        edition["organizer"] = organizer
    edition["races"] = [race_addition(record, s, zone) for s in record.sub_events]
    changes["edition"] = FieldChange(None, edition, confidence)

    justification = _justify(
        record,
        f"Nouvelle compétition FFA: {record.name}",
        editionYear=record.date.year,
        confidence=confidence,
        organizerEmail=record.organizer_email,
        **_match_metadata(record, outcome),
    )
    return Proposal(
        kind=ProposalKind.NEW_EVENT,
        changes=changes,
        justification=[justification],
        confidence=confidence,
        source_url=record.detail_url,
    )
