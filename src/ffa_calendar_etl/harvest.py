"""ffa_calendar_etl.harvest

One harvest run: plan work units, scrape, match, diff, deduplicate, queue.

Per (region, month) unit:
  1. list competitions for the month, then fetch each detail page
     (a failed detail fetch degrades to the listing record)
  2. match each competition against catalog candidates
  3. build an update proposal (match) or a creation proposal (no match)
  4. suppress it when identical to a pending proposal, already emitted this
     run, or when no field survives deduplication
  5. insert surviving proposals, one SAVEPOINT each
  6. commit, then mark the unit completed and persist progress

A failing unit is rolled back, logged and left uncompleted.  CatalogUnavailable
aborts the run before the unit's progress is written.  Dry runs roll every
unit back and never persist progress.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

import psycopg

from ffa_calendar_etl.catalog import CatalogUnavailable, PostgresCatalog
from ffa_calendar_etl.config import HarvestConfig
from ffa_calendar_etl.deduplication import (
    RunProposalCache,
    filter_new_changes,
    has_identical_pending_proposal,
)
from ffa_calendar_etl.diff import build_creation_proposal, build_update_proposal
from ffa_calendar_etl.matching import match_competition, search_terms
from ffa_calendar_etl.models import (
    CatalogEdition,
    MatchKind,
    PendingProposal,
    Proposal,
    ProposalKind,
    ScrapedCompetition,
)
from ffa_calendar_etl.normalize import normalize_department_code
from ffa_calendar_etl.progress import (
    ProgressStore,
    ScrapingProgress,
    advance_cursor,
    mark_unit_completed,
    month_bounds,
    next_work_units,
)
from ffa_calendar_etl.scraper import FfaCalendarClient

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Counters
# ---------------------------------------------------------------------------

@dataclass
class HarvestCounters:
    # Scheduling
    units_planned: int = 0
    units_attempted: int = 0
    units_completed: int = 0
    units_failed: int = 0
    cooldown_active: bool = False
    # Scraping
    competitions_scraped: int = 0
    details_degraded: int = 0
    listing_rows_skipped: int = 0
    # Matching
    matches_exact: int = 0
    matches_fuzzy: int = 0
    no_matches: int = 0
    featured_skipped: int = 0
    editions_missing: int = 0
    # Proposals
    proposals_created: int = 0
    new_event_proposals: int = 0
    edition_update_proposals: int = 0
    suppressed_pending_hash: int = 0
    suppressed_same_run: int = 0
    suppressed_nothing_new: int = 0
    db_errors: int = 0
    warnings: list[str] = field(default_factory=list)

    @property
    def proposals_suppressed(self) -> int:
        return (
            self.suppressed_pending_hash
            + self.suppressed_same_run
            + self.suppressed_nothing_new
        )

    def to_dict(self) -> dict[str, Any]:
        d = {k: v for k, v in self.__dict__.items() if k != "warnings"}
        d["proposals_suppressed"] = self.proposals_suppressed
        d["warnings"] = self.warnings[:50]
        return d


# ---------------------------------------------------------------------------
# Per-competition processing
# ---------------------------------------------------------------------------

def _deduplicate(
    proposal: Proposal,
    current_state: dict[str, Any] | None,
    pending: list[PendingProposal],
    cache: RunProposalCache,
    counters: HarvestCounters,
) -> Proposal | None:
    if has_identical_pending_proposal(proposal.changes, pending):
        counters.suppressed_pending_hash += 1
        return None
    filtered = filter_new_changes(proposal.changes, current_state, pending)
    if not filtered:
        counters.suppressed_nothing_new += 1
        return None
    # Creation payloads are all-or-nothing
    if proposal.kind is ProposalKind.EDITION_UPDATE:
        proposal = replace(
            proposal,
            changes=filtered,
            justification=[j for j in proposal.justification if j.explains_any(filtered)],
        )
    if cache.seen_or_add(proposal.target, proposal.changes):
        counters.suppressed_same_run += 1
        return None
    return proposal


def process_competition(
    record: ScrapedCompetition,
    catalog: PostgresCatalog,
    config: HarvestConfig,
    cache: RunProposalCache,
    counters: HarvestCounters,
) -> Proposal | None:
    """Match one scraped competition and return the proposal to queue, if any."""
    name_words, city_words = search_terms(record)
    candidates = catalog.find_candidates(
        name_words,
        city_words,
        normalize_department_code(record.department),
        record.date,
        config.date_window_days,
    )
    counters.featured_skipped += sum(1 for c in candidates if c.is_featured)
    outcome = match_competition(record, candidates, config)

    if outcome.kind is MatchKind.NO_MATCH:
        counters.no_matches += 1
        proposal = build_creation_proposal(record, outcome, config)
        pending = catalog.list_pending_proposals(
            None, ProposalKind.NEW_EVENT, source_url=record.detail_url
        )
        return _deduplicate(proposal, None, pending, cache, counters)

    if outcome.kind is MatchKind.EXACT_MATCH:
        counters.matches_exact += 1
    else:
        counters.matches_fuzzy += 1

    edition: CatalogEdition | None = None
    if outcome.edition_id is not None:
        edition = catalog.load_edition(outcome.edition_id)
    if edition is None:
        counters.editions_missing += 1
        counters.warnings.append(
            f"{record.name} ({record.external_id}): matched event {outcome.event_id} "
            f"has no {record.date.year} edition"
        )
        return None

    update = build_update_proposal(record, edition, outcome, config)
    if update is None:
        counters.suppressed_nothing_new += 1
        return None
    pending = catalog.list_pending_proposals(edition.id, ProposalKind.EDITION_UPDATE)
    return _deduplicate(update, edition.to_state(), pending, cache, counters)


# ---------------------------------------------------------------------------
# Work unit
# ---------------------------------------------------------------------------

def _queue_proposal(
    catalog: PostgresCatalog,
    proposal: Proposal,
    agent_name: str,
    sp: str,
    counters: HarvestCounters,
) -> bool:
    conn = catalog.conn
    conn.execute(f"SAVEPOINT {sp}")
    try:
        proposal_id = catalog.create_proposal(proposal, agent_name)
        conn.execute(f"RELEASE SAVEPOINT {sp}")
    except psycopg.OperationalError:
        raise
    except psycopg.Error as exc:
        conn.execute(f"ROLLBACK TO SAVEPOINT {sp}")
        counters.db_errors += 1
        counters.warnings.append(f"proposal insert failed ({proposal.target}): {exc}")
        return False
    counters.proposals_created += 1
    if proposal.kind is ProposalKind.NEW_EVENT:
        counters.new_event_proposals += 1
    else:
        counters.edition_update_proposals += 1
    log.info("Queued %s proposal %s (%s)", proposal.kind, proposal_id, proposal.target)
    return True


def run_unit(
    region: str,
    month: str,
    client: FfaCalendarClient,
    catalog: PostgresCatalog,
    config: HarvestConfig,
    cache: RunProposalCache,
    counters: HarvestCounters,
    agent_name: str,
) -> tuple[int, int]:
    """Process one (region, month); returns (competitions scraped, proposals queued)."""
    first_day, last_day = month_bounds(month)
    log.info("Scraping %s - %s", region, month)
    listings = client.list_competitions(region, first_day, last_day, config.levels)
    counters.competitions_scraped += len(listings)

    queued = 0
    for idx, listing in enumerate(listings):
        record = client.fetch_details(listing)
        proposal = process_competition(record, catalog, config, cache, counters)
        if proposal is None:
            continue
        if _queue_proposal(catalog, proposal, agent_name, f"proposal_{idx}", counters):
            queued += 1
    log.info("%s - %s: %d competition(s), %d proposal(s)", region, month, len(listings), queued)
    return len(listings), queued


# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------

def run_harvest(
    client: FfaCalendarClient,
    catalog: PostgresCatalog,
    store: ProgressStore,
    config: HarvestConfig,
    counters: HarvestCounters,
    agent_name: str,
    dry_run: bool = False,
    now: datetime | None = None,
) -> ScrapingProgress:
    """Harvest the next planned units and return the resulting progress.

    Raises:
        CatalogUnavailable: the catalog connection failed; the current unit
            is neither committed nor marked completed.
    """
    now = now or datetime.now(timezone.utc)
    plan = next_work_units(store.load(), config, now)
    if plan.is_empty:
        counters.cooldown_active = True
        log.info("No work units to process")
        return plan.progress

    counters.units_planned = len(plan.units())
    log.info("Plan: regions %s, months %s", plan.regions, plan.months)
    progress = plan.progress
    cache = RunProposalCache()

    for region, month in plan.units():
        counters.units_attempted += 1
        suppressed_before = counters.proposals_suppressed
        try:
            scraped, queued = run_unit(
                region, month, client, catalog, config, cache, counters, agent_name
            )
        except CatalogUnavailable:
            raise
        except psycopg.OperationalError as exc:
            raise CatalogUnavailable(f"catalog connection lost: {exc}") from exc
        except Exception as exc:  # noqa: BLE001
            catalog.rollback()
            counters.units_failed += 1
            counters.warnings.append(f"unit {region} {month} failed: {exc}")
            log.warning("Unit %s - %s failed (%s); left for the next run", region, month, exc)
            continue

        if dry_run:
            catalog.rollback()
        else:
            catalog.commit()
        counters.units_completed += 1

        progress = mark_unit_completed(progress, region, month)
        progress.total_competitions_scraped += scraped
        progress.total_proposals_created += queued
        progress.total_proposals_suppressed += counters.proposals_suppressed - suppressed_before
        if not dry_run:
            store.save(progress)
            log.info("Progress saved: %s - %s", region, month)

    counters.details_degraded = client.details_degraded
    counters.listing_rows_skipped = client.rows_skipped

    progress = advance_cursor(progress, plan, config, now)
    if not dry_run:
        store.save(progress)
    return progress


# ---------------------------------------------------------------------------
# Report builder
# ---------------------------------------------------------------------------

def build_harvest_report(counters: HarvestCounters, dry_run: bool) -> str:
    lines = [
        "=== FFA Calendar Harvest Run Report ===",
        f"dry_run          : {dry_run}",
        f"cooldown_active  : {counters.cooldown_active}",
        "",
        "--- Units ---",
        f"units_planned    : {counters.units_planned}",
        f"units_attempted  : {counters.units_attempted}",
        f"units_completed  : {counters.units_completed}",
        f"units_failed     : {counters.units_failed}",
        "",
        "--- Scraping ---",
        f"competitions_scraped : {counters.competitions_scraped}",
        f"details_degraded     : {counters.details_degraded}",
        f"listing_rows_skipped : {counters.listing_rows_skipped}",
        "",
        "--- Matching ---",
        f"matches_exact    : {counters.matches_exact}",
        f"matches_fuzzy    : {counters.matches_fuzzy}",
        f"no_matches       : {counters.no_matches}",
        f"featured_skipped : {counters.featured_skipped}",
        f"editions_missing : {counters.editions_missing}",
        "",
        "--- Proposals ---",
        f"proposals_created        : {counters.proposals_created}",
        f"new_event_proposals      : {counters.new_event_proposals}",
        f"edition_update_proposals : {counters.edition_update_proposals}",
        f"suppressed_pending_hash  : {counters.suppressed_pending_hash}",
        f"suppressed_same_run      : {counters.suppressed_same_run}",
        f"suppressed_nothing_new   : {counters.suppressed_nothing_new}",
        f"db_errors                : {counters.db_errors}",
    ]
    if counters.warnings:
        lines += ["", "--- Warnings (first 10) ---"]
        lines += [f"  {w}" for w in counters.warnings[:10]]
    return "\n".join(lines)
