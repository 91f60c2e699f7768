"""ffa_calendar_etl.catalog

psycopg data-access layer for the event catalog and the proposal queue.

Reads only: candidate events, full editions with races/organizer/services.
Writes only: proposal rows and the harvester's agent_state row.  Catalog
entities are never modified here.

Candidate lookup (accent-folded, case-insensitive substring matching):
  Pass 1: same department AND any name word, edition within +/- window days
  Pass 2: only when pass 1 found < 10 events: any name OR city word, any
          department, edition within the window, pass-1 events excluded

Transactions are owned by the caller (one commit per work unit).
"""

from __future__ import annotations

import json
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

import psycopg

from ffa_calendar_etl.deduplication import hash_changes
from ffa_calendar_etl.models import (
    CandidateEvent,
    CatalogEdition,
    CatalogEditionRef,
    CatalogOrganizer,
    CatalogRace,
    PendingProposal,
    Proposal,
    ProposalKind,
    changes_to_dict,
)
from ffa_calendar_etl.progress import ScrapingProgress

log = logging.getLogger(__name__)

PASS_ONE_LIMIT = 100
PASS_TWO_MIN_LIMIT = 20
WIDEN_BELOW = 10
PROGRESS_KEY = "progress"

# lower() + accent folding for the French alphabet
_FOLD_FROM = "àâäáãéèêëíìîïóòôöõúùûüçñÿœ"
_FOLD_TO = "aaaaaeeeeiiiiooooouuuucnyo"


class CatalogUnavailable(Exception):
    """The catalog database cannot be reached; fatal to the run."""


def connect(dsn: str) -> psycopg.Connection:
    try:
        return psycopg.connect(dsn, autocommit=False)
    except psycopg.OperationalError as exc:
        raise CatalogUnavailable(f"cannot connect to catalog: {exc}") from exc


def _folded(column: str) -> str:
    return f"translate(lower({column}), '{_FOLD_FROM}', '{_FOLD_TO}')"


def _patterns(words: list[str]) -> list[str]:
    return [f"%{w}%" for w in words]


def _str_or_none(value: Any) -> str | None:
    return str(value) if value is not None else None


def _float_or_none(value: Any) -> float | None:
    return float(value) if value is not None else None


# ---------------------------------------------------------------------------
# Catalog reads + proposal writes
# ---------------------------------------------------------------------------

class PostgresCatalog:
    """Catalog collaborator over one psycopg connection."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    @property
    def conn(self) -> psycopg.Connection:
        return self._conn

    def _fetchall(self, sql: str, params: tuple | dict) -> list[tuple]:
        try:
            return self._conn.execute(sql, params).fetchall()
        except psycopg.OperationalError as exc:
            raise CatalogUnavailable(f"catalog query failed: {exc}") from exc

    # -- candidates --------------------------------------------------------

    def find_candidates(
        self,
        name_words: list[str],
        city_words: list[str],
        department: str,
        day: date,
        window_days: int,
    ) -> list[CandidateEvent]:
        """Events with an edition within +/- window_days of day that share words."""
        window_start = datetime.combine(day - timedelta(days=window_days), time.min, tzinfo=timezone.utc)
        window_end = datetime.combine(day + timedelta(days=window_days), time.max, tzinfo=timezone.utc)
        has_edition = (
            "EXISTS (SELECT 1 FROM edition ed WHERE ed.event_id = e.id "
            "AND ed.start_date BETWEEN %(start)s AND %(end)s)"
        )
        params: dict[str, Any] = {"start": window_start, "end": window_end}

        rows: list[tuple] = []
        if name_words:
            pass_one = (
                "SELECT e.id, e.name, e.city, e.department, e.is_featured FROM event e "
                f"WHERE {has_edition} "
                f"AND {_folded('e.name')} LIKE ANY(%(names)s::text[]) "
            )
            if department:
                pass_one += "AND e.department = %(department)s "
            pass_one += "ORDER BY e.name LIMIT %(limit)s"
            rows = self._fetchall(pass_one, {
                **params,
                "names": _patterns(name_words),
                "department": department,
                "limit": PASS_ONE_LIMIT,
            })
            log.debug("candidates pass 1: %d event(s)", len(rows))
            if len(rows) >= PASS_ONE_LIMIT:
                log.warning("candidate pass 1 hit its limit of %d", PASS_ONE_LIMIT)

        if len(rows) < WIDEN_BELOW and (name_words or city_words):
            seen = [r[0] for r in rows]
            pass_two = (
                "SELECT e.id, e.name, e.city, e.department, e.is_featured FROM event e "
                f"WHERE {has_edition} "
                f"AND ({_folded('e.name')} LIKE ANY(%(names)s::text[]) "
                f"     OR {_folded('e.city')} LIKE ANY(%(cities)s::text[])) "
                "AND NOT (e.id = ANY(%(seen)s::uuid[])) "
                "ORDER BY e.name LIMIT %(limit)s"
            )
            more = self._fetchall(pass_two, {
                **params,
                "names": _patterns(name_words),
                "cities": _patterns(city_words),
                "seen": seen,
                "limit": max(PASS_ONE_LIMIT - len(rows), PASS_TWO_MIN_LIMIT),
            })
            log.debug("candidates pass 2: %d more event(s)", len(more))
            rows = rows + more

        if not rows:
            return []

        editions: dict[Any, list[CatalogEditionRef]] = {}
        for ed_id, event_id, year, start_date in self._fetchall(
            "SELECT id, event_id, year, start_date FROM edition "
            "WHERE event_id = ANY(%(ids)s) AND start_date BETWEEN %(start)s AND %(end)s "
            "ORDER BY start_date",
            {**params, "ids": [r[0] for r in rows]},
        ):
            editions.setdefault(event_id, []).append(
                CatalogEditionRef(id=str(ed_id), year=year, start_date=start_date)
            )

        return [
            CandidateEvent(
                id=str(event_id),
                name=name,
                city=city,
                department=department_code,
                is_featured=bool(is_featured),
                editions=tuple(editions.get(event_id, [])),
            )
            for event_id, name, city, department_code, is_featured in rows
        ]

    # -- editions ----------------------------------------------------------

    def load_edition(self, edition_id: str) -> CatalogEdition | None:
        rows = self._fetchall(
            "SELECT id, event_id, year, start_date, end_date, time_zone, calendar_status, "
            "registration_closing_date, additional_info, registrants_number "
            "FROM edition WHERE id = %s",
            (edition_id,),
        )
        if not rows:
            return None
        (ed_id, event_id, year, start_date, end_date, time_zone, status,
         closing, additional_info, registrants) = rows[0]

        organizer_rows = self._fetchall(
            "SELECT name, website_url, facebook_url, instagram_url, email, phone "
            "FROM edition_partner WHERE edition_id = %s AND role = 'ORGANIZER' "
            "ORDER BY id LIMIT 1",
            (edition_id,),
        )
        organizer = CatalogOrganizer(*organizer_rows[0]) if organizer_rows else None

        races = tuple(
            CatalogRace(
                id=str(r[0]),
                name=r[1],
                start_date=r[2],
                time_zone=r[3],
                run_distance_km=_float_or_none(r[4]),
                walk_distance_km=_float_or_none(r[5]),
                swim_distance_km=_float_or_none(r[6]),
                bike_distance_km=_float_or_none(r[7]),
                run_positive_elevation=_float_or_none(r[8]),
                category_level_1=r[9],
                category_level_2=r[10],
            )
            for r in self._fetchall(
                "SELECT id, name, start_date, time_zone, run_distance, walk_distance, "
                "swim_distance, bike_distance, run_positive_elevation, "
                "category_level_1, category_level_2 "
                "FROM race WHERE edition_id = %s ORDER BY start_date NULLS LAST, name",
                (edition_id,),
            )
        )
        services = tuple(
            r[0] for r in self._fetchall(
                "SELECT service FROM edition_service WHERE edition_id = %s ORDER BY service",
                (edition_id,),
            )
        )
        return CatalogEdition(
            id=str(ed_id),
            event_id=str(event_id),
            year=year,
            start_date=start_date,
            end_date=end_date,
            time_zone=time_zone,
            calendar_status=status,
            registration_closing_date=closing,
            organizer=organizer,
            races=races,
            services=services,
            additional_info=additional_info,
            registrants_number=registrants,
        )

    # -- proposals ---------------------------------------------------------

    def list_pending_proposals(
        self,
        edition_id: str | None,
        kind: ProposalKind,
        source_url: str | None = None,
    ) -> list[PendingProposal]:
        """PENDING proposals for an edition, or for a new event by source URL."""
        sql = (
            "SELECT id, kind, changes, event_id, edition_id, status, created_at "
            "FROM proposal WHERE status = 'PENDING' AND kind = %s "
        )
        if edition_id is not None:
            sql += "AND edition_id = %s "
            params: tuple = (str(kind), edition_id)
        else:
            sql += "AND edition_id IS NULL AND source_url = %s "
            params = (str(kind), source_url)
        sql += "ORDER BY created_at"
        return [
            PendingProposal(
                id=str(r[0]),
                kind=r[1],
                changes=r[2] if isinstance(r[2], dict) else json.loads(r[2]),
                event_id=_str_or_none(r[3]),
                edition_id=_str_or_none(r[4]),
                status=r[5],
                created_at=r[6],
            )
            for r in self._fetchall(sql, params)
        ]

    def create_proposal(self, proposal: Proposal, agent_name: str) -> str:
        row = self._conn.execute(
            """
            INSERT INTO proposal
                (kind, event_id, edition_id, source_url, agent_name,
                 changes, justification, confidence, content_hash)
            VALUES (%s, %s, %s, %s, %s, %s::jsonb, %s::jsonb, %s, %s)
            RETURNING id
            """,
            (
                str(proposal.kind),
                proposal.event_id,
                proposal.edition_id,
                proposal.source_url,
                agent_name,
                json.dumps(changes_to_dict(proposal.changes), ensure_ascii=False),
                json.dumps([j.to_dict() for j in proposal.justification], ensure_ascii=False),
                proposal.confidence,
                hash_changes(proposal.changes),
            ),
        ).fetchone()
        return str(row[0])

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()


# ---------------------------------------------------------------------------
# Progress persisted in agent_state
# ---------------------------------------------------------------------------

class PostgresProgressStore:
    """ScrapingProgress stored as one agent_state row per agent name."""

    def __init__(self, conn: psycopg.Connection, agent_name: str) -> None:
        self._conn = conn
        self._agent_name = agent_name

    def load(self) -> ScrapingProgress:
        row = self._conn.execute(
            "SELECT state FROM agent_state WHERE agent_name = %s AND key = %s",
            (self._agent_name, PROGRESS_KEY),
        ).fetchone()
        if row is None:
            return ScrapingProgress()
        state = row[0] if isinstance(row[0], dict) else json.loads(row[0])
        return ScrapingProgress.from_dict(state)

    def save(self, progress: ScrapingProgress) -> None:
        """Upsert and commit; called right after the unit's proposals commit."""
        self._conn.execute(
            """
            INSERT INTO agent_state (agent_name, key, state, updated_at)
            VALUES (%s, %s, %s::jsonb, now())
            ON CONFLICT (agent_name, key)
            DO UPDATE SET state = EXCLUDED.state, updated_at = now()
            """,
            (self._agent_name, PROGRESS_KEY, json.dumps(progress.to_dict())),
        )
        self._conn.commit()
