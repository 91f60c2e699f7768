"""ffa_calendar_etl.progress

Resumable region x month cycle scheduler.

The scheduler is pure: next_work_units() and advance_cursor() take a
ScrapingProgress and return a new one; the caller persists it through a
ProgressStore after every completed (region, month) unit.

Cycle rules:
  - the window is the current month plus the next scraping_window_months - 1
  - a region is cycle-complete once every window month is completed for it
  - all regions complete + last_completed_at younger than rescan_delay_days
    -> no work (cooldown)
  - all regions complete otherwise -> completion state cleared, new cycle
  - last_completed_at is stamped when the cursor finds every region complete
"""

from __future__ import annotations

import calendar
import json
import logging
from copy import deepcopy
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Protocol

from ffa_calendar_etl.config import HarvestConfig

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Progress value
# ---------------------------------------------------------------------------

@dataclass
class ScrapingProgress:
    current_region: str | None = None
    current_month: str | None = None
    completed_regions: list[str] = field(default_factory=list)
    completed_months: dict[str, list[str]] = field(default_factory=dict)
    last_completed_at: datetime | None = None
    total_competitions_scraped: int = 0
    total_proposals_created: int = 0
    total_proposals_suppressed: int = 0

    def copy(self) -> ScrapingProgress:
        return deepcopy(self)

    def is_completed(self, region: str, month: str) -> bool:
        return month in self.completed_months.get(region, [])

    def to_dict(self) -> dict[str, Any]:
        return {
            "currentRegion": self.current_region,
            "currentMonth": self.current_month,
            "completedRegions": list(self.completed_regions),
            "completedMonths": {k: list(v) for k, v in self.completed_months.items()},
            "lastCompletedAt": (
                self.last_completed_at.isoformat() if self.last_completed_at else None
            ),
            "totalCompetitionsScraped": self.total_competitions_scraped,
            "totalProposalsCreated": self.total_proposals_created,
            "totalProposalsSuppressed": self.total_proposals_suppressed,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScrapingProgress:
        last = data.get("lastCompletedAt")
        return cls(
            current_region=data.get("currentRegion"),
            current_month=data.get("currentMonth"),
            completed_regions=list(data.get("completedRegions") or []),
            completed_months={
                k: list(v) for k, v in (data.get("completedMonths") or {}).items()
            },
            last_completed_at=datetime.fromisoformat(last) if last else None,
            total_competitions_scraped=int(data.get("totalCompetitionsScraped") or 0),
            total_proposals_created=int(data.get("totalProposalsCreated") or 0),
            total_proposals_suppressed=int(data.get("totalProposalsSuppressed") or 0),
        )


@dataclass(frozen=True)
class WorkPlan:
    regions: list[str]
    months: list[str]
    progress: ScrapingProgress

    @property
    def is_empty(self) -> bool:
        return not self.regions or not self.months

    def units(self) -> list[tuple[str, str]]:
        """(region, month) pairs in processing order: month-major."""
        return [(r, m) for m in self.months for r in self.regions]


# ---------------------------------------------------------------------------
# Month tokens
# ---------------------------------------------------------------------------

def months_in_window(window_months: int, today: date) -> list[str]:
    tokens = []
    year, month = today.year, today.month
    for _ in range(window_months):
        tokens.append(f"{year:04d}-{month:02d}")
        month += 1
        if month > 12:
            year, month = year + 1, 1
    return tokens


def month_bounds(token: str) -> tuple[date, date]:
    """First and last calendar day of a "YYYY-MM" token."""
    year, month = (int(p) for p in token.split("-"))
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------

def _aware_gap(now: datetime, then: datetime) -> timedelta:
    if (now.tzinfo is None) != (then.tzinfo is None):
        now = now.replace(tzinfo=None)
        then = then.replace(tzinfo=None)
    return now - then


def _all_regions_complete(progress: ScrapingProgress, regions: list[str], window: list[str]) -> bool:
    return all(
        all(progress.is_completed(r, m) for m in window)
        for r in regions
    )


def next_work_units(
    progress: ScrapingProgress,
    config: HarvestConfig,
    now: datetime,
) -> WorkPlan:
    """Select the next regions and months to harvest.

    The input progress is never mutated; the returned plan carries the
    progress with its cursor moved onto the first selected unit.
    """
    window = months_in_window(config.scraping_window_months, now.date())
    regions = list(config.regions)
    p = progress.copy()

    if _all_regions_complete(p, regions, window):
        if p.last_completed_at is not None and (
            _aware_gap(now, p.last_completed_at) < timedelta(days=config.rescan_delay_days)
        ):
            remaining = timedelta(days=config.rescan_delay_days) - _aware_gap(now, p.last_completed_at)
            log.info("Cooldown active: next cycle in %d day(s)", remaining.days + 1)
            return WorkPlan(regions=[], months=[], progress=p)
        log.info("Full cycle complete; starting a new cycle")
        p.completed_months = {}
        p.completed_regions = []
        p.current_region = regions[0]
        p.current_month = window[0]

    region_idx = regions.index(p.current_region) if p.current_region in regions else 0
    if p.current_month in window:
        month_idx = window.index(p.current_month)
    else:
        if p.current_month is not None:
            log.info("Month %s left the window; restarting at %s", p.current_month, window[0])
        month_idx = 0

    per_run = config.regions_per_run
    # One pass over every block, plus the wrap back to the start
    for _ in range(len(regions) // per_run + 2):
        block = regions[region_idx:region_idx + per_run]
        months = [
            m for m in window[month_idx:]
            if any(not p.is_completed(r, m) for r in block)
        ][:config.months_per_run]
        if months:
            p.current_region = block[0]
            p.current_month = months[0]
            return WorkPlan(regions=block, months=months, progress=p)
        log.debug("Regions %s complete for the window; moving on", block)
        region_idx += per_run
        month_idx = 0
        if region_idx >= len(regions):
            region_idx = 0

    return WorkPlan(regions=[], months=[], progress=p)


def mark_unit_completed(progress: ScrapingProgress, region: str, month: str) -> ScrapingProgress:
    p = progress.copy()
    done = p.completed_months.setdefault(region, [])
    if month not in done:
        done.append(month)
    return p


def advance_cursor(
    progress: ScrapingProgress,
    plan: WorkPlan,
    config: HarvestConfig,
    now: datetime,
) -> ScrapingProgress:
    """Move the cursor past the plan; stamp the cycle when every region is done."""
    if plan.is_empty:
        return progress
    window = months_in_window(config.scraping_window_months, now.date())
    regions = list(config.regions)
    p = progress.copy()

    last_month = plan.months[-1]
    next_month_idx = window.index(last_month) + 1 if last_month in window else len(window)
    if next_month_idx < len(window):
        p.current_region = plan.regions[0]
        p.current_month = window[next_month_idx]
    else:
        next_region_idx = regions.index(plan.regions[-1]) + 1
        if next_region_idx < len(regions):
            p.current_region = regions[next_region_idx]
        else:
            p.current_region = regions[0]
        p.current_month = window[0]

    p.completed_regions = [
        r for r in regions if all(p.is_completed(r, m) for m in window)
    ]
    if _all_regions_complete(p, regions, window):
        log.info("Every region complete for the window; cooldown starts now")
        p.last_completed_at = now
        p.current_region = regions[0]
        p.current_month = window[0]

    log.info("Next position: %s - %s", p.current_region, p.current_month)
    return p


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------

class ProgressStore(Protocol):
    def load(self) -> ScrapingProgress: ...

    def save(self, progress: ScrapingProgress) -> None: ...


class JsonProgressStore:
    """Persist ScrapingProgress to a JSON file so harvests can resume."""

    def __init__(self, path: Path) -> None:
        self._path = path

    def load(self) -> ScrapingProgress:
        if self._path.exists():
            try:
                data = json.loads(self._path.read_text(encoding="utf-8"))
                return ScrapingProgress.from_dict(data)
            except Exception as exc:  # noqa: BLE001
                log.warning("Progress load failed (%s); starting fresh.", exc)
        return ScrapingProgress()

    def save(self, progress: ScrapingProgress) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(progress.to_dict(), indent=2), encoding="utf-8")
