"""ffa_calendar_etl.config

YAML-based harvest configuration.

Responsibilities:
  - Load and validate config/harvest.yml
  - Provide built-in defaults when no file is given
  - Hash YAML content for traceability in run reports

Usage:
    from pathlib import Path
    from ffa_calendar_etl.config import load_harvest_config

    config = load_harvest_config(Path("config/harvest.yml"))
    config.regions_per_run   # 2
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from ffa_calendar_etl.regions import LEVELS, REGIONS

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

REQUIRED_YAML_KEYS = frozenset({
    "regions",
    "levels",
    "regions_per_run",
    "months_per_run",
    "scraping_window_months",
    "rescan_delay_days",
})

UNIT_INTERVAL_KEYS = (
    "similarity_threshold",
    "auto_action_floor",
    "confidence_base",
    "distance_tolerance_percent",
)

POSITIVE_INT_KEYS = (
    "regions_per_run",
    "months_per_run",
    "scraping_window_months",
    "max_competitions_per_month",
    "max_listing_pages",
)

NON_NEGATIVE_INT_KEYS = (
    "rescan_delay_days",
    "human_delay_ms",
    "max_rejected_matches",
)

DEFAULT_SCORING: dict[str, float] = {
    "date_window_days": 90.0,
    "no_match_floor": 0.3,
    "exact_match_score": 0.95,
    "department_bonus": 0.15,
    "department_penalty": 0.25,
}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ConfigValidationError(ValueError):
    """Raised when a harvest config file fails schema validation."""


# ---------------------------------------------------------------------------
# HarvestConfig dataclass
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class HarvestConfig:
    """Parsed, validated harvest configuration."""

    regions: tuple[str, ...] = REGIONS
    levels: tuple[str, ...] = ("Départemental", "Régional")
    regions_per_run: int = 2
    months_per_run: int = 1
    scraping_window_months: int = 6
    rescan_delay_days: int = 30
    human_delay_ms: int = 2000
    similarity_threshold: float = 0.75
    auto_action_floor: float = 0.9
    confidence_base: float = 0.9
    distance_tolerance_percent: float = 0.1
    max_rejected_matches: int = 3
    max_competitions_per_month: int = 500
    max_listing_pages: int = 50
    scoring: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_SCORING))
    version: str = "builtin"
    yaml_hash: str | None = None

    @classmethod
    def default(cls) -> HarvestConfig:
        return cls()

    @property
    def date_window_days(self) -> int:
        return int(self.scoring["date_window_days"])

    def with_overrides(self, **overrides: Any) -> HarvestConfig:
        """Return a copy with non-None overrides applied (CLI flags)."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        updated = replace(self, **changes)
        validate_harvest_config(updated.to_dict())
        return updated

    def to_dict(self) -> dict[str, Any]:
        d = {k: v for k, v in self.__dict__.items() if k != "yaml_hash"}
        d["regions"] = list(self.regions)
        d["levels"] = list(self.levels)
        return d


# ---------------------------------------------------------------------------
# Loader + validator
# ---------------------------------------------------------------------------

def load_harvest_config(yaml_path: Path | None) -> HarvestConfig:
    """Load, validate, and return a HarvestConfig.

    Args:
        yaml_path: Path to the YAML file, or None for built-in defaults.

    Raises:
        ConfigValidationError: If any field is missing or invalid.
        FileNotFoundError: If the YAML file does not exist.
    """
    if yaml_path is None:
        return HarvestConfig.default()
    raw = yaml_path.read_text(encoding="utf-8")
    data: dict[str, Any] = yaml.safe_load(raw)
    validate_harvest_config(data)
    yaml_hash = hashlib.sha256(raw.encode("utf-8")).hexdigest()
    defaults = HarvestConfig.default()
    scoring = dict(DEFAULT_SCORING)
    scoring.update({k: float(v) for k, v in (data.get("scoring") or {}).items()})
    return HarvestConfig(
        regions=tuple(data["regions"]),
        levels=tuple(data["levels"]),
        regions_per_run=int(data["regions_per_run"]),
        months_per_run=int(data["months_per_run"]),
        scraping_window_months=int(data["scraping_window_months"]),
        rescan_delay_days=int(data["rescan_delay_days"]),
        human_delay_ms=int(data.get("human_delay_ms", defaults.human_delay_ms)),
        similarity_threshold=float(data.get("similarity_threshold", defaults.similarity_threshold)),
        auto_action_floor=float(data.get("auto_action_floor", defaults.auto_action_floor)),
        confidence_base=float(data.get("confidence_base", defaults.confidence_base)),
        distance_tolerance_percent=float(
            data.get("distance_tolerance_percent", defaults.distance_tolerance_percent)
        ),
        max_rejected_matches=int(data.get("max_rejected_matches", defaults.max_rejected_matches)),
        max_competitions_per_month=int(
            data.get("max_competitions_per_month", defaults.max_competitions_per_month)
        ),
        max_listing_pages=int(data.get("max_listing_pages", defaults.max_listing_pages)),
        scoring=scoring,
        version=str(data.get("version", "unversioned")),
        yaml_hash=yaml_hash,
    )


def validate_harvest_config(data: dict[str, Any]) -> None:
    """Raise ConfigValidationError if data does not match required schema.

    Validates:
      - Required top-level keys present
      - regions non-empty, known ligue codes, no duplicates
      - levels are FFA competition levels
      - fan-out and window values are positive integers
      - thresholds and percentages in [0.0, 1.0]
      - regions_per_run <= number of regions
    """
    if not isinstance(data, dict):
        raise ConfigValidationError("YAML root must be a mapping.")

    missing_keys = REQUIRED_YAML_KEYS - set(data.keys())
    if missing_keys:
        raise ConfigValidationError(f"Missing required YAML keys: {sorted(missing_keys)}")

    regions = data.get("regions") or []
    if not regions:
        raise ConfigValidationError("'regions' must not be empty.")
    unknown = [r for r in regions if r not in REGIONS]
    if unknown:
        raise ConfigValidationError(f"Unknown ligue codes in 'regions': {unknown}")
    if len(set(regions)) != len(regions):
        raise ConfigValidationError("'regions' must not contain duplicates.")

    levels = data.get("levels") or []
    if not levels:
        raise ConfigValidationError("'levels' must not be empty.")
    bad_levels = [lvl for lvl in levels if lvl not in LEVELS]
    if bad_levels:
        raise ConfigValidationError(
            f"Invalid levels {bad_levels}. Must be among {list(LEVELS)}."
        )

    for key in POSITIVE_INT_KEYS + NON_NEGATIVE_INT_KEYS:
        if key not in data:
            continue
        val = data[key]
        if isinstance(val, bool) or not isinstance(val, int):
            raise ConfigValidationError(f"'{key}' value '{val}' must be an integer.")
        floor = 1 if key in POSITIVE_INT_KEYS else 0
        if val < floor:
            raise ConfigValidationError(f"'{key}' value {val} must be >= {floor}.")

    for key in UNIT_INTERVAL_KEYS:
        if key not in data:
            continue
        val = data[key]
        try:
            fval = float(val)
        except (TypeError, ValueError):
            raise ConfigValidationError(f"'{key}' value '{val}' is not numeric.")
        if not (0.0 <= fval <= 1.0):
            raise ConfigValidationError(f"'{key}' value {fval} must be in [0.0, 1.0].")

    if int(data["regions_per_run"]) > len(regions):
        raise ConfigValidationError(
            f"'regions_per_run' ({data['regions_per_run']}) exceeds the "
            f"number of regions ({len(regions)})."
        )

    scoring = data.get("scoring") or {}
    if not isinstance(scoring, dict):
        raise ConfigValidationError("'scoring' must be a mapping.")
    unknown_scoring = set(scoring) - set(DEFAULT_SCORING)
    if unknown_scoring:
        raise ConfigValidationError(f"Unknown scoring keys: {sorted(unknown_scoring)}")
    for key, val in scoring.items():
        try:
            fval = float(val)
        except (TypeError, ValueError):
            raise ConfigValidationError(f"scoring '{key}' value '{val}' is not numeric.")
        if fval < 0:
            raise ConfigValidationError(f"scoring '{key}' value {fval} must be >= 0.")
        # Divisor of the date proximity score, truncated to whole days
        if key == "date_window_days" and fval < 1:
            raise ConfigValidationError(
                f"scoring 'date_window_days' value {fval} must be at least 1 day."
            )
