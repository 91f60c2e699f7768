"""ffa_calendar_etl.categories

Race category inference and race-name normalization.

Categories are a two-level taxonomy (level 1: RUNNING, TRAIL, WALK, CYCLING,
TRIATHLON, FUN, OTHER; level 2: optional sub-type).  Inference is keyword
driven, checked in priority order, with distance bands as the fallback for
trail and road running.

Usage:
    from ffa_calendar_etl.categories import infer_categories, normalize_race_name

    level1, level2 = infer_categories("Trail des Crêtes", run_km=24.0)
    # ("TRAIL", "SHORT_TRAIL")
    normalize_race_name("Trail des Crêtes", level1, level2, 24.0)
    # "Trail 24 km"
"""

from __future__ import annotations

import re

from ffa_calendar_etl.normalize import strip_accents

Categories = tuple[str, str | None]


def _lower(value: str | None) -> str:
    if not value:
        return ""
    return re.sub(r"\s+", " ", strip_accents(value.lower())).strip()


# ---------------------------------------------------------------------------
# Inference
# ---------------------------------------------------------------------------

def _triathlon(name: str, run_km: float | None, bike_km: float | None,
               swim_km: float | None) -> Categories | None:
    if "swim" in name and "run" in name:
        return "TRIATHLON", "SWIM_RUN"
    if "swim" in name and "bike" in name:
        return "TRIATHLON", "SWIM_BIKE"
    if "run" in name and "bike" in name:
        return "TRIATHLON", "RUN_BIKE"
    if "aquathlon" in name:
        return "TRIATHLON", "AQUATHLON"
    if "duathlon" in name:
        return "TRIATHLON", "DUATHLON"
    if "cross triathlon" in name or "cross-triathlon" in name:
        return "TRIATHLON", "CROSS_TRIATHLON"
    if "ultra triathlon" in name:
        return "TRIATHLON", "ULTRA_TRIATHLON"
    if "triathlon" not in name:
        return None
    if "enfant" in name or "kids" in name:
        return "TRIATHLON", "TRIATHLON_KIDS"
    if "xs" in name:
        return "TRIATHLON", "TRIATHLON_XS"
    if re.search(r"\bm\b", name):
        return "TRIATHLON", "TRIATHLON_M"
    if re.search(r"\bl\b", name):
        return "TRIATHLON", "TRIATHLON_L"
    if "xxl" in name or "ultra" in name:
        return "TRIATHLON", "TRIATHLON_XXL"
    # "s" last so it does not shadow xs/xxl
    if re.search(r"\bs\b", name):
        return "TRIATHLON", "TRIATHLON_S"
    if swim_km and bike_km and run_km:
        if swim_km <= 0.75 and bike_km <= 20 and run_km <= 5:
            return "TRIATHLON", "TRIATHLON_XS"
        if swim_km <= 1.5 and bike_km <= 40 and run_km <= 10:
            return "TRIATHLON", "TRIATHLON_S"
        if swim_km <= 2 and bike_km <= 90 and run_km <= 21:
            return "TRIATHLON", "TRIATHLON_M"
        if swim_km <= 3 and bike_km <= 180 and run_km <= 42:
            return "TRIATHLON", "TRIATHLON_L"
    return "TRIATHLON", None


def _cycling(name: str, bike_km: float | None) -> Categories | None:
    if "gravel" in name:
        return ("CYCLING", "GRAVEL_RACE") if "race" in name else ("CYCLING", "GRAVEL_RIDE")
    if "gran fondo" in name or "granfondo" in name:
        return "CYCLING", "GRAN_FONDO"
    mountain = "vtt" in name or "mountain" in name
    if "enduro" in name and mountain:
        return "CYCLING", "ENDURO_MOUNTAIN_BIKE"
    if "xc" in name and mountain:
        return "CYCLING", "XC_MOUNTAIN_BIKE"
    if mountain:
        return "CYCLING", "MOUNTAIN_BIKE_RIDE"
    if "bikepacking" in name or "bike packing" in name:
        return "CYCLING", "BIKEPACKING"
    if "ultra cycling" in name or ("ultra" in name and bike_km and bike_km > 200):
        return "CYCLING", "ULTRA_CYCLING"
    if ("contre-la-montre" in name or "clm" in name or "time trial" in name
            or re.search(r"\btt\b", name)):
        return "CYCLING", "TIME_TRIAL"
    if "touring" in name or "cyclo" in name:
        return "CYCLING", "CYCLE_TOURING"
    if "velo" in name or "cyclisme" in name or "cycling" in name:
        if bike_km and bike_km > 100:
            return "CYCLING", "GRAN_FONDO"
        return "CYCLING", "ROAD_CYCLING_TOUR"
    return None


def _trail(name: str, run_km: float | None) -> Categories:
    if run_km:
        if run_km <= 21:
            return "TRAIL", "DISCOVERY_TRAIL"
        if run_km <= 41:
            return "TRAIL", "SHORT_TRAIL"
        if run_km <= 80:
            return "TRAIL", "LONG_TRAIL"
        return "TRAIL", "ULTRA_TRAIL"
    m = re.search(r"(\d+)\s*km", name)
    if m:
        km = int(m.group(1))
        if km <= 5:
            return "TRAIL", "KM5"
        if km <= 10:
            return "TRAIL", "KM10"
        if km <= 15:
            return "TRAIL", "KM15"
        if km <= 20:
            return "TRAIL", "KM20"
    return "TRAIL", "DISCOVERY_TRAIL"


_KEYWORD_CATEGORIES: list[tuple[tuple[str, ...], Categories]] = [
    # walk
    (("marche nordique", "nordic walk"), ("WALK", "NORDIC_WALK")),
    (("ski de fond", "cross country skiing"), ("WALK", "CROSS_COUNTRY_SKIING")),
    (("randonnee", "rando", "hiking"), ("WALK", "HIKING")),
    (("marche",), ("WALK", "HIKING")),
    # fun
    (("color",), ("FUN", "COLOR_RUN")),
    (("obstacle",), ("FUN", "OBSTACLE_RACE")),
    (("spartan",), ("FUN", "SPARTAN_RACE")),
    (("mud",), ("FUN", "MUD_DAY")),
    # other
    (("canicross",), ("OTHER", "CANICROSS")),
    (("orienteering", "orientation"), ("OTHER", "ORIENTEERING")),
    (("raid",), ("OTHER", "RAID")),
    (("biathlon",), ("OTHER", "BIATHLON")),
    (("natation", "swimming"), ("OTHER", "SWIMMING")),
    (("vol libre", "free flight"), ("OTHER", "FREE_FLIGHT")),
    (("yoga",), ("OTHER", "YOGA")),
    # running keywords
    (("vertical",), ("RUNNING", "VERTICAL_KILOMETER")),
    (("cross",), ("RUNNING", "CROSS")),
    (("ekiden",), ("RUNNING", "EKIDEN")),
]


def _running_by_distance(run_km: float) -> Categories:
    if run_km < 5:
        return "RUNNING", "LESS_THAN_5_KM"
    if run_km < 7.5:
        return "RUNNING", "KM5"
    if run_km < 12.5:
        return "RUNNING", "KM10"
    if run_km < 17.5:
        return "RUNNING", "KM15"
    if run_km < 30:
        return "RUNNING", "KM20"
    if run_km < 35:
        return "RUNNING", "HALF_MARATHON"
    if run_km < 50:
        return "RUNNING", "MARATHON"
    return "RUNNING", "ULTRA_RUNNING"


def infer_categories(
    race_name: str | None,
    run_km: float | None = None,
    bike_km: float | None = None,
    swim_km: float | None = None,
    event_name: str | None = None,
) -> Categories:
    """Classify a race into (level 1, level 2) from its name and distance.

    The event name only contributes trail context: a "14 km" race of the
    "Trail de la Raye" competition is a trail.
    """
    name = _lower(race_name)

    found = _triathlon(name, run_km, bike_km, swim_km) or _cycling(name, bike_km)
    if found:
        return found

    if "trail" in name or "trail" in _lower(event_name):
        return _trail(name, run_km)

    for keywords, categories in _KEYWORD_CATEGORIES:
        if any(k in name for k in keywords):
            return categories

    if "marathon" in name:
        if "semi" in name or "half" in name or "1/2" in name:
            return "RUNNING", "HALF_MARATHON"
        return "RUNNING", "MARATHON"
    if "corrida" in name:
        return "RUNNING", None
    if run_km:
        return _running_by_distance(run_km)
    return "RUNNING", None


# ---------------------------------------------------------------------------
# Labels and race-name normalization
# ---------------------------------------------------------------------------

LEVEL_1_LABELS: dict[str, str] = {
    "RUNNING": "Course",
    "TRAIL": "Trail",
    "WALK": "Marche",
    "CYCLING": "Vélo",
    "TRIATHLON": "Triathlon",
    "FUN": "Course Fun",
    "OTHER": "Autre",
}

LEVEL_2_LABELS: dict[str, str] = {
    "NORDIC_WALK": "Marche Nordique",
    "HIKING": "Randonnée",
    "GRAVEL_RACE": "Gravel",
    "GRAVEL_RIDE": "Gravel",
    "GRAN_FONDO": "Gran Fondo",
    "MOUNTAIN_BIKE_RIDE": "VTT",
    "ROAD_CYCLING_TOUR": "Vélo",
    "ULTRA_TRAIL": "Ultra Trail",
    "DISCOVERY_TRAIL": "Trail",
    "SHORT_TRAIL": "Trail",
    "LONG_TRAIL": "Trail",
    "VERTICAL_KILOMETER": "Kilomètre Vertical",
    "TRIATHLON_XS": "Triathlon XS",
    "TRIATHLON_S": "Triathlon S",
    "TRIATHLON_M": "Triathlon M",
    "TRIATHLON_L": "Triathlon L",
    "TRIATHLON_XXL": "Triathlon XXL",
    "DUATHLON": "Duathlon",
    "AQUATHLON": "Aquathlon",
    "SWIM_RUN": "Swim Run",
    "RUN_BIKE": "Run & Bike",
    "SWIM_BIKE": "Swim Bike",
    "EKIDEN": "Course Relais",
    "CROSS": "Cross",
    "OBSTACLE_RACE": "Course à Obstacles",
    "COLOR_RUN": "Color Run",
    "SPARTAN_RACE": "Spartan Race",
    "MUD_DAY": "Mud Day",
    "CANICROSS": "Canicross",
    "ORIENTEERING": "Course d'Orientation",
}


def category_label(level_1: str, level_2: str | None) -> str:
    if level_2 and level_2 in LEVEL_2_LABELS:
        return LEVEL_2_LABELS[level_2]
    return LEVEL_1_LABELS.get(level_1, "Course")


def format_distance(distance_km: float) -> str:
    """"800 m" below one kilometre, otherwise "10 km" / "21.1 km"."""
    if distance_km < 1:
        return f"{round(distance_km * 1000)} m"
    rounded = round(distance_km, 1)
    if rounded == int(rounded):
        return f"{int(rounded)} km"
    return f"{rounded} km"


def normalize_race_name(
    raw_name: str | None,
    level_1: str,
    level_2: str | None,
    distance_km: float | None = None,
) -> str:
    """Build "[Label] [Relais] [Enfants] [distance]" from a raw FFA race label."""
    lowered = _lower(raw_name)
    parts = [category_label(level_1, level_2)]
    if re.search(r"relais|ekiden|\bx\d", lowered) and level_2 != "EKIDEN":
        parts.append("Relais")
    if re.search(r"enfant|kids|junior|jeune|pouss", lowered):
        parts.append("Enfants")
    if distance_km and level_1 != "TRIATHLON":
        parts.append(format_distance(distance_km))
    return " ".join(parts)


def distance_fields(level_1: str, distance_km: float | None,
                    elevation_m: float | None) -> dict[str, float]:
    """Category-appropriate distance/elevation fields for a new race."""
    if level_1 == "WALK":
        prefix = "walk"
    elif level_1 == "CYCLING":
        prefix = "bike"
    else:
        prefix = "run"
    fields: dict[str, float] = {}
    if distance_km is not None:
        fields[f"{prefix}Distance"] = distance_km
    if elevation_m is not None:
        fields[f"{prefix}PositiveElevation"] = elevation_m
    return fields
