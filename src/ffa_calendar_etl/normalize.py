"""Normalization and parsing primitives for FFA calendar ingestion.

All parse_* functions accept str | None and return the parsed value or None.
A value that cannot be parsed is treated as absent, never as an error.
"""

from __future__ import annotations

import re
import unicodedata
from datetime import date

# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = value.strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: normalize_space
# ---------------------------------------------------------------------------

def normalize_space(value: str | None) -> str | None:
    """Collapse internal runs of whitespace to single spaces, then trim."""
    v = trim(value)
    if v is None:
        return None
    return re.sub(r"\s+", " ", v)


# ---------------------------------------------------------------------------
# Rule 3: strip_accents / normalize_text  (for matching)
# ---------------------------------------------------------------------------

def strip_accents(value: str) -> str:
    v = unicodedata.normalize("NFD", value)
    return "".join(c for c in v if not unicodedata.combining(c))


def normalize_text(value: str | None) -> str:
    """Lowercase, drop diacritics, unify quotes, replace punctuation by spaces.

    Used for similarity scoring only; never stored.
    """
    if not value:
        return ""
    v = strip_accents(value.lower())
    v = re.sub(r"[‘’´`]", "'", v)
    v = re.sub(r"[“”«»]", '"', v)
    v = re.sub(r"[^\w\s]", " ", v)
    return re.sub(r"\s+", " ", v).strip()


# ---------------------------------------------------------------------------
# Rule 4: remove_edition_number
# ---------------------------------------------------------------------------

_EDITION_PATTERNS = [
    # "Trail des Loups - 34ème édition"
    re.compile(r"\s*[-–—]\s*\d+\s*(?:[eèé]me|ère|er|e)\s+[eé]?ditions?\s*$", re.IGNORECASE),
    # "Trail des Loups 34ème édition"
    re.compile(r"\s+\d+\s*(?:[eèé]me|ère|er|e)\s+[eé]?ditions?\s*$", re.IGNORECASE),
    # "34ème Trail des Loups", "3e Corrida"
    re.compile(r"\b\d+\s*(?:[eèé]me|ère|er|e)\b", re.IGNORECASE),
    # "#3", "N° 5", "no.12"
    re.compile(r"\s*(?:[#№]|\bn[o°]\.?)\s*\d+\b", re.IGNORECASE),
    # trailing year "- 2025", "(2025)"
    re.compile(r"\s*[-–—]?\s*\(?\d{4}\)?\s*$"),
    # trailing parenthesised city
    re.compile(r"\s*\([^)]+\)\s*$"),
    # dangling separator
    re.compile(r"\s*[-–—]\s*$"),
]


def remove_edition_number(name: str | None) -> str:
    """Strip edition markers ("34ème", "- 12e édition", "#3", trailing year)."""
    if not name:
        return ""
    v = name
    for pattern in _EDITION_PATTERNS:
        v = pattern.sub("", v)
    return re.sub(r"\s+", " ", v).strip()


# ---------------------------------------------------------------------------
# Rule 5: stopwords / keywords
# ---------------------------------------------------------------------------

EVENT_NAME_STOPWORDS = frozenset({
    # articles and prepositions
    "le", "la", "les", "un", "une", "des", "de", "du", "en", "au", "aux", "a",
    # edition wording
    "edition", "eme", "ere", "decouverte", "nouveau", "nouvelle",
    "by", "organise", "presente", "propose",
    # generic sport words
    "trail", "course", "semi", "marathon", "km", "run", "running",
    "corrida", "foulees", "relais", "marche", "randonnee",
    # generic qualifiers
    "grand", "grande", "petit", "petite", "super", "mega",
    "international", "nationale", "regional", "departemental",
    "nocturne", "diurne", "matinal", "vesperale",
})


def remove_stopwords(normalized: str, min_length: int = 3) -> str:
    """Drop stopwords and short tokens from an already normalized string."""
    words = [
        w for w in normalized.split()
        if len(w) >= min_length and w not in EVENT_NAME_STOPWORDS
    ]
    return " ".join(words)


def extract_keywords(normalized: str, min_length: int = 4) -> list[str]:
    """Distinctive tokens of a normalized name, longest first."""
    words = [
        w for w in normalized.split()
        if len(w) >= min_length and w not in EVENT_NAME_STOPWORDS
    ]
    return sorted(words, key=len, reverse=True)


# ---------------------------------------------------------------------------
# Rule 6: levenshtein
# ---------------------------------------------------------------------------

def levenshtein(a: str, b: str) -> int:
    """Classic edit distance (insert, delete, substitute all cost 1)."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        current = [i]
        for j, cb in enumerate(b, 1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (ca != cb),
            ))
        previous = current
    return previous[-1]


# ---------------------------------------------------------------------------
# Rule 7: French dates, distances, elevation, clock times
# ---------------------------------------------------------------------------

FRENCH_MONTHS = {
    "janvier": 1, "fevrier": 2, "mars": 3, "avril": 4, "mai": 5, "juin": 6,
    "juillet": 7, "aout": 8, "septembre": 9, "octobre": 10,
    "novembre": 11, "decembre": 12,
}

_FRENCH_DATE_RE = re.compile(r"(\d{1,2})\s+(\w+)(?:\s+(\d{4}))?", re.UNICODE)
_NUMERIC_DATE_RE = re.compile(r"^(\d{1,2})/(\d{1,2})(?:/(\d{4}))?$")


def parse_french_date(value: str | None, default_year: int | None = None) -> date | None:
    """Parse "15 novembre 2025", "1er décembre" or "15/11/2025".

    Missing year falls back to default_year; None when still unknown.
    """
    v = normalize_space(value)
    if v is None:
        return None
    v = v.replace("1er", "1")
    m = _NUMERIC_DATE_RE.match(v)
    if m:
        day, month = int(m.group(1)), int(m.group(2))
        year = int(m.group(3)) if m.group(3) else default_year
    else:
        m = _FRENCH_DATE_RE.search(v)
        if not m:
            return None
        month = FRENCH_MONTHS.get(strip_accents(m.group(2).lower()))
        if month is None:
            return None
        day = int(m.group(1))
        year = int(m.group(3)) if m.group(3) else default_year
    if year is None:
        return None
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_day_month(value: str | None) -> tuple[int, int] | None:
    """Parse an explicit "DD/MM" sub-date into (day, month)."""
    v = trim(value)
    if v is None:
        return None
    m = re.match(r"^(\d{1,2})/(\d{1,2})$", v)
    if not m:
        return None
    day, month = int(m.group(1)), int(m.group(2))
    if not (1 <= month <= 12 and 1 <= day <= 31):
        return None
    return day, month


_KM_RE = re.compile(r"(\d+(?:[.,]\d+)?)km", re.IGNORECASE)
_METERS_RE = re.compile(r"(\d+)m(?!i)", re.IGNORECASE)
_BARE_NUMBER_RE = re.compile(r"^(\d+(?:[.,]\d+)?)$")


def parse_distance(value: str | None) -> int | None:
    """Return a distance in meters from "10 km", "21,1km", "800m" or "42".

    A bare number above 100 is read as meters, otherwise as kilometres.
    """
    v = trim(value)
    if v is None:
        return None
    v = re.sub(r"\s+", "", v)
    m = _KM_RE.search(v)
    if m:
        return round(float(m.group(1).replace(",", ".")) * 1000)
    m = _METERS_RE.search(v)
    if m:
        return int(m.group(1))
    m = _BARE_NUMBER_RE.match(v)
    if m:
        number = float(m.group(1).replace(",", "."))
        return round(number) if number > 100 else round(number * 1000)
    return None


_ELEVATION_RE = re.compile(r"(?:d\+|dénivelé|denivele|elevation)[:\s]*(\d+)", re.IGNORECASE)
_SUFFIX_ELEVATION_RE = re.compile(r"(\d+)\s*m?\s*d\+", re.IGNORECASE)


def parse_elevation(value: str | None) -> int | None:
    """Positive elevation in meters from "D+ 450", "210 m D+", "Dénivelé: 1200m" or "450"."""
    v = trim(value)
    if v is None:
        return None
    m = _ELEVATION_RE.search(v) or _SUFFIX_ELEVATION_RE.search(v)
    if m:
        return int(m.group(1))
    m = re.match(r"^(\d+)\s*m?$", v, re.IGNORECASE)
    if m:
        return int(m.group(1))
    return None


_CLOCK_RE = re.compile(r"(\d{1,2})\s*[h:]\s*(\d{2})", re.IGNORECASE)


def parse_clock_time(value: str | None) -> str | None:
    """Normalize "9h30", "14:00" or "09 h 05" to zero-padded "HH:MM"."""
    v = trim(value)
    if v is None:
        return None
    m = _CLOCK_RE.search(v)
    if not m:
        return None
    hours, minutes = int(m.group(1)), int(m.group(2))
    if hours > 23 or minutes > 59:
        return None
    return f"{hours:02d}:{minutes:02d}"


# ---------------------------------------------------------------------------
# Rule 8: clean_event_name
# ---------------------------------------------------------------------------

def clean_event_name(value: str | None) -> str | None:
    """Remove the leading clock time and stray separators from a race label.

    "14h30 - Trail 12 km" → "Trail 12 km".
    """
    v = normalize_space(value)
    if v is None:
        return None
    v = re.sub(r"^\d{1,2}\s*[h:]\s*\d{2}\s*[-–:]?\s*", "", v)
    v = re.sub(r"^[-–—:]\s*", "", v)
    return trim(v)


# ---------------------------------------------------------------------------
# Rule 9: classify_organizer_url
# ---------------------------------------------------------------------------

def classify_organizer_url(url: str | None) -> tuple[str, str] | None:
    """Return (field_name, url) where field_name is facebookUrl, instagramUrl or websiteUrl."""
    v = trim(url)
    if v is None:
        return None
    lowered = v.lower()
    if any(host in lowered for host in ("facebook.com", "fb.com", "fb.me")):
        return "facebookUrl", v
    if any(host in lowered for host in ("instagram.com", "instagr.am")):
        return "instagramUrl", v
    return "websiteUrl", v


# ---------------------------------------------------------------------------
# Rule 10: normalize_department_code
# ---------------------------------------------------------------------------

def normalize_department_code(code: str | None) -> str:
    """"074" → "74"; overseas codes 971-976 and Corsican 2A/2B are kept."""
    v = trim(code)
    if v is None:
        return ""
    v = v.upper()
    if re.match(r"^97[1-6]$", v):
        return v
    if re.match(r"^0\d{2}$", v):
        return v[1:]
    return v
