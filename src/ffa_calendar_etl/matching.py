"""ffa_calendar_etl.matching

Similarity & matching engine: scores one scraped competition against catalog
candidates and returns a MatchOutcome.

Scoring per candidate:
  - name_score     full cleaned names (edition markers removed)
  - keyword_score  names with stopwords removed, checked against false positives
  - city_score     city names
  - department     normalized department codes equal (hard boost)
  - date           proximity of the closest catalog edition to the scraped date

Outcome bands on the best composite score:
  < no_match_floor         NO_MATCH, confidence 0
  < similarity_threshold   NO_MATCH, top score carried for transparency
  < exact_match_score      FUZZY_MATCH
  otherwise                EXACT_MATCH

Featured (curated) catalog events are removed before scoring.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ffa_calendar_etl.config import HarvestConfig
from ffa_calendar_etl.models import (
    CandidateEvent,
    MatchKind,
    MatchOutcome,
    RejectedCandidate,
    ScrapedCompetition,
)
from ffa_calendar_etl.normalize import (
    extract_keywords,
    levenshtein,
    normalize_department_code,
    normalize_text,
    remove_edition_number,
    remove_stopwords,
)
from ffa_calendar_etl.timezones import local_day, resolve_zone

log = logging.getLogger(__name__)

PARTIAL_MATCH_FACTOR = 0.9
KEYWORD_FALSE_POSITIVE_FACTOR = 0.3
NEW_EVENT_BONUS_LEVELS = ("Régional", "National")


# ---------------------------------------------------------------------------
# String similarity
# ---------------------------------------------------------------------------

def _ratio(a: str, b: str) -> float:
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    longest = max(len(a), len(b))
    return (longest - levenshtein(a, b)) / longest


def text_similarity(a: str, b: str) -> float:
    """Similarity of two normalized strings, tolerant of a name inside a longer one.

    The best window of the longer string (same token count as the shorter one)
    is compared too; such partial matches are capped below an exact match.
    """
    full = _ratio(a, b)
    short, long_ = (a, b) if len(a.split()) <= len(b.split()) else (b, a)
    short_tokens, long_tokens = short.split(), long_.split()
    if len(short_tokens) < 2 or len(short_tokens) == len(long_tokens):
        return full
    width = len(short_tokens)
    best_window = max(
        _ratio(short, " ".join(long_tokens[i:i + width]))
        for i in range(len(long_tokens) - width + 1)
    )
    return max(full, best_window * PARTIAL_MATCH_FACTOR)


def keywords_corroborate(search_keywords: list[str], candidate_keywords: list[str]) -> bool:
    """True when two names share >= 2 keywords or one distinctive (>= 8 chars) keyword.

    Keywords are common when equal or when either contains the other (plurals).
    """
    if not search_keywords or not candidate_keywords:
        return False
    common = [
        sk for sk in search_keywords
        if any(sk == ck or sk in ck or ck in sk for ck in candidate_keywords)
    ]
    if len(common) >= 2:
        return True
    return any(len(kw) >= 8 for kw in common)


def search_terms(record: ScrapedCompetition, min_length: int = 3) -> tuple[list[str], list[str]]:
    """(name words, city words) used by the catalog's candidate lookup."""
    name = remove_stopwords(normalize_text(remove_edition_number(record.name)), min_length)
    city = normalize_text(record.city)
    return (
        [w for w in name.split() if len(w) >= min_length],
        [w for w in city.split() if len(w) >= min_length],
    )


# ---------------------------------------------------------------------------
# Candidate scoring
# ---------------------------------------------------------------------------

@dataclass
class ScoredCandidate:
    event: CandidateEvent
    name_score: float
    keyword_score: float
    city_score: float
    department_match: bool
    date_proximity: float
    date_distance: float
    combined: float = 0.0

    @property
    def tie_break_key(self) -> tuple[float, float, bool]:
        return (-self.combined, self.date_distance, not self.department_match)


def _closest_edition_days(record: ScrapedCompetition, event: CandidateEvent) -> float | None:
    zone = resolve_zone(record.region, record.department)
    gaps = [
        abs((local_day(ed.start_date, zone) - record.date).days)
        for ed in event.editions
        if ed.start_date is not None
    ]
    return min(gaps) if gaps else None


def score_candidate(
    record: ScrapedCompetition,
    event: CandidateEvent,
    config: HarvestConfig,
) -> ScoredCandidate:
    """Compute sub-scores and the composite score for one candidate."""
    scoring = config.scoring
    search_name = normalize_text(remove_edition_number(record.name))
    candidate_name = normalize_text(remove_edition_number(event.name))
    search_keywords_text = remove_stopwords(search_name)
    candidate_keywords_text = remove_stopwords(candidate_name)

    name_score = text_similarity(search_name, candidate_name)
    keyword_score = (
        text_similarity(search_keywords_text, candidate_keywords_text)
        if search_keywords_text and candidate_keywords_text else 0.0
    )
    city_score = _ratio(normalize_text(record.city), normalize_text(event.city))

    search_dept = normalize_department_code(record.department)
    department_match = (
        not search_dept or normalize_department_code(event.department) == search_dept
    )

    days = _closest_edition_days(record, event)
    window = config.date_window_days
    if days is None:
        date_proximity, date_distance = 0.0, float("inf")
    else:
        date_proximity, date_distance = max(0.0, 1 - days / window), float(days)

    # Keyword-only similarity on generic words ("nevers") is suspect
    if keyword_score > name_score and name_score < 0.5:
        if not keywords_corroborate(
            extract_keywords(search_name), extract_keywords(candidate_name)
        ):
            keyword_score *= KEYWORD_FALSE_POSITIVE_FACTOR

    best = max(name_score, keyword_score)
    bonus = scoring["department_bonus"] if department_match and city_score < 0.9 else 0.0
    penalty = (
        scoring["department_penalty"] * best
        if not department_match and best >= 0.85 else 0.0
    )
    multiplier = 0.8 + 0.2 * date_proximity

    if best >= 0.9:
        if department_match:
            combined = (best * 0.90 + city_score * 0.05 + bonus) * multiplier
        else:
            combined = (best * 0.95 + city_score * 0.05 - penalty) * multiplier
    else:
        alternative = min(name_score, keyword_score)
        combined = (
            best * 0.5 + city_score * 0.3 + alternative * 0.2 + bonus - penalty
        ) * multiplier

    return ScoredCandidate(
        event=event,
        name_score=round(name_score, 4),
        keyword_score=round(keyword_score, 4),
        city_score=round(city_score, 4),
        department_match=department_match,
        date_proximity=round(date_proximity, 4),
        date_distance=date_distance,
        combined=round(min(1.0, max(0.0, combined)), 4),
    )


def _edition_for_year(event: CandidateEvent, year: int):
    return next((ed for ed in event.editions if ed.year == year), None)


def _rejected(candidate: ScoredCandidate, year: int) -> RejectedCandidate:
    edition = _edition_for_year(candidate.event, year)
    return RejectedCandidate(
        event_id=candidate.event.id,
        event_name=candidate.event.name,
        event_city=candidate.event.city,
        event_department=candidate.event.department,
        edition_id=edition.id if edition else None,
        edition_year=edition.year if edition else None,
        match_score=candidate.combined,
        name_score=candidate.name_score,
        city_score=candidate.city_score,
        department_match=candidate.department_match,
        date_proximity=candidate.date_proximity,
    )


# ---------------------------------------------------------------------------
# Match
# ---------------------------------------------------------------------------

def match_competition(
    record: ScrapedCompetition,
    candidates: list[CandidateEvent],
    config: HarvestConfig,
) -> MatchOutcome:
    """Classify a scraped competition against its candidate pool."""
    available = [c for c in candidates if not c.is_featured]
    if len(available) < len(candidates):
        log.info(
            "%s: %d featured candidate(s) excluded",
            record.name, len(candidates) - len(available),
        )
    if not available:
        return MatchOutcome(kind=MatchKind.NO_MATCH, confidence=0.0)

    scored = sorted(
        (score_candidate(record, c, config) for c in available),
        key=lambda c: c.tie_break_key,
    )
    for c in scored[:3]:
        log.debug(
            "  %r (%s, dept %s) combined=%.3f name=%.3f kw=%.3f city=%.3f date=%.3f",
            c.event.name, c.event.city, c.event.department, c.combined,
            c.name_score, c.keyword_score, c.city_score, c.date_proximity,
        )

    year = record.date.year
    rejected = tuple(_rejected(c, year) for c in scored[:config.max_rejected_matches])
    best = scored[0]
    scoring = config.scoring

    if best.combined < scoring["no_match_floor"]:
        log.info("%s: NO_MATCH (best %.3f below floor)", record.name, best.combined)
        return MatchOutcome(kind=MatchKind.NO_MATCH, confidence=0.0, rejected_matches=rejected)

    if best.combined < config.similarity_threshold:
        log.info("%s: NO_MATCH (best %.3f below threshold)", record.name, best.combined)
        return MatchOutcome(
            kind=MatchKind.NO_MATCH,
            confidence=best.combined,
            rejected_matches=rejected,
        )

    kind = (
        MatchKind.EXACT_MATCH
        if best.combined >= scoring["exact_match_score"]
        else MatchKind.FUZZY_MATCH
    )
    edition = _edition_for_year(best.event, year)
    log.info(
        "%s: %s with %r (%.3f, edition %s)",
        record.name, kind, best.event.name, best.combined,
        edition.id if edition else None,
    )
    return MatchOutcome(
        kind=kind,
        confidence=best.combined,
        event_id=best.event.id,
        event_name=best.event.name,
        event_city=best.event.city,
        edition_id=edition.id if edition else None,
        edition_year=edition.year if edition else None,
        auto_actionable=best.combined >= config.auto_action_floor,
        city_score=best.city_score,
        rejected_matches=rejected,
    )


# ---------------------------------------------------------------------------
# Confidence calculus
# ---------------------------------------------------------------------------

def adjusted_confidence(
    base: float,
    record: ScrapedCompetition,
    outcome: MatchOutcome,
) -> float:
    """Confidence for an update proposal on a matched edition."""
    confidence = base
    if outcome.kind is MatchKind.EXACT_MATCH:
        confidence = min(confidence + 0.05, 1.0)
    if record.has_organizer_info:
        confidence = min(confidence + 0.02, 1.0)
    if len(record.sub_events) > 1:
        confidence = min(confidence + 0.01, 1.0)
    # Name matched but the town did not
    if outcome.city_score is not None and outcome.city_score < 0.5:
        confidence *= 0.9
    if outcome.confidence < 0.8:
        confidence *= outcome.confidence
    return round(min(1.0, max(0.0, confidence)), 2)


def new_event_confidence(
    base: float,
    record: ScrapedCompetition,
    outcome: MatchOutcome,
) -> float:
    """Confidence for a creation proposal.

    Inverse policy: no rival at all raises confidence, a near-miss rival
    lowers it since it may be a duplicate.
    """
    confidence = base
    if outcome.confidence == 0:
        confidence = min(confidence + 0.05, 1.0)
    else:
        confidence *= 1 - outcome.confidence * 0.5
    if record.has_organizer_info:
        confidence = min(confidence + 0.03, 1.0)
    if len(record.sub_events) > 1:
        confidence = min(confidence + 0.02, 1.0)
    if record.level in NEW_EVENT_BONUS_LEVELS:
        confidence = min(confidence + 0.01, 1.0)
    return round(min(1.0, max(0.0, confidence)), 2)
