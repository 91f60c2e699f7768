"""ffa_calendar_etl.scraper

Fetch/parse collaborator for the athle.fr competition calendar.

  - list_competitions(): paginated listing for one ligue and date range,
    filtered by level; 404 means "nothing published for this period"
  - fetch_details(): detail page enrichment (organizer, races, services);
    any fetch failure degrades to the listing record with no races

Parsing never raises on malformed content: unparseable dates, distances and
times are treated as absent, malformed listing rows are skipped.
"""

from __future__ import annotations

import logging
import random
import re
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from urllib.parse import urlencode

import requests
from bs4 import BeautifulSoup, Tag

from ffa_calendar_etl.models import ScrapedCompetition, ScrapedSubEvent
from ffa_calendar_etl.normalize import (
    clean_event_name,
    normalize_space,
    parse_clock_time,
    parse_distance,
    parse_elevation,
    parse_french_date,
    trim,
)
from ffa_calendar_etl.timezones import local_to_utc, resolve_zone

log = logging.getLogger(__name__)

BASE_URL = "https://www.athle.fr"
LISTING_URL = f"{BASE_URL}/bases/liste.aspx"
CALENDAR_REFERER = f"{BASE_URL}/base/calendrier"
USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
REQUEST_TIMEOUT = 60


class TransientFetchError(Exception):
    """Network failure, timeout or HTTP error status from the calendar site."""


# ---------------------------------------------------------------------------
# Human delay
# ---------------------------------------------------------------------------

@dataclass
class HumanDelay:
    """Sleep delay_ms +/- 20% between requests to keep a browsing pace."""

    delay_ms: int = 2000
    variation: float = 0.2

    def seconds(self) -> float:
        jitter = random.uniform(-self.variation, self.variation)
        return max(0.0, self.delay_ms * (1 + jitter) / 1000)

    def sleep(self) -> None:
        if self.delay_ms <= 0:
            return
        time.sleep(self.seconds())


# ---------------------------------------------------------------------------
# URLs
# ---------------------------------------------------------------------------

def ffa_season(day: date) -> str:
    """FFA seasons run September to August and carry the year they end in."""
    return str(day.year + 1 if day.month >= 9 else day.year)


def build_listing_url(region: str, first_day: date, last_day: date, page: int = 0) -> str:
    params = {
        "frmpostback": "true",
        "frmbase": "calendrier",
        "frmmode": "1",
        "frmespace": "0",
        "frmsaisonffa": ffa_season(first_day),
        "frmdate1": first_day.isoformat(),
        "frmdate2": last_day.isoformat(),
        "frmtype1": "Running",
        "frmniveau": "",
        "frmligue": region,
        "frmdepartement": "",
        "frmniveaulab": "",
        "frmepreuve": "",
        "frmtype2": "",
        "frmtype3": "",
        "frmtype4": "",
    }
    if page > 0:
        params["frmpage"] = str(page)
    return f"{LISTING_URL}?{urlencode(params)}"


# ---------------------------------------------------------------------------
# Listing parsing
# ---------------------------------------------------------------------------

_FFA_ID_RE = re.compile(r"Compétition numéro\s*:\s*(\d+)")
_DEPARTMENT_RE = re.compile(r"frmdepartement=(\w+)")
_LIGUE_RE = re.compile(r"frmligue=([A-Z-]+)")
_TOTAL_PAGES_RE = re.compile(r"Page\s+\d+\s*/\s*(\d+)")
_TOTAL_RESULTS_RE = re.compile(r"(\d+)\s+résultats?")


@dataclass
class ListingPage:
    competitions: list[ScrapedCompetition] = field(default_factory=list)
    total_pages: int = 1
    total_results: int = 0
    skipped_rows: int = 0


def _first_line(cell: Tag) -> str | None:
    for text in cell.stripped_strings:
        return normalize_space(text)
    return None


def parse_listing_row(row: Tag, default_year: int, region: str) -> ScrapedCompetition | None:
    """One `tr.clickable` of the calendar table, or None when malformed."""
    cells = row.find_all("td")
    if len(cells) < 5:
        return None
    link = cells[0].find("a")
    title = link.get("title", "") if link else ""
    id_match = _FFA_ID_RE.search(title)
    if not id_match:
        return None

    day = parse_french_date(link.get_text(" ", strip=True), default_year)
    name = normalize_space(cells[1].get_text(" ", strip=True))
    city = _first_line(cells[2])
    if day is None or not name or not city:
        return None

    location_html = str(cells[2])
    department = _DEPARTMENT_RE.search(location_html)
    ligue = _LIGUE_RE.search(location_html)

    detail_url = ""
    if len(cells) > 6:
        detail_link = cells[6].find("a", href=True)
        if detail_link:
            href = detail_link["href"]
            detail_url = href if href.startswith("http") else f"{BASE_URL}{href}"

    return ScrapedCompetition(
        external_id=id_match.group(1),
        name=name,
        city=city,
        region=ligue.group(1) if ligue else region,
        department=department.group(1) if department else "",
        date=day,
        level=normalize_space(cells[4].get_text(" ", strip=True)) or "",
        detail_url=detail_url,
        kind=_first_line(cells[3]),
    )


def parse_listing(html: str, default_year: int, region: str) -> ListingPage:
    soup = BeautifulSoup(html, "html.parser")
    page = ListingPage()
    for row in soup.select("#ctnCalendrier tbody tr.clickable"):
        record = parse_listing_row(row, default_year, region)
        if record is None:
            page.skipped_rows += 1
            continue
        page.competitions.append(record)

    pagination = soup.select_one("#optionsPagination")
    if pagination is not None:
        m = _TOTAL_PAGES_RE.search(pagination.get_text(" ", strip=True))
        if m:
            page.total_pages = int(m.group(1))
    summary = " ".join(p.get_text(" ", strip=True) for p in soup.select(".selector p"))
    m = _TOTAL_RESULTS_RE.search(summary)
    if m:
        page.total_results = int(m.group(1))
    return page


# ---------------------------------------------------------------------------
# Detail parsing
# ---------------------------------------------------------------------------

_RACE_HEADER_RE = re.compile(
    r"^(?:(?P<day>\d{1,2}/\d{1,2})\s+(?=\d{1,2}\s*[h:]))?"
    r"(?:(?P<clock>\d{1,2}\s*[h:]\s*\d{2})\s*[-–]\s*)?"
    r"(?P<name>.*)$"
)
_EMAIL_RE = re.compile(r"[\w.+-]+@[\w-]+(?:\.[\w-]+)+")
_PHONE_RE = re.compile(r"(?<!\d)(0\d(?:[\s.]?\d{2}){4})(?!\d)")
_URL_RE = re.compile(r"https?://[^\s<>\"]+")


def _labelled_value(soup: BeautifulSoup, label: str) -> str | None:
    """Text following "label :" in a paragraph, list item or dt/dd pair."""
    pattern = re.compile(rf"^{label}\s*:?\s*(.*)$", re.IGNORECASE | re.DOTALL)
    for dt in soup.find_all("dt"):
        if pattern.match(dt.get_text(" ", strip=True)):
            dd = dt.find_next_sibling("dd")
            if dd is not None:
                return normalize_space(dd.get_text(" ", strip=True))
    for node in soup.find_all(["p", "li", "div", "span"]):
        if node.find(["p", "li", "div"]):
            continue
        m = pattern.match(node.get_text(" ", strip=True))
        if m and trim(m.group(1)):
            return normalize_space(m.group(1))
    return None


def _parse_measures(descriptor: str) -> tuple[str | None, int | None, int | None]:
    """ "TCF / TCM - 13000 m / 210 m D+ / 15100 m effort" -> (categories, distance, D+)."""
    categories, _, measures = descriptor.rpartition(" - ")
    if not measures:
        return None, None, None
    distance = None
    elevation = None
    for part in measures.split("/"):
        lowered = part.lower()
        if "effort" in lowered:
            continue
        if "d+" in lowered or "dénivelé" in lowered:
            elevation = parse_elevation(part)
        elif distance is None:
            distance = parse_distance(part)
    return trim(categories), distance, elevation


def _race_from_header(header: str, descriptor: str | None) -> ScrapedSubEvent | None:
    m = _RACE_HEADER_RE.match(normalize_space(header) or "")
    if m is None:
        return None
    name = clean_event_name(m.group("name"))
    if not name:
        return None
    categories, distance, elevation = _parse_measures(descriptor or "")
    return ScrapedSubEvent(
        name=name,
        distance_m=distance,
        positive_elevation_m=elevation,
        start_time=parse_clock_time(m.group("clock")),
        race_date=m.group("day"),
        categories=categories,
    )


def parse_sub_events(soup: BeautifulSoup) -> tuple[ScrapedSubEvent, ...]:
    section = soup.select_one("#epreuves")
    if section is None:
        return ()
    races: list[ScrapedSubEvent] = []

    cards = section.select(".club-card")
    for card in cards:
        header = card.find(["h3", "h4"])
        if header is None:
            continue
        descriptor = card.select_one("p.text-dark-grey")
        race = _race_from_header(
            header.get_text(" ", strip=True),
            descriptor.get_text(" ", strip=True) if descriptor else None,
        )
        if race is not None:
            races.append(race)
    if cards:
        return tuple(races)

    # Older table layout: name (with time) | distance | elevation
    for row in section.select("table tr")[1:]:
        cells = row.find_all("td")
        if not cells:
            continue
        raw_name = normalize_space(cells[0].get_text(" ", strip=True))
        if not raw_name:
            continue
        distance_text = cells[1].get_text(" ", strip=True) if len(cells) > 1 else raw_name
        elevation_text = cells[2].get_text(" ", strip=True) if len(cells) > 2 else ""
        races.append(ScrapedSubEvent(
            name=clean_event_name(raw_name) or raw_name,
            distance_m=parse_distance(distance_text),
            positive_elevation_m=parse_elevation(elevation_text),
            start_time=parse_clock_time(raw_name),
        ))
    return tuple(races)


def _organizer_contacts(soup: BeautifulSoup) -> dict[str, str | None]:
    email = phone = website = None
    for link in soup.select("a[href^='mailto:']"):
        email = trim(link["href"][len("mailto:"):].split("?")[0])
        break
    for section in soup.find_all("section"):
        text = section.get_text(" ", strip=True)
        if email is None:
            m = _EMAIL_RE.search(text)
            email = m.group(0) if m else None
        if phone is None:
            m = _PHONE_RE.search(text)
            phone = re.sub(r"[\s.]", "", m.group(1)) if m else None
        if website is None:
            for link in section.find_all("a", href=True):
                href = link["href"]
                if href.startswith("http") and "athle.fr" not in href:
                    website = href
                    break
        if website is None:
            m = _URL_RE.search(text)
            if m and "athle.fr" not in m.group(0):
                website = m.group(0)
    return {"organizer_email": email, "organizer_phone": phone, "organizer_website": website}


def _registration_closing(soup: BeautifulSoup, listing: ScrapedCompetition) -> datetime | None:
    raw = _labelled_value(soup, r"Cl[ôo]ture des inscriptions")
    if raw is None:
        return None
    day = parse_french_date(raw, listing.date.year)
    if day is None:
        return None
    zone = resolve_zone(listing.region, listing.department)
    return local_to_utc(day, parse_clock_time(raw), zone)


def parse_detail(html: str, listing: ScrapedCompetition) -> ScrapedCompetition:
    """Enrich a listing record from its detail page."""
    soup = BeautifulSoup(html, "html.parser")
    services_text = _labelled_value(soup, "Services")
    services = tuple(
        s for s in (trim(part) for part in re.split(r"[,;]", services_text or "")) if s
    )
    return listing.with_details(
        organizer_name=_labelled_value(soup, "Organisateur"),
        registration_closing_date=_registration_closing(soup, listing),
        services=services,
        additional_info=_labelled_value(soup, r"Informations? compl[ée]mentaires?"),
        sub_events=parse_sub_events(soup),
        **_organizer_contacts(soup),
    )


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------

class FfaCalendarClient:
    """requests-based client for listing and detail pages."""

    def __init__(
        self,
        session: requests.Session | None = None,
        delay: HumanDelay | None = None,
        max_pages: int = 50,
        max_competitions: int = 500,
        timeout: int = REQUEST_TIMEOUT,
    ) -> None:
        self._session = session or requests.Session()
        self._session.headers.update({
            "User-Agent": USER_AGENT,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "fr-FR,fr;q=0.9,en-US;q=0.8,en;q=0.7",
        })
        self._delay = delay or HumanDelay()
        self._max_pages = max_pages
        self._max_competitions = max_competitions
        self._timeout = timeout
        self.details_degraded = 0
        self.rows_skipped = 0

    def _get(self, url: str, headers: dict[str, str] | None = None) -> requests.Response:
        try:
            return self._session.get(url, timeout=self._timeout, headers=headers)
        except requests.RequestException as exc:
            raise TransientFetchError(f"network error fetching {url}: {exc}") from exc

    def list_competitions(
        self,
        region: str,
        first_day: date,
        last_day: date,
        levels: list[str] | tuple[str, ...],
    ) -> list[ScrapedCompetition]:
        """Union of every listing page for region between first_day and last_day."""
        by_id: dict[str, ScrapedCompetition] = {}
        page_no = 0
        while page_no < self._max_pages:
            if page_no > 0:
                self._delay.sleep()
            url = build_listing_url(region, first_day, last_day, page_no)
            resp = self._get(url)
            if resp.status_code == 404:
                log.info("%s %s..%s: no calendar published", region, first_day, last_day)
                break
            if resp.status_code >= 400:
                raise TransientFetchError(f"HTTP {resp.status_code} fetching {url}")

            page = parse_listing(resp.text, first_day.year, region)
            self.rows_skipped += page.skipped_rows
            for record in page.competitions:
                if levels and record.level not in levels:
                    continue
                by_id.setdefault(record.external_id, record)
            page_no += 1
            log.info(
                "%s page %d/%d: %d competition(s) (total %d/%d)",
                region, page_no, page.total_pages, len(page.competitions),
                len(by_id), page.total_results,
            )
            if page_no >= page.total_pages:
                break

        competitions = list(by_id.values())
        if len(competitions) > self._max_competitions:
            log.warning(
                "%s %s: %d competitions, keeping the first %d",
                region, first_day, len(competitions), self._max_competitions,
            )
            competitions = competitions[:self._max_competitions]
        return competitions

    def fetch_details(self, listing: ScrapedCompetition) -> ScrapedCompetition:
        """Detail-enriched record; the listing record itself when the fetch fails."""
        if not listing.detail_url:
            return listing
        self._delay.sleep()
        try:
            resp = self._get(listing.detail_url, headers={"Referer": CALENDAR_REFERER})
            if resp.status_code >= 400:
                raise TransientFetchError(
                    f"HTTP {resp.status_code} fetching {listing.detail_url}"
                )
        except TransientFetchError as exc:
            self.details_degraded += 1
            log.warning("Details unavailable for %s (%s); using listing data", listing.name, exc)
            return listing
        return parse_detail(resp.text, listing)
