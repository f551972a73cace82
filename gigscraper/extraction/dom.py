"""
DOM extraction: a selector cascade over event containers plus table-row,
link and JSON-LD passes, merged and deduplicated.
"""

import json
import re

from bs4 import BeautifulSoup

from gigscraper.extraction.bands import BandExtractor, RAW_SKIP_PREFIX_RE
from gigscraper.extraction.dates import (
    contains_date_pattern,
    find_date,
    parse_date,
    parse_open_start,
    strip_dates,
    strip_times,
)
from gigscraper.models import ExtractedEvent, Selectors

GENERAL_SELECTORS = Selectors(
    event=(
        '.event, .gig, .schedule-item, .live, .concert, article, .post, .news-item, tr, li, '
        '.show, .performance, .listing, div[class*="event"], div[class*="schedule"], '
        'div[class*="live"], div[class*="show"]'
    ),
    title=(
        'h1, h2, h3, h4, .title, .event-title, .gig-title, .name, .show-title, '
        '.performance-title, td:nth-child(2), a, span[class*="title"], div[class*="title"]'
    ),
    date=(
        '.date, .event-date, .gig-date, time, .meta, .when, .datetime, td:nth-child(1), '
        'span[class*="date"], div[class*="date"], [data-date]'
    ),
    time=(
        '.time, .start-time, .gig-time, .when, .datetime, td:nth-child(3), td:nth-child(4), '
        'span[class*="time"], div[class*="time"]'
    ),
    performer=(
        '.artist, .performer, .lineup, .act, .band, .musicians, .acts, '
        'span[class*="artist"], div[class*="artist"]'
    ),
)

FALLBACK_CONTAINER_SETS = [
    ".event-item, .schedule-row, .live-info, .show-listing, .performance, .concert-info",
    '[class*="date"], [class*="schedule"], [class*="event"], [class*="live"]',
    "table tr, tbody tr, .table-row",
    "li, .list-item",
    "article, section, .content, .main, .info",
]

MIN_CONTAINER_TEXT = 10
LINK_TEXT_RANGE = (5, 300)
EVENT_HREF_RE = re.compile(r"event|schedule|live", re.IGNORECASE)
PRICE_RE = re.compile(r"[¥￥]\s?(\d{1,2}[,.]?\d{3})|(\d{1,2}[,.]?\d{3})\s?円")

# Lower number wins when two passes report the same event.
PASS_PRIORITY = {"json_ld": 0, "selector": 1, "table": 2, "link": 3}


def _select_text(node, selector_list):
    """Text of the first element matching any selector in a comma list."""
    if not selector_list:
        return ""
    for selector in selector_list.split(","):
        selector = selector.strip()
        if not selector:
            continue
        try:
            found = node.select_one(selector)
        except Exception:
            continue
        if found is not None:
            text = found.get_text(" ", strip=True)
            if text:
                return text
    return ""


def find_price(*texts):
    for text in texts:
        if not text:
            continue
        match = PRICE_RE.search(text)
        if match:
            value = match.group(1) or match.group(2)
            return re.sub(r"[,.]", "", value)
    return None


def title_from_text(text):
    """Longest non-date, non-time, non-price line; else the date line minus its date."""
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    qualifying = []
    for line in lines:
        if RAW_SKIP_PREFIX_RE.match(line) or PRICE_RE.search(line):
            continue
        cleaned = strip_times(strip_dates(line))
        if len(cleaned) >= 3 and re.search(r"[A-Za-z぀-ヿ一-鿿]", cleaned):
            qualifying.append(cleaned)
    if qualifying:
        return max(qualifying, key=len)
    for line in lines:
        if contains_date_pattern(line):
            cleaned = strip_times(strip_dates(line))
            if cleaned:
                return cleaned
    return ""


class DomExtractor:
    """Turn one page of HTML into ExtractedEvents for a target."""

    def __init__(self, band_extractor=None):
        self.band_extractor = band_extractor or BandExtractor()

    def extract(self, html, target, source_url=None):
        if not html:
            return []
        soup = BeautifulSoup(html, "html.parser")
        source_url = source_url or target.url

        results = []
        results.extend(self.extract_json_ld(soup, target, source_url))
        results.extend(self.extract_by_selectors(soup, target, source_url))
        results.extend(self.extract_table_rows(soup, target, source_url))
        results.extend(self.extract_links(soup, target, source_url))
        return dedupe_events(results)

    def extract_by_selectors(self, soup, target, source_url):
        selectors = target.selectors or GENERAL_SELECTORS
        container_sets = [selectors.event or GENERAL_SELECTORS.event] + FALLBACK_CONTAINER_SETS

        for container_selector in container_sets:
            containers = self._qualified_containers(soup, container_selector)
            events = []
            for node in containers:
                event = self._event_from_container(node, selectors, target, source_url)
                if event:
                    events.append(event)
            if events:
                return events
        return []

    def _qualified_containers(self, soup, container_selector):
        try:
            nodes = soup.select(container_selector)
        except Exception:
            return []

        qualified = []
        for node in nodes:
            text = node.get_text(" ", strip=True)
            if len(text) < MIN_CONTAINER_TEXT or not contains_date_pattern(text):
                continue
            qualified.append(node)

        # Drop wrappers that hold two or more other qualified containers
        qualified_ids = {id(node) for node in qualified}
        innermost = []
        for node in qualified:
            nested = sum(1 for child in node.find_all(True) if id(child) in qualified_ids)
            if nested < 2:
                innermost.append(node)
        return innermost

    def _event_from_container(self, node, selectors, target, source_url):
        text = node.get_text("\n", strip=True)
        fallback = GENERAL_SELECTORS

        title = _select_text(node, selectors.title or fallback.title)
        date_text = _select_text(node, selectors.date or fallback.date)
        time_text = _select_text(node, selectors.time or fallback.time)
        artists = _select_text(node, selectors.performer or fallback.performer)

        event_date = parse_date(date_text) if date_text else None
        if event_date is None:
            event_date = parse_date(text)
        if event_date is None:
            return None

        if title:
            title = strip_times(strip_dates(title))
        if not title or len(title) < 2:
            title = title_from_text(text)
        if not title:
            return None

        open_time, start_time = parse_open_start(time_text or text)
        if not start_time and time_text:
            open_time, start_time = parse_open_start(text)

        performers = self.band_extractor.extract(title, artists, text)
        return ExtractedEvent(
            title=title,
            date=event_date,
            venue=target.name,
            source_url=source_url,
            extraction_strategy="selector",
            open_time=open_time,
            start_time=start_time,
            performers=tuple(performers),
            artists_text=artists,
            price=find_price(text),
            raw_text=text[:1000],
        )

    def extract_table_rows(self, soup, target, source_url):
        events = []
        for row in soup.select("table tr"):
            cells = row.find_all(["td", "th"])
            if len(cells) < 2:
                continue
            date_index = None
            event_date = None
            for index, cell in enumerate(cells):
                event_date = parse_date(cell.get_text(" ", strip=True))
                if event_date:
                    date_index = index
                    break
            if date_index is None:
                continue

            other_cells = [c.get_text(" ", strip=True) for i, c in enumerate(cells) if i != date_index]
            title = strip_times(" ".join(part for part in other_cells if part)).strip()
            if len(title) <= 3:
                continue

            row_text = row.get_text("\n", strip=True)
            open_time, start_time = parse_open_start(row_text)
            events.append(ExtractedEvent(
                title=title,
                date=event_date,
                venue=target.name,
                source_url=source_url,
                extraction_strategy="table",
                open_time=open_time,
                start_time=start_time,
                performers=tuple(self.band_extractor.extract(title, "", row_text)),
                price=find_price(row_text),
                raw_text=row_text[:1000],
            ))
        return events

    def extract_links(self, soup, target, source_url):
        events = []
        low, high = LINK_TEXT_RANGE
        for anchor in soup.find_all("a", href=True):
            text = anchor.get_text(" ", strip=True)
            if not low <= len(text) <= high:
                continue
            href = anchor["href"]
            if not EVENT_HREF_RE.search(href) and not contains_date_pattern(text):
                continue

            event_date, _ = find_date(text)
            if event_date is None:
                event_date, _ = find_date(href)
            if event_date is None:
                continue

            title = strip_times(strip_dates(text)) or text
            if len(title) < 2:
                continue
            open_time, start_time = parse_open_start(text)
            events.append(ExtractedEvent(
                title=title,
                date=event_date,
                venue=target.name,
                source_url=source_url,
                extraction_strategy="link",
                open_time=open_time,
                start_time=start_time,
                performers=tuple(self.band_extractor.extract(title, "", "")),
                raw_text=text,
            ))
        return events

    def extract_json_ld(self, soup, target, source_url):
        events = []
        for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
            try:
                data = json.loads(script.string or script.get_text() or "")
            except ValueError:
                continue
            for item in _json_ld_items(data):
                event = self._event_from_json_ld(item, target, source_url)
                if event:
                    events.append(event)
        return events

    def _event_from_json_ld(self, item, target, source_url):
        item_type = item.get("@type") or ""
        if isinstance(item_type, list):
            item_type = " ".join(item_type)
        if "Event" not in item_type:
            return None
        name = (item.get("name") or "").strip()
        start = item.get("startDate") or ""
        event_date = parse_date(start)
        if not name or event_date is None:
            return None

        start_time = None
        match = re.search(r"T(\d{2}):(\d{2})", start)
        if match:
            start_time = f"{match.group(1)}:{match.group(2)}"
        open_time = None
        door = item.get("doorTime") or ""
        match = re.search(r"(\d{2}):(\d{2})", door)
        if match:
            open_time = f"{match.group(1)}:{match.group(2)}"

        performer = item.get("performer") or []
        if isinstance(performer, dict):
            performer = [performer]
        if isinstance(performer, str):
            performer = [{"name": performer}]
        artists = " / ".join(p.get("name", "") for p in performer if isinstance(p, dict) and p.get("name"))

        price = None
        offers = item.get("offers")
        if isinstance(offers, list):
            offers = offers[0] if offers else None
        if isinstance(offers, dict) and offers.get("price") not in (None, ""):
            price = re.sub(r"[^\d]", "", str(offers["price"]).split(".")[0]) or None

        return ExtractedEvent(
            title=name,
            date=event_date,
            venue=target.name,
            source_url=item.get("url") or source_url,
            extraction_strategy="json_ld",
            open_time=open_time,
            start_time=start_time,
            performers=tuple(self.band_extractor.extract(name, artists, "")),
            artists_text=artists,
            price=price,
            raw_text=json.dumps(item, ensure_ascii=False)[:1000],
        )


def _json_ld_items(data):
    if isinstance(data, list):
        for entry in data:
            yield from _json_ld_items(entry)
    elif isinstance(data, dict):
        if "@graph" in data:
            yield from _json_ld_items(data["@graph"])
        else:
            yield data


def _is_near_duplicate(event, kept):
    if event.date != kept.date or event.venue != kept.venue:
        return False
    a, b = event.title.lower(), kept.title.lower()
    return a in b or b in a


def dedupe_events(events):
    """
    Deduplicate on (title, date, venue). Events are ranked by pass priority
    first, so when two titles on one date overlap the JSON-LD one wins over the
    selector cascade, which wins over tables and links. Unrelated titles on the
    same date are separate shows and are all kept.
    """
    ranked = sorted(
        enumerate(events),
        key=lambda pair: (PASS_PRIORITY.get(pair[1].extraction_strategy, 9), pair[0]),
    )
    kept = []
    seen = set()
    for _, event in ranked:
        if event.date is None or not event.title:
            continue
        key = event.key()
        if key in seen:
            continue
        if any(_is_near_duplicate(event, other) for other in kept):
            continue
        seen.add(key)
        kept.append(event)
    return kept


def extract_events(html, target, source_url=None, extractor=None):
    return (extractor or DomExtractor()).extract(html, target, source_url)
