import datetime as dt
import re

from gigscraper import config
from gigscraper.extraction.bands import BandExtractor
from gigscraper.extraction.dates import find_date, parse_open_start, strip_dates, strip_times, today
from gigscraper.models import ExtractedEvent

JUNK_LINE_PATTERNS = [
    re.compile(r"https?://|www\.|\.com\b|\.jp\b", re.IGNORECASE),
    re.compile(r"©|\(c\)|copyright|all rights reserved", re.IGNORECASE),
    re.compile(r"\b(?:tel|phone|fax)\b|電話|(?<!\d)0\d{1,3}-\d{2,4}-\d{3,4}(?!\d)", re.IGNORECASE),
    re.compile(
        r"^(?:(?:adv|door|前売|当日)\s*)?(?:[¥￥]\s*[\d,]+|[\d,]+\s*円)\s*(?:\+\s*1\s*d(?:rink)?)?$",
        re.IGNORECASE,
    ),
    re.compile(r"^(?:open|start|開場|開演)?\s*\d{1,2}\s*[:：]\s*\d{2}\s*$", re.IGNORECASE),
    re.compile(r"^(?:schedule|スケジュール|予定|日程|calendar|カレンダー)\s*$", re.IGNORECASE),
]
TITLE_PREFIX_RE = re.compile(
    r"^(?:schedule|スケジュール|予定|日程|event|イベント|live|ライブ|concert|コンサート)\s*[:：]?\s*",
    re.IGNORECASE,
)
MIN_TITLE_LENGTH = 3


def is_junk_line(line):
    return any(pattern.search(line) for pattern in JUNK_LINE_PATTERNS)


def clean_title(text):
    title = strip_times(strip_dates(text))
    title = TITLE_PREFIX_RE.sub("", title)
    return title.strip(" -–:：|/・,")


def _nearest_title(lines, index, reference):
    """Title from the closest following, then preceding, non-date line."""
    for offset in (1, -1, 2, -2):
        neighbour = index + offset
        if not 0 <= neighbour < len(lines):
            continue
        line = lines[neighbour]
        if is_junk_line(line):
            continue
        if find_date(line, reference)[0] is not None:
            continue
        title = clean_title(line)
        if len(title) >= MIN_TITLE_LENGTH:
            return title, line
    return "", ""


def parse_schedule_text(text, venue_name, source_url, reference=None,
                        strategy="ocr_image", band_extractor=None):
    """
    Turn OCR or PDF text into ExtractedEvents: one per line carrying a date
    between today and roughly six months ahead, deduplicated on (date, title).
    """
    if not text:
        return []
    reference = reference or today()
    horizon = reference + dt.timedelta(days=config.OCR_HORIZON_DAYS)
    band_extractor = band_extractor or BandExtractor()

    lines = [re.sub(r"\s+", " ", line).strip() for line in text.splitlines()]
    lines = [line for line in lines if line]

    events = []
    seen = set()
    for index, line in enumerate(lines):
        if is_junk_line(line):
            continue
        event_date, _ = find_date(line, reference)
        if event_date is None or not reference <= event_date <= horizon:
            continue

        title = clean_title(line)
        context = line
        if len(title) < MIN_TITLE_LENGTH:
            title, neighbour = _nearest_title(lines, index, reference)
            context = f"{line}\n{neighbour}" if neighbour else line
        if len(title) < MIN_TITLE_LENGTH:
            continue

        key = (event_date, title.lower())
        if key in seen:
            continue
        seen.add(key)

        open_time, start_time = parse_open_start(context)
        events.append(ExtractedEvent(
            title=title,
            date=event_date,
            venue=venue_name,
            source_url=source_url,
            extraction_strategy=strategy,
            open_time=open_time,
            start_time=start_time,
            performers=tuple(band_extractor.extract(title, "", "")),
            raw_text=context,
            source="ocr",
        ))
    return events
