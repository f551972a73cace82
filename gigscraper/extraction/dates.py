"""
Date and time recognition for venue listings.

Handles year-first and day-first numeric dates, compact 8-digit dates,
Japanese year/month/day notation, month/day pairs with an optional weekday
token and English month names.

Two-number dates with neither number above 12 are read month-first. That
matches the Tokyo venue sites this was tuned on, but it is a policy, not a
rule: a day-first site with dates like 06/07 will be misread silently.
"""

import datetime as dt
import re

MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}
_MONTH_RE = (
    r"\b(jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?|"
    r"sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)\b\.?"
)

WEEKDAY_TOKEN = (
    r"[(（]\s*(?:月|火|水|木|金|土|日|祝|休|"
    r"mon|tue|tues|wed|thu|thur|thurs|fri|sat|sun)[a-z]*\.?"
    r"(?:\s*[・/]\s*(?:祝|休))?\s*[)）]"
)
WEEKDAY_WORD = (
    r"\b(?:monday|tuesday|wednesday|thursday|friday|saturday|sunday|"
    r"mon|tue|wed|thu|fri|sat|sun)\b\.?|[月火水木金土日]曜日?"
)

# (name, regex) in tie-break order; every regex yields the date groups the
# matching branch of _date_from_match expects.
_DATE_PATTERNS = [
    ("ymd", re.compile(r"(?<!\d)(\d{4})\s*[-/.]\s*(\d{1,2})\s*[-/.]\s*(\d{1,2})(?!\d)")),
    ("ymd_kanji", re.compile(r"(\d{4})\s*年\s*(\d{1,2})\s*月\s*(\d{1,2})\s*日")),
    ("compact", re.compile(r"(?<!\d)(20\d{2})(\d{2})(\d{2})(?!\d)")),
    ("dmy", re.compile(r"(?<!\d)(\d{1,2})[/.-](\d{1,2})[/.-](\d{4})(?!\d)")),
    ("md_kanji", re.compile(r"(?<!\d)(\d{1,2})\s*月\s*(\d{1,2})\s*日?")),
    ("month_name_day", re.compile(
        _MONTH_RE + r"\s+(\d{1,2})(?:st|nd|rd|th)?\b(?:,?\s*(\d{4}))?", re.IGNORECASE)),
    ("day_month_name", re.compile(
        r"\b(\d{1,2})(?:st|nd|rd|th)?\s+" + _MONTH_RE + r"(?:,?\s*(\d{4}))?", re.IGNORECASE)),
    ("md_slash", re.compile(r"(?<![\d/.:])(\d{1,2})\s*[/.]\s*(\d{1,2})(?![\d/.:])")),
    ("md_dash", re.compile(r"(?<![\d-])(\d{1,2})-(\d{1,2})(?![\d-])(?=\s*[(（]|\s|$)")),
]

_RELATIVE_DAYS = {"今日": 0, "本日": 0, "明日": 1}

TIME_RE = re.compile(r"(?<!\d)(\d{1,2})\s*[:：]\s*(\d{2})(?!\d)")
KANJI_TIME_RE = re.compile(r"(?<!\d)(\d{1,2})\s*時\s*(?:(\d{1,2})\s*分)?")
AMPM_TIME_RE = re.compile(r"(?<![\d:])(\d{1,2})(?:[:.](\d{2}))?\s*([ap]\.?m\.?)\b", re.IGNORECASE)


def today():
    return dt.date.today()


def _two_number_month_day(first, second):
    """Resolve an ambiguous pair; returns (month, day)."""
    if first > 12:
        return second, first
    if second > 12:
        return first, second
    return first, second


def _safe_date(year, month, day):
    try:
        return dt.date(year, month, day)
    except ValueError:
        return None


def _with_rolling_year(month, day, reference):
    candidate = _safe_date(reference.year, month, day)
    if candidate is None:
        return _safe_date(reference.year + 1, month, day)
    if candidate < reference:
        return _safe_date(reference.year + 1, month, day)
    return candidate


def _date_from_match(kind, match, reference):
    groups = match.groups()
    if kind in ("ymd", "ymd_kanji", "compact"):
        return _safe_date(int(groups[0]), int(groups[1]), int(groups[2]))
    if kind == "dmy":
        month, day = _two_number_month_day(int(groups[0]), int(groups[1]))
        return _safe_date(int(groups[2]), month, day)
    if kind == "md_kanji":
        return _with_rolling_year(int(groups[0]), int(groups[1]), reference)
    if kind == "month_name_day":
        month = MONTHS[groups[0][:3].lower()]
        if groups[2]:
            return _safe_date(int(groups[2]), month, int(groups[1]))
        return _with_rolling_year(month, int(groups[1]), reference)
    if kind == "day_month_name":
        month = MONTHS[groups[1][:3].lower()]
        if groups[2]:
            return _safe_date(int(groups[2]), month, int(groups[0]))
        return _with_rolling_year(month, int(groups[0]), reference)
    if kind in ("md_slash", "md_dash"):
        month, day = _two_number_month_day(int(groups[0]), int(groups[1]))
        if not 1 <= month <= 12:
            return None
        return _with_rolling_year(month, day, reference)
    return None


def find_date(text, reference=None):
    """
    Return (date, match) for the earliest recognizable date in text. Formats
    only break ties between matches starting at the same position.
    """
    if not text:
        return None, None
    reference = reference or today()
    text = str(text)

    best = None
    for kind, pattern in _DATE_PATTERNS:
        for match in pattern.finditer(text):
            if best is not None and match.start() >= best[0]:
                break
            parsed = _date_from_match(kind, match, reference)
            if parsed:
                best = (match.start(), parsed, match)
                break
    if best is not None:
        return best[1], best[2]

    for word, offset in _RELATIVE_DAYS.items():
        if word in text:
            return reference + dt.timedelta(days=offset), None
    return None, None


def parse_date(text, reference=None):
    """Parse the first date found in text, or None."""
    if isinstance(text, dt.datetime):
        return text.date()
    if isinstance(text, dt.date):
        return text
    parsed, _ = find_date(text, reference)
    return parsed


def contains_date_pattern(text):
    if not text:
        return False
    for kind, pattern in _DATE_PATTERNS:
        for match in pattern.finditer(text):
            if _date_from_match(kind, match, today()):
                return True
    return any(word in text for word in _RELATIVE_DAYS) or "今週" in text or "来週" in text


def strip_dates(text):
    """Remove date and weekday tokens from text."""
    if not text:
        return ""
    cleaned = text
    for _, pattern in _DATE_PATTERNS:
        cleaned = pattern.sub(" ", cleaned)
    cleaned = re.sub(WEEKDAY_TOKEN, " ", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(WEEKDAY_WORD, " ", cleaned, flags=re.IGNORECASE)
    return re.sub(r"\s+", " ", cleaned).strip(" -–:|/,")


def normalize_time(time_str):
    """
    Normalize time strings to consistent HH:MM 24-hour format.
    Handles: "8:00", "8:30pm", "20:00:00", "19:00", "8:00pm"
    """
    if not time_str:
        return None

    time_str = time_str.strip().lower().replace("：", ":").replace(".", ":")

    if time_str.count(":") == 2:
        time_str = ":".join(time_str.split(":")[:2])

    is_pm = "pm" in time_str or "p:m" in time_str
    is_am = "am" in time_str or "a:m" in time_str
    time_str = re.sub(r"[apm:]+$", "", time_str.replace("pm", "").replace("am", "")).strip()

    parts = time_str.split(":")
    if len(parts) == 1:
        parts.append("00")
    if len(parts) != 2:
        return None

    try:
        hours = int(parts[0])
        minutes = int(parts[1])
    except ValueError:
        return None

    if is_pm and hours < 12:
        hours += 12
    elif is_am and hours == 12:
        hours = 0

    if hours > 23 or minutes > 59:
        return None
    return f"{hours:02d}:{minutes:02d}"


def find_times(text):
    """All HH:MM times in text, in order of appearance."""
    if not text:
        return []
    found = []
    ampm_starts = set()
    for match in AMPM_TIME_RE.finditer(text):
        normalized = normalize_time(f"{match.group(1)}:{match.group(2) or '00'}{match.group(3)}")
        if normalized:
            found.append((match.start(), normalized))
            ampm_starts.add(match.start())
    # An am/pm suffix wins over the bare HH:MM it contains
    for match in TIME_RE.finditer(text):
        normalized = normalize_time(f"{match.group(1)}:{match.group(2)}")
        if normalized and match.start() not in ampm_starts:
            found.append((match.start(), normalized))
    for match in KANJI_TIME_RE.finditer(text):
        normalized = normalize_time(f"{match.group(1)}:{match.group(2) or '00'}")
        if normalized:
            found.append((match.start(), normalized))
    found.sort()
    times = []
    for _, value in found:
        if value not in times:
            times.append(value)
    return times


def parse_time(text):
    times = find_times(text)
    return times[0] if times else None


def parse_open_start(text):
    """
    Split a listing's time text into (open_time, start_time).
    "OPEN 18:00 / START 18:30" gives both; a single time is the start time.
    """
    times = find_times(text)
    if not times:
        return None, None
    if len(times) == 1:
        if re.search(r"open|開場|door", text, re.IGNORECASE) and not re.search(r"start|開演", text, re.IGNORECASE):
            return times[0], None
        return None, times[0]
    return times[0], times[1]


def add_minutes(time_str, minutes):
    if not time_str:
        return None
    try:
        hours, mins = (int(part) for part in time_str.split(":"))
    except ValueError:
        return None
    total = (hours * 60 + mins + minutes) % (24 * 60)
    return f"{total // 60:02d}:{total % 60:02d}"


def strip_times(text):
    if not text:
        return ""
    cleaned = TIME_RE.sub(" ", text)
    cleaned = KANJI_TIME_RE.sub(" ", cleaned)
    cleaned = AMPM_TIME_RE.sub(" ", cleaned)
    cleaned = re.sub(r"\b(open|start|doors?|開場|開演)\b\s*[:：/]?", " ", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(r"(開場|開演)", " ", cleaned)
    return re.sub(r"\s+", " ", cleaned).strip(" -–:|/,")


def month_starts(reference=None, months_ahead=2):
    """First day of the current month and the following months_ahead months."""
    reference = reference or today()
    starts = []
    year, month = reference.year, reference.month
    for _ in range(months_ahead + 1):
        starts.append(dt.date(year, month, 1))
        month += 1
        if month > 12:
            month = 1
            year += 1
    return starts
