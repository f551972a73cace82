"""
Performer-name extraction: candidates from the artists field, the title and
finally raw text, each scored by additive name/non-name heuristics.
"""

import re

from gigscraper.extraction.dates import TIME_RE, contains_date_pattern, strip_dates, strip_times

PLACEHOLDER_PERFORMER = "Live Performance"
CONFIDENCE_THRESHOLD = 0.7
MAX_PERFORMERS = 3
FALLBACK_PERFORMERS = 2

ARTIST_SEPARATORS = re.compile(
    r"\s+/\s+|\s+×\s+|\s+&\s+|\s+and\s+|、|・|\s+\+\s+|\s+with\s+|"
    r"\s+feat\.\s+|\s+featuring\s+|\s+vs\.\s+|\s+VS\s+|\s+x\s+|\n"
)
RAW_TEXT_SEPARATORS = re.compile(r"[,/&+×・、]")
DECORATIVE_GLYPHS = "●○■□▲△▼▽◆◇★☆♪♫※"

ARTIST_PREFIX_RE = re.compile(
    r"^\s*(?:出演者|出演|アーティスト|artists?|performers?|line\s*-?up|act(?:s)?|w/)\s*[:：]?\s*",
    re.IGNORECASE,
)
ENSEMBLE_KEYWORDS = [
    "band", "trio", "quartet", "quintet", "orchestra", "ensemble",
    "バンド", "トリオ", "カルテット", "クインテット", "オーケストラ", "アンサンブル",
]
BAND_SUFFIXES = ("band", "trio", "quartet", "orchestra", "collective", "project")
VENUE_KEYWORDS = [
    "zepp", "www", "club", "hall", "bar", "studio", "venue", "stage",
    "ホール", "クラブ", "スタジオ", "会場", "ライブハウス",
]
GENERIC_TERMS = {
    "live", "show", "event", "concert", "performance", "schedule", "ticket",
    "tickets", "open", "start", "info", "information", "news", "more", "tba",
    "tbd", "guest", "guests", "special guest", "and more", "ライブ", "イベント",
    "スケジュール", "公演", "チケット", "ゲスト",
}
EVENT_DESCRIPTION_RE = re.compile(
    r"anniversary|周年|tour|ツアー|release|リリース|presents|pre\.|vol\.\s*\d|"
    r"festival|フェス|party|パーティー|battle|one\s*man|ワンマン|sold\s*out|"
    r"\bvs\b|記念|開催|限定|追加公演",
    re.IGNORECASE,
)
PRICING_RE = re.compile(
    r"[¥￥$]\s*\d|\d[\d,]*\s*円|\badv\b|\bdoor\b|前売|当日|ticket|drink|ドリンク|料金|\bfree\b",
    re.IGNORECASE,
)
RAW_SKIP_PREFIX_RE = re.compile(
    r"^\s*(open|start|door|doors|ticket|tickets|price|admission|adv|¥|￥|\$|開場|開演|料金|前売)",
    re.IGNORECASE,
)
JAPANESE_RE = re.compile(r"[぀-ヿ一-鿿]")
LETTER_RE = re.compile(r"[A-Za-z぀-ヿ一-鿿Ａ-ｚ]")


def preprocess_artist_text(text):
    if not text:
        return ""
    cleaned = text.replace("　", " ").replace("／", " / ")
    cleaned = ARTIST_PREFIX_RE.sub("", cleaned.strip())
    cleaned = re.sub(r"[ \t]+", " ", cleaned)
    return cleaned.strip()


def clean_artist_name(name):
    """Strip DJ prefixes, live/show suffixes, parenthetical notes and glyphs."""
    if not name:
        return ""
    cleaned = name.strip()
    cleaned = cleaned.strip(DECORATIVE_GLYPHS + " 　-–—:：|")
    cleaned = re.sub(r"[\(（\[【][^\)）\]】]*[\)）\]】]", " ", cleaned)
    cleaned = re.sub(r"^dj\s*[:：]\s*", "", cleaned, flags=re.IGNORECASE)
    # "DJ Krush" is a name, "DJ ●" and "DJ 田中" are a role marker
    cleaned = re.sub(r"^dj\s+(?=[^\sA-Za-z])", "", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(r"^(?:live|show)\s*[:：]\s*", "", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(r"\s*[-–—]\s*live\b.*$", "", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(r"\s+(?:live|show|event|performance|set)$", "", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(r"\s+", " ", cleaned)
    return cleaned.strip(DECORATIVE_GLYPHS + " 　-–—:：|,")


def is_generic_term(text):
    return text.strip().lower() in GENERIC_TERMS


def has_venue_info(text):
    lowered = text.lower()
    for keyword in VENUE_KEYWORDS:
        if keyword.isascii():
            if re.search(rf"\b{re.escape(keyword)}\b", lowered):
                return True
        elif keyword in text:
            return True
    return False


def is_event_description(text):
    if contains_date_pattern(text):
        return True
    if TIME_RE.search(text):
        return True
    return bool(EVENT_DESCRIPTION_RE.search(text)) or bool(PRICING_RE.search(text))


def _symbol_ratio(text):
    stripped = text.replace(" ", "")
    if not stripped:
        return 1.0
    symbols = [c for c in stripped if not c.isalnum() and not JAPANESE_RE.match(c)]
    return len(symbols) / len(stripped)


def looks_like_artist(text):
    if not text:
        return False
    text = text.strip()
    if not 2 <= len(text) <= 80:
        return False
    letters = LETTER_RE.findall(text)
    if not letters or len(letters) / len(text.replace(" ", "")) < 0.3:
        return False
    if contains_date_pattern(text) or TIME_RE.search(text):
        return False
    if has_venue_info(text) or PRICING_RE.search(text) or is_generic_term(text):
        return False
    return True


def looks_like_artist_name(text):
    """Stricter check used when filtering final names."""
    if not text or not 2 <= len(text) <= 50:
        return False
    if EVENT_DESCRIPTION_RE.search(text) or contains_date_pattern(text) or TIME_RE.search(text):
        return False
    return _symbol_ratio(text) <= 0.5


class BandExtractor:
    """Score candidate performer names and keep the plausible ones."""

    def __init__(self, threshold=CONFIDENCE_THRESHOLD, max_performers=MAX_PERFORMERS):
        self.threshold = threshold
        self.max_performers = max_performers

    def extract(self, title="", artists="", raw_text=""):
        candidates = []
        candidates.extend(self.candidates_from_artists(artists))
        candidates.extend(self.candidates_from_title(title, has_artists=bool(candidates)))
        if not candidates:
            candidates.extend(self.candidates_from_text(raw_text))

        unique = []
        seen = set()
        for candidate in candidates:
            cleaned = clean_artist_name(candidate)
            key = cleaned.lower()
            if cleaned and key not in seen:
                seen.add(key)
                unique.append(cleaned)

        scored = [(self.score(name, artists or ""), name) for name in unique]
        scored.sort(key=lambda pair: pair[0], reverse=True)

        selected = [name for score, name in scored if score >= self.threshold]
        if not selected:
            selected = [name for score, name in scored[:FALLBACK_PERFORMERS] if score > 0]
        selected = selected[: self.max_performers]

        final = []
        for name in selected:
            cleaned = clean_artist_name(name)
            if cleaned and cleaned not in final and looks_like_artist_name(cleaned):
                final.append(cleaned)
        return final or [PLACEHOLDER_PERFORMER]

    def candidates_from_artists(self, artists):
        text = preprocess_artist_text(artists)
        if not text:
            return []
        return [part.strip() for part in ARTIST_SEPARATORS.split(text) if part and part.strip()]

    def candidates_from_title(self, title, has_artists=False):
        if not title:
            return []
        title = title.strip()
        candidates = []

        match = re.match(r"^(.+?)\s+(live|show|concert|performance)$", title, re.IGNORECASE)
        if match:
            candidates.append(match.group(1))

        match = re.match(r"^(live|show|concert)\s*[:：]\s*(.+)$", title, re.IGNORECASE)
        if match:
            candidates.append(match.group(2))

        glyph_split = re.split(f"[{DECORATIVE_GLYPHS}]", title)
        if len(glyph_split) > 1:
            head = glyph_split[0].strip()
            if head and not is_event_description(head):
                candidates.append(head)
            for part in glyph_split[1:]:
                part = part.strip()
                if part and looks_like_artist(part) and not EVENT_DESCRIPTION_RE.search(part):
                    candidates.append(part)

        match = re.match(r"^\d{1,2}[/.]\d{1,2}\s*(?:\([^)]*\))?\s+(.+)$", title)
        if match:
            candidates.append(match.group(1))

        # "14 Sat WWW X Artist Name" style listings
        match = re.match(r"^\d{1,2}\s+(?:mon|tue|wed|thu|fri|sat|sun)\w*\s+(.+)$", title, re.IGNORECASE)
        if match:
            rest = match.group(1)
            rest = re.sub(r"^(?:www\s*x?|zepp\s+\w+|club\s+\w+)\s+", "", rest, flags=re.IGNORECASE)
            candidates.append(rest)

        for match in re.finditer(r"([^\s、/]+(?:トリオ|カルテット|バンド|オーケストラ))", title):
            candidates.append(match.group(1))

        if " / " in title or "、" in title:
            candidates.extend(part for part in re.split(r"\s+/\s+|、", title) if part.strip())
        if " & " in title and not re.search(r"\d+\s*&\s*over", title, re.IGNORECASE):
            candidates.extend(part for part in title.split(" & ") if part.strip())

        if not candidates and not has_artists and looks_like_artist(title) and not is_event_description(title):
            candidates.append(title)
        return candidates

    def candidates_from_text(self, raw_text):
        if not raw_text:
            return []
        candidates = []
        for line in raw_text.splitlines():
            line = line.strip()
            if not line or RAW_SKIP_PREFIX_RE.match(line):
                continue
            if TIME_RE.fullmatch(line) or (contains_date_pattern(line) and not strip_dates(line)):
                continue
            line = strip_times(strip_dates(line))
            for part in RAW_TEXT_SEPARATORS.split(line):
                part = part.strip()
                if part and not has_venue_info(part):
                    candidates.append(part)
        return candidates

    def score(self, name, artists_field=""):
        score = 0.5
        lowered = name.lower()

        if looks_like_artist(name):
            score += 0.3
        if any(keyword in lowered for keyword in ENSEMBLE_KEYWORDS):
            score += 0.2
        if 2 <= len(name) <= 50:
            score += 0.2
        if re.search(r"[a-z]", name) and re.search(r"[A-Z]", name):
            score += 0.1
        if JAPANESE_RE.search(name):
            score += 0.1
        if artists_field and name.lower() in artists_field.lower():
            score += 0.15
        if lowered.endswith(BAND_SUFFIXES):
            score += 0.1

        if contains_date_pattern(name):
            score -= 0.4
        if TIME_RE.search(name):
            score -= 0.3
        if has_venue_info(name):
            score -= 0.3
        if EVENT_DESCRIPTION_RE.search(name):
            score -= 0.2
        if PRICING_RE.search(name):
            score -= 0.2
        if len(name) < 2:
            score -= 0.1
        if len(name) > 80:
            score -= 0.2
        if _symbol_ratio(name) > 0.5:
            score -= 0.3
        if is_generic_term(name):
            score -= 0.2

        return max(0.0, min(1.0, score))
