import re
from collections import Counter
from datetime import timedelta

from gigscraper.extraction.dates import today

PAST_WINDOW_DAYS = 30
FUTURE_WINDOW_DAYS = 365
MIN_TITLE_LENGTH = 2

SKIP_TERMS = [
    "設営", "撤去", "準備", "setup", "teardown", "maintenance", "closed", "holiday", "menu", "access", "contact",
]
# English terms match as whole words, Japanese ones anywhere in the title
SKIP_TERM_RE = re.compile("|".join(
    rf"(?<![a-z]){re.escape(term)}(?![a-z])" if term.isascii() else re.escape(term) for term in SKIP_TERMS
))
JUNK_TITLE_PATTERNS = [
    re.compile(
        r"^(click|map|terrain|satellite|labels|styled|keyboard|shortcuts|terms|report|error|navigate|arrow|keys"
        r"|zoom|home|jump|page|up|down|left|right|menu|access|contact|about|info|news|blog|shop|store)$",
        re.IGNORECASE,
    ),
    re.compile(
        r"^(to navigate|press the arrow|map data|google|metric|imperial|units|today's event|schedule)$",
        re.IGNORECASE,
    ),
    re.compile(r"^[<>/\\\[\]{}().,;:!?@#$%^&*+=|`~\s]*$"),
    re.compile(r"^.{1,2}$"),
    re.compile(
        r"^(move left|move right|move up|move down|zoom in|zoom out|home|end|page up|page down)$",
        re.IGNORECASE,
    ),
]


def rejection_reason(event, reference=None):
    """Why an extracted event is not a real listing, or None if it is one."""
    title = (event.title or "").strip()
    if len(title) < MIN_TITLE_LENGTH:
        return "no_title"
    if event.date is None:
        return "no_date"

    reference = reference or today()
    if event.date < reference - timedelta(days=PAST_WINDOW_DAYS):
        return "past_date"
    if event.date > reference + timedelta(days=FUTURE_WINDOW_DAYS):
        return "future_date"

    lowered = title.lower()
    if SKIP_TERM_RE.search(lowered):
        return "skip_term"
    if any(pattern.match(title) for pattern in JUNK_TITLE_PATTERNS):
        return "no_content"
    return None


def validate_event(event, reference=None):
    """Check that event has a usable title and a date inside the listing window."""
    return rejection_reason(event, reference) is None


def filter_valid_events(events, reference=None, log_func=None, verbose=False):
    """Keep valid events; with verbose, log why the others were dropped."""
    log = log_func or print
    valid = []
    reasons = Counter()
    for event in events:
        reason = rejection_reason(event, reference)
        if reason:
            reasons[reason] += 1
        else:
            valid.append(event)

    if verbose and reasons:
        details = ", ".join(f"{reason}: {count}" for reason, count in sorted(reasons.items()))
        log(f"    Filtered {sum(reasons.values())} of {len(events)} events ({details})")
    return valid
