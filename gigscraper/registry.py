import json
from urllib.parse import urlparse

from gigscraper import config
from gigscraper.errors import ConfigurationError
from gigscraper.models import (
    ScrapeTarget,
    Selectors,
    SpecialHandling,
    Strategy,
    parse_special_handling,
    parse_strategy,
)

SOCIAL_MEDIA_DOMAINS = [
    "instagram.com", "facebook.com", "twitter.com", "x.com", "tiktok.com", "youtube.com",
    "linktr.ee", "linktree.com", "ameblo.jp", "note.com",
]
CANDIDATE_EXCLUDED_TERMS = [
    "facebook", "instagram", "twitter", "tiktok", "youtube", "blogspot", "blog", "shop",
    "restaurant", "cafe", "hotel",
]
CANDIDATE_MUSIC_TERMS = ["live", "music", "hall", "club", "studio"]

_O_SELECTORS = Selectors(
    event=".schedule-item, .event-item, .live-info, article, .post",
    title="h3, h2, .title, .event-title",
    date=".date, .event-date, time",
    time=".time, .start-time",
    performer=".artist, .performer, .act",
)
_ZEPP_SELECTORS = Selectors(
    event=".event-item, .schedule-item, .live-info",
    title="h3, .title, .event-title",
    date=".date, .event-date",
    time=".time, .start-time",
    performer=".artist, .performer",
)
_WWW_SELECTORS = Selectors(
    event=".event, .schedule-item, .live-info",
    title="h2, h3, .title, .event-title",
    date=".date, .event-date",
    time=".time, .start-time",
    performer=".artist, .performer",
)

PROVEN_TARGETS = [
    ScrapeTarget(
        name="Antiknock",
        urls=("https://antiknock.net",),
        strategy=Strategy.BROWSER_ONLY,
        selectors=Selectors(
            event=".pickup_card, .mv_fx, .news-item, .gig, .schedule-item, article, .post",
            title=".pickup_ttl, .mv_ttl, h1, h2, h3, .title, .gig-title",
            date=".pickup_date, .pickup_month, .pickup_day, .date, .gig-date, time, .meta",
            time=".time, .start-time, .gig-time",
            performer=".pickup_sub, .mv_opt, .artist, .performer, .lineup, .act",
        ),
        address="4-3-15 Shinjuku, Shinjuku-ku, Tokyo",
        neighborhood="Shinjuku",
        website="https://antiknock.net",
        proven=True,
    ),
    ScrapeTarget(
        name="20000 Den-atsu (二万電圧)",
        urls=("https://den-atsu.com", "https://den-atsu.com/schedulelist/", "https://den-atsu.com/schedule/"),
        strategy=Strategy.PROTECTION_BYPASS,
        special_handling=SpecialHandling.MONTHLY_COVERAGE_WITH_BYPASS,
        selectors=Selectors(
            event=".pickupbox, .box-list li, .news-item, .gig, .live, article, .post, .schedule-item",
            title=".work-title, h1, h2, h3, .title, .gig-title, .schedule-title",
            date=".work-title, .date, .gig-date, time, .meta, .schedule-date",
            time=".time, .start-time, .gig-time",
            performer=".artist, .performer, .lineup, .act",
        ),
        address="2-45-2 Kabukicho, Shinjuku-ku, Tokyo",
        neighborhood="Shinjuku",
        website="https://den-atsu.com",
        proven=True,
    ),
    ScrapeTarget(
        name="Milkyway",
        urls=("https://www.shibuyamilkyway.com", "https://www.shibuyamilkyway.com/new/SCHEDULE/"),
        strategy=Strategy.ENHANCED_NAVIGATION,
        special_handling=SpecialHandling.IFRAME_SCHEDULE,
        selectors=Selectors(
            event='.gig, .schedule-item, article, .post, div[class*="schedule"], div[class*="event"], div, span, table tr',
            title='span, h1, h2, h3, .title, .gig-title, div[class*="title"]',
            date='span, .date, .gig-date, time, .meta, div[class*="date"]',
            time='span, .time, .start-time, .gig-time, div[class*="time"]',
            performer='span, .artist, .performer, .lineup, .act, div[class*="artist"]',
        ),
        address="2-16-8 Dogenzaka, Shibuya-ku, Tokyo",
        neighborhood="Shibuya",
        website="https://www.shibuyamilkyway.com",
        proven=True,
    ),
    ScrapeTarget(
        name="Yokohama Arena",
        urls=("https://www.yokohama-arena.co.jp", "https://www.yokohama-arena.co.jp/event/"),
        strategy=Strategy.BROWSER_ONLY,
        special_handling=SpecialHandling.MONTHLY_COVERAGE,
        selectors=Selectors(
            event="table tr, .event-row, .schedule-item, .gig, article, .post",
            title="td:nth-child(2), .event-name, .title, .gig-title, h3, h2",
            date="td:nth-child(1), .event-date, .date, .gig-date, time",
            time="td:nth-child(4), .start-time, .gig-time, .time",
            performer=".artist, .performer, .lineup, .act",
        ),
        address="3-10 Shin-Yokohama, Kohoku-ku, Yokohama",
        neighborhood="Shin-Yokohama",
        website="https://www.yokohama-arena.co.jp",
        proven=True,
    ),
    ScrapeTarget(
        name="Shibuya O-East",
        urls=("https://shibuya-o.com",),
        strategy=Strategy.LIGHTWEIGHT_FIRST,
        selectors=_O_SELECTORS,
        address="2-14-8 Dogenzaka, Shibuya-ku, Tokyo",
        neighborhood="Shibuya",
        website="https://shibuya-o.com",
        proven=True,
    ),
    ScrapeTarget(
        name="Shibuya O-West",
        urls=("https://shibuya-o.com/west/",),
        strategy=Strategy.LIGHTWEIGHT_FIRST,
        selectors=_O_SELECTORS,
        address="2-3 Maruyamacho, Shibuya-ku, Tokyo",
        neighborhood="Shibuya",
        website="https://shibuya-o.com/west/",
        proven=True,
    ),
    ScrapeTarget(
        name="Liquid Room",
        urls=("https://liquidroom.net",),
        strategy=Strategy.BROWSER_ONLY,
        selectors=Selectors(
            event=".event, .schedule-item, .live-info, article",
            title="h2, h3, .title, .event-title",
            date=".date, .event-date, time",
            time=".time, .start-time",
            performer=".artist, .performer",
        ),
        address="3-16-6 Higashi, Shibuya-ku, Tokyo",
        neighborhood="Ebisu",
        website="https://liquidroom.net",
        proven=True,
    ),
    ScrapeTarget(
        name="Zepp Tokyo",
        urls=("https://zepp.co.jp/tokyo/",),
        strategy=Strategy.BROWSER_ONLY,
        selectors=_ZEPP_SELECTORS,
        address="1-3-11 Aomi, Koto-ku, Tokyo",
        neighborhood="Odaiba",
        website="https://zepp.co.jp/tokyo/",
        proven=True,
    ),
    ScrapeTarget(
        name="Club Quattro Shibuya",
        urls=("https://www.club-quattro.com/shibuya/",),
        strategy=Strategy.LIGHTWEIGHT_FIRST,
        selectors=_ZEPP_SELECTORS,
        address="32-13 Udagawacho, Shibuya-ku, Tokyo",
        neighborhood="Shibuya",
        website="https://www.club-quattro.com/shibuya/",
        proven=True,
    ),
    ScrapeTarget(
        name="Shinjuku Loft",
        urls=("https://www.loft-prj.co.jp/schedule/loft/",),
        strategy=Strategy.LIGHTWEIGHT_FIRST,
        selectors=Selectors(
            event=".schedule-item, .event-item, .live-info",
            title="h3, .title, .event-title",
            date=".date, .event-date",
            time=".time, .start-time",
            performer=".artist, .performer",
        ),
        address="1-12-9 Kabukicho, Shinjuku-ku, Tokyo",
        neighborhood="Shinjuku",
        website="https://www.loft-prj.co.jp/loft/",
        proven=True,
    ),
    ScrapeTarget(
        name="Shibuya WWW",
        urls=("https://www-shibuya.jp",),
        strategy=Strategy.BROWSER_ONLY,
        selectors=_WWW_SELECTORS,
        address="13-17 Udagawacho, Shibuya-ku, Tokyo",
        neighborhood="Shibuya",
        website="https://www-shibuya.jp",
        proven=True,
    ),
    ScrapeTarget(
        name="Shibuya WWW X",
        urls=("https://www-shibuya.jp/wwwx/",),
        strategy=Strategy.BROWSER_ONLY,
        selectors=_WWW_SELECTORS,
        address="13-17 Udagawacho, Shibuya-ku, Tokyo",
        neighborhood="Shibuya",
        website="https://www-shibuya.jp/wwwx/",
        proven=True,
    ),
    ScrapeTarget(
        name="Harajuku Astro Hall",
        urls=("https://www.astro-hall.com",),
        strategy=Strategy.LIGHTWEIGHT_FIRST,
        selectors=_ZEPP_SELECTORS,
        address="1-8-10 Jingumae, Shibuya-ku, Tokyo",
        neighborhood="Harajuku",
        website="https://www.astro-hall.com",
        proven=True,
    ),
    ScrapeTarget(
        name="Ebisu Liquidroom",
        urls=("https://liquidroom.net/ebisu/",),
        strategy=Strategy.BROWSER_ONLY,
        selectors=_WWW_SELECTORS,
        address="3-16-6 Higashi, Shibuya-ku, Tokyo",
        neighborhood="Ebisu",
        website="https://liquidroom.net",
        proven=True,
    ),
]


def proven_names():
    return {target.name for target in PROVEN_TARGETS}


def is_proven(name):
    return name in proven_names()


def domain_of(url):
    host = urlparse(url or "").netloc.lower()
    return host[4:] if host.startswith("www.") else host


def is_social_media_only(url):
    """True when the only listed site is a social profile (or there is no site at all)."""
    if not url or not url.strip():
        return True
    host = domain_of(url)
    return any(host == domain or host.endswith("." + domain) for domain in SOCIAL_MEDIA_DOMAINS)


def target_from_dict(data):
    """Build a ScrapeTarget from one stored configuration record."""
    name = (data.get("name") or "").strip()
    if not name:
        raise ConfigurationError(f"Target without a name: {data!r}")
    urls = data.get("urls") or []
    if isinstance(urls, str):
        urls = [urls]
    primary = data.get("url") or data.get("website")
    if primary and primary not in urls:
        urls = [primary] + list(urls)
    try:
        strategy = parse_strategy(data.get("strategy"))
        special = parse_special_handling(data.get("special_handling") or data.get("specialHandling"))
    except ValueError as e:
        raise ConfigurationError(f"Bad strategy for {name}: {e}")

    return ScrapeTarget(
        name=name,
        urls=tuple(u.strip() for u in urls if u and u.strip()),
        strategy=strategy,
        selectors=Selectors.from_dict(data.get("selectors")),
        special_handling=special,
        address=data.get("address"),
        neighborhood=data.get("neighborhood"),
        website=data.get("website"),
        proven=name in proven_names(),
    )


def load_targets(path=None, log_func=None):
    """
    Stored targets merged over the proven ones (stored records win on name).
    A missing file means proven targets only; a malformed file is a hard error.
    """
    log = log_func or print
    path = path or config.TARGETS_PATH
    targets = {target.name: target for target in PROVEN_TARGETS}

    if not path.exists():
        return list(targets.values())

    try:
        with open(path, "r", encoding="utf-8") as f:
            records = json.load(f)
    except ValueError as e:
        raise ConfigurationError(f"Could not parse {path}: {e}")
    if isinstance(records, dict):
        records = records.get("targets") or records.get("venues") or []
    if not isinstance(records, list):
        raise ConfigurationError(f"{path} must hold a list of targets")

    for record in records:
        target = target_from_dict(record)
        if not target.urls:
            log(f"  Skipping {target.name}: no URL configured")
            continue
        targets[target.name] = target
    return list(targets.values())


def is_candidate(target):
    """Weekly-run filter: skip social, blog and shop sites; keep things that look like music venues."""
    url = (target.url or "").lower()
    if not url.startswith("http"):
        return False
    if any(term in url for term in CANDIDATE_EXCLUDED_TERMS):
        return False
    name = target.name.lower()
    if any(term in name or term in url for term in CANDIDATE_MUSIC_TERMS):
        return True
    return "event" in url


def get_targets(mode="proven", max_targets=None, path=None, log_func=None):
    """
    Targets for a run mode. "weekly" uses every stored target that passes the
    candidate filter (proven first); the other modes use the proven targets.
    """
    if mode == "weekly":
        all_targets = load_targets(path, log_func)
        proven = [t for t in all_targets if t.proven]
        others = [t for t in all_targets if not t.proven and is_candidate(t)]
        targets = proven + others
    else:
        targets = list(PROVEN_TARGETS)
    if max_targets:
        targets = targets[:max_targets]
    return targets
