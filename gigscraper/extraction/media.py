"""
Discovery and relevance scoring of schedule images and PDFs on a venue page.
"""

import re
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

PDF_HIGH_TERMS = [
    "schedule", "スケジュール", "event", "イベント", "live", "ライブ", "concert", "コンサート",
    "show", "ショー", "gig", "performance", "lineup", "ラインアップ", "program", "プログラム",
    "flyer", "フライヤー", "calendar", "カレンダー", "timetable", "タイムテーブル",
]
PDF_MEDIUM_TERMS = [
    "info", "情報", "news", "ニュース", "update", "アップデート", "announcement", "お知らせ",
    "notice", "通知",
]
PDF_NEGATIVE_TERMS = [
    "menu", "メニュー", "food", "食べ物", "drink", "飲み物", "map", "地図", "access", "アクセス",
    "contact", "連絡", "about", "について", "history", "歴史", "staff", "スタッフ",
]
MONTH_NAMES = [
    "january", "february", "march", "april", "may", "june", "july", "august",
    "september", "october", "november", "december",
] + [f"{month}月" for month in range(1, 13)]
FILENAME_DATE_RE = re.compile(r"\d{4}[-_]\d{2}[-_]\d{2}|\d{2}[-_]\d{2}[-_]\d{4}")

IMAGE_HIGH_KEYWORDS = ["schedule", "スケジュール", "calendar", "カレンダー", "予定"]
IMAGE_MEDIUM_KEYWORDS = ["event", "イベント", "live", "ライブ", "日程"]
IMAGE_PENALTY_WORDS = [
    "logo", "icon", "banner", "ad", "advertisement", "thumbnail", "map", "location",
    "access", "contact",
]
IMAGE_SELECTORS = [
    'img[src*="schedule"]', 'img[src*="calendar"]', 'img[src*="event"]', 'img[src*="live"]',
    'img[alt*="schedule"]', 'img[alt*="スケジュール"]', 'img[alt*="予定"]',
    'img[class*="schedule"]', 'img[class*="calendar"]', ".schedule img", ".calendar img",
    "#schedule img", "#calendar img", "main img", "article img", ".content img",
]
NON_RASTER_EXTENSIONS = (".svg", ".pdf", ".eps", ".ai", ".psd", ".ico")
MAX_IMAGES = 5
MAX_BROWSER_IMAGES = 3


def is_image_schedule_venue(name):
    return bool(name) and ("MITSUKI" in name.upper() or "翠月" in name)


def is_ocr_compatible(url):
    if not url or url.startswith("data:"):
        return False
    path = urlparse(url).path.lower()
    return not path.endswith(NON_RASTER_EXTENSIONS)


def _count_terms(text, terms):
    return sum(1 for term in terms if term in text)


def score_pdf_link(href, text=""):
    """Relevance of a PDF link from its URL and anchor text; never below zero."""
    haystack = f"{href} {text}".lower()
    filename = urlparse(href).path.rsplit("/", 1)[-1].lower()

    score = 15 * _count_terms(haystack, PDF_HIGH_TERMS)
    score += 8 * _count_terms(haystack, PDF_MEDIUM_TERMS)
    if FILENAME_DATE_RE.search(filename):
        score += 12
    score += 10 * _count_terms(haystack, MONTH_NAMES)
    score -= 5 * _count_terms(haystack, PDF_NEGATIVE_TERMS)
    return max(score, 0)


def find_pdf_links(html, base_url):
    """Return [(url, score)] for schedule-relevant PDF links, best first."""
    soup = BeautifulSoup(html, "html.parser") if isinstance(html, str) else html
    scored = {}
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if ".pdf" not in href.lower():
            continue
        url = urljoin(base_url, href)
        score = score_pdf_link(url, anchor.get_text(" ", strip=True))
        if score > 0 and score > scored.get(url, 0):
            scored[url] = score
    return sorted(scored.items(), key=lambda pair: pair[1], reverse=True)


def score_image(src, alt="", classes="", venue_name=""):
    """Relevance of an image as a schedule flyer; never below zero."""
    haystack = f"{src} {alt} {classes}".lower()
    score = 10 * _count_terms(haystack, IMAGE_HIGH_KEYWORDS)
    score += 5 * _count_terms(haystack, IMAGE_MEDIUM_KEYWORDS)
    if alt:
        score += 3
    if re.search(r"schedule|calendar", classes or "", re.IGNORECASE):
        score += 2
    if score == 0 and "logo" not in haystack and "icon" not in haystack:
        score += 1
    if is_image_schedule_venue(venue_name) and re.search(r"IMG_\d+\.jpe?g", src or "", re.IGNORECASE):
        score += 15
    for word in IMAGE_PENALTY_WORDS:
        if re.search(rf"(?<![a-z]){word}(?![a-z])", haystack):
            score -= 5
    if (src or "").lower().split("?")[0].endswith((".svg", ".pdf")):
        score -= 10
    return max(score, 0)


def find_schedule_images(html, base_url, venue_name="", limit=MAX_IMAGES):
    """Return [(url, score)] for the most relevant raster images, best first."""
    soup = BeautifulSoup(html, "html.parser") if isinstance(html, str) else html

    nodes = []
    for selector in IMAGE_SELECTORS:
        try:
            nodes.extend(soup.select(selector))
        except Exception:
            continue
    if not nodes:
        nodes = soup.find_all("img")

    scored = {}
    for img in nodes:
        src = img.get("src") or img.get("data-src") or ""
        if not src:
            continue
        url = urljoin(base_url, src.strip())
        if not is_ocr_compatible(url):
            continue
        classes = " ".join(img.get("class") or [])
        score = score_image(url, img.get("alt") or "", classes, venue_name)
        if score > 0 and score > scored.get(url, 0):
            scored[url] = score
    ranked = sorted(scored.items(), key=lambda pair: pair[1], reverse=True)
    return ranked[:limit]


def rank_image_urls(urls, venue_name="", limit=MAX_BROWSER_IMAGES):
    """Score image URLs collected from a rendered page (no alt/class context)."""
    scored = []
    for url in urls:
        if not is_ocr_compatible(url):
            continue
        score = score_image(url, "", "", venue_name)
        if score > 0:
            scored.append((url, score))
    scored.sort(key=lambda pair: pair[1], reverse=True)
    return scored[:limit]
