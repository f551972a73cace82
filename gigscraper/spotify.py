"""
Spotify artist lookup used as a genre hint for newly created bands.
"""

import re
import threading
import time
import unicodedata
from datetime import datetime

import requests

from gigscraper import config
from gigscraper.genres import UNKNOWN, genre_from_name, genre_from_tags

INVALID_BAND_PATTERNS = [
    re.compile(r"^live performance$", re.IGNORECASE),
    re.compile(r"^\d{4}\.\d{1,2}\.\d{1,2}"),
    re.compile(r"one\s*man\s*live", re.IGNORECASE),
    re.compile(r"release\s*live", re.IGNORECASE),
    re.compile(r"pickup\s*event", re.IGNORECASE),
    re.compile(r"^dj\s", re.IGNORECASE),
    re.compile(r"^(sun|mon|tue|wed|thu|fri|sat)\.?\s", re.IGNORECASE),
    re.compile(r"\+1drink", re.IGNORECASE),
    re.compile(r"[¥￥]\d+"),
    re.compile(r"detail$", re.IGNORECASE),
    re.compile(r"^(the\s+)?show$", re.IGNORECASE),
    re.compile(r"^(event|live|performance)$", re.IGNORECASE),
]


FEATURING_RE = re.compile(r"\s+(?:feat\.?|ft\.?|featuring|with|×)\s+.*$", re.IGNORECASE)
NOTE_RE = re.compile(r"[\(\[【][^\)\]】]*[\)\]】]")
PLACEHOLDER_ARTISTS = {
    "tba", "tbd", "unknown", "live performance", "surprise guest", "special guest", "guests",
    "ゲスト", "スペシャルゲスト", "シークレットゲスト", "未定", "他", "ほか",
}


def artist_key(name):
    """
    Cache and comparison key for a performer: width-folded (NFKC) and
    lowercased, with bracketed notes and featuring credits dropped. Kana and
    kanji survive, so "ギターウルフ" and "ｷﾞﾀｰｳﾙﾌ" share a key.
    """
    if not name:
        return ""
    key = unicodedata.normalize("NFKC", name).lower()
    key = NOTE_RE.sub(" ", key).strip()
    key = FEATURING_RE.sub("", key)
    key = re.sub(r"[^\w\s]", " ", key)
    return " ".join(key.split())


def is_placeholder_artist(key):
    return not key or key in PLACEHOLDER_ARTISTS or key.startswith("and more")


def valid_band_name(name):
    """Worth a search at all: not a date, price, weekday or generic event word."""
    if not name or len(name) < 2:
        return False
    if any(pattern.search(name) for pattern in INVALID_BAND_PATTERNS):
        return False
    letters = re.findall(r"[A-Za-z぀-ヿ一-鿿]", name)
    return len(name) - len(letters) <= len(name) * 0.7


def sanitize_artist_name(raw_name):
    if not raw_name:
        return ""
    clean = re.sub(r"\s*\([A-Z]{2,3}\)\s*$", "", raw_name)
    clean = re.sub(r"^dj\s+", "", clean, flags=re.IGNORECASE)
    clean = re.sub(r"\s+(live|show|event|performance)$", "", clean, flags=re.IGNORECASE)
    if "+" in clean or "&" in clean:
        clean = re.split(r"\s*[+&]\s*", clean)[0]
    clean = re.split(r"\s*feat\.?\s+", clean, flags=re.IGNORECASE)[0]
    return clean.strip()


def string_similarity(first, second):
    """1 - Levenshtein distance / longer length."""
    if not first or not second:
        return 0.0
    if first == second:
        return 1.0
    previous = list(range(len(second) + 1))
    for i, char_a in enumerate(first, start=1):
        current = [i]
        for j, char_b in enumerate(second, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return 1.0 - previous[-1] / max(len(first), len(second))


def match_confidence(search_name, found_name, popularity=None):
    """0-100 confidence that a search result is the artist we asked for."""
    if not search_name or not found_name:
        return 0
    search_normalized = re.sub(r"[^\w]", "", search_name.lower())
    found_normalized = re.sub(r"[^\w]", "", found_name.lower())

    if search_normalized == found_normalized:
        return 95

    length_diff = abs(len(search_normalized) - len(found_normalized))
    if length_diff > min(len(search_normalized), len(found_normalized)):
        return 0

    similarity = string_similarity(search_normalized, found_normalized)
    if similarity < 0.7:
        return 0

    popularity_boost = min(popularity / 4, 10) if popularity else 0
    score = similarity * 100 + popularity_boost - length_diff * 3
    return max(round(score), 0)


def tags_fit_genre(genre_hint, tags):
    """Some Spotify tag maps onto the genre our keyword rules guessed for the name."""
    if not genre_hint or genre_hint == UNKNOWN:
        return False
    return any(genre_from_name(tag) == genre_hint for tag in tags or [])


def choose_candidate(artist_name, candidates, genre_hint=None):
    """
    Pick the search result that is this performer. Returns (candidate, reason).
    Several results with the same key are told apart by the genre hint, then by
    a clear popularity lead; otherwise the choice is ambiguous and None.
    """
    key = artist_key(artist_name)
    same_key = [c for c in candidates if artist_key(c.get("name", "")) == key]
    if not same_key:
        return None, "no-exact"
    if len(same_key) == 1:
        return same_key[0], "exact"

    fitting = [c for c in same_key if tags_fit_genre(genre_hint, c.get("genres"))]
    if len(fitting) == 1:
        return fitting[0], "genre"

    first, second = sorted(fitting or same_key, key=lambda c: c.get("popularity", 0), reverse=True)[:2]
    if first.get("popularity", 0) - second.get("popularity", 0) >= config.SPOTIFY_POPULARITY_LEAD:
        return first, "popularity"
    return None, "ambiguous"


class SpotifyGenreClient:
    """
    Client-credentials Spotify search with a persisted per-name result cache.
    cache: a CacheStore keyed by normalized artist name.
    """

    def __init__(self, cache, client_id=None, client_secret=None, session=None, log_func=None):
        self.cache = cache
        self.client_id = client_id if client_id is not None else config.SPOTIFY_CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else config.SPOTIFY_CLIENT_SECRET
        self.session = session or requests.Session()
        self.log = log_func or print
        self._token = None
        self._token_expires_at = 0
        self._lock = threading.Lock()

    @property
    def enabled(self):
        return bool(self.client_id and self.client_secret)

    def get_token(self):
        """Get (and cache) a Spotify access token using Client Credentials flow."""
        if not self.enabled:
            return None

        now = time.time()
        with self._lock:
            if self._token and now < (self._token_expires_at - 60):
                return self._token
            try:
                resp = self.session.post(
                    config.SPOTIFY_TOKEN_URL,
                    data={"grant_type": "client_credentials"},
                    auth=(self.client_id, self.client_secret),
                    timeout=10,
                )
                resp.raise_for_status()
                data = resp.json()
                self._token = data.get("access_token")
                self._token_expires_at = now + int(data.get("expires_in", 3600))
                return self._token
            except Exception as e:
                self.log(f"  Warning: Spotify token request failed: {e}")
                return None

    def search(self, artist_name):
        """Return (candidates, reason)."""
        token = self.get_token()
        if not token:
            return [], "no-token"

        params = {
            "type": "artist",
            "market": config.SPOTIFY_MARKET,
            "limit": 5,
            "q": artist_name,
        }
        headers = {"Authorization": f"Bearer {token}"}

        resp = None
        for attempt in range(2):
            resp = self.session.get(config.SPOTIFY_SEARCH_URL, headers=headers, params=params, timeout=10)
            if resp.status_code == 401 and attempt == 0:
                with self._lock:
                    self._token = None
                token = self.get_token()
                if not token:
                    break
                headers["Authorization"] = f"Bearer {token}"
                continue
            if resp.status_code == 429 and attempt == 0:
                retry_after = int(resp.headers.get("Retry-After", "1"))
                time.sleep(retry_after)
                continue
            break

        if resp is None or resp.status_code != 200:
            status = resp.status_code if resp is not None else "none"
            return [], f"error-{status}"

        candidates = resp.json().get("artists", {}).get("items", [])
        if not candidates:
            return [], "no-results"
        return candidates, "ok"

    def genre_info(self, artist_name, genre_hint=None):
        """
        {"genre", "confidence", "spotify_id", "matched_name", "reason"} for a
        confident match, or None. genre_hint separates same-named artists.
        """
        if not self.enabled or not valid_band_name(artist_name):
            return None
        clean_name = sanitize_artist_name(artist_name)
        key = artist_key(clean_name)
        if len(clean_name) < 2 or is_placeholder_artist(key):
            return None

        cached = self.cache.get(key) if self.cache is not None else None
        if cached is not None:
            return cached if cached.get("confidence", 0) > config.SPOTIFY_GENRE_MIN_CONFIDENCE else None

        try:
            candidates, reason = self.search(clean_name)
        except requests.RequestException as e:
            self.log(f"  Warning: Spotify search failed for {clean_name}: {e}")
            return None
        if reason.startswith("error") or reason == "no-token":
            return None

        candidate, pick_reason = choose_candidate(clean_name, candidates, genre_hint)
        if candidate is None:
            scored = [
                (match_confidence(clean_name, c.get("name", ""), c.get("popularity")), c)
                for c in candidates
            ]
            scored = [pair for pair in scored if pair[0] > config.SPOTIFY_GENRE_MIN_CONFIDENCE]
            if scored:
                confidence, candidate = max(scored, key=lambda pair: pair[0])
                pick_reason = "similar"
            else:
                confidence = 0
        else:
            confidence = match_confidence(clean_name, candidate.get("name", ""), candidate.get("popularity"))

        entry = {
            "genre": genre_from_tags(candidate.get("genres", [])) if candidate else UNKNOWN,
            "confidence": confidence,
            "spotify_id": candidate.get("id") if candidate else None,
            "matched_name": candidate.get("name") if candidate else None,
            "reason": pick_reason if reason == "ok" else reason,
            "updated_at": datetime.utcnow().isoformat() + "Z",
        }
        if self.cache is not None:
            self.cache.set(key, entry)
        return entry if confidence > config.SPOTIFY_GENRE_MIN_CONFIDENCE else None
