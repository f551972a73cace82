import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()


def _get_int_env(name, default):
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float_env(name, default):
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _get_bool_env(name, default):
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


REPO_ROOT = Path(__file__).resolve().parents[1]
DATA_DIR = Path(os.environ.get("SCRAPER_DATA_DIR", REPO_ROOT / "data"))
CACHE_DIR = DATA_DIR / "cache"
RESULTS_DIR = DATA_DIR / "results"

TARGETS_PATH = Path(os.environ.get("SCRAPER_TARGETS_PATH", DATA_DIR / "targets.json"))
DB_PATH = DATA_DIR / "gigs-db.json"
STATUS_PATH = DATA_DIR / "scrape-status.json"
LOG_PATH = DATA_DIR / "scrape-log.txt"

COMPLEXITY_CACHE_PATH = CACHE_DIR / "complexity-cache.json"
BLACKLIST_PATH = CACHE_DIR / "blacklist.json"
RATE_LIMIT_PATH = CACHE_DIR / "rate-limits.json"
OCR_PREFERENCES_PATH = CACHE_DIR / "ocr-preferences.json"
SESSION_LOG_PATH = CACHE_DIR / "scrape-session.json"
SPOTIFY_GENRE_CACHE_PATH = CACHE_DIR / "spotify-genre-cache.json"

LOG_RETENTION_DAYS = 14

ENVIRONMENT = os.environ.get("SCRAPER_ENV", "development").lower()
IS_PRODUCTION = ENVIRONMENT == "production"

# Worker pool and budgets
MAX_WORKERS = _get_int_env("SCRAPER_MAX_WORKERS", 1 if IS_PRODUCTION else 3)
DB_CONCURRENCY = 3
MAX_TARGETS = _get_int_env("SCRAPER_MAX_TARGETS", 200)
MAX_DURATION_HOURS = _get_float_env("SCRAPER_MAX_DURATION_HOURS", 3.0)
TARGET_TIMEOUT_SECONDS = _get_float_env("SCRAPER_TARGET_TIMEOUT", 180.0)

# Fetch layer
HTTP_CONNECT_TIMEOUT = 5
HTTP_READ_TIMEOUT = 10
QUICK_CONNECT_TIMEOUT = 3
QUICK_READ_TIMEOUT = 5
DOWNLOAD_READ_TIMEOUT = 30
MAX_REDIRECTS = 5
HTTP_MAX_RETRIES = 2
CHALLENGE_MARKERS = ["Checking your browser", "cloudflare", "Just a moment"]
MIN_UNBLOCKED_PAGE_LENGTH = 1000

BROWSER_SETTLE_SECONDS = 1.0
BYPASS_SETTLE_SECONDS = 5.0
BYPASS_CHALLENGE_WAIT_SECONDS = 10.0
MONTHLY_BYPASS_SETTLE_SECONDS = 8.0
MONTHLY_BYPASS_CHALLENGE_WAIT_SECONDS = 15.0
NAVIGATION_SETTLE_SECONDS = 2.0
MONTHS_AHEAD = 2
CHROME_BINARY = os.environ.get("CHROME_BINARY")

# Resilience layer
CIRCUIT_TIMEOUT_THRESHOLD = 3
CIRCUIT_ERROR_THRESHOLD = 3
CIRCUIT_BLOCKED_THRESHOLD = 2
CIRCUIT_COOLDOWN_SECONDS = 300
BLACKLIST_TIMEOUT_THRESHOLD = 3
BLACKLIST_ERROR_THRESHOLD = 5
BLACKLIST_BLOCKED_THRESHOLD = 3
BLACKLIST_NO_CONTENT_THRESHOLD = 3
RETRY_FAILURE_LIMIT = 2
RATE_LIMIT_FLOOR = 1.0
RATE_LIMIT_CEILING = 10.0
RATE_LIMIT_SMOOTHING = 0.3
MEMORY_THRESHOLD_MB = _get_int_env("SCRAPER_MEMORY_THRESHOLD_MB", 1000)

# Responsible scraping
DELAY_BETWEEN_TARGETS = 3.0
DELAY_BETWEEN_REQUESTS = 1.5
DELAY_AFTER_ERRORS = 10.0
RANDOM_EXTRA_DELAY = (1.0, 3.0)
RATE_LIMITED_BACKOFF_SECONDS = 30.0
MAX_CRAWL_DELAY_SECONDS = 60.0
DAILY_TARGET_LIMIT = 100
WEEKLY_TARGET_LIMIT = 300
BACKUP_MAX_TARGETS = 10
TEST_MAX_TARGETS = 5

# Confidence engine
OVERALL_CONFIDENCE_MINIMUM = 0.85

# OCR chain
OCR_ENGINE_TIMEOUT_SECONDS = _get_float_env("SCRAPER_OCR_TIMEOUT", 120.0)
OCR_LANGUAGES = ["en", "ja"]
TESSERACT_LANG = "jpn+eng"
PDF_TEXT_MIN_LENGTH = 50
PDF_RENDER_RESOLUTION = 300
OCR_HORIZON_DAYS = 183

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:132.0) Gecko/20100101 Firefox/132.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.6 Safari/605.1.15",
]

DEFAULT_HEADERS = {
    "User-Agent": USER_AGENTS[0],
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "ja,en-US;q=0.9,en;q=0.8",
    "Connection": "keep-alive",
}

R2_ACCOUNT_ID = os.environ.get("R2_ACCOUNT_ID")
R2_ACCESS_KEY_ID = os.environ.get("R2_ACCESS_KEY_ID")
R2_SECRET_ACCESS_KEY = os.environ.get("R2_SECRET_ACCESS_KEY")
R2_BUCKET_NAME = os.environ.get("R2_BUCKET_NAME", "tokyo-gigs-data")
R2_PREFIX = os.environ.get("R2_PREFIX", "scraper/")
USE_R2 = _get_bool_env("SCRAPER_USE_R2", True)

SPOTIFY_CLIENT_ID = os.environ.get("SPOTIFY_CLIENT_ID")
SPOTIFY_CLIENT_SECRET = os.environ.get("SPOTIFY_CLIENT_SECRET")
SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"
SPOTIFY_SEARCH_URL = "https://api.spotify.com/v1/search"
SPOTIFY_MARKET = "JP"
SPOTIFY_GENRE_MIN_CONFIDENCE = 75
SPOTIFY_POPULARITY_LEAD = 20
