from gigscraper.classifier import ComplexityClassifier, analyze_html_complexity
from gigscraper.errors import FetchTimeout
from gigscraper.models import ComplexityTier, FetchResult
from gigscraper.pipeline.store import CacheStore

SCRIPTS = "<script></script>" * 11


class FakeHttp:
    def __init__(self, html=None, error=None):
        self.html = html
        self.error = error
        self.calls = []

    def fetch(self, url, **kwargs):
        self.calls.append(url)
        if self.error:
            raise self.error
        return FetchResult(url=url, html=self.html)


def test_tiers_follow_score():
    assert analyze_html_complexity("<html><body>Schedule soon</body></html>") == ComplexityTier.SIMPLE
    assert analyze_html_complexity("<iframe src='x'></iframe>") == ComplexityTier.MODERATE
    assert analyze_html_complexity("<iframe></iframe>" + SCRIPTS + "react") == ComplexityTier.COMPLEX
    html = "<iframe></iframe>" + SCRIPTS + "react <noscript>enable javascript</noscript> calendar"
    assert analyze_html_complexity(html) == ComplexityTier.VERY_COMPLEX


def test_analysis_is_deterministic():
    html = "<iframe></iframe>" + SCRIPTS
    assert analyze_html_complexity(html) == analyze_html_complexity(html)
    assert analyze_html_complexity(None) == ComplexityTier.UNKNOWN


def test_classify_caches_result(tmp_path):
    cache = CacheStore(tmp_path / "complexity.json")
    http = FakeHttp(html="<p>plain</p>")
    classifier = ComplexityClassifier(http, cache, log_func=lambda *_: None)

    assert classifier.classify("https://venue.example/schedule") == ComplexityTier.SIMPLE
    assert classifier.classify("https://venue.example/schedule") == ComplexityTier.SIMPLE
    assert len(http.calls) == 1
    assert CacheStore(tmp_path / "complexity.json").get("https://venue.example/schedule") == "simple"


def test_fetch_failure_is_unknown_and_not_cached(tmp_path):
    cache = CacheStore(tmp_path / "complexity.json")
    http = FakeHttp(error=FetchTimeout("timed out"))
    classifier = ComplexityClassifier(http, cache, log_func=lambda *_: None)

    assert classifier.classify("https://slow.example/") == ComplexityTier.UNKNOWN
    assert cache.get("https://slow.example/") is None


def test_invalidate_forces_refetch(tmp_path):
    cache = CacheStore(tmp_path / "complexity.json")
    http = FakeHttp(html="<p>plain</p>")
    classifier = ComplexityClassifier(http, cache, log_func=lambda *_: None)
    classifier.classify("https://venue.example/")
    classifier.invalidate("https://venue.example/")
    classifier.classify("https://venue.example/")
    assert len(http.calls) == 2
