"""
Exception types shared by the fetch, extraction, OCR and persistence layers.

Per-target exceptions never escape the orchestrator's worker boundary; they are
converted into a TargetResult whose ``failure`` field is the exception's ``kind``.
"""


class ScrapeError(Exception):
    kind = "error"


class FetchError(ScrapeError):
    def __init__(self, message, url=None, status=None):
        super().__init__(message)
        self.url = url
        self.status = status


class FetchTimeout(FetchError):
    kind = "timeout"


class FetchBlocked(FetchError):
    """HTTP 403/429 or an anti-bot challenge page that never cleared."""
    kind = "blocked"


class FetchNetworkError(FetchError):
    kind = "network"


class FetchHttpError(FetchError):
    kind = "http"


class ParseFailure(ScrapeError):
    """A page loaded fine but nothing extractable was found in it."""
    kind = "parse"


class OcrEngineFailure(ScrapeError):
    """One OCR engine failed; the chain moves on to the next engine."""
    kind = "ocr"

    def __init__(self, engine, message):
        super().__init__(f"{engine}: {message}")
        self.engine = engine


class ValidationRejected(ScrapeError):
    kind = "rejected"

    def __init__(self, assessment):
        super().__init__(f"confidence {assessment.overall:.3f} ({assessment.status.value})")
        self.assessment = assessment


class PersistenceConflict(ScrapeError):
    kind = "conflict"


class TargetTimeout(ScrapeError):
    """The per-target time budget ran out between pipeline stages."""
    kind = "timeout"


class ConfigurationError(ScrapeError):
    kind = "config"
