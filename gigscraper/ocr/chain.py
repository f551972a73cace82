"""
OCR fallback chain: learned per-venue preference first, then the venue default,
then the remaining engines in a fixed order. The first engine whose text parses
into at least one event wins and becomes the venue's preference.
"""

import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout

from gigscraper import config
from gigscraper.errors import OcrEngineFailure
from gigscraper.ocr.engines import default_engines
from gigscraper.ocr.text import parse_schedule_text

ENGINE_ORDER = ["easyocr", "tesseract", "paddleocr"]
DEFAULT_ENGINE = "easyocr"
VENUE_DEFAULT_ENGINES = {
    "Ruby Room": "tesseract",
    "Heaven's Door": "tesseract",
}


class OcrChain:
    def __init__(self, preferences, engines=None, timeout=None, log_func=None):
        """
        preferences: CacheStore mapping venue name -> engine name
        engines: dict of engine name -> OcrEngine (defaults to all three)
        """
        self.preferences = preferences
        self.engines = engines if engines is not None else default_engines()
        self.timeout = timeout if timeout is not None else config.OCR_ENGINE_TIMEOUT_SECONDS
        self.log = log_func or print
        self._lock = threading.Lock()
        self._executor = self._new_executor()

    def _new_executor(self):
        return ThreadPoolExecutor(max_workers=2, thread_name_prefix="ocr")

    def engine_order(self, venue_name):
        preferred = self.preferences.get(venue_name) if self.preferences is not None else None
        primary = preferred or VENUE_DEFAULT_ENGINES.get(venue_name, DEFAULT_ENGINE)
        order = [primary] + [name for name in ENGINE_ORDER if name != primary]
        return [name for name in order if name in self.engines]

    def record_success(self, venue_name, engine_name):
        if self.preferences is None:
            return
        if self.preferences.get(venue_name) != engine_name:
            self.preferences.set(venue_name, engine_name)

    def _abandon(self, executor):
        """A hung engine call keeps its worker; later calls get a fresh pool."""
        with self._lock:
            if self._executor is executor:
                self._executor = self._new_executor()
                executor.shutdown(wait=False)

    def _read(self, engine, image_bytes):
        with self._lock:
            executor = self._executor
            future = executor.submit(engine.read, image_bytes)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeout:
            future.cancel()
            self._abandon(executor)
            raise OcrEngineFailure(engine.name, f"timed out after {self.timeout:.0f}s")
        except OcrEngineFailure:
            raise
        except Exception as e:
            raise OcrEngineFailure(engine.name, str(e))

    def run(self, images, venue_name, source_url, strategy="ocr_image", reference=None):
        """
        OCR one or more images (e.g. the pages of a rendered PDF) with each engine
        in turn. Returns (events, engine_name); ([], None) when every engine fails.
        """
        if isinstance(images, (bytes, bytearray)):
            images = [images]

        for name in self.engine_order(venue_name):
            engine = self.engines[name]
            texts = []
            try:
                for image_bytes in images:
                    texts.append(self._read(engine, image_bytes) or "")
            except OcrEngineFailure as e:
                self.log(f"    OCR {e}")
                continue

            text = "\n".join(texts)
            if not text.strip():
                self.log(f"    OCR {name}: no text")
                continue

            events = parse_schedule_text(text, venue_name, source_url, reference=reference, strategy=strategy)
            if events:
                self.log(f"    OCR {name}: {len(events)} events")
                self.record_success(venue_name, name)
                return events, name
            self.log(f"    OCR {name}: text but no schedule lines")

        return [], None

    def close(self):
        with self._lock:
            self._executor.shutdown(wait=False)
