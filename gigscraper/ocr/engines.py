"""
OCR engine adapters. Each engine takes raw image bytes and returns plain text,
raising OcrEngineFailure for anything that goes wrong inside the engine.

The heavy engines are imported on first use so a run that never reaches the
OCR chain does not pay for loading them.
"""

import io
import threading

try:
    from PIL import Image  # type: ignore
except ImportError:  # Optional; only needed for Tesseract
    Image = None

try:
    import pytesseract  # type: ignore
except ImportError:  # Optional; only needed for Tesseract
    pytesseract = None

from gigscraper import config
from gigscraper.errors import OcrEngineFailure


class OcrEngine:
    name = "base"

    def read(self, image_bytes):
        raise NotImplementedError

    def __repr__(self):
        return f"<{type(self).__name__} {self.name}>"


class EasyOcrEngine(OcrEngine):
    name = "easyocr"

    _reader = None
    _lock = threading.Lock()

    def _get_reader(self):
        with EasyOcrEngine._lock:
            if EasyOcrEngine._reader is None:
                try:
                    import easyocr  # type: ignore
                except ImportError:
                    raise OcrEngineFailure(self.name, "easyocr not installed")
                EasyOcrEngine._reader = easyocr.Reader(config.OCR_LANGUAGES, gpu=False, verbose=False)
            return EasyOcrEngine._reader

    def read(self, image_bytes):
        reader = self._get_reader()
        try:
            lines = reader.readtext(image_bytes, detail=0, paragraph=True)
        except Exception as e:
            raise OcrEngineFailure(self.name, str(e))
        return "\n".join(line for line in lines if line)


class TesseractEngine(OcrEngine):
    name = "tesseract"

    def read(self, image_bytes):
        if pytesseract is None or Image is None:
            raise OcrEngineFailure(self.name, "pytesseract not installed")
        try:
            with Image.open(io.BytesIO(image_bytes)) as image:
                return pytesseract.image_to_string(image, lang=config.TESSERACT_LANG)
        except Exception as e:
            raise OcrEngineFailure(self.name, str(e))


class PaddleOcrEngine(OcrEngine):
    name = "paddleocr"

    _ocr = None
    _lock = threading.Lock()

    def _get_ocr(self):
        with PaddleOcrEngine._lock:
            if PaddleOcrEngine._ocr is None:
                try:
                    from paddleocr import PaddleOCR  # type: ignore
                except ImportError:
                    raise OcrEngineFailure(self.name, "paddleocr not installed")
                PaddleOcrEngine._ocr = PaddleOCR(use_angle_cls=True, lang="japan", show_log=False)
            return PaddleOcrEngine._ocr

    def read(self, image_bytes):
        ocr = self._get_ocr()
        try:
            result = ocr.ocr(image_bytes, cls=True)
        except Exception as e:
            raise OcrEngineFailure(self.name, str(e))

        lines = []
        for page in result or []:
            for entry in page or []:
                # entry is [box, (text, confidence)]
                if len(entry) > 1 and entry[1]:
                    lines.append(entry[1][0])
        return "\n".join(lines)


def default_engines():
    engines = [EasyOcrEngine(), TesseractEngine(), PaddleOcrEngine()]
    return {engine.name: engine for engine in engines}
