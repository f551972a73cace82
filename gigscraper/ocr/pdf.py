import io

import pdfplumber

from gigscraper import config
from gigscraper.ocr.text import parse_schedule_text


def extract_pdf_text(pdf_bytes):
    """Text layer of every page, joined with newlines."""
    with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
        return "\n".join(page.extract_text() or "" for page in pdf.pages)


def render_pdf_pages(pdf_bytes, resolution=None, max_pages=5):
    """Render PDF pages to PNG bytes for OCR."""
    resolution = resolution or config.PDF_RENDER_RESOLUTION
    images = []
    with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
        for page in pdf.pages[:max_pages]:
            rendered = page.to_image(resolution=resolution).original
            buffer = io.BytesIO()
            rendered.save(buffer, format="PNG")
            images.append(buffer.getvalue())
    return images


class PdfScheduleReader:
    """Direct text extraction first; page rendering plus OCR only when that yields too little."""

    def __init__(self, ocr_chain, log_func=None):
        self.ocr_chain = ocr_chain
        self.log = log_func or print

    def read(self, pdf_bytes, venue_name, source_url, reference=None):
        try:
            text = extract_pdf_text(pdf_bytes)
        except Exception as e:
            self.log(f"    PDF text extraction failed: {e}")
            text = ""

        if len(text.strip()) > config.PDF_TEXT_MIN_LENGTH:
            events = parse_schedule_text(text, venue_name, source_url, reference=reference, strategy="pdf_text")
            if events:
                return events
            self.log("    PDF text layer had no schedule lines, trying OCR")

        try:
            pages = render_pdf_pages(pdf_bytes)
        except Exception as e:
            self.log(f"    PDF render failed: {e}")
            return []
        if not pages:
            return []

        events, _ = self.ocr_chain.run(pages, venue_name, source_url, strategy="pdf_ocr", reference=reference)
        return events
