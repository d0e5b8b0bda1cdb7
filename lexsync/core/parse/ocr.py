import io
import logging
import fitz  # PyMuPDF
import pytesseract
from PIL import Image
from lexsync.core.errors import ExtractionFailure

logger = logging.getLogger(__name__)

class OCRExtractor:
    """
    Renders PDF pages with PyMuPDF and runs Tesseract over them.
    Only the first `max_pages` pages are processed; scanned opinions are long.
    """

    def __init__(self, max_pages: int = 10, zoom: float = 2.0, language: str = "eng"):
        self.max_pages = max_pages
        self.zoom = zoom
        self.language = language

    def extract_text(self, data: bytes) -> str:
        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except (RuntimeError, ValueError) as e:
            raise ExtractionFailure(f"Cannot open PDF for OCR: {e}") from e

        text_parts = []
        with doc:
            matrix = fitz.Matrix(self.zoom, self.zoom)
            for idx, page in enumerate(doc):
                if idx >= self.max_pages:
                    logger.info(f"OCR stopped after {self.max_pages} pages")
                    break
                pixmap = page.get_pixmap(matrix=matrix)
                image = Image.open(io.BytesIO(pixmap.tobytes("png")))
                try:
                    page_text = pytesseract.image_to_string(image, lang=self.language)
                except pytesseract.TesseractNotFoundError as e:
                    raise ExtractionFailure("Tesseract is not installed") from e
                except pytesseract.TesseractError as e:
                    logger.error(f"OCR failed for page {idx + 1}: {e}")
                    continue
                if page_text.strip():
                    text_parts.append(page_text.strip())

        text = "\n\n".join(text_parts)
        logger.info(f"OCR completed. Extracted {len(text)} chars")
        return text
