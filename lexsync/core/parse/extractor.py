import logging
import re
from typing import Optional
from lexsync.config.settings import ExtractionConfig
from lexsync.core.errors import ExtractionFailure
from lexsync.core.parse.ocr import OCRExtractor
from lexsync.core.parse.pdf_parser import PDFParser
from lexsync.models.extraction import ExtractionResult

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")

def meaningful_length(text: str) -> int:
    """Number of alphanumeric characters; whitespace and punctuation do not count."""
    return len(_NON_ALNUM.sub("", text or ""))

class ExtractionService:
    """
    Text layer first, OCR when the text layer is too thin, empty text when both fail.
    Never raises for content problems: extraction is a soft-fail stage.
    """

    def __init__(self, config: ExtractionConfig,
                 parser: Optional[PDFParser] = None,
                 ocr: Optional[OCRExtractor] = None):
        self.config = config
        self.parser = parser or PDFParser(header_footer_threshold=config.header_footer_threshold)
        self.ocr = ocr or OCRExtractor(
            max_pages=config.ocr_max_pages,
            zoom=config.ocr_zoom,
            language=config.ocr_language
        )

    def extract(self, data: bytes, content_type: str = "application/pdf", file_name: str = "") -> ExtractionResult:
        if content_type.startswith("text/") or file_name.lower().endswith(".txt"):
            text = data.decode("utf-8", errors="replace").strip()
            return ExtractionResult(text=text, method="plain", meaningful_chars=meaningful_length(text))

        errors = []
        text, page_count = "", 0
        try:
            text, page_count = self.parser.extract_text(data)
        except ExtractionFailure as e:
            logger.warning(f"Text layer extraction failed for {file_name or 'document'}: {e}")
            errors.append(str(e))

        meaningful = meaningful_length(text)
        if meaningful >= self.config.min_meaningful_chars:
            return ExtractionResult(text=text, method="text", page_count=page_count, meaningful_chars=meaningful)

        if not self.config.ocr_enabled:
            logger.info(f"Only {meaningful} meaningful chars in {file_name or 'document'} and OCR is disabled")
            return ExtractionResult(text="", method="none", page_count=page_count, errors=errors)

        logger.info(f"Only {meaningful} meaningful chars in {file_name or 'document'}, falling back to OCR")
        try:
            ocr_text = self.ocr.extract_text(data).strip()
        except ExtractionFailure as e:
            logger.warning(f"OCR failed for {file_name or 'document'}: {e}")
            errors.append(str(e))
            ocr_text = ""

        if not ocr_text:
            # Soft-fail: the document is still stored and indexed, just without text
            return ExtractionResult(text="", method="none", page_count=page_count, errors=errors)
        return ExtractionResult(
            text=ocr_text,
            method="ocr",
            page_count=page_count,
            meaningful_chars=meaningful_length(ocr_text),
            errors=errors
        )
