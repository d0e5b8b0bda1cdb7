import io
import logging
import fitz  # PyMuPDF
import pdfplumber
import pandas as pd
from typing import List, Dict, Any, Tuple
from collections import Counter
from lexsync.core.errors import ExtractionFailure
from lexsync.models.extraction import ParsedBlock

logger = logging.getLogger(__name__)

class PDFParser:
    """
    Two-pass text-layer extractor:
    Pass 1 (PyMuPDF): Extract text blocks and detect repetitive headers/footers (court captions, page stamps).
    Pass 2 (pdfplumber): Detect tables and extract them as markdown.
    Works on in-memory bytes, since documents come from the catalog or the blob store, not from disk.
    """

    def __init__(self, header_footer_threshold: int = 3):
        self.header_footer_threshold = header_footer_threshold

    def parse(self, data: bytes) -> Tuple[List[ParsedBlock], int]:
        """
        Returns the ordered blocks and the page count.
        Raises ExtractionFailure when the bytes are not a readable PDF.
        """
        try:
            raw_blocks, page_count = self._extract_raw_blocks(data)
        except (RuntimeError, ValueError) as e:
            # fitz raises RuntimeError subclasses (FileDataError) for corrupt input
            raise ExtractionFailure(f"Unreadable PDF: {e}") from e

        suppress_hashes = self._identify_repetitive_blocks(raw_blocks)

        try:
            tables_per_page = self._extract_tables(data)
        except Exception as e:
            # Table detection is best effort; the text layer alone is still useful
            logger.warning(f"Table extraction failed, continuing with text blocks only: {e}")
            tables_per_page = {}

        return self._merge_blocks(raw_blocks, tables_per_page, suppress_hashes), page_count

    def extract_text(self, data: bytes) -> Tuple[str, int]:
        blocks, page_count = self.parse(data)
        pages: Dict[int, List[str]] = {}
        for b in blocks:
            pages.setdefault(b.page_number, []).append(b.text)
        text = "\n\n".join("\n".join(parts) for _, parts in sorted(pages.items()))
        return text.strip(), page_count

    def _extract_raw_blocks(self, data: bytes) -> Tuple[List[Dict[str, Any]], int]:
        blocks = []
        with fitz.open(stream=data, filetype="pdf") as doc:
            page_count = doc.page_count
            for page_num, page in enumerate(doc):
                page_dict = page.get_text("dict")
                for b in page_dict["blocks"]:
                    if b["type"] != 0:  # images
                        continue
                    block_text = ""
                    for line in b["lines"]:
                        for span in line["spans"]:
                            block_text += span["text"]
                        block_text += " "
                    if block_text.strip():
                        blocks.append({
                            "text": block_text.strip(),
                            "page_number": page_num + 1,
                            "bbox": list(b["bbox"]),
                        })
        return blocks, page_count

    def _identify_repetitive_blocks(self, blocks: List[Dict[str, Any]]) -> set:
        """
        Detects text that appears at the same Y-position on multiple pages.
        """
        pos_text_counts = Counter()
        for b in blocks:
            pos_hash = (round(b["bbox"][1], 0), b["text"].strip())
            pos_text_counts[pos_hash] += 1

        return {pos_hash for pos_hash, count in pos_text_counts.items()
                if count >= self.header_footer_threshold}

    def _extract_tables(self, data: bytes) -> Dict[int, List[Dict[str, Any]]]:
        tables_per_page = {}
        with pdfplumber.open(io.BytesIO(data)) as pdf:
            for i, page in enumerate(pdf.pages):
                page_tables = []
                for table in page.find_tables():
                    table_data = table.extract()
                    if table_data and len(table_data) > 1:
                        df = pd.DataFrame(table_data[1:], columns=table_data[0])
                        page_tables.append({
                            "text": df.to_markdown(index=False),
                            "bbox": list(table.bbox),
                        })
                tables_per_page[i + 1] = page_tables
        return tables_per_page

    def _merge_blocks(self,
                      raw_blocks: List[Dict[str, Any]],
                      tables_per_page: Dict[int, List[Dict[str, Any]]],
                      suppress_hashes: set) -> List[ParsedBlock]:
        final_blocks = []
        blocks_by_page: Dict[int, List[Dict[str, Any]]] = {}
        for b in raw_blocks:
            blocks_by_page.setdefault(b["page_number"], []).append(b)

        for p in sorted(set(blocks_by_page) | set(tables_per_page)):
            page_tables = tables_per_page.get(p, [])
            for t in page_tables:
                final_blocks.append(ParsedBlock(text=t["text"], page_number=p, block_type="table", bounding_box=t["bbox"]))

            for b in blocks_by_page.get(p, []):
                if (round(b["bbox"][1], 0), b["text"].strip()) in suppress_hashes:
                    continue
                if any(self._is_overlap(b["bbox"], t["bbox"]) for t in page_tables):
                    continue
                final_blocks.append(ParsedBlock(text=b["text"], page_number=p, block_type="text", bounding_box=b["bbox"]))

        # Sort by page then Y-position
        final_blocks.sort(key=lambda x: (x.page_number, x.bounding_box[1] if x.bounding_box else 0))
        return final_blocks

    def _is_overlap(self, bbox1: List[float], bbox2: List[float]) -> bool:
        # fitz and pdfplumber both use [x0, top, x1, bottom]
        return not (bbox1[2] < bbox2[0] or
                    bbox1[0] > bbox2[2] or
                    bbox1[3] < bbox2[1] or
                    bbox1[1] > bbox2[3])
