from typing import List, Tuple
import tiktoken
from lexsync.config.settings import ChunkingConfig
from lexsync.models.document import DocumentChunk

class Chunker:
    """
    Splits extracted text into overlapping token windows for the nested `chunks` field of the index.
    Paragraph breaks ("\n\n" between pages) are used to attribute a page number to each chunk.
    """

    def __init__(self, config: ChunkingConfig):
        self.config = config
        self.encoder = tiktoken.get_encoding(config.encoding)

    def chunk_text(self, text: str) -> List[DocumentChunk]:
        if not text or not text.strip():
            return []

        tokens = self.encoder.encode(text)
        page_offsets = self._page_offsets(text)
        chunks = []
        for index, (start, end) in enumerate(self._get_token_ranges(len(tokens), self.config.chunk_size, self.config.chunk_overlap)):
            if index >= self.config.max_chunks:
                break
            chunk_text = self.encoder.decode(tokens[start:end])
            char_start = len(self.encoder.decode(tokens[:start]))
            chunks.append(DocumentChunk(
                text=chunk_text,
                chunk_index=index,
                token_count=end - start,
                page_number=self._page_for_offset(page_offsets, char_start)
            ))
        return chunks

    def _get_token_ranges(self, total_tokens: int, size: int, overlap: int) -> List[Tuple[int, int]]:
        """Helper to compute token index ranges (start, end) without string matching."""
        ranges = []
        s = 0
        while s < total_tokens:
            e = min(s + size, total_tokens)
            ranges.append((s, e))
            if e >= total_tokens:
                break
            s = max(e - overlap, s + 1)
        return ranges

    @staticmethod
    def _page_offsets(text: str) -> List[int]:
        offsets = [0]
        pos = text.find("\n\n")
        while pos != -1:
            offsets.append(pos + 2)
            pos = text.find("\n\n", pos + 2)
        return offsets

    @staticmethod
    def _page_for_offset(offsets: List[int], char_start: int) -> int:
        page = 1
        for i, offset in enumerate(offsets):
            if offset <= char_start:
                page = i + 1
            else:
                break
        return page
