from abc import ABC, abstractmethod

PLACEHOLDER_MARKER = "COURT DOCUMENT PLACEHOLDER"

class ContentClassifier(ABC):
    """Decides from a bounded byte prefix whether a blob is a legacy placeholder artifact."""

    @abstractmethod
    def is_placeholder(self, prefix: bytes) -> bool:
        pass

class MarkerClassifier(ContentClassifier):
    def __init__(self, marker: str = PLACEHOLDER_MARKER, sniff_bytes: int = 512):
        self.marker = marker.encode("utf-8")
        self.sniff_bytes = sniff_bytes

    def is_placeholder(self, prefix: bytes) -> bool:
        return bool(self.marker) and self.marker in prefix[:self.sniff_bytes]
