from pydantic import BaseModel, Field

class ParsedBlock(BaseModel):
    text: str
    page_number: int
    block_type: str                  # "text" | "table"
    bounding_box: list[float] | None = None # [x0, y0, x1, y1]

class ExtractionResult(BaseModel):
    text: str = ""
    method: str = "none"             # "text" | "ocr" | "plain" | "none"
    page_count: int = 0
    meaningful_chars: int = 0        # alphanumeric characters in `text`
    errors: list[str] = Field(default_factory=list)
