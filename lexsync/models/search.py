from pydantic import BaseModel, Field, ConfigDict
from lexsync.models.document import LegalEntity, CaseCitation

class DateRange(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: str | None = Field(default=None, alias="from")
    to: str | None = None

class SearchFilters(BaseModel):
    file_type: list[str] | None = None
    courts: list[str] | None = None
    date_range: DateRange | None = None
    legal_concepts: list[str] | None = None

class SearchResult(BaseModel):
    id: str
    title: str
    summary: str = ""
    file_type: str = ""
    created_at: str | None = None
    legal_entities: list[LegalEntity] = Field(default_factory=list)
    case_citations: list[CaseCitation] = Field(default_factory=list)
    legal_concepts: list[str] = Field(default_factory=list)
    ai_confidence: float = 0.5
    highlighted_text: str = ""
    score: float = 0.0

class FacetBucket(BaseModel):
    key: str
    doc_count: int

class SearchFacets(BaseModel):
    file_types: list[FacetBucket] = Field(default_factory=list)
    courts: list[FacetBucket] = Field(default_factory=list)
    date_ranges: list[FacetBucket] = Field(default_factory=list)   # keyed by year

class SearchResponse(BaseModel):
    results: list[SearchResult] = Field(default_factory=list)
    facets: SearchFacets = Field(default_factory=SearchFacets)
    total: int = 0
    degraded: bool = False                  # backing index unreachable, results are empty
