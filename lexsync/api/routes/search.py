import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Request

from lexsync.models.search import DateRange, SearchFilters, SearchResponse
from lexsync.storage.base import SearchIndex

router = APIRouter()
logger = logging.getLogger(__name__)

def get_search_index(request: Request) -> SearchIndex:
    return request.app.state.services.search_index

@router.get("/search", response_model=SearchResponse, summary="Ranked full-text search with facets")
def search_documents(
    q: str = "",
    file_type: Optional[List[str]] = Query(None),
    court: Optional[List[str]] = Query(None),
    concept: Optional[List[str]] = Query(None),
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    size: int = Query(10, ge=1, le=100),
    index: SearchIndex = Depends(get_search_index)
):
    """Never fails on index outages: the response comes back empty with `degraded` set."""
    filters = SearchFilters(
        file_type=file_type,
        courts=court,
        legal_concepts=concept,
        date_range=DateRange(from_=date_from, to=date_to) if (date_from or date_to) else None
    )
    return index.search(q, filters, size)

@router.get("/suggest", summary="Title completions for a prefix")
def suggest(prefix: str, index: SearchIndex = Depends(get_search_index)):
    return {"suggestions": index.suggest(prefix)}
