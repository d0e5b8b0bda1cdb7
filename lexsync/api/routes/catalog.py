import logging
from typing import List
from fastapi import APIRouter, Depends, HTTPException, Request

from lexsync.core.catalog.courtlistener import CourtListenerConnector
from lexsync.core.errors import CatalogError, ConfigurationError
from lexsync.models.catalog import CatalogFilters, CatalogItem, Court

router = APIRouter()
logger = logging.getLogger(__name__)

def get_catalog(request: Request) -> CourtListenerConnector:
    return request.app.state.services.catalog

@router.post("/catalog/search", response_model=List[CatalogItem], summary="Search the court opinion catalog")
def search_catalog(filters: CatalogFilters, catalog: CourtListenerConnector = Depends(get_catalog)):
    """Only items with a downloadable PDF artifact are returned."""
    try:
        return catalog.search(filters)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except CatalogError as e:
        logger.error(f"Catalog search failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))

@router.get("/catalog/courts", response_model=List[Court], summary="List courts known to the catalog")
def list_courts(catalog: CourtListenerConnector = Depends(get_catalog)):
    try:
        return catalog.list_courts()
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except CatalogError as e:
        raise HTTPException(status_code=502, detail=str(e))
