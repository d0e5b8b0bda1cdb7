import logging
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from lexsync.config.settings import get_settings
from lexsync.core.container import Services, build_services

logger = logging.getLogger(__name__)

def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

def create_app(services: Optional[Services] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # --- Startup: build stores and pipelines once ---
        if services is None:
            settings = get_settings()
            configure_logging(settings.log_level)
            logger.info("Initializing LexSync stores and pipelines...")
            app.state.services = build_services(settings)
        else:
            app.state.services = services

        # In-memory run registry for background catalog ingestion
        app.state.runs = {}
        app.state.cancel_events = {}

        logger.info("Initialization complete. All systems ready.")
        yield

        # --- Shutdown: stop any running ingestion at the next batch boundary ---
        for event in app.state.cancel_events.values():
            event.set()
        logger.info("Shutting down LexSync API...")

    app = FastAPI(
        title="LexSync API",
        description="Legal document ingestion and cross-store reconciliation",
        version="1.0.0",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "ok"}

    from lexsync.api.routes import catalog, ingest, sync, search, documents

    app.include_router(catalog.router, prefix="/api", tags=["Catalog"])
    app.include_router(ingest.router, prefix="/api", tags=["Ingestion"])
    app.include_router(sync.router, prefix="/api", tags=["Reconciliation"])
    app.include_router(search.router, prefix="/api", tags=["Search"])
    app.include_router(documents.router, prefix="/api", tags=["Documents"])
    return app

app = create_app()
