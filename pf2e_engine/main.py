"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pf2e_engine.config import get_settings
from pf2e_engine.core.rules_config import apply_preset
from pf2e_engine.middleware.error_handler import setup_error_handlers
from pf2e_engine.services.catalog_loader import get_catalog_loader

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("pf2e_engine")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events - startup and shutdown."""
    # Startup: ruleset tables and catalog
    if not apply_preset(settings.RULESET_PRESET):
        logger.warning(f"Unknown ruleset preset '{settings.RULESET_PRESET}', using defaults")
    loader = get_catalog_loader()
    logger.info(f"Catalog ready: {len(loader.get_catalog())} entries from {loader.data_path}")

    yield  # Application runs here

    logger.info("Shutting down")


app = FastAPI(
    title="PF2e Character Engine",
    description="Character derivation and feat eligibility for Pathfinder 2e",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        settings.FRONTEND_URL,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",  # Vite
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_error_handlers(app, debug=settings.DEBUG)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "online", "service": "PF2e Character Engine", "version": "0.1.0"}


@app.get("/api/health")
async def health_check():
    """Detailed health check."""
    return {
        "status": "healthy",
        "catalog_entries": len(get_catalog_loader().get_catalog()),
        "ruleset_preset": settings.RULESET_PRESET,
        "debug_mode": settings.DEBUG,
    }


# Routes
from pf2e_engine.api.routes import characters, catalog  # noqa: E402
app.include_router(characters.router, prefix="/api/characters", tags=["characters"])
app.include_router(catalog.router, prefix="/api/catalog", tags=["catalog"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("pf2e_engine.main:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG)
