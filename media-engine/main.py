"""
NFT Media Engine - FastAPI media and metadata resolution service

Turns heterogeneous NFT indexer records (Ethereum/OpenSea-style and
Tezos/objkt-style) into displayable artwork records: resolved media URLs
through IPFS/Arweave/onchfs gateway fallback, whitelisted MIME types,
pixel dimensions and a reconciled mint date.
"""

import os
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from google.cloud import firestore

from artwork_store import artwork_store
from orchestrator import ResolutionOrchestrator
from settings import EngineConfig
from routes.resolve import router as resolve_router
from routes.admin import router as admin_router

logger = logging.getLogger("media-engine")
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

GCP_PROJECT = os.environ.get("GCP_PROJECT", "")
FIRESTORE_DATABASE = os.environ.get("FIRESTORE_DATABASE", "(default)")

ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.environ.get(
        "ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:5173"
    ).split(",")
    if origin.strip()
]

# ---------------------------------------------------------------------------
# Application lifecycle
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the engine on startup, close its sessions on shutdown."""
    config = EngineConfig.from_env()
    app.state.config = config
    app.state.orchestrator = ResolutionOrchestrator(config)
    app.state.store = artwork_store

    db = None
    if GCP_PROJECT:
        logger.info("Initialising Firestore client for project=%s", GCP_PROJECT)
        db = firestore.AsyncClient(project=GCP_PROJECT, database=FIRESTORE_DATABASE)
        artwork_store.set_db(db)
    else:
        logger.warning("GCP_PROJECT not set; resolved artworks will not be persisted")

    logger.info(
        "Media engine ready. ipfs_gateways=%d concurrency=%d opensea=%s",
        len(config.gateways.ipfs), config.artwork_concurrency, bool(config.opensea_api_key),
    )
    yield

    logger.info("Shutting down media engine")
    await app.state.orchestrator.close()
    if db:
        db.close()


app = FastAPI(
    title="NFT Media Engine",
    description=(
        "Media and metadata resolution for NFT artworks: URI classification, "
        "multi-gateway fetch with fallback, MIME sniffing, header-based "
        "dimension extraction and mint-date reconciliation."
    ),
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def attach_engine(request: Request, call_next):
    """Inject the shared engine components into request state for route handlers."""
    request.state.config = getattr(request.app.state, "config", None)
    request.state.orchestrator = getattr(request.app.state, "orchestrator", None)
    request.state.store = getattr(request.app.state, "store", artwork_store)
    response: Response = await call_next(request)
    return response


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

app.include_router(resolve_router)
app.include_router(admin_router)


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "service": "media-engine",
        "version": VERSION,
        "persistence": artwork_store.connected,
    }
