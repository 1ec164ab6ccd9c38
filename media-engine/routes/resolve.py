"""
Resolve Routes
==============
Public resolution endpoints: classify a URI, resolve one artwork record,
detect MIME types for a batch of artworks, and plan a client-side load.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

from client_loader import OptimizeOptions, plan_sources
from orchestrator import run_in_batches
from uri_classifier import candidate_urls, classify

logger = logging.getLogger("media-engine.routes.resolve")

router = APIRouter(prefix="/resolve", tags=["resolve"])

MAX_DETECT_BATCH = 100


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class ResolveArtworkRequest(BaseModel):
    record: dict[str, Any]
    chain: str = "ethereum"
    artwork_id: Optional[str] = None


class DetectMimeItem(BaseModel):
    id: str
    chain: str = "ethereum"
    image_url: Optional[str] = None
    animation_url: Optional[str] = None
    thumbnail_url: Optional[str] = None


class DetectMimeRequest(BaseModel):
    artworks: list[DetectMimeItem] = Field(max_length=MAX_DETECT_BATCH)


class LoaderPlanRequest(BaseModel):
    src: str
    mime: Optional[str] = None
    width: Optional[int] = Field(default=None, gt=0)
    height: Optional[int] = Field(default=None, gt=0)
    fit: Optional[str] = None
    quality: Optional[int] = Field(default=None, ge=1, le=100)
    format: Optional[str] = None


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/classify")
async def classify_uri(
    request: Request,
    uri: str = Query(..., description="Raw media URI as found on the record"),
):
    """Classify a URI and list the URLs the resolver would try, in order."""
    ref = classify(uri)
    if ref is None:
        raise HTTPException(status_code=400, detail="uri is blank")
    return {
        "reference": ref.model_dump(mode="json"),
        "content_addressed": ref.content_addressed,
        "candidates": candidate_urls(ref, request.state.config),
    }


@router.post("/artwork")
async def resolve_artwork(request: Request, body: ResolveArtworkRequest):
    orchestrator = request.state.orchestrator
    media_set = await orchestrator.resolve_artwork(body.record, body.chain, artwork_id=body.artwork_id)
    return media_set.model_dump(mode="json")


@router.post("/detect-mime")
async def detect_mime(request: Request, body: DetectMimeRequest):
    """Primary MIME type per artwork, batched like ingestion."""
    orchestrator = request.state.orchestrator
    config = request.state.config

    async def detect(item: DetectMimeItem) -> Optional[str]:
        record = item.model_dump(exclude={"chain"}, exclude_none=True)
        return await orchestrator.detect_mime(record, item.chain)

    outcomes = await run_in_batches(body.artworks, detect, config.artwork_concurrency, config.batch_delay_s)

    results = []
    for item, outcome in zip(body.artworks, outcomes):
        if isinstance(outcome, Exception):
            logger.error("MIME detection failed for %s: %s", item.id, outcome)
            results.append({"id": item.id, "mime": None, "error": str(outcome)})
        else:
            results.append({"id": item.id, "mime": outcome})

    detected = sum(1 for r in results if r["mime"])
    logger.info("Detected MIME for %d/%d artworks", detected, len(results))
    return {"results": results, "detected": detected, "total": len(results)}


@router.post("/loader-plan")
async def loader_plan(request: Request, body: LoaderPlanRequest):
    """The cascade a browser should walk for ``src``."""
    options = OptimizeOptions(
        width=body.width,
        height=body.height,
        fit=body.fit,
        quality=body.quality,
        format=body.format,
    )
    plan = plan_sources(body.src, body.mime, request.state.config, options)
    return plan.model_dump(mode="json")
