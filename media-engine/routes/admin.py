"""
Admin Routes
=============
Internal re-ingestion endpoints for the media engine.

Protected by X-ADMIN-KEY header. Set ADMIN_API_KEY env var in Cloud Run.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel, Field

from errors import ArtworkNotDisplayableError
from orchestrator import artwork_identity, run_in_batches

logger = logging.getLogger("media-engine.admin")

ADMIN_API_KEY = os.environ.get("ADMIN_API_KEY", "")

MAX_MINT_DATE_BATCH = 200


async def require_admin_key(x_admin_key: str = Header(alias="X-ADMIN-KEY", default="")):
    """Verify the admin API key is present and correct."""
    if not ADMIN_API_KEY or len(ADMIN_API_KEY) < 16:
        raise HTTPException(
            status_code=503,
            detail="Admin endpoints disabled: ADMIN_API_KEY not configured.",
        )
    if not x_admin_key or x_admin_key != ADMIN_API_KEY:
        raise HTTPException(
            status_code=403,
            detail="Forbidden: invalid or missing X-ADMIN-KEY header.",
        )


router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin_key)])


class RefetchRequest(BaseModel):
    record: dict[str, Any]
    chain: str = "ethereum"
    uid: Optional[str] = None


class MintDateEntry(BaseModel):
    contract_address: Optional[str] = None
    token_id: Optional[str] = None
    chain: str = "ethereum"
    raw: list[Any] = Field(default_factory=list)


class MintDateRequest(BaseModel):
    entries: list[MintDateEntry] = Field(max_length=MAX_MINT_DATE_BATCH)


@router.post("/artworks/refetch")
async def refetch_artwork(request: Request, body: RefetchRequest):
    """Re-resolve one record and persist it if anything is displayable."""
    uid = body.uid or artwork_identity(body.record, body.chain)
    media_set = await request.state.orchestrator.resolve_artwork(body.record, body.chain, artwork_id=uid)

    try:
        media_set.require_displayable()
    except ArtworkNotDisplayableError as exc:
        logger.warning("Refetch of %s produced nothing displayable", uid)
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    saved = await request.state.store.save(uid, media_set)
    return {"uid": uid, "saved": saved, "artwork": media_set.model_dump(mode="json")}


@router.post("/mint-dates")
async def reconcile_mint_dates(request: Request, body: MintDateRequest):
    """Reconcile mint dates for a list of tokens."""
    reconciler = request.state.orchestrator.reconciler
    config = request.state.config

    async def reconcile(entry: MintDateEntry):
        return await reconciler.reconcile(entry.contract_address, entry.token_id, entry.chain, entry.raw)

    outcomes = await run_in_batches(body.entries, reconcile, config.artwork_concurrency, config.batch_delay_s)

    results = []
    for entry, outcome in zip(body.entries, outcomes):
        if isinstance(outcome, Exception):
            logger.error("Mint date reconciliation failed for %s/%s: %s", entry.contract_address, entry.token_id, outcome)
            outcome = None
        results.append({
            "contract_address": entry.contract_address,
            "token_id": entry.token_id,
            "chain": entry.chain,
            "mint_date": outcome.isoformat() if outcome else None,
        })

    found = sum(1 for r in results if r["mint_date"])
    return {"results": results, "found": found, "total": len(results)}
