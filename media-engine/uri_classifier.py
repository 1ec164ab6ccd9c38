"""
URI Classifier — turn raw indexer URIs into typed media references.

Indexers hand us ``ipfs://`` and ``ipfs:/`` URIs, ``ar://`` and bare
Arweave transaction ids, ``onchfs://`` (fxhash), bare CIDs, plain HTTP(S)
and ``data:`` URIs. ``classify`` maps each to a ``MediaReference`` and
never fails: anything unrecognised passes through as HTTP.

Usage:
    ref = classify("ipfs://bafybei.../thumb.png")
    urls = candidate_urls(ref, config)
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

from errors import ClassificationAmbiguous
from settings import EngineConfig

logger = logging.getLogger("media-engine.classifier")

# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

CID_V0 = r"Qm[1-9A-HJ-NP-Za-km-z]{44}"
CID_V1 = r"bafy[a-z2-7]{50,}"

_BARE_CID = re.compile(rf"^({CID_V0}|{CID_V1})(?=$|[/?#])")
_ARWEAVE_TX = re.compile(r"^[A-Za-z0-9_-]{43}$")
_CID_SEGMENT = re.compile(r"^[^/?#]+")
_LEADING_JUNK = re.compile(r"^[@\s]+")
# https://<host>/ipfs/<cid><rest>, the shape every path-style gateway uses
_GATEWAY_URL = re.compile(rf"^https?://[^/]+/ipfs/({CID_V0}|{CID_V1})(.*)$")


class MediaScheme(str, Enum):
    IPFS = "ipfs"
    ARWEAVE = "arweave"
    ONCHFS = "onchfs"
    HTTP = "http"
    DATA = "data"


CONTENT_ADDRESSED = frozenset({MediaScheme.IPFS, MediaScheme.ARWEAVE, MediaScheme.ONCHFS})


class MediaReference(BaseModel):
    """A classified URI. ``path`` keeps everything after the CID verbatim."""

    model_config = ConfigDict(frozen=True)

    scheme: MediaScheme
    cid: Optional[str] = None
    path: Optional[str] = None
    raw: str

    @property
    def content_addressed(self) -> bool:
        return self.scheme in CONTENT_ADDRESSED


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def _clean(uri: str) -> str:
    # Some indexers prepend '@' (sometimes repeated) to URIs copied out of
    # social posts. The result must be a fixed point of this function.
    return _LEADING_JUNK.sub("", uri).strip()


def _split_cid(body: str) -> tuple[str, Optional[str]]:
    match = _CID_SEGMENT.match(body)
    if not match:
        raise ClassificationAmbiguous(f"No CID segment in: {body!r}")
    cid = match.group(0)
    rest = body[len(cid):]
    return cid, rest or None


def _classify_strict(cleaned: str) -> MediaReference:
    lowered = cleaned.lower()

    if lowered.startswith(("http://", "https://")):
        return MediaReference(scheme=MediaScheme.HTTP, raw=cleaned)
    if lowered.startswith("data:"):
        return MediaReference(scheme=MediaScheme.DATA, raw=cleaned)

    if lowered.startswith("onchfs://"):
        target = cleaned[len("onchfs://"):]
        if not target:
            raise ClassificationAmbiguous(f"Empty onchfs target: {cleaned!r}")
        return MediaReference(scheme=MediaScheme.ONCHFS, cid=target, raw=cleaned)

    if lowered.startswith("ar://"):
        target = cleaned[len("ar://"):]
        if not target:
            raise ClassificationAmbiguous(f"Empty Arweave target: {cleaned!r}")
        return MediaReference(scheme=MediaScheme.ARWEAVE, cid=target, raw=cleaned)
    if _ARWEAVE_TX.match(cleaned):
        return MediaReference(scheme=MediaScheme.ARWEAVE, cid=cleaned, raw=cleaned)

    if lowered.startswith("ipfs:"):
        body = re.sub(r"^ipfs:/{1,2}", "", cleaned, flags=re.IGNORECASE)
        # ipfs://ipfs/<cid> shows up in older OpenSea metadata
        if body.lower().startswith("ipfs/"):
            body = body[len("ipfs/"):]
        cid, path = _split_cid(body)
        return MediaReference(scheme=MediaScheme.IPFS, cid=cid, path=path, raw=cleaned)

    if _BARE_CID.match(cleaned):
        cid, path = _split_cid(cleaned)
        return MediaReference(scheme=MediaScheme.IPFS, cid=cid, path=path, raw=cleaned)

    raise ClassificationAmbiguous(f"Unrecognised URI form: {cleaned!r}")


def classify(uri: Optional[str]) -> Optional[MediaReference]:
    """Classify a raw URI. Returns None only for blank input."""
    if not uri or not isinstance(uri, str):
        return None
    cleaned = _clean(uri)
    if not cleaned:
        return None

    try:
        return _classify_strict(cleaned)
    except ClassificationAmbiguous as exc:
        logger.debug("Classification passthrough: %s", exc)
        return MediaReference(scheme=MediaScheme.HTTP, raw=cleaned)


def gateway_reference(url: Optional[str]) -> Optional[MediaReference]:
    """Recognise an HTTP gateway URL (``https://host/ipfs/<cid>/...``) as IPFS.

    Classification keeps HTTP URLs terminal; this is used where a stale
    gateway URL should still get the alternate-gateway cascade.
    """
    ref = classify(url)
    if ref is None:
        return None
    if ref.scheme is not MediaScheme.HTTP:
        return ref
    match = _GATEWAY_URL.match(ref.raw)
    if not match:
        return ref
    return MediaReference(
        scheme=MediaScheme.IPFS,
        cid=match.group(1),
        path=match.group(2) or None,
        raw=ref.raw,
    )


# ---------------------------------------------------------------------------
# Gateway rewriting
# ---------------------------------------------------------------------------


def gateway_url(base: str, ref: MediaReference) -> str:
    """``base + cid + path``; the path is never truncated."""
    return f"{base}{ref.cid}{ref.path or ''}"


def candidate_urls(ref: MediaReference, config: EngineConfig) -> list[str]:
    """Ordered fetchable URLs for a reference."""
    if not ref.content_addressed:
        return [ref.raw]
    return [gateway_url(base, ref) for base in config.gateways_for(ref.scheme.value)]
