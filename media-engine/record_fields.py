"""
Record fields — read one concern at a time out of a raw indexer record.

Indexer records are loose key-bags whose keys differ between Ethereum
(OpenSea-style) and Tezos (objkt-style) sources. Each function here takes
the bag and returns a value or None; the precedence between keys is kept
in the ``*_KEYS`` tuples below rather than in code order.

Usage:
    url = image_url(record, "tezos")
    attrs = normalize_attributes(record.get("attributes"))
"""

from __future__ import annotations

import re
from typing import Any, Mapping, Optional

# ---------------------------------------------------------------------------
# Priority lists
# ---------------------------------------------------------------------------

TEZOS_IMAGE_KEYS = ("display_uri", "artifact_uri", "image_url", "imageUrl")
EVM_IMAGE_KEYS = ("image_url", "imageUrl", "display_image_url", "image")

TEZOS_ANIMATION_KEYS = ("animation_url", "animationUrl")
EVM_ANIMATION_KEYS = ("animation_url", "animationUrl", "display_animation_url")

TEZOS_THUMBNAIL_KEYS = ("thumbnail_uri", "thumbnailUrl", "display_uri")
EVM_THUMBNAIL_KEYS = ("thumbnail_url", "thumbnailUrl", "image_thumbnail_url")

METADATA_URL_KEYS = ("metadata_url", "metadataUrl", "token_uri", "tokenUri")
GENERATOR_KEYS = ("generator_url", "generatorUrl", "animation_url")

DECLARED_MIME_KEYS = ("mime", "mime_type", "mimeType")
SUPPLY_KEYS = ("supply", "total_supply", "edition_size")
TITLE_KEYS = ("name", "title")
DESCRIPTION_KEYS = ("description",)
CONTRACT_KEYS = ("contract_address", "contractAddress", "contract", "fa_contract")
TOKEN_ID_KEYS = ("token_id", "tokenId", "identifier")
RAW_DATE_KEYS = (
    "mint_date",
    "mintDate",
    "minted_at",
    "mintedAt",
    "timestamp",
    "created_date",
    "created_at",
    "createdAt",
)

STRUCTURAL_ROLES = ("artifact", "display", "thumbnail")
MAX_ATTRIBUTES = 50

GENERATOR_PATTERNS = (
    re.compile(r"generator", re.I),
    re.compile(r"artblocks\.io/generator", re.I),
    re.compile(r"fxhash\.xyz.*/gentk", re.I),
    re.compile(r"\.html$", re.I),
    re.compile(r"interactive", re.I),
    re.compile(r"live", re.I),
)
ANIMATION_PATTERNS = (
    re.compile(r"\.(mp4|webm|mov|gif|avi|ogv)$", re.I),
    re.compile(r"video", re.I),
    re.compile(r"animation", re.I),
    re.compile(r"\.mp4", re.I),
)
VIDEO_PATTERNS = (
    re.compile(r"\.(mp4|webm|mov|avi|ogv)$", re.I),
    re.compile(r"(openseauserdata\.com|raw\.seadn\.io|cloudfront\.net).*\.mp4", re.I),
    re.compile(r"\.mp4", re.I),
    re.compile(r"video", re.I),
)


def _first(bag: Optional[Mapping[str, Any]], keys: tuple[str, ...]) -> Optional[Any]:
    if not isinstance(bag, Mapping):
        return None
    for key in keys:
        value = bag.get(key)
        if value not in (None, ""):
            return value
    return None


def _first_str(bag: Optional[Mapping[str, Any]], keys: tuple[str, ...]) -> Optional[str]:
    if not isinstance(bag, Mapping):
        return None
    for key in keys:
        value = bag.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def is_tezos(chain: Optional[str]) -> bool:
    return (chain or "").lower() in ("tezos", "tez", "xtz")


def _matches(url: Optional[str], patterns) -> bool:
    return bool(url) and any(p.search(url) for p in patterns)


def is_generator_url(url: Optional[str]) -> bool:
    return _matches(url, GENERATOR_PATTERNS)


def is_animation_url(url: Optional[str]) -> bool:
    return _matches(url, ANIMATION_PATTERNS)


def is_video_url(url: Optional[str]) -> bool:
    return _matches(url, VIDEO_PATTERNS)


# ---------------------------------------------------------------------------
# Media URLs
# ---------------------------------------------------------------------------


def image_url(record: Mapping[str, Any], chain: str) -> Optional[str]:
    keys = TEZOS_IMAGE_KEYS if is_tezos(chain) else EVM_IMAGE_KEYS
    return _first_str(record, keys)


def animation_url(record: Mapping[str, Any], chain: str) -> Optional[str]:
    if is_tezos(chain):
        url = _first_str(record, TEZOS_ANIMATION_KEYS)
        if url:
            return url
        # Tezos tokens often keep the video itself in artifact_uri
        artifact = _first_str(record, ("artifact_uri",))
        return artifact if is_animation_url(artifact) else None
    return _first_str(record, EVM_ANIMATION_KEYS)


def thumbnail_url(record: Mapping[str, Any], chain: str) -> Optional[str]:
    keys = TEZOS_THUMBNAIL_KEYS if is_tezos(chain) else EVM_THUMBNAIL_KEYS
    return _first_str(record, keys)


def metadata_url(record: Mapping[str, Any]) -> Optional[str]:
    return _first_str(record, METADATA_URL_KEYS)


def generator_url(
    record: Mapping[str, Any],
    metadata: Optional[Mapping[str, Any]] = None,
) -> Optional[str]:
    """First generator-looking URL; the record is checked before metadata."""
    for key in GENERATOR_KEYS:
        for bag in (record, metadata):
            url = _first_str(bag, (key,))
            if url and is_generator_url(url):
                return url
    return None


def inline_metadata(record: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
    metadata = record.get("metadata")
    return metadata if isinstance(metadata, Mapping) else None


# ---------------------------------------------------------------------------
# MIME hints
# ---------------------------------------------------------------------------


def declared_mime(
    record: Mapping[str, Any],
    url: Optional[str],
    metadata: Optional[Mapping[str, Any]] = None,
) -> Optional[str]:
    """MIME the record states for this exact URL.

    Tezos ``formats`` entries are matched by ``uri``. A record-level
    ``mime`` describes the artifact, so it only applies to that URL (or,
    without an artifact_uri, to the record's main image/animation URL).
    """
    if not url:
        return None
    for bag in (record, metadata):
        if not isinstance(bag, Mapping):
            continue
        formats = bag.get("formats")
        if not isinstance(formats, (list, tuple)):
            continue
        for fmt in formats:
            if isinstance(fmt, Mapping) and fmt.get("uri") == url:
                mime = _first_str(fmt, DECLARED_MIME_KEYS)
                if mime:
                    return mime

    mime = _first_str(record, DECLARED_MIME_KEYS) or _first_str(metadata, DECLARED_MIME_KEYS)
    if not mime:
        return None
    artifact = _first_str(record, ("artifact_uri",))
    if artifact:
        return mime if url == artifact else None
    main = _first_str(record, EVM_ANIMATION_KEYS) or _first_str(record, EVM_IMAGE_KEYS)
    return mime if url == main else None


def structural_hint(
    record: Mapping[str, Any],
    metadata: Optional[Mapping[str, Any]] = None,
) -> Optional[Mapping[str, Any]]:
    """The nested per-role media object (artifact/display/thumbnail), if any."""
    for bag in (record, metadata):
        if not isinstance(bag, Mapping):
            continue
        dims = bag.get("dimensions")
        if isinstance(dims, Mapping) and any(isinstance(dims.get(r), Mapping) for r in STRUCTURAL_ROLES):
            return dims
        if any(isinstance(bag.get(r), Mapping) for r in STRUCTURAL_ROLES):
            return {r: bag[r] for r in STRUCTURAL_ROLES if isinstance(bag.get(r), Mapping)}
    return None


def is_generative(record: Mapping[str, Any], metadata: Optional[Mapping[str, Any]] = None) -> bool:
    for bag in (record, metadata):
        if isinstance(bag, Mapping) and bag.get("is_generative_art") is True:
            return True
    return False


# ---------------------------------------------------------------------------
# Descriptive fields
# ---------------------------------------------------------------------------


def normalize_attributes(raw: Any) -> list[dict[str, Any]]:
    """``[{trait_type, value}]`` from any of the attribute shapes, capped."""
    if not raw:
        return []
    result: list[dict[str, Any]] = []
    if isinstance(raw, Mapping):
        for key, value in raw.items():
            result.append({"trait_type": str(key), "value": value})
        return result[:MAX_ATTRIBUTES]
    if not isinstance(raw, list):
        return []

    for attr in raw:
        if not isinstance(attr, Mapping) or attr.get("value") is None:
            continue
        nested = attr.get("attribute")
        if attr.get("trait_type"):
            name = attr["trait_type"]
        elif isinstance(nested, Mapping) and nested.get("name"):
            name = nested["name"]
        elif attr.get("name"):
            name = attr["name"]
        else:
            continue
        result.append({"trait_type": str(name), "value": attr["value"]})
        if len(result) >= MAX_ATTRIBUTES:
            break
    return result


def extract_features(
    metadata: Optional[Mapping[str, Any]],
    record: Optional[Mapping[str, Any]] = None,
) -> Optional[dict[str, Any]]:
    for bag in (metadata, record):
        if isinstance(bag, Mapping) and isinstance(bag.get("features"), Mapping):
            return {str(k): v for k, v in bag["features"].items()}

    attrs = metadata.get("attributes") if isinstance(metadata, Mapping) else None
    if not isinstance(attrs, list):
        return None
    features = {
        str(a["trait_type"]): a["value"]
        for a in attrs
        if isinstance(a, Mapping) and a.get("trait_type") and isinstance(a.get("value"), (str, int, float))
    }
    return features or None


def extract_supply(record: Mapping[str, Any], metadata: Optional[Mapping[str, Any]] = None) -> int:
    """Edition size; 1 when nothing usable is declared."""
    for key in SUPPLY_KEYS:
        for bag in (record, metadata):
            if not isinstance(bag, Mapping):
                continue
            value = bag.get(key)
            if isinstance(value, bool) or value is None:
                continue
            try:
                parsed = int(value)
            except (TypeError, ValueError, OverflowError):
                continue
            if parsed > 0:
                return parsed
    return 1


def title(record: Mapping[str, Any], metadata: Optional[Mapping[str, Any]] = None) -> Optional[str]:
    return _first_str(record, TITLE_KEYS) or _first_str(metadata, TITLE_KEYS)


def description(record: Mapping[str, Any], metadata: Optional[Mapping[str, Any]] = None) -> Optional[str]:
    return _first_str(record, DESCRIPTION_KEYS) or _first_str(metadata, DESCRIPTION_KEYS)


def contract_address(record: Mapping[str, Any]) -> Optional[str]:
    value = _first(record, CONTRACT_KEYS)
    if isinstance(value, Mapping):
        value = _first(value, ("address",))
    return str(value) if value else None


def token_id(record: Mapping[str, Any]) -> Optional[str]:
    value = _first(record, TOKEN_ID_KEYS)
    return str(value) if value is not None else None


def creator(
    record: Mapping[str, Any],
    metadata: Optional[Mapping[str, Any]] = None,
) -> Optional[dict[str, str]]:
    """``{address, username}`` of the first creator, from either record shape.

    Tezos records carry ``creators: [{creator_address, holder: {alias}}]``;
    OpenSea-style records carry ``creator`` as an address string or an
    object with ``address`` and ``user.username``.
    """
    for bag in (record, metadata):
        if not isinstance(bag, Mapping):
            continue
        creators = bag.get("creators")
        if isinstance(creators, list) and creators and isinstance(creators[0], Mapping):
            first = creators[0]
            holder = first.get("holder") if isinstance(first.get("holder"), Mapping) else {}
            address = _first_str(first, ("creator_address", "address")) or _first_str(holder, ("address",))
            username = _first_str(holder, ("alias",)) or _first_str(first, ("alias", "username"))
        else:
            value = bag.get("creator")
            if isinstance(value, str) and value.strip():
                address, username = value.strip(), None
            elif isinstance(value, Mapping):
                user = value.get("user") if isinstance(value.get("user"), Mapping) else {}
                address = _first_str(value, ("address", "creator_address"))
                username = _first_str(user, ("username",)) or _first_str(value, ("username", "alias"))
            else:
                continue
        if address or username:
            found = {"address": address, "username": username}
            return {k: v for k, v in found.items() if v}
    return None


def raw_date_fields(
    record: Mapping[str, Any],
    metadata: Optional[Mapping[str, Any]] = None,
) -> list[Any]:
    """Every date-like value on the record, record first."""
    values = []
    for bag in (record, metadata):
        if not isinstance(bag, Mapping):
            continue
        for key in RAW_DATE_KEYS:
            value = bag.get(key)
            if value not in (None, ""):
                values.append(value)
    return values
