"""
Dimension Extractor — width and height without decoding images.

Two kinds of source, tried cheapest first:

1. Metadata on the raw record: role-nested ``dimensions`` objects,
   ``"1920x1080"`` strings, Art Blocks ``image_details``, attributes whose
   key mentions width/height/dimension, and top-level ``*width`` /
   ``*height`` numbers.
2. The fixed header of a fetched PNG, JPEG, GIF or WebP payload, parsed
   with ``struct``. Only the simple ``VP8 `` WebP chunk is understood;
   VP8L and VP8X payloads return None.

Usage:
    dims = metadata_dimensions(record)
    dims = dims or extract_dimensions(body, "image/png")
"""

from __future__ import annotations

import logging
import re
import struct
from typing import Any, Iterable, Mapping, Optional

from errors import DimensionUnavailable
from media_models import Dimensions
from format_sniffer import sniff_bytes

logger = logging.getLogger("media-engine.dimensions")

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"

# Start-of-frame markers carry the frame size; C4, C8 and CC do not.
JPEG_SOF_MARKERS = frozenset(
    {0xC0, 0xC1, 0xC2, 0xC3, 0xC5, 0xC6, 0xC7, 0xC9, 0xCA, 0xCB, 0xCD, 0xCE, 0xCF}
)
# Markers with no length field.
JPEG_STANDALONE = frozenset({0x01, *range(0xD0, 0xD8)})

STRING_DIMENSIONS = re.compile(r"(\d+)\s*[x×]\s*(\d+)", re.I)

DIMENSION_ROLE_PRIORITY = ("artifact", "display", "thumbnail")
DIMENSION_CONTAINERS = ("dimensions", "dimension", "size")


# ---------------------------------------------------------------------------
# Header parsers
# ---------------------------------------------------------------------------


def _png(data: bytes) -> Optional[tuple[int, int]]:
    if len(data) < 24 or not data.startswith(PNG_SIGNATURE):
        return None
    width, height = struct.unpack(">II", data[16:24])
    return width, height


def _jpeg(data: bytes) -> Optional[tuple[int, int]]:
    if len(data) < 4 or data[:2] != b"\xff\xd8":
        return None
    offset = 2
    size = len(data)
    while offset + 4 <= size:
        if data[offset] != 0xFF:
            return None
        marker = data[offset + 1]
        # Fill bytes before a marker
        if marker == 0xFF:
            offset += 1
            continue
        if marker in JPEG_STANDALONE:
            offset += 2
            continue
        if marker in (0xD9, 0xDA):
            return None
        (length,) = struct.unpack(">H", data[offset + 2:offset + 4])
        if marker in JPEG_SOF_MARKERS:
            if offset + 9 > size:
                return None
            height, width = struct.unpack(">HH", data[offset + 5:offset + 9])
            return width, height
        if length < 2:
            return None
        offset += 2 + length
    return None


def _gif(data: bytes) -> Optional[tuple[int, int]]:
    if len(data) < 10 or data[:6] not in (b"GIF87a", b"GIF89a"):
        return None
    width, height = struct.unpack("<HH", data[6:10])
    return width, height


def _webp(data: bytes) -> Optional[tuple[int, int]]:
    if len(data) < 30 or data[:4] != b"RIFF" or data[8:12] != b"WEBP":
        return None
    if data[12:16] != b"VP8 ":
        # VP8L / VP8X are not parsed
        logger.debug("Unsupported WebP chunk %r", data[12:16])
        return None
    width, height = struct.unpack("<HH", data[26:30])
    return width & 0x3FFF, height & 0x3FFF


HEADER_PARSERS = {
    "image/png": _png,
    "image/jpeg": _jpeg,
    "image/gif": _gif,
    "image/webp": _webp,
}


def _positive(pair: Optional[tuple[Any, Any]]) -> Optional[Dimensions]:
    if not pair:
        return None
    width, height = pair
    if width is None or height is None:
        return None
    try:
        width, height = int(float(width)), int(float(height))
    except (TypeError, ValueError, OverflowError):
        return None
    if width <= 0 or height <= 0:
        return None
    return Dimensions(width=width, height=height)


def parse_header(data: bytes, mime: Optional[str] = None) -> Dimensions:
    """Parse dimensions from an image header.

    The MIME type picks the parser; when it names no supported format the
    file signature decides.

    Raises:
        DimensionUnavailable: If the header is missing, truncated or of an
            unsupported format.
    """
    if not data:
        raise DimensionUnavailable("No bytes to parse")
    parser = HEADER_PARSERS.get(mime or "")
    if parser is None:
        parser = HEADER_PARSERS.get(sniff_bytes(data) or "")
    if parser is None:
        raise DimensionUnavailable(f"No header parser for {mime!r}")
    try:
        dims = _positive(parser(data))
    except struct.error as e:
        raise DimensionUnavailable(f"Truncated {mime} header: {e}") from e
    if dims is None:
        raise DimensionUnavailable(f"Unreadable {mime or 'image'} header")
    return dims


def extract_dimensions(data: Optional[bytes], mime: Optional[str] = None) -> Optional[tuple[int, int]]:
    """``(width, height)`` from image bytes, or None. Never raises."""
    if not data:
        return None
    try:
        return parse_header(data, mime).as_tuple()
    except DimensionUnavailable as exc:
        logger.debug("Header dimensions unavailable: %s", exc)
        return None


# ---------------------------------------------------------------------------
# Metadata sources
# ---------------------------------------------------------------------------


def _from_value(value: Any) -> Optional[Dimensions]:
    """A dimensions value in any of the shapes indexers use."""
    if isinstance(value, str):
        match = STRING_DIMENSIONS.search(value)
        if match:
            return _positive((match.group(1), match.group(2)))
        return None
    if isinstance(value, Mapping):
        dims = _positive((value.get("width"), value.get("height")))
        if dims:
            return dims
        return _positive((value.get("w"), value.get("h")))
    if isinstance(value, (list, tuple)) and len(value) == 2:
        return _positive((value[0], value[1]))
    return None


def _from_container(container: Any) -> Optional[Dimensions]:
    """Role-nested first (artifact > display > thumbnail), then direct."""
    if not isinstance(container, Mapping):
        return _from_value(container)
    for role in DIMENSION_ROLE_PRIORITY:
        dims = _from_value(container.get(role))
        if dims:
            return dims
    return _from_value(container)


def declared_dimensions(bag: Optional[Mapping[str, Any]]) -> Optional[Dimensions]:
    if not isinstance(bag, Mapping):
        return None
    for key in DIMENSION_CONTAINERS:
        dims = _from_container(bag.get(key))
        if dims:
            return dims
    # Art Blocks
    dims = _from_value(bag.get("image_details"))
    if dims:
        return dims
    return _positive((bag.get("width"), bag.get("height")))


def attribute_dimensions(attributes: Optional[Iterable[Any]]) -> Optional[Dimensions]:
    width = height = None
    for attr in attributes or ():
        if not isinstance(attr, Mapping):
            continue
        key = str(attr.get("trait_type") or attr.get("name") or attr.get("key") or "").lower()
        value = attr.get("value")
        if "dimension" in key or key in ("size", "resolution"):
            dims = _from_value(value)
            if dims:
                return dims
        elif "width" in key and width is None:
            width = value
        elif "height" in key and height is None:
            height = value
    return _positive((width, height))


def _suffix_numbers(bag: Mapping[str, Any]) -> Optional[Dimensions]:
    width = height = None
    for key, value in bag.items():
        if not isinstance(key, str) or not isinstance(value, (int, float)) or isinstance(value, bool):
            continue
        lowered = key.lower()
        if lowered.endswith("width") and width is None:
            width = value
        elif lowered.endswith("height") and height is None:
            height = value
    return _positive((width, height))


def metadata_dimensions(
    record: Optional[Mapping[str, Any]],
    metadata: Optional[Mapping[str, Any]] = None,
) -> Optional[Dimensions]:
    """First positive width/height found without touching the network.

    Order: the metadata document, the raw record, nested token objects,
    attributes, then any top-level numeric ``*width``/``*height`` pair.
    """
    record = record if isinstance(record, Mapping) else {}
    if metadata is None and isinstance(record.get("metadata"), Mapping):
        metadata = record["metadata"]

    bags = [metadata, record, record.get("fa"), record.get("token")]
    for bag in bags:
        dims = declared_dimensions(bag)
        if dims:
            return dims

    for bag in (metadata, record):
        if isinstance(bag, Mapping):
            dims = attribute_dimensions(bag.get("attributes") if isinstance(bag.get("attributes"), list) else None)
            if dims:
                return dims

    for bag in (metadata, record):
        if isinstance(bag, Mapping):
            dims = _suffix_numbers(bag)
            if dims:
                return dims
    return None
