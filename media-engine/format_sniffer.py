"""
Format Sniffer — decide the MIME type of a media URL.

Strategies run in a fixed order and the first one that yields a
whitelisted type wins:

    declared -> structural hint -> platform heuristic
             -> HTTP header -> magic bytes -> context guess

Every value that leaves this module is on ``MIME_WHITELIST`` (or is an
``audio/*`` type). Anything else a server or a metadata author claims is
dropped here.

Usage:
    result = sniff(ref, declared="image/png", role=MediaRole.IMAGE)
    result.mime, result.source
"""

from __future__ import annotations

import logging
import re
from typing import Any, Mapping, NamedTuple, Optional
from urllib.parse import urlsplit

from errors import InvalidMimeError, SniffInconclusive
from media_models import MediaRole, MediaSource
from uri_classifier import MediaReference, MediaScheme

logger = logging.getLogger("media-engine.sniffer")

# ---------------------------------------------------------------------------
# Static tables
# ---------------------------------------------------------------------------

MIME_WHITELIST = frozenset({
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/svg+xml",
    "video/mp4",
    "video/webm",
    "video/quicktime",
    "video/ogg",
    "text/html",
    "application/javascript",
    "application/pdf",
    "application/json",
    "model/gltf+json",
    "model/gltf-binary",
})

MIME_ALIASES = {
    "image/jpg": "image/jpeg",
    "image/pjpeg": "image/jpeg",
    "image/svg": "image/svg+xml",
    "text/javascript": "application/javascript",
    "application/x-javascript": "application/javascript",
    "video/x-m4v": "video/mp4",
    "audio/mp3": "audio/mpeg",
    "audio/x-wav": "audio/wav",
}

# Any audio subtype made of token characters
AUDIO_MIME = re.compile(r"audio/[a-z0-9.+-]+")

GENERIC_MIME = "application/octet-stream"

EXTENSION_MIME = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "svg": "image/svg+xml",
    "mp4": "video/mp4",
    "m4v": "video/mp4",
    "webm": "video/webm",
    "mov": "video/quicktime",
    "ogv": "video/ogg",
    "html": "text/html",
    "htm": "text/html",
    "js": "application/javascript",
    "pdf": "application/pdf",
    "json": "application/json",
    "gltf": "model/gltf+json",
    "glb": "model/gltf-binary",
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "flac": "audio/flac",
    "ogg": "audio/ogg",
    "m4a": "audio/mp4",
}

MIME_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/svg+xml": "svg",
    "video/mp4": "mp4",
    "video/webm": "webm",
    "video/quicktime": "mov",
    "video/ogg": "ogv",
    "text/html": "html",
    "application/javascript": "js",
    "application/pdf": "pdf",
    "application/json": "json",
    "model/gltf+json": "gltf",
    "model/gltf-binary": "glb",
    "audio/mpeg": "mp3",
    "audio/wav": "wav",
    "audio/flac": "flac",
    "audio/ogg": "ogg",
}

# Checked in order against the full URL, before any network access.
PLATFORM_PATTERNS: tuple[tuple[re.Pattern, str], ...] = (
    (re.compile(r"artblocks\.io/generator|generator\.artblocks\.io", re.I), "text/html"),
    (re.compile(r"fxhash\.xyz.*gentk|gentk.*fxhash\.xyz", re.I), "text/html"),
    (re.compile(r"/generator(/|\?|$)", re.I), "text/html"),
    (re.compile(r"(openseauserdata\.com|raw\.seadn\.io|cloudfront\.net).*\.mp4", re.I), "video/mp4"),
    (re.compile(r"/video/", re.I), "video/mp4"),
)

# Role precedence for nested per-role media objects on Tezos records.
STRUCTURAL_ROLE_PRIORITY = ("artifact", "display", "thumbnail")
STRUCTURAL_MIME_KEYS = ("mime", "mimeType", "mime_type")

SNIFF_SIZE_LIMIT = 1024 * 1024
SNIFF_SAMPLE_BYTES = 8 * 1024

MEDIA_KINDS = ("image", "video", "audio", "interactive", "document", "model", "unknown")


class SniffResult(NamedTuple):
    mime: Optional[str]
    source: MediaSource


# ---------------------------------------------------------------------------
# Whitelist
# ---------------------------------------------------------------------------


def normalize_mime(value: Any) -> str:
    """Lower-case, strip parameters, apply aliases and check the whitelist.

    Raises:
        InvalidMimeError: If the value is not a whitelisted type.
    """
    if not isinstance(value, str):
        raise InvalidMimeError(f"Not a MIME string: {value!r}")
    mime = value.split(";", 1)[0].strip().lower()
    mime = MIME_ALIASES.get(mime, mime)
    if mime in MIME_WHITELIST:
        return mime
    if AUDIO_MIME.fullmatch(mime):
        return mime
    raise InvalidMimeError(f"MIME type not allowed: {value!r}")


def is_whitelisted(value: Any) -> bool:
    try:
        normalize_mime(value)
    except InvalidMimeError:
        return False
    return True


def _accept(value: Any, strategy: str) -> Optional[str]:
    if value is None or value == "":
        return None
    try:
        return normalize_mime(value)
    except InvalidMimeError as exc:
        logger.debug("Discarded %s MIME: %s", strategy, exc)
        return None


def media_kind(mime: Optional[str]) -> str:
    """Coarse grouping used by display code."""
    if not mime:
        return "unknown"
    if mime.startswith("image/"):
        return "image"
    if mime.startswith("video/"):
        return "video"
    if mime.startswith("audio/"):
        return "audio"
    if mime in ("text/html", "application/javascript"):
        return "interactive"
    if mime in ("application/pdf", "application/json"):
        return "document"
    if mime.startswith("model/"):
        return "model"
    return "unknown"


def extension_for(mime: Optional[str]) -> Optional[str]:
    return MIME_EXTENSIONS.get(mime or "")


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


def structural_mime(hint: Optional[Mapping[str, Any]]) -> Optional[str]:
    """MIME from the highest-priority role object that names one."""
    if not isinstance(hint, Mapping):
        return None
    for role in STRUCTURAL_ROLE_PRIORITY:
        entry = hint.get(role)
        if not isinstance(entry, Mapping):
            continue
        for key in STRUCTURAL_MIME_KEYS:
            mime = _accept(entry.get(key), "structural")
            if mime:
                return mime
    return None


def _url_extension(url: str) -> Optional[str]:
    path = urlsplit(url).path if "://" in url else url.split("?", 1)[0]
    last = path.rstrip("/").rsplit("/", 1)[-1]
    if "." not in last:
        return None
    return last.rsplit(".", 1)[-1].lower()


def platform_mime(url: Optional[str]) -> Optional[str]:
    """Known platform conventions first, then the extension table."""
    if not url:
        return None
    for pattern, mime in PLATFORM_PATTERNS:
        if pattern.search(url):
            return mime
    ext = _url_extension(url)
    if ext:
        return EXTENSION_MIME.get(ext)
    return None


def header_mime(headers: Optional[Mapping[str, str]]) -> Optional[str]:
    if not headers:
        return None
    raw = None
    for key, value in headers.items():
        if key.lower() == "content-type":
            raw = value
            break
    if not raw:
        return None
    if raw.split(";", 1)[0].strip().lower() == GENERIC_MIME:
        return None
    return _accept(raw, "header")


def _sniff_text(head: bytes) -> Optional[str]:
    text = head.lstrip(b"\xef\xbb\xbf \t\r\n").lower()
    if text.startswith(b"<svg") or (text.startswith(b"<?xml") and b"<svg" in text):
        return "image/svg+xml"
    if text.startswith((b"<!doctype html", b"<html", b"<head", b"<script")):
        return "text/html"
    if text.startswith(b"{"):
        if b'"asset"' in text and b'"version"' in text:
            return "model/gltf+json"
        return "application/json"
    return None


def sniff_bytes(sample: Optional[bytes]) -> Optional[str]:
    """Identify a payload by its leading signature."""
    if not sample or len(sample) < 4:
        return None
    if sample.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if sample.startswith(b"\xff\xd8"):
        return "image/jpeg"
    if sample.startswith((b"GIF87a", b"GIF89a")):
        return "image/gif"
    if sample[:4] == b"RIFF" and sample[8:12] == b"WEBP":
        return "image/webp"
    if sample[:4] == b"RIFF" and sample[8:12] == b"WAVE":
        return "audio/wav"
    if sample[4:8] == b"ftyp":
        brand = sample[8:12]
        if brand == b"qt  ":
            return "video/quicktime"
        if brand in (b"M4A ", b"M4B "):
            return "audio/mp4"
        return "video/mp4"
    if sample.startswith(b"\x1a\x45\xdf\xa3"):
        return "video/webm"
    if sample.startswith(b"OggS"):
        return "video/ogg"
    if sample.startswith(b"%PDF"):
        return "application/pdf"
    if sample.startswith(b"glTF"):
        return "model/gltf-binary"
    if sample.startswith(b"fLaC"):
        return "audio/flac"
    if sample.startswith(b"ID3") or sample[:2] in (b"\xff\xfb", b"\xff\xf3", b"\xff\xf2"):
        return "audio/mpeg"
    return _sniff_text(sample[:512])


def sniff_payload(
    headers: Optional[Mapping[str, str]],
    sample: Optional[bytes],
    content_length: Optional[int] = None,
    size_limit: int = SNIFF_SIZE_LIMIT,
    sample_bytes: int = SNIFF_SAMPLE_BYTES,
) -> SniffResult:
    """Header, then magic bytes, over an already-fetched response.

    Raises:
        SniffInconclusive: If neither strategy produced a whitelisted type.
    """
    mime = header_mime(headers)
    if mime:
        return SniffResult(mime, MediaSource.HEADER)

    small_enough = content_length is None or content_length < size_limit
    if sample and small_enough:
        mime = _accept(sniff_bytes(sample[:sample_bytes]), "buffer")
        if mime:
            return SniffResult(mime, MediaSource.BUFFER_SNIFF)

    raise SniffInconclusive("No usable Content-Type or file signature")


def context_guess(role: MediaRole) -> str:
    if role is MediaRole.ANIMATION:
        return "video/mp4"
    if role is MediaRole.GENERATOR:
        return "text/html"
    return "image/png"


def _data_uri_mime(raw: str) -> Optional[str]:
    meta = raw[len("data:"):].split(",", 1)[0]
    return _accept(meta.split(";", 1)[0], "data-uri")


def sniff_without_fetch(
    ref: Optional[MediaReference],
    declared: Optional[str] = None,
    structural: Optional[Mapping[str, Any]] = None,
) -> Optional[SniffResult]:
    """Strategies 1-3. None means only a fetch can say more."""
    mime = _accept(declared, "declared")
    if mime:
        return SniffResult(mime, MediaSource.DECLARED)

    mime = structural_mime(structural)
    if mime:
        return SniffResult(mime, MediaSource.DECLARED)

    if ref is None:
        return None
    if ref.scheme is MediaScheme.DATA:
        mime = _data_uri_mime(ref.raw)
        if mime:
            return SniffResult(mime, MediaSource.DECLARED)
        return None

    mime = _accept(platform_mime(ref.raw), "platform")
    if mime:
        return SniffResult(mime, MediaSource.PLATFORM_HEURISTIC)
    return None


def sniff(
    ref: Optional[MediaReference],
    declared: Optional[str] = None,
    structural: Optional[Mapping[str, Any]] = None,
    headers: Optional[Mapping[str, str]] = None,
    sample: Optional[bytes] = None,
    content_length: Optional[int] = None,
    role: MediaRole = MediaRole.IMAGE,
    size_limit: int = SNIFF_SIZE_LIMIT,
    sample_bytes: int = SNIFF_SAMPLE_BYTES,
) -> SniffResult:
    """Run the full strategy chain.

    Declared and structural types are final. A platform guess only stands
    when nothing was fetched; once response headers or bytes are at hand
    they take precedence over it. Returns ``SniffResult(None, ...)`` only
    when ``ref`` is None and nothing was declared.
    """
    before_fetch = sniff_without_fetch(ref, declared, structural)
    if before_fetch and before_fetch.source is MediaSource.DECLARED:
        return before_fetch

    fetched = headers is not None or sample is not None
    if fetched:
        try:
            return sniff_payload(headers, sample, content_length, size_limit, sample_bytes)
        except SniffInconclusive as exc:
            logger.debug("Payload sniff inconclusive for %s: %s", ref.raw if ref else None, exc)

    if before_fetch:
        return before_fetch

    if ref is None:
        return SniffResult(None, MediaSource.FALLBACK_DEFAULT)
    guess = context_guess(role)
    logger.info("Falling back to %s for %s role: %s", guess, role.value, ref.raw)
    return SniffResult(guess, MediaSource.FALLBACK_DEFAULT)


def sniff_mime(
    ref: Optional[MediaReference],
    declared: Optional[str] = None,
    headers: Optional[Mapping[str, str]] = None,
    sample: Optional[bytes] = None,
    role: MediaRole = MediaRole.IMAGE,
) -> Optional[str]:
    return sniff(ref, declared=declared, headers=headers, sample=sample, role=role).mime
