"""
Gateway Resolver — fetch content-addressed media with gateway fallback.

Decentralised gateways are individually unreliable but collectively
redundant. For IPFS, Arweave and onchfs references we walk the configured
gateway list in order, one short-timeout GET per gateway, and accept the
first 2xx. HTTP and data: references get a single direct fetch.

Only the first ``sniff_size_limit`` bytes of a body are ever read: enough
for type sniffing and header-based dimension parsing, never a full
download of a large video.

Usage:
    resolver = GatewayResolver(config)
    result = await resolver.resolve(classify(uri))
    await resolver.close()
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import unquote_to_bytes

import aiohttp

from errors import GatewayExhaustedError
from media_models import ResolutionAttempt, ResolutionStatus
from settings import EngineConfig
from uri_classifier import MediaReference, MediaScheme, candidate_urls

logger = logging.getLogger("media-engine.resolver")

READ_CHUNK = 16 * 1024
DIRECT_GATEWAY = "direct"
DATA_GATEWAY = "data"


@dataclass
class FetchResult:
    """Bytes and headers from the first gateway that answered 2xx."""

    url: str
    gateway: str
    status: int
    headers: dict[str, str]
    body: bytes
    truncated: bool = False
    attempts: list[ResolutionAttempt] = field(default_factory=list)

    @property
    def content_type(self) -> Optional[str]:
        return self.headers.get("content-type")

    @property
    def content_length(self) -> Optional[int]:
        raw = self.headers.get("content-length")
        if raw and raw.isdecimal():
            return int(raw)
        if not self.truncated:
            return len(self.body)
        return None


class ResponseCache:
    """Small LRU of fetch results keyed by final resolved URL."""

    def __init__(self, max_entries: int):
        self.max_entries = max_entries
        self._entries: OrderedDict[str, FetchResult] = OrderedDict()

    def get(self, url: str) -> Optional[FetchResult]:
        if self.max_entries <= 0:
            return None
        hit = self._entries.get(url)
        if hit is not None:
            self._entries.move_to_end(url)
        return hit

    def put(self, result: FetchResult):
        if self.max_entries <= 0:
            return
        self._entries[result.url] = result
        self._entries.move_to_end(result.url)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def __len__(self) -> int:
        return len(self._entries)


def _decode_data_uri(raw: str) -> tuple[str, bytes]:
    header, _, payload = raw.partition(",")
    meta = header[len("data:"):]
    mime = meta.split(";")[0].strip() or "text/plain"
    if meta.endswith(";base64"):
        return mime, base64.b64decode(payload + "=" * (-len(payload) % 4))
    return mime, unquote_to_bytes(payload)


class GatewayResolver:
    """Resolve a ``MediaReference`` to bytes via the gateway cascade."""

    def __init__(
        self,
        config: EngineConfig,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.config = config
        self.cache = ResponseCache(config.response_cache_size)
        self._external_session = session
        self._own_session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._external_session:
            return self._external_session
        if self._own_session is None or self._own_session.closed:
            self._own_session = aiohttp.ClientSession(
                headers={"User-Agent": self.config.user_agent},
            )
        return self._own_session

    async def close(self):
        if self._own_session and not self._own_session.closed:
            await self._own_session.close()

    async def resolve(
        self,
        ref: MediaReference,
        max_attempts_per_gateway: int = 1,
        timeout_s: Optional[float] = None,
    ) -> FetchResult:
        """Fetch a reference, walking gateways in configured order.

        Args:
            ref: Classified media reference.
            max_attempts_per_gateway: Tries per gateway before moving on.
            timeout_s: Per-request timeout; defaults to the configured
                gateway timeout.

        Returns:
            FetchResult from the first gateway that answered 2xx.

        Raises:
            GatewayExhaustedError: If every candidate failed.
        """
        timeout = timeout_s or self.config.gateway_timeout_s

        if ref.scheme is MediaScheme.DATA:
            try:
                mime, body = _decode_data_uri(ref.raw)
            except binascii.Error as e:
                logger.warning("Undecodable data URI payload: %s", e)
                attempt = ResolutionAttempt(
                    gateway=DATA_GATEWAY,
                    url=ref.raw,
                    status=ResolutionStatus.INVALID_CONTENT,
                )
                raise GatewayExhaustedError(ref.raw, [attempt]) from e
            return FetchResult(
                url=ref.raw,
                gateway=DATA_GATEWAY,
                status=200,
                headers={"content-type": mime, "content-length": str(len(body))},
                body=body,
            )

        if ref.content_addressed:
            bases = list(self.config.gateways_for(ref.scheme.value))
        else:
            bases = [DIRECT_GATEWAY]
        urls = candidate_urls(ref, self.config)

        attempts: list[ResolutionAttempt] = []
        for gateway, url in zip(bases, urls):
            cached = self.cache.get(url)
            if cached is not None:
                logger.debug("Response cache hit for %s", url)
                return cached

            for _ in range(max(1, max_attempts_per_gateway)):
                attempt, result = await self._fetch_once(gateway, url, timeout)
                attempts.append(attempt)
                logger.debug(
                    "Gateway attempt gateway=%s status=%s http=%s bytes=%d",
                    gateway, attempt.status.value, attempt.http_status, attempt.bytes_sampled,
                )
                if result is not None:
                    result.attempts = attempts
                    self.cache.put(result)
                    return result

        raise GatewayExhaustedError(ref.raw, attempts)

    async def _fetch_once(
        self,
        gateway: str,
        url: str,
        timeout: float,
    ) -> tuple[ResolutionAttempt, Optional[FetchResult]]:
        session = await self._get_session()
        try:
            async with session.get(
                url,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as resp:
                headers = {k.lower(): v for k, v in resp.headers.items()}
                if not 200 <= resp.status < 300:
                    status = (
                        ResolutionStatus.NOT_FOUND
                        if resp.status in (404, 410)
                        else ResolutionStatus.INVALID_CONTENT
                    )
                    return ResolutionAttempt(
                        gateway=gateway, url=url, status=status, http_status=resp.status,
                    ), None

                body, truncated = await self._read_limited(resp)
                mime = headers.get("content-type", "").split(";")[0].strip() or None
                attempt = ResolutionAttempt(
                    gateway=gateway,
                    url=url,
                    status=ResolutionStatus.SUCCESS,
                    http_status=resp.status,
                    mime=mime,
                    bytes_sampled=len(body),
                )
                return attempt, FetchResult(
                    url=url,
                    gateway=gateway,
                    status=resp.status,
                    headers=headers,
                    body=body,
                    truncated=truncated,
                )
        except asyncio.TimeoutError:
            return ResolutionAttempt(gateway=gateway, url=url, status=ResolutionStatus.TIMEOUT), None
        except aiohttp.ClientError as e:
            logger.debug("Gateway %s failed for %s: %s", gateway, url, e)
            return ResolutionAttempt(gateway=gateway, url=url, status=ResolutionStatus.INVALID_CONTENT), None

    async def _read_limited(self, resp) -> tuple[bytes, bool]:
        limit = self.config.sniff_size_limit
        buf = bytearray()
        async for chunk in resp.content.iter_chunked(READ_CHUNK):
            buf.extend(chunk)
            if len(buf) >= limit:
                return bytes(buf[:limit]), True
        return bytes(buf), False

    async def resolve_json(self, ref: MediaReference) -> Optional[Any]:
        """Fetch a metadata document and parse it as JSON.

        Returns None (never raises) when no gateway answers or the body is
        not JSON; metadata is an enrichment, not a requirement.
        """
        try:
            result = await self.resolve(ref)
        except GatewayExhaustedError as exc:
            logger.warning("Metadata unavailable: %s (last gateway: %s)", exc, exc.last_gateway)
            return None

        content_type = (result.content_type or "").lower()
        if result.truncated:
            logger.warning("Metadata document too large, skipped: %s", result.url)
            return None
        if content_type and not any(t in content_type for t in ("json", "text/plain", "octet-stream")):
            logger.warning("Metadata URL returned non-JSON content %s: %s", content_type, result.url)
            return None
        try:
            return json.loads(result.body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning("Metadata at %s is not valid JSON: %s", result.url, e)
            return None
