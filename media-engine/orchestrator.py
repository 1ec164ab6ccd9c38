"""
Resolution Orchestrator — raw indexer record in, ArtworkMediaSet out.

Per artwork, the image, animation, generator and thumbnail URLs and the
mint date are resolved concurrently; a failure in one never blocks the
others. Across artworks, work is admitted in fixed-size batches with a
short pause between them. That is admission control to stay under
gateway and API rate limits, not a rate limiter: a slow artwork holds up
its whole batch.

Usage:
    orchestrator = ResolutionOrchestrator(config)
    media_set = await orchestrator.resolve_artwork(record, "ethereum")
    media_sets = await orchestrator.resolve_many([(record, "tezos"), ...])
    await orchestrator.close()
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence, TypeVar

import record_fields as fields
from dimension_extractor import extract_dimensions, metadata_dimensions
from errors import GatewayExhaustedError
from format_sniffer import sniff, sniff_without_fetch
from gateway_resolver import GatewayResolver
from media_models import ArtworkMediaSet, Dimensions, MediaRole, ResolvedMedia
from mint_dates import MintDateReconciler
from settings import EngineConfig
from uri_classifier import candidate_urls, classify

logger = logging.getLogger("media-engine.orchestrator")

T = TypeVar("T")
R = TypeVar("R")

# Header parsing only understands raster formats
PARSEABLE_MIME = frozenset({"image/png", "image/jpeg", "image/gif", "image/webp"})

# Which role resolves a URL that several roles point at
SHARED_URL_OWNERS = (MediaRole.GENERATOR, MediaRole.IMAGE, MediaRole.ANIMATION, MediaRole.THUMBNAIL)


async def run_in_batches(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    batch_size: int,
    delay_s: float,
) -> list[Any]:
    """Run ``worker`` over ``items`` at most ``batch_size`` at a time.

    Batch N+1 starts only after every task of batch N has settled, plus
    ``delay_s``. Results keep input order; a failed task yields its
    exception object in place of a result.
    """
    results: list[Any] = []
    for start in range(0, len(items), batch_size):
        batch = items[start:start + batch_size]
        results.extend(await asyncio.gather(*(worker(item) for item in batch), return_exceptions=True))
        if start + batch_size < len(items) and delay_s > 0:
            await asyncio.sleep(delay_s)
    return results


def artwork_identity(record: Mapping[str, Any], chain: str) -> str:
    uid = record.get("uid") or record.get("id")
    if uid:
        return str(uid)
    return f"{chain}:{fields.contract_address(record) or '-'}:{fields.token_id(record) or '-'}"


class ResolutionOrchestrator:
    def __init__(
        self,
        config: EngineConfig,
        resolver: Optional[GatewayResolver] = None,
        reconciler: Optional[MintDateReconciler] = None,
    ):
        self.config = config
        self.resolver = resolver or GatewayResolver(config)
        self.reconciler = reconciler or MintDateReconciler(config)

    async def close(self):
        await self.resolver.close()

    # ------------------------------------------------------------------
    # Single media field
    # ------------------------------------------------------------------

    async def resolve_media(
        self,
        role: MediaRole,
        url: Optional[str],
        record: Optional[Mapping[str, Any]] = None,
        metadata: Optional[Mapping[str, Any]] = None,
        known_dimensions: Optional[Dimensions] = None,
        artwork_id: str = "-",
        need_dimensions: bool = True,
    ) -> Optional[ResolvedMedia]:
        """Resolve one URL for one role.

        The network is only touched when the MIME type is not already
        declared, or when a raster image still needs its dimensions.
        """
        ref = classify(url)
        if ref is None:
            return None
        record = record or {}

        declared = fields.declared_mime(record, url, metadata)
        hint = fields.structural_hint(record, metadata)
        if role is MediaRole.THUMBNAIL and hint:
            hint = {"thumbnail": hint.get("thumbnail")}

        before_fetch = sniff_without_fetch(ref, declared, hint)
        dims = known_dimensions
        candidates = candidate_urls(ref, self.config)

        needs_fetch = before_fetch is None or (
            need_dimensions and dims is None and before_fetch.mime in PARSEABLE_MIME
        )
        if not needs_fetch:
            return ResolvedMedia(
                role=role,
                url=candidates[0],
                raw=ref.raw,
                mime=before_fetch.mime,
                dimensions=dims,
                source=before_fetch.source,
                resolved=True,
            )

        try:
            result = await self.resolver.resolve(ref)
        except GatewayExhaustedError as exc:
            logger.warning(
                "Artwork %s %s unresolved: %s (last gateway: %s)",
                artwork_id, role.value, exc, exc.last_gateway,
            )
            guess = sniff(ref, declared=declared, structural=hint, role=role)
            return ResolvedMedia(
                role=role,
                url=candidates[0],
                raw=ref.raw,
                mime=guess.mime,
                dimensions=dims,
                source=guess.source,
                resolved=False,
            )

        found = sniff(
            ref,
            declared=declared,
            structural=hint,
            headers=result.headers,
            sample=result.body,
            content_length=result.content_length,
            role=role,
            size_limit=self.config.sniff_size_limit,
            sample_bytes=self.config.sniff_sample_bytes,
        )
        if need_dimensions and dims is None and found.mime in PARSEABLE_MIME:
            parsed = extract_dimensions(result.body, found.mime)
            if parsed:
                dims = Dimensions(width=parsed[0], height=parsed[1])
            else:
                logger.info("Artwork %s %s: dimensions unavailable from %s", artwork_id, role.value, result.gateway)

        return ResolvedMedia(
            role=role,
            url=result.url,
            raw=ref.raw,
            mime=found.mime,
            dimensions=dims,
            source=found.source,
            gateway=result.gateway,
            resolved=True,
        )

    # ------------------------------------------------------------------
    # Whole artwork
    # ------------------------------------------------------------------

    async def _load_metadata(self, record: Mapping[str, Any], artwork_id: str) -> Optional[Mapping[str, Any]]:
        inline = fields.inline_metadata(record)
        if inline is not None:
            return inline
        ref = classify(fields.metadata_url(record))
        if ref is None:
            return None
        document = await self.resolver.resolve_json(ref)
        if not isinstance(document, Mapping):
            logger.info("Artwork %s: metadata document unavailable", artwork_id)
            return None
        return document

    @staticmethod
    def choose_primary(
        media: Mapping[MediaRole, Optional[ResolvedMedia]],
        generative: bool = False,
    ) -> Optional[ResolvedMedia]:
        generator = media.get(MediaRole.GENERATOR)
        if generator is not None:
            return generator

        animation = media.get(MediaRole.ANIMATION)
        if animation is not None:
            is_video = (animation.mime or "").startswith("video/") or fields.is_video_url(animation.raw)
            if is_video or generative:
                return animation

        image = media.get(MediaRole.IMAGE)
        if image is not None:
            return image

        present = [m for m in media.values() if m is not None]
        for m in present:
            if m.resolved:
                return m
        return present[0] if present else None

    async def resolve_artwork(
        self,
        record: Mapping[str, Any],
        chain: str,
        artwork_id: Optional[str] = None,
    ) -> ArtworkMediaSet:
        """Resolve every media role and the mint date for one record. Never raises."""
        artwork_id = artwork_id or artwork_identity(record, chain)
        metadata = await self._load_metadata(record, artwork_id)
        merged = {**metadata, **record} if metadata else dict(record)

        urls = {
            MediaRole.IMAGE: fields.image_url(merged, chain),
            MediaRole.ANIMATION: fields.animation_url(merged, chain),
            MediaRole.GENERATOR: fields.generator_url(record, metadata),
            MediaRole.THUMBNAIL: fields.thumbnail_url(merged, chain),
        }
        declared_dims = metadata_dimensions(record, metadata)

        # Roles that share a URL share one resolution
        by_url: dict[str, MediaRole] = {}
        for role in SHARED_URL_OWNERS:
            url = urls[role]
            if url and url not in by_url:
                by_url[url] = role
        roles = list(by_url.values())

        contract = fields.contract_address(record)
        token = fields.token_id(record)
        jobs = [
            self.resolve_media(
                role,
                urls[role],
                record,
                metadata,
                known_dimensions=None if role is MediaRole.THUMBNAIL else declared_dims,
                artwork_id=artwork_id,
            )
            for role in roles
        ]
        jobs.append(self.reconciler.reconcile(contract, token, chain, fields.raw_date_fields(record, metadata)))
        outcomes = await asyncio.gather(*jobs, return_exceptions=True)

        resolved_by_url: dict[str, Optional[ResolvedMedia]] = {}
        for role, outcome in zip(roles, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("Artwork %s %s failed", artwork_id, role.value, exc_info=outcome)
                outcome = None
            resolved_by_url[urls[role]] = outcome

        media: dict[MediaRole, Optional[ResolvedMedia]] = {}
        for role, url in urls.items():
            shared = resolved_by_url.get(url) if url else None
            if shared is not None and shared.role is not role:
                update: dict[str, Any] = {"role": role}
                if role is MediaRole.THUMBNAIL and declared_dims is not None:
                    # Metadata dimensions describe the artwork, not its thumbnail
                    update["dimensions"] = None
                shared = shared.model_copy(update=update)
            media[role] = shared

        mint_date = outcomes[-1]
        if isinstance(mint_date, BaseException):
            logger.error("Artwork %s mint date failed", artwork_id, exc_info=mint_date)
            mint_date = None

        primary = self.choose_primary(media, fields.is_generative(record, metadata))
        image = media.get(MediaRole.IMAGE)
        dimensions = (primary.dimensions if primary else None) or (image.dimensions if image else None)

        media_set = ArtworkMediaSet(
            artwork_id=artwork_id,
            chain=chain,
            contract_address=contract,
            token_id=token,
            image=media[MediaRole.IMAGE],
            animation=media[MediaRole.ANIMATION],
            generator=media[MediaRole.GENERATOR],
            thumbnail=media[MediaRole.THUMBNAIL],
            primary_role=primary.role if primary else None,
            mime=primary.mime if primary else None,
            dimensions=dimensions,
            metadata_url=fields.metadata_url(record),
            mint_date=mint_date,
            title=fields.title(record, metadata),
            description=fields.description(record, metadata),
            creator=fields.creator(record, metadata),
            attributes=fields.normalize_attributes(record.get("attributes") or (metadata or {}).get("attributes")),
            features=fields.extract_features(metadata, record),
            supply=fields.extract_supply(record, metadata),
        )
        if not media_set.is_displayable:
            logger.warning("Artwork %s has no resolvable media", artwork_id)
        return media_set

    async def resolve_many(self, items: Sequence[tuple[Mapping[str, Any], str]]) -> list[ArtworkMediaSet]:
        """Resolve many records with bounded cross-artwork concurrency."""

        async def work(item: tuple[Mapping[str, Any], str]) -> ArtworkMediaSet:
            record, chain = item
            return await self.resolve_artwork(record, chain)

        results = await run_in_batches(
            items, work, self.config.artwork_concurrency, self.config.batch_delay_s,
        )
        media_sets = []
        for (record, chain), result in zip(items, results):
            if isinstance(result, BaseException):
                artwork_id = artwork_identity(record, chain)
                logger.error("Artwork %s failed to resolve", artwork_id, exc_info=result)
                result = ArtworkMediaSet(artwork_id=artwork_id, chain=chain)
            media_sets.append(result)
        logger.info("Resolved %d artworks in batches of %d", len(media_sets), self.config.artwork_concurrency)
        return media_sets

    async def detect_mime(self, record: Mapping[str, Any], chain: str = "ethereum") -> Optional[str]:
        """MIME of the record's primary URL only; no dimensions or dates."""
        animation = fields.animation_url(record, chain)
        image = fields.image_url(record, chain)
        if animation and fields.is_video_url(animation):
            role, url = MediaRole.ANIMATION, animation
        elif image:
            role, url = MediaRole.IMAGE, image
        elif animation:
            role, url = MediaRole.ANIMATION, animation
        else:
            role, url = MediaRole.THUMBNAIL, fields.thumbnail_url(record, chain)

        media = await self.resolve_media(
            role, url, record, need_dimensions=False,
            artwork_id=artwork_identity(record, chain),
        )
        return media.mime if media else None
