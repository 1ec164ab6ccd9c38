"""
Tests for per-artwork assembly and cross-artwork batching.
"""

import asyncio

import pytest

from errors import ArtworkNotDisplayableError
from factories import CID_V0, CID_V1, TEST_IPFS_GATEWAYS, png_bytes, timeout
from media_models import ArtworkMediaSet, Dimensions, MediaRole, MediaSource, ResolvedMedia
from orchestrator import ResolutionOrchestrator, run_in_batches

G1, G2, G3 = TEST_IPFS_GATEWAYS
GIF_DATA = "data:image/gif;base64,R0lGODlh"


class TestResolveMedia:

    @pytest.mark.asyncio
    async def test_thumb_png_through_third_gateway(self, orchestrator, fake_session):
        fake_session.routes = {
            f"{G1}{CID_V1}/thumb.png": timeout(),
            f"{G2}{CID_V1}/thumb.png": (404, {}, b""),
            f"{G3}{CID_V1}/thumb.png": (200, {"Content-Type": "image/png"}, png_bytes(800, 600, total=1200)),
        }

        media = await orchestrator.resolve_media(MediaRole.THUMBNAIL, f"ipfs://{CID_V1}/thumb.png")

        assert media.url == f"{G3}{CID_V1}/thumb.png"
        assert media.mime == "image/png"
        assert media.dimensions.as_tuple() == (800, 600)
        assert media.source is MediaSource.HEADER
        assert media.gateway == G3
        assert media.resolved is True

    @pytest.mark.asyncio
    async def test_known_dimensions_skip_the_network(self, orchestrator, fake_session):
        media = await orchestrator.resolve_media(
            MediaRole.IMAGE,
            f"ipfs://{CID_V0}/cover.jpg",
            known_dimensions=Dimensions(width=10, height=20),
        )

        assert fake_session.calls == []
        assert media.mime == "image/jpeg"
        assert media.source is MediaSource.PLATFORM_HEURISTIC
        assert media.url == f"{G1}{CID_V0}/cover.jpg"

    @pytest.mark.asyncio
    async def test_unresolved_falls_back_to_guess(self, orchestrator, fake_session):
        media = await orchestrator.resolve_media(MediaRole.ANIMATION, f"ipfs://{CID_V0}")

        assert len(fake_session.calls) == 3
        assert media.resolved is False
        assert media.mime == "video/mp4"
        assert media.source is MediaSource.FALLBACK_DEFAULT
        assert media.url == f"{G1}{CID_V0}"

    @pytest.mark.asyncio
    async def test_blank_url_is_none(self, orchestrator):
        assert await orchestrator.resolve_media(MediaRole.IMAGE, None) is None


class TestResolveArtwork:

    @pytest.mark.asyncio
    async def test_structural_hint_needs_no_fetch(self, orchestrator, fake_session):
        record = {
            "image_url": f"ipfs://{CID_V0}/artifact.html",
            "dimensions": {"artifact": {"mime": "text/html"}},
        }

        media_set = await orchestrator.resolve_artwork(record, "ethereum")

        assert fake_session.calls == []
        assert media_set.image.mime == "text/html"
        assert media_set.image.source is MediaSource.DECLARED
        assert media_set.mime == "text/html"
        assert media_set.primary_role is MediaRole.IMAGE

    @pytest.mark.asyncio
    async def test_tezos_roles_share_one_fetch(self, orchestrator, fake_session):
        display = f"ipfs://{CID_V0}/display.png"
        fake_session.routes = {
            f"{G1}{CID_V0}/display.png": (200, {"Content-Type": "image/png"}, png_bytes(100, 50)),
        }
        record = {
            "display_uri": display,
            "artifact_uri": f"ipfs://{CID_V0}/artifact.mp4",
            "name": "Loop",
            "supply": "25",
        }

        media_set = await orchestrator.resolve_artwork(record, "tezos")

        assert fake_session.calls == [f"{G1}{CID_V0}/display.png"]
        assert media_set.thumbnail.role is MediaRole.THUMBNAIL
        assert media_set.thumbnail.url == media_set.image.url
        assert media_set.animation.mime == "video/mp4"
        assert media_set.primary_role is MediaRole.ANIMATION
        assert media_set.mime == "video/mp4"
        assert media_set.dimensions.as_tuple() == (100, 50)
        assert media_set.title == "Loop"
        assert media_set.supply == 25

    @pytest.mark.asyncio
    async def test_metadata_url_is_fetched_through_gateways(self, orchestrator, fake_session):
        fake_session.routes = {
            f"{G1}{CID_V1}/1.json": (200, {"Content-Type": "application/json"}, (
                b'{"name": "Ringers #1", "image": "https://example.com/x.png",'
                b' "dimensions": {"width": 10, "height": 20},'
                b' "attributes": [{"trait_type": "Palette", "value": "Rose"}]}'
            )),
        }
        record = {"token_uri": f"ipfs://{CID_V1}/1.json", "contract_address": "0xabc", "token_id": 1}

        media_set = await orchestrator.resolve_artwork(record, "ethereum")

        assert fake_session.calls == [f"{G1}{CID_V1}/1.json"]
        assert media_set.title == "Ringers #1"
        assert media_set.image.url == "https://example.com/x.png"
        assert media_set.dimensions.as_tuple() == (10, 20)
        assert media_set.attributes == [{"trait_type": "Palette", "value": "Rose"}]
        assert media_set.features == {"Palette": "Rose"}
        assert media_set.metadata_url == f"ipfs://{CID_V1}/1.json"
        assert media_set.artwork_id == "ethereum:0xabc:1"

    @pytest.mark.asyncio
    async def test_nothing_resolvable_is_not_displayable(self, orchestrator):
        media_set = await orchestrator.resolve_artwork({"image_url": f"ipfs://{CID_V0}", "id": "a1"}, "ethereum")

        assert media_set.is_displayable is False
        assert media_set.image.mime == "image/png"
        with pytest.raises(ArtworkNotDisplayableError):
            media_set.require_displayable()

    @pytest.mark.asyncio
    async def test_future_mint_date_is_dropped(self, orchestrator):
        record = {"image_url": "data:image/gif;base64,R0lGODlh", "mint_date": "2099-01-01"}

        media_set = await orchestrator.resolve_artwork(record, "ethereum")

        assert media_set.mint_date is None
        assert media_set.mime == "image/gif"

    @pytest.mark.asyncio
    async def test_bad_data_metadata_uri_still_resolves_image(self, orchestrator, fake_session):
        token_uri = "data:application/json;base64,abcde"
        record = {"token_uri": token_uri, "image_url": GIF_DATA}

        media_set = await orchestrator.resolve_artwork(record, "ethereum")

        assert fake_session.calls == []
        assert media_set.image.resolved is True
        assert media_set.mime == "image/gif"
        assert media_set.metadata_url == token_uri

    @pytest.mark.asyncio
    async def test_shared_generator_url_resolves_as_generator(self, orchestrator, fake_session):
        live = "https://example.com/live/abc"
        record = {"image_url": "https://example.com/a.png", "animation_url": live}

        media_set = await orchestrator.resolve_artwork(record, "ethereum")

        assert fake_session.calls_to(live) == 1
        assert media_set.primary_role is MediaRole.GENERATOR
        assert media_set.mime == "text/html"
        assert media_set.generator.source is MediaSource.FALLBACK_DEFAULT
        assert media_set.animation.role is MediaRole.ANIMATION
        assert media_set.animation.mime == "text/html"

    @pytest.mark.asyncio
    async def test_shared_thumbnail_drops_metadata_dimensions(self, orchestrator, fake_session):
        record = {"display_uri": f"ipfs://{CID_V0}/display.png", "width": 800, "height": 600}

        media_set = await orchestrator.resolve_artwork(record, "tezos")

        assert fake_session.calls == []
        assert media_set.thumbnail.url == media_set.image.url
        assert media_set.image.dimensions.as_tuple() == (800, 600)
        assert media_set.thumbnail.dimensions is None
        assert media_set.dimensions.as_tuple() == (800, 600)


class TestMalformedRecords:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("extra", [
        {"width": float("inf"), "height": 10},
        {"supply": float("inf"), "total_supply": "1e999"},
        {"dimensions": "huge", "width": "wide", "height": []},
        {"dimensions": {"artifact": "wide", "display": [1]}, "formats": 7, "mime": 12},
        {"formats": {"uri": GIF_DATA}, "attributes": "lots", "features": ["a"]},
        {"attributes": [None, 3, {"trait_type": "Width", "value": float("nan")}]},
        {"token_uri": "data:application/json;base64,abcde"},
        {"metadata": {1: 5, "creator": ["x"], "image_width": float("inf"), "image_height": 3}},
        {"mint_date": {"nested": True}, "timestamp": 10 ** 400, "createdAt": "\u00b2"},
        {"contract": {"address": None}, "token_id": None, "creators": [None], "name": 42},
        {"image_url": 5, "thumbnail_url": GIF_DATA},
    ])
    async def test_never_raises(self, orchestrator, extra):
        record = {"image_url": GIF_DATA, **extra}

        media_set = await orchestrator.resolve_artwork(record, "ethereum")

        assert isinstance(media_set, ArtworkMediaSet)
        assert media_set.is_displayable is True


class TestPrimary:

    def _media(self, role, mime, raw="https://example.com/a"):
        return ResolvedMedia(role=role, url=raw, raw=raw, mime=mime, resolved=True)

    def test_generator_wins_outright(self):
        media = {
            MediaRole.IMAGE: self._media(MediaRole.IMAGE, "image/png"),
            MediaRole.ANIMATION: self._media(MediaRole.ANIMATION, "video/mp4"),
            MediaRole.GENERATOR: self._media(MediaRole.GENERATOR, "text/html"),
        }
        assert ResolutionOrchestrator.choose_primary(media).role is MediaRole.GENERATOR

    def test_video_animation_beats_image(self):
        media = {
            MediaRole.IMAGE: self._media(MediaRole.IMAGE, "image/png"),
            MediaRole.ANIMATION: self._media(MediaRole.ANIMATION, "video/webm"),
        }
        assert ResolutionOrchestrator.choose_primary(media).role is MediaRole.ANIMATION

    def test_non_video_animation_needs_generative_flag(self):
        media = {
            MediaRole.IMAGE: self._media(MediaRole.IMAGE, "image/png"),
            MediaRole.ANIMATION: self._media(MediaRole.ANIMATION, "text/html"),
        }
        assert ResolutionOrchestrator.choose_primary(media).role is MediaRole.IMAGE
        assert ResolutionOrchestrator.choose_primary(media, generative=True).role is MediaRole.ANIMATION

    def test_thumbnail_only(self):
        media = {MediaRole.THUMBNAIL: self._media(MediaRole.THUMBNAIL, "image/jpeg")}
        assert ResolutionOrchestrator.choose_primary(media).role is MediaRole.THUMBNAIL
        assert ResolutionOrchestrator.choose_primary({}) is None


class TestBatching:

    @pytest.mark.asyncio
    async def test_never_more_than_three_in_flight(self, orchestrator):
        in_flight = 0
        peak = 0

        async def fake_resolve(record, chain, artwork_id=None):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01 * (record["id"] % 3 + 1))
            in_flight -= 1
            return ArtworkMediaSet(artwork_id=str(record["id"]), chain=chain)

        orchestrator.resolve_artwork = fake_resolve
        items = [({"id": i}, "ethereum") for i in range(10)]

        results = await orchestrator.resolve_many(items)

        assert peak == 3
        assert [r.artwork_id for r in results] == [str(i) for i in range(10)]

    @pytest.mark.asyncio
    async def test_one_failure_does_not_sink_the_batch(self, orchestrator):
        async def flaky(record, chain, artwork_id=None):
            if record["id"] == "bad":
                raise RuntimeError("boom")
            return ArtworkMediaSet(artwork_id=record["id"], chain=chain)

        orchestrator.resolve_artwork = flaky

        results = await orchestrator.resolve_many([({"id": "ok"}, "tezos"), ({"id": "bad"}, "tezos")])

        assert [r.artwork_id for r in results] == ["ok", "bad"]
        assert results[1].is_displayable is False

    @pytest.mark.asyncio
    async def test_next_batch_waits_for_previous(self):
        events = []

        async def work(n):
            events.append(("start", n))
            await asyncio.sleep(0.02 if n == 0 else 0)
            events.append(("end", n))
            return n

        results = await run_in_batches([0, 1, 2, 3], work, batch_size=2, delay_s=0)

        assert results == [0, 1, 2, 3]
        assert events.index(("end", 0)) < events.index(("start", 2))
