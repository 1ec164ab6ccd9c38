"""
Tests for reading media URLs and descriptive fields off indexer records.
"""

import pytest

import record_fields as fields


class TestUrls:

    def test_tezos_prefers_display_uri(self):
        record = {"artifact_uri": "ipfs://a", "display_uri": "ipfs://d", "thumbnail_uri": "ipfs://t"}
        assert fields.image_url(record, "tezos") == "ipfs://d"
        assert fields.thumbnail_url(record, "tezos") == "ipfs://t"

    def test_tezos_video_artifact_is_animation(self):
        assert fields.animation_url({"artifact_uri": "ipfs://Qm/v.mp4"}, "tezos") == "ipfs://Qm/v.mp4"
        assert fields.animation_url({"artifact_uri": "ipfs://Qm/i.png"}, "tezos") is None

    def test_evm_keys(self):
        record = {"imageUrl": "  https://x/a.png ", "display_animation_url": "https://x/a.mp4"}
        assert fields.image_url(record, "ethereum") == "https://x/a.png"
        assert fields.animation_url(record, "ethereum") == "https://x/a.mp4"
        assert fields.thumbnail_url(record, "ethereum") is None

    def test_generator_needs_generator_looking_url(self):
        assert fields.generator_url({"animation_url": "https://x/a.mp4"}) is None
        record = {"animation_url": "https://generator.artblocks.io/0xa7/1"}
        assert fields.generator_url(record) == "https://generator.artblocks.io/0xa7/1"
        assert fields.generator_url({}, {"generator_url": "https://x/live/1"}) == "https://x/live/1"

    def test_metadata_url(self):
        assert fields.metadata_url({"tokenUri": "ipfs://Qm/1.json"}) == "ipfs://Qm/1.json"


class TestMimeHints:

    def test_formats_match_by_uri(self):
        record = {
            "artifact_uri": "ipfs://a",
            "formats": [{"uri": "ipfs://d", "mimeType": "image/jpeg"}, {"uri": "ipfs://a", "mimeType": "video/mp4"}],
        }
        assert fields.declared_mime(record, "ipfs://d") == "image/jpeg"
        assert fields.declared_mime(record, "ipfs://a") == "video/mp4"

    @pytest.mark.parametrize("formats", [7, "ipfs://a", {"uri": "ipfs://a"}, [None, 3]])
    def test_malformed_formats_are_ignored(self, formats):
        record = {"artifact_uri": "ipfs://a", "formats": formats, "mime": "image/png"}
        assert fields.declared_mime(record, "ipfs://a") == "image/png"

    def test_record_mime_only_describes_the_artifact(self):
        record = {"artifact_uri": "ipfs://a", "display_uri": "ipfs://d", "mime": "model/gltf-binary"}
        assert fields.declared_mime(record, "ipfs://a") == "model/gltf-binary"
        assert fields.declared_mime(record, "ipfs://d") is None

    def test_structural_hint_shapes(self):
        nested = {"dimensions": {"artifact": {"mime": "text/html"}}}
        top = {"display": {"mime": "image/png"}, "name": "x"}
        assert fields.structural_hint(nested) == {"artifact": {"mime": "text/html"}}
        assert fields.structural_hint(top) == {"display": {"mime": "image/png"}}
        assert fields.structural_hint({"dimensions": {"width": 1}}) is None


class TestDescriptive:

    def test_attribute_shapes(self):
        raw = [
            {"trait_type": "Palette", "value": "Rose"},
            {"attribute": {"name": "Shape"}, "value": "Circle"},
            {"name": "Speed", "value": 3},
            {"value": "orphan"},
            {"trait_type": "Empty", "value": None},
        ]
        assert fields.normalize_attributes(raw) == [
            {"trait_type": "Palette", "value": "Rose"},
            {"trait_type": "Shape", "value": "Circle"},
            {"trait_type": "Speed", "value": 3},
        ]

    def test_attributes_from_mapping_and_cap(self):
        assert fields.normalize_attributes({"a": 1}) == [{"trait_type": "a", "value": 1}]
        many = [{"trait_type": f"t{i}", "value": i} for i in range(80)]
        assert len(fields.normalize_attributes(many)) == fields.MAX_ATTRIBUTES

    def test_features_prefer_declared_mapping(self):
        assert fields.extract_features({"features": {"Density": "High"}}) == {"Density": "High"}
        assert fields.extract_features({"attributes": "nope"}) is None

    @pytest.mark.parametrize("record, expected", [
        ({"supply": "10"}, 10),
        ({"total_supply": 0, "edition_size": 5}, 5),
        ({"supply": True}, 1),
        ({"supply": "many"}, 1),
        ({"supply": float("inf")}, 1),
        ({"supply": float("nan"), "edition_size": 3}, 3),
        ({}, 1),
    ])
    def test_supply(self, record, expected):
        assert fields.extract_supply(record) == expected

    def test_identity_fields(self):
        record = {"contract": {"address": "KT1abc"}, "tokenId": 0}
        assert fields.contract_address(record) == "KT1abc"
        assert fields.token_id(record) == "0"

    def test_creator_shapes(self):
        tezos = {"creators": [{"creator_address": "tz1abc", "holder": {"alias": "zancan"}}]}
        assert fields.creator(tezos) == {"address": "tz1abc", "username": "zancan"}
        assert fields.creator({"creator": "0xdef"}) == {"address": "0xdef"}
        opensea = {"creator": {"address": "0x123", "user": {"username": "tylerxhobbs"}}}
        assert fields.creator(opensea) == {"address": "0x123", "username": "tylerxhobbs"}
        assert fields.creator({}, {"creator": "0x9"}) == {"address": "0x9"}
        assert fields.creator({"creators": []}) is None

    def test_raw_dates_record_first(self):
        assert fields.raw_date_fields({"mint_date": "a"}, {"timestamp": "b", "createdAt": ""}) == ["a", "b"]
