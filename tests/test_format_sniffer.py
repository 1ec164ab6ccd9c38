"""
Tests for the MIME strategy chain and the whitelist.
"""

import pytest

from errors import InvalidMimeError, SniffInconclusive
from factories import CID_V0, gif_bytes, jpeg_bytes, png_bytes, webp_bytes
from format_sniffer import (
    AUDIO_MIME,
    MIME_WHITELIST,
    is_whitelisted,
    media_kind,
    normalize_mime,
    platform_mime,
    sniff,
    sniff_bytes,
    sniff_mime,
    sniff_payload,
    structural_mime,
)
from media_models import MediaRole, MediaSource
from uri_classifier import classify


def _allowed(mime):
    return mime is None or mime in MIME_WHITELIST or AUDIO_MIME.fullmatch(mime) is not None


class TestWhitelist:

    def test_normalizes_parameters_and_aliases(self):
        assert normalize_mime("Image/JPG; charset=binary") == "image/jpeg"
        assert normalize_mime("text/javascript") == "application/javascript"

    def test_audio_family_is_allowed(self):
        assert normalize_mime("audio/x-flac") == "audio/x-flac"
        assert normalize_mime("Audio/Vnd.Dolby.MP4+x; codecs=ac-3") == "audio/vnd.dolby.mp4+x"

    @pytest.mark.parametrize("bad", [
        "text/x-evil", "application/x-msdownload", "audio/", "audio/evil value", "audio/<script>", "", None, 42,
    ])
    def test_rejects_everything_else(self, bad):
        with pytest.raises(InvalidMimeError):
            normalize_mime(bad)
        assert is_whitelisted(bad) is False

    @pytest.mark.parametrize("header", [
        "text/x-evil",
        "application/octet-stream",
        "video/x-msvideo",
        "image/png",
        "IMAGE/GIF",
        "application/json; charset=utf-8",
        "",
        "audio/mpeg",
    ])
    @pytest.mark.parametrize("sample", [None, b"", b"\x00\x01\x02\x03", png_bytes(2, 2), b"MZ\x90\x00"])
    def test_sniff_never_leaves_the_whitelist(self, header, sample):
        ref = classify("https://example.com/asset")
        result = sniff(ref, declared=header, headers={"Content-Type": header}, sample=sample)
        assert _allowed(result.mime)


class TestStrategies:

    def test_declared_wins_without_network(self):
        result = sniff(classify("https://example.com/x.png"), declared="video/mp4",
                       headers={"Content-Type": "image/png"})
        assert result == ("video/mp4", MediaSource.DECLARED)

    def test_invalid_declared_is_ignored(self):
        result = sniff(classify("https://example.com/x.png"), declared="image/x-tiff")
        assert result.source is MediaSource.PLATFORM_HEURISTIC
        assert result.mime == "image/png"

    def test_structural_hint_uses_role_priority(self):
        hint = {
            "thumbnail": {"mime": "image/jpeg"},
            "display": {"mime": "image/png"},
            "artifact": {"width": 10},
        }
        assert structural_mime(hint) == "image/png"

    def test_structural_hint_counts_as_declared(self):
        ref = classify(f"ipfs://{CID_V0}/artifact.html")
        result = sniff(ref, structural={"artifact": {"mime": "text/html"}})
        assert result == ("text/html", MediaSource.DECLARED)

    @pytest.mark.parametrize("url, expected", [
        ("https://generator.artblocks.io/0xa7d8/78000001", "text/html"),
        ("https://media.artblocks.io/generator/1", "text/html"),
        ("https://gateway.fxhash.xyz/ipfs/gentk/123", "text/html"),
        ("https://openseauserdata.com/files/abc.mp4", "video/mp4"),
        ("https://cdn.example.com/video/123", "video/mp4"),
        ("ipfs://Qm/clip.MOV", "video/quicktime"),
        ("https://example.com/model.glb?v=2", "model/gltf-binary"),
        ("https://example.com/noext", None),
        ("https://example.com/file.avi", None),
    ])
    def test_platform_table(self, url, expected):
        assert platform_mime(url) == expected

    def test_header_beats_platform_guess_once_fetched(self):
        ref = classify("https://example.com/thumb.png")
        result = sniff(ref, headers={"Content-Type": "image/png"}, sample=png_bytes(1, 1))
        assert result == ("image/png", MediaSource.HEADER)

    def test_platform_guess_stands_without_fetch(self):
        result = sniff(classify("https://example.com/thumb.png"))
        assert result == ("image/png", MediaSource.PLATFORM_HEURISTIC)

    def test_octet_stream_falls_through_to_bytes(self):
        result = sniff_payload({"content-type": "application/octet-stream"}, gif_bytes(1, 1))
        assert result == ("image/gif", MediaSource.BUFFER_SNIFF)

    def test_large_payload_is_not_sniffed(self):
        with pytest.raises(SniffInconclusive):
            sniff_payload({}, png_bytes(1, 1), content_length=5 * 1024 * 1024)

    def test_context_guess_by_role(self):
        ref = classify("https://example.com/blob")
        assert sniff(ref, role=MediaRole.ANIMATION) == ("video/mp4", MediaSource.FALLBACK_DEFAULT)
        assert sniff(ref, role=MediaRole.IMAGE) == ("image/png", MediaSource.FALLBACK_DEFAULT)
        assert sniff(ref, headers={}, sample=b"????", role=MediaRole.IMAGE).source is MediaSource.FALLBACK_DEFAULT

    def test_data_uri_declares_itself(self):
        assert sniff_mime(classify("data:image/gif;base64,R0lGOD")) == "image/gif"

    def test_nothing_to_go_on(self):
        assert sniff_mime(None) is None


class TestMagicBytes:

    @pytest.mark.parametrize("payload, expected", [
        (png_bytes(1, 1), "image/png"),
        (jpeg_bytes(1, 1), "image/jpeg"),
        (gif_bytes(1, 1), "image/gif"),
        (webp_bytes(1, 1), "image/webp"),
        (b"\x00\x00\x00\x18ftypmp42", "video/mp4"),
        (b"\x00\x00\x00\x14ftypqt  ", "video/quicktime"),
        (b"\x1a\x45\xdf\xa3\x01\x00", "video/webm"),
        (b"%PDF-1.7", "application/pdf"),
        (b"glTF\x02\x00\x00\x00", "model/gltf-binary"),
        (b"ID3\x04\x00", "audio/mpeg"),
        (b"  <svg xmlns='http://www.w3.org/2000/svg'/>", "image/svg+xml"),
        (b"<!DOCTYPE html><html>", "text/html"),
        (b"\x00\x01\x02", None),
    ])
    def test_signatures(self, payload, expected):
        assert sniff_bytes(payload) == expected


def test_media_kind_grouping():
    assert media_kind("video/webm") == "video"
    assert media_kind("text/html") == "interactive"
    assert media_kind("model/gltf+json") == "model"
    assert media_kind(None) == "unknown"
