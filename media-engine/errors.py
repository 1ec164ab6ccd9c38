"""
Error taxonomy for media resolution.

None of these abort a batch. Lower layers raise them, the orchestrator
catches them per field and degrades the field to null or a best guess.
The one exception meant for callers is ``ArtworkNotDisplayableError``.
"""

from __future__ import annotations

from typing import Optional, Sequence


class MediaResolutionError(Exception):
    """Base class for every resolution failure."""


class ClassificationAmbiguous(MediaResolutionError):
    """URI could not be classified; treated as an HTTP passthrough."""


class GatewayExhaustedError(MediaResolutionError):
    """Every gateway for a content-addressed reference failed."""

    def __init__(self, raw: str, attempts: Sequence = ()):
        self.raw = raw
        self.attempts = list(attempts)
        super().__init__(f"All {len(self.attempts)} gateways failed for: {raw}")

    @property
    def last_gateway(self) -> Optional[str]:
        if not self.attempts:
            return None
        return self.attempts[-1].gateway


class SniffInconclusive(MediaResolutionError):
    """No strategy produced a whitelisted MIME type."""


class DimensionUnavailable(MediaResolutionError):
    """Neither metadata nor image headers yielded width and height."""


class MintDateUnavailable(MediaResolutionError):
    """No mint-date candidate survived validation."""


class InvalidMimeError(MediaResolutionError):
    """A declared or sniffed MIME type is not on the whitelist."""


class ArtworkNotDisplayableError(MediaResolutionError):
    """Every media role of an artwork failed to resolve."""

    def __init__(self, artwork_id: str):
        self.artwork_id = artwork_id
        super().__init__(f"Artwork {artwork_id} has no resolvable media yet")
