"""
Result types shared by the resolver, sniffer and orchestrator.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from errors import ArtworkNotDisplayableError


class MediaRole(str, Enum):
    IMAGE = "image"
    ANIMATION = "animation"
    GENERATOR = "generator"
    THUMBNAIL = "thumbnail"


class MediaSource(str, Enum):
    """Where a MIME type came from; doubles as a confidence level."""

    DECLARED = "declared"
    PLATFORM_HEURISTIC = "platform-heuristic"
    HEADER = "header"
    BUFFER_SNIFF = "buffer-sniff"
    FALLBACK_DEFAULT = "fallback-default"


class ResolutionStatus(str, Enum):
    SUCCESS = "success"
    TIMEOUT = "timeout"
    NOT_FOUND = "not_found"
    INVALID_CONTENT = "invalid_content"


class ResolutionAttempt(BaseModel):
    """One gateway hop. Logged, then discarded."""

    gateway: str
    url: str
    status: ResolutionStatus
    http_status: Optional[int] = None
    mime: Optional[str] = None
    bytes_sampled: int = 0


class Dimensions(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: int = Field(gt=0)
    height: int = Field(gt=0)

    def as_tuple(self) -> tuple[int, int]:
        return (self.width, self.height)


class ResolvedMedia(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: MediaRole
    url: str
    raw: str
    mime: Optional[str] = None
    dimensions: Optional[Dimensions] = None
    source: MediaSource = MediaSource.FALLBACK_DEFAULT
    gateway: Optional[str] = None
    resolved: bool = False


class ArtworkMediaSet(BaseModel):
    """Everything the persistence layer needs to display one artwork."""

    model_config = ConfigDict(frozen=True)

    artwork_id: str
    chain: str
    contract_address: Optional[str] = None
    token_id: Optional[str] = None

    image: Optional[ResolvedMedia] = None
    animation: Optional[ResolvedMedia] = None
    generator: Optional[ResolvedMedia] = None
    thumbnail: Optional[ResolvedMedia] = None

    primary_role: Optional[MediaRole] = None
    mime: Optional[str] = None
    dimensions: Optional[Dimensions] = None

    metadata_url: Optional[str] = None
    mint_date: Optional[datetime] = None
    title: Optional[str] = None
    description: Optional[str] = None
    creator: Optional[dict[str, str]] = None
    attributes: list[dict[str, Any]] = Field(default_factory=list)
    features: Optional[dict[str, Any]] = None
    supply: Optional[int] = None

    def media(self, role: MediaRole) -> Optional[ResolvedMedia]:
        return getattr(self, role.value)

    @property
    def roles(self) -> list[ResolvedMedia]:
        return [m for m in (self.image, self.animation, self.generator, self.thumbnail) if m is not None]

    @property
    def is_displayable(self) -> bool:
        """False only when every media role failed to resolve."""
        return any(m.resolved for m in self.roles)

    def require_displayable(self) -> "ArtworkMediaSet":
        if not self.is_displayable:
            raise ArtworkNotDisplayableError(self.artwork_id)
        return self
