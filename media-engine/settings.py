"""
Engine configuration for the NFT Media Resolution Engine.

Everything the resolver, orchestrator, reconciler and client loader need
to know about the outside world lives in one immutable ``EngineConfig``.
It is built once at startup (``EngineConfig.from_env()``) and passed
explicitly to each component; nothing reads the environment afterwards.

Usage:
    config = EngineConfig.from_env()
    resolver = GatewayResolver(config)
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_IPFS_GATEWAYS = (
    "https://ipfs.io/ipfs/",
    "https://dweb.link/ipfs/",
    "https://nftstorage.link/ipfs/",
    "https://gateway.pinata.cloud/ipfs/",
)
DEFAULT_ARWEAVE_GATEWAYS = (
    "https://arweave.net/",
    "https://ar-io.net/",
    "https://permagate.io/",
)
DEFAULT_ONCHFS_GATEWAYS = (
    "https://onchfs.fxhash2.xyz/",
)

# Per-hop ceiling; the cascade worst case is len(gateways) * this.
MAX_GATEWAY_TIMEOUT_S = 2.0

DEFAULT_PLACEHOLDER_URL = "/static/artwork-placeholder.svg"

# Block explorers keyed by chain. A chain is only queried when its
# credential is configured.
EXPLORER_API_BASES = {
    "ethereum": "https://api.etherscan.io/api",
    "polygon": "https://api.polygonscan.com/api",
    "base": "https://api.basescan.org/api",
}
EXPLORER_KEY_ENV = {
    "ethereum": "ETHERSCAN_API_KEY",
    "polygon": "POLYGONSCAN_API_KEY",
    "base": "BASESCAN_API_KEY",
}


def _start_of_current_year() -> datetime:
    now = datetime.now(timezone.utc)
    return datetime(now.year, 1, 1, tzinfo=timezone.utc)


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.environ.get(name, "")
    items = tuple(part.strip() for part in raw.split(",") if part.strip())
    return items or default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    return int(raw)


# ---------------------------------------------------------------------------
# Config models
# ---------------------------------------------------------------------------


class GatewayConfig(BaseModel):
    """Ordered gateway base URLs per content-addressed scheme."""

    model_config = ConfigDict(frozen=True)

    ipfs: tuple[str, ...] = DEFAULT_IPFS_GATEWAYS
    arweave: tuple[str, ...] = DEFAULT_ARWEAVE_GATEWAYS
    onchfs: tuple[str, ...] = DEFAULT_ONCHFS_GATEWAYS

    @field_validator("ipfs", "arweave", "onchfs")
    @classmethod
    def _trailing_slash(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if not value:
            raise ValueError("gateway list must not be empty")
        return tuple(base if base.endswith("/") else base + "/" for base in value)


class EngineConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    gateways: GatewayConfig = Field(default_factory=GatewayConfig)
    gateway_timeout_s: float = Field(default=MAX_GATEWAY_TIMEOUT_S, gt=0, le=MAX_GATEWAY_TIMEOUT_S)
    user_agent: str = "NFTMediaEngine/1.0 (artwork ingestion)"

    # Payloads under this size are eligible for magic-byte sniffing; it is
    # also the most the resolver will ever read from one response.
    sniff_size_limit: int = 1024 * 1024
    sniff_sample_bytes: int = 8 * 1024

    response_cache_size: int = Field(default=256, ge=0)

    artwork_concurrency: int = Field(default=3, ge=1)
    batch_delay_s: float = Field(default=0.2, ge=0)

    opensea_api_key: Optional[str] = None
    explorer_api_keys: dict[str, str] = Field(default_factory=dict)
    suspicious_mint_cutoff: datetime = Field(default_factory=_start_of_current_year)

    optimizer_base_url: Optional[str] = None
    optimizer_token: Optional[str] = None
    loader_timeout_s: float = Field(default=10.0, gt=0)
    placeholder_url: str = DEFAULT_PLACEHOLDER_URL

    def gateways_for(self, scheme: str) -> tuple[str, ...]:
        """Gateway list for a ``MediaScheme`` value; empty for passthrough schemes."""
        return {
            "ipfs": self.gateways.ipfs,
            "arweave": self.gateways.arweave,
            "onchfs": self.gateways.onchfs,
        }.get(str(scheme), ())

    def explorer_key(self, chain: str) -> Optional[str]:
        return self.explorer_api_keys.get(chain.lower()) or None

    @classmethod
    def from_env(cls) -> "EngineConfig":
        explorer_keys = {
            chain: os.environ[env]
            for chain, env in EXPLORER_KEY_ENV.items()
            if os.environ.get(env)
        }
        cutoff_raw = os.environ.get("SUSPICIOUS_MINT_CUTOFF", "")
        cutoff = _start_of_current_year()
        if cutoff_raw:
            cutoff = datetime.fromisoformat(cutoff_raw)
            if cutoff.tzinfo is None:
                cutoff = cutoff.replace(tzinfo=timezone.utc)

        return cls(
            gateways=GatewayConfig(
                ipfs=_env_list("IPFS_GATEWAYS", DEFAULT_IPFS_GATEWAYS),
                arweave=_env_list("ARWEAVE_GATEWAYS", DEFAULT_ARWEAVE_GATEWAYS),
                onchfs=_env_list("ONCHFS_GATEWAYS", DEFAULT_ONCHFS_GATEWAYS),
            ),
            gateway_timeout_s=min(_env_float("GATEWAY_TIMEOUT_S", MAX_GATEWAY_TIMEOUT_S), MAX_GATEWAY_TIMEOUT_S),
            response_cache_size=_env_int("RESPONSE_CACHE_SIZE", 256),
            artwork_concurrency=_env_int("ARTWORK_CONCURRENCY", 3),
            batch_delay_s=_env_float("BATCH_DELAY_S", 0.2),
            opensea_api_key=os.environ.get("OPENSEA_API_KEY") or None,
            explorer_api_keys=explorer_keys,
            suspicious_mint_cutoff=cutoff,
            optimizer_base_url=os.environ.get("MEDIA_OPTIMIZER_URL") or None,
            optimizer_token=os.environ.get("MEDIA_OPTIMIZER_TOKEN") or None,
            loader_timeout_s=_env_float("LOADER_TIMEOUT_S", 10.0),
            placeholder_url=os.environ.get("PLACEHOLDER_URL", DEFAULT_PLACEHOLDER_URL),
        )
