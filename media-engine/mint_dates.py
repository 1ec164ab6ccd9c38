"""
Mint-Date Reconciler — pick the most trustworthy mint timestamp.

Sources, most reliable first:

1. Events API (OpenSea v2): the transfer from the zero address for the
   contract and token.
2. Block-explorer API (Etherscan family): the ``tokennfttx`` history for
   the contract, filtered to the mint of this token. Only queried when a
   credential for the chain is configured.
3. Raw date-like fields on the indexer record, which are often import
   timestamps rather than mint timestamps.

Future dates are rejected. Dates on or after the suspicious cutoff are
kept but lose to any earlier-dated candidate.

Usage:
    reconciler = MintDateReconciler(config)
    minted = await reconciler.reconcile("0xabc...", "42", "ethereum", ["2021-05-01"])
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Optional

import httpx
from pydantic import BaseModel

from errors import MintDateUnavailable
from settings import EXPLORER_API_BASES, EngineConfig

logger = logging.getLogger("media-engine.mint_dates")

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

OPENSEA_EVENTS_URL = "https://api.opensea.io/api/v2/events/chain/{chain}/contract/{contract}/nfts/{token_id}"
OPENSEA_CHAINS = {
    "ethereum": "ethereum",
    "eth": "ethereum",
    "polygon": "matic",
    "matic": "matic",
    "base": "base",
    "arbitrum": "arbitrum",
    "optimism": "optimism",
}
EVENTS_PAGE_SIZE = 50
EVENTS_MAX_PAGES = 10
EVENTS_PAGE_DELAY_S = 0.1

EXPLORER_PAGE_SIZE = 1000
EXPLORER_MAX_PAGES = 10
EXPLORER_PAGE_DELAY_S = 0.2

PROVIDER_TIMEOUT_S = 15.0


class MintDateSource(str, Enum):
    EVENTS_API = "events-api"
    EXPLORER_API = "explorer-api"
    RAW_FIELD = "raw-field"


TRUST_RANK = {
    MintDateSource.EVENTS_API: 1,
    MintDateSource.EXPLORER_API: 2,
    MintDateSource.RAW_FIELD: 3,
}


class MintDateCandidate(BaseModel):
    date: datetime
    source: MintDateSource
    trust_rank: int
    suspicious: bool = False


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_date(value: Any) -> Optional[datetime]:
    """Parse ISO strings and unix seconds/milliseconds into aware UTC datetimes."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.isdecimal():
            value = int(text)
        else:
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                return None
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)

    if isinstance(value, (int, float)):
        try:
            seconds = value / 1000 if value > 1e12 else value
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    return None


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


class _HttpProvider(ABC):
    source: MintDateSource

    def __init__(self, config: EngineConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client = client

    @abstractmethod
    def available(self, chain: str) -> bool:
        ...

    async def fetch(self, contract_address: str, token_id: str, chain: str) -> datetime:
        if self._client is not None:
            return await self._fetch(self._client, contract_address, token_id, chain)
        async with httpx.AsyncClient(timeout=PROVIDER_TIMEOUT_S) as client:
            return await self._fetch(client, contract_address, token_id, chain)

    @abstractmethod
    async def _fetch(self, client: httpx.AsyncClient, contract_address: str, token_id: str, chain: str) -> datetime:
        ...


class OpenSeaEventsProvider(_HttpProvider):
    """Mint transfer from the OpenSea v2 events endpoint."""

    source = MintDateSource.EVENTS_API
    page_delay_s = EVENTS_PAGE_DELAY_S

    def available(self, chain: str) -> bool:
        return bool(self.config.opensea_api_key) and chain.lower() in OPENSEA_CHAINS

    async def _fetch(self, client, contract_address, token_id, chain):
        url = OPENSEA_EVENTS_URL.format(
            chain=OPENSEA_CHAINS[chain.lower()],
            contract=contract_address,
            token_id=token_id,
        )
        headers = {"X-API-KEY": self.config.opensea_api_key or "", "Accept": "application/json"}
        cursor = None

        for page in range(EVENTS_MAX_PAGES):
            params = {"limit": EVENTS_PAGE_SIZE, "event_type": "transfer"}
            if cursor:
                params["next"] = cursor
            try:
                resp = await client.get(url, params=params, headers=headers)
                resp.raise_for_status()
                payload = resp.json()
            except httpx.HTTPStatusError as exc:
                raise MintDateUnavailable(
                    f"Events API HTTP {exc.response.status_code} for {contract_address}/{token_id}"
                ) from exc
            except (httpx.RequestError, ValueError) as exc:
                raise MintDateUnavailable(f"Events API unreachable: {exc}") from exc

            if not isinstance(payload, Mapping):
                raise MintDateUnavailable(f"Events API returned {type(payload).__name__}, expected an object")
            events = payload.get("asset_events")
            for event in events if isinstance(events, list) else ():
                if not isinstance(event, Mapping):
                    continue
                if str(event.get("from_address", "")).lower() != ZERO_ADDRESS:
                    continue
                minted = parse_date(event.get("event_timestamp"))
                if minted:
                    logger.info("Mint event found for %s/%s on page %d", contract_address, token_id, page + 1)
                    return minted

            cursor = payload.get("next")
            if not cursor:
                break
            await asyncio.sleep(self.page_delay_s)

        raise MintDateUnavailable(f"No mint event for {contract_address}/{token_id}")


class ExplorerProvider(_HttpProvider):
    """Mint transaction from an Etherscan-compatible ``tokennfttx`` history."""

    source = MintDateSource.EXPLORER_API
    page_delay_s = EXPLORER_PAGE_DELAY_S

    def available(self, chain: str) -> bool:
        return chain.lower() in EXPLORER_API_BASES and bool(self.config.explorer_key(chain))

    async def _fetch(self, client, contract_address, token_id, chain):
        base = EXPLORER_API_BASES[chain.lower()]
        api_key = self.config.explorer_key(chain)

        for page in range(1, EXPLORER_MAX_PAGES + 1):
            params = {
                "module": "account",
                "action": "tokennfttx",
                "contractaddress": contract_address,
                "page": page,
                "offset": EXPLORER_PAGE_SIZE,
                "sort": "asc",
                "apikey": api_key,
            }
            try:
                resp = await client.get(base, params=params)
                resp.raise_for_status()
                payload = resp.json()
            except httpx.HTTPStatusError as exc:
                raise MintDateUnavailable(f"Explorer HTTP {exc.response.status_code}") from exc
            except (httpx.RequestError, ValueError) as exc:
                raise MintDateUnavailable(f"Explorer unreachable: {exc}") from exc

            if not isinstance(payload, Mapping):
                raise MintDateUnavailable(f"Explorer returned {type(payload).__name__}, expected an object")
            result = payload.get("result")
            if payload.get("status") != "1" or not isinstance(result, list):
                raise MintDateUnavailable(f"Explorer returned no history: {payload.get('message')}")

            for tx in result:
                if not isinstance(tx, Mapping):
                    continue
                if str(tx.get("from", "")).lower() == ZERO_ADDRESS and str(tx.get("tokenID")) == str(token_id):
                    minted = parse_date(tx.get("timeStamp"))
                    if minted:
                        return minted

            if len(result) < EXPLORER_PAGE_SIZE:
                break
            await asyncio.sleep(self.page_delay_s)

        raise MintDateUnavailable(f"No mint transaction for {contract_address}/{token_id}")


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MintDateReconciler:
    def __init__(
        self,
        config: EngineConfig,
        events: Optional[_HttpProvider] = None,
        explorer: Optional[_HttpProvider] = None,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.config = config
        self.providers: list[_HttpProvider] = [
            events or OpenSeaEventsProvider(config),
            explorer or ExplorerProvider(config),
        ]
        self._now = now

    def validate(self, date: datetime, source: MintDateSource) -> Optional[MintDateCandidate]:
        """Reject future dates; flag dates on or after the cutoff as suspicious."""
        if date > self._now():
            logger.warning("Rejected future mint date %s from %s", date.isoformat(), source.value)
            return None
        return MintDateCandidate(
            date=date,
            source=source,
            trust_rank=TRUST_RANK[source],
            suspicious=date >= self.config.suspicious_mint_cutoff,
        )

    @staticmethod
    def select(candidates: list[MintDateCandidate]) -> Optional[MintDateCandidate]:
        if not candidates:
            return None

        def demoted(c: MintDateCandidate) -> bool:
            return c.suspicious and any(o.date < c.date for o in candidates if o is not c)

        return min(candidates, key=lambda c: (demoted(c), c.trust_rank, c.date))

    async def candidates(
        self,
        contract_address: Optional[str],
        token_id: Optional[str],
        chain: str,
        raw_date_fields: Iterable[Any] = (),
    ) -> list[MintDateCandidate]:
        """Validated candidates, stopping at the first non-suspicious one."""
        found: list[MintDateCandidate] = []

        if contract_address and token_id is not None:
            for provider in self.providers:
                if not provider.available(chain):
                    continue
                try:
                    date = await provider.fetch(contract_address, str(token_id), chain)
                except MintDateUnavailable as exc:
                    logger.info("%s: %s", provider.source.value, exc)
                    continue
                except Exception:
                    logger.exception("%s failed for %s/%s", provider.source.value, contract_address, token_id)
                    continue
                candidate = self.validate(date, provider.source)
                if candidate is None:
                    continue
                found.append(candidate)
                if not candidate.suspicious:
                    return found

        for raw in raw_date_fields:
            date = parse_date(raw)
            if date is None:
                logger.debug("Unparseable raw date field: %r", raw)
                continue
            candidate = self.validate(date, MintDateSource.RAW_FIELD)
            if candidate is not None:
                found.append(candidate)
        return found

    async def reconcile(
        self,
        contract_address: Optional[str],
        token_id: Optional[str],
        chain: str,
        raw_date_fields: Iterable[Any] = (),
    ) -> Optional[datetime]:
        found = await self.candidates(contract_address, token_id, chain, raw_date_fields)
        best = self.select(found)
        if best is None:
            logger.warning(
                "Mint date unavailable for %s/%s on %s", contract_address, token_id, chain,
            )
            return None
        if best.suspicious:
            logger.info("Using suspiciously recent mint date %s from %s", best.date.isoformat(), best.source.value)
        return best.date
