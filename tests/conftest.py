"""
Global test configuration and fixtures.
"""

import pytest
import pytest_asyncio

from factories import FIXED_NOW, MINT_CUTOFF, TEST_IPFS_GATEWAYS, FakeSession
from gateway_resolver import GatewayResolver
from mint_dates import MintDateReconciler
from orchestrator import ResolutionOrchestrator
from settings import EngineConfig, GatewayConfig


@pytest.fixture
def config() -> EngineConfig:
    """Engine config with three test IPFS gateways and no credentials."""
    return EngineConfig(
        gateways=GatewayConfig(
            ipfs=TEST_IPFS_GATEWAYS,
            arweave=("https://ar1.test/", "https://ar2.test/"),
            onchfs=("https://onchfs.test/",),
        ),
        batch_delay_s=0,
        suspicious_mint_cutoff=MINT_CUTOFF,
        loader_timeout_s=0.05,
    )


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest_asyncio.fixture
async def resolver(config, fake_session):
    resolver = GatewayResolver(config, session=fake_session)
    try:
        yield resolver
    finally:
        await resolver.close()


@pytest.fixture
def reconciler(config) -> MintDateReconciler:
    return MintDateReconciler(config, now=lambda: FIXED_NOW)


@pytest_asyncio.fixture
async def orchestrator(config, resolver, reconciler):
    orchestrator = ResolutionOrchestrator(config, resolver=resolver, reconciler=reconciler)
    try:
        yield orchestrator
    finally:
        await orchestrator.close()
