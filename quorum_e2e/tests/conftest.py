"""
Shared fixtures for the harness unit tests.

Everything runs against the in-memory SimulatedCluster with timeouts in the
tens of milliseconds, so a full scenario finishes in well under a second.
"""

import random
from typing import AsyncGenerator

import pytest
import pytest_asyncio

from quorum_e2e.scenarios import ScenarioOrchestrator
from quorum_e2e.utils.config_manager import HarnessConfig
from quorum_e2e.utils.mock_cluster import SimulatedCluster


FAST_SETTINGS = dict(
    node_count=3,
    healing_overhead=0.5,
    stable_timeout=2.0,
    isolation_timeout=1.0,
    health_timeout=2.0,
    poll_interval=0.01,
    write_timeout=0.2,
    round_base_timeout=5.0,
    permit_wait=0.05,
    worker_grace=1.0,
    delay_min=0.01,
    delay_max=0.05,
    stall_min=0.01,
    stall_max=0.05,
    stall_interval_min=0.005,
    stall_interval_max=0.01,
    seed=1234,
)


@pytest.fixture
def fast_config() -> HarnessConfig:
    """Harness configuration scaled down for the simulated cluster."""
    return HarnessConfig(**FAST_SETTINGS)


@pytest.fixture
def rng() -> random.Random:
    return random.Random(42)


@pytest_asyncio.fixture
async def sim() -> AsyncGenerator[SimulatedCluster, None]:
    """Three-node simulated cluster, already started."""
    cluster = SimulatedCluster()
    async with cluster:
        await cluster.start_nodes(3)
        yield cluster


@pytest.fixture
def sim_orchestrator(fast_config: HarnessConfig) -> ScenarioOrchestrator:
    return ScenarioOrchestrator(SimulatedCluster, fast_config)
