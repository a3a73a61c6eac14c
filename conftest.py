"""
Pytest configuration and fixtures for quorum E2E tests.

Live-cluster suites under cluster_test_cases/ need a cluster control plane:

    pytest cluster_test_cases/ --cluster-url http://127.0.0.1:9400

or QUORUM_E2E_CLUSTER_URL in the environment. Without one those tests are
skipped. Unit tests under quorum_e2e/tests/ need nothing.

Usage:
    @pytest.mark.asyncio
    async def test_something(orchestrator):
        result = await orchestrator.run("split_brain_avoidance")
        assert result.success
"""

import asyncio
import logging
import os
import sys
from functools import partial
from pathlib import Path
from typing import Optional

# Allow running pytest from a checkout without installing the package
_current_dir = Path(__file__).resolve().parent
if str(_current_dir) not in sys.path:
    sys.path.insert(0, str(_current_dir))

import pytest

from quorum_e2e.core.client.http_client import ClusterHttpClient
from quorum_e2e.scenarios import ScenarioOrchestrator
from quorum_e2e.utils.config_manager import ConfigManager, HarnessConfig

LOG = logging.getLogger(__name__)

CLUSTER_URL_ENV = "QUORUM_E2E_CLUSTER_URL"
DEFAULT_OUTPUT_DIR = "output"


def pytest_addoption(parser):
    """Add custom command line options for pytest."""
    parser.addoption(
        "--cluster-url",
        action="store",
        default=None,
        help=f"Control plane URL of the cluster under test (or ${CLUSTER_URL_ENV})"
    )
    parser.addoption(
        "--harness-config",
        action="store",
        default=None,
        help="Path to harness YAML configuration"
    )
    parser.addoption(
        "--output-dir",
        action="store",
        default=DEFAULT_OUTPUT_DIR,
        help="Output directory for scenario results"
    )


@pytest.fixture(scope="session")
def cluster_url(request) -> str:
    """Control plane URL; skips the test when none is configured."""
    url: Optional[str] = request.config.getoption("--cluster-url") or os.environ.get(CLUSTER_URL_ENV)
    if not url:
        pytest.skip(f"no cluster configured (use --cluster-url or {CLUSTER_URL_ENV})")
    return url


@pytest.fixture(scope="session")
def output_dir(request) -> Path:
    """Get output directory and create if needed."""
    output_path = Path(request.config.getoption("--output-dir"))
    output_path.mkdir(parents=True, exist_ok=True)
    return output_path


@pytest.fixture(scope="session")
def live_config(request) -> HarnessConfig:
    """Harness configuration for live-cluster runs (YAML + environment)."""
    return ConfigManager().load(request.config.getoption("--harness-config"))


@pytest.fixture(scope="function")
def orchestrator(cluster_url: str, live_config: HarnessConfig) -> ScenarioOrchestrator:
    """
    Orchestrator bound to the live cluster.

    A fresh HTTP client is built per scenario run so no aiohttp session is
    shared across event loops.
    """
    factory = partial(ClusterHttpClient, cluster_url, index=live_config.index_name)
    return ScenarioOrchestrator(factory, live_config)


# Markers
def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
    config.addinivalue_line(
        "markers", "cluster: mark test as requiring a live cluster"
    )
    config.addinivalue_line(
        "markers", "discovery: mark test as master election / block test"
    )
    config.addinivalue_line(
        "markers", "durability: mark test as acknowledged-write durability test"
    )


def pytest_collection_modifyitems(config, items):
    """Add asyncio marker to all async tests."""
    for item in items:
        if asyncio.iscoroutinefunction(getattr(item, "obj", None)):
            item.add_marker(pytest.mark.asyncio)
