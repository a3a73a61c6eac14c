"""
Scenario orchestrator

Runs registered scenarios one at a time. Every run gets a fresh client
from the factory, a freshly started cluster, its own random stream and its
own ScenarioContext; nothing carries over between runs.

Design Notes:
- The per-scenario seed is drawn from config.seed, so a whole run is
  reproducible from one number; it is recorded in the result
- Failures are recorded on the ScenarioResult and re-raised from run();
  run_all() keeps going and returns every result
- Context cleanup (load stop, fault removal) happens before the client is
  closed, on every exit path
"""

import logging
import random
from typing import Callable, Iterable, List, Optional

from ..core.client.base import ClusterClient
from ..helpers.results import ScenarioResult
from ..utils.config_manager import HarnessConfig
from .context import ScenarioContext
from .registry import get_scenario, list_scenarios

LOG = logging.getLogger(__name__)

ClientFactory = Callable[[], ClusterClient]


class ScenarioOrchestrator:
    """Sequences cluster start, scenario body and teardown"""

    def __init__(self, client_factory: ClientFactory, config: HarnessConfig):
        self.client_factory = client_factory
        self.config = config
        self.results: List[ScenarioResult] = []
        self._seeds = random.Random(config.seed)

    async def _start_cluster(self, client: ClusterClient, rng: random.Random,
                             result: ScenarioResult) -> ScenarioContext:
        nodes = await client.start_nodes(self.config.node_count)
        ctx = ScenarioContext.create(client, nodes, self.config, rng, result)
        ctx.step(f"started {len(nodes)} nodes {ctx.roster}, "
                 f"quorum {self.config.effective_quorum}")
        await ctx.oracle.ensure_stable_cluster(ctx.node_count)
        return ctx

    async def run(self, name: str) -> ScenarioResult:
        """
        Run one scenario on a fresh cluster.

        Raises:
            KeyError: If no scenario is registered under name
            Exception: Whatever failed the scenario, after the result is recorded
        """
        scenario = get_scenario(name)
        if scenario is None:
            raise KeyError(f"Unknown scenario: {name} (known: {list_scenarios()})")

        seed = self._seeds.getrandbits(32)
        result = ScenarioResult(name)
        result.details["seed"] = seed
        self.results.append(result)
        rng = random.Random(seed)

        LOG.info("=" * 60)
        LOG.info(f"SCENARIO {name} (seed {seed})")
        LOG.info("=" * 60)
        result.start()
        try:
            async with self.client_factory() as client:
                ctx = await self._start_cluster(client, rng, result)
                try:
                    await scenario(ctx)
                finally:
                    await ctx.cleanup()
        except Exception as e:
            result.finish()
            result.mark_failure(e)
            LOG.error(f"Scenario {name} failed: {e}")
            raise

        result.finish()
        result.mark_success()
        LOG.info(f"Scenario {name} passed in {result.details['duration']:.2f}s")
        return result

    async def run_all(self, names: Optional[Iterable[str]] = None) -> List[ScenarioResult]:
        """Run every named scenario (all registered by default), continuing past failures"""
        names = list(names) if names is not None else list_scenarios()
        unknown = [name for name in names if get_scenario(name) is None]
        if unknown:
            raise KeyError(f"Unknown scenarios: {unknown} (known: {list_scenarios()})")
        results = []
        for name in names:
            try:
                results.append(await self.run(name))
            except Exception as e:
                LOG.debug(f"Continuing after failure of {name}: {e!r}")
                results.append(self.results[-1])
        return results
