"""
Per-run scenario state

A ScenarioContext is built fresh for every scenario run and handed to the
scenario function. It owns everything the run started (fault schemes, load
generators) and tears all of it down in cleanup(), whatever the outcome.
"""

import logging
import random
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, List, Optional

from ..core.client.base import ClusterClient
from ..disruption.schemes import FaultScheme
from ..helpers.results import ScenarioResult
from ..load.generator import LoadGenerator
from ..utils.config_manager import HarnessConfig
from ..verification.convergence import ConvergenceVerifier
from ..verification.stability import StabilityOracle, has_master_without_blocks

LOG = logging.getLogger(__name__)


@dataclass
class ScenarioContext:
    client: ClusterClient
    roster: List[str]
    config: HarnessConfig
    rng: random.Random
    oracle: StabilityOracle
    verifier: ConvergenceVerifier
    result: ScenarioResult
    schemes: List[FaultScheme] = field(default_factory=list)
    loads: List[LoadGenerator] = field(default_factory=list)

    @classmethod
    def create(cls, client: ClusterClient, roster: List[str], config: HarnessConfig,
               rng: random.Random, result: ScenarioResult) -> "ScenarioContext":
        roster = sorted(roster)
        return cls(
            client=client,
            roster=roster,
            config=config,
            rng=rng,
            oracle=StabilityOracle(client, roster, config, rng),
            verifier=ConvergenceVerifier(client, fetch_timeout=config.stable_timeout),
            result=result,
        )

    @property
    def node_count(self) -> int:
        return len(self.roster)

    def step(self, description: str) -> None:
        LOG.info(f"[{self.result.scenario_name}] {description}")
        self.result.add_step(description)

    def random_node(self, nodes: Optional[List[str]] = None) -> str:
        return self.rng.choice(sorted(nodes or self.roster))

    async def current_master(self) -> str:
        view = await self.oracle.assert_condition(
            has_master_without_blocks(), self.config.stable_timeout, self.random_node()
        )
        return view.master_id

    async def create_index(self, shards: int, replicas: int) -> None:
        self.step(f"create index [{self.config.index_name}] shards={shards} replicas={replicas}")
        await self.client.create_index(self.random_node(), self.config.index_name,
                                       shards, replicas)
        await self.oracle.ensure_stable_cluster(self.node_count)

    @asynccontextmanager
    async def disruption(self, scheme: FaultScheme) -> AsyncIterator[FaultScheme]:
        """Start scheme for the duration of the block; it is stopped on every exit path"""
        self.schemes.append(scheme)
        self.step(f"start {scheme}")
        try:
            await scheme.start()
            yield scheme
        finally:
            self.step(f"stop {scheme}")
            await scheme.stop()

    async def heal(self, scheme: FaultScheme, via_node: Optional[str] = None):
        """Wait for the full roster to reform after scheme was stopped"""
        budget = self.config.heal_budget(scheme.expected_time_to_heal())
        self.step(f"wait for {self.node_count} nodes to reconverge (budget {budget:.1f}s)")
        return await self.oracle.ensure_stable_cluster(self.node_count, via_node, budget)

    def load_generator(self, nodes: Optional[List[str]] = None,
                       doc_prefix: str = "") -> LoadGenerator:
        load = LoadGenerator(self.client, nodes or self.roster, self.config,
                             rng=self.rng, doc_prefix=doc_prefix)
        self.loads.append(load)
        return load

    async def cleanup(self) -> None:
        """
        Stop every load generator and scheme this run created.

        Cleanup errors are logged; the first one is re-raised after
        everything has been attempted.
        """
        first_error: Optional[Exception] = None
        for load in self.loads:
            try:
                await load.stop()
            except Exception as e:
                LOG.error(f"Failed to stop load generator: {e}")
                first_error = first_error or e
        for scheme in reversed(self.schemes):
            try:
                await scheme.stop()
            except Exception as e:
                LOG.error(f"Failed to stop {scheme}: {e}")
                first_error = first_error or e
        if first_error is not None:
            raise first_error
