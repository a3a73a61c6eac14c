"""
Split-brain avoidance

Isolates the elected master from the rest of the cluster. The isolated
master must step down and block writes; the majority must elect exactly
one new master; after healing every node follows that new master.
"""

import logging

from ..core.cluster_view import NoMasterBlock
from ..disruption.schemes import random_partition
from ..disruption.topology import PartitionTopology
from ..verification.stability import (
    has_master,
    has_master_without_blocks,
    has_no_master,
    has_node_count,
)
from .context import ScenarioContext
from .registry import register_scenario

LOG = logging.getLogger(__name__)


@register_scenario("split_brain_avoidance", suite="discovery")
async def split_brain_avoidance(ctx: ScenarioContext) -> None:
    config = ctx.config
    master = await ctx.current_master()
    topology = PartitionTopology.isolate(ctx.roster, master, config.effective_quorum)
    majority = topology.sorted_majority()
    scheme = random_partition(ctx.client, ctx.roster, topology, ctx.rng)
    ctx.result.details.update(old_master=master, scheme=str(scheme))

    async with ctx.disruption(scheme):
        ctx.step(f"wait for isolated master [{master}] to step down")
        await ctx.oracle.assert_condition(
            has_no_master(NoMasterBlock.WRITE), config.isolation_timeout, master
        )

        ctx.step(f"wait for majority {majority} to reform")
        await ctx.oracle.ensure_stable_cluster(len(majority), ctx.random_node(majority))
        for node in majority:
            await ctx.oracle.assert_condition(
                has_master_without_blocks(), config.stable_timeout, node
            )
        new_master = await ctx.verifier.assert_single_master(majority)
        ctx.result.details["new_master"] = new_master
        LOG.info(f"Majority elected [{new_master}] while [{master}] was isolated")

    await ctx.heal(scheme)
    await ctx.client.reroute(ctx.random_node())
    await ctx.oracle.ensure_stable_cluster(ctx.node_count)

    ctx.step("verify convergence")
    report = await ctx.verifier.verify(ctx.roster)
    await ctx.verifier.assert_single_master(ctx.roster)
    for node in ctx.roster:
        await ctx.oracle.assert_condition(
            has_node_count(ctx.node_count), config.stable_timeout, node
        )
        await ctx.oracle.assert_condition(has_master(new_master), config.stable_timeout, node)
    ctx.result.details["converged"] = report.to_dict()
