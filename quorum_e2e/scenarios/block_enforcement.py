"""
No-master block enforcement

Nodes cut off from a quorum must apply the configured no-master block: the
write block by default, every level once no_master_block is 'all'. The
majority side keeps serving without any global block, under the same
master when the master was already on that side.
"""

import logging

from ..core.cluster_view import NO_MASTER_BLOCK_SETTING, NoMasterBlock
from ..disruption.schemes import FaultScheme, random_partition
from ..disruption.topology import PartitionTopology
from ..verification.stability import has_master, has_master_without_blocks, has_no_master
from .context import ScenarioContext
from .registry import register_scenario

LOG = logging.getLogger(__name__)


async def _check_blocks(ctx: ScenarioContext, scheme: FaultScheme,
                        topology: PartitionTopology, block: NoMasterBlock) -> None:
    config = ctx.config
    majority = topology.sorted_majority()
    master = await ctx.current_master()
    keeps_master = master in topology.majority_side
    async with ctx.disruption(scheme):
        for node in topology.sorted_minority():
            ctx.step(f"wait for [{node}] to apply the no-master {block.value} block")
            await ctx.oracle.assert_condition(has_no_master(block), config.isolation_timeout, node)

        await ctx.oracle.ensure_stable_cluster(len(majority), ctx.random_node(majority))
        if keeps_master:
            ctx.step(f"majority {majority} keeps master [{master}]")
            expected = has_master(master)
        else:
            expected = has_master_without_blocks()
        for node in majority:
            await ctx.oracle.assert_condition(expected, config.stable_timeout, node)
        if not keeps_master:
            master = await ctx.verifier.assert_single_master(majority)
            LOG.info(f"Majority elected [{master}] with the old master cut off")
    await ctx.heal(scheme)

    ctx.step(f"every node follows [{master}] after the heal")
    for node in ctx.roster:
        await ctx.oracle.assert_condition(has_master(master), config.stable_timeout, node)


@register_scenario("block_enforcement", suite="discovery")
async def block_enforcement(ctx: ScenarioContext) -> None:
    await ctx.create_index(shards=1, replicas=ctx.node_count - 1)

    topology = PartitionTopology.random_split(ctx.roster, ctx.config.effective_quorum, ctx.rng)
    scheme = random_partition(ctx.client, ctx.roster, topology, ctx.rng)
    ctx.result.details.update(scheme=str(scheme))

    await _check_blocks(ctx, scheme, topology, NoMasterBlock.WRITE)

    ctx.step("switch no_master_block to 'all'")
    await ctx.client.update_cluster_settings(
        ctx.random_node(), {NO_MASTER_BLOCK_SETTING: NoMasterBlock.ALL.value}
    )
    await _check_blocks(ctx, scheme.renew(), topology, NoMasterBlock.ALL)

    ctx.step("restore no_master_block to 'write'")
    await ctx.client.update_cluster_settings(
        ctx.random_node(), {NO_MASTER_BLOCK_SETTING: NoMasterBlock.WRITE.value}
    )
