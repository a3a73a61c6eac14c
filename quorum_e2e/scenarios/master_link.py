"""
Master keeps its role when one follower loses it

Only the link between the master and one follower is cut. The master
still holds a quorum, so it drops the follower and stays master; the
follower sees no master even though it still reaches the other nodes.
Once the link is back the follower rejoins under the same master.
"""

import logging

from ..disruption.schemes import Disconnect
from ..utils.exceptions import TopologyError
from ..verification.stability import has_master, has_no_master, has_node_count
from .context import ScenarioContext
from .registry import register_scenario

LOG = logging.getLogger(__name__)


@register_scenario("master_link_partition", suite="discovery")
async def master_link_partition(ctx: ScenarioContext) -> None:
    config = ctx.config
    if ctx.node_count - 1 < config.effective_quorum:
        raise TopologyError(
            f"{ctx.node_count} nodes cannot keep a quorum of {config.effective_quorum} "
            f"without one of them"
        )

    master = await ctx.current_master()
    unlucky = ctx.random_node([node for node in ctx.roster if node != master])
    scheme = Disconnect(ctx.client, [master, unlucky], rng=ctx.rng)
    ctx.result.details.update(master=master, unlucky=unlucky, scheme=str(scheme))

    async with ctx.disruption(scheme):
        ctx.step(f"wait for [{master}] to drop [{unlucky}]")
        await ctx.oracle.ensure_stable_cluster(ctx.node_count - 1, master)

        ctx.step(f"wait for [{unlucky}] to lose the master")
        await ctx.oracle.assert_condition(has_no_master(), config.isolation_timeout, unlucky)

    await ctx.heal(scheme)

    ctx.step(f"verify [{master}] is still master")
    for node in ctx.roster:
        await ctx.oracle.assert_condition(
            has_node_count(ctx.node_count), config.stable_timeout, node
        )
        await ctx.oracle.assert_condition(has_master(master), config.stable_timeout, node)
    LOG.info(f"[{master}] kept the master role through the loss of [{unlucky}]")
