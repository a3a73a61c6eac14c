"""
Rejoining nodes recover writes they missed

A document written while one node was isolated must be present, with the
acknowledged version, in every shard copy once that node rejoins.
"""

import logging

from ..disruption.schemes import random_partition
from ..disruption.topology import PartitionTopology
from ..load.ledger import AckLedger
from ..utils.exceptions import UnexpectedLoadError
from ..verification.ledger import verify_ledger
from .context import ScenarioContext
from .registry import register_scenario

LOG = logging.getLogger(__name__)

DOC_ID = "rejoin-1"


@register_scenario("rejoin_consistency", suite="durability")
async def rejoin_consistency(ctx: ScenarioContext) -> None:
    await ctx.create_index(shards=1, replicas=ctx.node_count - 1)

    nodes = list(ctx.roster)
    ctx.rng.shuffle(nodes)
    isolated, writer = nodes[0], nodes[1]
    topology = PartitionTopology.isolate(ctx.roster, isolated, ctx.config.effective_quorum)
    scheme = random_partition(ctx.client, ctx.roster, topology, ctx.rng)
    ctx.result.details.update(isolated=isolated, scheme=str(scheme))

    ledger = AckLedger()
    async with ctx.disruption(scheme):
        majority = topology.sorted_majority()
        await ctx.oracle.ensure_stable_cluster(len(majority), writer)

        ctx.step(f"index [{DOC_ID}] via [{writer}] while [{isolated}] is isolated")
        version = await ctx.client.write(writer, DOC_ID, {"isolated": isolated},
                                         timeout=ctx.config.stable_timeout)
        if version != 1:
            raise UnexpectedLoadError(
                f"doc [{DOC_ID}] indexed with version {version}, expected 1",
                doc_id=DOC_ID, node_id=writer,
            )
        ledger.record(DOC_ID, writer, version)
        await verify_ledger(ctx.client, ledger, [writer], timeout=ctx.config.stable_timeout)

    await ctx.heal(scheme)
    ctx.step(f"verify [{DOC_ID}] on every node")
    await verify_ledger(ctx.client, ledger, ctx.roster, timeout=ctx.config.stable_timeout)
