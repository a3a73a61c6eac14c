"""
Acknowledged writes survive partitions

Concurrent writers index through every node while a random fault comes
and goes. Failures the fault explains are tolerated and reported. Every
write the cluster acknowledged must be readable from every node after
each heal.
"""

import logging

from ..disruption.schemes import random_scheme
from ..verification.ledger import verify_ledger
from .context import ScenarioContext
from .registry import register_scenario

LOG = logging.getLogger(__name__)


@register_scenario("write_durability", suite="durability")
async def write_durability(ctx: ScenarioContext) -> None:
    rng = ctx.rng
    await ctx.create_index(shards=rng.randint(1, 3), replicas=rng.randint(0, ctx.node_count - 1))

    scheme = random_scheme(ctx.client, ctx.roster, ctx.config, rng)
    ctx.result.details["scheme"] = str(scheme)

    load = ctx.load_generator()
    async with load:
        await load.run_round(rng.randint(0, 3))

        iterations = rng.randint(1, 3)
        for iteration in range(1, iterations + 1):
            ctx.step(f"iteration {iteration}/{iterations}")
            load.expect_disruption(scheme)
            async with ctx.disruption(scheme):
                await load.run_round(rng.randint(1, 5), heal_time=scheme.expected_time_to_heal())
            await ctx.heal(scheme)
            load.expect_disruption(None)

            ctx.step(f"verify {len(load.ledger)} acknowledged writes")
            await verify_ledger(ctx.client, load.ledger, ctx.roster,
                                timeout=ctx.config.stable_timeout)
            scheme = scheme.renew()

    ctx.result.details["load"] = load.to_dict()
    ctx.result.details["disruptions"] = [r.to_dict() for r in load.disruptions]
