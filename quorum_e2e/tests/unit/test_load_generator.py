"""
Unit tests for the acknowledgement ledger and the round-gated load
generator.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from quorum_e2e.core.client.base import ClusterClient
from quorum_e2e.disruption.schemes import Disconnect, Unresponsive
from quorum_e2e.disruption.topology import PartitionTopology
from quorum_e2e.load.generator import LoadGenerator
from quorum_e2e.load.ledger import AckLedger
from quorum_e2e.utils.exceptions import (
    APIError,
    ClusterBlockedError,
    LedgerError,
    NodeDisconnectedError,
    RoundTimeoutError,
    UnexpectedLoadError,
)
from quorum_e2e.verification.ledger import verify_ledger


class TestAckLedger:

    def test_record_and_lookup(self):
        ledger = AckLedger()
        ledger.record("1", "node_0", 1)

        assert "1" in ledger
        assert len(ledger) == 1
        assert ledger.get("1").node_id == "node_0"
        assert [r.doc_id for r in ledger] == ["1"]

    def test_duplicate_id_rejected(self):
        ledger = AckLedger()
        ledger.record("1", "node_0", 1)

        with pytest.raises(LedgerError):
            ledger.record("1", "node_1", 1)
        assert ledger.get("1").node_id == "node_0"


class TestLoadGenerator:

    @pytest.mark.asyncio
    async def test_rounds_on_healthy_cluster(self, sim, fast_config, rng):
        async with LoadGenerator(sim, sim.nodes, fast_config, rng=rng) as load:
            first = await load.run_round(2)
            second = await load.run_round(3)
            empty = await load.run_round(0)

        assert first.expected == 6 and first.acked == 6
        assert second.expected == 9 and second.acked == 9
        assert empty.expected == 0
        assert len(load.ledger) == 15
        assert {r.node_id for r in load.ledger} == set(sim.nodes)
        assert load.disruptions == []
        await verify_ledger(sim, load.ledger, sim.nodes)

    @pytest.mark.asyncio
    async def test_expected_disruption_is_recorded(self, sim, fast_config, rng):
        topology = PartitionTopology.isolate(sim.nodes, "node_2", 2)
        scheme = Disconnect(sim, sim.nodes, topology, rng)

        async with LoadGenerator(sim, sim.nodes, fast_config, rng=rng) as load:
            load.expect_disruption(scheme)
            async with scheme:
                result = await load.run_round(2)

        assert result.disrupted == 2
        assert result.acked == 4
        assert {r.node_id for r in load.disruptions} == {"node_2"}
        assert all(isinstance(r.error, ClusterBlockedError) for r in load.disruptions)
        assert load.disruption_summary() == {"ClusterBlockedError": 2}

    @pytest.mark.asyncio
    async def test_disruption_without_declared_fault_is_fatal(self, fast_config, rng):
        client = AsyncMock(spec=ClusterClient)
        client.write.side_effect = NodeDisconnectedError("gone", node_id="b")

        async with LoadGenerator(client, ["a", "b"], fast_config, rng=rng) as load:
            with pytest.raises(UnexpectedLoadError) as exc_info:
                await load.run_round(1)

        assert isinstance(exc_info.value.__cause__, NodeDisconnectedError)
        assert isinstance(load.fatal_error, NodeDisconnectedError)

    @pytest.mark.asyncio
    async def test_failure_outside_expected_set_is_fatal(self, fast_config, rng):
        client = AsyncMock(spec=ClusterClient)
        client.write.side_effect = NodeDisconnectedError("gone", node_id="b")
        # Unresponsive does not explain a disconnect
        scheme = Unresponsive(client, ["a", "b"])

        async with LoadGenerator(client, ["a", "b"], fast_config, rng=rng) as load:
            load.expect_disruption(scheme)
            with pytest.raises(UnexpectedLoadError):
                await load.run_round(1)

    @pytest.mark.asyncio
    async def test_wrong_version_is_fatal(self, fast_config, rng):
        client = AsyncMock(spec=ClusterClient)
        client.write.return_value = 2

        async with LoadGenerator(client, ["a"], fast_config, rng=rng) as load:
            with pytest.raises(UnexpectedLoadError, match="version 2"):
                await load.run_round(1)

        assert len(load.ledger) == 0

    @pytest.mark.asyncio
    async def test_unexpected_error_type_is_fatal(self, fast_config, rng):
        client = AsyncMock(spec=ClusterClient)
        client.write.side_effect = APIError("mapping conflict", status=400)

        async with LoadGenerator(client, ["a", "b"], fast_config, rng=rng) as load:
            with pytest.raises(UnexpectedLoadError) as exc_info:
                await load.run_round(1)

        assert isinstance(exc_info.value.__cause__, APIError)

    @pytest.mark.asyncio
    async def test_round_timeout_and_late_tokens(self, fast_config, rng):
        fast_config.round_base_timeout = 0.05
        release = asyncio.Event()

        async def slow_write(node_id, doc_id, payload, timeout):
            await release.wait()
            return 1

        client = AsyncMock(spec=ClusterClient)
        client.write.side_effect = slow_write

        async with LoadGenerator(client, ["a"], fast_config, rng=rng) as load:
            with pytest.raises(RoundTimeoutError) as exc_info:
                await load.run_round(1)
            assert exc_info.value.completed == 0

            release.set()
            await asyncio.sleep(0.01)
            result = await load.run_round(1)

        # The first round's write finished late and must not count for the second
        assert result.late_tokens == 1
        assert result.acked == 1
        assert len(load.ledger) == 2

    @pytest.mark.asyncio
    async def test_heal_time_extends_round_budget(self, fast_config, rng):
        fast_config.round_base_timeout = 0.01

        async def write(node_id, doc_id, payload, timeout):
            await asyncio.sleep(0.03)
            return 1

        client = AsyncMock(spec=ClusterClient)
        client.write.side_effect = write

        async with LoadGenerator(client, ["a"], fast_config, rng=rng) as load:
            result = await load.run_round(1, heal_time=0.5)

        assert result.acked == 1

    @pytest.mark.asyncio
    async def test_doc_ids_are_unique_across_workers(self, fast_config, rng):
        client = AsyncMock(spec=ClusterClient)
        client.write.return_value = 1

        async with LoadGenerator(client, ["a", "b", "c"], fast_config, rng=rng,
                                 doc_prefix="w-") as load:
            await load.run_round(5)

        doc_ids = [c.args[1] for c in client.write.await_args_list]
        assert len(doc_ids) == 15
        assert len(set(doc_ids)) == 15
        assert all(doc_id.startswith("w-") for doc_id in doc_ids)

    @pytest.mark.asyncio
    async def test_stop_joins_workers(self, fast_config, rng):
        client = AsyncMock(spec=ClusterClient)
        load = LoadGenerator(client, ["a", "b"], fast_config, rng=rng)

        await load.start()
        assert load.running
        with pytest.raises(RuntimeError):
            await load.start()

        await load.stop()
        assert not load.running
        await load.stop()

    @pytest.mark.asyncio
    async def test_round_requires_start(self, fast_config):
        load = LoadGenerator(AsyncMock(spec=ClusterClient), ["a"], fast_config)

        with pytest.raises(RuntimeError):
            await load.run_round(1)
