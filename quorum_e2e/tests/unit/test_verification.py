"""
Unit tests for the stability oracle, the convergence verifier and ledger
read-back.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from quorum_e2e.core.client.base import ClusterClient, LinkFault, ReadResult
from quorum_e2e.core.cluster_view import BlockLevel, ClusterView, NoMasterBlock
from quorum_e2e.load.ledger import AckLedger
from quorum_e2e.utils.async_retry import AsyncRetry
from quorum_e2e.utils.exceptions import (
    ConvergenceMismatchError,
    LedgerLossError,
    OracleTimeoutError,
    RequestTimeoutError,
    SplitBrainError,
)
from quorum_e2e.verification.convergence import ConvergenceVerifier
from quorum_e2e.verification.ledger import verify_ledger
from quorum_e2e.verification.stability import (
    StabilityOracle,
    has_master,
    has_master_without_blocks,
    has_no_master,
    has_node_count,
)

NODES = frozenset({"a", "b", "c"})


def make_view(node_id, master="a", version=5, nodes=NODES, blocks=frozenset(), **kwargs):
    return ClusterView(node_id=node_id, version=version, nodes=frozenset(nodes),
                       master_id=master, blocks=frozenset(blocks), **kwargs)


class TestPredicates:

    def test_has_no_master(self):
        blocked = make_view("a", master=None, blocks=NoMasterBlock.WRITE.levels)

        assert has_no_master(NoMasterBlock.WRITE)(blocked)
        assert not has_no_master(NoMasterBlock.ALL)(blocked)
        assert not has_no_master()(make_view("a"))

    def test_has_master_without_blocks(self):
        assert has_master_without_blocks()(make_view("a"))
        assert not has_master_without_blocks()(make_view("a", blocks={BlockLevel.METADATA}))
        assert not has_master_without_blocks()(make_view("a", master=None))

    def test_has_master(self):
        assert has_master("a")(make_view("a"))
        assert not has_master("b")(make_view("a"))
        assert not has_master("a")(make_view("a", blocks={BlockLevel.METADATA}))

    def test_has_node_count(self):
        assert has_node_count(3)(make_view("a"))
        assert not has_node_count(2)(make_view("a"))


class TestStabilityOracle:

    @pytest.mark.asyncio
    async def test_condition_reached_after_transient_errors(self, fast_config):
        client = AsyncMock(spec=ClusterClient)
        client.get_cluster_view.side_effect = [
            RequestTimeoutError("node busy"),
            make_view("b", master=None, blocks=NoMasterBlock.WRITE.levels),
            make_view("b"),
        ]
        oracle = StabilityOracle(client, NODES, fast_config)

        result = await oracle.await_condition(has_master_without_blocks(), 1.0, "b")

        assert result.success
        assert result.attempts == 3
        assert isinstance(result.last_error, RequestTimeoutError)
        assert result.last_view.master_id == "a"

    @pytest.mark.asyncio
    async def test_timeout_returns_failure(self, fast_config):
        client = AsyncMock(spec=ClusterClient)
        client.get_cluster_view.return_value = make_view("b")
        oracle = StabilityOracle(client, NODES, fast_config)

        result = await oracle.await_condition(has_no_master(), 0.05, "b")

        assert not result.success
        assert result.attempts >= 2
        assert result.last_view.node_id == "b"

    @pytest.mark.asyncio
    async def test_assert_condition_raises_with_last_view(self, fast_config):
        client = AsyncMock(spec=ClusterClient)
        client.get_cluster_view.return_value = make_view("b", version=11)
        oracle = StabilityOracle(client, NODES, fast_config)

        with pytest.raises(OracleTimeoutError) as exc_info:
            await oracle.assert_condition(has_no_master(), 0.05, "b")

        assert exc_info.value.last_view.version == 11
        assert "version: 11" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_hung_view_fetch_counts_as_not_yet(self, fast_config):
        async def hang(node_id, local_only=True, timeout=None):
            await asyncio.sleep(3)

        client = AsyncMock(spec=ClusterClient)
        client.get_cluster_view.side_effect = hang
        oracle = StabilityOracle(client, NODES, fast_config)
        loop = asyncio.get_running_loop()
        start = loop.time()

        result = await oracle.await_condition(has_master_without_blocks(), 0.2, "b")

        assert loop.time() - start < 1
        assert not result.success
        assert isinstance(result.last_error, RequestTimeoutError)
        assert client.get_cluster_view.await_args.kwargs["timeout"] <= 0.2

    @pytest.mark.asyncio
    async def test_hung_health_wait_respects_deadline(self, fast_config):
        async def hang(*args, **kwargs):
            await asyncio.sleep(3)

        client = AsyncMock(spec=ClusterClient)
        client.wait_for_health.side_effect = hang
        client.get_cluster_view.side_effect = hang
        oracle = StabilityOracle(client, NODES, fast_config)
        loop = asyncio.get_running_loop()
        start = loop.time()

        with pytest.raises(OracleTimeoutError) as exc_info:
            await oracle.ensure_stable_cluster(3, via_node="a", timeout=0.2)

        assert loop.time() - start < 1
        assert exc_info.value.last_view is None

    def test_poll_interval_scales_with_timeout(self, fast_config):
        oracle = StabilityOracle(AsyncMock(spec=ClusterClient), NODES, fast_config)

        assert oracle.poll_interval(100) == fast_config.poll_interval
        assert oracle.poll_interval(0.1) == pytest.approx(0.005)

    @pytest.mark.asyncio
    async def test_ensure_stable_cluster_on_simulator(self, sim, fast_config):
        oracle = StabilityOracle(sim, sim.nodes, fast_config)

        view = await oracle.ensure_stable_cluster(3)

        assert view.node_count == 3
        assert view.relocating_shards == 0

    @pytest.mark.asyncio
    async def test_ensure_stable_cluster_times_out(self, sim, fast_config):
        oracle = StabilityOracle(sim, sim.nodes, fast_config)
        for other in ("node_0", "node_2"):
            await sim.disrupt_link("node_1", other, LinkFault.DISCONNECT)

        with pytest.raises(OracleTimeoutError) as exc_info:
            await oracle.ensure_stable_cluster(3, via_node="node_1", timeout=0.05)

        assert exc_info.value.last_view.master_id is None

    @pytest.mark.asyncio
    async def test_ensure_stable_cluster_checks_relocations(self, fast_config):
        client = AsyncMock(spec=ClusterClient)
        client.wait_for_health.return_value = False
        client.get_cluster_view.return_value = make_view("a", relocating_shards=2)
        oracle = StabilityOracle(client, NODES, fast_config)

        with pytest.raises(OracleTimeoutError):
            await oracle.ensure_stable_cluster(3, via_node="a", timeout=0.05)

        client.wait_for_health.assert_awaited_once()
        args, kwargs = client.wait_for_health.await_args
        assert args[:2] == ("a", 3)
        assert 0 < args[2] <= 0.05
        assert kwargs == {"wait_for_no_relocations": True}

    @pytest.mark.asyncio
    async def test_health_wait_is_chunked(self, fast_config):
        fast_config.health_timeout = 0.01
        client = AsyncMock(spec=ClusterClient)
        client.wait_for_health.side_effect = [True, RequestTimeoutError("busy"), False]
        client.get_cluster_view.return_value = make_view("a")
        oracle = StabilityOracle(client, NODES, fast_config)

        view = await oracle.ensure_stable_cluster(3, via_node="a", timeout=1.0)

        assert view.node_count == 3
        assert client.wait_for_health.await_count == 3
        assert all(call.args[2] <= 0.01 for call in client.wait_for_health.await_args_list)


class TestConvergenceVerifier:

    @pytest.mark.asyncio
    async def test_converged_simulator(self, sim):
        report = await ConvergenceVerifier(sim).verify(sim.nodes)

        assert report.master_id == "node_0"
        assert len(report.views) == 3

    @pytest.mark.asyncio
    async def test_empty_node_set_rejected(self):
        client = AsyncMock(spec=ClusterClient)

        with pytest.raises(ValueError, match="no nodes"):
            await ConvergenceVerifier(client).verify([])
        client.get_cluster_view.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_hung_view_is_retried_then_reported(self):
        async def hang(node_id, local_only=True, timeout=None):
            await asyncio.sleep(3)

        client = AsyncMock(spec=ClusterClient)
        client.get_cluster_view.side_effect = hang
        verifier = ConvergenceVerifier(client, fetch_attempts=2, fetch_delay=0.01,
                                       fetch_timeout=0.05)

        with pytest.raises(RequestTimeoutError):
            await verifier.verify(["a"])
        assert client.get_cluster_view.await_count == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field,override", [
        ("version", {"version": 6}),
        ("node_count", {"nodes": {"a", "b"}}),
        ("master_id", {"master": "b"}),
        ("metadata_version", {"metadata_version": 2}),
        ("routing_fingerprint", {"routing_fingerprint": "other"}),
    ])
    async def test_first_mismatch_reported(self, field, override):
        client = AsyncMock(spec=ClusterClient)
        views = {"a": make_view("a"), "b": make_view("b"), "c": make_view("c", **override)}
        client.get_cluster_view.side_effect = lambda node, *args, **kwargs: views[node]

        with pytest.raises(ConvergenceMismatchError) as exc_info:
            await ConvergenceVerifier(client).verify(NODES)

        assert exc_info.value.field == field
        assert exc_info.value.reference.node_id == "a"
        assert exc_info.value.other.node_id == "c"

    @pytest.mark.asyncio
    async def test_split_brain_detected(self):
        client = AsyncMock(spec=ClusterClient)
        views = {"a": make_view("a", master="a"), "b": make_view("b", master="b"),
                 "c": make_view("c", master=None)}
        client.get_cluster_view.side_effect = lambda node, *args, **kwargs: views[node]

        with pytest.raises(SplitBrainError) as exc_info:
            await ConvergenceVerifier(client).assert_single_master(NODES)

        assert exc_info.value.masters == {"a": "a", "b": "b", "c": None}

    @pytest.mark.asyncio
    async def test_single_master_ignores_masterless_nodes(self):
        client = AsyncMock(spec=ClusterClient)
        views = {"a": make_view("a", master=None), "b": make_view("b", master="b"),
                 "c": make_view("c", master="b")}
        client.get_cluster_view.side_effect = lambda node, *args, **kwargs: views[node]

        assert await ConvergenceVerifier(client).assert_single_master(NODES) == "b"


class TestLedgerVerification:

    @pytest.mark.asyncio
    async def test_all_entries_readable(self, sim):
        ledger = AckLedger()
        for i in range(3):
            doc_id = f"doc-{i}"
            ledger.record(doc_id, "node_1", await sim.write("node_1", doc_id, {}, timeout=1))

        reads = await verify_ledger(sim, ledger, sim.nodes)

        assert reads == 9

    @pytest.mark.asyncio
    async def test_missing_document(self):
        client = AsyncMock(spec=ClusterClient)
        client.read.side_effect = lambda node, doc_id, *args, **kwargs: ReadResult(
            doc_id, exists=node != "c", version=1 if node != "c" else None
        )
        ledger = AckLedger()
        ledger.record("doc-1", "a", 1)

        with pytest.raises(LedgerLossError) as exc_info:
            await verify_ledger(client, ledger, NODES)

        assert exc_info.value.doc_id == "doc-1"
        assert exc_info.value.acked_via == "a"
        assert exc_info.value.checked_via == "c"

    @pytest.mark.asyncio
    async def test_version_mismatch(self):
        client = AsyncMock(spec=ClusterClient)
        client.read.return_value = ReadResult("doc-1", exists=True, version=2)
        ledger = AckLedger()
        ledger.record("doc-1", "a", 1)

        with pytest.raises(LedgerLossError, match="found version 2"):
            await verify_ledger(client, ledger, ["a"])

    @pytest.mark.asyncio
    async def test_transient_read_failure_retried(self):
        client = AsyncMock(spec=ClusterClient)
        client.read.side_effect = [RequestTimeoutError("recovering"),
                                   ReadResult("doc-1", exists=True, version=1)]
        ledger = AckLedger()
        ledger.record("doc-1", "a", 1)

        assert await verify_ledger(client, ledger, ["a"]) == 1
        assert client.read.await_count == 2

    @pytest.mark.asyncio
    async def test_hung_read_is_bounded(self):
        async def hang(node_id, doc_id, local_preference=True, timeout=None):
            await asyncio.sleep(3)

        client = AsyncMock(spec=ClusterClient)
        client.read.side_effect = hang
        ledger = AckLedger()
        ledger.record("doc-1", "a", 1)
        retry = AsyncRetry(max_retries=1, base_delay=0.01, retry_on=(RequestTimeoutError,))

        with pytest.raises(RequestTimeoutError):
            await verify_ledger(client, ledger, ["a"], retry=retry, timeout=0.05)
        assert client.read.await_args.kwargs["timeout"] == 0.05
