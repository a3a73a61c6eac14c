"""
SimulatedCluster - in-memory quorum cluster for harness tests.

Implements the full ClusterClient surface without processes or sockets so
scenarios, oracles and the load generator can be exercised end to end in
unit tests (and through `quorum-e2e --simulate`).

Model:
  - Two nodes can talk when neither direction of their link is
    disconnected or unresponsive. Delayed links still connect.
  - A master's cluster is the master plus every node it can talk to
    directly. The previous master keeps the role while its cluster holds
    at least `quorum` nodes; otherwise the node with the largest such
    cluster wins, smallest node id first.
  - Members of the master's cluster share one cluster state. Every other
    node keeps its last applied version, sees no master, and carries the
    configured no-master block. A node cut off from the master alone is
    dropped even if it still reaches other members.
  - Each document has a primary among the members, picked by hashing its
    id. A write is acknowledged only through a member that reaches the
    primary and is stored on every member. Nodes that (re)join the cluster
    recover the master's documents.
  - A stalled node does not apply new cluster states until the stall ends,
    and writes routed through it wait for the stall.

All state is recomputed lazily at the start of every call.
"""

import asyncio
import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Set, Tuple

from ..core.client.base import ClusterClient, LinkFault, ReadResult
from ..core.cluster_view import NO_MASTER_BLOCK_SETTING, ClusterView, NoMasterBlock
from .exceptions import (
    APIError,
    ClusterBlockedError,
    NodeDisconnectedError,
    RequestTimeoutError,
)

LOG = logging.getLogger(__name__)

HEALTH_POLL_INTERVAL = 0.01


@dataclass
class _AppliedState:
    version: int
    nodes: FrozenSet[str]
    master_id: Optional[str]
    metadata_version: int
    routing_fingerprint: str


@dataclass
class _LinkState:
    fault: LinkFault
    delay: float = 0.0


@dataclass
class FaultLogEntry:
    action: str
    source: str
    target: Optional[str] = None
    fault: Optional[LinkFault] = None
    delay: Optional[float] = None


@dataclass
class _Index:
    shards: int
    replicas: int


class SimulatedCluster(ClusterClient):
    """In-memory ClusterClient with quorum-based master election"""

    def __init__(self, quorum: Optional[int] = None, node_prefix: str = "node"):
        self.node_prefix = node_prefix
        self.quorum: Optional[int] = quorum
        self.nodes: List[str] = []
        self.no_master_block = NoMasterBlock.WRITE
        self.fault_log: List[FaultLogEntry] = []

        self._links: Dict[Tuple[str, str], _LinkState] = {}
        self._stalled_until: Dict[str, float] = {}
        self._states: Dict[str, _AppliedState] = {}
        self._docs: Dict[str, Dict[str, int]] = {}
        self._indices: Dict[str, _Index] = {}
        self._group: FrozenSet[str] = frozenset()
        self._master: Optional[str] = None
        self._version = 0
        self._metadata_version = 0

    # ── helpers ─────────────────────────────────────────────────────

    @staticmethod
    def _now() -> float:
        return asyncio.get_running_loop().time()

    def _check_node(self, node_id: str) -> None:
        if node_id not in self._states:
            raise APIError(f"unknown node [{node_id}]", node_id=node_id, status=404)

    def _link(self, source: str, target: str) -> Optional[_LinkState]:
        return self._links.get((source, target))

    def _connected(self, a: str, b: str) -> bool:
        for link in (self._link(a, b), self._link(b, a)):
            if link is not None and link.fault is not LinkFault.DELAY:
                return False
        return True

    def _components(self) -> List[FrozenSet[str]]:
        remaining = set(self.nodes)
        components = []
        while remaining:
            start = min(remaining)
            seen: Set[str] = {start}
            frontier = [start]
            while frontier:
                current = frontier.pop()
                for other in remaining:
                    if other not in seen and self._connected(current, other):
                        seen.add(other)
                        frontier.append(other)
            remaining -= seen
            components.append(frozenset(seen))
        return components

    def _component_of(self, node_id: str) -> FrozenSet[str]:
        for component in self._components():
            if node_id in component:
                return component
        return frozenset({node_id})

    def _is_stalled(self, node_id: str) -> bool:
        return self._stalled_until.get(node_id, 0.0) > self._now()

    def _fingerprint(self, members: FrozenSet[str]) -> str:
        text = ";".join(
            f"{name}:{idx.shards}:{idx.replicas}:{','.join(sorted(members))}"
            for name, idx in sorted(self._indices.items())
        )
        return hashlib.sha1(text.encode()).hexdigest()[:16]

    def _members(self, master: str) -> FrozenSet[str]:
        return frozenset(n for n in self.nodes if n == master or self._connected(master, n))

    def _elect(self) -> Tuple[FrozenSet[str], Optional[str]]:
        if self._master is not None:
            members = self._members(self._master)
            if len(members) >= self.quorum:
                return members, self._master
        best: Tuple[FrozenSet[str], Optional[str]] = (frozenset(), None)
        for candidate in sorted(self.nodes):
            members = self._members(candidate)
            if len(members) >= self.quorum and len(members) > len(best[0]):
                best = (members, candidate)
        return best

    def _reconcile(self) -> None:
        group, master = self._elect()
        if (group, master) != (self._group, self._master):
            joined = group - self._group
            if master is not None:
                self._version += 1
                source = self._docs.get(master, {})
                for node in joined:
                    if node != master:
                        self._docs[node] = dict(source)
                LOG.debug(f"Simulated election: master={master} group={sorted(group)} "
                          f"version={self._version}")
            self._group, self._master = group, master

        fingerprint = self._fingerprint(self._group)
        for node in self.nodes:
            if self._is_stalled(node):
                continue
            if node in self._group:
                self._states[node] = _AppliedState(
                    version=self._version,
                    nodes=self._group,
                    master_id=self._master,
                    metadata_version=self._metadata_version,
                    routing_fingerprint=fingerprint,
                )
            else:
                previous = self._states[node]
                self._states[node] = _AppliedState(
                    version=previous.version,
                    nodes=self._component_of(node),
                    master_id=None,
                    metadata_version=previous.metadata_version,
                    routing_fingerprint=previous.routing_fingerprint,
                )

    def _require_master(self, node_id: str) -> str:
        self._check_node(node_id)
        self._reconcile()
        if node_id not in self._group:
            raise ClusterBlockedError(
                f"blocked by: [SERVICE_UNAVAILABLE/no master] on [{node_id}]",
                node_id=node_id,
            )
        return self._master

    def primary_of(self, doc_id: str) -> str:
        """Member holding the primary copy of doc_id under the current master"""
        self._reconcile()
        members = sorted(self._group)
        if not members:
            raise ClusterBlockedError(f"no master to route [{doc_id}]")
        digest = int(hashlib.sha1(doc_id.encode()).hexdigest(), 16)
        return members[digest % len(members)]

    def _publish(self) -> None:
        self._version += 1
        self._reconcile()

    # ── provisioning ────────────────────────────────────────────────

    async def start_nodes(self, count: int) -> List[str]:
        if self.nodes:
            raise APIError("simulated cluster already started")
        self.nodes = [f"{self.node_prefix}_{i}" for i in range(count)]
        if self.quorum is None:
            self.quorum = count // 2 + 1
        for node in self.nodes:
            self._docs[node] = {}
            self._states[node] = _AppliedState(0, frozenset({node}), None, 0, "")
        self._reconcile()
        LOG.info(f"Simulated cluster started: {self.nodes} (quorum={self.quorum})")
        return list(self.nodes)

    # ── fault controls ──────────────────────────────────────────────

    async def disrupt_link(self, source: str, target: str, fault: LinkFault,
                           delay: Optional[float] = None) -> None:
        self._check_node(source)
        self._check_node(target)
        self._links[(source, target)] = _LinkState(fault, delay or 0.0)
        self.fault_log.append(FaultLogEntry("disrupt", source, target, fault, delay))

    async def restore_link(self, source: str, target: str) -> None:
        self._links.pop((source, target), None)
        self.fault_log.append(FaultLogEntry("restore", source, target))

    async def stall_state_processing(self, node_id: str, duration: float) -> None:
        self._check_node(node_id)
        self._stalled_until[node_id] = self._now() + duration
        self.fault_log.append(FaultLogEntry("stall", node_id, delay=duration))

    async def resume_state_processing(self, node_id: str) -> None:
        self._stalled_until.pop(node_id, None)
        self.fault_log.append(FaultLogEntry("resume", node_id))

    @property
    def active_link_faults(self) -> Dict[Tuple[str, str], LinkFault]:
        return {pair: link.fault for pair, link in self._links.items()}

    @property
    def stalled_nodes(self) -> List[str]:
        return sorted(self._stalled_until)

    # ── observation ─────────────────────────────────────────────────

    async def get_cluster_view(self, node_id: str, local_only: bool = True,
                               timeout: Optional[float] = None) -> ClusterView:
        self._check_node(node_id)
        self._reconcile()
        state = self._states[node_id]
        blocks = frozenset() if state.master_id else self.no_master_block.levels
        return ClusterView(
            node_id=node_id,
            version=state.version,
            nodes=state.nodes,
            master_id=state.master_id,
            blocks=blocks,
            metadata_version=state.metadata_version,
            routing_fingerprint=state.routing_fingerprint,
            relocating_shards=0,
        )

    async def wait_for_health(self, via_node: str, expected_node_count: int,
                              timeout: float,
                              wait_for_no_relocations: bool = True) -> bool:
        deadline = self._now() + timeout
        while True:
            view = await self.get_cluster_view(via_node)
            if view.has_master and view.node_count == expected_node_count:
                return False
            if self._now() >= deadline:
                return True
            await asyncio.sleep(HEALTH_POLL_INTERVAL)

    # ── data ────────────────────────────────────────────────────────

    async def _wait_for_stall(self, node_id: str, timeout: float) -> float:
        """Wait out a stall on node_id; return the unused part of timeout"""
        remaining = self._stalled_until.get(node_id, 0.0) - self._now()
        if remaining <= 0:
            return timeout
        if remaining > timeout:
            await asyncio.sleep(timeout)
            raise RequestTimeoutError(
                f"[{node_id}] state processing stalled beyond {timeout}s", node_id=node_id
            )
        await asyncio.sleep(remaining)
        return timeout - remaining

    async def _send(self, source: str, target: str, timeout: float) -> float:
        """Round trip source -> target; return the unused part of timeout"""
        if source == target:
            return timeout
        links = [self._link(source, target), self._link(target, source)]
        faults = {link.fault for link in links if link is not None}
        if LinkFault.DISCONNECT in faults:
            raise NodeDisconnectedError(f"[{target}] disconnected from [{source}]", node_id=source)
        if LinkFault.UNRESPONSIVE in faults:
            await asyncio.sleep(timeout)
            raise RequestTimeoutError(
                f"[{target}] did not answer [{source}] within {timeout}s", node_id=source
            )
        round_trip = sum(link.delay for link in links if link is not None)
        if round_trip > timeout:
            await asyncio.sleep(timeout)
            raise RequestTimeoutError(
                f"[{source}] -> [{target}] round trip exceeded {timeout}s", node_id=source
            )
        if round_trip:
            await asyncio.sleep(round_trip)
        return timeout - round_trip

    async def write(self, node_id: str, doc_id: str, payload: Dict[str, Any],
                    timeout: float) -> int:
        self._check_node(node_id)
        remaining = await self._wait_for_stall(node_id, timeout)
        master = self._require_master(node_id)
        primary = self.primary_of(doc_id)
        await self._send(node_id, primary, remaining)

        # The topology may have changed while the request was in flight
        if self._require_master(node_id) != master or primary not in self._group:
            raise RequestTimeoutError(
                f"master changed while indexing [{doc_id}] via [{node_id}]", node_id=node_id
            )
        version = self._docs[primary].get(doc_id, 0) + 1
        for member in self._group:
            self._docs[member][doc_id] = version
        return version

    async def read(self, node_id: str, doc_id: str, local_preference: bool = True,
                   timeout: Optional[float] = None) -> ReadResult:
        self._check_node(node_id)
        self._reconcile()
        if node_id not in self._group and self.no_master_block is NoMasterBlock.ALL:
            raise ClusterBlockedError(
                f"blocked by: [SERVICE_UNAVAILABLE/no master] on [{node_id}]", node_id=node_id
            )
        version = self._docs[node_id].get(doc_id)
        return ReadResult(doc_id=doc_id, exists=version is not None, version=version)

    # ── setup ───────────────────────────────────────────────────────

    async def create_index(self, via_node: str, name: str, shards: int,
                           replicas: int) -> None:
        self._require_master(via_node)
        if name in self._indices:
            raise APIError(f"index [{name}] already exists", node_id=via_node, status=400)
        self._indices[name] = _Index(shards, replicas)
        self._metadata_version += 1
        self._publish()

    async def reroute(self, via_node: str) -> None:
        self._require_master(via_node)

    async def update_cluster_settings(self, via_node: str,
                                      settings: Dict[str, Any]) -> None:
        self._require_master(via_node)
        if NO_MASTER_BLOCK_SETTING in settings:
            self.no_master_block = NoMasterBlock(settings[NO_MASTER_BLOCK_SETTING])
        self._metadata_version += 1
        self._publish()
