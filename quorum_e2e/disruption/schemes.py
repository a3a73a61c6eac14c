"""
Fault schemes

A FaultScheme injects one kind of fault into the cluster under test and
removes it again. All variants share one lifecycle:

    INACTIVE --start()--> ACTIVE --stop()--> STOPPED

Schemes are single use. start() on anything but an INACTIVE scheme raises
DisruptionStateError; use renew() for a fresh scheme with the same
parameters. stop() is idempotent, is a no-op on a scheme that never
started, and removes every fault that was applied even when start()
failed half way through.

expected_time_to_heal() is not the time it takes to notice the fault; it
is how long the cluster's own recovery timers may keep running after
stop(), which the orchestrator adds to its reconvergence budget.

Variants:
    Disconnect           links between the two sides fail fast
    Unresponsive         links between the two sides silently drop messages
    DelayedDelivery      links between the two sides deliver late
    SlowStateProcessing  one node applies cluster-state updates slowly
"""

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from enum import Enum
from itertools import permutations
from typing import ClassVar, FrozenSet, Iterable, List, Optional, Tuple, Type

from ..core.client.base import ClusterClient, LinkFault
from ..utils.config_manager import HarnessConfig
from ..utils.exceptions import (
    ClusterBlockedError,
    ClusterClientError,
    DisruptionError,
    DisruptionStateError,
    NodeDisconnectedError,
    RequestTimeoutError,
    TopologyError,
    UnavailableShardsError,
)
from .topology import PartitionTopology

LOG = logging.getLogger(__name__)


class FaultKind(str, Enum):
    DISCONNECT = "disconnect"
    UNRESPONSIVE = "unresponsive"
    DELAYED_DELIVERY = "delayed_delivery"
    SLOW_STATE_PROCESSING = "slow_state_processing"


class SchemeState(Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"
    STOPPED = "stopped"


BASE_EXPECTED_FAILURES: Tuple[Type[DisruptionError], ...] = (
    ClusterBlockedError,
    UnavailableShardsError,
    RequestTimeoutError,
)


class FaultScheme(ABC):
    """Common lifecycle for every fault variant"""

    kind: ClassVar[FaultKind]
    expected_failures: ClassVar[Tuple[Type[DisruptionError], ...]] = BASE_EXPECTED_FAILURES

    def __init__(self, client: ClusterClient, roster: Iterable[str],
                 rng: Optional[random.Random] = None):
        self.client = client
        self.roster: FrozenSet[str] = frozenset(roster)
        self.rng = rng or random.Random()
        self.state = SchemeState.INACTIVE

    @property
    def active(self) -> bool:
        return self.state is SchemeState.ACTIVE

    async def start(self) -> None:
        if self.state is not SchemeState.INACTIVE:
            raise DisruptionStateError(
                f"{self} cannot start from state {self.state.value}; "
                f"schemes are single use, call renew()",
                state=self.state.value,
            )
        # Marked active before applying so stop() cleans up a partial start
        self.state = SchemeState.ACTIVE
        LOG.info(f"Starting disruption {self}")
        await self._apply()

    async def stop(self) -> None:
        if self.state is SchemeState.STOPPED:
            return
        was_active = self.state is SchemeState.ACTIVE
        self.state = SchemeState.STOPPED
        if not was_active:
            return
        LOG.info(f"Stopping disruption {self} (expected heal {self.expected_time_to_heal():.1f}s)")
        await self._remove()

    def expects(self, error: BaseException) -> bool:
        """True if error is an expected symptom of this fault"""
        return isinstance(error, self.expected_failures)

    @abstractmethod
    async def _apply(self) -> None:
        ...

    @abstractmethod
    async def _remove(self) -> None:
        ...

    @abstractmethod
    def expected_time_to_heal(self) -> float:
        ...

    @abstractmethod
    def renew(self) -> "FaultScheme":
        """Fresh, inactive scheme with the same parameters"""

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()


class NetworkPartitionScheme(FaultScheme):
    """
    Applies a link fault to every ordered pair of nodes across the topology.

    Without a topology every ordered pair of distinct roster nodes is
    affected.
    """

    link_fault: ClassVar[LinkFault]

    def __init__(self, client: ClusterClient, roster: Iterable[str],
                 topology: Optional[PartitionTopology] = None,
                 rng: Optional[random.Random] = None):
        super().__init__(client, roster, rng)
        if topology is not None and not topology.roster <= self.roster:
            raise TopologyError(
                f"topology nodes {sorted(topology.roster - self.roster)} are not in the roster"
            )
        self.topology = topology
        self._applied: List[Tuple[str, str]] = []

    def pairs(self) -> List[Tuple[str, str]]:
        if self.topology is not None:
            return list(self.topology.opposing_pairs())
        return list(permutations(sorted(self.roster), 2))

    def _link_delay(self) -> Optional[float]:
        return None

    async def _apply(self) -> None:
        delay = self._link_delay()
        for source, target in self.pairs():
            self._applied.append((source, target))
            await self.client.disrupt_link(source, target, self.link_fault, delay=delay)

    async def _remove(self) -> None:
        first_error: Optional[ClusterClientError] = None
        while self._applied:
            source, target = self._applied.pop()
            try:
                await self.client.restore_link(source, target)
            except ClusterClientError as e:
                LOG.error(f"Failed to restore link {source} -> {target}: {e}")
                if first_error is None:
                    first_error = e
        if first_error is not None:
            raise first_error

    def renew(self) -> "NetworkPartitionScheme":
        return type(self)(self.client, self.roster, self.topology, self.rng)

    def __str__(self) -> str:
        sides = str(self.topology) if self.topology else "all pairs"
        return f"{type(self).__name__}({sides})"


class Disconnect(NetworkPartitionScheme):
    kind = FaultKind.DISCONNECT
    link_fault = LinkFault.DISCONNECT
    expected_failures = BASE_EXPECTED_FAILURES + (NodeDisconnectedError,)

    def expected_time_to_heal(self) -> float:
        return 0.0


class Unresponsive(NetworkPartitionScheme):
    kind = FaultKind.UNRESPONSIVE
    link_fault = LinkFault.UNRESPONSIVE

    def expected_time_to_heal(self) -> float:
        return 0.0


class DelayedDelivery(NetworkPartitionScheme):
    """Delivery between the sides is delayed by a fixed random amount"""

    kind = FaultKind.DELAYED_DELIVERY
    link_fault = LinkFault.DELAY

    def __init__(self, client: ClusterClient, roster: Iterable[str],
                 topology: Optional[PartitionTopology] = None,
                 rng: Optional[random.Random] = None,
                 delay_min: float = 10.0, delay_max: float = 90.0):
        super().__init__(client, roster, topology, rng)
        if not 0 <= delay_min <= delay_max:
            raise ValueError(f"invalid delay range [{delay_min}, {delay_max}]")
        self.delay_min = delay_min
        self.delay_max = delay_max
        self.delay = self.rng.uniform(delay_min, delay_max)

    def _link_delay(self) -> Optional[float]:
        return self.delay

    def expected_time_to_heal(self) -> float:
        return self.delay

    def renew(self) -> "DelayedDelivery":
        return DelayedDelivery(self.client, self.roster, self.topology, self.rng,
                               self.delay_min, self.delay_max)

    def __str__(self) -> str:
        sides = str(self.topology) if self.topology else "all pairs"
        return f"DelayedDelivery({sides}, delay={self.delay:.2f}s)"


class SlowStateProcessing(FaultScheme):
    """
    Repeatedly stalls one node's cluster-state apply path.

    A background task alternates stalls of random length with short random
    pauses until stop(). The network is left untouched.
    """

    kind = FaultKind.SLOW_STATE_PROCESSING

    def __init__(self, client: ClusterClient, roster: Iterable[str],
                 node: Optional[str] = None,
                 rng: Optional[random.Random] = None,
                 delay_min: float = 1.0, delay_max: float = 20.0,
                 interval_min: float = 0.1, interval_max: float = 1.0):
        super().__init__(client, roster, rng)
        if node is not None and node not in self.roster:
            raise TopologyError(f"node [{node}] is not part of the roster {sorted(self.roster)}")
        self.requested_node = node
        self.node: Optional[str] = node
        self.delay_min = delay_min
        self.delay_max = delay_max
        self.interval_min = interval_min
        self.interval_max = interval_max
        self.stalls = 0
        self._task: Optional[asyncio.Task] = None

    async def _stall_loop(self) -> None:
        while True:
            duration = self.rng.uniform(self.delay_min, self.delay_max)
            LOG.debug(f"Stalling state processing on {self.node} for {duration:.2f}s")
            await self.client.stall_state_processing(self.node, duration)
            self.stalls += 1
            await asyncio.sleep(duration + self.rng.uniform(self.interval_min, self.interval_max))

    async def _apply(self) -> None:
        if self.node is None:
            self.node = self.rng.choice(sorted(self.roster))
        self._task = asyncio.create_task(self._stall_loop(), name=f"slow-state-{self.node}")

    async def _remove(self) -> None:
        # A stall call that failed inside the loop surfaces here, after resume
        task, self._task = self._task, None
        try:
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        finally:
            if self.node is not None:
                await self.client.resume_state_processing(self.node)

    def expected_time_to_heal(self) -> float:
        return self.delay_max

    def renew(self) -> "SlowStateProcessing":
        return SlowStateProcessing(self.client, self.roster, self.requested_node, self.rng,
                                   self.delay_min, self.delay_max,
                                   self.interval_min, self.interval_max)

    def __str__(self) -> str:
        return f"SlowStateProcessing(node={self.node or '<random>'}, stall={self.delay_min}-{self.delay_max}s)"


SCHEMES = {
    FaultKind.DISCONNECT: Disconnect,
    FaultKind.UNRESPONSIVE: Unresponsive,
    FaultKind.DELAYED_DELIVERY: DelayedDelivery,
    FaultKind.SLOW_STATE_PROCESSING: SlowStateProcessing,
}


def build_scheme(kind: FaultKind, client: ClusterClient, roster: Iterable[str],
                 config: HarnessConfig, topology: Optional[PartitionTopology] = None,
                 rng: Optional[random.Random] = None,
                 node: Optional[str] = None) -> FaultScheme:
    """Construct a scheme of the given kind with delays taken from config"""
    if kind is FaultKind.DELAYED_DELIVERY:
        return DelayedDelivery(client, roster, topology, rng,
                               config.delay_min, config.delay_max)
    if kind is FaultKind.SLOW_STATE_PROCESSING:
        return SlowStateProcessing(client, roster, node, rng,
                                   config.stall_min, config.stall_max,
                                   config.stall_interval_min, config.stall_interval_max)
    return SCHEMES[kind](client, roster, topology, rng)


def random_partition(client: ClusterClient, roster: Iterable[str],
                     topology: Optional[PartitionTopology],
                     rng: random.Random) -> NetworkPartitionScheme:
    """Disconnect or Unresponsive, chosen at random"""
    scheme_class = rng.choice([Unresponsive, Disconnect])
    return scheme_class(client, roster, topology, rng)


def random_scheme(client: ClusterClient, roster: Iterable[str], config: HarnessConfig,
                  rng: random.Random) -> FaultScheme:
    """Any of the four variants; network variants get a random split"""
    roster = frozenset(roster)
    kind = rng.choice(list(FaultKind))
    topology = None
    if kind is not FaultKind.SLOW_STATE_PROCESSING:
        topology = PartitionTopology.random_split(roster, config.effective_quorum, rng)
    return build_scheme(kind, client, roster, config, topology, rng)
