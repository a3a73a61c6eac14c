"""
Stability oracle

Answers "does node X currently see a cluster that satisfies P?" by polling
X's local cluster view until P holds or a timeout elapses. The oracle keeps
no state between calls; every poll fetches a fresh view.

Design Notes:
- Poll interval is min(config.poll_interval, timeout / 20) so short waits
  still get a useful number of samples
- A failed fetch is "not yet", never an answer: nodes on the wrong side of
  a partition routinely fail to answer for a while
- Every fetch is bounded by what is left of the budget, so a node that
  never answers cannot stretch a wait past its timeout
- ensure_stable_cluster trusts the collaborator's health wait first, then
  double-checks roster size and relocations on a fresh local view
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from ..core.client.base import ClusterClient
from ..core.cluster_view import BlockLevel, ClusterView, NoMasterBlock
from ..utils.config_manager import HarnessConfig
from ..utils.exceptions import ClusterClientError, OracleTimeoutError, RequestTimeoutError

LOG = logging.getLogger(__name__)

ViewPredicate = Callable[[ClusterView], bool]

MIN_POLLS = 20


def has_no_master(block: NoMasterBlock = NoMasterBlock.WRITE) -> ViewPredicate:
    """No master seen, and every level of the given no-master block applied"""
    def predicate(view: ClusterView) -> bool:
        return not view.has_master and block.levels <= view.blocks
    predicate.__name__ = f"has_no_master[{block.value}]"
    return predicate


def has_master_without_blocks() -> ViewPredicate:
    def predicate(view: ClusterView) -> bool:
        return view.has_master and not any(view.has_global_block(level) for level in BlockLevel)
    predicate.__name__ = "has_master_without_blocks"
    return predicate


def has_master(master_id: str) -> ViewPredicate:
    """master_id is the master seen, with no global block applied"""
    def predicate(view: ClusterView) -> bool:
        return view.master_id == master_id and not view.blocks
    predicate.__name__ = f"has_master[{master_id}]"
    return predicate


def has_node_count(count: int) -> ViewPredicate:
    def predicate(view: ClusterView) -> bool:
        return view.node_count == count
    predicate.__name__ = f"has_node_count[{count}]"
    return predicate


@dataclass
class PollResult:
    """Outcome of one await_condition call"""
    success: bool
    last_view: Optional[ClusterView]
    attempts: int
    elapsed: float
    last_error: Optional[Exception] = None


class StabilityOracle:
    """Polls locally observed cluster views until a predicate holds"""

    def __init__(self, client: ClusterClient, roster: Iterable[str],
                 config: HarnessConfig, rng: Optional[random.Random] = None):
        self.client = client
        self.roster = frozenset(roster)
        self.config = config
        self.rng = rng or random.Random()

    def poll_interval(self, timeout: float) -> float:
        return min(self.config.poll_interval, timeout / MIN_POLLS)

    async def _fetch_view(self, via_node: str, timeout: float) -> ClusterView:
        try:
            return await asyncio.wait_for(
                self.client.get_cluster_view(via_node, local_only=True, timeout=timeout),
                timeout,
            )
        except asyncio.TimeoutError:
            raise RequestTimeoutError(
                f"[{via_node}] cluster view not returned within {timeout:.2f}s", node_id=via_node
            )

    async def await_condition(self, predicate: ViewPredicate, timeout: float,
                              via_node: str, description: Optional[str] = None) -> PollResult:
        """
        Poll via_node's view until predicate holds or timeout elapses.

        Args:
            predicate: Function of a ClusterView
            timeout: Budget in seconds
            via_node: Node whose local view is checked
            description: Label used in logs, defaults to the predicate name

        Returns:
            PollResult; success is False on timeout
        """
        description = description or getattr(predicate, "__name__", "condition")
        interval = self.poll_interval(timeout)
        start = time.monotonic()
        attempts = 0
        last_view: Optional[ClusterView] = None
        last_error: Optional[Exception] = None

        while True:
            attempts += 1
            try:
                budget = max(timeout - (time.monotonic() - start), interval)
                last_view = await self._fetch_view(via_node, budget)
                if predicate(last_view):
                    elapsed = time.monotonic() - start
                    LOG.debug(f"[{via_node}] {description} holds after {attempts} polls "
                              f"({elapsed:.2f}s)")
                    return PollResult(True, last_view, attempts, elapsed, last_error)
            except ClusterClientError as e:
                last_error = e
                LOG.debug(f"[{via_node}] view fetch failed while waiting for {description}: {e}")

            elapsed = time.monotonic() - start
            if elapsed >= timeout:
                LOG.debug(f"[{via_node}] {description} did not hold within {timeout:.2f}s "
                          f"({attempts} polls)")
                return PollResult(False, last_view, attempts, elapsed, last_error)
            await asyncio.sleep(min(interval, timeout - elapsed))

    async def assert_condition(self, predicate: ViewPredicate, timeout: float,
                               via_node: str, description: Optional[str] = None) -> ClusterView:
        """await_condition that raises OracleTimeoutError instead of returning failure"""
        description = description or getattr(predicate, "__name__", "condition")
        result = await self.await_condition(predicate, timeout, via_node, description)
        if not result.success:
            details = {"attempts": result.attempts}
            if result.last_error is not None:
                details["last_error"] = result.last_error
            raise OracleTimeoutError(
                f"[{via_node}] {description} did not hold within {timeout:.2f}s",
                last_view=result.last_view,
                via_node=via_node,
                **details,
            )
        return result.last_view

    async def ensure_stable_cluster(self, expected_node_count: int,
                                    via_node: Optional[str] = None,
                                    timeout: Optional[float] = None) -> ClusterView:
        """
        Wait until via_node sees a healthy cluster of expected_node_count nodes
        with no relocating shards.

        Raises:
            OracleTimeoutError: with the last observed view
        """
        if via_node is None:
            via_node = self.rng.choice(sorted(self.roster))
        timeout = timeout if timeout is not None else self.config.stable_timeout
        LOG.info(f"Ensuring stable cluster of {expected_node_count} nodes via [{via_node}] "
                 f"(timeout {timeout:.1f}s)")

        start = time.monotonic()
        deadline = start + timeout
        timed_out = True
        # No single health request outlives config.health_timeout
        while timed_out:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                timed_out = await asyncio.wait_for(
                    self.client.wait_for_health(
                        via_node, expected_node_count, min(remaining, self.config.health_timeout),
                        wait_for_no_relocations=True
                    ),
                    remaining,
                )
            except asyncio.TimeoutError:
                LOG.debug(f"Health wait via [{via_node}] outlived the remaining {remaining:.2f}s")
                timed_out = True
            except ClusterClientError as e:
                LOG.debug(f"Health wait via [{via_node}] failed: {e}")
                await asyncio.sleep(min(self.poll_interval(timeout), remaining))

        if not timed_out:
            # The health wait can answer from a master whose state via_node
            # has not applied yet; confirm on via_node's own view
            remaining = max(timeout - (time.monotonic() - start), self.poll_interval(timeout))
            result = await self.await_condition(
                lambda view: (view.node_count == expected_node_count
                              and view.relocating_shards == 0),
                remaining, via_node,
                description=f"stable[{expected_node_count}]",
            )
            if result.success:
                return result.last_view
            last_view = result.last_view
        else:
            try:
                last_view = await self._fetch_view(via_node, self.config.poll_interval)
            except ClusterClientError:
                last_view = None

        raise OracleTimeoutError(
            f"cluster did not stabilize at {expected_node_count} nodes via [{via_node}] "
            f"within {timeout:.1f}s",
            last_view=last_view,
            via_node=via_node,
        )
