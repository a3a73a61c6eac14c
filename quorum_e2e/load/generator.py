"""
Round-gated concurrent write load

One writer task per node indexes fresh documents through its own node.
The orchestrator drives the writers in rounds: run_round(n) grants every
worker n permits and waits for exactly n done tokens per worker.

Design Notes:
- Permits and done tokens both carry the round id. Tokens from an older
  round (a write that outlived its round's budget) are drained and
  discarded before the next round starts, so rounds never double count
- Workers notice stop() at their next permit wait; there is no
  interruption of an in-flight write, only a bounded join and a final
  cancel for stragglers
- Failure classification depends on the fault the orchestrator declared
  with expect_disruption(); with none declared every failure is fatal
- The first fatal failure is kept and re-raised from run_round() as
  UnexpectedLoadError once the round's tokens are in
"""

import asyncio
import itertools
import logging
import random
import time
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional

from ..core.client.base import ClusterClient
from ..disruption.schemes import FaultScheme
from ..utils.config_manager import HarnessConfig
from ..utils.exceptions import (
    DisruptionError,
    RoundTimeoutError,
    UnexpectedLoadError,
)
from .ledger import AckLedger, DisruptionRecord

LOG = logging.getLogger(__name__)

# A fresh doc id is indexed exactly once, so its first version is the only
# acceptable acknowledgement
EXPECTED_VERSION = 1


class WriteOutcome(Enum):
    ACKED = "acked"
    DISRUPTED = "disrupted"
    FAILED = "failed"


@dataclass
class RoundResult:
    round_id: int
    expected: int
    acked: int = 0
    disrupted: int = 0
    failed: int = 0
    late_tokens: int = 0
    elapsed: float = 0.0

    def to_dict(self) -> Dict:
        return {
            "round": self.round_id,
            "expected": self.expected,
            "acked": self.acked,
            "disrupted": self.disrupted,
            "failed": self.failed,
            "late_tokens": self.late_tokens,
            "elapsed": round(self.elapsed, 3),
        }


@dataclass
class _FatalFailure:
    node_id: str
    doc_id: str
    error: Exception


class LoadGenerator:
    """
    Concurrent writers, one per node, gated in rounds.

    Usage:
        async with LoadGenerator(client, roster, config) as load:
            await load.run_round(3)
            load.expect_disruption(scheme)
            await scheme.start()
            await load.run_round(5, heal_time=scheme.expected_time_to_heal())
    """

    def __init__(self, client: ClusterClient, nodes: Iterable[str], config: HarnessConfig,
                 ledger: Optional[AckLedger] = None, rng: Optional[random.Random] = None,
                 doc_prefix: str = ""):
        self.client = client
        self.workers: List[str] = sorted(nodes)
        self.config = config
        self.ledger = ledger if ledger is not None else AckLedger()
        self.rng = rng or random.Random()
        self.doc_prefix = doc_prefix

        self.disruptions: List[DisruptionRecord] = []
        self.rounds: List[RoundResult] = []
        self.late_tokens = 0

        self._scheme: Optional[FaultScheme] = None
        self._ids = itertools.count()
        self._round_id = 0
        self._fatal: Optional[_FatalFailure] = None
        self._permits: Dict[str, asyncio.Queue] = {}
        self._done: Optional[asyncio.Queue] = None
        self._stop: Optional[asyncio.Event] = None
        self._tasks: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    @property
    def fatal_error(self) -> Optional[Exception]:
        return self._fatal.error if self._fatal else None

    def expect_disruption(self, scheme: Optional[FaultScheme]) -> None:
        """Declare the fault whose symptoms count as expected; None for no fault"""
        self._scheme = scheme
        LOG.debug(f"Load generator now expects disruption from {scheme}")

    # ── lifecycle ───────────────────────────────────────────────────

    async def start(self) -> None:
        if self._tasks:
            raise RuntimeError("load generator already started")
        self._done = asyncio.Queue()
        self._stop = asyncio.Event()
        self._permits = {node: asyncio.Queue() for node in self.workers}
        self._tasks = [
            asyncio.create_task(self._worker(node), name=f"load-{node}")
            for node in self.workers
        ]
        LOG.info(f"Started {len(self._tasks)} load workers: {self.workers}")

    async def stop(self) -> None:
        """Signal every worker and join them within config.worker_grace"""
        if not self._tasks:
            return
        tasks, self._tasks = self._tasks, []
        self._stop.set()

        done, pending = await asyncio.wait(tasks, timeout=self.config.worker_grace)
        for task in pending:
            LOG.warning(f"Load worker {task.get_name()} did not stop within "
                        f"{self.config.worker_grace:.1f}s; cancelling")
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                LOG.error(f"Load worker {task.get_name()} crashed: {task.exception()!r}")

        summary = self.disruption_summary()
        LOG.info(f"Load generator stopped: {len(self.ledger)} acknowledged writes, "
                 f"{len(self.disruptions)} expected disruptions {dict(summary)}")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    # ── workers ─────────────────────────────────────────────────────

    async def _worker(self, node: str) -> None:
        permits = self._permits[node]
        while not self._stop.is_set():
            try:
                round_id = await asyncio.wait_for(permits.get(), timeout=self.config.permit_wait)
            except asyncio.TimeoutError:
                continue
            if self._stop.is_set():
                break
            doc_id = f"{self.doc_prefix}{next(self._ids)}"
            outcome = await self._write_once(node, doc_id, round_id)
            self._done.put_nowait((round_id, node, outcome))

    async def _write_once(self, node: str, doc_id: str, round_id: int) -> WriteOutcome:
        try:
            LOG.debug(f"[{node}] indexing doc [{doc_id}] (round {round_id})")
            version = await self.client.write(
                node, doc_id, {"worker": node, "round": round_id},
                timeout=self.config.write_timeout,
            )
            if version != EXPECTED_VERSION:
                raise UnexpectedLoadError(
                    f"doc [{doc_id}] acknowledged via [{node}] with version {version}, "
                    f"expected {EXPECTED_VERSION}",
                    doc_id=doc_id, node_id=node, version=version,
                )
            self.ledger.record(doc_id, node, version)
            return WriteOutcome.ACKED
        except DisruptionError as e:
            scheme = self._scheme
            if scheme is not None and scheme.expects(e):
                LOG.debug(f"[{node}] expected failure indexing [{doc_id}] under {scheme}: {e}")
                self.disruptions.append(DisruptionRecord(doc_id, node, e))
                return WriteOutcome.DISRUPTED
            self._record_fatal(node, doc_id, e)
            return WriteOutcome.FAILED
        except Exception as e:
            self._record_fatal(node, doc_id, e)
            return WriteOutcome.FAILED

    def _record_fatal(self, node: str, doc_id: str, error: Exception) -> None:
        LOG.error(f"[{node}] unexpected failure indexing [{doc_id}]: "
                  f"{type(error).__name__}: {error}")
        if self._fatal is None:
            self._fatal = _FatalFailure(node, doc_id, error)

    # ── rounds ──────────────────────────────────────────────────────

    def _raise_if_failed(self) -> None:
        if self._fatal is None:
            return
        failure = self._fatal
        if isinstance(failure.error, UnexpectedLoadError):
            raise failure.error
        raise UnexpectedLoadError(
            f"unexpected failure indexing [{failure.doc_id}] via [{failure.node_id}]: "
            f"{type(failure.error).__name__}: {failure.error}",
            doc_id=failure.doc_id, node_id=failure.node_id,
        ) from failure.error

    def _reclaim_permits(self) -> int:
        reclaimed = 0
        for permits in self._permits.values():
            while not permits.empty():
                permits.get_nowait()
                reclaimed += 1
        return reclaimed

    def _drain_tokens(self) -> int:
        drained = 0
        while not self._done.empty():
            self._done.get_nowait()
            drained += 1
        return drained

    async def run_round(self, writes_per_worker: int, heal_time: float = 0.0) -> RoundResult:
        """
        Let every worker issue writes_per_worker writes and wait for all of them.

        Args:
            writes_per_worker: Permits granted to each worker
            heal_time: Heal estimate of the active fault; scales the round budget

        Raises:
            RoundTimeoutError: If the tokens do not all arrive in time
            UnexpectedLoadError: If any writer hit an unexplained failure
        """
        if not self._tasks:
            raise RuntimeError("load generator not started")
        self._raise_if_failed()

        reclaimed = self._reclaim_permits()
        stale = self._drain_tokens()
        if reclaimed or stale:
            LOG.debug(f"Reclaimed {reclaimed} permits and {stale} stale tokens")

        self._round_id += 1
        round_id = self._round_id
        expected = writes_per_worker * len(self.workers)
        timeout = self.config.round_base_timeout + heal_time * expected
        result = RoundResult(round_id=round_id, expected=expected, late_tokens=stale)

        order = list(self.workers)
        self.rng.shuffle(order)
        LOG.info(f"Round {round_id}: {writes_per_worker} writes on each of {order} "
                 f"(timeout {timeout:.1f}s)")
        for node in order:
            for _ in range(writes_per_worker):
                self._permits[node].put_nowait(round_id)

        loop = asyncio.get_running_loop()
        start = time.monotonic()
        deadline = loop.time() + timeout
        completed = 0
        while completed < expected:
            remaining = deadline - loop.time()
            token = None
            if remaining > 0:
                try:
                    token = await asyncio.wait_for(self._done.get(), remaining)
                except asyncio.TimeoutError:
                    pass
            if token is None:
                self._raise_if_failed()
                raise RoundTimeoutError(round_id, completed, expected, timeout)
            token_round, node, outcome = token
            if token_round != round_id:
                result.late_tokens += 1
                continue
            completed += 1
            if outcome is WriteOutcome.ACKED:
                result.acked += 1
            elif outcome is WriteOutcome.DISRUPTED:
                result.disrupted += 1
            else:
                result.failed += 1

        result.elapsed = time.monotonic() - start
        self.late_tokens += result.late_tokens
        self.rounds.append(result)
        self._raise_if_failed()
        LOG.info(f"Round {round_id} done in {result.elapsed:.2f}s: {result.acked} acked, "
                 f"{result.disrupted} disrupted")
        return result

    def disruption_summary(self) -> Counter:
        return Counter(type(record.error).__name__ for record in self.disruptions)

    def to_dict(self) -> Dict:
        return {
            "acknowledged": len(self.ledger),
            "disruptions": dict(self.disruption_summary()),
            "late_tokens": self.late_tokens,
            "rounds": [r.to_dict() for r in self.rounds],
        }
