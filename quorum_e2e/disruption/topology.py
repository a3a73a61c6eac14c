"""
Partition topologies

A PartitionTopology splits the scenario roster into a majority side that
can still form a quorum and a minority side that cannot. Construction
fails loudly when the roster is too small for a legal split: a scenario
built on an invalid split would test nothing.
"""

import logging
import random
from dataclasses import dataclass
from typing import FrozenSet, Iterable, Iterator, List, Optional, Tuple

from ..utils.exceptions import TopologyError

LOG = logging.getLogger(__name__)


def default_quorum(node_count: int) -> int:
    """Smallest strict majority of node_count"""
    return node_count // 2 + 1


def _check_roster(roster: FrozenSet[str], threshold: int) -> None:
    if threshold < 1:
        raise TopologyError(f"quorum threshold must be at least 1, got {threshold}")
    if len(roster) < threshold + 1:
        raise TopologyError(
            f"roster of {len(roster)} nodes cannot be split with quorum {threshold}: "
            f"need at least {threshold + 1}",
            roster=sorted(roster),
            threshold=threshold,
        )


@dataclass(frozen=True)
class PartitionTopology:
    """Bipartition of a roster into majority and minority sides"""
    majority_side: FrozenSet[str]
    minority_side: FrozenSet[str]
    quorum_threshold: int

    def __post_init__(self):
        if self.majority_side & self.minority_side:
            raise TopologyError(
                f"sides overlap: {sorted(self.majority_side & self.minority_side)}"
            )
        if len(self.minority_side) < 1:
            raise TopologyError("minority side is empty")
        if len(self.majority_side) < self.quorum_threshold:
            raise TopologyError(
                f"majority side has {len(self.majority_side)} nodes, "
                f"below quorum {self.quorum_threshold}",
                majority=sorted(self.majority_side),
            )

    @property
    def roster(self) -> FrozenSet[str]:
        return self.majority_side | self.minority_side

    @classmethod
    def isolate(cls, roster: Iterable[str], node: str,
                threshold: Optional[int] = None) -> "PartitionTopology":
        """Put node alone on the minority side"""
        roster = frozenset(roster)
        threshold = threshold if threshold is not None else default_quorum(len(roster))
        _check_roster(roster, threshold)
        if node not in roster:
            raise TopologyError(f"node [{node}] is not part of the roster {sorted(roster)}")
        return cls(
            majority_side=roster - {node},
            minority_side=frozenset({node}),
            quorum_threshold=threshold,
        )

    @classmethod
    def random_split(cls, roster: Iterable[str], threshold: Optional[int] = None,
                     rng: Optional[random.Random] = None) -> "PartitionTopology":
        """Random split that keeps at least threshold nodes on the majority side"""
        roster = frozenset(roster)
        threshold = threshold if threshold is not None else default_quorum(len(roster))
        _check_roster(roster, threshold)
        rng = rng or random.Random()

        nodes = sorted(roster)
        rng.shuffle(nodes)
        minority_size = rng.randint(1, len(nodes) - threshold)
        topology = cls(
            majority_side=frozenset(nodes[minority_size:]),
            minority_side=frozenset(nodes[:minority_size]),
            quorum_threshold=threshold,
        )
        LOG.debug(f"Random split: {topology}")
        return topology

    def side_of(self, node: str) -> FrozenSet[str]:
        if node in self.majority_side:
            return self.majority_side
        if node in self.minority_side:
            return self.minority_side
        raise TopologyError(f"node [{node}] is not part of this topology")

    def opposing_pairs(self) -> Iterator[Tuple[str, str]]:
        """Every ordered (a, b) with a and b on opposite sides"""
        for a in sorted(self.majority_side):
            for b in sorted(self.minority_side):
                yield a, b
                yield b, a

    def sorted_majority(self) -> List[str]:
        return sorted(self.majority_side)

    def sorted_minority(self) -> List[str]:
        return sorted(self.minority_side)

    def __str__(self) -> str:
        return (
            f"majority={sorted(self.majority_side)} "
            f"minority={sorted(self.minority_side)} quorum={self.quorum_threshold}"
        )
