"""
Locally observed cluster state

A ClusterView is what one node believes about the cluster at the moment it
was asked. Views are fetched fresh for every check and never mutated.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional


class BlockLevel(str, Enum):
    """Operation classes a global cluster block can reject"""
    READ = "read"
    WRITE = "write"
    METADATA = "metadata"


class NoMasterBlock(str, Enum):
    """
    What a node without a master rejects.

    Mirrors the cluster setting 'discovery.zen.no_master_block'.
    """
    WRITE = "write"
    ALL = "all"

    @property
    def levels(self) -> FrozenSet[BlockLevel]:
        if self is NoMasterBlock.ALL:
            return frozenset({BlockLevel.READ, BlockLevel.WRITE, BlockLevel.METADATA})
        return frozenset({BlockLevel.WRITE, BlockLevel.METADATA})


NO_MASTER_BLOCK_SETTING = "discovery.zen.no_master_block"


@dataclass(frozen=True)
class ClusterView:
    """
    One node's local snapshot of the cluster.

    Attributes:
        node_id: The node that produced this view
        version: Cluster state version, monotonic per master term
        nodes: Node ids this node believes are members
        master_id: Elected master as seen locally, None if there is none
        blocks: Global block levels currently applied on this node
        metadata_version: Version of the index metadata
        routing_fingerprint: Stable digest of the shard routing table
        relocating_shards: Shards currently moving between nodes
    """
    node_id: str
    version: int
    nodes: FrozenSet[str]
    master_id: Optional[str] = None
    blocks: FrozenSet[BlockLevel] = field(default_factory=frozenset)
    metadata_version: int = 0
    routing_fingerprint: str = ""
    relocating_shards: int = 0

    @property
    def has_master(self) -> bool:
        return self.master_id is not None

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    def has_global_block(self, level: BlockLevel) -> bool:
        return level in self.blocks

    @classmethod
    def from_dict(cls, node_id: str, data: Dict[str, Any]) -> "ClusterView":
        return cls(
            node_id=node_id,
            version=int(data["version"]),
            nodes=frozenset(data.get("nodes", [])),
            master_id=data.get("master_node"),
            blocks=frozenset(BlockLevel(level) for level in data.get("blocks", [])),
            metadata_version=int(data.get("metadata_version", 0)),
            routing_fingerprint=str(data.get("routing_fingerprint", "")),
            relocating_shards=int(data.get("relocating_shards", 0)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_id": self.node_id,
            "version": self.version,
            "nodes": sorted(self.nodes),
            "master_node": self.master_id,
            "blocks": sorted(level.value for level in self.blocks),
            "metadata_version": self.metadata_version,
            "routing_fingerprint": self.routing_fingerprint,
            "relocating_shards": self.relocating_shards,
        }

    def pretty(self) -> str:
        blocks = ", ".join(sorted(level.value for level in self.blocks)) or "-"
        return (
            f"  observer: {self.node_id}\n"
            f"  version: {self.version}\n"
            f"  master: {self.master_id or '<none>'}\n"
            f"  nodes ({self.node_count}): {', '.join(sorted(self.nodes))}\n"
            f"  blocks: {blocks}\n"
            f"  metadata version: {self.metadata_version}\n"
            f"  routing: {self.routing_fingerprint}\n"
            f"  relocating shards: {self.relocating_shards}"
        )
