"""
ClusterClient - the narrow surface the harness drives the cluster through

Everything the harness knows about the cluster under test goes through
this interface: node provisioning, link-level fault controls, local state
snapshots, single-document writes and reads, and the health wait.
Implementations raise the exceptions in utils.exceptions; DisruptionError
subclasses for failures a network fault can explain, anything else for
failures it cannot.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from ..cluster_view import ClusterView


class LinkFault(str, Enum):
    """Behaviour injected on a directed link between two nodes"""
    DISCONNECT = "disconnect"
    UNRESPONSIVE = "unresponsive"
    DELAY = "delay"


@dataclass(frozen=True)
class ReadResult:
    doc_id: str
    exists: bool
    version: Optional[int] = None


class ClusterClient(ABC):
    """Interface to the cluster under test"""

    # ── provisioning ────────────────────────────────────────────────

    @abstractmethod
    async def start_nodes(self, count: int) -> List[str]:
        """Start count nodes and return their ids"""

    # ── fault controls ──────────────────────────────────────────────

    @abstractmethod
    async def disrupt_link(self, source: str, target: str, fault: LinkFault,
                           delay: Optional[float] = None) -> None:
        """Apply fault to messages sent from source to target"""

    @abstractmethod
    async def restore_link(self, source: str, target: str) -> None:
        """Remove any fault on the source -> target link"""

    @abstractmethod
    async def stall_state_processing(self, node_id: str, duration: float) -> None:
        """Block node_id's cluster-state apply path for duration seconds"""

    @abstractmethod
    async def resume_state_processing(self, node_id: str) -> None:
        """Release any stall on node_id's cluster-state apply path"""

    # ── observation ─────────────────────────────────────────────────

    @abstractmethod
    async def get_cluster_view(self, node_id: str, local_only: bool = True,
                               timeout: Optional[float] = None) -> ClusterView:
        """Snapshot of the cluster state as node_id currently sees it, within timeout seconds"""

    @abstractmethod
    async def wait_for_health(self, via_node: str, expected_node_count: int,
                              timeout: float,
                              wait_for_no_relocations: bool = True) -> bool:
        """Block until via_node sees a healthy cluster; return True on timeout"""

    # ── data ────────────────────────────────────────────────────────

    @abstractmethod
    async def write(self, node_id: str, doc_id: str, payload: Dict[str, Any],
                    timeout: float) -> int:
        """Index a document through node_id and return its version"""

    @abstractmethod
    async def read(self, node_id: str, doc_id: str, local_preference: bool = True,
                   timeout: Optional[float] = None) -> ReadResult:
        """Fetch a document through node_id, preferring local shard copies"""

    # ── setup ───────────────────────────────────────────────────────

    @abstractmethod
    async def create_index(self, via_node: str, name: str, shards: int,
                           replicas: int) -> None:
        """Create the index the scenarios write into"""

    @abstractmethod
    async def reroute(self, via_node: str) -> None:
        """Ask the master to run shard allocation now"""

    @abstractmethod
    async def update_cluster_settings(self, via_node: str,
                                      settings: Dict[str, Any]) -> None:
        """Apply transient cluster settings"""

    async def close(self) -> None:
        """Release client resources"""

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
