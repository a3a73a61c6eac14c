"""
Cross-node convergence checks

After the cluster has healed every node must hold the same cluster state:
same version, same roster size, same master, same metadata and the same
shard routing. The first disagreement fails the check with both views.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from ..core.client.base import ClusterClient
from ..core.cluster_view import ClusterView
from ..utils.async_retry import AsyncRetry
from ..utils.exceptions import (
    ConvergenceMismatchError,
    DisruptionError,
    RequestTimeoutError,
    SplitBrainError,
)

LOG = logging.getLogger(__name__)

COMPARED_FIELDS = (
    ("version", lambda view: view.version),
    ("node_count", lambda view: view.node_count),
    ("master_id", lambda view: view.master_id),
    ("metadata_version", lambda view: view.metadata_version),
    ("routing_fingerprint", lambda view: view.routing_fingerprint),
)


@dataclass
class ConvergenceReport:
    views: List[ClusterView] = field(default_factory=list)

    @property
    def master_id(self) -> Optional[str]:
        return self.views[0].master_id if self.views else None

    @property
    def version(self) -> Optional[int]:
        return self.views[0].version if self.views else None

    def to_dict(self) -> Dict:
        return {
            "master": self.master_id,
            "version": self.version,
            "nodes": [view.node_id for view in self.views],
        }


class ConvergenceVerifier:
    """Compares the local cluster views of a set of nodes"""

    def __init__(self, client: ClusterClient, fetch_attempts: int = 3,
                 fetch_delay: float = 0.5, fetch_timeout: float = 30.0):
        self.client = client
        self.fetch_timeout = fetch_timeout
        self._retry = AsyncRetry(
            max_retries=fetch_attempts,
            base_delay=fetch_delay,
            max_delay=fetch_delay * 4,
            retry_on=(DisruptionError,),
        )

    async def _fetch(self, node: str) -> ClusterView:
        try:
            return await asyncio.wait_for(
                self.client.get_cluster_view(node, True, timeout=self.fetch_timeout),
                self.fetch_timeout,
            )
        except asyncio.TimeoutError:
            raise RequestTimeoutError(
                f"[{node}] cluster view not returned within {self.fetch_timeout:.2f}s",
                node_id=node,
            )

    async def snapshot(self, nodes: Iterable[str]) -> List[ClusterView]:
        """Fresh local view from every node, in sorted node order"""
        views = []
        for node in sorted(nodes):
            views.append(await self._retry.execute(self._fetch, node))
        return views

    async def verify(self, nodes: Iterable[str]) -> ConvergenceReport:
        """
        Raise ConvergenceMismatchError on the first field where a node's view
        differs from the first node's view.
        """
        views = await self.snapshot(nodes)
        if not views:
            raise ValueError("no nodes to compare")
        reference = views[0]
        for other in views[1:]:
            for name, getter in COMPARED_FIELDS:
                if getter(reference) != getter(other):
                    LOG.error(f"Convergence mismatch on {name}: [{reference.node_id}]="
                              f"{getter(reference)!r} [{other.node_id}]={getter(other)!r}")
                    raise ConvergenceMismatchError(name, reference, other)

        LOG.info(f"{len(views)} nodes converged on version {reference.version}, "
                 f"master [{reference.master_id}]")
        return ConvergenceReport(views)

    async def assert_single_master(self, nodes: Iterable[str]) -> Optional[str]:
        """Return the one master the nodes agree on, if any; raise SplitBrainError otherwise"""
        views = await self.snapshot(nodes)
        masters = {view.node_id: view.master_id for view in views}
        distinct = {master for master in masters.values() if master is not None}
        if len(distinct) > 1:
            LOG.error(f"Split brain detected: {masters}")
            raise SplitBrainError(masters)
        return next(iter(distinct), None)
