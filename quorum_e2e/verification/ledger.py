"""
Ledger read-back

Every acknowledged write must be readable, with its acknowledged version,
from every node once the cluster has healed. Reads prefer the local shard
copy so a node that silently missed a write cannot hide behind a peer.
"""

import asyncio
import logging
from typing import Iterable, Optional

from ..core.client.base import ClusterClient
from ..load.ledger import AckLedger
from ..utils.async_retry import AsyncRetry
from ..utils.exceptions import DisruptionError, LedgerLossError, RequestTimeoutError

LOG = logging.getLogger(__name__)

DEFAULT_READ_TIMEOUT = 30.0


async def _bounded_read(client: ClusterClient, node: str, doc_id: str, timeout: float):
    try:
        return await asyncio.wait_for(client.read(node, doc_id, True, timeout=timeout), timeout)
    except asyncio.TimeoutError:
        raise RequestTimeoutError(f"[{node}] read of [{doc_id}] exceeded {timeout:.2f}s",
                                  node_id=node)


async def verify_ledger(client: ClusterClient, ledger: AckLedger, nodes: Iterable[str],
                        retry: Optional[AsyncRetry] = None,
                        timeout: float = DEFAULT_READ_TIMEOUT) -> int:
    """
    Read every ledger entry back through every node.

    Args:
        client: Cluster client
        ledger: Acknowledged writes
        nodes: Nodes to read through
        retry: Retry policy for transient read failures; defaults to a
            short disruption-only retry
        timeout: Bound on each single read

    Returns:
        Number of reads performed

    Raises:
        LedgerLossError: On the first missing document or version mismatch
    """
    retry = retry or AsyncRetry(max_retries=3, base_delay=0.5, retry_on=(DisruptionError,))
    entries = ledger.entries()
    nodes = sorted(nodes)
    LOG.info(f"Verifying {len(entries)} acknowledged writes through {len(nodes)} nodes")

    reads = 0
    for node in nodes:
        for entry in entries:
            result = await retry.execute(_bounded_read, client, node, entry.doc_id, timeout)
            reads += 1
            if not result.exists:
                found = "document missing"
            elif result.version != entry.version:
                found = f"found version {result.version}"
            else:
                continue
            LOG.error(f"Lost acknowledged write [{entry.doc_id}] on [{node}]: {found}")
            raise LedgerLossError(entry.doc_id, entry.node_id, node, entry.version, found)

    LOG.info(f"All {len(entries)} acknowledged writes readable from every node")
    return reads
