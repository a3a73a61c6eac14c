"""
Cluster control-plane HTTP client

Drives a cluster under test through its test control plane. Node-scoped
routes are proxied by the control plane to the named node, so a request
'via node X' really executes on X.

Routes:
    POST   /_cluster/nodes                          start nodes
    PUT    /_network/links/{src}/{dst}              inject a link fault
    DELETE /_network/links/{src}/{dst}              remove a link fault
    PUT    /nodes/{id}/_state_processing            stall state apply
    DELETE /nodes/{id}/_state_processing            resume state apply
    GET    /nodes/{id}/_cluster/state?local=true    local cluster view
    GET    /nodes/{id}/_cluster/health              health wait
    PUT    /nodes/{id}/{index}/_doc/{doc_id}        write
    GET    /nodes/{id}/{index}/_doc/{doc_id}        read
    PUT    /nodes/{id}/{index}                      create index
    POST   /nodes/{id}/_cluster/reroute             reroute
    PUT    /nodes/{id}/_cluster/settings            transient settings

Errors come back as {"error": {"type": ..., "reason": ...}} and are mapped
onto the harness exception taxonomy.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from ..cluster_view import ClusterView
from ...utils.common import format_duration
from ...utils.exceptions import (
    APIError,
    ClusterBlockedError,
    NodeDisconnectedError,
    RequestTimeoutError,
    UnavailableShardsError,
)
from .base import ClusterClient, LinkFault, ReadResult

LOG = logging.getLogger(__name__)

ERROR_TYPES = {
    "node_disconnected_exception": NodeDisconnectedError,
    "connect_transport_exception": NodeDisconnectedError,
    "node_not_connected_exception": NodeDisconnectedError,
    "receive_timeout_transport_exception": RequestTimeoutError,
    "process_cluster_event_timeout_exception": RequestTimeoutError,
    "timeout_exception": RequestTimeoutError,
    "cluster_block_exception": ClusterBlockedError,
    "unavailable_shards_exception": UnavailableShardsError,
    "no_shard_available_action_exception": UnavailableShardsError,
}

# Added to caller-supplied timeouts so the server side gives up first
TIMEOUT_MARGIN = 5.0


class ClusterHttpClient(ClusterClient):
    """aiohttp implementation of ClusterClient"""

    def __init__(self, base_url: str, index: str = "test", timeout: float = 30.0):
        """
        Args:
            base_url: Control plane address, e.g. http://127.0.0.1:9400
            index: Index the write/read calls target
            timeout: Default request timeout (seconds)
        """
        self.base_url = base_url.rstrip('/')
        self.index = index
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout)
        )
        return self

    async def close(self) -> None:
        if self.session:
            await self.session.close()
            self.session = None

    @staticmethod
    def _raise_for_error(status: int, body: Any, node_id: Optional[str]) -> None:
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict):
            error_type = error.get("type", "")
            reason = error.get("reason", str(error))
        else:
            error_type = ""
            reason = str(error or body)

        exc_class = ERROR_TYPES.get(error_type)
        if exc_class is not None:
            raise exc_class(f"{error_type}: {reason}", node_id=node_id)
        raise APIError(f"HTTP {status}: {reason}", node_id=node_id, status=status)

    async def _request(self, method: str, path: str, *,
                       node_id: Optional[str] = None,
                       params: Optional[Dict[str, str]] = None,
                       payload: Optional[Dict[str, Any]] = None,
                       timeout: Optional[float] = None,
                       server_timeout: bool = True,
                       allow_not_found: bool = False) -> Any:
        if not self.session:
            raise RuntimeError("Client not initialized. Use 'async with' statement.")

        url = f"{self.base_url}{path}"
        kwargs: Dict[str, Any] = {}
        if params:
            kwargs["params"] = params
        if payload is not None:
            kwargs["json"] = payload
        if timeout is not None:
            # A request the server does not bound itself gets the bare timeout
            margin = TIMEOUT_MARGIN if server_timeout else 0.0
            kwargs["timeout"] = aiohttp.ClientTimeout(total=timeout + margin)

        LOG.debug(f"{method} {url} params={params}")
        try:
            async with self.session.request(method, url, **kwargs) as resp:
                text = await resp.text()
                body = json.loads(text) if text else {}
                if resp.status == 404 and allow_not_found:
                    return body
                if resp.status >= 300:
                    self._raise_for_error(resp.status, body, node_id)
                return body
        except asyncio.TimeoutError:
            raise RequestTimeoutError(f"{method} {path} timed out", node_id=node_id)
        except json.JSONDecodeError as e:
            raise APIError(f"Invalid JSON response from {path}: {e}", node_id=node_id)
        except aiohttp.ClientError as e:
            raise APIError(f"Control plane request failed: {e}", node_id=node_id)

    # ── provisioning ────────────────────────────────────────────────

    async def start_nodes(self, count: int) -> List[str]:
        body = await self._request("POST", "/_cluster/nodes", payload={"count": count})
        nodes = body.get("nodes")
        if not isinstance(nodes, list) or len(nodes) != count:
            raise APIError(f"Expected {count} started nodes, got {nodes!r}")
        LOG.info(f"Started nodes: {nodes}")
        return [str(n) for n in nodes]

    # ── fault controls ──────────────────────────────────────────────

    async def disrupt_link(self, source: str, target: str, fault: LinkFault,
                           delay: Optional[float] = None) -> None:
        payload: Dict[str, Any] = {"fault": fault.value}
        if delay is not None:
            payload["delay"] = format_duration(delay)
        await self._request("PUT", f"/_network/links/{source}/{target}", payload=payload)

    async def restore_link(self, source: str, target: str) -> None:
        await self._request("DELETE", f"/_network/links/{source}/{target}")

    async def stall_state_processing(self, node_id: str, duration: float) -> None:
        await self._request(
            "PUT", f"/nodes/{node_id}/_state_processing",
            node_id=node_id, payload={"stall": format_duration(duration)}
        )

    async def resume_state_processing(self, node_id: str) -> None:
        await self._request("DELETE", f"/nodes/{node_id}/_state_processing", node_id=node_id)

    # ── observation ─────────────────────────────────────────────────

    async def get_cluster_view(self, node_id: str, local_only: bool = True,
                               timeout: Optional[float] = None) -> ClusterView:
        body = await self._request(
            "GET", f"/nodes/{node_id}/_cluster/state",
            node_id=node_id, params={"local": str(local_only).lower()},
            timeout=timeout, server_timeout=False
        )
        try:
            return ClusterView.from_dict(node_id, body)
        except (KeyError, ValueError, TypeError) as e:
            raise APIError(f"Malformed cluster state from {node_id}: {e}", node_id=node_id)

    async def wait_for_health(self, via_node: str, expected_node_count: int,
                              timeout: float,
                              wait_for_no_relocations: bool = True) -> bool:
        params = {
            "wait_for_events": "languid",
            "wait_for_nodes": str(expected_node_count),
            "timeout": format_duration(timeout),
        }
        if wait_for_no_relocations:
            params["wait_for_relocating_shards"] = "0"
        body = await self._request(
            "GET", f"/nodes/{via_node}/_cluster/health",
            node_id=via_node, params=params, timeout=timeout
        )
        return bool(body.get("timed_out", True))

    # ── data ────────────────────────────────────────────────────────

    async def write(self, node_id: str, doc_id: str, payload: Dict[str, Any],
                    timeout: float) -> int:
        body = await self._request(
            "PUT", f"/nodes/{node_id}/{self.index}/_doc/{doc_id}",
            node_id=node_id, params={"timeout": format_duration(timeout)},
            payload=payload, timeout=timeout
        )
        if "_version" not in body:
            raise APIError(f"Write of [{doc_id}] returned no version: {body}", node_id=node_id)
        return int(body["_version"])

    async def read(self, node_id: str, doc_id: str, local_preference: bool = True,
                   timeout: Optional[float] = None) -> ReadResult:
        params = {"preference": "_local"} if local_preference else None
        body = await self._request(
            "GET", f"/nodes/{node_id}/{self.index}/_doc/{doc_id}",
            node_id=node_id, params=params, timeout=timeout,
            server_timeout=False, allow_not_found=True
        )
        found = bool(body.get("found", False))
        version = body.get("_version")
        return ReadResult(doc_id=doc_id, exists=found,
                          version=int(version) if found and version is not None else None)

    # ── setup ───────────────────────────────────────────────────────

    async def create_index(self, via_node: str, name: str, shards: int,
                           replicas: int) -> None:
        await self._request(
            "PUT", f"/nodes/{via_node}/{name}", node_id=via_node,
            payload={"settings": {"number_of_shards": shards,
                                  "number_of_replicas": replicas}}
        )
        LOG.info(f"Created index [{name}] shards={shards} replicas={replicas}")

    async def reroute(self, via_node: str) -> None:
        await self._request("POST", f"/nodes/{via_node}/_cluster/reroute", node_id=via_node)

    async def update_cluster_settings(self, via_node: str,
                                      settings: Dict[str, Any]) -> None:
        await self._request(
            "PUT", f"/nodes/{via_node}/_cluster/settings", node_id=via_node,
            payload={"transient": settings}
        )


