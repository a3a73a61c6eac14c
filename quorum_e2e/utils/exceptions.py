"""
Exception hierarchy for the quorum E2E harness

Errors fall in two families:

- ClusterClientError: raised by a ClusterClient call. The DisruptionError
  branch is the set of failures a request may legitimately hit while a
  network fault is active; everything else is unexpected.
- Scenario failures (OracleTimeoutError, ConvergenceMismatchError,
  LedgerLossError, ...): always fatal to the running scenario.
"""

from typing import Any, Dict, Optional


class ErrorCodes:
    """Numeric error codes grouped by category"""
    # Cluster client (1xxx)
    API_ERROR = 1001
    NODE_DISCONNECTED = 1002
    REQUEST_TIMEOUT = 1003
    CLUSTER_BLOCKED = 1004
    UNAVAILABLE_SHARDS = 1005

    # Configuration (2xxx)
    CONFIG_FILE_NOT_FOUND = 2001
    CONFIG_VALIDATION_FAILED = 2002

    # Disruption (3xxx)
    TOPOLOGY_INVALID = 3001
    DISRUPTION_STATE = 3002

    # Verification (4xxx)
    ORACLE_TIMEOUT = 4001
    CONVERGENCE_MISMATCH = 4002
    SPLIT_BRAIN = 4003
    LEDGER_LOSS = 4004

    # Load (5xxx)
    ROUND_TIMEOUT = 5001
    UNEXPECTED_LOAD_FAILURE = 5002
    LEDGER_CONFLICT = 5003


class QuorumE2EError(Exception):
    """Base exception class for the quorum E2E harness"""

    def __init__(self, message: str, code: Optional[int] = None, **details: Any):
        self.message = message
        self.code = code
        self.details: Dict[str, Any] = details
        super().__init__(message)

    def __str__(self) -> str:
        if self.code is not None:
            return f"[{self.code}] {self.message}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "code": self.code,
            "details": {k: str(v) for k, v in self.details.items()},
        }


# ── Cluster client errors ────────────────────────────────────────────


class ClusterClientError(QuorumE2EError):
    """A call into the cluster under test failed"""

    default_code = ErrorCodes.API_ERROR

    def __init__(self, message: str, node_id: Optional[str] = None,
                 code: Optional[int] = None, **details: Any):
        self.node_id = node_id
        super().__init__(message, code=code or self.default_code, node_id=node_id, **details)


class APIError(ClusterClientError):
    """Malformed response or unknown failure reported by the cluster"""

    def __init__(self, message: str, node_id: Optional[str] = None,
                 status: Optional[int] = None, **details: Any):
        self.status = status
        super().__init__(message, node_id=node_id, status=status, **details)


class DisruptionError(ClusterClientError):
    """A failure a request may hit while a network fault is active"""


class NodeDisconnectedError(DisruptionError):
    """The node could not reach a peer (connection refused / closed)"""
    default_code = ErrorCodes.NODE_DISCONNECTED


class RequestTimeoutError(DisruptionError):
    """The request did not complete within its timeout"""
    default_code = ErrorCodes.REQUEST_TIMEOUT


class ClusterBlockedError(DisruptionError):
    """The request was rejected by a global cluster block (e.g. no master)"""
    default_code = ErrorCodes.CLUSTER_BLOCKED


class UnavailableShardsError(DisruptionError):
    """The target shard copies were not available"""
    default_code = ErrorCodes.UNAVAILABLE_SHARDS


# ── Harness errors ───────────────────────────────────────────────────


class ConfigurationError(QuorumE2EError):
    """Invalid or missing harness configuration"""

    def __init__(self, message: str, config_file: Optional[str] = None,
                 field: Optional[str] = None,
                 code: int = ErrorCodes.CONFIG_VALIDATION_FAILED):
        super().__init__(message, code=code, config_file=config_file, field=field)


class TopologyError(QuorumE2EError):
    """A partition topology precondition does not hold"""

    def __init__(self, message: str, **details: Any):
        super().__init__(message, code=ErrorCodes.TOPOLOGY_INVALID, **details)


class DisruptionStateError(QuorumE2EError):
    """A fault scheme was used outside its lifecycle (e.g. started twice)"""

    def __init__(self, message: str, **details: Any):
        super().__init__(message, code=ErrorCodes.DISRUPTION_STATE, **details)


class OracleTimeoutError(QuorumE2EError):
    """A stability predicate did not hold within its budget"""

    def __init__(self, message: str, last_view=None, **details: Any):
        self.last_view = last_view
        super().__init__(message, code=ErrorCodes.ORACLE_TIMEOUT, **details)

    def __str__(self) -> str:
        text = super().__str__()
        if self.last_view is not None:
            text += f"\nlast observed view:\n{self.last_view.pretty()}"
        return text


class ConvergenceMismatchError(QuorumE2EError):
    """Two nodes disagree about the cluster state after healing"""

    def __init__(self, field: str, reference, other):
        self.field = field
        self.reference = reference
        self.other = other
        super().__init__(
            f"nodes [{reference.node_id}] and [{other.node_id}] disagree on {field}",
            code=ErrorCodes.CONVERGENCE_MISMATCH,
            field=field,
        )

    def __str__(self) -> str:
        return (
            f"{super().__str__()}\n"
            f"--- cluster view of node [{self.reference.node_id}] ---\n{self.reference.pretty()}\n"
            f"--- cluster view of node [{self.other.node_id}] ---\n{self.other.pretty()}"
        )


class SplitBrainError(QuorumE2EError):
    """More than one master observed at the same time"""

    def __init__(self, masters: Dict[str, Optional[str]]):
        self.masters = masters
        super().__init__(
            f"more than one master observed: {masters}",
            code=ErrorCodes.SPLIT_BRAIN,
        )


class LedgerLossError(QuorumE2EError):
    """An acknowledged write could not be read back"""

    def __init__(self, doc_id: str, acked_via: str, checked_via: str,
                 expected_version: int, found: str):
        self.doc_id = doc_id
        self.acked_via = acked_via
        self.checked_via = checked_via
        super().__init__(
            f"doc [{doc_id}] indexed via node [{acked_via}] with version "
            f"{expected_version}: {found} (checked via node [{checked_via}])",
            code=ErrorCodes.LEDGER_LOSS,
        )


class LedgerError(QuorumE2EError):
    """The acknowledgement ledger was used inconsistently"""

    def __init__(self, message: str, **details: Any):
        super().__init__(message, code=ErrorCodes.LEDGER_CONFLICT, **details)


class RoundTimeoutError(QuorumE2EError):
    """A load round did not complete within its budget"""

    def __init__(self, round_id: int, completed: int, expected: int, timeout: float):
        self.round_id = round_id
        self.completed = completed
        self.expected = expected
        super().__init__(
            f"round {round_id} completed {completed}/{expected} writes "
            f"within {timeout:.1f}s",
            code=ErrorCodes.ROUND_TIMEOUT,
        )


class UnexpectedLoadError(QuorumE2EError):
    """A writer hit a failure that is not explained by the active fault"""

    def __init__(self, message: str, **details: Any):
        super().__init__(message, code=ErrorCodes.UNEXPECTED_LOAD_FAILURE, **details)
