"""
Acknowledged-write ledger

The ledger is the harness's record of every write the cluster claimed to
have accepted. Entries are inserted only after the write call returned
successfully and are never removed. Reusing a write id is a harness bug.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional

from ..utils.exceptions import LedgerError

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class AckRecord:
    doc_id: str
    node_id: str
    version: int


@dataclass(frozen=True)
class DisruptionRecord:
    """An in-flight write that failed with a failure the active fault explains"""
    doc_id: str
    node_id: str
    error: Exception

    def to_dict(self) -> Dict[str, str]:
        return {
            "doc_id": self.doc_id,
            "node_id": self.node_id,
            "error": type(self.error).__name__,
            "message": str(self.error),
        }


class AckLedger:
    """Add-only map of doc id to the write that acknowledged it"""

    def __init__(self):
        self._lock = threading.Lock()
        self._records: Dict[str, AckRecord] = {}

    def record(self, doc_id: str, node_id: str, version: int) -> AckRecord:
        entry = AckRecord(doc_id, node_id, version)
        with self._lock:
            existing = self._records.get(doc_id)
            if existing is not None:
                raise LedgerError(
                    f"doc [{doc_id}] acknowledged twice: first via [{existing.node_id}], "
                    f"again via [{node_id}]",
                    doc_id=doc_id,
                )
            self._records[doc_id] = entry
        return entry

    def get(self, doc_id: str) -> Optional[AckRecord]:
        with self._lock:
            return self._records.get(doc_id)

    def entries(self) -> List[AckRecord]:
        """Point-in-time copy of all entries"""
        with self._lock:
            return list(self._records.values())

    def __contains__(self, doc_id: str) -> bool:
        with self._lock:
            return doc_id in self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __iter__(self) -> Iterator[AckRecord]:
        return iter(self.entries())
