import logging
import threading
from dataclasses import dataclass
from typing import Dict, Optional, Protocol

from .diagnostics import AnalysisResult, DiagnosticCode as C
from .hashing import content_digest

logger = logging.getLogger(__name__)

DUPLICATE_MESSAGES = {
    "photo": "File already uploaded (duplicate)",
    "signature": "Signature already uploaded (duplicate)",
    "front": "Front side already uploaded (duplicate)",
    "back": "Back side already uploaded (duplicate)",
}


@dataclass(frozen=True)
class DocumentHash:
    digest: bytes
    kind: str
    customer_id: Optional[int] = None


class HashStore(Protocol):
    def exists(self, digest: bytes) -> bool:
        ...

    def insert(self, digest: bytes, kind: str, customer_id: Optional[int] = None) -> None:
        ...


class DraftStore(Protocol):
    def upsert_draft_hashes(self, customer_id: int, step: Optional[str], hashes: Dict[str, str]) -> None:
        ...


class InMemoryHashStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._records: Dict[bytes, DocumentHash] = {}

    def exists(self, digest: bytes) -> bool:
        with self._lock:
            return digest in self._records

    def insert(self, digest: bytes, kind: str, customer_id: Optional[int] = None) -> None:
        with self._lock:
            # write-once
            self._records.setdefault(digest, DocumentHash(digest, kind, customer_id))


class InMemoryDraftStore:
    def __init__(self):
        self.drafts: Dict[int, Dict[str, Dict[str, str]]] = {}

    def upsert_draft_hashes(self, customer_id: int, step: Optional[str], hashes: Dict[str, str]) -> None:
        self.drafts.setdefault(customer_id, {})[step or "default"] = dict(hashes)


class DedupGate:
    """
    Best-effort duplicate detection on exact content hashes. Store failures
    are logged and never change the analysis outcome.
    """

    def __init__(self, store: Optional[HashStore]):
        self.store = store

    def check_and_record(self, result: AnalysisResult, data: bytes, kind: str,
                         customer_id: Optional[int] = None) -> AnalysisResult:
        if self.store is None:
            return result
        digest = content_digest(data)
        try:
            if self.store.exists(digest):
                return result.with_message(DUPLICATE_MESSAGES[kind], C.DUPLICATE_UPLOAD)
            self.store.insert(digest, kind, customer_id)
        except Exception as e:
            logger.warning("Dedup store unavailable for %s: %s", kind, e)
        return result


def sync_drafts(store: Optional[DraftStore], customer_id: Optional[int], step: Optional[str],
                hashes: Dict[str, str]) -> Optional[Dict[str, object]]:
    """Push the hex digests to the customer's KYC draft; failures are reported, not raised"""
    if store is None or customer_id is None or not hashes:
        return None
    try:
        store.upsert_draft_hashes(customer_id, step, hashes)
    except Exception as e:
        logger.warning("KYC draft sync failed for customer %s: %s", customer_id, e)
        return {"kyc_draft_updated": False, "error": "kyc_drafts sync failed"}
    return {"kyc_draft_updated": True, "customer_id": customer_id, "kyc_step": step}
