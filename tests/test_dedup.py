from validation.dedup import DedupGate, InMemoryDraftStore, InMemoryHashStore, sync_drafts
from validation.diagnostics import AnalysisResult, DiagnosticCode as C, SECURITY_CRITICAL_CODES
from validation.hashing import content_digest


class BrokenStore:
    def exists(self, digest):
        raise ConnectionError("database down")

    def insert(self, digest, kind, customer_id=None):
        raise ConnectionError("database down")


class BrokenDraftStore:
    def upsert_draft_hashes(self, customer_id, step, hashes):
        raise ConnectionError("database down")


def test_second_upload_is_flagged():
    gate = DedupGate(InMemoryHashStore())
    result = AnalysisResult(ok=True)

    first = gate.check_and_record(result, b"same bytes", "photo", 7)
    second = gate.check_and_record(result, b"same bytes", "photo", 7)

    assert first == result
    assert second.ok
    assert second.messages == ("File already uploaded (duplicate)",)
    assert second.has_code(C.DUPLICATE_UPLOAD)
    # the original result is never mutated
    assert result.messages == ()


def test_duplicate_message_per_kind():
    gate = DedupGate(InMemoryHashStore())
    gate.check_and_record(AnalysisResult(ok=True), b"x", "front")
    flagged = gate.check_and_record(AnalysisResult(ok=False), b"x", "back")
    assert flagged.messages == ("Back side already uploaded (duplicate)",)
    assert not flagged.ok


def test_store_failure_leaves_result_unchanged():
    result = AnalysisResult(ok=True)
    assert DedupGate(BrokenStore()).check_and_record(result, b"abc", "signature") == result


def test_no_store():
    result = AnalysisResult(ok=True)
    assert DedupGate(None).check_and_record(result, b"abc", "photo") is result


def test_records_are_write_once():
    store = InMemoryHashStore()
    digest = content_digest(b"abc")
    store.insert(digest, "photo", 1)
    store.insert(digest, "front", 2)
    assert store.exists(digest)
    assert store._records[digest].kind == "photo"


def test_duplicate_is_not_security_critical():
    assert C.DUPLICATE_UPLOAD not in SECURITY_CRITICAL_CODES


def test_sync_drafts():
    store = InMemoryDraftStore()
    out = sync_drafts(store, 42, "step3", {"photo": "ab"})

    assert out == {"kyc_draft_updated": True, "customer_id": 42, "kyc_step": "step3"}
    assert store.drafts[42]["step3"] == {"photo": "ab"}


def test_sync_drafts_skipped_without_customer():
    assert sync_drafts(InMemoryDraftStore(), None, "step3", {"photo": "ab"}) is None
    assert sync_drafts(None, 42, "step3", {"photo": "ab"}) is None


def test_sync_drafts_failure_is_reported():
    out = sync_drafts(BrokenDraftStore(), 42, "step3", {"photo": "ab"})
    assert out == {"kyc_draft_updated": False, "error": "kyc_drafts sync failed"}
