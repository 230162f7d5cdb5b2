import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Optional

from config import settings as default_settings, PHOTO_RULES
from .capabilities import call_with_timeout
from .card_sides import analyze_card_side, analyze_card_sides
from .dedup import DedupGate, DraftStore, HashStore, sync_drafts
from .diagnostics import AnalysisResult, DiagnosticCode as C, ResultBuilder
from .errors import CapabilityUnavailable, InvalidImageError, ValidationCancelled
from .face import FaceDetector, YuNetFaceDetector
from .hashing import content_digest
from .intake import Submission
from .license_back import LicenseBackExtract, back_ocr_result, run_back_ocr_dual
from .metrics import AnalysisMetrics
from .ocr import OCRDocResult, OcrEngine, TesseractOcrEngine, run_document_ocr
from .photo import PhotoAnalyzer, face_result_from_photo
from .preprocess import auto_crop_document, normalize_profile_photo, prepare_for_ocr
from .scoring import build_summary, compute_score, finalize_status
from .signature import SignatureAnalyzer
from .vision import VisionClient

logger = logging.getLogger(__name__)

RESULT_KEYS = ("photo", "face", "signature", "front", "back", "ocr", "ocr_back")


@dataclass(frozen=True)
class ValidationReport:
    photo: Optional[AnalysisResult] = None
    face: Optional[AnalysisResult] = None
    signature: Optional[AnalysisResult] = None
    front: Optional[AnalysisResult] = None
    back: Optional[AnalysisResult] = None
    ocr: Optional[AnalysisResult] = None
    ocr_back: Optional[AnalysisResult] = None
    score: float = 0.0
    status: str = "failed"
    timers: Dict[str, float] = field(default_factory=dict)
    ocr_document: Optional[OCRDocResult] = None
    license_back: Optional[LicenseBackExtract] = None
    back_orientation: Optional[str] = None
    photo_preprocess: Optional[Dict[str, Any]] = None
    normalized_photo: Optional[bytes] = None
    db_sync: Optional[Dict[str, Any]] = None
    doc_hashes: Dict[str, str] = field(default_factory=dict)
    metrics: Dict[str, int] = field(default_factory=dict)

    def results(self) -> Dict[str, Optional[AnalysisResult]]:
        return {k: getattr(self, k) for k in RESULT_KEYS}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {k: (r.to_dict() if r else None) for k, r in self.results().items()}
        body.update({
            "score": self.score,
            "status": self.status,
            "timers": dict(self.timers),
            "ocr_document": self.ocr_document.to_dict() if self.ocr_document else None,
            "license_back": self.license_back.to_dict() if self.license_back else None,
            "back_orientation": self.back_orientation,
            "photo_preprocess": self.photo_preprocess,
            "db_sync": self.db_sync,
            "doc_hashes": dict(self.doc_hashes),
            "metrics": dict(self.metrics),
        })
        return body


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 1)


def _stage_failure(code: C, stage: str, error: Exception) -> AnalysisResult:
    b = ResultBuilder()
    b.fail(code, f"{stage} analysis failed: {error}")
    return b.build(ok=False)


def _crop(data: Optional[bytes]) -> Optional[bytes]:
    if data is None:
        return None
    try:
        cropped, _ = auto_crop_document(data)
    except InvalidImageError:
        return data
    return cropped


class ValidationPipeline:
    """
    Runs every analyzer for one submission concurrently, joins the results,
    then applies dedup, scoring and the final decision.

    Collaborators are injected; defaults are the OpenCV face detector, the
    Tesseract engine and the OpenAI vision client.
    """

    def __init__(self, settings=None, face_detector: Optional[FaceDetector] = None,
                 ocr_engine: Optional[OcrEngine] = None, vision: Optional[VisionClient] = None,
                 hash_store: Optional[HashStore] = None, draft_store: Optional[DraftStore] = None,
                 metrics: Optional[AnalysisMetrics] = None):
        self.settings = settings or default_settings
        self.face_detector = face_detector or YuNetFaceDetector()
        self.ocr_engine = ocr_engine or TesseractOcrEngine()
        self.vision = vision
        self.metrics = metrics or AnalysisMetrics()
        self.dedup = DedupGate(hash_store)
        self.draft_store = draft_store
        self.timeout = self.settings.CAPABILITY_TIMEOUT
        self.photo_analyzer = PhotoAnalyzer(self.face_detector, vision=vision, metrics=self.metrics,
                                            timeout=self.timeout)
        self.signature_analyzer = SignatureAnalyzer()

    # ------------------------
    # Stages
    # ------------------------
    def _photo_stage(self, photo: bytes, kind: str) -> Dict[str, Any]:
        result = self.photo_analyzer.analyze(photo, kind)
        out = {"photo": result}
        if kind in ("profile", "passport"):
            try:
                normalized, original, done = normalize_profile_photo(photo, PHOTO_RULES["normalized_dimension"])
                out["photo_preprocess"] = {"normalized": done, "original": original}
                out["normalized_photo"] = normalized
            except InvalidImageError as e:
                logger.warning("Photo normalisation skipped: %s", e)
        return out

    def _signature_stage(self, signature: bytes) -> Dict[str, Any]:
        return {"signature": self.signature_analyzer.analyze(signature)}

    def _cards_stage(self, front: Optional[bytes], back: Optional[bytes]) -> Dict[str, Any]:
        if front is not None and back is not None:
            cards = analyze_card_sides(front, back, vision=self.vision)
            return {"front": cards, "back": cards}
        out = {}
        if front is not None:
            out["front"] = analyze_card_side(front, vision=self.vision)
        if back is not None:
            out["back"] = analyze_card_side(back)
        return out

    def _ocr_stage(self, front: bytes) -> Dict[str, Any]:
        try:
            prepared = prepare_for_ocr(front)
            doc = call_with_timeout("ocr", run_document_ocr, prepared, self.ocr_engine, timeout=self.timeout)
        except CapabilityUnavailable as e:
            b = ResultBuilder()
            b.fail(C.OCR_UNAVAILABLE, f"Text recognition unavailable: {e.reason}")
            return {"ocr": b.build(ok=False, stats={"doc_type_detected": "unknown"})}

        b = ResultBuilder()
        if doc.doc_type_detected.value == "unknown":
            b.fail(C.DOCUMENT_TYPE_UNKNOWN, "Document type not recognised")
        result = b.build(
            ok=doc.doc_type_detected.value != "unknown",
            stats={
                "doc_type_detected": doc.doc_type_detected.value,
                "mrz_valid": doc.mrz.valid,
                "keywords_csv": ",".join(doc.keywords),
            },
        )
        return {"ocr": result, "ocr_document": doc}

    def _ocr_back_stage(self, back: bytes) -> Dict[str, Any]:
        try:
            prepared = prepare_for_ocr(back)
            outcome = run_back_ocr_dual(prepared, self.ocr_engine, timeout=self.timeout)
        except CapabilityUnavailable as e:
            b = ResultBuilder()
            b.fail(C.OCR_UNAVAILABLE, f"Text recognition unavailable: {e.reason}")
            return {"ocr_back": b.build(ok=False, stats={"doc_type_detected": "unknown"})}
        return {
            "ocr_back": back_ocr_result(outcome),
            "license_back": outcome.extract,
            "back_orientation": outcome.orientation,
        }

    # ------------------------
    # Orchestration
    # ------------------------
    def _timed(self, fn: Callable[..., Dict[str, Any]], *args) -> Dict[str, Any]:
        start = time.perf_counter()
        out = fn(*args)
        out["_ms"] = _elapsed_ms(start)
        return out

    def _join(self, futures: Dict[Future, str],
              cancel_event: Optional[threading.Event]) -> Dict[str, Dict[str, Any]]:
        done_results: Dict[str, Dict[str, Any]] = {}
        pending = set(futures)
        while pending:
            if cancel_event is not None and cancel_event.is_set():
                for f in pending:
                    f.cancel()
                raise ValidationCancelled("validation cancelled by caller")
            done, pending = wait(pending, timeout=0.05, return_when=FIRST_COMPLETED)
            for f in done:
                stage = futures[f]
                try:
                    done_results[stage] = f.result()
                except Exception as e:
                    logger.exception("Stage %s failed", stage)
                    code = C.OCR_UNAVAILABLE if stage.startswith("ocr") else C.IMAGE_UNREADABLE
                    keys = {"cards": ("front", "back")}.get(stage, (stage,))
                    done_results[stage] = {k: _stage_failure(code, stage, e) for k in keys}
        return done_results

    def run(self, submission: Submission, cancel_event: Optional[threading.Event] = None) -> ValidationReport:
        t0 = time.perf_counter()
        front = _crop(submission.front)
        back = _crop(submission.back)

        stages = {}
        if submission.photo is not None:
            stages["photo"] = (self._photo_stage, submission.photo, submission.photo_type)
        if submission.signature is not None:
            stages["signature"] = (self._signature_stage, submission.signature)
        if front is not None or back is not None:
            stages["cards"] = (self._cards_stage, front, back)
        if front is not None:
            stages["ocr"] = (self._ocr_stage, front)
        if back is not None:
            stages["ocr_back"] = (self._ocr_back_stage, back)

        pool = ThreadPoolExecutor(max_workers=self.settings.PIPELINE_MAX_WORKERS, thread_name_prefix="kyc-stage")
        try:
            futures = {pool.submit(self._timed, fn, *args): name for name, (fn, *args) in stages.items()}
            joined = self._join(futures, cancel_event)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        fields: Dict[str, Any] = {}
        timers: Dict[str, float] = {}
        for stage, out in joined.items():
            ms = out.pop("_ms", None)
            if ms is not None:
                timers[f"{stage}_ms"] = ms
            fields.update(out)

        if cancel_event is not None and cancel_event.is_set():
            raise ValidationCancelled("validation cancelled by caller")

        # Dedup on raw upload bytes, after analysis
        td = time.perf_counter()
        doc_hashes: Dict[str, str] = {}
        for kind, data in submission.artifacts().items():
            doc_hashes[kind] = content_digest(data).hex()
            if fields.get(kind) is not None:
                fields[kind] = self.dedup.check_and_record(fields[kind], data, kind, submission.customer_id)
        timers["dedup_ms"] = _elapsed_ms(td)

        if fields.get("photo") is not None:
            fields["face"] = face_result_from_photo(fields["photo"])

        report = ValidationReport(**fields, doc_hashes=doc_hashes)
        ts = time.perf_counter()
        report = replace(report, score=compute_score(report))
        report = replace(report, status=finalize_status(report))
        timers["score_ms"] = _elapsed_ms(ts)

        db_sync = sync_drafts(self.draft_store, submission.customer_id, submission.kyc_step, doc_hashes)
        timers["total_ms"] = _elapsed_ms(t0)

        logger.info("Validation finished: score=%s status=%s stages=%s", report.score, report.status, sorted(stages))
        return replace(report, timers=timers, db_sync=db_sync, metrics=self.metrics.snapshot())


def validate_submission(pipeline: ValidationPipeline, submission: Submission,
                        cancel_event: Optional[threading.Event] = None) -> Dict[str, Any]:
    """Run the pipeline and return the report together with its summary"""
    report = pipeline.run(submission, cancel_event)
    return {**build_summary(report), "report": report.to_dict()}
