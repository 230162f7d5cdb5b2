import asyncio
import logging
import threading
from typing import Optional

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings
from validation.dedup import InMemoryDraftStore, InMemoryHashStore
from validation.errors import IntakeError, ValidationCancelled
from validation.intake import Upload, build_submission
from validation.run_pipeline import ValidationPipeline, validate_submission
from validation.vision import VisionClient

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


app = FastAPI(
    title="KYC Validation Service",
    description="Identity photo, signature and document validation with scoring",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_pipeline: Optional[ValidationPipeline] = None


def get_pipeline() -> ValidationPipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = ValidationPipeline(
            vision=VisionClient(),
            hash_store=InMemoryHashStore(),
            draft_store=InMemoryDraftStore(),
        )
    return _pipeline


def set_pipeline(pipeline: Optional[ValidationPipeline]) -> None:
    global _pipeline
    _pipeline = pipeline


async def watch_disconnect(request: Request, cancel_event: threading.Event, interval: float = 0.1) -> None:
    """Set cancel_event once the client has gone away"""
    while not cancel_event.is_set():
        if await request.is_disconnected():
            logger.info("Client disconnected, cancelling validation")
            cancel_event.set()
            return
        await asyncio.sleep(interval)


# ------------------------
# KYC Validation API
# ------------------------
@app.post("/kyc/validate")
async def validate_kyc(
    request: Request,
    photo: Optional[UploadFile] = File(None),
    signature: Optional[UploadFile] = File(None),
    front: Optional[UploadFile] = File(None),
    back: Optional[UploadFile] = File(None),
    photo_type: Optional[str] = Form(None),
    customer_id: Optional[str] = Form(None),
    kyc_step: Optional[str] = Form(None)
):
    """
    Validate KYC artifacts: identity photo, signature, document front and back.
    Accepts JPG / PNG uploads, any subset of the four files.
    """
    uploads = []
    for field_name, uploaded_file in (("photo", photo), ("signature", signature), ("front", front), ("back", back)):
        if uploaded_file is None or not uploaded_file.filename:
            continue
        uploads.append(Upload(field_name, uploaded_file.content_type or "", await uploaded_file.read()))

    try:
        submission = build_submission(uploads, photo_type=photo_type, customer_id=customer_id, kyc_step=kyc_step)
    except IntakeError as e:
        logger.info("Submission rejected at intake: %s %s", e.code, e.details)
        return JSONResponse(status_code=e.status_code, content=e.to_dict())

    cancel_event = threading.Event()
    watcher = asyncio.create_task(watch_disconnect(request, cancel_event))
    try:
        return await run_in_threadpool(validate_submission, get_pipeline(), submission, cancel_event)
    except asyncio.CancelledError:
        cancel_event.set()
        raise
    except ValidationCancelled:
        logger.info("KYC validation cancelled by client")
        return JSONResponse(status_code=499, content={"error": "Client closed request", "code": "CANCELLED"})
    except Exception as e:
        logger.exception("KYC validation failed")
        raise HTTPException(
            status_code=500,
            detail=f"KYC validation failed: {str(e)}"
        )
    finally:
        watcher.cancel()


# ------------------------
# Health Check
# ------------------------
@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "service": "kyc-validation"
    }


# ------------------------
# Local Dev Entry
# ------------------------
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
