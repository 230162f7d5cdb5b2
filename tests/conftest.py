import pytest

from fakes import FakeDetector, FakeOcr, LICENSE_TEXT
from validation.dedup import InMemoryDraftStore, InMemoryHashStore
from validation.run_pipeline import ValidationPipeline


@pytest.fixture
def detector():
    return FakeDetector()


@pytest.fixture
def ocr_engine():
    return FakeOcr(LICENSE_TEXT)


@pytest.fixture
def pipeline(detector, ocr_engine):
    return ValidationPipeline(
        face_detector=detector,
        ocr_engine=ocr_engine,
        hash_store=InMemoryHashStore(),
        draft_store=InMemoryDraftStore(),
    )
