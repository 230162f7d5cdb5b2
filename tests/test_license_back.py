from datetime import date

import pytest

from fakes import FakeOcr, LICENSE_TEXT, encode, solid
from validation.diagnostics import DiagnosticCode as C
from validation.errors import CapabilityUnavailable
from validation.license_back import (
    back_ocr_result,
    parse_license_back,
    run_back_ocr_dual,
    score_back_orientation,
    to_date,
)
from validation.ocr import analyze_text

TODAY = date(2025, 6, 1)
PORTRAIT = encode(solid(400, 600, 255))


def test_pipe_dates_categories_and_birth_label():
    extract = parse_license_back(LICENSE_TEXT, TODAY)

    assert extract.categories == ["B", "CE"]
    assert extract.issue_date == date(2015, 9, 9)
    assert extract.expiry_date == date(2025, 9, 8)
    assert extract.birth_date == date(1990, 4, 3)
    assert extract.looks_like_license_back


def test_categories_in_canonical_order():
    extract = parse_license_back("cat: CE B A1", TODAY)
    assert extract.categories == ["A1", "B", "CE"]


def test_two_digit_year_cutoff():
    assert to_date("01", "01", "25", TODAY) == date(2025, 1, 1)
    assert to_date("01", "01", "26", TODAY) == date(1926, 1, 1)
    assert to_date("31", "02", "2020", TODAY) is None


def test_labels_pick_nearby_dates():
    text = "DATE DE DELIVRANCE: 01.02.2019 ... EXPIRATION 01.02.2029"
    extract = parse_license_back(text, TODAY)

    assert extract.issue_date == date(2019, 2, 1)
    assert extract.expiry_date == date(2029, 2, 1)
    assert extract.birth_date is None


def test_third_distinct_date_is_birth():
    extract = parse_license_back("10.01.2010 10.01.2020 05.05.1985", TODAY)

    assert extract.issue_date == date(2010, 1, 10)
    assert extract.expiry_date == date(2020, 1, 10)
    assert extract.birth_date == date(1985, 5, 5)


def test_two_dates_leave_birth_empty():
    extract = parse_license_back("10.01.2010 10.01.2020", TODAY)
    assert extract.birth_date is None
    assert extract.expiry_date == date(2020, 1, 10)


@pytest.mark.parametrize("text", [None, "", "nothing useful here"])
def test_empty_extract(text):
    extract = parse_license_back(text, TODAY)
    assert not extract.looks_like_license_back
    assert extract.to_dict() == {"categories": [], "issue_date": None, "expiry_date": None, "birth_date": None}


def test_orientation_score():
    ocr = analyze_text(LICENSE_TEXT)
    extract = parse_license_back(ocr.text, TODAY)
    # driver license 3, categories 2, both dates 2, birth 1
    assert score_back_orientation(ocr, extract) == 8

    blank = analyze_text("zzz")
    assert score_back_orientation(blank, parse_license_back(blank.text, TODAY)) == 0


def test_rotated_reading_wins_when_better():
    engine = FakeOcr(portrait_text="zzz", landscape_text=LICENSE_TEXT)
    outcome = run_back_ocr_dual(PORTRAIT, engine, today=TODAY)

    assert outcome.orientation == "rotated_90"
    assert outcome.scores["rotated_90"] > outcome.scores["original"]
    assert outcome.extract.categories == ["B", "CE"]


def test_tie_keeps_original():
    outcome = run_back_ocr_dual(PORTRAIT, FakeOcr(LICENSE_TEXT), today=TODAY)
    assert outcome.orientation == "original"
    assert outcome.scores["original"] == outcome.scores["rotated_90"]


def test_original_wins_when_better():
    engine = FakeOcr(portrait_text=LICENSE_TEXT, landscape_text="zzz")
    assert run_back_ocr_dual(PORTRAIT, engine, today=TODAY).orientation == "original"


def test_one_failed_orientation_is_tolerated():
    engine = FakeOcr(portrait_text=LICENSE_TEXT, fail_landscape=True)
    outcome = run_back_ocr_dual(PORTRAIT, engine, today=TODAY)

    assert outcome.orientation == "original"
    assert "rotated_90" not in outcome.scores


def test_both_orientations_failing_raises():
    with pytest.raises(CapabilityUnavailable):
        run_back_ocr_dual(PORTRAIT, FakeOcr(error=RuntimeError("no tesseract")), today=TODAY)


def test_back_result_messages():
    good = back_ocr_result(run_back_ocr_dual(PORTRAIT, FakeOcr(LICENSE_TEXT), today=TODAY))
    assert good.ok
    assert good.messages == ()
    assert good.stats["orientation"] == "original"
    assert good.stats["categories_csv"] == "B,CE"

    blank = back_ocr_result(run_back_ocr_dual(PORTRAIT, FakeOcr("zzz"), today=TODAY))
    assert not blank.ok
    assert blank.has_code(C.LICENSE_BACK_NOT_RECOGNIZED)
    assert blank.has_code(C.LICENSE_BACK_FEATURES_MISSING)
