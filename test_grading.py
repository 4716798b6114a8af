import pytest

from db import ValidationError
from grading import compute_total_score, grade_of, grade_result, remark_of


@pytest.mark.parametrize("total, grade", [
    (100, "A1"),
    (80, "A1"),
    (79.9, "B2"),
    (75, "B2"),
    (74.9, "B3"),
    (70, "B3"),
    (65, "C4"),
    (60, "C5"),
    (55, "C6"),
    (50, "D7"),
    (49.9, "E8"),
    (45, "E8"),
    (44.9, "F9"),
    (0, "F9"),
])
def test_grade_of_uses_inclusive_lower_bounds(total, grade):
    assert grade_of(total) == grade


def test_remarks_follow_grade_codes():
    assert remark_of("A1") == "Excellent"
    assert remark_of("c5") == "Credit"
    assert remark_of("E8") == "Weak Pass"
    assert remark_of("F9") == "Fail"
    assert remark_of("Z0") == ""


def test_total_is_rounded_to_one_decimal():
    assert compute_total_score(30.04, 40.0) == 70.0
    assert compute_total_score("12.5", "33.3") == 45.8


def test_blank_component_counts_as_zero():
    assert compute_total_score("", 48) == 48.0
    assert compute_total_score(None, None) == 0.0


@pytest.mark.parametrize("class_score, exam_score", [(30.1, 40), (50, 50), (0, 70.5)])
def test_components_above_their_weight_are_rejected(class_score, exam_score):
    with pytest.raises(ValidationError):
        compute_total_score(class_score, exam_score)


@pytest.mark.parametrize("class_score, exam_score", [(-1, 50), (30, "abc")])
def test_invalid_components_are_rejected(class_score, exam_score):
    with pytest.raises(ValidationError):
        compute_total_score(class_score, exam_score)


def test_grade_result_derives_total_grade_and_remark_together():
    assert grade_result("30", "45") == {
        "class_score": 30.0,
        "exam_score": 45.0,
        "total_score": 75.0,
        "grade": "B2",
        "remarks": "Very Good",
    }


def test_components_at_their_limits_are_accepted():
    assert grade_result(30, 70)["total_score"] == 100.0


def test_stored_components_add_up_to_the_total():
    graded = grade_result(12.25, 40.25)
    assert (graded["class_score"], graded["exam_score"]) == (12.2, 40.2)
    assert graded["total_score"] == 52.4
    assert graded["grade"] == "D7"
    assert compute_total_score(12.25, 40.25) == 52.4
