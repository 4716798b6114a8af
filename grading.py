"""Score-to-grade conversion for the gradebook."""

from db import ValidationError

PASS_MARK = 50
CLASS_SCORE_MAX = 30
EXAM_SCORE_MAX = 70

# (minimum total score, grade code), highest first.
GRADE_THRESHOLDS = (
    (80, 'A1'),
    (75, 'B2'),
    (70, 'B3'),
    (65, 'C4'),
    (60, 'C5'),
    (55, 'C6'),
    (50, 'D7'),
    (45, 'E8'),
)
FAIL_GRADE = 'F9'

GRADE_REMARKS = {
    'A1': 'Excellent',
    'B2': 'Very Good',
    'B3': 'Good',
    'C4': 'Credit',
    'C5': 'Credit',
    'C6': 'Credit',
    'D7': 'Pass',
    'E8': 'Weak Pass',
    'F9': 'Fail',
}


def grade_of(total_score):
    """Get grade code from a total score out of 100."""
    score = float(total_score or 0)
    for minimum, grade in GRADE_THRESHOLDS:
        if score >= minimum:
            return grade
    return FAIL_GRADE


def remark_of(grade):
    return GRADE_REMARKS.get((grade or '').strip().upper(), '')


def _score(value, field, maximum):
    """Parse one score component, rounded once to one decimal place."""
    if value is None or value == '':
        return 0.0
    try:
        score = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number.")
    if score < 0 or score > maximum:
        raise ValidationError(f"{field} must be between 0 and {maximum}.")
    return round(score, 1)


def compute_total_score(class_score, exam_score):
    """Sum of the rounded components, to one decimal place."""
    return round(_score(class_score, 'class_score', CLASS_SCORE_MAX) +
                 _score(exam_score, 'exam_score', EXAM_SCORE_MAX), 1)


def grade_result(class_score, exam_score):
    """Derive total, grade and remark together so they never disagree.

    The stored components are the same rounded values the total is summed
    from, so total_score == class_score + exam_score holds for every row.
    """
    class_score = _score(class_score, 'class_score', CLASS_SCORE_MAX)
    exam_score = _score(exam_score, 'exam_score', EXAM_SCORE_MAX)
    total = round(class_score + exam_score, 1)
    grade = grade_of(total)
    return {
        'class_score': class_score,
        'exam_score': exam_score,
        'total_score': total,
        'grade': grade,
        'remarks': remark_of(grade),
    }
