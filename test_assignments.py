import pytest

import assignments
from conftest import FakeClient
from db import NotFoundError, ValidationError


def test_submission_path_is_simulated_under_assignment_folder():
    assert assignments.submission_path(7, "../essay.docx") == "uploads/assignments/7/essay.docx"


def test_create_assignment_defaults_max_score():
    client = FakeClient(lambda query, params: [{"id": 1}] if "INSERT INTO assignments" in query else None)

    created = assignments.create_assignment(client, {
        "teacher_id": "2", "class_id": 7, "subject_id": "10", "title": "  Titration write-up ",
        "assignment_type_id": "", "due_date": "2026-11-02",
    })

    assert created == {"id": 1}
    assert client.cursor.executed[0][1] == (2, 7, 10, "Titration write-up", None, None, "2026-11-02", 100.0)


@pytest.mark.parametrize("data", [
    {"class_id": 7, "subject_id": 10},
    {"class_id": 7, "title": "Essay"},
    {"class_id": 7, "subject_id": 10, "title": "Essay", "max_score": 0},
])
def test_create_assignment_validation(data):
    client = FakeClient()
    with pytest.raises(ValidationError):
        assignments.create_assignment(client, data)
    assert client.cursor.executed == []


def test_class_assignments_include_untyped_ones():
    client = FakeClient(lambda query, params: [])
    assignments.get_assignments_by_class(client, "7")
    query, params = client.cursor.executed[0]
    assert "LEFT JOIN assignment_types" in query
    assert "a.class_id = %s" in query
    assert params == (7,)


def submission_responder(assignment_rows):
    def responder(query, params):
        if query.startswith("SELECT id FROM assignments"):
            return assignment_rows
        if "INSERT INTO assignment_submissions" in query:
            return [{"id": 4, "assignment_id": params[0], "student_id": params[1], "file_path": params[2]}]
        return None
    return responder


def test_resubmission_replaces_the_file():
    client = FakeClient(submission_responder([{"id": 7}]))

    submission = assignments.submit_assignment(client, 7, "3", "essay.docx")

    assert submission["file_path"] == "uploads/assignments/7/essay.docx"
    query = client.cursor.queries()[1]
    assert "ON CONFLICT (assignment_id, student_id) DO UPDATE" in query
    assert "score = NULL" in query
    assert client.commits == 1


def test_submitting_to_a_closed_assignment_is_not_found():
    client = FakeClient(submission_responder([]))
    with pytest.raises(NotFoundError):
        assignments.submit_assignment(client, 7, 3)
    assert client.cursor.params_for("INSERT INTO assignment_submissions") == []
    assert client.rollbacks == 1


def grading_responder(max_score):
    def responder(query, params):
        if "FOR UPDATE" in query:
            return [{"id": 4, "max_score": max_score}]
        if "UPDATE assignment_submissions" in query:
            return [{"id": 4, "score": params[0], "graded_by": params[2]}]
        return None
    return responder


def test_grade_is_bounded_by_the_assignment_max_score():
    client = FakeClient(grading_responder(20))

    with pytest.raises(ValidationError) as excinfo:
        assignments.grade_assignment_submission(client, 4, 25, "Good", 2)

    assert "between 0 and 20" in str(excinfo.value)
    assert client.cursor.params_for("UPDATE assignment_submissions") == []


def test_grading_records_the_teacher():
    client = FakeClient(grading_responder(20))

    graded = assignments.grade_assignment_submission(client, 4, "17.5", "  Neat work ", "2")

    assert graded == {"id": 4, "score": 17.5, "graded_by": 2}
    assert client.cursor.params_for("UPDATE assignment_submissions") == [(17.5, "Neat work", 2, 4)]


def test_grading_a_missing_submission_is_not_found():
    with pytest.raises(NotFoundError):
        assignments.grade_assignment_submission(FakeClient(lambda query, params: []), 4, 10)


def test_private_message_needs_a_recipient():
    client = FakeClient()
    with pytest.raises(ValidationError):
        assignments.create_teacher_message(client, {
            "teacher_id": 2, "title": "Your essay", "content": "See me after class", "is_private": True,
        })
    assert client.cursor.executed == []


def test_class_message_is_posted():
    client = FakeClient(lambda query, params: [{"id": 9}] if "INSERT INTO teacher_messages" in query else None)

    assignments.create_teacher_message(client, {
        "teacher_id": 2, "class_id": "7", "title": "Quiz", "content": "Quiz on Friday",
    })

    assert client.cursor.executed[0][1] == (2, 7, None, "Quiz", "Quiz on Friday", False, None)
