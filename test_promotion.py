import pytest

import promotion
from db import DatabaseError, ValidationError


@pytest.fixture
def school(store):
    store.add_course(1, "General Science")
    store.add_subject(10, "Physics", 1)
    store.add_subject(11, "Chemistry", 1)
    store.add_class(1, "General Science 1A", 1, form=1, semester=2, stream="A")
    store.add_class(2, "General 1 Physics-Chemistry S2", 1, form=1, semester=2, stream="B", electives=[10, 11])
    store.add_class(3, "General Science 2A", 1, form=2, semester=1, stream="A", academic_year="2025/2026")
    store.add_student(1, 1)
    store.add_student(2, 1, is_active=False)
    store.add_student(3, 3)
    store.add_student(4, 1)
    return store


def test_target_name_rewrites_the_form_and_stream_word():
    source = {"class_name": "General Science 1A", "course_name": "General Science", "form": 1, "semester": 2, "stream": "A"}
    assert promotion.target_class_name(source, 2, 1) == "General Science 2A"


def test_target_name_rewrites_form_and_semester_words():
    source = {"class_name": "General 1 Physics-Chemistry S2", "course_name": "General Science",
              "form": 1, "semester": 2, "stream": "B"}
    assert promotion.target_class_name(source, 2, 1) == "General 2 Physics-Chemistry S1"


def test_target_name_leaves_other_digits_alone():
    source = {"class_name": "Form 1 Room 12", "course_name": "Business", "form": 1, "semester": 1, "stream": None}
    assert promotion.target_class_name(source, 1, 2) == "Form 1 Room 12"
    assert promotion.target_class_name(source, 2, 1) == "Form 2 Room 12"


def test_unnamed_class_falls_back_to_course_form_and_stream():
    source = {"class_name": "", "course_name": "General Science", "form": 1, "semester": 2, "stream": "C"}
    assert promotion.target_class_name(source, 2, 1) == "General Science 2C"


def test_only_active_students_of_the_source_period_move(school, store_client):
    result = promotion.promote_students(store_client, "2025/2026", "2026/2027", 1, 2, 2, 1)

    target_id = school.students[1]["current_class_id"]
    target = school.classes[target_id]
    assert target["class_name"] == "General Science 2A"
    assert (target["form"], target["semester"], target["academic_year"]) == (2, 1, "2026/2027")
    assert school.students[4]["current_class_id"] == target_id
    assert school.students[2]["current_class_id"] == 1
    assert school.students[3]["current_class_id"] == 3
    assert result["promoted_count"] == 2
    assert result["created_classes"] == [target_id]
    assert result["class_mapping"] == {1: target_id}
    assert store_client.commits == 1


def test_existing_target_class_is_reused(school, store_client):
    school.add_class(50, "General Science 2A", 1, form=2, semester=1, academic_year="2026/2027")

    result = promotion.promote_students(store_client, "2025/2026", "2026/2027", 1, 2, 2, 1)

    assert result["created_classes"] == []
    assert school.students[1]["current_class_id"] == 50


def test_elective_class_target_keeps_its_subjects(school, store_client):
    school.add_student(5, 2)

    result = promotion.promote_students(store_client, "2025/2026", "2026/2027", 1, 2, 2, 1)

    target_id = school.students[5]["current_class_id"]
    assert school.classes[target_id]["class_name"] == "General 2 Physics-Chemistry S1"
    assert school.classes[target_id]["stream"] == "B"
    assert school.elective_ids(target_id) == [10, 11]
    assert len(result["created_classes"]) == 2


def test_to_form_defaults_to_next_form(school, store_client):
    promotion.promote_students(store_client, "2025/2026", "2026/2027", from_form=1, from_semester=2)
    assert school.classes[school.students[1]["current_class_id"]]["form"] == 2


def test_failure_part_way_promotes_nobody(school, store_client, monkeypatch):
    moved = []

    def flaky_set_student_class(c, student_id, class_id):
        if moved:
            raise DatabaseError("deadlock detected")
        moved.append(student_id)
        school.set_student_class(c, student_id, class_id)

    monkeypatch.setattr(promotion, "set_student_class_with_cursor", flaky_set_student_class)

    with pytest.raises(DatabaseError) as excinfo:
        promotion.promote_students(store_client, "2025/2026", "2026/2027", 1, 2, 2, 1)

    assert str(excinfo.value) == "Failed to promote students: deadlock detected"
    assert moved == [1]
    assert school.students[1]["current_class_id"] == 1
    assert sorted(school.classes) == [1, 2, 3]
    assert store_client.rollbacks == 1


def test_same_period_is_rejected(school, store_client):
    with pytest.raises(ValidationError):
        promotion.promote_students(store_client, "2025/2026", "2026/2027", 1, 2, 1, 2)
    assert school.students[1]["current_class_id"] == 1


def test_preview_writes_nothing(school, store_client):
    plan = promotion.preview_promotion(store_client, "2026/2027", 1, 2, 2, 1)

    assert [row["id"] for row in plan] == [1, 4]
    assert plan[0]["target_class"] == "General Science 2A"
    assert plan[0]["target_exists"] is False
    assert sorted(school.classes) == [1, 2, 3]


def test_streamless_classes_keep_separate_targets(store, store_client):
    store.add_course(1, "General Science")
    store.add_class(1, "Form 1 Gold", 1, form=1, semester=2, stream=None)
    store.add_class(2, "Form 1 Blue", 1, form=1, semester=2, stream=None)
    store.add_student(1, 1)
    store.add_student(2, 2)

    result = promotion.promote_students(store_client, "2025/2026", "2026/2027", 1, 2, 2, 1)

    gold, blue = store.students[1]["current_class_id"], store.students[2]["current_class_id"]
    assert gold != blue
    assert store.classes[gold]["class_name"] == "Form 2 Gold"
    assert store.classes[blue]["class_name"] == "Form 2 Blue"
    assert len(result["created_classes"]) == 2


def test_same_named_classes_of_one_stream_keep_separate_targets(store, store_client):
    store.add_course(1, "General Science")
    store.add_class(1, "General Science 1A", 1, form=1, semester=2, stream="A")
    store.add_class(2, "General Science 1A", 1, form=1, semester=2, stream="A", academic_year="2024/2025")
    store.add_student(1, 1)
    store.add_student(2, 2)
    store.add_student(3, 1)

    result = promotion.promote_students(store_client, "2025/2026", "2026/2027", 1, 2, 2, 1)

    first, second = store.students[1]["current_class_id"], store.students[2]["current_class_id"]
    assert first != second
    assert store.students[3]["current_class_id"] == first
    assert store.classes[first]["class_name"] == "General Science 2A"
    assert store.classes[second]["class_name"] == "General Science 2A #2"
    assert result["class_mapping"] == {1: first, 2: second}


def test_preview_shows_distinct_targets_for_same_named_classes(store, store_client):
    store.add_course(1, "General Science")
    store.add_class(1, "General Science 1A", 1, form=1, semester=2, stream="A")
    store.add_class(2, "General Science 1A", 1, form=1, semester=2, stream="A")
    store.add_student(1, 1)
    store.add_student(2, 2)

    plan = promotion.preview_promotion(store_client, "2026/2027", 1, 2, 2, 1)

    assert [row["target_class"] for row in plan] == ["General Science 2A", "General Science 2A #2"]
