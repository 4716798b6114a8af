import importlib

import pytest

from db import DatabaseError, NotFoundError, ValidationError


@pytest.fixture
def app_module(monkeypatch, tmp_path):
    monkeypatch.setenv("SECRET_KEY", "x" * 40)
    monkeypatch.setenv("DATABASE_BACKEND", "null")
    monkeypatch.setenv("RUN_STARTUP_DDL", "0")
    monkeypatch.setenv("RUN_STARTUP_BOOTSTRAP", "0")
    monkeypatch.setenv("LOG_FILE", str(tmp_path / "app.log"))

    import school_portal

    mod = importlib.reload(school_portal)
    mod.app.config["TESTING"] = True
    mod.app.config["WTF_CSRF_ENABLED"] = False
    return mod


@pytest.fixture
def client(app_module):
    return app_module.app.test_client()


def login_as(client, role, **extra):
    with client.session_transaction() as sess:
        sess["user_id"] = f"{role}-user"
        sess["role"] = role
        sess.update(extra)


def test_health_reports_backend(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.get_json() == {"status": "ok", "database": "null"}


def test_missing_secret_key_fails_startup(monkeypatch):
    monkeypatch.delenv("SECRET_KEY", raising=False)
    monkeypatch.delenv("ALLOW_INSECURE_DEFAULTS", raising=False)
    monkeypatch.setenv("DATABASE_BACKEND", "null")
    monkeypatch.setenv("RUN_STARTUP_DDL", "0")

    import school_portal

    with pytest.raises(RuntimeError, match="SECRET_KEY"):
        importlib.reload(school_portal)


def test_api_requires_login(client):
    assert client.get("/api/classes").status_code == 401


def test_teachers_cannot_resolve_classes(client):
    login_as(client, "teacher")
    response = client.post("/api/classes/resolve", json={"course_id": 1, "elective_subject_ids": [10]})
    assert response.status_code == 403


def test_null_backend_lists_nothing(client):
    login_as(client, "admin")
    response = client.get("/api/courses")
    assert response.status_code == 200
    assert response.get_json() == []


def test_resolve_reads_numbered_elective_fields(client, app_module, monkeypatch):
    captured = {}

    def fake_resolve(db_client, course_id, elective_ids, form=1, semester=1, academic_year=None):
        captured.update(course_id=course_id, elective_ids=elective_ids, form=form, semester=semester)
        return {"id": 101, "class_name": "General 1 Physics-Chemistry S1", "stream": "A"}

    monkeypatch.setattr(app_module.academics, "resolve_or_create_class", fake_resolve)
    login_as(client, "admin")

    response = client.post("/api/classes/resolve", json={
        "course_id": 1, "form": 1, "semester": 1,
        "elective_subject_1": 10, "elective_subject_2": "11", "elective_subject_3": "",
    })

    assert response.status_code == 200
    assert response.get_json()["class"]["id"] == 101
    assert captured == {"course_id": 1, "elective_ids": [10, "11"], "form": 1, "semester": 1}


def test_resolve_rejects_missing_course(client):
    login_as(client, "admin")
    response = client.post("/api/classes/resolve", json={"elective_subject_ids": [10]})
    assert response.status_code == 400
    assert "course_id" in response.get_json()["error"]


@pytest.mark.parametrize("error, status", [
    (ValidationError("Invalid subject ID: 'x'"), 400),
    (NotFoundError("Course 9 not found."), 404),
    (DatabaseError("Failed to find or create class: timeout"), 500),
])
def test_domain_errors_map_to_status_codes(client, app_module, monkeypatch, error, status):
    def failing_resolve(*args, **kwargs):
        raise error

    monkeypatch.setattr(app_module.academics, "resolve_or_create_class", failing_resolve)
    login_as(client, "admin")

    response = client.post("/api/classes/resolve", json={"course_id": 9, "elective_subject_ids": ["x"]})

    assert response.status_code == status
    assert response.get_json() == {"success": False, "error": str(error)}


def test_promotion_dry_run_only_previews(client, app_module, monkeypatch):
    calls = []
    monkeypatch.setattr(app_module.promotion, "preview_promotion",
                        lambda db_client, target_year, **periods: calls.append(("preview", target_year, periods)) or [])
    monkeypatch.setattr(app_module.promotion, "promote_students",
                        lambda *args, **kwargs: calls.append(("promote",)))
    login_as(client, "admin")

    response = client.post("/api/promotions", json={"target_year": "2026/2027", "dry_run": True})

    assert response.status_code == 200
    assert response.get_json()["dry_run"] is True
    assert calls == [("preview", "2026/2027", {"from_form": 1, "from_semester": 2, "to_form": None, "to_semester": 1})]


def test_promotion_runs_with_requested_periods(client, app_module, monkeypatch):
    captured = {}

    def fake_promote(db_client, current_year, target_year, **periods):
        captured.update(periods, current_year=current_year, target_year=target_year)
        return {"success": True, "promoted_count": 3, "created_classes": [], "class_mapping": {}, "message": "ok"}

    monkeypatch.setattr(app_module.promotion, "promote_students", fake_promote)
    login_as(client, "admin")

    response = client.post("/api/promotions", json={
        "current_year": "2025/2026", "target_year": "2026/2027",
        "from_form": 2, "from_semester": 2, "to_form": 3, "to_semester": 1, "dry_run": False,
    })

    assert response.status_code == 200
    assert response.get_json()["promoted_count"] == 3
    assert captured == {
        "current_year": "2025/2026", "target_year": "2026/2027",
        "from_form": 2, "from_semester": 2, "to_form": 3, "to_semester": 1,
    }


def test_promotion_rejects_bad_semester(client):
    login_as(client, "admin")
    response = client.post("/api/promotions", json={"target_year": "2026/2027", "from_semester": 3})
    assert response.status_code == 400


def test_teacher_saves_result(client, app_module, monkeypatch):
    saved = {}
    monkeypatch.setattr(app_module.gradebook, "save_student_result",
                        lambda db_client, data: saved.update(data) or {"id": 1, "grade": "B2"})
    login_as(client, "teacher", teacher_id=2)

    response = client.post("/api/results", json={
        "student_id": 3, "subject_id": 10, "class_id": 7, "academic_year": "2026/2027",
        "term": 1, "class_score": 30, "exam_score": 45,
    })

    assert response.status_code == 200
    assert response.get_json() == {"id": 1, "grade": "B2"}
    assert saved["exam_score"] == 45


def test_result_term_out_of_range_is_rejected(client):
    login_as(client, "teacher")
    response = client.post("/api/results", json={
        "student_id": 3, "subject_id": 10, "class_id": 7, "academic_year": "2026/2027", "term": 5,
    })
    assert response.status_code == 400


def test_students_only_see_their_own_results(client):
    login_as(client, "student", student_id=3)
    assert client.get("/api/students/4/results").status_code == 403
    assert client.get("/api/students/3/results").status_code == 200


def test_login_sets_session_role(client, app_module, monkeypatch):
    user = {"id": 4, "user_id": "TEA2026001", "role": "teacher", "full_name": "Asante, Kwame",
            "must_change_password": True, "student_id": None, "teacher_id": 2}
    monkeypatch.setattr(app_module.roster, "authenticate_user",
                        lambda db_client, user_id, password: user if password == "ABCD2345" else None)

    assert client.post("/login", json={"user_id": "TEA2026001", "password": "nope"}).status_code == 401

    response = client.post("/login", json={"user_id": "TEA2026001", "password": "ABCD2345"})
    assert response.status_code == 200
    with client.session_transaction() as sess:
        assert sess["role"] == "teacher"
        assert sess["teacher_id"] == 2


def test_post_without_csrf_token_is_rejected(client, app_module):
    app_module.app.config["WTF_CSRF_ENABLED"] = True
    response = client.post("/login", json={"user_id": "admin", "password": "whatever123"})
    assert response.status_code == 400
    assert "token" in response.get_json()["error"]


def test_timetable_entry_form_requires_ids(client):
    login_as(client, "admin")
    response = client.post("/api/timetables/entries", json={"day": "Monday", "time_slot": "08:00-09:00"})
    assert response.status_code == 400


def test_subject_filter_returns_performance_history(client, app_module, monkeypatch):
    calls = []
    monkeypatch.setattr(app_module.gradebook, "get_student_performance_history",
                        lambda db_client, student_id, subject_id: calls.append((student_id, subject_id)) or [])
    login_as(client, "student", student_id=3)

    response = client.get("/api/students/3/results?subject_id=10")

    assert response.status_code == 200
    assert calls == [(3, "10")]


def test_teacher_assignment_is_owned_by_the_session_teacher(client, app_module, monkeypatch):
    created = {}
    monkeypatch.setattr(app_module.assignments, "create_assignment",
                        lambda db_client, data: created.update(data) or {"id": 1})
    login_as(client, "teacher", teacher_id=2)

    response = client.post("/api/assignments", json={
        "teacher_id": 99, "class_id": 7, "subject_id": 10, "title": "Lab report",
    })

    assert response.status_code == 201
    assert created["teacher_id"] == 2


def test_students_submit_as_themselves(client, app_module, monkeypatch):
    calls = []
    monkeypatch.setattr(app_module.assignments, "submit_assignment",
                        lambda db_client, assignment_id, student_id, file_name: calls.append(
                            (assignment_id, student_id, file_name)) or {"id": 4})
    login_as(client, "student", student_id=3)

    response = client.post("/api/assignments/7/submissions", json={"student_id": 8, "file_name": "essay.docx"})

    assert response.status_code == 201
    assert calls == [(7, 3, "essay.docx")]
    assert client.get("/api/assignments/7/submissions").status_code == 403


def test_zero_is_a_valid_submission_grade(client, app_module, monkeypatch):
    graded = []
    monkeypatch.setattr(app_module.assignments, "grade_assignment_submission",
                        lambda db_client, submission_id, score, remarks, teacher_id: graded.append(score) or {"id": 4})
    login_as(client, "teacher", teacher_id=2)

    assert client.patch("/api/submissions/4", json={"score": 0}).status_code == 200
    assert graded == [0.0]
    assert client.patch("/api/submissions/4", json={}).status_code == 400


def test_teachers_only_read_their_own_messages(client):
    login_as(client, "teacher", teacher_id=2)
    assert client.get("/api/teachers/3/messages").status_code == 403
    assert client.get("/api/teachers/2/messages").status_code == 200
