"""
School Portal - JSON API

Flask application exposing class management (including the elective-class
resolver), end-of-period promotion, the gradebook, coursework, the student
and teacher roster and the noticeboard. Every handler delegates to the domain modules
with the single database client built at startup.
"""

import functools
import logging
import os

from dotenv import load_dotenv
from flask import Flask, jsonify, request, session
from flask_migrate import Migrate
from flask_wtf.csrf import CSRFError, CSRFProtect, generate_csrf
from werkzeug.datastructures import MultiDict

import academics
import assignments
import gradebook
import noticeboard
import promotion
import roster
from db import DatabaseError, NotFoundError, ValidationError, create_client, init_db
from forms import (
    AnnouncementForm,
    AssignmentForm,
    ChangePasswordForm,
    ClassForm,
    CourseForm,
    LoginForm,
    PromotionForm,
    ResolveClassForm,
    ResultForm,
    ResultUpdateForm,
    StudentForm,
    SubjectForm,
    SubmissionGradeForm,
    TeacherForm,
    TeacherMessageForm,
    TimetableEntryForm,
)

load_dotenv()


def _env_flag(name, default=''):
    return os.environ.get(name, default).strip().lower() in ('1', 'true', 'yes')


app = Flask(__name__)
ALLOW_INSECURE_DEFAULTS = _env_flag('ALLOW_INSECURE_DEFAULTS')
secret_key = os.environ.get('SECRET_KEY')
if not secret_key:
    if ALLOW_INSECURE_DEFAULTS:
        secret_key = 'dev-secret-key-change-me'
    else:
        raise RuntimeError("SECRET_KEY is required in production. Set SECRET_KEY or enable ALLOW_INSECURE_DEFAULTS for local development.")
if not ALLOW_INSECURE_DEFAULTS and len(secret_key) < 32:
    raise RuntimeError("SECRET_KEY is too short. Use at least 32 characters in production.")
app.secret_key = secret_key
app.config['WTF_CSRF_TIME_LIMIT'] = None

csrf = CSRFProtect(app)
migrate = Migrate(app, directory='migrations')

# Set up logging
LOG_FILE = os.environ.get('LOG_FILE', 'app.log').strip() or 'app.log'
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').strip().upper()
logging.basicConfig(filename=LOG_FILE, level=getattr(logging, LOG_LEVEL, logging.INFO),
                    format='%(asctime)s - %(levelname)s - %(message)s')
if ALLOW_INSECURE_DEFAULTS:
    logging.warning("ALLOW_INSECURE_DEFAULTS is enabled. Development-only fallbacks may be active.")

db_client = create_client()

# Initialize database (can be disabled when schema is managed by migrations).
RUN_STARTUP_DDL = _env_flag('RUN_STARTUP_DDL', '1')
if RUN_STARTUP_DDL:
    init_db(db_client)
else:
    logging.warning("RUN_STARTUP_DDL is disabled. Ensure schema is already migrated before startup.")

ADMIN_USER_ID = os.environ.get('ADMIN_USER_ID', 'admin').strip()
ADMIN_PASSWORD = os.environ.get('ADMIN_PASSWORD', '')
if _env_flag('RUN_STARTUP_BOOTSTRAP', '1') and ADMIN_PASSWORD:
    roster.ensure_admin_account(db_client, ADMIN_USER_ID, ADMIN_PASSWORD)

ADMIN = 'admin'
TEACHER = 'teacher'
STUDENT = 'student'


# ==================== HELPERS ====================

def request_data():
    """Body of the request as a dict, from JSON or form fields."""
    if request.is_json:
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object.")
        return body
    data = request.form.to_dict()
    for key in request.form:
        values = request.form.getlist(key)
        if len(values) > 1:
            data[key] = values
    return data


def _formdata(data):
    formdata = MultiDict()
    for key, value in data.items():
        for item in value if isinstance(value, (list, tuple)) else [value]:
            if item is not None:
                formdata.add(key, str(item))
    return formdata


def validated(form_class, data):
    form = form_class(formdata=_formdata(data))
    if not form.validate():
        raise ValidationError(form.error_message())
    return form


def role_required(*roles):
    """Reject anonymous requests (401) and, when roles are given, other roles (403)."""
    def decorator(view):
        @functools.wraps(view)
        def wrapped(*args, **kwargs):
            if 'user_id' not in session:
                return jsonify(success=False, error='Authentication required.'), 401
            if roles and session.get('role') not in roles:
                return jsonify(success=False, error='You do not have permission for this action.'), 403
            return view(*args, **kwargs)
        return wrapped
    return decorator


def _page_filters(*names):
    return {name: request.args.get(name) for name in names if request.args.get(name) not in (None, '')}


# ==================== ERRORS ====================

@app.errorhandler(ValidationError)
def validation_error(error):
    return jsonify(success=False, error=str(error)), 400


@app.errorhandler(NotFoundError)
def not_found_error(error):
    return jsonify(success=False, error=str(error)), 404


@app.errorhandler(DatabaseError)
def database_error(error):
    logging.error("Database error on %s %s: %s", request.method, request.path, error)
    return jsonify(success=False, error=str(error)), 500


@app.errorhandler(CSRFError)
def csrf_error(error):
    """Handle CSRF token errors."""
    return jsonify(success=False, error='Form token expired/invalid. Fetch /api/csrf-token and retry.'), 400


# ==================== SESSION ====================

@app.route('/health')
def health():
    return jsonify(status='ok', database=db_client.backend)


@app.route('/api/csrf-token')
def csrf_token():
    return jsonify(csrf_token=generate_csrf())


@app.route('/login', methods=['POST'])
def login():
    form = validated(LoginForm, request_data())
    user = roster.authenticate_user(db_client, form.user_id.data, form.password.data)
    if not user:
        logging.warning("Failed login for %s", form.user_id.data)
        return jsonify(success=False, error='Invalid user ID or password.'), 401
    session.clear()
    session['user_id'] = user['user_id']
    session['role'] = user['role']
    session['user_pk'] = user['id']
    session['student_id'] = user['student_id']
    session['teacher_id'] = user['teacher_id']
    return jsonify(success=True, user=user)


@app.route('/logout', methods=['GET', 'POST'])
def logout():
    session.clear()
    return jsonify(success=True)


@app.route('/api/account/password', methods=['POST'])
@role_required()
def change_password():
    form = validated(ChangePasswordForm, request_data())
    return jsonify(roster.change_password(db_client, session['user_id'], form.new_password.data))


# ==================== COURSES & SUBJECTS ====================

@app.route('/api/courses', methods=['GET', 'POST'])
@role_required()
def courses():
    if request.method == 'GET':
        return jsonify(academics.get_courses(db_client))
    if session.get('role') != ADMIN:
        return jsonify(success=False, error='You do not have permission for this action.'), 403
    form = validated(CourseForm, request_data())
    return jsonify(academics.create_course(db_client, form.data)), 201


@app.route('/api/subjects', methods=['GET', 'POST'])
@role_required()
def subjects():
    if request.method == 'GET':
        return jsonify(academics.get_subjects(db_client, request.args.get('course_id')))
    if session.get('role') != ADMIN:
        return jsonify(success=False, error='You do not have permission for this action.'), 403
    form = validated(SubjectForm, request_data())
    return jsonify(academics.create_subject(db_client, form.data)), 201


@app.route('/api/curriculum/seed', methods=['POST'])
@role_required(ADMIN)
def seed_curriculum():
    return jsonify(academics.seed_curriculum(db_client))


# ==================== CLASSES ====================

@app.route('/api/classes', methods=['GET'])
@role_required()
def list_classes():
    return jsonify(academics.get_classes(
        db_client,
        course_id=request.args.get('course_id'),
        form=request.args.get('form'),
        semester=request.args.get('semester'),
    ))


@app.route('/api/classes', methods=['POST'])
@role_required(ADMIN)
def create_class():
    data = request_data()
    validated(ClassForm, data)
    return jsonify(academics.create_class(db_client, data)), 201


@app.route('/api/classes/resolve', methods=['POST'])
@role_required(ADMIN)
def resolve_class():
    """Class for a course/form/semester and an exact elective combination."""
    data = request_data()
    form = validated(ResolveClassForm, data)
    elective_ids = data.get('elective_subject_ids')
    if elective_ids is None:
        elective_ids = [
            data.get(f'elective_subject_{n}')
            for n in range(1, academics.MAX_ELECTIVES + 1)
            if data.get(f'elective_subject_{n}') not in (None, '')
        ]
    if not isinstance(elective_ids, (list, tuple)):
        elective_ids = [elective_ids]
    resolved = academics.resolve_or_create_class(
        db_client,
        form.course_id.data,
        elective_ids,
        form=form.form.data or 1,
        semester=form.semester.data or 1,
        academic_year=form.academic_year.data or None,
    )
    return jsonify(success=True, **{'class': resolved})


@app.route('/api/classes/<int:class_id>', methods=['GET'])
@role_required()
def get_class(class_id):
    return jsonify(academics.get_class_with_subjects(db_client, class_id))


@app.route('/api/classes/<int:class_id>', methods=['DELETE'])
@role_required(ADMIN)
def delete_class(class_id):
    return jsonify(academics.delete_class(db_client, class_id))


@app.route('/api/classes/delete-all', methods=['POST'])
@role_required(ADMIN)
def delete_all_classes():
    logging.warning("Delete-all-classes requested by %s", session.get('user_id'))
    return jsonify(academics.delete_all_classes(db_client))


@app.route('/api/classes/<int:class_id>/students')
@role_required(ADMIN, TEACHER)
def class_students(class_id):
    return jsonify(roster.get_class_students(db_client, class_id))


@app.route('/api/classes/<int:class_id>/results')
@role_required(ADMIN, TEACHER)
def class_results(class_id):
    args = request.args
    results = gradebook.get_class_results(
        db_client, class_id, args.get('subject_id'), args.get('academic_year'), args.get('term'),
    )
    return jsonify(results=results, class_average=gradebook.class_average(results))


# ==================== PROMOTION ====================

@app.route('/api/promotions', methods=['POST'])
@role_required(ADMIN)
def promote():
    form = validated(PromotionForm, request_data())
    periods = {
        'from_form': form.from_form.data or 1,
        'from_semester': form.from_semester.data or 2,
        'to_form': form.to_form.data,
        'to_semester': form.to_semester.data or 1,
    }
    if form.dry_run.data:
        plan = promotion.preview_promotion(db_client, form.target_year.data, **periods)
        return jsonify(success=True, dry_run=True, students=len(plan), plan=plan)
    logging.info("Promotion requested by %s: %s", session.get('user_id'), periods)
    result = promotion.promote_students(
        db_client, form.current_year.data, form.target_year.data, **periods,
    )
    return jsonify(result)


# ==================== STUDENTS ====================

@app.route('/api/students', methods=['GET'])
@role_required(ADMIN, TEACHER)
def list_students():
    filters = _page_filters('search', 'course_id', 'class_id', 'gender', 'page', 'limit')
    filters['include_inactive'] = request.args.get('include_inactive') in ('1', 'true')
    return jsonify(roster.get_students(db_client, filters))


@app.route('/api/students', methods=['POST'])
@role_required(ADMIN)
def create_student():
    data = request_data()
    validated(StudentForm, data)
    return jsonify(roster.create_student(db_client, data)), 201


@app.route('/api/students/bulk-deactivate', methods=['POST'])
@role_required(ADMIN)
def bulk_deactivate_students():
    return jsonify(roster.bulk_deactivate_students(db_client, request_data().get('student_ids')))


@app.route('/api/students/bulk-assign-class', methods=['POST'])
@role_required(ADMIN)
def bulk_assign_class():
    data = request_data()
    return jsonify(roster.bulk_assign_class(db_client, data.get('student_ids'), data.get('class_id')))


@app.route('/api/students/assign-house', methods=['POST'])
@role_required(ADMIN)
def assign_house():
    return jsonify(roster.assign_unassigned_to_house(db_client, request_data().get('house') or 'House 5'))


@app.route('/api/students/<int:student_id>', methods=['GET'])
@role_required()
def get_student(student_id):
    if session.get('role') == STUDENT and session.get('student_id') != student_id:
        return jsonify(success=False, error='You do not have permission for this action.'), 403
    return jsonify(roster.get_student(db_client, student_id))


@app.route('/api/students/<int:student_id>', methods=['PATCH'])
@role_required(ADMIN)
def update_student(student_id):
    return jsonify(roster.update_student(db_client, student_id, request_data()))


@app.route('/api/students/<int:student_id>', methods=['DELETE'])
@role_required(ADMIN)
def delete_student(student_id):
    return jsonify(roster.delete_student(db_client, student_id))


@app.route('/api/students/<int:student_id>/deactivate', methods=['POST'])
@role_required(ADMIN)
def deactivate_student(student_id):
    return jsonify(roster.deactivate_student(db_client, student_id))


@app.route('/api/students/<int:student_id>/reactivate', methods=['POST'])
@role_required(ADMIN)
def reactivate_student(student_id):
    return jsonify(roster.reactivate_student(db_client, student_id))


@app.route('/api/students/<int:student_id>/subjects')
@role_required()
def student_subjects(student_id):
    return jsonify(roster.get_student_subjects(db_client, student_id))


@app.route('/api/students/<int:student_id>/results')
@role_required()
def student_results(student_id):
    if session.get('role') == STUDENT and session.get('student_id') != student_id:
        return jsonify(success=False, error='You do not have permission for this action.'), 403
    if request.args.get('subject_id'):
        return jsonify(gradebook.get_student_performance_history(db_client, student_id, request.args.get('subject_id')))
    return jsonify(gradebook.get_student_results(
        db_client, student_id, request.args.get('academic_year'), request.args.get('term'),
    ))


@app.route('/api/students/<int:student_id>/behavior-records')
@role_required(ADMIN, TEACHER)
def student_behavior_records(student_id):
    return jsonify(noticeboard.get_student_behavior_records(db_client, student_id))


# ==================== TEACHERS ====================

@app.route('/api/teachers', methods=['GET'])
@role_required(ADMIN)
def list_teachers():
    filters = _page_filters('search', 'department', 'page', 'limit')
    filters['include_inactive'] = request.args.get('include_inactive') in ('1', 'true')
    return jsonify(roster.get_teachers(db_client, filters))


@app.route('/api/teachers', methods=['POST'])
@role_required(ADMIN)
def create_teacher():
    data = request_data()
    validated(TeacherForm, data)
    return jsonify(roster.create_teacher(db_client, data)), 201


@app.route('/api/teachers/<int:teacher_id>', methods=['GET', 'PATCH', 'DELETE'])
@role_required(ADMIN)
def teacher_detail(teacher_id):
    if request.method == 'PATCH':
        return jsonify(roster.update_teacher(db_client, teacher_id, request_data()))
    if request.method == 'DELETE':
        return jsonify(roster.delete_teacher(db_client, teacher_id))
    return jsonify(roster.get_teacher(db_client, teacher_id))


@app.route('/api/teachers/<int:teacher_id>/<action>', methods=['POST'])
@role_required(ADMIN)
def toggle_teacher(teacher_id, action):
    if action == 'deactivate':
        return jsonify(roster.deactivate_teacher(db_client, teacher_id))
    if action == 'reactivate':
        return jsonify(roster.reactivate_teacher(db_client, teacher_id))
    raise NotFoundError(f"Unknown teacher action '{action}'.")


@app.route('/api/teachers/<int:teacher_id>/subjects', methods=['GET', 'POST'])
@role_required(ADMIN, TEACHER)
def teacher_subjects(teacher_id):
    if request.method == 'GET':
        return jsonify(academics.get_teacher_subjects(db_client, teacher_id))
    if session.get('role') != ADMIN:
        return jsonify(success=False, error='You do not have permission for this action.'), 403
    data = request_data()
    return jsonify(academics.assign_subject_to_teacher(
        db_client, teacher_id, data.get('subject_id'), data.get('class_id'), data.get('academic_year'),
    )), 201


# ==================== RESULTS ====================

@app.route('/api/results', methods=['POST'])
@role_required(ADMIN, TEACHER)
def save_result():
    data = request_data()
    validated(ResultForm, data)
    return jsonify(gradebook.save_student_result(db_client, data))


@app.route('/api/results/class', methods=['POST'])
@role_required(ADMIN, TEACHER)
def save_class_results():
    """Save a whole gradebook sheet: one subject, one class, many students."""
    data = request_data()
    entries = data.get('entries')
    if not isinstance(entries, list) or not entries:
        raise ValidationError("entries must be a non-empty list.")
    saved = gradebook.save_class_results(
        db_client, data.get('class_id'), data.get('subject_id'), data.get('academic_year'), data.get('term'), entries,
    )
    return jsonify(success=True, saved_count=len(saved), class_average=gradebook.class_average(saved))


@app.route('/api/results/<int:result_id>', methods=['PATCH'])
@role_required(ADMIN, TEACHER)
def update_result(result_id):
    form = validated(ResultUpdateForm, request_data())
    return jsonify(gradebook.update_result_component(
        db_client, result_id, class_score=form.class_score.data, exam_score=form.exam_score.data,
    ))


@app.route('/api/analytics/top-students')
@role_required(ADMIN, TEACHER)
def top_students():
    args = request.args
    if args.get('by') == 'class':
        return jsonify(gradebook.get_top_students_by_class(db_client, args.get('academic_year'), args.get('term')))
    limit = args.get('limit') or 10
    if args.get('course_id'):
        return jsonify(gradebook.get_top_students_by_course(
            db_client, args['course_id'], limit, args.get('academic_year'), args.get('term'),
        ))
    return jsonify(gradebook.get_top_students(db_client, limit, args.get('academic_year'), args.get('term')))


# ==================== COURSEWORK ====================

@app.route('/api/assignment-types')
@role_required()
def assignment_types():
    return jsonify(assignments.get_assignment_types(db_client))


@app.route('/api/assignments', methods=['POST'])
@role_required(ADMIN, TEACHER)
def create_assignment():
    data = request_data()
    validated(AssignmentForm, data)
    if session.get('role') == TEACHER:
        data['teacher_id'] = session.get('teacher_id')
    return jsonify(assignments.create_assignment(db_client, data)), 201


@app.route('/api/assignments/<int:assignment_id>', methods=['DELETE'])
@role_required(ADMIN, TEACHER)
def delete_assignment(assignment_id):
    return jsonify(assignments.delete_assignment(db_client, assignment_id))


@app.route('/api/teachers/<int:teacher_id>/assignments')
@role_required(ADMIN, TEACHER)
def teacher_assignments(teacher_id):
    if session.get('role') == TEACHER and session.get('teacher_id') != teacher_id:
        return jsonify(success=False, error='You do not have permission for this action.'), 403
    return jsonify(assignments.get_assignments_by_teacher(db_client, teacher_id))


@app.route('/api/classes/<int:class_id>/assignments')
@role_required()
def class_assignments(class_id):
    return jsonify(assignments.get_assignments_by_class(db_client, class_id))


@app.route('/api/assignments/<int:assignment_id>/submissions', methods=['GET', 'POST'])
@role_required()
def assignment_submissions(assignment_id):
    if request.method == 'GET':
        if session.get('role') == STUDENT:
            return jsonify(success=False, error='You do not have permission for this action.'), 403
        return jsonify(assignments.get_assignment_submissions(db_client, assignment_id))
    data = request_data()
    student_id = session.get('student_id') if session.get('role') == STUDENT else data.get('student_id')
    submitted = assignments.submit_assignment(db_client, assignment_id, student_id, data.get('file_name'))
    return jsonify(submitted), 201


@app.route('/api/submissions/<int:submission_id>', methods=['PATCH'])
@role_required(ADMIN, TEACHER)
def grade_submission(submission_id):
    form = validated(SubmissionGradeForm, request_data())
    return jsonify(assignments.grade_assignment_submission(
        db_client, submission_id, form.score.data, form.remarks.data, session.get('teacher_id'),
    ))


@app.route('/api/teachers/<int:teacher_id>/messages', methods=['GET', 'POST'])
@role_required(ADMIN, TEACHER)
def teacher_messages(teacher_id):
    if session.get('role') == TEACHER and session.get('teacher_id') != teacher_id:
        return jsonify(success=False, error='You do not have permission for this action.'), 403
    if request.method == 'GET':
        return jsonify(assignments.get_teacher_messages(db_client, teacher_id))
    form = validated(TeacherMessageForm, request_data())
    return jsonify(assignments.create_teacher_message(db_client, dict(form.data, teacher_id=teacher_id))), 201


# ==================== NOTICEBOARD ====================

@app.route('/api/announcements', methods=['GET'])
@role_required()
def list_announcements():
    return jsonify(noticeboard.get_announcements(db_client, request.args.get('class_id')))


@app.route('/api/announcements', methods=['POST'])
@role_required(ADMIN, TEACHER)
def create_announcement():
    form = validated(AnnouncementForm, request_data())
    created = noticeboard.create_announcement(
        db_client, form.title.data, form.content.data, session.get('user_pk'), form.class_id.data,
    )
    return jsonify(created), 201


@app.route('/api/announcements/<int:announcement_id>', methods=['DELETE'])
@role_required(ADMIN, TEACHER)
def delete_announcement(announcement_id):
    return jsonify(noticeboard.delete_announcement(db_client, announcement_id))


@app.route('/api/timetables', methods=['GET', 'POST'])
@role_required()
def timetables():
    if request.method == 'GET':
        return jsonify(noticeboard.get_timetables(db_client, request.args.get('class_id')))
    if session.get('role') != ADMIN:
        return jsonify(success=False, error='You do not have permission for this action.'), 403
    data = request_data()
    created = noticeboard.upload_timetable(
        db_client, data.get('class_id'), data.get('file_name'), data.get('file_type'),
        data.get('academic_year'), session.get('user_pk'),
    )
    return jsonify(created), 201


@app.route('/api/timetables/<int:timetable_id>', methods=['DELETE'])
@role_required(ADMIN)
def delete_timetable(timetable_id):
    return jsonify(noticeboard.delete_timetable(db_client, timetable_id))


@app.route('/api/timetables/entries', methods=['GET'])
@role_required()
def list_timetable_entries():
    return jsonify(noticeboard.get_timetable_entries(
        db_client, _page_filters('class_id', 'teacher_id', 'academic_year', 'day'),
    ))


@app.route('/api/timetables/entries', methods=['POST'])
@role_required(ADMIN)
def create_timetable_entry():
    form = validated(TimetableEntryForm, request_data())
    created = noticeboard.create_timetable_entry(
        db_client, form.day.data, form.time_slot.data, form.class_id.data,
        form.subject_id.data, form.teacher_id.data, form.academic_year.data or None,
    )
    return jsonify(created), 201


@app.route('/api/timetables/entries', methods=['DELETE'])
@role_required(ADMIN)
def clear_timetable_entries():
    return jsonify(noticeboard.delete_timetable_entries(db_client, request.args.get('academic_year')))


@app.route('/api/behavior-records', methods=['GET', 'POST'])
@role_required(ADMIN, TEACHER)
def behavior_records():
    if request.method == 'GET':
        return jsonify(noticeboard.get_all_behavior_records(db_client))
    data = request_data()
    if session.get('teacher_id') and not data.get('recorded_by'):
        data['recorded_by'] = session['teacher_id']
    return jsonify(noticeboard.create_behavior_record(db_client, data)), 201


@app.route('/api/behavior-records/<int:record_id>', methods=['PATCH', 'DELETE'])
@role_required(ADMIN, TEACHER)
def behavior_record(record_id):
    if request.method == 'DELETE':
        return jsonify(noticeboard.delete_behavior_record(db_client, record_id))
    return jsonify(noticeboard.update_behavior_record(db_client, record_id, request_data()))


# ==================== MAIN ====================

if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    debug = _env_flag('FLASK_DEBUG', '0')
    app.run(host='0.0.0.0', port=port, debug=debug)
