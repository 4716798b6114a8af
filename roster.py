"""Student and teacher registration, accounts and bulk roster operations."""

import logging
import re
import secrets
from datetime import date

from werkzeug.security import check_password_hash, generate_password_hash

from academics import current_academic_year, elective_ids_from_form, require_int, require_positive_int
from db import NotFoundError, ValidationError, database_operation, db_execute, fetch_one, fetch_rows

logger = logging.getLogger(__name__)

STUDENT_CODE_PREFIX = 'STU'
ADMISSION_PREFIX = 'ASA'
TEACHER_CODE_PREFIX = 'TEA'
MIN_PASSWORD_LENGTH = 8
MIN_ADMIN_PASSWORD_LENGTH = 12
DEFAULT_PAGE_SIZE = 10

STUDENT_FIELDS = (
    'course_id', 'current_class_id', 'surname', 'other_names', 'date_of_birth', 'gender',
    'nationality', 'hometown', 'guardian_name', 'guardian_phone', 'guardian_email',
    'guardian_address', 'previous_school', 'enrollment_date', 'residential_status',
    'house_preference',
)
TEACHER_FIELDS = ('staff_id', 'surname', 'other_names', 'gender', 'email', 'phone', 'department')


def generate_temp_password(length=MIN_PASSWORD_LENGTH):
    """Generate a temporary password."""
    alphabet = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
    return ''.join(secrets.choice(alphabet) for _ in range(max(MIN_PASSWORD_LENGTH, length)))


def normalize_person_name(value):
    """Normalize person names with leading-cap style."""
    text = ' '.join((value or '').strip().split())
    if not text:
        return ''
    out = []
    for word in text.split(' '):
        if word.isupper() and len(word) <= 3:
            out.append(word)
            continue
        pieces = []
        for piece in word.split('-'):
            if not piece:
                continue
            pieces.append(piece[:1].upper() + piece[1:].lower())
        out.append('-'.join(pieces))
    return ' '.join(out)


def is_valid_email(value):
    email = (value or '').strip()
    return bool(re.fullmatch(r'^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$', email))


def next_sequence_code(prefix, year, existing_codes):
    """First free code of the form PREFIX + YEAR + NNN, e.g. STU2026001."""
    stem = f"{prefix}{year}"
    used = set()
    for code in existing_codes:
        tail = (code or '')[len(stem):]
        if (code or '').startswith(stem) and tail.isdigit():
            used.add(int(tail))
    number = 1
    while number in used:
        number += 1
    return f"{stem}{number:03d}"


def _clean_profile(data, fields):
    profile = {}
    for field in fields:
        value = data.get(field)
        if field == 'course_id' and value in (None, ''):
            value = data.get('programme_id')
        if isinstance(value, str):
            value = value.strip() or None
        if field in ('surname', 'other_names') and value:
            value = normalize_person_name(value)
        if field in ('course_id', 'current_class_id') and value is not None:
            value = require_int(value, field)
        if field in ('guardian_email', 'email') and value and not is_valid_email(value):
            raise ValidationError(f"Invalid email address: {value}")
        profile[field] = value
    return profile


_CODE_TABLES = {
    'user_id': 'users',
    'admission_number': 'students',
}


def _reserve_code_with_cursor(c, prefix, column):
    year = date.today().year
    db_execute(c, 'SELECT pg_advisory_xact_lock(hashtext(?))', (f"codes:{prefix}",))
    db_execute(c, f'SELECT {column} AS code FROM {_CODE_TABLES[column]} WHERE {column} LIKE ?', (f"{prefix}{year}%",))
    return next_sequence_code(prefix, year, [row['code'] for row in fetch_rows(c)])


def _create_user_with_cursor(c, user_code, user_type):
    temp_password = generate_temp_password()
    db_execute(
        c,
        '''INSERT INTO users (user_id, user_type, password_hash, must_change_password)
           VALUES (?, ?, ?, TRUE)
           RETURNING id''',
        (user_code, user_type, generate_password_hash(temp_password)),
    )
    return fetch_one(c)['id'], temp_password


def enrol_student_subjects_with_cursor(c, student_pk, course_id, elective_ids, academic_year):
    """Enrol a student in the course's core subjects, the common core and the electives."""
    db_execute(
        c,
        '''SELECT id FROM subjects
           WHERE (course_id = ? OR course_id IS NULL) AND is_core = TRUE AND is_active = TRUE''',
        (course_id,),
    )
    subject_ids = [row['id'] for row in fetch_rows(c)]
    for subject_id in elective_ids:
        if subject_id not in subject_ids:
            subject_ids.append(subject_id)
    for subject_id in subject_ids:
        db_execute(
            c,
            '''INSERT INTO student_subjects (student_id, subject_id, academic_year, is_active)
               VALUES (?, ?, ?, TRUE)
               ON CONFLICT (student_id, subject_id, academic_year) DO UPDATE SET is_active = TRUE''',
            (student_pk, subject_id, academic_year),
        )
    return subject_ids


# ==================== STUDENTS ====================

@database_operation('create student')
def create_student(client, data):
    """Register a student with a login account and subject enrolment.

    Returns the student row plus the one-time temporary ``password``.
    """
    profile = _clean_profile(data, STUDENT_FIELDS)
    if not profile['surname'] or not profile['other_names'] or not profile['course_id']:
        raise ValidationError("Surname, other names and course are required.")
    profile['residential_status'] = profile['residential_status'] or 'Day Student'
    academic_year = (data.get('academic_year') or '').strip() or current_academic_year()

    with client.transaction() as c:
        student_code = _reserve_code_with_cursor(c, STUDENT_CODE_PREFIX, 'user_id')
        admission_number = (data.get('admission_number') or '').strip()
        if not admission_number:
            admission_number = _reserve_code_with_cursor(c, ADMISSION_PREFIX, 'admission_number')
        user_pk, temp_password = _create_user_with_cursor(c, student_code, 'student')

        columns = ['user_id', 'student_id', 'admission_number', *STUDENT_FIELDS, 'is_active']
        values = [user_pk, student_code, admission_number, *(profile[f] for f in STUDENT_FIELDS), True]
        db_execute(
            c,
            f'''INSERT INTO students ({', '.join(columns)})
                VALUES ({', '.join('?' for _ in columns)})
                RETURNING *''',
            tuple(values),
        )
        student = fetch_one(c)
        subjects = enrol_student_subjects_with_cursor(
            c, student['id'], profile['course_id'], elective_ids_from_form(data), academic_year,
        )
    logger.info("Student registered: %s (%d subjects)", student_code, len(subjects))
    return dict(student, student_id=student_code, password=temp_password, subject_ids=subjects)


def get_students(client, filters=None):
    filters = filters or {}
    where = ['1=1']
    params = []
    if not filters.get('include_inactive'):
        where.append('s.is_active = TRUE')
    search = (filters.get('search') or '').strip()
    if search:
        where.append('(s.surname ILIKE ? OR s.other_names ILIKE ? OR s.student_id ILIKE ?)')
        params.extend([f"%{search}%"] * 3)
    if filters.get('course_id'):
        where.append('s.course_id = ?')
        params.append(require_int(filters['course_id'], 'course_id'))
    if filters.get('class_id'):
        where.append('s.current_class_id = ?')
        params.append(require_int(filters['class_id'], 'class_id'))
    if filters.get('gender'):
        where.append('s.gender = ?')
        params.append(filters['gender'])
    if filters.get('unassigned_house'):
        where.append("(s.house_preference IS NULL OR s.house_preference = '' OR s.house_preference = 'Not Assigned')")
    page = require_positive_int(filters.get('page') or 1, 'page')
    limit = require_positive_int(filters.get('limit') or DEFAULT_PAGE_SIZE, 'limit')
    return client.query(
        f'''SELECT s.*, c.name AS course_name, cl.class_name, u.user_id AS login_id
            FROM students s
            LEFT JOIN courses c ON s.course_id = c.id
            LEFT JOIN classes cl ON s.current_class_id = cl.id
            LEFT JOIN users u ON s.user_id = u.id
            WHERE {' AND '.join(where)}
            ORDER BY s.created_at DESC
            LIMIT ? OFFSET ?''',
        (*params, limit, (page - 1) * limit),
    )


def get_student(client, student_id):
    rows = client.query(
        '''SELECT s.*, c.name AS course_name, cl.class_name, u.user_id AS login_id
           FROM students s
           LEFT JOIN courses c ON s.course_id = c.id
           LEFT JOIN classes cl ON s.current_class_id = cl.id
           LEFT JOIN users u ON s.user_id = u.id
           WHERE s.id = ?''',
        (require_int(student_id, 'student_id'),),
    )
    if not rows:
        raise NotFoundError("Student not found")
    return rows[0]


def get_class_students(client, class_id):
    return client.query(
        '''SELECT s.*, c.class_name
           FROM students s
           JOIN classes c ON s.current_class_id = c.id
           WHERE s.current_class_id = ? AND s.is_active = TRUE
           ORDER BY s.surname, s.other_names''',
        (require_int(class_id, 'class_id'),),
    )


def get_student_subjects(client, student_id):
    return client.query(
        '''SELECT ss.*, s.name AS subject_name, s.code AS subject_code, s.is_core
           FROM student_subjects ss
           JOIN subjects s ON ss.subject_id = s.id
           WHERE ss.student_id = ? AND ss.is_active = TRUE
           ORDER BY s.is_core DESC, s.name''',
        (require_int(student_id, 'student_id'),),
    )


def _update_profile(client, table, record_id, data, fields, label):
    provided = {k: v for k, v in _clean_profile(data, fields).items()
                if k in data or (k == 'course_id' and 'programme_id' in data)}
    if not provided:
        raise ValidationError(f"No {label} fields to update.")
    assignments = ', '.join(f'{column} = COALESCE(?, {column})' for column in provided)
    rows = client.query(
        f'''UPDATE {table}
            SET {assignments}, updated_at = CURRENT_TIMESTAMP
            WHERE id = ?
            RETURNING *''',
        (*provided.values(), require_int(record_id, f'{label}_id')),
    )
    if not rows:
        raise NotFoundError(f"{label.capitalize()} not found")
    return rows[0]


@database_operation('update student')
def update_student(client, student_id, data):
    return _update_profile(client, 'students', student_id, data, STUDENT_FIELDS, 'student')


def _set_active(client, table, record_id, active, label):
    record_id = require_int(record_id, f'{label}_id')
    with client.transaction() as c:
        db_execute(
            c,
            f'''UPDATE {table}
                SET is_active = ?, updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
                RETURNING user_id''',
            (active, record_id),
        )
        row = fetch_one(c)
        if not row:
            raise NotFoundError(f"{label.capitalize()} not found")
        db_execute(
            c,
            'UPDATE users SET is_active = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?',
            (active, row['user_id']),
        )
    state = 'reactivated' if active else 'deactivated'
    logger.info("%s %s %s", label.capitalize(), record_id, state)
    return {'success': True, 'message': f"{label.capitalize()} {state} successfully"}


@database_operation('deactivate student')
def deactivate_student(client, student_id):
    return _set_active(client, 'students', student_id, False, 'student')


@database_operation('reactivate student')
def reactivate_student(client, student_id):
    return _set_active(client, 'students', student_id, True, 'student')


def _delete_person(client, table, record_id, label):
    record_id = require_int(record_id, f'{label}_id')
    with client.transaction() as c:
        db_execute(c, f'DELETE FROM {table} WHERE id = ? RETURNING user_id', (record_id,))
        row = fetch_one(c)
        if not row:
            raise NotFoundError(f"{label.capitalize()} not found")
        db_execute(c, 'DELETE FROM users WHERE id = ?', (row['user_id'],))
    logger.info("%s %s deleted", label.capitalize(), record_id)
    return {'success': True, 'message': f"{label.capitalize()} deleted successfully"}


@database_operation('delete student')
def delete_student(client, student_id):
    return _delete_person(client, 'students', student_id, 'student')


# ==================== TEACHERS ====================

@database_operation('create teacher')
def create_teacher(client, data):
    profile = _clean_profile(data, TEACHER_FIELDS)
    if not profile['surname'] or not profile['other_names']:
        raise ValidationError("Surname and other names are required.")
    with client.transaction() as c:
        teacher_code = _reserve_code_with_cursor(c, TEACHER_CODE_PREFIX, 'user_id')
        user_pk, temp_password = _create_user_with_cursor(c, teacher_code, 'teacher')
        columns = ['user_id', 'teacher_id', *TEACHER_FIELDS]
        db_execute(
            c,
            f'''INSERT INTO teachers ({', '.join(columns)})
                VALUES ({', '.join('?' for _ in columns)})
                RETURNING *''',
            (user_pk, teacher_code, *(profile[f] for f in TEACHER_FIELDS)),
        )
        teacher = fetch_one(c)
    logger.info("Teacher registered: %s", teacher_code)
    return dict(teacher, teacher_id=teacher_code, password=temp_password)


def get_teachers(client, filters=None):
    filters = filters or {}
    where = ['1=1']
    params = []
    if not filters.get('include_inactive'):
        where.append('t.is_active = TRUE')
    search = (filters.get('search') or '').strip()
    if search:
        where.append('''(t.surname ILIKE ? OR t.other_names ILIKE ? OR t.staff_id ILIKE ?
                         OR t.department ILIKE ? OR t.teacher_id ILIKE ?)''')
        params.extend([f"%{search}%"] * 5)
    if filters.get('department'):
        where.append('t.department = ?')
        params.append(filters['department'])
    page = require_positive_int(filters.get('page') or 1, 'page')
    limit = require_positive_int(filters.get('limit') or DEFAULT_PAGE_SIZE, 'limit')
    return client.query(
        f'''SELECT t.*, u.user_id AS login_id
            FROM teachers t
            LEFT JOIN users u ON t.user_id = u.id
            WHERE {' AND '.join(where)}
            ORDER BY t.created_at DESC
            LIMIT ? OFFSET ?''',
        (*params, limit, (page - 1) * limit),
    )


def get_teacher(client, teacher_id):
    rows = client.query(
        '''SELECT t.*, u.user_id AS login_id
           FROM teachers t
           LEFT JOIN users u ON t.user_id = u.id
           WHERE t.id = ?''',
        (require_int(teacher_id, 'teacher_id'),),
    )
    if not rows:
        raise NotFoundError("Teacher not found")
    return rows[0]


@database_operation('update teacher')
def update_teacher(client, teacher_id, data):
    return _update_profile(client, 'teachers', teacher_id, data, TEACHER_FIELDS, 'teacher')


@database_operation('deactivate teacher')
def deactivate_teacher(client, teacher_id):
    return _set_active(client, 'teachers', teacher_id, False, 'teacher')


@database_operation('reactivate teacher')
def reactivate_teacher(client, teacher_id):
    return _set_active(client, 'teachers', teacher_id, True, 'teacher')


@database_operation('delete teacher')
def delete_teacher(client, teacher_id):
    return _delete_person(client, 'teachers', teacher_id, 'teacher')


# ==================== ACCOUNTS ====================

def authenticate_user(client, user_id, password):
    """Return the account summary when the password matches, else None."""
    user_id = (user_id or '').strip()
    if not user_id or not password:
        return None
    rows = client.query(
        '''SELECT u.id, u.user_id, u.user_type, u.password_hash, u.must_change_password,
                  s.id AS student_pk, s.surname AS student_surname, s.other_names AS student_other_names,
                  t.id AS teacher_pk, t.surname AS teacher_surname, t.other_names AS teacher_other_names
           FROM users u
           LEFT JOIN students s ON u.id = s.user_id
           LEFT JOIN teachers t ON u.id = t.user_id
           WHERE u.user_id = ? AND u.is_active = TRUE''',
        (user_id,),
    )
    if not rows:
        return None
    user = rows[0]
    if not check_password_hash(user['password_hash'], password):
        return None
    client.query('UPDATE users SET last_login = CURRENT_TIMESTAMP WHERE id = ?', (user['id'],))
    if user['user_type'] == 'student':
        full_name = f"{user['student_surname']}, {user['student_other_names']}"
    elif user['user_type'] == 'teacher':
        full_name = f"{user['teacher_surname']}, {user['teacher_other_names']}"
    else:
        full_name = 'Administrator'
    return {
        'id': user['id'],
        'user_id': user['user_id'],
        'role': user['user_type'],
        'full_name': full_name,
        'must_change_password': bool(user['must_change_password']),
        'student_id': user['student_pk'],
        'teacher_id': user['teacher_pk'],
    }


@database_operation('change password')
def change_password(client, user_id, new_password):
    if len(new_password or '') < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    rows = client.query(
        '''UPDATE users
           SET password_hash = ?, must_change_password = FALSE, updated_at = CURRENT_TIMESTAMP
           WHERE user_id = ?
           RETURNING id''',
        (generate_password_hash(new_password), (user_id or '').strip()),
    )
    if not rows:
        raise NotFoundError(f"User {user_id} not found.")
    return {'success': True}


# ==================== BULK OPERATIONS ====================

def _id_list(ids, field='student_ids'):
    parsed = sorted({require_int(value, field) for value in (ids or [])})
    if not parsed:
        raise ValidationError(f"{field} must list at least one ID.")
    return parsed


@database_operation('deactivate students')
def bulk_deactivate_students(client, student_ids):
    ids = _id_list(student_ids)
    with client.transaction() as c:
        db_execute(
            c,
            '''UPDATE students SET is_active = FALSE, updated_at = CURRENT_TIMESTAMP
               WHERE id = ANY(?) AND is_active = TRUE
               RETURNING user_id''',
            (ids,),
        )
        user_ids = [row['user_id'] for row in fetch_rows(c)]
        if user_ids:
            db_execute(
                c,
                'UPDATE users SET is_active = FALSE, updated_at = CURRENT_TIMESTAMP WHERE id = ANY(?)',
                (user_ids,),
            )
    logger.info("Bulk deactivated %d of %d students", len(user_ids), len(ids))
    return {'success': True, 'updated_count': len(user_ids)}


@database_operation('assign students to class')
def bulk_assign_class(client, student_ids, class_id):
    ids = _id_list(student_ids)
    class_id = require_int(class_id, 'class_id')
    with client.transaction() as c:
        db_execute(c, 'SELECT id FROM classes WHERE id = ?', (class_id,))
        if not fetch_one(c):
            raise NotFoundError(f"Class {class_id} not found.")
        db_execute(
            c,
            '''UPDATE students SET current_class_id = ?, updated_at = CURRENT_TIMESTAMP
               WHERE id = ANY(?)
               RETURNING id''',
            (class_id, ids),
        )
        updated = len(fetch_rows(c))
    logger.info("Assigned %d students to class %s", updated, class_id)
    return {'success': True, 'updated_count': updated}


@database_operation('assign students to house')
def assign_unassigned_to_house(client, house='House 5'):
    house = (house or '').strip()
    if not house:
        raise ValidationError("House name is required.")
    rows = client.query(
        '''UPDATE students
           SET house_preference = ?, updated_at = CURRENT_TIMESTAMP
           WHERE house_preference IS NULL OR house_preference = '' OR house_preference = 'Not Assigned'
           RETURNING id''',
        (house,),
    )
    return {
        'success': True,
        'updated_count': len(rows),
        'message': f"Successfully updated {len(rows)} students to {house}",
    }


@database_operation('create admin account')
def ensure_admin_account(client, user_id, password):
    """Ensure the administrator login exists; never reset its password here."""
    user_id = (user_id or '').strip()
    if not user_id:
        raise ValidationError("Admin user ID is required.")
    with client.transaction() as c:
        db_execute(c, 'SELECT user_id, user_type FROM users WHERE user_id = ?', (user_id,))
        row = fetch_one(c)
        if row:
            if row['user_type'] != 'admin':
                logger.warning("Account '%s' exists with role '%s'; skipping automatic role escalation.",
                               user_id, row['user_type'])
            return False
        if len(password or '') < MIN_ADMIN_PASSWORD_LENGTH:
            raise ValidationError(f"Admin password must be at least {MIN_ADMIN_PASSWORD_LENGTH} characters.")
        db_execute(
            c,
            '''INSERT INTO users (user_id, user_type, password_hash, must_change_password)
               VALUES (?, 'admin', ?, FALSE)''',
            (user_id, generate_password_hash(password)),
        )
    logger.info("Admin user created: %s", user_id)
    return True
