"""
Courses, subjects and classes.

The elective-class resolver lives here: given a course, a form/semester and
a set of elective subject IDs it returns the class carrying exactly that
elective combination, creating it (with the next free stream letter) when
none exists. Matching is an exact-set comparison over the class's elective
associations; core associations never take part in it.
"""

import logging
import os
import re
from datetime import date

from db import (
    NotFoundError,
    ValidationError,
    database_operation,
    db_execute,
    fetch_one,
    fetch_rows,
)

logger = logging.getLogger(__name__)

DEFAULT_CLASS_CAPACITY = 40
MAX_ELECTIVES = 4

CORE_SUBJECTS = [
    ('English Language', 'ENG'),
    ('Core Mathematics', 'MATH_C'),
    ('Integrated Science', 'INT_SCI'),
    ('Social Studies', 'SOC_STD'),
]

# course code -> (course name, [(subject name, subject code), ...])
ELECTIVE_CATALOGUE = {
    'GA': ('General Art', [
        ('Literature in English', 'LIT_ENG'),
        ('History', 'HIST'),
        ('Geography', 'GEOG'),
        ('Government', 'GOV'),
        ('Economics', 'ECON_GA'),
        ('Christian Religious Studies (CRS)', 'CRS'),
        ('Elective Mathematics', 'MATH_E_GA'),
        ('Ghanaian Language (Akwapim Twi)', 'TWI'),
        ('French', 'FRENCH'),
    ]),
    'BUS': ('Business', [
        ('Financial Accounting', 'FIN_ACC'),
        ('Costing', 'COST'),
        ('Business Management', 'BUS_MGT'),
        ('Economics', 'ECON_BUS'),
        ('Elective Mathematics', 'MATH_E_BUS'),
    ]),
    'GS': ('General Science', [
        ('Physics', 'PHYS'),
        ('Chemistry', 'CHEM'),
        ('Biology', 'BIO'),
        ('Elective Mathematics', 'MATH_E_GS'),
        ('Information and Communication Technology (ICT)', 'ICT_GS'),
    ]),
    'VA': ('Visual Art', [
        ('General Knowledge in Art', 'GEN_ART'),
        ('Information and Communication Technology (ICT)', 'ICT_VA'),
        ('Graphic Design', 'GRAPH_DES'),
        ('Picture Making', 'PIC_MAK'),
        ('Sculpture', 'SCULP'),
    ]),
    'AGR': ('Agricultural Science', [
        ('General Agriculture', 'GEN_AGRIC'),
        ('Chemistry', 'CHEM_AG'),
        ('Animal Husbandry', 'ANIM_HUS'),
        ('Elective Mathematics', 'MATH_E_AG'),
    ]),
    'HE': ('Home Economics', [
        ('Management in Living', 'MGT_LIV'),
        ('Food and Nutrition', 'FOOD_NUT'),
        ('Clothing and Textiles', 'CLOTH_TEXT'),
        ('Biology', 'BIO_HE'),
        ('General Knowledge in Art', 'GEN_ART_HE'),
    ]),
}

_STREAM_RE = re.compile(r'^[A-Z]+$')


def current_academic_year(today=None):
    """Academic year string such as '2026/2027' (ACADEMIC_YEAR overrides)."""
    configured = (os.environ.get('ACADEMIC_YEAR') or '').strip()
    if configured:
        return configured
    year = (today or date.today()).year
    return f"{year}/{year + 1}"


def require_int(value, field):
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer.")
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer.")


def require_positive_int(value, field):
    number = require_int(value, field)
    if number < 1:
        raise ValidationError(f"{field} must be a positive integer.")
    return number


def require_semester(value, field='semester'):
    number = require_int(value, field)
    if number not in (1, 2):
        raise ValidationError(f"{field} must be 1 or 2.")
    return number


def parse_subject_ids(subject_ids):
    """Parse elective IDs into a set of ints; every ID must be an integer."""
    if not subject_ids:
        raise ValidationError("Course ID and elective subject IDs are required.")
    parsed = set()
    for value in subject_ids:
        if isinstance(value, bool):
            raise ValidationError(f"Invalid subject ID: {value!r}")
        try:
            parsed.add(int(str(value).strip()))
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid subject ID: {value!r}")
    return parsed


# ==================== STREAMS & NAMES ====================

def stream_to_number(stream):
    """'A' -> 1, 'Z' -> 26, 'AA' -> 27 (spreadsheet column order)."""
    number = 0
    for char in stream:
        number = number * 26 + (ord(char) - ord('A') + 1)
    return number


def number_to_stream(number):
    letters = []
    while number > 0:
        number, remainder = divmod(number - 1, 26)
        letters.append(chr(ord('A') + remainder))
    return ''.join(reversed(letters))


def next_stream(existing_streams):
    """Next stream after the greatest existing one; 'A' when there is none.

    Streams past 'Z' continue as 'AA', 'AB', ... so every class keeps a
    distinct letter code.
    """
    numbers = [
        stream_to_number(s.strip().upper())
        for s in existing_streams
        if s and _STREAM_RE.match(s.strip().upper())
    ]
    if not numbers:
        return 'A'
    return number_to_stream(max(numbers) + 1)


def course_short_name(course_name):
    words = (course_name or '').split()
    return words[0] if words else 'Course'


def elective_class_name(course_name, form, subject_names, semester):
    return f"{course_short_name(course_name)} {form} {'-'.join(subject_names)} S{semester}"


def match_elective_class(candidates, elective_ids):
    """Lowest-id class whose elective set equals ``elective_ids`` exactly."""
    wanted = set(elective_ids)
    matches = [row for row in candidates if set(row.get('elective_ids') or []) == wanted]
    if not matches:
        return None
    return min(matches, key=lambda row: row['id'])


# ==================== CURSOR HELPERS ====================

def lock_class_key_with_cursor(c, course_id, form, semester):
    """Serialise class creation for one (course, form, semester) until commit."""
    db_execute(c, 'SELECT pg_advisory_xact_lock(hashtext(?))', (f"classes:{course_id}:{form}:{semester}",))


def get_course_with_cursor(c, course_id):
    db_execute(c, 'SELECT id, name, code, duration FROM courses WHERE id = ?', (course_id,))
    return fetch_one(c)


def get_class_with_cursor(c, class_id):
    db_execute(c, 'SELECT * FROM classes WHERE id = ?', (class_id,))
    return fetch_one(c)


def get_elective_combinations_with_cursor(c, course_id, form, semester):
    """Every class of the period with the sorted IDs of its elective subjects."""
    db_execute(
        c,
        '''SELECT c.id, c.class_name, c.course_id, c.form, c.semester, c.stream,
                  c.academic_year, c.capacity,
                  COALESCE(
                      array_agg(cs.subject_id ORDER BY cs.subject_id)
                          FILTER (WHERE cs.subject_id IS NOT NULL),
                      '{}'::int[]
                  ) AS elective_ids
           FROM classes c
           LEFT JOIN class_subjects cs ON cs.class_id = c.id AND cs.is_elective = TRUE
           WHERE c.course_id = ? AND c.form = ? AND c.semester = ?
           GROUP BY c.id
           ORDER BY c.id''',
        (course_id, form, semester),
    )
    return fetch_rows(c)


def get_subjects_by_ids_with_cursor(c, subject_ids):
    db_execute(c, 'SELECT id, name, code FROM subjects WHERE id = ANY(?) ORDER BY id', (list(subject_ids),))
    return fetch_rows(c)


def get_streams_with_cursor(c, course_id, form, semester):
    db_execute(
        c,
        '''SELECT stream FROM classes
           WHERE course_id = ? AND form = ? AND semester = ? AND stream IS NOT NULL''',
        (course_id, form, semester),
    )
    return [row['stream'] for row in fetch_rows(c)]


def insert_class_with_cursor(c, class_name, course_id, form, semester, stream, academic_year,
                             capacity=DEFAULT_CLASS_CAPACITY):
    db_execute(
        c,
        '''INSERT INTO classes (class_name, course_id, form, semester, stream, academic_year, capacity)
           VALUES (?, ?, ?, ?, ?, ?, ?)
           RETURNING *''',
        (class_name, course_id, form, semester, stream, academic_year, capacity),
    )
    return fetch_one(c)


def link_class_subject_with_cursor(c, class_id, subject_id, is_elective):
    db_execute(
        c,
        '''INSERT INTO class_subjects (class_id, subject_id, is_elective)
           VALUES (?, ?, ?)
           ON CONFLICT (class_id, subject_id) DO NOTHING''',
        (class_id, subject_id, bool(is_elective)),
    )


# ==================== RESOLVER ====================

def resolve_or_create_class_with_cursor(c, course_id, elective_ids, form, semester, academic_year=None):
    """Resolver body; must run inside one transaction."""
    lock_class_key_with_cursor(c, course_id, form, semester)
    course = get_course_with_cursor(c, course_id)
    if not course:
        raise NotFoundError(f"Course {course_id} not found.")

    candidates = get_elective_combinations_with_cursor(c, course_id, form, semester)
    existing = match_elective_class(candidates, elective_ids)
    if existing:
        return existing

    ordered_ids = sorted(elective_ids)
    subjects = get_subjects_by_ids_with_cursor(c, ordered_ids)
    missing = sorted(set(ordered_ids) - {s['id'] for s in subjects})
    if missing:
        raise NotFoundError(f"Subjects not found: {', '.join(str(i) for i in missing)}")

    class_name = elective_class_name(course['name'], form, [s['name'] for s in subjects], semester)
    stream = next_stream(get_streams_with_cursor(c, course_id, form, semester))
    new_class = insert_class_with_cursor(
        c, class_name, course_id, form, semester, stream,
        academic_year or current_academic_year(),
    )
    for subject_id in ordered_ids:
        link_class_subject_with_cursor(c, new_class['id'], subject_id, True)
    logger.info("Created class %s (%s, stream %s) for electives %s", new_class['id'], class_name, stream, ordered_ids)
    new_class['elective_ids'] = ordered_ids
    return new_class


@database_operation('find or create class')
def resolve_or_create_class(client, course_id, elective_subject_ids, form=1, semester=1, academic_year=None):
    """Find the class with exactly these electives, or create it.

    Runs in a single transaction holding an advisory lock on the
    (course, form, semester) key, so two concurrent requests for the same new
    combination resolve to one class and a failure leaves no half-built class.
    """
    if not course_id:
        raise ValidationError("Course ID and elective subject IDs are required.")
    course_id = require_int(course_id, 'course_id')
    elective_ids = parse_subject_ids(elective_subject_ids)
    form = require_positive_int(form, 'form')
    semester = require_semester(semester)
    with client.transaction() as c:
        return resolve_or_create_class_with_cursor(c, course_id, elective_ids, form, semester, academic_year)


# ==================== COURSES & SUBJECTS ====================

def get_courses(client):
    return client.query('SELECT * FROM courses ORDER BY name')


def get_course(client, course_id):
    rows = client.query('SELECT * FROM courses WHERE id = ?', (require_int(course_id, 'course_id'),))
    if not rows:
        raise NotFoundError(f"Course {course_id} not found.")
    return rows[0]


@database_operation('create course')
def create_course(client, data):
    name = (data.get('name') or '').strip()
    code = (data.get('code') or '').strip().upper()
    if not name or not code:
        raise ValidationError("Course name and code are required.")
    duration = require_positive_int(data.get('duration') or 3, 'duration')
    rows = client.query(
        'INSERT INTO courses (name, code, duration) VALUES (?, ?, ?) RETURNING *',
        (name, code, duration),
    )
    return rows[0] if rows else None


def get_subjects(client, course_id=None):
    """Subjects of a course plus common ones (course_id NULL), core first."""
    if course_id:
        return client.query(
            '''SELECT * FROM subjects
               WHERE (course_id = ? OR course_id IS NULL) AND is_active = TRUE
               ORDER BY is_core DESC, name''',
            (require_int(course_id, 'course_id'),),
        )
    return client.query('SELECT * FROM subjects WHERE is_active = TRUE ORDER BY is_core DESC, name')


@database_operation('create subject')
def create_subject(client, data):
    name = (data.get('name') or '').strip()
    code = (data.get('code') or '').strip().upper()
    if not name or not code:
        raise ValidationError("Subject name and code are required.")
    course_id = data.get('course_id')
    course_id = require_int(course_id, 'course_id') if course_id not in (None, '') else None
    rows = client.query(
        'INSERT INTO subjects (name, code, course_id, is_core) VALUES (?, ?, ?, ?) RETURNING *',
        (name, code, course_id, bool(data.get('is_core'))),
    )
    return rows[0] if rows else None


@database_operation('seed curriculum')
def seed_curriculum(client):
    """Insert the standard courses, common core subjects and electives.

    Existing rows are updated in place by code. Electives of a catalogue
    course that are no longer listed are deactivated rather than deleted so
    results recorded against them survive.
    """
    elective_count = 0
    with client.transaction() as c:
        for name, code in CORE_SUBJECTS:
            db_execute(
                c,
                '''INSERT INTO subjects (name, code, course_id, is_core)
                   VALUES (?, ?, NULL, TRUE)
                   ON CONFLICT (code) DO UPDATE SET name = excluded.name, is_core = TRUE, is_active = TRUE''',
                (name, code),
            )
        for course_code, (course_name, electives) in ELECTIVE_CATALOGUE.items():
            db_execute(
                c,
                '''INSERT INTO courses (name, code, duration)
                   VALUES (?, ?, 3)
                   ON CONFLICT (code) DO UPDATE SET name = excluded.name
                   RETURNING id''',
                (course_name, course_code),
            )
            course_id = fetch_one(c)['id']
            for subject_name, subject_code in electives:
                db_execute(
                    c,
                    '''INSERT INTO subjects (name, code, course_id, is_core)
                       VALUES (?, ?, ?, FALSE)
                       ON CONFLICT (code) DO UPDATE SET
                         name = excluded.name,
                         course_id = excluded.course_id,
                         is_core = FALSE,
                         is_active = TRUE''',
                    (subject_name, subject_code, course_id),
                )
                elective_count += 1
            db_execute(
                c,
                '''UPDATE subjects SET is_active = FALSE
                   WHERE course_id = ? AND is_core = FALSE AND NOT (code = ANY(?))''',
                (course_id, [code for _name, code in electives]),
            )
    logger.info("Curriculum seeded: %d courses, %d electives", len(ELECTIVE_CATALOGUE), elective_count)
    return {
        'courses': len(ELECTIVE_CATALOGUE),
        'core_subjects': len(CORE_SUBJECTS),
        'elective_subjects': elective_count,
    }


# ==================== CLASSES ====================

def get_classes(client, course_id=None, form=None, semester=None):
    where = ['c.is_active = TRUE']
    params = []
    if course_id:
        where.append('c.course_id = ?')
        params.append(require_int(course_id, 'course_id'))
    if form:
        where.append('c.form = ?')
        params.append(require_int(form, 'form'))
    if semester:
        where.append('c.semester = ?')
        params.append(require_int(semester, 'semester'))
    return client.query(
        f'''SELECT c.*, co.name AS course_name,
                   (SELECT COUNT(*) FROM students s
                    WHERE s.current_class_id = c.id AND s.is_active = TRUE) AS student_count
            FROM classes c
            LEFT JOIN courses co ON co.id = c.course_id
            WHERE {' AND '.join(where)}
            ORDER BY c.form, c.semester, c.stream''',
        tuple(params),
    )


def get_class_with_subjects(client, class_id):
    rows = client.query(
        '''SELECT c.*,
                  COALESCE(
                    json_agg(
                      json_build_object(
                        'id', s.id,
                        'name', s.name,
                        'code', s.code,
                        'is_core', s.is_core,
                        'is_elective', cs.is_elective
                      ) ORDER BY s.is_core DESC, s.name
                    ) FILTER (WHERE s.id IS NOT NULL),
                    '[]'
                  ) AS subjects
           FROM classes c
           LEFT JOIN class_subjects cs ON c.id = cs.class_id
           LEFT JOIN subjects s ON cs.subject_id = s.id
           WHERE c.id = ?
           GROUP BY c.id''',
        (require_int(class_id, 'class_id'),),
    )
    if not rows:
        raise NotFoundError(f"Class {class_id} not found.")
    return rows[0]


def elective_ids_from_form(data):
    """Elective IDs from either 'elective_subject_ids' or elective_subject_1..4."""
    raw = data.get('elective_subject_ids')
    if raw is None:
        raw = [data.get(f'elective_subject_{n}') for n in range(1, MAX_ELECTIVES + 1)]
    ids = []
    for value in raw:
        if value in (None, ''):
            continue
        try:
            ids.append(int(str(value).strip()))
        except (TypeError, ValueError):
            logger.warning("Invalid subject ID skipped: %r", value)
    return ids


@database_operation('create class')
def create_class(client, data):
    """Manually create a class, optionally with its elective subjects."""
    class_name = (data.get('class_name') or '').strip()
    if not class_name or not data.get('course_id') or not data.get('form'):
        raise ValidationError("Class name, course ID, and form are required.")
    course_id = require_int(data['course_id'], 'course_id')
    form = require_positive_int(data['form'], 'form')
    semester = require_semester(data.get('semester') or 1)
    capacity = require_positive_int(data.get('capacity') or DEFAULT_CLASS_CAPACITY, 'capacity')
    stream = (data.get('stream') or '').strip().upper() or None
    academic_year = (data.get('academic_year') or '').strip() or current_academic_year()

    with client.transaction() as c:
        created = insert_class_with_cursor(c, class_name, course_id, form, semester, stream, academic_year, capacity)
        for subject_id in elective_ids_from_form(data):
            link_class_subject_with_cursor(c, created['id'], subject_id, True)
    logger.info("Class created: %s (%s)", created['id'], class_name)
    return created


@database_operation('delete class')
def delete_class(client, class_id):
    class_id = require_int(class_id, 'class_id')
    with client.transaction() as c:
        db_execute(c, 'UPDATE students SET current_class_id = NULL WHERE current_class_id = ?', (class_id,))
        db_execute(c, 'DELETE FROM teacher_subjects WHERE class_id = ?', (class_id,))
        db_execute(c, 'DELETE FROM classes WHERE id = ? RETURNING id', (class_id,))
        if not fetch_rows(c):
            raise NotFoundError(f"Class {class_id} not found.")
    logger.info("Class %s deleted", class_id)
    return {'success': True, 'message': 'Class deleted successfully'}


@database_operation('delete classes')
def delete_all_classes(client):
    """Maintenance action: unassign every student, drop teacher assignments and every class."""
    with client.transaction() as c:
        db_execute(c, 'UPDATE students SET current_class_id = NULL WHERE current_class_id IS NOT NULL')
        db_execute(c, 'DELETE FROM teacher_subjects')
        db_execute(c, 'DELETE FROM classes RETURNING id')
        deleted = len(fetch_rows(c))
    logger.warning("All classes deleted (%d rows)", deleted)
    return {
        'success': True,
        'deleted_count': deleted,
        'message': f"Successfully deleted {deleted} classes",
    }


# ==================== TEACHER ASSIGNMENTS ====================

@database_operation('assign subject to teacher')
def assign_subject_to_teacher(client, teacher_id, subject_id, class_id, academic_year=None):
    rows = client.query(
        '''INSERT INTO teacher_subjects (teacher_id, subject_id, class_id, academic_year)
           VALUES (?, ?, ?, ?)
           ON CONFLICT (teacher_id, subject_id, class_id, academic_year)
           DO UPDATE SET is_active = TRUE
           RETURNING *''',
        (
            require_int(teacher_id, 'teacher_id'),
            require_int(subject_id, 'subject_id'),
            require_int(class_id, 'class_id'),
            academic_year or current_academic_year(),
        ),
    )
    return rows[0] if rows else None


def get_teacher_subjects(client, teacher_id):
    return client.query(
        '''SELECT ts.*, s.name AS subject_name, c.class_name, c.form, c.stream
           FROM teacher_subjects ts
           JOIN subjects s ON ts.subject_id = s.id
           JOIN classes c ON ts.class_id = c.id
           WHERE ts.teacher_id = ? AND ts.is_active = TRUE
           ORDER BY c.form, c.stream, s.name''',
        (require_int(teacher_id, 'teacher_id'),),
    )
