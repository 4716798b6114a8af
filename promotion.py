"""
End-of-period promotion of students to the next form/semester.

Every active student whose current class sits in (from_form, from_semester)
is moved to the matching class of (to_form, to_semester) for the target
academic year. The target class name is re-templated word by word from the
source class's form, stream and semester; two source classes never share a
target. The target class is created (with the source's subject
associations) only when it does not exist yet.

The whole batch runs in one transaction: either every selected student is
promoted or, on any failure, none is. Student rows and result history are
never deleted; only ``students.current_class_id`` changes.
"""

import logging

import academics
from academics import current_academic_year, require_positive_int, require_semester
from db import NotFoundError, ValidationError, database_operation, db_execute, fetch_one, fetch_rows

logger = logging.getLogger(__name__)


def standard_class_name(course_name, form, stream):
    """Name of a class without a usable source name, e.g. 'General Science 1A'."""
    return f"{(course_name or 'Course').strip()} {form}{stream or ''}"


def target_class_name(source_class, to_form, to_semester):
    """Name the promoted class from the source class's structured fields.

    The source name is split into whole words; only the word carrying the
    source form (``1`` or ``1A`` for stream A) and the ``S<semester>`` word
    are rewritten, so 'Form 1 Gold' becomes 'Form 2 Gold' and
    'General 1 Physics-Chemistry S2' becomes 'General 2 Physics-Chemistry S1'.
    """
    stream = source_class.get('stream') or ''
    words = (source_class.get('class_name') or '').split()
    if not words:
        return standard_class_name(source_class.get('course_name'), to_form, stream)

    form = source_class.get('form')
    form_words = {f"{form}": f"{to_form}"}
    if stream:
        form_words[f"{form}{stream}"] = f"{to_form}{stream}"
    semester_word = f"S{source_class.get('semester')}"

    renamed = []
    form_done = False
    for word in words:
        if not form_done and word in form_words:
            word = form_words[word]
            form_done = True
        elif word == semester_word:
            word = f"S{to_semester}"
        renamed.append(word)
    return ' '.join(renamed)


def claim_target_name(class_name, source_id, claimed):
    """Keep target names distinct per source class within one run."""
    owner = claimed.setdefault(class_name, source_id)
    if owner != source_id:
        class_name = f"{class_name} #{source_id}"
        claimed[class_name] = source_id
    return class_name


def validate_promotion_periods(from_form, from_semester, to_form, to_semester):
    from_form = require_positive_int(from_form, 'from_form')
    from_semester = require_semester(from_semester, 'from_semester')
    to_form = require_positive_int(to_form if to_form not in (None, '') else from_form + 1, 'to_form')
    to_semester = require_semester(to_semester, 'to_semester')
    if (from_form, from_semester) == (to_form, to_semester):
        raise ValidationError("Source and target form/semester must differ.")
    return from_form, from_semester, to_form, to_semester


# ==================== CURSOR HELPERS ====================

def get_promotable_students_with_cursor(c, from_form, from_semester):
    db_execute(
        c,
        '''SELECT s.id, s.student_id, s.surname, s.other_names, s.current_class_id
           FROM students s
           JOIN classes c ON s.current_class_id = c.id
           WHERE c.form = ? AND c.semester = ? AND s.is_active = TRUE
           ORDER BY s.id''',
        (from_form, from_semester),
    )
    return fetch_rows(c)


def get_promotion_source_with_cursor(c, class_id):
    """Class row plus its course name and elective subject names (by subject id)."""
    db_execute(
        c,
        '''SELECT c.*, co.name AS course_name,
                  COALESCE(
                      array_agg(s.name ORDER BY s.id) FILTER (WHERE cs.is_elective),
                      '{}'::text[]
                  ) AS elective_names
           FROM classes c
           LEFT JOIN courses co ON co.id = c.course_id
           LEFT JOIN class_subjects cs ON cs.class_id = c.id
           LEFT JOIN subjects s ON s.id = cs.subject_id
           WHERE c.id = ?
           GROUP BY c.id, co.name''',
        (class_id,),
    )
    return fetch_one(c)


def find_class_by_name_with_cursor(c, class_name, course_id, form, semester, academic_year):
    db_execute(
        c,
        '''SELECT * FROM classes
           WHERE class_name = ? AND course_id = ? AND form = ? AND semester = ? AND academic_year = ?
           ORDER BY id
           LIMIT 1''',
        (class_name, course_id, form, semester, academic_year),
    )
    return fetch_one(c)


def copy_class_subjects_with_cursor(c, source_class_id, target_class_id):
    db_execute(
        c,
        '''INSERT INTO class_subjects (class_id, subject_id, is_elective)
           SELECT ?, subject_id, is_elective FROM class_subjects WHERE class_id = ?
           ON CONFLICT (class_id, subject_id) DO NOTHING''',
        (target_class_id, source_class_id),
    )


def set_student_class_with_cursor(c, student_id, class_id):
    db_execute(
        c,
        'UPDATE students SET current_class_id = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?',
        (class_id, student_id),
    )


def find_or_create_target_class_with_cursor(c, source_class, class_name, target_year, to_form, to_semester):
    """Return (target class, created?) for one source class."""
    academics.lock_class_key_with_cursor(c, source_class['course_id'], to_form, to_semester)
    existing = find_class_by_name_with_cursor(
        c, class_name, source_class['course_id'], to_form, to_semester, target_year,
    )
    if existing:
        return existing, False
    target = academics.insert_class_with_cursor(
        c,
        class_name,
        source_class['course_id'],
        to_form,
        to_semester,
        source_class.get('stream'),
        target_year,
        source_class.get('capacity') or academics.DEFAULT_CLASS_CAPACITY,
    )
    copy_class_subjects_with_cursor(c, source_class['id'], target['id'])
    logger.info("Created promotion target class %s (%s) from class %s", target['id'], class_name, source_class['id'])
    return target, True


# ==================== PROMOTION ====================

def promote_students_with_cursor(c, target_year, from_form, from_semester, to_form, to_semester):
    students = get_promotable_students_with_cursor(c, from_form, from_semester)
    targets = {}
    claimed = {}
    created_classes = []
    for student in students:
        source_id = student['current_class_id']
        if source_id not in targets:
            source_class = get_promotion_source_with_cursor(c, source_id)
            if not source_class:
                raise NotFoundError(f"Class {source_id} of student {student['id']} not found.")
            class_name = claim_target_name(
                target_class_name(source_class, to_form, to_semester), source_id, claimed,
            )
            target, created = find_or_create_target_class_with_cursor(
                c, source_class, class_name, target_year, to_form, to_semester,
            )
            targets[source_id] = target['id']
            if created:
                created_classes.append(target['id'])
        set_student_class_with_cursor(c, student['id'], targets[source_id])
    return len(students), created_classes, targets


@database_operation('promote students')
def promote_students(client, current_year, target_year, from_form=1, from_semester=2, to_form=None, to_semester=1):
    """Promote every active student of one form/semester in a single transaction."""
    from_form, from_semester, to_form, to_semester = validate_promotion_periods(
        from_form, from_semester, to_form, to_semester,
    )
    target_year = (target_year or '').strip() or current_academic_year()
    with client.transaction() as c:
        promoted, created_classes, targets = promote_students_with_cursor(
            c, target_year, from_form, from_semester, to_form, to_semester,
        )
    message = (
        f"Successfully promoted {promoted} students from Form {from_form} Semester {from_semester} "
        f"to Form {to_form} Semester {to_semester}"
    )
    logger.info("%s (%s -> %s, %d new classes)", message, current_year, target_year, len(created_classes))
    return {
        'success': True,
        'promoted_count': promoted,
        'created_classes': created_classes,
        'class_mapping': targets,
        'message': message,
    }


@database_operation('preview promotion')
def preview_promotion(client, target_year, from_form=1, from_semester=2, to_form=None, to_semester=1):
    """Dry run: what promote_students would do, without writing anything."""
    from_form, from_semester, to_form, to_semester = validate_promotion_periods(
        from_form, from_semester, to_form, to_semester,
    )
    target_year = (target_year or '').strip() or current_academic_year()
    plan = []
    with client.transaction() as c:
        sources = {}
        claimed = {}
        for student in get_promotable_students_with_cursor(c, from_form, from_semester):
            source_id = student['current_class_id']
            if source_id not in sources:
                source_class = get_promotion_source_with_cursor(c, source_id) or {}
                target_name = None
                existing = None
                if source_class:
                    target_name = claim_target_name(
                        target_class_name(source_class, to_form, to_semester), source_id, claimed,
                    )
                    existing = find_class_by_name_with_cursor(
                        c, target_name, source_class['course_id'], to_form, to_semester, target_year,
                    )
                sources[source_id] = {
                    'source_class': source_class.get('class_name'),
                    'target_class': target_name,
                    'target_exists': bool(existing),
                }
            plan.append(dict(student, **sources[source_id]))
    return plan
