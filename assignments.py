"""Coursework: assignments, student submissions and teacher messages."""

import logging
import posixpath

from academics import require_int
from db import NotFoundError, ValidationError, database_operation, db_execute, fetch_one

logger = logging.getLogger(__name__)

SUBMISSION_UPLOAD_DIR = 'uploads/assignments'
DEFAULT_MAX_SCORE = 100

_ASSIGNMENT_SELECT = '''
    SELECT a.*, c.class_name, s.name AS subject_name, at.name AS assignment_type
    FROM assignments a
    JOIN classes c ON a.class_id = c.id
    JOIN subjects s ON a.subject_id = s.id
    LEFT JOIN assignment_types at ON a.assignment_type_id = at.id
'''


def _optional_int(value, field):
    if value in (None, ''):
        return None
    return require_int(value, field)


def _text(data, field, required=True):
    value = data.get(field)
    value = value.strip() if isinstance(value, str) else value
    if required and value in (None, ''):
        raise ValidationError(f"{field} is required.")
    return value or None


def _max_score(value):
    if value in (None, ''):
        return float(DEFAULT_MAX_SCORE)
    try:
        score = float(value)
    except (TypeError, ValueError):
        raise ValidationError("max_score must be a number.")
    if score <= 0:
        raise ValidationError("max_score must be greater than 0.")
    return score


def submission_path(assignment_id, file_name):
    return posixpath.join(SUBMISSION_UPLOAD_DIR, str(assignment_id), posixpath.basename(file_name))


# ==================== ASSIGNMENTS ====================

def get_assignment_types(client):
    return client.query('SELECT * FROM assignment_types ORDER BY id')


@database_operation('create assignment')
def create_assignment(client, data):
    """Create an assignment for one class and subject."""
    params = (
        _optional_int(data.get('teacher_id'), 'teacher_id'),
        require_int(data.get('class_id'), 'class_id'),
        require_int(data.get('subject_id'), 'subject_id'),
        _text(data, 'title'),
        _text(data, 'description', required=False),
        _optional_int(data.get('assignment_type_id'), 'assignment_type_id'),
        _text(data, 'due_date', required=False),
        _max_score(data.get('max_score')),
    )
    rows = client.query(
        '''INSERT INTO assignments
               (teacher_id, class_id, subject_id, title, description, assignment_type_id, due_date, max_score)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?)
           RETURNING *''',
        params,
    )
    logger.info("Assignment '%s' created for class %s subject %s", params[3], params[1], params[2])
    return rows[0] if rows else None


def get_assignments_by_teacher(client, teacher_id):
    return client.query(
        _ASSIGNMENT_SELECT + 'WHERE a.teacher_id = ? AND a.is_active = TRUE ORDER BY a.created_at DESC',
        (require_int(teacher_id, 'teacher_id'),),
    )


def get_assignments_by_class(client, class_id):
    return client.query(
        _ASSIGNMENT_SELECT + 'WHERE a.class_id = ? AND a.is_active = TRUE ORDER BY a.created_at DESC',
        (require_int(class_id, 'class_id'),),
    )


@database_operation('delete assignment')
def delete_assignment(client, assignment_id):
    rows = client.query(
        '''UPDATE assignments SET is_active = FALSE, updated_at = CURRENT_TIMESTAMP
           WHERE id = ?
           RETURNING *''',
        (require_int(assignment_id, 'assignment_id'),),
    )
    if not rows:
        raise NotFoundError("Assignment not found")
    return rows[0]


# ==================== SUBMISSIONS ====================

@database_operation('submit assignment')
def submit_assignment(client, assignment_id, student_id, file_name=None):
    """Record a student's submission; resubmitting replaces the file and clears the grade."""
    assignment_id = require_int(assignment_id, 'assignment_id')
    student_id = require_int(student_id, 'student_id')
    file_path = submission_path(assignment_id, file_name) if file_name else None
    with client.transaction() as c:
        db_execute(c, 'SELECT id FROM assignments WHERE id = ? AND is_active = TRUE', (assignment_id,))
        if not fetch_one(c):
            raise NotFoundError(f"Assignment {assignment_id} not found.")
        db_execute(
            c,
            '''INSERT INTO assignment_submissions (assignment_id, student_id, file_path)
               VALUES (?, ?, ?)
               ON CONFLICT (assignment_id, student_id) DO UPDATE SET
                 file_path = excluded.file_path,
                 submission_date = CURRENT_TIMESTAMP,
                 score = NULL,
                 remarks = NULL,
                 graded_by = NULL,
                 graded_date = NULL,
                 is_active = TRUE,
                 updated_at = CURRENT_TIMESTAMP
               RETURNING *''',
            (assignment_id, student_id, file_path),
        )
        return fetch_one(c)


def get_assignment_submissions(client, assignment_id):
    return client.query(
        '''SELECT sub.*, s.student_id AS student_code, s.surname, s.other_names, c.class_name
           FROM assignment_submissions sub
           JOIN students s ON sub.student_id = s.id
           LEFT JOIN classes c ON s.current_class_id = c.id
           WHERE sub.assignment_id = ? AND sub.is_active = TRUE
           ORDER BY s.surname, s.other_names''',
        (require_int(assignment_id, 'assignment_id'),),
    )


@database_operation('grade assignment')
def grade_assignment_submission(client, submission_id, score, remarks=None, teacher_id=None):
    """Score one submission out of its assignment's max_score."""
    submission_id = require_int(submission_id, 'submission_id')
    try:
        score = round(float(score), 2)
    except (TypeError, ValueError):
        raise ValidationError("score must be a number.")
    with client.transaction() as c:
        db_execute(
            c,
            '''SELECT sub.id, a.max_score
               FROM assignment_submissions sub
               JOIN assignments a ON a.id = sub.assignment_id
               WHERE sub.id = ? AND sub.is_active = TRUE
               FOR UPDATE OF sub''',
            (submission_id,),
        )
        submission = fetch_one(c)
        if not submission:
            raise NotFoundError(f"Submission {submission_id} not found.")
        max_score = float(submission['max_score'] or DEFAULT_MAX_SCORE)
        if score < 0 or score > max_score:
            raise ValidationError(f"score must be between 0 and {max_score:g}.")
        db_execute(
            c,
            '''UPDATE assignment_submissions
               SET score = ?, remarks = ?, graded_by = ?, graded_date = CURRENT_TIMESTAMP,
                   updated_at = CURRENT_TIMESTAMP
               WHERE id = ?
               RETURNING *''',
            (score, (remarks or '').strip() or None, _optional_int(teacher_id, 'teacher_id'), submission_id),
        )
        return fetch_one(c)


# ==================== TEACHER MESSAGES ====================

def get_teacher_messages(client, teacher_id):
    return client.query(
        '''SELECT tm.*, c.class_name, s.name AS subject_name
           FROM teacher_messages tm
           LEFT JOIN classes c ON tm.class_id = c.id
           LEFT JOIN subjects s ON tm.subject_id = s.id
           WHERE tm.teacher_id = ? AND tm.is_active = TRUE
           ORDER BY tm.created_at DESC''',
        (require_int(teacher_id, 'teacher_id'),),
    )


@database_operation('create teacher message')
def create_teacher_message(client, data):
    """Post a message to a class, or privately to one student."""
    is_private = bool(data.get('is_private'))
    recipient = _optional_int(data.get('recipient_student_id'), 'recipient_student_id')
    if is_private and recipient is None:
        raise ValidationError("A private message needs recipient_student_id.")
    rows = client.query(
        '''INSERT INTO teacher_messages
               (teacher_id, class_id, subject_id, title, content, is_private, recipient_student_id)
           VALUES (?, ?, ?, ?, ?, ?, ?)
           RETURNING *''',
        (
            require_int(data.get('teacher_id'), 'teacher_id'),
            _optional_int(data.get('class_id'), 'class_id'),
            _optional_int(data.get('subject_id'), 'subject_id'),
            _text(data, 'title'),
            _text(data, 'content'),
            is_private,
            recipient,
        ),
    )
    return rows[0] if rows else None
