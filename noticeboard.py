"""Announcements, timetables and behaviour records."""

import logging
import posixpath

from academics import current_academic_year, require_int
from db import NotFoundError, ValidationError, database_operation, db_execute, fetch_one, fetch_rows

logger = logging.getLogger(__name__)

WEEKDAYS = ('Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday')
TIMETABLE_UPLOAD_DIR = 'uploads/timetables'
BEHAVIOR_FIELDS = ('student_id', 'recorded_by', 'date', 'type', 'description', 'status')


def _optional_int(value, field):
    if value in (None, ''):
        return None
    return require_int(value, field)


def _required_text(data, *fields):
    values = []
    for field in fields:
        value = (data.get(field) or '').strip() if isinstance(data.get(field), str) else data.get(field)
        if value in (None, ''):
            raise ValidationError(f"{field} is required.")
        values.append(value)
    return values


# ==================== ANNOUNCEMENTS ====================

@database_operation('create announcement')
def create_announcement(client, title, content, created_by=None, class_id=None):
    title, content = _required_text({'title': title, 'content': content}, 'title', 'content')
    rows = client.query(
        '''INSERT INTO announcements (title, content, created_by, target_class_id)
           VALUES (?, ?, ?, ?)
           RETURNING *''',
        (title, content, _optional_int(created_by, 'created_by'), _optional_int(class_id, 'class_id')),
    )
    return rows[0] if rows else None


def get_announcements(client, class_id=None):
    """Published announcements; with a class, its own plus school-wide ones."""
    if class_id:
        return client.query(
            '''SELECT * FROM announcements
               WHERE (target_class_id = ? OR target_class_id IS NULL) AND is_published = TRUE
               ORDER BY created_at DESC''',
            (require_int(class_id, 'class_id'),),
        )
    return client.query('SELECT * FROM announcements WHERE is_published = TRUE ORDER BY created_at DESC')


@database_operation('delete announcement')
def delete_announcement(client, announcement_id):
    rows = client.query(
        '''UPDATE announcements
           SET is_published = FALSE, updated_at = CURRENT_TIMESTAMP
           WHERE id = ?
           RETURNING *''',
        (require_int(announcement_id, 'announcement_id'),),
    )
    if not rows:
        raise NotFoundError("Announcement not found")
    return rows[0]


# ==================== TIMETABLES ====================

def timetable_path(class_id, file_name):
    return posixpath.join(TIMETABLE_UPLOAD_DIR, str(class_id), posixpath.basename(file_name))


@database_operation('upload timetable')
def upload_timetable(client, class_id, file_name, file_type=None, academic_year=None, uploaded_by=None):
    """Record timetable metadata; the file itself is not stored."""
    class_id = require_int(class_id, 'class_id')
    (file_name,) = _required_text({'file_name': file_name}, 'file_name')
    rows = client.query(
        '''INSERT INTO timetables (class_id, file_name, file_path, file_type, academic_year, uploaded_by)
           VALUES (?, ?, ?, ?, ?, ?)
           RETURNING *''',
        (
            class_id,
            file_name,
            timetable_path(class_id, file_name),
            file_type,
            academic_year or current_academic_year(),
            _optional_int(uploaded_by, 'uploaded_by'),
        ),
    )
    return rows[0] if rows else None


def get_timetables(client, class_id=None):
    base = '''SELECT t.*, c.class_name, u.user_id AS uploaded_by_user
              FROM timetables t
              JOIN classes c ON t.class_id = c.id
              LEFT JOIN users u ON t.uploaded_by = u.id
              WHERE t.is_active = TRUE'''
    if class_id:
        return client.query(f'{base} AND t.class_id = ? ORDER BY t.created_at DESC', (require_int(class_id, 'class_id'),))
    return client.query(f'{base} ORDER BY c.class_name, t.created_at DESC')


@database_operation('delete timetable')
def delete_timetable(client, timetable_id):
    rows = client.query(
        '''UPDATE timetables
           SET is_active = FALSE, updated_at = CURRENT_TIMESTAMP
           WHERE id = ?
           RETURNING *''',
        (require_int(timetable_id, 'timetable_id'),),
    )
    if not rows:
        raise NotFoundError("Timetable not found")
    return rows[0]


def normalize_weekday(day):
    text = (day or '').strip().capitalize()
    if text not in WEEKDAYS:
        raise ValidationError(f"Day must be one of {', '.join(WEEKDAYS)}.")
    return text


@database_operation('create timetable entry')
def create_timetable_entry(client, day, time_slot, class_id, subject_id, teacher_id, academic_year=None):
    day = normalize_weekday(day)
    (time_slot,) = _required_text({'time_slot': time_slot}, 'time_slot')
    class_id = require_int(class_id, 'class_id')
    subject_id = require_int(subject_id, 'subject_id')
    teacher_id = require_int(teacher_id, 'teacher_id')
    academic_year = academic_year or current_academic_year()
    with client.transaction() as c:
        db_execute(
            c,
            '''SELECT class_id, teacher_id FROM timetable_entries
               WHERE academic_year = ? AND day = ? AND time_slot = ? AND is_active = TRUE
                 AND (class_id = ? OR teacher_id = ?)
               FOR UPDATE''',
            (academic_year, day, time_slot, class_id, teacher_id),
        )
        for clash in fetch_rows(c):
            if clash['class_id'] == class_id:
                raise ValidationError(f"Class {class_id} already has a lesson on {day} at {time_slot}.")
            raise ValidationError(f"Teacher {teacher_id} is already teaching on {day} at {time_slot}.")
        db_execute(
            c,
            '''INSERT INTO timetable_entries (day, time_slot, class_id, subject_id, teacher_id, academic_year)
               VALUES (?, ?, ?, ?, ?, ?)
               RETURNING *''',
            (day, time_slot, class_id, subject_id, teacher_id, academic_year),
        )
        return fetch_one(c)


def get_timetable_entries(client, filters=None):
    filters = filters or {}
    where = ['te.is_active = TRUE']
    params = []
    for field in ('class_id', 'teacher_id'):
        if filters.get(field):
            where.append(f'te.{field} = ?')
            params.append(require_int(filters[field], field))
    if filters.get('academic_year'):
        where.append('te.academic_year = ?')
        params.append(filters['academic_year'])
    if filters.get('day'):
        where.append('te.day = ?')
        params.append(normalize_weekday(filters['day']))
    return client.query(
        f'''SELECT te.*, c.class_name, s.name AS subject_name,
                   t.surname AS teacher_surname, t.other_names AS teacher_other_names
            FROM timetable_entries te
            JOIN classes c ON te.class_id = c.id
            JOIN subjects s ON te.subject_id = s.id
            JOIN teachers t ON te.teacher_id = t.id
            WHERE {' AND '.join(where)}
            ORDER BY te.day, te.time_slot''',
        tuple(params),
    )


def get_class_timetable(client, class_id, academic_year):
    return get_timetable_entries(client, {'class_id': class_id, 'academic_year': academic_year})


def get_teacher_timetable(client, teacher_id, academic_year):
    return get_timetable_entries(client, {'teacher_id': teacher_id, 'academic_year': academic_year})


@database_operation('delete timetable entries')
def delete_timetable_entries(client, academic_year):
    if not academic_year:
        raise ValidationError("academic_year is required.")
    rows = client.query(
        '''UPDATE timetable_entries
           SET is_active = FALSE, updated_at = CURRENT_TIMESTAMP
           WHERE academic_year = ? AND is_active = TRUE
           RETURNING id''',
        (academic_year,),
    )
    logger.info("Cleared %d timetable entries for %s", len(rows), academic_year)
    return {'success': True, 'deleted_count': len(rows)}


# ==================== BEHAVIOUR RECORDS ====================

def _behavior_params(data):
    student_id, record_date, record_type, description = _required_text(
        data, 'student_id', 'date', 'type', 'description',
    )
    return (
        require_int(student_id, 'student_id'),
        _optional_int(data.get('recorded_by'), 'recorded_by'),
        record_date,
        record_type,
        description,
        (data.get('status') or 'open').strip(),
    )


@database_operation('create behavior record')
def create_behavior_record(client, data):
    rows = client.query(
        f'''INSERT INTO student_behavior_records ({', '.join(BEHAVIOR_FIELDS)})
            VALUES (?, ?, ?, ?, ?, ?)
            RETURNING *''',
        _behavior_params(data),
    )
    return rows[0] if rows else None


def get_student_behavior_records(client, student_id):
    return client.query(
        '''SELECT * FROM student_behavior_records
           WHERE student_id = ? AND is_active = TRUE
           ORDER BY date DESC''',
        (require_int(student_id, 'student_id'),),
    )


def get_all_behavior_records(client):
    rows = client.query(
        '''SELECT sbr.*,
                  s.surname AS student_surname, s.other_names AS student_other_names,
                  t.surname AS teacher_surname, t.other_names AS teacher_other_names
           FROM student_behavior_records sbr
           JOIN students s ON sbr.student_id = s.id
           LEFT JOIN teachers t ON sbr.recorded_by = t.id
           WHERE sbr.is_active = TRUE
           ORDER BY sbr.date DESC'''
    )
    for row in rows:
        row['student_name'] = f"{row['student_surname']} {row['student_other_names']}"
        if row.get('teacher_surname'):
            row['teacher_name'] = f"{row['teacher_surname']} {row['teacher_other_names']}"
        else:
            row['teacher_name'] = 'System'
    return rows


@database_operation('update behavior record')
def update_behavior_record(client, record_id, data):
    rows = client.query(
        f'''UPDATE student_behavior_records
            SET {', '.join(f'{field} = ?' for field in BEHAVIOR_FIELDS)}, updated_at = CURRENT_TIMESTAMP
            WHERE id = ?
            RETURNING *''',
        (*_behavior_params(data), require_int(record_id, 'record_id')),
    )
    if not rows:
        raise NotFoundError("Behavior record not found")
    return rows[0]


@database_operation('delete behavior record')
def delete_behavior_record(client, record_id):
    rows = client.query(
        '''UPDATE student_behavior_records
           SET is_active = FALSE, updated_at = CURRENT_TIMESTAMP
           WHERE id = ?
           RETURNING *''',
        (require_int(record_id, 'record_id'),),
    )
    if not rows:
        raise NotFoundError("Behavior record not found")
    return rows[0]
