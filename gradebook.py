"""Student results: recording scores and reading them back."""

import logging

from academics import require_int, require_positive_int
from db import NotFoundError, ValidationError, database_operation, db_execute, fetch_one
from grading import PASS_MARK, grade_result

logger = logging.getLogger(__name__)

MIN_SUBJECTS_FOR_RANKING = 5

RESULT_KEY_FIELDS = ('student_id', 'subject_id', 'class_id', 'academic_year', 'term')

_UPSERT_RESULT_SQL = '''INSERT INTO student_results
       (student_id, subject_id, class_id, academic_year, term,
        class_score, exam_score, total_score, grade, remarks)
       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
       ON CONFLICT (student_id, subject_id, academic_year, term) DO UPDATE SET
         class_id = excluded.class_id,
         class_score = excluded.class_score,
         exam_score = excluded.exam_score,
         total_score = excluded.total_score,
         grade = excluded.grade,
         remarks = excluded.remarks,
         is_active = TRUE,
         updated_at = CURRENT_TIMESTAMP
       RETURNING *'''


def _result_params(data):
    missing = [field for field in RESULT_KEY_FIELDS if data.get(field) in (None, '')]
    if missing:
        raise ValidationError(f"Missing required result fields: {', '.join(missing)}")
    # total_score and grade sent by the caller are ignored on purpose.
    graded = grade_result(data.get('class_score'), data.get('exam_score'))
    remarks = (data.get('remarks') or '').strip() or graded['remarks']
    return (
        require_int(data['student_id'], 'student_id'),
        require_int(data['subject_id'], 'subject_id'),
        require_int(data['class_id'], 'class_id'),
        str(data['academic_year']).strip(),
        require_positive_int(data['term'], 'term'),
        graded['class_score'],
        graded['exam_score'],
        graded['total_score'],
        graded['grade'],
        remarks,
    )


@database_operation('save student result')
def save_student_result(client, data):
    """Insert or update one student/subject/period result."""
    rows = client.query(_UPSERT_RESULT_SQL, _result_params(data))
    return rows[0] if rows else None


@database_operation('save class results')
def save_class_results(client, class_id, subject_id, academic_year, term, entries):
    """Save a whole gradebook sheet for one class and subject atomically."""
    saved = []
    params = []
    for entry in entries:
        params.append(_result_params(dict(
            entry,
            class_id=class_id,
            subject_id=subject_id,
            academic_year=academic_year,
            term=term,
        )))
    with client.transaction() as c:
        for row_params in params:
            db_execute(c, _UPSERT_RESULT_SQL, row_params)
            saved.append(fetch_one(c))
    logger.info("Saved %d results for class %s subject %s (%s term %s)",
                len(params), class_id, subject_id, academic_year, term)
    return saved


@database_operation('update student result')
def update_result_component(client, result_id, class_score=None, exam_score=None):
    """Change one score component; total, grade and remark are recomputed."""
    if class_score is None and exam_score is None:
        raise ValidationError("Provide class_score or exam_score.")
    result_id = require_int(result_id, 'result_id')
    with client.transaction() as c:
        db_execute(
            c,
            'SELECT id, class_score, exam_score FROM student_results WHERE id = ? FOR UPDATE',
            (result_id,),
        )
        current = fetch_one(c)
        if not current:
            raise NotFoundError(f"Result {result_id} not found.")
        graded = grade_result(
            current['class_score'] if class_score is None else class_score,
            current['exam_score'] if exam_score is None else exam_score,
        )
        db_execute(
            c,
            '''UPDATE student_results
               SET class_score = ?, exam_score = ?, total_score = ?, grade = ?, remarks = ?,
                   updated_at = CURRENT_TIMESTAMP
               WHERE id = ?
               RETURNING *''',
            (
                graded['class_score'],
                graded['exam_score'],
                graded['total_score'],
                graded['grade'],
                graded['remarks'],
                result_id,
            ),
        )
        return fetch_one(c)


def _period_filter(alias, academic_year=None, term=None):
    clauses = []
    params = []
    if academic_year:
        clauses.append(f'{alias}.academic_year = ?')
        params.append(academic_year)
    if term:
        clauses.append(f'{alias}.term = ?')
        params.append(require_int(term, 'term'))
    sql = ''.join(f' AND {clause}' for clause in clauses)
    return sql, params


def get_student_results(client, student_id, academic_year=None, term=None):
    period_sql, period_params = _period_filter('sr', academic_year, term)
    return client.query(
        f'''SELECT sr.*, s.name AS subject_name, c.class_name
            FROM student_results sr
            JOIN subjects s ON sr.subject_id = s.id
            LEFT JOIN classes c ON sr.class_id = c.id
            WHERE sr.student_id = ? AND sr.is_active = TRUE{period_sql}
            ORDER BY sr.academic_year DESC, sr.term, s.name''',
        (require_int(student_id, 'student_id'), *period_params),
    )


def get_class_results(client, class_id, subject_id, academic_year, term):
    return client.query(
        '''SELECT sr.*, s.student_id AS student_code, s.surname, s.other_names
           FROM student_results sr
           JOIN students s ON sr.student_id = s.id
           WHERE sr.class_id = ? AND sr.subject_id = ?
             AND sr.academic_year = ? AND sr.term = ?
             AND sr.is_active = TRUE AND s.is_active = TRUE
           ORDER BY s.surname, s.other_names''',
        (
            require_int(class_id, 'class_id'),
            require_int(subject_id, 'subject_id'),
            academic_year,
            require_int(term, 'term'),
        ),
    )


def get_student_performance_history(client, student_id, subject_id):
    return client.query(
        '''SELECT sr.*, c.class_name
           FROM student_results sr
           LEFT JOIN classes c ON sr.class_id = c.id
           WHERE sr.student_id = ? AND sr.subject_id = ? AND sr.is_active = TRUE
           ORDER BY sr.academic_year, sr.term''',
        (require_int(student_id, 'student_id'), require_int(subject_id, 'subject_id')),
    )


def class_average(results):
    """Mean total score to one decimal place; 0 for an empty sheet."""
    if not results:
        return 0.0
    total = sum(float(r.get('total_score') or 0) for r in results)
    return round(total / len(results), 1)


# ==================== ANALYTICS ====================

_AVERAGES_SELECT = '''SELECT s.id, s.student_id, s.surname, s.other_names, c.class_name,
                             c.id AS class_id, c.course_id,
                             ROUND(AVG(sr.total_score), 1) AS average_score,
                             COUNT(sr.id) AS subjects_count,
                             SUM(CASE WHEN sr.total_score >= ? THEN 1 ELSE 0 END) AS passed_subjects,
                             SUM(CASE WHEN sr.total_score < ? THEN 1 ELSE 0 END) AS failed_subjects
                      FROM students s
                      JOIN student_results sr ON s.id = sr.student_id
                      JOIN classes c ON s.current_class_id = c.id
                      WHERE s.is_active = TRUE AND sr.is_active = TRUE'''

_AVERAGES_GROUP = '''GROUP BY s.id, s.student_id, s.surname, s.other_names, c.class_name, c.id, c.course_id
                     HAVING COUNT(sr.id) >= ?'''


def _averages_query(academic_year=None, term=None, course_id=None):
    period_sql, period_params = _period_filter('sr', academic_year, term)
    course_sql = ''
    course_params = []
    if course_id:
        course_sql = ' AND c.course_id = ?'
        course_params.append(require_int(course_id, 'course_id'))
    sql = f'{_AVERAGES_SELECT}{period_sql}{course_sql}\n{_AVERAGES_GROUP}'
    params = [PASS_MARK, PASS_MARK, *period_params, *course_params, MIN_SUBJECTS_FOR_RANKING]
    return sql, params


def get_student_performance_summary(client, academic_year=None, term=None):
    sql, params = _averages_query(academic_year, term)
    return client.query(f'{sql}\nORDER BY AVG(sr.total_score) DESC', tuple(params))


def get_top_students(client, limit=10, academic_year=None, term=None):
    sql, params = _averages_query(academic_year, term)
    return client.query(
        f'{sql}\nORDER BY AVG(sr.total_score) DESC\nLIMIT ?',
        (*params, require_positive_int(limit, 'limit')),
    )


def get_top_students_by_course(client, course_id, limit=10, academic_year=None, term=None):
    sql, params = _averages_query(academic_year, term, course_id=course_id)
    return client.query(
        f'{sql}\nORDER BY AVG(sr.total_score) DESC\nLIMIT ?',
        (*params, require_positive_int(limit, 'limit')),
    )


def get_top_students_by_class(client, academic_year=None, term=None):
    """Best student of every class."""
    sql, params = _averages_query(academic_year, term)
    return client.query(
        f'''WITH class_averages AS ({sql}),
            ranked_students AS (
                SELECT *, ROW_NUMBER() OVER (PARTITION BY class_id ORDER BY average_score DESC) AS class_rank
                FROM class_averages
            )
            SELECT * FROM ranked_students WHERE class_rank = 1
            ORDER BY average_score DESC''',
        tuple(params),
    )
