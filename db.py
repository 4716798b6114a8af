"""
Database access layer for the school portal.

One client is built at startup from the environment and handed to every
operation. ``PostgresClient`` talks to PostgreSQL through psycopg2;
``NullClient`` answers every query with an empty result and is only used
when ``DATABASE_BACKEND=null`` is configured explicitly.
"""

import functools
import logging
import os
from contextlib import contextmanager

import psycopg2
from dotenv import load_dotenv
from psycopg2.extras import RealDictCursor

load_dotenv()

logger = logging.getLogger(__name__)

BACKEND_POSTGRES = 'postgres'
BACKEND_NULL = 'null'


class SchoolDataError(RuntimeError):
    """Base error for every failed portal operation."""


class ValidationError(SchoolDataError):
    """Input rejected before touching the database."""


class NotFoundError(SchoolDataError):
    """A referenced row does not exist."""


class DatabaseError(SchoolDataError):
    """Connection, syntax or constraint failure reported by the driver."""


def _adapt_query(query):
    return query.replace('?', '%s')


def db_execute(cursor, query, params=None):
    """Execute one statement, translating driver errors to DatabaseError."""
    try:
        if params is None:
            return cursor.execute(_adapt_query(query))
        return cursor.execute(_adapt_query(query), params)
    except psycopg2.Error as exc:
        message = (getattr(exc, 'pgerror', None) or str(exc)).strip()
        logger.error("SQL ERROR: %s", message)
        raise DatabaseError(message) from exc


def fetch_rows(cursor):
    """Return all rows of the last statement, or [] when it produced none."""
    if cursor.description is None:
        return []
    return [dict(row) for row in cursor.fetchall()]


def fetch_one(cursor):
    if cursor.description is None:
        return None
    row = cursor.fetchone()
    return dict(row) if row else None


def database_operation(description):
    """Wrap DatabaseError raised by an operation with a readable prefix."""
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except DatabaseError as exc:
                logger.exception("Failed to %s", description)
                raise DatabaseError(f"Failed to {description}: {exc}") from exc
        return wrapper
    return decorator


class PostgresClient:
    """psycopg2 client; every transaction uses a fresh connection."""

    backend = BACKEND_POSTGRES

    def __init__(self, database_url, connect_timeout=10):
        if not database_url.startswith(('postgres://', 'postgresql://')):
            raise RuntimeError("PostgreSQL is required. Set DATABASE_URL to a postgresql:// connection string.")
        self.database_url = database_url
        self.connect_timeout = int(connect_timeout)

    def connect(self):
        try:
            return psycopg2.connect(
                self.database_url,
                cursor_factory=RealDictCursor,
                connect_timeout=self.connect_timeout,
            )
        except psycopg2.Error as exc:
            raise DatabaseError(f"Could not connect to database: {exc}") from exc

    @contextmanager
    def transaction(self):
        """Yield a cursor; commit on success, roll back on any error."""
        conn = self.connect()
        try:
            with conn.cursor() as cursor:
                yield cursor
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def query(self, query, params=None):
        with self.transaction() as c:
            db_execute(c, query, params)
            return fetch_rows(c)


class NullCursor:
    description = None
    rowcount = 0

    def execute(self, query, params=None):
        return None

    def fetchone(self):
        return None

    def fetchall(self):
        return []


class NullClient:
    """Client used when no database is configured; every read is empty."""

    backend = BACKEND_NULL

    def __init__(self):
        logger.warning("Database not configured - NullClient returns empty results for every query.")

    @contextmanager
    def transaction(self):
        yield NullCursor()

    def query(self, query, params=None):
        return []


def load_database_config(environ=None):
    env = os.environ if environ is None else environ
    backend = (env.get('DATABASE_BACKEND') or BACKEND_POSTGRES).strip().lower()
    if backend not in (BACKEND_POSTGRES, BACKEND_NULL):
        raise RuntimeError(f"Unknown DATABASE_BACKEND '{backend}'. Use 'postgres' or 'null'.")
    database_url = (env.get('DATABASE_URL') or '').strip()
    if backend == BACKEND_POSTGRES and not database_url:
        raise RuntimeError("DATABASE_URL not found. Set it in .env or choose DATABASE_BACKEND=null.")
    return {
        'backend': backend,
        'database_url': database_url,
        'connect_timeout': int(env.get('DB_CONNECT_TIMEOUT') or 10),
    }


def create_client(config=None):
    """Build the client described by ``config`` (defaults to the environment)."""
    config = config or load_database_config()
    if config['backend'] == BACKEND_NULL:
        return NullClient()
    return PostgresClient(config['database_url'], config.get('connect_timeout', 10))


SCHEMA_STATEMENTS = [
    '''CREATE TABLE IF NOT EXISTS users (
           id SERIAL PRIMARY KEY,
           user_id TEXT UNIQUE NOT NULL,
           user_type TEXT NOT NULL DEFAULT 'student',
           password_hash TEXT NOT NULL,
           must_change_password BOOLEAN NOT NULL DEFAULT TRUE,
           is_active BOOLEAN NOT NULL DEFAULT TRUE,
           last_login TIMESTAMP,
           created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
           updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
       )''',
    '''CREATE TABLE IF NOT EXISTS courses (
           id SERIAL PRIMARY KEY,
           name TEXT NOT NULL,
           code TEXT UNIQUE NOT NULL,
           duration INTEGER NOT NULL DEFAULT 3
       )''',
    '''CREATE TABLE IF NOT EXISTS classes (
           id SERIAL PRIMARY KEY,
           class_name TEXT NOT NULL,
           course_id INTEGER NOT NULL REFERENCES courses(id),
           form INTEGER NOT NULL,
           semester INTEGER NOT NULL DEFAULT 1,
           stream TEXT,
           academic_year TEXT NOT NULL,
           capacity INTEGER NOT NULL DEFAULT 40,
           is_active BOOLEAN NOT NULL DEFAULT TRUE,
           created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
       )''',
    '''CREATE TABLE IF NOT EXISTS subjects (
           id SERIAL PRIMARY KEY,
           name TEXT NOT NULL,
           code TEXT UNIQUE NOT NULL,
           course_id INTEGER REFERENCES courses(id),
           is_core BOOLEAN NOT NULL DEFAULT FALSE,
           is_active BOOLEAN NOT NULL DEFAULT TRUE
       )''',
    '''CREATE TABLE IF NOT EXISTS class_subjects (
           id SERIAL PRIMARY KEY,
           class_id INTEGER NOT NULL REFERENCES classes(id) ON DELETE CASCADE,
           subject_id INTEGER NOT NULL REFERENCES subjects(id) ON DELETE CASCADE,
           is_elective BOOLEAN NOT NULL DEFAULT FALSE,
           UNIQUE(class_id, subject_id)
       )''',
    '''CREATE TABLE IF NOT EXISTS students (
           id SERIAL PRIMARY KEY,
           user_id INTEGER UNIQUE REFERENCES users(id) ON DELETE CASCADE,
           student_id TEXT UNIQUE NOT NULL,
           admission_number TEXT UNIQUE NOT NULL,
           course_id INTEGER REFERENCES courses(id),
           current_class_id INTEGER REFERENCES classes(id),
           surname TEXT NOT NULL,
           other_names TEXT NOT NULL,
           date_of_birth DATE,
           gender TEXT,
           nationality TEXT,
           hometown TEXT,
           guardian_name TEXT,
           guardian_phone TEXT,
           guardian_email TEXT,
           guardian_address TEXT,
           previous_school TEXT,
           enrollment_date DATE,
           residential_status TEXT DEFAULT 'Day Student',
           house_preference TEXT,
           is_active BOOLEAN NOT NULL DEFAULT TRUE,
           created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
           updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
       )''',
    '''CREATE TABLE IF NOT EXISTS student_subjects (
           id SERIAL PRIMARY KEY,
           student_id INTEGER NOT NULL REFERENCES students(id) ON DELETE CASCADE,
           subject_id INTEGER NOT NULL REFERENCES subjects(id) ON DELETE CASCADE,
           academic_year TEXT NOT NULL,
           is_active BOOLEAN NOT NULL DEFAULT TRUE,
           UNIQUE(student_id, subject_id, academic_year)
       )''',
    '''CREATE TABLE IF NOT EXISTS teachers (
           id SERIAL PRIMARY KEY,
           user_id INTEGER UNIQUE REFERENCES users(id) ON DELETE CASCADE,
           teacher_id TEXT UNIQUE NOT NULL,
           staff_id TEXT,
           surname TEXT NOT NULL,
           other_names TEXT NOT NULL,
           gender TEXT,
           email TEXT,
           phone TEXT,
           department TEXT,
           is_active BOOLEAN NOT NULL DEFAULT TRUE,
           created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
           updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
       )''',
    '''CREATE TABLE IF NOT EXISTS teacher_subjects (
           id SERIAL PRIMARY KEY,
           teacher_id INTEGER NOT NULL REFERENCES teachers(id) ON DELETE CASCADE,
           subject_id INTEGER NOT NULL REFERENCES subjects(id) ON DELETE CASCADE,
           class_id INTEGER NOT NULL REFERENCES classes(id) ON DELETE CASCADE,
           academic_year TEXT NOT NULL,
           is_active BOOLEAN NOT NULL DEFAULT TRUE,
           UNIQUE(teacher_id, subject_id, class_id, academic_year)
       )''',
    '''CREATE TABLE IF NOT EXISTS student_results (
           id SERIAL PRIMARY KEY,
           student_id INTEGER NOT NULL REFERENCES students(id) ON DELETE CASCADE,
           subject_id INTEGER NOT NULL REFERENCES subjects(id),
           class_id INTEGER REFERENCES classes(id) ON DELETE SET NULL,
           academic_year TEXT NOT NULL,
           term INTEGER NOT NULL,
           class_score NUMERIC(5, 1) NOT NULL DEFAULT 0,
           exam_score NUMERIC(5, 1) NOT NULL DEFAULT 0,
           total_score NUMERIC(5, 1) NOT NULL DEFAULT 0,
           grade TEXT NOT NULL,
           remarks TEXT,
           is_active BOOLEAN NOT NULL DEFAULT TRUE,
           created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
           updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
           UNIQUE(student_id, subject_id, academic_year, term)
       )''',
    '''CREATE TABLE IF NOT EXISTS announcements (
           id SERIAL PRIMARY KEY,
           title TEXT NOT NULL,
           content TEXT NOT NULL,
           created_by INTEGER REFERENCES users(id),
           target_class_id INTEGER REFERENCES classes(id) ON DELETE CASCADE,
           is_published BOOLEAN NOT NULL DEFAULT TRUE,
           created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
           updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
       )''',
    '''CREATE TABLE IF NOT EXISTS timetables (
           id SERIAL PRIMARY KEY,
           class_id INTEGER NOT NULL REFERENCES classes(id) ON DELETE CASCADE,
           file_name TEXT NOT NULL,
           file_path TEXT NOT NULL,
           file_type TEXT,
           academic_year TEXT NOT NULL,
           uploaded_by INTEGER REFERENCES users(id),
           is_active BOOLEAN NOT NULL DEFAULT TRUE,
           created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
           updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
       )''',
    '''CREATE TABLE IF NOT EXISTS timetable_entries (
           id SERIAL PRIMARY KEY,
           day TEXT NOT NULL,
           time_slot TEXT NOT NULL,
           class_id INTEGER NOT NULL REFERENCES classes(id) ON DELETE CASCADE,
           subject_id INTEGER NOT NULL REFERENCES subjects(id),
           teacher_id INTEGER NOT NULL REFERENCES teachers(id),
           academic_year TEXT NOT NULL,
           is_active BOOLEAN NOT NULL DEFAULT TRUE,
           created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
           updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
       )''',
    '''CREATE TABLE IF NOT EXISTS student_behavior_records (
           id SERIAL PRIMARY KEY,
           student_id INTEGER NOT NULL REFERENCES students(id) ON DELETE CASCADE,
           recorded_by INTEGER REFERENCES teachers(id) ON DELETE SET NULL,
           date DATE NOT NULL,
           type TEXT NOT NULL,
           description TEXT NOT NULL,
           status TEXT DEFAULT 'open',
           is_active BOOLEAN NOT NULL DEFAULT TRUE,
           created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
           updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
       )''',
    '''CREATE TABLE IF NOT EXISTS assignment_types (
           id SERIAL PRIMARY KEY,
           name TEXT NOT NULL UNIQUE,
           description TEXT,
           created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
       )''',
    '''INSERT INTO assignment_types (name, description) VALUES
           ('Classwork', 'In-class assignments'),
           ('Homework', 'Take-home assignments'),
           ('Project', 'Student projects'),
           ('Class Test', 'Class tests'),
           ('Midsem Exam', 'Mid-semester examinations'),
           ('Exam', 'End-of-semester examinations')
       ON CONFLICT (name) DO NOTHING''',
    '''CREATE TABLE IF NOT EXISTS assignments (
           id SERIAL PRIMARY KEY,
           teacher_id INTEGER REFERENCES teachers(id) ON DELETE CASCADE,
           class_id INTEGER NOT NULL REFERENCES classes(id) ON DELETE CASCADE,
           subject_id INTEGER NOT NULL REFERENCES subjects(id) ON DELETE CASCADE,
           title TEXT NOT NULL,
           description TEXT,
           assignment_type_id INTEGER REFERENCES assignment_types(id),
           due_date DATE,
           max_score NUMERIC(5,2) DEFAULT 100.00,
           is_active BOOLEAN NOT NULL DEFAULT TRUE,
           created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
           updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
       )''',
    '''CREATE TABLE IF NOT EXISTS assignment_submissions (
           id SERIAL PRIMARY KEY,
           assignment_id INTEGER NOT NULL REFERENCES assignments(id) ON DELETE CASCADE,
           student_id INTEGER NOT NULL REFERENCES students(id) ON DELETE CASCADE,
           submission_date TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
           file_path TEXT,
           score NUMERIC(5,2),
           remarks TEXT,
           graded_by INTEGER REFERENCES teachers(id),
           graded_date TIMESTAMP,
           is_active BOOLEAN NOT NULL DEFAULT TRUE,
           created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
           updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
           UNIQUE (assignment_id, student_id)
       )''',
    '''CREATE TABLE IF NOT EXISTS teacher_messages (
           id SERIAL PRIMARY KEY,
           teacher_id INTEGER NOT NULL REFERENCES teachers(id) ON DELETE CASCADE,
           class_id INTEGER REFERENCES classes(id) ON DELETE CASCADE,
           subject_id INTEGER REFERENCES subjects(id) ON DELETE CASCADE,
           title TEXT NOT NULL,
           content TEXT NOT NULL,
           is_private BOOLEAN NOT NULL DEFAULT FALSE,
           recipient_student_id INTEGER REFERENCES students(id) ON DELETE CASCADE,
           is_active BOOLEAN NOT NULL DEFAULT TRUE,
           created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
           updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
       )''',
    'CREATE INDEX IF NOT EXISTS idx_classes_period ON classes(course_id, form, semester)',
    'CREATE INDEX IF NOT EXISTS idx_students_class ON students(current_class_id)',
    'CREATE INDEX IF NOT EXISTS idx_results_class_subject ON student_results(class_id, subject_id, academic_year, term)',
    'CREATE INDEX IF NOT EXISTS idx_timetable_entries_slot ON timetable_entries(academic_year, day, time_slot)',
    'CREATE INDEX IF NOT EXISTS idx_assignments_class ON assignments(class_id)',
]


def init_db(client):
    """Create all required tables in PostgreSQL if they don't exist."""
    with client.transaction() as c:
        for statement in SCHEMA_STATEMENTS:
            db_execute(c, statement)
    logger.info("Database schema initialized (%d statements).", len(SCHEMA_STATEMENTS))


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
    init_db(create_client())
