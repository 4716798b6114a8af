"""Initial schema for the school portal.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op


# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create all tables and indexes for the school portal."""

    # Login accounts: admin, teacher, student
    op.execute('''CREATE TABLE IF NOT EXISTS users (
                    id SERIAL PRIMARY KEY,
                    user_id TEXT UNIQUE NOT NULL,
                    user_type TEXT NOT NULL DEFAULT 'student',
                    password_hash TEXT NOT NULL,
                    must_change_password BOOLEAN NOT NULL DEFAULT TRUE,
                    is_active BOOLEAN NOT NULL DEFAULT TRUE,
                    last_login TIMESTAMP,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS courses (
                    id SERIAL PRIMARY KEY,
                    name TEXT NOT NULL,
                    code TEXT UNIQUE NOT NULL,
                    duration INTEGER NOT NULL DEFAULT 3
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS classes (
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
                )''')

    # course_id NULL marks a subject shared by every course
    op.execute('''CREATE TABLE IF NOT EXISTS subjects (
                    id SERIAL PRIMARY KEY,
                    name TEXT NOT NULL,
                    code TEXT UNIQUE NOT NULL,
                    course_id INTEGER REFERENCES courses(id),
                    is_core BOOLEAN NOT NULL DEFAULT FALSE,
                    is_active BOOLEAN NOT NULL DEFAULT TRUE
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS class_subjects (
                    id SERIAL PRIMARY KEY,
                    class_id INTEGER NOT NULL REFERENCES classes(id) ON DELETE CASCADE,
                    subject_id INTEGER NOT NULL REFERENCES subjects(id) ON DELETE CASCADE,
                    is_elective BOOLEAN NOT NULL DEFAULT FALSE,
                    UNIQUE(class_id, subject_id)
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS students (
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
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS student_subjects (
                    id SERIAL PRIMARY KEY,
                    student_id INTEGER NOT NULL REFERENCES students(id) ON DELETE CASCADE,
                    subject_id INTEGER NOT NULL REFERENCES subjects(id) ON DELETE CASCADE,
                    academic_year TEXT NOT NULL,
                    is_active BOOLEAN NOT NULL DEFAULT TRUE,
                    UNIQUE(student_id, subject_id, academic_year)
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS teachers (
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
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS teacher_subjects (
                    id SERIAL PRIMARY KEY,
                    teacher_id INTEGER NOT NULL REFERENCES teachers(id) ON DELETE CASCADE,
                    subject_id INTEGER NOT NULL REFERENCES subjects(id) ON DELETE CASCADE,
                    class_id INTEGER NOT NULL REFERENCES classes(id) ON DELETE CASCADE,
                    academic_year TEXT NOT NULL,
                    is_active BOOLEAN NOT NULL DEFAULT TRUE,
                    UNIQUE(teacher_id, subject_id, class_id, academic_year)
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS student_results (
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
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS announcements (
                    id SERIAL PRIMARY KEY,
                    title TEXT NOT NULL,
                    content TEXT NOT NULL,
                    created_by INTEGER REFERENCES users(id),
                    target_class_id INTEGER REFERENCES classes(id) ON DELETE CASCADE,
                    is_published BOOLEAN NOT NULL DEFAULT TRUE,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS timetables (
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
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS timetable_entries (
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
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS student_behavior_records (
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
                )''')

    # Indexes
    op.execute('CREATE INDEX IF NOT EXISTS idx_classes_period ON classes(course_id, form, semester)')
    op.execute('CREATE INDEX IF NOT EXISTS idx_students_class ON students(current_class_id)')
    op.execute('CREATE INDEX IF NOT EXISTS idx_results_class_subject ON student_results(class_id, subject_id, academic_year, term)')
    op.execute('CREATE INDEX IF NOT EXISTS idx_timetable_entries_slot ON timetable_entries(academic_year, day, time_slot)')


def downgrade() -> None:
    """Drop all tables (destructive)."""
    op.execute('DROP TABLE IF EXISTS student_behavior_records CASCADE')
    op.execute('DROP TABLE IF EXISTS timetable_entries CASCADE')
    op.execute('DROP TABLE IF EXISTS timetables CASCADE')
    op.execute('DROP TABLE IF EXISTS announcements CASCADE')
    op.execute('DROP TABLE IF EXISTS student_results CASCADE')
    op.execute('DROP TABLE IF EXISTS teacher_subjects CASCADE')
    op.execute('DROP TABLE IF EXISTS teachers CASCADE')
    op.execute('DROP TABLE IF EXISTS student_subjects CASCADE')
    op.execute('DROP TABLE IF EXISTS students CASCADE')
    op.execute('DROP TABLE IF EXISTS class_subjects CASCADE')
    op.execute('DROP TABLE IF EXISTS subjects CASCADE')
    op.execute('DROP TABLE IF EXISTS classes CASCADE')
    op.execute('DROP TABLE IF EXISTS courses CASCADE')
    op.execute('DROP TABLE IF EXISTS users CASCADE')
