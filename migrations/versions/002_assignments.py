"""Assignments, submissions and teacher messages.

Revision ID: 002_assignments
Revises: 001_initial
Create Date: 2026-10-19 12:00:00.000000

"""
from alembic import op


# revision identifiers, used by Alembic.
revision = '002_assignments'
down_revision = '001_initial'
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create the coursework tables and seed the assignment types."""
    op.execute('''CREATE TABLE IF NOT EXISTS assignment_types (
           id SERIAL PRIMARY KEY,
           name TEXT NOT NULL UNIQUE,
           description TEXT,
           created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
       )''')
    op.execute('''INSERT INTO assignment_types (name, description) VALUES
           ('Classwork', 'In-class assignments'),
           ('Homework', 'Take-home assignments'),
           ('Project', 'Student projects'),
           ('Class Test', 'Class tests'),
           ('Midsem Exam', 'Mid-semester examinations'),
           ('Exam', 'End-of-semester examinations')
       ON CONFLICT (name) DO NOTHING''')
    op.execute('''CREATE TABLE IF NOT EXISTS assignments (
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
       )''')
    op.execute('''CREATE TABLE IF NOT EXISTS assignment_submissions (
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
       )''')
    op.execute('''CREATE TABLE IF NOT EXISTS teacher_messages (
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
       )''')
    op.execute('CREATE INDEX IF NOT EXISTS idx_assignments_class ON assignments(class_id)')


def downgrade() -> None:
    op.execute('DROP TABLE IF EXISTS teacher_messages CASCADE')
    op.execute('DROP TABLE IF EXISTS assignment_submissions CASCADE')
    op.execute('DROP TABLE IF EXISTS assignments CASCADE')
    op.execute('DROP TABLE IF EXISTS assignment_types CASCADE')
