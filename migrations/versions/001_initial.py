"""Initial schema for the teacher portal.

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
    """Create all tables and indexes for the teacher portal."""

    op.execute('''CREATE TABLE IF NOT EXISTS teachers (
                    id SERIAL PRIMARY KEY,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS classes (
                    id SERIAL PRIMARY KEY,
                    teacher_id INTEGER NOT NULL REFERENCES teachers(id) ON DELETE CASCADE,
                    name TEXT NOT NULL CHECK (name IN ('Form 1', 'Form 2', 'Form 3', 'Form 4')),
                    stream TEXT,
                    year INTEGER NOT NULL,
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS students (
                    id SERIAL PRIMARY KEY,
                    class_id INTEGER NOT NULL REFERENCES classes(id) ON DELETE CASCADE,
                    admission_number TEXT NOT NULL,
                    full_name TEXT NOT NULL,
                    gender TEXT NOT NULL CHECK (gender IN ('Male', 'Female')),
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE (class_id, admission_number)
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS subjects (
                    id SERIAL PRIMARY KEY,
                    class_id INTEGER NOT NULL REFERENCES classes(id) ON DELETE CASCADE,
                    name TEXT NOT NULL,
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE (class_id, name)
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS exam_types (
                    id SERIAL PRIMARY KEY,
                    teacher_id INTEGER NOT NULL REFERENCES teachers(id) ON DELETE CASCADE,
                    name TEXT NOT NULL,
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE (teacher_id, name)
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS attendance (
                    id SERIAL PRIMARY KEY,
                    student_id INTEGER NOT NULL REFERENCES students(id) ON DELETE CASCADE,
                    class_id INTEGER NOT NULL REFERENCES classes(id) ON DELETE CASCADE,
                    date TEXT NOT NULL,
                    status TEXT NOT NULL CHECK (status IN ('present', 'absent')),
                    reason TEXT,
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE (student_id, date)
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS marks (
                    id SERIAL PRIMARY KEY,
                    student_id INTEGER NOT NULL REFERENCES students(id) ON DELETE CASCADE,
                    subject_id INTEGER NOT NULL REFERENCES subjects(id) ON DELETE CASCADE,
                    class_id INTEGER NOT NULL REFERENCES classes(id) ON DELETE CASCADE,
                    exam_type TEXT NOT NULL,
                    term TEXT NOT NULL CHECK (term IN ('Term 1', 'Term 2', 'Term 3')),
                    score REAL NOT NULL CHECK (score >= 0 AND score <= 100),
                    out_of REAL NOT NULL DEFAULT 100,
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE (student_id, subject_id, exam_type, term)
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS grade_settings (
                    id SERIAL PRIMARY KEY,
                    teacher_id INTEGER NOT NULL UNIQUE REFERENCES teachers(id) ON DELETE CASCADE,
                    a_min REAL NOT NULL DEFAULT 80,
                    a_minus_min REAL NOT NULL DEFAULT 75,
                    b_plus_min REAL NOT NULL DEFAULT 70,
                    b_min REAL NOT NULL DEFAULT 65,
                    b_minus_min REAL NOT NULL DEFAULT 60,
                    c_plus_min REAL NOT NULL DEFAULT 55,
                    c_min REAL NOT NULL DEFAULT 50,
                    c_minus_min REAL NOT NULL DEFAULT 45,
                    d_plus_min REAL NOT NULL DEFAULT 40,
                    d_min REAL NOT NULL DEFAULT 35,
                    d_minus_min REAL NOT NULL DEFAULT 30,
                    e_min REAL NOT NULL DEFAULT 0,
                    average_multiplier REAL NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS timetable_lessons (
                    id SERIAL PRIMARY KEY,
                    class_id INTEGER NOT NULL REFERENCES classes(id) ON DELETE CASCADE,
                    subject_id INTEGER REFERENCES subjects(id) ON DELETE SET NULL,
                    day_of_week TEXT NOT NULL CHECK (day_of_week IN ('Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday')),
                    start_time TEXT NOT NULL,
                    end_time TEXT NOT NULL,
                    attended INTEGER,
                    reason TEXT,
                    compensated INTEGER NOT NULL DEFAULT 0,
                    compensation_note TEXT,
                    compensation_date TEXT,
                    compensation_for_lesson_id INTEGER REFERENCES timetable_lessons(id) ON DELETE SET NULL,
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS timetable_history (
                    id SERIAL PRIMARY KEY,
                    class_id INTEGER NOT NULL REFERENCES classes(id) ON DELETE CASCADE,
                    lesson_id INTEGER REFERENCES timetable_lessons(id) ON DELETE SET NULL,
                    subject_id INTEGER REFERENCES subjects(id) ON DELETE SET NULL,
                    day_of_week TEXT NOT NULL,
                    start_time TEXT NOT NULL,
                    end_time TEXT NOT NULL,
                    status TEXT NOT NULL CHECK (status IN ('attended', 'not_attended')),
                    reason TEXT,
                    recorded_at TEXT NOT NULL
                )''')

    op.execute('''CREATE TABLE IF NOT EXISTS teacher_notes (
                    id SERIAL PRIMARY KEY,
                    teacher_id INTEGER NOT NULL REFERENCES teachers(id) ON DELETE CASCADE,
                    class_id INTEGER NOT NULL REFERENCES classes(id) ON DELETE CASCADE,
                    title TEXT NOT NULL,
                    content_html TEXT NOT NULL,
                    due_date TEXT,
                    is_completed INTEGER NOT NULL DEFAULT 0,
                    completed_at TEXT,
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                )''')

    # Indexes
    op.execute('CREATE INDEX IF NOT EXISTS idx_classes_teacher ON classes(teacher_id)')
    op.execute('CREATE INDEX IF NOT EXISTS idx_students_class ON students(class_id)')
    op.execute('CREATE INDEX IF NOT EXISTS idx_attendance_class_date ON attendance(class_id, date)')
    op.execute('CREATE INDEX IF NOT EXISTS idx_marks_class ON marks(class_id)')
    op.execute('CREATE INDEX IF NOT EXISTS idx_lessons_class_day ON timetable_lessons(class_id, day_of_week)')
    op.execute('CREATE INDEX IF NOT EXISTS idx_history_class_recorded ON timetable_history(class_id, recorded_at)')
    op.execute('CREATE INDEX IF NOT EXISTS idx_notes_teacher_class ON teacher_notes(teacher_id, class_id)')
    op.execute('''CREATE UNIQUE INDEX IF NOT EXISTS uq_timetable_lessons_slot
                  ON timetable_lessons(class_id, day_of_week, start_time, end_time)''')


def downgrade() -> None:
    """Drop all tables (destructive)."""
    op.execute('DROP TABLE IF EXISTS teacher_notes CASCADE')
    op.execute('DROP TABLE IF EXISTS timetable_history CASCADE')
    op.execute('DROP TABLE IF EXISTS timetable_lessons CASCADE')
    op.execute('DROP TABLE IF EXISTS grade_settings CASCADE')
    op.execute('DROP TABLE IF EXISTS marks CASCADE')
    op.execute('DROP TABLE IF EXISTS attendance CASCADE')
    op.execute('DROP TABLE IF EXISTS exam_types CASCADE')
    op.execute('DROP TABLE IF EXISTS subjects CASCADE')
    op.execute('DROP TABLE IF EXISTS students CASCADE')
    op.execute('DROP TABLE IF EXISTS classes CASCADE')
    op.execute('DROP TABLE IF EXISTS teachers CASCADE')
