"""
Teacher Portal API

A Flask JSON API for secondary-school teachers to manage their classes,
students, attendance, exam marks, grade scale, weekly timetable and
reminder notes. Every query is scoped to the authenticated teacher.
"""

from flask import Flask, request, jsonify, g
from flask_cors import CORS
from werkzeug.exceptions import HTTPException
from werkzeug.security import generate_password_hash, check_password_hash
import jwt

import math
import os
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, timedelta, timezone
from functools import wraps

import logging
from dotenv import load_dotenv

import grading
import scheduling
from forms import (
    ClassForm,
    CompensationForm,
    ExamTypeForm,
    LessonForm,
    LoginForm,
    NoteForm,
    ProfileForm,
    RegisterForm,
    StudentForm,
    SubjectForm,
    GENDERS,
    clean_text,
)

load_dotenv()

app = Flask(__name__)
ALLOW_INSECURE_DEFAULTS = os.environ.get('ALLOW_INSECURE_DEFAULTS', '').strip().lower() in ('1', 'true', 'yes')
secret_key = os.environ.get('SECRET_KEY')
if not secret_key:
    if ALLOW_INSECURE_DEFAULTS:
        # Explicitly opt-in fallback for local/dev only.
        secret_key = 'dev-secret-key-change-me-dev-secret-key'
    else:
        raise RuntimeError("SECRET_KEY is required in production. Set SECRET_KEY or enable ALLOW_INSECURE_DEFAULTS for local development.")
if not ALLOW_INSECURE_DEFAULTS and len(secret_key) < 32:
    raise RuntimeError("SECRET_KEY is too short. Use at least 32 characters in production.")
app.secret_key = secret_key
app.config['WTF_CSRF_ENABLED'] = False

JWT_SECRET = (os.environ.get('JWT_SECRET') or '').strip() or secret_key
JWT_ALGORITHM = 'HS256'
try:
    JWT_EXPIRES_DAYS = max(1, int(os.environ.get('JWT_EXPIRES_DAYS', '7')))
except ValueError:
    raise RuntimeError("JWT_EXPIRES_DAYS must be a whole number of days.")

DATABASE_URL = os.environ.get('DATABASE_URL', '').strip()
if DATABASE_URL.startswith(('postgres://', 'postgresql://')):
    DB_BACKEND = 'postgres'
    PK_COLUMN_SQL = 'SERIAL PRIMARY KEY'
elif DATABASE_URL.startswith('sqlite:///'):
    DB_BACKEND = 'sqlite'
    PK_COLUMN_SQL = 'INTEGER PRIMARY KEY AUTOINCREMENT'
    SQLITE_PATH = DATABASE_URL[len('sqlite:///'):]
else:
    raise RuntimeError("DATABASE_URL must be a postgresql:// or sqlite:/// connection string.")

CORS_ORIGINS = [o.strip() for o in os.environ.get('CORS_ORIGINS', '*').split(',') if o.strip()] or ['*']
CORS(app, resources={r'/api/*': {'origins': CORS_ORIGINS}})

DEFAULT_EXAM_TYPES = ['Opener', 'CAT', 'Mid-Term', 'End-Term']
TERMS = ('Term 1', 'Term 2', 'Term 3')
ATTENDANCE_STATUSES = ('present', 'absent')

# Ids are 32-bit SERIAL columns on PostgreSQL; larger route ids cannot exist.
MAX_ROW_ID = 2**31 - 1
NOT_FOUND_MESSAGES = {
    'class_id': 'Class not found',
    'student_id': 'Student not found.',
    'subject_id': 'Subject not found.',
    'exam_type_id': 'Exam type not found.',
    'lesson_id': 'Lesson not found.',
    'note_id': 'Reminder note not found.',
}

# Set up logging
logging.basicConfig(filename=os.environ.get('LOG_FILE', 'app.log'), level=logging.INFO,
                    format='%(asctime)s - %(levelname)s - %(message)s')
if ALLOW_INSECURE_DEFAULTS:
    logging.warning("ALLOW_INSECURE_DEFAULTS is enabled. Development-only fallbacks may be active.")

# ==================== ERRORS ====================

class ApiError(Exception):
    """Error with a message that is safe to show to the client."""
    status_code = 400

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InvalidInput(ApiError):
    status_code = 400


class RuleViolation(ApiError):
    status_code = 400


class AuthError(ApiError):
    status_code = 401


class NotFoundError(ApiError):
    status_code = 404


class ConflictError(ApiError):
    status_code = 409


def error_response(status_code, message):
    return jsonify({'error': message}), status_code

# ==================== DATABASE ====================

def _adapt_query(query):
    if DB_BACKEND == 'postgres':
        return query.replace('?', '%s')
    return query

def db_execute(cursor, query, params=None):
    if params is None:
        return cursor.execute(_adapt_query(query))
    return cursor.execute(_adapt_query(query), params)

def get_db():
    """Open a connection for the configured backend."""
    if DB_BACKEND == 'sqlite':
        conn = sqlite3.connect(SQLITE_PATH, timeout=10)
        conn.row_factory = sqlite3.Row
        conn.execute('PRAGMA foreign_keys = ON')
        return conn
    try:
        import psycopg2
        from psycopg2.extras import DictCursor
    except ImportError as exc:
        raise RuntimeError("PostgreSQL backend requires psycopg2-binary") from exc
    return psycopg2.connect(DATABASE_URL, cursor_factory=DictCursor, connect_timeout=10)

@contextmanager
def db_connection(commit=False):
    """Connection scoped to one operation; everything rolls back on error."""
    conn = get_db()
    try:
        yield conn
        if commit:
            conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()

def row_to_dict(row):
    if row is None:
        return None
    return {key: row[key] for key in row.keys()}

def fetch_one(c, query, params=None):
    db_execute(c, query, params)
    return row_to_dict(c.fetchone())

def fetch_all(c, query, params=None):
    db_execute(c, query, params)
    return [row_to_dict(row) for row in c.fetchall()]

def insert_returning_id(c, query, params):
    """Run an INSERT and return the new row id on either backend."""
    if DB_BACKEND == 'postgres':
        db_execute(c, query + ' RETURNING id', params)
        return c.fetchone()[0]
    db_execute(c, query, params)
    return c.lastrowid

def is_unique_violation(exc):
    if getattr(exc, 'pgcode', None) == '23505':
        return True
    return isinstance(exc, sqlite3.IntegrityError) and 'UNIQUE constraint failed' in str(exc)

def now_iso():
    return datetime.now().isoformat()

def init_db():
    """Create all tables and indexes when they do not exist yet."""
    pk = PK_COLUMN_SQL
    statements = [
        f'''CREATE TABLE IF NOT EXISTS teachers (
                id {pk},
                name TEXT NOT NULL,
                email TEXT NOT NULL UNIQUE,
                password_hash TEXT NOT NULL,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            )''',
        f'''CREATE TABLE IF NOT EXISTS classes (
                id {pk},
                teacher_id INTEGER NOT NULL REFERENCES teachers(id) ON DELETE CASCADE,
                name TEXT NOT NULL CHECK (name IN ('Form 1', 'Form 2', 'Form 3', 'Form 4')),
                stream TEXT,
                year INTEGER NOT NULL,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            )''',
        f'''CREATE TABLE IF NOT EXISTS students (
                id {pk},
                class_id INTEGER NOT NULL REFERENCES classes(id) ON DELETE CASCADE,
                admission_number TEXT NOT NULL,
                full_name TEXT NOT NULL,
                gender TEXT NOT NULL CHECK (gender IN ('Male', 'Female')),
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                UNIQUE (class_id, admission_number)
            )''',
        f'''CREATE TABLE IF NOT EXISTS subjects (
                id {pk},
                class_id INTEGER NOT NULL REFERENCES classes(id) ON DELETE CASCADE,
                name TEXT NOT NULL,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                UNIQUE (class_id, name)
            )''',
        f'''CREATE TABLE IF NOT EXISTS exam_types (
                id {pk},
                teacher_id INTEGER NOT NULL REFERENCES teachers(id) ON DELETE CASCADE,
                name TEXT NOT NULL,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                UNIQUE (teacher_id, name)
            )''',
        f'''CREATE TABLE IF NOT EXISTS attendance (
                id {pk},
                student_id INTEGER NOT NULL REFERENCES students(id) ON DELETE CASCADE,
                class_id INTEGER NOT NULL REFERENCES classes(id) ON DELETE CASCADE,
                date TEXT NOT NULL,
                status TEXT NOT NULL CHECK (status IN ('present', 'absent')),
                reason TEXT,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                UNIQUE (student_id, date)
            )''',
        f'''CREATE TABLE IF NOT EXISTS marks (
                id {pk},
                student_id INTEGER NOT NULL REFERENCES students(id) ON DELETE CASCADE,
                subject_id INTEGER NOT NULL REFERENCES subjects(id) ON DELETE CASCADE,
                class_id INTEGER NOT NULL REFERENCES classes(id) ON DELETE CASCADE,
                exam_type TEXT NOT NULL,
                term TEXT NOT NULL CHECK (term IN ('Term 1', 'Term 2', 'Term 3')),
                score REAL NOT NULL CHECK (score >= 0 AND score <= 100),
                out_of REAL NOT NULL DEFAULT 100,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                UNIQUE (student_id, subject_id, exam_type, term)
            )''',
        f'''CREATE TABLE IF NOT EXISTS grade_settings (
                id {pk},
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
            )''',
        f'''CREATE TABLE IF NOT EXISTS timetable_lessons (
                id {pk},
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
            )''',
        f'''CREATE TABLE IF NOT EXISTS timetable_history (
                id {pk},
                class_id INTEGER NOT NULL REFERENCES classes(id) ON DELETE CASCADE,
                lesson_id INTEGER REFERENCES timetable_lessons(id) ON DELETE SET NULL,
                subject_id INTEGER REFERENCES subjects(id) ON DELETE SET NULL,
                day_of_week TEXT NOT NULL,
                start_time TEXT NOT NULL,
                end_time TEXT NOT NULL,
                status TEXT NOT NULL CHECK (status IN ('attended', 'not_attended')),
                reason TEXT,
                recorded_at TEXT NOT NULL
            )''',
        f'''CREATE TABLE IF NOT EXISTS teacher_notes (
                id {pk},
                teacher_id INTEGER NOT NULL REFERENCES teachers(id) ON DELETE CASCADE,
                class_id INTEGER NOT NULL REFERENCES classes(id) ON DELETE CASCADE,
                title TEXT NOT NULL,
                content_html TEXT NOT NULL,
                due_date TEXT,
                is_completed INTEGER NOT NULL DEFAULT 0,
                completed_at TEXT,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            )''',
        'CREATE INDEX IF NOT EXISTS idx_classes_teacher ON classes(teacher_id)',
        'CREATE INDEX IF NOT EXISTS idx_students_class ON students(class_id)',
        'CREATE INDEX IF NOT EXISTS idx_attendance_class_date ON attendance(class_id, date)',
        'CREATE INDEX IF NOT EXISTS idx_marks_class ON marks(class_id)',
        'CREATE INDEX IF NOT EXISTS idx_lessons_class_day ON timetable_lessons(class_id, day_of_week)',
        'CREATE INDEX IF NOT EXISTS idx_history_class_recorded ON timetable_history(class_id, recorded_at)',
        'CREATE INDEX IF NOT EXISTS idx_notes_teacher_class ON teacher_notes(teacher_id, class_id)',
        '''CREATE UNIQUE INDEX IF NOT EXISTS uq_timetable_lessons_slot
           ON timetable_lessons(class_id, day_of_week, start_time, end_time)''',
    ]
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        for statement in statements:
            db_execute(c, statement)

# Initialize database (can be disabled when schema is managed by migrations).
RUN_STARTUP_DDL = os.environ.get('RUN_STARTUP_DDL', '1').strip().lower() in ('1', 'true', 'yes')
if RUN_STARTUP_DDL:
    init_db()
else:
    logging.warning("RUN_STARTUP_DDL is disabled. Ensure schema is already migrated before startup.")

# ==================== HELPERS ====================

def safe_int(value, default):
    """Parse integer safely while preserving valid zero values."""
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default

def parse_iso_date(value, field_label='Date'):
    text = clean_text(value)
    try:
        return date.fromisoformat(text).isoformat()
    except ValueError:
        raise InvalidInput(f'{field_label} must use the YYYY-MM-DD format.')

def request_payload():
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}

def validated(form_class):
    """Bind the JSON body to a form and raise the first validation message."""
    if request.is_json and not isinstance(request.get_json(silent=True), dict):
        raise InvalidInput('Request body must be a JSON object.')
    form = form_class()
    if not form.validate():
        raise InvalidInput(form.first_error())
    return form

def issue_token(teacher):
    now = datetime.now(timezone.utc)
    payload = {
        'sub': str(teacher['id']),
        'email': teacher['email'],
        'iat': now,
        'exp': now + timedelta(days=JWT_EXPIRES_DAYS),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)

def teacher_required(view):
    """Require a valid bearer token and expose the teacher id as g.teacher_id."""
    @wraps(view)
    def wrapped(*args, **kwargs):
        header = request.headers.get('Authorization', '')
        token = header[len('Bearer '):].strip() if header.startswith('Bearer ') else ''
        if not token:
            raise AuthError('Unauthorized')
        try:
            payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
        except jwt.InvalidTokenError:
            raise AuthError('Invalid token')
        teacher_id = safe_int(payload.get('sub'), 0)
        if not 0 < teacher_id <= MAX_ROW_ID or not get_teacher(teacher_id):
            raise AuthError('Invalid token')
        g.teacher_id = teacher_id
        for name, value in kwargs.items():
            if name in NOT_FOUND_MESSAGES and value > MAX_ROW_ID:
                raise NotFoundError(NOT_FOUND_MESSAGES[name])
        return view(*args, **kwargs)
    return wrapped

def lesson_to_json(row):
    row['attended'] = None if row.get('attended') is None else bool(row['attended'])
    row['compensated'] = bool(row.get('compensated'))
    return row

def note_to_json(row):
    row['is_completed'] = bool(row.get('is_completed'))
    return row

# ==================== TEACHERS ====================

def get_teacher(teacher_id):
    with db_connection() as conn:
        c = conn.cursor()
        return fetch_one(c, 'SELECT id, name, email FROM teachers WHERE id = ?', (teacher_id,))

def get_teacher_by_email(email):
    with db_connection() as conn:
        c = conn.cursor()
        return fetch_one(
            c,
            'SELECT id, name, email, password_hash FROM teachers WHERE email = ?',
            ((email or '').strip().lower(),),
        )

def create_teacher(name, email, password):
    """Register a teacher account; duplicate emails are a conflict."""
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        try:
            teacher_id = insert_returning_id(
                c,
                'INSERT INTO teachers (name, email, password_hash) VALUES (?, ?, ?)',
                (name, email, generate_password_hash(password)),
            )
        except Exception as exc:
            if is_unique_violation(exc):
                raise ConflictError('Email already exists') from exc
            raise
    return {'id': teacher_id, 'name': name, 'email': email}

def update_teacher_profile(teacher_id, name, email, password=''):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        try:
            if password:
                db_execute(
                    c,
                    'UPDATE teachers SET name = ?, email = ?, password_hash = ? WHERE id = ?',
                    (name, email, generate_password_hash(password), teacher_id),
                )
            else:
                db_execute(c, 'UPDATE teachers SET name = ?, email = ? WHERE id = ?', (name, email, teacher_id))
        except Exception as exc:
            if is_unique_violation(exc):
                raise ConflictError('Email already exists.') from exc
            raise
    return get_teacher(teacher_id)

def reset_teacher_password(email, password):
    """Set a new password for the teacher with this email. Returns rows updated."""
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(
            c,
            'UPDATE teachers SET password_hash = ? WHERE email = ?',
            (generate_password_hash(password), (email or '').strip().lower()),
        )
        return int(c.rowcount or 0)

# ==================== CLASSES ====================

def get_owned_class_with_cursor(c, teacher_id, class_id):
    row = fetch_one(
        c,
        'SELECT id, teacher_id, name, stream, year, created_at FROM classes WHERE id = ? AND teacher_id = ?',
        (class_id, teacher_id),
    )
    if not row:
        raise NotFoundError('Class not found')
    return row

def get_owned_class(teacher_id, class_id):
    with db_connection() as conn:
        return get_owned_class_with_cursor(conn.cursor(), teacher_id, class_id)

def get_classes(teacher_id):
    with db_connection() as conn:
        c = conn.cursor()
        return fetch_all(
            c,
            '''SELECT c.id, c.teacher_id, c.name, c.stream, c.year, c.created_at,
                      (SELECT COUNT(*) FROM students s WHERE s.class_id = c.id) AS student_count
               FROM classes c
               WHERE c.teacher_id = ?
               ORDER BY c.name, COALESCE(c.stream, '')''',
            (teacher_id,),
        )

def create_class(teacher_id, name, stream, year):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        class_id = insert_returning_id(
            c,
            'INSERT INTO classes (teacher_id, name, stream, year) VALUES (?, ?, ?, ?)',
            (teacher_id, name, stream or None, year),
        )
        return get_owned_class_with_cursor(c, teacher_id, class_id)

def delete_class(teacher_id, class_id):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'DELETE FROM classes WHERE id = ? AND teacher_id = ?', (class_id, teacher_id))
        if not c.rowcount:
            raise NotFoundError('Class not found')

# ==================== STUDENTS ====================

STUDENT_COLUMNS = 'id, class_id, admission_number, full_name, gender, created_at'

def normalize_gender(value):
    text = clean_text(value).lower()
    for gender in GENDERS:
        if text in (gender.lower(), gender[0].lower()):
            return gender
    return ''

def get_students(teacher_id, class_id):
    with db_connection() as conn:
        c = conn.cursor()
        get_owned_class_with_cursor(c, teacher_id, class_id)
        return fetch_all(
            c,
            f'SELECT {STUDENT_COLUMNS} FROM students WHERE class_id = ? ORDER BY full_name',
            (class_id,),
        )

def get_owned_student_with_cursor(c, teacher_id, student_id):
    row = fetch_one(
        c,
        '''SELECT s.id, s.class_id, s.admission_number, s.full_name, s.gender, s.created_at
           FROM students s
           JOIN classes c ON c.id = s.class_id
           WHERE s.id = ? AND c.teacher_id = ?''',
        (student_id, teacher_id),
    )
    if not row:
        raise NotFoundError('Student not found.')
    return row

def create_student(teacher_id, class_id, admission_number, full_name, gender):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        get_owned_class_with_cursor(c, teacher_id, class_id)
        try:
            student_id = insert_returning_id(
                c,
                'INSERT INTO students (class_id, admission_number, full_name, gender) VALUES (?, ?, ?, ?)',
                (class_id, admission_number, full_name, gender),
            )
        except Exception as exc:
            if is_unique_violation(exc):
                raise ConflictError('Admission number already exists in this class.') from exc
            raise
        return fetch_one(c, f'SELECT {STUDENT_COLUMNS} FROM students WHERE id = ?', (student_id,))

def update_student(teacher_id, student_id, admission_number, full_name, gender):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        get_owned_student_with_cursor(c, teacher_id, student_id)
        try:
            db_execute(
                c,
                'UPDATE students SET admission_number = ?, full_name = ?, gender = ? WHERE id = ?',
                (admission_number, full_name, gender, student_id),
            )
        except Exception as exc:
            if is_unique_violation(exc):
                raise ConflictError('Admission number already exists in this class.') from exc
            raise
        return fetch_one(c, f'SELECT {STUDENT_COLUMNS} FROM students WHERE id = ?', (student_id,))

def delete_student(teacher_id, student_id):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        get_owned_student_with_cursor(c, teacher_id, student_id)
        db_execute(c, 'DELETE FROM students WHERE id = ?', (student_id,))

def import_students(teacher_id, class_id, rows):
    """Upsert imported student rows by admission number in one transaction.

    Every row is validated before anything is written.
    """
    if not isinstance(rows, list) or not rows:
        raise InvalidInput('Provide at least one student row to import.')
    cleaned = []
    seen = set()
    for index, row in enumerate(rows, start=1):
        if not isinstance(row, dict):
            raise InvalidInput(f'Row {index}: invalid student row.')
        admission_number = clean_text(row.get('admission_number'))
        full_name = clean_text(row.get('full_name'))
        gender = normalize_gender(row.get('gender'))
        if not admission_number or not full_name or not gender:
            raise InvalidInput(f'Row {index}: admission number, name and gender (Male/Female) are required.')
        if admission_number.lower() in seen:
            raise InvalidInput(f'Row {index}: admission number {admission_number} appears more than once.')
        seen.add(admission_number.lower())
        cleaned.append((admission_number, full_name, gender))

    with db_connection(commit=True) as conn:
        c = conn.cursor()
        get_owned_class_with_cursor(c, teacher_id, class_id)
        db_execute(c, 'SELECT admission_number FROM students WHERE class_id = ?', (class_id,))
        existing = {row[0] for row in c.fetchall()}
        created = updated = 0
        for admission_number, full_name, gender in cleaned:
            db_execute(
                c,
                '''INSERT INTO students (class_id, admission_number, full_name, gender)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(class_id, admission_number) DO UPDATE SET
                     full_name = excluded.full_name,
                     gender = excluded.gender''',
                (class_id, admission_number, full_name, gender),
            )
            if admission_number in existing:
                updated += 1
            else:
                created += 1
    logging.info("Imported students into class %s: %s created, %s updated", class_id, created, updated)
    return {'created': created, 'updated': updated}

def get_class_student_ids_with_cursor(c, class_id):
    db_execute(c, 'SELECT id FROM students WHERE class_id = ?', (class_id,))
    return {int(row[0]) for row in c.fetchall()}

# ==================== SUBJECTS & EXAM TYPES ====================

def get_subjects(teacher_id, class_id):
    with db_connection() as conn:
        c = conn.cursor()
        get_owned_class_with_cursor(c, teacher_id, class_id)
        return fetch_all(
            c,
            'SELECT id, class_id, name, created_at FROM subjects WHERE class_id = ? ORDER BY name',
            (class_id,),
        )

def get_class_subject_with_cursor(c, class_id, subject_id):
    return fetch_one(c, 'SELECT id, class_id, name FROM subjects WHERE id = ? AND class_id = ?', (subject_id, class_id))

def create_subject(teacher_id, class_id, name):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        get_owned_class_with_cursor(c, teacher_id, class_id)
        try:
            subject_id = insert_returning_id(
                c,
                'INSERT INTO subjects (class_id, name) VALUES (?, ?)',
                (class_id, name),
            )
        except Exception as exc:
            if is_unique_violation(exc):
                raise ConflictError('Subject already exists in this class.') from exc
            raise
        return fetch_one(c, 'SELECT id, class_id, name, created_at FROM subjects WHERE id = ?', (subject_id,))

def delete_subject(teacher_id, subject_id):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(
            c,
            '''DELETE FROM subjects
               WHERE id = ?
                 AND class_id IN (SELECT id FROM classes WHERE teacher_id = ?)''',
            (subject_id, teacher_id),
        )
        if not c.rowcount:
            raise NotFoundError('Subject not found.')

def ensure_default_exam_types_with_cursor(c, teacher_id):
    """Seed the default exam types the first time a teacher needs them."""
    db_execute(c, 'SELECT COUNT(*) FROM exam_types WHERE teacher_id = ?', (teacher_id,))
    if int(c.fetchone()[0] or 0) > 0:
        return
    for name in DEFAULT_EXAM_TYPES:
        db_execute(
            c,
            '''INSERT INTO exam_types (teacher_id, name) VALUES (?, ?)
               ON CONFLICT(teacher_id, name) DO NOTHING''',
            (teacher_id, name),
        )

def list_exam_types_with_cursor(c, teacher_id):
    return fetch_all(
        c,
        'SELECT id, name FROM exam_types WHERE teacher_id = ? ORDER BY LOWER(name)',
        (teacher_id,),
    )

def get_exam_types(teacher_id):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        ensure_default_exam_types_with_cursor(c, teacher_id)
        return list_exam_types_with_cursor(c, teacher_id)

def add_exam_type(teacher_id, name):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        ensure_default_exam_types_with_cursor(c, teacher_id)
        db_execute(
            c,
            '''INSERT INTO exam_types (teacher_id, name) VALUES (?, ?)
               ON CONFLICT(teacher_id, name) DO NOTHING''',
            (teacher_id, name),
        )
        return list_exam_types_with_cursor(c, teacher_id)

def delete_exam_type(teacher_id, exam_type_id):
    """Delete an exam type unless saved marks still use it."""
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        entry = fetch_one(
            c,
            'SELECT id, name FROM exam_types WHERE id = ? AND teacher_id = ?',
            (exam_type_id, teacher_id),
        )
        if not entry:
            raise NotFoundError('Exam type not found.')
        db_execute(
            c,
            '''SELECT COUNT(*)
               FROM marks m
               JOIN classes c ON c.id = m.class_id
               WHERE c.teacher_id = ? AND m.exam_type = ?''',
            (teacher_id, entry['name']),
        )
        if int(c.fetchone()[0] or 0) > 0:
            raise RuleViolation('Cannot delete exam type already used in saved marks.')
        db_execute(c, 'DELETE FROM exam_types WHERE id = ? AND teacher_id = ?', (exam_type_id, teacher_id))
        return list_exam_types_with_cursor(c, teacher_id)

# ==================== ATTENDANCE ====================

def get_attendance(teacher_id, class_id, day):
    with db_connection() as conn:
        c = conn.cursor()
        get_owned_class_with_cursor(c, teacher_id, class_id)
        return fetch_all(
            c,
            'SELECT student_id, status, reason FROM attendance WHERE class_id = ? AND date = ?',
            (class_id, day),
        )

def get_attendance_history(teacher_id, class_id):
    with db_connection() as conn:
        c = conn.cursor()
        get_owned_class_with_cursor(c, teacher_id, class_id)
        rows = fetch_all(
            c,
            '''SELECT date,
                      COUNT(*) AS total_students,
                      SUM(CASE WHEN status = 'present' THEN 1 ELSE 0 END) AS present_count,
                      SUM(CASE WHEN status = 'absent' THEN 1 ELSE 0 END) AS absent_count
               FROM attendance
               WHERE class_id = ?
               GROUP BY date
               ORDER BY date DESC''',
            (class_id,),
        )
    for row in rows:
        total = int(row['total_students'] or 0)
        present = int(row['present_count'] or 0)
        row['total_students'] = total
        row['present_count'] = present
        row['absent_count'] = int(row['absent_count'] or 0)
        row['attendance_rate'] = grading.round1(present * 100.0 / total if total else 0)
    return rows

def save_attendance(teacher_id, class_id, day, records):
    """Upsert one attendance row per (student, date) for the whole batch.

    Validation failures reject the batch before anything is written; a
    database error rolls back every row of the batch.
    """
    if not isinstance(records, list):
        raise InvalidInput('Records must be a list.')
    cleaned = []
    for record in records:
        if not isinstance(record, dict):
            raise InvalidInput('Each attendance record must be an object.')
        student_id = safe_int(record.get('student_id'), 0)
        status = clean_text(record.get('status')).lower()
        if not student_id:
            raise InvalidInput('Each attendance record needs a student_id.')
        if status not in ATTENDANCE_STATUSES:
            raise InvalidInput(f'Invalid attendance status for student {student_id}.')
        # Reasons only apply to absences; present clears any earlier reason.
        reason = (clean_text(record.get('reason')) or None) if status == 'absent' else None
        cleaned.append((student_id, status, reason))

    with db_connection(commit=True) as conn:
        c = conn.cursor()
        get_owned_class_with_cursor(c, teacher_id, class_id)
        class_students = get_class_student_ids_with_cursor(c, class_id)
        for student_id, _status, _reason in cleaned:
            if student_id not in class_students:
                raise InvalidInput(f'Student {student_id} does not belong to this class.')
        for student_id, status, reason in cleaned:
            db_execute(
                c,
                '''INSERT INTO attendance (student_id, class_id, date, status, reason)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT(student_id, date) DO UPDATE SET
                     status = excluded.status,
                     class_id = excluded.class_id,
                     reason = excluded.reason''',
                (student_id, class_id, day, status, reason),
            )
    logging.info("Saved %s attendance records for class %s on %s", len(cleaned), class_id, day)
    return len(cleaned)

# ==================== GRADE SETTINGS ====================

GRADE_KEYS = [key for _label, key in grading.GRADE_BANDS] + ['average_multiplier']

def get_grade_scale_with_cursor(c, teacher_id):
    row = fetch_one(
        c,
        f'SELECT {", ".join(GRADE_KEYS)} FROM grade_settings WHERE teacher_id = ?',
        (teacher_id,),
    )
    if not row:
        return dict(grading.DEFAULT_GRADE_SCALE)
    return {key: float(row[key]) for key in GRADE_KEYS}

def get_grade_scale(teacher_id):
    with db_connection() as conn:
        return get_grade_scale_with_cursor(conn.cursor(), teacher_id)

def save_grade_scale(teacher_id, payload):
    """Validate and store the teacher's scale; invalid input leaves it untouched."""
    try:
        scale = grading.validate_grade_scale(payload)
    except ValueError as exc:
        raise InvalidInput(str(exc)) from exc
    columns = ', '.join(GRADE_KEYS)
    placeholders = ', '.join('?' for _ in GRADE_KEYS)
    updates = ',\n'.join(f'{key} = excluded.{key}' for key in GRADE_KEYS)
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(
            c,
            f'''INSERT INTO grade_settings (teacher_id, {columns}, updated_at)
                VALUES (?, {placeholders}, ?)
                ON CONFLICT(teacher_id) DO UPDATE SET
                  {updates},
                  updated_at = excluded.updated_at''',
            (teacher_id, *[scale[key] for key in GRADE_KEYS], now_iso()),
        )
        saved = get_grade_scale_with_cursor(c, teacher_id)
    logging.info("Grade scale updated for teacher %s", teacher_id)
    return saved

# ==================== MARKS ====================

def get_marks(teacher_id, class_id, subject_id, exam_type, term):
    with db_connection() as conn:
        c = conn.cursor()
        get_owned_class_with_cursor(c, teacher_id, class_id)
        rows = fetch_all(
            c,
            '''SELECT student_id, score
               FROM marks
               WHERE class_id = ? AND subject_id = ? AND exam_type = ? AND term = ?''',
            (class_id, subject_id, exam_type, term),
        )
    for row in rows:
        row['score'] = float(row['score'])
    return rows

def save_marks(teacher_id, class_id, subject_id, exam_type, term, records):
    """Upsert one score per (student, subject, exam type, term) for the batch."""
    if term not in TERMS:
        raise InvalidInput('Term must be one of Term 1, Term 2 or Term 3.')
    if not exam_type:
        raise InvalidInput('Exam type is required.')
    if not isinstance(records, list):
        raise InvalidInput('Records must be a list.')
    cleaned = []
    for record in records:
        if not isinstance(record, dict):
            raise InvalidInput('Each mark record must be an object.')
        student_id = safe_int(record.get('student_id'), 0)
        if not student_id:
            raise InvalidInput('Each mark record needs a student_id.')
        raw_score = record.get('score')
        if raw_score is None or (isinstance(raw_score, str) and not raw_score.strip()):
            # Blank cells are marks not entered yet.
            continue
        try:
            score = float(raw_score)
        except (TypeError, ValueError):
            score = float('nan')
        if isinstance(raw_score, bool) or not math.isfinite(score) or score < 0 or score > 100:
            raise InvalidInput(f'Score for student {student_id} must be between 0 and 100.')
        cleaned.append((student_id, score))

    with db_connection(commit=True) as conn:
        c = conn.cursor()
        get_owned_class_with_cursor(c, teacher_id, class_id)
        if not get_class_subject_with_cursor(c, class_id, subject_id):
            raise InvalidInput('Subject not found in this class.')
        ensure_default_exam_types_with_cursor(c, teacher_id)
        known_exam_types = {row['name'] for row in list_exam_types_with_cursor(c, teacher_id)}
        if exam_type not in known_exam_types:
            raise InvalidInput('Unknown exam type.')
        class_students = get_class_student_ids_with_cursor(c, class_id)
        for student_id, _score in cleaned:
            if student_id not in class_students:
                raise InvalidInput(f'Student {student_id} does not belong to this class.')
        for student_id, score in cleaned:
            db_execute(
                c,
                '''INSERT INTO marks (student_id, subject_id, class_id, exam_type, term, score, out_of)
                   VALUES (?, ?, ?, ?, ?, ?, 100)
                   ON CONFLICT(student_id, subject_id, exam_type, term) DO UPDATE SET
                     score = excluded.score,
                     class_id = excluded.class_id''',
                (student_id, subject_id, class_id, exam_type, term, score),
            )
    logging.info("Saved %s marks for class %s (%s, %s)", len(cleaned), class_id, exam_type, term)
    return len(cleaned)

def get_marks_report(teacher_id, class_id, term='', exam_type=''):
    """Per-student score sheet for the class, optionally for one term/exam."""
    with db_connection() as conn:
        c = conn.cursor()
        get_owned_class_with_cursor(c, teacher_id, class_id)
        scale = get_grade_scale_with_cursor(c, teacher_id)
        students = fetch_all(
            c,
            'SELECT id, admission_number, full_name FROM students WHERE class_id = ? ORDER BY full_name',
            (class_id,),
        )
        subjects = fetch_all(c, 'SELECT id, name FROM subjects WHERE class_id = ? ORDER BY name', (class_id,))
        where = ['class_id = ?']
        params = [class_id]
        if term:
            where.append('term = ?')
            params.append(term)
        if exam_type:
            where.append('exam_type = ?')
            params.append(exam_type)
        marks = fetch_all(
            c,
            f'''SELECT student_id, subject_id, score
                FROM marks
                WHERE {' AND '.join(where)}''',
            tuple(params),
        )
    return {
        'subjects': subjects,
        'rows': grading.build_marks_report(students, subjects, marks, scale),
    }

# ==================== PERFORMANCE ====================

def get_performance_summary(teacher_id, class_id):
    with db_connection() as conn:
        c = conn.cursor()
        get_owned_class_with_cursor(c, teacher_id, class_id)
        scale = get_grade_scale_with_cursor(c, teacher_id)
        mark_rows = fetch_all(
            c,
            '''SELECT m.student_id, m.subject_id, m.score, s.name AS subject_name
               FROM marks m
               LEFT JOIN subjects s ON s.id = m.subject_id
               WHERE m.class_id = ?''',
            (class_id,),
        )
        attendance_rows = fetch_all(
            c,
            'SELECT date, status FROM attendance WHERE class_id = ?',
            (class_id,),
        )
    return grading.summarize_performance(mark_rows, attendance_rows, scale)

# ==================== TIMETABLE ====================

LESSON_COLUMNS = '''t.id, t.class_id, t.subject_id, t.day_of_week, t.start_time, t.end_time,
                    t.attended, t.reason, t.compensated, t.compensation_note, t.compensation_date,
                    t.compensation_for_lesson_id, t.created_at'''

def get_owned_lesson_with_cursor(c, teacher_id, lesson_id):
    row = fetch_one(
        c,
        f'''SELECT {LESSON_COLUMNS}
            FROM timetable_lessons t
            JOIN classes c ON c.id = t.class_id
            WHERE t.id = ? AND c.teacher_id = ?''',
        (lesson_id, teacher_id),
    )
    if not row:
        raise NotFoundError('Lesson not found.')
    return row

def get_lesson_with_cursor(c, lesson_id):
    return lesson_to_json(fetch_one(
        c,
        f'SELECT {LESSON_COLUMNS} FROM timetable_lessons t WHERE t.id = ?',
        (lesson_id,),
    ))

def check_timetable_collision_with_cursor(c, teacher_id, day_of_week, start_time, end_time, exclude_lesson_id=None):
    """Reject a slot that overlaps any lesson the teacher has that day, in any class."""
    lessons = fetch_all(
        c,
        '''SELECT t.id, t.day_of_week, t.start_time, t.end_time,
                  c.name AS class_name, c.stream AS class_stream
           FROM timetable_lessons t
           JOIN classes c ON c.id = t.class_id
           WHERE c.teacher_id = ? AND t.day_of_week = ?''',
        (teacher_id, day_of_week),
    )
    hit = scheduling.find_collision(day_of_week, start_time, end_time, lessons, exclude_lesson_id)
    if hit:
        label = scheduling.class_label(hit['class_name'], hit['class_stream'])
        raise ConflictError(f'You have another class at this time: {label}.')

def parse_slot(day_of_week, start_time, end_time):
    try:
        return scheduling.validate_slot(day_of_week, start_time, end_time)
    except ValueError as exc:
        raise InvalidInput(str(exc)) from exc

def resolve_subject_id_with_cursor(c, class_id, raw_subject_id):
    """Optional subject for a lesson; when given it must belong to the class."""
    if not raw_subject_id:
        return None
    subject_id = safe_int(raw_subject_id, 0)
    if not subject_id or not get_class_subject_with_cursor(c, class_id, subject_id):
        raise InvalidInput('Subject not found in this class.')
    return subject_id

def get_timetable(teacher_id, class_id, week_of):
    """Lessons for a class with their completion state in the selected week."""
    monday, sunday = scheduling.week_bounds(week_of)
    with db_connection() as conn:
        c = conn.cursor()
        get_owned_class_with_cursor(c, teacher_id, class_id)
        lessons = fetch_all(
            c,
            f'''SELECT {LESSON_COLUMNS}, COALESCE(s.name, s2.name) AS subject_name
                FROM timetable_lessons t
                LEFT JOIN subjects s ON s.id = t.subject_id
                LEFT JOIN timetable_lessons t2 ON t2.id = t.compensation_for_lesson_id
                LEFT JOIN subjects s2 ON s2.id = t2.subject_id
                WHERE t.class_id = ?''',
            (class_id,),
        )
        history = fetch_all(
            c,
            '''SELECT id, lesson_id, status, reason, recorded_at
               FROM timetable_history
               WHERE class_id = ? AND recorded_at >= ? AND recorded_at < ?''',
            (class_id, monday.isoformat(), (sunday + timedelta(days=1)).isoformat()),
        )
    lessons = [lesson_to_json(row) for row in lessons]
    lessons.sort(key=scheduling.lesson_sort_key)
    return scheduling.apply_week_status(lessons, history, week_of)

def create_lesson(teacher_id, class_id, raw_subject_id, day_of_week, start_time, end_time):
    day, start, end = parse_slot(day_of_week, start_time, end_time)
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        get_owned_class_with_cursor(c, teacher_id, class_id)
        subject_id = resolve_subject_id_with_cursor(c, class_id, raw_subject_id)
        check_timetable_collision_with_cursor(c, teacher_id, day, start, end)
        try:
            lesson_id = insert_returning_id(
                c,
                '''INSERT INTO timetable_lessons (class_id, subject_id, day_of_week, start_time, end_time)
                   VALUES (?, ?, ?, ?, ?)''',
                (class_id, subject_id, day, start, end),
            )
        except Exception as exc:
            if is_unique_violation(exc):
                raise ConflictError('This class already has a lesson in that exact time slot.') from exc
            raise
        return get_lesson_with_cursor(c, lesson_id)

def update_lesson(teacher_id, lesson_id, raw_subject_id, day_of_week, start_time, end_time):
    day, start, end = parse_slot(day_of_week, start_time, end_time)
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        lesson = get_owned_lesson_with_cursor(c, teacher_id, lesson_id)
        subject_id = resolve_subject_id_with_cursor(c, lesson['class_id'], raw_subject_id)
        check_timetable_collision_with_cursor(c, teacher_id, day, start, end, exclude_lesson_id=lesson_id)
        try:
            db_execute(
                c,
                '''UPDATE timetable_lessons
                   SET subject_id = ?, day_of_week = ?, start_time = ?, end_time = ?
                   WHERE id = ?''',
                (subject_id, day, start, end, lesson_id),
            )
        except Exception as exc:
            if is_unique_violation(exc):
                raise ConflictError('This class already has a lesson in that exact time slot.') from exc
            raise
        return get_lesson_with_cursor(c, lesson_id)

def set_lesson_attendance(teacher_id, lesson_id, attended, reason='', recorded_at=None):
    """Record whether a lesson was taught.

    Every true/false mark appends a history snapshot, including re-marks of
    the same status; clearing back to null appends nothing.
    """
    reason = (reason or None) if attended is False else None
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        lesson = get_owned_lesson_with_cursor(c, teacher_id, lesson_id)
        db_execute(
            c,
            'UPDATE timetable_lessons SET attended = ?, reason = ? WHERE id = ?',
            (None if attended is None else int(attended), reason, lesson_id),
        )
        if attended is not None:
            db_execute(
                c,
                '''INSERT INTO timetable_history
                   (class_id, lesson_id, subject_id, day_of_week, start_time, end_time, status, reason, recorded_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)''',
                (
                    lesson['class_id'],
                    lesson['id'],
                    lesson['subject_id'],
                    lesson['day_of_week'],
                    lesson['start_time'],
                    lesson['end_time'],
                    scheduling.history_status(attended),
                    reason,
                    recorded_at or now_iso(),
                ),
            )

def compensate_lesson(teacher_id, lesson_id, form):
    """Schedule a make-up lesson for one marked not attended.

    The make-up is a new lesson row pointing back at the original; the
    original is flagged compensated. Both writes share one transaction.
    """
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        lesson = get_owned_lesson_with_cursor(c, teacher_id, lesson_id)
        if lesson['attended'] is None or int(lesson['attended']) != 0:
            raise RuleViolation('Only lessons marked as not attended can be compensated.')
        form_ok = form.validate()
        if not form_ok:
            raise InvalidInput(form.first_error())
        day, start, end = parse_slot(form.day_of_week.data, form.start_time.data, form.end_time.data)
        note = form.compensation_note.data
        check_timetable_collision_with_cursor(c, teacher_id, day, start, end)
        try:
            new_lesson_id = insert_returning_id(
                c,
                '''INSERT INTO timetable_lessons
                   (class_id, subject_id, day_of_week, start_time, end_time,
                    attended, reason, compensated, compensation_for_lesson_id)
                   VALUES (?, ?, ?, ?, ?, NULL, ?, 0, ?)''',
                (
                    lesson['class_id'],
                    lesson['subject_id'],
                    day,
                    start,
                    end,
                    scheduling.compensation_reason(lesson['id'], note),
                    lesson['id'],
                ),
            )
        except Exception as exc:
            if is_unique_violation(exc):
                raise ConflictError('This class already has a lesson in that exact time slot.') from exc
            raise
        db_execute(
            c,
            '''UPDATE timetable_lessons
               SET compensated = 1, compensation_note = ?, compensation_date = ?
               WHERE id = ?''',
            (note or None, form.compensation_date.data or None, lesson['id']),
        )
    logging.info("Lesson %s compensated by new lesson %s", lesson_id, new_lesson_id)
    return new_lesson_id

def delete_lesson(teacher_id, lesson_id):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        get_owned_lesson_with_cursor(c, teacher_id, lesson_id)
        db_execute(c, 'DELETE FROM timetable_lessons WHERE id = ?', (lesson_id,))

def get_timetable_history(teacher_id, class_id, date_from='', date_to=''):
    with db_connection() as conn:
        c = conn.cursor()
        get_owned_class_with_cursor(c, teacher_id, class_id)
        where = ['h.class_id = ?']
        params = [class_id]
        if date_from:
            where.append('h.recorded_at >= ?')
            params.append(date_from)
        if date_to:
            where.append('h.recorded_at < ?')
            params.append((date.fromisoformat(date_to) + timedelta(days=1)).isoformat())
        return fetch_all(
            c,
            f'''SELECT h.id, h.class_id, h.lesson_id, h.subject_id, h.day_of_week, h.start_time, h.end_time,
                       h.status, h.reason, h.recorded_at, s.name AS subject_name
                FROM timetable_history h
                LEFT JOIN subjects s ON s.id = h.subject_id
                WHERE {' AND '.join(where)}
                ORDER BY h.recorded_at DESC, h.id DESC''',
            tuple(params),
        )

# ==================== TEACHER NOTES ====================

NOTE_COLUMNS = '''n.id, n.teacher_id, n.class_id, n.title, n.content_html, n.due_date,
                  n.is_completed, n.completed_at, n.created_at, n.updated_at'''

def get_note_with_cursor(c, teacher_id, note_id):
    row = fetch_one(
        c,
        f'SELECT {NOTE_COLUMNS} FROM teacher_notes n WHERE n.id = ? AND n.teacher_id = ?',
        (note_id, teacher_id),
    )
    if not row:
        raise NotFoundError('Reminder note not found.')
    return note_to_json(row)

def get_notes(teacher_id, class_id, status='all'):
    with db_connection() as conn:
        c = conn.cursor()
        get_owned_class_with_cursor(c, teacher_id, class_id)
        where = ['n.class_id = ?', 'n.teacher_id = ?']
        if status == 'active':
            where.append('n.is_completed = 0')
        elif status == 'history':
            where.append('n.is_completed = 1')
        rows = fetch_all(
            c,
            f'''SELECT {NOTE_COLUMNS}, c.name AS class_name, c.stream AS class_stream
                FROM teacher_notes n
                JOIN classes c ON c.id = n.class_id
                WHERE {' AND '.join(where)}
                ORDER BY n.is_completed,
                         COALESCE(n.due_date, '2999-12-31'),
                         n.created_at DESC,
                         n.id DESC''',
            (class_id, teacher_id),
        )
    return [note_to_json(row) for row in rows]

def create_note(teacher_id, class_id, title, content_html, due_date):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        get_owned_class_with_cursor(c, teacher_id, class_id)
        note_id = insert_returning_id(
            c,
            '''INSERT INTO teacher_notes (teacher_id, class_id, title, content_html, due_date, updated_at)
               VALUES (?, ?, ?, ?, ?, ?)''',
            (teacher_id, class_id, title, content_html, due_date or None, now_iso()),
        )
        return get_note_with_cursor(c, teacher_id, note_id)

def update_note(teacher_id, note_id, title, content_html, due_date):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        get_note_with_cursor(c, teacher_id, note_id)
        db_execute(
            c,
            '''UPDATE teacher_notes
               SET title = ?, content_html = ?, due_date = ?, updated_at = ?
               WHERE id = ? AND teacher_id = ?''',
            (title, content_html, due_date or None, now_iso(), note_id, teacher_id),
        )
        return get_note_with_cursor(c, teacher_id, note_id)

def set_note_completed(teacher_id, note_id, completed):
    stamp = now_iso()
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        get_note_with_cursor(c, teacher_id, note_id)
        db_execute(
            c,
            '''UPDATE teacher_notes
               SET is_completed = ?, completed_at = ?, updated_at = ?
               WHERE id = ? AND teacher_id = ?''',
            (1 if completed else 0, stamp if completed else None, stamp, note_id, teacher_id),
        )
        return get_note_with_cursor(c, teacher_id, note_id)

def delete_note(teacher_id, note_id):
    with db_connection(commit=True) as conn:
        c = conn.cursor()
        db_execute(c, 'DELETE FROM teacher_notes WHERE id = ? AND teacher_id = ?', (note_id, teacher_id))
        if not c.rowcount:
            raise NotFoundError('Reminder note not found.')

# ==================== ERROR HANDLERS ====================

@app.errorhandler(ApiError)
def api_error(error):
    return error_response(error.status_code, error.message)

@app.errorhandler(404)
def not_found(_error):
    return error_response(404, 'Not found')

@app.errorhandler(405)
def method_not_allowed(_error):
    return error_response(405, 'Method not allowed')

@app.errorhandler(Exception)
def unexpected_error(error):
    """Anything unexpected is logged and reported without internal detail."""
    if isinstance(error, HTTPException):
        return error_response(error.code or 500, error.description or 'Request failed')
    logging.exception("Unhandled error on %s %s", request.method, request.path)
    return error_response(500, 'Server error')

# ==================== ROUTES: AUTH & PROFILE ====================

@app.route('/api/health')
def health():
    return jsonify({'ok': True})

@app.route('/api/auth/register', methods=['POST'])
def register():
    form = validated(RegisterForm)
    teacher = create_teacher(form.name.data, form.email.data, form.password.data)
    logging.info("Teacher registered: %s", teacher['email'])
    return jsonify({'token': issue_token(teacher), 'teacher': teacher})

@app.route('/api/auth/login', methods=['POST'])
def login():
    form = validated(LoginForm)
    teacher = get_teacher_by_email(form.email.data)
    if not teacher or not check_password_hash(teacher['password_hash'], form.password.data):
        raise AuthError('Invalid credentials')
    profile = {'id': teacher['id'], 'name': teacher['name'], 'email': teacher['email']}
    return jsonify({'token': issue_token(profile), 'teacher': profile})

@app.route('/api/me', methods=['GET'])
@teacher_required
def me():
    return jsonify(get_teacher(g.teacher_id))

@app.route('/api/me', methods=['PUT'])
@teacher_required
def update_me():
    form = validated(ProfileForm)
    return jsonify(update_teacher_profile(g.teacher_id, form.name.data, form.email.data, form.password.data))

# ==================== ROUTES: CLASSES & STUDENTS ====================

@app.route('/api/classes', methods=['GET'])
@teacher_required
def list_classes():
    return jsonify(get_classes(g.teacher_id))

@app.route('/api/classes', methods=['POST'])
@teacher_required
def add_class():
    form = validated(ClassForm)
    year = datetime.now().year
    if form.year.data:
        year = safe_int(form.year.data, 0)
        if year < 2000 or year > 2100:
            raise InvalidInput('Year must be a valid school year.')
    return jsonify(create_class(g.teacher_id, form.name.data, form.stream.data, year))

@app.route('/api/classes/<int:class_id>', methods=['DELETE'])
@teacher_required
def remove_class(class_id):
    delete_class(g.teacher_id, class_id)
    return jsonify({'ok': True})

@app.route('/api/classes/<int:class_id>/students', methods=['GET'])
@teacher_required
def list_students(class_id):
    return jsonify(get_students(g.teacher_id, class_id))

@app.route('/api/classes/<int:class_id>/students', methods=['POST'])
@teacher_required
def add_student(class_id):
    get_owned_class(g.teacher_id, class_id)
    form = validated(StudentForm)
    return jsonify(create_student(g.teacher_id, class_id, form.admission_number.data, form.full_name.data, form.gender.data))

@app.route('/api/classes/<int:class_id>/students/import', methods=['POST'])
@teacher_required
def import_class_students(class_id):
    get_owned_class(g.teacher_id, class_id)
    result = import_students(g.teacher_id, class_id, request_payload().get('students'))
    return jsonify({'ok': True, **result})

@app.route('/api/students/<int:student_id>', methods=['PUT'])
@teacher_required
def edit_student(student_id):
    form = validated(StudentForm)
    return jsonify(update_student(g.teacher_id, student_id, form.admission_number.data, form.full_name.data, form.gender.data))

@app.route('/api/students/<int:student_id>', methods=['DELETE'])
@teacher_required
def remove_student(student_id):
    delete_student(g.teacher_id, student_id)
    return jsonify({'ok': True})

# ==================== ROUTES: ATTENDANCE ====================

@app.route('/api/classes/<int:class_id>/attendance', methods=['GET'])
@teacher_required
def class_attendance(class_id):
    raw_date = clean_text(request.args.get('date'))
    if not raw_date:
        get_owned_class(g.teacher_id, class_id)
        return jsonify([])
    return jsonify(get_attendance(g.teacher_id, class_id, parse_iso_date(raw_date)))

@app.route('/api/classes/<int:class_id>/attendance/history', methods=['GET'])
@teacher_required
def class_attendance_history(class_id):
    return jsonify(get_attendance_history(g.teacher_id, class_id))

@app.route('/api/classes/<int:class_id>/attendance', methods=['POST'])
@teacher_required
def save_class_attendance(class_id):
    payload = request_payload()
    if not clean_text(payload.get('date')):
        raise InvalidInput('Date is required')
    day = parse_iso_date(payload.get('date'))
    saved = save_attendance(g.teacher_id, class_id, day, payload.get('records', []))
    return jsonify({'ok': True, 'saved': saved})

# ==================== ROUTES: SUBJECTS, EXAM TYPES, GRADES ====================

@app.route('/api/classes/<int:class_id>/subjects', methods=['GET'])
@teacher_required
def list_subjects(class_id):
    return jsonify(get_subjects(g.teacher_id, class_id))

@app.route('/api/classes/<int:class_id>/subjects', methods=['POST'])
@teacher_required
def add_subject(class_id):
    get_owned_class(g.teacher_id, class_id)
    form = validated(SubjectForm)
    return jsonify(create_subject(g.teacher_id, class_id, form.name.data))

@app.route('/api/subjects/<int:subject_id>', methods=['DELETE'])
@teacher_required
def remove_subject(subject_id):
    delete_subject(g.teacher_id, subject_id)
    return jsonify({'ok': True})

@app.route('/api/exam-types', methods=['GET'])
@teacher_required
def list_exam_types():
    return jsonify(get_exam_types(g.teacher_id))

@app.route('/api/exam-types', methods=['POST'])
@teacher_required
def create_exam_type():
    form = validated(ExamTypeForm)
    return jsonify(add_exam_type(g.teacher_id, form.name.data))

@app.route('/api/exam-types/<int:exam_type_id>', methods=['DELETE'])
@teacher_required
def remove_exam_type(exam_type_id):
    return jsonify(delete_exam_type(g.teacher_id, exam_type_id))

@app.route('/api/grade-settings', methods=['GET'])
@teacher_required
def grade_settings():
    return jsonify(get_grade_scale(g.teacher_id))

@app.route('/api/grade-settings', methods=['PUT'])
@teacher_required
def update_grade_settings():
    return jsonify(save_grade_scale(g.teacher_id, request_payload()))

# ==================== ROUTES: MARKS & PERFORMANCE ====================

@app.route('/api/classes/<int:class_id>/marks', methods=['GET'])
@teacher_required
def class_marks(class_id):
    subject_id = safe_int(request.args.get('subject_id'), 0)
    exam_type = clean_text(request.args.get('exam_type'))
    term = clean_text(request.args.get('term'))
    return jsonify(get_marks(g.teacher_id, class_id, subject_id, exam_type, term))

@app.route('/api/classes/<int:class_id>/marks', methods=['POST'])
@teacher_required
def save_class_marks(class_id):
    payload = request_payload()
    saved = save_marks(
        g.teacher_id,
        class_id,
        safe_int(payload.get('subject_id'), 0),
        clean_text(payload.get('exam_type')),
        clean_text(payload.get('term')),
        payload.get('records', []),
    )
    return jsonify({'ok': True, 'saved': saved})

@app.route('/api/classes/<int:class_id>/marks/report', methods=['GET'])
@teacher_required
def class_marks_report(class_id):
    term = clean_text(request.args.get('term'))
    if term and term not in TERMS:
        raise InvalidInput('Term must be one of Term 1, Term 2 or Term 3.')
    exam_type = clean_text(request.args.get('exam_type'))
    return jsonify(get_marks_report(g.teacher_id, class_id, term=term, exam_type=exam_type))

@app.route('/api/classes/<int:class_id>/performance-summary', methods=['GET'])
@teacher_required
def performance_summary(class_id):
    return jsonify(get_performance_summary(g.teacher_id, class_id))

# ==================== ROUTES: TIMETABLE ====================

@app.route('/api/classes/<int:class_id>/timetable', methods=['GET'])
@teacher_required
def class_timetable(class_id):
    raw_week = clean_text(request.args.get('week_of'))
    week_of = parse_iso_date(raw_week, 'week_of') if raw_week else date.today().isoformat()
    return jsonify(get_timetable(g.teacher_id, class_id, week_of))

@app.route('/api/classes/<int:class_id>/timetable', methods=['POST'])
@teacher_required
def add_lesson(class_id):
    get_owned_class(g.teacher_id, class_id)
    form = validated(LessonForm)
    return jsonify(create_lesson(
        g.teacher_id, class_id, form.subject_id.data,
        form.day_of_week.data, form.start_time.data, form.end_time.data,
    ))

@app.route('/api/timetable/<int:lesson_id>', methods=['PUT'])
@teacher_required
def edit_lesson(lesson_id):
    form = validated(LessonForm)
    return jsonify(update_lesson(
        g.teacher_id, lesson_id, form.subject_id.data,
        form.day_of_week.data, form.start_time.data, form.end_time.data,
    ))

@app.route('/api/timetable/<int:lesson_id>', methods=['PATCH'])
@teacher_required
def mark_lesson(lesson_id):
    payload = request_payload()
    attended = payload.get('attended', 'missing')
    if attended is not None and not isinstance(attended, bool):
        raise InvalidInput('attended must be true, false or null.')
    set_lesson_attendance(g.teacher_id, lesson_id, attended, clean_text(payload.get('reason')))
    return jsonify({'ok': True})

@app.route('/api/timetable/<int:lesson_id>/compensate', methods=['PATCH'])
@teacher_required
def compensate(lesson_id):
    if request.is_json and not isinstance(request.get_json(silent=True), dict):
        raise InvalidInput('Request body must be a JSON object.')
    new_lesson_id = compensate_lesson(g.teacher_id, lesson_id, CompensationForm())
    return jsonify({'ok': True, 'compensation_lesson_id': new_lesson_id})

@app.route('/api/timetable/<int:lesson_id>', methods=['DELETE'])
@teacher_required
def remove_lesson(lesson_id):
    delete_lesson(g.teacher_id, lesson_id)
    return jsonify({'ok': True})

@app.route('/api/classes/<int:class_id>/timetable/history', methods=['GET'])
@teacher_required
def class_timetable_history(class_id):
    raw_from = clean_text(request.args.get('date_from'))
    raw_to = clean_text(request.args.get('date_to'))
    date_from = parse_iso_date(raw_from, 'date_from') if raw_from else ''
    date_to = parse_iso_date(raw_to, 'date_to') if raw_to else ''
    return jsonify(get_timetable_history(g.teacher_id, class_id, date_from, date_to))

# ==================== ROUTES: TEACHER NOTES ====================

@app.route('/api/classes/<int:class_id>/teacher-notes', methods=['GET'])
@teacher_required
def list_notes(class_id):
    status = clean_text(request.args.get('status')) or 'all'
    if status not in ('all', 'active', 'history'):
        raise InvalidInput('Status must be all, active or history.')
    return jsonify(get_notes(g.teacher_id, class_id, status))

@app.route('/api/classes/<int:class_id>/teacher-notes', methods=['POST'])
@teacher_required
def add_note(class_id):
    get_owned_class(g.teacher_id, class_id)
    form = validated(NoteForm)
    return jsonify(create_note(g.teacher_id, class_id, form.title.data, form.content_html.data, form.due_date.data))

@app.route('/api/teacher-notes/<int:note_id>', methods=['PUT'])
@teacher_required
def edit_note(note_id):
    form = validated(NoteForm)
    return jsonify(update_note(g.teacher_id, note_id, form.title.data, form.content_html.data, form.due_date.data))

@app.route('/api/teacher-notes/<int:note_id>/status', methods=['PATCH'])
@teacher_required
def note_status(note_id):
    completed = request_payload().get('completed')
    if not isinstance(completed, bool):
        raise InvalidInput('completed must be true or false.')
    return jsonify(set_note_completed(g.teacher_id, note_id, completed))

@app.route('/api/teacher-notes/<int:note_id>', methods=['DELETE'])
@teacher_required
def remove_note(note_id):
    delete_note(g.teacher_id, note_id)
    return jsonify({'ok': True})

# ==================== MAIN ====================

if __name__ == '__main__':
    port = int(os.environ.get('PORT', 4000))
    debug = os.environ.get('FLASK_DEBUG', '0').strip().lower() in ('1', 'true', 'yes')
    app.run(host='0.0.0.0', port=port, debug=debug)
