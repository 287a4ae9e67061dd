"""
Weekly timetable helpers: slot validation, overlap detection and the
per-week attendance view built from the lesson history log.
"""

import re
from datetime import date, datetime, timedelta


DAYS_OF_WEEK = ('Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday')
DAY_ORDER = {day: index for index, day in enumerate(DAYS_OF_WEEK, start=1)}

STATUS_ATTENDED = 'attended'
STATUS_NOT_ATTENDED = 'not_attended'
STATUS_PENDING = 'pending'

_TIME_RE = re.compile(r'^(\d{1,2}):(\d{2})(?::(\d{2}))?$')


def normalize_time(value):
    """Return a zero-padded 'HH:MM' string or raise ValueError."""
    match = _TIME_RE.match((value or '').strip() if isinstance(value, str) else '')
    if not match:
        raise ValueError('Time must be in HH:MM format.')
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise ValueError('Time must be in HH:MM format.')
    return f'{hours:02d}:{minutes:02d}'


def normalize_day(value):
    """Match a weekday name case-insensitively against the teaching week."""
    text = (value or '').strip().lower() if isinstance(value, str) else ''
    for day in DAYS_OF_WEEK:
        if day.lower() == text:
            return day
    raise ValueError('Day must be one of Monday to Saturday.')


def validate_slot(day_of_week, start_time, end_time):
    """Normalize a lesson slot; the end must come strictly after the start."""
    day = normalize_day(day_of_week)
    start = normalize_time(start_time)
    end = normalize_time(end_time)
    if end <= start:
        raise ValueError('End time must be after start time.')
    return day, start, end


def intervals_overlap(start_a, end_a, start_b, end_b):
    """Half-open overlap: touching boundaries do not collide."""
    return not (end_a <= start_b or start_a >= end_b)


def find_collision(day_of_week, start_time, end_time, lessons, exclude_lesson_id=None):
    """Return the first lesson that clashes with the slot, or None.

    ``lessons`` are the teacher's lessons across all classes; the lesson
    being edited is skipped by id.
    """
    for lesson in lessons:
        if exclude_lesson_id is not None and lesson['id'] == exclude_lesson_id:
            continue
        if lesson['day_of_week'] != day_of_week:
            continue
        if intervals_overlap(lesson['start_time'], lesson['end_time'], start_time, end_time):
            return lesson
    return None


def class_label(name, stream):
    return f'{name} - {stream}' if stream else name


def lesson_sort_key(lesson):
    return (DAY_ORDER.get(lesson['day_of_week'], len(DAYS_OF_WEEK) + 1), lesson['start_time'])


def history_status(attended):
    return STATUS_ATTENDED if attended else STATUS_NOT_ATTENDED


def compensation_reason(original_lesson_id, note=''):
    text = f'Compensation slot for missed lesson #{original_lesson_id}'
    return f'{text}: {note}' if note else text


def parse_timestamp(value):
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def week_bounds(value):
    """Monday and Sunday of the ISO week containing ``value``."""
    if isinstance(value, datetime):
        value = value.date()
    elif not isinstance(value, date):
        value = date.fromisoformat(str(value)[:10])
    monday = value - timedelta(days=value.weekday())
    return monday, monday + timedelta(days=6)


def latest_history_in_week(entries, week_of):
    """Latest history entry per lesson recorded inside the week of ``week_of``.

    Entries recorded at the same instant are ordered by id so the later
    insert wins.
    """
    monday, sunday = week_bounds(week_of)
    latest = {}
    for entry in entries:
        lesson_id = entry.get('lesson_id')
        if lesson_id is None:
            continue
        recorded = parse_timestamp(entry['recorded_at'])
        if not (monday <= recorded.date() <= sunday):
            continue
        sort_key = (recorded, entry.get('id') or 0)
        current = latest.get(lesson_id)
        if current is None or sort_key > current[0]:
            latest[lesson_id] = (sort_key, entry)
    return {lesson_id: item[1] for lesson_id, item in latest.items()}


def apply_week_status(lessons, entries, week_of):
    """Attach ``week_status``/``week_reason``/``week_recorded_at`` to each lesson.

    A lesson with no history inside the week is pending for that week,
    whatever its all-time ``attended`` value is.
    """
    latest = latest_history_in_week(entries, week_of)
    for lesson in lessons:
        entry = latest.get(lesson['id'])
        if entry is None:
            lesson['week_status'] = STATUS_PENDING
            lesson['week_reason'] = None
            lesson['week_recorded_at'] = None
        else:
            lesson['week_status'] = entry['status']
            lesson['week_reason'] = entry.get('reason')
            lesson['week_recorded_at'] = str(entry['recorded_at'])
    return lessons
