"""
Grade scale and class performance calculations.

Everything here is pure: callers load the teacher's grade scale once per
request and pass it in together with the raw mark and attendance rows.
"""

import math
from datetime import date, datetime


# Ordered from the highest grade to the lowest; the last band is the fallback.
GRADE_BANDS = [
    ('A', 'a_min'),
    ('A-', 'a_minus_min'),
    ('B+', 'b_plus_min'),
    ('B', 'b_min'),
    ('B-', 'b_minus_min'),
    ('C+', 'c_plus_min'),
    ('C', 'c_min'),
    ('C-', 'c_minus_min'),
    ('D+', 'd_plus_min'),
    ('D', 'd_min'),
    ('D-', 'd_minus_min'),
    ('E', 'e_min'),
]

DEFAULT_GRADE_SCALE = {
    'a_min': 80.0,
    'a_minus_min': 75.0,
    'b_plus_min': 70.0,
    'b_min': 65.0,
    'b_minus_min': 60.0,
    'c_plus_min': 55.0,
    'c_min': 50.0,
    'c_minus_min': 45.0,
    'd_plus_min': 40.0,
    'd_min': 35.0,
    'd_minus_min': 30.0,
    'e_min': 0.0,
    'average_multiplier': 1.0,
}

ALLOWED_MULTIPLIERS = (1, 2)
MAX_AVERAGE = 100.0
TREND_WEEKS = 6


def mean(values):
    """Arithmetic mean, 0 for an empty sequence."""
    values = list(values)
    if not values:
        return 0.0
    return sum(values) / len(values)


def round1(value):
    return round(float(value or 0), 1)


def adjusted_average(raw_average, multiplier):
    """Apply the teacher's multiplier and clamp to 100."""
    return min(MAX_AVERAGE, float(raw_average) * float(multiplier or 1))


def grade_from_average(average, scale, bands=GRADE_BANDS):
    """Return the highest grade label whose minimum the average reaches.

    Averages below every threshold (negative ones included) get the lowest
    label rather than an error.
    """
    value = float(average or 0)
    for label, key in bands:
        if value >= float(scale[key]):
            return label
    return bands[-1][0]


def empty_grade_breakdown(bands=GRADE_BANDS):
    return {label: 0 for label, _key in bands}


def validate_grade_scale(payload, bands=GRADE_BANDS):
    """Validate a submitted grade scale and return it normalized.

    Raises ValueError with a user-facing message when any threshold is missing
    or not a number, when thresholds are not strictly decreasing from the top
    grade down, when the lowest is negative or the highest is above 100, or
    when the multiplier is not 1 or 2.
    """
    payload = payload or {}
    scale = {}
    for label, key in bands:
        raw = payload.get(key)
        if raw is None or isinstance(raw, bool) or (isinstance(raw, str) and not raw.strip()):
            raise ValueError(f'Minimum score for grade {label} is required.')
        try:
            value = float(raw)
        except (TypeError, ValueError):
            raise ValueError(f'Minimum score for grade {label} must be a number.')
        if not math.isfinite(value):
            raise ValueError(f'Minimum score for grade {label} must be a number.')
        scale[key] = value

    thresholds = [scale[key] for _label, key in bands]
    strictly_descending = all(a > b for a, b in zip(thresholds, thresholds[1:]))
    if not (strictly_descending and thresholds[-1] >= 0 and thresholds[0] <= MAX_AVERAGE):
        raise ValueError('Invalid grade ranges. Each grade must be lower than the one above it.')

    raw_multiplier = payload.get('average_multiplier', 1)
    try:
        multiplier = float(raw_multiplier if raw_multiplier not in (None, '') else 1)
    except (TypeError, ValueError):
        raise ValueError('Average multiplier must be 1 or 2.')
    if isinstance(raw_multiplier, bool) or multiplier not in ALLOWED_MULTIPLIERS:
        raise ValueError('Average multiplier must be 1 or 2.')
    scale['average_multiplier'] = multiplier
    return scale


def student_averages(mark_rows):
    """Flat mean of every stored score per student."""
    scores = {}
    for row in mark_rows:
        scores.setdefault(row['student_id'], []).append(float(row['score']))
    return {student_id: mean(values) for student_id, values in scores.items()}


def to_date(value):
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def iso_week_key(value):
    """Label like '2026-W42' for the ISO week containing the date."""
    iso_year, iso_week, _weekday = to_date(value).isocalendar()
    return f'{iso_year}-W{iso_week:02d}'


def attendance_rate(statuses):
    """Percentage of 'present' statuses, 0 when there are none."""
    statuses = list(statuses)
    if not statuses:
        return 0.0
    present = sum(1 for status in statuses if status == 'present')
    return present * 100.0 / len(statuses)


def weekly_attendance_trend(attendance_rows, weeks=TREND_WEEKS):
    """Attendance rate per ISO week for the most recent weeks, oldest first."""
    by_week = {}
    for row in attendance_rows:
        by_week.setdefault(iso_week_key(row['date']), []).append(row['status'])
    # Zero-padded labels sort chronologically.
    recent = sorted(by_week)[-weeks:] if weeks else []
    return [
        {'week_start': week, 'attendance_rate': round1(attendance_rate(by_week[week]))}
        for week in recent
    ]


def subject_averages(mark_rows, scale, bands=GRADE_BANDS):
    """Class-wide mean per subject, adjusted and graded like student averages."""
    multiplier = scale.get('average_multiplier', 1)
    by_subject = {}
    names = {}
    for row in mark_rows:
        subject_id = row['subject_id']
        by_subject.setdefault(subject_id, []).append(float(row['score']))
        if row.get('subject_name'):
            names[subject_id] = row['subject_name']
    result = []
    for subject_id, scores in by_subject.items():
        adjusted = adjusted_average(mean(scores), multiplier)
        result.append({
            'subject_id': subject_id,
            'subject_name': names.get(subject_id, ''),
            'average': round1(adjusted),
            'grade': grade_from_average(adjusted, scale, bands),
        })
    result.sort(key=lambda item: (str(item['subject_name']).lower(), str(item['subject_id'])))
    return result


def summarize_performance(mark_rows, attendance_rows, scale, bands=GRADE_BANDS, trend_weeks=TREND_WEEKS):
    """Build the class performance summary shown on the dashboard.

    ``mark_rows`` need ``student_id``, ``subject_id`` and ``score`` (and may
    carry ``subject_name``); ``attendance_rows`` need ``date`` and ``status``.
    Everything is computed at full precision and rounded only on output.
    """
    mark_rows = list(mark_rows)
    attendance_rows = list(attendance_rows)
    multiplier = scale.get('average_multiplier', 1)

    adjusted = [
        adjusted_average(raw, multiplier)
        for raw in student_averages(mark_rows).values()
    ]
    class_average = mean(adjusted)

    breakdown = empty_grade_breakdown(bands)
    for value in adjusted:
        breakdown[grade_from_average(value, scale, bands)] += 1

    return {
        'class_average': round1(class_average),
        'class_grade': grade_from_average(class_average, scale, bands),
        'attendance_rate': round1(attendance_rate(row['status'] for row in attendance_rows)),
        'grade_breakdown': breakdown,
        'trends': weekly_attendance_trend(attendance_rows, trend_weeks),
        'student_count': len(adjusted),
        'subject_averages': subject_averages(mark_rows, scale, bands),
    }


def rank_positions(rows, key='adjusted_average'):
    """Assign 1-based positions by descending value; ties share a position."""
    ordered = sorted(rows, key=lambda row: row[key], reverse=True)
    position = 0
    previous = None
    for index, row in enumerate(ordered, start=1):
        if previous is None or row[key] != previous:
            position = index
            previous = row[key]
        row['position'] = position
    return ordered


def build_marks_report(students, subjects, mark_rows, scale, bands=GRADE_BANDS):
    """Per-student score sheet with average, grade and position.

    Students without any mark in the filtered rows are listed last with no
    average and no position.
    """
    multiplier = scale.get('average_multiplier', 1)
    all_scores = {}
    by_subject = {}
    for row in mark_rows:
        score = float(row['score'])
        all_scores.setdefault(row['student_id'], []).append(score)
        by_subject.setdefault((row['student_id'], row['subject_id']), []).append(score)

    graded = []
    ungraded = []
    for student in students:
        student_scores = all_scores.get(student['id'], [])
        subject_scores = {}
        for subject in subjects:
            values = by_subject.get((student['id'], subject['id']))
            subject_scores[str(subject['id'])] = round1(mean(values)) if values else None
        entry = {
            'student_id': student['id'],
            'admission_number': student['admission_number'],
            'full_name': student['full_name'],
            'scores': subject_scores,
        }
        if student_scores:
            raw = mean(student_scores)
            adjusted = adjusted_average(raw, multiplier)
            entry.update({
                'average': round1(raw),
                'adjusted_average': adjusted,
                'grade': grade_from_average(adjusted, scale, bands),
            })
            graded.append(entry)
        else:
            entry.update({'average': None, 'adjusted_average': None, 'grade': None, 'position': None})
            ungraded.append(entry)

    ranked = rank_positions(graded)
    for entry in ranked:
        entry['adjusted_average'] = round1(entry['adjusted_average'])
    return ranked + ungraded
