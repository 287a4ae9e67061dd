from datetime import date

import pytest

import scheduling


def lesson(lesson_id, day, start, end, **extra):
    row = {'id': lesson_id, 'day_of_week': day, 'start_time': start, 'end_time': end}
    row.update(extra)
    return row


def test_normalize_time_pads_and_drops_seconds():
    assert scheduling.normalize_time('8:05') == '08:05'
    assert scheduling.normalize_time('13:40:00') == '13:40'


@pytest.mark.parametrize("value", ['', '24:00', '12:60', '8am', None, 800])
def test_normalize_time_rejects_bad_values(value):
    with pytest.raises(ValueError):
        scheduling.normalize_time(value)


def test_validate_slot_requires_end_after_start():
    assert scheduling.validate_slot('monday', '8:00', '08:40') == ('Monday', '08:00', '08:40')
    with pytest.raises(ValueError) as exc:
        scheduling.validate_slot('Monday', '09:00', '09:00')
    assert str(exc.value) == 'End time must be after start time.'
    with pytest.raises(ValueError):
        scheduling.validate_slot('Sunday', '08:00', '08:40')


def test_overlapping_lessons_collide_but_touching_ones_do_not():
    existing = [lesson(1, 'Monday', '08:00', '08:40', class_name='Form 2')]
    assert scheduling.find_collision('Monday', '08:30', '09:00', existing)['id'] == 1
    assert scheduling.find_collision('Monday', '08:40', '09:20', existing) is None
    assert scheduling.find_collision('Monday', '07:20', '08:00', existing) is None
    assert scheduling.find_collision('Tuesday', '08:00', '08:40', existing) is None


def test_find_collision_skips_the_lesson_being_edited():
    existing = [lesson(1, 'Monday', '08:00', '08:40'), lesson(2, 'Monday', '09:00', '09:40')]
    assert scheduling.find_collision('Monday', '08:10', '08:50', existing, exclude_lesson_id=1) is None
    assert scheduling.find_collision('Monday', '08:10', '09:10', existing, exclude_lesson_id=1)['id'] == 2


def test_class_label_and_compensation_reason():
    assert scheduling.class_label('Form 1', 'East') == 'Form 1 - East'
    assert scheduling.class_label('Form 3', None) == 'Form 3'
    assert scheduling.compensation_reason(7) == 'Compensation slot for missed lesson #7'
    assert scheduling.compensation_reason(7, 'sports day') == 'Compensation slot for missed lesson #7: sports day'


def test_lessons_sort_by_weekday_then_start():
    lessons = [
        lesson(1, 'Saturday', '08:00', '08:40'),
        lesson(2, 'Monday', '10:00', '10:40'),
        lesson(3, 'Monday', '08:00', '08:40'),
        lesson(4, 'Wednesday', '07:00', '07:40'),
    ]
    assert [row['id'] for row in sorted(lessons, key=scheduling.lesson_sort_key)] == [3, 2, 4, 1]


def test_week_bounds_runs_monday_to_sunday():
    assert scheduling.week_bounds('2026-10-21') == (date(2026, 10, 19), date(2026, 10, 25))
    assert scheduling.week_bounds(date(2026, 10, 25)) == (date(2026, 10, 19), date(2026, 10, 25))


def test_week_status_uses_latest_entry_inside_the_week():
    lessons = [lesson(1, 'Monday', '08:00', '08:40'), lesson(2, 'Tuesday', '08:00', '08:40')]
    entries = [
        {'id': 1, 'lesson_id': 1, 'status': 'not_attended', 'reason': 'trip', 'recorded_at': '2026-10-19T08:45:00'},
        {'id': 2, 'lesson_id': 1, 'status': 'not_attended', 'reason': 'sick', 'recorded_at': '2026-10-19T08:45:00'},
        {'id': 3, 'lesson_id': 2, 'status': 'attended', 'reason': None, 'recorded_at': '2026-10-13T09:00:00'},
    ]
    result = scheduling.apply_week_status(lessons, entries, '2026-10-21')
    assert result[0]['week_status'] == 'not_attended'
    assert result[0]['week_reason'] == 'sick'
    assert result[0]['week_recorded_at'] == '2026-10-19T08:45:00'
    # Lesson 2 was only marked in the previous week.
    assert result[1]['week_status'] == 'pending'
    assert result[1]['week_reason'] is None
