import pytest

import grading


FIVE_BANDS = [('A', 'a'), ('B', 'b'), ('C', 'c'), ('D', 'd'), ('E', 'e')]
FIVE_SCALE = {'a': 80, 'b': 60, 'c': 40, 'd': 30, 'e': 0, 'average_multiplier': 1}


def test_grade_from_average_picks_highest_band_reached():
    scale = grading.DEFAULT_GRADE_SCALE
    assert grading.grade_from_average(80, scale) == 'A'
    assert grading.grade_from_average(79.99, scale) == 'A-'
    assert grading.grade_from_average(60, scale) == 'B-'
    assert grading.grade_from_average(0, scale) == 'E'
    assert grading.grade_from_average(-5, scale) == 'E'


def test_grade_just_below_top_threshold_is_never_top_label():
    for bands, scale in ((grading.GRADE_BANDS, grading.DEFAULT_GRADE_SCALE), (FIVE_BANDS, FIVE_SCALE)):
        top_label, top_key = bands[0]
        assert grading.grade_from_average(scale[top_key] - 0.01, scale, bands) != top_label


def test_grade_is_monotonic_as_score_decreases():
    labels = [label for label, _key in grading.GRADE_BANDS]
    previous_rank = 0
    score = 100.0
    while score >= 0:
        rank = labels.index(grading.grade_from_average(score, grading.DEFAULT_GRADE_SCALE))
        assert rank >= previous_rank
        previous_rank = rank
        score -= 0.5


def test_adjusted_average_clamps_to_hundred():
    assert grading.adjusted_average(55, 2) == 100
    assert grading.adjusted_average(45, 2) == 90
    assert grading.adjusted_average(72.5, 1) == 72.5


def test_validate_grade_scale_accepts_defaults():
    payload = dict(grading.DEFAULT_GRADE_SCALE)
    payload['average_multiplier'] = '2'
    scale = grading.validate_grade_scale(payload)
    assert scale['a_min'] == 80.0
    assert scale['average_multiplier'] == 2.0


@pytest.mark.parametrize(
    "changes, message",
    [
        ({'a_min': 70}, 'Invalid grade ranges. Each grade must be lower than the one above it.'),
        ({'b_min': 70}, 'Invalid grade ranges. Each grade must be lower than the one above it.'),
        ({'a_min': 120}, 'Invalid grade ranges. Each grade must be lower than the one above it.'),
        ({'e_min': -1}, 'Invalid grade ranges. Each grade must be lower than the one above it.'),
        ({'average_multiplier': 3}, 'Average multiplier must be 1 or 2.'),
        ({'c_min': 'abc'}, 'Minimum score for grade C must be a number.'),
        ({'d_min': None}, 'Minimum score for grade D is required.'),
    ],
)
def test_validate_grade_scale_rejects_bad_input(changes, message):
    payload = dict(grading.DEFAULT_GRADE_SCALE)
    payload.update(changes)
    with pytest.raises(ValueError) as exc:
        grading.validate_grade_scale(payload)
    assert str(exc.value) == message


def test_summarize_performance_two_student_example():
    marks = [
        {'student_id': 1, 'subject_id': 1, 'score': 80},
        {'student_id': 1, 'subject_id': 2, 'score': 90},
        {'student_id': 2, 'subject_id': 1, 'score': 50},
        {'student_id': 2, 'subject_id': 2, 'score': 70},
    ]
    summary = grading.summarize_performance(marks, [], FIVE_SCALE, FIVE_BANDS)
    assert summary['class_average'] == 72.5
    assert summary['class_grade'] == 'B'
    assert summary['grade_breakdown'] == {'A': 1, 'B': 1, 'C': 0, 'D': 0, 'E': 0}
    assert summary['student_count'] == 2
    assert summary['attendance_rate'] == 0
    assert summary['trends'] == []


def test_summarize_performance_attendance_rate_over_two_days():
    attendance = []
    for day, present in (('2026-03-02', 8), ('2026-03-03', 6)):
        for index in range(10):
            attendance.append({'date': day, 'status': 'present' if index < present else 'absent'})
    summary = grading.summarize_performance([], attendance, grading.DEFAULT_GRADE_SCALE)
    assert summary['attendance_rate'] == 70.0
    assert summary['class_average'] == 0
    assert summary['grade_breakdown']['E'] == 0
    assert summary['trends'] == [{'week_start': '2026-W10', 'attendance_rate': 70.0}]


def test_weekly_trend_keeps_latest_weeks_in_order():
    rows = [
        {'date': '2026-03-02', 'status': 'absent'},
        {'date': '2026-01-05', 'status': 'present'},
        {'date': '2026-01-14', 'status': 'present'},
        {'date': '2026-01-15', 'status': 'absent'},
        {'date': '2026-01-20', 'status': 'present'},
    ]
    trend = grading.weekly_attendance_trend(rows, weeks=3)
    assert trend == [
        {'week_start': '2026-W03', 'attendance_rate': 50.0},
        {'week_start': '2026-W04', 'attendance_rate': 100.0},
        {'week_start': '2026-W10', 'attendance_rate': 0.0},
    ]


def test_multiplier_applies_before_grading():
    marks = [{'student_id': 1, 'subject_id': 1, 'score': 55}]
    scale = dict(grading.DEFAULT_GRADE_SCALE, average_multiplier=2)
    summary = grading.summarize_performance(marks, [], scale)
    assert summary['class_average'] == 100.0
    assert summary['class_grade'] == 'A'


def test_rank_positions_share_ties():
    rows = [{'adjusted_average': 70}, {'adjusted_average': 90}, {'adjusted_average': 70}, {'adjusted_average': 50}]
    ranked = grading.rank_positions(rows)
    assert [row['position'] for row in ranked] == [1, 2, 2, 4]


def test_build_marks_report_lists_ungraded_students_last():
    students = [
        {'id': 1, 'admission_number': '001', 'full_name': 'Amina'},
        {'id': 2, 'admission_number': '002', 'full_name': 'Brian'},
        {'id': 3, 'admission_number': '003', 'full_name': 'Chebet'},
    ]
    subjects = [{'id': 10, 'name': 'Biology'}, {'id': 11, 'name': 'Chemistry'}]
    marks = [
        {'student_id': 2, 'subject_id': 10, 'score': 90},
        {'student_id': 2, 'subject_id': 10, 'score': 70},
        {'student_id': 2, 'subject_id': 11, 'score': 50},
        {'student_id': 3, 'subject_id': 10, 'score': 40},
    ]
    rows = grading.build_marks_report(students, subjects, marks, grading.DEFAULT_GRADE_SCALE)
    assert [row['student_id'] for row in rows] == [2, 3, 1]
    assert rows[0]['scores'] == {'10': 80.0, '11': 50.0}
    assert rows[0]['average'] == 70.0
    assert rows[0]['grade'] == 'B+'
    assert rows[0]['position'] == 1
    assert rows[1]['scores'] == {'10': 40.0, '11': None}
    assert rows[2]['average'] is None
    assert rows[2]['position'] is None


def test_iso_week_key_handles_year_boundaries():
    assert grading.iso_week_key('2026-01-01') == '2026-W01'
    assert grading.iso_week_key('2025-12-29') == '2026-W01'
    assert grading.iso_week_key('2027-01-01') == '2026-W53'
