"""
Request payload forms.

The API is token authenticated, so CSRF is off; Flask-WTF reads the JSON
body of POST/PUT/PATCH requests into these forms.
"""

import re
from datetime import date

from flask_wtf import FlaskForm
from wtforms import StringField
from wtforms.validators import AnyOf, DataRequired, Length, Regexp, ValidationError


CLASS_NAMES = ('Form 1', 'Form 2', 'Form 3', 'Form 4')
GENDERS = ('Male', 'Female')
EMAIL_RE = r'^[^@\s]+@[^@\s]+\.[^@\s]+$'


def clean_text(value):
    """Collapse JSON nulls/numbers into stripped strings."""
    if value is None:
        return ''
    if isinstance(value, str):
        return value.strip()
    return str(value)


def lower_text(value):
    return clean_text(value).lower()


def is_strong_password(password):
    value = password or ''
    return (
        len(value) >= 6
        and re.search(r'[A-Za-z]', value) is not None
        and re.search(r'\d', value) is not None
        and re.search(r'[^A-Za-z0-9]', value) is not None
    )


def strong_password(form, field):
    if field.data and not is_strong_password(field.data):
        raise ValidationError(
            'Password must be at least 6 characters and include a letter, a number, and a special character.'
        )


def optional_password(form, field):
    if field.data and len(field.data) < 6:
        raise ValidationError('Password must be at least 6 characters.')


def iso_date(form, field):
    if not field.data:
        return
    try:
        date.fromisoformat(field.data)
    except ValueError:
        raise ValidationError('Dates must use the YYYY-MM-DD format.')


class ApiForm(FlaskForm):
    class Meta:
        csrf = False

    def first_error(self):
        for field in self:
            if field.errors:
                return field.errors[0]
        return 'Invalid request.'


class RegisterForm(ApiForm):
    name = StringField(filters=[clean_text], validators=[DataRequired('Missing fields'), Length(max=120)])
    email = StringField(filters=[lower_text], validators=[
        DataRequired('Missing fields'),
        Regexp(EMAIL_RE, message='Enter a valid email address.'),
        Length(max=254),
    ])
    password = StringField(filters=[clean_text], validators=[DataRequired('Missing fields'), strong_password])


class LoginForm(ApiForm):
    email = StringField(filters=[lower_text], validators=[DataRequired('Missing fields')])
    password = StringField(filters=[clean_text], validators=[DataRequired('Missing fields')])


class ProfileForm(ApiForm):
    name = StringField(filters=[clean_text], validators=[DataRequired('Name and email are required.'), Length(max=120)])
    email = StringField(filters=[lower_text], validators=[
        DataRequired('Name and email are required.'),
        Regexp(EMAIL_RE, message='Enter a valid email address.'),
    ])
    password = StringField(filters=[clean_text], validators=[optional_password])


class ClassForm(ApiForm):
    name = StringField(filters=[clean_text], validators=[
        DataRequired('Class name is required'),
        AnyOf(CLASS_NAMES, message='Class name must be one of Form 1 to Form 4.'),
    ])
    stream = StringField(filters=[clean_text], validators=[Length(max=50)])
    year = StringField(filters=[clean_text])


class StudentForm(ApiForm):
    admission_number = StringField(filters=[clean_text], validators=[
        DataRequired('Admission number, name and gender are required.'),
        Length(max=50),
    ])
    full_name = StringField(filters=[clean_text], validators=[
        DataRequired('Admission number, name and gender are required.'),
        Length(max=150),
    ])
    gender = StringField(filters=[clean_text], validators=[
        DataRequired('Admission number, name and gender are required.'),
        AnyOf(GENDERS, message='Gender must be Male or Female.'),
    ])


class SubjectForm(ApiForm):
    name = StringField(filters=[clean_text], validators=[DataRequired('Subject name is required'), Length(max=100)])


class ExamTypeForm(ApiForm):
    name = StringField(filters=[clean_text], validators=[DataRequired('Exam type name is required.'), Length(max=60)])


class LessonForm(ApiForm):
    subject_id = StringField(filters=[clean_text])
    day_of_week = StringField(filters=[clean_text], validators=[DataRequired('Day and time are required.')])
    start_time = StringField(filters=[clean_text], validators=[DataRequired('Day and time are required.')])
    end_time = StringField(filters=[clean_text], validators=[DataRequired('Day and time are required.')])


class CompensationForm(ApiForm):
    day_of_week = StringField(filters=[clean_text], validators=[DataRequired('Compensation day and time are required.')])
    start_time = StringField(filters=[clean_text], validators=[DataRequired('Compensation day and time are required.')])
    end_time = StringField(filters=[clean_text], validators=[DataRequired('Compensation day and time are required.')])
    compensation_note = StringField(filters=[clean_text], validators=[Length(max=500)])
    compensation_date = StringField(filters=[clean_text], validators=[iso_date])


class NoteForm(ApiForm):
    title = StringField(filters=[clean_text], validators=[DataRequired('Title is required.'), Length(max=200)])
    content_html = StringField(filters=[clean_text], validators=[DataRequired('Note content is required.')])
    due_date = StringField(filters=[clean_text], validators=[iso_date])
