# forms.py
from flask_wtf import FlaskForm
from wtforms import BooleanField, FloatField, IntegerField, PasswordField, StringField, TextAreaField
from wtforms.validators import AnyOf, DataRequired, InputRequired, Length, NumberRange, Optional

from grading import CLASS_SCORE_MAX, EXAM_SCORE_MAX

FALSE_VALUES = ('false', 'False', '0', '')


class ApiForm(FlaskForm):
    """Forms fed from JSON or form bodies; CSRF is enforced app-wide."""

    class Meta:
        csrf = False

    def error_message(self):
        return '; '.join(
            f"{name}: {', '.join(messages)}" for name, messages in sorted(self.errors.items())
        )


class LoginForm(ApiForm):
    user_id = StringField("User ID", validators=[DataRequired(), Length(max=40)])
    password = PasswordField("Password", validators=[DataRequired()])


class ChangePasswordForm(ApiForm):
    new_password = PasswordField("New password", validators=[DataRequired(), Length(min=8)])


class ResolveClassForm(ApiForm):
    course_id = IntegerField("Course", validators=[DataRequired()])
    form = IntegerField("Form", default=1, validators=[Optional(), NumberRange(min=1)])
    semester = IntegerField("Semester", default=1, validators=[Optional(), AnyOf([1, 2])])
    academic_year = StringField("Academic year", validators=[Optional(), Length(max=9)])


class ClassForm(ApiForm):
    class_name = StringField("Class name", validators=[DataRequired(), Length(max=120)])
    course_id = IntegerField("Course", validators=[DataRequired()])
    form = IntegerField("Form", validators=[DataRequired(), NumberRange(min=1)])
    semester = IntegerField("Semester", default=1, validators=[Optional(), AnyOf([1, 2])])
    stream = StringField("Stream", validators=[Optional(), Length(max=4)])
    capacity = IntegerField("Capacity", validators=[Optional(), NumberRange(min=1)])
    academic_year = StringField("Academic year", validators=[Optional(), Length(max=9)])


class CourseForm(ApiForm):
    name = StringField("Name", validators=[DataRequired(), Length(max=120)])
    code = StringField("Code", validators=[DataRequired(), Length(max=20)])
    duration = IntegerField("Duration", default=3, validators=[Optional(), NumberRange(min=1)])


class SubjectForm(ApiForm):
    name = StringField("Name", validators=[DataRequired(), Length(max=120)])
    code = StringField("Code", validators=[DataRequired(), Length(max=20)])
    course_id = IntegerField("Course", validators=[Optional()])
    is_core = BooleanField("Core subject", false_values=FALSE_VALUES)


class PromotionForm(ApiForm):
    current_year = StringField("Current year", validators=[Optional(), Length(max=9)])
    target_year = StringField("Target year", validators=[Optional(), Length(max=9)])
    from_form = IntegerField("From form", default=1, validators=[Optional(), NumberRange(min=1)])
    from_semester = IntegerField("From semester", default=2, validators=[Optional(), AnyOf([1, 2])])
    to_form = IntegerField("To form", validators=[Optional(), NumberRange(min=1)])
    to_semester = IntegerField("To semester", default=1, validators=[Optional(), AnyOf([1, 2])])
    dry_run = BooleanField("Preview only", false_values=FALSE_VALUES)


class StudentForm(ApiForm):
    surname = StringField("Surname", validators=[DataRequired(), Length(max=80)])
    other_names = StringField("Other names", validators=[DataRequired(), Length(max=120)])
    course_id = IntegerField("Course", validators=[DataRequired()])
    current_class_id = IntegerField("Class", validators=[Optional()])
    gender = StringField("Gender", validators=[Optional(), Length(max=10)])
    guardian_email = StringField("Guardian email", validators=[Optional(), Length(max=120)])


class TeacherForm(ApiForm):
    surname = StringField("Surname", validators=[DataRequired(), Length(max=80)])
    other_names = StringField("Other names", validators=[DataRequired(), Length(max=120)])
    staff_id = StringField("Staff ID", validators=[Optional(), Length(max=40)])
    email = StringField("Email", validators=[Optional(), Length(max=120)])
    department = StringField("Department", validators=[Optional(), Length(max=80)])


class ResultForm(ApiForm):
    student_id = IntegerField("Student", validators=[DataRequired()])
    subject_id = IntegerField("Subject", validators=[DataRequired()])
    class_id = IntegerField("Class", validators=[DataRequired()])
    academic_year = StringField("Academic year", validators=[DataRequired(), Length(max=9)])
    term = IntegerField("Term", validators=[DataRequired(), NumberRange(min=1, max=3)])
    class_score = FloatField("Class score", validators=[Optional(), NumberRange(min=0, max=CLASS_SCORE_MAX)])
    exam_score = FloatField("Exam score", validators=[Optional(), NumberRange(min=0, max=EXAM_SCORE_MAX)])
    remarks = StringField("Remarks", validators=[Optional(), Length(max=255)])


class ResultUpdateForm(ApiForm):
    class_score = FloatField("Class score", validators=[Optional(), NumberRange(min=0, max=CLASS_SCORE_MAX)])
    exam_score = FloatField("Exam score", validators=[Optional(), NumberRange(min=0, max=EXAM_SCORE_MAX)])


class AnnouncementForm(ApiForm):
    title = StringField("Title", validators=[DataRequired(), Length(max=200)])
    content = TextAreaField("Content", validators=[DataRequired()])
    class_id = IntegerField("Class", validators=[Optional()])


class TimetableEntryForm(ApiForm):
    day = StringField("Day", validators=[DataRequired(), Length(max=10)])
    time_slot = StringField("Time slot", validators=[DataRequired(), Length(max=20)])
    class_id = IntegerField("Class", validators=[DataRequired()])
    subject_id = IntegerField("Subject", validators=[DataRequired()])
    teacher_id = IntegerField("Teacher", validators=[DataRequired()])
    academic_year = StringField("Academic year", validators=[Optional(), Length(max=9)])


class AssignmentForm(ApiForm):
    class_id = IntegerField("Class", validators=[DataRequired()])
    subject_id = IntegerField("Subject", validators=[DataRequired()])
    title = StringField("Title", validators=[DataRequired(), Length(max=255)])
    description = TextAreaField("Description", validators=[Optional()])
    assignment_type_id = IntegerField("Type", validators=[Optional()])
    due_date = StringField("Due date", validators=[Optional(), Length(max=10)])
    max_score = FloatField("Max score", validators=[Optional(), NumberRange(min=0.01)])


class SubmissionGradeForm(ApiForm):
    score = FloatField("Score", validators=[InputRequired(), NumberRange(min=0)])
    remarks = StringField("Remarks", validators=[Optional()])


class TeacherMessageForm(ApiForm):
    title = StringField("Title", validators=[DataRequired(), Length(max=255)])
    content = TextAreaField("Content", validators=[DataRequired()])
    class_id = IntegerField("Class", validators=[Optional()])
    subject_id = IntegerField("Subject", validators=[Optional()])
    is_private = BooleanField("Private", false_values=FALSE_VALUES)
    recipient_student_id = IntegerField("Student", validators=[Optional()])
