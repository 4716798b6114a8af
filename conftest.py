import contextlib
import copy

import pytest

import academics
import promotion
from db import db_execute, fetch_rows


class FakeCursor:
    """Records every statement; ``responder(query, params)`` supplies rows.

    A responder returning None means the statement produced no result set.
    """

    def __init__(self, responder=None):
        self.responder = responder or (lambda query, params: None)
        self.executed = []
        self.description = None
        self._rows = []

    def execute(self, query, params=None):
        self.executed.append((query, params))
        rows = self.responder(query, params)
        self._rows = [dict(row) for row in rows or []]
        self.description = None if rows is None else [('column',)]

    def fetchall(self):
        return list(self._rows)

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def queries(self):
        return [query for query, _params in self.executed]

    def params_for(self, fragment):
        return [params for query, params in self.executed if fragment in query]


class FakeClient:
    """Stand-in for PostgresClient; rolls the store back when a transaction fails."""

    backend = 'fake'

    def __init__(self, responder=None, store=None):
        self.cursor = FakeCursor(responder)
        self.store = store
        self.commits = 0
        self.rollbacks = 0

    @contextlib.contextmanager
    def transaction(self):
        snapshot = self.store.snapshot() if self.store is not None else None
        try:
            yield self.cursor
        except Exception:
            self.rollbacks += 1
            if self.store is not None:
                self.store.restore(snapshot)
            raise
        self.commits += 1

    def query(self, query, params=None):
        with self.transaction() as c:
            db_execute(c, query, params)
            return fetch_rows(c)


class SchoolStore:
    """In-memory courses, subjects, classes and students."""

    TABLES = ('courses', 'subjects', 'classes', 'class_subjects', 'students', 'locks')

    def __init__(self):
        self.courses = {}
        self.subjects = {}
        self.classes = {}
        self.class_subjects = []
        self.students = {}
        self.locks = []
        self._next_class_id = 100

    def snapshot(self):
        return copy.deepcopy({name: getattr(self, name) for name in self.TABLES + ('_next_class_id',)})

    def restore(self, snapshot):
        for name, value in snapshot.items():
            setattr(self, name, value)

    # -- seeding --

    def add_course(self, course_id, name):
        self.courses[course_id] = {'id': course_id, 'name': name, 'code': name[:3].upper(), 'duration': 3}
        return self.courses[course_id]

    def add_subject(self, subject_id, name, course_id=None, is_core=False):
        self.subjects[subject_id] = {'id': subject_id, 'name': name, 'code': f'S{subject_id}',
                                     'course_id': course_id, 'is_core': is_core}
        return self.subjects[subject_id]

    def add_class(self, class_id, class_name, course_id, form, semester, stream='A',
                  academic_year='2025/2026', electives=(), cores=()):
        self.classes[class_id] = {
            'id': class_id, 'class_name': class_name, 'course_id': course_id, 'form': form,
            'semester': semester, 'stream': stream, 'academic_year': academic_year, 'capacity': 40,
        }
        for subject_id in electives:
            self.class_subjects.append({'class_id': class_id, 'subject_id': subject_id, 'is_elective': True})
        for subject_id in cores:
            self.class_subjects.append({'class_id': class_id, 'subject_id': subject_id, 'is_elective': False})
        return self.classes[class_id]

    def add_student(self, student_id, class_id, is_active=True):
        self.students[student_id] = {
            'id': student_id, 'student_id': f'STU2025{student_id:03d}', 'surname': 'Mensah',
            'other_names': f'Student {student_id}', 'current_class_id': class_id, 'is_active': is_active,
        }
        return self.students[student_id]

    def elective_ids(self, class_id):
        return sorted(link['subject_id'] for link in self.class_subjects
                      if link['class_id'] == class_id and link['is_elective'])

    # -- academics cursor helpers --

    def lock_class_key(self, c, course_id, form, semester):
        self.locks.append(f'classes:{course_id}:{form}:{semester}')

    def get_course(self, c, course_id):
        return copy.deepcopy(self.courses.get(course_id))

    def get_elective_combinations(self, c, course_id, form, semester):
        return [
            dict(row, elective_ids=self.elective_ids(row['id']))
            for row in sorted(self.classes.values(), key=lambda r: r['id'])
            if (row['course_id'], row['form'], row['semester']) == (course_id, form, semester)
        ]

    def get_subjects_by_ids(self, c, subject_ids):
        return [copy.deepcopy(self.subjects[i]) for i in sorted(subject_ids) if i in self.subjects]

    def get_streams(self, c, course_id, form, semester):
        return [row['stream'] for row in self.classes.values()
                if (row['course_id'], row['form'], row['semester']) == (course_id, form, semester)
                and row['stream'] is not None]

    def insert_class(self, c, class_name, course_id, form, semester, stream, academic_year,
                     capacity=academics.DEFAULT_CLASS_CAPACITY):
        class_id = self._next_class_id
        self._next_class_id += 1
        self.classes[class_id] = {
            'id': class_id, 'class_name': class_name, 'course_id': course_id, 'form': form,
            'semester': semester, 'stream': stream, 'academic_year': academic_year, 'capacity': capacity,
        }
        return dict(self.classes[class_id])

    def link_class_subject(self, c, class_id, subject_id, is_elective):
        if not any(link['class_id'] == class_id and link['subject_id'] == subject_id for link in self.class_subjects):
            self.class_subjects.append({'class_id': class_id, 'subject_id': subject_id, 'is_elective': bool(is_elective)})

    # -- promotion cursor helpers --

    def get_promotable_students(self, c, from_form, from_semester):
        rows = []
        for student in sorted(self.students.values(), key=lambda r: r['id']):
            cls = self.classes.get(student['current_class_id'])
            if student['is_active'] and cls and (cls['form'], cls['semester']) == (from_form, from_semester):
                rows.append(dict(student))
        return rows

    def get_promotion_source(self, c, class_id):
        cls = self.classes.get(class_id)
        if not cls:
            return None
        return dict(
            cls,
            course_name=self.courses[cls['course_id']]['name'],
            elective_names=[self.subjects[i]['name'] for i in self.elective_ids(class_id)],
        )

    def find_class_by_name(self, c, class_name, course_id, form, semester, academic_year):
        for row in sorted(self.classes.values(), key=lambda r: r['id']):
            if (row['class_name'], row['course_id'], row['form'], row['semester'], row['academic_year']) == \
                    (class_name, course_id, form, semester, academic_year):
                return dict(row)
        return None

    def copy_class_subjects(self, c, source_class_id, target_class_id):
        for link in [dict(l) for l in self.class_subjects if l['class_id'] == source_class_id]:
            self.link_class_subject(c, target_class_id, link['subject_id'], link['is_elective'])

    def set_student_class(self, c, student_id, class_id):
        self.students[student_id]['current_class_id'] = class_id


@pytest.fixture
def store(monkeypatch):
    s = SchoolStore()
    monkeypatch.setattr(academics, 'lock_class_key_with_cursor', s.lock_class_key)
    monkeypatch.setattr(academics, 'get_course_with_cursor', s.get_course)
    monkeypatch.setattr(academics, 'get_elective_combinations_with_cursor', s.get_elective_combinations)
    monkeypatch.setattr(academics, 'get_subjects_by_ids_with_cursor', s.get_subjects_by_ids)
    monkeypatch.setattr(academics, 'get_streams_with_cursor', s.get_streams)
    monkeypatch.setattr(academics, 'insert_class_with_cursor', s.insert_class)
    monkeypatch.setattr(academics, 'link_class_subject_with_cursor', s.link_class_subject)
    monkeypatch.setattr(promotion, 'get_promotable_students_with_cursor', s.get_promotable_students)
    monkeypatch.setattr(promotion, 'get_promotion_source_with_cursor', s.get_promotion_source)
    monkeypatch.setattr(promotion, 'find_class_by_name_with_cursor', s.find_class_by_name)
    monkeypatch.setattr(promotion, 'copy_class_subjects_with_cursor', s.copy_class_subjects)
    monkeypatch.setattr(promotion, 'set_student_class_with_cursor', s.set_student_class)
    return s


@pytest.fixture
def store_client(store):
    return FakeClient(store=store)
