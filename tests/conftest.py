import sys
from concurrent.futures import Future
from io import BytesIO
from pathlib import Path

import pytest
from openpyxl import Workbook

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app import create_app
from app_models import db, School

SCHOOL_ID = 7
HEADERS = ['AC-No', 'Name', 'Department', 'Date', 'Time']


class DeferredExecutor:
    """Holds submitted work until the test runs it, so queued state is observable."""

    def __init__(self):
        self.pending = []

    def submit(self, fn, *args, **kwargs):
        future = Future()
        self.pending.append((future, fn, args, kwargs))
        return future

    def run_all(self):
        while self.pending:
            future, fn, args, kwargs = self.pending.pop(0)
            if not future.set_running_or_notify_cancel():
                continue
            try:
                result = fn(*args, **kwargs)
            except Exception as e:
                future.set_exception(e)
            else:
                future.set_result(result)

    def shutdown(self, wait=True):
        self.pending.clear()


@pytest.fixture
def app(tmp_path):
    app = create_app('testing', SQLALCHEMY_DATABASE_URI=f"sqlite:///{tmp_path / 'test.db'}")
    yield app
    app.extensions['import_runner'].shutdown(wait=True)
    with app.app_context():
        db.session.remove()
        db.engine.dispose()


@pytest.fixture
def executor(app):
    runner = app.extensions['import_runner']
    runner.executor.shutdown(wait=True)
    runner.executor = DeferredExecutor()
    return runner.executor


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def school_id(app):
    with app.app_context():
        db.session.add(School(id=SCHOOL_ID, name='Test School'))
        db.session.commit()
    return SCHOOL_ID


@pytest.fixture
def make_workbook():
    def build(rows, headers=HEADERS):
        workbook = Workbook()
        worksheet = workbook.active
        worksheet.append(headers)
        for row in rows:
            worksheet.append(row)
        buffer = BytesIO()
        workbook.save(buffer)
        return buffer.getvalue()
    return build


@pytest.fixture
def sample_records():
    return [
        {'student_id': 'S1', 'name': 'Ann', 'class_department': 'Grade 5',
         'date': '2024-01-05', 'punch_times': ['08:01', '08:02']},
        {'student_id': 'S2', 'name': 'Ben', 'class_department': 'Grade 5',
         'date': '2024-01-05', 'punch_times': ['08:10']},
        {'student_id': 'S1', 'name': 'Ann', 'class_department': 'Grade 5',
         'date': '2024-01-06', 'punch_times': ['07:55']},
    ]
