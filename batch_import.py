"""
Batched commit of normalized attendance rows.

Records are committed one at a time so that a bad record only costs itself;
batches run strictly in order so two records for the same student and day
never race on find-or-create.
"""
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime

from app_models import db, School, Student, Attendance
from row_normalizer import NormalizedAttendanceRow, parse_date

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 25


class ImportValidationError(ValueError):
    """Request-level input problem; nothing has been written."""


class SchoolNotFoundError(LookupError):
    def __init__(self, school_id):
        super().__init__(f"School with ID {school_id} not found")
        self.school_id = school_id


@dataclass
class BatchResult:
    new_students: int = 0
    attendance_records: int = 0
    records_processed: int = 0
    errors: list = field(default_factory=list)

    def to_dict(self):
        data = {
            'newStudentsRegistered': self.new_students,
            'attendanceRecordsProcessed': self.attendance_records,
            'recordsProcessed': self.records_processed,
        }
        if self.errors:
            data['errors'] = list(self.errors)
        return data


@dataclass
class ImportSummary:
    new_students: int = 0
    attendance_records: int = 0
    records_processed: int = 0
    batches_processed: int = 0
    total_batches: int = 0
    cancelled: bool = False
    errors: list = field(default_factory=list)

    def add(self, result):
        self.new_students += result.new_students
        self.attendance_records += result.attendance_records
        self.records_processed += result.records_processed
        self.errors.extend(result.errors)

    def to_dict(self):
        data = {
            'newStudentsRegistered': self.new_students,
            'attendanceRecordsProcessed': self.attendance_records,
            'totalRecordsProcessed': self.records_processed,
            'batchesProcessed': self.batches_processed,
            'totalBatches': self.total_batches,
            'cancelled': self.cancelled,
        }
        if self.errors:
            data['errors'] = list(self.errors)
        return data


def split_batches(rows, size=DEFAULT_BATCH_SIZE):
    if size < 1:
        raise ValueError("Batch size must be at least 1")
    rows = list(rows)
    return [rows[i:i + size] for i in range(0, len(rows), size)]


def ensure_school_exists(school_id):
    school = db.session.get(School, school_id) if school_id is not None else None
    if school is None:
        raise SchoolNotFoundError(school_id)
    return school


def coerce_school_id(value):
    if value is None or value == '':
        raise ImportValidationError("school_id is required")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ImportValidationError(f"Invalid school_id: {value}")


def validate_import_rows(data):
    """Boundary check for submitted payloads."""
    if not isinstance(data, list):
        raise ImportValidationError("Invalid request body. Expected 'data' array.")
    if not data:
        raise ImportValidationError("No data provided for import.")
    for record in data:
        if not isinstance(record, dict):
            raise ImportValidationError("Each record must be a JSON object.")
    return data


def _record_fields(record):
    if isinstance(record, NormalizedAttendanceRow):
        return record.student_id, record.name, record.class_department, record.date, list(record.punch_times)
    return (
        str(record.get('student_id') or '').strip(),
        str(record.get('name') or '').strip(),
        str(record.get('class_department') or '').strip(),
        record.get('date'),
        record.get('punch_times') or [],
    )


def _describe(record):
    if isinstance(record, NormalizedAttendanceRow):
        return json.dumps(record.to_payload())
    return json.dumps(record, default=str)


def clean_punch_times(punch_times):
    if isinstance(punch_times, str):
        punch_times = punch_times.split()
    return [str(t).strip() for t in punch_times if t is not None and str(t).strip()]


def find_or_create_student(school_id, student_id, name, class_department):
    """Returns ``(student, created)``."""
    student = Student.query.filter_by(school_id=school_id, student_id=student_id).first()
    if student is None:
        student = Student(
            school_id=school_id,
            student_id=student_id,
            name=name,
            class_department=class_department or '',
            system_id=str(uuid.uuid4()),
        )
        db.session.add(student)
        db.session.flush()
        return student, True

    if name != student.name or (class_department and class_department != student.class_department):
        student.name = name
        student.class_department = class_department or student.class_department
    return student, False


def merge_attendance(student, attendance_date, punch_times):
    """Find-or-create the (student, date) record and union its punches."""
    attendance = Attendance.query.filter_by(student_id=student.id, date=attendance_date).first()
    if attendance is None:
        attendance = Attendance(
            student_id=student.id,
            date=attendance_date,
            punch_times=sorted(set(punch_times)),
        )
        db.session.add(attendance)
    else:
        merged = sorted(set(attendance.punch_times or []) | set(punch_times))
        # Reassign so the JSON column is flagged dirty
        attendance.punch_times = merged
        attendance.updated_at = datetime.utcnow()
    return attendance


def commit_batch(batch, school_id):
    """
    Commit one batch record by record.

    Per-record problems become warning strings in the result; the batch keeps
    going. The school must already have been checked with
    ``ensure_school_exists``.
    """
    result = BatchResult(records_processed=len(batch))

    for record in batch:
        student_id, name, class_department, raw_date, punch_times = _record_fields(record)

        if not student_id or not name or raw_date in (None, ''):
            result.errors.append(f"Skipping record with missing required fields: {_describe(record)}")
            continue

        attendance_date = raw_date if isinstance(raw_date, date) else parse_date(raw_date)
        if attendance_date is None:
            result.errors.append(f"Skipping record with invalid date format: {raw_date}")
            continue

        try:
            student, created = find_or_create_student(school_id, student_id, name, class_department)
            merge_attendance(student, attendance_date, clean_punch_times(punch_times))
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            result.errors.append(f"Error processing record for student {student_id}: {e}")
            continue

        if created:
            result.new_students += 1
        result.attendance_records += 1

    return result


def run_import(rows, school_id, batch_size=DEFAULT_BATCH_SIZE, on_batch=None, should_cancel=None):
    """
    Drive every batch through ``commit_batch`` in order.

    ``should_cancel()`` is checked before each batch. ``on_batch(completed,
    total, summary)`` is called after each batch, failed or not.
    """
    batches = split_batches(rows, batch_size)
    summary = ImportSummary(total_batches=len(batches))
    logger.info("Processing %d records in %d batches of %d for school %s",
                len(rows), len(batches), batch_size, school_id)

    for index, batch in enumerate(batches):
        if should_cancel is not None and should_cancel():
            summary.cancelled = True
            logger.info("Import for school %s cancelled after %d/%d batches",
                        school_id, index, len(batches))
            break

        try:
            summary.add(commit_batch(batch, school_id))
        except Exception as e:
            db.session.rollback()
            logger.warning("Error processing batch %d/%d: %s", index + 1, len(batches), e)
            summary.errors.append(f"Failed to process batch {index + 1}: {e}")
        summary.batches_processed = index + 1

        if on_batch is not None:
            on_batch(index + 1, len(batches), summary)

    return summary


def progress_percent(completed, total):
    if total <= 0:
        return 100
    return max(0, min(100, round(completed / total * 100)))
