"""
Normalization of attendance-device spreadsheet exports.

Device exports carry one row per student per day with columns such as
``AC-No``, ``Name``, ``Department``, ``Date`` and ``Time``. Depending on how
the file was produced the date column may hold real Excel dates, text in a
handful of formats, or bare serial numbers, and the time column may hold one
or many punches. Everything here turns those cells into
``NormalizedAttendanceRow`` values or a skip warning.
"""
import enum
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from io import BytesIO

from openpyxl import load_workbook

# Serial day 0 in the 1900 date system, shifted one day back so that the
# phantom 1900-02-29 does not push every later date off by one
EXCEL_EPOCH = date(1899, 12, 30)
EXCEL_SERIAL_MIN = 1
EXCEL_SERIAL_MAX = 100000

ISO_DATE_RE = re.compile(r'^\d{4}-\d{2}-\d{2}$')
US_DATE_RE = re.compile(r'^(\d{1,2})/(\d{1,2})/(\d{4})$')

GENERIC_DATE_FORMATS = [
    '%Y/%m/%d',
    '%m-%d-%Y',
    '%d.%m.%Y',
    '%d-%b-%Y',
    '%d %b %Y',
    '%d %B %Y',
    '%b %d, %Y',
    '%B %d, %Y',
    '%b %d %Y',
    '%Y-%m-%d %H:%M:%S',
    '%Y-%m-%d %H:%M',
    '%m/%d/%Y %H:%M:%S',
    '%m/%d/%Y %H:%M',
    '%Y/%m/%d %H:%M:%S',
    '%Y/%m/%d %H:%M',
]

REQUIRED_COLUMNS = ['AC-No', 'Name', 'Date', 'Time']


class WorkbookFormatError(ValueError):
    """Raised when an uploaded workbook cannot be read as an attendance export."""


class CellKind(enum.Enum):
    EMPTY = 'empty'
    DATE = 'date'
    TIME = 'time'
    NUMBER = 'number'
    TEXT = 'text'


@dataclass(frozen=True)
class Cell:
    kind: CellKind
    value: object = None


@dataclass(frozen=True)
class NormalizedAttendanceRow:
    student_id: str
    name: str
    class_department: str
    date: date
    punch_times: tuple = field(default_factory=tuple)

    def to_payload(self, school_id=None):
        """Shape used by the import endpoints."""
        payload = {
            'student_id': self.student_id,
            'name': self.name,
            'class_department': self.class_department,
            'punch_times': list(self.punch_times),
            'date': self.date.isoformat(),
        }
        if school_id is not None:
            payload['school_id'] = school_id
        return payload


def classify_cell(value):
    if value is None:
        return Cell(CellKind.EMPTY)
    # datetime is a subclass of date, so it lands here too
    if isinstance(value, date):
        return Cell(CellKind.DATE, value)
    if isinstance(value, time):
        return Cell(CellKind.TIME, value)
    if isinstance(value, bool):
        return Cell(CellKind.TEXT, str(value))
    if isinstance(value, (int, float)):
        return Cell(CellKind.NUMBER, value)
    text = str(value).strip()
    if not text:
        return Cell(CellKind.EMPTY)
    return Cell(CellKind.TEXT, text)


def excel_serial_to_date(serial):
    """Convert a 1900-system serial day number to a calendar date."""
    return EXCEL_EPOCH + timedelta(days=int(serial))


def _parse_date_text(text):
    if ISO_DATE_RE.match(text):
        try:
            return date.fromisoformat(text)
        except ValueError:
            return None

    match = US_DATE_RE.match(text)
    if match:
        month, day, year = (int(part) for part in match.groups())
        try:
            return date(year, month, day)
        except ValueError:
            return None

    for fmt in GENERIC_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue

    try:
        # ISO 8601 timestamps; the local calendar date is kept as written
        return datetime.fromisoformat(text.replace('Z', '+00:00')).date()
    except ValueError:
        pass

    # Serial numbers that arrive as text, e.g. from CSV exports
    try:
        return _parse_serial(float(text))
    except ValueError:
        return None


def _parse_serial(number):
    if EXCEL_SERIAL_MIN < number < EXCEL_SERIAL_MAX:
        return excel_serial_to_date(number)
    return None


def parse_date(value):
    """Return the calendar date held by a cell, or None when no rule applies."""
    cell = value if isinstance(value, Cell) else classify_cell(value)
    if cell.kind is CellKind.DATE:
        if isinstance(cell.value, datetime):
            return cell.value.date()
        return cell.value
    if cell.kind is CellKind.TEXT:
        return _parse_date_text(cell.value)
    if cell.kind is CellKind.NUMBER:
        return _parse_serial(cell.value)
    return None


def _format_minutes(total_minutes):
    hours = (total_minutes // 60) % 24
    minutes = total_minutes % 60
    return f"{hours:02d}:{minutes:02d}"


def parse_times(value):
    """
    Return the punch times held by a cell as a tuple of strings.

    Numeric cells are fractions of a day (0.5 is 12:00). Text cells may hold
    several punches separated by whitespace; tokens that do not look like
    times are kept verbatim. Never raises.
    """
    cell = value if isinstance(value, Cell) else classify_cell(value)
    if cell.kind is CellKind.EMPTY:
        return ()
    if cell.kind is CellKind.TIME:
        return (cell.value.strftime('%H:%M'),)
    if cell.kind is CellKind.DATE:
        if isinstance(cell.value, datetime):
            return (cell.value.strftime('%H:%M'),)
        return (cell.value.isoformat(),)
    if cell.kind is CellKind.NUMBER:
        if not math.isfinite(cell.value):
            return (str(cell.value),)
        fraction = cell.value % 1 if cell.value >= 1 else cell.value
        return (_format_minutes(int(round(fraction * 24 * 60))),)
    return tuple(token.strip() for token in cell.value.split() if token.strip())


def _text(value):
    if value is None:
        return ''
    if isinstance(value, float) and value.is_integer():
        # Numeric AC-No cells come back from openpyxl as floats
        return str(int(value))
    return str(value).strip()


def normalize_row(raw, row_number=None):
    """
    Normalize one raw row keyed by the canonical column names
    (``AC-No``, ``Name``, ``Class``, ``Date``, ``Time``).

    Returns ``(row, None)`` or ``(None, warning)``.
    """
    student_id = _text(raw.get('AC-No'))
    name = _text(raw.get('Name'))
    class_department = _text(raw.get('Class'))
    parsed_date = parse_date(raw.get('Date'))

    if not student_id or not name or parsed_date is None:
        label = f"row {row_number}" if row_number is not None else "row"
        shown_date = parsed_date.isoformat() if parsed_date else _text(raw.get('Date'))
        return None, (
            f"Skipping {label}: Missing required data "
            f"(AC-No: {student_id}, Name: {name}, Date: {shown_date})"
        )

    return NormalizedAttendanceRow(
        student_id=student_id,
        name=name,
        class_department=class_department,
        date=parsed_date,
        punch_times=parse_times(raw.get('Time')),
    ), None


def normalize_rows(raw_rows, first_row_number=2):
    """Normalize a sequence of raw rows; the header is row 1 on the sheet."""
    rows = []
    warnings = []
    for offset, raw in enumerate(raw_rows):
        row, warning = normalize_row(raw, row_number=first_row_number + offset)
        if row is None:
            warnings.append(warning)
        else:
            rows.append(row)
    return rows, warnings


def detect_columns(headers):
    """Map canonical column names to header positions."""
    mapping = {}
    for index, header in enumerate(headers):
        normalized = _text(header).lower()
        if not normalized:
            continue
        if any(key in normalized for key in ('ac-no', 'ac no', 'acno', 'account')):
            mapping['AC-No'] = index
        elif 'name' in normalized:
            mapping['Name'] = index
        elif 'department' in normalized or 'class' in normalized:
            mapping['Class'] = index
        elif 'date' in normalized:
            mapping['Date'] = index
        elif 'time' in normalized:
            mapping['Time'] = index

    missing = [column for column in REQUIRED_COLUMNS if column not in mapping]
    if missing:
        found = ', '.join(_text(h) for h in headers if _text(h))
        raise WorkbookFormatError(
            f"Missing required columns: {', '.join(missing)}. Found columns: {found}"
        )
    return mapping


def read_attendance_workbook(source):
    """
    Read the first worksheet of an attendance export.

    ``source`` may be a path, a file object or raw bytes. Returns
    ``(rows, warnings)``.
    """
    if isinstance(source, (bytes, bytearray)):
        source = BytesIO(source)
    try:
        workbook = load_workbook(source, read_only=True, data_only=True)
    except Exception as e:
        raise WorkbookFormatError(f"Unable to read the Excel file: {e}") from e

    try:
        if not workbook.sheetnames:
            raise WorkbookFormatError("No worksheets found in the Excel file")
        worksheet = workbook[workbook.sheetnames[0]]
        sheet_rows = list(worksheet.iter_rows(values_only=True))
    finally:
        workbook.close()

    if len(sheet_rows) < 2:
        raise WorkbookFormatError("Excel file must contain at least a header row and one data row")

    mapping = detect_columns(sheet_rows[0])

    rows = []
    warnings = []
    for row_number, values in enumerate(sheet_rows[1:], start=2):
        if not values or all(v is None or str(v).strip() == '' for v in values):
            continue
        raw = {
            column: values[index] if index < len(values) else None
            for column, index in mapping.items()
        }
        row, warning = normalize_row(raw, row_number=row_number)
        if row is None:
            warnings.append(warning)
        else:
            rows.append(row)

    if not rows:
        raise WorkbookFormatError(
            "No valid data rows found in the Excel file. Please check that your data "
            "contains AC-No, Name, and Date columns with valid values."
        )
    return rows, warnings
