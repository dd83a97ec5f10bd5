from datetime import date, datetime, time

import pytest

from row_normalizer import (
    CellKind,
    WorkbookFormatError,
    classify_cell,
    detect_columns,
    normalize_row,
    normalize_rows,
    parse_date,
    parse_times,
    read_attendance_workbook,
)


def test_parse_date_accepts_common_text_formats():
    assert parse_date('2024-01-05') == date(2024, 1, 5)
    assert parse_date('1/5/2024') == date(2024, 1, 5)
    assert parse_date('01/05/2024') == date(2024, 1, 5)
    assert parse_date('January 5, 2024') == date(2024, 1, 5)
    assert parse_date('05.01.2024') == date(2024, 1, 5)


def test_parse_date_converts_excel_serials():
    assert parse_date(45296) == date(2024, 1, 5)
    assert parse_date(45296.0) == date(2024, 1, 5)


def test_parse_date_rejects_out_of_range_serials():
    assert parse_date(1) is None
    assert parse_date(0) is None
    assert parse_date(100000) is None


def test_parse_date_keeps_calendar_date_of_datetimes():
    assert parse_date(datetime(2024, 1, 5, 23, 30)) == date(2024, 1, 5)
    assert parse_date(date(2024, 1, 5)) == date(2024, 1, 5)


def test_parse_date_returns_none_for_garbage():
    assert parse_date('not a date') is None
    assert parse_date('2024-02-30') is None
    assert parse_date('13/45/2024') is None
    assert parse_date(None) is None
    assert parse_date('   ') is None


def test_classify_cell():
    assert classify_cell(None).kind is CellKind.EMPTY
    assert classify_cell('  ').kind is CellKind.EMPTY
    assert classify_cell(45296).kind is CellKind.NUMBER
    assert classify_cell(time(8, 1)).kind is CellKind.TIME
    assert classify_cell(datetime(2024, 1, 5)).kind is CellKind.DATE
    assert classify_cell(' 08:01 ').value == '08:01'


def test_parse_times_from_day_fractions():
    assert parse_times(0.5) == ('12:00',)
    assert parse_times(0.25) == ('06:00',)
    # Date and time in one serial keeps only the time of day
    assert parse_times(45296.75) == ('18:00',)


def test_parse_times_from_time_cells_and_text():
    assert parse_times(time(8, 1)) == ('08:01',)
    assert parse_times('08:01 08:02') == ('08:01', '08:02')
    assert parse_times('08:01\n12:30  16:45') == ('08:01', '12:30', '16:45')
    assert parse_times(None) == ()
    assert parse_times('') == ()


def test_non_finite_numbers_do_not_raise():
    assert parse_times(float('nan')) == ('nan',)
    assert parse_times(float('inf')) == ('inf',)
    assert parse_times(float('-inf')) == ('-inf',)
    assert parse_date(float('nan')) is None
    assert parse_date(float('inf')) is None


def test_normalize_row_builds_attendance_row():
    row, warning = normalize_row({
        'AC-No': 'S1',
        'Name': 'Ann',
        'Class': 'Grade 5',
        'Date': '01/05/2024',
        'Time': '08:01 08:02',
    }, row_number=2)

    assert warning is None
    assert row.student_id == 'S1'
    assert row.name == 'Ann'
    assert row.class_department == 'Grade 5'
    assert row.date == date(2024, 1, 5)
    assert row.punch_times == ('08:01', '08:02')
    assert row.to_payload(school_id=7) == {
        'student_id': 'S1',
        'name': 'Ann',
        'class_department': 'Grade 5',
        'punch_times': ['08:01', '08:02'],
        'date': '2024-01-05',
        'school_id': 7,
    }


def test_normalize_row_turns_numeric_ids_into_text():
    row, _ = normalize_row({'AC-No': 101.0, 'Name': 'Ann', 'Date': 45296, 'Time': None})
    assert row.student_id == '101'
    assert row.class_department == ''
    assert row.punch_times == ()


def test_normalize_row_warns_about_missing_fields():
    row, warning = normalize_row({'AC-No': 'S1', 'Name': '', 'Date': '2024-01-05'}, row_number=3)
    assert row is None
    assert warning == "Skipping row 3: Missing required data (AC-No: S1, Name: , Date: 2024-01-05)"

    row, warning = normalize_row({'AC-No': 'S1', 'Name': 'Ann', 'Date': 'someday'}, row_number=4)
    assert row is None
    assert 'Date: someday' in warning


def test_normalize_rows_collects_rows_and_warnings():
    rows, warnings = normalize_rows([
        {'AC-No': 'S1', 'Name': 'Ann', 'Date': '2024-01-05'},
        {'AC-No': '', 'Name': 'Ghost', 'Date': '2024-01-05'},
        {'AC-No': 'S2', 'Name': 'Ben', 'Date': '2024-01-05'},
    ])
    assert [r.student_id for r in rows] == ['S1', 'S2']
    assert len(warnings) == 1
    assert warnings[0].startswith('Skipping row 3:')


def test_detect_columns_maps_device_headers():
    mapping = detect_columns(['AC-No', 'Name', 'Department', 'Date', 'Time'])
    assert mapping == {'AC-No': 0, 'Name': 1, 'Class': 2, 'Date': 3, 'Time': 4}


def test_detect_columns_reports_missing_columns():
    with pytest.raises(WorkbookFormatError) as excinfo:
        detect_columns(['Name', 'Date'])
    message = str(excinfo.value)
    assert 'AC-No' in message
    assert 'Time' in message
    assert 'Found columns: Name, Date' in message


def test_read_attendance_workbook(make_workbook):
    content = make_workbook([
        ['S1', 'Ann', 'Grade 5', datetime(2024, 1, 5), '08:01 08:02'],
        ['S2', None, 'Grade 5', datetime(2024, 1, 5), '08:10'],
        [303, 'Cara', 'Grade 6', '1/6/2024', time(7, 55)],
    ])

    rows, warnings = read_attendance_workbook(content)

    assert [r.student_id for r in rows] == ['S1', '303']
    assert rows[0].date == date(2024, 1, 5)
    assert rows[0].punch_times == ('08:01', '08:02')
    assert rows[1].date == date(2024, 1, 6)
    assert rows[1].punch_times == ('07:55',)
    assert len(warnings) == 1
    assert warnings[0].startswith('Skipping row 3:')


def test_read_attendance_workbook_needs_data_rows(make_workbook):
    with pytest.raises(WorkbookFormatError):
        read_attendance_workbook(make_workbook([]))


def test_read_attendance_workbook_without_valid_rows(make_workbook):
    with pytest.raises(WorkbookFormatError) as excinfo:
        read_attendance_workbook(make_workbook([['', 'Nobody', '', '', '']]))
    assert 'No valid data rows' in str(excinfo.value)


def test_read_attendance_workbook_rejects_non_excel_content():
    with pytest.raises(WorkbookFormatError):
        read_attendance_workbook(b'AC-No,Name,Date\nS1,Ann,2024-01-05\n')
