from datetime import datetime
from io import BytesIO

from app_models import Attendance, SchoolAccess, db


def _start(client, records, school_id):
    return client.post('/api/import-excel/start', json={'data': records, 'schoolId': school_id})


def test_start_returns_job_id_before_any_work(client, executor, school_id, sample_records):
    response = _start(client, sample_records, school_id)

    assert response.status_code == 200
    body = response.get_json()
    assert body['success'] is True
    job_id = body['jobId']

    status = client.get(f'/api/import-excel/status?jobId={job_id}').get_json()
    assert status['jobId'] == job_id
    assert status['status'] == 'queued'
    assert status['progress'] == 0
    assert len(executor.pending) == 1


def test_status_reports_completed_job(client, executor, school_id, sample_records):
    job_id = _start(client, sample_records, school_id).get_json()['jobId']
    executor.run_all()

    response = client.get('/api/import-excel/status', query_string={'jobId': job_id})

    assert response.status_code == 200
    status = response.get_json()
    assert status['status'] == 'completed'
    assert status['progress'] == 100
    assert status['error'] is None
    summary = status['result']['summary']
    assert summary['totalRecordsProcessed'] == 3
    assert summary['newStudentsRegistered'] == 2
    assert summary['attendanceRecordsProcessed'] == 3
    assert summary['totalBatches'] == 2
    assert response.headers['Cache-Control'].startswith('no-store')


def test_start_takes_school_from_records(client, executor, school_id, sample_records):
    records = [dict(r, school_id=school_id) for r in sample_records]
    response = client.post('/api/import-excel/start', json={'data': records})
    assert response.status_code == 200


def test_start_rejects_bad_payloads(client, executor, school_id):
    response = client.post('/api/import-excel/start', json={'data': [], 'schoolId': school_id})
    assert response.status_code == 400
    assert response.get_json()['error'] == 'No data provided for import.'

    response = client.post('/api/import-excel/start', json={'data': 'S1', 'schoolId': school_id})
    assert response.status_code == 400
    assert response.get_json()['error'] == "Invalid request body. Expected 'data' array."

    response = client.post('/api/import-excel/start', json={'data': [{'student_id': 'S1'}]})
    assert response.status_code == 400

    assert executor.pending == []


def test_start_rejects_unknown_school(client, executor, sample_records):
    response = _start(client, sample_records, 999)

    assert response.status_code == 400
    assert response.get_json()['error'] == 'School with ID 999 not found'
    assert executor.pending == []


def test_status_requires_a_known_job(client):
    response = client.get('/api/import-excel/status')
    assert response.status_code == 400
    assert response.get_json()['error'] == 'Job ID is required'

    response = client.get('/api/import-excel/status?jobId=does-not-exist')
    assert response.status_code == 404
    assert response.get_json()['error'] == 'Job not found or expired'


def test_cancel_before_first_batch(app, client, executor, school_id, sample_records):
    job_id = _start(client, sample_records, school_id).get_json()['jobId']

    response = client.post('/api/import-excel/cancel', json={'jobId': job_id})
    assert response.status_code == 200
    assert response.get_json()['status'] == 'queued'

    executor.run_all()

    status = client.get(f'/api/import-excel/status?jobId={job_id}').get_json()
    assert status['status'] == 'completed'
    assert status['result']['summary']['cancelled'] is True
    with app.app_context():
        assert Attendance.query.count() == 0


def test_cancel_unknown_job(client):
    assert client.post('/api/import-excel/cancel', json={}).status_code == 400
    assert client.post('/api/import-excel/cancel?jobId=nope').status_code == 404


def test_synchronous_import(app, client, school_id, sample_records):
    response = client.post('/api/import-excel', json={'data': sample_records, 'schoolId': school_id})

    assert response.status_code == 200
    body = response.get_json()
    assert body['success'] is True
    assert body['summary']['attendanceRecordsProcessed'] == 3
    assert body['summary']['batchesProcessed'] == 2
    with app.app_context():
        assert Attendance.query.count() == 3


def test_single_batch_import(client, school_id, sample_records):
    response = client.post('/api/import-excel/batch', json={
        'batch': sample_records[:2],
        'batchIndex': '1',
        'totalBatches': 2,
        'schoolId': school_id,
    })

    assert response.status_code == 200
    body = response.get_json()
    assert body['batchIndex'] == 1
    assert body['totalBatches'] == 2
    assert body['summary'] == {
        'newStudentsRegistered': 2,
        'attendanceRecordsProcessed': 2,
        'recordsProcessed': 2,
    }


def test_single_batch_requires_records(client, school_id):
    response = client.post('/api/import-excel/batch', json={'batch': [], 'schoolId': school_id})
    assert response.status_code == 400
    assert response.get_json()['error'] == 'Invalid batch data'


def test_parse_upload(client, make_workbook):
    content = make_workbook([
        ['S1', 'Ann', 'Grade 5', datetime(2024, 1, 5), '08:01 08:02'],
        ['', 'Nobody', '', datetime(2024, 1, 5), ''],
    ])

    response = client.post(
        '/api/import-excel/parse',
        data={'file': (BytesIO(content), 'export.xlsx')},
        content_type='multipart/form-data',
    )

    assert response.status_code == 200
    body = response.get_json()
    assert body['totalRows'] == 1
    assert body['rows'][0] == {
        'student_id': 'S1',
        'name': 'Ann',
        'class_department': 'Grade 5',
        'punch_times': ['08:01', '08:02'],
        'date': '2024-01-05',
    }
    assert len(body['warnings']) == 1


def test_parse_upload_rejects_other_files(client):
    response = client.post(
        '/api/import-excel/parse',
        data={'file': (BytesIO(b'a,b\n'), 'export.csv')},
        content_type='multipart/form-data',
    )
    assert response.status_code == 400

    response = client.post('/api/import-excel/parse', data={}, content_type='multipart/form-data')
    assert response.status_code == 400
    assert response.get_json()['error'] == 'No file uploaded'


def test_import_requires_editor_role_when_enforced(app, client, executor, school_id, sample_records):
    app.config['ENFORCE_SCHOOL_ACCESS'] = True
    with app.app_context():
        db.session.add(SchoolAccess(school_id=school_id, user_id='viewer-1', role='viewer'))
        db.session.add(SchoolAccess(school_id=school_id, user_id='editor-1', role='editor'))
        db.session.commit()

    payload = {'data': sample_records, 'schoolId': school_id}

    assert client.post('/api/import-excel/start', json=payload).status_code == 401

    response = client.post('/api/import-excel/start', json=payload, headers={'X-User-Id': 'viewer-1'})
    assert response.status_code == 403

    response = client.post('/api/import-excel/start', json=payload, headers={'X-User-Id': 'editor-1'})
    assert response.status_code == 200

    job_id = response.get_json()['jobId']
    response = client.post('/api/import-excel/cancel', json={'jobId': job_id},
                           headers={'X-User-Id': 'viewer-1'})
    assert response.status_code == 403


def test_non_object_bodies_are_rejected(client, executor, school_id, sample_records):
    for url in ('/api/import-excel', '/api/import-excel/start', '/api/import-excel/batch'):
        response = client.post(url, json=sample_records)
        assert response.status_code == 400
        assert response.get_json()['error'] == "Invalid request body. Expected 'data' array."

    assert client.post('/api/import-excel/cancel', json=['job']).status_code == 400
    assert executor.pending == []


def test_non_object_body_is_rejected_when_enforced(app, client, executor, sample_records):
    app.config['ENFORCE_SCHOOL_ACCESS'] = True

    response = client.post('/api/import-excel/start', json=sample_records, headers={'X-User-Id': 'editor-1'})

    assert response.status_code == 400
    assert executor.pending == []


def test_school_id_zero_is_not_replaced_by_record_school(client, executor, school_id, sample_records):
    records = [dict(r, school_id=school_id) for r in sample_records]

    response = client.post('/api/import-excel/start', json={'data': records, 'schoolId': 0})

    assert response.status_code == 400
    assert response.get_json()['error'] == 'School with ID 0 not found'
    assert executor.pending == []
