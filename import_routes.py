import logging
import os

from flask import Blueprint, current_app, jsonify, request

from app_models import db
from batch_import import (
    ImportValidationError,
    SchoolNotFoundError,
    coerce_school_id,
    commit_batch,
    ensure_school_exists,
    run_import,
    validate_import_rows,
)
from data_isolation_helpers import from_json_field, get_json_object, school_role_required
from row_normalizer import WorkbookFormatError, read_attendance_workbook

logger = logging.getLogger(__name__)

import_bp = Blueprint('import_excel', __name__, url_prefix='/api/import-excel')

ALLOWED_EXTENSIONS = {'.xlsx', '.xlsm'}


def get_job_store():
    return current_app.extensions['import_jobs']


def get_job_runner():
    return current_app.extensions['import_runner']


def _json_body():
    body = get_json_object()
    if body is None:
        raise ImportValidationError("Invalid request body. Expected 'data' array.")
    return body


def _job_school_id(kwargs):
    body = get_json_object() or {}
    job_id = body.get('jobId') or request.args.get('jobId')
    job = get_job_store().get(job_id) if job_id else None
    return job.school_id if job else None


def _school_id_for(body, data):
    school_id = body.get('schoolId')
    if school_id in (None, ''):
        school_id = body.get('school_id')
    if school_id in (None, '') and data:
        school_id = data[0].get('school_id')
    return coerce_school_id(school_id)


@import_bp.errorhandler(ImportValidationError)
def handle_validation_error(e):
    return jsonify({'error': str(e)}), 400


@import_bp.errorhandler(SchoolNotFoundError)
def handle_school_not_found(e):
    return jsonify({'error': str(e)}), 400


@import_bp.route('', methods=['POST'])
@school_role_required('editor', from_json_field('schoolId', 'school_id'))
def import_excel():
    """Import every record in one request and return the final summary"""
    body = _json_body()
    data = validate_import_rows(body.get('data'))
    school_id = _school_id_for(body, data)
    ensure_school_exists(school_id)

    try:
        summary = run_import(data, school_id, batch_size=current_app.config['IMPORT_BATCH_SIZE'])
    except Exception as e:
        db.session.rollback()
        logger.exception("Error importing Excel data")
        return jsonify({'error': 'Failed to import data', 'details': str(e)}), 500

    return jsonify({
        'success': True,
        'message': 'Data imported successfully',
        'summary': summary.to_dict(),
    })


@import_bp.route('/start', methods=['POST'])
@school_role_required('editor', from_json_field('schoolId', 'school_id'))
def start_import():
    """Queue an import job and return its id without waiting for it"""
    body = _json_body()
    data = validate_import_rows(body.get('data'))
    school_id = _school_id_for(body, data)
    ensure_school_exists(school_id)

    try:
        job = get_job_runner().start(data, school_id, payload=body)
    except Exception as e:
        logger.exception("Error starting import job")
        return jsonify({'error': 'Failed to start import job', 'details': str(e)}), 500

    return jsonify({
        'success': True,
        'message': 'Import job started',
        'jobId': job.id,
    })


@import_bp.route('/status', methods=['GET'])
def import_status():
    job_id = request.args.get('jobId')
    if not job_id:
        return jsonify({'error': 'Job ID is required'}), 400

    report = get_job_store().report(job_id)
    if report is None:
        return jsonify({'error': 'Job not found or expired'}), 404
    return jsonify(report)


@import_bp.route('/cancel', methods=['POST'])
@school_role_required('editor', _job_school_id)
def cancel_import():
    body = _json_body()
    job_id = body.get('jobId') or request.args.get('jobId')
    if not job_id:
        return jsonify({'error': 'Job ID is required'}), 400

    job = get_job_store().request_cancel(job_id)
    if job is None:
        return jsonify({'error': 'Job not found or expired'}), 404

    logger.info("Cancellation requested for import job %s", job_id)
    return jsonify({'success': True, 'jobId': job.id, 'status': job.status})


@import_bp.route('/batch', methods=['POST'])
@school_role_required('editor', from_json_field('schoolId', 'school_id'))
def import_batch():
    """Commit a single batch sent by a client that drives the batching itself"""
    body = _json_body()
    batch = body.get('batch')
    if not batch or not isinstance(batch, list):
        return jsonify({'error': 'Invalid batch data'}), 400
    validate_import_rows(batch)

    try:
        batch_index = int(body.get('batchIndex', 0))
        total_batches = int(body.get('totalBatches', 1))
    except (TypeError, ValueError):
        raise ImportValidationError("batchIndex and totalBatches must be integers")
    school_id = _school_id_for(body, batch)
    ensure_school_exists(school_id)

    logger.info("Processing batch %s/%s (%d records)", batch_index + 1, total_batches, len(batch))
    try:
        result = commit_batch(batch, school_id)
    except Exception as e:
        db.session.rollback()
        logger.exception("Error processing batch %s", batch_index)
        return jsonify({'error': 'Failed to process batch', 'details': str(e)}), 500

    return jsonify({
        'success': True,
        'batchIndex': batch_index,
        'totalBatches': total_batches,
        'summary': result.to_dict(),
    })


@import_bp.route('/parse', methods=['POST'])
def parse_workbook():
    """Read an uploaded attendance export and return rows ready to submit"""
    upload = request.files.get('file')
    if upload is None or not upload.filename:
        return jsonify({'error': 'No file uploaded'}), 400

    extension = os.path.splitext(upload.filename)[1].lower()
    if extension not in ALLOWED_EXTENSIONS:
        return jsonify({'error': f'Unsupported file type: {extension or "none"}. Upload an .xlsx file.'}), 400

    try:
        rows, warnings = read_attendance_workbook(upload.read())
    except WorkbookFormatError as e:
        return jsonify({'error': str(e)}), 400

    return jsonify({
        'success': True,
        'rows': [row.to_payload() for row in rows],
        'warnings': warnings,
        'totalRows': len(rows),
    })
