from datetime import datetime

from flask import Blueprint, current_app, jsonify
from sqlalchemy import text

from app_models import db

health_bp = Blueprint('health', __name__)


@health_bp.route('/health')
def health_check():
    """Health check endpoint for external monitoring"""
    try:
        db.session.execute(text('SELECT 1'))
        database = 'ok'
    except Exception as e:
        current_app.logger.warning("Health check database query failed: %s", e)
        database = 'unavailable'

    status_code = 200 if database == 'ok' else 503
    return jsonify({
        'status': 'ok' if database == 'ok' else 'degraded',
        'service': 'schoolops-backend',
        'timestamp': datetime.utcnow().isoformat() + 'Z',
        'database': database,
        'importJobs': len(current_app.extensions['import_jobs']),
    }), status_code
