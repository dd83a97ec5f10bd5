import logging
import os
from logging.config import dictConfig

import click
from dotenv import load_dotenv
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

# Load environment variables from .env file before the config classes read them
load_dotenv()

from config import INSTANCE_PATH, get_config
from app_models import db, School, SchoolAccess
from security import init_security
from health import health_bp
from api_routes import api_bp
from import_routes import import_bp
from import_jobs import ImportJobStore, ImportJobRunner
from batch_import import SchoolNotFoundError, ensure_school_exists, run_import
from row_normalizer import WorkbookFormatError, read_attendance_workbook

logger = logging.getLogger(__name__)


def configure_logging(level):
    dictConfig({
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'default': {
                'format': '[%(asctime)s] %(levelname)s in %(name)s: %(message)s',
            },
        },
        'handlers': {
            'console': {
                'class': 'logging.StreamHandler',
                'formatter': 'default',
            },
        },
        'root': {
            'level': level,
            'handlers': ['console'],
        },
    })


def create_app(config_name=None, **overrides):
    config_class = get_config(config_name)
    configure_logging(overrides.get('LOG_LEVEL', config_class.LOG_LEVEL))

    app = Flask(__name__, instance_path=INSTANCE_PATH)
    app.config.from_object(config_class)
    app.config.update(overrides)

    # Set up instance path for SQLite and other app data
    os.makedirs(app.instance_path, exist_ok=True)

    if hasattr(config_class, 'init_app'):
        config_class.init_app(app)

    db.init_app(app)
    init_security(app)

    store = ImportJobStore(ttl_seconds=app.config['IMPORT_JOB_TTL_SECONDS'])
    app.extensions['import_jobs'] = store
    app.extensions['import_runner'] = ImportJobRunner(app, store)

    app.register_blueprint(health_bp)
    app.register_blueprint(api_bp)
    app.register_blueprint(import_bp)

    register_error_handlers(app)
    register_commands(app)

    with app.app_context():
        db.create_all()

    logger.info("Application started with %s", config_class.__name__)
    return app


def register_error_handlers(app):
    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({'error': e.description}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        db.session.rollback()
        logger.exception("Unhandled error")
        return jsonify({'error': 'Internal server error', 'details': str(e)}), 500


# Helper function to create default school on first run
def create_default_school_and_admin(app):
    """Creates a default school and grants admin access if no school exists."""
    admin_user_id = app.config.get('DEFAULT_ADMIN_USER_ID')
    if not admin_user_id:
        logger.warning("DEFAULT_ADMIN_USER_ID is not set. Skipping default school creation.")
        return None

    if School.query.first() is not None:
        return None

    logger.info("No schools found in the database. Creating default school...")
    school = School(name=app.config['DEFAULT_SCHOOL_NAME'])
    db.session.add(school)
    db.session.flush()  # Flush to get the school's ID before committing
    db.session.add(SchoolAccess(school_id=school.id, user_id=admin_user_id, role='admin'))
    db.session.commit()
    logger.info("Default school '%s' created with admin '%s'", school.name, admin_user_id)
    return school


def register_commands(app):
    @app.cli.command('init-db')
    def init_db_command():
        """Create tables and the default school."""
        db.create_all()
        create_default_school_and_admin(app)
        click.echo('Database initialised.')

    @app.cli.command('import-attendance')
    @click.argument('path', type=click.Path(exists=True, dir_okay=False))
    @click.option('--school-id', type=int, required=True, help='School receiving the records')
    @click.option('--batch-size', type=int, default=None, help='Records committed per batch')
    def import_attendance_command(path, school_id, batch_size):
        """Import an attendance-device Excel export."""
        try:
            ensure_school_exists(school_id)
            rows, warnings = read_attendance_workbook(path)
        except (SchoolNotFoundError, WorkbookFormatError) as e:
            raise click.ClickException(str(e))

        for warning in warnings:
            click.echo(f'warning: {warning}', err=True)

        def on_batch(completed, total, summary):
            click.echo(f'Batch {completed}/{total} done')

        summary = run_import(
            rows,
            school_id,
            batch_size=batch_size or app.config['IMPORT_BATCH_SIZE'],
            on_batch=on_batch,
        )
        for error in summary.errors:
            click.echo(f'error: {error}', err=True)
        click.echo(
            f'{summary.new_students} new students, '
            f'{summary.attendance_records} attendance records from '
            f'{summary.records_processed} rows'
        )
