"""
Configuration for the school operations backend
"""
import os

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
INSTANCE_PATH = os.path.join(BASE_DIR, 'instance')


def get_database_url():
    database_url = os.environ.get('DATABASE_URL')
    if database_url and database_url.startswith("postgres://"):
        # Hosted Postgres hands out the legacy scheme; SQLAlchemy needs postgresql://
        return database_url.replace("postgres://", "postgresql://", 1)
    if database_url:
        return database_url
    return f"sqlite:///{os.path.join(INSTANCE_PATH, 'schoolops.db')}"


class Config:
    DEBUG = False
    TESTING = False
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key')

    # Database
    SQLALCHEMY_DATABASE_URI = get_database_url()
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Excel import
    IMPORT_BATCH_SIZE = int(os.environ.get('IMPORT_BATCH_SIZE', 25))
    IMPORT_JOB_TTL_SECONDS = int(os.environ.get('IMPORT_JOB_TTL_SECONDS', 30 * 60))
    IMPORT_WORKERS = int(os.environ.get('IMPORT_WORKERS', 2))

    # Access control
    ENFORCE_SCHOOL_ACCESS = os.environ.get('ENFORCE_SCHOOL_ACCESS', 'true').lower() != 'false'
    CORS_ALLOWED_ORIGINS = [o.strip() for o in os.environ.get('CORS_ALLOWED_ORIGINS', '').split(',') if o.strip()]

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    # First-run bootstrap
    DEFAULT_SCHOOL_NAME = os.environ.get('DEFAULT_SCHOOL_NAME', 'Default School')
    DEFAULT_ADMIN_USER_ID = os.environ.get('DEFAULT_ADMIN_USER_ID')


class DevelopmentConfig(Config):
    DEBUG = True
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'DEBUG')


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    ENFORCE_SCHOOL_ACCESS = False
    IMPORT_BATCH_SIZE = 2
    IMPORT_WORKERS = 1


class ProductionConfig(Config):
    PREFERRED_URL_SCHEME = 'https'

    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_size': 10,
        'pool_timeout': 30,
        'pool_recycle': 1800,  # Recycle connections after 30 minutes
        'max_overflow': 2,
        'pool_pre_ping': True,
    }

    @staticmethod
    def init_app(app):
        if app.config['SECRET_KEY'] == 'dev-secret-key':
            app.logger.warning("SECRET_KEY is not set; using the development default")


config_by_name = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
}


def get_config(config_name=None):
    name = config_name or os.environ.get('APP_ENV', 'development')
    try:
        return config_by_name[name]
    except KeyError:
        raise ValueError(f"Unknown configuration '{name}'. Expected one of: {', '.join(config_by_name)}")
