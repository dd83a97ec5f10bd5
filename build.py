#!/usr/bin/env python3
"""
Build script for deployment.
This script initializes the database and creates necessary tables.
"""

import os

from app import create_app, create_default_school_and_admin
from app_models import db


def initialize_database():
    """Initialize database for production deployment."""
    app = create_app(os.environ.get('APP_ENV', 'production'))
    with app.app_context():
        print("Creating database tables...")
        db.create_all()

        print("Creating default school and admin access...")
        create_default_school_and_admin(app)

        print("Database initialization completed successfully!")


if __name__ == "__main__":
    initialize_database()
