from setuptools import setup

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="schoolops-dashboard",
    version="1.0.0",
    description="School operations backend with bulk attendance import",
    long_description=long_description,
    long_description_content_type="text/markdown",
    py_modules=[
        'api_routes',
        'app',
        'app_models',
        'batch_import',
        'build',
        'config',
        'data_isolation_helpers',
        'gunicorn_config',
        'health',
        'import_jobs',
        'import_routes',
        'row_normalizer',
        'security',
        'wsgi',
    ],
    include_package_data=True,
    install_requires=[
        'Flask>=2.3',
        'Flask-SQLAlchemy>=3.0.5',
        'python-dotenv>=1.0.0',
        'SQLAlchemy>=2.0',
        'Werkzeug>=2.3',
        'click>=8.1',
        'gunicorn>=21.2.0',
        'psycopg2-binary>=2.9.9',
        'openpyxl>=3.1',
    ],
    extras_require={
        'test': [
            'pytest>=7.4',
        ],
    },
    python_requires='>=3.9',
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    entry_points={
        'console_scripts': [
            'schoolops=wsgi:main',
        ],
    },
)
