import os

# Server socket
bind = f"0.0.0.0:{os.environ.get('PORT', '5000')}"

# Import jobs are tracked in process memory, so status polls must reach the
# process that started the job: one worker, several threads
workers = 1
worker_class = 'gthread'
threads = int(os.environ.get('GUNICORN_THREADS', 4))

# Logging
loglevel = os.environ.get('LOG_LEVEL', 'info').lower()
accesslog = '-'
errorlog = '-'
capture_output = True

# Uploads are parsed inside the request; commits happen on the job pool
timeout = 90
graceful_timeout = 60
keepalive = 5

# Worker recycling would drop in-flight import jobs
max_requests = 0

reload = os.environ.get('APP_ENV') == 'development'


def worker_exit(server, worker):
    """Wait for running imports before the worker goes away."""
    from wsgi import app

    server.log.info("Waiting for import jobs to stop")
    app.extensions['import_runner'].shutdown(wait=True)
