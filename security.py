from flask import request


def add_security_headers(response):
    """Add security headers to every JSON response"""
    # Nothing here is meant to be framed or to run scripts
    response.headers['Content-Security-Policy'] = "default-src 'none'; frame-ancestors 'none'"

    # Other security headers
    response.headers['X-Frame-Options'] = 'DENY'
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['Referrer-Policy'] = 'same-origin'
    response.headers['Permissions-Policy'] = 'geolocation=(), microphone=(), camera=()'

    # Import status must never be served from a cache
    response.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate, max-age=0'

    return response


def make_cors_handler(allowed_origins):
    """Echo the Origin header back for the dashboard front-ends we serve."""
    allowed = set(allowed_origins or [])

    def add_cors_headers(response):
        origin = request.headers.get('Origin')
        if origin and ('*' in allowed or origin in allowed):
            response.headers['Access-Control-Allow-Origin'] = origin
            response.headers['Vary'] = 'Origin'
            response.headers['Access-Control-Allow-Headers'] = 'Content-Type, X-User-Id'
            response.headers['Access-Control-Allow-Methods'] = 'GET, POST, PUT, DELETE, OPTIONS'
        return response

    return add_cors_headers


def init_security(app):
    """Initialize security features for the Flask app"""
    if app.config.get('PREFERRED_URL_SCHEME') == 'https':
        app.config['SESSION_COOKIE_SECURE'] = True
    app.config['SESSION_COOKIE_HTTPONLY'] = True
    app.config['SESSION_COOKIE_SAMESITE'] = 'Lax'

    # Add security headers to all responses
    app.after_request(add_security_headers)
    if app.config.get('CORS_ALLOWED_ORIGINS'):
        app.after_request(make_cors_handler(app.config['CORS_ALLOWED_ORIGINS']))
