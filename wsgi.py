import os

from app import create_app

app = create_app(os.environ.get('APP_ENV', 'production'))


def main():
    """Run the local development server."""
    # In production a WSGI server such as Gunicorn serves `wsgi:app`
    port = int(os.environ.get('PORT', 5001))
    print("\n" + "=" * 50)
    print("Starting local development server...")
    print(f"API available at: http://127.0.0.1:{port}")
    print("=" * 50 + "\n")
    app.run(host='127.0.0.1', port=port, debug=app.config.get('DEBUG', False))


if __name__ == '__main__':
    main()
