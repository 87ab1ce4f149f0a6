from flask import Flask, jsonify, request
from flask_cors import CORS
import os
from urllib.parse import unquote_to_bytes, urlsplit
from dotenv import load_dotenv

from pageview_counter.models import db
from pageview_counter.view_counter import ViewCounter, StoreError, get_counter

load_dotenv()


def load_config(app):
    """Copy environment settings into app.config"""
    app.config['SQLALCHEMY_DATABASE_URI'] = os.getenv(
        'DATABASE_URL', f'sqlite:///{os.path.join(os.getcwd(), "viewcount.db")}'
    )
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['CORS_ORIGINS'] = os.getenv('CORS_ORIGINS', '*')

    lock_timeout = os.getenv('COUNTER_LOCK_TIMEOUT')
    app.config['COUNTER_LOCK_TIMEOUT'] = float(lock_timeout) if lock_timeout else None

    app.config['HOST'] = os.getenv('HOST', '0.0.0.0')
    app.config['PORT'] = int(os.getenv('PORT', 3002))
    app.config['WAITRESS_THREADS'] = int(os.getenv('WAITRESS_THREADS', 8))


def parse_origins(value):
    if isinstance(value, str):
        value = [origin.strip() for origin in value.split(',') if origin.strip()]
    if not value or '*' in value:
        return '*'
    return list(value)


def init_cors(app):
    origins = parse_origins(app.config['CORS_ORIGINS'])
    CORS(app, resources={
        r'/count/*': {
            'origins': origins,
            'methods': ['GET'],
            'supports_credentials': origins != '*',
        }
    })
    print(f"Using CORS origins: {origins}", flush=True)


def decode_request_path(environ):
    """Percent-decode the request path as strict UTF-8.

    Raises UnicodeError when the path holds bytes that aren't UTF-8.
    """
    raw_uri = environ.get('RAW_URI') or environ.get('REQUEST_URI')
    if raw_uri:
        path = urlsplit(raw_uri).path.encode('latin-1')
        return unquote_to_bytes(path).decode('utf-8')
    # PATH_INFO is already percent-decoded, one latin-1 char per byte
    return environ.get('PATH_INFO', '').encode('latin-1').decode('utf-8')


def create_app(test_config=None):
    app = Flask(__name__)
    load_config(app)
    if test_config is not None:
        app.config.update(test_config)

    # Initialize extensions
    db.init_app(app)
    ViewCounter(app, lock_timeout=app.config['COUNTER_LOCK_TIMEOUT'])
    init_cors(app)

    @app.route('/count/<path:page_key>', methods=['GET'])
    def count_view(page_key):
        try:
            decode_request_path(request.environ)
        except UnicodeError:
            return '', 400

        try:
            views = get_counter().record_view(page_key)
        except StoreError:
            app.logger.exception("Failed to record view for %r", page_key)
            return '', 500
        return jsonify({'views': views})

    return app


def main():
    from waitress import serve

    app = create_app()
    host, port = app.config['HOST'], app.config['PORT']
    print(f"Listening on {host}:{port}", flush=True)
    serve(app, host=host, port=port, threads=app.config['WAITRESS_THREADS'])


if __name__ == '__main__':
    main()
