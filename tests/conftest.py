import pytest

from pageview_counter.app import create_app


@pytest.fixture
def db_uri(tmp_path):
    return f"sqlite:///{tmp_path / 'viewcount.db'}"


@pytest.fixture
def app(db_uri):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': db_uri,
        'CORS_ORIGINS': '*',
    })
    yield app


@pytest.fixture
def client(app):
    return app.test_client()
