import os
import tempfile

# Point the app at a throwaway database before it is imported
_db_fd, _db_path = tempfile.mkstemp(suffix='.db')
os.close(_db_fd)
os.environ['DATABASE_URL'] = f'sqlite:///{_db_path}'
os.environ['GOOGLE_MAPS_API_KEY'] = 'test-key'

import pytest

from app import app as flask_app, db, seed_schools


@pytest.fixture
def app():
    flask_app.config['TESTING'] = True
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        seed_schools()
        yield flask_app
        db.session.remove()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def coverage_calls(monkeypatch):
    """Every sampled point has Street View; records each check"""
    import routes

    calls = []

    def always_covered(lat, lng, **kwargs):
        calls.append((lat, lng, kwargs))
        return lat, lng

    monkeypatch.setattr(routes, 'check_coverage', always_covered)
    return calls


def pytest_sessionfinish(session, exitstatus):
    if os.path.exists(_db_path):
        os.remove(_db_path)
