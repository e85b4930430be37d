import os
import sys
import time
import pytest

# Ensure the backend root (containing the `trivia` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from trivia import create_app, db, socketio


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_ENABLED = False
    DEFAULT_TIME_PER_QUESTION_SEC = 15
    DEFAULT_POINTS_PER_QUESTION = 10
    DEFAULT_SESSION_DURATION_SEC = 1800
    SPEED_BONUS_WINDOW_SEC = 3
    SPEED_BONUS_MAX_RATIO = 0.5
    SPEED_DEMON_THRESHOLD_SEC = 3
    MIN_TEAMS = 2


QUESTIONS = [
    {'prompt': 'What is the capital of France?', 'options': ['London', 'Paris', 'Berlin', 'Madrid'],
     'correct_index': 1, 'points': 100, 'time_limit': 20},
    {'prompt': 'What is 2 + 2?', 'options': ['3', '4', '5', '6'], 'correct_index': 1, 'points': 100},
    {'prompt': 'Which planet is red?', 'options': ['Venus', 'Mars', 'Jupiter', 'Saturn'], 'correct_index': 1},
]


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import trivia.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    if test_client.is_connected('/ws'):
        test_client.disconnect(namespace='/ws')


@pytest.fixture()
def admin_client(client):
    """Test client logged in as a freshly registered organizer."""
    res = client.post('/api/auth/register', json={'username': 'host', 'password': 'secret'})
    assert res.status_code == 201
    return client


@pytest.fixture()
def admin(flask_app):
    from trivia.models import Admin
    a = Admin(username='organizer')
    a.set_password('secret')
    db.session.add(a)
    db.session.commit()
    return a


@pytest.fixture()
def make_session(flask_app, admin):
    """Build a session straight through the store, optionally already live."""
    from trivia.services.sessions import lifecycle, store

    def _make(status='draft', questions=None, now=None, **data):
        data.setdefault('name', 'Friday Trivia')
        data['questions'] = QUESTIONS if questions is None else questions
        session = store.create_session(admin.id, data)
        if status == 'ready':
            lifecycle.mark_ready(session)
        elif status == 'live':
            lifecycle.launch(session, now=now or time.time())
        return session

    return _make


@pytest.fixture()
def add_player(flask_app):
    """Insert a player directly, bypassing admission rules."""
    from trivia.models import Player

    def _add(session, name='Player', team=None, joined_at=None):
        team_id = None
        if team is not None:
            team_id = next(t.id for t in session.teams if t.key == team)
        player = Player(session_id=session.id, name=name, team_id=team_id,
                        joined_at=joined_at or time.time())
        db.session.add(player)
        db.session.commit()
        return player

    return _add
