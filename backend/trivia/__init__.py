from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
bcrypt = Bcrypt()
login_manager = LoginManager()
migrate = Migrate()
# CORS origins are applied per app in create_app
socketio = SocketIO(async_mode=None)


def _register_blueprints(flask_app):
    from trivia.main import main
    flask_app.register_blueprint(main, url_prefix='/api/auth')

    from trivia.api.sessions import sessions
    flask_app.register_blueprint(sessions, url_prefix='/api/sessions')

    from trivia.api.play import play
    flask_app.register_blueprint(play, url_prefix='/api/play')


def _register_error_handlers(flask_app):
    from trivia.services.sessions.errors import SessionError

    @flask_app.errorhandler(SessionError)
    def handle_session_error(exc):
        # Rejected player and organizer actions come back as JSON, never a 500
        return jsonify(exc.to_dict()), exc.status_code


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    origins = flask_app.config.get('CORS_ORIGINS') or Config.CORS_ORIGINS

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=origins)
    socketio.init_app(flask_app, cors_allowed_origins=origins)

    _register_blueprints(flask_app)
    _register_error_handlers(flask_app)

    from trivia.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    from trivia.models import Admin

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(Admin, int(user_id))

    @click.command('db-reset')
    @click.option('--username', default='admin', show_default=True, help='Organizer account to seed.')
    @click.option('--password', default='password', show_default=True)
    def db_reset_command(username, password):
        """Drops, recreates, and seeds the database with one organizer."""
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            admin = Admin(username=username)
            admin.set_password(password)
            db.session.add(admin)
            db.session.commit()
            click.echo(f'Database has been reset; organizer "{username}" seeded.')

    flask_app.cli.add_command(db_reset_command)

    return flask_app
