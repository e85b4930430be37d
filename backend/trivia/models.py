from trivia import db, bcrypt
from flask_login import UserMixin
from datetime import datetime
import json
import random

SESSION_TYPES = ('team_battle', 'individual')
SESSION_STATUSES = ('draft', 'ready', 'live', 'completed')
# No I/O/0/1 so PINs read unambiguously off a projector
PIN_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'
PIN_LENGTH = 6


class Admin(UserMixin, db.Model):
    __tablename__ = 'admin'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)
    sessions = db.relationship('GameSession', back_populates='admin', lazy='dynamic')

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
        }


def generate_session_pin(length=PIN_LENGTH):
    """Generate a PIN that no other non-completed session is using."""
    while True:
        pin = ''.join(random.choices(PIN_ALPHABET, k=length))
        taken = GameSession.query.filter(
            GameSession.session_pin == pin,
            GameSession.status != 'completed',
        ).first()
        if not taken:
            return pin


class GameSession(db.Model):
    __tablename__ = 'game_session'
    __table_args__ = (
        # One live PIN at a time; completed sessions keep theirs for results
        db.Index('uq_game_session_active_pin', 'session_pin', unique=True,
                 postgresql_where=db.text("status <> 'completed'"),
                 sqlite_where=db.text("status <> 'completed'")),
    )
    id = db.Column(db.Integer, primary_key=True)
    admin_id = db.Column(db.Integer, db.ForeignKey('admin.id'), nullable=True)
    name = db.Column(db.String(128), nullable=False)
    description = db.Column(db.Text, nullable=True)
    session_type = db.Column(db.String(32), nullable=False, default='team_battle')
    status = db.Column(db.String(16), nullable=False, default='draft', index=True)
    session_pin = db.Column(db.String(6), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    config_duration = db.Column(db.Integer, nullable=False, default=1800)
    config_max_players_per_team = db.Column(db.Integer, nullable=False, default=10)
    config_hex_grid_size = db.Column(db.Integer, nullable=False, default=18)
    config_time_per_question = db.Column(db.Integer, nullable=False, default=15)
    config_points_per_correct_answer = db.Column(db.Integer, nullable=False, default=10)
    config_allow_skip = db.Column(db.Boolean, nullable=False, default=False)
    config_speed_bonus = db.Column(db.Boolean, nullable=False, default=False)

    # Live run state (epoch seconds)
    current_question_index = db.Column(db.Integer, nullable=True)
    question_started_at = db.Column(db.Float, nullable=True)
    question_deadline = db.Column(db.Float, nullable=True)
    started_at = db.Column(db.Float, nullable=True)
    ends_at = db.Column(db.Float, nullable=True)
    completed_at = db.Column(db.Float, nullable=True)

    admin = db.relationship('Admin', back_populates='sessions')
    questions = db.relationship('Question', back_populates='session', order_by='Question.position',
                                cascade='all, delete-orphan')
    registration_fields = db.relationship('RegistrationField', back_populates='session',
                                          order_by='RegistrationField.position', cascade='all, delete-orphan')
    teams = db.relationship('Team', back_populates='session', order_by='Team.position',
                            cascade='all, delete-orphan')
    territories = db.relationship('Territory', back_populates='session', order_by='Territory.id',
                                  cascade='all, delete-orphan')
    players = db.relationship('Player', back_populates='session', order_by='Player.id',
                              cascade='all, delete-orphan')
    answers = db.relationship('Answer', back_populates='session', lazy='dynamic',
                              cascade='all, delete-orphan')
    history = db.relationship('SessionHistory', back_populates='session', order_by='SessionHistory.id',
                              cascade='all, delete-orphan')

    def __init__(self, **kwargs):
        super(GameSession, self).__init__(**kwargs)
        if not self.session_pin:
            self.session_pin = generate_session_pin()

    @property
    def is_team_battle(self):
        return self.session_type == 'team_battle'

    @property
    def current_question(self):
        idx = self.current_question_index
        if idx is None or not (0 <= idx < len(self.questions)):
            return None
        return self.questions[idx]

    def config_dict(self):
        return {
            'duration': self.config_duration,
            'max_players_per_team': self.config_max_players_per_team,
            'hex_grid_size': self.config_hex_grid_size,
            'time_per_question': self.config_time_per_question,
            'points_per_correct_answer': self.config_points_per_correct_answer,
            'allow_skip': self.config_allow_skip,
            'speed_bonus': self.config_speed_bonus,
        }

    def to_dict(self, include_answers=False):
        current = self.current_question
        return {
            'id': self.id,
            'admin_id': self.admin_id,
            'name': self.name,
            'description': self.description,
            'type': self.session_type,
            'status': self.status,
            'session_pin': self.session_pin,
            'config': self.config_dict(),
            'questions': [q.to_dict(include_answer=include_answers) for q in self.questions],
            'registration_fields': [f.to_dict() for f in self.registration_fields],
            'teams': [t.to_dict() for t in self.teams],
            'player_count': len(self.players),
            'current_question_index': self.current_question_index,
            'current_question': current.to_dict(include_answer=include_answers) if current else None,
            'question_started_at': self.question_started_at,
            'question_deadline': self.question_deadline,
            'started_at': self.started_at,
            'ends_at': self.ends_at,
            'completed_at': self.completed_at,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class Question(db.Model):
    __tablename__ = 'question'
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('game_session.id'), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    prompt = db.Column(db.Text, nullable=False)
    options = db.Column(db.Text, nullable=False)  # JSON-encoded list of option texts
    correct_index = db.Column(db.Integer, nullable=False)
    time_limit = db.Column(db.Integer, nullable=True)
    points = db.Column(db.Integer, nullable=True)
    territory_id = db.Column(db.String(32), nullable=True)  # team battle map coordinate
    session = db.relationship('GameSession', back_populates='questions')

    @property
    def option_list(self):
        return json.loads(self.options) if self.options else []

    def effective_time_limit(self):
        return self.time_limit or self.session.config_time_per_question

    def effective_points(self):
        return self.points if self.points is not None else self.session.config_points_per_correct_answer

    def to_dict(self, include_answer=False):
        data = {
            'id': self.id,
            'position': self.position,
            'prompt': self.prompt,
            'options': self.option_list,
            'time_limit': self.effective_time_limit(),
            'points': self.effective_points(),
            'territory_id': self.territory_id,
        }
        if include_answer:
            data['correct_index'] = self.correct_index
        return data


class RegistrationField(db.Model):
    __tablename__ = 'registration_field'
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('game_session.id'), nullable=False, index=True)
    field_key = db.Column(db.String(64), nullable=False)
    label = db.Column(db.String(128), nullable=False)
    input_type = db.Column(db.String(16), nullable=False, default='text')
    enabled = db.Column(db.Boolean, nullable=False, default=True)
    required = db.Column(db.Boolean, nullable=False, default=False)
    placeholder = db.Column(db.String(256), nullable=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    session = db.relationship('GameSession', back_populates='registration_fields')

    def to_dict(self):
        return {
            'id': self.field_key,
            'label': self.label,
            'type': self.input_type,
            'enabled': self.enabled,
            'required': self.required,
            'placeholder': self.placeholder,
        }


class Team(db.Model):
    __tablename__ = 'team'
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('game_session.id'), nullable=False, index=True)
    key = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(64), nullable=False)
    color = db.Column(db.String(16), nullable=True)
    icon = db.Column(db.String(16), nullable=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    session = db.relationship('GameSession', back_populates='teams')
    players = db.relationship('Player', back_populates='team')

    def to_dict(self):
        return {
            'id': self.id,
            'key': self.key,
            'name': self.name,
            'color': self.color,
            'icon': self.icon,
        }


class Player(db.Model):
    __tablename__ = 'player'
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('game_session.id'), nullable=False, index=True)
    team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=True)
    name = db.Column(db.String(64), nullable=False)
    email = db.Column(db.String(256), nullable=True)
    organization = db.Column(db.String(256), nullable=True)
    custom_fields = db.Column(db.Text, nullable=True)  # JSON-encoded {field_key: value}
    score = db.Column(db.Integer, nullable=False, default=0)
    streak = db.Column(db.Integer, nullable=False, default=0)
    best_streak = db.Column(db.Integer, nullable=False, default=0)
    questions_answered = db.Column(db.Integer, nullable=False, default=0)
    correct_answers = db.Column(db.Integer, nullable=False, default=0)
    rank = db.Column(db.Integer, nullable=True)
    previous_rank = db.Column(db.Integer, nullable=True)
    score_reached_at = db.Column(db.Float, nullable=True)
    joined_at = db.Column(db.Float, nullable=False)
    connected = db.Column(db.Boolean, nullable=False, default=False)
    session = db.relationship('GameSession', back_populates='players')
    team = db.relationship('Team', back_populates='players')
    territories = db.relationship('Territory', back_populates='claimed_by')
    achievements = db.relationship('PlayerAchievement', back_populates='player', order_by='PlayerAchievement.id',
                                   cascade='all, delete-orphan')
    answers = db.relationship('Answer', back_populates='player', lazy='dynamic', cascade='all, delete-orphan')

    @property
    def achievement_ids(self):
        return [a.achievement_id for a in self.achievements]

    @property
    def territory_ids(self):
        return [t.hex_id for t in self.territories]

    def to_dict(self):
        return {
            'id': self.id,
            'session_id': self.session_id,
            'name': self.name,
            'email': self.email,
            'organization': self.organization,
            'custom_fields': json.loads(self.custom_fields) if self.custom_fields else {},
            'team_id': self.team_id,
            'team': self.team.key if self.team else None,
            'score': self.score,
            'streak': self.streak,
            'best_streak': self.best_streak,
            'questions_answered': self.questions_answered,
            'correct_answers': self.correct_answers,
            'territories': self.territory_ids,
            'achievements': self.achievement_ids,
            'rank': self.rank,
            'connected': self.connected,
            'joined_at': self.joined_at,
        }


class Territory(db.Model):
    __tablename__ = 'territory'
    __table_args__ = (db.UniqueConstraint('session_id', 'hex_id', name='uq_territory_session_hex'),)
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('game_session.id'), nullable=False, index=True)
    hex_id = db.Column(db.String(32), nullable=False)
    owner_team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=True)
    claimed_by_player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=True)
    claimed_at = db.Column(db.Float, nullable=True)
    session = db.relationship('GameSession', back_populates='territories')
    owner = db.relationship('Team')
    claimed_by = db.relationship('Player', back_populates='territories')

    def to_dict(self):
        return {
            'id': self.hex_id,
            'owner_team_id': self.owner_team_id,
            'owner': self.owner.key if self.owner else None,
            'claimed_by': self.claimed_by_player_id,
            'claimed_at': self.claimed_at,
        }


class Answer(db.Model):
    __tablename__ = 'answer'
    __table_args__ = (db.UniqueConstraint('player_id', 'question_id', name='uq_answer_player_question'),)
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('game_session.id'), nullable=False, index=True)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False)
    question_id = db.Column(db.Integer, db.ForeignKey('question.id'), nullable=False)
    selected_index = db.Column(db.Integer, nullable=True)
    correct = db.Column(db.Boolean, nullable=False, default=False)
    timed_out = db.Column(db.Boolean, nullable=False, default=False)
    skipped = db.Column(db.Boolean, nullable=False, default=False)
    points_awarded = db.Column(db.Integer, nullable=False, default=0)
    elapsed = db.Column(db.Float, nullable=True)
    submitted_at = db.Column(db.Float, nullable=False)
    claim_spent = db.Column(db.Boolean, nullable=False, default=False)
    session = db.relationship('GameSession', back_populates='answers')
    player = db.relationship('Player', back_populates='answers')
    question = db.relationship('Question')


class PlayerAchievement(db.Model):
    __tablename__ = 'player_achievement'
    __table_args__ = (db.UniqueConstraint('player_id', 'achievement_id', name='uq_player_achievement'),)
    id = db.Column(db.Integer, primary_key=True)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False, index=True)
    achievement_id = db.Column(db.String(32), nullable=False)
    unlocked_at = db.Column(db.Float, nullable=False)
    player = db.relationship('Player', back_populates='achievements')


class SessionHistory(db.Model):
    __tablename__ = 'session_history'
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('game_session.id'), nullable=False, index=True)
    completed_at = db.Column(db.Float, nullable=False)
    reason = db.Column(db.String(32), nullable=True)
    leaderboard = db.Column(db.Text, nullable=False)  # JSON-encoded list of entries
    team_standings = db.Column(db.Text, nullable=True)
    session = db.relationship('GameSession', back_populates='history')

    def to_dict(self):
        return {
            'id': self.id,
            'session_id': self.session_id,
            'completed_at': self.completed_at,
            'reason': self.reason,
            'leaderboard': json.loads(self.leaderboard) if self.leaderboard else [],
            'team_standings': json.loads(self.team_standings) if self.team_standings else [],
        }
