"""Session Store: the persistence collaborator behind the engine.

Row helpers here stage single-row conditional UPDATEs and return whether
the row matched; callers decide when to ``commit()``. Nothing in this
module assumes a transaction spanning more than the caller's own unit of
work, so every precondition is re-checked in the UPDATE's WHERE clause.
"""

import json
import time
from contextlib import contextmanager

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from trivia import db
from trivia.models import (
    SESSION_TYPES, Answer, GameSession, PlayerAchievement, Player, Question,
    RegistrationField, SessionHistory, Team, Territory, generate_session_pin,
)
from .errors import PersistenceError, SessionNotFound, ValidationFailed

DEFAULT_REGISTRATION_FIELDS = [
    {'id': 'name', 'label': 'Name', 'type': 'text', 'enabled': True, 'required': True,
     'placeholder': 'Enter your name'},
    {'id': 'email', 'label': 'Email', 'type': 'email', 'enabled': False, 'required': False,
     'placeholder': 'your.email@example.com'},
    {'id': 'organization', 'label': 'Organization', 'type': 'text', 'enabled': False, 'required': False,
     'placeholder': 'Enter your organization'},
]

DEFAULT_TEAMS = [
    {'key': 'team1', 'name': 'Team 1', 'color': '#E00800', 'icon': 'castle'},
    {'key': 'team2', 'name': 'Team 2', 'color': '#47CB6C', 'icon': 'pagoda'},
]

INPUT_TYPES = ('text', 'email', 'tel', 'number', 'textarea')
PIN_ATTEMPTS = 5


def commit():
    """Commit the current unit of work.

    Integrity errors propagate untouched for callers that use unique
    constraints as arbiters; any other storage failure is rolled back and
    reported as transient.
    """
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.warning(f"[persistence] commit failed: {exc}")
        raise PersistenceError('Storage is temporarily unavailable, try again') from exc


def rollback():
    db.session.rollback()


@contextmanager
def unit_of_work():
    """Commit everything staged in the block, or nothing at all."""
    try:
        yield
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.warning(f"[persistence] unit of work failed: {exc}")
        raise PersistenceError('Storage is temporarily unavailable, try again') from exc
    except Exception:
        db.session.rollback()
        raise


def stage(row):
    db.session.add(row)
    return row


def add_row(row):
    db.session.add(row)
    commit()
    return row


def delete_row(row) -> None:
    db.session.delete(row)
    commit()


def refresh(row) -> None:
    db.session.refresh(row)


def insert_unique(row) -> bool:
    """Insert ``row`` on its own; False when a unique constraint rejects it."""
    db.session.add(row)
    try:
        commit()
    except IntegrityError:
        return False
    return True


def hex_ids_for_grid(size: int) -> list:
    """Ring ``k`` of the hex map holds ``6k`` cells named ``hex-<k>-<i>``."""
    ids = []
    ring = 1
    while len(ids) < size:
        ids.extend(f"hex-{ring}-{i}" for i in range(1, 6 * ring + 1))
        ring += 1
    return ids[:max(0, size)]


# ---- Input parsing ----

def _int_or_default(value, default, field, minimum=0):
    if value is None or value == '':
        return default
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise ValidationFailed(field, f'{field} must be a whole number')
    if parsed < minimum:
        raise ValidationFailed(field, f'{field} must be at least {minimum}')
    return parsed


def _parse_question(raw, position):
    prompt = (raw.get('prompt') or raw.get('text') or '').strip()
    if not prompt:
        raise ValidationFailed('questions', f'Question {position + 1} has no text')
    options = []
    for opt in raw.get('options') or []:
        text = opt.get('text') if isinstance(opt, dict) else opt
        text = (str(text) if text is not None else '').strip()
        if not text:
            raise ValidationFailed('questions', f'Question {position + 1} has an empty option')
        options.append(text)
    if len(options) < 2:
        raise ValidationFailed('questions', f'Question {position + 1} needs at least two options')
    correct_index = _int_or_default(raw.get('correct_index'), None, 'questions')
    if correct_index is None or correct_index >= len(options):
        raise ValidationFailed('questions', f'Question {position + 1} has no valid correct option')
    return Question(
        position=position,
        prompt=prompt,
        options=json.dumps(options),
        correct_index=correct_index,
        time_limit=_int_or_default(raw.get('time_limit'), None, 'questions', minimum=1),
        points=_int_or_default(raw.get('points'), None, 'questions'),
        territory_id=(raw.get('territory_id') or None),
    )


def _parse_registration_fields(raw_fields):
    fields = []
    seen = set()
    for position, raw in enumerate(raw_fields):
        key = (raw.get('id') or '').strip()
        if not key or key in seen:
            raise ValidationFailed('registration_fields', 'Registration fields need unique ids')
        seen.add(key)
        input_type = raw.get('type') or ('email' if key == 'email' else 'text')
        if input_type not in INPUT_TYPES:
            raise ValidationFailed('registration_fields', f'Unsupported input type {input_type}')
        fields.append(RegistrationField(
            field_key=key,
            label=(raw.get('label') or key).strip(),
            input_type=input_type,
            enabled=bool(raw.get('enabled', True)),
            required=bool(raw.get('required', False)),
            placeholder=raw.get('placeholder'),
            position=position,
        ))
    if 'name' not in seen:
        # name is implicitly present and required unless configured otherwise
        fields.insert(0, RegistrationField(field_key='name', label='Name', input_type='text',
                                           enabled=True, required=True, position=-1))
    return fields


def _parse_teams(raw_teams):
    teams = []
    seen = set()
    for position, raw in enumerate(raw_teams):
        name = (raw.get('name') or '').strip()
        if not name:
            raise ValidationFailed('teams', f'Team {position + 1} needs a name')
        key = raw.get('key') or f'team{position + 1}'
        if key in seen:
            raise ValidationFailed('teams', f'Team key {key} is used twice')
        seen.add(key)
        teams.append(Team(
            key=key,
            name=name,
            color=raw.get('color'),
            icon=raw.get('icon'),
            position=position,
        ))
    return teams


def _merge_teams(session: GameSession, raw_teams) -> list:
    """Edit teams in place by id or key so players keep their team."""
    by_id = {t.id: t for t in session.teams if t.id is not None}
    by_key = {t.key: t for t in session.teams}
    merged = []
    for raw, parsed in zip(raw_teams, _parse_teams(raw_teams)):
        current = by_id.get(raw.get('id')) or by_key.get(parsed.key)
        if current is None or current in merged:
            merged.append(parsed)
            continue
        for column in ('key', 'name', 'color', 'icon', 'position'):
            setattr(current, column, getattr(parsed, column))
        merged.append(current)
    for team in session.teams:
        if team not in merged and team.players:
            raise ValidationFailed('teams', f'{team.name} still has players')
    return merged


def apply_session_data(session: GameSession, data: dict, creating=False) -> None:
    """Copy organizer-supplied fields onto ``session``; absent keys are left alone."""
    cfg = current_app.config
    if creating or 'name' in data:
        name = (data.get('name') or '').strip()
        if not name:
            raise ValidationFailed('name', 'Session name is required')
        session.name = name
    if 'description' in data:
        session.description = data.get('description')
    if creating or 'type' in data:
        session_type = data.get('type') or 'team_battle'
        if session_type not in SESSION_TYPES:
            raise ValidationFailed('type', f'Unknown session type {session_type}')
        session.session_type = session_type

    config = data.get('config') or {}
    if creating or config:
        def pick(key, column, default, minimum=0):
            current = getattr(session, column)
            fallback = default if creating or current is None else current
            setattr(session, column, _int_or_default(config.get(key), fallback, key, minimum))

        pick('duration', 'config_duration', int(cfg.get('DEFAULT_SESSION_DURATION_SEC', 1800)), 1)
        pick('max_players_per_team', 'config_max_players_per_team', 10, 1)
        pick('hex_grid_size', 'config_hex_grid_size', 18, 1)
        pick('time_per_question', 'config_time_per_question', int(cfg.get('DEFAULT_TIME_PER_QUESTION_SEC', 15)), 1)
        pick('points_per_correct_answer', 'config_points_per_correct_answer',
             int(cfg.get('DEFAULT_POINTS_PER_QUESTION', 10)))
        if 'allow_skip' in config or creating:
            session.config_allow_skip = bool(config.get('allow_skip', False))
        if 'speed_bonus' in config or creating:
            session.config_speed_bonus = bool(config.get('speed_bonus', False))

    if 'questions' in data:
        session.questions = [_parse_question(q, i) for i, q in enumerate(data.get('questions') or [])]

    if 'registration_fields' in data:
        session.registration_fields = _parse_registration_fields(data.get('registration_fields') or [])
    elif creating:
        session.registration_fields = _parse_registration_fields(DEFAULT_REGISTRATION_FIELDS)

    if 'teams' in data:
        session.teams = _merge_teams(session, data.get('teams') or [])
    elif creating and session.is_team_battle:
        session.teams = _parse_teams(DEFAULT_TEAMS)

    sync_territories(session)


def sync_territories(session: GameSession) -> None:
    """Lay out the territory map for the configured grid plus question coordinates."""
    if not session.is_team_battle:
        session.territories = []
        return
    wanted = hex_ids_for_grid(session.config_hex_grid_size or 0)
    for q in session.questions:
        if q.territory_id and q.territory_id not in wanted:
            wanted.append(q.territory_id)
    existing = {t.hex_id: t for t in session.territories}
    session.territories = [existing.get(h) or Territory(hex_id=h) for h in wanted]


# ---- Session CRUD ----

def create_session(admin_id, data: dict) -> GameSession:
    session = GameSession(admin_id=admin_id, status='draft', session_pin=generate_session_pin())
    apply_session_data(session, data or {}, creating=True)
    for attempt in range(1, PIN_ATTEMPTS + 1):
        db.session.add(session)
        try:
            commit()
            break
        except IntegrityError as exc:
            # Another session took the same PIN between our check and this insert
            current_app.logger.info(f"[create] pin={session.session_pin} taken, attempt={attempt}")
            if attempt == PIN_ATTEMPTS:
                raise PersistenceError('Could not allocate a session PIN, try again') from exc
            session.session_pin = generate_session_pin()
    current_app.logger.info(f"[create] session={session.id} pin={session.session_pin} type={session.session_type}")
    return session


def get_session(session_id, admin_id=None):
    session = db.session.get(GameSession, session_id)
    if session is None or (admin_id is not None and session.admin_id != admin_id):
        return None
    return session


def require_session(session_id, admin_id=None) -> GameSession:
    session = get_session(session_id, admin_id)
    if session is None:
        raise SessionNotFound('Session not found')
    return session


def normalize_pin(pin) -> str:
    return (pin or '').strip().upper()


def get_session_by_pin(pin):
    """Active session for ``pin``; falls back to the latest completed one for results."""
    pin = normalize_pin(pin)
    if not pin:
        return None
    active = GameSession.query.filter(
        GameSession.session_pin == pin,
        GameSession.status != 'completed',
    ).first()
    if active:
        return active
    return (GameSession.query.filter_by(session_pin=pin, status='completed')
            .order_by(GameSession.id.desc()).first())


def require_session_by_pin(pin) -> GameSession:
    session = get_session_by_pin(pin)
    if session is None:
        raise SessionNotFound('Invalid session PIN. Please check and try again.')
    return session


def sessions_for_admin(admin_id):
    return GameSession.query.filter_by(admin_id=admin_id).order_by(GameSession.id.desc()).all()


def update_session(session: GameSession, data: dict) -> GameSession:
    with unit_of_work():
        apply_session_data(session, data or {})
        db.session.add(session)
    return session


def delete_session(session: GameSession) -> None:
    current_app.logger.info(f"[delete] session={session.id} pin={session.session_pin}")
    db.session.delete(session)
    commit()


def question_data(q: Question) -> dict:
    """Raw question values, without falling back to session defaults."""
    return {
        'prompt': q.prompt,
        'options': q.option_list,
        'correct_index': q.correct_index,
        'time_limit': q.time_limit,
        'points': q.points,
        'territory_id': q.territory_id,
    }


def duplicate_session(session: GameSession, admin_id) -> GameSession:
    data = {
        'name': f"{session.name} (Copy)",
        'description': session.description,
        'type': session.session_type,
        'config': session.config_dict(),
        'questions': [question_data(q) for q in session.questions],
        'registration_fields': [f.to_dict() for f in session.registration_fields],
        'teams': [t.to_dict() for t in session.teams],
    }
    return create_session(admin_id, data)


# ---- Row-level conditional writes ----

def compare_and_set_status(session: GameSession, expected: str, new: str, **values) -> bool:
    """Move ``session`` from ``expected`` to ``new``; False if another writer got there first."""
    matched = stage_status(session, expected, new, **values)
    commit()
    db.session.refresh(session)
    return matched


def compare_and_set_question(session: GameSession, expected_index: int, **values) -> bool:
    matched = GameSession.query.filter_by(
        id=session.id, status='live', current_question_index=expected_index,
    ).update(values, synchronize_session=False)
    commit()
    db.session.refresh(session)
    return matched == 1


def update_player(player_id: int, **values) -> bool:
    """Stage an atomic single-row update; values may be SQL expressions on Player columns."""
    matched = Player.query.filter_by(id=player_id).update(values, synchronize_session=False)
    return matched == 1


def update_territory(territory_id: int, team_id, player_id, claimed_at) -> bool:
    """Stage the ownership write; matches only while the territory is still unclaimed."""
    matched = Territory.query.filter(
        Territory.id == territory_id,
        Territory.owner_team_id.is_(None),
    ).update({
        'owner_team_id': team_id,
        'claimed_by_player_id': player_id,
        'claimed_at': claimed_at,
    }, synchronize_session=False)
    return matched == 1


def add_team_member(player: Player, capacity: int) -> Player:
    """Insert ``player`` only while their team still has room once the row is in."""
    with unit_of_work():
        # Serializes joins on the same team where the database supports row locks
        Team.query.filter_by(id=player.team_id).with_for_update().first()
        db.session.add(player)
        db.session.flush()
        members = Player.query.filter_by(team_id=player.team_id).count()
        if members > capacity:
            current_app.logger.info(f"[join-full] team={player.team_id} members={members} capacity={capacity}")
            raise ValidationFailed('team', 'That team just filled up, pick another')
    return player


def spend_claim_credit(answer_id: int) -> bool:
    matched = Answer.query.filter_by(id=answer_id, claim_spent=False).update(
        {'claim_spent': True}, synchronize_session=False)
    return matched == 1


def stage_status(session: GameSession, expected: str, new: str, **values) -> bool:
    """Stage the status move without committing; the caller's unit of work decides."""
    values['status'] = new
    matched = GameSession.query.filter_by(id=session.id, status=expected).update(
        values, synchronize_session=False)
    return matched == 1


def stage_live_reset(session: GameSession) -> None:
    """Stage the clearing of everything a previous run could have left behind."""
    Territory.query.filter_by(session_id=session.id).update({
        'owner_team_id': None,
        'claimed_by_player_id': None,
        'claimed_at': None,
    }, synchronize_session=False)
    player_ids = select(Player.id).where(Player.session_id == session.id)
    PlayerAchievement.query.filter(PlayerAchievement.player_id.in_(player_ids)).delete(
        synchronize_session=False)
    Answer.query.filter_by(session_id=session.id).delete(synchronize_session=False)
    Player.query.filter_by(session_id=session.id).update({
        'score': 0,
        'streak': 0,
        'best_streak': 0,
        'questions_answered': 0,
        'correct_answers': 0,
        'rank': None,
        'previous_rank': None,
        'score_reached_at': None,
    }, synchronize_session=False)


def append_session_history(session: GameSession, leaderboard: list, team_standings: list,
                           reason=None, completed_at=None) -> SessionHistory:
    entry = SessionHistory(
        session_id=session.id,
        completed_at=completed_at or time.time(),
        reason=reason,
        leaderboard=json.dumps(leaderboard),
        team_standings=json.dumps(team_standings),
    )
    db.session.add(entry)
    commit()
    return entry
