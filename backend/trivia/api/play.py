from flask import Blueprint, jsonify, request
from trivia.models import Player
from trivia.services.sessions import lifecycle, leaderboard, registration, scoring, store, territory
from trivia.services.sessions.errors import ValidationFailed


play = Blueprint('play', __name__)


def _live_view(pin):
    """Session for ``pin`` with any overdue deadline already applied."""
    session = store.require_session_by_pin(pin)
    lifecycle.sync_deadlines(session)
    return session


@play.route('/<string:pin>', methods=['GET'])
def session_status(pin):
    session = _live_view(pin)
    payload = session.to_dict()
    payload['joinable'] = session.status in lifecycle.JOINABLE
    payload['accepting_answers'] = session.status in lifecycle.PLAYABLE
    payload.pop('questions', None)
    return jsonify(payload)


@play.route('/<string:pin>/validate', methods=['POST'])
def validate_join(pin):
    data = request.get_json(silent=True) or {}
    payload = registration.validate_join(store.get_session_by_pin(pin), data)
    return jsonify({'valid': True, 'player': payload.to_dict()})


@play.route('/<string:pin>/join', methods=['POST'])
def join_session(pin):
    data = request.get_json(silent=True) or {}
    player = registration.join_session(pin, data)
    return jsonify(player.to_dict()), 201


@play.route('/<string:pin>/answer', methods=['POST'])
def submit_answer(pin):
    data = request.get_json(silent=True) or {}
    # Resolve before applying overdue deadlines so a late answer is recorded as a miss
    session = store.require_session_by_pin(pin)
    for key in ('player_id', 'question_id'):
        if data.get(key) is None:
            raise ValidationFailed(key, f'{key} is required')
    try:
        outcome = scoring.submit_answer(
            session,
            data.get('player_id'),
            data.get('question_id'),
            data.get('selected_index'),
            elapsed=data.get('elapsed'),
        )
    finally:
        lifecycle.sync_deadlines(session)
    return jsonify(outcome.to_dict())


@play.route('/<string:pin>/claim', methods=['POST'])
def claim_territory(pin):
    data = request.get_json(silent=True) or {}
    session = _live_view(pin)
    if data.get('player_id') is None:
        raise ValidationFailed('player_id', 'player_id is required')
    result = territory.claim_territory(session, data.get('player_id'), data.get('territory_id'))
    return jsonify(result.to_dict())


@play.route('/<string:pin>/leaderboard', methods=['GET'])
def get_leaderboard(pin):
    session = _live_view(pin)
    return jsonify({
        'status': session.status,
        'leaderboard': [e.to_dict() for e in leaderboard.get_leaderboard(session)],
        'teams': leaderboard.team_standings(session),
    })


@play.route('/<string:pin>/territories', methods=['GET'])
def get_territories(pin):
    session = _live_view(pin)
    return jsonify({
        'territories': territory.territory_map(session),
        'teams': leaderboard.team_standings(session),
    })


@play.route('/<string:pin>/players/<int:player_id>', methods=['GET'])
def get_player(pin, player_id):
    session = _live_view(pin)
    player = Player.query.filter_by(id=player_id, session_id=session.id).first()
    if player is None:
        raise ValidationFailed('player_id', 'Player not found in this session')
    return jsonify(player.to_dict())
