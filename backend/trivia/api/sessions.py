from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user
from trivia.services.sessions import lifecycle, leaderboard, store
from trivia.services.sessions.csv_import import parse_questions_csv, SAMPLE_CSV
from trivia.services.sessions.errors import ValidationFailed
from trivia.services.sessions.scheduler import schedule_deadline_timer


sessions = Blueprint('sessions', __name__)


def _owned(session_id):
    return store.require_session(session_id, admin_id=current_user.id)


def _schedule(session) -> None:
    schedule_deadline_timer(current_app._get_current_object(), session.id)


@sessions.route('', methods=['POST'])
@login_required
def create_session():
    data = request.get_json(silent=True) or {}
    session = store.create_session(current_user.id, data)
    return jsonify(session.to_dict(include_answers=True)), 201


@sessions.route('', methods=['GET'])
@login_required
def list_sessions():
    return jsonify([s.to_dict() for s in store.sessions_for_admin(current_user.id)])


@sessions.route('/<int:session_id>', methods=['GET'])
@login_required
def get_session(session_id):
    session = _owned(session_id)
    lifecycle.sync_deadlines(session)
    payload = session.to_dict(include_answers=True)
    payload['players'] = [p.to_dict() for p in session.players]
    payload['territories'] = [t.to_dict() for t in session.territories]
    return jsonify(payload)


@sessions.route('/<int:session_id>', methods=['PUT'])
@login_required
def update_session(session_id):
    session = _owned(session_id)
    lifecycle.ensure_status(session, lifecycle.EDITABLE, 'edit the session')
    data = request.get_json(silent=True) or {}
    # status moves go through the lifecycle endpoints, never a plain edit
    data.pop('status', None)
    session = store.update_session(session, data)
    return jsonify(session.to_dict(include_answers=True))


@sessions.route('/<int:session_id>', methods=['DELETE'])
@login_required
def delete_session(session_id):
    session = _owned(session_id)
    store.delete_session(session)
    return jsonify({'success': True})


@sessions.route('/<int:session_id>/duplicate', methods=['POST'])
@login_required
def duplicate_session(session_id):
    session = _owned(session_id)
    copy = store.duplicate_session(session, current_user.id)
    return jsonify(copy.to_dict(include_answers=True)), 201


@sessions.route('/questions/sample.csv', methods=['GET'])
def sample_csv():
    return SAMPLE_CSV, 200, {'Content-Type': 'text/csv',
                             'Content-Disposition': 'attachment; filename=sample-questions.csv'}


@sessions.route('/<int:session_id>/questions/import', methods=['POST'])
@login_required
def import_questions(session_id):
    session = _owned(session_id)
    lifecycle.ensure_status(session, lifecycle.EDITABLE, 'edit questions')
    data = request.get_json(silent=True) or request.form.to_dict()
    upload = request.files.get('file')
    try:
        content = upload.read().decode('utf-8-sig') if upload else data.get('csv')
    except UnicodeDecodeError:
        raise ValidationFailed('csv', 'CSV file must be UTF-8 encoded')
    if not content:
        raise ValidationFailed('csv', 'Provide CSV content or a file')
    result = parse_questions_csv(content)
    if not result.questions:
        return jsonify({'success': False, 'errors': result.errors}), 400
    existing = [] if data.get('mode') == 'replace' else [store.question_data(q) for q in session.questions]
    session = store.update_session(session, {'questions': existing + result.questions})
    current_app.logger.info(f"[import] session={session.id} imported={len(result.questions)} errors={len(result.errors)}")
    return jsonify({
        'success': result.success,
        'imported': len(result.questions),
        'errors': result.errors,
        'questions': [q.to_dict(include_answer=True) for q in session.questions],
    })


@sessions.route('/<int:session_id>/ready', methods=['POST'])
@login_required
def mark_ready(session_id):
    session = lifecycle.mark_ready(_owned(session_id))
    return jsonify(session.to_dict(include_answers=True))


@sessions.route('/<int:session_id>/draft', methods=['POST'])
@login_required
def mark_draft(session_id):
    session = lifecycle.mark_draft(_owned(session_id))
    return jsonify(session.to_dict(include_answers=True))


@sessions.route('/<int:session_id>/launch', methods=['POST'])
@login_required
def launch_session(session_id):
    session = lifecycle.launch(_owned(session_id))
    _schedule(session)
    return jsonify(session.to_dict(include_answers=True))


@sessions.route('/<int:session_id>/next', methods=['POST'])
@login_required
def next_question(session_id):
    session = _owned(session_id)
    data = request.get_json(silent=True) or {}
    advanced = lifecycle.advance_question(session, data.get('expected_index'))
    if session.status == 'live':
        _schedule(session)
    payload = session.to_dict(include_answers=True)
    payload['advanced'] = advanced
    return jsonify(payload)


@sessions.route('/<int:session_id>/end', methods=['POST'])
@login_required
def end_session(session_id):
    session = lifecycle.end_game(_owned(session_id), reason='admin')
    return jsonify(session.to_dict(include_answers=True))


@sessions.route('/<int:session_id>/results', methods=['GET'])
@login_required
def session_results(session_id):
    session = _owned(session_id)
    return jsonify({
        'session': session.to_dict(),
        'players': [p.to_dict() for p in session.players],
        'history': [h.to_dict() for h in session.history],
        'leaderboard': [e.to_dict() for e in leaderboard.get_leaderboard(session)],
        'teams': leaderboard.team_standings(session),
    })


@sessions.route('/<int:session_id>/players/<int:player_id>', methods=['DELETE'])
@login_required
def remove_player(session_id, player_id):
    lifecycle.remove_player(_owned(session_id), player_id)
    return jsonify({'success': True})
