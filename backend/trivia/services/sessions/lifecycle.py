"""Session Lifecycle FSM: draft -> ready -> live -> completed.

Every status change is a compare-and-set on the expected prior status, so
a double launch or double end loses cleanly with ``InvalidSessionState``
instead of running the side effects twice.
"""

import time

from flask import current_app
from sqlalchemy.exc import IntegrityError

from trivia.models import Answer, Player
from . import achievements, leaderboard, notify, store
from .errors import InvalidSessionState, ValidationFailed

JOINABLE = ('ready', 'live')
EDITABLE = ('draft', 'ready')
PLAYABLE = ('live',)

TRANSITIONS = {
    'draft': ('ready',),
    'ready': ('draft', 'live'),
    'live': ('completed',),
    'completed': (),
}


def can_transition(current: str, new: str) -> bool:
    return new in TRANSITIONS.get(current, ())


def ensure_status(session, allowed, action: str) -> None:
    if session.status not in allowed:
        raise InvalidSessionState(status=session.status, action=action)


def _transition(session, new: str, **values) -> None:
    expected = session.status
    if not can_transition(expected, new):
        raise InvalidSessionState(status=expected, action=f'move to {new}')
    if not store.compare_and_set_status(session, expected, new, **values):
        current_app.logger.info(f"[cas-lost] session={session.id} {expected}->{new} now={session.status}")
        raise InvalidSessionState(f'Session changed state concurrently (now {session.status})',
                                  status=session.status, action=f'move to {new}')
    current_app.logger.info(f"[status] session={session.id} {expected} -> {new}")


def mark_ready(session):
    _transition(session, 'ready')
    notify.state_update(session)
    return session


def mark_draft(session):
    _transition(session, 'draft')
    notify.state_update(session)
    return session


def check_launchable(session) -> None:
    if not session.questions:
        raise ValidationFailed('questions', 'Add at least one question before launching')
    min_teams = int(current_app.config.get('MIN_TEAMS', 2))
    if session.is_team_battle and len(session.teams) < min_teams:
        raise ValidationFailed('teams', f'A team battle needs at least {min_teams} teams')


def launch(session, now=None):
    """Start the game: reset the board, open question 0 and start the session clock."""
    ensure_status(session, EDITABLE, 'launch')
    check_launchable(session)
    if session.status == 'draft':
        _transition(session, 'ready')
    now = now or time.time()
    first = session.questions[0]
    # The reset only runs inside the transaction that wins ready -> live
    with store.unit_of_work():
        went_live = store.stage_status(
            session, 'ready', 'live',
            started_at=now,
            ends_at=now + session.config_duration,
            current_question_index=0,
            question_started_at=now,
            question_deadline=now + first.effective_time_limit(),
            completed_at=None,
        )
        if not went_live:
            current_app.logger.info(f"[cas-lost] session={session.id} ready->live")
            raise InvalidSessionState('Session changed state concurrently', action='move to live')
        store.stage_live_reset(session)
    current_app.logger.info(f"[status] session={session.id} ready -> live")
    current_app.logger.info(
        f"[launch] session={session.id} pin={session.session_pin} questions={len(session.questions)} "
        f"players={len(session.players)} ends_at={session.ends_at}"
    )
    leaderboard.publish_leaderboard(session)
    notify.state_update(session)
    return session


def close_question(session, question, now=None) -> int:
    """Record a miss for every player without an answer; a miss resets the streak."""
    now = now or time.time()
    answered = {a.player_id for a in Answer.query.filter_by(question_id=question.id).all()}
    missed = 0
    for player in Player.query.filter_by(session_id=session.id).all():
        if player.id in answered:
            continue
        try:
            with store.unit_of_work():
                store.stage(Answer(session_id=session.id, player_id=player.id, question_id=question.id,
                                   timed_out=True, submitted_at=now))
                store.update_player(player.id, streak=0)
        except IntegrityError:
            # answered between our read and this insert
            continue
        missed += 1
    if missed:
        current_app.logger.info(f"[close] session={session.id} question={question.id} missed={missed}")
    return missed


def advance_question(session, expected_index=None, now=None) -> bool:
    """Close the open question and open the next one; the last one ends the game.

    Returns False when another writer already advanced past ``expected_index``.
    """
    ensure_status(session, PLAYABLE, 'advance to the next question')
    now = now or time.time()
    idx = session.current_question_index if expected_index is None else expected_index
    if idx != session.current_question_index:
        return False
    question = session.questions[idx]
    if idx + 1 >= len(session.questions):
        end_game(session, reason='questions_exhausted', now=now)
        return True
    nxt = session.questions[idx + 1]
    opened = store.compare_and_set_question(
        session, idx,
        current_question_index=idx + 1,
        question_started_at=now,
        question_deadline=now + nxt.effective_time_limit(),
    )
    if not opened:
        current_app.logger.info(f"[advance-skip] session={session.id} question_index={idx} already advanced")
        return False
    close_question(session, question, now=now)
    current_app.logger.info(f"[advance] session={session.id} question_index {idx} -> {idx + 1}")
    leaderboard.publish_leaderboard(session)
    notify.state_update(session)
    return True


def end_game(session, reason='admin', now=None):
    """live -> completed: close the open question, freeze results, award mvp."""
    ensure_status(session, PLAYABLE, 'end the game')
    now = now or time.time()
    open_question = session.current_question
    _transition(session, 'completed', completed_at=now)
    if open_question is not None:
        close_question(session, open_question, now=now)
    entries = leaderboard.publish_leaderboard(session)
    achievements.award_mvp(session, entries, now=now)
    standings = leaderboard.team_standings(session)
    store.append_session_history(session, [e.to_dict() for e in entries], standings,
                                 reason=reason, completed_at=now)
    current_app.logger.info(f"[finish] session={session.id} reason={reason} players={len(entries)}")
    notify.emit_session_event(session, 'session_completed', {
        'reason': reason,
        'leaderboard': [e.to_dict() for e in entries],
        'teams': standings,
    })
    notify.state_update(session)
    return session


def sync_deadlines(session, now=None) -> bool:
    """Apply any wall-clock deadline that has passed. Returns True if state moved."""
    now = now or time.time()
    moved = False
    while session.status == 'live':
        if session.ends_at is not None and now >= session.ends_at:
            try:
                end_game(session, reason='duration_elapsed', now=now)
                moved = True
            except InvalidSessionState:
                current_app.logger.info(f"[sync] session={session.id} already ended elsewhere")
            break
        if session.question_deadline is None or now < session.question_deadline:
            break
        try:
            advanced = advance_question(session, session.current_question_index, now=now)
        except InvalidSessionState:
            current_app.logger.info(f"[sync] session={session.id} already ended elsewhere")
            break
        if not advanced:
            break
        moved = True
    return moved


def remove_player(session, player_id: int) -> None:
    ensure_status(session, EDITABLE, 'remove players')
    player = Player.query.filter_by(id=player_id, session_id=session.id).first()
    if player is None:
        raise ValidationFailed('player_id', 'Player not found in this session')
    store.delete_row(player)
    current_app.logger.info(f"[kick] session={session.id} player={player_id}")
    leaderboard.publish_leaderboard(session)
