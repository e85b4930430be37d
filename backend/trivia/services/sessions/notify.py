"""Push committed changes to everyone watching a session."""

from trivia import socketio


def room_for(pin: str) -> str:
    return f"session:{pin.upper()}"


def emit_session_event(session, event: str, payload=None) -> None:
    # socketio.emit works from request handlers and background tasks alike
    body = {'session_pin': session.session_pin}
    body.update(payload or {})
    socketio.emit(event, body, to=room_for(session.session_pin), namespace='/ws')


def state_update(session) -> None:
    emit_session_event(session, 'state_update', {
        'status': session.status,
        'current_question_index': session.current_question_index,
        'question_deadline': session.question_deadline,
        'ends_at': session.ends_at,
    })
