import time
from typing import Set, Tuple

from trivia import socketio
from trivia.models import GameSession
from . import lifecycle


_scheduled_deadline_keys: Set[Tuple[int, int]] = set()


def schedule_deadline_timer(app, session_id: int) -> None:
    """Schedule enforcement of the open question's deadline for a live session.

    - No-ops in TESTING mode unless ENABLE_SCHEDULER_IN_TESTS is set
    - Ensures a single timer per (session_id, question_index)
    - Wakes at the earlier of the question deadline and the session end,
      then applies whatever is due and re-arms for the next question
    """
    if app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS'):
        return

    with app.app_context():
        session = GameSession.query.filter_by(id=session_id).first()
        if not session or session.status != 'live' or session.current_question_index is None:
            return
        sid = session.id
        idx = int(session.current_question_index)
        key = (sid, idx)
        if key in _scheduled_deadline_keys:
            app.logger.info(f"[timer-skip] session={session.id} question_index={idx} already scheduled")
            return
        _scheduled_deadline_keys.add(key)
        wake_at = min(d for d in (session.question_deadline, session.ends_at) if d is not None)
        delay = max(0.0, wake_at - time.time())
        app.logger.info(f"[timer-set] session={session.id} question_index={idx} delay={delay:.1f}s")

    def _worker(sid: int, expected_index: int, wait: float):
        hb = int(app.config.get('TIMER_HEARTBEAT_SEC', 0) or 0)
        if hb > 0:
            slept = 0.0
            while slept < wait:
                step = min(hb, wait - slept)
                time.sleep(step)
                slept += step
                app.logger.info(
                    f"[timer-heartbeat] session={sid} question_index={expected_index} "
                    f"remaining={max(0.0, wait - slept):.1f}s"
                )
        else:
            time.sleep(wait)
        with app.app_context():
            _scheduled_deadline_keys.discard((sid, expected_index))
            s = GameSession.query.filter_by(id=sid).first()
            if not s:
                return
            app.logger.info(
                f"[timer-fire] session={sid} expected_index={expected_index} "
                f"actual_status={s.status} actual_index={s.current_question_index}"
            )
            if s.status != 'live':
                return
            lifecycle.sync_deadlines(s)
            if s.status == 'live':
                schedule_deadline_timer(app, s.id)

    socketio.start_background_task(_worker, sid, idx, delay)
