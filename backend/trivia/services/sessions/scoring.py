"""Answer Resolver: exactly-once scoring per question per player."""

import time
from dataclasses import dataclass, asdict, field
from typing import List, Optional

from flask import current_app
from sqlalchemy import case
from sqlalchemy.exc import IntegrityError

from trivia.models import Answer, Player
from . import achievements, leaderboard, store
from .errors import AnswerWindowClosed, DuplicateAnswer, ValidationFailed
from .lifecycle import PLAYABLE, ensure_status


@dataclass
class ScoringOutcome:
    correct: bool
    points_awarded: int
    new_streak: int
    new_score: int
    question_id: Optional[int] = None
    speed_bonus: int = 0
    skipped: bool = False
    elapsed: Optional[float] = None
    achievements: List[str] = field(default_factory=list)

    def to_dict(self):
        return asdict(self)


def speed_bonus(base: int, elapsed: Optional[float], window: float, max_ratio: float) -> int:
    """Linear bonus: ``max_ratio * base`` at 0s falling to nothing at ``window``."""
    if base <= 0 or window <= 0 or max_ratio <= 0 or elapsed is None or elapsed >= window:
        return 0
    elapsed = max(0.0, elapsed)
    return int(round(base * max_ratio * (1 - elapsed / window)))


def clamp_elapsed(client_elapsed, server_elapsed: float, limit: float) -> float:
    # The client's figure only feeds the bonus; eligibility uses the server clock
    if client_elapsed is None:
        value = server_elapsed
    else:
        try:
            value = float(client_elapsed)
        except (TypeError, ValueError):
            raise ValidationFailed('elapsed', 'elapsed must be a number of seconds')
    return min(max(value, 0.0), float(limit))


def _as_int(value, field_name):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationFailed(field_name, f'{field_name} must be a whole number')


def _rejection(player, question):
    """Why an insert for (player, question) lost: a real answer beat it, or the question closed."""
    existing = Answer.query.filter_by(player_id=player.id, question_id=question.id).first()
    if existing is not None and existing.timed_out:
        return AnswerWindowClosed('The answer window for this question has closed')
    return DuplicateAnswer('You already answered this question')


def _record_miss(session, player, question, now):
    try:
        with store.unit_of_work():
            store.stage(Answer(session_id=session.id, player_id=player.id, question_id=question.id,
                               timed_out=True, submitted_at=now,
                               elapsed=now - (session.question_started_at or now)))
            store.update_player(player.id, streak=0)
    except IntegrityError:
        raise _rejection(player, question)


def resolve_answer(session, player_id, question_id, selected_index, elapsed=None, now=None) -> ScoringOutcome:
    now = now or time.time()
    if session.status == 'completed':
        raise AnswerWindowClosed('The game has ended, answers are closed')
    ensure_status(session, PLAYABLE, 'submit an answer')
    player = Player.query.filter_by(id=_as_int(player_id, 'player_id'), session_id=session.id).first()
    if player is None:
        raise ValidationFailed('player_id', 'Player not found in this session')
    qid = _as_int(question_id, 'question_id')
    question = next((q for q in session.questions if q.id == qid), None)
    if question is None:
        raise ValidationFailed('question_id', 'Question not found in this session')
    if question.position > session.current_question_index:
        raise ValidationFailed('question_id', 'This question is not open yet')

    window_open = (question.position == session.current_question_index
                   and session.question_deadline is not None
                   and now <= session.question_deadline
                   and (session.ends_at is None or now < session.ends_at))
    if not window_open:
        _record_miss(session, player, question, now)
        current_app.logger.info(f"[answer-late] session={session.id} player={player.id} question={question.id}")
        raise AnswerWindowClosed('The answer window for this question has closed')

    skipped = selected_index is None
    if skipped and not session.config_allow_skip:
        raise ValidationFailed('selected_index', 'Choose an answer')
    if not skipped:
        selected_index = _as_int(selected_index, 'selected_index')
        if not (0 <= selected_index < len(question.option_list)):
            raise ValidationFailed('selected_index', 'Answer option out of range')

    correct = not skipped and selected_index == question.correct_index
    limit = question.effective_time_limit()
    seconds = clamp_elapsed(elapsed, now - (session.question_started_at or now), limit)
    base = question.effective_points() if correct else 0
    bonus = 0
    if correct and session.config_speed_bonus:
        cfg = current_app.config
        bonus = speed_bonus(base, seconds, float(cfg.get('SPEED_BONUS_WINDOW_SEC', 3)),
                            float(cfg.get('SPEED_BONUS_MAX_RATIO', 0.5)))
    points = base + bonus

    if correct:
        changes = {
            'score': Player.score + points,
            'streak': Player.streak + 1,
            'best_streak': case((Player.streak + 1 > Player.best_streak, Player.streak + 1),
                                else_=Player.best_streak),
            'questions_answered': Player.questions_answered + 1,
            'correct_answers': Player.correct_answers + 1,
        }
        if points:
            changes['score_reached_at'] = now
    else:
        changes = {'streak': 0, 'questions_answered': Player.questions_answered + 1}

    try:
        with store.unit_of_work():
            # The unique (player, question) row decides which submission counts
            store.stage(Answer(
                session_id=session.id, player_id=player.id, question_id=question.id,
                selected_index=None if skipped else selected_index, correct=correct, skipped=skipped,
                points_awarded=points, elapsed=seconds, submitted_at=now,
            ))
            store.update_player(player.id, **changes)
    except IntegrityError:
        current_app.logger.info(f"[answer-dup] session={session.id} player={player.id} question={question.id}")
        raise _rejection(player, question)

    store.refresh(player)
    current_app.logger.info(
        f"[answer] session={session.id} player={player.id} question={question.id} correct={correct} "
        f"points={points} streak={player.streak} score={player.score}"
    )
    return ScoringOutcome(
        correct=correct,
        points_awarded=points,
        new_streak=player.streak,
        new_score=player.score,
        question_id=question.id,
        speed_bonus=bonus,
        skipped=skipped,
        elapsed=seconds,
    )


def submit_answer(session, player_id, question_id, selected_index, elapsed=None, now=None) -> ScoringOutcome:
    """Score the answer, then re-evaluate badges and re-rank for observers."""
    now = now or time.time()
    outcome = resolve_answer(session, player_id, question_id, selected_index, elapsed=elapsed, now=now)
    player = Player.query.filter_by(id=int(player_id)).first()
    outcome.achievements = achievements.award_after_event(
        player, last_correct=outcome.correct, last_elapsed=outcome.elapsed, now=now)
    leaderboard.publish_leaderboard(session)
    return outcome
