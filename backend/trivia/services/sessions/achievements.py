"""Achievement Evaluator.

Badges are monotonic: ``evaluate`` only ever proposes ids the player does
not hold yet, and the unique (player, achievement) row makes delivery
exactly-once even when two events race for the same badge.
"""

import time
from dataclasses import dataclass
from typing import Iterable, List, Optional

from flask import current_app

from trivia.models import PlayerAchievement
from . import notify, store

FIRST_ANSWER = 'first_answer'
STREAK_3 = 'streak_3'
STREAK_5 = 'streak_5'
STREAK_10 = 'streak_10'
TERRITORY_CLAIMED = 'territory_claimed'
TERRITORY_MASTER = 'territory_master'
SPEED_DEMON = 'speed_demon'
PERFECT_ROUND = 'perfect_round'
MVP = 'mvp'

STREAK_BADGES = ((3, STREAK_3), (5, STREAK_5), (10, STREAK_10))
TERRITORY_BADGES = ((1, TERRITORY_CLAIMED), (5, TERRITORY_MASTER))
DEFAULT_SPEED_DEMON_THRESHOLD = 3.0


@dataclass
class PlayerSnapshot:
    score: int = 0
    streak: int = 0
    territories: int = 0
    questions_answered: int = 0
    correct_answers: int = 0
    total_questions: int = 0
    last_correct: bool = False
    last_elapsed: Optional[float] = None


def evaluate(snapshot: PlayerSnapshot, unlocked: Iterable[str],
             speed_threshold: float = DEFAULT_SPEED_DEMON_THRESHOLD) -> List[str]:
    """Ids newly earned by ``snapshot``; never includes anything in ``unlocked``.

    ``mvp`` is not evaluated here, it is decided once at completion.
    """
    held = set(unlocked)
    earned = []
    if snapshot.correct_answers >= 1:
        earned.append(FIRST_ANSWER)
    earned.extend(badge for threshold, badge in STREAK_BADGES if snapshot.streak >= threshold)
    earned.extend(badge for threshold, badge in TERRITORY_BADGES if snapshot.territories >= threshold)
    if (snapshot.last_correct and snapshot.last_elapsed is not None
            and snapshot.last_elapsed < speed_threshold):
        earned.append(SPEED_DEMON)
    if snapshot.total_questions and snapshot.correct_answers >= snapshot.total_questions:
        earned.append(PERFECT_ROUND)
    return [badge for badge in earned if badge not in held]


def snapshot_for(player, last_correct=False, last_elapsed=None) -> PlayerSnapshot:
    return PlayerSnapshot(
        score=player.score or 0,
        streak=player.streak or 0,
        territories=len(player.territories),
        questions_answered=player.questions_answered or 0,
        correct_answers=player.correct_answers or 0,
        total_questions=len(player.session.questions),
        last_correct=last_correct,
        last_elapsed=last_elapsed,
    )


def grant(player, badges: Iterable[str], now=None) -> List[str]:
    """Persist ``badges`` for ``player``; returns the ones this call actually delivered."""
    now = now or time.time()
    delivered = []
    for badge in badges:
        if store.insert_unique(PlayerAchievement(player_id=player.id, achievement_id=badge, unlocked_at=now)):
            delivered.append(badge)
    if delivered:
        current_app.logger.info(f"[achievement] player={player.id} unlocked={','.join(delivered)}")
        notify.emit_session_event(player.session, 'achievement_unlocked', {
            'player_id': player.id,
            'achievements': delivered,
        })
    return delivered


def award_after_event(player, last_correct=False, last_elapsed=None, now=None) -> List[str]:
    threshold = float(current_app.config.get('SPEED_DEMON_THRESHOLD_SEC', DEFAULT_SPEED_DEMON_THRESHOLD))
    snapshot = snapshot_for(player, last_correct=last_correct, last_elapsed=last_elapsed)
    return grant(player, evaluate(snapshot, player.achievement_ids, threshold), now=now)


def award_mvp(session, entries, now=None) -> List[str]:
    """Top-ranked player with a positive score at completion earns ``mvp``."""
    if not entries or entries[0].score <= 0:
        return []
    top = next((p for p in session.players if p.id == entries[0].player_id), None)
    if top is None:
        return []
    return grant(top, [MVP], now=now)
