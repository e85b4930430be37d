"""Territory Allocator: first accepted claim wins.

The database is the single arbiter. The ownership write only matches an
unclaimed row, and the claim credit is spent in the same transaction, so a
claim either fully applies or leaves nothing behind. Clients never send a
timestamp that matters; arrival order at the database decides.
"""

import time
from dataclasses import dataclass, asdict, field
from typing import List, Optional

from flask import current_app
from sqlalchemy import or_

from trivia.models import Answer, Player, Question, Territory
from . import achievements, leaderboard, notify, store
from .errors import InvalidSessionState, TerritoryAlreadyClaimed, ValidationFailed
from .lifecycle import PLAYABLE, ensure_status


@dataclass
class ClaimResult:
    territory_id: str
    team_id: int
    player_id: int
    claimed_at: float
    territories_claimed: int
    achievements: List[str] = field(default_factory=list)

    def to_dict(self):
        data = asdict(self)
        data['success'] = True
        return data


def available_credit(player, hex_id=None) -> Optional[Answer]:
    """Unspent correct answer that can pay for ``hex_id``.

    A credit bound to ``hex_id`` is preferred, then the oldest unbound one.
    Without ``hex_id`` the oldest unspent credit of any kind is returned.
    """
    credits = (Answer.query.join(Question, Answer.question_id == Question.id)
               .filter(Answer.player_id == player.id, Answer.correct.is_(True), Answer.claim_spent.is_(False))
               .order_by(Answer.submitted_at, Answer.id))
    if hex_id is None:
        return credits.first()
    bound = credits.filter(Question.territory_id == hex_id).first()
    if bound is not None:
        return bound
    return credits.filter(or_(Question.territory_id.is_(None), Question.territory_id == '')).first()


def claim_territory(session, player_id, hex_id, now=None) -> ClaimResult:
    now = now or time.time()
    ensure_status(session, PLAYABLE, 'claim territories')
    if not session.is_team_battle:
        raise InvalidSessionState('Territories only exist in team battles',
                                  status=session.status, action='claim territories')
    try:
        pid = int(player_id)
    except (TypeError, ValueError):
        raise ValidationFailed('player_id', 'player_id must be a whole number')
    player = Player.query.filter_by(id=pid, session_id=session.id).first()
    if player is None:
        raise ValidationFailed('player_id', 'Player not found in this session')
    if player.team_id is None:
        raise ValidationFailed('team', 'Join a team before claiming territories')
    territory = Territory.query.filter_by(session_id=session.id, hex_id=(hex_id or '').strip()).first()
    if territory is None:
        raise ValidationFailed('territory_id', 'Unknown territory')
    if territory.owner_team_id is not None:
        # fast path; the conditional UPDATE below is what actually decides
        raise TerritoryAlreadyClaimed('This territory has already been claimed')

    credit = available_credit(player, territory.hex_id)
    if credit is None:
        other = available_credit(player)
        if other is not None:
            bound = Question.query.filter_by(id=other.question_id).first()
            raise ValidationFailed('territory_id', f'This answer can only claim {bound.territory_id}')
        raise ValidationFailed('claim', 'Answer a question correctly to claim a territory')

    with store.unit_of_work():
        if not store.update_territory(territory.id, player.team_id, player.id, now):
            current_app.logger.info(
                f"[claim-lost] session={session.id} player={player.id} territory={territory.hex_id}")
            raise TerritoryAlreadyClaimed('This territory has already been claimed')
        if not store.spend_claim_credit(credit.id):
            raise ValidationFailed('claim', 'That answer was already used to claim a territory')

    store.refresh(player)
    count = len(player.territories)
    current_app.logger.info(
        f"[claim] session={session.id} player={player.id} team={player.team_id} territory={territory.hex_id}"
    )
    result = ClaimResult(
        territory_id=territory.hex_id,
        team_id=player.team_id,
        player_id=player.id,
        claimed_at=now,
        territories_claimed=count,
    )
    result.achievements = achievements.award_after_event(player, now=now)
    notify.emit_session_event(session, 'territory_update', {
        'territory': Territory.query.filter_by(id=territory.id).first().to_dict(),
        'teams': leaderboard.team_standings(session),
    })
    leaderboard.publish_leaderboard(session)
    return result


def territory_map(session) -> list:
    return [t.to_dict() for t in Territory.query.filter_by(session_id=session.id).order_by(Territory.id).all()]
