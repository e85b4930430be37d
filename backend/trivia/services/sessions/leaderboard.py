"""Leaderboard Ranker.

``rank_players`` is a pure function of the player set, so it can be rerun
after any committed mutation without a lock. Ordering is score (desc),
then the moment that score was reached (earlier first), then join order.
"""

from dataclasses import dataclass, asdict
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func

from trivia import db
from trivia.models import Player, Territory
from . import notify, store

DELTA_NEW = 'new'
DELTA_UP = 'up'
DELTA_DOWN = 'down'
DELTA_UNCHANGED = 'unchanged'


@dataclass
class LeaderboardEntry:
    player_id: int
    name: str
    team_id: Optional[int]
    score: int
    territories: int
    rank: int
    previous_rank: Optional[int]
    delta: str
    seconds_to_score: Optional[float]

    def to_dict(self):
        return asdict(self)


def rank_change(rank: int, previous: Optional[int]) -> str:
    if previous is None:
        return DELTA_NEW
    if rank < previous:
        return DELTA_UP
    if rank > previous:
        return DELTA_DOWN
    return DELTA_UNCHANGED


def rank_players(players: Iterable, previous_ranks: Optional[Dict[int, int]] = None,
                 territory_counts: Optional[Dict[int, int]] = None,
                 started_at: Optional[float] = None) -> List[LeaderboardEntry]:
    previous_ranks = previous_ranks or {}
    territory_counts = territory_counts or {}
    baseline = started_at or 0.0

    def sort_key(p):
        reached = p.score_reached_at if p.score_reached_at is not None else baseline
        return (-(p.score or 0), reached, p.joined_at, p.id)

    entries = []
    for position, p in enumerate(sorted(players, key=sort_key), start=1):
        previous = previous_ranks.get(p.id)
        seconds = None
        if p.score and p.score_reached_at is not None and started_at is not None:
            seconds = round(p.score_reached_at - started_at, 3)
        entries.append(LeaderboardEntry(
            player_id=p.id,
            name=p.name,
            team_id=p.team_id,
            score=p.score or 0,
            territories=territory_counts.get(p.id, 0),
            rank=position,
            previous_rank=previous,
            delta=rank_change(position, previous),
            seconds_to_score=seconds,
        ))
    return entries


def territory_counts(session_id: int) -> Dict[int, int]:
    rows = (db.session.query(Territory.claimed_by_player_id, func.count(Territory.id))
            .filter(Territory.session_id == session_id, Territory.claimed_by_player_id.isnot(None))
            .group_by(Territory.claimed_by_player_id).all())
    return {player_id: count for player_id, count in rows}


def team_standings(session) -> list:
    if not session.is_team_battle:
        return []
    owned = dict(db.session.query(Territory.owner_team_id, func.count(Territory.id))
                 .filter(Territory.session_id == session.id, Territory.owner_team_id.isnot(None))
                 .group_by(Territory.owner_team_id).all())
    standings = []
    for team in session.teams:
        members = [p for p in session.players if p.team_id == team.id]
        standings.append({
            'team_id': team.id,
            'key': team.key,
            'name': team.name,
            'territories': owned.get(team.id, 0),
            'score': sum(p.score or 0 for p in members),
            'players': len(members),
        })
    standings.sort(key=lambda s: (-s['territories'], -s['score']))
    return standings


def _snapshot(session):
    # One query so every entry is ranked against the same player set
    return Player.query.filter_by(session_id=session.id).order_by(Player.id).all()


def get_leaderboard(session) -> List[LeaderboardEntry]:
    """Read-only ranking; deltas are relative to the last published ranks."""
    players = _snapshot(session)
    entries = rank_players(players, {p.id: p.rank for p in players},
                           territory_counts(session.id), session.started_at)
    published = {p.id: (p.rank, p.previous_rank) for p in players}
    for entry in entries:
        rank, previous = published[entry.player_id]
        # Nothing moved since the last publish: report that publish's delta
        if rank == entry.rank:
            entry.previous_rank = previous
            entry.delta = rank_change(entry.rank, previous)
    return entries


def publish_leaderboard(session) -> List[LeaderboardEntry]:
    """Re-rank after a committed mutation, store the ranks and push them to observers."""
    players = _snapshot(session)
    entries = rank_players(players, {p.id: p.rank for p in players},
                           territory_counts(session.id), session.started_at)
    stored = {p.id: (p.rank, p.previous_rank) for p in players}
    changed = False
    for entry in entries:
        if stored.get(entry.player_id) != (entry.rank, entry.previous_rank):
            store.update_player(entry.player_id, rank=entry.rank, previous_rank=entry.previous_rank)
            changed = True
    if changed:
        store.commit()
    notify.emit_session_event(session, 'leaderboard_update', {
        'leaderboard': [e.to_dict() for e in entries],
        'teams': team_standings(session),
    })
    return entries
