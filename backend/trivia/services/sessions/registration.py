"""Registration Validator and join commit.

``validate_join`` is a pure check that reports exactly one problem, the
first in rule order, so the client always shows a single deterministic
message. ``join_session`` re-confirms the session is still joinable right
before it inserts the player.
"""

import json
import re
import time
from dataclasses import dataclass, field
from typing import Dict, Optional

from flask import current_app

from trivia.models import Player
from . import leaderboard, notify, store
from .errors import InvalidSessionState, SessionNotFound, ValidationFailed
from .lifecycle import JOINABLE, ensure_status

EMAIL_RE = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
NAME_MIN = 2
NAME_MAX = 20
BUILTIN_FIELDS = ('name', 'email', 'organization')


@dataclass
class JoinPayload:
    name: str
    email: Optional[str] = None
    organization: Optional[str] = None
    custom_fields: Dict[str, str] = field(default_factory=dict)
    team_id: Optional[int] = None

    def to_dict(self):
        return {
            'name': self.name,
            'email': self.email,
            'organization': self.organization,
            'custom_fields': self.custom_fields,
            'team_id': self.team_id,
        }


def _clean(value) -> str:
    return str(value).strip() if value is not None else ''


def _submitted(values: dict, key: str) -> str:
    if key in BUILTIN_FIELDS:
        return _clean(values.get(key))
    return _clean((values.get('custom_fields') or {}).get(key))


def _pick_team(session, requested):
    """Requested team if it has room, otherwise the emptiest team."""
    capacity = session.config_max_players_per_team
    counts = {t.id: 0 for t in session.teams}
    for p in session.players:
        if p.team_id in counts:
            counts[p.team_id] += 1
    if requested not in (None, ''):
        team = next((t for t in session.teams if t.key == requested or str(t.id) == str(requested)), None)
        if team is None:
            raise ValidationFailed('team', 'Unknown team')
        if counts[team.id] >= capacity:
            raise ValidationFailed('team', f'{team.name} is full')
        return team.id
    open_teams = [t for t in session.teams if counts[t.id] < capacity]
    if not open_teams:
        raise ValidationFailed('team', 'All teams are full')
    return min(open_teams, key=lambda t: (counts[t.id], t.position)).id


def validate_join(session, values: dict) -> JoinPayload:
    values = values or {}
    # (1) session exists and accepts players
    if session is None:
        raise SessionNotFound('Invalid session PIN. Please check and try again.')
    ensure_status(session, JOINABLE, 'join')

    fields = {f.field_key: f for f in session.registration_fields}
    name_field = fields.get('name')
    name = _clean(values.get('name'))

    # (2) name, unless the organizer explicitly switched it off
    if name_field is None or name_field.enabled:
        if not name:
            raise ValidationFailed('name', 'Please enter your name')
        if len(name) < NAME_MIN:
            raise ValidationFailed('name', f'Name must be at least {NAME_MIN} characters')
        if len(name) > NAME_MAX:
            raise ValidationFailed('name', f'Name must be at most {NAME_MAX} characters')
    elif not name:
        name = 'Anonymous'

    # (3) enabled + required fields, in configured order
    for f in session.registration_fields:
        if f.field_key == 'name' or not (f.enabled and f.required):
            continue
        if not _submitted(values, f.field_key):
            raise ValidationFailed(f.field_key, f'{f.label} is required')

    # (4) any submitted email must look like one
    email = _clean(values.get('email'))
    if email and not EMAIL_RE.match(email):
        raise ValidationFailed('email', 'Please enter a valid email address')

    # (5) organization when required; rule 3 normally catches this first
    org_field = fields.get('organization')
    organization = _clean(values.get('organization'))
    if org_field is not None and org_field.enabled and org_field.required and not organization:
        raise ValidationFailed('organization', f'{org_field.label} is required')

    custom = {}
    for key, raw in (values.get('custom_fields') or {}).items():
        f = fields.get(key)
        if f is not None and f.enabled and key not in BUILTIN_FIELDS:
            cleaned = _clean(raw)
            if cleaned:
                custom[key] = cleaned

    team_id = _pick_team(session, values.get('team')) if session.is_team_battle else None

    return JoinPayload(
        name=name,
        email=email or None,
        organization=organization or None,
        custom_fields=custom,
        team_id=team_id,
    )


def join_session(pin, values: dict, now=None) -> Player:
    session = store.get_session_by_pin(pin)
    payload = validate_join(session, values)
    # The session may have closed while we validated
    store.refresh(session)
    if session.status not in JOINABLE:
        raise InvalidSessionState(status=session.status, action='join')
    player = Player(
        session_id=session.id,
        team_id=payload.team_id,
        name=payload.name,
        email=payload.email,
        organization=payload.organization,
        custom_fields=json.dumps(payload.custom_fields),
        joined_at=now or time.time(),
    )
    if player.team_id is None:
        store.add_row(player)
    else:
        store.add_team_member(player, session.config_max_players_per_team)
    current_app.logger.info(
        f"[join] session={session.id} player={player.id} name={player.name!r} team={player.team_id}"
    )
    leaderboard.publish_leaderboard(session)
    notify.state_update(session)
    return player
