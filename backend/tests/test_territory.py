import threading

import pytest

from trivia import db
from trivia.models import Admin, Answer, GameSession, Player, Territory
from trivia.services.sessions import lifecycle, scoring, store, territory
from trivia.services.sessions.errors import InvalidSessionState, TerritoryAlreadyClaimed, ValidationFailed

T0 = 3_000_000.0


def _answered(session, name, team, correct=True, now=T0 + 1):
    player = Player(session_id=session.id, name=name, joined_at=T0,
                    team_id=next(t.id for t in session.teams if t.key == team))
    db.session.add(player)
    db.session.commit()
    q = session.questions[session.current_question_index]
    pick = q.correct_index if correct else (q.correct_index + 1) % len(q.option_list)
    scoring.resolve_answer(session, player.id, q.id, pick, now=now)
    return player


def test_hex_grid_ids_follow_rings():
    assert store.hex_ids_for_grid(8) == [
        'hex-1-1', 'hex-1-2', 'hex-1-3', 'hex-1-4', 'hex-1-5', 'hex-1-6', 'hex-2-1', 'hex-2-2',
    ]
    assert len(store.hex_ids_for_grid(18)) == 18
    assert store.hex_ids_for_grid(0) == []


def test_map_includes_question_coordinates(make_session):
    questions = [{'prompt': 'Q', 'options': ['a', 'b'], 'correct_index': 0, 'territory_id': 'castle-gate'}]
    session = make_session(questions=questions, config={'hex_grid_size': 2})
    assert [t['id'] for t in territory.territory_map(session)] == ['hex-1-1', 'hex-1-2', 'castle-gate']


def test_first_claim_wins_and_the_loser_keeps_points(make_session):
    session = make_session(status='live', now=T0)
    red = _answered(session, 'Red', 'team1')
    green = _answered(session, 'Green', 'team2')

    won = territory.claim_territory(session, red.id, 'hex-1-1', now=T0 + 2)
    assert won.territory_id == 'hex-1-1'
    assert won.territories_claimed == 1
    assert 'territory_claimed' in won.achievements

    with pytest.raises(TerritoryAlreadyClaimed):
        territory.claim_territory(session, green.id, 'hex-1-1', now=T0 + 2)

    cell = Territory.query.filter_by(session_id=session.id, hex_id='hex-1-1').one()
    assert cell.owner_team_id == red.team_id
    assert cell.claimed_by_player_id == red.id
    assert db.session.get(Player, green.id).score == 100
    # the loser's credit is still there for another cell
    assert territory.available_credit(db.session.get(Player, green.id)) is not None


def test_ownership_write_matches_only_once(make_session):
    session = make_session(status='live', now=T0)
    red = _answered(session, 'Red', 'team1')
    green = _answered(session, 'Green', 'team2')
    cell = Territory.query.filter_by(session_id=session.id, hex_id='hex-1-2').one()
    assert store.update_territory(cell.id, red.team_id, red.id, T0 + 2)
    assert not store.update_territory(cell.id, green.team_id, green.id, T0 + 2)
    store.commit()
    db.session.refresh(cell)
    assert cell.claimed_by_player_id == red.id


def test_one_credit_per_correct_answer(make_session):
    session = make_session(status='live', now=T0)
    red = _answered(session, 'Red', 'team1')
    territory.claim_territory(session, red.id, 'hex-1-1', now=T0 + 2)
    with pytest.raises(ValidationFailed) as excinfo:
        territory.claim_territory(session, red.id, 'hex-1-2', now=T0 + 3)
    assert excinfo.value.field == 'claim'
    assert Answer.query.filter_by(player_id=red.id, claim_spent=True).count() == 1


def test_wrong_answer_earns_no_claim(make_session):
    session = make_session(status='live', now=T0)
    red = _answered(session, 'Red', 'team1', correct=False)
    with pytest.raises(ValidationFailed):
        territory.claim_territory(session, red.id, 'hex-1-1', now=T0 + 2)
    assert Territory.query.filter(Territory.owner_team_id.isnot(None)).count() == 0


def test_unknown_territory(make_session):
    session = make_session(status='live', now=T0)
    red = _answered(session, 'Red', 'team1')
    with pytest.raises(ValidationFailed) as excinfo:
        territory.claim_territory(session, red.id, 'hex-99-1', now=T0 + 2)
    assert excinfo.value.field == 'territory_id'


def test_bound_question_can_only_claim_its_coordinate(make_session):
    questions = [{'prompt': 'Q', 'options': ['a', 'b'], 'correct_index': 0, 'territory_id': 'hex-1-3'}]
    session = make_session(status='live', now=T0, questions=questions)
    red = _answered(session, 'Red', 'team1')
    with pytest.raises(ValidationFailed) as excinfo:
        territory.claim_territory(session, red.id, 'hex-1-1', now=T0 + 2)
    assert excinfo.value.field == 'territory_id'
    result = territory.claim_territory(session, red.id, 'hex-1-3', now=T0 + 2)
    assert result.territory_id == 'hex-1-3'


def test_individual_sessions_have_no_map(make_session):
    session = make_session(status='live', now=T0, type='individual')
    assert territory.territory_map(session) == []
    player = Player(session_id=session.id, name='Solo', joined_at=T0)
    db.session.add(player)
    db.session.commit()
    with pytest.raises(InvalidSessionState):
        territory.claim_territory(session, player.id, 'hex-1-1', now=T0 + 2)


def test_claims_close_with_the_session(make_session):
    session = make_session(status='live', now=T0)
    red = _answered(session, 'Red', 'team1')
    lifecycle.end_game(session, now=T0 + 5)
    with pytest.raises(InvalidSessionState):
        territory.claim_territory(session, red.id, 'hex-1-1', now=T0 + 6)


def test_taken_coordinate_does_not_block_later_credits(make_session):
    questions = [
        {'prompt': 'Q1', 'options': ['a', 'b'], 'correct_index': 0, 'territory_id': 'hex-1-3'},
        {'prompt': 'Q2', 'options': ['a', 'b'], 'correct_index': 0},
    ]
    session = make_session(status='live', now=T0, questions=questions)
    red = _answered(session, 'Red', 'team1')
    green = _answered(session, 'Green', 'team2')
    territory.claim_territory(session, red.id, 'hex-1-3', now=T0 + 2)
    with pytest.raises(TerritoryAlreadyClaimed):
        territory.claim_territory(session, green.id, 'hex-1-3', now=T0 + 2)

    lifecycle.advance_question(session, 0, now=T0 + 3)
    second = session.questions[1]
    assert scoring.resolve_answer(session, green.id, second.id, 0, now=T0 + 4).correct

    result = territory.claim_territory(session, green.id, 'hex-1-1', now=T0 + 5)
    assert result.territory_id == 'hex-1-1'
    spent = [a.question_id for a in Answer.query.filter_by(player_id=green.id, claim_spent=True)]
    assert spent == [second.id]


@pytest.fixture()
def file_app(tmp_path):
    """App on a file-backed SQLite database so threads get their own connections."""
    from conftest import TestConfig
    from trivia import create_app

    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'race.db'}"
        SQLALCHEMY_ENGINE_OPTIONS = {'connect_args': {'timeout': 30, 'check_same_thread': False}}

    application = create_app(FileConfig)
    with application.app_context():
        db.create_all()
    yield application
    with application.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def test_simultaneous_claims_have_one_winner(file_app):
    with file_app.app_context():
        admin = Admin(username='racer')
        admin.set_password('secret')
        db.session.add(admin)
        db.session.commit()
        session = store.create_session(admin.id, {
            'name': 'Race', 'questions': [{'prompt': 'Q', 'options': ['a', 'b'], 'correct_index': 0}],
        })
        lifecycle.launch(session, now=T0)
        session_id = session.id
        contenders = [_answered(session, 'Red', 'team1').id, _answered(session, 'Green', 'team2').id]
        db.session.remove()

    barrier = threading.Barrier(len(contenders))
    outcomes = {}

    def claim(player_id):
        with file_app.app_context():
            live = db.session.get(GameSession, session_id)
            barrier.wait()
            try:
                territory.claim_territory(live, player_id, 'hex-1-1', now=T0 + 2)
                outcomes[player_id] = 'won'
            except TerritoryAlreadyClaimed:
                outcomes[player_id] = 'lost'
            finally:
                db.session.remove()

    threads = [threading.Thread(target=claim, args=(pid,)) for pid in contenders]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert sorted(outcomes.values()) == ['lost', 'won']
    winner = next(pid for pid, outcome in outcomes.items() if outcome == 'won')
    with file_app.app_context():
        cell = Territory.query.filter_by(session_id=session_id, hex_id='hex-1-1').one()
        assert cell.claimed_by_player_id == winner
        assert Answer.query.filter_by(claim_spent=True).count() == 1
        db.session.remove()
