import io
import time

from conftest import QUESTIONS
from trivia import db
from trivia.models import GameSession, Player


def _create(client, **data):
    data.setdefault('name', 'Friday Trivia')
    data.setdefault('questions', QUESTIONS)
    res = client.post('/api/sessions', json=data)
    assert res.status_code == 201
    return res.get_json()


def _launched(client, **data):
    session = _create(client, **data)
    res = client.post(f"/api/sessions/{session['id']}/launch")
    assert res.status_code == 200
    return res.get_json()


def test_register_login_and_me(client):
    res = client.post('/api/auth/register', json={'username': 'host', 'password': 'secret'})
    assert res.status_code == 201
    assert client.post('/api/auth/register', json={'username': 'host', 'password': 'x'}).status_code == 400
    client.post('/api/auth/logout')
    assert client.get('/api/auth/me').status_code == 401
    assert client.post('/api/auth/login', json={'username': 'host', 'password': 'nope'}).status_code == 401
    res = client.post('/api/auth/login', json={'username': 'host', 'password': 'secret'})
    assert res.status_code == 200
    assert client.get('/api/auth/me').get_json()['user']['username'] == 'host'


def test_admin_routes_need_login(client):
    assert client.get('/api/sessions').status_code == 401
    assert client.post('/api/sessions', json={'name': 'x'}).status_code == 401


def test_create_session_with_defaults(admin_client):
    session = _create(admin_client)
    assert session['status'] == 'draft'
    assert len(session['session_pin']) == 6
    assert [t['key'] for t in session['teams']] == ['team1', 'team2']
    assert [f['id'] for f in session['registration_fields']] == ['name', 'email', 'organization']
    assert session['config']['time_per_question'] == 15
    listed = admin_client.get('/api/sessions').get_json()
    assert [s['id'] for s in listed] == [session['id']]


def test_create_requires_a_name(admin_client):
    res = admin_client.post('/api/sessions', json={'name': '  '})
    assert res.status_code == 400
    body = res.get_json()
    assert body['error'] == 'validation_failed'
    assert body['field'] == 'name'


def test_edits_are_refused_once_live(admin_client):
    session = _launched(admin_client)
    res = admin_client.put(f"/api/sessions/{session['id']}", json={'name': 'Renamed'})
    assert res.status_code == 409
    assert res.get_json()['error'] == 'invalid_session_state'


def test_join_before_launch_is_refused(admin_client, client):
    session = _create(admin_client)
    res = client.post(f"/api/play/{session['session_pin']}/join", json={'name': 'Alice'})
    assert res.status_code == 409


def test_unknown_pin(client):
    res = client.get('/api/play/ZZZZZZ')
    assert res.status_code == 404
    assert res.get_json()['error'] == 'session_not_found'


def test_validate_reports_first_problem(admin_client):
    session = _create(admin_client)
    admin_client.post(f"/api/sessions/{session['id']}/ready")
    res = admin_client.post(f"/api/play/{session['session_pin']}/validate", json={'name': 'A', 'email': 'nope'})
    assert res.status_code == 400
    assert res.get_json()['field'] == 'name'
    ok = admin_client.post(f"/api/play/{session['session_pin']}/validate", json={'name': 'Alice'})
    assert ok.get_json()['valid'] is True


def test_answer_scenario_correct_and_incorrect(admin_client):
    session = _launched(admin_client)
    pin = session['session_pin']
    a = admin_client.post(f'/api/play/{pin}/join', json={'name': 'Alice'}).get_json()
    b = admin_client.post(f'/api/play/{pin}/join', json={'name': 'Bob'}).get_json()
    qid = session['current_question']['id']

    res = admin_client.post(f'/api/play/{pin}/answer',
                            json={'player_id': a['id'], 'question_id': qid, 'selected_index': 1, 'elapsed': 2})
    assert res.status_code == 200
    outcome = res.get_json()
    assert outcome['correct'] is True
    assert outcome['points_awarded'] == 100
    assert outcome['new_streak'] == 1
    assert outcome['achievements'] == ['first_answer', 'speed_demon']

    res = admin_client.post(f'/api/play/{pin}/answer',
                            json={'player_id': b['id'], 'question_id': qid, 'selected_index': 0, 'elapsed': 4})
    outcome = res.get_json()
    assert outcome['correct'] is False
    assert outcome['points_awarded'] == 0
    assert outcome['new_streak'] == 0

    dup = admin_client.post(f'/api/play/{pin}/answer',
                            json={'player_id': a['id'], 'question_id': qid, 'selected_index': 1})
    assert dup.status_code == 409
    assert dup.get_json()['error'] == 'duplicate_answer'

    board = admin_client.get(f'/api/play/{pin}/leaderboard').get_json()
    assert [e['name'] for e in board['leaderboard']] == ['Alice', 'Bob']
    assert board['leaderboard'][0]['score'] == 100


def test_public_status_hides_answers(admin_client, client):
    session = _launched(admin_client)
    status = client.get(f"/api/play/{session['session_pin']}").get_json()
    assert status['status'] == 'live'
    assert status['joinable'] is True
    assert 'questions' not in status
    assert 'correct_index' not in status['current_question']


def test_territory_race_over_http(admin_client):
    session = _launched(admin_client)
    pin = session['session_pin']
    red = admin_client.post(f'/api/play/{pin}/join', json={'name': 'Red', 'team': 'team1'}).get_json()
    green = admin_client.post(f'/api/play/{pin}/join', json={'name': 'Green', 'team': 'team2'}).get_json()
    qid = session['current_question']['id']
    for p in (red, green):
        admin_client.post(f'/api/play/{pin}/answer',
                          json={'player_id': p['id'], 'question_id': qid, 'selected_index': 1})

    won = admin_client.post(f'/api/play/{pin}/claim', json={'player_id': red['id'], 'territory_id': 'hex-1-1'})
    assert won.status_code == 200
    assert won.get_json()['success'] is True
    lost = admin_client.post(f'/api/play/{pin}/claim', json={'player_id': green['id'], 'territory_id': 'hex-1-1'})
    assert lost.status_code == 409
    assert lost.get_json()['error'] == 'territory_already_claimed'

    terr = admin_client.get(f'/api/play/{pin}/territories').get_json()
    owned = [t for t in terr['territories'] if t['owner']]
    assert owned == [{'id': 'hex-1-1', 'owner_team_id': red['team_id'], 'owner': 'team1',
                      'claimed_by': red['id'], 'claimed_at': owned[0]['claimed_at']}]
    assert terr['teams'][0]['key'] == 'team1'
    player = admin_client.get(f"/api/play/{pin}/players/{green['id']}").get_json()
    assert player['score'] == 100


def test_host_paced_game_to_results(admin_client):
    session = _launched(admin_client)
    sid = session['id']
    pin = session['session_pin']
    alice = admin_client.post(f'/api/play/{pin}/join', json={'name': 'Alice'}).get_json()
    for expected in range(len(QUESTIONS)):
        res = admin_client.post(f'/api/sessions/{sid}/next', json={'expected_index': expected})
        assert res.get_json()['advanced'] is True
    final = admin_client.get(f'/api/sessions/{sid}').get_json()
    assert final['status'] == 'completed'

    results = admin_client.get(f'/api/sessions/{sid}/results').get_json()
    assert results['history'][0]['reason'] == 'questions_exhausted'
    assert results['players'][0]['id'] == alice['id']
    assert results['players'][0]['questions_answered'] == 0

    again = admin_client.post(f'/api/sessions/{sid}/end')
    assert again.status_code == 409


def test_import_questions_from_csv(admin_client):
    session = _create(admin_client, questions=[])
    sample = admin_client.get('/api/sessions/questions/sample.csv')
    assert sample.status_code == 200
    csv_text = sample.get_data(as_text=True)

    res = admin_client.post(f"/api/sessions/{session['id']}/questions/import", json={'csv': csv_text})
    assert res.status_code == 200
    body = res.get_json()
    assert body['imported'] == 3
    assert body['questions'][1]['correct_index'] == 1

    res = admin_client.post(f"/api/sessions/{session['id']}/questions/import",
                            json={'csv': csv_text, 'mode': 'replace'})
    assert len(res.get_json()['questions']) == 3

    bad = admin_client.post(f"/api/sessions/{session['id']}/questions/import", json={'csv': 'x,y\n'})
    assert bad.status_code == 400
    assert bad.get_json()['success'] is False


def test_duplicate_and_delete(admin_client):
    session = _create(admin_client)
    copy = admin_client.post(f"/api/sessions/{session['id']}/duplicate").get_json()
    assert copy['name'] == 'Friday Trivia (Copy)'
    assert copy['session_pin'] != session['session_pin']
    assert admin_client.delete(f"/api/sessions/{session['id']}").status_code == 200
    assert admin_client.get(f"/api/sessions/{session['id']}").status_code == 404


def test_other_admins_cannot_see_a_session(admin_client, flask_app):
    session = _create(admin_client)
    other = flask_app.test_client()
    other.post('/api/auth/register', json={'username': 'someone', 'password': 'pw'})
    assert other.get(f"/api/sessions/{session['id']}").status_code == 404


def test_polled_leaderboard_reports_rank_moves(admin_client):
    session = _launched(admin_client)
    pin = session['session_pin']
    admin_client.post(f'/api/play/{pin}/join', json={'name': 'Alice'})
    bob = admin_client.post(f'/api/play/{pin}/join', json={'name': 'Bob'}).get_json()
    qid = session['current_question']['id']

    res = admin_client.post(f'/api/play/{pin}/answer',
                            json={'player_id': bob['id'], 'question_id': qid, 'selected_index': 1})
    assert res.status_code == 200

    board = admin_client.get(f'/api/play/{pin}/leaderboard').get_json()
    deltas = {e['name']: e['delta'] for e in board['leaderboard']}
    assert deltas == {'Bob': 'up', 'Alice': 'down'}
    assert board['leaderboard'][0]['previous_rank'] == 2


def test_late_answer_to_the_last_question_is_closed(admin_client):
    only = dict(QUESTIONS[0], time_limit=1)
    session = _launched(admin_client, questions=[only])
    pin = session['session_pin']
    alice = admin_client.post(f'/api/play/{pin}/join', json={'name': 'Alice'}).get_json()
    qid = session['current_question']['id']
    # the one-second window ran out before the answer arrived
    GameSession.query.filter_by(id=session['id']).update({'question_deadline': time.time() - 1})
    db.session.commit()

    late = admin_client.post(f'/api/play/{pin}/answer',
                             json={'player_id': alice['id'], 'question_id': qid, 'selected_index': 1})
    assert late.status_code == 409
    assert late.get_json()['error'] == 'answer_window_closed'
    assert admin_client.get(f'/api/play/{pin}').get_json()['status'] == 'completed'
    assert db.session.get(Player, alice['id']).score == 0

    after = admin_client.post(f'/api/play/{pin}/answer',
                              json={'player_id': alice['id'], 'question_id': qid, 'selected_index': 1})
    assert after.status_code == 409
    assert after.get_json()['error'] == 'answer_window_closed'


def test_non_utf8_csv_upload_is_rejected(admin_client):
    session = _create(admin_client, questions=[])
    res = admin_client.post(
        f"/api/sessions/{session['id']}/questions/import",
        data={'file': (io.BytesIO(b'question,\xff\xfe\n'), 'questions.csv')},
        content_type='multipart/form-data',
    )
    assert res.status_code == 400
    body = res.get_json()
    assert body['error'] == 'validation_failed'
    assert body['field'] == 'csv'


def test_team_edits_keep_joined_players(admin_client):
    session = _create(admin_client)
    sid = session['id']
    assert admin_client.post(f'/api/sessions/{sid}/ready').status_code == 200
    alice = admin_client.post(f"/api/play/{session['session_pin']}/join",
                              json={'name': 'Alice', 'team': 'team1'}).get_json()

    res = admin_client.put(f'/api/sessions/{sid}', json={'teams': [
        {'key': 'team1', 'name': 'Red Dragons', 'color': '#E00800'},
        {'key': 'team3', 'name': 'Blue Whales'},
    ]})
    assert res.status_code == 200
    teams = {t['key']: t for t in res.get_json()['teams']}
    assert sorted(teams) == ['team1', 'team3']
    assert teams['team1']['name'] == 'Red Dragons'
    assert teams['team1']['id'] == alice['team_id']
    assert db.session.get(Player, alice['id']).team_id == alice['team_id']

    res = admin_client.put(f'/api/sessions/{sid}', json={'teams': [{'key': 'team3', 'name': 'Blue Whales'}]})
    assert res.status_code == 400
    assert res.get_json()['field'] == 'teams'
    kept = admin_client.get(f'/api/sessions/{sid}').get_json()
    assert sorted(t['key'] for t in kept['teams']) == ['team1', 'team3']
    assert kept['players'][0]['team_id'] == alice['team_id']
