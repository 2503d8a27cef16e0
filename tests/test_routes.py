from datetime import timedelta

import pytest

import routes
from app import db
from campuses import get_campus
from models import Game, Score, User


def start_game(client, campus='sfu'):
    response = client.post('/api/games', json={'campus': campus})
    assert response.status_code == 201
    return response.get_json()


def current_location(client, game_id):
    response = client.get(f'/api/games/{game_id}/streetview')
    assert response.status_code == 200
    return response.get_json()['location']


def rewind_round_clock(game_id, seconds):
    game = db.session.get(Game, game_id)
    game.round_started_at -= timedelta(seconds=seconds)
    db.session.commit()


def test_health(client):
    response = client.get('/api/health')
    assert response.status_code == 200
    assert response.get_json()['database'] == 'ok'


def test_maps_key(client):
    assert client.get('/api/maps-key').get_json() == {'key': 'test-key'}


def test_list_campuses(client):
    campuses = client.get('/api/campuses').get_json()
    assert len(campuses) == 16
    thresholds = [campus['s_rank_threshold'] for campus in campuses]
    assert thresholds == sorted(thresholds, reverse=True)


def test_campus_detail(client):
    assert client.get('/api/campuses/SFU').get_json()['name'] == 'Simon Fraser University'
    response = client.get('/api/campuses/atlantis')
    assert response.status_code == 404
    assert response.get_json()['success'] is False


@pytest.mark.parametrize('body', [{'campus': 'atlantis'}, {}, {'campus': None}])
def test_start_game_with_unknown_campus_fails(client, coverage_calls, body):
    response = client.post('/api/games', json=body)
    assert response.status_code == 400
    assert Game.query.count() == 0
    assert coverage_calls == []


def test_start_game(client, coverage_calls):
    game = start_game(client)

    assert game['state'] == 'in_round'
    assert game['current_round'] == 1
    assert game['total_rounds'] == 5
    assert game['time_remaining'] > 55
    assert 'location_lat' not in game
    assert len(coverage_calls) == 1
    assert coverage_calls[0][2] == {'radius': 100, 'api_key': 'test-key', 'timeout': 5.0}


def test_streetview_location_inside_campus(client, coverage_calls):
    game = start_game(client)
    location = current_location(client, game['id'])
    assert get_campus('sfu').contains(location['lat'], location['lng'])


def test_fallback_to_campus_centre(client, monkeypatch):
    calls = []

    def never_covered(lat, lng, **kwargs):
        calls.append((lat, lng))
        return None

    monkeypatch.setattr(routes, 'check_coverage', never_covered)
    game = start_game(client)
    location = current_location(client, game['id'])

    assert len(calls) == 20
    assert (location['lat'], location['lng']) == pytest.approx(get_campus('sfu').center)
    assert db.session.get(Game, game['id']).location_fallback is True


def test_guess_and_duplicate_guess(client, coverage_calls):
    game = start_game(client)
    location = current_location(client, game['id'])

    first = client.post(f'/api/games/{game["id"]}/guess', json=location).get_json()
    assert first['points'] == 10000
    assert first['already_resolved'] is False
    assert first['total_score'] == 10000

    second = client.post(f'/api/games/{game["id"]}/guess', json={'lat': 0, 'lng': 0}).get_json()
    assert second['already_resolved'] is True
    assert second['points'] == 10000
    assert second['total_score'] == 10000


@pytest.mark.parametrize('body', [{}, {'lat': 'north', 'lng': 1}, {'lat': 91, 'lng': 0}, {'lat': 49.2}])
def test_guess_requires_coordinates(client, coverage_calls, body):
    game = start_game(client)
    response = client.post(f'/api/games/{game["id"]}/guess', json=body)
    assert response.status_code == 400


def test_full_game_flow(client, coverage_calls):
    game = start_game(client)
    game_id = game['id']

    for round_number in range(1, 6):
        location = current_location(client, game_id)
        result = client.post(f'/api/games/{game_id}/guess', json=location).get_json()
        assert result['current_round'] == round_number
        response = client.post(f'/api/games/{game_id}/next-round')
        assert response.status_code == 200

    summary = response.get_json()
    assert summary['total_points'] == 50000
    assert summary['grade'] == 'S'
    assert summary['xp_earned'] == 1000
    assert summary['rounds_played'] == 5

    assert client.get(f'/api/games/{game_id}/results').get_json()['grade'] == 'S'
    assert client.post(f'/api/games/{game_id}/next-round').status_code == 409

    profile = client.get('/api/users/me').get_json()
    assert profile['level'] == 2
    assert profile['stats']['completed_games'] == 1
    assert profile['stats']['average_score'] == 10000

    history = client.get('/api/users/me/games').get_json()
    assert [g['game_id'] for g in history] == [game_id]

    recent = client.get('/api/games/recent?limit=5').get_json()
    assert recent[0]['id'] == game_id
    assert recent[0]['grade'] == 'S'

    leaders = client.get('/api/leaderboard').get_json()
    assert leaders[0]['username'] == profile['username']


def test_next_round_needs_resolved_round(client, coverage_calls):
    game = start_game(client)
    assert client.post(f'/api/games/{game["id"]}/next-round').status_code == 409
    assert client.get(f'/api/games/{game["id"]}/results').status_code == 409


def test_timeout_without_guess(client, coverage_calls):
    game = start_game(client)
    rewind_round_clock(game['id'], 120)

    state = client.get(f'/api/games/{game["id"]}').get_json()
    assert state['state'] == 'round_resolved'
    assert state['total_score'] == 0

    late = client.post(f'/api/games/{game["id"]}/guess', json={'lat': 49.278, 'lng': -122.918}).get_json()
    assert late['already_resolved'] is True
    assert late['timed_out'] is True
    assert late['guess_location'] is None
    assert late['points'] == 0


def test_timeout_submits_pending_guess(client, coverage_calls):
    game = start_game(client)
    location = current_location(client, game['id'])

    response = client.put(f'/api/games/{game["id"]}/pending-guess', json=location)
    assert response.get_json()['accepted'] is True
    rewind_round_clock(game['id'], 120)

    result = client.post(f'/api/games/{game["id"]}/guess', json={'lat': 0, 'lng': 0}).get_json()
    assert result['timed_out'] is True
    assert result['points'] == 10000
    assert client.get(f'/api/games/{game["id"]}/streetview').status_code == 409


def test_other_players_cannot_see_game(app, client, coverage_calls):
    game = start_game(client)
    stranger = app.test_client()
    assert stranger.get(f'/api/games/{game["id"]}').status_code == 404
    assert stranger.post(f'/api/games/{game["id"]}/guess', json={'lat': 0, 'lng': 0}).status_code == 404


def test_update_profile_detects_school(client):
    response = client.put('/api/users/me', json={'username': 'clan_mountain', 'email': 'me@sfu.ca'})
    assert response.status_code == 200
    profile = response.get_json()
    assert profile['username'] == 'clan_mountain'
    assert profile['school']['acronym'] == 'SFU'
    assert profile['student_verified'] is True

    profile = client.put('/api/users/me', json={'email': 'me@example.com'}).get_json()
    assert profile['school'] is None
    assert profile['student_verified'] is False


def test_update_profile_conflicts(app, client):
    client.get('/api/users/me')
    db.session.add(User(username='taken', email='taken@ubc.ca'))
    db.session.commit()

    assert client.put('/api/users/me', json={'username': 'taken'}).status_code == 409
    assert client.put('/api/users/me', json={'email': 'taken@ubc.ca'}).status_code == 409
    assert client.put('/api/users/me', json={'username': 'x'}).status_code == 400
    assert client.put('/api/users/me', json={'email': 'nope'}).status_code == 400


def test_guess_losing_a_race_returns_committed_result(client, coverage_calls):
    game_id = start_game(client)['id']
    location = current_location(client, game_id)

    # Loaded while the round is still open
    game = db.session.get(Game, game_id)
    assert game.state == 'in_round'

    # A concurrent request resolves the round through its own connection
    with db.engine.begin() as connection:
        connection.execute(Score.__table__.insert().values(
            game_id=game_id, round_number=1,
            actual_lat=location['lat'], actual_lng=location['lng'],
            guess_lat=location['lat'], guess_lng=location['lng'],
            distance=0.0, points=10000, time_left=50, timed_out=False,
        ))
        connection.execute(Game.__table__.update().where(Game.__table__.c.id == game_id).values(
            state='round_resolved', total_score=10000,
        ))

    response = client.post(f'/api/games/{game_id}/guess', json={'lat': 49.275, 'lng': -122.927})

    assert response.status_code == 200
    result = response.get_json()
    assert result['already_resolved'] is True
    assert result['points'] == 10000
    assert result['total_score'] == 10000
    assert Score.query.filter_by(game_id=game_id).count() == 1
