import uuid
from flask import request, session, jsonify
from sqlalchemy import or_, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from werkzeug.exceptions import HTTPException
from app import app, db
from models import User, School, Game, COMPLETED, IN_ROUND, ROUND_RESOLVED, GameStateError
from campuses import UnknownCampusError, get_campus, list_campuses
from streetview import check_coverage, generate_valid_location, streetview_image_url

import logging


def get_current_user():
    user = db.session.get(User, session['user_id']) if 'user_id' in session else None
    if user is None:
        username = f"player_{uuid.uuid4().hex[:8]}"
        user = User(username=username)
        db.session.add(user)
        db.session.commit()
        session['user_id'] = user.id
        session['username'] = user.username
        logging.info(f"Created new user: {username}")
    return user


def get_player_game(game_id, user):
    """A game owned by the user, or 404"""
    return Game.query.filter_by(id=game_id, player_id=user.id).first_or_404()


def error(message, status):
    return jsonify({'success': False, 'message': message}), status


def parse_coordinates(data, lat_key='lat', lng_key='lng'):
    lat = float(data[lat_key])
    lng = float(data[lng_key])
    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        raise ValueError(f"Coordinates out of range: {lat},{lng}")
    return lat, lng


def coverage_check(lat, lng, radius):
    return check_coverage(
        lat, lng,
        radius=radius,
        api_key=app.config['GOOGLE_MAPS_API_KEY'],
        timeout=app.config['COVERAGE_TIMEOUT'],
    )


def find_round_location(campus):
    return generate_valid_location(
        campus,
        max_attempts=app.config['MAX_LOCATION_ATTEMPTS'],
        coverage_check=coverage_check,
        radius=app.config['COVERAGE_RADIUS'],
    )


def apply_timeout(game):
    """Resolve the current round if its clock has run out"""
    if game.expire_if_due() is not None:
        db.session.commit()
        logging.info(f"Game {game.id} round {game.current_round} timed out")


def guess_result(game, score, already_resolved=False):
    result = score.to_dict()
    result.update({
        'success': True,
        'already_resolved': already_resolved,
        'points': score.points,
        'total_score': game.total_score,
        'current_round': game.current_round,
        'total_rounds': game.total_rounds,
        'is_final_round': game.is_final_round,
    })
    return result


@app.errorhandler(HTTPException)
def handle_http_error(e):
    return error(e.description, e.code)


@app.errorhandler(SQLAlchemyError)
def handle_database_error(e):
    db.session.rollback()
    logging.error(f"Database error: {e}")
    return error('Internal server error', 500)


@app.route('/api/health')
def health():
    try:
        db.session.execute(text('SELECT 1'))
        database = 'ok'
    except SQLAlchemyError as e:
        logging.error(f"Health check database error: {e}")
        database = 'unavailable'
    return jsonify({'status': 'Server is running', 'database': database})


@app.route('/api/maps-key')
def maps_key():
    return jsonify({'key': app.config['GOOGLE_MAPS_API_KEY']})


@app.route('/api/campuses')
def campuses():
    return jsonify([campus.to_dict() for campus in list_campuses()])


@app.route('/api/campuses/<campus_id>')
def campus_detail(campus_id):
    try:
        campus = get_campus(campus_id)
    except UnknownCampusError as e:
        return error(str(e), 404)
    return jsonify(campus.to_dict())


@app.route('/api/games', methods=['POST'])
def start_game():
    user = get_current_user()
    data = request.get_json(silent=True) or {}

    try:
        campus = get_campus(data.get('campus'))
    except UnknownCampusError as e:
        return error(str(e), 400)

    location = find_round_location(campus)
    game = Game(player=user, campus=campus.id)
    game.start(location)
    db.session.add(game)
    db.session.commit()
    logging.info(f"User {user.username} started game {game.id} on {campus.id}")

    result = game.to_dict()
    result['success'] = True
    return jsonify(result), 201


@app.route('/api/games/<int:game_id>')
def game_state(game_id):
    user = get_current_user()
    game = get_player_game(game_id, user)
    apply_timeout(game)
    return jsonify(game.to_dict())


@app.route('/api/games/<int:game_id>/streetview')
def game_streetview(game_id):
    user = get_current_user()
    game = get_player_game(game_id, user)
    apply_timeout(game)
    if game.state != IN_ROUND:
        return error('No round in progress', 409)

    location = game.location
    return jsonify({
        'location': location.to_dict(),
        'streetview_url': streetview_image_url(location, api_key=app.config['GOOGLE_MAPS_API_KEY']),
        'time_remaining': round(game.time_remaining(), 1),
    })


@app.route('/api/games/<int:game_id>/pending-guess', methods=['PUT'])
def pending_guess(game_id):
    user = get_current_user()
    game = get_player_game(game_id, user)
    data = request.get_json(silent=True) or {}
    try:
        lat, lng = parse_coordinates(data)
    except (KeyError, TypeError, ValueError):
        return error('A valid lat and lng are required', 400)

    accepted = game.set_pending_guess(lat, lng)
    if accepted:
        db.session.commit()
    else:
        apply_timeout(game)
    return jsonify({'success': True, 'accepted': accepted})


@app.route('/api/games/<int:game_id>/guess', methods=['POST'])
def submit_guess(game_id):
    user = get_current_user()
    game = get_player_game(game_id, user)

    if game.state in (ROUND_RESOLVED, COMPLETED):
        return jsonify(guess_result(game, game.current_score(), already_resolved=True))

    data = request.get_json(silent=True) or {}
    try:
        lat, lng = parse_coordinates(data)
    except (KeyError, TypeError, ValueError):
        return error('A valid lat and lng are required', 400)

    try:
        score = game.submit_guess(lat, lng)
        db.session.commit()
    except GameStateError as e:
        return error(str(e), 409)
    except IntegrityError:
        # Another request resolved this round first; its result stands
        db.session.rollback()
        game = get_player_game(game_id, user)
        logging.info(f"Game {game.id} round {game.current_round} was already resolved")
        return jsonify(guess_result(game, game.current_score(), already_resolved=True))
    logging.info(f"Game {game.id} round {score.round_number}: {score.distance:.0f}m, {score.points} points")
    return jsonify(guess_result(game, score))


@app.route('/api/games/<int:game_id>/next-round', methods=['POST'])
def next_round(game_id):
    user = get_current_user()
    game = get_player_game(game_id, user)
    apply_timeout(game)

    try:
        if game.state == ROUND_RESOLVED and not game.is_final_round:
            game.advance(find_round_location(game.campus_info))
        else:
            game.advance()
    except GameStateError as e:
        return error(str(e), 409)
    db.session.commit()

    if game.state == COMPLETED:
        logging.info(f"Game {game.id} completed with {game.total_score} points, grade {game.grade}")
        result = game.summary()
    else:
        result = game.to_dict()
    result['success'] = True
    return jsonify(result)


@app.route('/api/games/<int:game_id>/results')
def game_results(game_id):
    user = get_current_user()
    game = get_player_game(game_id, user)
    if game.state != COMPLETED:
        return error('Game is not complete', 409)
    return jsonify(game.summary())


@app.route('/api/games/recent')
def recent_games():
    get_current_user()
    limit = request.args.get('limit', 5, type=int)
    games = (Game.query.filter_by(state=COMPLETED)
             .order_by(Game.completed_at.desc())
             .limit(max(1, min(limit, 50)))
             .all())
    return jsonify([game.to_history_dict() for game in games])


@app.route('/api/users/me')
def profile():
    user = get_current_user()
    result = user.to_dict()
    result['rank'] = user.get_rank()
    result['stats'] = user.get_stats()
    return jsonify(result)


@app.route('/api/users/me', methods=['PUT'])
def update_profile():
    user = get_current_user()
    data = request.get_json(silent=True) or {}

    username = data.get('username')
    if username is not None:
        username = str(username).strip()
        if not 3 <= len(username) <= 64:
            return error('Username must be between 3 and 64 characters', 400)
        if User.query.filter(User.username == username, User.id != user.id).first():
            return error('Username is already taken', 409)
        user.username = username
        session['username'] = username

    email = data.get('email')
    if email is not None:
        email = str(email).strip().lower()
        if '@' not in email:
            return error('A valid email is required', 400)
        if User.query.filter(User.email == email, User.id != user.id).first():
            return error('Email is already in use', 409)
        school = School.for_email(email)
        user.email = email
        user.school = school
        user.student_verified = school is not None

    db.session.commit()
    return jsonify(user.to_dict())


@app.route('/api/users/me/games')
def my_games():
    user = get_current_user()
    limit = request.args.get('limit', 10, type=int)
    games = (Game.query.filter_by(player_id=user.id, state=COMPLETED)
             .order_by(Game.completed_at.desc())
             .limit(max(1, min(limit, 50)))
             .all())
    return jsonify([game.summary() for game in games])


@app.route('/api/leaderboard')
def leaderboard():
    get_current_user()
    top_users = (User.query.filter(or_(User.level > 1, User.xp > 0))
                 .order_by(User.level.desc(), User.xp.desc())
                 .limit(10)
                 .all())
    return jsonify([user.to_dict() for user in top_users])
