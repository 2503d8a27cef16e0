import re
from datetime import datetime
from sqlalchemy import and_, or_
from app import app, db
from campuses import RoundAttempt, get_campus
from scoring import (
    MAX_ROUND_SCORE,
    NO_GUESS_DISTANCE,
    calculate_score,
    grade_for_score,
    grade_message,
    haversine_distance,
    round_half_up,
)

XP_PER_LEVEL = 1000
XP_SHARE = 0.1  # share of the average round score credited as xp

# Game states
NOT_STARTED = 'not_started'
IN_ROUND = 'in_round'
ROUND_RESOLVED = 'round_resolved'
COMPLETED = 'completed'

# Registrable part of an email domain, e.g. "cs.sfu.ca" -> "sfu.ca"
EMAIL_DOMAIN_RE = re.compile(r'@(?:[^.@]+\.)*([^.@]+\.[^.@]+)$')


class GameStateError(ValueError):
    """Raised for a transition the game's current state does not allow"""


def _utcnow():
    return datetime.utcnow()


class School(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    acronym = db.Column(db.String(20), nullable=False)
    badge = db.Column(db.String(50))
    domain = db.Column(db.String(100), unique=True, nullable=False)

    # Relationships
    users = db.relationship('User', backref='school', lazy=True)

    @classmethod
    def for_email(cls, email):
        """School whose domain matches the email address, if any"""
        match = EMAIL_DOMAIN_RE.search(email or '')
        if not match:
            return None
        return cls.query.filter_by(domain=match.group(1).lower()).first()

    def to_dict(self):
        return {'name': self.name, 'acronym': self.acronym, 'badge': self.badge}


class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False)
    email = db.Column(db.String(120), unique=True)
    xp = db.Column(db.Integer, default=0, nullable=False)
    level = db.Column(db.Integer, default=1, nullable=False)
    student_verified = db.Column(db.Boolean, default=False, nullable=False)
    school_id = db.Column(db.Integer, db.ForeignKey('school.id'))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relationships
    games = db.relationship('Game', backref='player', lazy=True)

    def add_xp(self, amount):
        """Credit xp, levelling up every 1000 and carrying the remainder"""
        levels, self.xp = divmod((self.xp or 0) + amount, XP_PER_LEVEL)
        self.level = (self.level or 1) + levels
        return levels

    def get_rank(self):
        """Get user's rank among all users"""
        users_above = User.query.filter(or_(
            User.level > self.level,
            and_(User.level == self.level, User.xp > self.xp),
        )).count()
        return users_above + 1

    def get_stats(self):
        total_games = len(self.games)
        completed_games = sum(1 for game in self.games if game.state == COMPLETED)
        lifetime_guesses = sum(len(game.scores) for game in self.games)
        total_points = sum(score.points for game in self.games for score in game.scores)
        average_score = round_half_up(total_points / lifetime_guesses) if lifetime_guesses else 0
        return {
            'average_score': average_score,
            'lifetime_guesses': lifetime_guesses,
            'completed_games': completed_games,
            'total_games': total_games,
            'total_points': total_points,
        }

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'email': self.email,
            'xp': self.xp,
            'level': self.level,
            'student_verified': self.student_verified,
            'school': self.school.to_dict() if self.school else None,
        }


class Game(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    player_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    campus = db.Column(db.String(32), nullable=False)
    state = db.Column(db.String(20), nullable=False)
    current_round = db.Column(db.Integer, nullable=False)
    total_rounds = db.Column(db.Integer, nullable=False)
    time_limit = db.Column(db.Integer, nullable=False)  # seconds per round
    total_score = db.Column(db.Integer, nullable=False)

    # Panorama for the current round, never sent with the game state
    location_lat = db.Column(db.Float)
    location_lng = db.Column(db.Float)
    location_heading = db.Column(db.Float)
    location_pitch = db.Column(db.Float)
    location_fallback = db.Column(db.Boolean, default=False)
    round_started_at = db.Column(db.DateTime)

    # Last guess placed on the map, submitted automatically on timeout
    pending_guess_lat = db.Column(db.Float)
    pending_guess_lng = db.Column(db.Float)

    grade = db.Column(db.String(2))
    xp_earned = db.Column(db.Integer, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    completed_at = db.Column(db.DateTime)

    # Relationships
    scores = db.relationship('Score', backref='game', lazy=True, order_by='Score.round_number')

    def __init__(self, **kwargs):
        # Column defaults only apply on insert; the state machine runs before that
        kwargs.setdefault('state', NOT_STARTED)
        kwargs.setdefault('current_round', 0)
        kwargs.setdefault('total_score', 0)
        kwargs.setdefault('total_rounds', app.config['ROUNDS_PER_GAME'])
        kwargs.setdefault('time_limit', app.config['ROUND_TIME_LIMIT'])
        super().__init__(**kwargs)

    @property
    def campus_info(self):
        return get_campus(self.campus)

    @property
    def location(self):
        if self.location_lat is None:
            return None
        return RoundAttempt(
            self.location_lat, self.location_lng,
            self.location_heading or 0.0, self.location_pitch or 0.0,
            fallback=bool(self.location_fallback),
        )

    @property
    def is_final_round(self):
        return self.current_round >= self.total_rounds

    def start(self, location, now=None):
        """Begin round 1 at the given location"""
        if self.state != NOT_STARTED:
            raise GameStateError(f"Game {self.id} has already started")
        self.current_round = 1
        self.total_score = 0
        self._begin_round(location, now or _utcnow())

    def _begin_round(self, location, now):
        self.location_lat = location.lat
        self.location_lng = location.lng
        self.location_heading = location.heading
        self.location_pitch = location.pitch
        self.location_fallback = bool(location.fallback)
        self.pending_guess_lat = None
        self.pending_guess_lng = None
        self.round_started_at = now
        self.state = IN_ROUND

    def time_remaining(self, now=None):
        """Seconds left in the current round, from the stored round start"""
        if self.state != IN_ROUND or self.round_started_at is None:
            return 0
        elapsed = ((now or _utcnow()) - self.round_started_at).total_seconds()
        return max(0.0, self.time_limit - elapsed)

    def is_expired(self, now=None):
        return self.state == IN_ROUND and self.time_remaining(now) <= 0

    def set_pending_guess(self, lat, lng, now=None):
        """Remember the guess currently on the map; ignored once the round is over"""
        if self.state != IN_ROUND or self.is_expired(now):
            return False
        self.pending_guess_lat = lat
        self.pending_guess_lng = lng
        return True

    def submit_guess(self, lat, lng, now=None):
        """Resolve the current round with a guess.

        Only the first resolution of a round counts: once the round is
        resolved this returns the committed result unchanged. A guess that
        arrives after the clock ran out resolves the round by timeout.
        """
        now = now or _utcnow()
        if self.state in (ROUND_RESOLVED, COMPLETED):
            return self.current_score()
        if self.state != IN_ROUND:
            raise GameStateError(f"Game {self.id} has not started")
        if self.is_expired(now):
            return self.expire_if_due(now)
        return self._resolve(lat, lng, now, timed_out=False)

    def expire_if_due(self, now=None):
        """Resolve the round if its time is up, using the pending guess if there is one"""
        now = now or _utcnow()
        if not self.is_expired(now):
            return None
        return self._resolve(self.pending_guess_lat, self.pending_guess_lng, now, timed_out=True)

    def _resolve(self, guess_lat, guess_lng, now, timed_out):
        if guess_lat is None or guess_lng is None:
            guess_lat = guess_lng = None
            distance = NO_GUESS_DISTANCE
            points = 0
        else:
            distance = haversine_distance(self.location_lat, self.location_lng, guess_lat, guess_lng)
            points = calculate_score(distance, self.campus_info.size)

        score = Score(
            game=self,
            round_number=self.current_round,
            actual_lat=self.location_lat,
            actual_lng=self.location_lng,
            guess_lat=guess_lat,
            guess_lng=guess_lng,
            distance=distance,
            points=points,
            time_left=int(self.time_remaining(now)),
            timed_out=timed_out,
        )
        db.session.add(score)

        self.total_score = (self.total_score or 0) + points
        self.pending_guess_lat = None
        self.pending_guess_lng = None
        self.state = ROUND_RESOLVED
        return score

    def current_score(self):
        for score in self.scores:
            if score.round_number == self.current_round:
                return score
        return None

    def advance(self, location=None, now=None):
        """Move on from a resolved round: start the next one, or finish the game"""
        if self.state != ROUND_RESOLVED:
            raise GameStateError(f"Round {self.current_round} of game {self.id} is not resolved")
        if self.is_final_round:
            self.complete(now)
            return
        if location is None:
            raise GameStateError("A location is required to start the next round")
        self.current_round += 1
        self._begin_round(location, now or _utcnow())

    def complete(self, now=None):
        """Grade the game and credit the player's xp"""
        if self.state != ROUND_RESOLVED or not self.is_final_round:
            raise GameStateError(f"Game {self.id} cannot be completed yet")
        self.grade = grade_for_score(self.total_score, self.campus_info.s_rank_threshold)
        self.xp_earned = round_half_up(self.total_score / self.total_rounds * XP_SHARE)
        self.completed_at = now or _utcnow()
        self.state = COMPLETED
        if self.player is not None:
            self.player.add_xp(self.xp_earned)

    def summary(self):
        scores = list(self.scores)
        total_distance = sum(score.distance for score in scores)
        return {
            'game_id': self.id,
            'campus': self.campus,
            'total_points': self.total_score,
            'total_distance': total_distance,
            'average_distance': total_distance / len(scores) if scores else 0,
            'rounds_played': len(scores),
            'max_possible_score': len(scores) * MAX_ROUND_SCORE,
            's_rank_threshold': self.campus_info.s_rank_threshold,
            'grade': self.grade,
            'message': grade_message(self.grade) if self.grade else None,
            'xp_earned': self.xp_earned,
            'scores': [score.to_dict() for score in scores],
        }

    def to_dict(self, now=None):
        return {
            'id': self.id,
            'campus': self.campus,
            'state': self.state,
            'current_round': self.current_round,
            'total_rounds': self.total_rounds,
            'total_score': self.total_score,
            'time_limit': self.time_limit,
            'time_remaining': round(self.time_remaining(now), 1),
            'grade': self.grade,
        }

    def to_history_dict(self):
        """Completed game as shown in game history lists"""
        scores = list(self.scores)
        return {
            'id': self.id,
            'username': self.player.username,
            'level': self.player.level,
            'student_verified': self.player.student_verified,
            'school': self.player.school.to_dict() if self.player.school else None,
            'campus': self.campus,
            'total_points': self.total_score,
            'average_score': round_half_up(self.total_score / len(scores)) if scores else 0,
            'average_distance': round_half_up(sum(s.distance for s in scores) / len(scores)) if scores else 0,
            'grade': self.grade,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
        }


class Score(db.Model):
    __table_args__ = (db.UniqueConstraint('game_id', 'round_number'),)

    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id'), nullable=False)
    round_number = db.Column(db.Integer, nullable=False)
    actual_lat = db.Column(db.Float, nullable=False)
    actual_lng = db.Column(db.Float, nullable=False)
    guess_lat = db.Column(db.Float)  # null when the round timed out without a guess
    guess_lng = db.Column(db.Float)
    distance = db.Column(db.Float, nullable=False)
    points = db.Column(db.Integer, nullable=False)
    time_left = db.Column(db.Integer, default=0)
    timed_out = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'round': self.round_number,
            'score': self.points,
            'distance': self.distance,
            'time_left': self.time_left,
            'timed_out': self.timed_out,
            'actual_location': {'lat': self.actual_lat, 'lng': self.actual_lng},
            'guess_location': (
                {'lat': self.guess_lat, 'lng': self.guess_lng} if self.guess_lat is not None else None
            ),
        }
