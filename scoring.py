from math import radians, cos, sin, atan2, sqrt, floor

EARTH_RADIUS_M = 6371e3

MAX_ROUND_SCORE = 10000
PERFECT_DISTANCE_M = 25

# Recorded distance for a round that timed out without a guess
NO_GUESS_DISTANCE = 999999

# Campus diagonal (meters) -> S rank threshold interpolation endpoints
MIN_CAMPUS_SIZE = 600
MAX_CAMPUS_SIZE = 2300
MIN_S_THRESHOLD = 25000
MAX_S_THRESHOLD = 43000

GRADE_RATIOS = [
    ('A', 0.86),
    ('B', 0.70),
    ('C', 0.51),
    ('D', 0.35),
]

GRADE_MESSAGES = {
    'S': 'Outstanding!',
    'A': 'Excellent!',
    'B': 'Great Job!',
    'C': 'Good Effort!',
    'D': 'Keep Practicing!',
    'F': 'Try Again!',
}


def round_half_up(value):
    """Round halves up, unlike the built-in round()"""
    return int(floor(value + 0.5))


def haversine_distance(lat1, lng1, lat2, lng2):
    """Great-circle distance in meters between two points given in degrees"""
    phi1 = radians(lat1)
    phi2 = radians(lat2)
    dphi = radians(lat2 - lat1)
    dlambda = radians(lng2 - lng1)

    a = sin(dphi / 2) ** 2 + cos(phi1) * cos(phi2) * sin(dlambda / 2) ** 2
    c = 2 * atan2(sqrt(a), sqrt(1 - a))
    return EARTH_RADIUS_M * c


def campus_size(bounds):
    """Diagonal of a bounding box (southwest to northeast corner) in meters.

    ``bounds`` is a mapping with ``north``, ``south``, ``east`` and ``west`` keys.
    """
    return haversine_distance(bounds['south'], bounds['west'], bounds['north'], bounds['east'])


def calculate_score(distance, campus_max_distance):
    """Points for a single round, between 0 and 10000.

    Guesses within 25m earn the full score, guesses at or beyond the campus
    diagonal earn nothing, and in between the score falls off quadratically.
    """
    if distance <= PERFECT_DISTANCE_M:
        return MAX_ROUND_SCORE
    if distance >= campus_max_distance:
        return 0

    span = campus_max_distance - PERFECT_DISTANCE_M
    if span <= 0:
        return 0
    t = (distance - PERFECT_DISTANCE_M) / span
    t = min(1.0, max(0.0, t))

    score = round_half_up(MAX_ROUND_SCORE * (1 - t) ** 2)
    return max(0, min(MAX_ROUND_SCORE, score))


def s_rank_threshold(campus_max_distance):
    """Total score needed for an S grade on a campus of the given diagonal"""
    normalized = (campus_max_distance - MIN_CAMPUS_SIZE) / (MAX_CAMPUS_SIZE - MIN_CAMPUS_SIZE)
    return round_half_up(MIN_S_THRESHOLD + normalized * (MAX_S_THRESHOLD - MIN_S_THRESHOLD))


def grade_thresholds(s_threshold):
    """Cutoffs for every grade above F, highest first"""
    thresholds = [('S', s_threshold)]
    for grade, ratio in GRADE_RATIOS:
        thresholds.append((grade, round_half_up(s_threshold * ratio)))
    return thresholds


def grade_for_score(total_score, s_threshold):
    for grade, cutoff in grade_thresholds(s_threshold):
        if total_score >= cutoff:
            return grade
    return 'F'


def grade_message(grade):
    return GRADE_MESSAGES.get(grade, GRADE_MESSAGES['F'])
