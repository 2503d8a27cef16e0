import random

from scoring import campus_size, s_rank_threshold

DIFFICULTIES = ('Easy', 'Medium', 'Hard')

# Street View pitch is kept near the horizon
MAX_PITCH = 10


class UnknownCampusError(KeyError):
    """Raised when a campus id is not in the campus table"""

    def __init__(self, campus_id):
        super().__init__(campus_id)
        self.campus_id = campus_id

    def __str__(self):
        return f"Unknown campus: {self.campus_id}"


class RoundAttempt:
    """A candidate panorama position for a round"""

    def __init__(self, lat, lng, heading=0.0, pitch=0.0, fallback=False):
        self.lat = lat
        self.lng = lng
        self.heading = heading
        self.pitch = pitch
        self.fallback = fallback

    def to_dict(self):
        return {
            'lat': self.lat,
            'lng': self.lng,
            'heading': self.heading,
            'pitch': self.pitch,
        }

    def __repr__(self):
        return f"RoundAttempt(lat={self.lat!r}, lng={self.lng!r}, fallback={self.fallback!r})"


class Campus:
    def __init__(self, id, name, short_name, color, north, south, east, west, difficulty):
        if north <= south:
            raise ValueError(f"{id}: north ({north}) must be greater than south ({south})")
        if east <= west:
            raise ValueError(f"{id}: east ({east}) must be greater than west ({west})")
        if difficulty not in DIFFICULTIES:
            raise ValueError(f"{id}: unknown difficulty {difficulty!r}")

        self.id = id
        self.name = name
        self.short_name = short_name
        self.color = color
        self.north = north
        self.south = south
        self.east = east
        self.west = west
        self.difficulty = difficulty

    @property
    def bounds(self):
        return {'north': self.north, 'south': self.south, 'east': self.east, 'west': self.west}

    @property
    def center(self):
        """Centroid of the bounding box, used as the last-resort round location"""
        return ((self.north + self.south) / 2, (self.east + self.west) / 2)

    @property
    def size(self):
        return campus_size(self.bounds)

    @property
    def s_rank_threshold(self):
        return s_rank_threshold(self.size)

    def contains(self, lat, lng):
        return self.south <= lat <= self.north and self.west <= lng <= self.east

    def to_dict(self):
        lat, lng = self.center
        return {
            'id': self.id,
            'name': self.name,
            'short_name': self.short_name,
            'color': self.color,
            'difficulty': self.difficulty,
            'bounds': self.bounds,
            'center': {'lat': lat, 'lng': lng},
            'size': round(self.size),
            's_rank_threshold': self.s_rank_threshold,
        }


default_campuses = [
    {'id': 'sfu', 'name': 'Simon Fraser University', 'short_name': 'SFU', 'color': '#CC0633',
     'north': 49.2820, 'south': 49.2740, 'east': -122.9080, 'west': -122.9280, 'difficulty': 'Medium'},
    {'id': 'ubc', 'name': 'University of British Columbia', 'short_name': 'UBC', 'color': '#002145',
     'north': 49.2700, 'south': 49.2550, 'east': -123.2400, 'west': -123.2600, 'difficulty': 'Hard'},
    {'id': 'uvic', 'name': 'University of Victoria', 'short_name': 'UVic', 'color': '#005493',
     'north': 48.4680, 'south': 48.4600, 'east': -123.3050, 'west': -123.3180, 'difficulty': 'Hard'},
    {'id': 'bcit', 'name': 'British Columbia Institute of Technology', 'short_name': 'BCIT', 'color': '#003C71',
     'north': 49.2530, 'south': 49.2480, 'east': -122.9980, 'west': -123.0050, 'difficulty': 'Easy'},
    {'id': 'langara', 'name': 'Langara College', 'short_name': 'Langara', 'color': '#8B0000',
     'north': 49.2280, 'south': 49.2240, 'east': -123.1060, 'west': -123.1120, 'difficulty': 'Easy'},
    {'id': 'douglas', 'name': 'Douglas College', 'short_name': 'Douglas', 'color': '#5E2750',
     'north': 49.2310, 'south': 49.2270, 'east': -122.8860, 'west': -122.8920, 'difficulty': 'Easy'},
    {'id': 'vcc', 'name': 'Vancouver Community College', 'short_name': 'VCC', 'color': '#E35205',
     'north': 49.2650, 'south': 49.2600, 'east': -123.0680, 'west': -123.0750, 'difficulty': 'Hard'},
    {'id': 'queens', 'name': "Queen's University", 'short_name': "Queen's", 'color': '#002452',
     'north': 44.2300, 'south': 44.2200, 'east': -76.4900, 'west': -76.5000, 'difficulty': 'Medium'},
    {'id': 'uofa', 'name': 'University of Alberta', 'short_name': 'UofA', 'color': '#007C41',
     'north': 53.5280, 'south': 53.5190, 'east': -113.5200, 'west': -113.5320, 'difficulty': 'Medium'},
    {'id': 'ucalgary', 'name': 'University of Calgary', 'short_name': 'UofC', 'color': '#C8102E',
     'north': 51.0820, 'south': 51.0730, 'east': -114.1280, 'west': -114.1390, 'difficulty': 'Medium'},
    {'id': 'uoft', 'name': 'University of Toronto', 'short_name': 'UofT', 'color': '#00204E',
     'north': 43.6680, 'south': 43.6580, 'east': -79.3900, 'west': -79.4020, 'difficulty': 'Hard'},
    {'id': 'waterloo', 'name': 'University of Waterloo', 'short_name': 'UofW', 'color': '#FFD54F',
     'north': 43.4770, 'south': 43.4680, 'east': -80.5380, 'west': -80.5520, 'difficulty': 'Hard'},
    {'id': 'mcgill', 'name': 'McGill University', 'short_name': 'McGill', 'color': '#ED1B2F',
     'north': 45.5080, 'south': 45.5020, 'east': -73.5720, 'west': -73.5820, 'difficulty': 'Easy'},
    {'id': 'mcmaster', 'name': 'McMaster University', 'short_name': 'Mac', 'color': '#7A003C',
     'north': 43.2650, 'south': 43.2570, 'east': -79.9140, 'west': -79.9240, 'difficulty': 'Easy'},
    {'id': 'udem', 'name': 'Université de Montréal', 'short_name': 'UdeM', 'color': '#0275BB',
     'north': 45.5090, 'south': 45.5010, 'east': -73.6080, 'west': -73.6180, 'difficulty': 'Medium'},
    {'id': 'guelph', 'name': 'University of Guelph', 'short_name': 'Guelph', 'color': '#C6093B',
     'north': 43.5370, 'south': 43.5280, 'east': -80.2200, 'west': -80.2320, 'difficulty': 'Easy'},
]

CAMPUSES = {campus_data['id']: Campus(**campus_data) for campus_data in default_campuses}


def get_campus(campus_id):
    """Look up a campus by id; unknown ids raise UnknownCampusError, there is no default campus"""
    if not isinstance(campus_id, str):
        raise UnknownCampusError(campus_id)
    campus = CAMPUSES.get(campus_id.strip().lower())
    if campus is None:
        raise UnknownCampusError(campus_id)
    return campus


def list_campuses():
    """All campuses, highest S rank requirement first"""
    return sorted(CAMPUSES.values(), key=lambda campus: campus.s_rank_threshold, reverse=True)


def random_round_attempt(campus, rng=random):
    """Uniformly sample a panorama position inside the campus bounding box"""
    lat = rng.uniform(campus.south, campus.north)
    lng = rng.uniform(campus.west, campus.east)
    heading = rng.random() * 360
    pitch = rng.random() * MAX_PITCH
    return RoundAttempt(lat, lng, heading, pitch)
