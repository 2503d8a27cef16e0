import os
import random
import logging

import requests

from campuses import RoundAttempt, get_campus, random_round_attempt

METADATA_URL = "https://maps.googleapis.com/maps/api/streetview/metadata"
IMAGE_URL = "https://maps.googleapis.com/maps/api/streetview"

DEFAULT_RADIUS = 100
DEFAULT_TIMEOUT = 5
DEFAULT_MAX_ATTEMPTS = 20


def get_api_key():
    return os.environ.get("GOOGLE_MAPS_API_KEY", "")


def check_coverage(lat, lng, radius=DEFAULT_RADIUS, api_key=None, timeout=DEFAULT_TIMEOUT):
    """Ask the Street View metadata service whether imagery exists near a point.

    Returns the (lat, lng) of the covered panorama, or None when there is no
    coverage or the service could not be reached.
    """
    params = {
        'location': f'{lat},{lng}',
        'radius': radius,
        'key': api_key if api_key is not None else get_api_key(),
    }
    try:
        response = requests.get(METADATA_URL, params=params, timeout=timeout)
        response.raise_for_status()
        data = response.json()
    except (requests.RequestException, ValueError) as e:
        logging.debug(f"Coverage check failed at {lat},{lng}: {e}")
        return None

    if not isinstance(data, dict) or data.get('status') != 'OK':
        status = data.get('status') if isinstance(data, dict) else data
        logging.debug(f"No coverage at {lat},{lng}: {status}")
        return None

    location = data.get('location') or {}
    try:
        return float(location['lat']), float(location['lng'])
    except (KeyError, TypeError, ValueError):
        # Covered, but the service did not say where the panorama sits
        return lat, lng


def generate_valid_location(campus, max_attempts=DEFAULT_MAX_ATTEMPTS, coverage_check=check_coverage,
                            rng=random, radius=DEFAULT_RADIUS):
    """Find a round location on a campus that has Street View imagery.

    Samples random points inside the campus bounds until ``coverage_check``
    confirms one or ``max_attempts`` is used up, then falls back to the
    campus centre without checking it.
    """
    if isinstance(campus, str):
        campus = get_campus(campus)

    for attempt_number in range(1, max_attempts + 1):
        attempt = random_round_attempt(campus, rng)
        try:
            covered = coverage_check(attempt.lat, attempt.lng, radius=radius)
        except Exception as e:
            logging.debug(f"Coverage check raised on attempt {attempt_number} for {campus.id}: {e}")
            covered = None

        if covered is not None:
            attempt.lat, attempt.lng = covered
            logging.info(f"Found Street View for {campus.id} after {attempt_number} attempt(s)")
            return attempt

    lat, lng = campus.center
    logging.warning(f"No Street View coverage found for {campus.id} after {max_attempts} attempts, using campus center")
    return RoundAttempt(lat, lng, heading=0.0, pitch=0.0, fallback=True)


def streetview_image_url(location, size="600x400", api_key=None):
    key = api_key if api_key is not None else get_api_key()
    return (
        f"{IMAGE_URL}?size={size}&location={location.lat},{location.lng}"
        f"&heading={location.heading:.1f}&pitch={location.pitch:.1f}&key={key}"
    )
