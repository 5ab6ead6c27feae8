"""
Blast Casualty Estimator Web Application

Flask API for estimating the casualties of a nuclear detonation at a chosen
location. A request names a weapon from the catalog (or a raw yield), a
target coordinate and optionally the city it lies in; the response carries
the per-zone casualty estimates ready for display, GeoJSON outlines of the
effect zones and the effect radii used.
"""

import logging
import threading

from flask import Flask, jsonify, request

from blastcasualties import config
from blastcasualties.cache import TTLCache
from blastcasualties.effect_zones import build_effect_zones
from blastcasualties.formatting import casualty_data_to_display
from blastcasualties.map_utils import zone_outlines
from blastcasualties.models import Coordinate
from blastcasualties.population_sources import get_default_provider
from blastcasualties.session import CasualtySession
from blastcasualties.weapons import (
    AIRBURST,
    HEIGHTS_OF_BURST,
    WEAPON_CATEGORIES,
    WEAPONS,
    calculate_blast_effects,
    get_weapon_by_id,
    get_weapons_by_category,
    weapon_to_dict,
)

# Configure logging for monitoring data source selection and request handling.
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(message)s')
logger = logging.getLogger(__name__)

app = Flask(__name__)

# Shared by every request so grids are cached across them
provider = get_default_provider()

# Casualty sessions by client-supplied session_id; idle sessions expire
sessions = TTLCache(config.SESSION_TTL_S)
_sessions_lock = threading.Lock()


def get_session(session_id):
    """Session for ``session_id``, created on first use; None gives a one-off session."""
    if not session_id:
        return CasualtySession(provider=provider)
    with _sessions_lock:
        session = sessions.get(session_id)
        if session is None:
            session = CasualtySession(provider=provider)
        sessions.set(session_id, session)
    return session


def _parse_bool(value):
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "1", "yes"):
        return True
    if isinstance(value, str) and value.strip().lower() in ("false", "0", "no"):
        return False
    raise ValueError(f"Invalid boolean value: {value!r}")


@app.route('/casualties', methods=['POST'])
def casualties():
    """
    Estimates casualties for a detonation at a target.

    Expected JSON Input:
        latitude (float): Target latitude in degrees (-90 to 90).
        longitude (float): Target longitude in degrees (-180 to 180).
        city (str, optional): City name used for the base density (defaults to "").
        weapon_id (str, optional): Catalog weapon; takes precedence over yield_kt.
        yield_kt (float, optional): Yield in kilotons when no weapon_id is given.
        burst (str, optional): 'airburst' or 'surface' (defaults to the weapon's
                               typical burst, or airburst for a raw yield).
        use_real_data (bool, optional): Look up a population grid (defaults to true).
        language (str, optional): Language of labels and descriptions.
        session_id (str, optional): Client session; a newer request in the same
                                    session supersedes an outstanding one.

    Returns:
        JSON: {"casualties": ..., "zones": GeoJSON FeatureCollection,
               "blast_effects": ..., "weapon": ...}

    Raises:
        HTTP 400: If parameters are missing or invalid.
        HTTP 404: If weapon_id is not in the catalog.
        HTTP 409: If a newer request in the same session superseded this one.
    """
    try:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise ValueError("Request body must be a JSON object")

        lat = float(data['latitude'])
        lng = float(data['longitude'])
        city = str(data.get('city') or "")
        use_real_data = _parse_bool(data.get('use_real_data', True))
        language = data.get('language')
        session_id = data.get('session_id')
        session_id = str(session_id) if session_id else None

        if not -90 <= lat <= 90 or not -180 <= lng <= 180:
            return jsonify({"error": "Latitude must be within ±90 and longitude within ±180 degrees."}), 400

        weapon = None
        weapon_id = data.get('weapon_id')
        if weapon_id:
            weapon = get_weapon_by_id(weapon_id)
            if weapon is None:
                return jsonify({"error": f"Unknown weapon '{weapon_id}'."}), 404
            burst = data.get('burst', weapon['burst'])
            if burst not in HEIGHTS_OF_BURST:
                raise ValueError(f"Unknown burst type '{burst}'")
            if burst == weapon['burst']:
                blast_effects = weapon['blast_effects']
            else:
                blast_effects = calculate_blast_effects(weapon['yield_kt'], burst)
        else:
            yield_kt = float(data['yield_kt'])
            burst = data.get('burst', AIRBURST)
            blast_effects = calculate_blast_effects(yield_kt, burst)

    except (KeyError, ValueError, TypeError) as e:
        logger.info(f"Rejected /casualties request: {e}")
        return jsonify({"error": "Invalid input. Provide numeric latitude and longitude and a weapon_id or a positive yield_kt."}), 400

    logger.info(f"Casualty request - Coordinates: {lat:.6f}°, {lng:.6f}°, city='{city}', burst={burst}")

    session = get_session(session_id)
    casualty_data = session.request(lat, lng, city, blast_effects, use_real_data=use_real_data, language=language)
    if casualty_data is None:
        logger.info(f"Request superseded in session '{session_id}'")
        return jsonify({"error": "Superseded by a newer request in this session.", "superseded": True}), 409

    center = Coordinate(lat, lng)
    zones = build_effect_zones(blast_effects)

    return jsonify({
        "casualties": casualty_data_to_display(casualty_data, language),
        "zones": zone_outlines(center, zones),
        "blast_effects": blast_effects.to_dict(),
        "weapon": weapon_to_dict(weapon) if weapon else None,
    })


@app.route('/sessions/<session_id>', methods=['GET'])
def session_status(session_id):
    """Whether a session is still computing, and its last published result."""
    with _sessions_lock:
        session = sessions.get(session_id)
    if session is None:
        return jsonify({"error": f"Unknown session '{session_id}'."}), 404

    latest = session.latest_result
    language = request.args.get('language')
    return jsonify({
        "computing": session.is_computing,
        "latest_result": casualty_data_to_display(latest, language) if latest is not None else None,
    })


@app.route('/weapons', methods=['GET'])
def list_weapons():
    """Weapon catalog, optionally filtered with ?category=historical|tactical|strategic|test."""
    category = request.args.get('category')
    if category is None:
        weapons = WEAPONS
    elif category in WEAPON_CATEGORIES:
        weapons = get_weapons_by_category(category)
    else:
        return jsonify({"error": f"Unknown category '{category}'."}), 400
    return jsonify({"weapons": [weapon_to_dict(weapon) for weapon in weapons]})


@app.route('/weapons/<weapon_id>', methods=['GET'])
def get_weapon(weapon_id):
    weapon = get_weapon_by_id(weapon_id)
    if weapon is None:
        return jsonify({"error": f"Unknown weapon '{weapon_id}'."}), 404
    return jsonify(weapon_to_dict(weapon))


if __name__ == '__main__':
    app.run(host='0.0.0.0', port=5000, debug=False)
