"""
Blast Casualty Estimator - Weapon Catalog and Effect Radii

Yield-based scaling of the effect radii consumed by the casualty estimator,
plus a small catalog of historical and modern weapons loaded from
``data/weapons.json``.

Scaling follows the usual cube-root style laws for an optimized airburst:

    fireball      R = 145 · Y^0.4 m  (Y < 100 kt), 90 · Y^0.4 m otherwise
    overpressure  R = C · Y^0.33 km
    thermal       R = C · Y^0.41 km  (reduced by 30% for surface bursts)
    radiation     R = C · Y^0.19 km  (enhanced by 50% for surface bursts)
"""

import json
import logging
import math

from blastcasualties.config import DATA_DIR
from blastcasualties.models import BlastEffects

logger = logging.getLogger(__name__)

WEAPONS_PATH = DATA_DIR / "weapons.json"

AIRBURST = "airburst"
SURFACE = "surface"
HEIGHTS_OF_BURST = (AIRBURST, SURFACE)
WEAPON_CATEGORIES = ("historical", "tactical", "strategic", "test")

# Radius constants at 1 kt (km)
OVERPRESSURE_CONSTANTS = {"psi20": 0.41, "psi5": 0.98, "psi2": 1.91, "psi1": 3.12}
THERMAL_CONSTANTS = {"thirdDegree": 0.67, "secondDegree": 1.0, "firstDegree": 1.5}
RADIATION_CONSTANTS = {"rem500": 0.63, "rem100": 0.82}

SURFACE_THERMAL_FACTOR = 0.7
SURFACE_RADIATION_FACTOR = 1.5

def calculate_blast_effects(yield_kt, hob=AIRBURST):
    """
    Calculate effect radii for a weapon yield.

    Args:
        yield_kt (float): Yield in kilotons, must be positive.
        hob (str): Height of burst, 'airburst' or 'surface'.

    Returns:
        BlastEffects: Fireball radius in meters, other radii in km.

    Raises:
        ValueError: If the yield is not positive or the burst type is unknown.
    """
    if yield_kt is None or not math.isfinite(yield_kt) or yield_kt <= 0:
        raise ValueError(f"Yield must be a positive finite number, got {yield_kt}")
    if hob not in HEIGHTS_OF_BURST:
        raise ValueError(f"Unknown height of burst '{hob}', expected one of {HEIGHTS_OF_BURST}")

    thermal_factor = SURFACE_THERMAL_FACTOR if hob == SURFACE else 1.0
    radiation_factor = SURFACE_RADIATION_FACTOR if hob == SURFACE else 1.0

    # Slightly reduced scaling for very large yields due to atmospheric effects
    fireball_constant = 145 if yield_kt < 100 else 90
    fireball = fireball_constant * yield_kt ** 0.4

    blast_scaling = yield_kt ** 0.33
    thermal_scaling = yield_kt ** 0.41
    radiation_scaling = yield_kt ** 0.19

    return BlastEffects(
        fireball=fireball,
        overpressure={k: c * blast_scaling for k, c in OVERPRESSURE_CONSTANTS.items()},
        thermal={k: c * thermal_scaling * thermal_factor for k, c in THERMAL_CONSTANTS.items()},
        radiation={k: c * radiation_scaling * radiation_factor for k, c in RADIATION_CONSTANTS.items()},
    )

def load_weapons(path=WEAPONS_PATH):
    """
    Load the weapon catalog.

    Entries without tabulated ``blast_effects`` get radii computed from their
    yield and typical burst.
    """
    with open(path, 'r', encoding='utf-8') as f:
        entries = json.load(f)["weapons"]

    weapons = []
    for entry in entries:
        weapon = dict(entry)
        weapon.setdefault("burst", AIRBURST)
        if "blast_effects" in weapon:
            weapon["blast_effects"] = BlastEffects.from_dict(weapon["blast_effects"])
        else:
            weapon["blast_effects"] = calculate_blast_effects(weapon["yield_kt"], weapon["burst"])
        weapons.append(weapon)

    logger.info("Loaded %d weapons from %s", len(weapons), path)
    return weapons

WEAPONS = load_weapons()

def get_weapon_by_id(weapon_id):
    for weapon in WEAPONS:
        if weapon["id"] == weapon_id:
            return weapon
    return None

def get_weapons_by_category(category):
    return [weapon for weapon in WEAPONS if weapon["category"] == category]

def weapon_to_dict(weapon):
    result = dict(weapon)
    result["blast_effects"] = weapon["blast_effects"].to_dict()
    return result
