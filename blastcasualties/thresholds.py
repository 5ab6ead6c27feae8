"""
Fatality rates, injury distributions and medical-burden classification for blast effect zones.

The numeric tables are read from ``data/zone_profiles.json`` so they can be
tuned without touching the estimator. Each profile names the zone, its effect
family, the radius it is read from in the weapon effect contract, its
fatality rate and the injury distribution applied to its survivors.
"""
import json

from blastcasualties.config import DATA_DIR
from blastcasualties.models import InjuryDistribution, ZoneCategory
from blastcasualties.translation_utils import get_translation

ZONE_PROFILES_PATH = DATA_DIR / "zone_profiles.json"

def load_zone_profiles(path=ZONE_PROFILES_PATH):
    """
    Load the zone profile table.

    Args:
        path (Path): JSON file with ``zones`` and ``injury_distributions`` entries.

    Returns:
        list: One dict per zone with keys ``key``, ``name``, ``category``
              (ZoneCategory), ``source``, ``fatality_rate`` and ``injuries``
              (InjuryDistribution), in table order.
    """
    with open(path, 'r', encoding='utf-8') as f:
        table = json.load(f)

    distributions = {
        key: InjuryDistribution(**fractions)
        for key, fractions in table["injury_distributions"].items()
    }

    profiles = []
    for entry in table["zones"]:
        profiles.append({
            "key": entry["key"],
            "name": entry["name"],
            "category": ZoneCategory(entry["category"]),
            "source": entry["source"],
            "fatality_rate": float(entry["fatality_rate"]),
            "injuries": distributions[entry["injuries"]],
        })
    return profiles

ZONE_PROFILES = load_zone_profiles()


# ==========================================
# Medical burden classification
# ==========================================
# Injury severities counted towards each medical-burden bucket, by effect family.
# FIREBALL contributes to none of them.
MEDICAL_BURDEN_RULES = {
    ZoneCategory.BLAST: ("severe_trauma", ("severe",)),
    ZoneCategory.THERMAL: ("burns", ("severe", "moderate")),
    ZoneCategory.RADIATION: ("radiation_sickness", ("severe", "moderate")),
}

# Share of all injured survivors with more than one injury type
COMBINED_INJURY_FRACTION = 0.1

# ==========================================
# Helpers
# ==========================================
def get_zone_description(zone_key, language=None):
    default = get_translation("zones.default.description", "Blast effect zone", language)
    if not zone_key:
        return default
    return get_translation(f"zones.{zone_key}.description", default, language)
