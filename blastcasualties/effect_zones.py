"""
Conversion of weapon effect radii into effect zones for the casualty estimator.
"""

from blastcasualties.models import BlastEffects, EffectZone
from blastcasualties.thresholds import ZONE_PROFILES
from blastcasualties.utils import km_to_m


def zone_radius_m(blast_effects, source):
    """Radius in meters for a profile source path; the fireball is already in meters."""
    value = blast_effects.lookup(source)
    return float(value) if source == "fireball" else km_to_m(float(value))


def build_effect_zones(blast_effects, profiles=None):
    """
    Build the effect zones for a weapon, sorted innermost first.

    Args:
        blast_effects (BlastEffects or dict): Weapon effect radii. Overpressure,
            thermal and radiation radii are in km, the fireball radius in meters.
        profiles (list, optional): Zone profiles; defaults to ``ZONE_PROFILES``.

    Returns:
        list: EffectZone objects ordered by ascending radius.

    Raises:
        InvalidZoneError: If a radius is negative or a rate is out of range.
        KeyError: If the effect radii are missing a field a profile refers to.
    """
    if isinstance(blast_effects, dict):
        blast_effects = BlastEffects.from_dict(blast_effects)

    zones = [
        EffectZone(
            name=profile["name"],
            radius=zone_radius_m(blast_effects, profile["source"]),
            fatality_rate=profile["fatality_rate"],
            injuries=profile["injuries"],
            category=profile["category"],
            key=profile["key"],
        )
        for profile in (profiles if profiles is not None else ZONE_PROFILES)
    ]
    # Stable sort keeps table order for equal radii
    return sorted(zones, key=lambda zone: zone.radius)
