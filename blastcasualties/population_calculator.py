"""
Blast Casualty Estimator - Zone Partitioner and Casualty Estimator

Splits the area around a blast into concentric rings, one per effect zone,
and runs a survivor cascade over them from the innermost ring outwards: each
ring's fatalities are taken from the population that survived the zones
already processed, and its injuries from the ring's own survivors.

Two strategies supply the ring populations:

- Ring density: ring area times the scalar density times the urban factor.
- Grid integration: population grid cells whose center lies within the outer
  radius, minus those within the inner radius.

Both strategies skip zones with a zero radius or a radius not larger than the
previous processed zone, and share the same cascade and aggregation.
"""

import logging

from blastcasualties.effect_zones import build_effect_zones
from blastcasualties.models import (
    CasualtyData,
    CasualtyEstimate,
    CasualtyTotals,
    Coordinate,
    GridDensity,
    InjuryCounts,
    MedicalBurden,
    ScalarDensity,
)
from blastcasualties.thresholds import COMBINED_INJURY_FRACTION, MEDICAL_BURDEN_RULES, get_zone_description
from blastcasualties.utils import circle_area, haversine_distance_array, round_count

logger = logging.getLogger(__name__)


def cell_distances(grid, center):
    """Distance in meters from ``center`` to the center of every grid cell."""
    if not isinstance(center, Coordinate):
        center = Coordinate(*center)
    lats, lngs = grid.cell_centers()
    return haversine_distance_array(center.lat, center.lng, lats, lngs)


def calculate_population_in_circle(grid, center, radius_m, distances=None):
    """
    Population of the grid cells whose centers lie within a circle.

    Membership is inclusive (``distance <= radius_m``).

    Args:
        grid (PopulationGrid): Population counts.
        center (Coordinate or tuple): Circle center.
        radius_m (float): Circle radius in meters; zero or less gives 0.
        distances (numpy.ndarray, optional): Precomputed ``cell_distances``
            for ``center``, reused across radii.

    Returns:
        int: Rounded population.
    """
    if not radius_m or radius_m <= 0:
        return 0
    if distances is None:
        distances = cell_distances(grid, center)
    return round_count(float(grid.data[distances <= radius_m].sum()))


def _ring_density_population(source):
    people_per_km2 = source.density * source.urban_factor

    def ring_population(radius, inner_radius):
        return round_count((circle_area(radius) - circle_area(inner_radius)) * people_per_km2)

    return ring_population


def _grid_population(source):
    # Inner and outer discs compare against the same distance array
    distances = cell_distances(source.grid, source.center)

    def ring_population(radius, inner_radius):
        outer = calculate_population_in_circle(source.grid, source.center, radius, distances)
        inner = calculate_population_in_circle(source.grid, source.center, inner_radius, distances)
        return outer - inner

    return ring_population


def _survivor_cascade(zones, ring_population, language=None):
    estimates = []
    previous_radius = 0.0
    cumulative_fatalities = 0

    for zone in sorted(zones, key=lambda z: z.radius):
        # Degenerate ring: no estimate and no state change
        if not zone.radius or zone.radius <= previous_radius:
            logger.debug(f"Skipping zone '{zone.name}' with radius {zone.radius} m")
            continue

        population = ring_population(zone.radius, previous_radius)
        surviving = max(0, population - cumulative_fatalities)
        fatalities = round_count(surviving * zone.fatality_rate)
        survivors = surviving - fatalities

        injuries = InjuryCounts(
            severe=round_count(survivors * zone.injuries.severe),
            moderate=round_count(survivors * zone.injuries.moderate),
            light=round_count(survivors * zone.injuries.light),
        )

        estimates.append(CasualtyEstimate(
            zone=zone.name,
            radius=zone.radius,
            area=circle_area(zone.radius) - circle_area(previous_radius),
            population_affected=population,
            fatalities=fatalities,
            injuries=injuries,
            description=get_zone_description(zone.key, language),
            category=zone.category,
        ))

        cumulative_fatalities += fatalities
        previous_radius = zone.radius

    return estimates


def summarize_casualties(estimates):
    """
    Aggregate totals and the medical burden over a list of estimates.

    Returns:
        tuple: ``(CasualtyTotals, MedicalBurden)``
    """
    population = sum(estimate.population_affected for estimate in estimates)
    fatalities = sum(estimate.fatalities for estimate in estimates)
    injuries = sum(estimate.injuries.total for estimate in estimates)

    burden = {"severe_trauma": 0, "burns": 0, "radiation_sickness": 0}
    for estimate in estimates:
        rule = MEDICAL_BURDEN_RULES.get(estimate.category)
        if rule is None:
            continue
        bucket, severities = rule
        burden[bucket] += sum(getattr(estimate.injuries, severity) for severity in severities)

    totals = CasualtyTotals(population_affected=population, fatalities=fatalities, injuries=injuries)
    medical_burden = MedicalBurden(
        combined_injuries=round_count(injuries * COMBINED_INJURY_FRACTION),
        **burden,
    )
    return totals, medical_burden


def estimate_casualties(zones, pop_model, center=None, language=None):
    """
    Estimate casualties for a set of effect zones around a blast center.

    The grid-integration strategy is used when the model carries a population
    grid and a center is given; otherwise the ring-density strategy.

    Args:
        zones (list): EffectZone objects, in any order.
        pop_model (PopulationDensityModel): Density for the target.
        center (Coordinate or tuple, optional): Blast center.
        language (str, optional): Language of the zone descriptions.

    Returns:
        CasualtyData: Per-ring estimates ordered by radius, totals and
                      medical burden.
    """
    source = pop_model.density_source(center)

    if isinstance(source, GridDensity):
        ring_population = _grid_population(source)
        using_real_data = True
        data_source = source.source
    elif isinstance(source, ScalarDensity):
        ring_population = _ring_density_population(source)
        using_real_data = False
        data_source = None
    else:
        raise TypeError(f"Unsupported density source: {source!r}")

    estimates = _survivor_cascade(zones, ring_population, language)
    totals, medical_burden = summarize_casualties(estimates)

    logger.info(
        f"Estimated {totals.fatalities} fatalities and {totals.injuries} injuries "
        f"over {len(estimates)} zones ({data_source or 'heuristic density'})"
    )

    return CasualtyData(
        estimates=estimates,
        totals=totals,
        medical_burden=medical_burden,
        using_real_data=using_real_data,
        data_source=data_source,
    )


def calculate_casualties(blast_effects, pop_model, center=None, language=None):
    """
    Estimate casualties directly from weapon effect radii.

    Args:
        blast_effects (BlastEffects or dict): Fireball radius in meters,
            overpressure, thermal and radiation radii in km.
        pop_model (PopulationDensityModel): Density for the target.
        center (Coordinate or tuple, optional): Blast center.

    Returns:
        CasualtyData
    """
    return estimate_casualties(build_effect_zones(blast_effects), pop_model, center, language)
