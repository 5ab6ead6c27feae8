"""
Population density model for a target location.

Combines an optional population grid from the data source chain with a
heuristic scalar density: a per-city base density from
``data/city_densities.csv`` shaped by a deterministic spatial texture and a
time-of-day factor. The texture only exists so that nearby points in the same
city do not all get the same figure; it is not a population model.
"""

import logging
import math
from datetime import datetime

import pandas as pd

from blastcasualties import config
from blastcasualties.models import PopulationDensityModel

logger = logging.getLogger(__name__)

CITY_DENSITIES_FILE = config.DATA_DIR / "city_densities.csv"

# Populated by load_city_densities() on first use
city_densities = None

# Sinusoid terms of the spatial texture: (frequency, weight)
TEXTURE_TERMS = ((200, 0.15), (50, 0.25), (10, 0.1))
TEXTURE_AMPLITUDE = 0.3

BUSINESS_HOURS = (9, 17)
BUSINESS_HOURS_FACTOR = 1.1
OFF_HOURS_FACTOR = 0.9


def read_city_densities(path):
    """
    Read a city density table, keeping file order.

    Returns:
        pandas.DataFrame: Columns ``city`` (lowercase) and ``density`` (people per km²).
    """
    logger.info(f"Loading city densities from {path}...")
    table = pd.read_csv(path, encoding="utf-8")
    table["city"] = table["city"].astype(str).str.strip().str.lower()
    table["density"] = table["density"].astype(float)
    return table


def load_city_densities():
    global city_densities
    if city_densities is None:
        city_densities = read_city_densities(CITY_DENSITIES_FILE)
    return city_densities


def get_base_density(city_name, table=None):
    """
    Base density for a free-text city name.

    The first table entry contained in the lowercased name wins, so
    "Greater London, UK" resolves to london.
    """
    table = load_city_densities() if table is None else table
    name = (city_name or "").strip().lower()
    if name:
        for city, density in zip(table["city"], table["density"]):
            if city in name:
                return float(density)
    return config.DEFAULT_CITY_DENSITY


def center_factor(lat, lng):
    """Falloff from the implied local center at each whole-degree corner, in [1, 1.5]."""
    distance = math.hypot(abs(math.fmod(lat, 1)), abs(math.fmod(lng, 1)))
    return 1 + 0.5 * math.exp(-distance * 4)


def spatial_variation(lat, lng):
    return sum(
        math.sin(lat * frequency) * math.cos(lng * frequency) * weight
        for frequency, weight in TEXTURE_TERMS
    )


def time_factor(now=None):
    hour = (now or datetime.now()).hour
    start, end = BUSINESS_HOURS
    return BUSINESS_HOURS_FACTOR if start <= hour <= end else OFF_HOURS_FACTOR


def heuristic_density(lat, lng, city_name, now=None):
    """
    Scalar density and urban factor for a point.

    Returns:
        tuple: ``(density, urban_factor)``; density is a whole number of
               people per km² clamped to ``[MIN_DENSITY, MAX_DENSITY]`` and
               the urban factor lies in [0.5, 0.9].
    """
    base = get_base_density(city_name)
    center = center_factor(lat, lng)
    variation = center * time_factor(now) * (1 + spatial_variation(lat, lng) * TEXTURE_AMPLITUDE)

    density = min(config.MAX_DENSITY, max(config.MIN_DENSITY, base * variation))
    urban_factor = 0.5 + 0.8 * (center - 1)
    return math.floor(density + 0.5), urban_factor


def estimate_density(lat, lng, city_name, provider=None, now=None, token=None):
    """
    Build the population density model for a target.

    Args:
        lat (float): Latitude in decimal degrees.
        lng (float): Longitude in decimal degrees.
        city_name (str): Free-text city name, may be empty.
        provider (PopulationGridProvider, optional): Grid source; when None
            no grid is requested.
        now (datetime, optional): Time used for the time-of-day factor.
        token (CancellationToken, optional): Passed to the provider.

    Returns:
        PopulationDensityModel: Always returned; without a grid when the
                                provider is absent or has no data.
    """
    grid = None
    grid_source = None
    if provider is not None:
        result = provider.fetch(lat, lng, config.MAX_GRID_RADIUS_KM, token=token)
        if result.available:
            grid, grid_source = result.grid, result.source
        else:
            logger.info(f"No population grid for ({lat:.4f}, {lng:.4f}): {result.degraded_reason}")

    density, urban_factor = heuristic_density(lat, lng, city_name, now)

    return PopulationDensityModel(
        total_population=0,
        population_density=density,
        urban_density_factor=urban_factor,
        population_grid=grid,
        grid_source=grid_source,
    )
