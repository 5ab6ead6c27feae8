"""
Blast Casualty Estimator - Runtime Configuration

Module-level settings for the population data sources, the grid cache and
the session layer. Each value can be overridden through an environment
variable of the same name.

Tunable tables (fatality rates, injury distributions, city densities,
building occupancy, weapon catalog) are not defined here; they ship as data
files under ``blastcasualties/data`` so they can be adjusted and tested
independently of the code.
"""

import os
from pathlib import Path

PACKAGE_DIR = Path(__file__).parent
DATA_DIR = PACKAGE_DIR / "data"
TRANSLATIONS_DIR = PACKAGE_DIR / "translations"


def _env_float(name, default):
    value = os.environ.get(name)
    return float(value) if value not in (None, "") else default


def _env_int(name, default):
    value = os.environ.get(name)
    return int(value) if value not in (None, "") else default


# =============================================================================
# EXTERNAL DATA SOURCES
# =============================================================================

# Overpass API endpoint used for building footprints
OVERPASS_URL = os.environ.get("OVERPASS_URL", "https://overpass-api.de/api/interpreter")

# Limit for a whole Overpass request, response body included (seconds)
OVERPASS_TIMEOUT_S = _env_float("OVERPASS_TIMEOUT_S", 10.0)

# Connect timeout for the Overpass request (seconds), capped by OVERPASS_TIMEOUT_S
OVERPASS_CONNECT_TIMEOUT_S = _env_float("OVERPASS_CONNECT_TIMEOUT_S", 5.0)

# Server-side timeout embedded in the Overpass QL query (seconds)
OVERPASS_QUERY_TIMEOUT_S = _env_int("OVERPASS_QUERY_TIMEOUT_S", 25)

USER_AGENT = os.environ.get("USER_AGENT", "blast-casualties/0.1 (educational blast effects visualizer)")

# Optional GeoTIFF of population counts per pixel in a geographic CRS (EPSG:4326).
# Leave unset to skip the raster source.
POPULATION_RASTER_PATH = os.environ.get("POPULATION_RASTER_PATH") or None

# =============================================================================
# POPULATION GRID SETTINGS
# =============================================================================

# Largest radius around the target for which a population grid is requested (km)
MAX_GRID_RADIUS_KM = _env_float("MAX_GRID_RADIUS_KM", 20.0)

# Cells per side of the grid built from building footprints
OSM_GRID_SIZE = _env_int("OSM_GRID_SIZE", 100)

# Cells per side of the synthetic density-gradient grid
SYNTHETIC_GRID_SIZE = _env_int("SYNTHETIC_GRID_SIZE", 50)

# Peak density of the synthetic gradient (people per km²)
SYNTHETIC_MAX_DENSITY = _env_float("SYNTHETIC_MAX_DENSITY", 10000.0)

# Lifetime of cached population grids (seconds)
CACHE_TTL_S = _env_float("CACHE_TTL_S", 300.0)

# =============================================================================
# DENSITY HEURISTICS
# =============================================================================

# Density used when the city name matches no entry in city_densities.csv (people per km²)
DEFAULT_CITY_DENSITY = _env_float("DEFAULT_CITY_DENSITY", 3000.0)

MIN_DENSITY = 500
MAX_DENSITY = 50000

# =============================================================================
# SESSION SETTINGS
# =============================================================================

# Delay used to collapse bursts of marker movements into one computation (seconds)
DEBOUNCE_DELAY_S = _env_float("DEBOUNCE_DELAY_S", 0.1)

# Idle lifetime of an HTTP client's casualty session (seconds)
SESSION_TTL_S = _env_float("SESSION_TTL_S", 1800.0)
