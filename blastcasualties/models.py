"""
Blast Casualty Estimator - Data Model

Value types exchanged between the density model, the population data sources
and the casualty estimator. Input types validate themselves on construction so
that a malformed zone or grid is rejected before it reaches the survivor
cascade; output types expose ``to_dict()`` for JSON responses.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import numpy as np


class InvalidZoneError(ValueError):
    """Raised when an effect zone or injury distribution is out of range."""


class InvalidGridError(ValueError):
    """Raised when a population grid has an invalid shape or negative cells."""


class ZoneCategory(Enum):
    """Effect family of a zone, used to classify the medical burden."""
    FIREBALL = "fireball"
    BLAST = "blast"
    THERMAL = "thermal"
    RADIATION = "radiation"


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lng: float

    def to_dict(self):
        return {"lat": self.lat, "lng": self.lng}


@dataclass(frozen=True)
class InjuryDistribution:
    """
    Fractions of a ring's survivors counted as severe, moderate and light injuries.

    The three fractions are applied independently to the same survivor pool
    and do not have to sum to 1.
    """
    severe: float
    moderate: float
    light: float

    def __post_init__(self):
        for label in ("severe", "moderate", "light"):
            value = getattr(self, label)
            if value is None or not 0.0 <= value <= 1.0:
                raise InvalidZoneError(f"Injury fraction '{label}' must be within [0, 1], got {value}")


@dataclass(frozen=True)
class EffectZone:
    """
    A circular weapon effect around the blast center.

    Attributes:
        name (str): Display name, e.g. "5 psi overpressure".
        radius (float): Distance from the blast center in meters.
        fatality_rate (float): Fraction of the ring's surviving population killed.
        injuries (InjuryDistribution): Injury fractions applied to ring survivors.
        category (ZoneCategory): Effect family used for the medical burden.
        key (str): Table key of the zone profile (e.g. "psi5").
    """
    name: str
    radius: float
    fatality_rate: float
    injuries: InjuryDistribution
    category: ZoneCategory
    key: str = ""

    def __post_init__(self):
        if self.radius is None or not math.isfinite(self.radius) or self.radius < 0:
            raise InvalidZoneError(f"Zone '{self.name}' has a negative, non-finite or missing radius: {self.radius}")
        if self.fatality_rate is None or not 0.0 <= self.fatality_rate <= 1.0:
            raise InvalidZoneError(
                f"Zone '{self.name}' fatality rate must be within [0, 1], got {self.fatality_rate}"
            )
        if not isinstance(self.category, ZoneCategory):
            raise InvalidZoneError(f"Zone '{self.name}' has an unknown category: {self.category!r}")


@dataclass(frozen=True)
class GridBounds:
    north: float
    south: float
    east: float
    west: float

    def to_dict(self):
        return {"north": self.north, "south": self.south, "east": self.east, "west": self.west}


@dataclass(eq=False)
class PopulationGrid:
    """
    Rasterized population counts over a lat/lng box.

    ``data`` is indexed ``[row, col]``; row 0 is the southern edge and
    column 0 the western edge. ``resolution`` is the nominal cell size in
    meters.
    """
    bounds: GridBounds
    resolution: float
    data: np.ndarray

    def __post_init__(self):
        self.data = np.asarray(self.data, dtype=float)
        if self.data.ndim != 2 or self.data.size == 0:
            raise InvalidGridError(f"Population grid must be a non-empty 2-D array, got shape {self.data.shape}")
        if np.any(self.data < 0) or not np.all(np.isfinite(self.data)):
            raise InvalidGridError("Population grid cells must be finite and non-negative")
        if self.bounds.north <= self.bounds.south or self.bounds.east <= self.bounds.west:
            raise InvalidGridError(f"Degenerate grid bounds: {self.bounds}")

    @property
    def shape(self):
        return self.data.shape

    def cell_centers(self):
        """Return ``(lats, lngs)`` arrays with the center of every cell."""
        rows, cols = self.data.shape
        lat_step = (self.bounds.north - self.bounds.south) / rows
        lng_step = (self.bounds.east - self.bounds.west) / cols
        lats = self.bounds.south + (np.arange(rows) + 0.5) * lat_step
        lngs = self.bounds.west + (np.arange(cols) + 0.5) * lng_step
        return np.meshgrid(lats, lngs, indexing="ij")

    def total(self):
        return float(self.data.sum())


@dataclass(frozen=True)
class ScalarDensity:
    """Uniform density source: people per km² scaled by the urban factor."""
    density: float
    urban_factor: float


@dataclass(frozen=True)
class GridDensity:
    """Gridded density source anchored on the blast center."""
    grid: PopulationGrid
    center: Coordinate
    source: Optional[str] = None


@dataclass
class PopulationDensityModel:
    total_population: int
    population_density: float
    urban_density_factor: float
    population_grid: Optional[PopulationGrid] = None
    grid_source: Optional[str] = None

    def density_source(self, center=None):
        """Select the density source used by the estimator.

        A grid is only usable together with a blast center; otherwise the
        scalar density applies.
        """
        if self.population_grid is not None and center is not None:
            if not isinstance(center, Coordinate):
                center = Coordinate(*center)
            return GridDensity(self.population_grid, center, self.grid_source)
        return ScalarDensity(self.population_density, self.urban_density_factor)


@dataclass(frozen=True)
class GridFetchResult:
    """
    Outcome of a population grid lookup.

    ``grid`` is None when every source failed; ``degraded_reason`` then
    describes the last failure.
    """
    grid: Optional[PopulationGrid]
    source: Optional[str] = None
    degraded_reason: Optional[str] = None
    cached: bool = False

    @property
    def available(self):
        return self.grid is not None


@dataclass(frozen=True)
class InjuryCounts:
    severe: int = 0
    moderate: int = 0
    light: int = 0

    @property
    def total(self):
        return self.severe + self.moderate + self.light

    def to_dict(self):
        return {"severe": self.severe, "moderate": self.moderate, "light": self.light}


@dataclass(frozen=True)
class CasualtyEstimate:
    zone: str
    radius: float
    area: float
    population_affected: int
    fatalities: int
    injuries: InjuryCounts
    description: str
    category: ZoneCategory

    def to_dict(self):
        return {
            "zone": self.zone,
            "radius": self.radius,
            "area": self.area,
            "population_affected": self.population_affected,
            "fatalities": self.fatalities,
            "injuries": self.injuries.to_dict(),
            "description": self.description,
            "category": self.category.value,
        }


@dataclass(frozen=True)
class CasualtyTotals:
    population_affected: int = 0
    fatalities: int = 0
    injuries: int = 0

    def to_dict(self):
        return {
            "population_affected": self.population_affected,
            "fatalities": self.fatalities,
            "injuries": self.injuries,
        }


@dataclass(frozen=True)
class MedicalBurden:
    severe_trauma: int = 0
    burns: int = 0
    radiation_sickness: int = 0
    combined_injuries: int = 0

    def to_dict(self):
        return {
            "severe_trauma": self.severe_trauma,
            "burns": self.burns,
            "radiation_sickness": self.radiation_sickness,
            "combined_injuries": self.combined_injuries,
        }


@dataclass(frozen=True)
class CasualtyData:
    estimates: List[CasualtyEstimate]
    totals: CasualtyTotals
    medical_burden: MedicalBurden
    using_real_data: bool = False
    data_source: Optional[str] = None

    def to_dict(self):
        return {
            "estimates": [estimate.to_dict() for estimate in self.estimates],
            "totals": self.totals.to_dict(),
            "medical_burden": self.medical_burden.to_dict(),
            "using_real_data": self.using_real_data,
            "data_source": self.data_source,
        }


@dataclass(frozen=True)
class BlastEffects:
    """
    Weapon effect radii supplied by the weapon model.

    ``fireball`` is in meters; every other radius is in kilometers, keyed
    as ``overpressure.{psi20,psi5,psi2,psi1}``,
    ``thermal.{thirdDegree,secondDegree,firstDegree}`` and
    ``radiation.{rem500,rem100}``.
    """
    fireball: float
    overpressure: dict = field(default_factory=dict)
    thermal: dict = field(default_factory=dict)
    radiation: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data):
        return cls(
            fireball=float(data["fireball"]),
            overpressure={k: float(v) for k, v in data["overpressure"].items()},
            thermal={k: float(v) for k, v in data["thermal"].items()},
            radiation={k: float(v) for k, v in data["radiation"].items()},
        )

    def lookup(self, path):
        """Resolve a dotted path such as ``overpressure.psi5``."""
        if path == "fireball":
            return self.fireball
        group, _, key = path.partition(".")
        return getattr(self, group)[key]

    def to_dict(self):
        return {
            "fireball": self.fireball,
            "overpressure": dict(self.overpressure),
            "thermal": dict(self.thermal),
            "radiation": dict(self.radiation),
        }
