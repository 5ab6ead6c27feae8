"""
Per-map-session coordination of casualty computations.

A session runs one computation per user interaction. Each computation gets a
fresh ``CancellationToken``; starting a new one cancels the previous token,
and a result is only published while its token is still the current one, so
a slow, superseded lookup can never overwrite a newer result.
"""

import logging
import threading

from blastcasualties import config
from blastcasualties.cancellation import CancellationToken, ComputationCancelled
from blastcasualties.density_model import estimate_density
from blastcasualties.effect_zones import build_effect_zones
from blastcasualties.models import Coordinate
from blastcasualties.population_calculator import estimate_casualties

logger = logging.getLogger(__name__)


class CasualtySession:
    """
    Runs casualty computations for one map session.

    Args:
        provider (PopulationGridProvider, optional): Grid source used when
            real data is requested; None always uses heuristic density.
        language (str, optional): Language of zone descriptions.

    Attributes:
        latest_result (CasualtyData): Last published result, kept while a
            newer computation is outstanding.
    """

    def __init__(self, provider=None, language=None):
        self.provider = provider
        self.language = language
        self.latest_result = None
        self._lock = threading.Lock()
        self._sequence = 0
        self._current_token = None
        self._computing = False

    @property
    def is_computing(self):
        with self._lock:
            return self._computing

    def _start(self):
        with self._lock:
            if self._current_token is not None:
                self._current_token.cancel()
            self._sequence += 1
            token = CancellationToken(self._sequence)
            self._current_token = token
            self._computing = True
            return token

    def _finish(self, token, result=None):
        with self._lock:
            if token is not self._current_token:
                return False
            if result is not None:
                self.latest_result = result
            self._computing = False
            return True

    def cancel(self):
        """Cancel the outstanding computation, if any."""
        with self._lock:
            if self._current_token is not None:
                self._current_token.cancel()
                self._current_token = None
            self._computing = False

    def compute(self, token, lat, lng, city_name, blast_effects, use_real_data=True, now=None, language=None):
        """Run the density lookup and estimator for one request."""
        provider = self.provider if use_real_data else None
        pop_model = estimate_density(lat, lng, city_name, provider=provider, now=now, token=token)
        token.raise_if_cancelled()

        zones = build_effect_zones(blast_effects)
        data = estimate_casualties(zones, pop_model, center=Coordinate(lat, lng), language=language or self.language)
        token.raise_if_cancelled()
        return data

    def request(self, lat, lng, city_name, blast_effects, use_real_data=True, now=None, language=None):
        """
        Start a computation, superseding any outstanding one.

        Returns:
            CasualtyData: The published result, or None when this
                          computation was superseded before it finished.
        """
        token = self._start()
        try:
            result = self.compute(token, lat, lng, city_name, blast_effects, use_real_data, now, language)
        except ComputationCancelled:
            logger.debug(f"Discarding superseded computation {token.sequence}")
            return None
        except Exception:
            self._finish(token)
            raise

        if not self._finish(token, result):
            logger.debug(f"Discarding stale result of computation {token.sequence}")
            return None
        return result


class Debouncer:
    """
    Collapses bursts of calls into one call after a quiet period.

    Each call restarts the delay; only the arguments of the last call in a
    burst are used.
    """

    def __init__(self, func, delay=None):
        self.func = func
        self.delay = config.DEBOUNCE_DELAY_S if delay is None else delay
        self._timer = None
        self._lock = threading.Lock()

    def __call__(self, *args, **kwargs):
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.delay, self.func, args, kwargs)
            self._timer.daemon = True
            self._timer.start()

    def cancel(self):
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    @property
    def pending(self):
        with self._lock:
            return self._timer is not None and self._timer.is_alive()
