"""
Cancellation tokens for population lookups that may be superseded.

Each computation started by a session carries a token. Starting a newer
computation cancels the older token; work checks the token between slow
steps and abandons itself by raising ``ComputationCancelled``.
"""

import threading


class ComputationCancelled(Exception):
    """Raised when work tied to a cancelled token is abandoned."""


class CancellationToken:

    def __init__(self, sequence=0):
        self.sequence = sequence
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self):
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise ComputationCancelled(f"Computation {self.sequence} was superseded")

    def __repr__(self):
        return f"CancellationToken(sequence={self.sequence}, cancelled={self.cancelled})"
