"""
Guard State — the engine's only shared mutable state.

Holds the template sync-lock table and the per-(principal, operation)
rate-limit windows. One instance per application (``app.extensions``);
tests construct their own or call ``reset()``.

Both tables sit behind one ``threading.Lock`` so check-and-record is atomic
even under a threaded WSGI server.
"""

import threading
import time

from flask import current_app

EXTENSION_KEY = "governance_guards"


class GuardState:
    """Sync locks + sliding rate-limit windows with an injectable clock."""

    def __init__(self, clock=None):
        self.clock = clock or time.monotonic
        self.mutex = threading.Lock()
        self.sync_locks: set[str] = set()
        self.rate_windows: dict[str, list[float]] = {}

    def reset(self) -> None:
        with self.mutex:
            self.sync_locks.clear()
            self.rate_windows.clear()

    def sweep_rate_windows(self, cutoff: float) -> None:
        """Drop keys whose every timestamp is at or before ``cutoff``. Caller holds ``mutex``."""
        stale = [key for key, stamps in self.rate_windows.items() if not stamps or stamps[-1] <= cutoff]
        for key in stale:
            del self.rate_windows[key]

    def init_app(self, app) -> None:
        app.extensions[EXTENSION_KEY] = self


def get_guard_state() -> GuardState:
    """The current application's GuardState."""
    return current_app.extensions[EXTENSION_KEY]
