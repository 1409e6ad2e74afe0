"""Graceful shutdown on termination signals."""

from __future__ import annotations

import logging
import signal
import threading

_log = logging.getLogger(__name__)


def trap_signals() -> threading.Event:
    """Install SIGINT and SIGTERM handlers; return an event set on either.

    Must be called from the main thread.
    """
    stop = threading.Event()

    def handle(signum: int, _frame: object) -> None:
        _log.warning("%s signal received, shutting down gracefully", signal.Signals(signum).name)
        stop.set()

    signal.signal(signal.SIGINT, handle)
    signal.signal(signal.SIGTERM, handle)
    return stop