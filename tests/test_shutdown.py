import logging
import signal

import pytest

from kamu_node.shutdown import trap_signals


@pytest.fixture
def restore_handlers():
    saved = {signum: signal.getsignal(signum) for signum in (signal.SIGINT, signal.SIGTERM)}
    yield
    for signum, handler in saved.items():
        signal.signal(signum, handler)


def test_event_starts_clear(restore_handlers):
    stop = trap_signals()
    assert not stop.is_set()


def test_sigterm_sets_event(restore_handlers, caplog):
    stop = trap_signals()
    with caplog.at_level(logging.WARNING):
        signal.raise_signal(signal.SIGTERM)
    assert stop.wait(1.0)
    assert "SIGTERM signal received, shutting down gracefully" in caplog.text


def test_sigint_sets_event_instead_of_interrupting(restore_handlers, caplog):
    stop = trap_signals()
    with caplog.at_level(logging.WARNING):
        signal.raise_signal(signal.SIGINT)
    assert stop.wait(1.0)
    assert "SIGINT signal received, shutting down gracefully" in caplog.text