"""Test search debouncing."""
import threading
from unittest.mock import Mock

import pytest

from docsmile.debounce import Debouncer


def test_burst_runs_once_with_last_arguments():
    done = threading.Event()
    calls = []

    def search(term):
        calls.append(term)
        done.set()

    debounced = Debouncer(search, delay_ms=50)
    debounced("a")
    debounced("an")
    debounced("ana")

    assert done.wait(2)
    assert calls == ["ana"]
    assert not debounced.pending


def test_flush_runs_pending_call_now():
    func = Mock()
    debounced = Debouncer(func, delay_ms=10_000)
    debounced("ana")

    assert debounced.pending
    debounced.flush()

    func.assert_called_once_with("ana")
    assert not debounced.pending


def test_cancel_drops_pending_call():
    func = Mock()
    debounced = Debouncer(func, delay_ms=10_000)
    debounced("ana")

    debounced.cancel()
    debounced.flush()

    func.assert_not_called()


def test_errors_go_to_handler():
    errors = []
    debounced = Debouncer(Mock(side_effect=RuntimeError("backend down")), delay_ms=10_000,
                          on_error=errors.append)
    debounced("ana")
    debounced.flush()

    assert len(errors) == 1
    assert str(errors[0]) == "backend down"


def test_errors_without_handler_propagate():
    debounced = Debouncer(Mock(side_effect=RuntimeError("backend down")), delay_ms=10_000)
    debounced("ana")

    with pytest.raises(RuntimeError):
        debounced.flush()
