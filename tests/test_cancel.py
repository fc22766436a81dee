"""
Tests for cooperative cancellation.
"""

import os
import signal
import threading

from tapir_agent.cancel import CancelToken, interrupt_handler


def test_token_set_and_clear():
    """Test the basic flag operations."""
    token = CancelToken()
    assert not token.is_set()
    token.set()
    assert token.is_set()
    token.clear()
    assert not token.is_set()


def test_sigint_sets_token_inside_handler():
    """Test that Ctrl-C during a request cycle sets the token."""
    token = CancelToken()
    previous = signal.getsignal(signal.SIGINT)

    with interrupt_handler(token):
        os.kill(os.getpid(), signal.SIGINT)
        assert token.is_set()

    assert signal.getsignal(signal.SIGINT) is previous


def test_handler_off_main_thread_is_noop():
    """Test that worker threads do not touch signal handlers."""
    token = CancelToken()
    seen = []

    def worker():
        with interrupt_handler(token) as t:
            seen.append(t)

    thread = threading.Thread(target=worker)
    thread.start()
    thread.join()

    assert seen == [token]


def test_on_cancel_runs_callback_inside_block_only():
    """Test that cancel callbacks fire on set() while registered."""
    token = CancelToken()
    calls = []

    with token.on_cancel(lambda: calls.append("inside")):
        token.set()
    token.clear()
    token.set()

    assert calls == ["inside"]


def test_sigint_runs_cancel_callback():
    """Test that Ctrl-C reaches a registered callback immediately."""
    token = CancelToken()
    calls = []

    with interrupt_handler(token), token.on_cancel(lambda: calls.append(True)):
        os.kill(os.getpid(), signal.SIGINT)

    assert calls == [True]
