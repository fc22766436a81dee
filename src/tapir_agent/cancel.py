"""
Cooperative cancellation.

A CancelToken is passed explicitly to the transport, the event decoder, the
tool dispatcher and the shell tool. Nothing is preempted: each component
polls the token at its own safe checkpoints. A streaming read also closes its
response when the token is set, so a read blocked on the socket returns.
"""

import signal
import threading
from contextlib import contextmanager
from typing import Callable, Iterator

import structlog

logger = structlog.get_logger()


class CancelToken:
    """Thread-safe cancellation flag.

    Besides polling, a blocked reader can register a callback with
    :meth:`on_cancel` that unblocks it (by closing the connection it reads
    from) as soon as the token is set.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._callbacks: list[Callable[[], None]] = []

    def set(self) -> None:
        self._event.set()
        for callback in list(self._callbacks):
            callback()

    def clear(self) -> None:
        self._event.clear()

    def is_set(self) -> bool:
        return self._event.is_set()

    @contextmanager
    def on_cancel(self, callback: Callable[[], None]) -> Iterator[None]:
        """Run ``callback`` when the token is set inside the block.

        The callback may run inside a signal handler, so it must not raise.
        """
        self._callbacks.append(callback)
        try:
            yield
        finally:
            self._callbacks.remove(callback)


@contextmanager
def interrupt_handler(token: CancelToken) -> Iterator[CancelToken]:
    """Route SIGINT to ``token`` for the duration of the block.

    Outside the block Ctrl-C keeps its default meaning, which the line
    editor turns into "cancel the current input line".
    """
    if threading.current_thread() is not threading.main_thread():
        yield token
        return

    def _on_sigint(signum, frame):
        token.set()

    previous = signal.signal(signal.SIGINT, _on_sigint)
    try:
        yield token
    finally:
        signal.signal(signal.SIGINT, previous)
        if token.is_set():
            logger.debug("Cancellation requested during request cycle")
