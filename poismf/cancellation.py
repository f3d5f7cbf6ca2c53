"""
Cooperative Cancellation

The optimizer never interrupts a row mid-solve. Instead it polls a token at
phase boundaries (top of each outer iteration, and between the A- and
B-phases) and returns early when the token has been cancelled, leaving both
factor matrices as the last completed phase left them.
"""

import signal
import sys
import threading
from contextlib import contextmanager


class CancellationToken:
    """Thread-safe one-way flag shared between a caller and the optimizer"""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def reset(self):
        self._event.clear()

    def __repr__(self):
        return f"CancellationToken(cancelled={self.is_cancelled})"


@contextmanager
def cancel_on_interrupt(token: CancellationToken, verbose: bool = True):
    """
    Route Ctrl+C (SIGINT) to ``token`` for the duration of the block.

    Signal handlers can only be installed from the main thread; elsewhere
    this is a no-op and SIGINT keeps its usual behavior.
    """
    if threading.current_thread() is not threading.main_thread():
        yield token
        return

    def _handler(signum, frame):
        if verbose:
            print("Error: procedure was interrupted", file=sys.stderr)
        token.cancel()

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield token
    finally:
        signal.signal(signal.SIGINT, previous)
