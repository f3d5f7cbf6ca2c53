import signal
import threading

from poismf.cancellation import CancellationToken, cancel_on_interrupt


def test_token_lifecycle() -> None:
    token = CancellationToken()
    assert not token.is_cancelled
    token.cancel()
    assert token.is_cancelled
    assert repr(token) == "CancellationToken(cancelled=True)"
    token.reset()
    assert not token.is_cancelled


def test_token_is_visible_across_threads() -> None:
    token = CancellationToken()
    worker = threading.Thread(target=token.cancel)
    worker.start()
    worker.join()
    assert token.is_cancelled


def test_interrupt_cancels_token_and_restores_handler() -> None:
    token = CancellationToken()
    previous = signal.getsignal(signal.SIGINT)

    with cancel_on_interrupt(token, verbose=False) as guarded:
        assert guarded is token
        assert signal.getsignal(signal.SIGINT) is not previous
        signal.raise_signal(signal.SIGINT)

    assert token.is_cancelled
    assert signal.getsignal(signal.SIGINT) is previous


def test_interrupt_guard_is_a_no_op_off_the_main_thread() -> None:
    token = CancellationToken()
    seen = {}

    def _run():
        with cancel_on_interrupt(token) as guarded:
            seen['token'] = guarded
            seen['handler'] = signal.getsignal(signal.SIGINT)

    before = signal.getsignal(signal.SIGINT)
    worker = threading.Thread(target=_run)
    worker.start()
    worker.join()

    assert seen['token'] is token
    assert seen['handler'] is before
    assert not token.is_cancelled
