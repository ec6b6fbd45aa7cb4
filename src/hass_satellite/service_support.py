"""Service support: signal handling for the long-running service."""

from __future__ import annotations

import signal as _signal
from types import FrameType
from typing import Callable, Optional

DEFAULT_SIGNALS: tuple[int, ...] = (_signal.SIGINT, _signal.SIGTERM)


class SignalHandlers:
    """Context manager routing the given signals to a shutdown callback.

    Previous handlers are restored on exit so tests and embedding code are
    not left with our handlers installed.
    """

    def __init__(
        self,
        shutdown_cb: Callable[[], None],
        signals: Optional[tuple[int, ...]] = None,
    ) -> None:
        self._shutdown_cb = shutdown_cb
        self._signals = signals or DEFAULT_SIGNALS
        self._orig: dict[int, object] = {}

    def _handler(self, signum: int, frame: Optional[FrameType]) -> None:
        self._shutdown_cb()

    def __enter__(self) -> SignalHandlers:
        for sig in self._signals:
            self._orig[sig] = _signal.getsignal(sig)
            _signal.signal(sig, self._handler)
        return self

    def __exit__(
        self, exc_type: object | None, exc: object | None, tb: object | None
    ) -> None:
        for sig, orig in self._orig.items():
            # getsignal's return type is wider than signal() accepts; safe at runtime
            _signal.signal(sig, orig)  # type: ignore[arg-type]
        self._orig.clear()
        return None


def install_signal_handlers(
    shutdown_cb: Callable[[], None], signals: Optional[tuple[int, ...]] = None
) -> SignalHandlers:
    """Return a context manager that calls ``shutdown_cb`` on SIGINT/SIGTERM."""
    return SignalHandlers(shutdown_cb, signals)


__all__ = ["DEFAULT_SIGNALS", "SignalHandlers", "install_signal_handlers"]
