"""
Deadline handling for tlsocket.

This module provides the deadline used to bound the TLS handshake.
"""

from __future__ import annotations

import time
import typing


class Deadline:
    """
    A point in time after which an operation should give up.

    A deadline built from ``None`` never expires.
    """

    def __init__(self, timeout: typing.Optional[float] = None) -> None:
        """
        Initialize a new Deadline.

        :param timeout: Seconds from now, or ``None`` for no limit
        """
        self.timeout = timeout
        self._expires = None if timeout is None else current_time() + timeout

    @classmethod
    def from_float(cls, timeout):
        """
        Create a Deadline from a float.

        :param timeout: Timeout value or an existing Deadline
        :return: Deadline instance
        """
        if isinstance(timeout, Deadline):
            return timeout
        return cls(timeout)

    def remaining(self) -> typing.Optional[float]:
        """Seconds left before expiry, never negative, or ``None``."""
        if self._expires is None:
            return None
        return max(0.0, self._expires - current_time())

    @property
    def expired(self) -> bool:
        """Whether the deadline has passed."""
        return self._expires is not None and current_time() >= self._expires

    def __repr__(self) -> str:
        return f"{type(self).__name__}(timeout={self.timeout!r})"


def current_time() -> float:
    """
    Get the current time.

    Returns:
        A monotonic clock reading in seconds.
    """
    return time.monotonic()
