"""
Retry engine for tlsocket.

This module drives partial, possibly-blocking IO primitives until they
succeed, the peer goes away, or an error has to be reported.

Every primitive returns an :class:`Attempt` describing what happened. The
engine never looks at library exceptions itself, which keeps the retry and
backoff policy independent of the TLS library.
"""

from __future__ import annotations

import logging
import typing
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, Optional, Union

from .timeout import Deadline

log = logging.getLogger(__name__)

# Initial chunk size for writes and block size for reads
DEFAULT_BLOCK_SIZE = 102400

# Chunks are halved on every would-block, but never below this
MIN_BLOCK_SIZE = 1024

# Seconds to wait for readiness before retrying a read or write
IO_RETRY_WAIT = 0.01

# Seconds to wait for readiness before retrying a handshake step
HANDSHAKE_RETRY_WAIT = 0.10


class Outcome(Enum):
    """Classification of a single IO attempt."""

    # The handshake finished
    DONE = auto()

    # Bytes moved (possibly zero); keep going
    PROGRESS = auto()

    # Nothing moved until the transport becomes readable
    WOULD_BLOCK_READ = auto()

    # Nothing moved until the transport becomes writable
    WOULD_BLOCK_WRITE = auto()

    # The peer closed the stream or the pipe broke
    CLOSED = auto()

    # The TLS layer failed irrecoverably
    FATAL = auto()

    # Anything else; handed back to the caller untouched
    OTHER = auto()


@dataclass(frozen=True)
class Attempt:
    """
    The result of one call to an IO primitive.

    ``count`` is the number of bytes moved, ``data`` the bytes read (read
    primitives only) and ``error`` the exception behind a terminal outcome.
    """

    outcome: Outcome
    count: int = 0
    data: bytes = b""
    error: Optional[BaseException] = None

    @classmethod
    def done(cls) -> "Attempt":
        return cls(Outcome.DONE)

    @classmethod
    def progress(cls, count: int = 0, data: bytes = b"") -> "Attempt":
        return cls(Outcome.PROGRESS, count=count, data=data)

    @classmethod
    def would_block_read(cls) -> "Attempt":
        return cls(Outcome.WOULD_BLOCK_READ)

    @classmethod
    def would_block_write(cls) -> "Attempt":
        return cls(Outcome.WOULD_BLOCK_WRITE)

    @classmethod
    def closed(cls, error: Optional[BaseException] = None) -> "Attempt":
        return cls(Outcome.CLOSED, error=error)

    @classmethod
    def fatal(cls, error: BaseException) -> "Attempt":
        return cls(Outcome.FATAL, error=error)

    @classmethod
    def other(cls, error: BaseException) -> "Attempt":
        return cls(Outcome.OTHER, error=error)

    @property
    def would_block(self) -> bool:
        return self.outcome in (Outcome.WOULD_BLOCK_READ, Outcome.WOULD_BLOCK_WRITE)

    @property
    def terminal(self) -> bool:
        """Whether the stream is finished (closed or failed in the TLS layer)."""
        return self.outcome in (Outcome.CLOSED, Outcome.FATAL)

    def raise_error(self) -> typing.NoReturn:
        if self.error is None:
            raise ConnectionAbortedError(f"Stream ended ({self.outcome.name})")
        raise self.error


class _ClosedType:
    """
    Sentinel returned by reads and writes once the stream has ended.

    It is falsy, so ``if not data`` treats it like an empty read.
    """

    _instance: Optional["_ClosedType"] = None

    def __new__(cls) -> "_ClosedType":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "CLOSED"


CLOSED = _ClosedType()

ClosedSentinel = _ClosedType


@dataclass
class RetryState:
    """Bookkeeping for one read, write or handshake call."""

    block_size: int = DEFAULT_BLOCK_SIZE
    transferred: int = 0
    deadline: Optional[Deadline] = None

    def shrink(self, floor: int = MIN_BLOCK_SIZE) -> None:
        """Halve the block size to handle full send queues better."""
        self.block_size = max(self.block_size // 2, floor)


_TYPE_WAIT = Callable[[Optional[float]], typing.Any]


class NonblockingRetry:
    """
    The attempt / classify / wait / retry loop shared by the handshake,
    reads and writes.

    :param wait_readable:
        Called with a timeout in seconds; returns once the transport is
        readable or the timeout expired.

    :param wait_writable:
        Same as ``wait_readable``, for writability.

    :param block_size:
        Initial chunk size for writes and block size for reads.

    :param min_block_size:
        Floor for the halving applied after every would-block.

    :param io_wait:
        Seconds to wait for readiness between read/write attempts.

    :param handshake_wait:
        Seconds to wait for readiness between handshake attempts.
    """

    def __init__(
        self,
        wait_readable: _TYPE_WAIT,
        wait_writable: _TYPE_WAIT,
        block_size: int = DEFAULT_BLOCK_SIZE,
        min_block_size: int = MIN_BLOCK_SIZE,
        io_wait: float = IO_RETRY_WAIT,
        handshake_wait: float = HANDSHAKE_RETRY_WAIT,
    ) -> None:
        self.wait_readable = wait_readable
        self.wait_writable = wait_writable
        self.block_size = block_size
        self.min_block_size = min_block_size
        self.io_wait = io_wait
        self.handshake_wait = handshake_wait

    def _wait(self, attempt: Attempt, timeout: Optional[float]) -> None:
        if attempt.outcome is Outcome.WOULD_BLOCK_READ:
            self.wait_readable(timeout)
        else:
            self.wait_writable(timeout)

    def handshake(
        self,
        step: Callable[[], Attempt],
        deadline: Deadline,
        on_timeout: Callable[[], BaseException],
    ) -> RetryState:
        """
        Run ``step`` until it reports :attr:`Outcome.DONE`.

        Terminal outcomes raise the error they carry; the TLS layer's
        failures are hard errors during the handshake. When ``deadline``
        passes, the exception built by ``on_timeout`` is raised.
        """
        state = RetryState(block_size=self.block_size, deadline=deadline)
        while True:
            attempt = step()
            outcome = attempt.outcome

            if outcome is Outcome.DONE:
                return state
            elif outcome is Outcome.PROGRESS:
                state.transferred += attempt.count
            elif attempt.would_block:
                if deadline.expired:
                    raise on_timeout()
                remaining = deadline.remaining()
                wait = self.handshake_wait
                if remaining is not None:
                    wait = min(wait, remaining)
                self._wait(attempt, wait)
            else:
                attempt.raise_error()

            if deadline.expired:
                raise on_timeout()

    def write(
        self, send: Callable[[memoryview], Attempt], data: bytes
    ) -> Union[int, _ClosedType]:
        """
        Send all of ``data`` through ``send``, one chunk at a time.

        Returns the number of bytes sent, which is the length of ``data``
        unless :data:`CLOSED` is returned instead.
        """
        view = memoryview(data).cast("B")
        total_length = len(view)
        state = RetryState(block_size=self.block_size)

        while state.transferred < total_length:
            chunk = view[state.transferred : state.transferred + state.block_size]
            attempt = send(chunk)

            if attempt.outcome is Outcome.PROGRESS:
                if attempt.count > 0:
                    state.transferred += min(
                        attempt.count, total_length - state.transferred
                    )
            elif attempt.would_block:
                state.shrink(self.min_block_size)
                self._wait(attempt, self.io_wait)
            elif attempt.terminal:
                log.debug(
                    "Write ended after %d of %d bytes: %r",
                    state.transferred,
                    total_length,
                    attempt.error,
                )
                return CLOSED
            elif attempt.outcome is Outcome.OTHER:
                attempt.raise_error()

        return state.transferred

    def read(
        self, recv: Callable[[int], Attempt], length: Optional[int] = None
    ) -> Union[bytes, _ClosedType]:
        """
        Return the first non-empty block ``recv`` produces.

        At most ``length`` bytes are requested per attempt, when given.
        Returns :data:`CLOSED` once the stream has ended.
        """
        if length is not None and length <= 0:
            return b""

        state = RetryState(block_size=self.block_size)
        while True:
            size = state.block_size if length is None else min(length, state.block_size)
            attempt = recv(size)

            if attempt.outcome is Outcome.PROGRESS:
                if attempt.data:
                    return attempt.data
            elif attempt.would_block:
                state.shrink(self.min_block_size)
                self._wait(attempt, self.io_wait)
            elif attempt.terminal:
                log.debug("Read ended: %r", attempt.error)
                return CLOSED
            elif attempt.outcome is Outcome.OTHER:
                attempt.raise_error()
