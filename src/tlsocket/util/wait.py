"""
Readiness polling for tlsocket.

This module provides the waits the nonblocking retry engine uses between
attempts on a transport that is not ready yet.
"""

from __future__ import annotations

import selectors
import socket
import typing

__all__ = ["wait_for_read", "wait_for_write", "wait_for_socket"]


def wait_for_socket(
    sock: socket.socket,
    read: bool = False,
    write: bool = False,
    timeout: typing.Optional[float] = None,
) -> bool:
    """
    Wait for a socket to become readable or writable.

    :param sock: Socket to poll
    :param read: Wait for readability
    :param write: Wait for writability
    :param timeout: Seconds to wait, or ``None`` to wait indefinitely
    :return: True if a requested event fired, False on timeout
    :raises RuntimeError: If neither ``read`` nor ``write`` is set
    """
    if not read and not write:
        raise RuntimeError("must specify at least one of read=True, write=True")

    events = 0
    if read:
        events |= selectors.EVENT_READ
    if write:
        events |= selectors.EVENT_WRITE

    with selectors.DefaultSelector() as selector:
        selector.register(sock, events)
        return bool(selector.select(timeout))


def wait_for_read(sock: socket.socket, timeout: typing.Optional[float] = None) -> bool:
    """
    Wait for a socket to become readable.

    :param sock: Socket to poll
    :param timeout: Seconds to wait, or ``None`` to wait indefinitely
    :return: True if readable, False on timeout
    """
    return wait_for_socket(sock, read=True, timeout=timeout)


def wait_for_write(sock: socket.socket, timeout: typing.Optional[float] = None) -> bool:
    """
    Wait for a socket to become writable.

    :param sock: Socket to poll
    :param timeout: Seconds to wait, or ``None`` to wait indefinitely
    :return: True if writable, False on timeout
    """
    return wait_for_socket(sock, write=True, timeout=timeout)
