#!/usr/bin/env python3
"""
Error taxonomy for the UDP echo service

Maps raw socket failures onto the four conditions the echo loop reacts to:
bind failures, benign closes, timeouts and everything else.
"""

import errno
import socket


class EchoError(Exception):
    """Base class for all echo service errors"""


class BindError(EchoError):
    """Address resolution or socket binding failed"""


class BenignCloseError(EchoError):
    """Socket was closed on purpose (shutdown in progress)"""


class EchoTimeoutError(EchoError):
    """Receive or send exceeded its deadline"""


class TransportError(EchoError):
    """Any other receive/send failure"""


# errno values raised when an fd is used after close()
_CLOSED_ERRNOS = {errno.EBADF, errno.ENOTSOCK}


def classify(exc: BaseException, closed: bool = False) -> EchoError:
    """Translate a raw socket exception into an EchoError"""
    if isinstance(exc, EchoError):
        return exc
    if closed:
        return BenignCloseError(str(exc))
    if isinstance(exc, (socket.timeout, TimeoutError)):
        return EchoTimeoutError(str(exc) or "timed out")
    if isinstance(exc, OSError) and exc.errno in _CLOSED_ERRNOS:
        return BenignCloseError(str(exc))
    return TransportError(str(exc))
