#!/usr/bin/env python3
"""
UDP Socket Manager
Owns the single live UDP socket of the echo service and replaces it on demand.

The socket sits behind SocketHolder, the only place where it is swapped
(rebind after a timeout) or torn down (shutdown). A wake-up socket pair lets
close() interrupt a receive that is blocked in another thread.
"""

import logging
import selectors
import socket
import threading
from dataclasses import dataclass, field
from typing import Optional, Tuple

from udp_echo.errors import BenignCloseError, BindError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Endpoint:
    """IP address and UDP port"""
    host: str
    port: int
    # IPv6 only; zero for IPv4 and unscoped addresses
    flowinfo: int = field(default=0, compare=False)
    scope_id: int = field(default=0, compare=False)

    @classmethod
    def from_sockaddr(cls, sockaddr: tuple) -> "Endpoint":
        if len(sockaddr) == 4:
            return cls(host=sockaddr[0], port=int(sockaddr[1]),
                       flowinfo=sockaddr[2], scope_id=sockaddr[3])
        return cls(host=sockaddr[0], port=int(sockaddr[1]))

    def __str__(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


def bind(endpoint: Endpoint, timeout: Optional[float] = None) -> socket.socket:
    """Resolve the endpoint and return a bound UDP socket"""
    try:
        infos = socket.getaddrinfo(endpoint.host, endpoint.port,
                                   type=socket.SOCK_DGRAM)
    except (socket.gaierror, UnicodeError, OverflowError) as e:
        raise BindError(f"failed to resolve address {endpoint}: {e}") from e

    family, socktype, proto, _, sockaddr = infos[0]
    if family == socket.AF_INET6 and (endpoint.flowinfo or endpoint.scope_id):
        sockaddr = (sockaddr[0], sockaddr[1], endpoint.flowinfo, endpoint.scope_id)
    sock = socket.socket(family, socktype, proto)
    try:
        sock.settimeout(timeout)
        sock.bind(sockaddr)
    except OSError as e:
        sock.close()
        raise BindError(f"failed to listen on UDP {endpoint}: {e}") from e

    logger.debug(f"Bound UDP socket on {endpoint}")
    return sock


def rebind(endpoint: Endpoint, timeout: Optional[float] = None) -> socket.socket:
    """Create a fresh socket on the same endpoint (same contract as bind)"""
    return bind(endpoint, timeout)


class SocketHolder:
    """Single point of ownership for the live UDP socket"""

    def __init__(self, endpoint: Endpoint, read_timeout: Optional[float] = None):
        self.endpoint = endpoint
        self.read_timeout = read_timeout
        self._lock = threading.Lock()
        self._closed = False

        self._sock: Optional[socket.socket] = bind(endpoint, read_timeout)
        # An ephemeral port (0) must come back as the port we were given
        self.bound_address = Endpoint.from_sockaddr(self._sock.getsockname())
        self._wake_r, self._wake_w = socket.socketpair()

    def __enter__(self) -> "SocketHolder":
        return self

    def __exit__(self, *exc_info):
        self.release()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def is_live(self) -> bool:
        with self._lock:
            return not self._closed and self._sock is not None

    def current(self) -> socket.socket:
        """Return the live socket; raises once the holder is closed"""
        with self._lock:
            if self._closed:
                raise BenignCloseError("use of closed network connection")
            if self._sock is None:
                raise BindError(f"no live socket on {self.bound_address}")
            return self._sock

    def recvfrom(self, bufsize: int) -> Tuple[bytes, tuple]:
        """Wait for a datagram or for close(), whichever comes first"""
        sock = self.current()
        with selectors.DefaultSelector() as sel:
            sel.register(sock, selectors.EVENT_READ)
            sel.register(self._wake_r, selectors.EVENT_READ)
            events = sel.select(self.read_timeout)

        if self._closed:
            raise BenignCloseError("use of closed network connection")
        if not events:
            raise socket.timeout("timed out")
        return sock.recvfrom(bufsize)

    def sendto(self, payload: bytes, address: tuple) -> int:
        return self.current().sendto(payload, address)

    def replace(self) -> socket.socket:
        """Discard the current socket and bind a new one on the same address"""
        with self._lock:
            if self._closed:
                raise BenignCloseError("use of closed network connection")
            old, self._sock = self._sock, None
        if old is not None:
            old.close()

        new = rebind(self.bound_address, self.read_timeout)
        with self._lock:
            if self._closed:
                new.close()
                raise BenignCloseError("closed during rebind")
            self._sock = new
        logger.info(f"UDP socket rebound on {self.bound_address}")
        return new

    def close(self):
        """Close the live socket and wake a blocked receiver (idempotent)"""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            sock, self._sock = self._sock, None
        try:
            self._wake_w.send(b"\0")
        except OSError as e:
            logger.debug(f"Wake-up signal failed: {e}")
        if sock is not None:
            sock.close()

    def release(self):
        """close() plus the wake-up pair; call once no receiver is left"""
        self.close()
        self._wake_r.close()
        self._wake_w.close()
