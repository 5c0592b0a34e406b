#!/usr/bin/env python3
"""
UDP Echo Loop
Receives one datagram per iteration and reflects its first 8 bytes back to
the sender.

Error policy per iteration:
  - benign close (shutdown in progress): swallowed, nothing logged
  - timeout: socket is rebound on the bound endpoint, error still surfaced
  - anything else: surfaced as-is, the next iteration receives again
"""

import enum
import logging
import threading
import time
from typing import Optional

from udp_echo.errors import (
    BenignCloseError,
    BindError,
    EchoError,
    EchoTimeoutError,
    classify,
)
from udp_echo.socket_manager import SocketHolder

logger = logging.getLogger(__name__)

RECV_BUFFER_SIZE = 1024
MAX_REPLY_SIZE = 8


def truncate_payload(data: bytes) -> bytes:
    """Reply payload: the first min(len(data), 8) bytes"""
    return bytes(data[:MAX_REPLY_SIZE])


class LoopState(enum.Enum):
    SERVING = "serving"
    RECOVERING = "recovering"


class EchoLoop:
    """Request/response loop over the socket owned by a SocketHolder"""

    def __init__(self, holder: SocketHolder, verbose: bool = False,
                 rebind_backoff: float = 1.0):
        self.holder = holder
        self.verbose = verbose
        self.rebind_backoff = rebind_backoff
        self.state = LoopState.SERVING

    def handle_once(self):
        """Run one receive/reply iteration; raises the surfaced EchoError"""
        if self.state is LoopState.RECOVERING:
            self._recover()

        try:
            data, client_addr = self.holder.recvfrom(RECV_BUFFER_SIZE)
        except (OSError, ValueError, EchoError) as e:
            err = classify(e, closed=self.holder.closed)
            if isinstance(err, BenignCloseError):
                return
            if self.verbose:
                logger.debug(f"Error reading from UDP: {err}")
            self._on_transport_error(err, "read")
            if err is e:
                raise
            raise err from e

        if self.verbose:
            logger.debug(f"Received message from {client_addr[0]}:{client_addr[1]}: {data!r}")

        reply = truncate_payload(data)
        try:
            self.holder.sendto(reply, client_addr)
        except (OSError, ValueError, EchoError) as e:
            err = classify(e, closed=self.holder.closed)
            if isinstance(err, BenignCloseError):
                return
            if self.verbose:
                logger.debug(f"Error writing to UDP: {err}")
            self._on_transport_error(err, "write")
            if err is e:
                raise
            raise err from e

        if self.verbose:
            logger.debug(f"Sent {len(reply)} bytes to {client_addr[0]}:{client_addr[1]}")

    def serve_forever(self, stop_event: Optional[threading.Event] = None):
        """Drive handle_once until stopped; iteration errors are only logged"""
        while not self.holder.closed:
            if stop_event is not None and stop_event.is_set():
                break
            try:
                self.handle_once()
            except EchoError as e:
                logger.error(f"Error handling UDP communication: {e}")

    def _on_transport_error(self, err: EchoError, direction: str):
        if not isinstance(err, EchoTimeoutError):
            return
        logger.warning(f"UDP {direction} timeout, reconnecting...")
        try:
            self.holder.replace()
        except BenignCloseError:
            return
        except BindError as e:
            self.state = LoopState.RECOVERING
            logger.error(f"failed to reconnect UDP: {e}")

    def _recover(self):
        """Retry a rebind that failed on an earlier iteration"""
        if self.holder.closed:
            return
        try:
            self.holder.replace()
        except BindError:
            time.sleep(self.rebind_backoff)
            raise
        self.state = LoopState.SERVING
        logger.info("UDP socket recovered")
