#!/usr/bin/env python3
"""
UDP Truncating Echo Server
Listens on <ip>:<port>/udp and answers every datagram with its first 8 bytes

The echo loop runs in its own thread; the main thread waits for SIGINT or
SIGTERM, closes the socket and exits with status 0.
"""

import sys
import signal
import logging
import argparse
import threading
from typing import List, Optional

import yaml

from udp_echo.config_loader import ConfigLoader, ServerConfig
from udp_echo.daemon import Daemon
from udp_echo.echo_loop import EchoLoop
from udp_echo.errors import BindError
from udp_echo.socket_manager import Endpoint, SocketHolder

logger = logging.getLogger(__name__)


class EchoServer:
    """Owns the socket holder and the echo loop thread"""

    def __init__(self, config: ServerConfig):
        self.config = config
        self.endpoint = Endpoint(config.ip, config.port)
        self.holder: Optional[SocketHolder] = None
        self.stop_event = threading.Event()
        self._worker: Optional[threading.Thread] = None

    def start(self) -> Endpoint:
        """Bind the socket (BindError is fatal) and start serving"""
        self.holder = SocketHolder(self.endpoint, self.config.read_timeout)
        loop = EchoLoop(self.holder, verbose=self.config.verbose,
                        rebind_backoff=self.config.rebind_backoff)
        self._worker = threading.Thread(target=loop.serve_forever,
                                        args=(self.stop_event,),
                                        name="echo-loop", daemon=True)
        self._worker.start()
        return self.holder.bound_address

    @property
    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def stop(self):
        """Close the socket, then give the loop a bounded time to finish"""
        self.stop_event.set()
        if self.holder is None:
            return
        self.holder.close()
        if self._worker is not None:
            self._worker.join(self.config.shutdown_grace)
            if self._worker.is_alive():
                logger.warning("Echo loop did not stop within the grace period")
        self.holder.release()


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description='UDP echo server replying with the first 8 bytes of each datagram')
    parser.add_argument('-i', '--ip', default=None,
                        help='IP address to listen on (default: 0.0.0.0)')
    parser.add_argument('-p', '--port', type=int, default=None,
                        help='Port to listen on (default: 23832)')
    parser.add_argument('-d', '--daemon', action='store_true',
                        help='Run as a daemon')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Enable verbose logging')
    parser.add_argument('-c', '--config', default=None,
                        help='Optional YAML configuration file')
    parser.add_argument('--read-timeout', type=float, default=None,
                        help='Receive/send deadline in seconds; a timeout rebinds the socket')
    return parser.parse_args(argv)


def setup_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s [%(levelname)s] %(message)s'
    )


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point"""
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        config = ConfigLoader.load(args.config)
    except (OSError, yaml.YAMLError, ValueError, TypeError):
        return 1
    ConfigLoader.apply_overrides(config, ip=args.ip, port=args.port,
                                 daemon=args.daemon, verbose=args.verbose,
                                 read_timeout=args.read_timeout)
    if config.server.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if not ConfigLoader.validate(config):
        logger.error("Configuration validation failed")
        return 1

    if config.daemon.enabled:
        Daemon(config.daemon.log_file,
               max_count=config.daemon.max_count,
               max_error=config.daemon.max_error,
               min_exit_time=config.daemon.min_exit_time).run()

    shutdown = threading.Event()

    def _on_signal(signum, frame):
        shutdown.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    server = EchoServer(config.server)
    try:
        address = server.start()
    except BindError as e:
        logger.critical(f"Failed to initialize UDP connection: {e}")
        return 1

    logger.info(f"UDP server is running on {address}")

    while not shutdown.wait(0.5):
        if not server.is_running:
            logger.error("Echo loop exited unexpectedly")
            server.stop()
            return 1

    logger.info("Shutting down server...")
    server.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
