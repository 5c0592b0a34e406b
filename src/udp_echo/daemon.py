#!/usr/bin/env python3
"""
Daemon Supervision
Detaches the echo server from the terminal and restarts it when it crashes.

The same command line is re-executed in up to three roles, told apart by the
UDP_ECHO_DAEMON_IDX environment variable:
  0 - launcher: starts the supervisor in a new session, then exits
  1 - supervisor: runs the worker, restarts it on abnormal exit
  2 - worker: Daemon.run() returns and the server starts normally
"""

import os
import sys
import time
import signal
import logging
import subprocess
from typing import List, Optional

logger = logging.getLogger(__name__)

ENV_NAME = "UDP_ECHO_DAEMON_IDX"

ROLE_LAUNCHER = 0
ROLE_SUPERVISOR = 1
ROLE_WORKER = 2


def daemon_index() -> int:
    try:
        return int(os.getenv(ENV_NAME, "0"))
    except ValueError:
        return ROLE_LAUNCHER


def current_command() -> List[str]:
    """Command line that restarts this same program"""
    return [sys.executable] + sys.orig_argv[1:]


class Daemon:
    """Background launcher and crash-restart supervisor"""

    def __init__(self, log_file: str, max_count: int = 2, max_error: int = 3,
                 min_exit_time: float = 10.0):
        self.log_file = log_file
        self.max_count = max_count        # restarts before giving up
        self.max_error = max_error        # consecutive quick exits before giving up
        self.min_exit_time = min_exit_time
        self._child: Optional[subprocess.Popen] = None
        self._stopping = False

    def run(self):
        """Return only in the worker process; other roles exit here"""
        role = daemon_index()
        if role == ROLE_LAUNCHER:
            proc = self.spawn(ROLE_SUPERVISOR, new_session=True)
            logger.info(f"Daemon started in background (pid {proc.pid}), logging to {self.log_file}")
            sys.exit(0)
        if role == ROLE_SUPERVISOR:
            sys.exit(self.supervise())

    def spawn(self, role: int, new_session: bool = False) -> subprocess.Popen:
        env = dict(os.environ)
        env[ENV_NAME] = str(role)
        with open(self.log_file, 'a') as log:
            return subprocess.Popen(
                current_command(),
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=log,
                stderr=subprocess.STDOUT,
                start_new_session=new_session,
            )

    def supervise(self) -> int:
        """Keep a worker alive; returns the exit status for the supervisor"""
        signal.signal(signal.SIGTERM, self._forward_signal)
        signal.signal(signal.SIGINT, self._forward_signal)

        restarts = 0
        quick_exits = 0
        while True:
            started = time.monotonic()
            self._child = self.spawn(ROLE_WORKER)
            logger.info(f"Worker started (pid {self._child.pid})")
            status = self._child.wait()
            lived = time.monotonic() - started

            if status == 0 or self._stopping:
                logger.info(f"Worker exited with status {status}, supervisor stopping")
                return 0

            if lived < self.min_exit_time:
                quick_exits += 1
            else:
                quick_exits = 0

            if restarts >= self.max_count:
                logger.error(f"Worker exited with status {status}; restart limit {self.max_count} reached")
                return 1
            if quick_exits > self.max_error:
                logger.error(f"Worker exited too quickly {quick_exits} times in a row, giving up")
                return 1

            restarts += 1
            logger.warning(f"Worker exited with status {status} after {lived:.1f}s, "
                           f"restarting ({restarts}/{self.max_count})")

    def _forward_signal(self, signum, frame):
        self._stopping = True
        if self._child is not None and self._child.poll() is None:
            self._child.send_signal(signum)
