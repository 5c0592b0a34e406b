"""
End-to-end tests: run the server as a separate process and drive it over UDP
"""

import os
import signal
import socket
import subprocess
import sys
import time
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
LOOPBACK = "127.0.0.1"


def free_port() -> int:
    probe = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    probe.bind((LOOPBACK, 0))
    port = probe.getsockname()[1]
    probe.close()
    return port


def start_server(*args):
    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join(
        [str(ROOT / "src")] + [p for p in [env.get("PYTHONPATH")] if p])
    env.pop("UDP_ECHO_DAEMON_IDX", None)
    return subprocess.Popen(
        [sys.executable, "-m", "udp_echo.server", *args],
        env=env,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    )


def wait_for_echo(port: int, payload: bytes = b"ready?", deadline: float = 10.0) -> bytes:
    client = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    client.settimeout(0.2)
    try:
        end = time.monotonic() + deadline
        while time.monotonic() < end:
            client.sendto(payload, (LOOPBACK, port))
            try:
                return client.recvfrom(2048)[0]
            except (socket.timeout, ConnectionRefusedError):
                continue
        raise AssertionError("server never answered")
    finally:
        client.close()


@pytest.fixture
def server_process():
    port = free_port()
    proc = start_server("-i", LOOPBACK, "-p", str(port))
    yield proc, port
    if proc.poll() is None:
        proc.kill()
        proc.wait(5)


class TestServerProcess:
    """Startup, echo and graceful shutdown"""

    def test_echoes_truncated_payload(self, server_process):
        proc, port = server_process

        assert wait_for_echo(port) == b"ready?"
        assert wait_for_echo(port, b"0123456789abcdef") == b"01234567"

    @pytest.mark.parametrize("signum", [signal.SIGTERM, signal.SIGINT])
    def test_signal_shuts_down_cleanly(self, server_process, signum):
        proc, port = server_process
        wait_for_echo(port)

        proc.send_signal(signum)
        _, stderr = proc.communicate(timeout=10)

        assert proc.returncode == 0
        assert "Shutting down server..." in stderr
        assert "Error handling UDP communication" not in stderr

        # socket has been released
        rebound = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        rebound.bind((LOOPBACK, port))
        rebound.close()

    def test_startup_announcement(self, server_process):
        proc, port = server_process
        wait_for_echo(port)

        proc.send_signal(signal.SIGTERM)
        _, stderr = proc.communicate(timeout=10)

        assert f"UDP server is running on {LOOPBACK}:{port}" in stderr


class TestStartupFailures:
    """Fatal conditions before the loop starts"""

    def test_port_in_use_is_fatal(self):
        occupied = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        occupied.bind((LOOPBACK, 0))
        port = occupied.getsockname()[1]
        try:
            proc = start_server("-i", LOOPBACK, "-p", str(port))
            _, stderr = proc.communicate(timeout=10)
        finally:
            occupied.close()

        assert proc.returncode == 1
        assert "Failed to initialize UDP connection" in stderr

    def test_invalid_address_is_fatal(self):
        proc = start_server("-i", "999.1.1.1", "-p", str(free_port()))
        _, stderr = proc.communicate(timeout=30)

        assert proc.returncode == 1
        assert "Failed to initialize UDP connection" in stderr

    def test_invalid_port_rejected(self):
        proc = start_server("-p", "70000")
        _, stderr = proc.communicate(timeout=10)

        assert proc.returncode == 1
        assert "Invalid port" in stderr
