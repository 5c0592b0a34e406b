#!/usr/bin/env python3
"""
UDP Echo Server Configuration Loader
Environment defaults, optional YAML file, then command-line overrides
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Optional

import yaml

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str) -> Optional[float]:
    value = os.getenv(name)
    return float(value) if value else None


@dataclass
class ServerConfig:
    """Listener settings"""
    ip: str = field(default_factory=lambda: os.getenv('UDP_ECHO_IP', '0.0.0.0'))
    port: int = field(default_factory=lambda: int(os.getenv('UDP_ECHO_PORT', '23832')))
    verbose: bool = field(default_factory=lambda: _env_bool('UDP_ECHO_VERBOSE'))
    # No receive/send deadline unless one is configured
    read_timeout: Optional[float] = field(
        default_factory=lambda: _env_float('UDP_ECHO_READ_TIMEOUT'))
    rebind_backoff: float = 1.0
    shutdown_grace: float = 2.0


@dataclass
class DaemonConfig:
    """Process supervision settings"""
    enabled: bool = field(default_factory=lambda: _env_bool('UDP_ECHO_DAEMON'))
    log_file: str = field(default_factory=lambda: os.getenv('UDP_ECHO_LOG_FILE', 'daemon.log'))
    max_count: int = field(
        default_factory=lambda: int(os.getenv('UDP_ECHO_MAX_RESTARTS', '2')))
    max_error: int = 3
    min_exit_time: float = 10.0


@dataclass
class EchoConfig:
    """Complete service configuration"""
    server: ServerConfig = field(default_factory=ServerConfig)
    daemon: DaemonConfig = field(default_factory=DaemonConfig)


class ConfigLoader:
    """Loads and validates the echo server configuration"""

    @staticmethod
    def load(config_path: Optional[str] = None) -> EchoConfig:
        """Load configuration from a YAML file (environment defaults if None)"""
        try:
            if config_path is None:
                return EchoConfig()

            with open(config_path, 'r') as f:
                raw = yaml.safe_load(f) or {}

            logger.info(f"Loaded configuration from {config_path}")
            return ConfigLoader._parse_config(raw)

        except FileNotFoundError:
            logger.error(f"Config file not found: {config_path}")
            raise
        except yaml.YAMLError as e:
            logger.error(f"YAML parsing error: {e}")
            raise
        except (ValueError, TypeError) as e:
            logger.error(f"Invalid configuration value: {e}")
            raise

    @staticmethod
    def _parse_config(config: dict) -> EchoConfig:
        """Overlay the YAML sections on the environment defaults"""
        if not isinstance(config, dict):
            raise ValueError(f"top level must be a mapping, got {type(config).__name__}")
        result = EchoConfig()

        srv = ConfigLoader._section(config, 'server')
        if 'ip' in srv:
            result.server.ip = str(srv['ip'])
        if 'port' in srv:
            result.server.port = int(srv['port'])
        if 'verbose' in srv:
            result.server.verbose = bool(srv['verbose'])
        if srv.get('read_timeout') is not None:
            result.server.read_timeout = float(srv['read_timeout'])
        if 'rebind_backoff' in srv:
            result.server.rebind_backoff = float(srv['rebind_backoff'])
        if 'shutdown_grace' in srv:
            result.server.shutdown_grace = float(srv['shutdown_grace'])

        dmn = ConfigLoader._section(config, 'daemon')
        if 'enabled' in dmn:
            result.daemon.enabled = bool(dmn['enabled'])
        if 'log_file' in dmn:
            result.daemon.log_file = str(dmn['log_file'])
        if 'max_count' in dmn:
            result.daemon.max_count = int(dmn['max_count'])
        if 'max_error' in dmn:
            result.daemon.max_error = int(dmn['max_error'])
        if 'min_exit_time' in dmn:
            result.daemon.min_exit_time = float(dmn['min_exit_time'])

        return result

    @staticmethod
    def _section(config: dict, name: str) -> dict:
        section = config.get(name) or {}
        if not isinstance(section, dict):
            raise ValueError(f"'{name}' section must be a mapping")
        return section

    @staticmethod
    def apply_overrides(config: EchoConfig, ip: Optional[str] = None,
                        port: Optional[int] = None, daemon: bool = False,
                        verbose: bool = False,
                        read_timeout: Optional[float] = None) -> EchoConfig:
        """Command-line flags win over file and environment values"""
        if ip is not None:
            config.server.ip = ip
        if port is not None:
            config.server.port = port
        if daemon:
            config.daemon.enabled = True
        if verbose:
            config.server.verbose = True
        if read_timeout is not None:
            config.server.read_timeout = read_timeout
        return config

    @staticmethod
    def validate(config: EchoConfig) -> bool:
        """Validate configuration consistency"""
        srv = config.server

        if not srv.ip:
            logger.error("Listen address must not be empty")
            return False

        if not 0 <= srv.port <= 65535:
            logger.error(f"Invalid port {srv.port}: must be within 0-65535")
            return False

        if srv.read_timeout is not None and srv.read_timeout <= 0:
            logger.error("read_timeout must be > 0")
            return False

        if srv.rebind_backoff < 0 or srv.shutdown_grace <= 0:
            logger.error("rebind_backoff must be >= 0 and shutdown_grace > 0")
            return False

        dmn = config.daemon
        if dmn.max_count < 0 or dmn.max_error < 0:
            logger.error("Daemon restart limits must be >= 0")
            return False

        if dmn.enabled and not dmn.log_file:
            logger.error("Daemon mode requires a log_file")
            return False

        return True
