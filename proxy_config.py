import logging
import math
import os
from dataclasses import dataclass, fields

import yaml

from wol import BROADCAST_IP, encode_magic_packet

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = '/etc/wake_on_lan_proxy/config.yaml'
DEFAULT_REQUEST_TIMEOUT = 30  # seconds
DEFAULT_THREADS = 16
ENV_PREFIX = 'WOL_PROXY_'

REQUIRED_KEYS = (
    "listen_port",
    "mac_address",
    "server_address",
    "wol_port",
    "check_interval",
    "retry_attempts",
)
INT_KEYS = {"wol_port", "retry_attempts", "threads"}
FLOAT_KEYS = {"check_interval", "request_timeout"}


class ConfigInvalid(Exception):
    """Configuration is missing or malformed."""


def parse_listen_address(listen_port):
    """
    Split a listen address into (host, port).

    Accepts "8080", ":8080" and "host:8080". An empty host means all
    interfaces.
    """
    value = str(listen_port).strip()
    host, sep, port = value.rpartition(':')
    if not sep:
        host, port = '', value
    host = host.strip('[]') or '0.0.0.0'
    try:
        port = int(port)
    except ValueError:
        raise ConfigInvalid(f"Invalid listen_port {listen_port!r}: port is not a number")
    if not 0 < port < 65536:
        raise ConfigInvalid(f"Invalid listen_port {listen_port!r}: port out of range")
    return host, port


@dataclass(frozen=True)
class ProxyConfig:
    listen_port: str
    mac_address: str
    server_address: str
    wol_port: int
    check_interval: float
    retry_attempts: int
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    broadcast_address: str = BROADCAST_IP
    threads: int = DEFAULT_THREADS

    @classmethod
    def from_mapping(cls, values):
        """Validate a raw mapping and build a config from it.

        Raises ConfigInvalid for missing or malformed values and
        InvalidAddress for a MAC address that can't be encoded.
        """
        if not isinstance(values, dict):
            raise ConfigInvalid("Configuration must be a mapping of keys to values")

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            logger.warning(f"Ignoring unknown configuration keys: {unknown}")

        missing = [key for key in REQUIRED_KEYS if values.get(key) in (None, '')]
        if missing:
            raise ConfigInvalid(f"Missing required configuration values: {missing}")

        config = {}
        for key in known:
            if values.get(key) in (None, ''):
                continue
            value = values[key]
            try:
                if key in INT_KEYS:
                    if isinstance(value, float) and not value.is_integer():
                        raise ValueError("not a whole number")
                    value = int(value)
                elif key in FLOAT_KEYS:
                    value = float(value)
                    if not math.isfinite(value):
                        raise ValueError("not a finite number")
                else:
                    value = str(value).strip()
            except (ValueError, TypeError) as e:
                raise ConfigInvalid(f"Invalid value for {key}: {value!r} - {e}")
            if key in INT_KEYS | FLOAT_KEYS and value <= 0:
                raise ConfigInvalid(f"{key} must be greater than zero, got {value}")
            config[key] = value

        if not 0 < config["wol_port"] < 65536:
            raise ConfigInvalid(f"wol_port out of range: {config['wol_port']}")
        parse_listen_address(config["listen_port"])
        if config["server_address"].startswith(('http://', 'https://')) or '/' in config["server_address"]:
            raise ConfigInvalid(f"server_address must be host or host:port, got {config['server_address']!r}")
        encode_magic_packet(config["mac_address"])

        return cls(**config)

    @property
    def listen_address(self):
        return parse_listen_address(self.listen_port)

    @property
    def server_url(self):
        return f"http://{self.server_address}"


def apply_env_overrides(values, environ=None):
    environ = os.environ if environ is None else environ
    values = dict(values)
    override_count = 0
    for f in fields(ProxyConfig):
        env_key = ENV_PREFIX + f.name.upper()
        if env_key in environ:
            values[f.name] = environ[env_key]
            logger.debug(f"Applied config: key='{f.name}' (from env var '{env_key}')")
            override_count += 1
    logger.debug(f"Applied {override_count} configuration overrides from environment variables")
    return values


def load_config(path=DEFAULT_CONFIG_PATH, environ=None):
    """Load the YAML config at `path`, apply env overrides and validate it."""
    logger.debug(f"Loading configuration from {path}")
    try:
        with open(path, 'r') as file:
            values = yaml.safe_load(file)
    except OSError as e:
        raise ConfigInvalid(f"Unable to read config file {path}: {e}")
    except yaml.YAMLError as e:
        raise ConfigInvalid(f"Invalid YAML in config file {path}: {e}")

    if values is None:
        values = {}
    if not isinstance(values, dict):
        raise ConfigInvalid(f"Config file {path} must contain a mapping")

    return ProxyConfig.from_mapping(apply_env_overrides(values, environ))
