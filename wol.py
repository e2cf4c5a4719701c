import logging
import re

import wakeonlan

logger = logging.getLogger(__name__)

BROADCAST_IP = '255.255.255.255'

# Colon or hyphen separated octets, Cisco style dotted groups, or bare hex.
_MAC_PATTERNS = (
    re.compile(r'^[0-9A-Fa-f]{2}([:-])(?:[0-9A-Fa-f]{2}\1){4}[0-9A-Fa-f]{2}$'),
    re.compile(r'^[0-9A-Fa-f]{4}\.[0-9A-Fa-f]{4}\.[0-9A-Fa-f]{4}$'),
    re.compile(r'^[0-9A-Fa-f]{12}$'),
)


class InvalidAddress(ValueError):
    """The hardware address can't be parsed into 6 octets."""


class TransmitFailed(Exception):
    """The magic packet couldn't be handed to the network layer."""


def parse_mac_address(mac_address):
    """Return the 6 octets of `mac_address` or raise InvalidAddress."""
    if not isinstance(mac_address, str):
        raise InvalidAddress(f"MAC address must be a string, got {type(mac_address).__name__}")
    mac_address = mac_address.strip()
    if not any(pattern.match(mac_address) for pattern in _MAC_PATTERNS):
        raise InvalidAddress(f"Invalid MAC address: {mac_address!r}")
    return bytes.fromhex(re.sub(r'[:.-]', '', mac_address))


def encode_magic_packet(mac_address):
    """
    Build the Wake-on-LAN payload for `mac_address`.

    The payload is 6 bytes of 0xFF followed by the address repeated 16
    times. Nothing is returned for an address that doesn't parse.
    """
    octets = parse_mac_address(mac_address)
    return wakeonlan.create_magic_packet(octets.hex())


def send_wol_packet(mac_address, port, ip_address=BROADCAST_IP):
    # Validate first so a bad address never reaches the socket.
    octets = parse_mac_address(mac_address)
    logger.info(f"Sending WoL packet to {mac_address} via {ip_address}:{port}")
    try:
        wakeonlan.send_magic_packet(octets.hex(), ip_address=ip_address, port=port)
    except OSError as e:
        logger.error(f"Failed to send WoL packet to {mac_address} via {ip_address}:{port}: {e}")
        raise TransmitFailed(f"Failed to send WoL packet to {ip_address}:{port}: {e}") from e
    logger.debug("WoL packet handed to the network layer")
