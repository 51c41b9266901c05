# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Client address extraction and coarse location lookup.

The location record is best-effort enrichment: lookups never raise and an
unknown address simply resolves to None.
"""

import ipaddress
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)


def get_request_address(headers: Mapping[str, str], remote_address: Optional[Any]) -> Optional[str]:
    """
    Determine the client's network address.

    Uses the last entry of X-Forwarded-For (the one added by our own proxy)
    when present, otherwise the socket peer address.

    Args:
        headers: Handshake request headers
        remote_address: Peer address as reported by the transport
                        (a ``(host, port, ...)`` tuple or a plain string)

    Returns:
        Address string or None if unknown
    """
    forwarded_for = headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[-1].strip() or None

    if isinstance(remote_address, (tuple, list)):
        return remote_address[0] if remote_address else None
    return remote_address


class LocationResolver(ABC):
    """Resolves a network address to a coarse location mapping."""

    @abstractmethod
    def lookup(self, address: str) -> Optional[Dict[str, Any]]:
        """Return location data for ``address`` or None."""
        raise NotImplementedError


class NullLocationResolver(LocationResolver):
    """Resolver used when no location source is configured."""

    def lookup(self, address: str) -> Optional[Dict[str, Any]]:
        return None


class NetworkTableResolver(LocationResolver):
    """
    Resolve addresses against a static CIDR table.

    Config example (config.yaml):

        geolocation:
          networks:
            "10.0.0.0/8": {country: "internal", city: "datacenter"}
            "203.0.113.0/24": {country: "DE", city: "Berlin"}

    The first matching network (in configuration order) wins.
    """

    def __init__(self, networks: Mapping[str, Dict[str, Any]]):
        self.networks: List[Tuple[Any, Dict[str, Any]]] = []
        for cidr, location in networks.items():
            try:
                network = ipaddress.ip_network(cidr, strict=False)
            except ValueError:
                logger.warning(f"Ignoring invalid geolocation network: {cidr}")
                continue
            self.networks.append((network, dict(location or {})))

        logger.info(f"Loaded {len(self.networks)} geolocation networks")

    def lookup(self, address: str) -> Optional[Dict[str, Any]]:
        try:
            ip = ipaddress.ip_address(address)
        except ValueError:
            logger.debug(f"Not an IP address, skipping location lookup: {address}")
            return None

        for network, location in self.networks:
            if ip.version == network.version and ip in network:
                return dict(location)
        return None


def create_resolver(networks: Optional[Mapping[str, Dict[str, Any]]]) -> LocationResolver:
    """Build the resolver for the configured network table."""
    if networks and isinstance(networks, Mapping):
        return NetworkTableResolver(networks)
    return NullLocationResolver()
