# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Payload redaction for inbound telemetry events.

Masks network addresses (ICE candidates, SDP, stats reports) and drops
credentials before an event is written to disk. Events are modified in place.
"""

import ipaddress
import re
from typing import Any

REDACTED = "[redacted]"

ADDRESS_KEYS = frozenset({"ip", "address", "ipAddress", "relatedAddress", "ipAddr"})
SECRET_KEYS = frozenset({"credential", "password", "username"})

ADDRESS_PATTERN = re.compile(r"(?<![\w:.])[0-9a-fA-F:.]{2,45}(?![\w:.])")


def _mask(match: re.Match) -> str:
    candidate = match.group(0)
    try:
        address = ipaddress.ip_address(candidate)
    except ValueError:
        return candidate
    if address.version == 4:
        return candidate.rsplit(".", 1)[0] + ".x"
    groups = address.exploded.split(":")
    return ":".join(group.lstrip("0") or "0" for group in groups[:3]) + "::x"


def mask_addresses(text: str) -> str:
    """Mask every IPv4/IPv6 address found in ``text``."""
    return ADDRESS_PATTERN.sub(_mask, text)


def _redact_value(value: Any) -> Any:
    if isinstance(value, str):
        return mask_addresses(value)
    if isinstance(value, dict):
        for key in list(value.keys()):
            item = value[key]
            if key in SECRET_KEYS:
                value[key] = REDACTED
            elif key in ADDRESS_KEYS and isinstance(item, str):
                value[key] = mask_addresses(item)
            else:
                value[key] = _redact_value(item)
        return value
    if isinstance(value, list):
        for i, item in enumerate(value):
            value[i] = _redact_value(item)
        return value
    return value


def redact(event: list) -> list:
    """
    Redact an event's payload in place.

    Args:
        event: Tagged event ``[type, connection_id, payload, ...]``

    Returns:
        The same event object
    """
    if len(event) > 2:
        event[2] = _redact_value(event[2])
    return event
