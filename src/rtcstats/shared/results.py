# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""Structured extraction results exchanged between workers and the server."""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional


@dataclass
class ExtractionResult:
    """One per-connection result emitted by an extraction worker."""

    origin: Optional[str]
    session_id: str
    connection_id: Optional[str]
    client_features: Dict[str, Any] = field(default_factory=dict)
    connection_features: Dict[str, Any] = field(default_factory=dict)
    stream_features: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "ExtractionResult":
        """
        Build a result from a worker message.

        Raises:
            ValueError: If the message has no session id
        """
        session_id = message.get("session_id")
        if not session_id:
            raise ValueError("worker message has no session_id")
        return cls(
            origin=message.get("origin"),
            session_id=str(session_id),
            connection_id=message.get("connection_id"),
            client_features=message.get("client_features") or {},
            connection_features=message.get("connection_features") or {},
            stream_features=message.get("stream_features") or {},
        )

    def to_message(self) -> Dict[str, Any]:
        return asdict(self)
