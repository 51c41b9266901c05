# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Feature extraction from a completed session log.

Events are ``[type, connection_id, payload, timestamp]``. Events without a
connection id (media acquisition, location, close) describe the client;
the rest are grouped per peer connection.
"""

import json
import logging
from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..capture.session_ingestor import SENSITIVE_MEDIA_EVENTS
from ..shared.results import ExtractionResult

logger = logging.getLogger(__name__)

STREAM_EVENTS = frozenset({"addStream", "onaddstream", "addTrack", "ontrack"})


def parse_log(lines: Iterable[str]) -> Tuple[Dict[str, Any], List[list]]:
    """
    Split a session log into its metadata record and event records.

    Unparseable event lines are skipped.

    Raises:
        ValueError: If the log is empty or the first line is not a metadata object
    """
    iterator = iter(lines)
    try:
        first = next(iterator)
    except StopIteration:
        raise ValueError("empty session log")

    metadata = json.loads(first)
    if not isinstance(metadata, dict):
        raise ValueError("first line is not a metadata record")

    events = []
    for number, line in enumerate(iterator, start=2):
        line = line.strip()
        if not line:
            continue
        try:
            event = json.loads(line)
        except ValueError:
            logger.warning(f"Skipping unparseable line {number}")
            continue
        if isinstance(event, list) and len(event) >= 2:
            events.append(event)
    return metadata, events


def _timestamp(event: list) -> Optional[float]:
    if len(event) > 3 and isinstance(event[3], (int, float)):
        return event[3]
    return None


def extract_client_features(metadata: Dict[str, Any], events: List[list]) -> Dict[str, Any]:
    """Features describing the client as a whole."""
    features: Dict[str, Any] = {
        'userAgent': metadata.get('userAgent'),
        'origin': metadata.get('origin'),
        'path': metadata.get('path'),
        'fileFormat': metadata.get('fileFormat'),
        'eventCount': 0,
        'location': None,
        'getUserMediaCalls': 0,
        'getUserMediaSuccess': 0,
        'getUserMediaFailure': 0,
        'peerConnectionCount': len({str(e[1]) for e in events if e[1] is not None}),
    }

    end_time = None
    for event in events:
        kind = event[0]
        if kind == 'location':
            features['location'] = event[2] if len(event) > 2 else None
            continue
        if kind == 'close':
            end_time = _timestamp(event)
            continue

        features['eventCount'] += 1
        if kind in SENSITIVE_MEDIA_EVENTS:
            if kind.endswith('OnSuccess'):
                features['getUserMediaSuccess'] += 1
            elif kind.endswith('OnFailure'):
                features['getUserMediaFailure'] += 1
            else:
                features['getUserMediaCalls'] += 1

    start_time = metadata.get('time')
    if isinstance(start_time, (int, float)) and end_time is not None:
        features['sessionDuration'] = end_time - start_time
    else:
        features['sessionDuration'] = None
    return features


def extract_connection_features(events: List[list]) -> Dict[str, Any]:
    """Features of a single peer connection."""
    timestamps = [t for t in (_timestamp(e) for e in events) if t is not None]
    ice_states: List[str] = []
    signaling_state = None
    ice_server_count = None

    for event in events:
        kind, payload = event[0], event[2] if len(event) > 2 else None
        if kind == 'oniceconnectionstatechange' and isinstance(payload, str):
            ice_states.append(payload)
        elif kind == 'onsignalingstatechange' and isinstance(payload, str):
            signaling_state = payload
        elif kind == 'create' and isinstance(payload, dict):
            ice_server_count = len(payload.get('iceServers') or [])

    first = min(timestamps) if timestamps else None
    last = max(timestamps) if timestamps else None
    return {
        'eventCount': len(events),
        'firstTimestamp': first,
        'lastTimestamp': last,
        'lifeTime': (last - first) if timestamps else None,
        'iceConnectionStates': ice_states,
        'connected': any(s in ('connected', 'completed') for s in ice_states),
        'lastSignalingState': signaling_state,
        'iceServerCount': ice_server_count,
    }


def extract_stream_features(events: List[list]) -> Dict[str, Any]:
    """Features of the media streams/tracks seen on a peer connection."""
    stream_events = 0
    kinds = set()
    for event in events:
        if event[0] not in STREAM_EVENTS:
            continue
        stream_events += 1
        payload = event[2] if len(event) > 2 else None
        if isinstance(payload, str):
            # "streamid audio:trackid video:trackid" or "kind:trackid streamids"
            for token in payload.split():
                kind = token.split(':', 1)[0]
                if kind in ('audio', 'video') and ':' in token:
                    kinds.add(kind)
    return {
        'streamEventCount': stream_events,
        'trackKinds': sorted(kinds),
    }


def extract(session_id: str, lines: Iterable[str]) -> List[ExtractionResult]:
    """
    Extract per-connection results from a session log.

    A session without peer connections yields a single client-only result.
    """
    metadata, events = parse_log(lines)
    client_features = extract_client_features(metadata, events)

    connections: "OrderedDict[str, List[list]]" = OrderedDict()
    for event in events:
        if event[1] is not None:
            connections.setdefault(str(event[1]), []).append(event)

    origin = metadata.get('url') or metadata.get('origin')
    if not connections:
        return [ExtractionResult(origin, session_id, None, client_features)]

    return [
        ExtractionResult(
            origin=origin,
            session_id=session_id,
            connection_id=connection_id,
            client_features=client_features,
            connection_features=extract_connection_features(connection_events),
            stream_features=extract_stream_features(connection_events),
        )
        for connection_id, connection_events in connections.items()
    ]
