"""
Turns loosely keyed log rows into cleaned, ordered per-session journeys.

rows -> normalize_row -> build_sessions -> canonicalize_sessions
"""

import math
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from tqdm import tqdm

from flow_config import DEFAULT_CONFIG, FlowConfig


def _cell_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return ""
    return str(value)


def _lower_key_map(row: Mapping) -> Dict[str, str]:
    return {str(key).lower(): key for key in row.keys()}


def lookup_field(row: Mapping, column: str, key_map: Optional[Dict[str, str]] = None) -> str:
    """Case-insensitive field lookup. Returns '' when the column is missing."""
    if key_map is None:
        key_map = _lower_key_map(row)
    key = key_map.get(column.lower())
    if key is None:
        return ""
    return _cell_text(row[key])


def _first_match_field(row: Mapping, column: str) -> str:
    # first header matching case-insensitively wins, unlike lookup_field
    wanted = column.lower()
    for key in row.keys():
        if str(key).lower() == wanted:
            return _cell_text(row[key])
    return ""


def normalize_event(raw_event: str, config: FlowConfig = DEFAULT_CONFIG) -> str:
    """Map a raw method name onto a canonical step.

    Exact aliases win, then the first vocabulary step the lowercased name
    starts with. Anything else is kept verbatim as an unknown step.
    """
    lowered = raw_event.lower()
    if lowered in config.aliases:
        return config.aliases[lowered]
    for step in config.event_order:
        if lowered.startswith(step.lower()):
            return step
    return raw_event


def is_noise_event(raw_event: str, config: FlowConfig = DEFAULT_CONFIG) -> bool:
    if not config.noise_markers:
        return False
    return all(marker in raw_event for marker in config.noise_markers)


def normalize_row(row: Mapping, config: FlowConfig = DEFAULT_CONFIG) -> Optional[Tuple[str, str, str]]:
    """Extract (client_id, session_id, step) from a raw row.

    Returns None for rows missing any of the three fields and for noise
    events; those rows are dropped without complaint.
    """
    key_map = _lower_key_map(row)
    client = lookup_field(row, config.client_column, key_map).strip()
    session_id = lookup_field(row, config.session_column, key_map).strip()
    raw_event = lookup_field(row, config.event_column, key_map).strip()

    if not client or not session_id or not raw_event:
        return None
    if is_noise_event(raw_event, config):
        return None

    return client, session_id, normalize_event(raw_event, config)


def filter_rows_by_client(rows: List[Mapping], client_filter: Optional[str],
                          config: FlowConfig = DEFAULT_CONFIG) -> List[Mapping]:
    """Keep rows whose client id contains client_filter (case-insensitive)."""
    if not client_filter or not client_filter.strip():
        return list(rows)

    needle = client_filter.lower()
    return [row for row in rows
            if needle in _first_match_field(row, config.client_column).lower()]


def build_sessions(rows: Iterable[Mapping], config: FlowConfig = DEFAULT_CONFIG) -> Dict[str, Dict]:
    """Group rows by session id, preserving arrival order.

    The client recorded for a session is the first one seen; later rows with
    another client for the same session id only contribute their event.
    """
    sessions = {}

    for row in rows:
        normalized = normalize_row(row, config)
        if normalized is None:
            continue
        client, session_id, step = normalized

        if session_id not in sessions:
            sessions[session_id] = {
                'session_id': session_id,
                'client': client,
                'events': []
            }
        sessions[session_id]['events'].append(step)

    return sessions


def canonicalize_events(events: List[str], config: FlowConfig = DEFAULT_CONFIG) -> List[str]:
    # sorted() is stable, so unknown labels keep their arrival order
    ordered = sorted(events, key=config.rank)

    cleaned = []
    for step in ordered:
        if not cleaned or cleaned[-1] != step:
            cleaned.append(step)

    if config.terminal_step in cleaned:
        cleaned = cleaned[:cleaned.index(config.terminal_step) + 1]

    return cleaned


def canonicalize_sessions(sessions: Dict[str, Dict], config: FlowConfig = DEFAULT_CONFIG,
                          show_progress: bool = False) -> Dict[str, Dict]:
    """Sort, de-duplicate and truncate every session's events in place."""
    for session in tqdm(sessions.values(), desc="Building sessions", disable=not show_progress):
        session['events'] = canonicalize_events(session['events'], config)
    return sessions


def session_path(session: Dict) -> List[str]:
    return [session['client']] + list(session['events'])


def is_completed(session: Dict, config: FlowConfig = DEFAULT_CONFIG) -> bool:
    events = session['events']
    return bool(events) and events[-1] == config.terminal_step
