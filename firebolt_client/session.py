"""
Firebolt Session State

The engine changes client-side session state through response headers:

- ``Firebolt-Update-Endpoint``: new engine URL, optionally with session
  parameters in its query string
- ``Firebolt-Update-Parameters``: ``key=value`` pairs, comma separated
- ``Firebolt-Reset-Session``: drop all parameters except the database and
  engine selection
- ``Firebolt-Remove-Parameters``: parameter names, comma separated

Parsing and applying are kept apart from the HTTP layer: parse_signals()
turns headers into a HeaderSignals record, apply_signals() folds it into a
new SessionState.

@version 0.1.0
@author Firebolt SDK Team
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple
from urllib.parse import parse_qsl, urlsplit, urlunsplit

from .types import HeaderParsingError

logger = logging.getLogger(__name__)

UPDATE_ENDPOINT_HEADER = "Firebolt-Update-Endpoint"
UPDATE_PARAMETERS_HEADER = "Firebolt-Update-Parameters"
RESET_SESSION_HEADER = "Firebolt-Reset-Session"
REMOVE_PARAMETERS_HEADER = "Firebolt-Remove-Parameters"

DATABASE_PARAMETER = "database"
ENGINE_PARAMETER = "engine"
PRESERVED_ON_RESET = frozenset({DATABASE_PARAMETER, ENGINE_PARAMETER})


@dataclass(frozen=True)
class SessionState:
    """Current engine endpoint and session parameters."""
    endpoint: str
    parameters: Mapping[str, str] = field(default_factory=dict)

    def with_endpoint(self, endpoint: str) -> "SessionState":
        return replace(self, endpoint=endpoint)

    def with_parameters(self, parameters: Mapping[str, str]) -> "SessionState":
        return replace(self, parameters=dict(parameters))


@dataclass(frozen=True)
class HeaderSignals:
    """Session updates carried by one response."""
    endpoint: Optional[str] = None
    endpoint_parameters: Mapping[str, str] = field(default_factory=dict)
    update_parameters: Mapping[str, str] = field(default_factory=dict)
    reset_session: bool = False
    remove_parameters: Tuple[str, ...] = ()

    @property
    def empty(self) -> bool:
        return (
            self.endpoint is None
            and not self.update_parameters
            and not self.reset_session
            and not self.remove_parameters
        )


def split_endpoint(url: str) -> Tuple[str, Dict[str, str]]:
    """
    Separate an endpoint URL from the session parameters in its query string.

    Example:
        >>> split_endpoint("https://e1.firebolt.io?engine=e1")
        ('https://e1.firebolt.io', {'engine': 'e1'})
    """
    url = url.strip()
    if not url:
        raise HeaderParsingError("Empty endpoint")
    if "://" not in url:
        url = f"https://{url}"

    parts = urlsplit(url)
    if not parts.netloc:
        raise HeaderParsingError(f"Endpoint has no host: '{url}'")
    params: Dict[str, str] = {}
    try:
        if parts.query:
            params = dict(parse_qsl(parts.query, keep_blank_values=True, strict_parsing=True))
    except ValueError as e:
        raise HeaderParsingError(f"Malformed endpoint query string in '{url}': {e}") from e

    base = urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
    return base, params


def _parse_pairs(value: str) -> Dict[str, str]:
    pairs: Dict[str, str] = {}
    for item in value.split(","):
        item = item.strip()
        if not item:
            continue
        key, sep, val = item.partition("=")
        key = key.strip()
        if not sep or not key:
            raise HeaderParsingError(
                f"Malformed {UPDATE_PARAMETERS_HEADER} entry '{item}', expected key=value"
            )
        pairs[key] = val.strip()
    return pairs


def _parse_names(value: str) -> List[str]:
    return [name.strip() for name in value.split(",") if name.strip()]


def parse_signals(headers: Iterable[Tuple[str, str]]) -> HeaderSignals:
    """
    Collect session signals from response headers.

    Header names are matched case-sensitively. Repeated parameter headers
    accumulate; when the endpoint is updated more than once, the last value
    wins.

    Raises:
        HeaderParsingError: a signal header value cannot be parsed
    """
    endpoint: Optional[str] = None
    endpoint_parameters: Dict[str, str] = {}
    updates: Dict[str, str] = {}
    reset = False
    removals: List[str] = []

    for name, value in headers:
        if name == UPDATE_ENDPOINT_HEADER:
            endpoint, endpoint_parameters = split_endpoint(value)
        elif name == UPDATE_PARAMETERS_HEADER:
            updates.update(_parse_pairs(value))
        elif name == RESET_SESSION_HEADER:
            reset = True
        elif name == REMOVE_PARAMETERS_HEADER:
            removals.extend(_parse_names(value))

    return HeaderSignals(
        endpoint=endpoint,
        endpoint_parameters=endpoint_parameters,
        update_parameters=updates,
        reset_session=reset,
        remove_parameters=tuple(removals),
    )


def apply_signals(
    state: SessionState,
    signals: HeaderSignals,
    preserved: FrozenSet[str] = PRESERVED_ON_RESET,
) -> SessionState:
    """
    Fold signals into a new state.

    Order is fixed: endpoint update, parameter merge, session reset,
    parameter removal. The input state is left untouched.
    """
    endpoint = state.endpoint
    params = dict(state.parameters)

    if signals.endpoint is not None:
        endpoint = signals.endpoint
        params.update(signals.endpoint_parameters)

    params.update(signals.update_parameters)

    if signals.reset_session:
        params = {k: v for k, v in params.items() if k in preserved}

    for key in signals.remove_parameters:
        params.pop(key, None)

    return SessionState(endpoint=endpoint, parameters=params)


class HeaderProtocolHandler:
    """Applies response-header signals to a SessionState."""

    def __init__(self, preserved: Iterable[str] = PRESERVED_ON_RESET):
        self.preserved = frozenset(preserved)

    def handle(
        self,
        state: SessionState,
        headers: Iterable[Tuple[str, str]],
    ) -> SessionState:
        """Return the state after the response; raises HeaderParsingError."""
        signals = parse_signals(headers)
        if signals.empty:
            return state

        new_state = apply_signals(state, signals, self.preserved)
        if new_state.endpoint != state.endpoint:
            logger.info("Engine endpoint changed to %s", new_state.endpoint)
        if signals.reset_session:
            logger.info("Session reset by server")
        return new_state
