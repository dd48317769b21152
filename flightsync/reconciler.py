"""Merge candidate records into the canonical flight store."""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

import config
from flightsync.database import get_airport_codes, get_flight, upsert_flight
from flightsync.errors import DuplicateKey, ValidationRejected
from flightsync.models import FLIGHT_FIELDS
from flightsync.records import (
    DEFAULTED_FIELDS,
    CandidateRecord,
    airline_code_for,
    fallback_defaults,
    normalize_flight_number,
    normalize_record,
    validate_record,
)

logger = logging.getLogger(__name__)


@dataclass
class ReconcileSummary:
    """Counts reported at the end of a run."""

    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    failed: int = 0

    def add(self, action: str):
        setattr(self, action, getattr(self, action) + 1)

    def as_dict(self) -> dict:
        return {
            'inserted': self.inserted,
            'updated': self.updated,
            'unchanged': self.unchanged,
            'skipped': self.skipped,
            'failed': self.failed,
        }

    def __str__(self):
        return (
            f"{self.inserted} inserted, {self.updated} updated, {self.unchanged} unchanged, "
            f"{self.skipped} skipped, {self.failed} failed"
        )


def merge_candidates(
    candidates: list[CandidateRecord],
    prior: Optional[dict] = None,
    defaults: Optional[dict] = None,
) -> tuple[dict, Optional[str]]:
    """
    Merge candidates field by field.

    For each field the first candidate (in input order) with a value wins;
    otherwise the prior stored value is kept; otherwise the fallback default
    applies, for the fields that have one.

    Args:
        candidates: Candidate records in precedence order
        prior: Field values of the stored row being replaced, if any
        defaults: Fallback values (defaults to fallback_defaults())

    Returns:
        tuple: (merged record, provenance of the first contributing candidate)
    """
    # Invalid values count as absent
    prior = normalize_record(prior or {})
    cleaned_candidates = [(c, normalize_record(c.fields)) for c in candidates]
    defaults = defaults if defaults is not None else fallback_defaults()

    merged = {}
    source = None
    for name in FLIGHT_FIELDS:
        for candidate, fields in cleaned_candidates:
            value = fields.get(name)
            if value is not None:
                merged[name] = value
                source = source or candidate.source
                break
        else:
            if prior.get(name) is not None:
                merged[name] = prior[name]
            elif name in DEFAULTED_FIELDS:
                merged[name] = defaults[name]

    return merged, source


def _route_hint(candidates: list[CandidateRecord]) -> tuple[Optional[str], Optional[str]]:
    cleaned = [normalize_record(c.fields) for c in candidates]
    origin = next((f['origin_code'] for f in cleaned if f.get('origin_code')), None)
    destination = next((f['destination_code'] for f in cleaned if f.get('destination_code')), None)
    return origin, destination


def reconcile_flight(
    session,
    flight_number: str,
    candidates: list[CandidateRecord],
    airport_codes: Optional[set[str]] = None,
    key_policy: Optional[str] = None,
    today: Optional[date] = None,
) -> str:
    """
    Reconcile the candidates for one flight number into the store.

    Args:
        session: SQLAlchemy session
        flight_number: Flight number; the canonical form keys the row
        candidates: Candidate records for this flight, in precedence order;
            candidates naming another flight number are ignored
        airport_codes: Known airport codes (loaded from the store if omitted)
        key_policy: 'route' or 'flight_number' (defaults to config.FLIGHT_KEY_POLICY)
        today: Reference date for the effective window defaults

    Returns:
        str: 'inserted', 'updated', 'unchanged' or 'skipped'

    Raises:
        StoreUnavailable: If the store cannot be read or written
    """
    key_policy = key_policy or config.FLIGHT_KEY_POLICY
    canonical = normalize_flight_number(flight_number)
    if not canonical:
        logger.warning("Rejected %r: not a flight number", flight_number)
        return 'skipped'
    flight_number = canonical
    candidates = [c for c in candidates if c.flight_number == flight_number]

    if airport_codes is None:
        airport_codes = get_airport_codes(session)

    origin, destination = _route_hint(candidates)
    existing = get_flight(session, flight_number, origin, destination, key_policy)
    prior = existing.to_dict() if existing is not None else None

    merged, source = merge_candidates(candidates, prior, fallback_defaults(today))
    merged['flight_number'] = flight_number
    # The carrier prefix of the flight number is the airline code
    merged.setdefault('airline_code', airline_code_for(flight_number))

    try:
        validate_record(merged, airport_codes)
    except ValidationRejected as e:
        logger.warning("Rejected %s: %s", flight_number, e.reason)
        return 'skipped'

    result = upsert_flight(session, merged, existing, source or (existing.source if existing else None))
    logger.info("%s %s (%s-%s)", result['action'].capitalize(), flight_number,
                merged['origin_code'], merged['destination_code'])
    return result['action']


def group_by_flight(candidates: list[CandidateRecord]) -> dict[str, list[CandidateRecord]]:
    """Group candidates by canonical flight number, keeping first-seen order."""
    groups: dict[str, list[CandidateRecord]] = {}
    for candidate in candidates:
        flight_number = candidate.flight_number
        if flight_number:
            groups.setdefault(flight_number, []).append(candidate)
    return groups


def reconcile_batch(
    session,
    candidates: list[CandidateRecord],
    key_policy: Optional[str] = None,
    today: Optional[date] = None,
) -> ReconcileSummary:
    """
    Reconcile a batch of candidates, one flight number (and route) at a time.

    A rejected record is counted as skipped, and a write that collides with
    another stored row is counted as failed; the batch goes on. Under the
    'route' policy candidates that name different routes for the same flight
    number are reconciled as separate rows.

    Raises:
        StoreUnavailable: The only error that stops the batch
    """
    key_policy = key_policy or config.FLIGHT_KEY_POLICY
    summary = ReconcileSummary()
    airport_codes = get_airport_codes(session)

    for flight_number, group in group_by_flight(candidates).items():
        for route_group in _split_routes(group, key_policy):
            try:
                action = reconcile_flight(
                    session, flight_number, route_group, airport_codes, key_policy, today
                )
            except (DuplicateKey, KeyError, TypeError, ValueError) as e:
                logger.error("Failed to reconcile %s: %r", flight_number, e)
                summary.add('failed')
                continue
            summary.add(action)

    return summary


def _split_routes(group: list[CandidateRecord], key_policy: str) -> list[list[CandidateRecord]]:
    """
    Split one flight number's candidates by the route they name.

    Candidates without a complete route join every route group, so their
    times and status still count. Order within each group is preserved.
    """
    if key_policy == 'flight_number':
        return [group]

    routes = []
    for candidate in group:
        route = (candidate.get('origin_code'), candidate.get('destination_code'))
        if all(route) and route not in routes:
            routes.append(route)
    if len(routes) <= 1:
        return [group]

    split = []
    for route in routes:
        split.append([
            c for c in group
            if (c.get('origin_code'), c.get('destination_code')) == route
            or not (c.get('origin_code') and c.get('destination_code'))
        ])
    return split
