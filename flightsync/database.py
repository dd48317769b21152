"""Database connection, session management and flight store operations."""

import csv
import logging
from contextlib import contextmanager
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func

from config import get_database_url
from flightsync.errors import DuplicateKey, StoreUnavailable
from flightsync.models import Base, Flight, Airport, SearchLog, LivePosition, FLIGHT_FIELDS

logger = logging.getLogger(__name__)


def get_engine(url: Optional[str] = None):
    """Create an engine for the configured (or given) database URL."""
    try:
        return create_engine(url or get_database_url())
    except SQLAlchemyError as e:
        raise StoreUnavailable(f"invalid database URL: {e}") from e


def init_db(engine):
    """Create all database tables that do not exist yet."""
    try:
        Base.metadata.create_all(bind=engine)
    except SQLAlchemyError as e:
        raise StoreUnavailable(f"could not create tables: {e}") from e


@contextmanager
def session_scope(engine):
    """
    Provide a session for one run.

    The session is closed on every exit path; a pending transaction is
    rolled back when the block raises.
    """
    session = sessionmaker(bind=engine)()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def _write(session, action: str):
    """Commit one unit of work, or roll back and raise DuplicateKey or StoreUnavailable."""
    try:
        yield
        session.commit()
    except IntegrityError as e:
        session.rollback()
        raise DuplicateKey(f"{action} failed: {e.orig}") from e
    except SQLAlchemyError as e:
        session.rollback()
        raise StoreUnavailable(f"{action} failed: {e}") from e


def get_airport_codes(session) -> set[str]:
    """All airport codes in the reference table."""
    try:
        return {code for (code,) in session.query(Airport.code).all()}
    except SQLAlchemyError as e:
        raise StoreUnavailable(f"airport lookup failed: {e}") from e


def upsert_airport(session, airport: dict) -> str:
    """
    Insert or update one airport row.

    Returns:
        str: 'inserted' or 'updated'
    """
    code = airport['code'].strip().upper()
    with _write(session, f"airport upsert {code}"):
        existing = session.get(Airport, code)
        if existing is None:
            session.add(Airport(**{**airport, 'code': code}))
            action = 'inserted'
        else:
            for key, value in airport.items():
                if key != 'code':
                    setattr(existing, key, value)
            action = 'updated'
    return action


def _float_or_none(value):
    try:
        return float(value) if value not in (None, '') else None
    except ValueError:
        return None


def load_airports(session, filepath: str) -> dict:
    """
    Load the airport directory from a CSV file.

    Expected CSV format:
        code,name,city,country,timezone,latitude,longitude
        POM,Jacksons International Airport,Port Moresby,Papua New Guinea,Pacific/Port_Moresby,-9.4434,147.22

    Returns:
        dict: {'inserted': int, 'updated': int}
    """
    results = {'inserted': 0, 'updated': 0}

    with open(filepath, 'r', newline='') as f:
        reader = csv.DictReader(f)
        for row in reader:
            if not row.get('code'):
                continue
            airport = {
                'code': row['code'],
                'name': row.get('name') or row['code'],
                'city': row.get('city') or None,
                'country': row.get('country') or None,
                'timezone': row.get('timezone') or None,
                'latitude': _float_or_none(row.get('latitude')),
                'longitude': _float_or_none(row.get('longitude')),
            }
            results[upsert_airport(session, airport)] += 1

    return results


def find_flights(session, flight_number: str) -> list[Flight]:
    try:
        return session.query(Flight).filter_by(flight_number=flight_number).order_by(Flight.id).all()
    except SQLAlchemyError as e:
        raise StoreUnavailable(f"flight lookup failed: {e}") from e


def get_flight(
    session,
    flight_number: str,
    origin_code: Optional[str] = None,
    destination_code: Optional[str] = None,
    key_policy: str = 'route',
) -> Optional[Flight]:
    """
    Find the stored row a merged record would replace.

    With the 'route' policy the full (flight_number, origin, destination)
    key is used when both airports are known; otherwise the single row for
    the flight number is returned, or None when there are several. The
    'flight_number' policy keys on the flight number alone, preferring the
    row that already has the given route.
    """
    rows = find_flights(session, flight_number)
    same_route = None
    if origin_code and destination_code:
        same_route = next(
            (row for row in rows if row.origin_code == origin_code and row.destination_code == destination_code),
            None,
        )

    if key_policy == 'flight_number':
        return same_route or (rows[0] if rows else None)

    if origin_code and destination_code:
        return same_route

    return rows[0] if len(rows) == 1 else None


def get_known_routes(session, flight_numbers: list[str]) -> dict[str, tuple[str, str]]:
    """Stored (origin, destination) for each flight number that has exactly one row."""
    routes = {}
    for flight_number in flight_numbers:
        rows = find_flights(session, flight_number)
        if len(rows) == 1:
            routes[flight_number] = (rows[0].origin_code, rows[0].destination_code)
    return routes


def upsert_flight(session, record: dict, existing: Optional[Flight] = None, source: Optional[str] = None) -> dict:
    """
    Insert a flight or replace the whole stored row.

    Every column in FLIGHT_FIELDS is written from the record; there is no
    column-level patching. The write is committed on its own.

    Args:
        session: SQLAlchemy session
        record: Complete, validated flight record
        existing: The stored row to replace, if any (see get_flight)
        source: Provenance of the record

    Returns:
        dict: {'action': 'inserted' | 'updated' | 'unchanged', 'flight': Flight}
    """
    values = {name: record.get(name) for name in FLIGHT_FIELDS}

    with _write(session, f"upsert {values['flight_number']}"):
        if existing is not None:
            if existing.to_dict() == values:
                return {'action': 'unchanged', 'flight': existing}
            for name, value in values.items():
                setattr(existing, name, value)
            existing.source = source
            existing.updated_at = func.now()
            flight, action = existing, 'updated'
        else:
            flight = Flight(**values, source=source)
            session.add(flight)
            action = 'inserted'

    session.refresh(flight)
    return {'action': action, 'flight': flight}


def purge_airline(session, airline_code: str) -> int:
    """
    Delete every flight of one airline, typically before a reseed.

    Returns:
        int: Number of flights deleted
    """
    with _write(session, f"purge {airline_code}"):
        deleted = session.query(Flight).filter_by(airline_code=airline_code.upper()).delete()
    logger.warning("Purged %d flight(s) for airline %s", deleted, airline_code.upper())
    return deleted


def log_search(
    session,
    source: str,
    query: Optional[str],
    flight_number: Optional[str],
    result_count: int,
    payload: Optional[str] = None,
    error: Optional[str] = None,
) -> SearchLog:
    """Record one external fetch in the search log."""
    entry = SearchLog(
        source=source,
        query=query,
        flight_number=flight_number,
        result_count=result_count,
        payload=payload,
        error=error,
    )
    with _write(session, 'search log insert'):
        session.add(entry)
    return entry


def replace_live_positions(session, positions: list[dict]) -> int:
    """
    Replace the live position snapshot with a new one.

    Deletes the previous snapshot and inserts the new rows in one transaction.

    Returns:
        int: Number of positions stored
    """
    with _write(session, 'live snapshot replace'):
        session.query(LivePosition).delete()
        if positions:
            session.bulk_insert_mappings(LivePosition, positions)
    return len(positions)
