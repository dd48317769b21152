"""Async fetchers for the external flight data sources."""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

import aiohttp

import config
from flightsync.errors import FlightSyncError, MalformedPayload, SourceUnavailable
from flightsync.extractors import (
    extract_flight_status,
    extract_google_flights,
    extract_live_positions,
    extract_search_results,
)
from flightsync.records import CandidateRecord

logger = logging.getLogger(__name__)

USER_AGENT = 'flight-schedule-sync/1.0'


@dataclass
class FetchResult:
    """Outcome of one fetch against one source for one flight number."""

    source: str
    query: str
    flight_number: Optional[str] = None
    candidates: list[CandidateRecord] = field(default_factory=list)
    payload: Optional[dict] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def fetch_json(
    session: aiohttp.ClientSession,
    source: str,
    url: str,
    params: Optional[dict] = None,
    auth: Optional[aiohttp.BasicAuth] = None,
) -> dict:
    """
    GET a JSON document.

    Raises:
        SourceUnavailable: On connection errors, timeouts and non-200 responses
        MalformedPayload: If the body is not a JSON object
    """
    try:
        async with session.get(url, params=params, auth=auth) as response:
            if response.status != 200:
                body = await response.text()
                raise SourceUnavailable(source, f"HTTP {response.status}: {body[:200]}")
            try:
                payload = await response.json(content_type=None)
            except (aiohttp.ContentTypeError, ValueError) as e:
                raise MalformedPayload(source, f"invalid JSON: {e}") from e
    except asyncio.TimeoutError as e:
        raise SourceUnavailable(source, 'request timed out') from e
    except aiohttp.ClientError as e:
        raise SourceUnavailable(source, str(e)) from e

    if not isinstance(payload, dict):
        raise MalformedPayload(source, f"expected an object, got {type(payload).__name__}")
    return payload


def _check_serpapi(payload: dict) -> None:
    if payload.get('error'):
        raise SourceUnavailable('serpapi', str(payload['error']))
    metadata = payload.get('search_metadata') or {}
    if metadata.get('status') == 'Error':
        raise SourceUnavailable('serpapi', str(metadata.get('error') or 'search failed'))


async def search_flight(session: aiohttp.ClientSession, flight_number: str) -> FetchResult:
    """Google web search for a flight number through SerpAPI."""
    if not config.SERPAPI_KEY:
        raise SourceUnavailable('serpapi', 'SERPAPI_KEY is not configured')

    query = f"{flight_number} flight status"
    params = {
        'engine': 'google',
        'api_key': config.SERPAPI_KEY,
        'q': query,
        'num': '10',
        'hl': 'en',
        'gl': 'us',
    }
    payload = await fetch_json(session, 'serpapi', config.SERPAPI_URL, params)
    _check_serpapi(payload)

    return FetchResult(
        source='serpapi',
        query=query,
        flight_number=flight_number,
        candidates=extract_search_results(payload, target=flight_number, query=query),
        payload=payload,
    )


async def search_route(
    session: aiohttp.ClientSession,
    origin: str,
    destination: str,
    date: Optional[str] = None,
    flight_number: Optional[str] = None,
) -> FetchResult:
    """
    One-way Google Flights search through SerpAPI.

    Args:
        session: aiohttp session
        origin: Departure airport IATA code
        destination: Arrival airport IATA code
        date: Outbound date in YYYY-MM-DD format (defaults to tomorrow, UTC)
        flight_number: Optional filter applied to the returned segments
    """
    if not config.SERPAPI_KEY:
        raise SourceUnavailable('google_flights', 'SERPAPI_KEY is not configured')

    date = date or (datetime.now(timezone.utc) + timedelta(days=1)).strftime('%Y-%m-%d')
    params = {
        'engine': 'google_flights',
        'api_key': config.SERPAPI_KEY,
        'departure_id': origin.upper(),
        'arrival_id': destination.upper(),
        'outbound_date': date,
        'type': '2',
        'currency': 'USD',
        'hl': 'en',
    }
    payload = await fetch_json(session, 'google_flights', config.SERPAPI_URL, params)
    _check_serpapi(payload)

    return FetchResult(
        source='google_flights',
        query=f"{origin.upper()}-{destination.upper()} {date}",
        flight_number=flight_number,
        candidates=extract_google_flights(payload, target=flight_number),
        payload=payload,
    )


async def fetch_flight_status(session: aiohttp.ClientSession, flight_number: str) -> FetchResult:
    """AviationStack status lookup for one flight number."""
    if not config.AVIATIONSTACK_KEY:
        raise SourceUnavailable('aviationstack', 'AVIATIONSTACK_KEY is not configured')

    params = {'access_key': config.AVIATIONSTACK_KEY, 'flight_iata': flight_number}
    payload = await fetch_json(session, 'aviationstack', config.AVIATIONSTACK_URL, params)
    if payload.get('error'):
        error = payload['error']
        message = error.get('message') if isinstance(error, dict) else error
        raise SourceUnavailable('aviationstack', str(message))

    return FetchResult(
        source='aviationstack',
        query=flight_number,
        flight_number=flight_number,
        candidates=extract_flight_status(payload, target=flight_number),
        payload=payload,
    )


async def fetch_live_positions(session: aiohttp.ClientSession, target: Optional[str] = None) -> list[dict]:
    """Current OpenSky state vectors, optionally filtered to one flight number."""
    auth = None
    if config.OPENSKY_USER and config.OPENSKY_PASSWORD:
        auth = aiohttp.BasicAuth(config.OPENSKY_USER, config.OPENSKY_PASSWORD)
    payload = await fetch_json(session, 'opensky', config.OPENSKY_URL, auth=auth)
    return extract_live_positions(payload, target=target)


def new_session(timeout: Optional[float] = None) -> aiohttp.ClientSession:
    return aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=timeout or config.REQUEST_TIMEOUT),
        headers={'User-Agent': USER_AGENT},
    )


async def _safe_fetch(source: str, query: str, flight_number: str, coro) -> FetchResult:
    """Await one fetch; any failure becomes an empty result carrying the error text."""
    try:
        result = await coro
    except FlightSyncError as e:
        logger.warning("Skipping %s for %s: %s", source, flight_number, e)
        return FetchResult(source=source, query=query, flight_number=flight_number, error=str(e))
    except Exception as e:
        logger.exception("Unexpected error fetching %s for %s", source, flight_number)
        return FetchResult(source=source, query=query, flight_number=flight_number, error=repr(e))

    logger.info(
        "%s returned %d candidate(s) for %s", source, len(result.candidates), flight_number
    )
    return result


async def collect_candidates(
    flight_numbers: list[str],
    sources: Optional[list[str]] = None,
    routes: Optional[dict[str, tuple[str, str]]] = None,
    date: Optional[str] = None,
    timeout: Optional[float] = None,
) -> list[FetchResult]:
    """
    Fetch every (flight number, source) pair concurrently.

    Each request has its own timeout and fails on its own. Results come back
    grouped by flight number, and within a flight in source order, which is
    the merge precedence used by the reconciler.

    Args:
        flight_numbers: Canonical flight numbers
        sources: Source names in precedence order (defaults to config.SOURCE_ORDER)
        routes: Known (origin, destination) per flight number, needed by google_flights
        date: Outbound date for route searches
        timeout: Per-request timeout in seconds

    Returns:
        list: FetchResult objects, failed fetches included with their error
    """
    sources = sources or config.SOURCE_ORDER
    routes = routes or {}

    async with new_session(timeout) as session:
        tasks = []
        for flight_number in flight_numbers:
            for source in sources:
                if source == 'serpapi':
                    coro = search_flight(session, flight_number)
                elif source == 'aviationstack':
                    coro = fetch_flight_status(session, flight_number)
                elif source == 'google_flights':
                    if flight_number not in routes:
                        logger.info("No known route for %s; google_flights skipped", flight_number)
                        continue
                    origin, destination = routes[flight_number]
                    coro = search_route(session, origin, destination, date, flight_number)
                else:
                    logger.warning("Unknown source %r ignored", source)
                    continue
                tasks.append(_safe_fetch(source, flight_number, flight_number, coro))

        return list(await asyncio.gather(*tasks))


def payload_to_text(payload: Optional[dict]) -> Optional[str]:
    """Serialize a payload for the search log, dropping request metadata that may echo keys."""
    if payload is None:
        return None
    trimmed = {k: v for k, v in payload.items() if k not in ('search_parameters', 'search_metadata')}
    return json.dumps(trimmed, default=str)
