"""Main entry point for Flight Schedule Sync."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import config
from flightsync.database import (
    get_engine, init_db, session_scope, load_airports, get_known_routes,
    log_search, purge_airline, replace_live_positions,
)
from flightsync.errors import FlightSyncError, StoreUnavailable
from flightsync.extractors import extract_csv
from flightsync.reconciler import reconcile_batch
from flightsync.records import normalize_flight_number
from flightsync.sources import (
    collect_candidates, fetch_live_positions, new_session, payload_to_text, search_route,
)


def parse_args(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description='Flight Schedule Sync - Reconcile external flight data into the schedule store'
    )

    parser.add_argument(
        '--init-db',
        action='store_true',
        help='Create missing tables and exit'
    )
    parser.add_argument(
        '--load-airports',
        type=str,
        metavar='CSV_FILE',
        help='Load the airport directory from a CSV file'
    )
    parser.add_argument(
        '--flight',
        action='append',
        default=[],
        help='Flight number to refresh (e.g., PR216). Repeatable. Defaults to the tracked flights.'
    )
    parser.add_argument(
        '--sources',
        type=str,
        help='Comma-separated sources in precedence order (serpapi, aviationstack, google_flights)'
    )
    parser.add_argument(
        '--route',
        type=str,
        metavar='ORIGIN-DEST',
        help='Refresh every flight on a route from Google Flights (e.g., POM-MNL)'
    )
    parser.add_argument(
        '--date',
        type=str,
        help='Outbound date for route searches in YYYY-MM-DD format (defaults to tomorrow)'
    )
    parser.add_argument(
        '--backfill',
        type=str,
        metavar='CSV_FILE',
        help='Reconcile flight schedules from a CSV file'
    )
    parser.add_argument(
        '--purge-airline',
        type=str,
        metavar='CODE',
        help='Delete all flights of an airline before anything else runs (destructive)'
    )
    parser.add_argument(
        '--live',
        action='store_true',
        help='Replace the live position snapshot from OpenSky'
    )

    return parser.parse_args(argv)


def configure_logging():
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S',
    )


def backfill_from_csv(engine, filepath: str):
    """
    Reconcile flights from a CSV file into the database.

    Args:
        engine: SQLAlchemy engine
        filepath: Path to the CSV file
    """
    path = Path(filepath)

    if not path.exists():
        print(f"Error: File not found: {filepath}", file=sys.stderr)
        sys.exit(1)

    print(f"Backfilling from {filepath}...", file=sys.stderr)

    candidates = extract_csv(str(path))
    print(f"Parsed {len(candidates)} flights from CSV", file=sys.stderr)

    if not candidates:
        print("No flights to import", file=sys.stderr)
        return None

    with session_scope(engine) as session:
        summary = reconcile_batch(session, candidates)
    print(f"Results: {summary}", file=sys.stderr)
    return summary


async def sync_flights(engine, flight_numbers: list[str], sources: list[str] | None = None, date: str | None = None):
    """
    Fetch all sources for the given flights and reconcile the results.

    Args:
        engine: SQLAlchemy engine
        flight_numbers: Canonical flight numbers
        sources: Source names in precedence order
        date: Outbound date for Google Flights searches
    """
    print(f"Syncing {len(flight_numbers)} flight(s): {', '.join(flight_numbers)}", file=sys.stderr)

    with session_scope(engine) as session:
        routes = get_known_routes(session, flight_numbers)
        results = await collect_candidates(flight_numbers, sources, routes, date)

        for result in results:
            log_search(
                session, result.source, result.query, result.flight_number,
                len(result.candidates), payload_to_text(result.payload), result.error,
            )
            if result.ok:
                print(f"  {result.source} {result.flight_number}: {len(result.candidates)} candidate(s)", file=sys.stderr)
            else:
                print(f"  {result.source} {result.flight_number}: error: {result.error}", file=sys.stderr)

        candidates = [c for result in results for c in result.candidates]
        if not candidates:
            print("\nNo candidates found from any source", file=sys.stderr)
            return None

        summary = reconcile_batch(session, candidates)

    print(f"Results: {summary}", file=sys.stderr)
    return summary


async def sync_route(engine, route: str, date: str | None = None):
    """Reconcile every flight Google Flights lists for one route."""
    origin, _, destination = route.upper().partition('-')
    if len(origin) != 3 or len(destination) != 3:
        print(f"Error: Route must look like POM-MNL, got {route}", file=sys.stderr)
        sys.exit(1)

    async with new_session() as http:
        try:
            result = await search_route(http, origin, destination, date)
        except FlightSyncError as e:
            print(f"Error searching {origin}-{destination}: {e}", file=sys.stderr)
            return None

    print(f"Found {len(result.candidates)} segment(s) for {origin}-{destination}", file=sys.stderr)

    with session_scope(engine) as session:
        log_search(
            session, result.source, result.query, None,
            len(result.candidates), payload_to_text(result.payload),
        )
        summary = reconcile_batch(session, result.candidates)

    print(f"Results: {summary}", file=sys.stderr)
    return summary


async def sync_live_positions(engine, flight_numbers: list[str]):
    """Replace the live snapshot, keeping only the given flights when any are named."""
    async with new_session() as http:
        try:
            positions = await fetch_live_positions(http)
        except FlightSyncError as e:
            print(f"Error fetching live positions: {e}", file=sys.stderr)
            return 0

    if flight_numbers:
        positions = [p for p in positions if p['flight_number'] in flight_numbers]

    with session_scope(engine) as session:
        stored = replace_live_positions(session, positions)

    print(f"Live snapshot: {stored} position(s) stored", file=sys.stderr)
    return stored


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)
    configure_logging()

    engine = None
    try:
        engine = get_engine()
        init_db(engine)
        if args.init_db:
            print("Tables created", file=sys.stderr)
            return

        if args.purge_airline:
            with session_scope(engine) as session:
                deleted = purge_airline(session, args.purge_airline)
            print(f"Purged {deleted} flight(s) for {args.purge_airline.upper()}", file=sys.stderr)

        if args.load_airports:
            with session_scope(engine) as session:
                results = load_airports(session, args.load_airports)
            print(f"Airports: {results['inserted']} inserted, {results['updated']} updated", file=sys.stderr)

        if args.backfill:
            backfill_from_csv(engine, args.backfill)
            return

        if args.route:
            asyncio.run(sync_route(engine, args.route, args.date))
            return

        # Maintenance-only invocation
        if (args.load_airports or args.purge_airline) and not args.flight and not args.live:
            return

        flight_numbers = []
        for value in args.flight or ([] if args.live else config.TRACKED_FLIGHTS):
            flight_number = normalize_flight_number(value)
            if not flight_number:
                print(f"Error: Invalid flight number: {value}", file=sys.stderr)
                sys.exit(1)
            flight_numbers.append(flight_number)

        if args.live:
            asyncio.run(sync_live_positions(engine, flight_numbers))
            return

        sources = [s.strip() for s in args.sources.split(',')] if args.sources else None
        asyncio.run(sync_flights(engine, flight_numbers, sources, args.date))
    except StoreUnavailable as e:
        print(f"Error: Database unavailable: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        if engine is not None:
            engine.dispose()


if __name__ == '__main__':
    main()
