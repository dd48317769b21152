"""Configuration management for Flight Schedule Sync."""

import os
from dotenv import load_dotenv

load_dotenv()

# Flight numbers refreshed when no --flight argument is given
TRACKED_FLIGHTS = [
    f.strip().upper()
    for f in os.getenv('TRACKED_FLIGHTS', 'PR216,PR215').split(',')
    if f.strip()
]

# Database configuration. DB_URL wins; otherwise a PostgreSQL URL is built
# when DB_HOST is set, else the local SQLite file is used.
DATABASE_CONFIG = {
    'url': os.getenv('DB_URL'),
    'user': os.getenv('DB_USER', 'postgres'),
    'password': os.getenv('DB_PASSWORD', ''),
    'host': os.getenv('DB_HOST'),
    'port': os.getenv('DB_PORT', '5432'),
    'database': os.getenv('DB_NAME', 'flights'),
    'sslmode': os.getenv('DB_SSLMODE', 'prefer'),
    'sqlite_path': os.getenv('DB_SQLITE_PATH', 'flights.db'),
}

# External source credentials
SERPAPI_KEY = os.getenv('SERPAPI_KEY')
AVIATIONSTACK_KEY = os.getenv('AVIATIONSTACK_KEY')
OPENSKY_USER = os.getenv('OPENSKY_USER')
OPENSKY_PASSWORD = os.getenv('OPENSKY_PASSWORD')

SERPAPI_URL = 'https://serpapi.com/search.json'
AVIATIONSTACK_URL = 'http://api.aviationstack.com/v1/flights'
OPENSKY_URL = 'https://opensky-network.org/api/states/all'

# Per-request timeout in seconds for every external fetch
REQUEST_TIMEOUT = float(os.getenv('REQUEST_TIMEOUT', '30'))

# Merge precedence: candidates from earlier sources win per field
SOURCE_ORDER = [
    s.strip()
    for s in os.getenv('SOURCE_ORDER', 'aviationstack,google_flights,serpapi').split(',')
    if s.strip()
]

# 'route' keys on (flight_number, origin_code, destination_code);
# 'flight_number' keys on the flight number alone.
FLIGHT_KEY_POLICY = os.getenv('FLIGHT_KEY_POLICY', 'route')

LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')


def get_database_url():
    """Construct the SQLAlchemy connection URL from configuration."""
    if DATABASE_CONFIG['url']:
        return DATABASE_CONFIG['url']
    if DATABASE_CONFIG['host']:
        return (
            f"postgresql://{DATABASE_CONFIG['user']}:{DATABASE_CONFIG['password']}"
            f"@{DATABASE_CONFIG['host']}:{DATABASE_CONFIG['port']}/{DATABASE_CONFIG['database']}"
            f"?sslmode={DATABASE_CONFIG['sslmode']}"
        )
    return f"sqlite:///{DATABASE_CONFIG['sqlite_path']}"
