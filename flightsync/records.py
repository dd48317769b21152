"""Candidate flight records and the normalization applied before every write."""

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

from flightsync.errors import ValidationRejected
from flightsync.models import FLIGHT_FIELDS, FLIGHT_STATUSES

IDENTITY_FIELDS = ('flight_number', 'airline_code', 'origin_code', 'destination_code')

# Fields the reconciler may fill from fallback defaults
DEFAULTED_FIELDS = (
    'departure_time',
    'arrival_time',
    'duration_minutes',
    'aircraft_type',
    'days_of_week',
    'effective_from',
    'effective_to',
    'status',
)

DAILY = '1111111'

_FLIGHT_NUMBER_RE = re.compile(r'^([A-Z]{2}|[A-Z][0-9]|[0-9][A-Z])([0-9]{1,4})$')
_TIME_RE = re.compile(r'^(\d{1,2}):(\d{2})(?::\d{2})?\s*([AaPp][Mm])?$')
_IATA_AIRPORT_RE = re.compile(r'^[A-Z]{3}$')
_IATA_AIRLINE_RE = re.compile(r'^[A-Z0-9]{2,3}$')
_DAYS_RE = re.compile(r'^[01]{7}$')


@dataclass
class CandidateRecord:
    """
    A partial flight record produced by one extractor pass over one source.

    Attributes:
        fields: Flight record field values (absent fields are simply missing)
        source: Provenance label, e.g. 'serpapi:PR216 flight status'
        extracted: Names of the fields actually read from the payload
        confidence: 'structured' for API fields, 'heuristic' for text scraping
    """

    fields: dict
    source: str
    extracted: set = field(default_factory=set)
    confidence: str = 'heuristic'

    @property
    def flight_number(self) -> Optional[str]:
        """Canonical form of the candidate's flight number, or None when it has none."""
        return normalize_flight_number(self.fields.get('flight_number'))

    @property
    def completeness(self) -> float:
        """Share of identity and schedule fields that were extracted."""
        wanted = IDENTITY_FIELDS + ('departure_time', 'arrival_time')
        return sum(1 for f in wanted if f in self.extracted) / len(wanted)

    def get(self, name: str):
        """Value of one field, or None when the candidate does not carry it."""
        return self.fields.get(name)


def normalize_flight_number(value) -> Optional[str]:
    """
    Canonical flight number: uppercase with no internal whitespace.

    Examples:
        'pr 216' -> 'PR216'
        'PR216'  -> 'PR216'
        '216'    -> None
    """
    if not value or not isinstance(value, str):
        return None
    compact = re.sub(r'\s+', '', value).upper()
    return compact if _FLIGHT_NUMBER_RE.match(compact) else None


def airline_code_for(flight_number: str) -> Optional[str]:
    """Carrier prefix of a canonical flight number."""
    match = _FLIGHT_NUMBER_RE.match(flight_number or '')
    return match.group(1) if match else None


def normalize_time(value) -> Optional[str]:
    """Return a zero-padded 24h 'HH:MM' string, or None when the value is not a valid time."""
    if not value or not isinstance(value, str):
        return None
    match = _TIME_RE.match(value.strip())
    if not match:
        return None

    hour, minute = int(match.group(1)), int(match.group(2))
    meridiem = (match.group(3) or '').upper()
    if meridiem:
        if not 1 <= hour <= 12:
            return None
        hour = hour % 12 + (12 if meridiem == 'PM' else 0)

    if hour > 23 or minute > 59:
        return None
    return f"{hour:02d}:{minute:02d}"


def normalize_days(value) -> str:
    """Seven '0'/'1' characters, index 0 = Monday; anything else means daily."""
    if isinstance(value, str) and _DAYS_RE.match(value):
        return value
    return DAILY


def normalize_status(value) -> Optional[str]:
    """
    Lowercase status from FLIGHT_STATUSES, or None when the value is not one.

    Examples:
        'On Time'   -> 'on_time'
        'CANCELLED' -> 'cancelled'
        'landed'    -> None
    """
    if not value or not isinstance(value, str):
        return None
    status = value.strip().lower().replace(' ', '_').replace('-', '_')
    return status if status in FLIGHT_STATUSES else None


def _normalize_date(value) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return datetime.strptime(value.strip()[:10], '%Y-%m-%d').date()
        except ValueError:
            return None
    return None


def _normalize_duration(value) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        minutes = int(value)
    except (TypeError, ValueError):
        return None
    return minutes if minutes >= 0 else None


def normalize_record(fields: dict) -> dict:
    """
    Clean a candidate or merged field dict.

    Invalid values are dropped so a fallback can apply later; only an
    invalid days_of_week is replaced in place (with daily). Fields with no
    value are omitted from the result.
    """
    record = {}

    flight_number = normalize_flight_number(fields.get('flight_number'))
    if flight_number:
        record['flight_number'] = flight_number

    airline_code = fields.get('airline_code')
    if isinstance(airline_code, str) and _IATA_AIRLINE_RE.match(airline_code.strip().upper()):
        record['airline_code'] = airline_code.strip().upper()

    for name in ('origin_code', 'destination_code'):
        code = fields.get(name)
        if isinstance(code, str) and _IATA_AIRPORT_RE.match(code.strip().upper()):
            record[name] = code.strip().upper()

    for name in ('departure_time', 'arrival_time'):
        value = normalize_time(fields.get(name))
        if value:
            record[name] = value

    duration = _normalize_duration(fields.get('duration_minutes'))
    if duration is not None:
        record['duration_minutes'] = duration

    for name in ('airline_name', 'aircraft_type'):
        value = fields.get(name)
        if isinstance(value, str) and value.strip():
            record[name] = value.strip()

    if fields.get('days_of_week') is not None:
        record['days_of_week'] = normalize_days(fields.get('days_of_week'))

    for name in ('effective_from', 'effective_to'):
        value = _normalize_date(fields.get(name))
        if value:
            record[name] = value

    status = normalize_status(fields.get('status'))
    if status:
        record['status'] = status

    return {k: v for k, v in record.items() if k in FLIGHT_FIELDS}


def fallback_defaults(today: date | None = None) -> dict:
    """Hard-coded values used when neither a candidate nor the stored row provides a field."""
    today = today or date.today()
    return {
        'departure_time': '00:00',
        'arrival_time': '00:00',
        'duration_minutes': 0,
        'aircraft_type': 'Unknown',
        'days_of_week': DAILY,
        'effective_from': date(today.year, 1, 1),
        'effective_to': date(today.year, 12, 31),
        'status': 'active',
    }


def validate_record(record: dict, airport_codes: set[str]) -> None:
    """
    Check a merged record before it is written.

    Raises:
        ValidationRejected: If an identity field is missing or an airport code
            is not in the reference table
    """
    missing = [name for name in IDENTITY_FIELDS if not record.get(name)]
    if missing:
        raise ValidationRejected(
            record.get('flight_number'), f"missing identity field(s): {', '.join(missing)}"
        )

    for name in ('origin_code', 'destination_code'):
        if record[name] not in airport_codes:
            raise ValidationRejected(
                record['flight_number'], f"unknown airport {record[name]} ({name})"
            )
