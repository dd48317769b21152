"""Turn external payloads (search results, flight APIs, CSV files) into candidate records."""

import csv
import logging
import re
from datetime import datetime, timezone
from typing import Optional

from flightsync.records import (
    CandidateRecord,
    airline_code_for,
    normalize_flight_number,
    normalize_record,
    normalize_time,
)

logger = logging.getLogger(__name__)

# Known city names mapped to their main airport
CITY_CODES = {
    'port moresby': 'POM',
    'lae': 'LAE',
    'madang': 'MAG',
    'rabaul': 'RAB',
    'mount hagen': 'HGU',
    'manila': 'MNL',
    'cebu': 'CEB',
    'davao': 'DVO',
    'clark': 'CRK',
    'brisbane': 'BNE',
    'cairns': 'CNS',
    'sydney': 'SYD',
    'melbourne': 'MEL',
    'singapore': 'SIN',
    'hong kong': 'HKG',
    'tokyo': 'NRT',
    'los angeles': 'LAX',
    'honolulu': 'HNL',
}

AIRLINE_NAMES = {
    'PR': 'Philippine Airlines',
    'PX': 'Air Niugini',
    '5J': 'Cebu Pacific',
    'CX': 'Cathay Pacific',
    'SQ': 'Singapore Airlines',
    'QF': 'Qantas',
    'VA': 'Virgin Australia',
    'JQ': 'Jetstar Airways',
    'EK': 'Emirates',
}

# IATA carrier code -> ICAO prefix used in ATC callsigns
AIRLINE_ICAO = {
    'PR': 'PAL',
    'PX': 'ANG',
    '5J': 'CEB',
    'CX': 'CPA',
    'SQ': 'SIA',
    'QF': 'QFA',
    'VA': 'VOZ',
    'JQ': 'JST',
    'EK': 'UAE',
}
ICAO_TO_IATA = {icao: iata for iata, icao in AIRLINE_ICAO.items()}

# Airport codes recognized in free text
KNOWN_AIRPORTS = frozenset(CITY_CODES.values())

# Checked in this order; the first keyword found decides the status
STATUS_KEYWORDS = (
    ('cancelled', ('cancelled', 'canceled')),
    ('delayed', ('delayed',)),
    ('on_time', ('on time', 'scheduled')),
)

_FLIGHT_TOKEN_RE = re.compile(r'\b([A-Z0-9]{2})(\s?)(\d{1,4})\b(?!:\d)', re.IGNORECASE)
_TIME_TOKEN_RE = re.compile(r'\b(\d{1,2}:\d{2})(?:\s*([AaPp][Mm])\b)?')
_CODE_PAIR_RE = re.compile(r'\b([A-Z]{3})\s*(?:(?i:to)|→|->|–|—|-)\s*([A-Z]{3})\b')
_ISO_TIME_RE = re.compile(r'[T ](\d{2}:\d{2})')


def find_flight_numbers(text: str, target: Optional[str] = None) -> list[str]:
    """
    Find flight numbers in free text, in canonical form.

    Matching is case-insensitive and tolerates one space between carrier
    code and number ('PR 216', 'pr216'). Without a target a token is
    accepted when its carrier is in AIRLINE_NAMES, or when it has a letter
    carrier code written with no space ('MH370'). Tokens followed by a
    colon and digits are times, not flight numbers.

    Args:
        text: Free text (search result title or snippet)
        target: Optional flight number to look for

    Returns:
        list: Distinct canonical flight numbers in order of appearance
    """
    if not text:
        return []

    if target:
        canonical = normalize_flight_number(target)
        if not canonical:
            return []
        prefix = airline_code_for(canonical)
        digits = canonical[len(prefix):]
        pattern = rf'\b{re.escape(prefix)}\s?{digits}\b'
        return [canonical] if re.search(pattern, text, re.IGNORECASE) else []

    found = []
    for match in _FLIGHT_TOKEN_RE.finditer(text):
        prefix, space, digits = match.group(1).upper(), match.group(2), match.group(3)
        if prefix not in AIRLINE_NAMES and (space or not prefix.isalpha()):
            continue
        canonical = normalize_flight_number(prefix + digits)
        if canonical and canonical not in found:
            found.append(canonical)
    return found


def extract_times(text: str) -> tuple[Optional[str], Optional[str]]:
    """
    Read departure and arrival times from a text snippet.

    The first two distinct valid time tokens are taken positionally:
    departure, then arrival. Fewer than two leaves both unknown.
    """
    if not text:
        return None, None

    times = []
    for match in _TIME_TOKEN_RE.finditer(text):
        token = match.group(1) + (f" {match.group(2)}" if match.group(2) else '')
        value = normalize_time(token)
        if value and value not in times:
            times.append(value)

    if len(times) < 2:
        return None, None
    return times[0], times[1]


def extract_status(text: str, default: Optional[str] = 'active') -> Optional[str]:
    """Status by keyword precedence: cancelled, delayed, on time/scheduled, then the default."""
    lowered = (text or '').lower()
    for status, keywords in STATUS_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return status
    return default


def extract_route(text: str, airport_codes=None) -> tuple[Optional[str], Optional[str]]:
    """
    Read origin and destination airports from text.

    Recognizes an uppercase code pair ('POM to MNL', 'POM-MNL') first, then
    the first two known city names in order of appearance. Anything else
    leaves the route unknown.

    Args:
        text: Free text
        airport_codes: Codes a pair may use (defaults to KNOWN_AIRPORTS)
    """
    if not text:
        return None, None

    airport_codes = KNOWN_AIRPORTS if airport_codes is None else airport_codes
    for match in _CODE_PAIR_RE.finditer(text):
        origin, destination = match.group(1), match.group(2)
        if origin != destination and origin in airport_codes and destination in airport_codes:
            return origin, destination

    lowered = text.lower()
    positions = []
    for city, code in CITY_CODES.items():
        match = re.search(rf'\b{re.escape(city)}\b', lowered)
        if match:
            positions.append((match.start(), code))
    positions.sort()

    codes = []
    for _, code in positions:
        if code not in codes:
            codes.append(code)
    if len(codes) < 2:
        return None, None
    return codes[0], codes[1]


def _candidate(raw: dict, source: str, confidence: str) -> Optional[CandidateRecord]:
    """Build a normalized candidate; None when no flight number survived."""
    fields = normalize_record(raw)
    if 'flight_number' not in fields:
        return None
    return CandidateRecord(
        fields=fields,
        source=source,
        extracted=set(fields),
        confidence=confidence,
    )


def _carrier_fields(flight_number: str) -> dict:
    code = airline_code_for(flight_number)
    fields = {'airline_code': code}
    if code in AIRLINE_NAMES:
        fields['airline_name'] = AIRLINE_NAMES[code]
    return fields


def _text_fields(flight_number: str, title: str, snippet: str) -> dict:
    combined = f"{title} {snippet}"
    departure, arrival = extract_times(snippet)
    origin, destination = extract_route(combined)
    return {
        'flight_number': flight_number,
        **_carrier_fields(flight_number),
        'origin_code': origin,
        'destination_code': destination,
        'departure_time': departure,
        'arrival_time': arrival,
        # No keyword leaves the status to the merge fallback
        'status': extract_status(combined, default=None),
    }


def _answer_box_candidate(box: dict, target: Optional[str], source: str) -> Optional[CandidateRecord]:
    text_parts = [str(box.get(key) or '') for key in ('title', 'answer', 'snippet', 'description')]
    text = ' '.join(part for part in text_parts if part)

    numbers = find_flight_numbers(text, target)
    if not numbers and target and normalize_flight_number(box.get('flight_number')) == normalize_flight_number(target):
        numbers = [normalize_flight_number(target)]
    if not numbers:
        return None

    fields = _text_fields(numbers[0], box.get('title') or '', text)

    structured = box.get('flight') if isinstance(box.get('flight'), dict) else box
    has_structured = False
    for key in ('departure_time', 'arrival_time', 'status', 'origin_code', 'destination_code'):
        if structured.get(key):
            fields[key] = structured[key]
            has_structured = True
    if isinstance(structured.get('airline'), str):
        fields['airline_name'] = structured['airline']

    return _candidate(fields, source, 'structured' if has_structured else 'heuristic')


def extract_search_results(payload, target: Optional[str] = None, query: Optional[str] = None) -> list[CandidateRecord]:
    """
    Extract candidates from a SerpAPI Google web-search payload.

    Args:
        payload: Decoded JSON response
        target: Optional flight number; results not mentioning it are ignored
        query: Search query, used in the provenance label

    Returns:
        list: Candidates from the answer box / knowledge graph first, then
            from organic results in ranking order
    """
    if not isinstance(payload, dict):
        logger.warning("Search payload is not an object; no candidates extracted")
        return []

    source = f"serpapi:{query}" if query else 'serpapi'
    candidates = []

    for key in ('answer_box', 'knowledge_graph'):
        box = payload.get(key)
        if isinstance(box, dict):
            candidate = _answer_box_candidate(box, target, f"{source}#{key}")
            if candidate:
                candidates.append(candidate)

    results = payload.get('organic_results')
    if not isinstance(results, list):
        return candidates

    for position, result in enumerate(results, start=1):
        if not isinstance(result, dict):
            continue
        title = str(result.get('title') or '')
        snippet = str(result.get('snippet') or '')

        numbers = find_flight_numbers(f"{title} {snippet}", target)
        if not numbers:
            continue

        label = f"{source}#{position}"
        if result.get('link'):
            label += f" {result['link']}"
        candidate = _candidate(_text_fields(numbers[0], title, snippet), label, 'heuristic')
        if candidate:
            candidates.append(candidate)

    logger.debug("Extracted %d candidate(s) from search results", len(candidates))
    return candidates


def extract_google_flights(payload, target: Optional[str] = None) -> list[CandidateRecord]:
    """
    Extract candidates from a SerpAPI Google Flights payload.

    Every segment of every itinerary in best_flights and other_flights is a
    separate candidate.
    """
    if not isinstance(payload, dict):
        return []

    canonical_target = normalize_flight_number(target) if target else None
    candidates = []

    for group in ('best_flights', 'other_flights'):
        itineraries = payload.get(group)
        if not isinstance(itineraries, list):
            continue

        for itinerary in itineraries:
            segments = itinerary.get('flights') if isinstance(itinerary, dict) else None
            if not isinstance(segments, list):
                continue

            for segment in segments:
                if not isinstance(segment, dict):
                    continue
                flight_number = normalize_flight_number(segment.get('flight_number'))
                if not flight_number:
                    continue
                if canonical_target and flight_number != canonical_target:
                    continue

                departure = segment.get('departure_airport') or {}
                arrival = segment.get('arrival_airport') or {}
                raw = {
                    'flight_number': flight_number,
                    **_carrier_fields(flight_number),
                    'origin_code': departure.get('id'),
                    'destination_code': arrival.get('id'),
                    'departure_time': _time_of_day(departure.get('time')),
                    'arrival_time': _time_of_day(arrival.get('time')),
                    'duration_minutes': segment.get('duration'),
                    'aircraft_type': segment.get('airplane'),
                }
                if segment.get('airline'):
                    raw['airline_name'] = segment['airline']

                candidate = _candidate(raw, f"google_flights:{group}", 'structured')
                if candidate:
                    candidates.append(candidate)

    return candidates


def _time_of_day(value) -> Optional[str]:
    """'2025-10-19T10:00:00+00:00' or '2025-10-20 10:00' -> '10:00'."""
    if not value or not isinstance(value, str):
        return None
    match = _ISO_TIME_RE.search(value)
    return match.group(1) if match else normalize_time(value)


def _minutes_between(start, end) -> Optional[int]:
    """Whole minutes between two ISO timestamps, or None when either is unusable."""
    try:
        delta = datetime.fromisoformat(end) - datetime.fromisoformat(start)
    except (TypeError, ValueError):
        return None
    minutes = round(delta.total_seconds() / 60)
    return minutes if minutes >= 0 else None


def _aviationstack_status(flight: dict) -> str:
    status = str(flight.get('flight_status') or '').lower()
    delay = (flight.get('departure') or {}).get('delay')
    if status in ('cancelled', 'incident'):
        return 'cancelled'
    if isinstance(delay, (int, float)) and delay > 0:
        return 'delayed'
    if status == 'scheduled':
        return 'on_time'
    return 'active'


def extract_flight_status(payload, target: Optional[str] = None) -> list[CandidateRecord]:
    """
    Extract candidates from an AviationStack /v1/flights payload.

    Args:
        payload: Decoded JSON response with a 'data' list
        target: Optional flight number filter

    Returns:
        list: One structured candidate per matching flight entry
    """
    if not isinstance(payload, dict) or not isinstance(payload.get('data'), list):
        return []

    canonical_target = normalize_flight_number(target) if target else None
    candidates = []

    for entry in payload['data']:
        if not isinstance(entry, dict):
            continue
        flight = entry.get('flight') or {}
        airline = entry.get('airline') or {}
        departure = entry.get('departure') or {}
        arrival = entry.get('arrival') or {}
        aircraft = entry.get('aircraft') or {}

        flight_number = normalize_flight_number(flight.get('iata'))
        if not flight_number:
            continue
        if canonical_target and flight_number != canonical_target:
            continue

        raw = {
            'flight_number': flight_number,
            'airline_code': airline.get('iata') or airline_code_for(flight_number),
            'airline_name': airline.get('name'),
            'origin_code': departure.get('iata'),
            'destination_code': arrival.get('iata'),
            'departure_time': _time_of_day(departure.get('scheduled')),
            'arrival_time': _time_of_day(arrival.get('scheduled')),
            'duration_minutes': _minutes_between(departure.get('scheduled'), arrival.get('scheduled')),
            'aircraft_type': aircraft.get('iata') or aircraft.get('icao'),
            'status': _aviationstack_status(entry),
        }
        candidate = _candidate(raw, 'aviationstack', 'structured')
        if candidate:
            candidates.append(candidate)

    return candidates


def match_callsign(callsign: Optional[str], flight_number: str) -> bool:
    """
    Fuzzy match an ATC callsign against a flight number.

    Examples:
        ('PAL216  ', 'PR216') -> True
        ('PR216', 'PR216')    -> True
        ('PAL2160', 'PR216')  -> False
    """
    canonical = normalize_flight_number(flight_number)
    if not callsign or not canonical:
        return False

    compact = re.sub(r'\s+', '', callsign).upper()
    if compact == canonical:
        return True

    prefix = airline_code_for(canonical)
    digits = canonical[len(prefix):].lstrip('0')
    icao = AIRLINE_ICAO.get(prefix)
    if icao and compact.startswith(icao):
        return compact[len(icao):].lstrip('0') == digits
    return False


def callsign_to_flight_number(callsign: Optional[str]) -> Optional[str]:
    """Map an ICAO callsign like 'PAL216' to 'PR216' when the carrier is known."""
    if not callsign:
        return None
    compact = re.sub(r'\s+', '', callsign).upper()
    icao, digits = compact[:3], compact[3:]
    if icao in ICAO_TO_IATA and digits.isdigit():
        return normalize_flight_number(ICAO_TO_IATA[icao] + digits)
    return normalize_flight_number(compact)


def extract_live_positions(payload, target: Optional[str] = None) -> list[dict]:
    """
    Extract aircraft positions from an OpenSky /states/all payload.

    Args:
        payload: Decoded JSON with 'time' and a 'states' list of state vectors
        target: Optional flight number; only matching callsigns are kept

    Returns:
        list: Position dicts ready for the live_positions table
    """
    if not isinstance(payload, dict) or not isinstance(payload.get('states'), list):
        return []

    observed_at = None
    if isinstance(payload.get('time'), (int, float)):
        observed_at = datetime.fromtimestamp(payload['time'], tz=timezone.utc)

    positions = []
    for state in payload['states']:
        # State vectors carry at least 11 entries up to true_track
        if not isinstance(state, list) or len(state) < 11 or not state[0]:
            continue

        callsign = state[1].strip() if isinstance(state[1], str) else None
        if target:
            if not match_callsign(callsign, target):
                continue
            flight_number = normalize_flight_number(target)
        else:
            flight_number = callsign_to_flight_number(callsign)

        positions.append({
            'icao24': state[0],
            'callsign': callsign or None,
            'flight_number': flight_number,
            'origin_country': state[2],
            'longitude': state[5],
            'latitude': state[6],
            'altitude': state[7],
            'on_ground': bool(state[8]),
            'velocity': state[9],
            'heading': state[10],
            'observed_at': observed_at,
        })

    return positions


# Column aliases accepted by the CSV loader
CSV_ALIASES = {
    'origin': 'origin_code',
    'destination': 'destination_code',
    'departure': 'departure_time',
    'arrival': 'arrival_time',
    'duration': 'duration_minutes',
    'aircraft': 'aircraft_type',
    'days': 'days_of_week',
}


def extract_csv(filepath: str, source: Optional[str] = None) -> list[CandidateRecord]:
    """
    Read schedule rows from a CSV file.

    Expected CSV format (header names may also use the short aliases):
        flight_number,airline_code,origin_code,destination_code,departure_time,arrival_time
        PX101,PX,POM,LAE,06:00,07:15

    Args:
        filepath: Path to the CSV file
        source: Provenance label (defaults to 'csv:<filepath>')

    Returns:
        list: One structured candidate per row with a valid flight number
    """
    source = source or f"csv:{filepath}"
    candidates = []

    with open(filepath, 'r', newline='') as f:
        reader = csv.DictReader(f)
        for line_number, row in enumerate(reader, start=2):
            raw = {}
            for column, value in row.items():
                if column is None:
                    continue
                name = column.strip().lower()
                raw[CSV_ALIASES.get(name, name)] = value.strip() if isinstance(value, str) else value
            if raw.get('flight_number') and not raw.get('airline_code'):
                raw['airline_code'] = airline_code_for(normalize_flight_number(raw['flight_number']) or '')

            candidate = _candidate(raw, source, 'structured')
            if candidate:
                candidates.append(candidate)
            else:
                logger.warning("%s line %d: no valid flight number, row ignored", filepath, line_number)

    return candidates
