"""Tests for extractors module."""

import os
import tempfile
from datetime import datetime, timezone

from flightsync.extractors import (
    callsign_to_flight_number,
    extract_csv,
    extract_flight_status,
    extract_google_flights,
    extract_live_positions,
    extract_route,
    extract_search_results,
    extract_status,
    extract_times,
    find_flight_numbers,
    match_callsign,
)


class TestFindFlightNumbers:
    """Tests for find_flight_numbers function."""

    def test_target_with_space(self):
        """'PR 216' matches the PR216 target."""
        assert find_flight_numbers('Track PR 216 live', 'PR216') == ['PR216']

    def test_target_without_space(self):
        assert find_flight_numbers('pr216 flight status', 'PR 216') == ['PR216']

    def test_target_not_present(self):
        assert find_flight_numbers('PR2160 departs at 10:00', 'PR216') == []

    def test_untargeted_uppercase_tokens(self):
        text = 'PR216 and PX 8 share a gate, unlike PR216 yesterday'
        assert find_flight_numbers(text) == ['PR216', 'PX8']

    def test_untargeted_ignores_aircraft_and_years(self):
        assert find_flight_numbers('Airbus A330 delivered in 2025') == []

    def test_untargeted_known_digit_carrier(self):
        assert find_flight_numbers('Cebu Pacific 5J 560') == ['5J560']

    def test_untargeted_lowercase_tokens(self):
        assert find_flight_numbers('flight pr216 departs POM') == ['PR216']
        assert find_flight_numbers('px 8 then mh370') == ['PX8', 'MH370']

    def test_untargeted_ignores_words_before_times_and_numbers(self):
        assert find_flight_numbers('departs at 10:30, gate in 12, seen in 2025') == []

    def test_empty_text(self):
        assert find_flight_numbers('', 'PR216') == []


class TestExtractTimes:
    """Tests for extract_times function."""

    def test_two_times_positional(self):
        assert extract_times('Departs 10:00, arrives 14:45') == ('10:00', '14:45')

    def test_single_time_yields_nothing(self):
        """Fewer than two tokens leaves both times unknown."""
        assert extract_times('Departs 10:00') == (None, None)

    def test_duplicate_times_are_not_distinct(self):
        assert extract_times('10:00 local, 10:00 scheduled') == (None, None)

    def test_meridiem_converted(self):
        assert extract_times('Departure 9:30 AM Arrival 2:45 PM') == ('09:30', '14:45')

    def test_extra_times_ignored(self):
        assert extract_times('06:00 07:15 08:00') == ('06:00', '07:15')


class TestExtractStatus:
    """Tests for extract_status function."""

    def test_cancelled_beats_on_time(self):
        """A snippet with both 'on time' and 'cancelled' is cancelled."""
        assert extract_status('Flight was on time yesterday but is cancelled today') == 'cancelled'

    def test_delayed_beats_scheduled(self):
        assert extract_status('Scheduled 10:00, now Delayed') == 'delayed'

    def test_scheduled_is_on_time(self):
        assert extract_status('scheduled departure') == 'on_time'

    def test_default(self):
        assert extract_status('nothing to see') == 'active'
        assert extract_status('nothing to see', default=None) is None

    def test_us_spelling(self):
        assert extract_status('Flight canceled') == 'cancelled'


class TestExtractRoute:
    """Tests for extract_route function."""

    def test_code_pair_with_to(self):
        assert extract_route('PR216 POM to MNL') == ('POM', 'MNL')

    def test_code_pair_with_dash(self):
        assert extract_route('Route: POM-MNL') == ('POM', 'MNL')

    def test_code_pair_with_arrow(self):
        assert extract_route('POM → MNL') == ('POM', 'MNL')

    def test_city_names(self):
        assert extract_route('Philippine Airlines from Port Moresby to Manila') == ('POM', 'MNL')

    def test_city_names_order_of_appearance(self):
        assert extract_route('Manila bound for Brisbane') == ('MNL', 'BNE')

    def test_single_city_unresolved(self):
        assert extract_route('Flights to Manila') == (None, None)

    def test_unknown_cities_unresolved(self):
        assert extract_route('Flights from Atlantis to Lemuria') == (None, None)

    def test_unknown_code_pair_unresolved(self):
        assert extract_route('PR216 ABC to XYZ') == (None, None)
        assert extract_route('NEW-ERA fares from Port Moresby to Manila') == ('POM', 'MNL')

    def test_code_pair_checked_against_given_codes(self):
        assert extract_route('PR216 POM to AKL', airport_codes={'POM', 'AKL'}) == ('POM', 'AKL')
        assert extract_route('PR216 POM to MNL', airport_codes={'POM'}) == (None, None)


class TestExtractSearchResults:
    """Tests for extract_search_results function."""

    def test_organic_result(self):
        payload = {
            'organic_results': [
                {
                    'title': 'PR 216 Flight Status - Philippine Airlines',
                    'snippet': 'Port Moresby to Manila. Departs 10:00 arrives 14:45. On time.',
                    'link': 'https://example.com/pr216',
                },
            ]
        }

        candidates = extract_search_results(payload, target='PR216', query='PR216 flight status')

        assert len(candidates) == 1
        fields = candidates[0].fields
        assert fields['flight_number'] == 'PR216'
        assert fields['airline_code'] == 'PR'
        assert fields['airline_name'] == 'Philippine Airlines'
        assert fields['origin_code'] == 'POM'
        assert fields['destination_code'] == 'MNL'
        assert fields['departure_time'] == '10:00'
        assert fields['arrival_time'] == '14:45'
        assert fields['status'] == 'on_time'
        assert candidates[0].confidence == 'heuristic'
        assert candidates[0].source.startswith('serpapi:PR216 flight status#1')

    def test_unrelated_results_skipped(self):
        payload = {
            'organic_results': [
                {'title': 'PR 215 status', 'snippet': '10:00 14:45'},
                {'title': 'Manila weather', 'snippet': 'Sunny'},
            ]
        }
        assert extract_search_results(payload, target='PR216') == []

    def test_no_keyword_leaves_status_unknown(self):
        payload = {'organic_results': [{'title': 'PR216', 'snippet': 'Port Moresby - Manila'}]}
        candidates = extract_search_results(payload, target='PR216')
        assert 'status' not in candidates[0].fields

    def test_answer_box_first(self):
        payload = {
            'answer_box': {
                'title': 'PR216 Philippine Airlines',
                'flight': {'departure_time': '09:30', 'arrival_time': '14:50', 'status': 'Delayed'},
            },
            'organic_results': [
                {'title': 'PR216', 'snippet': 'Departs 10:00 arrives 14:45'},
            ],
        }

        candidates = extract_search_results(payload, target='PR216')

        assert len(candidates) == 2
        assert candidates[0].source.endswith('#answer_box')
        assert candidates[0].confidence == 'structured'
        assert candidates[0].fields['departure_time'] == '09:30'
        assert candidates[0].fields['status'] == 'delayed'
        assert candidates[1].fields['departure_time'] == '10:00'

    def test_malformed_payloads(self):
        """Malformed payloads yield no candidates instead of raising."""
        assert extract_search_results(None, target='PR216') == []
        assert extract_search_results(['not', 'a', 'dict'], target='PR216') == []
        assert extract_search_results({'organic_results': 'oops'}, target='PR216') == []
        assert extract_search_results({'organic_results': [None, 42]}, target='PR216') == []


class TestExtractGoogleFlights:
    """Tests for extract_google_flights function."""

    PAYLOAD = {
        'best_flights': [
            {
                'flights': [
                    {
                        'flight_number': 'PR 216',
                        'airline': 'Philippine Airlines',
                        'airplane': 'Airbus A330',
                        'duration': 345,
                        'departure_airport': {'id': 'POM', 'time': '2025-10-20 10:00'},
                        'arrival_airport': {'id': 'MNL', 'time': '2025-10-20 14:45'},
                    },
                    {
                        'flight_number': 'PR 2131',
                        'airline': 'Philippine Airlines',
                        'departure_airport': {'id': 'MNL', 'time': '2025-10-20 16:20'},
                        'arrival_airport': {'id': 'CEB', 'time': '2025-10-20 18:05'},
                    },
                ],
            },
        ],
        'other_flights': [
            {'flights': [{'flight_number': 'PX 10', 'departure_airport': {'id': 'POM'}, 'arrival_airport': {'id': 'MNL'}}]},
            'garbage',
        ],
    }

    def test_all_segments(self):
        candidates = extract_google_flights(self.PAYLOAD)
        assert [c.flight_number for c in candidates] == ['PR216', 'PR2131', 'PX10']

    def test_target_filter(self):
        candidates = extract_google_flights(self.PAYLOAD, target='PR216')

        assert len(candidates) == 1
        fields = candidates[0].fields
        assert fields['origin_code'] == 'POM'
        assert fields['destination_code'] == 'MNL'
        assert fields['departure_time'] == '10:00'
        assert fields['arrival_time'] == '14:45'
        assert fields['duration_minutes'] == 345
        assert fields['aircraft_type'] == 'Airbus A330'
        assert candidates[0].confidence == 'structured'

    def test_malformed(self):
        assert extract_google_flights('nope') == []
        assert extract_google_flights({'best_flights': None}) == []


class TestExtractFlightStatus:
    """Tests for extract_flight_status function."""

    def _entry(self, **overrides):
        entry = {
            'flight_date': '2025-10-19',
            'flight_status': 'scheduled',
            'departure': {'iata': 'POM', 'scheduled': '2025-10-19T10:00:00+00:00', 'delay': None},
            'arrival': {'iata': 'MNL', 'scheduled': '2025-10-19T14:45:00+00:00'},
            'airline': {'name': 'Philippine Airlines', 'iata': 'PR'},
            'flight': {'number': '216', 'iata': 'PR216'},
            'aircraft': {'iata': 'A333'},
        }
        entry.update(overrides)
        return entry

    def test_basic_entry(self):
        candidates = extract_flight_status({'data': [self._entry()]}, target='PR216')

        assert len(candidates) == 1
        fields = candidates[0].fields
        assert fields['flight_number'] == 'PR216'
        assert fields['airline_code'] == 'PR'
        assert fields['origin_code'] == 'POM'
        assert fields['destination_code'] == 'MNL'
        assert fields['departure_time'] == '10:00'
        assert fields['arrival_time'] == '14:45'
        assert fields['aircraft_type'] == 'A333'
        assert fields['status'] == 'on_time'
        assert candidates[0].source == 'aviationstack'

    def test_duration_from_scheduled_times(self):
        fields = extract_flight_status({'data': [self._entry()]})[0].fields
        assert fields['duration_minutes'] == 285

    def test_duration_missing_timestamp(self):
        entry = self._entry(arrival={'iata': 'MNL', 'scheduled': None})
        assert 'duration_minutes' not in extract_flight_status({'data': [entry]})[0].fields

    def test_status_mapping(self):
        cancelled = self._entry(flight_status='cancelled')
        delayed = self._entry(
            flight_status='active',
            departure={'iata': 'POM', 'scheduled': '2025-10-19T10:00:00+00:00', 'delay': 25},
        )
        landed = self._entry(flight_status='landed')
        incident = self._entry(flight_status='incident')

        statuses = [
            c.fields['status'] for c in extract_flight_status({'data': [cancelled, delayed, landed, incident]})
        ]
        assert statuses == ['cancelled', 'delayed', 'active', 'cancelled']

    def test_target_filter_and_missing_numbers(self):
        other = self._entry(flight={'iata': 'PR215'})
        no_number = self._entry(flight={})
        candidates = extract_flight_status({'data': [other, no_number, self._entry()]}, target='PR216')
        assert [c.flight_number for c in candidates] == ['PR216']

    def test_malformed(self):
        assert extract_flight_status({'error': {'code': 'invalid_access_key'}}) == []
        assert extract_flight_status({'data': [None]}) == []


class TestLivePositions:
    """Tests for OpenSky live position extraction."""

    PAYLOAD = {
        'time': 1760868000,
        'states': [
            ['75827a', 'PAL216  ', 'Philippines', 1760867990, 1760867995, 135.1, 2.5, 11277.6, False, 240.3, 315.0],
            ['7c6b2d', 'QFA15   ', 'Australia', 1760867990, 1760867995, 150.0, -30.0, 10000.0, False, 230.0, 200.0],
            ['abc123', None, 'United States', 1760867990, 1760867995, None, None, None, True, 0.0, 0.0],
            ['short'],
        ],
    }

    def test_match_callsign(self):
        assert match_callsign('PAL216  ', 'PR216')
        assert match_callsign('PR216', 'PR 216')
        assert match_callsign('PAL0216', 'PR216')
        assert not match_callsign('PAL2160', 'PR216')
        assert not match_callsign('CEB216', 'PR216')
        assert not match_callsign(None, 'PR216')

    def test_callsign_to_flight_number(self):
        assert callsign_to_flight_number('PAL216 ') == 'PR216'
        assert callsign_to_flight_number('ZZZ12X') is None

    def test_target_filter(self):
        positions = extract_live_positions(self.PAYLOAD, target='PR216')

        assert len(positions) == 1
        position = positions[0]
        assert position['icao24'] == '75827a'
        assert position['callsign'] == 'PAL216'
        assert position['flight_number'] == 'PR216'
        assert position['latitude'] == 2.5
        assert position['longitude'] == 135.1
        assert position['on_ground'] is False
        assert position['observed_at'] == datetime.fromtimestamp(1760868000, tz=timezone.utc)

    def test_full_snapshot(self):
        positions = extract_live_positions(self.PAYLOAD)
        assert [p['flight_number'] for p in positions] == ['PR216', 'QF15', None]

    def test_malformed(self):
        assert extract_live_positions({'states': None}) == []
        assert extract_live_positions('') == []


class TestExtractCsv:
    """Tests for extract_csv function."""

    def test_parse_standard_csv(self):
        """Parse a schedule CSV using short column aliases."""
        csv_content = """flight_number,airline_name,origin,destination,departure,arrival,duration,aircraft,days
PX101,Air Niugini,POM,LAE,06:00,07:15,75,Dash 8-400,1111100
PR 216,Philippine Airlines,POM,MNL,10:00,14:45,345,Airbus A330-300,0010000
"""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.csv', delete=False) as f:
            f.write(csv_content)
            f.flush()

            try:
                candidates = extract_csv(f.name, source='seed')

                assert len(candidates) == 2
                first = candidates[0].fields
                assert first['flight_number'] == 'PX101'
                assert first['airline_code'] == 'PX'
                assert first['origin_code'] == 'POM'
                assert first['destination_code'] == 'LAE'
                assert first['duration_minutes'] == 75
                assert first['days_of_week'] == '1111100'
                assert candidates[1].flight_number == 'PR216'
                assert candidates[1].source == 'seed'
            finally:
                os.unlink(f.name)

    def test_invalid_rows_ignored(self):
        csv_content = """flight_number,origin_code,destination_code
,POM,MNL
not-a-flight,POM,MNL
PR216,POM,MNL
"""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.csv', delete=False) as f:
            f.write(csv_content)
            f.flush()

            try:
                candidates = extract_csv(f.name)
                assert [c.flight_number for c in candidates] == ['PR216']
            finally:
                os.unlink(f.name)
