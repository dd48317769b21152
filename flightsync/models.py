"""SQLAlchemy models for the flight schedule store."""

from sqlalchemy import (
    Column, Integer, String, Date, DateTime, Float, Boolean, Text,
    Index, UniqueConstraint
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()

# Columns written by the reconciler on every insert or full-row replace
FLIGHT_FIELDS = (
    'flight_number',
    'airline_code',
    'airline_name',
    'origin_code',
    'destination_code',
    'departure_time',
    'arrival_time',
    'duration_minutes',
    'aircraft_type',
    'days_of_week',
    'effective_from',
    'effective_to',
    'status',
)

FLIGHT_STATUSES = ('active', 'cancelled', 'delayed', 'on_time')


class Flight(Base):
    """Represents one scheduled flight leg."""

    __tablename__ = 'flights'

    id = Column(Integer, primary_key=True)
    flight_number = Column(String(10), nullable=False, index=True)
    airline_code = Column(String(3), nullable=False, index=True)
    airline_name = Column(String(100), nullable=True)
    origin_code = Column(String(3), nullable=False)
    destination_code = Column(String(3), nullable=False)
    departure_time = Column(String(5), nullable=False)
    arrival_time = Column(String(5), nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=0)
    aircraft_type = Column(String(50), nullable=True)
    # Index 0 is Monday
    days_of_week = Column(String(7), nullable=False, default='1111111')
    effective_from = Column(Date, nullable=False)
    effective_to = Column(Date, nullable=False)
    status = Column(String(10), nullable=False, default='active')
    source = Column(String(200), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('flight_number', 'origin_code', 'destination_code', name='uix_flight_route'),
        Index('ix_flights_route', 'origin_code', 'destination_code'),
    )

    def to_dict(self):
        return {field: getattr(self, field) for field in FLIGHT_FIELDS}

    def __repr__(self):
        return (
            f"<Flight(flight_number={self.flight_number}, "
            f"route={self.origin_code}-{self.destination_code}, "
            f"dep={self.departure_time}, arr={self.arrival_time})>"
        )


class Airport(Base):
    """Airport reference data, keyed by IATA code."""

    __tablename__ = 'airports'

    code = Column(String(3), primary_key=True)
    name = Column(String(200), nullable=False)
    city = Column(String(100), nullable=True)
    country = Column(String(100), nullable=True)
    timezone = Column(String(50), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    def __repr__(self):
        return f"<Airport(code={self.code}, city={self.city})>"


class SearchLog(Base):
    """Audit row for one external source fetch."""

    __tablename__ = 'search_log'

    id = Column(Integer, primary_key=True)
    source = Column(String(50), nullable=False)
    query = Column(String(500), nullable=True)
    flight_number = Column(String(10), nullable=True, index=True)
    result_count = Column(Integer, nullable=False, default=0)
    payload = Column(Text, nullable=True)
    error = Column(Text, nullable=True)
    searched_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<SearchLog(source={self.source}, query={self.query}, results={self.result_count})>"


class LivePosition(Base):
    """A single aircraft position from the latest live snapshot."""

    __tablename__ = 'live_positions'

    id = Column(Integer, primary_key=True)
    icao24 = Column(String(6), nullable=False, index=True)
    callsign = Column(String(10), nullable=True)
    flight_number = Column(String(10), nullable=True, index=True)
    origin_country = Column(String(100), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    altitude = Column(Float, nullable=True)
    velocity = Column(Float, nullable=True)
    heading = Column(Float, nullable=True)
    on_ground = Column(Boolean, default=False)
    observed_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<LivePosition(icao24={self.icao24}, callsign={self.callsign})>"
