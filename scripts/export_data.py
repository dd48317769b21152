"""Export the flight schedule and airport tables to Parquet files."""

from pathlib import Path

import pandas as pd
from sqlalchemy import text

from flightsync.database import get_engine

DATA_DIR = Path(__file__).resolve().parent.parent / "data" / "export"


def export(engine=None, data_dir: Path = DATA_DIR):
    data_dir.mkdir(parents=True, exist_ok=True)
    engine = engine or get_engine()

    flights_df = pd.read_sql(
        text("""
            SELECT
                f.flight_number,
                f.airline_code,
                f.airline_name,
                f.origin_code,
                o.city AS origin_city,
                f.destination_code,
                d.city AS destination_city,
                f.departure_time,
                f.arrival_time,
                f.duration_minutes,
                f.aircraft_type,
                f.days_of_week,
                f.effective_from,
                f.effective_to,
                f.status,
                f.source,
                f.updated_at
            FROM flights f
            LEFT JOIN airports o ON o.code = f.origin_code
            LEFT JOIN airports d ON d.code = f.destination_code
            ORDER BY f.airline_code, f.flight_number
        """),
        engine,
    )
    flights_df.to_parquet(data_dir / "flights.parquet", index=False)
    print(f"Exported {len(flights_df)} flights")

    airports_df = pd.read_sql(text("SELECT * FROM airports ORDER BY code"), engine)
    airports_df.to_parquet(data_dir / "airports.parquet", index=False)
    print(f"Exported {len(airports_df)} airports")

    return len(flights_df), len(airports_df)


if __name__ == "__main__":
    export()
