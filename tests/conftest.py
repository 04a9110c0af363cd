import json
import sys
from pathlib import Path

import pytest
from pyspark.sql import SparkSession

# Ensure the repository root (which contains the `heatgrid` package) is importable in tests.
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from heatgrid.ingest.ingestion_service import IngestionService  # noqa: E402
from heatgrid.ingest.sources import MeasurementSource  # noqa: E402

PM = {"measurement_type": "Particulate Matter", "sensor_name": "AirBeam-PM"}

USERS = [
    {"id": 1, "username": "alice"},
    {"id": 2, "username": "bob"},
]

SESSIONS = [
    {"id": 10, "user_id": 1, "title": "Morning walk", "contribute": True},
    {"id": 11, "user_id": 2, "title": "School run", "contribute": True},
    {"id": 12, "user_id": 1, "title": "Private", "contribute": False},
]

STREAMS = [
    {"id": 100, "session_id": 10, **PM, "measurements_count": 0},
    {"id": 101, "session_id": 11, **PM, "measurements_count": 0},
    {"id": 102, "session_id": 12, **PM, "measurements_count": 0},
    {"id": 103, "session_id": 10, "measurement_type": "Humidity", "sensor_name": "AirBeam-RH"},
]

MEASUREMENTS = [
    {"id": 1, "stream_id": 100, "value": 1.0, "latitude": 0.0, "longitude": 0.0, "time": "2013-07-01T08:30:00-04:00"},
    {"id": 2, "stream_id": 101, "value": 3.0, "latitude": 0.1, "longitude": 0.1, "time": "2014-02-10T23:30:00Z"},
    {"id": 3, "stream_id": 100, "value": 5.0, "latitude": 5.0, "longitude": 5.0, "time": "2015-12-31T12:00:00+02:00"},
    # Private session and a different sensor at the same spot.
    {"id": 4, "stream_id": 102, "value": 100.0, "latitude": 0.0, "longitude": 0.0, "time": "2013-07-01T08:30:00"},
    {"id": 5, "stream_id": 103, "value": 50.0, "latitude": 0.0, "longitude": 0.0, "time": "2013-07-01T08:30:00"},
]

TAGGINGS = [
    {"session_id": 11, "tag": "asthma"},
    {"session_id": 12, "tag": "school"},
]


@pytest.fixture(scope="session")
def spark():
    spark = (
        SparkSession.builder.master("local[1]")
        .appName("heatgrid-tests")
        .config("spark.ui.enabled", "false")
        .config("spark.sql.shuffle.partitions", "2")
        .config("spark.sql.session.timeZone", "UTC")
        .getOrCreate()
    )
    yield spark
    spark.stop()


@pytest.fixture
def corpus_rows():
    return {
        "measurements": [dict(row) for row in MEASUREMENTS],
        "streams": [dict(row) for row in STREAMS],
        "sessions": [dict(row) for row in SESSIONS],
        "users": [dict(row) for row in USERS],
        "taggings": [dict(row) for row in TAGGINGS],
    }


@pytest.fixture
def write_corpus(spark, tmp_path):
    """Dump rows as JSON lines and return an IngestionService reading them."""

    def _write(measurements=MEASUREMENTS, streams=STREAMS, sessions=SESSIONS, users=USERS, taggings=TAGGINGS):
        paths = {}
        for name, rows in (
            ("measurements", measurements),
            ("streams", streams),
            ("sessions", sessions),
            ("users", users),
            ("taggings", taggings),
        ):
            path = tmp_path / f"{name}.json"
            path.write_text("".join(json.dumps(row) + "\n" for row in rows), encoding="utf-8")
            paths[f"{name}_path"] = str(path)
        return IngestionService(spark, **paths)

    return _write


@pytest.fixture
def source(write_corpus):
    return MeasurementSource(write_corpus().load_corpus())
