"""Measurement data source consumed by the averaging engine."""

from __future__ import annotations

import logging
from typing import FrozenSet, Iterable

from pyspark.sql import DataFrame
from pyspark.sql import functions as F

from heatgrid.ingest.ingestion_service import MeasurementCorpus, data_source_errors

log = logging.getLogger(__name__)

JOINED_COLUMNS = (
    "measurement_id",
    "value",
    "latitude",
    "longitude",
    "time",
    "timezone_offset",
    "stream_id",
    "measurement_type",
    "sensor_name",
    "session_id",
    "contribute",
    "user_id",
    "username",
)


class MeasurementSource:
    """Joins measurements to their stream, session and owner for one query."""

    def __init__(self, corpus: MeasurementCorpus) -> None:
        self.corpus = corpus

    def measurements(self) -> DataFrame:
        """Return the lazily joined frame; filters applied to it reach the scan."""

        streams = self.corpus.streams.select("stream_id", "session_id", "measurement_type", "sensor_name")
        sessions = self.corpus.sessions.select("session_id", "user_id", "contribute")
        users = self.corpus.users.select("user_id", "username")
        return (
            self.corpus.measurements.join(streams, on="stream_id", how="inner")
            .join(sessions, on="session_id", how="inner")
            .join(users, on="user_id", how="left")
            .select(*JOINED_COLUMNS)
        )

    def session_ids_tagged_with(self, tags: Iterable[str]) -> FrozenSet[int]:
        """Ids of sessions carrying at least one of ``tags``."""

        wanted = sorted(set(tags))
        if not wanted:
            return frozenset()
        with data_source_errors("looking up tagged sessions"):
            rows = (
                self.corpus.taggings.filter(F.col("tag").isin(wanted))
                .select("session_id")
                .distinct()
                .collect()
            )
        session_ids = frozenset(int(row.session_id) for row in rows)
        log.debug("Tags %s resolved to %d sessions", wanted, len(session_ids))
        return session_ids
