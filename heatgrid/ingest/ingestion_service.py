"""Load the measurement corpus into Spark DataFrames."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Optional

from py4j.protocol import Py4JError
from pyspark.errors import PySparkException
from pyspark.sql import DataFrame, SparkSession
from pyspark.sql import functions as F
from pyspark.sql import types as T

from heatgrid.common.errors import DataSourceError

log = logging.getLogger(__name__)

MEASUREMENT_SCHEMA = T.StructType(
    [
        T.StructField("id", T.LongType(), True),
        T.StructField("stream_id", T.LongType(), True),
        T.StructField("value", T.DoubleType(), True),
        T.StructField("latitude", T.DoubleType(), True),
        T.StructField("longitude", T.DoubleType(), True),
        T.StructField("time", T.StringType(), True),
    ]
)

STREAM_SCHEMA = T.StructType(
    [
        T.StructField("id", T.LongType(), True),
        T.StructField("session_id", T.LongType(), True),
        T.StructField("measurement_type", T.StringType(), True),
        T.StructField("sensor_name", T.StringType(), True),
        T.StructField("measurements_count", T.LongType(), True),
    ]
)

SESSION_SCHEMA = T.StructType(
    [
        T.StructField("id", T.LongType(), True),
        T.StructField("user_id", T.LongType(), True),
        T.StructField("title", T.StringType(), True),
        T.StructField("contribute", T.BooleanType(), True),
    ]
)

USER_SCHEMA = T.StructType(
    [
        T.StructField("id", T.LongType(), True),
        T.StructField("username", T.StringType(), True),
    ]
)

TAGGING_SCHEMA = T.StructType(
    [
        T.StructField("session_id", T.LongType(), True),
        T.StructField("tag", T.StringType(), True),
    ]
)

REQUIRED_MEASUREMENT_FIELDS = ("value", "latitude", "longitude", "time", "stream_id")


@contextmanager
def data_source_errors(action: str) -> Iterator[None]:
    """Re-raise Spark and Py4J failures as retryable DataSourceErrors."""

    try:
        yield
    except (PySparkException, Py4JError) as exc:
        raise DataSourceError(f"Failed while {action}: {exc}") from exc


def timezone_offset_minutes(raw_time: Optional[str]) -> Optional[int]:
    """Offset from UTC, in minutes, carried by a recorded ISO timestamp."""

    if not raw_time:
        return None
    text = raw_time.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    offset = parsed.utcoffset()
    if offset is None:
        return 0
    return int(offset.total_seconds() // 60)


@dataclass
class MeasurementCorpus:
    """The five tables the averaging engine reads from."""

    measurements: DataFrame
    streams: DataFrame
    sessions: DataFrame
    users: DataFrame
    taggings: DataFrame


class IngestionService:
    """Read wrapper for newline-delimited JSON dumps of the corpus."""

    def __init__(
        self,
        spark: SparkSession,
        measurements_path: str,
        streams_path: str,
        sessions_path: str,
        users_path: str,
        taggings_path: str,
    ) -> None:
        self.spark = spark
        self.measurements_path = measurements_path
        self.streams_path = streams_path
        self.sessions_path = sessions_path
        self.users_path = users_path
        self.taggings_path = taggings_path

    def load_corpus(self) -> MeasurementCorpus:
        measurements = self.load_measurements()
        streams = with_measurement_counts(self.load_streams(), measurements)
        return MeasurementCorpus(
            measurements=measurements,
            streams=streams,
            sessions=self.load_sessions(),
            users=self.load_users(),
            taggings=self.load_taggings(),
        )

    def load_measurements(self) -> DataFrame:
        """Return valid measurements with local time and timezone offset derived."""

        with data_source_errors(f"reading {self.measurements_path}"):
            raw = self.spark.read.schema(MEASUREMENT_SCHEMA).json(self.measurements_path)
            cleaned = self.clean_measurements(raw).cache()
            rejected = raw.count() - cleaned.count()
        if rejected:
            log.warning(
                "Dropped %d measurements missing one of %s", rejected, ", ".join(REQUIRED_MEASUREMENT_FIELDS)
            )
        return cleaned

    def clean_measurements(self, df: DataFrame) -> DataFrame:
        offset_udf = F.udf(timezone_offset_minutes, T.IntegerType())
        return (
            df.dropna(subset=REQUIRED_MEASUREMENT_FIELDS)
            # Wall clock as recorded, ignoring the offset suffix and the session time zone.
            .withColumn(
                "local_time",
                F.expr("try_cast(substring(`time`, 1, 19) AS TIMESTAMP_NTZ)"),
            )
            .withColumn("timezone_offset", offset_udf(F.col("time")))
            .dropna(subset=("local_time",))
            .select(
                F.col("id").alias("measurement_id"),
                "stream_id",
                "value",
                "latitude",
                "longitude",
                F.col("local_time").alias("time"),
                "timezone_offset",
            )
        )

    def load_streams(self) -> DataFrame:
        with data_source_errors(f"reading {self.streams_path}"):
            df = self.spark.read.schema(STREAM_SCHEMA).json(self.streams_path)
        return df.dropna(subset=("id", "session_id")).withColumnRenamed("id", "stream_id")

    def load_sessions(self) -> DataFrame:
        with data_source_errors(f"reading {self.sessions_path}"):
            df = self.spark.read.schema(SESSION_SCHEMA).json(self.sessions_path)
        return (
            df.dropna(subset=("id",))
            .withColumn("contribute", F.coalesce(F.col("contribute"), F.lit(False)))
            .withColumnRenamed("id", "session_id")
        )

    def load_users(self) -> DataFrame:
        with data_source_errors(f"reading {self.users_path}"):
            df = self.spark.read.schema(USER_SCHEMA).json(self.users_path)
        return df.dropna(subset=("id", "username")).withColumnRenamed("id", "user_id")

    def load_taggings(self) -> DataFrame:
        with data_source_errors(f"reading {self.taggings_path}"):
            df = self.spark.read.schema(TAGGING_SCHEMA).json(self.taggings_path)
        return df.dropna(subset=("session_id", "tag")).withColumn("tag", F.trim("tag"))


def with_measurement_counts(streams: DataFrame, measurements: DataFrame) -> DataFrame:
    """Refresh each stream's cached measurement count from the loaded rows."""

    counts = measurements.groupBy("stream_id").agg(F.count("*").alias("loaded_count"))
    return (
        streams.join(counts, on="stream_id", how="left")
        .withColumn("measurements_count", F.coalesce(F.col("loaded_count"), F.lit(0)).cast("long"))
        .drop("loaded_count")
    )
