"""Build Spark RDDs of measurements joined with their session metadata."""

from __future__ import annotations

from pyspark import RDD
from pyspark.sql import Row, SparkSession

from heatgrid.common.models import EnrichedMeasurement
from heatgrid.ingest.sources import MeasurementSource


class RDDBuilder:
    """Materialises enriched measurement records for in-memory averaging."""

    def __init__(self, spark: SparkSession, source: MeasurementSource) -> None:
        self.spark = spark
        self.source = source

    def build_enriched_measurements(self) -> RDD:
        return self.source.measurements().rdd.map(RDDBuilder._to_enriched)

    @staticmethod
    def _to_enriched(row: Row) -> EnrichedMeasurement:
        return EnrichedMeasurement(
            measurement_id=row.measurement_id,
            value=float(row.value),
            latitude=float(row.latitude),
            longitude=float(row.longitude),
            time=row.time,
            timezone_offset=int(row.timezone_offset or 0),
            stream_id=int(row.stream_id),
            measurement_type=row.measurement_type,
            sensor_name=row.sensor_name,
            session_id=int(row.session_id),
            contribute=bool(row.contribute),
            user_id=row.user_id,
            username=row.username,
        )
