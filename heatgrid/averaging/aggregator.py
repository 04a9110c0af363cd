"""Spark aggregations that turn filtered measurements into heat-grid cells."""

from __future__ import annotations

import logging
from typing import Iterable, List, Tuple

from pyspark import RDD
from pyspark.sql import Column, DataFrame, SparkSession
from pyspark.sql import functions as F
from pyspark.sql import types as T

from heatgrid.averaging.filters import FilterPipeline
from heatgrid.common.geo import GridBucketer, resolve_query_grid
from heatgrid.common.models import AveragesQuery, CellAverage, GridCell, GridResolution
from heatgrid.ingest.ingestion_service import data_source_errors
from heatgrid.ingest.sources import MeasurementSource

log = logging.getLogger(__name__)

RESULT_SCHEMA = T.StructType(
    [
        T.StructField("ids", T.ArrayType(T.LongType()), True),
        T.StructField("value", T.DoubleType(), True),
        T.StructField("west", T.DoubleType(), True),
        T.StructField("east", T.DoubleType(), True),
        T.StructField("south", T.DoubleType(), True),
        T.StructField("north", T.DoubleType(), True),
    ]
)


class GridAverager:
    """Averages measurement values per occupied cell of a resolved grid."""

    def __init__(self, spark: SparkSession, source: MeasurementSource) -> None:
        self.spark = spark
        self.source = source

    def pipeline(self, query: AveragesQuery) -> FilterPipeline:
        return FilterPipeline.for_query(query, self.source.session_ids_tagged_with)

    def averages(self, query: AveragesQuery) -> List[CellAverage]:
        """Run one query through the pushed-down DataFrame path."""

        resolution = resolve_query_grid(query)
        pipeline = self.pipeline(query)
        if pipeline.short_circuited:
            return []

        with data_source_errors("averaging measurements"):
            rows = self._cell_frame(pipeline, resolution).collect()

        bucketer = GridBucketer(resolution)
        results = [
            _to_average(GridCell(int(row.middle_x), int(row.middle_y)), row.ids, float(row.value), bucketer)
            for row in rows
        ]
        log.info("Averaged %s/%s into %d cells", query.measurement_type, query.sensor_name, len(results))
        return results

    def averages_frame(self, query: AveragesQuery) -> DataFrame:
        """Same rows as ``averages`` but left as a lazy DataFrame.

        Store failures only surface once the frame is acted on, so callers run
        their action inside ``data_source_errors``.
        """

        resolution = resolve_query_grid(query)
        pipeline = self.pipeline(query)
        if pipeline.short_circuited:
            return self.spark.createDataFrame([], schema=RESULT_SCHEMA)

        with data_source_errors("planning the averaging query"):
            cells = self._cell_frame(pipeline, resolution)
        west, east = _cell_edges_columns(F.col("middle_x"), resolution.grid_x)
        south, north = _cell_edges_columns(F.col("middle_y"), resolution.grid_y)
        return cells.select(
            F.col("ids").cast(T.ArrayType(T.LongType())).alias("ids"),
            F.col("value").cast("double").alias("value"),
            west.alias("west"),
            east.alias("east"),
            south.alias("south"),
            north.alias("north"),
        )

    def averages_from_rdd(self, enriched_rdd: RDD, query: AveragesQuery) -> List[CellAverage]:
        """Run one query over an RDD of ``EnrichedMeasurement`` records."""

        resolution = resolve_query_grid(query)
        pipeline = self.pipeline(query)
        if pipeline.short_circuited:
            return []

        bucketer = GridBucketer(resolution)
        keyed = enriched_rdd.filter(pipeline.accepts).map(
            lambda event: (
                bucketer.bucket(event.latitude, event.longitude),
                (event.value, 1, frozenset((event.session_id,))),
            )
        )
        reduced = keyed.reduceByKey(lambda a, b: (a[0] + b[0], a[1] + b[1], a[2] | b[2]))
        with data_source_errors("averaging measurements"):
            collected = reduced.collect()

        return [
            _to_average(cell, sorted(ids), float(total / count), bucketer)
            for cell, (total, count, ids) in collected
        ]

    def _cell_frame(self, pipeline: FilterPipeline, resolution: GridResolution) -> DataFrame:
        log.debug("Bucketing with grid_x=%s grid_y=%s", resolution.grid_x, resolution.grid_y)
        candidates = pipeline.apply(self.source.measurements())
        return (
            candidates.withColumn("middle_x", _cell_index_column("longitude", resolution.grid_x))
            .withColumn("middle_y", _cell_index_column("latitude", resolution.grid_y))
            .groupBy("middle_x", "middle_y")
            .agg(
                F.avg("value").alias("value"),
                F.array_sort(F.collect_set("session_id")).alias("ids"),
            )
        )


def _cell_edges_columns(index: Column, size: float) -> Tuple[Column, Column]:
    centre = index.cast("double") * F.lit(size)
    half = F.lit(size / 2)
    return centre - half, centre + half


def _cell_index_column(coordinate: str, size: float) -> Column:
    # Same reconciliation as geo.cell_index, in double arithmetic.
    value = F.col(coordinate)
    index = F.round(value / F.lit(size), 0).cast("long")
    lower, upper = _cell_edges_columns(index, size)
    return F.when(value < lower, index - 1).when(value > upper, index + 1).otherwise(index)


def _to_average(cell: GridCell, ids: Iterable[int], value: float, bucketer: GridBucketer) -> CellAverage:
    bounds = bucketer.bounds(cell)
    return CellAverage(
        ids=tuple(int(session_id) for session_id in ids),
        value=value,
        west=bounds.west,
        east=bounds.east,
        south=bounds.south,
        north=bounds.north,
    )
