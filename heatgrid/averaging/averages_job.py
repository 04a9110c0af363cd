"""Entry point for a one-off heat-grid averaging run."""

from __future__ import annotations

import argparse
import json
import logging
from typing import Optional, Sequence

from pyspark.sql import SparkSession

from heatgrid.averaging.aggregator import GridAverager
from heatgrid.averaging.persistence import Persistence
from heatgrid.common.config import AppConfig, load_config, load_query_params
from heatgrid.common.models import AveragesQuery
from heatgrid.ingest.ingestion_service import IngestionService
from heatgrid.ingest.sources import MeasurementSource

log = logging.getLogger(__name__)


def build_spark(config: AppConfig) -> SparkSession:
    return (
        SparkSession.builder.appName(config.spark.app_name)
        .master(config.spark.master)
        .config("spark.sql.shuffle.partitions", str(config.spark.shuffle_partitions))
        .config("spark.sql.session.timeZone", config.spark.session_time_zone)
        .getOrCreate()
    )


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Average sensor measurements over a lat/lon grid.")
    parser.add_argument("--config", default="config/local.yaml", help="Path to YAML config.")
    parser.add_argument("--query", required=True, help="Path to a YAML file with the query parameters.")
    parser.add_argument("--output", default=None, help="Persist results under this name.")
    parser.add_argument(
        "--format", choices=("json", "parquet"), default="json", help="Format used with --output."
    )
    args = parser.parse_args(argv)

    config = load_config(args.config)
    logging.basicConfig(level=config.logging.level, format=config.logging.format)

    # Reject bad parameters before any Spark work.
    query = AveragesQuery.from_params(load_query_params(args.query))

    spark = build_spark(config)
    try:
        ingestion = IngestionService(
            spark,
            measurements_path=config.dataset.measurements_path,
            streams_path=config.dataset.streams_path,
            sessions_path=config.dataset.sessions_path,
            users_path=config.dataset.users_path,
            taggings_path=config.dataset.taggings_path,
        )
        averager = GridAverager(spark, MeasurementSource(ingestion.load_corpus()))
        persistence = Persistence(config.output.base_path)

        if args.output and args.format == "parquet":
            persistence.write({args.output: averager.averages_frame(query)})
            log.info("Wrote %s to %s", args.output, config.output.base_path)
            return

        averages = averager.averages(query)
        if args.output:
            target = persistence.write_averages(args.output, averages)
            log.info("Wrote %d cells to %s", len(averages), target)
        print(json.dumps([average.to_dict() for average in averages]))
    finally:
        spark.stop()


if __name__ == "__main__":
    main()
