"""Configuration helpers for the heat-grid averaging job."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml


@dataclass(frozen=True)
class DatasetConfig:
    """Paths to newline-delimited JSON dumps of the measurement corpus."""

    measurements_path: str
    streams_path: str
    sessions_path: str
    users_path: str
    taggings_path: str


@dataclass(frozen=True)
class SparkConfig:
    """Local Spark session settings."""

    master: str = "local[*]"
    app_name: str = "MeasurementHeatGrid"
    shuffle_partitions: int = 8
    session_time_zone: str = "UTC"


@dataclass(frozen=True)
class OutputConfig:
    """Where averaged grids should be persisted."""

    base_path: str = "./data/output"


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class AppConfig:
    """Aggregated configuration model."""

    dataset: DatasetConfig
    spark: SparkConfig
    output: OutputConfig
    logging: LoggingConfig


def load_config(path: str | Path) -> AppConfig:
    """Parse a YAML config file into an AppConfig dataclass."""

    raw = _load_yaml(path)
    dataset_cfg = raw.get("dataset", {})
    spark_cfg = raw.get("spark", {})
    output_cfg = raw.get("output", {})
    logging_cfg = raw.get("logging", {})

    dataset = DatasetConfig(
        measurements_path=str(dataset_cfg.get("measurements_path", "./data/measurements.json")),
        streams_path=str(dataset_cfg.get("streams_path", "./data/streams.json")),
        sessions_path=str(dataset_cfg.get("sessions_path", "./data/sessions.json")),
        users_path=str(dataset_cfg.get("users_path", "./data/users.json")),
        taggings_path=str(dataset_cfg.get("taggings_path", "./data/taggings.json")),
    )
    spark = SparkConfig(
        master=str(spark_cfg.get("master", "local[*]")),
        app_name=str(spark_cfg.get("app_name", "MeasurementHeatGrid")),
        shuffle_partitions=int(spark_cfg.get("shuffle_partitions", 8)),
        session_time_zone=str(spark_cfg.get("session_time_zone", "UTC")),
    )
    output = OutputConfig(base_path=str(output_cfg.get("base_path", "./data/output")))
    logging = LoggingConfig(
        level=str(logging_cfg.get("level", "INFO")).upper(),
        format=str(logging_cfg.get("format", LoggingConfig.format)),
    )
    return AppConfig(dataset=dataset, spark=spark, output=output, logging=logging)


def load_query_params(path: str | Path) -> dict[str, Any]:
    """Read the raw parameters of one averaging request from YAML."""

    return _load_yaml(path)


def _load_yaml(path: str | Path) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a top-level mapping.")
    return data
