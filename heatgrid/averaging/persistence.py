"""Persist averaged grids for map clients."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Sequence

from pyspark.sql import DataFrame

from heatgrid.common.models import CellAverage
from heatgrid.ingest.ingestion_service import data_source_errors


class Persistence:
    """Write averaged grids into a folder hierarchy."""

    def __init__(self, base_path: str) -> None:
        self.base_path = Path(base_path)

    def write(self, tables: Dict[str, DataFrame]) -> None:
        self.base_path.mkdir(parents=True, exist_ok=True)
        for name, frame in tables.items():
            target = self.base_path / name
            target.parent.mkdir(parents=True, exist_ok=True)
            with data_source_errors(f"writing {target}"):
                frame.write.mode("overwrite").parquet(str(target))

    def write_averages(self, name: str, averages: Sequence[CellAverage]) -> Path:
        target = self.base_path / f"{name}.json"
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w", encoding="utf-8") as handle:
            json.dump([average.to_dict() for average in averages], handle)
        return target
