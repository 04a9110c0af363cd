"""Composable predicates over the joined measurement frame.

Every filter can express itself twice: as a Spark ``Column`` condition, so the
whole pipeline collapses into one pushed-down scan, and as a per-record check
for measurements that are already in memory. A ``FilterPipeline`` holds only
the stages whose inputs were supplied; an absent optional parameter simply
means the stage is not there.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import reduce
from typing import Callable, FrozenSet, Iterable, List, Tuple

from pyspark.sql import Column, DataFrame
from pyspark.sql import functions as F

from heatgrid.common.geo import crosses_antimeridian, longitude_in_range
from heatgrid.common.models import AveragesQuery, EnrichedMeasurement

log = logging.getLogger(__name__)

TagLookup = Callable[[Iterable[str]], FrozenSet[int]]


class MeasurementFilter(ABC):
    """One conjunctive stage of the pipeline."""

    @abstractmethod
    def condition(self) -> Column:
        ...

    @abstractmethod
    def accepts(self, event: EnrichedMeasurement) -> bool:
        ...


@dataclass(frozen=True)
class ContributingSessions(MeasurementFilter):
    def condition(self) -> Column:
        return F.col("contribute") == F.lit(True)

    def accepts(self, event: EnrichedMeasurement) -> bool:
        return event.contribute is True


@dataclass(frozen=True)
class MeasurementTypeFilter(MeasurementFilter):
    measurement_type: str
    sensor_name: str

    def condition(self) -> Column:
        return (F.col("measurement_type") == self.measurement_type) & (
            F.col("sensor_name") == self.sensor_name
        )

    def accepts(self, event: EnrichedMeasurement) -> bool:
        return event.measurement_type == self.measurement_type and event.sensor_name == self.sensor_name


@dataclass(frozen=True)
class SpatialBoundsFilter(MeasurementFilter):
    west: float
    east: float
    south: float
    north: float

    def condition(self) -> Column:
        longitude = F.col("longitude")
        if crosses_antimeridian(self.west, self.east):
            in_longitude = longitude.between(self.west, 180) | longitude.between(-180, self.east)
        else:
            in_longitude = longitude.between(self.west, self.east)
        return in_longitude & F.col("latitude").between(self.south, self.north)

    def accepts(self, event: EnrichedMeasurement) -> bool:
        return longitude_in_range(event.longitude, self.west, self.east) and (
            self.south <= event.latitude <= self.north
        )


@dataclass(frozen=True)
class TimeOfDayFilter(MeasurementFilter):
    """Minutes since local midnight, inclusive; 23:00-01:00 matches nothing."""

    time_from: int
    time_to: int

    def condition(self) -> Column:
        minute_of_day = F.hour("time") * 60 + F.minute("time")
        return minute_of_day.between(self.time_from, self.time_to)

    def accepts(self, event: EnrichedMeasurement) -> bool:
        return self.time_from <= event.minute_of_day <= self.time_to


@dataclass(frozen=True)
class DayOfYearFilter(MeasurementFilter):
    day_from: int
    day_to: int

    def condition(self) -> Column:
        return F.dayofyear("time").between(self.day_from, self.day_to)

    def accepts(self, event: EnrichedMeasurement) -> bool:
        return self.day_from <= event.day_of_year <= self.day_to


@dataclass(frozen=True)
class YearRangeFilter(MeasurementFilter):
    """Jan 1 of ``year_from`` through Dec 31 of ``year_to``."""

    year_from: int
    year_to: int

    def condition(self) -> Column:
        return F.year("time").between(self.year_from, self.year_to)

    def accepts(self, event: EnrichedMeasurement) -> bool:
        return self.year_from <= event.time.year <= self.year_to


@dataclass(frozen=True)
class SessionIdsFilter(MeasurementFilter):
    session_ids: FrozenSet[int]

    def condition(self) -> Column:
        return F.col("session_id").isin(sorted(self.session_ids))

    def accepts(self, event: EnrichedMeasurement) -> bool:
        return event.session_id in self.session_ids


@dataclass(frozen=True)
class UsernamesFilter(MeasurementFilter):
    usernames: FrozenSet[str]

    def condition(self) -> Column:
        return F.col("username").isin(sorted(self.usernames))

    def accepts(self, event: EnrichedMeasurement) -> bool:
        return event.username in self.usernames


@dataclass(frozen=True)
class FilterPipeline:
    """Conjunction of filters; ``short_circuited`` means the result is empty."""

    filters: Tuple[MeasurementFilter, ...]
    short_circuited: bool = False

    @classmethod
    def for_query(cls, query: AveragesQuery, tag_lookup: TagLookup) -> "FilterPipeline":
        stages: List[MeasurementFilter] = [
            ContributingSessions(),
            MeasurementTypeFilter(query.measurement_type, query.sensor_name),
            SpatialBoundsFilter(query.west, query.east, query.south, query.north),
        ]
        if query.time_from is not None and query.time_to is not None:
            stages.append(TimeOfDayFilter(query.time_from, query.time_to))
        if query.day_from is not None and query.day_to is not None:
            stages.append(DayOfYearFilter(query.day_from, query.day_to))
        if query.year_from is not None and query.year_to is not None:
            stages.append(YearRangeFilter(query.year_from, query.year_to))
        if query.tags:
            session_ids = tag_lookup(query.tags)
            if not session_ids:
                log.info("No sessions carry any of the tags %s; skipping the scan.", list(query.tags))
                return cls(filters=tuple(stages), short_circuited=True)
            stages.append(SessionIdsFilter(frozenset(session_ids)))
        if query.usernames:
            stages.append(UsernamesFilter(frozenset(query.usernames)))
        return cls(filters=tuple(stages))

    def condition(self) -> Column:
        if self.short_circuited:
            return F.lit(False)
        return reduce(lambda left, right: left & right, (stage.condition() for stage in self.filters))

    def apply(self, df: DataFrame) -> DataFrame:
        return df.filter(self.condition())

    def accepts(self, event: EnrichedMeasurement) -> bool:
        if self.short_circuited:
            return False
        return all(stage.accepts(event) for stage in self.filters)
