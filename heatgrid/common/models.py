"""Dataclasses shared between the ingestion and averaging layers."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional, Tuple

from .errors import InvalidQueryError

_TERM_SEPARATOR = re.compile(r"[\s,]")


@dataclass(frozen=True)
class EnrichedMeasurement:
    """A measurement joined with its stream, session and owner."""

    measurement_id: Optional[int]
    value: float
    latitude: float
    longitude: float
    time: datetime
    timezone_offset: int
    stream_id: int
    measurement_type: str
    sensor_name: str
    session_id: int
    contribute: bool
    user_id: Optional[int] = None
    username: Optional[str] = None

    @property
    def minute_of_day(self) -> int:
        return self.time.hour * 60 + self.time.minute

    @property
    def day_of_year(self) -> int:
        return self.time.timetuple().tm_yday


@dataclass(frozen=True)
class AveragesQuery:
    """Parameters of one heat-grid averaging request.

    ``grid_size_x`` and ``grid_size_y`` are the number of divisions requested
    across the box on each axis. Every optional bound comes in a pair; a pair
    with a missing half disables its filter.
    """

    measurement_type: str
    sensor_name: str
    west: float
    east: float
    south: float
    north: float
    grid_size_x: float
    grid_size_y: float
    time_from: Optional[int] = None
    time_to: Optional[int] = None
    day_from: Optional[int] = None
    day_to: Optional[int] = None
    year_from: Optional[int] = None
    year_to: Optional[int] = None
    tags: Tuple[str, ...] = field(default_factory=tuple)
    usernames: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        for name in ("west", "east", "south", "north", "grid_size_x", "grid_size_y"):
            if not math.isfinite(getattr(self, name)):
                raise InvalidQueryError(f"{name} must be a finite number, got {getattr(self, name)!r}.")
        if self.grid_size_x <= 0 or self.grid_size_y <= 0:
            raise InvalidQueryError("grid_size_x and grid_size_y must be positive.")
        if self.south > self.north:
            raise InvalidQueryError(
                f"south ({self.south}) must not be greater than north ({self.north})."
            )

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "AveragesQuery":
        """Build a query from a raw parameter mapping (YAML, CLI, request body)."""

        for key in ("measurement_type", "sensor_name"):
            if not params.get(key):
                raise InvalidQueryError(f"Missing required parameter: {key}")

        return cls(
            measurement_type=str(params["measurement_type"]),
            sensor_name=str(params["sensor_name"]),
            west=_required_float(params, "west"),
            east=_required_float(params, "east"),
            south=_required_float(params, "south"),
            north=_required_float(params, "north"),
            grid_size_x=_required_float(params, "grid_size_x"),
            grid_size_y=_required_float(params, "grid_size_y"),
            time_from=_optional_int(params, "time_from"),
            time_to=_optional_int(params, "time_to"),
            day_from=_optional_int(params, "day_from"),
            day_to=_optional_int(params, "day_to"),
            year_from=_optional_int(params, "year_from"),
            year_to=_optional_int(params, "year_to"),
            tags=tuple(parse_terms(params.get("tags"))),
            usernames=tuple(parse_terms(params.get("usernames"))),
        )


@dataclass(frozen=True)
class GridResolution:
    """Concrete cell dimensions in degrees."""

    grid_x: float
    grid_y: float


@dataclass(frozen=True)
class GridCell:
    """Integer index of a grid square under one resolution."""

    middle_x: int
    middle_y: int


@dataclass(frozen=True)
class CellBounds:
    west: float
    east: float
    south: float
    north: float


@dataclass(frozen=True)
class CellAverage:
    """One output row: an occupied cell, its average and contributing sessions."""

    ids: Tuple[int, ...]
    value: float
    west: float
    east: float
    south: float
    north: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "ids": list(self.ids),
            "value": self.value,
            "west": self.west,
            "east": self.east,
            "south": self.south,
            "north": self.north,
        }


def parse_terms(raw_value: str | Iterable[str] | None) -> Tuple[str, ...]:
    """Split tag or username input on whitespace and commas."""

    if not raw_value:
        return tuple()
    if isinstance(raw_value, str):
        pieces: Iterable[str] = _TERM_SEPARATOR.split(raw_value)
    else:
        pieces = (str(item).strip() for item in raw_value)
    return tuple(piece for piece in pieces if piece)


def _required_float(params: Mapping[str, Any], key: str) -> float:
    value = params.get(key)
    if value is None or value == "":
        raise InvalidQueryError(f"Missing required parameter: {key}")
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise InvalidQueryError(f"Parameter {key} must be a number, got {value!r}.") from exc
    if not math.isfinite(number):
        raise InvalidQueryError(f"Parameter {key} must be a finite number, got {value!r}.")
    return number


def _optional_int(params: Mapping[str, Any], key: str) -> Optional[int]:
    value = params.get(key)
    if value is None or value == "":
        return None
    if isinstance(value, float) and not value.is_integer():
        raise InvalidQueryError(f"Parameter {key} must be a whole number, got {value!r}.")
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError) as exc:
        raise InvalidQueryError(f"Parameter {key} must be an integer, got {value!r}.") from exc
