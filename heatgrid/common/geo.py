"""Geospatial helpers for grid-based aggregations."""

from __future__ import annotations

import bisect
import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Tuple

from .errors import InvalidQueryError
from .models import AveragesQuery, CellBounds, GridCell, GridResolution

# Allowed cell heights: 1.2**i * 1e-6 for i in 1..300, ascending.
Y_SIZE_RATIO = 1.2
Y_SIZE_BASE = 0.000001
Y_SIZES: tuple[float, ...] = tuple(Y_SIZE_RATIO**i * Y_SIZE_BASE for i in range(1, 301))

_INTEGER_QUANTUM = Decimal(1)


def crosses_antimeridian(west: float, east: float) -> bool:
    return west >= east


def longitude_span(west: float, east: float) -> float:
    """Width of the box in degrees, wrapping across ±180 when west >= east."""

    if crosses_antimeridian(west, east):
        return (180 - west) + (180 + east)
    return east - west


def quantize_cell_height(raw_y: float) -> float:
    """Smallest allowed cell height strictly greater than ``raw_y``."""

    position = bisect.bisect_right(Y_SIZES, raw_y)
    if position == len(Y_SIZES):
        raise InvalidQueryError(
            f"Requested latitude resolution {raw_y} is coarser than every supported cell height."
        )
    return Y_SIZES[position]


def resolve_grid(
    west: float,
    east: float,
    south: float,
    north: float,
    grid_size_x: float,
    grid_size_y: float,
) -> GridResolution:
    if not all(math.isfinite(number) for number in (west, east, south, north, grid_size_x, grid_size_y)):
        raise InvalidQueryError("Bounding box and grid sizes must be finite numbers.")
    if grid_size_x <= 0 or grid_size_y <= 0:
        raise InvalidQueryError("grid_size_x and grid_size_y must be positive.")

    grid_x = longitude_span(west, east) / grid_size_x
    grid_y = quantize_cell_height((north - south) / grid_size_y)
    return GridResolution(grid_x=grid_x, grid_y=grid_y)


def resolve_query_grid(query: AveragesQuery) -> GridResolution:
    return resolve_grid(
        query.west,
        query.east,
        query.south,
        query.north,
        query.grid_size_x,
        query.grid_size_y,
    )


def longitude_in_range(longitude: float, west: float, east: float) -> bool:
    if crosses_antimeridian(west, east):
        return west <= longitude <= 180 or -180 <= longitude <= east
    return west <= longitude <= east


def cell_edges(index: int, size: float) -> Tuple[float, float]:
    """Lower and upper edge of cell ``index``: ``index*size ∓ size/2``."""

    centre = float(index) * size
    half = size / 2
    return centre - half, centre + half


def cell_index(coordinate: float, size: float) -> int:
    """Index of the cell whose edges enclose ``coordinate``.

    The quotient ``coordinate / size`` is rounded half away from zero, then
    moved by one cell when floating-point error has put the coordinate outside
    the edges ``cell_edges`` reports for that index. A coordinate sitting on a
    shared edge keeps the rounded index.
    """

    index = int(Decimal(repr(coordinate / size)).quantize(_INTEGER_QUANTUM, rounding=ROUND_HALF_UP))
    lower, upper = cell_edges(index, size)
    if coordinate < lower:
        return index - 1
    if coordinate > upper:
        return index + 1
    return index


class GridBucketer:
    """Maps latitude/longitude pairs into cells of one resolved grid."""

    def __init__(self, resolution: GridResolution) -> None:
        if not (resolution.grid_x > 0 and resolution.grid_y > 0):
            raise InvalidQueryError("Grid cell dimensions must be positive.")
        self.resolution = resolution

    def bucket(self, latitude: float, longitude: float) -> GridCell:
        if latitude is None or longitude is None:
            raise ValueError("Latitude and longitude must be provided for grid bucketing.")

        return GridCell(
            middle_x=cell_index(float(longitude), self.resolution.grid_x),
            middle_y=cell_index(float(latitude), self.resolution.grid_y),
        )

    def bounds(self, cell: GridCell) -> CellBounds:
        west, east = cell_edges(cell.middle_x, self.resolution.grid_x)
        south, north = cell_edges(cell.middle_y, self.resolution.grid_y)
        return CellBounds(west=west, east=east, south=south, north=north)
