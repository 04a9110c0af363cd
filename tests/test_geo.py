import random

import pytest

from heatgrid.common.errors import InvalidQueryError
from heatgrid.common.geo import (
    Y_SIZES,
    GridBucketer,
    cell_edges,
    cell_index,
    crosses_antimeridian,
    longitude_in_range,
    longitude_span,
    quantize_cell_height,
    resolve_grid,
)
from heatgrid.common.models import GridCell, GridResolution


def test_cell_heights_form_a_fixed_progression():
    assert len(Y_SIZES) == 300
    assert Y_SIZES[0] == pytest.approx(1.2e-6)
    assert all(b / a == pytest.approx(1.2) for a, b in zip(Y_SIZES, Y_SIZES[1:]))


@pytest.mark.parametrize("raw_y", [0.0, 1e-7, 3.3e-4, 0.05, 1.0, 10.0, 123.4])
def test_quantized_height_is_smallest_term_above_raw(raw_y):
    grid_y = quantize_cell_height(raw_y)

    assert grid_y in Y_SIZES
    assert grid_y > raw_y
    position = Y_SIZES.index(grid_y)
    assert position == 0 or Y_SIZES[position - 1] <= raw_y


def test_quantized_height_is_strictly_greater_than_an_exact_term():
    assert quantize_cell_height(Y_SIZES[5]) == Y_SIZES[6]


def test_too_coarse_latitude_resolution_is_rejected():
    with pytest.raises(InvalidQueryError):
        quantize_cell_height(Y_SIZES[-1])
    with pytest.raises(InvalidQueryError):
        resolve_grid(-10, 10, -10, 10, 2, 1e-30)


@pytest.mark.parametrize("grid_size_x, grid_size_y", [(0, 2), (2, 0), (-1, 2), (2, -3)])
def test_non_positive_grid_sizes_are_rejected(grid_size_x, grid_size_y):
    with pytest.raises(InvalidQueryError):
        resolve_grid(-10, 10, -10, 10, grid_size_x, grid_size_y)


def test_resolve_grid_divides_the_box():
    resolution = resolve_grid(-10, 10, -10, 10, 2, 2)

    assert resolution.grid_x == 10
    assert resolution.grid_y == quantize_cell_height(10)


def test_antimeridian_box_matches_equivalent_non_wrapping_box():
    wrapped = resolve_grid(170, -170, -10, 10, 2, 2)
    shifted = resolve_grid(-10, 10, -10, 10, 2, 2)

    assert longitude_span(170, -170) == 20
    assert wrapped == shifted


def test_equal_west_and_east_wrap_the_whole_globe():
    assert longitude_span(30, 30) == 360


def test_crossing_the_antimeridian_means_west_is_not_below_east():
    assert crosses_antimeridian(170, -170)
    assert crosses_antimeridian(30, 30)
    assert not crosses_antimeridian(-10, 10)


@pytest.mark.parametrize("value", [float("nan"), float("inf")])
def test_non_finite_grid_inputs_are_rejected(value):
    with pytest.raises(InvalidQueryError):
        resolve_grid(-10, 10, -10, 10, value, 2)
    with pytest.raises(InvalidQueryError):
        resolve_grid(-10, 10, -10, value, 2, 2)


@pytest.mark.parametrize(
    "longitude, west, east, expected",
    [
        (0, -10, 10, True),
        (10, -10, 10, True),
        (11, -10, 10, False),
        (175, 170, -170, True),
        (-175, 170, -170, True),
        (180, 170, -170, True),
        (0, 170, -170, False),
        (-169, 170, -170, False),
    ],
)
def test_longitude_in_range_handles_wraparound(longitude, west, east, expected):
    assert longitude_in_range(longitude, west, east) is expected


def test_cell_index_rounds_half_away_from_zero():
    assert cell_index(5, 10) == 1
    assert cell_index(-5, 10) == -1
    assert cell_index(4.999, 10) == 0
    assert cell_index(15, 10) == 2


def test_cell_index_agrees_with_reported_edges():
    # 0.35 / 0.1 is 3.4999999999999996, and 0.35 lies below the lower edge of cell 4.
    index = cell_index(0.35, 0.1)
    lower, upper = cell_edges(index, 0.1)

    assert lower <= 0.35 <= upper
    assert cell_edges(-2, 10.0) == (-25.0, -15.0)


def test_fine_cell_height_keeps_points_inside_their_cell():
    bucketer = GridBucketer(GridResolution(grid_x=1.0, grid_y=Y_SIZES[9]))
    latitude = -26.861327905786403
    bounds = bucketer.bounds(bucketer.bucket(latitude, 0.0))

    assert bounds.south <= latitude <= bounds.north


@pytest.mark.parametrize("position", range(0, 30))
def test_bounds_bracket_points_at_fine_cell_heights(position):
    rng = random.Random(position)
    grid_x = rng.uniform(1e-6, 1e-4)
    bucketer = GridBucketer(GridResolution(grid_x=grid_x, grid_y=Y_SIZES[position]))

    for _ in range(2000):
        latitude = rng.uniform(-90, 90)
        longitude = rng.uniform(-180, 180)
        bounds = bucketer.bounds(bucketer.bucket(latitude, longitude))

        assert bounds.south <= latitude <= bounds.north
        assert bounds.west <= longitude <= bounds.east


def test_bucketer_groups_nearby_points():
    bucketer = GridBucketer(resolve_grid(-10, 10, -10, 10, 2, 2))

    assert bucketer.bucket(0.0, 0.0) == bucketer.bucket(0.1, 0.1)
    assert bucketer.bucket(5.0, 5.0) == GridCell(middle_x=1, middle_y=0)


def test_bounds_are_centered_on_the_cell_index():
    bucketer = GridBucketer(GridResolution(grid_x=10.0, grid_y=4.0))
    bounds = bucketer.bounds(GridCell(middle_x=-2, middle_y=3))

    assert (bounds.west, bounds.east) == (-25.0, -15.0)
    assert (bounds.south, bounds.north) == (10.0, 14.0)


@pytest.mark.parametrize(
    "latitude, longitude",
    [(0.0, 0.0), (5.0, 5.0), (-5.0, -5.0), (12.34, -56.78), (-33.9, 151.2), (89.9, 179.9), (0.35, 0.35)],
)
def test_bounds_bracket_every_bucketed_point(latitude, longitude):
    bucketer = GridBucketer(resolve_grid(-180, 180, -90, 90, 37, 23))
    bounds = bucketer.bounds(bucketer.bucket(latitude, longitude))

    assert bounds.west <= longitude <= bounds.east
    assert bounds.south <= latitude <= bounds.north


def test_bucketer_requires_coordinates():
    bucketer = GridBucketer(GridResolution(grid_x=1.0, grid_y=1.0))
    with pytest.raises(ValueError):
        bucketer.bucket(None, 1.0)
