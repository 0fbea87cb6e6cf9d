import pytest

from farmland.errors import (
    CoordinateOutOfRange,
    GeometryError,
    SelfIntersecting,
    TooFewPoints,
    UnclosedRing,
)
from farmland.geometry import ValidatedPolygon, polygon_from_geojson, validate_bbox, validate_ring

from conftest import box, polygon


def test_valid_ring_returns_validated_polygon():
    ring = box(77.0, 12.0, 77.01, 12.01)
    poly = validate_ring(ring)

    assert isinstance(poly, ValidatedPolygon)
    assert poly.coordinates[0] == poly.coordinates[-1] == (77.0, 12.0)
    assert poly.bounds == (77.0, 12.0, 77.01, 12.01)
    assert poly.to_geojson() == {"type": "Polygon", "coordinates": [ring]}


def test_three_points_is_too_few():
    with pytest.raises(TooFewPoints):
        validate_ring([[0, 0], [1, 0], [0, 0]])


def test_too_few_points_checked_before_closure():
    """A 3-vertex open ring reports the point count, not the missing closure."""
    with pytest.raises(TooFewPoints):
        validate_ring([[0, 0], [1, 0], [1, 1]])


def test_unclosed_ring():
    with pytest.raises(UnclosedRing):
        validate_ring([[0, 0], [1, 0], [1, 1], [0, 1]])


@pytest.mark.parametrize("bad", [[10.0, 95.0], [181.0, 0.0], [-180.5, 10.0]])
def test_coordinate_out_of_range(bad):
    ring = [[0.0, 0.0], bad, [1.0, 1.0], [0.0, 0.0]]
    with pytest.raises(CoordinateOutOfRange):
        validate_ring(ring)


def test_non_numeric_vertex_is_out_of_range():
    with pytest.raises(CoordinateOutOfRange):
        validate_ring([[0, 0], ["a", 1], [1, 1], [0, 0]])


def test_bowtie_is_self_intersecting():
    with pytest.raises(SelfIntersecting) as exc:
        validate_ring([[0, 0], [1, 1], [1, 0], [0, 1], [0, 0]])
    assert exc.value.code == "self_intersecting"


def test_geometry_errors_are_value_errors():
    """Callers that only know ValueError still catch every ring problem."""
    with pytest.raises(ValueError):
        validate_ring([[0, 0]])
    assert issubclass(GeometryError, ValueError)


def test_polygon_from_geojson_accepts_mapping_and_bare_ring():
    ring = box(1.0, 1.0, 1.5, 1.5)
    assert polygon_from_geojson(polygon(ring)) == polygon_from_geojson(ring)


def test_polygon_from_geojson_rejects_other_types():
    with pytest.raises(ValueError, match="Only Polygon"):
        polygon_from_geojson({"type": "Point", "coordinates": [1.0, 2.0]})


def test_polygon_from_geojson_rejects_holes():
    outer = box(0.0, 0.0, 1.0, 1.0)
    inner = box(0.2, 0.2, 0.4, 0.4)
    with pytest.raises(ValueError, match="interior rings"):
        polygon_from_geojson({"type": "Polygon", "coordinates": [outer, inner]})


@pytest.mark.parametrize("ring", [5, "0,0 1,0 1,1 0,0", {"lon": 0, "lat": 0}])
def test_ring_that_is_not_a_list(ring):
    with pytest.raises(CoordinateOutOfRange):
        validate_ring(ring)


def test_polygon_with_scalar_ring_is_a_geometry_error():
    with pytest.raises(CoordinateOutOfRange):
        polygon_from_geojson({"type": "Polygon", "coordinates": [5]})


def test_ring_of_scalars_is_a_geometry_error():
    with pytest.raises(CoordinateOutOfRange):
        polygon_from_geojson({"type": "Polygon", "coordinates": [[5, 5, 5, 5]]})


def test_validate_bbox():
    assert validate_bbox(77, 12, 77.5, 12.5) == (77.0, 12.0, 77.5, 12.5)
    with pytest.raises(CoordinateOutOfRange):
        validate_bbox(0, -95, 1, 1)
    with pytest.raises(ValueError, match="minimum exceeds maximum"):
        validate_bbox(1, 0, 0, 1)
