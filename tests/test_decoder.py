import pytest

from decoder import decode_polyline, geojson_line_points, parse_location_payload, validate_path


def test_parse_takes_device_id_from_topic():
  parsed, error = parse_location_payload("fleet/South-Truck-1/location", b'{"lat": 12.97, "lng": 77.59}')
  assert error is None
  assert parsed == {"device_id": "South-Truck-1", "lat": 12.97, "lng": 77.59}


def test_parse_prefers_payload_device_id_and_aliases():
  parsed, error = parse_location_payload("fleet/x/location", b'{"mobile": "9876543210", "latitude": "1.5", "lon": 2}')
  assert error is None
  assert parsed == {"device_id": "9876543210", "lat": 1.5, "lng": 2.0}


@pytest.mark.parametrize(
  "topic,payload,expected",
  [
    ("fleet/a/location", b"not json", "invalid_json"),
    ("fleet/a/location", b"[1, 2]", "not_an_object"),
    ("location", b'{"lat": 1, "lng": 2}', "missing_device_id"),
    ("fleet/a/location", b'{"lat": 1}', "missing_coordinates"),
    ("fleet/a/location", b'{"lat": true, "lng": 2}', "missing_coordinates"),
  ],
)
def test_parse_errors(topic, payload, expected):
  parsed, error = parse_location_payload(topic, payload)
  assert parsed is None
  assert error.startswith(expected)


def test_decode_polyline_reference_string():
  points = decode_polyline("_p~iF~ps|U_ulLnnqC_mqNvxq`@")
  assert points == [
    pytest.approx((38.5, -120.2)),
    pytest.approx((40.7, -120.95)),
    pytest.approx((43.252, -126.453)),
  ]


def test_decode_polyline_truncated():
  with pytest.raises(ValueError):
    decode_polyline("_p~iF~ps|U_")


def test_geojson_points_are_flipped_to_lat_lng():
  geometry = {"type": "LineString", "coordinates": [[77.59, 12.97], [80.27, 13.08]]}
  assert geojson_line_points(geometry) == [(12.97, 77.59), (13.08, 80.27)]


def test_geojson_rejects_bad_geometry():
  with pytest.raises(ValueError):
    geojson_line_points({"type": "Point", "coordinates": [1, 2]})
  with pytest.raises(ValueError):
    geojson_line_points({"type": "LineString", "coordinates": [[1]]})


def test_validate_path():
  with pytest.raises(ValueError):
    validate_path([(1.0, 2.0)])
  with pytest.raises(ValueError):
    validate_path([(1.0, 2.0), (95.0, 2.0)])
  assert validate_path([(1.0, 2.0), (3.0, 4.0)]) == [(1.0, 2.0), (3.0, 4.0)]
