import pytest
import requests
import responses

from tripsched.plan.distance import GOOGLE_DISTANCE_MATRIX_URL, GoogleDistanceMatrixSource
from tripsched.plan.errors import DistanceSourceError
from tripsched.plan.models import Location
from tripsched.plan.optimizer import optimize_route

from conftest import MONDAY

A = Location(address="1 Mill Lane", lat=52.50, lon=-1.90)
B = Location(address="Oak Day Centre", lat=52.54, lon=-1.88)


def _element(meters, seconds):
    return {"status": "OK", "distance": {"value": meters}, "duration": {"value": seconds}}


def _ok_payload():
    return {
        "status": "OK",
        "rows": [
            {"elements": [_element(0, 0), _element(3218.688, 600)]},
            {"elements": [_element(4828.032, 900), _element(0, 0)]},
        ],
    }


@responses.activate
def test_google_source_ok():
    responses.add(responses.GET, GOOGLE_DISTANCE_MATRIX_URL, json=_ok_payload(), status=200)

    m = GoogleDistanceMatrixSource("test-key").distances([A, B], [A, B])

    assert m.miles[0, 1] == pytest.approx(2.0)
    assert m.miles[1, 0] == pytest.approx(3.0)
    assert m.minutes[0, 1] == pytest.approx(10.0)
    assert m.minutes[1, 0] == pytest.approx(15.0)
    sent = responses.calls[0].request.url
    assert "key=test-key" in sent
    assert "units=imperial" in sent


@responses.activate
def test_google_source_timeout():
    responses.add(responses.GET, GOOGLE_DISTANCE_MATRIX_URL, body=requests.exceptions.Timeout("slow"))
    with pytest.raises(DistanceSourceError, match="timed out"):
        GoogleDistanceMatrixSource("test-key", timeout_sec=2).distances([A], [B])


@responses.activate
def test_google_source_bad_status():
    responses.add(responses.GET, GOOGLE_DISTANCE_MATRIX_URL,
                  json={"status": "REQUEST_DENIED", "error_message": "The provided API key is invalid."}, status=200)
    with pytest.raises(DistanceSourceError, match="REQUEST_DENIED"):
        GoogleDistanceMatrixSource("test-key").distances([A], [B])


@responses.activate
def test_google_source_http_error():
    responses.add(responses.GET, GOOGLE_DISTANCE_MATRIX_URL, json={}, status=500)
    with pytest.raises(DistanceSourceError):
        GoogleDistanceMatrixSource("test-key").distances([A], [B])


@responses.activate
def test_google_source_route_not_found():
    responses.add(responses.GET, GOOGLE_DISTANCE_MATRIX_URL,
                  json={"status": "OK", "rows": [{"elements": [{"status": "ZERO_RESULTS"}]}]}, status=200)
    with pytest.raises(DistanceSourceError, match="ZERO_RESULTS"):
        GoogleDistanceMatrixSource("test-key").distances([A], [B])


def test_google_source_requires_key():
    with pytest.raises(ValueError):
        GoogleDistanceMatrixSource("")


@responses.activate
def test_optimizer_uses_precise_then_falls_back(make_trip):
    trips = [
        make_trip(trip_id="A", pickup_time="08:00", pickup=A, destination=B),
        make_trip(trip_id="B", customer_id="C2", pickup_time="10:00", pickup=B, destination=A),
    ]
    source = GoogleDistanceMatrixSource("test-key")

    responses.add(responses.GET, GOOGLE_DISTANCE_MATRIX_URL, json=_ok_payload(), status=200)
    precise = optimize_route("D1", MONDAY, trips, source)
    assert precise.method == "precise"
    assert precise.optimized_order == ["A", "B"]
    assert precise.time_before_minutes == 10.0
    assert precise.distance_before_miles == 2.0

    responses.replace(responses.GET, GOOGLE_DISTANCE_MATRIX_URL, json={"status": "OVER_QUERY_LIMIT"}, status=200)
    fallback = optimize_route("D1", MONDAY, trips, source)
    assert fallback.method == "approximate"
    assert "OVER_QUERY_LIMIT" in fallback.warning
    assert fallback.warning.startswith("Using estimated distances (")


@pytest.mark.parametrize("body", [
    [],
    {"status": "OK", "rows": "nope"},
    {"status": "OK", "rows": [["not", "a", "row"]]},
    {"status": "OK", "rows": [{"elements": ["x"]}]},
])
@responses.activate
def test_google_source_malformed_body(body):
    responses.add(responses.GET, GOOGLE_DISTANCE_MATRIX_URL, json=body, status=200)
    with pytest.raises(DistanceSourceError):
        GoogleDistanceMatrixSource("test-key").distances([A], [B])


@responses.activate
def test_optimizer_falls_back_on_malformed_body(make_trip):
    trips = [
        make_trip(trip_id="A", pickup_time="08:00", pickup=A, destination=B),
        make_trip(trip_id="B", customer_id="C2", pickup_time="10:00", pickup=B, destination=A),
    ]
    responses.add(responses.GET, GOOGLE_DISTANCE_MATRIX_URL, json=[], status=200)

    result = optimize_route("D1", MONDAY, trips, GoogleDistanceMatrixSource("test-key"))

    assert result.method == "approximate"
    assert "expected an object" in result.warning
